"""Storage error policies.

Every storage read that feeds a decision goes through one of these two
helpers so the fail-closed / fail-soft split is visible in one place:

- ``resolve_or_deny``: security lookups (sessions). A storage failure
  resolves to ``None``, which callers treat as "no access".
- ``resolve_or_default``: content lookups (role configuration, user
  lists). A storage failure resolves to a seeded default.

Neither helper lets a StorageError reach the caller.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from ..domain.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def resolve_or_deny(
    operation: Callable[[], Awaitable[T | None]], *, what: str
) -> T | None:
    try:
        return await operation()
    except StorageError as exc:
        logger.error("Storage failure while resolving %s, denying: %s", what, exc)
        return None


async def resolve_or_default(
    operation: Callable[[], Awaitable[T]], default: Callable[[], T], *, what: str
) -> T:
    try:
        return await operation()
    except StorageError as exc:
        logger.error("Storage failure while resolving %s, using default: %s", what, exc)
        return default()
