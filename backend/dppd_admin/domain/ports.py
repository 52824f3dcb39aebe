from __future__ import annotations

from typing import Any, Callable, Protocol


class BlobStore(Protocol):
    """One namespace of the key-value store, holding JSON documents."""

    namespace: str

    async def get_json(self, key: str) -> Any | None:
        ...

    async def set_json(
        self, key: str, value: Any, *, ttl_seconds: int | None = None
    ) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...


BlobStoreFactory = Callable[[str], BlobStore]
