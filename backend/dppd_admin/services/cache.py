from __future__ import annotations

import time
from typing import Any, Awaitable, Callable


class TTLCache:
    """Small in-process cache with per-entry expiry.

    Used for the role configuration document so permission checks do not
    hit the store on every request. Writers must call ``invalidate``.
    ``None`` results are never cached, so a failed load is retried.
    Not synchronized: each request runs on a single event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get_or_load(
        self,
        key: str,
        ttl_seconds: float,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry[0] > now:
            return entry[1]

        value = await loader()
        if value is not None and ttl_seconds > 0:
            self._entries[key] = (now + ttl_seconds, value)
        return value

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0] > self._clock()
