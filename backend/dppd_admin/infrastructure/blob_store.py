from __future__ import annotations

import json
import logging
from typing import Any

from redis.exceptions import RedisError

from ..domain.errors import StorageError
from .redis import RedisClient, get_redis

logger = logging.getLogger(__name__)

SESSIONS_NAMESPACE = "admin-sessions"
ROLES_CONFIG_NAMESPACE = "roles-config"
ADMIN_USERS_NAMESPACE = "admin-users"


class RedisBlobStore:
    """JSON documents in one Redis namespace.

    Redis and decoding failures surface as StorageError so callers can
    route them through resolve_or_deny / resolve_or_default.
    """

    def __init__(self, namespace: str, client: RedisClient) -> None:
        self.namespace = namespace
        self._client = client

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get_json(self, key: str) -> Any | None:
        try:
            raw = await self._client.get_value(self._key(key))
        except (RedisError, OSError) as exc:
            raise self._error("GET", key, exc) from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise self._error("DECODE", key, exc) from exc

    async def set_json(
        self, key: str, value: Any, *, ttl_seconds: int | None = None
    ) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        try:
            await self._client.set_value(self._key(key), payload, ttl_seconds)
        except (RedisError, OSError) as exc:
            raise self._error("SET", key, exc) from exc

    async def delete(self, key: str) -> bool:
        try:
            return await self._client.delete_value(self._key(key))
        except (RedisError, OSError) as exc:
            raise self._error("DEL", key, exc) from exc

    def _error(self, operation: str, key: str, exc: Exception) -> StorageError:
        logger.error(
            "Blob store operation failed operation=%s namespace=%s key=%s error=%s",
            operation,
            self.namespace,
            key,
            exc,
        )
        return StorageError(
            f"{operation} {self.namespace}/{key} failed: {exc}",
            namespace=self.namespace,
            key=key,
            operation=operation,
        )


def redis_blob_store_factory(namespace: str) -> RedisBlobStore:
    return RedisBlobStore(namespace, get_redis())
