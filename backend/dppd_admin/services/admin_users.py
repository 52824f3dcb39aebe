"""Static username/password admin accounts, stored as one list under ``admin-users/users``."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..auth.role_catalog import SUPER_ADMIN_PERMISSIONS
from ..domain.errors import StorageError
from ..domain.ports import BlobStore
from ..schemas.auth import StoredAdminUser
from ..schemas.roles import InternalRole
from ..security.passwords import hash_password

logger = logging.getLogger(__name__)

ADMIN_USERS_KEY = "users"

_users_adapter = TypeAdapter(list[StoredAdminUser])


class AdminUserRepository:
    def __init__(self, store: BlobStore) -> None:
        self._store = store

    async def list_users(self) -> list[StoredAdminUser]:
        """
        Raises:
            StorageError: If the store fails or the user list does not parse
        """
        raw = await self._store.get_json(ADMIN_USERS_KEY)
        if raw is None:
            return []
        try:
            return _users_adapter.validate_python(raw)
        except PydanticValidationError as exc:
            raise StorageError(
                f"Malformed admin user list: {exc}",
                namespace=self._store.namespace,
                key=ADMIN_USERS_KEY,
                operation="DECODE",
            ) from exc

    async def save_users(self, users: list[StoredAdminUser]) -> None:
        await self._store.set_json(
            ADMIN_USERS_KEY, [user.to_document() for user in users]
        )

    async def find_by_username(self, username: str) -> StoredAdminUser | None:
        wanted = username.strip().lower()
        for user in await self.list_users():
            if user.username.lower() == wanted:
                return user
        return None

    async def replace(self, updated: StoredAdminUser) -> None:
        users = await self.list_users()
        await self.save_users([updated if u.id == updated.id else u for u in users])

    async def ensure_bootstrap_admin(self, username: str, password: str) -> StoredAdminUser | None:
        """Create the first super-admin account when the user list is empty."""
        if not username or not password:
            return None
        users = await self.list_users()
        if users:
            return None

        now = datetime.now(timezone.utc).isoformat()
        admin = StoredAdminUser(
            id=f"admin-{uuid.uuid4().hex[:12]}",
            username=username,
            password=hash_password(password),
            display_name=username,
            role=InternalRole.SUPER_ADMIN,
            permissions=list(SUPER_ADMIN_PERMISSIONS),
            created_at=now,
            updated_at=now,
        )
        await self.save_users([admin])
        logger.info("Seeded bootstrap admin user=%s", admin.id)
        return admin
