"""Role mapping configuration: one JSON document under ``roles-config/config``.

Reads are fail-soft (seeded defaults on storage errors). Writes read the
stored document strictly so a storage outage never overwrites it with
defaults, and every write clears the evaluator cache.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Callable, Iterable

from pydantic import ValidationError as PydanticValidationError

from ..auth import role_catalog
from ..config import Settings
from ..domain.errors import StorageError
from ..domain.ports import BlobStore
from ..errors import ConflictError, NotFoundError, ValidationError
from ..schemas.roles import (
    InternalRole,
    PermissionDefinition,
    PermissionDefinitionCreate,
    ResolvedRole,
    RoleMapping,
    RoleMappingCreate,
    RoleMappingUpdate,
    RoleMappingView,
    RolesConfig,
    RolesConfigView,
)
from ..security.policies import resolve_or_default
from .cache import TTLCache

logger = logging.getLogger(__name__)

ROLES_CONFIG_KEY = "config"
ROLES_CONFIG_CACHE_KEY = "roles-config"


def default_roles_config() -> RolesConfig:
    return RolesConfig(
        discord_role_mappings=[],
        available_permissions=[p.model_copy() for p in role_catalog.DEFAULT_PERMISSIONS],
        page_definitions=[p.model_copy(deep=True) for p in role_catalog.DEFAULT_PAGE_DEFINITIONS],
    )


def merge_defaults(config: RolesConfig) -> RolesConfig:
    """Add built-in permissions and pages the stored document predates."""
    known_permissions = {p.id for p in config.available_permissions}
    for permission in role_catalog.DEFAULT_PERMISSIONS:
        if permission.id not in known_permissions:
            config.available_permissions.append(permission.model_copy())

    known_pages = {p.id for p in config.page_definitions}
    for page in role_catalog.DEFAULT_PAGE_DEFINITIONS:
        if page.id not in known_pages:
            config.page_definitions.append(page.model_copy(deep=True))

    config.discord_role_mappings.sort(key=lambda mapping: mapping.priority, reverse=True)
    return config


class RolesConfigRepository:
    def __init__(self, store: BlobStore) -> None:
        self._store = store

    async def load(self) -> RolesConfig:
        """Read the stored document merged with the defaults.

        Raises:
            StorageError: If the store fails or the document does not parse
        """
        raw = await self._store.get_json(ROLES_CONFIG_KEY)
        if raw is None:
            return default_roles_config()
        try:
            config = RolesConfig.model_validate(raw)
        except PydanticValidationError as exc:
            raise StorageError(
                f"Malformed roles configuration: {exc}",
                namespace=self._store.namespace,
                key=ROLES_CONFIG_KEY,
                operation="DECODE",
            ) from exc
        return merge_defaults(config)

    async def load_or_default(self) -> RolesConfig:
        return await resolve_or_default(self.load, default_roles_config, what="roles config")

    async def save(self, config: RolesConfig) -> None:
        config.discord_role_mappings.sort(key=lambda mapping: mapping.priority, reverse=True)
        await self._store.set_json(ROLES_CONFIG_KEY, config.to_document())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_mapping_id() -> str:
    return f"role-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def mask_mapping(mapping: RoleMapping) -> RoleMappingView:
    return RoleMappingView(
        id=mapping.id,
        discord_role_id_masked=role_catalog.mask_discord_role_id(mapping.discord_role_id),
        role_name=mapping.role_name,
        internal_role=mapping.internal_role,
        permissions=list(mapping.permissions),
        page_permissions=list(mapping.page_permissions),
        priority=mapping.priority,
        description=mapping.description,
        is_active=mapping.is_active,
        created_at=mapping.created_at,
        updated_at=mapping.updated_at,
    )


class RolesConfigService:
    def __init__(
        self,
        repository: RolesConfigRepository,
        cache: TTLCache,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._now = now

    async def get_config(self) -> RolesConfig:
        return await self._repository.load_or_default()

    async def list_masked(self) -> RolesConfigView:
        config = await self.get_config()
        return RolesConfigView(
            discord_role_mappings=[mask_mapping(m) for m in config.discord_role_mappings],
            available_permissions=config.available_permissions,
            page_definitions=config.page_definitions,
        )

    async def add_mapping(self, payload: RoleMappingCreate) -> RoleMapping:
        _validate_role_id(payload.discord_role_id)
        config = await self._repository.load()
        if payload.is_active:
            _ensure_unique_role_id(config, payload.discord_role_id)

        now = self._now()
        mapping = RoleMapping(
            id=_new_mapping_id(),
            discord_role_id=payload.discord_role_id,
            role_name=payload.role_name,
            internal_role=payload.internal_role,
            permissions=list(payload.permissions),
            page_permissions=list(payload.page_permissions),
            priority=(
                payload.priority
                if payload.priority is not None
                else len(config.discord_role_mappings)
            ),
            description=payload.description,
            is_active=payload.is_active,
            created_at=now,
            updated_at=now,
        )
        config.discord_role_mappings.append(mapping)
        await self._write(config)
        logger.info(
            "Added role mapping id=%s role=%s priority=%s",
            mapping.id,
            mapping.internal_role.value,
            mapping.priority,
        )
        return mapping

    async def update_mapping(self, mapping_id: str, payload: RoleMappingUpdate) -> RoleMapping:
        config = await self._repository.load()
        mapping = config.find_mapping(mapping_id)
        if mapping is None:
            raise NotFoundError("Role mapping not found")

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if "discord_role_id" in changes:
            _validate_role_id(changes["discord_role_id"])

        updated = RoleMapping.model_validate({**mapping.model_dump(), **changes})
        if updated.is_active:
            _ensure_unique_role_id(config, updated.discord_role_id, exclude_id=mapping_id)
        updated.updated_at = self._now()

        config.discord_role_mappings = [
            updated if m.id == mapping_id else m for m in config.discord_role_mappings
        ]
        await self._write(config)
        logger.info("Updated role mapping id=%s fields=%s", mapping_id, sorted(changes))
        return updated

    async def delete_mapping(self, mapping_id: str) -> None:
        config = await self._repository.load()
        if config.find_mapping(mapping_id) is None:
            raise NotFoundError("Role mapping not found")
        config.discord_role_mappings = [
            m for m in config.discord_role_mappings if m.id != mapping_id
        ]
        await self._write(config)
        logger.info("Deleted role mapping id=%s", mapping_id)

    async def add_permission(self, payload: PermissionDefinitionCreate) -> PermissionDefinition:
        try:
            role_catalog.validate_permission_id(payload.id)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        config = await self._repository.load()
        if any(p.id == payload.id for p in config.available_permissions):
            raise ConflictError("A permission with this ID already exists")

        definition = PermissionDefinition(
            id=payload.id,
            name=payload.name,
            description=payload.description,
            category=payload.category,
        )
        config.available_permissions.append(definition)
        await self._write(config)
        logger.info("Added permission id=%s", definition.id)
        return definition

    async def delete_permission(self, permission_id: str) -> None:
        if permission_id in role_catalog.BUILT_IN_PERMISSION_IDS:
            raise ValidationError("Cannot delete built-in permissions")

        config = await self._repository.load()
        if not any(p.id == permission_id for p in config.available_permissions):
            raise NotFoundError("Permission not found")

        config.available_permissions = [
            p for p in config.available_permissions if p.id != permission_id
        ]
        for mapping in config.discord_role_mappings:
            if permission_id in mapping.permissions:
                mapping.permissions = [p for p in mapping.permissions if p != permission_id]
                mapping.updated_at = self._now()
        await self._write(config)
        logger.info("Deleted permission id=%s", permission_id)

    async def resolve_member_roles(
        self, role_ids: Iterable[str], settings: Settings
    ) -> ResolvedRole | None:
        """Pick the internal role for a guild member.

        The highest-priority active mapping whose Discord role the member
        holds wins; grants from several mappings are never merged. Without
        a match, the DISCORD_*_ROLE_ID settings are consulted in
        super-admin, overseer, all-others order.
        """
        held = set(role_ids)
        config = await self.get_config()
        for mapping in config.active_mappings():
            if mapping.discord_role_id in held:
                return ResolvedRole(
                    role=mapping.internal_role,
                    permissions=list(mapping.permissions),
                    role_name=mapping.role_name,
                    role_mapping_id=mapping.id,
                    page_permissions=list(mapping.page_permissions) or None,
                )

        legacy = (
            (settings.discord_superadmin_role_id, InternalRole.SUPER_ADMIN,
             role_catalog.SUPER_ADMIN_PERMISSIONS, "Super Admin"),
            (settings.discord_subdiv_role_id, InternalRole.SUBDIVISION_OVERSEER,
             role_catalog.SUBDIVISION_OVERSEER_PERMISSIONS, "Subdivision Overseer"),
            (settings.discord_allothers_role_id, InternalRole.CUSTOM,
             role_catalog.ALL_OTHERS_PERMISSIONS, "Staff"),
        )
        for role_id, role, permissions, role_name in legacy:
            if role_id and role_id in held:
                return ResolvedRole(role=role, permissions=list(permissions), role_name=role_name)
        return None

    async def _write(self, config: RolesConfig) -> None:
        await self._repository.save(config)
        self._cache.invalidate(ROLES_CONFIG_CACHE_KEY)


def _validate_role_id(discord_role_id: str) -> None:
    try:
        role_catalog.validate_discord_role_id(discord_role_id)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _ensure_unique_role_id(
    config: RolesConfig, discord_role_id: str, exclude_id: str | None = None
) -> None:
    for mapping in config.active_mappings():
        if mapping.id != exclude_id and mapping.discord_role_id == discord_role_id:
            raise ConflictError("A mapping for this Discord Role ID already exists")
