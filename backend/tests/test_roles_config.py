from datetime import datetime, timedelta, timezone

import pytest

from dppd_admin.auth import role_catalog
from dppd_admin.config import Settings
from dppd_admin.domain.errors import StorageError
from dppd_admin.errors import ConflictError, NotFoundError, ValidationError
from dppd_admin.schemas.roles import (
    InternalRole,
    PagePermission,
    PermissionAction,
    PermissionDefinitionCreate,
    RoleMappingCreate,
    RoleMappingUpdate,
)
from dppd_admin.schemas.session import AdminUser
from dppd_admin.services.cache import TTLCache
from dppd_admin.services.permission_evaluator import PermissionEvaluator
from dppd_admin.services.roles_config import (
    ROLES_CONFIG_CACHE_KEY,
    RolesConfigRepository,
    RolesConfigService,
)
from tests.store_helpers import FakeClock, InMemoryBlobStore

ROLE_A = "111111111111111111"
ROLE_B = "222222222222222222"


class StepClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store() -> InMemoryBlobStore:
    return InMemoryBlobStore("roles-config")


@pytest.fixture
def cache() -> TTLCache:
    return TTLCache(clock=FakeClock())


@pytest.fixture
def service(store: InMemoryBlobStore, cache: TTLCache) -> RolesConfigService:
    return RolesConfigService(RolesConfigRepository(store), cache, now=StepClock())


def create_payload(discord_role_id: str = ROLE_A, **overrides) -> RoleMappingCreate:
    data = {
        "discord_role_id": discord_role_id,
        "role_name": "Patrol",
        "permissions": ["events"],
    }
    data.update(overrides)
    return RoleMappingCreate(**data)


@pytest.mark.anyio
async def test_empty_store_loads_seeded_defaults(service: RolesConfigService) -> None:
    config = await service.get_config()

    assert config.discord_role_mappings == []
    assert {p.id for p in config.available_permissions} == role_catalog.BUILT_IN_PERMISSION_IDS
    assert {p.id for p in config.page_definitions} == {
        p.id for p in role_catalog.DEFAULT_PAGE_DEFINITIONS
    }


@pytest.mark.anyio
async def test_stored_config_gains_missing_defaults(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    store.data["config"] = {
        "discordRoleMappings": [],
        "availablePermissions": [
            {"id": "custom-thing", "name": "Custom", "description": "", "category": "other"},
            {"id": "events", "name": "Renamed Events", "description": "", "category": "content"},
        ],
        "pageDefinitions": [{"id": "events", "name": "Events (custom)"}],
    }

    config = await service.get_config()

    names = {p.id: p.name for p in config.available_permissions}
    assert names["custom-thing"] == "Custom"
    assert names["events"] == "Renamed Events"
    assert role_catalog.BUILT_IN_PERMISSION_IDS <= set(names)
    pages = {p.id: p.name for p in config.page_definitions}
    assert pages["events"] == "Events (custom)"
    assert "arrests-database" in pages


@pytest.mark.anyio
async def test_read_failure_falls_back_to_defaults(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    store.fail_on.add("GET")

    config = await service.get_config()

    assert config.discord_role_mappings == []
    assert config.available_permissions


@pytest.mark.anyio
async def test_malformed_document_falls_back_to_defaults(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    store.data["config"] = {"discordRoleMappings": "not-a-list"}

    config = await service.get_config()

    assert config.discord_role_mappings == []


@pytest.mark.anyio
async def test_add_mapping_sets_defaults_and_timestamps(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    first = await service.add_mapping(create_payload())
    second = await service.add_mapping(create_payload(ROLE_B))

    assert first.id.startswith("role-")
    assert first.priority == 0
    assert second.priority == 1
    assert first.created_at == first.updated_at
    stored_ids = [m["id"] for m in store.data["config"]["discordRoleMappings"]]
    # Highest priority first
    assert stored_ids == [second.id, first.id]


@pytest.mark.anyio
async def test_explicit_priority_is_kept(service: RolesConfigService) -> None:
    mapping = await service.add_mapping(create_payload(priority=0))
    later = await service.add_mapping(create_payload(ROLE_B, priority=0))

    assert mapping.priority == 0
    assert later.priority == 0


@pytest.mark.anyio
@pytest.mark.parametrize("bad_id", ["", "1234", "12345678901234567890", "12345678901234567a"])
async def test_add_mapping_rejects_bad_role_id(
    service: RolesConfigService, bad_id: str
) -> None:
    with pytest.raises(ValidationError, match="17-19 digit"):
        await service.add_mapping(create_payload(bad_id))


@pytest.mark.anyio
async def test_duplicate_active_role_id_is_rejected(service: RolesConfigService) -> None:
    await service.add_mapping(create_payload())

    with pytest.raises(ConflictError):
        await service.add_mapping(create_payload())


@pytest.mark.anyio
async def test_inactive_mapping_does_not_block_reuse(service: RolesConfigService) -> None:
    retired = await service.add_mapping(create_payload(is_active=False))

    replacement = await service.add_mapping(create_payload())

    assert replacement.discord_role_id == retired.discord_role_id
    with pytest.raises(ConflictError):
        await service.update_mapping(retired.id, RoleMappingUpdate(is_active=True))


@pytest.mark.anyio
async def test_update_mapping(service: RolesConfigService) -> None:
    mapping = await service.add_mapping(create_payload())

    updated = await service.update_mapping(
        mapping.id,
        RoleMappingUpdate(
            role_name="Senior Patrol",
            page_permissions=[
                PagePermission(page_id="events", actions=[PermissionAction.VIEW])
            ],
        ),
    )

    assert updated.role_name == "Senior Patrol"
    assert updated.discord_role_id == ROLE_A
    assert updated.page_permissions[0].page_id == "events"
    assert updated.created_at == mapping.created_at
    assert updated.updated_at > mapping.updated_at


@pytest.mark.anyio
async def test_update_to_taken_role_id_is_rejected(service: RolesConfigService) -> None:
    await service.add_mapping(create_payload())
    other = await service.add_mapping(create_payload(ROLE_B))

    with pytest.raises(ConflictError):
        await service.update_mapping(other.id, RoleMappingUpdate(discord_role_id=ROLE_A))


@pytest.mark.anyio
async def test_unknown_mapping_is_not_found(service: RolesConfigService) -> None:
    with pytest.raises(NotFoundError):
        await service.update_mapping("role-missing", RoleMappingUpdate(role_name="x"))
    with pytest.raises(NotFoundError):
        await service.delete_mapping("role-missing")


@pytest.mark.anyio
async def test_delete_mapping(store: InMemoryBlobStore, service: RolesConfigService) -> None:
    mapping = await service.add_mapping(create_payload())

    await service.delete_mapping(mapping.id)

    assert store.data["config"]["discordRoleMappings"] == []


@pytest.mark.anyio
async def test_writes_do_not_overwrite_unreadable_config(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    store.data["config"] = {"discordRoleMappings": "not-a-list"}

    with pytest.raises(StorageError):
        await service.add_mapping(create_payload())
    assert store.data["config"] == {"discordRoleMappings": "not-a-list"}


@pytest.mark.anyio
async def test_list_masked_hides_full_role_id(service: RolesConfigService) -> None:
    await service.add_mapping(create_payload("123456789012345678"))

    view = await service.list_masked()
    document = view.to_document()

    assert view.discord_role_mappings[0].discord_role_id_masked == "***12345678"
    assert "123456789012345678" not in str(document)


@pytest.mark.anyio
async def test_add_and_delete_custom_permission(
    store: InMemoryBlobStore, service: RolesConfigService
) -> None:
    definition = await service.add_permission(
        PermissionDefinitionCreate(id="evidence-locker", name="Evidence Locker")
    )
    mapping = await service.add_mapping(
        create_payload(permissions=["events", "evidence-locker"])
    )

    await service.delete_permission(definition.id)

    config = await service.get_config()
    assert "evidence-locker" not in {p.id for p in config.available_permissions}
    assert config.find_mapping(mapping.id).permissions == ["events"]


@pytest.mark.anyio
async def test_permission_validation(service: RolesConfigService) -> None:
    with pytest.raises(ValidationError, match="lowercase"):
        await service.add_permission(PermissionDefinitionCreate(id="Bad_Id", name="Bad"))
    with pytest.raises(ConflictError):
        await service.add_permission(PermissionDefinitionCreate(id="events", name="Dup"))
    with pytest.raises(ValidationError, match="built-in"):
        await service.delete_permission("warehouse")
    with pytest.raises(NotFoundError):
        await service.delete_permission("never-added")


@pytest.mark.anyio
async def test_writes_invalidate_evaluator_cache(
    store: InMemoryBlobStore, cache: TTLCache, service: RolesConfigService
) -> None:
    evaluator = PermissionEvaluator(RolesConfigRepository(store), cache, ttl_seconds=60)
    mapping = await service.add_mapping(create_payload())
    user = AdminUser(
        id="discord-1",
        username="patrol",
        display_name="Patrol",
        role=InternalRole.CUSTOM,
        permissions=["events"],
        role_mapping_id=mapping.id,
    )
    assert (await evaluator.check_page_permission(user, "events", "delete")).allowed is False
    assert ROLES_CONFIG_CACHE_KEY in cache

    await service.update_mapping(
        mapping.id,
        RoleMappingUpdate(
            page_permissions=[
                PagePermission(page_id="events", actions=[PermissionAction.DELETE])
            ]
        ),
    )

    assert ROLES_CONFIG_CACHE_KEY not in cache
    assert (await evaluator.check_page_permission(user, "events", "delete")).allowed is True


@pytest.mark.anyio
async def test_resolve_member_roles_picks_highest_priority(service: RolesConfigService) -> None:
    await service.add_mapping(
        create_payload(ROLE_A, role_name="Low", priority=5, permissions=["events"])
    )
    high = await service.add_mapping(
        create_payload(
            ROLE_B,
            role_name="High",
            priority=10,
            internal_role=InternalRole.SUBDIVISION_OVERSEER,
            permissions=["subdivisions"],
            page_permissions=[{"pageId": "subdivisions", "actions": ["view", "edit"]}],
        )
    )

    resolved = await service.resolve_member_roles([ROLE_A, ROLE_B, "999"], Settings())

    assert resolved.role_mapping_id == high.id
    assert resolved.role == InternalRole.SUBDIVISION_OVERSEER
    assert resolved.permissions == ["subdivisions"]
    assert [p.page_id for p in resolved.page_permissions] == ["subdivisions"]


@pytest.mark.anyio
async def test_resolve_member_roles_skips_inactive(service: RolesConfigService) -> None:
    await service.add_mapping(create_payload(ROLE_A, is_active=False))

    assert await service.resolve_member_roles([ROLE_A], Settings()) is None


@pytest.mark.anyio
async def test_resolve_member_roles_uses_legacy_role_ids(service: RolesConfigService) -> None:
    settings = Settings(
        discord_superadmin_role_id="333333333333333333",
        discord_allothers_role_id="444444444444444444",
    )

    admin = await service.resolve_member_roles(
        ["444444444444444444", "333333333333333333"], settings
    )
    staff = await service.resolve_member_roles(["444444444444444444"], settings)

    assert admin.role == InternalRole.SUPER_ADMIN
    assert admin.role_mapping_id is None
    assert admin.page_permissions is None
    assert admin.permissions == list(role_catalog.SUPER_ADMIN_PERMISSIONS)
    assert staff.role == InternalRole.CUSTOM
    assert staff.permissions == list(role_catalog.ALL_OTHERS_PERMISSIONS)
    assert await service.resolve_member_roles(["555555555555555555"], settings) is None
