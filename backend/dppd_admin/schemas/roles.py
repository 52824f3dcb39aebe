from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field

from .base import CamelModel


class InternalRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    SUBDIVISION_OVERSEER = "subdivision_overseer"
    CUSTOM = "custom"


class PermissionAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    MANAGE = "manage"
    EXPORT = "export"
    IMPORT = "import"
    BULK_EDIT = "bulk_edit"
    ARCHIVE = "archive"
    RESTORE = "restore"


class SubAction(str, Enum):
    VIEW_LIST = "view_list"
    VIEW_DETAILS = "view_details"
    VIEW_HISTORY = "view_history"
    VIEW_ANALYTICS = "view_analytics"
    VIEW_SENSITIVE = "view_sensitive"
    CREATE_DRAFT = "create_draft"
    CREATE_PUBLISH = "create_publish"
    CREATE_TEMPLATE = "create_template"
    EDIT_CONTENT = "edit_content"
    EDIT_METADATA = "edit_metadata"
    EDIT_STATUS = "edit_status"
    EDIT_PERMISSIONS = "edit_permissions"
    EDIT_SETTINGS = "edit_settings"
    DELETE_SOFT = "delete_soft"
    DELETE_PERMANENT = "delete_permanent"
    DELETE_BULK = "delete_bulk"
    MANAGE_USERS = "manage_users"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_INTEGRATIONS = "manage_integrations"
    MANAGE_WEBHOOKS = "manage_webhooks"


class ConditionType(str, Enum):
    OWN_ITEMS_ONLY = "own_items_only"
    MAX_PER_DAY = "max_per_day"
    REQUIRES_APPROVAL = "requires_approval"
    TIME_RESTRICTED = "time_restricted"
    REQUIRES_2FA = "requires_2fa"
    IP_WHITELIST = "ip_whitelist"
    SUBDIVISION_ONLY = "subdivision_only"


class OwnItemsOnlyCondition(CamelModel):
    type: Literal["own_items_only"] = "own_items_only"
    value: str | int | bool | None = None
    description: str | None = None


class MaxPerDayCondition(CamelModel):
    type: Literal["max_per_day"] = "max_per_day"
    value: int | None = Field(default=None, ge=0)
    description: str | None = None


class RequiresApprovalCondition(CamelModel):
    type: Literal["requires_approval"] = "requires_approval"
    value: str | int | bool | None = None
    description: str | None = None


class TimeRestrictedCondition(CamelModel):
    type: Literal["time_restricted"] = "time_restricted"
    value: str | int | bool | None = None
    description: str | None = None


class RequiresTwoFactorCondition(CamelModel):
    type: Literal["requires_2fa"] = "requires_2fa"
    value: str | int | bool | None = None
    description: str | None = None


class IpWhitelistCondition(CamelModel):
    type: Literal["ip_whitelist"] = "ip_whitelist"
    allowed_ips: list[str] = Field(default_factory=list)
    value: str | int | bool | None = None
    description: str | None = None


class SubdivisionOnlyCondition(CamelModel):
    type: Literal["subdivision_only"] = "subdivision_only"
    subdivision_ids: list[str] = Field(default_factory=list)
    value: str | int | bool | None = None
    description: str | None = None


PermissionCondition = Annotated[
    Union[
        OwnItemsOnlyCondition,
        MaxPerDayCondition,
        RequiresApprovalCondition,
        TimeRestrictedCondition,
        RequiresTwoFactorCondition,
        IpWhitelistCondition,
        SubdivisionOnlyCondition,
    ],
    Field(discriminator="type"),
]


class AllowedHours(CamelModel):
    start: str
    end: str


class TimeRestriction(CamelModel):
    # 0 is Sunday
    allowed_days: list[Annotated[int, Field(ge=0, le=6)]] | None = None
    allowed_hours: list[AllowedHours] | None = None
    timezone: str | None = None


class QuantityLimit(CamelModel):
    type: Literal["per_hour", "per_day", "per_week", "per_month", "total"]
    action: PermissionAction
    limit: int = Field(..., ge=0)


class Restrictions(CamelModel):
    allowed_fields: list[str] | None = None
    blocked_fields: list[str] | None = None
    conditions: list[PermissionCondition] | None = None
    time_restrictions: TimeRestriction | None = None
    limits: list[QuantityLimit] | None = None


class PagePermission(CamelModel):
    page_id: str = Field(..., min_length=1)
    actions: list[PermissionAction] = Field(default_factory=list)
    sub_actions: list[SubAction] | None = None
    restrictions: Restrictions | None = None


class PermissionDefinition(CamelModel):
    id: str
    name: str
    description: str = ""
    category: Literal["content", "webhook", "admin", "other"] = "other"


class RestrictableField(CamelModel):
    id: str
    name: str
    description: str = ""
    for_actions: list[PermissionAction] | None = None
    sensitive: bool = False


class PageDefinition(CamelModel):
    id: str
    name: str
    available_actions: list[PermissionAction] = Field(default_factory=list)
    available_sub_actions: list[SubAction] | None = None
    restrictable_fields: list[RestrictableField] = Field(default_factory=list)
    available_conditions: list[ConditionType] = Field(default_factory=list)
    supports_time_restrictions: bool = False
    supports_limits: bool = False
    notes: str | None = None


class RoleMapping(CamelModel):
    id: str
    discord_role_id: str
    role_name: str
    internal_role: InternalRole = InternalRole.CUSTOM
    permissions: list[str] = Field(default_factory=list)
    page_permissions: list[PagePermission] = Field(default_factory=list)
    priority: int = 0
    description: str = ""
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def page_permission(self, page_id: str) -> PagePermission | None:
        for page_permission in self.page_permissions:
            if page_permission.page_id == page_id:
                return page_permission
        return None


class RolesConfig(CamelModel):
    discord_role_mappings: list[RoleMapping] = Field(default_factory=list)
    available_permissions: list[PermissionDefinition] = Field(default_factory=list)
    page_definitions: list[PageDefinition] = Field(default_factory=list)

    def active_mappings(self) -> list[RoleMapping]:
        """Active mappings, highest priority first."""
        return sorted(
            (mapping for mapping in self.discord_role_mappings if mapping.is_active),
            key=lambda mapping: mapping.priority,
            reverse=True,
        )

    def find_mapping(self, mapping_id: str) -> RoleMapping | None:
        for mapping in self.discord_role_mappings:
            if mapping.id == mapping_id:
                return mapping
        return None


class ResolvedRole(CamelModel):
    """Outcome of mapping a guild member's Discord roles to an internal role."""

    role: InternalRole
    permissions: list[str] = Field(default_factory=list)
    role_name: str
    role_mapping_id: str | None = None
    page_permissions: list[PagePermission] | None = None


class RoleMappingCreate(CamelModel):
    discord_role_id: str
    role_name: str = Field(..., min_length=1, max_length=100)
    internal_role: InternalRole = InternalRole.CUSTOM
    permissions: list[str] = Field(default_factory=list)
    page_permissions: list[PagePermission] = Field(default_factory=list)
    priority: int | None = None
    description: str = ""
    is_active: bool = True


class RoleMappingUpdate(CamelModel):
    discord_role_id: str | None = None
    role_name: str | None = Field(default=None, min_length=1, max_length=100)
    internal_role: InternalRole | None = None
    permissions: list[str] | None = None
    page_permissions: list[PagePermission] | None = None
    priority: int | None = None
    description: str | None = None
    is_active: bool | None = None


class RoleMappingView(CamelModel):
    id: str
    discord_role_id_masked: str
    role_name: str
    internal_role: InternalRole
    permissions: list[str]
    page_permissions: list[PagePermission]
    priority: int
    description: str
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RolesConfigView(CamelModel):
    discord_role_mappings: list[RoleMappingView]
    available_permissions: list[PermissionDefinition]
    page_definitions: list[PageDefinition]


class PermissionDefinitionCreate(CamelModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    category: Literal["content", "webhook", "admin", "other"] = "other"


class PermissionCheckResult(CamelModel):
    allowed: bool
    reason: str | None = None
    restrictions: Restrictions | None = None
    requires_approval: bool = False
    is_2fa_required: bool = Field(default=False, alias="is2faRequired")
    is_time_restricted: bool = False


class PermissionCheckRequest(CamelModel):
    page_id: str = Field(..., min_length=1)
    action: PermissionAction
    item_owner_id: str | None = None
    field_id: str | None = None
    subdivision_id: str | None = None


class PageAccessSummary(CamelModel):
    page_id: str
    page_name: str
    actions: list[PermissionAction]
    sub_actions: list[SubAction] = Field(default_factory=list)
    allowed_fields: list[str] | None = None
    blocked_fields: list[str] | None = None
    conditions: list[ConditionType] = Field(default_factory=list)
    has_restrictions: bool = False
    has_field_restrictions: bool = False
    has_time_restrictions: bool = False
    has_limits: bool = False


class PageAccessDetail(CamelModel):
    page_id: str
    page_name: str
    can_access: bool
    actions: list[PermissionAction]
    sub_actions: list[SubAction]
    allowed_fields: list[str] | None = None
    blocked_fields: list[str] | None = None
    time_restrictions: TimeRestriction | None = None
    limits: list[QuantityLimit] | None = None
    conditions: list[PermissionCondition] = Field(default_factory=list)


class PermissionReport(CamelModel):
    """Every configured page with what the user may do on it."""

    user_id: str
    username: str
    role: InternalRole
    total_pages: int
    accessible_pages: int
    pages: list[PageAccessDetail]
