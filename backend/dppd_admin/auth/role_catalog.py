"""
Built-in permission catalog for the admin panel.

Defines:
- the coarse permission ids every role configuration starts with
- the admin pages and what can be restricted on each
- the legacy page -> coarse permission table used when a user has no
  page-level grant
- the fixed permission lists behind the environment-configured Discord
  role ids (pre role-mapping logins)
- validators for role-mapping and permission input

Stored configurations gain any entry missing from these defaults on load,
so adding a page or permission here needs no data migration.
"""
from __future__ import annotations

import re
from typing import Final

from ..schemas.roles import (
    ConditionType,
    PageDefinition,
    PermissionAction,
    PermissionDefinition,
    RestrictableField,
    SubAction,
)

DISCORD_ROLE_ID_PATTERN: Final = re.compile(r"^\d{17,19}$")
PERMISSION_ID_PATTERN: Final = re.compile(r"^[a-z0-9-]+$")


# ============================================================================
# COARSE PERMISSIONS
# ============================================================================

DEFAULT_PERMISSIONS: Final[tuple[PermissionDefinition, ...]] = (
    PermissionDefinition(id="warehouse", name="Warehouse", description="Manage inventory & images", category="content"),
    PermissionDefinition(id="events", name="Events", description="Manage community events", category="content"),
    PermissionDefinition(id="resources", name="Resources", description="Manage department resources", category="content"),
    PermissionDefinition(id="uniforms", name="Uniforms", description="Manage uniform inventory", category="content"),
    PermissionDefinition(id="theme-settings", name="Theme Settings", description="Seasonal themes & effects", category="content"),
    PermissionDefinition(id="department-data", name="Department Data", description="Awards & Chain of Command", category="content"),
    PermissionDefinition(
        id="department-data-subdivisions",
        name="Subdivision Data Only",
        description="Only subdivision leadership in department data",
        category="content",
    ),
    PermissionDefinition(id="subdivisions", name="Subdivisions", description="Manage division availability", category="content"),
    PermissionDefinition(id="footer", name="Footer Settings", description="Customize site footer", category="content"),
    PermissionDefinition(id="user-management", name="User Management", description="Manage admin accounts", category="admin"),
    PermissionDefinition(
        id="roles-management",
        name="Roles Management",
        description="Manage Discord roles and permissions",
        category="admin",
    ),
    PermissionDefinition(id="webhook-settings", name="Webhook Settings", description="Discord webhook configuration", category="webhook"),
    PermissionDefinition(
        id="chain-of-command-webhook",
        name="Chain of Command Webhook",
        description="Discord CoC auto-poster",
        category="webhook",
    ),
    PermissionDefinition(
        id="subdivision-leadership-webhook",
        name="Subdivision Leadership Webhook",
        description="Discord subdivision poster",
        category="webhook",
    ),
    PermissionDefinition(id="arrest-reports", name="Arrest Reports", description="Manage case statuses", category="content"),
    PermissionDefinition(id="form-builder", name="Form Builder", description="Build forms and review submissions", category="content"),
)

BUILT_IN_PERMISSION_IDS: Final[frozenset[str]] = frozenset(p.id for p in DEFAULT_PERMISSIONS)


# ============================================================================
# LEGACY GRANTS
# ============================================================================

# Page id -> coarse permission that grants view/create/edit on it
LEGACY_PAGE_PERMISSIONS: Final[dict[str, str]] = {
    "garage": "warehouse",
    "events": "events",
    "resources": "resources",
    "uniforms": "uniforms",
    "theme-settings": "theme-settings",
    "department-data": "department-data",
    "subdivisions": "subdivisions",
    "footer": "footer",
    "user-management": "user-management",
    "roles-management": "roles-management",
    "webhook-settings": "webhook-settings",
    "chain-of-command-webhook": "chain-of-command-webhook",
    "subdivision-leadership-webhook": "subdivision-leadership-webhook",
    "arrest-reports": "arrest-reports",
    "form-builder": "form-builder",
    "arrests-database": "arrest-reports",
    "images": "warehouse",
}

LEGACY_GRANTED_ACTIONS: Final[frozenset[PermissionAction]] = frozenset({
    PermissionAction.VIEW,
    PermissionAction.EDIT,
    PermissionAction.CREATE,
})

SUBDIVISION_OVERSEER_PAGES: Final[frozenset[str]] = frozenset({"subdivisions", "department-data"})
SUBDIVISION_OVERSEER_ACTIONS: Final[frozenset[PermissionAction]] = frozenset({
    PermissionAction.VIEW,
    PermissionAction.EDIT,
})
SUBDIVISION_OVERSEER_FIELDS: Final[tuple[str, ...]] = ("subdivision_leadership", "availability")

# Sub-actions implied by each action when a page permission lists none
DEFAULT_SUB_ACTIONS: Final[dict[PermissionAction, tuple[SubAction, ...]]] = {
    PermissionAction.VIEW: (SubAction.VIEW_LIST, SubAction.VIEW_DETAILS),
    PermissionAction.CREATE: (SubAction.CREATE_PUBLISH,),
    PermissionAction.EDIT: (SubAction.EDIT_CONTENT, SubAction.EDIT_STATUS),
    PermissionAction.DELETE: (SubAction.DELETE_SOFT,),
    PermissionAction.MANAGE: (SubAction.MANAGE_SETTINGS,),
}

# Permission lists granted by the DISCORD_*_ROLE_ID environment fallbacks
SUPER_ADMIN_PERMISSIONS: Final[tuple[str, ...]] = (
    "warehouse",
    "events",
    "resources",
    "uniforms",
    "theme-settings",
    "department-data",
    "subdivisions",
    "user-management",
)
SUBDIVISION_OVERSEER_PERMISSIONS: Final[tuple[str, ...]] = ("department-data-subdivisions", "subdivisions")
ALL_OTHERS_PERMISSIONS: Final[tuple[str, ...]] = ("warehouse", "events", "resources", "uniforms")


# ============================================================================
# PAGES
# ============================================================================

_CRUD: Final = [
    PermissionAction.VIEW,
    PermissionAction.CREATE,
    PermissionAction.EDIT,
    PermissionAction.DELETE,
]
_SETTINGS: Final = [PermissionAction.VIEW, PermissionAction.EDIT, PermissionAction.MANAGE]

DEFAULT_PAGE_DEFINITIONS: Final[tuple[PageDefinition, ...]] = (
    PageDefinition(
        id="garage",
        name="Garage / Warehouse",
        available_actions=[*_CRUD, PermissionAction.MANAGE],
        available_conditions=[ConditionType.OWN_ITEMS_ONLY, ConditionType.REQUIRES_APPROVAL],
    ),
    PageDefinition(
        id="events",
        name="Events",
        available_actions=[*_CRUD, PermissionAction.ARCHIVE],
        available_conditions=[
            ConditionType.OWN_ITEMS_ONLY,
            ConditionType.MAX_PER_DAY,
            ConditionType.REQUIRES_APPROVAL,
        ],
    ),
    PageDefinition(id="resources", name="Resources", available_actions=list(_CRUD)),
    PageDefinition(id="uniforms", name="Uniforms", available_actions=list(_CRUD)),
    PageDefinition(id="theme-settings", name="Theme Settings", available_actions=list(_SETTINGS)),
    PageDefinition(
        id="department-data",
        name="Department Data",
        available_actions=list(_CRUD),
        restrictable_fields=[
            RestrictableField(id="awards", name="Awards"),
            RestrictableField(id="chain_of_command", name="Chain of Command"),
            RestrictableField(
                id="subdivision_leadership",
                name="Subdivision Leadership",
                description="Leadership listings of each subdivision",
            ),
        ],
    ),
    PageDefinition(
        id="subdivisions",
        name="Subdivisions",
        available_actions=list(_CRUD),
        restrictable_fields=[
            RestrictableField(id="name", name="Name"),
            RestrictableField(id="availability", name="Availability", description="Open / closed for applications"),
            RestrictableField(id="details", name="Details"),
        ],
        available_conditions=[ConditionType.SUBDIVISION_ONLY],
    ),
    PageDefinition(id="footer", name="Footer", available_actions=list(_SETTINGS)),
    PageDefinition(
        id="user-management",
        name="User Management",
        available_actions=[*_CRUD, PermissionAction.MANAGE],
        available_conditions=[ConditionType.IP_WHITELIST, ConditionType.REQUIRES_2FA],
    ),
    PageDefinition(id="roles-management", name="Roles Management", available_actions=list(_SETTINGS)),
    PageDefinition(id="webhook-settings", name="Webhook Settings", available_actions=list(_SETTINGS)),
    PageDefinition(id="chain-of-command-webhook", name="Chain of Command Webhook", available_actions=list(_SETTINGS)),
    PageDefinition(
        id="subdivision-leadership-webhook",
        name="Subdivision Leadership Webhook",
        available_actions=list(_SETTINGS),
    ),
    PageDefinition(
        id="arrest-reports",
        name="Arrest Reports",
        available_actions=[*_CRUD, PermissionAction.EXPORT],
        available_conditions=[ConditionType.OWN_ITEMS_ONLY, ConditionType.REQUIRES_APPROVAL],
    ),
    PageDefinition(
        id="arrests-database",
        name="Arrests Database",
        available_actions=[*_CRUD, PermissionAction.EXPORT],
        available_conditions=[ConditionType.TIME_RESTRICTED],
    ),
    PageDefinition(
        id="form-builder",
        name="Form Builder",
        available_actions=[*_CRUD, PermissionAction.EXPORT],
        available_conditions=[ConditionType.REQUIRES_APPROVAL],
    ),
    PageDefinition(id="images", name="Images", available_actions=list(_CRUD)),
)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_discord_role_id(discord_role_id: str) -> None:
    """
    Raises:
        ValueError: If the id is not a 17-19 digit snowflake
    """
    if not DISCORD_ROLE_ID_PATTERN.match(discord_role_id or ""):
        raise ValueError("Invalid Discord Role ID format. Should be a 17-19 digit number.")


def validate_permission_id(permission_id: str) -> None:
    """
    Raises:
        ValueError: If the id has characters other than lowercase letters, digits and hyphens
    """
    if not PERMISSION_ID_PATTERN.match(permission_id or ""):
        raise ValueError(
            "Permission ID must contain only lowercase letters, numbers, and hyphens"
        )


def mask_discord_role_id(discord_role_id: str) -> str:
    return f"***{discord_role_id[-8:]}" if discord_role_id else ""
