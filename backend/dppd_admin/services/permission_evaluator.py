"""Page-level permission checks for admin users.

Denials are returned as results with a reason; nothing here raises for an
authorization failure. The role configuration is read through the injected
TTLCache, and a configuration that cannot be read counts as "no page
permissions" so only the legacy grants remain.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from ..auth import role_catalog
from ..schemas.roles import (
    InternalRole,
    IpWhitelistCondition,
    MaxPerDayCondition,
    OwnItemsOnlyCondition,
    PageAccessDetail,
    PageAccessSummary,
    PageDefinition,
    PagePermission,
    PermissionAction,
    PermissionCheckResult,
    PermissionCondition,
    PermissionReport,
    QuantityLimit,
    RequiresApprovalCondition,
    RequiresTwoFactorCondition,
    Restrictions,
    RolesConfig,
    SubAction,
    SubdivisionOnlyCondition,
    TimeRestrictedCondition,
    TimeRestriction,
)
from ..schemas.session import AdminUser
from ..security.policies import resolve_or_deny
from .cache import TTLCache
from .roles_config import ROLES_CONFIG_CACHE_KEY, RolesConfigRepository

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60.0

NOT_AUTHENTICATED = "Not authenticated"
NO_PAGE_PERMISSION = "No permission for this page"


@dataclass(frozen=True)
class CheckContext:
    item_owner_id: str | None = None
    field_id: str | None = None
    client_ip: str | None = None
    subdivision_id: str | None = None


@dataclass(frozen=True)
class _ConditionOutcome:
    allowed: bool
    reason: str | None = None
    requires_approval: bool = False
    is_2fa_required: bool = False
    is_time_restricted: bool = False


_ALLOW = _ConditionOutcome(allowed=True)


def evaluate_condition(
    condition: PermissionCondition, user: AdminUser, context: CheckContext
) -> _ConditionOutcome:
    if isinstance(condition, OwnItemsOnlyCondition):
        # No owner id means the item does not exist yet (create)
        if context.item_owner_id and context.item_owner_id != user.id:
            return _ConditionOutcome(False, "You can only modify your own items")
        return _ALLOW
    if isinstance(condition, MaxPerDayCondition):
        # Daily quota is not tracked yet
        return _ALLOW
    if isinstance(condition, RequiresApprovalCondition):
        return _ConditionOutcome(True, requires_approval=True)
    if isinstance(condition, TimeRestrictedCondition):
        return _ConditionOutcome(True, is_time_restricted=True)
    if isinstance(condition, RequiresTwoFactorCondition):
        # Enrolment is not checked; the flag tells the caller to ask for a second factor
        return _ConditionOutcome(True, is_2fa_required=True)
    if isinstance(condition, IpWhitelistCondition):
        if condition.allowed_ips and context.client_ip not in condition.allowed_ips:
            return _ConditionOutcome(False, "Access denied from this IP address")
        return _ALLOW
    if isinstance(condition, SubdivisionOnlyCondition):
        if (
            context.subdivision_id
            and condition.subdivision_ids
            and context.subdivision_id not in condition.subdivision_ids
        ):
            return _ConditionOutcome(False, "Access restricted to specific subdivisions")
        return _ALLOW
    raise TypeError(f"Unhandled permission condition: {type(condition).__name__}")


class PermissionEvaluator:
    def __init__(
        self,
        repository: RolesConfigRepository,
        cache: TTLCache,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._ttl = ttl_seconds

    async def _config(self) -> RolesConfig | None:
        return await self._cache.get_or_load(
            ROLES_CONFIG_CACHE_KEY,
            self._ttl,
            lambda: resolve_or_deny(self._repository.load, what="roles config"),
        )

    async def resolve_page_permission(
        self, user: AdminUser, page_id: str
    ) -> PagePermission | None:
        """Find the page permission granted to ``user`` for ``page_id``.

        Sessions created through a role mapping carry its id and only that
        mapping is consulted. Older sessions are matched to the first
        active mapping, by descending priority, with the same internal role
        and exactly the same permission set that defines the page.
        """
        config = await self._config()
        if config is None:
            return None

        if user.role_mapping_id:
            mapping = config.find_mapping(user.role_mapping_id)
            if mapping is None or not mapping.is_active:
                return None
            return mapping.page_permission(page_id)

        held = set(user.permissions)
        for mapping in config.active_mappings():
            if mapping.internal_role != user.role:
                continue
            if len(mapping.permissions) != len(user.permissions) or set(mapping.permissions) != held:
                continue
            page_permission = mapping.page_permission(page_id)
            if page_permission is not None:
                return page_permission
        return None

    async def check_page_permission(
        self,
        user: AdminUser | None,
        page_id: str,
        action: PermissionAction | str,
        *,
        item_owner_id: str | None = None,
        field_id: str | None = None,
        client_ip: str | None = None,
        subdivision_id: str | None = None,
    ) -> PermissionCheckResult:
        if user is None:
            return PermissionCheckResult(allowed=False, reason=NOT_AUTHENTICATED)
        try:
            action = PermissionAction(action)
        except ValueError:
            return PermissionCheckResult(allowed=False, reason=f"Unknown action '{action}'")
        if user.is_super_admin:
            return PermissionCheckResult(allowed=True)

        context = CheckContext(
            item_owner_id=item_owner_id,
            field_id=field_id,
            client_ip=client_ip,
            subdivision_id=subdivision_id,
        )

        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission is None:
            return self._legacy_check(user, page_id, action)

        if action not in page_permission.actions:
            return PermissionCheckResult(
                allowed=False,
                reason=f"Action '{action.value}' not permitted on this page",
            )

        restrictions = page_permission.restrictions
        if context.field_id and restrictions:
            # Same rule as can_access_field: blocked wins over allowed
            if restrictions.blocked_fields and context.field_id in restrictions.blocked_fields:
                return PermissionCheckResult(
                    allowed=False,
                    reason=f"Field '{context.field_id}' is blocked",
                )
            if restrictions.allowed_fields is not None and context.field_id not in restrictions.allowed_fields:
                return PermissionCheckResult(
                    allowed=False,
                    reason=f"Not permitted to modify field '{context.field_id}'",
                )

        conditions = restrictions.conditions if restrictions and restrictions.conditions else []
        requires_approval = False
        is_2fa_required = False
        is_time_restricted = False
        for condition in conditions:
            outcome = evaluate_condition(condition, user, context)
            if not outcome.allowed:
                logger.info(
                    "Condition denied user=%s page=%s action=%s condition=%s",
                    user.id,
                    page_id,
                    action.value,
                    condition.type,
                )
                return PermissionCheckResult(allowed=False, reason=outcome.reason)
            requires_approval = requires_approval or outcome.requires_approval
            is_2fa_required = is_2fa_required or outcome.is_2fa_required
            is_time_restricted = is_time_restricted or outcome.is_time_restricted

        return PermissionCheckResult(
            allowed=True,
            restrictions=restrictions,
            requires_approval=requires_approval,
            is_2fa_required=is_2fa_required,
            is_time_restricted=is_time_restricted,
        )

    def _legacy_check(
        self, user: AdminUser, page_id: str, action: PermissionAction
    ) -> PermissionCheckResult:
        legacy_permission = role_catalog.LEGACY_PAGE_PERMISSIONS.get(page_id)
        if (
            legacy_permission
            and legacy_permission in user.permissions
            and action in role_catalog.LEGACY_GRANTED_ACTIONS
        ):
            return PermissionCheckResult(allowed=True)

        if (
            user.role == InternalRole.SUBDIVISION_OVERSEER
            and page_id in role_catalog.SUBDIVISION_OVERSEER_PAGES
            and action in role_catalog.SUBDIVISION_OVERSEER_ACTIONS
        ):
            return PermissionCheckResult(
                allowed=True,
                restrictions=Restrictions(
                    allowed_fields=list(role_catalog.SUBDIVISION_OVERSEER_FIELDS)
                ),
            )
        return PermissionCheckResult(allowed=False, reason=NO_PAGE_PERMISSION)

    async def can_access_page(
        self, user: AdminUser | None, page_id: str, *, client_ip: str | None = None
    ) -> bool:
        result = await self.check_page_permission(
            user, page_id, PermissionAction.VIEW, client_ip=client_ip
        )
        return result.allowed

    async def get_allowed_actions(
        self, user: AdminUser | None, page_id: str
    ) -> list[PermissionAction]:
        if user is None:
            return []
        if user.is_super_admin:
            return list(PermissionAction)

        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission is not None:
            return list(page_permission.actions)

        allowed: set[PermissionAction] = set()
        legacy_permission = role_catalog.LEGACY_PAGE_PERMISSIONS.get(page_id)
        if legacy_permission and legacy_permission in user.permissions:
            allowed |= role_catalog.LEGACY_GRANTED_ACTIONS
        if user.role == InternalRole.SUBDIVISION_OVERSEER and page_id in role_catalog.SUBDIVISION_OVERSEER_PAGES:
            allowed |= role_catalog.SUBDIVISION_OVERSEER_ACTIONS
        # Keep the enum's declaration order
        return [action for action in PermissionAction if action in allowed]

    async def get_allowed_fields(
        self, user: AdminUser | None, page_id: str
    ) -> list[str] | None:
        """Field ids the user may modify, or ``None`` when every field is allowed."""
        if user is None:
            return []
        if user.is_super_admin:
            return None

        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission and page_permission.restrictions:
            if page_permission.restrictions.allowed_fields is not None:
                return list(page_permission.restrictions.allowed_fields)

        if user.role == InternalRole.SUBDIVISION_OVERSEER and page_id in role_catalog.SUBDIVISION_OVERSEER_PAGES:
            return list(role_catalog.SUBDIVISION_OVERSEER_FIELDS)
        return None

    async def get_blocked_fields(
        self, user: AdminUser | None, page_id: str
    ) -> list[str] | None:
        if user is None or user.is_super_admin:
            return None
        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission and page_permission.restrictions:
            blocked = page_permission.restrictions.blocked_fields
            return list(blocked) if blocked is not None else None
        return None

    async def can_access_field(
        self, user: AdminUser | None, page_id: str, field_id: str
    ) -> bool:
        if user is None:
            return False
        if user.is_super_admin:
            return True

        blocked = await self.get_blocked_fields(user, page_id)
        if blocked and field_id in blocked:
            return False
        allowed = await self.get_allowed_fields(user, page_id)
        return allowed is None or field_id in allowed

    async def get_allowed_sub_actions(
        self, user: AdminUser | None, page_id: str
    ) -> list[SubAction]:
        """Sub-actions listed on the page permission, else the defaults of each allowed action."""
        if user is None:
            return []
        if user.is_super_admin:
            return list(SubAction)

        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission is not None and page_permission.sub_actions is not None:
            return list(page_permission.sub_actions)

        sub_actions: list[SubAction] = []
        for action in await self.get_allowed_actions(user, page_id):
            sub_actions.extend(role_catalog.DEFAULT_SUB_ACTIONS.get(action, ()))
        return sub_actions

    async def check_sub_action_permission(
        self, user: AdminUser | None, page_id: str, sub_action: SubAction | str
    ) -> bool:
        try:
            sub_action = SubAction(sub_action)
        except ValueError:
            return False
        return sub_action in await self.get_allowed_sub_actions(user, page_id)

    async def get_time_restrictions(
        self, user: AdminUser | None, page_id: str
    ) -> TimeRestriction | None:
        if user is None or user.is_super_admin:
            return None
        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission and page_permission.restrictions:
            return page_permission.restrictions.time_restrictions
        return None

    async def get_quantity_limits(
        self, user: AdminUser | None, page_id: str
    ) -> list[QuantityLimit] | None:
        if user is None or user.is_super_admin:
            return None
        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission and page_permission.restrictions and page_permission.restrictions.limits:
            return list(page_permission.restrictions.limits)
        return None

    async def check_many(
        self,
        user: AdminUser | None,
        checks: Iterable[tuple[str, PermissionAction | str]],
        *,
        client_ip: str | None = None,
    ) -> dict[str, PermissionCheckResult]:
        """Results keyed ``"<page_id>:<action>"``."""
        results: dict[str, PermissionCheckResult] = {}
        for page_id, action in checks:
            key_action = action.value if isinstance(action, PermissionAction) else action
            results[f"{page_id}:{key_action}"] = await self.check_page_permission(
                user, page_id, action, client_ip=client_ip
            )
        return results

    async def _page_definitions(self) -> list[PageDefinition]:
        config = await self._config()
        if config is not None:
            return config.page_definitions
        return list(role_catalog.DEFAULT_PAGE_DEFINITIONS)

    async def _conditions(
        self, user: AdminUser, page_id: str
    ) -> list[PermissionCondition]:
        if user.is_super_admin:
            return []
        page_permission = await self.resolve_page_permission(user, page_id)
        if page_permission and page_permission.restrictions:
            return list(page_permission.restrictions.conditions or [])
        return []

    async def get_permission_summary(
        self, user: AdminUser | None
    ) -> list[PageAccessSummary]:
        if user is None:
            return []

        summary: list[PageAccessSummary] = []
        for page in await self._page_definitions():
            actions = await self.get_allowed_actions(user, page.id)
            if not actions:
                continue
            allowed_fields = await self.get_allowed_fields(user, page.id)
            blocked_fields = await self.get_blocked_fields(user, page.id)
            time_restrictions = await self.get_time_restrictions(user, page.id)
            limits = await self.get_quantity_limits(user, page.id)
            conditions = [condition.type for condition in await self._conditions(user, page.id)]
            has_field_restrictions = allowed_fields is not None or blocked_fields is not None
            summary.append(
                PageAccessSummary(
                    page_id=page.id,
                    page_name=page.name,
                    actions=actions,
                    sub_actions=await self.get_allowed_sub_actions(user, page.id),
                    allowed_fields=allowed_fields,
                    blocked_fields=blocked_fields,
                    conditions=conditions,
                    has_restrictions=has_field_restrictions or bool(conditions),
                    has_field_restrictions=has_field_restrictions,
                    has_time_restrictions=time_restrictions is not None,
                    has_limits=bool(limits),
                )
            )
        return summary

    async def get_detailed_permission_report(
        self, user: AdminUser | None, *, client_ip: str | None = None
    ) -> PermissionReport | None:
        """Every configured page, accessible or not, for auditing a user's grants."""
        if user is None:
            return None

        pages: list[PageAccessDetail] = []
        for page in await self._page_definitions():
            pages.append(
                PageAccessDetail(
                    page_id=page.id,
                    page_name=page.name,
                    can_access=await self.can_access_page(user, page.id, client_ip=client_ip),
                    actions=await self.get_allowed_actions(user, page.id),
                    sub_actions=await self.get_allowed_sub_actions(user, page.id),
                    allowed_fields=await self.get_allowed_fields(user, page.id),
                    blocked_fields=await self.get_blocked_fields(user, page.id),
                    time_restrictions=await self.get_time_restrictions(user, page.id),
                    limits=await self.get_quantity_limits(user, page.id),
                    conditions=await self._conditions(user, page.id),
                )
            )
        return PermissionReport(
            user_id=user.id,
            username=user.username,
            role=user.role,
            total_pages=len(pages),
            accessible_pages=sum(1 for page in pages if page.can_access),
            pages=pages,
        )
