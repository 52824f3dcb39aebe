from fastapi import APIRouter, Depends, Request

from ..dependencies import get_current_user, get_permission_evaluator
from ..schemas.roles import (
    PageAccessSummary,
    PermissionCheckRequest,
    PermissionCheckResult,
    PermissionReport,
)
from ..schemas.session import AdminUser
from ..services.permission_evaluator import PermissionEvaluator
from ..utils.request import client_ip

router = APIRouter(prefix="/api/permissions", tags=["permissions"])


@router.get("/me", response_model=list[PageAccessSummary])
async def my_permissions(
    user: AdminUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
) -> list[PageAccessSummary]:
    return await evaluator.get_permission_summary(user)


@router.get("/me/report", response_model=PermissionReport)
async def my_permission_report(
    request: Request,
    user: AdminUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
) -> PermissionReport:
    return await evaluator.get_detailed_permission_report(user, client_ip=client_ip(request))


@router.post("/check", response_model=PermissionCheckResult)
async def check_permission(
    payload: PermissionCheckRequest,
    request: Request,
    user: AdminUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
) -> PermissionCheckResult:
    """Evaluate one page action for the caller. Denials are 200 with ``allowed: false``."""
    return await evaluator.check_page_permission(
        user,
        payload.page_id,
        payload.action,
        item_owner_id=payload.item_owner_id,
        field_id=payload.field_id,
        client_ip=client_ip(request),
        subdivision_id=payload.subdivision_id,
    )


@router.post("/check-many", response_model=dict[str, PermissionCheckResult])
async def check_many_permissions(
    payload: list[PermissionCheckRequest],
    request: Request,
    user: AdminUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
) -> dict[str, PermissionCheckResult]:
    return await evaluator.check_many(
        user,
        [(check.page_id, check.action) for check in payload],
        client_ip=client_ip(request),
    )
