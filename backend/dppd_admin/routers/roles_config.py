from fastapi import APIRouter, Depends, Response, status

from ..dependencies import get_roles_config_service, require_super_admin
from ..schemas.roles import (
    PermissionDefinition,
    PermissionDefinitionCreate,
    RoleMappingCreate,
    RoleMappingUpdate,
    RoleMappingView,
    RolesConfigView,
)
from ..schemas.session import AdminUser
from ..services.roles_config import RolesConfigService, mask_mapping

router = APIRouter(prefix="/api/roles-config", tags=["roles-config"])


@router.get("", response_model=RolesConfigView)
async def get_roles_config(
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> RolesConfigView:
    return await service.list_masked()


@router.post(
    "/mappings",
    response_model=RoleMappingView,
    status_code=status.HTTP_201_CREATED,
)
async def create_mapping(
    payload: RoleMappingCreate,
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> RoleMappingView:
    return mask_mapping(await service.add_mapping(payload))


@router.put("/mappings/{mapping_id}", response_model=RoleMappingView)
async def update_mapping(
    mapping_id: str,
    payload: RoleMappingUpdate,
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> RoleMappingView:
    return mask_mapping(await service.update_mapping(mapping_id, payload))


@router.delete("/mappings/{mapping_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mapping(
    mapping_id: str,
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> Response:
    await service.delete_mapping(mapping_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/permissions",
    response_model=PermissionDefinition,
    status_code=status.HTTP_201_CREATED,
)
async def create_permission(
    payload: PermissionDefinitionCreate,
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> PermissionDefinition:
    return await service.add_permission(payload)


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    _admin: AdminUser = Depends(require_super_admin),
    service: RolesConfigService = Depends(get_roles_config_service),
) -> Response:
    await service.delete_permission(permission_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
