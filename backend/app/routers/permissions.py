"""Permission catalog, effective permissions and per-user overrides.

Endpoints:
    GET    /api/permissions/catalog                       Categories + role defaults
    GET    /api/users/me/permissions                      Caller's effective permissions
    GET    /api/users/{user_id}/permissions               Detail (role, effective, overrides)
    GET    /api/users/{user_id}/permissions/overrides     Stored overrides with provenance
    POST   /api/users/{user_id}/permissions/grant         Grant one permission
    POST   /api/users/{user_id}/permissions/revoke        Revoke one permission
    PUT    /api/users/{user_id}/permissions               Set several overrides atomically
    DELETE /api/users/{user_id}/permissions/{permission}  Remove one override
    DELETE /api/users/{user_id}/permissions               Reset to role defaults

Everything under /users/{user_id} is admin-only and limited to users of the
caller's tenant.
"""

from fastapi import APIRouter, Depends

from app.auth.deps import Principal, get_current_principal, require_role
from app.auth.permissions import PERMISSION_CATEGORIES, Permission, get_role_permissions
from app.middleware.exceptions import ResourceNotFoundError
from app.models.user import User, UserRole
from app.schemas.permissions import (
    BulkOverridesRequest,
    MyPermissionsOut,
    OverrideRemovalResult,
    OverrideSummary,
    PermissionCatalogOut,
    PermissionCategory,
    PermissionChangeRequest,
    PermissionOverrideOut,
    UserPermissionsDetailOut,
)
from app.services.override_store import OverrideChange
from app.services.permissions import PermissionsService, get_permissions_service
from app.tenancy import require_tenant_id

router = APIRouter()

_require_admin = require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)


async def _get_target_user(
    user_id: str, tenant_id: str, service: PermissionsService
) -> User:
    user = await service.store.get_user(user_id, tenant_id)
    if not user:
        raise ResourceNotFoundError("User", user_id)
    return user


async def _detail_out(
    user: User, tenant_id: str, service: PermissionsService
) -> UserPermissionsDetailOut:
    detail = await service.get_user_permissions_detail(user.id, user.role, tenant_id)
    return UserPermissionsDetailOut(
        user_id=user.id,
        role=detail.role.value,
        permissions=detail.permissions,
        overrides=OverrideSummary(granted=detail.granted, revoked=detail.revoked),
    )


# ── Catalog ─────────────────────────────────────────────────

@router.get("/permissions/catalog", response_model=PermissionCatalogOut)
async def get_catalog(
    _principal: Principal = Depends(get_current_principal),
):
    return PermissionCatalogOut(
        categories=[
            PermissionCategory(module=module, label=cat["label"], permissions=cat["permissions"])
            for module, cat in PERMISSION_CATEGORIES.items()
        ],
        role_defaults={role.value: get_role_permissions(role) for role in UserRole},
    )


# ── Caller ──────────────────────────────────────────────────

@router.get("/users/me/permissions", response_model=MyPermissionsOut)
async def get_my_permissions(
    principal: Principal = Depends(get_current_principal),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    permissions = await service.get_user_permissions(
        principal.user_id, principal.role, tenant_id
    )
    return MyPermissionsOut(
        user_id=principal.user_id,
        role=principal.role.value,
        permissions=permissions,
    )


# ── Admin: read ─────────────────────────────────────────────

@router.get("/users/{user_id}/permissions", response_model=UserPermissionsDetailOut)
async def get_user_permissions_detail(
    user_id: str,
    _admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    user = await _get_target_user(user_id, tenant_id, service)
    return await _detail_out(user, tenant_id, service)


@router.get(
    "/users/{user_id}/permissions/overrides",
    response_model=list[PermissionOverrideOut],
)
async def list_user_overrides(
    user_id: str,
    _admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    await _get_target_user(user_id, tenant_id, service)
    records = await service.get_permission_overrides(user_id, tenant_id)
    return [PermissionOverrideOut.model_validate(r) for r in records]


# ── Admin: write ────────────────────────────────────────────

@router.post("/users/{user_id}/permissions/grant", response_model=UserPermissionsDetailOut)
async def grant_permission(
    user_id: str,
    body: PermissionChangeRequest,
    admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    user = await _get_target_user(user_id, tenant_id, service)
    await service.grant_permission(
        user_id, tenant_id, body.permission, granted_by=admin.user_id, reason=body.reason,
    )
    return await _detail_out(user, tenant_id, service)


@router.post("/users/{user_id}/permissions/revoke", response_model=UserPermissionsDetailOut)
async def revoke_permission(
    user_id: str,
    body: PermissionChangeRequest,
    admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    user = await _get_target_user(user_id, tenant_id, service)
    await service.revoke_permission(
        user_id, tenant_id, body.permission, granted_by=admin.user_id, reason=body.reason,
    )
    return await _detail_out(user, tenant_id, service)


@router.put("/users/{user_id}/permissions", response_model=UserPermissionsDetailOut)
async def set_user_overrides(
    user_id: str,
    body: BulkOverridesRequest,
    admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    user = await _get_target_user(user_id, tenant_id, service)
    changes = [
        OverrideChange(permission=o.permission, granted=o.granted, reason=o.reason)
        for o in body.overrides
    ]
    await service.set_permission_overrides(
        user_id, tenant_id, changes, granted_by=admin.user_id,
    )
    return await _detail_out(user, tenant_id, service)


@router.delete(
    "/users/{user_id}/permissions/{permission}",
    response_model=OverrideRemovalResult,
)
async def remove_user_override(
    user_id: str,
    permission: Permission,
    _admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    await _get_target_user(user_id, tenant_id, service)
    removed = await service.remove_override(user_id, tenant_id, permission)
    return OverrideRemovalResult(user_id=user_id, removed=removed)


@router.delete("/users/{user_id}/permissions", response_model=OverrideRemovalResult)
async def reset_user_overrides(
    user_id: str,
    _admin: Principal = Depends(_require_admin),
    service: PermissionsService = Depends(get_permissions_service),
):
    tenant_id = require_tenant_id()
    await _get_target_user(user_id, tenant_id, service)
    removed = await service.remove_all_overrides(user_id, tenant_id)
    return OverrideRemovalResult(user_id=user_id, removed=removed)
