"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_optional_principal  → decode the Bearer JWT into a Principal, or None
  get_current_principal   → same, but 401 when there is no principal
  require_role(...)       → restrict to specific roles
  require_permissions(...) → restrict by effective permissions (ANY / ALL)
  require_location_scope  → restrict non-admins to their own warehouse

Guards run before the endpoint body, so a denied request has no side
effects. Resolver and store errors propagate unchanged (503, never a
silent allow or deny).
"""

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from json import JSONDecodeError

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.jwt import decode_token
from app.auth.location import check_location_scope, extract_target_warehouse
from app.auth.permissions import TOP_ROLE, Permission
from app.middleware.exceptions import (
    DenyReason,
    PermissionDeniedError,
    TenantContextError,
    UnauthenticatedError,
)
from app.models.user import UserRole
from app.services.override_store import PermissionOverrideStore
from app.services.permissions import PermissionsService, get_permissions_service

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Already-verified identity of the caller."""

    user_id: str
    role: UserRole
    tenant_id: str | None = None


# ── Principal ───────────────────────────────────────────────

def principal_from_token(token: str) -> Principal | None:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        return None
    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        return None
    return Principal(user_id=user_id, role=role, tenant_id=payload.get("tenant_id"))


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal | None:
    if credentials is None:
        return None
    return principal_from_token(credentials.credentials)


async def get_current_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        logger.warning(
            "Unauthenticated request to a protected route",
            extra={"deny_reason": DenyReason.UNAUTHENTICATED.value},
        )
        raise UnauthenticatedError()
    return principal


def get_override_store(
    service: PermissionsService = Depends(get_permissions_service),
) -> PermissionOverrideStore:
    return service.store


# ── Role-based access control ───────────────────────────────

def require_role(*roles: UserRole):
    """Dependency factory: restrict to one or more roles.

    Usage:
        @router.get("/admin-only")
        async def admin_view(principal: Principal = Depends(require_role(UserRole.ADMIN))):
            ...
    """
    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            logger.warning(
                f"Role {principal.role.value} not allowed "
                f"(requires {', '.join(r.value for r in roles)})",
                extra={
                    "deny_reason": DenyReason.ROLE_NOT_ALLOWED.value,
                    "user_id": principal.user_id,
                    "tenant_id": principal.tenant_id,
                },
            )
            raise PermissionDeniedError(DenyReason.ROLE_NOT_ALLOWED)
        return principal

    return _check


# ── Permission-based access control ─────────────────────────

class PermissionMode(str, enum.Enum):
    ANY = "any"
    ALL = "all"


@dataclass(frozen=True)
class PermissionRequirement:
    permissions: tuple[Permission, ...]
    mode: PermissionMode = PermissionMode.ANY


async def authorize(
    requirement: PermissionRequirement | None,
    principal: Principal | None,
    service: PermissionsService,
) -> Principal | None:
    """Decide one request against its declared requirement.

    Returns the principal when allowed; raises UnauthenticatedError or
    PermissionDeniedError otherwise.
    """
    if requirement is None:
        return principal

    if principal is None:
        logger.warning(
            "Unauthenticated request to a permission-guarded route",
            extra={"deny_reason": DenyReason.UNAUTHENTICATED.value},
        )
        raise UnauthenticatedError()

    if principal.role is TOP_ROLE:
        return principal

    if not principal.tenant_id:
        raise TenantContextError()

    perms = list(requirement.permissions)
    if requirement.mode is PermissionMode.ALL:
        allowed = await service.has_all_permissions(
            principal.user_id, principal.role, principal.tenant_id, perms
        )
    else:
        allowed = await service.has_any_permission(
            principal.user_id, principal.role, principal.tenant_id, perms
        )

    if not allowed:
        reason = await service.get_denial_reason(
            principal.user_id, principal.role, principal.tenant_id, perms
        )
        logger.warning(
            f"Permission denied for user {principal.user_id}: "
            f"requires {requirement.mode.value} of {', '.join(p.value for p in perms)}",
            extra={
                "deny_reason": reason.value,
                "user_id": principal.user_id,
                "tenant_id": principal.tenant_id,
            },
        )
        raise PermissionDeniedError(reason)

    return principal


def require_permissions(*perms: Permission | str, mode: PermissionMode = PermissionMode.ANY):
    """Dependency factory: restrict by effective permissions.

    Permissions are resolved per request (role defaults ± overrides), so an
    admin revoke applies without waiting for the token to expire.

    Usage:
        @router.post("/refunds")
        async def refund(principal: Principal = Depends(require_permissions(Permission.POS_REFUND))):
            ...

        @router.get("/ledger")
        async def ledger(
            principal: Principal = Depends(require_permissions(
                Permission.ACCOUNTING_VIEW, Permission.REPORTS_VIEW, mode=PermissionMode.ALL,
            )),
        ):
            ...
    """
    requirement = PermissionRequirement(
        permissions=tuple(Permission(p) for p in perms),
        mode=PermissionMode(mode),
    )

    async def _check(
        principal: Principal | None = Depends(get_optional_principal),
        service: PermissionsService = Depends(get_permissions_service),
    ) -> Principal:
        return await authorize(requirement, principal, service)

    _check.requirement = requirement  # type: ignore[attr-defined]
    return _check


# ── Location scoping ────────────────────────────────────────

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _request_body(request: Request) -> Mapping | None:
    """JSON object or form fields of the request, None for anything else."""
    if request.method in ("GET", "HEAD", "DELETE", "OPTIONS"):
        return None
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except (JSONDecodeError, UnicodeDecodeError):
            return None
        return body if isinstance(body, dict) else None
    if content_type.startswith(_FORM_TYPES):
        return await request.form()
    return None


async def require_location_scope(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: PermissionOverrideStore = Depends(get_override_store),
) -> Principal:
    """Deny non-admins acting on a warehouse other than their own."""
    target = extract_target_warehouse(await _request_body(request), request.query_params)
    await check_location_scope(
        principal.user_id, principal.role, principal.tenant_id, target, store
    )
    return principal

