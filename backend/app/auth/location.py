"""Warehouse (location) scoping for non-admin users.

Non-admin users are bound to one warehouse via `User.warehouse_id`. A
location-scoped operation may only target that warehouse. The assignment is
read fresh from the store on every check; it is never cached.

Rules, in order:
  1. SUPER_ADMIN / ADMIN → allowed, nothing is read.
  2. No warehouse assigned (or user row missing) → denied.
  3. Operation names a warehouse other than the assigned one → denied.
  4. Otherwise allowed, including operations that name no warehouse.
"""

import logging
from collections.abc import Mapping
from typing import Any

from app.auth.permissions import LOCATION_BYPASS_ROLES
from app.middleware.exceptions import DenyReason, PermissionDeniedError
from app.models.user import UserRole
from app.services.override_store import PermissionOverrideStore

logger = logging.getLogger(__name__)

WAREHOUSE_FIELDS = ("warehouseId", "warehouse_id")


def extract_target_warehouse(
    body: Mapping[str, Any] | None,
    query: Mapping[str, str] | None = None,
) -> str | None:
    """Warehouse named by the operation input. The body wins over the query."""
    for source in (body, query):
        if not isinstance(source, Mapping):
            continue
        for field in WAREHOUSE_FIELDS:
            value = source.get(field)
            if value not in (None, ""):
                return str(value)
    return None


async def check_location_scope(
    user_id: str,
    role: UserRole,
    tenant_id: str | None,
    target_warehouse_id: str | None,
    store: PermissionOverrideStore,
) -> None:
    """Raise PermissionDeniedError unless the user may act on the target warehouse."""
    if UserRole(role) in LOCATION_BYPASS_ROLES:
        return

    assigned = await store.get_user_warehouse(user_id, tenant_id)
    if not assigned:
        logger.warning(
            f"User {user_id} has no warehouse assigned",
            extra={
                "deny_reason": DenyReason.MISSING_LOCATION_ASSIGNMENT.value,
                "user_id": user_id,
                "tenant_id": tenant_id,
            },
        )
        raise PermissionDeniedError(DenyReason.MISSING_LOCATION_ASSIGNMENT)

    if target_warehouse_id is not None and target_warehouse_id != assigned:
        logger.warning(
            f"User {user_id} targeted warehouse {target_warehouse_id}, assigned {assigned}",
            extra={
                "deny_reason": DenyReason.LOCATION_MISMATCH.value,
                "user_id": user_id,
                "tenant_id": tenant_id,
            },
        )
        raise PermissionDeniedError(DenyReason.LOCATION_MISMATCH)
