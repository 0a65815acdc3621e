"""Permission resolution and override administration.

Effective permissions = role defaults ± the user's overrides, with
SUPER_ADMIN short-circuiting to the whole catalog before anything is read.

Overrides are read through an OverrideCache (5 min TTL). Every mutation
below writes to the store first and invalidates the user's cache entry
only after the write succeeded, so the next resolution on this process
observes it. Other processes converge within one TTL.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from app.auth.permissions import (
    TOP_ROLE,
    Permission,
    apply_overrides,
    parse_permission,
    role_has_permission,
)
from app.config import settings
from app.middleware.exceptions import DenyReason
from app.models.user import UserRole
from app.services.override_store import OverrideChange, PermissionOverrideStore
from app.utils.cache import OverrideCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideRecord:
    """A stored override with its provenance, as shown to admins."""

    permission: Permission
    granted: bool
    granted_by: str | None
    reason: str | None
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class PermissionsDetail:
    role: UserRole
    permissions: list[Permission]
    granted: list[Permission] = field(default_factory=list)
    revoked: list[Permission] = field(default_factory=list)


def _catalog_order(perms: Iterable[Permission]) -> list[Permission]:
    wanted = set(perms)
    return [p for p in Permission if p in wanted]


class PermissionsService:
    def __init__(
        self,
        store: PermissionOverrideStore | None = None,
        cache: OverrideCache | None = None,
    ):
        self.store = store if store is not None else PermissionOverrideStore()
        # OverrideCache defines __len__, so an empty one is falsy
        self.cache = (
            cache if cache is not None
            else OverrideCache(ttl=settings.permission_cache_ttl_seconds)
        )

    # ── Override map (cached) ───────────────────────────────

    async def _load_overrides(self, user_id: str, tenant_id: str) -> Mapping[Permission, bool]:
        cached = self.cache.get(tenant_id, user_id)
        if cached is not None:
            return cached

        version = self.cache.version
        rows = await self.store.find_many(user_id, tenant_id)

        overrides: dict[Permission, bool] = {}
        for row in rows:
            perm = parse_permission(row.permission)
            if perm is None:
                logger.warning(
                    f"Ignoring unknown permission override '{row.permission}' "
                    f"for user {user_id} in tenant {tenant_id}"
                )
                continue
            overrides[perm] = bool(row.granted)

        return self.cache.set(tenant_id, user_id, overrides, version=version)

    # ── Resolution ──────────────────────────────────────────

    async def get_user_permissions(
        self, user_id: str, role: UserRole, tenant_id: str
    ) -> list[Permission]:
        """Effective permissions for a user, in catalog order."""
        role = UserRole(role)
        if role is TOP_ROLE:
            return list(Permission)

        overrides = await self._load_overrides(user_id, tenant_id)
        return _catalog_order(apply_overrides(role, overrides))

    async def has_permission(
        self, user_id: str, role: UserRole, tenant_id: str, permission: Permission
    ) -> bool:
        """Point check: the user's override if one exists, else the role default."""
        role = UserRole(role)
        if role is TOP_ROLE:
            return True
        permission = Permission(permission)
        overrides = await self._load_overrides(user_id, tenant_id)
        override = overrides.get(permission)
        if override is not None:
            return override
        return role_has_permission(role, permission)

    async def has_any_permission(
        self,
        user_id: str,
        role: UserRole,
        tenant_id: str,
        permissions: Sequence[Permission],
    ) -> bool:
        """True if at least one is held. An empty list is never satisfied."""
        if not permissions:
            return False
        if UserRole(role) is TOP_ROLE:
            return True
        effective = set(await self.get_user_permissions(user_id, role, tenant_id))
        return any(Permission(p) in effective for p in permissions)

    async def has_all_permissions(
        self,
        user_id: str,
        role: UserRole,
        tenant_id: str,
        permissions: Sequence[Permission],
    ) -> bool:
        """True if every one is held. An empty list is always satisfied."""
        if UserRole(role) is TOP_ROLE:
            return True
        effective = set(await self.get_user_permissions(user_id, role, tenant_id))
        return all(Permission(p) in effective for p in permissions)

    async def get_denial_reason(
        self,
        user_id: str,
        role: UserRole,
        tenant_id: str,
        permissions: Sequence[Permission],
    ) -> DenyReason:
        """Classify a denial for the audit log.

        EXPLICIT_REVOKE if any of the requested permissions carries a
        granted=False override, ROLE_DEFAULT otherwise.
        """
        overrides = await self._load_overrides(user_id, tenant_id)
        if any(overrides.get(Permission(p)) is False for p in permissions):
            return DenyReason.EXPLICIT_REVOKE
        return DenyReason.ROLE_DEFAULT

    async def get_user_permissions_detail(
        self, user_id: str, role: UserRole, tenant_id: str
    ) -> PermissionsDetail:
        """Effective permissions plus which ones come from overrides."""
        role = UserRole(role)
        overrides = await self._load_overrides(user_id, tenant_id)
        permissions = await self.get_user_permissions(user_id, role, tenant_id)
        return PermissionsDetail(
            role=role,
            permissions=permissions,
            granted=_catalog_order(p for p, g in overrides.items() if g),
            revoked=_catalog_order(p for p, g in overrides.items() if not g),
        )

    # ── Administration ──────────────────────────────────────

    async def grant_permission(
        self,
        user_id: str,
        tenant_id: str,
        permission: Permission,
        granted_by: str | None,
        reason: str | None = None,
    ) -> None:
        permission = Permission(permission)
        await self.store.upsert(
            user_id=user_id,
            tenant_id=tenant_id,
            permission=permission,
            granted=True,
            granted_by=granted_by,
            reason=reason,
        )
        self.cache.invalidate(tenant_id, user_id)
        logger.info(
            f"Permission {permission.value} granted to user {user_id} by {granted_by}",
            extra={"tenant_id": tenant_id},
        )

    async def revoke_permission(
        self,
        user_id: str,
        tenant_id: str,
        permission: Permission,
        granted_by: str | None,
        reason: str | None = None,
    ) -> None:
        permission = Permission(permission)
        await self.store.upsert(
            user_id=user_id,
            tenant_id=tenant_id,
            permission=permission,
            granted=False,
            granted_by=granted_by,
            reason=reason,
        )
        self.cache.invalidate(tenant_id, user_id)
        logger.info(
            f"Permission {permission.value} revoked from user {user_id} by {granted_by}",
            extra={"tenant_id": tenant_id},
        )

    async def remove_override(
        self, user_id: str, tenant_id: str, permission: Permission
    ) -> int:
        """Drop one override so the role default applies again."""
        permission = Permission(permission)
        removed = await self.store.delete_many(
            user_id=user_id, tenant_id=tenant_id, permission=permission,
        )
        self.cache.invalidate(tenant_id, user_id)
        logger.info(
            f"Override {permission.value} removed for user {user_id} ({removed} row(s))",
            extra={"tenant_id": tenant_id},
        )
        return removed

    async def remove_all_overrides(self, user_id: str, tenant_id: str) -> int:
        """Reset a user to pure role defaults."""
        removed = await self.store.delete_many(user_id=user_id, tenant_id=tenant_id)
        self.cache.invalidate(tenant_id, user_id)
        logger.info(
            f"All overrides removed for user {user_id} ({removed} row(s))",
            extra={"tenant_id": tenant_id},
        )
        return removed

    async def set_permission_overrides(
        self,
        user_id: str,
        tenant_id: str,
        changes: Sequence[OverrideChange],
        granted_by: str | None,
    ) -> None:
        """Upsert several overrides atomically. An empty list is a no-op."""
        if not changes:
            return

        # Last entry wins when a permission is listed twice
        deduped: dict[Permission, OverrideChange] = {}
        for change in changes:
            perm = Permission(change.permission)
            deduped[perm] = OverrideChange(
                permission=perm, granted=change.granted, reason=change.reason,
            )

        await self.store.upsert_many(
            user_id=user_id,
            tenant_id=tenant_id,
            changes=list(deduped.values()),
            granted_by=granted_by,
        )
        self.cache.invalidate(tenant_id, user_id)
        logger.info(
            f"{len(deduped)} permission override(s) set for user {user_id} by {granted_by}",
            extra={"tenant_id": tenant_id},
        )

    async def get_permission_overrides(
        self, user_id: str, tenant_id: str
    ) -> list[OverrideRecord]:
        """Stored overrides with provenance. Always read from the store."""
        rows = await self.store.find_many(user_id, tenant_id)
        records = []
        for row in rows:
            perm = parse_permission(row.permission)
            if perm is None:
                continue
            records.append(OverrideRecord(
                permission=perm,
                granted=bool(row.granted),
                granted_by=row.granted_by,
                reason=row.reason,
                created_at=row.created_at,
                updated_at=row.updated_at,
            ))
        return records

    def clear_cache(self) -> None:
        self.cache.clear()


permissions_service = PermissionsService()


def get_permissions_service() -> PermissionsService:
    """FastAPI dependency; overridden in tests."""
    return permissions_service
