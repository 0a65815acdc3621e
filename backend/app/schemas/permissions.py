from datetime import datetime

from pydantic import BaseModel, Field

from app.auth.permissions import Permission


# ── Catalog ──────────────────────────────────────────────────

class PermissionCategory(BaseModel):
    module: str
    label: str
    permissions: list[Permission]


class PermissionCatalogOut(BaseModel):
    categories: list[PermissionCategory]
    role_defaults: dict[str, list[Permission]]


# ── Effective permissions ────────────────────────────────────

class MyPermissionsOut(BaseModel):
    user_id: str
    role: str
    permissions: list[Permission]


class OverrideSummary(BaseModel):
    granted: list[Permission] = []
    revoked: list[Permission] = []


class UserPermissionsDetailOut(BaseModel):
    """Effective permissions plus the overrides that shaped them."""
    user_id: str
    role: str
    permissions: list[Permission]
    overrides: OverrideSummary


# ── Overrides ────────────────────────────────────────────────

class PermissionOverrideOut(BaseModel):
    permission: Permission
    granted: bool
    granted_by: str | None
    reason: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class PermissionChangeRequest(BaseModel):
    """Grant or revoke a single permission."""
    permission: Permission
    reason: str | None = Field(default=None, max_length=500)


class PermissionOverrideIn(BaseModel):
    permission: Permission
    granted: bool
    reason: str | None = Field(default=None, max_length=500)


class BulkOverridesRequest(BaseModel):
    """Set several overrides at once. Applied all-or-nothing."""
    overrides: list[PermissionOverrideIn]


class OverrideRemovalResult(BaseModel):
    user_id: str
    removed: int
