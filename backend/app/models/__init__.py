"""Aggregate model imports for Alembic auto-detection."""

from app.models.user import User, UserRole  # noqa: F401
from app.models.permission_override import UserPermissionOverride  # noqa: F401
