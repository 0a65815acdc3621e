"""Management CLI for permission inspection.

Usage:
    python -m app.cli role-permissions <ROLE>                  # Role defaults
    python -m app.cli user-permissions <TENANT_ID> <USER_ID>   # Resolved permissions + overrides
"""

import asyncio
import sys

from app.auth.permissions import get_missing_permissions, get_role_permissions
from app.database import engine
from app.models.user import UserRole
from app.services.permissions import permissions_service


def role_permissions(role_name: str) -> int:
    try:
        role = UserRole(role_name.lower())
    except ValueError:
        print(f"Unknown role: {role_name}")
        print(f"Roles: {', '.join(r.value for r in UserRole)}")
        return 1

    granted = get_role_permissions(role)
    for perm in granted:
        print(f"  {perm.value}")
    print(f"\n{len(granted)} default permission(s), {len(get_missing_permissions(role))} grantable")
    return 0


async def _user_permissions(tenant_id: str, user_id: str) -> int:
    try:
        user = await permissions_service.store.get_user(user_id, tenant_id)
        if not user:
            print(f"User {user_id} not found in tenant {tenant_id}")
            return 1

        detail = await permissions_service.get_user_permissions_detail(
            user.id, user.role, tenant_id
        )
        print(f"  {user.email} ({detail.role.value})")
        for perm in detail.permissions:
            print(f"  {perm.value}")
        print(f"\n{len(detail.permissions)} effective permission(s)")
        if detail.granted:
            print(f"  + granted: {', '.join(p.value for p in detail.granted)}")
        if detail.revoked:
            print(f"  - revoked: {', '.join(p.value for p in detail.revoked)}")
        return 0
    finally:
        await engine.dispose()


def user_permissions(tenant_id: str, user_id: str) -> int:
    return asyncio.run(_user_permissions(tenant_id, user_id))


def usage() -> int:
    print(__doc__)
    return 2


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]
    if cmd == "role-permissions" and len(args) == 1:
        sys.exit(role_permissions(args[0]))
    elif cmd == "user-permissions" and len(args) == 2:
        sys.exit(user_permissions(args[0], args[1]))
    else:
        sys.exit(usage())
