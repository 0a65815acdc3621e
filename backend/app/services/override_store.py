"""Persistence for per-user permission overrides.

The store owns its sessions (one per call) so that the resolver can be used
from guards that run before any request-scoped session exists. Writes that
touch several rows run in one transaction.

Any connectivity failure is re-raised as StoreUnavailableError. Callers must
let it propagate: authorization fails closed, it never falls back to role
defaults.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.permissions import Permission
from app.database import async_session
from app.middleware.exceptions import ResourceNotFoundError, StoreUnavailableError
from app.models.permission_override import UserPermissionOverride
from app.models.user import User

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, OSError, TimeoutError)


@dataclass(frozen=True)
class OverrideChange:
    """One entry of a bulk override write."""

    permission: Permission
    granted: bool
    reason: str | None = None


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Override upsert not supported on {dialect}")


class PermissionOverrideStore:
    """Override rows plus the user-row reads the guards need."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except _UNAVAILABLE_ERRORS as exc:
            logger.error(
                f"Permission store unavailable during {operation}: {exc}",
                extra={"operation": operation},
            )
            raise StoreUnavailableError() from exc

    # ── Overrides ───────────────────────────────────────────

    async def find_many(self, user_id: str, tenant_id: str) -> list[UserPermissionOverride]:
        """All override rows of one user within one tenant."""
        async with self._session("find_overrides") as session:
            result = await session.execute(
                select(UserPermissionOverride)
                .where(
                    UserPermissionOverride.user_id == user_id,
                    UserPermissionOverride.tenant_id == tenant_id,
                )
                .order_by(UserPermissionOverride.permission)
            )
            return list(result.scalars().all())

    async def upsert(
        self,
        *,
        user_id: str,
        tenant_id: str,
        permission: Permission,
        granted: bool,
        granted_by: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Insert or replace the single row for (user_id, permission)."""
        change = OverrideChange(permission=permission, granted=granted, reason=reason)
        await self.upsert_many(
            user_id=user_id, tenant_id=tenant_id, changes=[change], granted_by=granted_by,
        )

    async def upsert_many(
        self,
        *,
        user_id: str,
        tenant_id: str,
        changes: Sequence[OverrideChange],
        granted_by: str | None = None,
    ) -> None:
        """Apply every change in one transaction: all rows land or none do.

        Raises ResourceNotFoundError if the user does not belong to
        `tenant_id`. Override rows are unique per (user_id, permission), so a
        write under the wrong tenant would otherwise rewrite the home
        tenant's row.
        """
        if not changes:
            return

        async with self._session("upsert_overrides") as session:
            async with session.begin():
                member = await session.execute(
                    select(User.id).where(User.id == user_id, User.tenant_id == tenant_id)
                )
                if member.scalar_one_or_none() is None:
                    logger.warning(
                        f"Rejected override write for user {user_id} outside tenant {tenant_id}",
                        extra={"tenant_id": tenant_id},
                    )
                    raise ResourceNotFoundError("User", user_id)

                insert = _insert_for(session)
                now = datetime.utcnow()
                for change in changes:
                    stmt = insert(UserPermissionOverride).values(
                        tenant_id=tenant_id,
                        user_id=user_id,
                        permission=Permission(change.permission).value,
                        granted=change.granted,
                        granted_by=granted_by,
                        reason=change.reason,
                        created_at=now,
                        updated_at=now,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["user_id", "permission"],
                        set_={
                            "granted": stmt.excluded.granted,
                            "granted_by": stmt.excluded.granted_by,
                            "reason": stmt.excluded.reason,
                            "updated_at": stmt.excluded.updated_at,
                        },
                    )
                    await session.execute(stmt)

    async def delete_many(
        self,
        *,
        user_id: str,
        tenant_id: str,
        permission: Permission | None = None,
    ) -> int:
        """Delete one user's overrides (or just one permission). Returns the row count."""
        stmt = delete(UserPermissionOverride).where(
            UserPermissionOverride.user_id == user_id,
            UserPermissionOverride.tenant_id == tenant_id,
        )
        if permission is not None:
            stmt = stmt.where(UserPermissionOverride.permission == Permission(permission).value)

        async with self._session("delete_overrides") as session:
            async with session.begin():
                result = await session.execute(stmt)
            return result.rowcount or 0

    # ── Users ───────────────────────────────────────────────

    async def get_user(self, user_id: str, tenant_id: str) -> User | None:
        """The user row, only if it belongs to `tenant_id`."""
        async with self._session("get_user") as session:
            result = await session.execute(
                select(User).where(User.id == user_id, User.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()

    async def get_user_warehouse(self, user_id: str, tenant_id: str | None) -> str | None:
        """Assigned warehouse id, or None if the user has none or does not exist."""
        stmt = select(User.warehouse_id).where(User.id == user_id)
        if tenant_id is not None:
            stmt = stmt.where(User.tenant_id == tenant_id)

        async with self._session("get_user_warehouse") as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
