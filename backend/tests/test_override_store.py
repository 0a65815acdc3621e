"""Tests for the override store against a real (SQLite) database."""

import pytest
from sqlalchemy.exc import OperationalError

from app.auth.permissions import Permission
from app.middleware.exceptions import ResourceNotFoundError, StoreUnavailableError
from app.models.user import UserRole
from app.services.override_store import OverrideChange, PermissionOverrideStore

from conftest import TENANT_A, TENANT_B


@pytest.mark.integration
@pytest.mark.asyncio
class TestOverrideRows:

    async def test_upsert_inserts_then_updates(self, store, make_user):
        user = await make_user()

        await store.upsert(
            user_id=user.id, tenant_id=TENANT_A, permission=Permission.POS_REFUND,
            granted=True, granted_by="admin-1", reason="covering shift",
        )
        await store.upsert(
            user_id=user.id, tenant_id=TENANT_A, permission=Permission.POS_REFUND,
            granted=False, granted_by="admin-2",
        )

        rows = await store.find_many(user.id, TENANT_A)
        assert len(rows) == 1
        assert rows[0].permission == "pos:refund"
        assert rows[0].granted is False
        assert rows[0].granted_by == "admin-2"
        assert rows[0].reason is None
        assert rows[0].created_at is not None

    async def test_find_many_is_tenant_scoped(self, store, make_user):
        user = await make_user()
        await store.upsert(
            user_id=user.id, tenant_id=TENANT_A, permission=Permission.POS_REFUND, granted=True,
        )

        assert await store.find_many(user.id, TENANT_B) == []

    async def test_upsert_many_writes_all(self, store, make_user):
        user = await make_user()

        await store.upsert_many(
            user_id=user.id,
            tenant_id=TENANT_A,
            changes=[
                OverrideChange(Permission.POS_REFUND, True),
                OverrideChange(Permission.POS_SELL, False, reason="training"),
            ],
            granted_by="admin-1",
        )

        rows = {r.permission: r for r in await store.find_many(user.id, TENANT_A)}
        assert rows["pos:refund"].granted is True
        assert rows["pos:sell"].granted is False
        assert rows["pos:sell"].reason == "training"
        assert {r.granted_by for r in rows.values()} == {"admin-1"}

    async def test_upsert_many_is_all_or_nothing(self, store, make_user):
        user = await make_user()

        with pytest.raises(ValueError):
            await store.upsert_many(
                user_id=user.id,
                tenant_id=TENANT_A,
                changes=[
                    OverrideChange(Permission.POS_REFUND, True),
                    OverrideChange("pos:teleport", True),  # type: ignore[arg-type]
                ],
            )

        assert await store.find_many(user.id, TENANT_A) == []

    async def test_delete_one_permission(self, store, make_user):
        user = await make_user()
        await store.upsert_many(
            user_id=user.id,
            tenant_id=TENANT_A,
            changes=[
                OverrideChange(Permission.POS_REFUND, True),
                OverrideChange(Permission.POS_SELL, False),
            ],
        )

        removed = await store.delete_many(
            user_id=user.id, tenant_id=TENANT_A, permission=Permission.POS_SELL,
        )

        assert removed == 1
        assert [r.permission for r in await store.find_many(user.id, TENANT_A)] == ["pos:refund"]

    async def test_delete_all_only_touches_one_tenant(self, store, make_user):
        user_a = await make_user()
        user_b = await make_user(tenant_id=TENANT_B)
        for user in (user_a, user_b):
            await store.upsert(
                user_id=user.id, tenant_id=user.tenant_id, permission=Permission.POS_REFUND, granted=True,
            )

        assert await store.delete_many(user_id=user_b.id, tenant_id=TENANT_A) == 0
        removed = await store.delete_many(user_id=user_a.id, tenant_id=TENANT_A)

        assert removed == 1
        assert await store.find_many(user_a.id, TENANT_A) == []
        assert len(await store.find_many(user_b.id, TENANT_B)) == 1

    async def test_write_outside_home_tenant_is_rejected(self, store, make_user):
        user = await make_user()
        await store.upsert(
            user_id=user.id, tenant_id=TENANT_A, permission=Permission.POS_SELL, granted=False,
        )

        with pytest.raises(ResourceNotFoundError):
            await store.upsert(
                user_id=user.id, tenant_id=TENANT_B, permission=Permission.POS_SELL, granted=True,
            )

        [row] = await store.find_many(user.id, TENANT_A)
        assert row.granted is False
        assert await store.find_many(user.id, TENANT_B) == []

    async def test_write_for_unknown_user_is_rejected(self, store):
        with pytest.raises(ResourceNotFoundError):
            await store.upsert_many(
                user_id="no-such-user",
                tenant_id=TENANT_A,
                changes=[OverrideChange(Permission.POS_REFUND, True)],
            )

    async def test_delete_with_nothing_to_delete(self, store, make_user):
        user = await make_user()
        assert await store.delete_many(user_id=user.id, tenant_id=TENANT_A) == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestUserReads:

    async def test_get_user_checks_tenant(self, store, make_user):
        user = await make_user(role=UserRole.MANAGER)

        found = await store.get_user(user.id, TENANT_A)
        assert found is not None
        assert found.role is UserRole.MANAGER
        assert await store.get_user(user.id, TENANT_B) is None

    async def test_get_user_warehouse(self, store, make_user):
        scoped = await make_user(warehouse_id="wh-1")
        unscoped = await make_user()

        assert await store.get_user_warehouse(scoped.id, TENANT_A) == "wh-1"
        assert await store.get_user_warehouse(unscoped.id, TENANT_A) is None
        assert await store.get_user_warehouse("no-such-user", TENANT_A) is None
        assert await store.get_user_warehouse(scoped.id, TENANT_B) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestStoreUnavailable:

    @staticmethod
    def _down():
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def test_read_failure_raises_store_unavailable(self):
        store = PermissionOverrideStore(session_factory=self._down)
        with pytest.raises(StoreUnavailableError):
            await store.find_many("u-1", TENANT_A)

    async def test_write_failure_raises_store_unavailable(self):
        store = PermissionOverrideStore(session_factory=self._down)
        with pytest.raises(StoreUnavailableError):
            await store.upsert(
                user_id="u-1", tenant_id=TENANT_A, permission=Permission.POS_SELL, granted=True,
            )

    async def test_user_read_failure_raises_store_unavailable(self):
        store = PermissionOverrideStore(session_factory=self._down)
        with pytest.raises(StoreUnavailableError):
            await store.get_user_warehouse("u-1", TENANT_A)
