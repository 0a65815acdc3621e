"""Tests for the permission catalog and role defaults."""

import pytest

from app.auth.permissions import (
    ALL_PERMISSIONS,
    LOCATION_BYPASS_ROLES,
    PERMISSION_CATEGORIES,
    ROLE_DEFAULTS,
    Permission,
    apply_overrides,
    get_missing_permissions,
    get_role_permissions,
    parse_permission,
    role_has_permission,
    role_rank,
    validate_role_defaults,
)
from app.middleware.exceptions import MisconfigurationError
from app.models.user import UserRole


@pytest.mark.unit
class TestCatalog:

    def test_permission_names_are_module_action(self):
        for perm in Permission:
            module, action = perm.value.split(":")
            assert module and action
            assert perm.module == module

    def test_categories_cover_every_permission_once(self):
        listed = [p for cat in PERMISSION_CATEGORIES.values() for p in cat["permissions"]]
        assert len(listed) == len(set(listed))
        assert set(listed) == set(ALL_PERMISSIONS)

    def test_string_lookup_goes_through_enum(self):
        assert Permission("pos:sell") is Permission.POS_SELL
        assert parse_permission("pos:sell") is Permission.POS_SELL
        assert parse_permission("legacy:thing") is None


@pytest.mark.unit
class TestRoleDefaults:

    def test_every_role_has_defaults(self):
        assert set(ROLE_DEFAULTS) == set(UserRole)

    def test_super_admin_holds_everything(self):
        assert ROLE_DEFAULTS[UserRole.SUPER_ADMIN] == ALL_PERMISSIONS
        assert get_missing_permissions(UserRole.SUPER_ADMIN) == []

    def test_employee_can_sell_but_not_refund(self):
        assert role_has_permission(UserRole.EMPLOYEE, Permission.POS_SELL)
        assert not role_has_permission(UserRole.EMPLOYEE, "pos:refund")

    def test_contador_is_read_only(self):
        for perm in ROLE_DEFAULTS[UserRole.CONTADOR]:
            assert perm.value.split(":")[1] in ("view", "export")

    def test_role_and_missing_permissions_partition_catalog(self):
        for role in UserRole:
            held = get_role_permissions(role)
            missing = get_missing_permissions(role)
            assert set(held) | set(missing) == set(ALL_PERMISSIONS)
            assert not set(held) & set(missing)

    def test_role_permissions_in_catalog_order(self):
        order = list(Permission)
        held = get_role_permissions(UserRole.MANAGER)
        assert held == sorted(held, key=order.index)

    def test_missing_role_is_a_configuration_error(self):
        partial = {r: p for r, p in ROLE_DEFAULTS.items() if r is not UserRole.CONTADOR}
        with pytest.raises(MisconfigurationError, match="contador"):
            validate_role_defaults(partial)

    def test_incomplete_top_role_is_a_configuration_error(self):
        broken = dict(ROLE_DEFAULTS)
        broken[UserRole.SUPER_ADMIN] = frozenset({Permission.POS_SELL})
        with pytest.raises(MisconfigurationError):
            validate_role_defaults(broken)

    def test_unknown_permission_is_a_configuration_error(self):
        broken = dict(ROLE_DEFAULTS)
        broken[UserRole.EMPLOYEE] = frozenset({"pos:teleport"})
        with pytest.raises(MisconfigurationError):
            validate_role_defaults(broken)


@pytest.mark.unit
class TestRoleHierarchy:

    def test_top_two_roles_bypass_location(self):
        assert LOCATION_BYPASS_ROLES == {UserRole.SUPER_ADMIN, UserRole.ADMIN}

    def test_rank_order(self):
        assert role_rank(UserRole.SUPER_ADMIN) > role_rank(UserRole.ADMIN)
        assert role_rank(UserRole.ADMIN) > role_rank(UserRole.MANAGER)
        assert role_rank(UserRole.MANAGER) > role_rank(UserRole.EMPLOYEE)


@pytest.mark.unit
class TestApplyOverrides:

    def test_no_overrides_equals_defaults(self):
        for role in UserRole:
            assert apply_overrides(role, {}) == set(ROLE_DEFAULTS[role])
            assert apply_overrides(role, None) == set(ROLE_DEFAULTS[role])

    def test_grant_adds_and_revoke_removes(self):
        effective = apply_overrides(UserRole.EMPLOYEE, {
            Permission.POS_REFUND: True,
            Permission.POS_SELL: False,
        })
        assert Permission.POS_REFUND in effective
        assert Permission.POS_SELL not in effective

    def test_revoking_a_permission_the_role_lacks_is_harmless(self):
        effective = apply_overrides(UserRole.EMPLOYEE, {Permission.PAYROLL_APPROVE: False})
        assert effective == set(ROLE_DEFAULTS[UserRole.EMPLOYEE])

    def test_super_admin_ignores_overrides(self):
        effective = apply_overrides(UserRole.SUPER_ADMIN, {Permission.POS_SELL: False})
        assert effective == set(ALL_PERMISSIONS)

    def test_defaults_are_not_mutated(self):
        before = set(ROLE_DEFAULTS[UserRole.EMPLOYEE])
        apply_overrides(UserRole.EMPLOYEE, {Permission.DASHBOARD_VIEW: False})
        assert set(ROLE_DEFAULTS[UserRole.EMPLOYEE]) == before
