"""Granular permission catalog for Mostrador RBAC.

Design:
  - Every permission is a member of the closed `Permission` enum, named
    `<module>:<action>`. There are no dynamic permissions.
  - Each role has a set of DEFAULT permissions (defined here, not in DB).
    The mapping must be total; a role without an entry is a startup error.
  - Admins can grant/revoke individual permissions per user via
    `UserPermissionOverride` rows ({perm: True/False} once loaded).
  - `apply_overrides(role, overrides)` computes the effective permission set.
  - SUPER_ADMIN holds the whole catalog and ignores overrides, so the
    platform owner can never be locked out.

Keys of an override map are always `Permission` members. A `str, Enum`
member hashes by name, not value, so raw strings must go through
`Permission(...)` before any set or dict lookup.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from app.middleware.exceptions import MisconfigurationError
from app.models.user import UserRole

logger = logging.getLogger(__name__)


# ── All known permissions ───────────────────────────────────

class Permission(str, enum.Enum):
    # POS
    POS_SELL = "pos:sell"
    POS_REFUND = "pos:refund"
    POS_DISCOUNT = "pos:discount"
    POS_OPEN_DRAWER = "pos:open_drawer"
    POS_VIEW_SESSIONS = "pos:view_sessions"
    POS_CLOSE_SESSION = "pos:close_session"
    POS_CASH_MOVEMENT = "pos:cash_movement"

    # Inventory
    INVENTORY_VIEW = "inventory:view"
    INVENTORY_ADJUST = "inventory:adjust"
    INVENTORY_TRANSFER = "inventory:transfer"

    # Products
    PRODUCTS_VIEW = "products:view"
    PRODUCTS_CREATE = "products:create"
    PRODUCTS_EDIT = "products:edit"
    PRODUCTS_DELETE = "products:delete"

    # Categories
    CATEGORIES_VIEW = "categories:view"
    CATEGORIES_MANAGE = "categories:manage"

    # Warehouses
    WAREHOUSES_VIEW = "warehouses:view"
    WAREHOUSES_MANAGE = "warehouses:manage"

    # Invoices
    INVOICES_VIEW = "invoices:view"
    INVOICES_CREATE = "invoices:create"
    INVOICES_EDIT = "invoices:edit"
    INVOICES_SEND = "invoices:send"
    INVOICES_CANCEL = "invoices:cancel"

    # Payments
    PAYMENTS_VIEW = "payments:view"
    PAYMENTS_CREATE = "payments:create"
    PAYMENTS_DELETE = "payments:delete"

    # Customers
    CUSTOMERS_VIEW = "customers:view"
    CUSTOMERS_CREATE = "customers:create"
    CUSTOMERS_EDIT = "customers:edit"
    CUSTOMERS_DELETE = "customers:delete"

    # Reports
    REPORTS_VIEW = "reports:view"
    REPORTS_EXPORT = "reports:export"

    # Electronic invoicing authority (DIAN)
    DIAN_VIEW = "dian:view"
    DIAN_CONFIG = "dian:config"
    DIAN_SEND = "dian:send"

    # Users / team
    USERS_VIEW = "users:view"
    USERS_MANAGE = "users:manage"
    USERS_INVITE = "users:invite"

    # Settings
    SETTINGS_VIEW = "settings:view"
    SETTINGS_MANAGE = "settings:manage"

    # Audit logs
    AUDIT_VIEW = "audit:view"
    AUDIT_EXPORT = "audit:export"

    # Cash registers
    CASH_REGISTERS_VIEW = "cash_registers:view"
    CASH_REGISTERS_MANAGE = "cash_registers:manage"

    # Quotations
    QUOTATIONS_VIEW = "quotations:view"
    QUOTATIONS_CREATE = "quotations:create"
    QUOTATIONS_EDIT = "quotations:edit"
    QUOTATIONS_DELETE = "quotations:delete"
    QUOTATIONS_CONVERT = "quotations:convert"

    # Suppliers
    SUPPLIERS_VIEW = "suppliers:view"
    SUPPLIERS_CREATE = "suppliers:create"
    SUPPLIERS_EDIT = "suppliers:edit"
    SUPPLIERS_DELETE = "suppliers:delete"

    # Purchase orders
    PURCHASE_ORDERS_VIEW = "purchase_orders:view"
    PURCHASE_ORDERS_CREATE = "purchase_orders:create"
    PURCHASE_ORDERS_EDIT = "purchase_orders:edit"
    PURCHASE_ORDERS_DELETE = "purchase_orders:delete"
    PURCHASE_ORDERS_SEND = "purchase_orders:send"
    PURCHASE_ORDERS_CONFIRM = "purchase_orders:confirm"
    PURCHASE_ORDERS_RECEIVE = "purchase_orders:receive"
    PURCHASE_ORDERS_CANCEL = "purchase_orders:cancel"

    # Accounting
    ACCOUNTING_VIEW = "accounting:view"
    ACCOUNTING_CREATE = "accounting:create"
    ACCOUNTING_EDIT = "accounting:edit"
    ACCOUNTING_CLOSE_PERIOD = "accounting:close_period"
    ACCOUNTING_CONFIG = "accounting:config"

    # Bank
    BANK_VIEW = "bank:view"
    BANK_CREATE = "bank:create"
    BANK_IMPORT = "bank:import"
    BANK_RECONCILE = "bank:reconcile"

    # Payroll
    PAYROLL_VIEW = "payroll:view"
    PAYROLL_CREATE = "payroll:create"
    PAYROLL_EDIT = "payroll:edit"
    PAYROLL_APPROVE = "payroll:approve"
    PAYROLL_CONFIG = "payroll:config"
    PAYROLL_SEND = "payroll:send"

    # Dashboard
    DASHBOARD_VIEW = "dashboard:view"

    @property
    def module(self) -> str:
        return self.value.split(":", 1)[0]


ALL_PERMISSIONS: frozenset[Permission] = frozenset(Permission)


def _module_permissions(module: str) -> list[Permission]:
    return [p for p in Permission if p.module == module]


# Grouping for admin UIs: module -> label + permissions, in catalog order.
PERMISSION_CATEGORIES: Mapping[str, dict] = MappingProxyType({
    module: {"label": label, "permissions": _module_permissions(module)}
    for module, label in (
        ("pos", "Point of sale"),
        ("inventory", "Inventory"),
        ("products", "Products"),
        ("categories", "Categories"),
        ("warehouses", "Warehouses"),
        ("invoices", "Invoices"),
        ("payments", "Payments"),
        ("customers", "Customers"),
        ("reports", "Reports"),
        ("dian", "DIAN"),
        ("users", "Users"),
        ("settings", "Settings"),
        ("audit", "Audit log"),
        ("cash_registers", "Cash registers"),
        ("quotations", "Quotations"),
        ("suppliers", "Suppliers"),
        ("purchase_orders", "Purchase orders"),
        ("accounting", "Accounting"),
        ("bank", "Bank"),
        ("payroll", "Payroll"),
        ("dashboard", "Dashboard"),
    )
})


# ── Role hierarchy ──────────────────────────────────────────

TOP_ROLE = UserRole.SUPER_ADMIN

ROLE_RANK: Mapping[UserRole, int] = MappingProxyType({
    UserRole.SUPER_ADMIN: 4,
    UserRole.ADMIN: 3,
    UserRole.MANAGER: 2,
    UserRole.EMPLOYEE: 1,
    UserRole.CONTADOR: 1,
})


def role_rank(role: UserRole) -> int:
    return ROLE_RANK[UserRole(role)]


# Roles never bound to a single warehouse.
LOCATION_BYPASS_ROLES: frozenset[UserRole] = frozenset(
    role for role in UserRole if role_rank(role) >= ROLE_RANK[UserRole.ADMIN]
)


# ── Role → default permissions ──────────────────────────────

_P = Permission

ROLE_DEFAULTS: Mapping[UserRole, frozenset[Permission]] = MappingProxyType({
    UserRole.SUPER_ADMIN: ALL_PERMISSIONS,

    # Full access within the tenant, except procurement, accounting, bank
    # and payroll, which are granted per user.
    UserRole.ADMIN: frozenset({
        _P.DASHBOARD_VIEW,
        *_module_permissions("pos"),
        *_module_permissions("inventory"),
        *_module_permissions("products"),
        *_module_permissions("categories"),
        *_module_permissions("warehouses"),
        *_module_permissions("invoices"),
        *_module_permissions("payments"),
        *_module_permissions("customers"),
        *_module_permissions("reports"),
        *_module_permissions("dian"),
        *_module_permissions("users"),
        *_module_permissions("settings"),
        *_module_permissions("audit"),
        *_module_permissions("cash_registers"),
        *_module_permissions("quotations"),
    }),

    # Day-to-day operations inside the assigned warehouse. No transfers,
    # no deletes, no user/settings/DIAN administration.
    UserRole.MANAGER: frozenset({
        _P.DASHBOARD_VIEW,
        _P.POS_SELL, _P.POS_REFUND, _P.POS_DISCOUNT,
        _P.POS_VIEW_SESSIONS, _P.POS_CLOSE_SESSION, _P.POS_CASH_MOVEMENT,
        _P.INVENTORY_VIEW, _P.INVENTORY_ADJUST,
        _P.PRODUCTS_VIEW, _P.PRODUCTS_CREATE, _P.PRODUCTS_EDIT,
        _P.CATEGORIES_VIEW,
        _P.WAREHOUSES_VIEW,
        _P.INVOICES_VIEW, _P.INVOICES_CREATE, _P.INVOICES_EDIT, _P.INVOICES_SEND,
        _P.PAYMENTS_VIEW, _P.PAYMENTS_CREATE,
        _P.CUSTOMERS_VIEW, _P.CUSTOMERS_CREATE, _P.CUSTOMERS_EDIT,
        _P.REPORTS_VIEW,
        _P.DIAN_VIEW,
        _P.USERS_VIEW,
        _P.CASH_REGISTERS_VIEW,
        *_module_permissions("quotations"),
    }),

    # Sales-focused, inside the assigned warehouse.
    UserRole.EMPLOYEE: frozenset({
        _P.DASHBOARD_VIEW,
        _P.POS_SELL,
        _P.PRODUCTS_VIEW,
        _P.CATEGORIES_VIEW,
        _P.INVOICES_VIEW, _P.INVOICES_CREATE,
        _P.CUSTOMERS_VIEW, _P.CUSTOMERS_CREATE,
        _P.QUOTATIONS_VIEW, _P.QUOTATIONS_CREATE,
    }),

    # Read-only financial access.
    UserRole.CONTADOR: frozenset({
        _P.DASHBOARD_VIEW,
        _P.PRODUCTS_VIEW,
        _P.CATEGORIES_VIEW,
        _P.WAREHOUSES_VIEW,
        _P.INVENTORY_VIEW,
        _P.INVOICES_VIEW,
        _P.PAYMENTS_VIEW,
        _P.CUSTOMERS_VIEW,
        _P.REPORTS_VIEW, _P.REPORTS_EXPORT,
        _P.DIAN_VIEW,
        _P.AUDIT_VIEW, _P.AUDIT_EXPORT,
        _P.QUOTATIONS_VIEW,
    }),
})


def validate_role_defaults(defaults: Mapping[UserRole, Iterable[Permission]]) -> None:
    """Fail fast unless every role has an entry and the top role holds everything."""
    missing = [role.value for role in UserRole if role not in defaults]
    if missing:
        raise MisconfigurationError(
            f"No default permissions configured for role(s): {', '.join(missing)}"
        )
    for role, perms in defaults.items():
        unknown = [p for p in perms if not isinstance(p, Permission)]
        if unknown:
            raise MisconfigurationError(
                f"Role {role.value} lists unknown permission(s): {unknown!r}"
            )
    if frozenset(defaults[TOP_ROLE]) != ALL_PERMISSIONS:
        raise MisconfigurationError(
            f"Role {TOP_ROLE.value} must hold every permission"
        )
    if set(ROLE_RANK) != set(UserRole):
        raise MisconfigurationError("Every role needs a rank in ROLE_RANK")


validate_role_defaults(ROLE_DEFAULTS)


# ── Lookups ─────────────────────────────────────────────────

def role_has_permission(role: UserRole, permission: Permission | str) -> bool:
    """Check whether a role holds a permission by default."""
    return Permission(permission) in ROLE_DEFAULTS[UserRole(role)]


def get_role_permissions(role: UserRole) -> list[Permission]:
    """Default permissions for a role, in catalog order."""
    defaults = ROLE_DEFAULTS[UserRole(role)]
    return [p for p in Permission if p in defaults]


def get_missing_permissions(role: UserRole) -> list[Permission]:
    """Permissions a role lacks by default, i.e. what can be granted."""
    defaults = ROLE_DEFAULTS[UserRole(role)]
    return [p for p in Permission if p not in defaults]


def parse_permission(value: str) -> Permission | None:
    """Return the catalog member for a stored string, or None if unknown."""
    try:
        return Permission(value)
    except ValueError:
        return None


# ── Resolution ──────────────────────────────────────────────

def apply_overrides(
    role: UserRole,
    overrides: Mapping[Permission, bool] | None = None,
) -> set[Permission]:
    """Compute effective permissions for a role and its override map.

    1. SUPER_ADMIN: the whole catalog, overrides ignored.
    2. Start from a copy of the role's defaults.
    3. Apply overrides: {perm: True} adds, {perm: False} removes.
    """
    role = UserRole(role)
    if role is TOP_ROLE:
        return set(ALL_PERMISSIONS)

    effective = set(ROLE_DEFAULTS[role])

    if overrides:
        for perm, granted in overrides.items():
            if granted:
                effective.add(perm)
            else:
                effective.discard(perm)

    return effective
