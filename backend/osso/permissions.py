"""
Role allow-lists for every mutating operation.

The auth collaborator supplies a single role per user; each operation is
guarded by a fixed allow-list defined here so that route decorators and
in-process service callers enforce the same rule.
"""

# =============================================================================
# ROLES
# =============================================================================

class Role:
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    INVESTOR = "INVESTOR"
    WAREHOUSE = "WAREHOUSE"


ALL_ROLES = frozenset({
    Role.SUPER_ADMIN,
    Role.ADMIN,
    Role.MANAGER,
    Role.ACCOUNTANT,
    Role.INVESTOR,
    Role.WAREHOUSE,
})


# =============================================================================
# OPERATION ALLOW-LISTS
# =============================================================================

PERIODS_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
PERIODS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
PERIODS_UNLOCK_ROLES = frozenset({Role.SUPER_ADMIN})

CONTAINERS_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT, Role.WAREHOUSE})
CONTAINERS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
CONTAINERS_DELETE_ROLES = frozenset({Role.SUPER_ADMIN})
STOCK_ITEMS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN})

EXPENSES_ADD_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
EXPENSES_CORRECTION_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})

CLIENTS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER})
SALES_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER, Role.ACCOUNTANT})
SALES_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER})
SALES_DELETE_ROLES = frozenset({Role.SUPER_ADMIN})

INVESTORS_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
INVESTORS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
INVESTOR_PORTAL_ROLES = frozenset({Role.INVESTOR})

WAREHOUSE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.WAREHOUSE})
INVENTORY_SESSIONS_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
INVENTORY_CONFIRM_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
INVENTORY_SESSIONS_MANAGE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
INVENTORY_CONFIRMED_DELETE_ROLES = frozenset({Role.SUPER_ADMIN})

AUDIT_VIEW_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ACCOUNTANT})
SETTINGS_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
