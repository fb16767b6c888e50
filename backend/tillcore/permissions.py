"""
Permission codes and default role mappings.

Permissions are evaluated by the auth collaborator; this module only names
them. A token's grant is either an explicit permission list or a role from
DEFAULT_ROLE_PERMISSIONS.
"""

class PermissionCategory:
    SALES = "SALES"
    LOYALTY = "LOYALTY"
    STORE = "STORE"


# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    (
        "PROCESS_SALE",
        "Process Sale",
        "Quote and settle sales at the till",
        PermissionCategory.SALES
    ),
    (
        "VIEW_SALES",
        "View Sales",
        "View sales history and receipts",
        PermissionCategory.SALES
    ),
    (
        "DELETE_SALE",
        "Delete Sale",
        "Delete a settled sale (store owner only)",
        PermissionCategory.SALES
    ),
    (
        "REDEEM_POINTS",
        "Redeem Points",
        "Look up loyalty customers and redeem points for rewards",
        PermissionCategory.LOYALTY
    ),
    (
        "MANAGE_CUSTOMERS",
        "Manage Customers",
        "Search the customer directory, add customers and correct names",
        PermissionCategory.LOYALTY
    ),
    (
        "MANAGE_STORE",
        "Manage Store",
        "Edit tax, receipt numbering, loyalty and messaging settings",
        PermissionCategory.STORE
    ),
    (
        "VIEW_NOTIFICATIONS",
        "View Notifications",
        "Read and dismiss in-app notifications",
        PermissionCategory.STORE
    ),
]


DEFAULT_ROLE_PERMISSIONS = {
    "owner": [
        "PROCESS_SALE",
        "VIEW_SALES",
        "DELETE_SALE",
        "REDEEM_POINTS",
        "MANAGE_CUSTOMERS",
        "MANAGE_STORE",
        "VIEW_NOTIFICATIONS",
    ],
    "manager": [
        "PROCESS_SALE",
        "VIEW_SALES",
        "REDEEM_POINTS",
        "MANAGE_CUSTOMERS",
        "MANAGE_STORE",
        "VIEW_NOTIFICATIONS",
    ],
    "cashier": [
        # POS operations only
        "PROCESS_SALE",
        "REDEEM_POINTS",
        "MANAGE_CUSTOMERS",
    ],
}


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def permissions_for_role(role):
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, []))
