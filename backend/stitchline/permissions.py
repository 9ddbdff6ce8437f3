# Overview: Roles and the action permissions each role holds.
# Each permission is defined as: (code, name, description)

ROLE_ADMIN = "admin"
ROLE_FABRIC_STAFF = "fabric_staff"
ROLE_CUTTING_MASTER = "cutting_master"
ROLE_LINE_MASTER = "line_master"
ROLE_FINISHING_HEAD = "finishing_head"
ROLE_WAREHOUSE_HEAD = "warehouse_head"
ROLE_SALES_TEAM = "sales_team"
ROLE_QC_TEAM = "qc_team"

ROLES = (
    ROLE_ADMIN,
    ROLE_FABRIC_STAFF,
    ROLE_CUTTING_MASTER,
    ROLE_LINE_MASTER,
    ROLE_FINISHING_HEAD,
    ROLE_WAREHOUSE_HEAD,
    ROLE_SALES_TEAM,
    ROLE_QC_TEAM,
)


PERMISSION_DEFINITIONS = [
    (
        "RECORD_EVENTS",
        "Record Events",
        "Append fabric, cutting, production, finishing, warehouse, sales and return events",
    ),
    (
        "MANAGE_SKUS",
        "Manage SKUs",
        "Edit, delete and bulk-create SKUs",
    ),
    (
        "EDIT_LEDGER",
        "Edit Ledger",
        "Update or delete recorded stage events and returns",
    ),
    (
        "PROCESS_RETURNS",
        "Process Returns",
        "Mark pending returns as refinished or rejected",
    ),
    (
        "VIEW_RETURN_ANALYTICS",
        "View Return Analytics",
        "View return rates by panel and condition",
    ),
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and change their roles",
    ),
    (
        "RUN_IMPORTS",
        "Run Imports",
        "Confirm tabular imports",
    ),
]


_ALL = {code for code, _, _ in PERMISSION_DEFINITIONS}

DEFAULT_ROLE_PERMISSIONS: dict[str, set[str]] = {
    ROLE_ADMIN: set(_ALL),
    ROLE_QC_TEAM: {"RECORD_EVENTS", "PROCESS_RETURNS"},
    ROLE_FABRIC_STAFF: {"RECORD_EVENTS"},
    ROLE_CUTTING_MASTER: {"RECORD_EVENTS"},
    ROLE_LINE_MASTER: {"RECORD_EVENTS"},
    ROLE_FINISHING_HEAD: {"RECORD_EVENTS"},
    ROLE_WAREHOUSE_HEAD: {"RECORD_EVENTS"},
    ROLE_SALES_TEAM: {"RECORD_EVENTS", "RUN_IMPORTS"},
}


def validate_role(role: str) -> bool:
    return role in DEFAULT_ROLE_PERMISSIONS
