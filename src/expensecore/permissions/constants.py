"""Role, delegation scope and privileged permission constants.

Provides:
- ``Role``: organization roles, totally ordered (employee < manager < finance < admin).
- ``DelegationScope``: what a delegation grant lets a delegate do.
- ``PrivilegedPermission``: closed set of platform-operator permission keys.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Role of a caller within one organization.

    Declaration order is the privilege order. Changing it is a breaking
    change: persisted memberships and every ``satisfies_role`` check
    depend on it.
    """

    EMPLOYEE = "employee"
    MANAGER = "manager"
    FINANCE = "finance"
    ADMIN = "admin"


ROLE_ORDER: tuple[Role, ...] = (Role.EMPLOYEE, Role.MANAGER, Role.FINANCE, Role.ADMIN)


class DelegationScope(str, Enum):
    """Scope of a delegation grant, also used as the attempted action.

    Hierarchy: ``all`` > ``submit`` > ``create`` > ``view``.
    A grant covers its own scope and every scope below it.
    """

    VIEW = "view"  # Read the delegator's expenses
    CREATE = "create"  # + create drafts
    SUBMIT = "submit"  # + submit for approval
    ALL = "all"  # Everything


# Lowest → highest
SCOPE_HIERARCHY: tuple[DelegationScope, ...] = (
    DelegationScope.VIEW,
    DelegationScope.CREATE,
    DelegationScope.SUBMIT,
    DelegationScope.ALL,
)

SCOPE_DESCRIPTIONS: dict[DelegationScope, str] = {
    DelegationScope.ALL: "Full access - create, submit, and view expenses",
    DelegationScope.SUBMIT: "Create and submit expenses",
    DelegationScope.CREATE: "Create draft expenses only",
    DelegationScope.VIEW: "View expenses only, no modifications",
}


class PrivilegedPermission(str, Enum):
    """Platform-operator permission keys.

    Closed set: an operator record carrying any other key is rejected when
    it is decoded (see ``expensecore.models.PrivilegedPermissions``).
    """

    VIEW_ORGANIZATIONS = "view_organizations"
    MANAGE_SUBSCRIPTIONS = "manage_subscriptions"
    ISSUE_REFUNDS = "issue_refunds"
    CREATE_COUPONS = "create_coupons"
    VIEW_ANALYTICS = "view_analytics"
    MANAGE_SUPER_ADMINS = "manage_super_admins"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_ANNOUNCEMENTS = "manage_announcements"
    MANAGE_EMAIL_TEMPLATES = "manage_email_templates"
    IMPERSONATE_USERS = "impersonate_users"
    VIEW_ERROR_LOGS = "view_error_logs"
    MANAGE_PLANS = "manage_plans"
    MANAGE_API_KEYS = "manage_api_keys"
    EXPORT_DATA = "export_data"
    DELETE_ORGANIZATIONS = "delete_organizations"
    BULK_OPERATIONS = "bulk_operations"


__all__ = [
    "DelegationScope",
    "PrivilegedPermission",
    "ROLE_ORDER",
    "Role",
    "SCOPE_DESCRIPTIONS",
    "SCOPE_HIERARCHY",
]
