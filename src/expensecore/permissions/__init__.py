"""Role hierarchy, capability overrides and permission keys for expensecore.

Defines:
- Role: Ordered organization roles (employee < manager < finance < admin)
- DelegationScope: Delegation grant scopes and their hierarchy
- PrivilegedPermission: Closed set of platform-operator permission keys
- rank() / satisfies_*(): Pure membership checks
- scope_allows(): Delegation scope coverage
"""

from .constants import (
    ROLE_ORDER,
    SCOPE_DESCRIPTIONS,
    SCOPE_HIERARCHY,
    DelegationScope,
    PrivilegedPermission,
    Role,
)
from .hierarchy import (
    rank,
    satisfies_finance_access,
    satisfies_manage_expenses,
    satisfies_role,
    scope_allows,
)

__all__ = [
    "ROLE_ORDER",
    "SCOPE_DESCRIPTIONS",
    "SCOPE_HIERARCHY",
    "DelegationScope",
    "PrivilegedPermission",
    "Role",
    "rank",
    "satisfies_finance_access",
    "satisfies_manage_expenses",
    "satisfies_role",
    "scope_allows",
]
