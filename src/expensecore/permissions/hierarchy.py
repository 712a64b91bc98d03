"""Role ranking, capability overrides and delegation scope coverage.

Pure functions, no I/O. Used by the authorization gateway and by the
delegation resolver. Malformed role values never reach this module: they
fail when a ``Membership`` is decoded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .constants import ROLE_ORDER, SCOPE_HIERARCHY, DelegationScope, Role

if TYPE_CHECKING:
    from ..models import Membership

_RANKS: dict[Role, int] = {role: index for index, role in enumerate(ROLE_ORDER)}


def rank(role: Role | str) -> int:
    """Return the privilege rank of a role.

    ``employee=0, manager=1, finance=2, admin=3``. Accepts the enum or its
    string value.

    Raises:
        ValueError: If ``role`` is not a known role string.
    """
    return _RANKS[Role(role)]


def satisfies_role(membership: Membership, required_role: Role | str) -> bool:
    """True iff the membership's role ranks at least as high as ``required_role``."""
    return rank(membership.role) >= rank(required_role)


def satisfies_finance_access(membership: Membership) -> bool:
    """Check finance access, honouring the ``can_access_finance`` override.

    - finance and admin always have access
    - manager has access only when ``can_access_finance`` is set
    - employee never has access, whatever the flag says

    Example::

        satisfies_finance_access(Membership(role="manager", can_access_finance=True, ...))  # True
        satisfies_finance_access(Membership(role="employee", can_access_finance=True, ...))  # False
    """
    if rank(membership.role) >= rank(Role.FINANCE):
        return True
    return Role(membership.role) == Role.MANAGER and membership.can_access_finance


def satisfies_manage_expenses(membership: Membership) -> bool:
    """Check expense-management capability, honouring ``can_manage_expenses``.

    Manager rank and above have it. The override only counts for the
    finance role; an employee with the flag set is still denied.
    """
    if rank(membership.role) >= rank(Role.MANAGER):
        return True
    return Role(membership.role) == Role.FINANCE and membership.can_manage_expenses


def scope_allows(scope: DelegationScope | str, action: DelegationScope | str) -> bool:
    """Check if a grant scope covers an attempted action.

    Scope hierarchy: ``all`` > ``submit`` > ``create`` > ``view``; a grant
    covers its own scope and every lower one.

    Example::

        scope_allows("submit", "create")  # True
        scope_allows("create", "submit")  # False
        scope_allows("all", "submit")     # True

    Returns:
        False for unknown scope or action strings.
    """
    try:
        granted_idx = SCOPE_HIERARCHY.index(DelegationScope(scope))
        required_idx = SCOPE_HIERARCHY.index(DelegationScope(action))
    except ValueError:
        return False  # Unknown scope
    return granted_idx >= required_idx


__all__ = [
    "rank",
    "satisfies_finance_access",
    "satisfies_manage_expenses",
    "satisfies_role",
    "scope_allows",
]
