"""Tests for role ranking, capability overrides and delegation scopes."""

from __future__ import annotations

import itertools

import pytest

from expensecore import Membership, PrivilegedPermission, PrivilegedPermissions, Role
from expensecore.permissions import (
    ROLE_ORDER,
    SCOPE_DESCRIPTIONS,
    DelegationScope,
    rank,
    satisfies_finance_access,
    satisfies_manage_expenses,
    satisfies_role,
    scope_allows,
)


def _member(role: str, **flags) -> Membership:
    return Membership(organization_id="org-1", user_id="u-1", role=role, **flags)


class TestRank:
    """Tests for rank()."""

    def test_ranks(self) -> None:
        assert rank(Role.EMPLOYEE) == 0
        assert rank(Role.MANAGER) == 1
        assert rank(Role.FINANCE) == 2
        assert rank(Role.ADMIN) == 3

    def test_accepts_strings(self) -> None:
        assert rank("finance") == rank(Role.FINANCE)

    def test_unknown_role_raises(self) -> None:
        with pytest.raises(ValueError):
            rank("owner")

    def test_role_order_matches_rank(self) -> None:
        assert [rank(r) for r in ROLE_ORDER] == [0, 1, 2, 3]


class TestSatisfiesRole:
    """satisfies_role is monotone in the membership's role."""

    def test_monotonic(self) -> None:
        for held, required in itertools.product(ROLE_ORDER, ROLE_ORDER):
            expected = ROLE_ORDER.index(held) >= ROLE_ORDER.index(required)
            assert satisfies_role(_member(held.value), required) is expected, (held, required)

    def test_higher_role_keeps_access(self) -> None:
        """If a role satisfies X, every higher role does too."""
        for required in ROLE_ORDER:
            passing = [r for r in ROLE_ORDER if satisfies_role(_member(r.value), required)]
            assert passing == list(ROLE_ORDER[ROLE_ORDER.index(required):])


class TestFinanceAccess:
    @pytest.mark.parametrize(
        "role,flag,expected",
        [
            ("employee", False, False),
            ("employee", True, False),
            ("manager", False, False),
            ("manager", True, True),
            ("finance", False, True),
            ("finance", True, True),
            ("admin", False, True),
        ],
    )
    def test_override_table(self, role: str, flag: bool, expected: bool) -> None:
        assert satisfies_finance_access(_member(role, can_access_finance=flag)) is expected

    def test_unset_flag_is_false(self) -> None:
        assert satisfies_finance_access(_member("manager", can_access_finance=None)) is False


class TestManageExpenses:
    @pytest.mark.parametrize(
        "role,flag,expected",
        [
            ("employee", False, False),
            ("employee", True, False),
            ("manager", False, True),
            ("finance", False, False),
            ("finance", True, True),
            ("admin", False, True),
        ],
    )
    def test_override_table(self, role: str, flag: bool, expected: bool) -> None:
        assert satisfies_manage_expenses(_member(role, can_manage_expenses=flag)) is expected

    def test_employee_with_unset_flag_denied(self) -> None:
        assert satisfies_manage_expenses(_member("employee", can_manage_expenses=None)) is False


class TestScopeAllows:
    """Delegation scope hierarchy: all > submit > create > view."""

    @pytest.mark.parametrize(
        "scope,allowed",
        [
            ("all", {"all", "submit", "create", "view"}),
            ("submit", {"submit", "create", "view"}),
            ("create", {"create", "view"}),
            ("view", {"view"}),
        ],
    )
    def test_table(self, scope: str, allowed: set[str]) -> None:
        for action in DelegationScope:
            assert scope_allows(scope, action) is (action.value in allowed), (scope, action)

    def test_unknown_values(self) -> None:
        assert scope_allows("all", "approve") is False
        assert scope_allows("everything", "view") is False

    def test_every_scope_described(self) -> None:
        assert set(SCOPE_DESCRIPTIONS) == set(DelegationScope)


class TestPrivilegedPermissions:
    def test_model_has_one_field_per_key(self) -> None:
        assert set(PrivilegedPermissions.model_fields) == {p.value for p in PrivilegedPermission}

    def test_defaults_to_nothing_granted(self) -> None:
        assert PrivilegedPermissions().granted() == frozenset()

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            PrivilegedPermissions.model_validate({"launch_rockets": True})

    def test_has(self) -> None:
        perms = PrivilegedPermissions(view_analytics=True)
        assert perms.has(PrivilegedPermission.VIEW_ANALYTICS)
        assert perms.has("view_analytics")
        assert not perms.has("issue_refunds")
        assert perms.granted() == frozenset({PrivilegedPermission.VIEW_ANALYTICS})
