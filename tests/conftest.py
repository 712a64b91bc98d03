"""Shared fakes and fixtures for expensecore tests."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from expensecore import (
    AuditRecord,
    AuditSink,
    Backends,
    DelegationGrant,
    GrantBackend,
    InMemoryContextStore,
    Membership,
    MembershipBackend,
    Organization,
    PrivilegedOperatorBackend,
    Session,
    SharedConfig,
)


class FlakyContextStore(InMemoryContextStore):
    """In-memory store whose writes can be switched to fail."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        super().__init__(initial)
        self.fail_writes = False
        self.fail_reads = False
        self.set_calls: list[tuple[str, str]] = []

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise ConnectionError("store unreachable")
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        self.set_calls.append((key, value))
        if self.fail_writes:
            raise ConnectionError("store unreachable")
        await super().set(key, value)

    async def remove(self, key: str) -> None:
        if self.fail_writes:
            raise ConnectionError("store unreachable")
        await super().remove(key)


class FakeMembershipBackend(MembershipBackend):
    """Memberships keyed by (org, user). An unset event in ``gates[org_id]``
    holds organization lookups for that org until the test sets it.
    """

    def __init__(self) -> None:
        self.organizations: dict[str, Organization] = {}
        self.memberships: dict[tuple[str, str], Membership] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.fail = False

    def add(self, org_id: str, user_id: str, role: str = "employee", **flags: Any) -> Membership:
        self.organizations.setdefault(org_id, Organization(id=org_id, name=f"Org {org_id}"))
        membership = Membership(organization_id=org_id, user_id=user_id, role=role, **flags)
        self.memberships[(org_id, user_id)] = membership
        return membership

    async def fetch_membership(self, organization_id: str, user_id: str) -> Optional[Membership]:
        if self.fail:
            raise ConnectionError("backend down")
        return self.memberships.get((organization_id, user_id))

    async def fetch_organization(self, organization_id: str) -> Optional[Organization]:
        gate = self.gates.get(organization_id)
        if gate is not None:
            await gate.wait()
        if self.fail:
            raise ConnectionError("backend down")
        return self.organizations.get(organization_id)


class FakeGrantBackend(GrantBackend):
    def __init__(self) -> None:
        self.grants: dict[str, DelegationGrant] = {}
        self.fail = False

    def add(self, grant: DelegationGrant) -> DelegationGrant:
        self.grants[grant.id] = grant
        return grant

    async def fetch_grants_by_delegate(self, delegate_id: str) -> list[DelegationGrant]:
        self._check()
        return [g for g in self.grants.values() if g.delegate_id == delegate_id]

    async def fetch_grants_by_delegator(self, delegator_id: str) -> list[DelegationGrant]:
        self._check()
        return [g for g in self.grants.values() if g.delegator_id == delegator_id]

    async def fetch_grant(
        self, delegator_id: str, delegate_id: str, organization_id: Optional[str]
    ) -> Optional[DelegationGrant]:
        self._check()
        for grant in self.grants.values():
            if (
                grant.delegator_id == delegator_id
                and grant.delegate_id == delegate_id
                and grant.organization_id == organization_id
            ):
                return grant
        return None

    async def save_grant(self, grant: DelegationGrant) -> DelegationGrant:
        self._check()
        self.grants[grant.id] = grant
        return grant

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("backend down")


class FakeOperatorBackend(PrivilegedOperatorBackend):
    """Operator records with a call counter and an optional gate.

    While ``gate`` is set to an unset ``asyncio.Event``, lookups block
    until the test releases it.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail = False

    async def fetch_operator_record(self, user_id: str) -> Optional[dict[str, Any]]:
        self.calls.append(user_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("backend down")
        return self.records.get(user_id)


class RecordingAuditSink(AuditSink):
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def emit(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> list[str]:
        return [r.action for r in self.records]


@pytest.fixture
def store() -> FlakyContextStore:
    return FlakyContextStore()


@pytest.fixture
def memberships() -> FakeMembershipBackend:
    return FakeMembershipBackend()


@pytest.fixture
def grants() -> FakeGrantBackend:
    return FakeGrantBackend()


@pytest.fixture
def operators() -> FakeOperatorBackend:
    return FakeOperatorBackend()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def config() -> SharedConfig:
    return SharedConfig(privileged_check_timeout_s=1.0)


@pytest.fixture
def backends(store, memberships, grants, operators, audit) -> Backends:
    return Backends(store=store, memberships=memberships, grants=grants, operators=operators, audit=audit)


@pytest.fixture
def session(backends, config) -> Session:
    return Session(backends, config, session_id="sess-1")
