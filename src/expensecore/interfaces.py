"""Collaborator contracts consumed by the authorization core.

Backends return ``None`` (or an empty list) for "not found" and raise for
real failures. A silently empty success for a failed query is a contract
violation: the core would treat it as a normal "no".
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import AuditRecord, DelegationGrant, Membership, Organization


class ContextStore(ABC):
    """Durable key/value store (survives process restarts)."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, key: str) -> None:
        raise NotImplementedError


class MembershipBackend(ABC):
    """Membership and organization queries."""

    @abstractmethod
    async def fetch_membership(self, organization_id: str, user_id: str) -> Optional[Membership]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_organization(self, organization_id: str) -> Optional[Organization]:
        raise NotImplementedError


class GrantBackend(ABC):
    """Delegation grant queries and the single mutation shape (save)."""

    @abstractmethod
    async def fetch_grants_by_delegate(self, delegate_id: str) -> List[DelegationGrant]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_grants_by_delegator(self, delegator_id: str) -> List[DelegationGrant]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_grant(
        self,
        delegator_id: str,
        delegate_id: str,
        organization_id: Optional[str],
    ) -> Optional[DelegationGrant]:
        """Return the grant for (delegator, delegate, organization), if any.

        Each organization holds its own grant for a pair; ``None`` selects
        the grant that is not bound to an organization.
        """
        raise NotImplementedError

    @abstractmethod
    async def save_grant(self, grant: DelegationGrant) -> DelegationGrant:
        """Insert or replace the grant keyed by its id."""
        raise NotImplementedError


class PrivilegedOperatorBackend(ABC):
    """Platform-operator record lookup."""

    @abstractmethod
    async def fetch_operator_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the active operator record (``{"permissions": {...}}``) or None."""
        raise NotImplementedError


class AuditSink(ABC):
    """Append-only audit trail. The core emits records, it never stores them."""

    @abstractmethod
    async def emit(self, record: AuditRecord) -> None:
        raise NotImplementedError


__all__ = [
    "AuditSink",
    "ContextStore",
    "GrantBackend",
    "MembershipBackend",
    "PrivilegedOperatorBackend",
]
