"""Effective subject resolution for delegated actions.

A caller may act on behalf of a delegator while a grant covers the
action. The selection (``ActingContext``) belongs to one session and is
never persisted; whether the grant still covers an action is re-checked
against the backend at every action boundary (``require_can_act``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..exceptions import DelegationInvalidError, ExpenseCoreError, UpstreamUnavailableError
from ..interfaces import AuditSink, GrantBackend
from ..models import AuditRecord, DelegationGrant
from ..permissions.constants import DelegationScope

logger = logging.getLogger(__name__)


class DelegationAuditAction(str, Enum):
    """Audit actions emitted for delegation grants."""

    CREATED = "delegation.created"
    UPDATED = "delegation.updated"
    REVOKED = "delegation.revoked"
    EXPIRED = "delegation.expired"
    USED = "delegation.used"


@dataclass(frozen=True)
class ActingContext:
    """Which delegator (if any) the session currently acts for."""

    grant: Optional[DelegationGrant] = None

    @property
    def delegator_id(self) -> Optional[str]:
        return self.grant.delegator_id if self.grant else None

    @property
    def is_self(self) -> bool:
        return self.grant is None


class DelegationResolver:
    """Resolves "who is acting for whom" for one session.

    Args:
        backend: Grant queries.
        audit_sink: Receives ``delegation.used`` records.
    """

    def __init__(self, backend: GrantBackend, audit_sink: Optional[AuditSink] = None) -> None:
        self._backend = backend
        self._audit = audit_sink
        self._acting = ActingContext()

    @property
    def acting(self) -> ActingContext:
        return self._acting

    # ── Queries ─────────────────────────────────────────

    async def list_grants_where_i_am_delegate(self, caller_id: str) -> List[DelegationGrant]:
        """Grants naming ``caller_id`` as delegate (people I may act for)."""
        return await self._query(self._backend.fetch_grants_by_delegate, caller_id)

    async def list_grants_where_i_am_delegator(self, caller_id: str) -> List[DelegationGrant]:
        """Grants ``caller_id`` issued (people who may act for me)."""
        return await self._query(self._backend.fetch_grants_by_delegator, caller_id)

    async def can_act(
        self,
        delegate_id: str,
        delegator_id: str,
        scope: DelegationScope | str,
        *,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Check if ``delegate_id`` may perform ``scope`` for ``delegator_id`` now.

        Only the grant of ``organization_id`` counts. A missing grant is a
        plain ``False``.

        Raises:
            UpstreamUnavailableError: If the grant lookup failed.
        """
        try:
            grant = await self._backend.fetch_grant(delegator_id, delegate_id, organization_id)
        except ExpenseCoreError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(
                "Delegation lookup failed",
                delegator_id=delegator_id,
                delegate_id=delegate_id,
                organization_id=organization_id,
            ) from e

        if grant is None or grant.delegate_id != delegate_id or grant.organization_id != organization_id:
            return False
        return grant.covers(scope, now)

    # ── Acting selection ────────────────────────────────

    def set_acting(self, grant: Optional[DelegationGrant], caller_id: Optional[str] = None) -> None:
        """Act for ``grant.delegator_id`` from now on (None = act as self).

        Only checks that the grant names ``caller_id`` as its delegate;
        coverage is checked per action by ``require_can_act``.

        Raises:
            DelegationInvalidError: If the grant belongs to another delegate.
        """
        if grant is not None and caller_id is not None and grant.delegate_id != caller_id:
            raise DelegationInvalidError(
                "Grant does not name the caller as delegate",
                grant_id=grant.id,
            )
        self._acting = ActingContext(grant)
        if grant is None:
            logger.debug("Acting as self")
        else:
            logger.info("Acting for %s via grant %s", grant.delegator_id, grant.id)

    def clear_acting(self) -> None:
        self._acting = ActingContext()

    def effective_subject_id(self, caller_id: str) -> str:
        """The delegator being acted for, else ``caller_id``.

        Never falls back to the caller when the selected grant has lapsed;
        that is decided by ``require_can_act``.
        """
        return self._acting.delegator_id or caller_id

    async def require_can_act(
        self,
        caller_id: str,
        scope: DelegationScope | str,
        *,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Re-validate the acting selection for one action.

        With ``organization_id`` (the organization the action runs in), a
        grant issued in another organization is rejected.

        Returns:
            The id the action must be attributed to.

        Raises:
            DelegationInvalidError: If the selected grant no longer covers ``scope``
                or belongs to another organization.
            UpstreamUnavailableError: If the grant lookup failed.
        """
        grant = self._acting.grant
        if grant is None or grant.delegator_id == caller_id:
            return caller_id

        action = str(getattr(scope, "value", scope))

        if organization_id is not None and grant.organization_id not in (None, organization_id):
            logger.warning(
                "Delegation %s belongs to organization %s, not %s",
                grant.id,
                grant.organization_id,
                organization_id,
            )
            raise DelegationInvalidError(
                "Delegation belongs to another organization",
                delegator_id=grant.delegator_id,
                scope=action,
            )

        if grant.delegate_id != caller_id or not await self.can_act(
            caller_id, grant.delegator_id, scope, organization_id=grant.organization_id, now=now
        ):
            logger.warning(
                "Delegation check failed: %s may not %s for %s",
                caller_id,
                action,
                grant.delegator_id,
            )
            raise DelegationInvalidError(
                "Delegation does not cover this action",
                delegator_id=grant.delegator_id,
                scope=action,
            )

        if self._audit is not None:
            await self._audit.emit(
                AuditRecord(
                    actor_id=caller_id,
                    target_id=grant.delegator_id,
                    action=DelegationAuditAction.USED.value,
                    organization_id=grant.organization_id,
                    details={"grant_id": grant.id, "scope": action},
                )
            )
        return grant.delegator_id

    async def _query(self, fetch, caller_id: str) -> List[DelegationGrant]:
        try:
            return list(await fetch(caller_id))
        except ExpenseCoreError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError("Delegation query failed", caller_id=caller_id) from e


__all__ = [
    "ActingContext",
    "DelegationAuditAction",
    "DelegationResolver",
]
