"""Delegation grant lifecycle: create, update, revoke, expire.

Every mutation emits exactly one ``AuditRecord``. Grants are never
deleted; revocation and expiry are recorded on the grant itself.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, List, Optional

from ..exceptions import (
    DelegationConflictError,
    DelegationInvalidError,
    ExpenseCoreError,
    InsufficientAccessError,
    UpstreamUnavailableError,
)
from ..interfaces import AuditSink, GrantBackend, MembershipBackend
from ..models import AuditRecord, DelegationGrant, utcnow
from ..permissions.constants import DelegationScope, Role
from .resolver import DelegationAuditAction

logger = logging.getLogger(__name__)

# Longest chain followed when looking for a cycle (A -> B -> ... -> A)
MAX_CHAIN_DEPTH = 10

_UPDATABLE_FIELDS = frozenset({"scope", "valid_from", "valid_until", "notes"})


def _audit_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return getattr(value, "value", value)


class DelegationService:
    """Creates and maintains delegation grants.

    Only the delegator, or an active admin of the grant's organization,
    may create, update or revoke a grant.

    Args:
        backend: Grant storage.
        audit_sink: Receives one record per mutation.
        memberships: Resolves admin rights of actors other than the delegator.
        id_factory: Produces ids for new grants.
    """

    def __init__(
        self,
        backend: GrantBackend,
        audit_sink: Optional[AuditSink] = None,
        *,
        memberships: Optional[MembershipBackend] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._backend = backend
        self._audit = audit_sink
        self._memberships = memberships
        self._id_factory = id_factory

    async def create(
        self,
        delegator_id: str,
        delegate_id: str,
        *,
        scope: DelegationScope | str = DelegationScope.ALL,
        organization_id: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DelegationGrant:
        """Create (or re-activate) the grant for a delegator/delegate pair.

        An existing grant for the pair in the same organization is replaced
        in place, keeping its id. ``created_by`` defaults to the delegator.

        Raises:
            InsufficientAccessError: If ``created_by`` is neither the delegator
                nor an admin of ``organization_id``.
            DelegationConflictError: Self-delegation, a cycle, or an empty window.
            UpstreamUnavailableError: If the backend failed.
        """
        if delegator_id == delegate_id:
            raise DelegationConflictError("Cannot delegate to yourself", delegator_id=delegator_id)

        actor_id = created_by or delegator_id
        await self._require_manager(actor_id, delegator_id, organization_id)

        now = now or utcnow()
        valid_from = valid_from or now
        if valid_until is not None and valid_until < valid_from:
            raise DelegationConflictError("valid_until must not precede valid_from")

        await self._check_cycle(delegator_id, delegate_id, organization_id, now)

        existing = await self._call(self._backend.fetch_grant, delegator_id, delegate_id, organization_id)
        grant = DelegationGrant(
            id=existing.id if existing else self._id_factory(),
            organization_id=organization_id,
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            scope=DelegationScope(scope),
            valid_from=valid_from,
            valid_until=valid_until,
            created_by=actor_id,
            created_at=existing.created_at if existing else now,
            notes=notes,
        )
        saved = await self._call(self._backend.save_grant, grant)

        await self._emit(
            DelegationAuditAction.CREATED,
            saved,
            actor_id=actor_id,
            details={
                "scope": saved.scope.value,
                "valid_until": saved.valid_until.isoformat() if saved.valid_until else None,
            },
        )
        logger.info("Delegation %s created: %s -> %s (%s)", saved.id, delegator_id, delegate_id, saved.scope.value)
        return saved

    async def update(self, grant: DelegationGrant, *, actor_id: str, **changes: Any) -> DelegationGrant:
        """Change scope, window or notes of an active grant.

        Raises:
            ValueError: For fields that cannot be changed.
            DelegationInvalidError: If the grant has been revoked.
            InsufficientAccessError: If ``actor_id`` may not manage the grant.
            DelegationConflictError: If the new window is empty.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update delegation fields: {sorted(unknown)}")
        if grant.is_revoked:
            raise DelegationInvalidError("Cannot update a revoked delegation", grant_id=grant.id)
        await self._require_manager(actor_id, grant.delegator_id, grant.organization_id)

        if "scope" in changes:
            changes["scope"] = DelegationScope(changes["scope"])
        valid_from = changes.get("valid_from", grant.valid_from)
        valid_until = changes.get("valid_until", grant.valid_until)
        if valid_until is not None and valid_until < valid_from:
            raise DelegationConflictError("valid_until must not precede valid_from", grant_id=grant.id)

        updated = DelegationGrant.model_validate({**grant.model_dump(), **changes})
        saved = await self._call(self._backend.save_grant, updated)

        await self._emit(
            DelegationAuditAction.UPDATED,
            saved,
            actor_id=actor_id,
            details={k: _audit_value(v) for k, v in changes.items()},
        )
        return saved

    async def revoke(self, grant: DelegationGrant, *, revoked_by: str, now: Optional[datetime] = None) -> DelegationGrant:
        """Revoke ``grant``. Revoking twice is a no-op that emits nothing.

        Raises:
            InsufficientAccessError: If ``revoked_by`` is neither the delegator
                nor an admin of the grant's organization.
        """
        await self._require_manager(revoked_by, grant.delegator_id, grant.organization_id)
        if grant.is_revoked:
            return grant

        revoked = grant.model_copy(update={"revoked_at": now or utcnow(), "revoked_by": revoked_by})
        saved = await self._call(self._backend.save_grant, revoked)

        await self._emit(DelegationAuditAction.REVOKED, saved, actor_id=revoked_by)
        logger.info("Delegation %s revoked by %s", saved.id, revoked_by)
        return saved

    async def expire_lapsed(self, delegator_id: str, *, now: Optional[datetime] = None) -> List[DelegationGrant]:
        """Close every grant of ``delegator_id`` whose window has passed.

        Expired grants are marked revoked (``revoked_by=None``) so the
        ``expired`` audit record is emitted once per grant.

        Returns:
            The grants expired by this call.
        """
        now = now or utcnow()
        grants = await self._call(self._backend.fetch_grants_by_delegator, delegator_id)
        expired: List[DelegationGrant] = []
        for grant in grants:
            if grant.is_revoked or not grant.is_expired(now):
                continue
            closed = await self._call(
                self._backend.save_grant,
                grant.model_copy(update={"revoked_at": now, "revoked_by": None}),
            )
            await self._emit(
                DelegationAuditAction.EXPIRED,
                closed,
                actor_id=None,
                details={"valid_until": grant.valid_until.isoformat() if grant.valid_until else None},
            )
            expired.append(closed)

        if expired:
            logger.info("Expired %d delegation(s) of %s", len(expired), delegator_id)
        return expired

    # ── Internals ───────────────────────────────────────

    async def _require_manager(self, actor_id: str, delegator_id: str, organization_id: Optional[str]) -> None:
        """Allow the delegator, or an active admin of ``organization_id``."""
        if actor_id == delegator_id:
            return
        if self._memberships is not None and organization_id is not None:
            membership = await self._call(self._memberships.fetch_membership, organization_id, actor_id)
            if membership is not None and membership.is_active and membership.role == Role.ADMIN:
                return
        logger.warning("%s may not manage delegations of %s in %s", actor_id, delegator_id, organization_id)
        raise InsufficientAccessError(
            "Only the delegator or an organization admin may manage this delegation",
            delegator_id=delegator_id,
            organization_id=organization_id,
        )

    async def _check_cycle(
        self,
        delegator_id: str,
        delegate_id: str,
        organization_id: Optional[str],
        now: datetime,
    ) -> None:
        """Reject the grant if ``delegate_id`` already reaches ``delegator_id``."""
        frontier = [delegate_id]
        seen = {delegate_id}
        for _ in range(MAX_CHAIN_DEPTH):
            next_frontier: List[str] = []
            for user_id in frontier:
                for grant in await self._call(self._backend.fetch_grants_by_delegator, user_id):
                    if grant.is_revoked or grant.is_expired(now):
                        continue
                    if organization_id is not None and grant.organization_id not in (None, organization_id):
                        continue
                    if grant.delegate_id == delegator_id:
                        if user_id == delegate_id:
                            raise DelegationConflictError(
                                f"Circular delegation not allowed: {delegate_id} already delegates to {delegator_id}"
                            )
                        raise DelegationConflictError("Circular delegation chain detected")
                    if grant.delegate_id not in seen:
                        seen.add(grant.delegate_id)
                        next_frontier.append(grant.delegate_id)
            if not next_frontier:
                return
            frontier = next_frontier

    async def _call(self, fn, *args):
        try:
            return await fn(*args)
        except ExpenseCoreError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(f"Delegation backend call failed: {e}") from e

    async def _emit(
        self,
        action: DelegationAuditAction,
        grant: DelegationGrant,
        *,
        actor_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        if self._audit is None:
            return
        await self._audit.emit(
            AuditRecord(
                actor_id=actor_id,
                target_id=grant.delegate_id,
                action=action.value,
                organization_id=grant.organization_id,
                details={"grant_id": grant.id, "delegator_id": grant.delegator_id, **(details or {})},
            )
        )


__all__ = [
    "MAX_CHAIN_DEPTH",
    "DelegationService",
]
