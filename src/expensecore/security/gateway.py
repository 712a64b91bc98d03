"""Authorization gateway: one entry point for guards and feature checks.

Composes the session's organization context, role hierarchy, delegation
resolver and privileged status into ``Decision`` values. Denials never
raise; every denial carries a ``DenialReason`` and the redirect target
configured for it, so a caller is never sent to a dead end.

Unexpected backend failures are converted into fail-closed denials
(``UPSTREAM_UNAVAILABLE``) and logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config import RedirectConfig, SharedConfig
from ..exceptions import DelegationInvalidError, NoOrganizationError, NotAuthenticatedError
from ..models import Membership, PrivilegedOperatorStatus
from ..permissions.constants import DelegationScope, PrivilegedPermission, Role
from ..permissions.hierarchy import satisfies_finance_access, satisfies_manage_expenses, satisfies_role
from ..session import Session

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    """Why a decision denied. Each reason has its own redirect target."""

    NOT_AUTHENTICATED = "not_authenticated"
    NO_ORGANIZATION = "no_organization"
    INSUFFICIENT_ACCESS = "insufficient_access"
    DELEGATION_INVALID = "delegation_invalid"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


@dataclass(frozen=True)
class Decision:
    """Allow, or deny with a reason and a redirect target."""

    allowed: bool
    reason: Optional[DenialReason] = None
    redirect_to: Optional[str] = None
    message: str = ""
    subject_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return not self.allowed

    @classmethod
    def allow(cls, *, subject_id: Optional[str] = None) -> Decision:
        return cls(allowed=True, subject_id=subject_id)

    @classmethod
    def deny(cls, reason: DenialReason, redirect_to: str, message: str = "", **details: Any) -> Decision:
        return cls(allowed=False, reason=reason, redirect_to=redirect_to, message=message, details=details)


# Requirement strings understood by ``AuthorizationGateway.evaluate``
REQ_ORGANIZATION = "organization"
REQ_FINANCE = "finance"
REQ_MANAGE_EXPENSES = "manage_expenses"
REQ_PRIVILEGED = "privileged"
REQ_NON_PRIVILEGED = "non_privileged"
REQ_AUTHENTICATED = "authenticated"


class AuthorizationGateway:
    """Decisions for one session.

    Args:
        session: The caller's session.
        config: Shared configuration (defaults to the session's).

    Usage::

        gateway = AuthorizationGateway(session)
        decision = gateway.require_finance_access()
        if decision.blocked:
            return redirect(decision.redirect_to)
    """

    def __init__(self, session: Session, config: Optional[SharedConfig] = None) -> None:
        self._session = session
        self._config = config or session.config

    @property
    def session(self) -> Session:
        return self._session

    @property
    def redirects(self) -> RedirectConfig:
        return self._config.redirects

    # ── Organization role checks ────────────────────────

    def require_role(self, role: Role | str) -> Decision:
        """Allow members whose role ranks at least ``role``."""
        return self._check_membership(lambda m: satisfies_role(m, role), requirement=f"role:{Role(role).value}")

    def require_finance_access(self) -> Decision:
        return self._check_membership(satisfies_finance_access, requirement=REQ_FINANCE)

    def require_manage_expenses(self) -> Decision:
        return self._check_membership(satisfies_manage_expenses, requirement=REQ_MANAGE_EXPENSES)

    async def require_organization(self) -> Decision:
        """Authenticated and an organization is selected (snapshot or durable)."""
        if not self._session.is_authenticated:
            return self._not_authenticated()
        try:
            await self._session.require_organization_id()
        except NotAuthenticatedError:
            return self._not_authenticated()
        except NoOrganizationError as e:
            return Decision.deny(DenialReason.NO_ORGANIZATION, self.redirects.organization_picker, e.message)
        except Exception as e:
            return self._upstream_failure("organization lookup", e)
        return Decision.allow(subject_id=self._session.caller_id)

    # ── Privileged operator checks ──────────────────────

    async def require_privileged_operator(self) -> Decision:
        """Allow only on an explicitly resolved operator status for this caller."""
        caller_id = self._session.caller_id
        if caller_id is None:
            return self._not_authenticated()
        decision, _ = await self._operator_decision(caller_id)
        return decision

    async def require_privileged_permission(self, permission: PrivilegedPermission | str) -> Decision:
        """As ``require_privileged_operator``, plus the ``permission`` bit.

        An operator lacking the bit is sent back to the operator area.
        """
        key = PrivilegedPermission(permission)
        caller_id = self._session.caller_id
        if caller_id is None:
            return self._not_authenticated()

        decision, status = await self._operator_decision(caller_id)
        if decision.blocked:
            return decision
        if not status.has_permission(key):
            logger.info("Privileged permission %s denied for %s", key.value, caller_id)
            return Decision.deny(
                DenialReason.INSUFFICIENT_ACCESS,
                self.redirects.privileged_area,
                f"Missing privileged permission: {key.value}",
                permission=key.value,
            )
        return decision

    async def require_non_privileged(self) -> Decision:
        """Send privileged operators to their own area; everyone else proceeds.

        A failed status lookup lets the caller through as a regular user:
        the regular routes carry their own organization checks.
        """
        caller_id = self._session.caller_id
        if caller_id is None:
            return self._not_authenticated()

        status = await self._privileged_status(caller_id)
        if self._session.caller_id != caller_id:
            # Identity changed during the lookup: judge the new caller instead
            return await self.require_non_privileged()
        if status.is_operator:
            return Decision.deny(
                DenialReason.INSUFFICIENT_ACCESS,
                self.redirects.privileged_area,
                "Privileged operators use the operator area",
            )
        return Decision.allow(subject_id=caller_id)

    # ── Delegation ──────────────────────────────────────

    async def authorize_delegated_action(
        self,
        scope: DelegationScope | str,
        *,
        now: Optional[datetime] = None,
    ) -> Decision:
        """Re-validate the acting selection before a write.

        On success ``Decision.subject_id`` is the id the write must be
        attributed to.
        """
        try:
            caller_id = self._session.require_caller()
        except NotAuthenticatedError:
            return self._not_authenticated()

        try:
            current = self._session.organization.current_organization
            subject_id = await self._session.delegation.require_can_act(
                caller_id,
                scope,
                organization_id=current.id if current else None,
                now=now,
            )
        except DelegationInvalidError as e:
            return Decision.deny(
                DenialReason.DELEGATION_INVALID,
                self.redirects.insufficient_access,
                e.message,
                **e.details,
            )
        except Exception as e:
            return self._upstream_failure("delegation check", e)
        return Decision.allow(subject_id=subject_id)

    # ── Routing ─────────────────────────────────────────

    async def default_route(self) -> str:
        """Landing path: organization setup without an organization, else home."""
        if not self._session.is_authenticated:
            return self.redirects.login
        try:
            org_id = await self._session.organization.current_organization_id()
        except Exception as e:
            logger.error("Default route lookup failed: %s", e)
            return self.redirects.organization_setup
        return self.redirects.home if org_id else self.redirects.organization_setup

    async def evaluate(self, requirement: str) -> Decision:
        """Evaluate a requirement string.

        Understood forms: ``authenticated``, ``organization``,
        ``role:<role>``, ``finance``, ``manage_expenses``, ``privileged``,
        ``privileged:<permission>``, ``non_privileged``, ``delegated:<scope>``.

        Raises:
            ValueError: For an unknown requirement.
        """
        kind, _, arg = requirement.partition(":")
        if kind == REQ_AUTHENTICATED:
            if not self._session.is_authenticated:
                return self._not_authenticated()
            return Decision.allow(subject_id=self._session.caller_id)
        if kind == REQ_ORGANIZATION:
            return await self.require_organization()
        if kind == "role":
            return self.require_role(arg)
        if kind == REQ_FINANCE:
            return self.require_finance_access()
        if kind == REQ_MANAGE_EXPENSES:
            return self.require_manage_expenses()
        if kind == REQ_PRIVILEGED:
            return await (self.require_privileged_permission(arg) if arg else self.require_privileged_operator())
        if kind == REQ_NON_PRIVILEGED:
            return await self.require_non_privileged()
        if kind == "delegated":
            return await self.authorize_delegated_action(arg or DelegationScope.ALL)
        raise ValueError(f"Unknown authorization requirement: {requirement!r}")

    # ── Internals ───────────────────────────────────────

    def _check_membership(self, predicate, *, requirement: str) -> Decision:
        if not self._session.is_authenticated:
            return self._not_authenticated()
        membership: Optional[Membership] = self._session.organization.current_membership
        if membership is None:
            return Decision.deny(
                DenialReason.NO_ORGANIZATION,
                self.redirects.organization_picker,
                "No organization selected",
            )
        if not membership.is_active or membership.user_id != self._session.caller_id or not predicate(membership):
            logger.info(
                "Access denied: %s requires %s (role=%s)",
                self._session.caller_id,
                requirement,
                Role(membership.role).value,
            )
            return Decision.deny(
                DenialReason.INSUFFICIENT_ACCESS,
                self.redirects.insufficient_access,
                f"Requires {requirement}",
            )
        return Decision.allow(subject_id=self._session.caller_id)

    async def _operator_decision(self, caller_id: str) -> tuple[Decision, PrivilegedOperatorStatus]:
        status = await self._privileged_status(caller_id)
        # The session may have changed hands while the lookup was pending
        current = self._session.caller_id
        if current is None:
            return self._not_authenticated(), PrivilegedOperatorStatus.denied(caller_id)
        if current != caller_id or status.caller_id != current:
            logger.error(
                "Privileged status for %s discarded: session caller is now %s",
                status.caller_id,
                current,
            )
            decision = Decision.deny(
                DenialReason.INSUFFICIENT_ACCESS,
                self.redirects.insufficient_access,
                "Privileged operator access required",
            )
            return decision, PrivilegedOperatorStatus.denied(current)
        if not status.available:
            return self._upstream_failure("privileged status", None), status
        if not status.is_operator:
            decision = Decision.deny(
                DenialReason.INSUFFICIENT_ACCESS,
                self.redirects.insufficient_access,
                "Privileged operator access required",
            )
            return decision, status
        return Decision.allow(subject_id=caller_id), status

    async def _privileged_status(self, caller_id: str) -> PrivilegedOperatorStatus:
        status = await self._session.privileged.wait_for(caller_id)
        if status.caller_id != caller_id:
            logger.error("Privileged status mismatch: expected %s, got %s", caller_id, status.caller_id)
            return PrivilegedOperatorStatus.denied(caller_id)
        return status

    def _not_authenticated(self) -> Decision:
        return Decision.deny(DenialReason.NOT_AUTHENTICATED, self.redirects.login, "Not authenticated")

    def _upstream_failure(self, what: str, error: Optional[BaseException]) -> Decision:
        logger.error("Authorization %s failed, denying: %s", what, error)
        return Decision.deny(
            DenialReason.UPSTREAM_UNAVAILABLE,
            self.redirects.login,
            f"Authorization {what} unavailable",
        )


__all__ = [
    "AuthorizationGateway",
    "Decision",
    "DenialReason",
    "REQ_AUTHENTICATED",
    "REQ_FINANCE",
    "REQ_MANAGE_EXPENSES",
    "REQ_NON_PRIVILEGED",
    "REQ_ORGANIZATION",
    "REQ_PRIVILEGED",
]
