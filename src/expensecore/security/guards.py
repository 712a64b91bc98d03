"""Route guards: map gateway decisions to "proceed" or "redirect".

Each guard is an async callable taking a ``Session`` and the requested
path. Guards that depend on the organization context wait for it to be
initialized first; no guard answers from a default while a check is
still pending.

Usage::

    result = await finance_guard(session, "/finance/reports")
    if result.blocked:
        return redirect(result.redirect_to)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from ..permissions.constants import PrivilegedPermission, Role
from ..session import Session
from .gateway import AuthorizationGateway, Decision, DenialReason

logger = logging.getLogger(__name__)

# Paths reachable without a selected organization
ORGANIZATION_EXEMPT_PREFIXES = ("/organization/setup", "/auth/accept-invitation")


@dataclass
class GuardResult:
    """Outcome of one guard run."""

    allowed: bool = True
    redirect_to: Optional[str] = None
    reason: Optional[DenialReason] = None
    guard: str = ""
    processing_ms: float = 0.0

    @property
    def blocked(self) -> bool:
        return not self.allowed


class RouteGuard:
    """A named guard around one gateway requirement.

    Args:
        name: Label for logs.
        check: Produces the decision from a gateway.
        wait_for_organization: Wait for the organization context to be
            restored before judging.
        exempt_prefixes: Paths that proceed without an organization.
    """

    def __init__(
        self,
        name: str,
        check: Callable[[AuthorizationGateway], Awaitable[Decision]],
        *,
        wait_for_organization: bool = True,
        exempt_prefixes: Sequence[str] = (),
    ) -> None:
        self.name = name
        self._check = check
        self._wait_for_organization = wait_for_organization
        self._exempt_prefixes = tuple(exempt_prefixes)

    async def __call__(self, session: Session, path: str = "") -> GuardResult:
        start = time.perf_counter()
        gateway = AuthorizationGateway(session)

        if self._wait_for_organization and session.is_authenticated:
            try:
                await session.organization.wait_initialized(timeout=session.config.privileged_check_timeout_s)
            except asyncio.TimeoutError:
                logger.error("Guard %s: organization context not initialized in time", self.name)
                return self._result(
                    Decision.deny(DenialReason.UPSTREAM_UNAVAILABLE, gateway.redirects.login),
                    start,
                )

        decision = await self._check(gateway)
        if (
            decision.reason == DenialReason.NO_ORGANIZATION
            and path
            and path.startswith(self._exempt_prefixes)
        ):
            decision = Decision.allow(subject_id=session.caller_id)

        return self._result(decision, start)

    def _result(self, decision: Decision, start: float) -> GuardResult:
        result = GuardResult(
            allowed=decision.allowed,
            redirect_to=decision.redirect_to,
            reason=decision.reason,
            guard=self.name,
            processing_ms=(time.perf_counter() - start) * 1000,
        )
        if result.blocked:
            logger.info(
                "Guard %s redirect -> %s (%s)",
                self.name,
                result.redirect_to,
                result.reason.value if result.reason else "-",
            )
        return result


async def _sync(decision: Decision) -> Decision:
    return decision


# ── Guard factories ─────────────────────────────────────────────


def role_guard(role: Role | str) -> RouteGuard:
    required = Role(role)
    return RouteGuard(f"role:{required.value}", lambda gw: _sync(gw.require_role(required)))


def privileged_permission_guard(permission: PrivilegedPermission | str) -> RouteGuard:
    key = PrivilegedPermission(permission)
    return RouteGuard(
        f"privileged:{key.value}",
        lambda gw: gw.require_privileged_permission(key),
        wait_for_organization=False,
    )


auth_guard = RouteGuard(
    "auth",
    lambda gw: gw.require_organization(),
    exempt_prefixes=ORGANIZATION_EXEMPT_PREFIXES,
)
manager_guard = role_guard(Role.MANAGER)
admin_guard = role_guard(Role.ADMIN)
finance_guard = RouteGuard("finance", lambda gw: _sync(gw.require_finance_access()))
manage_expenses_guard = RouteGuard("manage_expenses", lambda gw: _sync(gw.require_manage_expenses()))
privileged_guard = RouteGuard(
    "privileged",
    lambda gw: gw.require_privileged_operator(),
    wait_for_organization=False,
)
non_privileged_guard = RouteGuard(
    "non_privileged",
    lambda gw: gw.require_non_privileged(),
    wait_for_organization=False,
)


__all__ = [
    "ORGANIZATION_EXEMPT_PREFIXES",
    "GuardResult",
    "RouteGuard",
    "admin_guard",
    "auth_guard",
    "finance_guard",
    "manage_expenses_guard",
    "manager_guard",
    "non_privileged_guard",
    "privileged_guard",
    "privileged_permission_guard",
    "role_guard",
]
