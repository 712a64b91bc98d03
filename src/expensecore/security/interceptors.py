"""gRPC interceptor enforcing gateway requirements per RPC method.

Provides:
- ``EnforcementMode``: three-state toggle: off / warn / enforce.
- ``status_for_reason``: DenialReason → grpc.StatusCode.
- ``GatewayGuardInterceptor``: server interceptor mapping each RPC to an
  ``AuthorizationGateway.evaluate`` requirement.
- ``_extract_rpc_name``, ``_should_skip``: helper utilities.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import grpc

from ..session import Session
from .gateway import AuthorizationGateway, Decision, DenialReason

logger = logging.getLogger(__name__)

SESSION_METADATA_KEY = "x-session-id"

SessionProvider = Callable[[dict[str, str]], Awaitable[Optional[Session]]]


# ── Enforcement Mode ────────────────────────────────────────────


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle.

    - ``off``: no checks, only caller logging.
    - ``warn``: evaluate requirements, log denials as WARNING, but allow through.
    - ``enforce``: evaluate requirements, deny on failure (production).

    Set via env ``SECURITY_ENFORCEMENT=off|warn|enforce``.
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"

    @classmethod
    def from_env(cls) -> EnforcementMode:
        """Read from ``SECURITY_ENFORCEMENT`` env var (default: enforce)."""
        import os  # Localized: the only env read outside load_shared_config_from_env()

        raw = os.environ.get("SECURITY_ENFORCEMENT", "enforce").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            logger.warning(
                "Unknown SECURITY_ENFORCEMENT=%r, defaulting to 'enforce'",
                raw,
            )
            return cls.ENFORCE


# Method prefixes that bypass requirement checks
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)

_REASON_STATUS = {
    DenialReason.NOT_AUTHENTICATED: grpc.StatusCode.UNAUTHENTICATED,
    DenialReason.NO_ORGANIZATION: grpc.StatusCode.FAILED_PRECONDITION,
    DenialReason.INSUFFICIENT_ACCESS: grpc.StatusCode.PERMISSION_DENIED,
    DenialReason.DELEGATION_INVALID: grpc.StatusCode.PERMISSION_DENIED,
    DenialReason.UPSTREAM_UNAVAILABLE: grpc.StatusCode.UNAVAILABLE,
}


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """Extract RPC name from fully-qualified method string.

    ``/expenses.ExpenseService/SubmitExpense`` → ``SubmitExpense``
    """
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    """Check if this method should skip requirement checks."""
    return any(prefix in method for prefix in _SKIP_PREFIXES)


def status_for_reason(reason: Optional[DenialReason]) -> grpc.StatusCode:
    """Map a denial reason to the gRPC status a client receives."""
    if reason is None:
        return grpc.StatusCode.PERMISSION_DENIED
    return _REASON_STATUS.get(DenialReason(reason), grpc.StatusCode.PERMISSION_DENIED)


# ── Interceptor ─────────────────────────────────────────────────


class GatewayGuardInterceptor(grpc.aio.ServerInterceptor):
    """Server interceptor enforcing one gateway requirement per RPC.

    Sits before all handlers and:
    1. Logs the caller (always, even when enforcement is off)
    2. Resolves the caller's ``Session`` from metadata via ``session_provider``
    3. Maps the RPC to its requirement via ``rpc_requirement_map``
    4. Evaluates it with ``AuthorizationGateway``
    5. Aborts with the status mapped from the ``DenialReason`` if denied

    Unmapped RPCs are **denied** (fail-closed).

    Args:
        rpc_requirement_map: RPC name → requirement string
            (see ``AuthorizationGateway.evaluate``).
        session_provider: Coroutine returning the session for the call metadata, or None.
        service_name: Human-readable service name for log messages.
        enforcement: Three-state mode (off / warn / enforce).
            Defaults to ``SECURITY_ENFORCEMENT`` env var (``enforce`` if unset).

    Usage::

        interceptor = GatewayGuardInterceptor(
            {"SubmitExpense": "delegated:submit", "ApproveExpense": "manage_expenses"},
            session_provider=sessions.for_metadata,
            service_name="Expenses",
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        rpc_requirement_map: dict[str, str],
        session_provider: SessionProvider,
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode | None = None,
    ) -> None:
        self._rpc_map = rpc_requirement_map
        self._session_provider = session_provider
        self._service_name = service_name
        self._mode = enforcement if enforcement is not None else EnforcementMode.from_env()

        if self._mode != EnforcementMode.ENFORCE:
            logger.info(
                "%s interceptor mode: %s",
                self._service_name,
                self._mode.value,
            )

    @property
    def mode(self) -> EnforcementMode:
        return self._mode

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        """Intercept incoming gRPC calls for requirement enforcement."""
        method = handler_call_details.method or ""

        # Skip health checks / reflection
        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])

        session: Optional[Session] = None
        provider_error: Optional[Exception] = None
        try:
            session = await self._session_provider(metadata)
        except Exception as e:
            provider_error = e

        logger.info(
            "%s RPC %s | caller=%s session=%s",
            self._service_name,
            rpc_name,
            (session.caller_id if session else None) or "anonymous",
            metadata.get(SESSION_METADATA_KEY, "-"),
        )

        if self._mode == EnforcementMode.OFF:
            return await continuation(handler_call_details)

        requirement = self._rpc_map.get(rpc_name)
        deny_reason: str | None = None
        deny_code: grpc.StatusCode = grpc.StatusCode.PERMISSION_DENIED

        if requirement is None:
            deny_reason = "RPC not mapped to a requirement"
        elif provider_error is not None:
            logger.error("%s session lookup failed: %s", self._service_name, provider_error)
            deny_reason = "session lookup failed"
            deny_code = grpc.StatusCode.UNAVAILABLE
        elif session is None:
            deny_reason = f"no session (requires {requirement})"
            deny_code = grpc.StatusCode.UNAUTHENTICATED
        else:
            decision = await self._evaluate(session, requirement)
            if decision.blocked:
                deny_reason = f"{decision.message or decision.reason} (requires {requirement})"
                deny_code = status_for_reason(decision.reason)

        if deny_reason:
            # ── WARN mode: log but allow ──────────────────────────
            if self._mode == EnforcementMode.WARN:
                logger.warning(
                    "%s WARN_DENIED '%s': %s (would block in enforce mode)",
                    self._service_name,
                    rpc_name,
                    deny_reason,
                )
                return await continuation(handler_call_details)

            # ── ENFORCE mode: actually block ──────────────────────
            logger.warning(
                "%s DENIED '%s': %s",
                self._service_name,
                rpc_name,
                deny_reason,
            )

            _deny_msg = f"{self._service_name}: {rpc_name} denied: {deny_reason}"
            _deny_status = deny_code

            async def _denied(request, context):
                await context.abort(_deny_status, _deny_msg)

            return grpc.unary_unary_rpc_method_handler(_denied)

        logger.debug(
            "%s ALLOWED '%s' for %s",
            self._service_name,
            rpc_name,
            session.caller_id if session else "anonymous",
        )

        return await continuation(handler_call_details)

    async def _evaluate(self, session: Session, requirement: str) -> Decision:
        try:
            return await AuthorizationGateway(session).evaluate(requirement)
        except ValueError as e:
            logger.error("%s bad requirement %r: %s", self._service_name, requirement, e)
            return Decision.deny(DenialReason.INSUFFICIENT_ACCESS, "", str(e))


__all__ = [
    "SESSION_METADATA_KEY",
    "EnforcementMode",
    "GatewayGuardInterceptor",
    "SessionProvider",
    "_extract_rpc_name",
    "_should_skip",
    "status_for_reason",
]
