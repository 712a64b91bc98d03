"""Authorization surface for services and route handlers.

This package is the single integration point that callers use for:
1. **Decisions** (``AuthorizationGateway``): allow, or deny with a reason
   and a redirect target
2. **Route guards**: named async guards returning proceed / redirect
3. **gRPC interceptor**: per-RPC requirement enforcement

Usage (in any service)::

    from expensecore.security import get_security_interceptors

    server = grpc.aio.server(
        interceptors=get_security_interceptors(RPC_REQUIREMENTS, sessions.for_metadata),
    )

    # Or use the gateway directly in a handler:
    from expensecore.security import AuthorizationGateway

    decision = await AuthorizationGateway(session).authorize_delegated_action("submit")
    if decision.blocked:
        await context.abort(status_for_reason(decision.reason), decision.message)

Configuration (env vars)::

    SECURITY_ENFORCEMENT=enforce     # off | warn | enforce (default: enforce)
"""

from __future__ import annotations

import grpc

from .gateway import (
    REQ_AUTHENTICATED,
    REQ_FINANCE,
    REQ_MANAGE_EXPENSES,
    REQ_NON_PRIVILEGED,
    REQ_ORGANIZATION,
    REQ_PRIVILEGED,
    AuthorizationGateway,
    Decision,
    DenialReason,
)
from .guards import (
    ORGANIZATION_EXEMPT_PREFIXES,
    GuardResult,
    RouteGuard,
    admin_guard,
    auth_guard,
    finance_guard,
    manage_expenses_guard,
    manager_guard,
    non_privileged_guard,
    privileged_guard,
    privileged_permission_guard,
    role_guard,
)
from .interceptors import (
    SESSION_METADATA_KEY,
    EnforcementMode,
    GatewayGuardInterceptor,
    SessionProvider,
    _extract_rpc_name,
    _should_skip,
    status_for_reason,
)


def get_security_interceptors(
    rpc_requirement_map: dict[str, str],
    session_provider: SessionProvider,
    *,
    service_name: str = "Service",
    enforcement: EnforcementMode | None = None,
) -> list[grpc.aio.ServerInterceptor]:
    """Get gRPC server interceptors for authorization.

    Returns a list of interceptors to pass to ``grpc.aio.server()``.

    Args:
        rpc_requirement_map: RPC name → requirement string.
        session_provider: Resolves the caller's session from call metadata.
        service_name: Label for log messages.
        enforcement: Enforcement mode (defaults to env).

    Returns:
        List of gRPC interceptors.
    """
    return [
        GatewayGuardInterceptor(
            rpc_requirement_map,
            session_provider,
            service_name=service_name,
            enforcement=enforcement,
        )
    ]


__all__ = [
    # Gateway
    "AuthorizationGateway",
    "Decision",
    "DenialReason",
    "REQ_AUTHENTICATED",
    "REQ_FINANCE",
    "REQ_MANAGE_EXPENSES",
    "REQ_NON_PRIVILEGED",
    "REQ_ORGANIZATION",
    "REQ_PRIVILEGED",
    # Guards
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
    # Interceptors
    "SESSION_METADATA_KEY",
    "EnforcementMode",
    "GatewayGuardInterceptor",
    "SessionProvider",
    "_extract_rpc_name",
    "_should_skip",
    "get_security_interceptors",
    "status_for_reason",
]
