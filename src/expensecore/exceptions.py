"""Unified exception hierarchy for expensecore.

All errors inherit from ExpenseCoreError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- gRPC error handler decorator for service handlers

Expected "no" answers (no grant, no membership, not an operator) are
returned as values by the core, never raised. Exceptions are reserved for
contract violations and unexpected upstream failures.

Usage in services:
    from expensecore.exceptions import (
        DelegationInvalidError,
        UpstreamUnavailableError,
        grpc_error_handler,
    )
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "ExpenseCoreError",
    "ConfigurationError",
    "SecurityError",
    "NotAuthenticatedError",
    "NoOrganizationError",
    "InsufficientAccessError",
    "DelegationInvalidError",
    "DelegationConflictError",
    "ProviderError",
    "UpstreamUnavailableError",
    "StorageError",
    "PersistenceError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # gRPC helpers
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class ExpenseCoreError(Exception):
    """Base exception for expensecore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "DELEGATION_INVALID").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(ExpenseCoreError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class SecurityError(ExpenseCoreError):
    """Authorization failure."""

    code: str = "SECURITY_ERROR"


class NotAuthenticatedError(SecurityError):
    """No caller identity."""

    code: str = "UNAUTHENTICATED"
    message: str = "User not authenticated"


class NoOrganizationError(SecurityError):
    """Authenticated, but no organization is selected."""

    code: str = "NO_ORGANIZATION"
    message: str = "No organization selected"


class InsufficientAccessError(SecurityError):
    """Membership exists but fails the required role/capability check."""

    code: str = "PERMISSION_DENIED"
    message: str = "Insufficient access"


class DelegationInvalidError(SecurityError):
    """The acting context references a grant that failed re-validation."""

    code: str = "DELEGATION_INVALID"
    message: str = "Delegation is no longer valid for this action"


class DelegationConflictError(ExpenseCoreError):
    """A grant mutation was rejected (self-delegation, cycle, bad window)."""

    code: str = "DELEGATION_CONFLICT"


class ProviderError(ExpenseCoreError):
    """Backend/provider layer failure."""

    code: str = "PROVIDER_ERROR"


class UpstreamUnavailableError(ProviderError):
    """A membership, grant or operator query failed."""

    code: str = "UPSTREAM_UNAVAILABLE"
    message: str = "Upstream service unavailable"


class StorageError(ProviderError):
    """Durable store failure."""

    code: str = "STORAGE_ERROR"


class PersistenceError(StorageError):
    """A write-through to the durable store failed; nothing was committed."""

    code: str = "PERSISTENCE_ERROR"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[ExpenseCoreError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[ExpenseCoreError]] = {}

    def register(self, code: str, error_cls: type[ExpenseCoreError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[ExpenseCoreError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[ExpenseCoreError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("BUDGET_LOCKED")
        class BudgetLockedError(ExpenseCoreError):
            code = "BUDGET_LOCKED"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
for _cls in (
    ExpenseCoreError,
    ConfigurationError,
    SecurityError,
    NotAuthenticatedError,
    NoOrganizationError,
    InsufficientAccessError,
    DelegationInvalidError,
    DelegationConflictError,
    ProviderError,
    UpstreamUnavailableError,
    StorageError,
    PersistenceError,
):
    error_registry.register(_cls.code, _cls)


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: ExpenseCoreError) -> Any:
    """Map ExpenseCoreError to a grpc.StatusCode.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "UNAUTHENTICATED": grpc.StatusCode.UNAUTHENTICATED,
        "NO_ORGANIZATION": grpc.StatusCode.FAILED_PRECONDITION,
        "PERMISSION_DENIED": grpc.StatusCode.PERMISSION_DENIED,
        "SECURITY_ERROR": grpc.StatusCode.PERMISSION_DENIED,
        "DELEGATION_INVALID": grpc.StatusCode.PERMISSION_DENIED,
        "DELEGATION_CONFLICT": grpc.StatusCode.FAILED_PRECONDITION,
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "PROVIDER_ERROR": grpc.StatusCode.UNAVAILABLE,
        "UPSTREAM_UNAVAILABLE": grpc.StatusCode.UNAVAILABLE,
        "STORAGE_ERROR": grpc.StatusCode.UNAVAILABLE,
        "PERSISTENCE_ERROR": grpc.StatusCode.UNAVAILABLE,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods with proper error handling.

    Catches ExpenseCoreError and aborts with the mapped gRPC status code.

    Usage:
        @grpc_error_handler
        async def SubmitExpense(self, request, context):
            subject_id = await session.delegation.require_can_act(...)
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except ExpenseCoreError as e:
            status_code = get_grpc_status_code(e)
            error_message = f"[{e.code}] {e.message}"

            logger.error(
                "%s failed: %s",
                method.__name__,
                error_message,
                extra={
                    "error_code": e.code,
                    "error_details": e.details,
                },
            )

            context.set_trailing_metadata([("error-code", e.code)])
            await context.abort(status_code, error_message)
            return

        except Exception as e:
            import grpc

            logger.exception("%s unexpected error: %s", method.__name__, e)
            await context.abort(
                grpc.StatusCode.INTERNAL,
                f"Unexpected {type(e)}: {e}",
            )
            return

    return wrapper
