"""Tests for expensecore.security interceptors."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import grpc
import pytest

from expensecore import Session
from expensecore.security import (
    SESSION_METADATA_KEY,
    DenialReason,
    EnforcementMode,
    GatewayGuardInterceptor,
    _extract_rpc_name,
    _should_skip,
    get_security_interceptors,
    status_for_reason,
)

_TEST_RPC_MAP = {
    "ListExpenses": "organization",
    "ApproveExpense": "manage_expenses",
    "SubmitExpense": "delegated:submit",
    "IssueRefund": "privileged:issue_refunds",
}


class TestHelpers:
    def test_extract_rpc_name(self):
        assert _extract_rpc_name("/expenses.ExpenseService/SubmitExpense") == "SubmitExpense"
        assert _extract_rpc_name("SubmitExpense") == "SubmitExpense"

    def test_should_skip(self):
        assert _should_skip("/grpc.health.v1.Health/Check")
        assert not _should_skip("/expenses.ExpenseService/SubmitExpense")

    def test_status_for_reason(self):
        assert status_for_reason(DenialReason.NOT_AUTHENTICATED) == grpc.StatusCode.UNAUTHENTICATED
        assert status_for_reason(DenialReason.NO_ORGANIZATION) == grpc.StatusCode.FAILED_PRECONDITION
        assert status_for_reason(DenialReason.INSUFFICIENT_ACCESS) == grpc.StatusCode.PERMISSION_DENIED
        assert status_for_reason(DenialReason.DELEGATION_INVALID) == grpc.StatusCode.PERMISSION_DENIED
        assert status_for_reason(DenialReason.UPSTREAM_UNAVAILABLE) == grpc.StatusCode.UNAVAILABLE
        assert status_for_reason(None) == grpc.StatusCode.PERMISSION_DENIED


class TestEnforcementMode:
    def test_default_is_enforce(self, monkeypatch):
        monkeypatch.delenv("SECURITY_ENFORCEMENT", raising=False)
        assert EnforcementMode.from_env() == EnforcementMode.ENFORCE

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SECURITY_ENFORCEMENT", " WARN ")
        assert EnforcementMode.from_env() == EnforcementMode.WARN

    def test_unknown_value_enforces(self, monkeypatch):
        monkeypatch.setenv("SECURITY_ENFORCEMENT", "maybe")
        assert EnforcementMode.from_env() == EnforcementMode.ENFORCE


def _make_handler_call_details(method: str, metadata: list | None = None):
    """Create a mock HandlerCallDetails."""
    mock = MagicMock()
    mock.method = method
    mock.invocation_metadata = metadata or []
    return mock


def _provider(session: Session | None):
    """Session provider that returns ``session`` for any metadata."""

    async def _lookup(metadata):
        return session

    return _lookup


async def _continuation(details):
    return "handler"


async def _denied_status(handler) -> grpc.StatusCode:
    """Run a denial handler and return the status it aborts with."""
    context = AsyncMock()
    await handler.unary_unary(MagicMock(), context)
    return context.abort.await_args.args[0]


class TestGatewayGuardInterceptor:
    """Tests for GatewayGuardInterceptor."""

    @pytest.mark.asyncio
    async def test_disabled_passes_through(self):
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(None), enforcement=EnforcementMode.OFF)
        details = _make_handler_call_details("/expenses.ExpenseService/ApproveExpense")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_health_check_skipped(self):
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(None), enforcement=EnforcementMode.ENFORCE)
        details = _make_handler_call_details("/grpc.health.v1.Health/Check")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_unmapped_rpc_denied(self, session):
        await session.login("u-1", restore=False)
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(session), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/expenses.ExpenseService/DropTables")
        result = await interceptor.intercept_service(_continuation, details)

        assert result != "handler"
        assert await _denied_status(result) == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_no_session_unauthenticated(self):
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(None), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/expenses.ExpenseService/ListExpenses")
        result = await interceptor.intercept_service(_continuation, details)

        assert await _denied_status(result) == grpc.StatusCode.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_provider_failure_unavailable(self):
        async def _broken(metadata):
            raise ConnectionError("session store down")

        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _broken, enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/expenses.ExpenseService/ListExpenses")
        result = await interceptor.intercept_service(_continuation, details)

        assert await _denied_status(result) == grpc.StatusCode.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_allowed(self, session, memberships):
        memberships.add("org-1", "u-1", "manager")
        await session.login("u-1")
        await session.switch_organization("org-1")
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(session), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details(
            "/expenses.ExpenseService/ApproveExpense",
            [(SESSION_METADATA_KEY, "sess-1")],
        )
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_no_organization_failed_precondition(self, session):
        await session.login("u-1")
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(session), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/expenses.ExpenseService/ApproveExpense")
        result = await interceptor.intercept_service(_continuation, details)

        assert await _denied_status(result) == grpc.StatusCode.FAILED_PRECONDITION

    @pytest.mark.asyncio
    async def test_insufficient_role_denied(self, session, memberships):
        memberships.add("org-1", "u-1", "employee", can_manage_expenses=True)
        await session.login("u-1")
        await session.switch_organization("org-1")
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(session), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/expenses.ExpenseService/ApproveExpense")
        result = await interceptor.intercept_service(_continuation, details)

        assert await _denied_status(result) == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_privileged_rpc(self, session, operators):
        operators.records["u-1"] = {"permissions": {"issue_refunds": True}}
        await session.login("u-1", restore=False)
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(session), enforcement=EnforcementMode.ENFORCE)

        details = _make_handler_call_details("/billing.BillingService/IssueRefund")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_bad_requirement_denied(self, session):
        await session.login("u-1", restore=False)
        interceptor = GatewayGuardInterceptor(
            {"Odd": "superpowers"},
            _provider(session),
            enforcement=EnforcementMode.ENFORCE,
        )

        details = _make_handler_call_details("/expenses.ExpenseService/Odd")
        result = await interceptor.intercept_service(_continuation, details)

        assert await _denied_status(result) == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_warn_mode_logs_but_allows(self):
        """Warn mode: a denied RPC still passes through."""
        interceptor = GatewayGuardInterceptor(_TEST_RPC_MAP, _provider(None), enforcement=EnforcementMode.WARN)
        details = _make_handler_call_details("/expenses.ExpenseService/ListExpenses")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    def test_constructor_defaults(self, monkeypatch):
        """Default mode is ENFORCE: fail closed when nothing is configured."""
        monkeypatch.delenv("SECURITY_ENFORCEMENT", raising=False)
        interceptor = GatewayGuardInterceptor({}, _provider(None))
        assert interceptor.mode == EnforcementMode.ENFORCE

    def test_get_security_interceptors(self):
        interceptors = get_security_interceptors(
            _TEST_RPC_MAP,
            _provider(None),
            enforcement=EnforcementMode.WARN,
        )
        assert len(interceptors) == 1
        assert isinstance(interceptors[0], GatewayGuardInterceptor)
        assert interceptors[0].mode == EnforcementMode.WARN
