"""Tests for SingleFlightStatusCache and PrivilegedStatusService."""

from __future__ import annotations

import asyncio
import logging

import pytest

from expensecore import (
    InsufficientAccessError,
    PrivilegedPermission,
    PrivilegedStatusService,
    SingleFlightStatusCache,
)
from expensecore.privileged import decode_operator_record


class _CountingLoader:
    def __init__(self, result: bool = True) -> None:
        self.calls: list[str] = []
        self.gate = asyncio.Event()
        self.result = result
        self.error: Exception | None = None
        self.cancelled: list[str] = []

    async def __call__(self, caller_id: str) -> bool:
        self.calls.append(caller_id)
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled.append(caller_id)
            raise
        if self.error is not None:
            raise self.error
        return self.result


def _cache(loader, timeout_s=None) -> SingleFlightStatusCache[bool]:
    return SingleFlightStatusCache(loader, default=lambda caller_id: False, timeout_s=timeout_s, name="test")


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_checks_share_one_query(self) -> None:
        loader = _CountingLoader()
        cache = _cache(loader)

        first = asyncio.ensure_future(cache.check("u-1"))
        second = asyncio.ensure_future(cache.wait_for("u-1"))
        await asyncio.sleep(0)
        assert cache.in_flight("u-1")

        loader.gate.set()
        assert await asyncio.gather(first, second) == [True, True]
        assert loader.calls == ["u-1"]

    @pytest.mark.asyncio
    async def test_wait_for_starts_a_check(self) -> None:
        loader = _CountingLoader()
        loader.gate.set()
        cache = _cache(loader)

        assert await cache.wait_for("u-1") is True
        assert loader.calls == ["u-1"]

    @pytest.mark.asyncio
    async def test_wait_for_uses_cached_result(self) -> None:
        loader = _CountingLoader()
        loader.gate.set()
        cache = _cache(loader)

        await cache.check("u-1")
        await cache.wait_for("u-1")
        assert loader.calls == ["u-1"]
        assert cache.peek("u-1") is True

    @pytest.mark.asyncio
    async def test_check_requeries_after_completion(self) -> None:
        loader = _CountingLoader()
        loader.gate.set()
        cache = _cache(loader)

        await cache.check("u-1")
        await cache.check("u-1")
        assert loader.calls == ["u-1", "u-1"]

    @pytest.mark.asyncio
    async def test_invalidate_then_check_queries_again(self) -> None:
        loader = _CountingLoader()
        loader.gate.set()
        cache = _cache(loader)

        await cache.wait_for("u-1")
        cache.invalidate()
        assert cache.peek("u-1") is None
        await cache.wait_for("u-1")
        assert loader.calls == ["u-1", "u-1"]
        assert cache.generation == 1

    @pytest.mark.asyncio
    async def test_late_result_after_invalidate_not_stored(self) -> None:
        loader = _CountingLoader()
        cache = _cache(loader)

        stale = asyncio.ensure_future(cache.check("u-1"))
        await asyncio.sleep(0)
        cache.invalidate()
        loader.gate.set()
        await stale

        assert cache.peek("u-1") is None

    @pytest.mark.asyncio
    async def test_unauthenticated_gets_default_without_query(self) -> None:
        loader = _CountingLoader()
        cache = _cache(loader)
        assert await cache.wait_for(None) is False
        assert await cache.check(None) is False
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_loader_failure_resolves_all_waiters_to_default(self, caplog) -> None:
        loader = _CountingLoader()
        loader.error = ConnectionError("down")
        cache = _cache(loader)

        waiters = [asyncio.ensure_future(cache.wait_for("u-1")) for _ in range(3)]
        await asyncio.sleep(0)
        loader.gate.set()

        with caplog.at_level(logging.ERROR):
            assert await asyncio.gather(*waiters) == [False, False, False]
        assert loader.calls == ["u-1"]

    @pytest.mark.asyncio
    async def test_timeout_denies_and_does_not_wedge(self, caplog) -> None:
        loader = _CountingLoader()
        cache = _cache(loader, timeout_s=0.01)

        with caplog.at_level(logging.ERROR):
            assert await cache.wait_for("u-1") is False
        assert "timed out" in caplog.text
        assert not cache.in_flight("u-1")
        await asyncio.sleep(0.01)
        assert loader.cancelled == ["u-1"]

        loader.gate.set()
        assert await cache.wait_for("u-1") is True
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_failure_and_timeout_use_on_failure(self) -> None:
        loader = _CountingLoader()
        cache = SingleFlightStatusCache(
            loader,
            default=lambda caller_id: "default",
            on_failure=lambda caller_id: f"unavailable:{caller_id}",
            timeout_s=0.01,
        )

        assert await cache.wait_for(None) == "default"
        assert await cache.wait_for("u-1") == "unavailable:u-1"

        loader.error = ConnectionError("down")
        loader.gate.set()
        assert await cache.wait_for("u-2") == "unavailable:u-2"
        assert cache.peek("u-2") is None

    @pytest.mark.asyncio
    async def test_prefetch_is_joined(self) -> None:
        loader = _CountingLoader()
        cache = _cache(loader)

        cache.prefetch("u-1")
        assert cache.in_flight("u-1")
        loader.gate.set()
        assert await cache.wait_for("u-1") is True
        assert loader.calls == ["u-1"]


class TestDecodeOperatorRecord:
    def test_none_is_not_operator(self) -> None:
        status = decode_operator_record("u-1", None)
        assert status.is_operator is False
        assert status.caller_id == "u-1"

    def test_inactive_is_not_operator(self) -> None:
        assert decode_operator_record("u-1", {"is_active": False, "permissions": {}}).is_operator is False

    def test_permissions(self) -> None:
        status = decode_operator_record("u-1", {"permissions": {"issue_refunds": True}})
        assert status.is_operator
        assert status.has_permission(PrivilegedPermission.ISSUE_REFUNDS)
        assert not status.has_permission(PrivilegedPermission.DELETE_ORGANIZATIONS)

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            decode_operator_record("u-1", {"permissions": {"root_shell": True}})


class TestPrivilegedStatusService:
    @pytest.mark.asyncio
    async def test_operator(self, operators) -> None:
        operators.records["u-1"] = {"permissions": {"view_analytics": True}}
        service = PrivilegedStatusService(operators)

        status = await service.wait_for("u-1")
        assert status.is_operator
        assert status.has_permission("view_analytics")

    @pytest.mark.asyncio
    async def test_unknown_key_resolves_to_denied(self, operators) -> None:
        operators.records["u-1"] = {"permissions": {"root_shell": True}}
        service = PrivilegedStatusService(operators)

        status = await service.wait_for("u-1")
        assert status.is_operator is False
        assert status.permissions.granted() == frozenset()
        assert status.available is True

    @pytest.mark.asyncio
    async def test_backend_error_resolves_to_unavailable(self, operators) -> None:
        operators.fail = True
        service = PrivilegedStatusService(operators)

        status = await service.wait_for("u-1")

        assert status.is_operator is False
        assert status.available is False
        assert status.caller_id == "u-1"

    @pytest.mark.asyncio
    async def test_record_action_audits(self, operators, audit) -> None:
        operators.records["u-1"] = {"permissions": {"issue_refunds": True}}
        service = PrivilegedStatusService(operators, audit)

        record = await service.record_action("u-1", "refund.issued", target_id="org-9", details={"amount": 10})

        assert audit.records == [record]
        assert record.actor_id == "u-1"
        assert record.target_id == "org-9"
        assert record.action == "refund.issued"

    @pytest.mark.asyncio
    async def test_record_action_requires_operator(self, operators, audit) -> None:
        service = PrivilegedStatusService(operators, audit)
        with pytest.raises(InsufficientAccessError):
            await service.record_action("u-1", "refund.issued")
        assert audit.records == []
