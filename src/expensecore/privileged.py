"""Platform-operator (privileged) status.

Loads operator records through a ``SingleFlightStatusCache`` so that
guards, sidebars and feature checks issued at the same moment share one
backend query. Decoding is strict: a record carrying an unknown
permission key is rejected and the caller is treated as not privileged.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from .exceptions import InsufficientAccessError
from .interfaces import AuditSink, PrivilegedOperatorBackend
from .models import AuditRecord, PrivilegedOperatorStatus, PrivilegedPermissions
from .singleflight import SingleFlightStatusCache

logger = logging.getLogger(__name__)


def decode_operator_record(caller_id: str, record: Optional[dict[str, Any]]) -> PrivilegedOperatorStatus:
    """Decode a backend operator record into a status.

    ``None`` or an inactive record means "not an operator".

    Raises:
        pydantic.ValidationError: If ``permissions`` holds unknown keys or non-boolean values.
    """
    if not record or record.get("is_active") is False:
        return PrivilegedOperatorStatus.denied(caller_id)
    permissions = PrivilegedPermissions.model_validate(record.get("permissions") or {})
    return PrivilegedOperatorStatus(caller_id=caller_id, is_operator=True, permissions=permissions)


class PrivilegedStatusService:
    """Session-scoped privileged-operator status.

    Args:
        backend: Operator record lookup.
        audit_sink: Receives one record per privileged action.
        timeout_s: Bound for a single status wait.
    """

    def __init__(
        self,
        backend: PrivilegedOperatorBackend,
        audit_sink: Optional[AuditSink] = None,
        *,
        timeout_s: Optional[float] = 10.0,
    ) -> None:
        self._backend = backend
        self._audit = audit_sink
        self._cache: SingleFlightStatusCache[PrivilegedOperatorStatus] = SingleFlightStatusCache(
            self._load,
            default=PrivilegedOperatorStatus.denied,
            on_failure=PrivilegedOperatorStatus.unavailable,
            timeout_s=timeout_s,
            name="privileged-operator",
        )

    @property
    def cache(self) -> SingleFlightStatusCache[PrivilegedOperatorStatus]:
        return self._cache

    async def check(self, caller_id: Optional[str]) -> PrivilegedOperatorStatus:
        """Re-query (or join the query in flight) for ``caller_id``."""
        return await self._cache.check(caller_id)

    async def wait_for(self, caller_id: Optional[str]) -> PrivilegedOperatorStatus:
        """Resolved status for ``caller_id``; starts a lookup if none ran yet."""
        return await self._cache.wait_for(caller_id)

    def peek(self, caller_id: Optional[str]) -> Optional[PrivilegedOperatorStatus]:
        return self._cache.peek(caller_id)

    def prefetch(self, caller_id: Optional[str]) -> None:
        self._cache.prefetch(caller_id)

    def invalidate(self) -> None:
        self._cache.invalidate()

    async def record_action(
        self,
        caller_id: str,
        action: str,
        *,
        target_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditRecord:
        """Emit the audit record for a privileged-operator action.

        Raises:
            InsufficientAccessError: If ``caller_id`` is not a privileged operator.
        """
        status = await self.wait_for(caller_id)
        if not status.is_operator or status.caller_id != caller_id:
            raise InsufficientAccessError("Privileged operator access required", action=action)

        record = AuditRecord(
            actor_id=caller_id,
            target_id=target_id,
            action=action,
            organization_id=organization_id,
            details=dict(details or {}),
        )
        if self._audit is not None:
            await self._audit.emit(record)
        logger.info("Privileged action %s by %s on %s", action, caller_id, target_id or "-")
        return record

    async def _load(self, caller_id: str) -> PrivilegedOperatorStatus:
        record = await self._backend.fetch_operator_record(caller_id)
        try:
            status = decode_operator_record(caller_id, record)
        except ValidationError as e:
            logger.error("Rejected operator record for %s: %s", caller_id, e)
            return PrivilegedOperatorStatus.denied(caller_id)
        logger.debug("Privileged status for %s: operator=%s", caller_id, status.is_operator)
        return status


__all__ = [
    "PrivilegedStatusService",
    "decode_operator_record",
]
