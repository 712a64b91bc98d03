"""Current organization + membership for one session.

``OrganizationContext`` bridges the in-memory snapshot and the durable
context store:

- writes are write-through: the durable value is stored before the
  snapshot changes, and a failed write commits nothing;
- reads fall back to the durable store while the snapshot is empty
  (cold start, before ``restore()`` has run);
- subscribers get the current snapshot immediately (replay-latest).

State machine::

    Uninitialized --set_current--> Active(org, membership)
    Active        --set_current--> Active (organization switch)
    Active        --clear_current--> Uninitialized
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .exceptions import (
    ExpenseCoreError,
    InsufficientAccessError,
    PersistenceError,
    UpstreamUnavailableError,
)
from .interfaces import ContextStore, MembershipBackend
from .models import Membership, Organization
from .observable import ReplayLatest
from .permissions.constants import Role

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_KEY = "current_organization_id"


@dataclass(frozen=True)
class OrganizationSnapshot:
    """In-memory view of the current organization.

    ``initialized`` turns True once the context has been restored, set or
    cleared at least once; guards wait for it before judging.
    """

    organization: Optional[Organization] = None
    membership: Optional[Membership] = None
    initialized: bool = False

    @property
    def organization_id(self) -> Optional[str]:
        return self.organization.id if self.organization else None


class OrganizationContext:
    """Authoritative "current organization" for a session.

    Args:
        store: Durable store holding the selected organization id.
        key: Store key for this session's selection.
    """

    def __init__(self, store: ContextStore, *, key: str = DEFAULT_CONTEXT_KEY) -> None:
        self._store = store
        self._key = key
        self._state: ReplayLatest[OrganizationSnapshot] = ReplayLatest(OrganizationSnapshot())
        self._write_lock = asyncio.Lock()

    # ── Reads ───────────────────────────────────────────

    @property
    def key(self) -> str:
        return self._key

    @property
    def snapshot(self) -> OrganizationSnapshot:
        return self._state.value

    @property
    def current_organization(self) -> Optional[Organization]:
        return self._state.value.organization

    @property
    def current_membership(self) -> Optional[Membership]:
        return self._state.value.membership

    @property
    def current_role(self) -> Optional[Role]:
        membership = self._state.value.membership
        return Role(membership.role) if membership else None

    @property
    def initialized(self) -> bool:
        return self._state.value.initialized

    async def current_organization_id(self) -> Optional[str]:
        """Return the selected organization id, or None.

        Reads the snapshot first and falls back to the durable store, so a
        cold snapshot never reports "no organization" while the store
        still holds one.

        Raises:
            StorageError: If the durable store cannot be read.
        """
        org_id = self._state.value.organization_id
        if org_id:
            return org_id
        return await self._store.get(self._key)

    def subscribe(self, callback: Callable[[OrganizationSnapshot], None]) -> Callable[[], None]:
        """Subscribe to snapshot changes; ``callback`` receives the current one at once."""
        return self._state.subscribe(callback)

    async def wait_initialized(self, timeout: Optional[float] = None) -> OrganizationSnapshot:
        """Wait until the context has been restored, set or cleared.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        return await self._state.wait_for(lambda snap: snap.initialized, timeout=timeout)

    # ── Writes ──────────────────────────────────────────

    async def set_current(self, organization: Organization, membership: Membership) -> None:
        """Make ``organization`` current, persisting its id before returning.

        Calling it again with equal arguments changes nothing observable.

        Raises:
            ValueError: If the membership belongs to another organization.
            PersistenceError: If the durable write failed; the previous
                selection stays in effect.
        """
        if membership.organization_id != organization.id:
            raise ValueError(
                f"Membership for organization {membership.organization_id!r} "
                f"cannot be made current for {organization.id!r}"
            )

        async with self._write_lock:
            previous = self._state.value
            try:
                await self._store.set(self._key, organization.id)
            except Exception as e:
                await self._restore_durable(previous.organization_id)
                logger.error(
                    "Organization switch to %s failed: durable write error: %s",
                    organization.id,
                    e,
                )
                raise PersistenceError(
                    "Failed to persist current organization",
                    organization_id=organization.id,
                ) from e

            changed = self._state.publish(
                OrganizationSnapshot(organization=organization, membership=membership, initialized=True)
            )
            if changed:
                logger.info(
                    "Current organization set: %s (role=%s)",
                    organization.id,
                    Role(membership.role).value,
                )

    async def clear_current(self) -> None:
        """Clear the snapshot and the durable value (logout / switch-away).

        Raises:
            PersistenceError: If the durable value could not be removed; the
                snapshot is left unchanged.
        """
        async with self._write_lock:
            await self._clear_unlocked()

    async def restore(self, user_id: str, backend: MembershipBackend) -> Optional[Membership]:
        """Rebuild the snapshot from the durable store (boot / page reload).

        The stored selection is dropped when the organization no longer
        exists or the caller's membership is missing or inactive. The
        context is marked initialized in every outcome so waiting guards
        are released. The whole read-validate-publish sequence holds the
        write lock, so a concurrent switch lands after it and wins.

        Returns:
            The restored membership, or None.

        Raises:
            UpstreamUnavailableError: If the store or the backend failed.
                The stored selection is kept for a later retry.
        """
        async with self._write_lock:
            try:
                org_id = await self._store.get(self._key)
                if not org_id:
                    self.mark_initialized()
                    return None

                organization = await backend.fetch_organization(org_id)
                membership = await backend.fetch_membership(org_id, user_id) if organization else None
            except Exception as e:
                self.mark_initialized()
                logger.error("Organization context restore failed for %s: %s", user_id, e)
                raise UpstreamUnavailableError("Could not restore organization context") from e

            if organization is None or membership is None or not membership.is_active:
                logger.warning(
                    "Stored organization %s no longer valid for %s, clearing selection",
                    org_id,
                    user_id,
                )
                await self._clear_unlocked()
                return None

            self._state.publish(
                OrganizationSnapshot(organization=organization, membership=membership, initialized=True)
            )
        logger.info("Organization context restored: %s", org_id)
        return membership

    async def switch_to(self, organization_id: str, user_id: str, backend: MembershipBackend) -> Membership:
        """Look up the caller's membership and make ``organization_id`` current.

        Raises:
            InsufficientAccessError: If the caller has no active membership there.
            UpstreamUnavailableError: If the backend query failed.
            PersistenceError: If the durable write failed.
        """
        try:
            organization = await backend.fetch_organization(organization_id)
            membership = await backend.fetch_membership(organization_id, user_id) if organization else None
        except ExpenseCoreError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError("Membership lookup failed", organization_id=organization_id) from e

        if organization is None or membership is None or not membership.is_active:
            raise InsufficientAccessError(
                "Not an active member of this organization",
                organization_id=organization_id,
            )

        await self.set_current(organization, membership)
        return membership

    def mark_initialized(self) -> None:
        """Release guards waiting on ``wait_initialized`` without changing the selection."""
        current = self._state.value
        if not current.initialized:
            self._state.publish(
                OrganizationSnapshot(
                    organization=current.organization,
                    membership=current.membership,
                    initialized=True,
                )
            )

    # ── Internals ───────────────────────────────────────

    async def _clear_unlocked(self) -> None:
        # Caller holds _write_lock
        try:
            await self._store.remove(self._key)
        except Exception as e:
            logger.error("Clearing current organization failed: %s", e)
            raise PersistenceError("Failed to clear current organization") from e

        if self._state.publish(OrganizationSnapshot(initialized=True)):
            logger.info("Current organization cleared")

    async def _restore_durable(self, org_id: Optional[str]) -> None:
        """Best effort: put the durable value back to the committed selection."""
        try:
            if org_id:
                await self._store.set(self._key, org_id)
            else:
                await self._store.remove(self._key)
        except Exception as e:
            logger.error("Could not roll back durable organization selection: %s", e)


__all__ = [
    "DEFAULT_CONTEXT_KEY",
    "OrganizationContext",
    "OrganizationSnapshot",
]
