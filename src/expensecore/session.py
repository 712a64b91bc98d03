"""Per-session authorization state.

A ``Session`` is created once per authenticated session and owns every
piece of state that must not leak between sessions: the current
organization, the acting (delegation) selection and the privileged
status cache. Nothing here is a process-wide singleton.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from .config import SharedConfig
from .delegation import DelegationResolver
from .exceptions import NoOrganizationError, NotAuthenticatedError
from .interfaces import AuditSink, ContextStore, GrantBackend, MembershipBackend, PrivilegedOperatorBackend
from .logging import SessionLoggerAdapter, get_session_logger
from .models import DelegationGrant, Membership
from .organization import OrganizationContext
from .privileged import PrivilegedStatusService


@dataclass
class Backends:
    """Collaborators shared by all sessions of a process."""

    store: ContextStore
    memberships: MembershipBackend
    grants: GrantBackend
    operators: PrivilegedOperatorBackend
    audit: Optional[AuditSink] = None


class Session:
    """Authorization state of one authenticated (or anonymous) session.

    Args:
        backends: Shared collaborators.
        config: Shared configuration.
        session_id: Stable id of this session; generated when omitted.

    Usage::

        session = Session(backends, config)
        await session.login("user-1")       # restores the stored organization
        gateway = AuthorizationGateway(session, config)
        ...
        await session.logout()
    """

    def __init__(
        self,
        backends: Backends,
        config: Optional[SharedConfig] = None,
        *,
        session_id: Optional[str] = None,
    ) -> None:
        self._backends = backends
        self._config = config or SharedConfig()
        self._session_id = session_id or uuid.uuid4().hex
        self._caller_id: Optional[str] = None

        self.organization = OrganizationContext(
            backends.store,
            key=f"{self._session_id}:{self._config.org_context_key}",
        )
        self.delegation = DelegationResolver(backends.grants, backends.audit)
        self.privileged = PrivilegedStatusService(
            backends.operators,
            backends.audit,
            timeout_s=self._config.privileged_check_timeout_s,
        )
        self.log: SessionLoggerAdapter = get_session_logger(__name__, self._session_id)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def caller_id(self) -> Optional[str]:
        return self._caller_id

    @property
    def is_authenticated(self) -> bool:
        return self._caller_id is not None

    @property
    def config(self) -> SharedConfig:
        return self._config

    @property
    def memberships(self) -> MembershipBackend:
        return self._backends.memberships

    async def login(self, caller_id: str, *, restore: bool = True) -> Optional[Membership]:
        """Bind ``caller_id`` to this session.

        A different caller replaces the previous one: cached privileged
        status and the acting selection are dropped first.

        Args:
            caller_id: Authenticated caller id from the identity provider.
            restore: Rebuild the organization context from the durable store.

        Returns:
            The restored membership, or None.

        Raises:
            UpstreamUnavailableError: If ``restore`` could not reach the store/backend.
        """
        if self._caller_id is not None and self._caller_id != caller_id:
            self._forget_identity()

        self._caller_id = caller_id
        self.log = get_session_logger(__name__, self._session_id, caller_id)
        self.log.info("Session bound to caller")

        # Guards issued right after login join this lookup instead of starting their own
        self.privileged.prefetch(caller_id)
        if not restore:
            self.organization.mark_initialized()
            return None
        return await self.organization.restore(caller_id, self._backends.memberships)

    async def logout(self) -> None:
        """Drop the identity and everything derived from it.

        Raises:
            PersistenceError: If the durable organization value could not be removed.
        """
        self.log.info("Session logout")
        self._forget_identity()
        self._caller_id = None
        self.log = get_session_logger(__name__, self._session_id)
        await self.organization.clear_current()

    async def switch_organization(self, organization_id: str) -> Membership:
        """Make ``organization_id`` current for the logged-in caller.

        The acting selection is dropped: grants are organization-scoped.

        Raises:
            NotAuthenticatedError: Without a logged-in caller.
            InsufficientAccessError: If the caller is not an active member.
            PersistenceError: If the selection could not be stored.
        """
        caller_id = self.require_caller()
        membership = await self.organization.switch_to(organization_id, caller_id, self._backends.memberships)
        self.delegation.clear_acting()
        return membership

    def act_for(self, grant: Optional[DelegationGrant]) -> None:
        """Act on behalf of ``grant.delegator_id`` (None = act as self).

        Raises:
            NotAuthenticatedError: Without a logged-in caller.
            DelegationInvalidError: If the grant names another delegate.
        """
        self.delegation.set_acting(grant, self.require_caller())

    def effective_subject_id(self) -> str:
        return self.delegation.effective_subject_id(self.require_caller())

    async def require_organization_id(self) -> str:
        """Return the selected organization id (snapshot or durable store).

        Raises:
            NotAuthenticatedError: Without a logged-in caller.
            NoOrganizationError: If no organization is selected.
            StorageError: If the durable store cannot be read.
        """
        self.require_caller()
        org_id = await self.organization.current_organization_id()
        if not org_id:
            raise NoOrganizationError(session_id=self._session_id)
        return org_id

    def require_caller(self) -> str:
        if self._caller_id is None:
            raise NotAuthenticatedError("Not authenticated", session_id=self._session_id)
        return self._caller_id

    def _forget_identity(self) -> None:
        self.privileged.invalidate()
        self.delegation.clear_acting()


__all__ = [
    "Backends",
    "Session",
]
