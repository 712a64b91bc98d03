from .config import LogLevel, RedirectConfig, SharedConfig, load_shared_config_from_env
from .delegation import ActingContext, DelegationAuditAction, DelegationResolver, DelegationService
from .exceptions import (
    DelegationConflictError,
    DelegationInvalidError,
    ExpenseCoreError,
    InsufficientAccessError,
    NoOrganizationError,
    NotAuthenticatedError,
    PersistenceError,
    StorageError,
    UpstreamUnavailableError,
)
from .interfaces import (
    AuditSink,
    ContextStore,
    GrantBackend,
    MembershipBackend,
    PrivilegedOperatorBackend,
)
from .logging import (
    SessionFormatter,
    SessionLoggerAdapter,
    get_session_logger,
    redact_secrets,
    safe_log_value,
    safe_preview,
    setup_logging,
)
from .models import (
    AuditRecord,
    DelegationGrant,
    Membership,
    Organization,
    PrivilegedOperatorStatus,
    PrivilegedPermissions,
)
from .observable import ReplayLatest
from .organization import OrganizationContext, OrganizationSnapshot
from .permissions import DelegationScope, PrivilegedPermission, Role
from .privileged import PrivilegedStatusService
from .security import AuthorizationGateway, Decision, DenialReason
from .session import Backends, Session
from .singleflight import SingleFlightStatusCache
from .store import InMemoryContextStore, RedisContextStore, build_context_store

__all__ = [
    'ActingContext',
    'AuditRecord',
    'AuditSink',
    'AuthorizationGateway',
    'Backends',
    'ContextStore',
    'Decision',
    'DelegationAuditAction',
    'DelegationConflictError',
    'DelegationGrant',
    'DelegationInvalidError',
    'DelegationResolver',
    'DelegationScope',
    'DelegationService',
    'DenialReason',
    'ExpenseCoreError',
    'GrantBackend',
    'InMemoryContextStore',
    'InsufficientAccessError',
    'LogLevel',
    'Membership',
    'MembershipBackend',
    'NoOrganizationError',
    'NotAuthenticatedError',
    'Organization',
    'OrganizationContext',
    'OrganizationSnapshot',
    'PersistenceError',
    'PrivilegedOperatorBackend',
    'PrivilegedOperatorStatus',
    'PrivilegedPermission',
    'PrivilegedPermissions',
    'PrivilegedStatusService',
    'RedirectConfig',
    'RedisContextStore',
    'ReplayLatest',
    'Role',
    'Session',
    'SessionFormatter',
    'SessionLoggerAdapter',
    'SharedConfig',
    'SingleFlightStatusCache',
    'StorageError',
    'UpstreamUnavailableError',
    'build_context_store',
    'get_session_logger',
    'load_shared_config_from_env',
    'redact_secrets',
    'safe_log_value',
    'safe_preview',
    'setup_logging',
]
