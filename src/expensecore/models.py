"""Core data models for expensecore.

These are Pydantic models decoded from backend records. Models that carry
authorization facts are frozen: a role change or revocation produces a new
instance, nothing is mutated in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .permissions.constants import DelegationScope, PrivilegedPermission, Role
from .permissions.hierarchy import scope_allows


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Organization(BaseModel):
    """A tenant of the platform."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    domain: Optional[str] = None
    settings: dict[str, Any] = Field(default_factory=dict)


class Membership(BaseModel):
    """One caller's role-bearing relationship to one organization.

    ``manager_id`` is the approval-chain pointer, not ownership. The two
    capability overrides only matter for roles below the tier they unlock
    (see ``expensecore.permissions.hierarchy``).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = None
    organization_id: str
    user_id: str
    role: Role = Role.EMPLOYEE
    manager_id: Optional[str] = None
    department: Optional[str] = None
    is_active: bool = True
    can_manage_expenses: bool = False
    can_access_finance: bool = False
    default_currency: Optional[str] = None

    @field_validator("can_manage_expenses", "can_access_finance", mode="before")
    @classmethod
    def _unset_is_false(cls, v: Any) -> Any:
        # Backend rows carry NULL for overrides that were never set
        return False if v is None else v


class DelegationGrant(BaseModel):
    """Authorization for ``delegate_id`` to act for ``delegator_id``.

    Usable only while ``valid_from <= now <= valid_until`` (no upper bound
    when ``valid_until`` is None) and not revoked. Revocation is a state
    transition recorded in ``revoked_at``/``revoked_by``; grants are never
    deleted.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    organization_id: Optional[str] = None
    delegator_id: str
    delegate_id: str
    scope: DelegationScope = DelegationScope.ALL
    valid_from: datetime = Field(default_factory=utcnow)
    valid_until: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None

    @field_validator("valid_from", "valid_until", "revoked_at", "created_at")
    @classmethod
    def _normalize_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode="after")
    def _check_window(self) -> DelegationGrant:
        if self.valid_until is not None and self.valid_until < self.valid_from:
            raise ValueError("valid_until must not precede valid_from")
        return self

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_within_window(self, now: datetime | None = None) -> bool:
        """Check the validity window (both ends inclusive)."""
        t = _as_utc(now) or utcnow()
        if t < self.valid_from:
            return False
        return self.valid_until is None or t <= self.valid_until

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once ``valid_until`` has passed."""
        t = _as_utc(now) or utcnow()
        return self.valid_until is not None and t > self.valid_until

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.is_revoked and self.is_within_window(now)

    def covers(self, action: DelegationScope | str, now: datetime | None = None) -> bool:
        """Check if this grant currently allows ``action``."""
        return self.is_usable(now) and scope_allows(self.scope, action)


class PrivilegedPermissions(BaseModel):
    """Fixed-shape permission set of a platform operator.

    One boolean per ``PrivilegedPermission`` key. Unknown keys are rejected
    when a backend record is decoded.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    view_organizations: bool = False
    manage_subscriptions: bool = False
    issue_refunds: bool = False
    create_coupons: bool = False
    view_analytics: bool = False
    manage_super_admins: bool = False
    manage_settings: bool = False
    manage_announcements: bool = False
    manage_email_templates: bool = False
    impersonate_users: bool = False
    view_error_logs: bool = False
    manage_plans: bool = False
    manage_api_keys: bool = False
    export_data: bool = False
    delete_organizations: bool = False
    bulk_operations: bool = False

    def has(self, permission: PrivilegedPermission | str) -> bool:
        """Check a single key. Unknown key strings raise ``ValueError``."""
        return bool(getattr(self, PrivilegedPermission(permission).value))

    def granted(self) -> frozenset[PrivilegedPermission]:
        return frozenset(p for p in PrivilegedPermission if self.has(p))


class PrivilegedOperatorStatus(BaseModel):
    """Platform-operator status of one authenticated caller.

    Independent of any organization membership. ``available`` is False
    when the lookup failed or timed out; such a status is never an operator.
    """

    model_config = ConfigDict(frozen=True)

    caller_id: Optional[str] = None
    is_operator: bool = False
    available: bool = True
    permissions: PrivilegedPermissions = Field(default_factory=PrivilegedPermissions)
    checked_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def denied(cls, caller_id: str | None = None) -> PrivilegedOperatorStatus:
        """The safe default: not an operator, no permissions."""
        return cls(caller_id=caller_id)

    @classmethod
    def unavailable(cls, caller_id: str | None = None) -> PrivilegedOperatorStatus:
        """The lookup could not be completed; treated as not an operator."""
        return cls(caller_id=caller_id, available=False)

    def has_permission(self, permission: PrivilegedPermission | str) -> bool:
        return self.is_operator and self.permissions.has(permission)


class AuditRecord(BaseModel):
    """One immutable audit entry handed to the audit sink."""

    model_config = ConfigDict(frozen=True)

    actor_id: Optional[str]
    target_id: Optional[str]
    action: str
    organization_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    details: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "AuditRecord",
    "DelegationGrant",
    "Membership",
    "Organization",
    "PrivilegedOperatorStatus",
    "PrivilegedPermissions",
    "utcnow",
]
