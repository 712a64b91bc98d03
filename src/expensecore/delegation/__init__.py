"""Delegation: acting on behalf of another member.

- DelegationResolver: effective subject + per-action re-validation
- DelegationService: grant lifecycle with audit records
"""

from .grants import MAX_CHAIN_DEPTH, DelegationService
from .resolver import ActingContext, DelegationAuditAction, DelegationResolver

__all__ = [
    "MAX_CHAIN_DEPTH",
    "ActingContext",
    "DelegationAuditAction",
    "DelegationResolver",
    "DelegationService",
]
