"""Database models"""
from artfinance.models.pending_auth_request import (
    PendingAuthRequest,
    AuthRequestKind,
    AuthRequestStatus,
)
from artfinance.models.user import AppUserProfile
from artfinance.models.identity_account import IdentityAccount

__all__ = [
    "PendingAuthRequest",
    "AuthRequestKind",
    "AuthRequestStatus",
    "AppUserProfile",
    "IdentityAccount",
]
