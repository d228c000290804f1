"""Client-side bridge between emailed links and sessions."""
from artfinance.client.api import AuthApiClient, AuthApiError, NetworkError
from artfinance.client.token_handler import (
    ClientTokenHandler,
    TokenHandlerResult,
    TokenOutcome,
    extract_auth_token,
    strip_auth_token,
)

__all__ = [
    "AuthApiClient",
    "AuthApiError",
    "NetworkError",
    "ClientTokenHandler",
    "TokenHandlerResult",
    "TokenOutcome",
    "extract_auth_token",
    "strip_auth_token",
]
