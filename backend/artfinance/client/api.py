"""
HTTP client for the auth endpoints.

Maps non-2xx responses to AuthApiError with the server's stable code and
transport failures to NetworkError.
"""
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

NETWORK_ERROR = "NETWORK_ERROR"

# Fallback codes by status when a body carries no code
_STATUS_CODES = {
    404: "INVALID_TOKEN",
    409: "TOKEN_ALREADY_USED",
    410: "TOKEN_EXPIRED",
}

VERIFY_PATHS = {
    "registration": "/api/auth/verify-registration-token",
    "sign_in": "/api/auth/verify-sign-in-token",
}


class AuthApiError(Exception):
    """An expected failure reported by the auth API."""

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{code}: {message}")


class NetworkError(AuthApiError):
    """The request never got a response (client-side only)."""

    def __init__(self, message: str = "Failed to connect to server. Please check your internet connection."):
        super().__init__(NETWORK_ERROR, message)


class AuthApiClient:
    """Thin async wrapper around the auth endpoints."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = ""):
        self.http = http_client
        self.base_url = base_url.rstrip("/")

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.http.post(f"{self.base_url}{path}", json=payload)
        except httpx.TransportError as e:
            logger.warning(f"Network error calling {path}: {e}")
            raise NetworkError() from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 200 and data.get("success", True):
            return data

        code = data.get("error") if isinstance(data.get("error"), str) else None
        code = code or _STATUS_CODES.get(response.status_code, "REQUEST_FAILED")
        message = data.get("message") or f"Request failed with status {response.status_code}"
        raise AuthApiError(code, message, response.status_code)

    async def create_registration(self, email: str, name: str, continue_url: str) -> dict[str, Any]:
        return await self._post(
            "/api/auth/create-registration",
            {"email": email, "name": name, "continueUrl": continue_url},
        )

    async def create_sign_in_request(self, email: str, continue_url: str) -> dict[str, Any]:
        return await self._post(
            "/api/auth/create-sign-in-request",
            {"email": email, "continueUrl": continue_url},
        )

    async def verify_token(self, kind: str, token: str) -> dict[str, Any]:
        """Verify a token. kind is "registration" or "sign_in"."""
        return await self._post(VERIFY_PATHS[kind], {"token": token})

    async def exchange_custom_token(self, custom_token: str) -> dict[str, Any]:
        """Trade a custom token for a session cookie (kept by the http client)."""
        return await self._post("/api/auth/session", {"customToken": custom_token})
