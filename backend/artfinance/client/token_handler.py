"""
Client-side handling of registration / sign-in deep links.

On app start (or URL change) the client passes its current URL to
ClientTokenHandler.handle(). If the URL carries registrationToken or
signInToken, the token is verified, the returned custom token is exchanged
for a session, and the URL is handed back with the token stripped so it
does not leak through browser history or the Referer header.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from artfinance.client.api import AuthApiClient, AuthApiError, NetworkError

logger = logging.getLogger(__name__)

TOKEN_PARAMS = {
    "registrationToken": "registration",
    "signInToken": "sign_in",
}

# Distinct message per failure so the UI can offer the right next step
USER_MESSAGES = {
    "INVALID_TOKEN": "This link is invalid. Please request a new one.",
    "TOKEN_EXPIRED": "This link has expired. Please request a new one.",
    "TOKEN_ALREADY_USED": "This link has already been used. If that was you, you're already signed in.",
    "NETWORK_ERROR": "Failed to connect to server. Please check your internet connection.",
}
DEFAULT_MESSAGE = "Something went wrong. Please try again."


class TokenOutcome(str, enum.Enum):
    NO_TOKEN = "no_token"
    SIGNED_IN = "signed_in"
    ALREADY_COMPLETED = "already_completed"  # Retried verify whose first attempt landed
    FAILED = "failed"


@dataclass
class TokenHandlerResult:
    outcome: TokenOutcome
    clean_url: str
    kind: Optional[str] = None
    user: Optional[dict[str, Any]] = None
    session: Optional[dict[str, Any]] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    # Set when verify succeeded but the session exchange did not
    custom_token: Optional[str] = None


class SessionMinter(Protocol):
    async def sign_in_with_custom_token(self, custom_token: str) -> dict[str, Any]:
        ...


class ApiSessionMinter:
    """Exchanges custom tokens through the auth API's /session endpoint."""

    def __init__(self, api: AuthApiClient):
        self.api = api

    async def sign_in_with_custom_token(self, custom_token: str) -> dict[str, Any]:
        return await self.api.exchange_custom_token(custom_token)


def extract_auth_token(url: str) -> Optional[tuple[str, str]]:
    """Return (kind, token) from a deep link, or None."""
    query = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    for param, kind in TOKEN_PARAMS.items():
        token = query.get(param)
        if token:
            return kind, token
    return None


def strip_auth_token(url: str) -> str:
    """Remove both token parameters from url, keeping everything else."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TOKEN_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


class ClientTokenHandler:
    """Bridges a deep-link token into a live session."""

    def __init__(
        self,
        api: AuthApiClient,
        session_minter: Optional[SessionMinter] = None,
        max_attempts: int = 2,
    ):
        self.api = api
        self.session_minter = session_minter or ApiSessionMinter(api)
        self.max_attempts = max_attempts
        # Tokens with a final answer; seeing them again is a no-op
        self._handled: set[str] = set()
        # Verified tokens whose session exchange has not gone through yet
        self._verified: dict[str, dict[str, Any]] = {}
        # Tokens whose verify may have landed without us seeing the response
        self._unanswered: set[str] = set()

    async def _verify_with_retry(self, kind: str, token: str) -> tuple[Optional[dict[str, Any]], bool]:
        """
        Verify, retrying transport failures.

        Returns:
            (data, False) on success, or (None, True) when a retry got
            TOKEN_ALREADY_USED after an attempt that may have landed

        Raises:
            AuthApiError: Any other failure, or NetworkError on the last attempt
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.api.verify_token(kind, token), False
            except NetworkError:
                self._unanswered.add(token)
                if attempt == self.max_attempts:
                    raise
                logger.info(f"Retrying {kind} verification after network error (attempt {attempt})")
            except AuthApiError as e:
                if e.code == "TOKEN_ALREADY_USED" and token in self._unanswered:
                    return None, True
                raise
        raise NetworkError()

    async def _exchange_with_retry(self, custom_token: str) -> dict[str, Any]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.session_minter.sign_in_with_custom_token(custom_token)
            except NetworkError:
                if attempt == self.max_attempts:
                    raise
                logger.info(f"Retrying session exchange after network error (attempt {attempt})")
        raise NetworkError()

    def _settle(self, token: str) -> None:
        self._handled.add(token)
        self._verified.pop(token, None)
        self._unanswered.discard(token)

    async def handle(self, url: str) -> TokenHandlerResult:
        """
        Process the token in url, if any.

        Idempotent for a given URL: the returned clean_url has no token, and a
        token this handler already settled is not verified again. After a
        network failure the same URL can be handled again; a token that was
        already verified then only retries the session exchange.
        """
        found = extract_auth_token(url)
        if found is None:
            return TokenHandlerResult(TokenOutcome.NO_TOKEN, clean_url=url)

        kind, token = found
        clean_url = strip_auth_token(url)

        if token in self._handled:
            return TokenHandlerResult(TokenOutcome.NO_TOKEN, clean_url=clean_url, kind=kind)

        try:
            data = self._verified.get(token)
            if data is None:
                data, duplicate = await self._verify_with_retry(kind, token)
                if duplicate:
                    self._settle(token)
                    logger.info(f"{kind} token already consumed by an earlier attempt")
                    return TokenHandlerResult(
                        TokenOutcome.ALREADY_COMPLETED,
                        clean_url=clean_url,
                        kind=kind,
                        message=USER_MESSAGES["TOKEN_ALREADY_USED"],
                    )
                self._verified[token] = data

            session = await self._exchange_with_retry(data["customToken"])
        except NetworkError as e:
            # Nothing final is known, so the token stays retryable
            logger.warning(f"{kind} token handling interrupted by network error")
            pending = self._verified.get(token)
            return TokenHandlerResult(
                TokenOutcome.FAILED,
                clean_url=clean_url,
                kind=kind,
                error_code=e.code,
                message=USER_MESSAGES[e.code],
                custom_token=pending["customToken"] if pending else None,
            )
        except AuthApiError as e:
            self._settle(token)
            logger.warning(f"{kind} token handling failed: {e.code}")
            return TokenHandlerResult(
                TokenOutcome.FAILED,
                clean_url=clean_url,
                kind=kind,
                error_code=e.code,
                message=USER_MESSAGES.get(e.code, DEFAULT_MESSAGE),
            )

        self._settle(token)
        logger.info(f"Signed in {data.get('email')} via {kind} link")
        return TokenHandlerResult(
            TokenOutcome.SIGNED_IN,
            clean_url=clean_url,
            kind=kind,
            user={
                "uid": data.get("uid"),
                "email": data.get("email"),
                "name": data.get("name"),
                "continueUrl": data.get("continueUrl"),
                "isNewUser": data.get("isNewUser", False),
            },
            session=session,
        )
