"""
Registration and sign-in orchestrators.

Both flows create a PendingAuthRequest and hand back what the HTTP layer
needs to email the link. The existence checks here are a fast-fail UX
path; the identity provider's unique email constraint is the real arbiter
(see services.identity.complete_verification).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlsplit

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from artfinance.clock import Clock, utcnow
from artfinance.config import settings
from artfinance.errors import UserExists, UserNotFound, ContinueUrlNotAllowed, StorageError
from artfinance.models.identity_account import IdentityAccount
from artfinance.models.pending_auth_request import (
    PendingAuthRequest,
    AuthRequestKind,
    AuthRequestStatus,
)
from artfinance.models.user import AppUserProfile
from artfinance.services.tokens import generate_token

logger = logging.getLogger(__name__)

# Deep-link query parameter carrying the token, per request kind
TOKEN_PARAMS = {
    AuthRequestKind.REGISTRATION: "registrationToken",
    AuthRequestKind.SIGN_IN: "signInToken",
}


@dataclass(frozen=True)
class CreatedAuthRequest:
    """A freshly created pending request and its emailed link."""
    token: str
    expires_at: datetime
    email: str
    name: Optional[str]
    kind: AuthRequestKind
    verification_url: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_continue_url(continue_url: str, allowed_origins: Optional[list[str]] = None) -> None:
    """
    Reject continue URLs that are not http(s) or not on the allow-list.

    An empty allow-list accepts any http(s) URL.

    Raises:
        ContinueUrlNotAllowed: If the URL is rejected
    """
    parts = urlsplit(continue_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ContinueUrlNotAllowed("The continue URL must be an absolute http(s) URL.")

    if allowed_origins:
        origin = f"{parts.scheme}://{parts.netloc}".lower()
        if origin not in [o.lower() for o in allowed_origins]:
            logger.warning(f"Rejected continue URL origin: {origin}")
            raise ContinueUrlNotAllowed()


def build_verification_url(continue_url: str, kind: AuthRequestKind, token: str) -> str:
    """Return <continueUrl>?<kind>Token=<token>."""
    separator = "&" if urlsplit(continue_url).query else "?"
    return f"{continue_url}{separator}{TOKEN_PARAMS[kind]}={token}"


async def _find_profile(db: AsyncSession, email: str) -> Optional[AppUserProfile]:
    result = await db.execute(
        select(AppUserProfile).where(AppUserProfile.email == email).limit(1)
    )
    return result.scalar_one_or_none()


async def _account_exists(db: AsyncSession, email: str) -> bool:
    result = await db.execute(
        select(IdentityAccount.uid).where(IdentityAccount.email == email).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def has_pending_request(db: AsyncSession, email: str, kind: AuthRequestKind) -> bool:
    """Check if an email already has a pending request of this kind."""
    result = await db.execute(
        select(PendingAuthRequest.token)
        .where(
            and_(
                PendingAuthRequest.email == normalize_email(email),
                PendingAuthRequest.kind == kind,
                PendingAuthRequest.status == AuthRequestStatus.PENDING,
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def cancel_pending_requests(db: AsyncSession, email: str, kind: AuthRequestKind) -> int:
    """
    Delete pending requests of this kind for an email.

    Earlier links stop working once a new one is requested.
    The caller owns the transaction.

    Returns:
        Number of requests cancelled
    """
    result = await db.execute(
        delete(PendingAuthRequest).where(
            and_(
                PendingAuthRequest.email == normalize_email(email),
                PendingAuthRequest.kind == kind,
                PendingAuthRequest.status == AuthRequestStatus.PENDING,
            )
        )
    )
    if result.rowcount:
        logger.info(f"Cancelled {result.rowcount} pending {kind.value} request(s) for {email}")
    return result.rowcount or 0


async def _create_request(
    db: AsyncSession,
    email: str,
    name: Optional[str],
    continue_url: str,
    kind: AuthRequestKind,
    now: datetime,
    ttl: timedelta,
) -> CreatedAuthRequest:
    await cancel_pending_requests(db, email, kind)

    token = generate_token()
    record = PendingAuthRequest(
        token=token,
        email=email,
        display_name=name,
        continue_url=continue_url,
        kind=kind,
        status=AuthRequestStatus.PENDING,
        created_at=now,
        expires_at=now + ttl,
    )
    db.add(record)
    await db.commit()

    logger.info(f"Created pending {kind.value} request for {email} with token {token[:10]}...")

    return CreatedAuthRequest(
        token=token,
        expires_at=record.expires_at,
        email=email,
        name=name,
        kind=kind,
        verification_url=build_verification_url(continue_url, kind, token),
    )


async def create_registration(
    db: AsyncSession,
    email: str,
    name: str,
    continue_url: str,
    *,
    clock: Clock = utcnow,
    ttl: Optional[timedelta] = None,
    allowed_origins: Optional[list[str]] = None,
) -> CreatedAuthRequest:
    """
    Start a registration for a new account.

    Args:
        db: Database session
        email: Address to register (normalized here)
        name: Display name, 1-100 characters after trimming
        continue_url: Where the emailed link lands
        clock: Time source
        ttl: Request lifetime, defaults to settings.token_ttl_hours
        allowed_origins: continueUrl allow-list, defaults to settings

    Returns:
        CreatedAuthRequest for the new pending registration

    Raises:
        UserExists: An account already exists for the email
        ContinueUrlNotAllowed: continue_url is rejected
        ValueError: name is empty or too long
        StorageError: The store failed
    """
    email = normalize_email(email)
    name = name.strip()
    if not name or len(name) > 100:
        raise ValueError("Name must be between 1 and 100 characters")
    validate_continue_url(
        continue_url,
        settings.continue_origins() if allowed_origins is None else allowed_origins,
    )
    ttl = ttl or timedelta(hours=settings.token_ttl_hours)

    try:
        if await _find_profile(db, email) is not None or await _account_exists(db, email):
            logger.info(f"Registration rejected, account exists: {email}")
            raise UserExists()

        return await _create_request(
            db, email, name, continue_url, AuthRequestKind.REGISTRATION, clock(), ttl
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error creating registration: {str(e)}", exc_info=True)
        raise StorageError() from e


async def create_sign_in_request(
    db: AsyncSession,
    email: str,
    continue_url: str,
    *,
    clock: Clock = utcnow,
    ttl: Optional[timedelta] = None,
    allowed_origins: Optional[list[str]] = None,
) -> CreatedAuthRequest:
    """
    Start a sign-in for an existing account.

    The display name is read from the stored profile, never from the
    caller, so a sign-in request cannot rename anyone.

    Raises:
        UserNotFound: No account exists for the email
        ContinueUrlNotAllowed: continue_url is rejected
        StorageError: The store failed
    """
    email = normalize_email(email)
    validate_continue_url(
        continue_url,
        settings.continue_origins() if allowed_origins is None else allowed_origins,
    )
    ttl = ttl or timedelta(hours=settings.token_ttl_hours)

    try:
        profile = await _find_profile(db, email)
        if profile is None:
            logger.info(f"Sign-in rejected, no account: {email}")
            raise UserNotFound()

        return await _create_request(
            db, email, profile.name, continue_url, AuthRequestKind.SIGN_IN, clock(), ttl
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error creating sign-in request: {str(e)}", exc_info=True)
        raise StorageError() from e
