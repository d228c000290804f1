"""
Token generation and single-use verification.

Security properties:
- 256 bits from the OS CSPRNG, base64url encoded (43 characters)
- A token is consumed at most once: consumption is a conditional UPDATE
  (pending → completed), never a read followed by a write
- Tokens past expires_at are lazily moved to expired on a verify attempt
- The protocol has no device affinity; requester_ip is audit data only
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from artfinance.clock import Clock, utcnow
from artfinance.errors import InvalidToken, TokenAlreadyUsed, TokenExpired, StorageError
from artfinance.models.pending_auth_request import (
    PendingAuthRequest,
    AuthRequestKind,
    AuthRequestStatus,
)
from artfinance.services.state_machine import transition_request

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


@dataclass(frozen=True)
class VerifiedRequest:
    """Data preserved from the consumed request."""
    token: str
    email: str
    name: Optional[str]
    continue_url: str
    kind: AuthRequestKind


def generate_token() -> str:
    """Return a fresh URL-safe token with 256 bits of entropy."""
    return secrets.token_urlsafe(TOKEN_BYTES)


async def _load(db: AsyncSession, token: str) -> Optional[PendingAuthRequest]:
    result = await db.execute(
        select(PendingAuthRequest)
        .where(PendingAuthRequest.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def verify_token(
    db: AsyncSession,
    token: str,
    requester_ip: Optional[str] = None,
    *,
    kind: Optional[AuthRequestKind] = None,
    clock: Clock = utcnow,
) -> VerifiedRequest:
    """
    Consume a token and return the data it was issued for.

    Args:
        db: Database session (committed or rolled back here)
        token: Token from the emailed link
        requester_ip: Best-effort IP of the verifying client, for audit
        kind: Expected request kind; a token of the other kind is invalid
        clock: Time source

    Returns:
        VerifiedRequest with the email, name, continue URL and kind as stored

    Raises:
        InvalidToken: No request for this token (or deleted by the reaper)
        TokenAlreadyUsed: The token was consumed before
        TokenExpired: The token is past its expiry; the record is now expired
        StorageError: The store failed
    """
    now = clock()
    try:
        consumed = await transition_request(
            db,
            token,
            AuthRequestStatus.PENDING,
            AuthRequestStatus.COMPLETED,
            now=now,
            requester_ip=requester_ip,
            kind=kind,
            not_expired=True,
        )

        if consumed:
            record = await _load(db, token)
            verified = VerifiedRequest(
                token=record.token,
                email=record.email,
                name=record.display_name,
                continue_url=record.continue_url,
                kind=record.kind,
            )
            await db.commit()
            logger.info(f"Verified {verified.kind.value} token for {verified.email} from IP: {requester_ip}")
            return verified

        # The guard did not match; find out why. Read what is logged before
        # any rollback, which expires the loaded instance.
        record = await _load(db, token)
        if record is None or (kind is not None and record.kind != kind):
            await db.rollback()
            logger.warning(f"Invalid token attempt from IP: {requester_ip}")
            raise InvalidToken()

        email, record_kind, status = record.email, record.kind, record.status

        if status == AuthRequestStatus.COMPLETED:
            await db.rollback()
            logger.warning(
                f"Reuse of consumed token for {email} from IP: {requester_ip}"
            )
            raise TokenAlreadyUsed()

        if status == AuthRequestStatus.PENDING:
            # Only an expired pending record can fail the guard here
            await transition_request(
                db,
                token,
                AuthRequestStatus.PENDING,
                AuthRequestStatus.EXPIRED,
                now=now,
            )
            await db.commit()
            logger.info(f"Lazily expired {record_kind.value} token for {email}")
        else:
            await db.rollback()

        raise TokenExpired()

    except (InvalidToken, TokenAlreadyUsed, TokenExpired):
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error verifying token: {str(e)}", exc_info=True)
        raise StorageError() from e
