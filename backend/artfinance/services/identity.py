"""
Identity provider and profile reconciliation.

After a token is consumed, the verified email is turned into an identity
account (created on first registration) and an AppUserProfile, and a
short-lived custom token is minted. Clients exchange the custom token for
a session through POST /api/auth/session.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from artfinance.clock import Clock, utcnow
from artfinance.config import settings
from artfinance.errors import UserExists, InvalidSession, StorageError
from artfinance.models.identity_account import IdentityAccount
from artfinance.models.pending_auth_request import AuthRequestKind
from artfinance.models.user import AppUserProfile
from artfinance.services.tokens import VerifiedRequest

logger = logging.getLogger(__name__)

CUSTOM_TOKEN_AUDIENCE = "artfinance-custom-token"
SESSION_AUDIENCE = "artfinance-session"
ISSUER = "artfinance-auth"


@dataclass(frozen=True)
class AuthenticatedUser:
    uid: str
    email: str
    name: Optional[str]
    custom_token: str
    is_new_user: bool
    previous_login_ip: Optional[str] = None


class IdentityProvider:
    """Accounts plus custom-token and session minting."""

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key or settings.secret_key

    async def get_account_by_email(self, db: AsyncSession, email: str) -> Optional[IdentityAccount]:
        result = await db.execute(
            select(IdentityAccount).where(IdentityAccount.email == email)
        )
        return result.scalar_one_or_none()

    async def create_account(
        self,
        db: AsyncSession,
        email: str,
        display_name: Optional[str],
        email_verified: bool = True,
    ) -> IdentityAccount:
        """
        Create and flush an account.

        Raises:
            UserExists: The unique email constraint rejected the insert;
                the session has been rolled back
        """
        account = IdentityAccount(
            email=email,
            display_name=display_name,
            email_verified=email_verified,
        )
        db.add(account)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise UserExists() from e

        logger.info(f"Created identity account {account.uid} for {email}")
        return account

    def _encode(self, uid: str, audience: str, lifetime: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": uid,
            "aud": audience,
            "iss": ISSUER,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, self.secret_key, algorithm="HS256")

    def _decode(self, token: str, audience: str) -> str:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=["HS256"],
                audience=audience,
                issuer=ISSUER,
            )
        except jwt.PyJWTError as e:
            raise InvalidSession() from e
        return payload["sub"]

    def mint_custom_token(self, uid: str) -> str:
        return self._encode(
            uid, CUSTOM_TOKEN_AUDIENCE, timedelta(minutes=settings.custom_token_ttl_minutes)
        )

    def verify_custom_token(self, token: str) -> str:
        """Return the uid of a valid custom token, else raise InvalidSession."""
        return self._decode(token, CUSTOM_TOKEN_AUDIENCE)

    def mint_session_token(self, uid: str) -> str:
        return self._encode(uid, SESSION_AUDIENCE, timedelta(days=settings.session_ttl_days))

    def verify_session_token(self, token: str) -> str:
        return self._decode(token, SESSION_AUDIENCE)


identity_provider = IdentityProvider()


def get_identity_provider() -> IdentityProvider:
    return identity_provider


async def complete_verification(
    db: AsyncSession,
    verified: VerifiedRequest,
    *,
    requester_ip: Optional[str] = None,
    device: Optional[str] = None,
    provider: Optional[IdentityProvider] = None,
    clock: Clock = utcnow,
) -> AuthenticatedUser:
    """
    Reconcile a consumed token with the identity provider and profile store.

    Registration creates the account and profile. If an account for the
    email appeared after the registration was requested (a concurrent
    registration won), the existing account is signed in instead.
    Sign-in touches login metadata and never changes the stored name.
    """
    provider = provider or identity_provider
    now = clock()

    try:
        account = await provider.get_account_by_email(db, verified.email)
        is_new_user = False

        if account is None and verified.kind == AuthRequestKind.REGISTRATION:
            try:
                account = await provider.create_account(db, verified.email, verified.name)
                is_new_user = True
            except UserExists:
                logger.warning(
                    f"Late duplicate registration for {verified.email}, using existing account"
                )
                account = await provider.get_account_by_email(db, verified.email)

        if account is None:
            # Profile without an account (created before the identity provider held it)
            account = await provider.create_account(db, verified.email, verified.name)

        profile = await db.get(AppUserProfile, account.uid)
        previous_ip = profile.last_login_ip if profile else None
        if profile is None:
            profile = AppUserProfile(
                uid=account.uid,
                email=verified.email,
                name=verified.name,
                created_at=now,
                login_count=0,
            )
            db.add(profile)
            logger.info(f"Created profile for {verified.email}")

        profile.record_login(now, requester_ip, device)
        await db.commit()

    except UserExists:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error completing verification: {str(e)}", exc_info=True)
        raise StorageError() from e

    logger.info(f"Successful {verified.kind.value}: {verified.email} from IP: {requester_ip}")

    return AuthenticatedUser(
        uid=account.uid,
        email=account.email,
        name=profile.name,
        custom_token=provider.mint_custom_token(account.uid),
        is_new_user=is_new_user,
        previous_login_ip=previous_ip,
    )
