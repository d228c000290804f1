"""
Authentication endpoints for token-based registration and sign-in.

Flow:
1. create-registration / create-sign-in-request stores a pending request
   and emails <continueUrl>?registrationToken=... (or signInToken=...)
2. The link is opened on any device; the client posts the token to
   verify-registration-token / verify-sign-in-token
3. The token is consumed at most once, the account and profile are
   reconciled, and a custom token is returned
4. The client exchanges the custom token at /session for a cookie

Security features:
- Tokens are 256-bit, single use, and expire after 24 hours
- Raw tokens are only returned to callers holding the diagnostics key
- IP address logging for audit trail (never used for authorization)
"""
import hmac
import ipaddress
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from artfinance.clock import Clock, get_clock
from artfinance.config import settings
from artfinance.database import get_db
from artfinance.errors import InvalidSession
from artfinance.models.pending_auth_request import AuthRequestKind
from artfinance.models.user import AppUserProfile
from artfinance.schemas.auth import (
    CreateRegistrationRequest,
    CreateSignInRequest,
    AuthRequestCreatedResponse,
    VerifyTokenRequest,
    VerifyTokenResponse,
    CleanupResponse,
    SessionRequest,
    ProfileResponse,
)
from artfinance.services.email import EmailService, get_email_service
from artfinance.services.identity import (
    IdentityProvider,
    complete_verification,
    get_identity_provider,
)
from artfinance.services.reaper import cleanup_expired_requests
from artfinance.services.registration import (
    CreatedAuthRequest,
    create_registration as create_registration_request,
    create_sign_in_request as create_sign_in,
)
from artfinance.services.tokens import verify_token

logger = logging.getLogger(__name__)
router = APIRouter()

SESSION_COOKIE = "auth_token"


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.

    Checks X-Forwarded-For header (for proxies/load balancers) first,
    falls back to direct client IP. The header is client-controlled, so a
    first hop that is not a valid IP address is ignored.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can be comma-separated list, take first IP
        candidate = forwarded.split(",")[0].strip()
        try:
            return str(ipaddress.ip_address(candidate))
        except ValueError:
            logger.warning(f"Ignoring malformed X-Forwarded-For hop: {candidate[:45]!r}")

    return request.client.host if request.client else "unknown"


def is_diagnostics_caller(diagnostics_key: Optional[str]) -> bool:
    """True when the caller presented the configured diagnostics key."""
    if not settings.diagnostics_api_key or not diagnostics_key:
        return False
    return hmac.compare_digest(diagnostics_key, settings.diagnostics_api_key)


def _created_response(
    created: CreatedAuthRequest,
    message: str,
    diagnostics_key: Optional[str],
) -> AuthRequestCreatedResponse:
    return AuthRequestCreatedResponse(
        message=message,
        expires_at=created.expires_at,
        token=created.token if is_diagnostics_caller(diagnostics_key) else None,
    )


# Endpoints
@router.post(
    "/create-registration",
    response_model=AuthRequestCreatedResponse,
    response_model_exclude_none=True,
)
async def create_registration(
    body: CreateRegistrationRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    clock: Clock = Depends(get_clock),
    x_diagnostics_key: Optional[str] = Header(None),
):
    """
    Start a registration and email the verification link.

    Returns:
        200: Pending registration created, email queued
        400: continueUrl not allowed
        409: USER_EXISTS
        500: Storage error
    """
    created = await create_registration_request(
        db, body.email, body.name, body.continue_url, clock=clock
    )

    # Fire-and-forget: a failed send never fails the request
    background_tasks.add_task(email_service.send_auth_request_email, created)

    return _created_response(created, "Registration email sent successfully", x_diagnostics_key)


@router.post(
    "/create-sign-in-request",
    response_model=AuthRequestCreatedResponse,
    response_model_exclude_none=True,
)
async def create_sign_in_request(
    body: CreateSignInRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    clock: Clock = Depends(get_clock),
    x_diagnostics_key: Optional[str] = Header(None),
):
    """
    Email a sign-in link to an existing user.

    Returns:
        200: Pending sign-in created, email queued
        404: USER_NOT_FOUND
        500: Storage error
    """
    created = await create_sign_in(db, body.email, body.continue_url, clock=clock)

    background_tasks.add_task(email_service.send_auth_request_email, created)

    return _created_response(created, "Sign-in email sent successfully", x_diagnostics_key)


async def _verify(
    kind: AuthRequestKind,
    body: VerifyTokenRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession,
    email_service: EmailService,
    provider: IdentityProvider,
    clock: Clock,
) -> VerifyTokenResponse:
    ip_address = get_client_ip(request)
    logger.info(f"Verifying {kind.value} token from IP: {ip_address}")

    verified = await verify_token(db, body.token, ip_address, kind=kind, clock=clock)
    user = await complete_verification(
        db,
        verified,
        requester_ip=ip_address,
        device=request.headers.get("User-Agent"),
        provider=provider,
        clock=clock,
    )

    if user.is_new_user:
        background_tasks.add_task(email_service.send_welcome_email, user.email, user.name)
    elif (
        kind == AuthRequestKind.SIGN_IN
        and user.previous_login_ip
        and user.previous_login_ip != ip_address
    ):
        background_tasks.add_task(
            email_service.send_login_notification,
            user.email,
            user.name,
            request.headers.get("User-Agent"),
            ip_address,
        )

    return VerifyTokenResponse(
        email=verified.email,
        name=verified.name if user.is_new_user else user.name,
        continue_url=verified.continue_url,
        uid=user.uid,
        custom_token=user.custom_token,
        is_new_user=user.is_new_user,
    )


@router.post("/verify-registration-token", response_model=VerifyTokenResponse)
async def verify_registration_token(
    body: VerifyTokenRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    provider: IdentityProvider = Depends(get_identity_provider),
    clock: Clock = Depends(get_clock),
):
    """
    Consume a registration token and create the account.

    Returns:
        200: Token consumed; returns the registration data and a custom token
        404: INVALID_TOKEN
        409: TOKEN_ALREADY_USED
        410: TOKEN_EXPIRED
    """
    return await _verify(
        AuthRequestKind.REGISTRATION, body, request, background_tasks,
        db, email_service, provider, clock,
    )


@router.post("/verify-sign-in-token", response_model=VerifyTokenResponse)
async def verify_sign_in_token(
    body: VerifyTokenRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    provider: IdentityProvider = Depends(get_identity_provider),
    clock: Clock = Depends(get_clock),
):
    """Consume a sign-in token. Same status codes as verify-registration-token."""
    return await _verify(
        AuthRequestKind.SIGN_IN, body, request, background_tasks,
        db, email_service, provider, clock,
    )


@router.post("/cleanup-expired-registrations", response_model=CleanupResponse)
async def cleanup_expired_registrations(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Delete expired pending requests. Triggered by the scheduler.

    Returns:
        200: Number of deleted requests
        500: Storage error
    """
    deleted = await cleanup_expired_requests(db, clock=clock)
    return CleanupResponse(deleted=deleted)


# Sessions
def _profile_response(profile: AppUserProfile) -> ProfileResponse:
    return ProfileResponse(
        uid=profile.uid,
        email=profile.email,
        name=profile.name,
        created_at=profile.created_at,
        last_login_at=profile.last_login_at,
        login_count=profile.login_count,
    )


async def get_current_profile(
    auth_token: Optional[str] = Cookie(None),
    db: AsyncSession = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> AppUserProfile:
    """
    Dependency to get the signed-in user's profile from the httpOnly cookie.

    Raises:
        InvalidSession (401): Missing or invalid cookie, or no profile
    """
    if not auth_token:
        raise InvalidSession("Authentication required.")

    uid = provider.verify_session_token(auth_token)
    profile = await db.get(AppUserProfile, uid)
    if profile is None:
        raise InvalidSession()
    return profile


@router.post("/session", response_model=ProfileResponse)
async def create_session(
    body: SessionRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """
    Exchange a custom token from a verify endpoint for a session cookie.

    Returns:
        200: Session cookie set, profile returned
        401: INVALID_SESSION
    """
    uid = provider.verify_custom_token(body.custom_token)
    profile = await db.get(AppUserProfile, uid)
    if profile is None:
        raise InvalidSession()

    response.set_cookie(
        key=SESSION_COOKIE,
        value=provider.mint_session_token(uid),
        httponly=True,  # Prevents JavaScript access (XSS protection)
        samesite="lax",  # CSRF protection
        max_age=86400 * settings.session_ttl_days,
        secure=settings.session_cookie_secure,
    )

    logger.info(f"Session started for {profile.email}")
    return _profile_response(profile)


@router.get("/me", response_model=ProfileResponse)
async def read_current_profile(current: AppUserProfile = Depends(get_current_profile)):
    return _profile_response(current)


@router.post("/logout")
async def logout(
    response: Response,
    current: AppUserProfile = Depends(get_current_profile),
):
    """Logout user by clearing the authentication cookie."""
    response.delete_cookie(
        key=SESSION_COOKIE,
        httponly=True,
        samesite="lax"
    )

    logger.info(f"User logged out: {current.email}")

    return {"message": "Successfully logged out"}
