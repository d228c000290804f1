"""
Tests for the registration and sign-in orchestrators.

Validates:
- Pending records are created with a 24 hour expiry
- Duplicate registration is rejected without creating a record
- Sign-in for an unknown email is rejected without creating a record
- Sign-in reads the display name from the profile
- A new request cancels the email's earlier pending request
- continueUrl allow-list and verification URL format
"""
from datetime import timedelta

import pytest
from sqlalchemy import select, func

from artfinance.errors import UserExists, UserNotFound, ContinueUrlNotAllowed, TokenAlreadyUsed, InvalidToken
from artfinance.models import PendingAuthRequest, AuthRequestKind, AuthRequestStatus
from artfinance.services.registration import (
    build_verification_url,
    cancel_pending_requests,
    create_registration,
    create_sign_in_request,
    has_pending_request,
    normalize_email,
    validate_continue_url,
)
from artfinance.services.tokens import verify_token


async def _count_requests(db) -> int:
    result = await db.execute(select(func.count()).select_from(PendingAuthRequest))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_create_registration_stores_pending_request(db, clock):
    created = await create_registration(
        db, "  Alice@Example.com ", "Alice", "https://app.example.com/welcome",
        clock=clock, allowed_origins=[],
    )

    assert created.email == "alice@example.com"
    assert created.expires_at == clock() + timedelta(hours=24)
    assert created.kind == AuthRequestKind.REGISTRATION

    record = await db.get(PendingAuthRequest, created.token)
    assert record.status == AuthRequestStatus.PENDING
    assert record.display_name == "Alice"
    assert record.continue_url == "https://app.example.com/welcome"
    assert record.created_at == clock()
    assert record.verified_at is None
    assert record.requester_ip is None


@pytest.mark.asyncio
async def test_create_registration_builds_verification_url(db, clock):
    created = await create_registration(
        db, "alice@example.com", "Alice", "https://app.example.com/welcome",
        clock=clock, allowed_origins=[],
    )

    assert created.verification_url == (
        f"https://app.example.com/welcome?registrationToken={created.token}"
    )


@pytest.mark.asyncio
async def test_duplicate_registration_rejected(db, clock, existing_user):
    with pytest.raises(UserExists):
        await create_registration(
            db, "artist@example.com", "Someone Else", "https://app.example.com/",
            clock=clock, allowed_origins=[],
        )

    assert await _count_requests(db) == 0


@pytest.mark.asyncio
async def test_duplicate_registration_check_is_case_insensitive(db, clock, existing_user):
    with pytest.raises(UserExists):
        await create_registration(
            db, "ARTIST@example.com", "Frida", "https://app.example.com/",
            clock=clock, allowed_origins=[],
        )


@pytest.mark.asyncio
async def test_registration_rejects_blank_name(db, clock):
    with pytest.raises(ValueError):
        await create_registration(
            db, "alice@example.com", "   ", "https://app.example.com/",
            clock=clock, allowed_origins=[],
        )
    with pytest.raises(ValueError):
        await create_registration(
            db, "alice@example.com", "x" * 101, "https://app.example.com/",
            clock=clock, allowed_origins=[],
        )


@pytest.mark.asyncio
async def test_new_registration_cancels_earlier_pending_one(db, clock):
    first = await create_registration(
        db, "alice@example.com", "Alice", "https://app.example.com/",
        clock=clock, allowed_origins=[],
    )
    second = await create_registration(
        db, "alice@example.com", "Alice B", "https://app.example.com/",
        clock=clock, allowed_origins=[],
    )

    assert first.token != second.token
    assert await _count_requests(db) == 1

    with pytest.raises(InvalidToken):
        await verify_token(db, first.token, clock=clock)
    verified = await verify_token(db, second.token, clock=clock)
    assert verified.name == "Alice B"


@pytest.mark.asyncio
async def test_sign_in_for_unknown_email_rejected(db, clock):
    with pytest.raises(UserNotFound):
        await create_sign_in_request(
            db, "nobody@x.com", "https://app.example.com/", clock=clock, allowed_origins=[]
        )

    assert await _count_requests(db) == 0


@pytest.mark.asyncio
async def test_sign_in_reads_name_from_profile(db, clock, existing_user):
    created = await create_sign_in_request(
        db, "artist@example.com", "https://app.example.com/home", clock=clock, allowed_origins=[]
    )

    assert created.kind == AuthRequestKind.SIGN_IN
    assert created.name == "Frida"
    assert created.verification_url == f"https://app.example.com/home?signInToken={created.token}"

    record = await db.get(PendingAuthRequest, created.token)
    assert record.display_name == "Frida"
    assert record.kind == AuthRequestKind.SIGN_IN


@pytest.mark.asyncio
async def test_sign_in_token_is_single_use(db, clock, existing_user):
    created = await create_sign_in_request(
        db, "artist@example.com", "https://app.example.com/", clock=clock, allowed_origins=[]
    )

    await verify_token(db, created.token, kind=AuthRequestKind.SIGN_IN, clock=clock)
    with pytest.raises(TokenAlreadyUsed):
        await verify_token(db, created.token, kind=AuthRequestKind.SIGN_IN, clock=clock)


@pytest.mark.asyncio
async def test_pending_request_helpers(db, clock):
    assert not await has_pending_request(db, "alice@example.com", AuthRequestKind.REGISTRATION)

    await create_registration(
        db, "alice@example.com", "Alice", "https://app.example.com/",
        clock=clock, allowed_origins=[],
    )
    assert await has_pending_request(db, "Alice@example.com", AuthRequestKind.REGISTRATION)
    assert not await has_pending_request(db, "alice@example.com", AuthRequestKind.SIGN_IN)

    cancelled = await cancel_pending_requests(db, "alice@example.com", AuthRequestKind.REGISTRATION)
    await db.commit()
    assert cancelled == 1
    assert not await has_pending_request(db, "alice@example.com", AuthRequestKind.REGISTRATION)


@pytest.mark.asyncio
async def test_continue_url_outside_allow_list_rejected(db, clock):
    with pytest.raises(ContinueUrlNotAllowed):
        await create_registration(
            db, "alice@example.com", "Alice", "https://evil.example.net/phish",
            clock=clock, allowed_origins=["https://app.example.com"],
        )

    assert await _count_requests(db) == 0


def test_validate_continue_url():
    validate_continue_url("https://app.example.com/welcome", ["https://app.example.com"])
    validate_continue_url("http://localhost:3000/", [])

    with pytest.raises(ContinueUrlNotAllowed):
        validate_continue_url("javascript:alert(1)", [])
    with pytest.raises(ContinueUrlNotAllowed):
        validate_continue_url("/relative/path", [])
    with pytest.raises(ContinueUrlNotAllowed):
        validate_continue_url("https://app.example.com.evil.net/", ["https://app.example.com"])


def test_build_verification_url_appends_to_existing_query():
    url = build_verification_url("https://app.example.com/?lang=de", AuthRequestKind.SIGN_IN, "abc")
    assert url == "https://app.example.com/?lang=de&signInToken=abc"


def test_normalize_email():
    assert normalize_email("  Ana@B.COM ") == "ana@b.com"
