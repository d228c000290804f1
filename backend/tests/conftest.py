"""
Pytest fixtures for testing.
"""
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Import database module BEFORE app to allow override
import artfinance.database
from artfinance.database import Base
# Import ALL models so Base.metadata knows about all tables
from artfinance.models import PendingAuthRequest, AppUserProfile, IdentityAccount  # noqa: F401
from artfinance.clock import get_clock
from artfinance.services.email import EmailService, get_email_service

# Now import app (after we can override database)
from artfinance.main import app as fastapi_app


# Test database URL (use in-memory SQLite for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FrozenClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEmailService(EmailService):
    """Dev-mode email service that keeps every message it was asked to send."""

    def __init__(self):
        super().__init__(mode="dev")
        self.sent: list[dict] = []
        self.fail = False

    async def _send_email(self, to_email, subject, text_content, html_content) -> bool:
        if self.fail:
            return False
        self.sent.append({
            "to": to_email,
            "subject": subject,
            "text": text_content,
            "html": html_content,
        })
        return True


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def email_outbox() -> RecordingEmailService:
    return RecordingEmailService()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database for each test.
    Ensures cleanup happens even if test fails.
    """
    # StaticPool keeps a single connection alive so every session sees
    # the same in-memory database
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Replace the app's engine and sessionmaker so get_db() uses the test DB
    original_engine = artfinance.database.engine
    original_sessionmaker = artfinance.database.AsyncSessionLocal

    artfinance.database.engine = test_engine
    artfinance.database.AsyncSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    session = async_session()

    try:
        yield session
    finally:
        try:
            await session.close()
        finally:
            async with test_engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            await test_engine.dispose()
            artfinance.database.engine = original_engine
            artfinance.database.AsyncSessionLocal = original_sessionmaker


@pytest_asyncio.fixture
async def async_client(
    db: AsyncSession,
    clock: FrozenClock,
    email_outbox: RecordingEmailService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client against the app, with the test database, the frozen
    clock and the recording email service wired in.
    """
    fastapi_app.dependency_overrides[get_clock] = lambda: clock
    fastapi_app.dependency_overrides[get_email_service] = lambda: email_outbox

    transport = ASGITransport(app=fastapi_app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def existing_user(db: AsyncSession, clock: FrozenClock) -> AppUserProfile:
    """An account that finished registration earlier."""
    account = IdentityAccount(
        uid="uid-existing",
        email="artist@example.com",
        display_name="Frida",
        email_verified=True,
        created_at=clock(),
    )
    profile = AppUserProfile(
        uid="uid-existing",
        email="artist@example.com",
        name="Frida",
        created_at=clock(),
        last_login_at=clock(),
        last_login_ip="198.51.100.7",
        login_count=3,
    )
    db.add_all([account, profile])
    await db.commit()
    return profile


def make_request(
    token: str,
    now: datetime,
    *,
    email: str = "alice@example.com",
    name: Optional[str] = "Alice",
    kind=None,
    status=None,
    ttl: timedelta = timedelta(hours=24),
) -> PendingAuthRequest:
    """Build a pending request row directly, bypassing the orchestrators."""
    from artfinance.models import AuthRequestKind, AuthRequestStatus

    return PendingAuthRequest(
        token=token,
        email=email,
        display_name=name,
        continue_url="https://app.example.com/welcome",
        kind=kind or AuthRequestKind.REGISTRATION,
        status=status or AuthRequestStatus.PENDING,
        created_at=now,
        expires_at=now + ttl,
    )
