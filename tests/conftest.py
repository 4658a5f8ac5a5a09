"""
Pytest configuration and fixtures for Alert Relay tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- A recording mail transport
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alert_relay.config import Settings, get_settings
from alert_relay.core.database import get_db
from alert_relay.dependencies import get_mail_transport
from alert_relay.main import app
from alert_relay.models import Base
from alert_relay.models.content import ContentItem, ContentLike
from alert_relay.models.queue import EmailQueueItem
from alert_relay.models.subscription import AlertSubscription, Cadence
from alert_relay.services.email_service import MailTransport
from alert_relay.services.queue_store import enqueue_email

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CRON_SECRET = "test-cron-secret"

# Monday 2026-01-05 09:00 UTC
MONDAY_9AM = datetime(2026, 1, 5, 9, 0)


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    cron_secret: str = CRON_SECRET
    resend_api_key: str = ""
    mail_dry_run: bool = True
    base_url: str = "http://localhost:8000"
    worker_id: str = "test-worker"


class FakeTransport(MailTransport):
    """Records sends; fails for destinations listed in `failing`."""

    def __init__(self, failing: set[str] | None = None, error: str = "SMTP 451 try again") -> None:
        self.sent: list[dict] = []
        self.failing = failing or set()
        self.error = error

    async def send(
        self,
        destination: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        if destination in self.failing or "*" in self.failing:
            raise RuntimeError(self.error)
        self.sent.append(
            {"destination": destination, "subject": subject, "text": text, "html": html}
        )
        return f"msg-{len(self.sent)}"


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on aiosqlite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, fake_transport: FakeTransport
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database, settings and transport overrides."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_mail_transport] = lambda: fake_transport

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def now() -> datetime:
    """Fixed clock: Monday 2026-01-05 09:00 UTC."""
    return MONDAY_9AM


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


# ============================================================================
# Factory Fixtures
# ============================================================================
# Factories commit: the services under test run their own transactions.


@pytest_asyncio.fixture
async def subscription_factory(db_session: AsyncSession):
    """Factory for creating test alert subscriptions."""

    async def _create_subscription(
        cadence: Cadence = Cadence.WEEKLY_DIGEST,
        email: str | None = None,
        **overrides,
    ) -> AlertSubscription:
        if email is None:
            email = f"user-{uuid.uuid4().hex[:8]}@example.com"

        values = {
            "user_id": uuid.uuid4(),
            "name": "Energy Watch",
            "user_name": "Dana",
            "keywords": [],
            "sources": [],
            "domains": ["esg"],
            "timezone": "UTC",
            "send_hour": 9,
            "send_weekday": 0,
            "created_at": MONDAY_9AM - timedelta(days=30),
        }
        values.update(overrides)

        subscription = AlertSubscription(cadence=cadence, email=email, **values)
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _create_subscription


@pytest_asyncio.fixture
async def content_factory(db_session: AsyncSession):
    """Factory for creating content items in the content store."""

    async def _create_content(
        title: str = "Test Article",
        domain: str = "esg",
        content_type: str = "article",
        summary: str | None = None,
        source: str | None = "Reuters",
        published_at: datetime | None = None,
        saved_at: datetime | None = None,
    ) -> ContentItem:
        if published_at is None:
            published_at = MONDAY_9AM - timedelta(days=1)

        item = ContentItem(
            domain=domain,
            content_type=content_type,
            title=title,
            summary=summary,
            source=source,
            link=f"https://example.com/{uuid.uuid4().hex[:8]}",
            published_at=published_at,
            saved_at=saved_at or published_at,
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _create_content


@pytest_asyncio.fixture
async def like_factory(db_session: AsyncSession):
    """Factory for creating team likes on content items."""

    async def _create_like(
        item: ContentItem,
        team: str = "research",
        created_at: datetime | None = None,
    ) -> ContentLike:
        like = ContentLike(
            content_id=item.id,
            domain=item.domain,
            content_type=item.content_type,
            user_id=uuid.uuid4(),
            team=team,
            created_at=created_at or MONDAY_9AM - timedelta(hours=1),
        )
        db_session.add(like)
        await db_session.commit()
        return like

    return _create_like


@pytest_asyncio.fixture
async def queue_item_factory(db_session: AsyncSession):
    """Factory for queue items (with their pending history records)."""

    async def _create_item(
        destination: str = "reader@example.com",
        subject: str = "Energy Watch - Weekly Digest",
        priority: int = 5,
        scheduled_for: datetime | None = None,
        attempts: int = 0,
        max_attempts: int = 3,
        now: datetime | None = None,
    ) -> EmailQueueItem:
        now = now or MONDAY_9AM - timedelta(minutes=1)
        item = await enqueue_email(
            db_session,
            destination=destination,
            subject=subject,
            body="3 new items matched your alert.",
            priority=priority,
            scheduled_for=scheduled_for or now,
            max_attempts=max_attempts,
            alert_type="weekly_digest",
            now=now,
        )
        item.attempts = attempts
        await db_session.commit()
        return item

    return _create_item
