import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alert_relay.config import get_settings
from alert_relay.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()

LOCAL_HOSTS = ("localhost", "127.0.0.1", "db")

ASYNC_SCHEMES = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
}


def prepare_database_url(url: str) -> tuple[str, dict]:
    """
    Normalize a libpq-style URL for asyncpg.

    Hosted Postgres URLs carry params like sslmode and channel_binding that
    asyncpg rejects. They are stripped and SSL is configured through
    connect_args instead.

    - postgres:// and postgresql:// are rewritten to postgresql+asyncpg://
    - Remote hosts: SSL with the default context
    - Local dev (localhost/127.0.0.1/db) and SQLite: no SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}
    if parsed.scheme in ASYNC_SCHEMES:
        parsed = parsed._replace(scheme=ASYNC_SCHEMES[parsed.scheme])

    params = parse_qs(parsed.query)
    for param in ["sslmode", "channel_binding", "options"]:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    if hostname in LOCAL_HOSTS:
        return clean_url, {}
    return clean_url, {"ssl": ssl.create_default_context()}


clean_url, connect_args = prepare_database_url(settings.database_url)

# SQLite (local runs) uses its own pool and rejects the sizing arguments
pool_args: dict = (
    {}
    if clean_url.startswith("sqlite")
    else {"pool_size": 5, "max_overflow": 10, "pool_recycle": 280}
)

engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    connect_args=connect_args,
    **pool_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise
