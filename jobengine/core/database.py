import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobengine.config import get_settings
from jobengine.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()

LOCAL_HOSTS = ("localhost", "127.0.0.1", "db")


def _prepare_url(url: str) -> tuple[str, dict]:
    """
    Prepare a connection URL for asyncpg.

    Hosted Postgres providers append libpq params like sslmode and
    channel_binding that asyncpg doesn't accept. We strip them and handle
    SSL via connect_args.

    - For remote hosts: Use SSL with default context
    - For local dev (localhost/127.0.0.1/db) and SQLite: No SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)

    # Remove unsupported asyncpg params
    for param in ["sslmode", "channel_binding", "options"]:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    if hostname in LOCAL_HOSTS:
        return clean_url, {}

    ssl_context = ssl.create_default_context()
    return clean_url, {"ssl": ssl_context}


clean_url, connect_args = _prepare_url(settings.database_url)


engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_recycle=280,
    connect_args=connect_args,
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
