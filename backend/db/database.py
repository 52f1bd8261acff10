"""
Backlog Sync Database Configuration
PostgreSQL - SQLAlchemy 2.0 Async
"""
import os
import ssl
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import logging

logger = logging.getLogger(__name__)

# Get DATABASE_URL from environment
DATABASE_URL = os.environ.get('DATABASE_URL', '')

# Hosted Postgres (Neon, RDS) requires SSL; local development usually doesn't
DATABASE_SSL = os.environ.get('DATABASE_SSL', 'true').lower() in ('1', 'true', 'yes')


def convert_url_for_asyncpg(url: str) -> str:
    """Convert standard PostgreSQL URL to asyncpg-compatible format"""
    if not url:
        return url

    parsed = urlparse(url)

    scheme = 'postgresql+asyncpg'

    # asyncpg doesn't support sslmode/channel_binding query params
    query_params = parse_qs(parsed.query)
    query_params.pop('sslmode', None)
    query_params.pop('channel_binding', None)

    new_query = urlencode({k: v[0] for k, v in query_params.items()})

    return urlunparse((
        scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        new_query,
        parsed.fragment
    ))


def build_connect_args() -> dict:
    """asyncpg connect args (SSL context when DATABASE_SSL is enabled)"""
    if not DATABASE_SSL:
        return {}
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return {"ssl": ssl_context}


if DATABASE_URL:
    DATABASE_URL = convert_url_for_asyncpg(DATABASE_URL)

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    connect_args=build_connect_args()
) if DATABASE_URL else None

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
) if engine else None


class Base(DeclarativeBase):
    pass


async def get_db():
    """Dependency for getting async database sessions"""
    if not AsyncSessionLocal:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Initialize database - create all tables"""
    if not engine:
        logger.error("Database engine not initialized. Check DATABASE_URL.")
        return

    from .models import Base
    from . import integration_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized with tables")
