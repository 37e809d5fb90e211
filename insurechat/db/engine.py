# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine over asyncpg. All queries are awaited; sessions
# are created per request through FastAPI's dependency injection.
#
# SESSION LIFECYCLE:
# 1. FastAPI request arrives
# 2. `get_async_session` dependency creates a new session
# 3. Route handler uses the session
# 4. Session commits when the handler returns, rolls back on exception.
#    store_document() commits itself so a failed insert can remove its file.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from insurechat.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo=debug: log generated SQL during development
# - pool_size / max_overflow: small pool, document traffic is light
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: attributes stay readable after commit without a
# fresh query (which would fail outside the session in async code).
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables() -> None:
    """Create missing tables (startup, when database_create_tables is on)."""
    from insurechat.db.models import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Usage in route handlers:
        @router.get("/documents")
        async def list_docs(session: AsyncSession = Depends(get_async_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
