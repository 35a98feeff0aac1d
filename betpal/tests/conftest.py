"""
Shared pytest configuration for BetPal tests.

By default every test gets its own SQLite database file (aiosqlite) under
pytest's tmp_path. Set TEST_DATABASE_URL to run against PostgreSQL instead.

SAFETY: when TEST_DATABASE_URL is set, this module REFUSES to run against any
database whose name does not contain the substring "test". This prevents
accidental truncation of a development or production database.
"""

import os
import asyncio
import pytest_asyncio

# Disable rate limiting before the app is imported
os.environ.setdefault("ENV", "test")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlalchemy import text  # noqa: E402
from betpal.database.db import Base, build_engine  # noqa: E402


def _resolve_test_database_url():
    """Return the PostgreSQL test URL, or None to use SQLite.

    Raises ``RuntimeError`` if the URL does not point to a database whose
    name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return None

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]  # strip query params
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"  Or unset it to use a throwaway SQLite file.\n"
            f"{'=' * 70}"
        )

    return url


# Validated at import time so pytest fails immediately with a clear message
TEST_DATABASE_URL = _resolve_test_database_url()


async def _truncate_postgres(engine):
    async with engine.connect() as truncate_conn:
        async with truncate_conn.begin():
            result = await truncate_conn.execute(
                text("""
                    SELECT tablename FROM pg_tables
                    WHERE schemaname = 'public'
                    AND tablename NOT LIKE 'pg_%'
                    AND tablename NOT LIKE 'alembic_%'
                    ORDER BY tablename
                """)
            )
            tables = [row[0] for row in result.fetchall()]
            if tables:
                table_list = ", ".join(f'"{table}"' for table in tables)
                await truncate_conn.execute(
                    text(f"TRUNCATE TABLE {table_list} RESTART IDENTITY CASCADE")
                )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'betpal_test.db'}"

    # NullPool avoids reusing connections across event loops
    engine = build_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        from betpal.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)

    if TEST_DATABASE_URL:
        await _truncate_postgres(engine)

    yield engine

    try:
        await asyncio.sleep(0.05)  # Let connections finish
        await engine.dispose(close=True)
    except Exception:
        pass  # Ignore cleanup errors


@pytest_asyncio.fixture
async def session_factory(test_engine):
    """
    Session maker bound to the test engine.

    Also replaces db.AsyncSessionLocal so run_in_transaction() and the
    FastAPI session dependency use the test database.
    """
    from betpal.database import db

    test_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield test_session_maker

    db.AsyncSessionLocal = original_async_session_local


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Database session for a single test. Rolled back and closed afterwards."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            try:
                await session.rollback()
            except Exception:
                pass
            try:
                await session.close()
            except Exception:
                pass
