"""Fixtures for integration tests."""

import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk_ai.infrastructure.database import build_session_maker, create_tables


@pytest_asyncio.fixture
async def session_maker():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()
