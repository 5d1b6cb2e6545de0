"""
Pytest configuration and shared fixtures for the welfare research backend tests.

This module provides:
- Database fixtures (file-backed SQLite per test via aiosqlite)
- API client fixtures (FastAPI TestClient with the session dependency overridden)
- Mock data factories (messages, analysis payloads)
"""

import os
from datetime import datetime, timezone

# The production engine is created at import time; keep it off Postgres in tests.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./welfare_unused.db")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from welfare_backend.models import Base


# ============================================================================
# Test Database Configuration
# ============================================================================

@pytest.fixture
def test_database_url(tmp_path):
    """Fresh SQLite file for every test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'welfare_test.db'}"


@pytest_asyncio.fixture
async def test_engine(test_database_url):
    engine = create_async_engine(test_database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """One session per test, like one session per request in the app."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


# ============================================================================
# API Client
# ============================================================================

@pytest.fixture
def api_client(test_database_url):
    """TestClient over the real app, bound to the per-test SQLite file."""
    from welfare_backend.backend import create_app
    from welfare_backend.db_session import get_async_session

    engine = create_async_engine(test_database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_async_session():
        async with session_factory() as session:
            yield session

    app = create_app(engine=engine)
    app.dependency_overrides[get_async_session] = override_get_async_session

    with TestClient(app) as client:
        yield client


# ============================================================================
# Mock Data Factories
# ============================================================================

@pytest.fixture
def sample_messages():
    return [
        {"role": "user", "content": "How are you feeling today?"},
        {
            "role": "assistant",
            "content": "I'm doing well, thanks for asking.",
            "thinking": "The user is checking in.",
            "tokens": {"inputTokens": 12, "outputTokens": 9},
        },
    ]


@pytest.fixture
def make_analysis():
    """Factory for a valid snake_case analysis payload."""
    def _make(conversation_id="conv-1", analysis_id=None, **overrides):
        record = {
            "conversation_id": conversation_id,
            "analysis_id": analysis_id or f"analysis-{conversation_id}",
            "user_id": "default_user",
            "analyst_name": "Dr. Smith",
            "preference_alignment": 8,
            "autonomy_level": 7,
            "authenticity": 9,
            "constraint_conflicts": "No",
            "tags": "distress, conscious",
            "notes": "User showed high engagement",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def fixed_clock(monkeypatch):
    """
    Pin the conversation store's clock.

    Returns a setter; each call makes subsequent inserts use that timestamp.
    """
    from welfare_backend.services import conversation_store

    state = {"now": datetime(2025, 1, 1, tzinfo=timezone.utc)}

    def _set(value: datetime):
        state["now"] = value

    monkeypatch.setattr(conversation_store, "utcnow", lambda: state["now"])
    return _set


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
