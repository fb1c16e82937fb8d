"""Shared test fixtures and configuration."""
import os
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VALIDATE_TWILIO_SIGNATURE", "false")
os.environ.setdefault("GENERATE_STALL_PHRASES", "false")

from app.main import app
from app.db.database import Base, get_db
from app.services.agent.engine import ConversationEngine
from app.services.call_session.store import CallSessionStore
from app.services.phrases.base import PhraseBank
from app.services.speech.twiml import TwimlRenderer
from app.services.stats.aggregator import StatsAggregator


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

T0 = datetime(2026, 3, 14, 15, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock for deterministic timestamps."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock starting at a fixed UTC instant."""
    return FakeClock()


@pytest.fixture
def phrase_bank():
    """Small, recognisable phrase bank."""
    return PhraseBank(
        greetings=["Hello? Sorry, who is this?"],
        stall_phrases=[f"stall {i}" for i in range(5)],
        reengagement_prompts=["Hello? Are you still there?"],
        silence_closings=["I can't hear anyone. Goodbye."],
        max_turns_closings=["I have to run now. Goodbye."],
        hangup_closings=["Goodbye."],
        error_closings=["Sorry, I have to go. Goodbye."],
    )


@pytest.fixture
def store(clock):
    """Empty session store sharing the fake clock."""
    return CallSessionStore(clock=clock)


@pytest.fixture
def make_engine(store, phrase_bank, clock):
    """Factory for engines over the shared store with a seeded RNG."""
    def _make_engine(**kwargs) -> ConversationEngine:
        kwargs.setdefault("max_turns", 40)
        kwargs.setdefault("silence_cycle_limit", 2)
        kwargs.setdefault("rng", random.Random(1234))
        return ConversationEngine(store, phrase_bank, clock=clock, **kwargs)
    return _make_engine


@pytest.fixture
def engine(make_engine):
    """Engine with default limits."""
    return make_engine()


@pytest.fixture
def aggregator(store, clock):
    """Stats aggregator reporting in UTC."""
    return StatsAggregator(store, reporting_timezone="UTC", recent_calls_limit=5, clock=clock)


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def client(override_get_db, store, make_engine, aggregator):
    """Create async test client wired to the test store (max_turns=3)."""
    app.state.session_store = store
    app.state.conversation_engine = make_engine(max_turns=3)
    app.state.stats_aggregator = aggregator
    app.state.twiml_renderer = TwimlRenderer()
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client returning two stall phrases."""
    mock_client = Mock()
    mock_completion = Mock()
    mock_completion.choices = [
        Mock(
            message=Mock(
                content='{"phrases": ["Sorry, the kettle is whistling. Go on?", "Which department did you say?"]}'
            )
        )
    ]
    mock_client.chat.completions.create = AsyncMock(return_value=mock_completion)
    return mock_client
