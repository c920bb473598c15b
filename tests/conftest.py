"""Shared test fixtures and configuration."""
import asyncio
import itertools
import os
from typing import Optional

import pytest
from unittest.mock import AsyncMock
import httpx
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from app.main import app
from app.db.database import get_db
from app.db.models import Base
from app.core.dependencies import get_orchestrator, get_webhook_verifier
from app.services.call_session.registry import CallRegistry
from app.services.orchestration.orchestrator import CallOrchestrator
from app.services.orchestration.script import build_script
from app.services.orchestration.sequencer import SequencerConfig
from app.services.realtime.acceptor import AcceptResult
from app.services.realtime.events import ChannelClosed, ChannelError
from app.services.realtime.models import SessionConfig


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOTICE_TEXT = "Notice text"
INTRO_TEXT = "Intro text"


class FakeRealtimeClient:
    """In-memory stand-in for a realtime session channel."""

    def __init__(self, call_id: str = "call_test"):
        self.call_id = call_id
        self.sent = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._event_ids = itertools.count(1)
        # When set, cancel_response blocks until the gate opens
        self.cancel_gate: Optional[asyncio.Event] = None
        self.cancel_started = asyncio.Event()

    @property
    def spoken(self):
        return [payload for kind, payload in self.sent if kind == "speak"]

    @property
    def session_updates(self):
        return [payload for kind, payload in self.sent if kind == "configure"]

    @property
    def cancelled(self):
        return [payload for kind, payload in self.sent if kind == "cancel"]

    async def configure_session(self, options):
        self.sent.append(("configure", options.to_session_payload()))

    async def speak(self, text, modalities=None):
        self.sent.append(("speak", text))
        return f"evt_{next(self._event_ids)}"

    async def cancel_response(self, response_id):
        self.sent.append(("cancel", response_id))
        self.cancel_started.set()
        if self.cancel_gate is not None:
            await self.cancel_gate.wait()

    def push(self, *events):
        for event in events:
            self._queue.put_nowait(event)

    async def events(self):
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, (ChannelClosed, ChannelError)):
                return

    async def close(self):
        self.closed = True


@pytest.fixture
def session_config():
    return SessionConfig(
        model="gpt-4o-realtime-preview",
        voice="marin",
        input_audio_format="g711_ulaw",
        output_audio_format="g711_ulaw",
        instructions="strict",
    )


@pytest.fixture
def sequencer_config(session_config):
    """Sequencer config with no settle/gap delays and a long watchdog."""
    return SequencerConfig(
        session=session_config,
        strict_instructions="strict",
        conversation_instructions="persona",
        conversation_temperature=0.6,
        transcription_model="whisper-1",
        settle_delay_ms=0,
        inter_utterance_delay_ms=0,
        audio_start_timeout_ms=10_000,
    )


@pytest.fixture
def fast_watchdog_config(sequencer_config):
    """Sequencer config whose watchdog fires after 20ms."""
    return sequencer_config.model_copy(update={"audio_start_timeout_ms": 20})


@pytest.fixture
def notice_only_script():
    return build_script(notice_text=NOTICE_TEXT)


@pytest.fixture
def full_script():
    return build_script(notice_text=NOTICE_TEXT, intro_text=INTRO_TEXT)


@pytest.fixture
def fake_client():
    return FakeRealtimeClient()


@pytest.fixture
def mock_acceptor():
    """Acceptor that accepts every call."""
    acceptor = AsyncMock()
    acceptor.accept = AsyncMock(
        side_effect=lambda call_id, config: AcceptResult(call_id=call_id, status_code=200)
    )
    return acceptor


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
def test_session_factory(test_db_engine):
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def fake_clients():
    """Every fake channel opened by the orchestrator under test."""
    return []


@pytest.fixture
async def orchestrator(mock_acceptor, full_script, sequencer_config, fake_clients, test_session_factory):
    """Orchestrator wired to fakes and the in-memory ledger."""

    async def client_factory(call_id, config):
        client = FakeRealtimeClient(call_id)
        fake_clients.append(client)
        return client

    orchestrator = CallOrchestrator(
        registry=CallRegistry(ttl_seconds=3600),
        acceptor=mock_acceptor,
        script=full_script,
        sequencer_config=sequencer_config,
        client_factory=client_factory,
        session_factory=test_session_factory,
    )
    yield orchestrator
    await orchestrator.shutdown()


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def test_client(override_get_db, orchestrator):
    """
    Create an async client for the app with overrides.

    Requests run on the test event loop, so call sessions spawned by the
    webhook run on the same loop as the test.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_webhook_verifier] = lambda: None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
