"""
Shared pytest fixtures for Velora tests.

Provides:
- A file-backed SQLite conversation store per test
- Seeded character/conversation records
- Fake completion provider and fake WebSocket collaborators
"""
import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker

from velora.database import Base, build_engine
from velora.errors import ErrorKind, RelayError
from velora.services.completion_provider import CompletionStream
from velora.services.connection_registry import ConnectionRegistry
from velora.services.conversation_store import ConversationStore
from velora.services.relay_engine import RelayEngine


# ============================================================================
# Fakes
# ============================================================================

def make_chunk(content: Optional[str] = None, usage: Optional[int] = None, model: str = "fake-model"):
    """Build an object shaped like an OpenAI streaming chunk."""
    choices = []
    if content is not None:
        choices = [SimpleNamespace(delta=SimpleNamespace(content=content))]
    usage_obj = SimpleNamespace(completion_tokens=usage) if usage is not None else None
    return SimpleNamespace(choices=choices, usage=usage_obj, model=model)


class FakeProvider:
    """
    Completion provider returning scripted increments.

    fail_after: raise RuntimeError after this many increments
    fail_on_start: raise an upstream failure before streaming begins
    gate: optional asyncio.Event awaited before the first increment
    """

    def __init__(
        self,
        tokens: Optional[List[str]] = None,
        usage: Optional[int] = None,
        fail_after: Optional[int] = None,
        fail_on_start: bool = False,
        pause: bool = True
    ):
        self.tokens = ["Hello", " there", ", friend."] if tokens is None else tokens
        self.usage = usage
        self.fail_after = fail_after
        self.fail_on_start = fail_on_start
        self.pause = pause
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None
        self.contexts: List[List[Dict[str, str]]] = []

    async def stream_completion(self, messages):
        self.contexts.append([dict(m) for m in messages])
        if self.fail_on_start:
            raise RelayError(ErrorKind.UPSTREAM_FAILURE, "Completion provider error: unavailable")
        return CompletionStream(self._chunks(), "fake-model")

    async def _chunks(self):
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        for index, token in enumerate(self.tokens):
            if self.fail_after is not None and index >= self.fail_after:
                raise RuntimeError("upstream connection reset")
            if self.pause:
                await asyncio.sleep(0)
            yield make_chunk(token)
        if self.fail_after is not None and self.fail_after >= len(self.tokens):
            raise RuntimeError("upstream connection reset")
        if self.usage is not None:
            yield make_chunk(usage=self.usage)


class FakeWebSocket:
    """Records frames sent through the registry. Set fail_after to break sends."""

    def __init__(self, fail_after: Optional[int] = None):
        self.sent: List[str] = []
        self.fail_after = fail_after
        self.client = SimpleNamespace(host="127.0.0.1", port=50000)

    async def send_text(self, data: str):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'velora-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ConversationStore(session_factory, retention_days=90)


@pytest_asyncio.fixture
async def character(store):
    return await store.create_character("u1", "Rin", "You are Rin.")


@pytest_asyncio.fixture
async def conversation(store, character):
    return await store.create_conversation("u1", character.id, title="Chat with Rin")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def websocket(registry):
    ws = FakeWebSocket()
    registry.on_connect("conn-1", ws)
    return ws


@pytest.fixture
def engine(store, provider, registry):
    return RelayEngine(store, provider, registry, history_limit=20)
