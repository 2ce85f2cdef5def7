"""
Tests for the chat relay engine: the exchange state machine, frame
emission, persistence ordering and failure handling.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from velora.errors import ErrorKind
from velora.services.conversation_store import ConversationStore
from velora.services.relay_engine import ExchangeState, RelayEngine, MISSING_FIELDS_MESSAGE

from conftest import FakeProvider, FakeWebSocket


def frame_for(conversation_id, content="hello", user_id="u1"):
    return json.dumps({"conversationId": conversation_id, "content": content, "userId": user_id})


def sent_frames(ws):
    return [json.loads(data) for data in ws.sent]


async def all_messages(store, conversation_id):
    messages, _ = await store.list_messages(conversation_id, limit=200)
    return messages


@pytest.mark.asyncio
async def test_successful_exchange_streams_tokens_then_done(engine, store, websocket, conversation, provider):
    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.state == ExchangeState.DONE
    assert outcome.status_code == 200

    frames = sent_frames(websocket)
    token_frames = [f for f in frames if f["type"] == "token"]
    assert [f["content"] for f in token_frames] == provider.tokens
    assert frames[-1] == {"type": "done", "messageId": outcome.message_id, "tokens": outcome.tokens}

    streamed = "".join(f["content"] for f in token_frames)
    messages = await all_messages(store, conversation.id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "hello"
    assert messages[1].id == outcome.message_id
    assert messages[1].content == streamed
    assert messages[1].model == "fake-model"


@pytest.mark.asyncio
async def test_context_starts_with_system_prompt_and_ends_with_new_message(engine, conversation, websocket, provider):
    await engine.handle_message("conn-1", frame_for(conversation.id, content="hello"))

    context = provider.contexts[0]
    assert context[0] == {"role": "system", "content": "You are Rin."}
    assert context[-1] == {"role": "user", "content": "hello"}
    assert len(context) == 2


@pytest.mark.asyncio
async def test_user_message_timestamp_precedes_assistant(engine, store, conversation, websocket):
    await engine.handle_message("conn-1", frame_for(conversation.id))

    user_message, assistant_message = await all_messages(store, conversation.id)
    assert user_message.timestamp < assistant_message.timestamp


@pytest.mark.asyncio
async def test_context_window_is_bounded(store, registry, websocket, conversation):
    provider = FakeProvider()
    engine = RelayEngine(store, provider, registry, history_limit=5)
    for index in range(12):
        await store.append_message(conversation.id, "user" if index % 2 == 0 else "assistant", f"old {index}")

    await engine.handle_message("conn-1", frame_for(conversation.id, content="latest"))

    context = provider.contexts[0]
    assert len(context) == 6
    assert context[0]["role"] == "system"
    # oldest-first, newest history entry is the message just recorded
    assert [m["content"] for m in context[1:]] == ["old 8", "old 9", "old 10", "old 11", "latest"]


@pytest.mark.asyncio
async def test_finalizing_updates_conversation_and_character(engine, store, conversation, character, websocket):
    await engine.handle_message("conn-1", frame_for(conversation.id))

    updated = await store.get_conversation("u1", conversation.id)
    assert updated.message_count == conversation.message_count + 1
    assert updated.last_message_at >= conversation.last_message_at

    updated_character = await store.get_character("u1", character.id)
    assert updated_character.usage_count == 1


@pytest.mark.asyncio
async def test_reported_usage_is_used_for_token_count(store, registry, websocket, conversation):
    engine = RelayEngine(store, FakeProvider(tokens=["a", "b"], usage=42), registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.tokens == 42
    assert sent_frames(websocket)[-1]["tokens"] == 42


@pytest.mark.asyncio
async def test_missing_usage_falls_back_to_word_estimate(store, registry, websocket, conversation):
    engine = RelayEngine(store, FakeProvider(tokens=["one two ", "three four"]), registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    # 4 words * 1.3
    assert outcome.tokens == 5


@pytest.mark.asyncio
async def test_empty_generation_still_finalizes(store, registry, websocket, conversation):
    engine = RelayEngine(store, FakeProvider(tokens=[]), registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.state == ExchangeState.DONE
    frames = sent_frames(websocket)
    assert frames == [{"type": "done", "messageId": outcome.message_id, "tokens": 0}]

    messages = await all_messages(store, conversation.id)
    assert messages[-1].role == "assistant"
    assert messages[-1].content == ""


@pytest.mark.asyncio
async def test_unknown_conversation_sends_single_error_and_persists_nothing(engine, store, websocket, conversation):
    outcome = await engine.handle_message("conn-1", frame_for("does-not-exist"))

    assert outcome.state == ExchangeState.FAILED
    assert outcome.error_kind == ErrorKind.NOT_FOUND
    assert outcome.status_code == 404
    assert sent_frames(websocket) == [{"type": "error", "error": "Conversation not found"}]
    assert await all_messages(store, conversation.id) == []


@pytest.mark.asyncio
async def test_conversation_of_another_user_is_not_found(engine, store, websocket, conversation):
    outcome = await engine.handle_message("conn-1", frame_for(conversation.id, user_id="u2"))

    assert outcome.error_kind == ErrorKind.NOT_FOUND
    assert await all_messages(store, conversation.id) == []


@pytest.mark.asyncio
async def test_missing_character_is_not_found(engine, store, websocket):
    orphan = await store.create_conversation("u1", "missing-character")

    outcome = await engine.handle_message("conn-1", frame_for(orphan.id))

    assert outcome.error_kind == ErrorKind.NOT_FOUND
    assert sent_frames(websocket) == [{"type": "error", "error": "Character not found"}]
    assert await all_messages(store, orphan.id) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [
    json.dumps({"conversationId": "c1", "content": "hello"}),
    json.dumps({"conversationId": "c1", "userId": "u1"}),
    json.dumps({"content": "hello", "userId": "u1"}),
    json.dumps({"conversationId": "c1", "content": "", "userId": "u1"}),
    "not json at all",
    "[]",
])
async def test_invalid_frame_is_rejected_without_store_calls(registry, websocket, raw):
    store = AsyncMock(spec=ConversationStore)
    provider = FakeProvider()
    engine = RelayEngine(store, provider, registry)

    outcome = await engine.handle_message("conn-1", raw)

    assert outcome.error_kind == ErrorKind.INVALID_REQUEST
    assert outcome.status_code == 400
    assert outcome.failed_at == ExchangeState.VALIDATING
    assert sent_frames(websocket) == [{"type": "error", "error": MISSING_FIELDS_MESSAGE}]
    assert store.mock_calls == []
    assert provider.contexts == []


@pytest.mark.asyncio
async def test_provider_failure_mid_stream_keeps_user_message(store, registry, websocket, conversation):
    engine = RelayEngine(store, FakeProvider(fail_after=1), registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.state == ExchangeState.FAILED
    assert outcome.error_kind == ErrorKind.UPSTREAM_FAILURE
    assert outcome.failed_at == ExchangeState.STREAMING

    frames = sent_frames(websocket)
    assert frames[0] == {"type": "token", "content": "Hello"}
    assert frames[-1]["type"] == "error"
    assert "upstream connection reset" in frames[-1]["error"]

    messages = await all_messages(store, conversation.id)
    assert [m.role for m in messages] == ["user"]

    unchanged = await store.get_conversation("u1", conversation.id)
    assert unchanged.message_count == 0


@pytest.mark.asyncio
async def test_provider_failure_at_start_keeps_user_message(store, registry, websocket, conversation):
    engine = RelayEngine(store, FakeProvider(fail_on_start=True), registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.error_kind == ErrorKind.UPSTREAM_FAILURE
    assert outcome.status_code == 502
    assert sent_frames(websocket) == [{"type": "error", "error": "Completion provider error: unavailable"}]
    assert [m.role for m in await all_messages(store, conversation.id)] == ["user"]


@pytest.mark.asyncio
async def test_store_failure_after_input_is_internal_error(registry, websocket, conversation, store):
    engine = RelayEngine(store, FakeProvider(), registry)
    store.get_recent_messages = AsyncMock(side_effect=RuntimeError("database is locked"))

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.error_kind == ErrorKind.INTERNAL_ERROR
    assert outcome.failed_at == ExchangeState.ASSEMBLING_CONTEXT
    assert sent_frames(websocket) == [{"type": "error", "error": "Failed to process message"}]
    assert [m.role for m in await all_messages(store, conversation.id)] == ["user"]


@pytest.mark.asyncio
async def test_delivery_failure_does_not_stop_generation(store, registry, conversation):
    ws = FakeWebSocket(fail_after=1)
    registry.on_connect("conn-1", ws)
    provider = FakeProvider(tokens=["one", " two", " three", " four"])
    engine = RelayEngine(store, provider, registry)

    outcome = await engine.handle_message("conn-1", frame_for(conversation.id))

    assert outcome.state == ExchangeState.DONE
    assert outcome.delivery_failed is True
    assert len(ws.sent) == 1
    assert not registry.is_connected("conn-1")

    messages = await all_messages(store, conversation.id)
    assert messages[-1].role == "assistant"
    assert messages[-1].content == "one two three four"


@pytest.mark.asyncio
async def test_exchange_for_unregistered_connection_still_persists(store, registry, conversation):
    engine = RelayEngine(store, FakeProvider(), registry)

    outcome = await engine.handle_message("never-connected", frame_for(conversation.id))

    assert outcome.state == ExchangeState.DONE
    assert outcome.delivery_failed is True
    assert [m.role for m in await all_messages(store, conversation.id)] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_concurrent_exchanges_on_same_conversation_both_complete(store, registry, conversation):
    ws = FakeWebSocket()
    registry.on_connect("conn-1", ws)
    engine = RelayEngine(store, FakeProvider(tokens=["a", "b", "c", "d"]), registry)

    first, second = await asyncio.gather(
        engine.handle_message("conn-1", frame_for(conversation.id, content="first")),
        engine.handle_message("conn-1", frame_for(conversation.id, content="second")),
    )

    assert first.state == ExchangeState.DONE
    assert second.state == ExchangeState.DONE
    assert first.message_id != second.message_id

    # Both pairs are stored; their relative interleaving is not guaranteed.
    messages = await all_messages(store, conversation.id)
    assert sorted(m.role for m in messages) == ["assistant", "assistant", "user", "user"]
    assert {m.content for m in messages if m.role == "user"} == {"first", "second"}

    done_frames = [f for f in sent_frames(ws) if f["type"] == "done"]
    assert len(done_frames) == 2

    updated = await store.get_conversation("u1", conversation.id)
    assert updated.message_count == 2


def test_build_context_reverses_newest_first_history(engine):
    class Row:
        def __init__(self, role, content):
            self.role = role
            self.content = content

    newest_first = [Row("assistant", "3"), Row("user", "2"), Row("assistant", "1")]

    context = engine.build_context("prompt", newest_first)

    assert context == [
        {"role": "system", "content": "prompt"},
        {"role": "assistant", "content": "1"},
        {"role": "user", "content": "2"},
        {"role": "assistant", "content": "3"},
    ]
