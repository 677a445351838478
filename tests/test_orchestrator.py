from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import pytest

from memory_chat.context import DEFAULT_SYSTEM_PROMPT
from memory_chat.errors import NotFoundError, ValidationError
from memory_chat.llm import CompletionClient
from memory_chat.models import Message
from memory_chat.orchestrator import OrchestratorConfig, TurnOrchestrator
from memory_chat.session import ConversationSession
from memory_chat.store import InMemoryMemoryStore
from memory_chat.telemetry import TurnTelemetry

from conftest import BACKEND_URL, ScriptedClient, generation_response, is_extraction_call


class CaptureTelemetry(TurnTelemetry):
    def __init__(self) -> None:
        self.spans: list[tuple[str, dict]] = []

    def record(self, name: str, attributes: dict) -> None:
        self.spans.append((name, attributes))


def _orchestrator(client, store=None, **kwargs) -> TurnOrchestrator:
    return TurnOrchestrator(client=client, store=store or InMemoryMemoryStore(), **kwargs)


def test_hello_without_backend_gets_canned_greeting():
    client = CompletionClient(BACKEND_URL, "")
    orchestrator = _orchestrator(client)
    session = ConversationSession()

    result = asyncio.run(orchestrator.send_message(session, "hello"))

    assert result.reply.role == "assistant"
    assert result.reply.content.startswith("Hello there!")
    assert result.new_memories == []
    assert result.used_memories == []


def test_extracted_fact_is_stored_with_source(mock_backend):
    client = mock_backend(lambda request: generation_response("MEMORY: dog's name is Rex"))
    store = InMemoryMemoryStore()
    orchestrator = _orchestrator(client, store)

    async def run():
        result = await orchestrator.send_message(ConversationSession(), "My dog's name is Rex")
        return result, await orchestrator.list_memories()

    result, memories = asyncio.run(run())

    assert result.new_memories == ["dog's name is Rex"]
    assert [(m.content, m.source) for m in memories] == [("dog's name is Rex", "My dog's name is Rex")]


def test_stored_memories_feed_later_turns():
    client = ScriptedClient(reply="Noted!", extraction="MEMORY: likes jazz")
    store = InMemoryMemoryStore()
    orchestrator = _orchestrator(client, store)
    session = ConversationSession()

    async def run():
        await orchestrator.send_message(session, "I love jazz")
        client.extraction = "NO_MEMORY"
        return await orchestrator.send_message(session, "Any music tips?")

    second = asyncio.run(run())

    assert second.used_memories == ["likes jazz"]
    assert second.new_memories == []
    system = client.main_calls[-1][0]
    assert system.role == "system"
    assert system.content.startswith(DEFAULT_SYSTEM_PROMPT)
    assert "Memory 1: likes jazz" in system.content
    # The session log keeps only the conversation itself.
    assert all(m.role != "system" for m in session.messages)


def test_turns_preserve_append_order():
    client = ScriptedClient(reply="ack")
    orchestrator = _orchestrator(client)
    session = ConversationSession()

    async def run():
        await orchestrator.send_message(session, "first")
        await orchestrator.send_message(session, "second")

    asyncio.run(run())

    assert [(m.role, m.content) for m in orchestrator.list_messages(session)] == [
        ("user", "first"),
        ("assistant", "ack"),
        ("user", "second"),
        ("assistant", "ack"),
    ]


def test_main_call_sees_history_and_new_message_last():
    client = ScriptedClient(reply="ack")
    orchestrator = _orchestrator(client)
    session = ConversationSession()

    async def run():
        await orchestrator.send_message(session, "first")
        await orchestrator.send_message(session, "second")

    asyncio.run(run())

    sent = client.main_calls[-1]
    assert [(m.role, m.content) for m in sent[1:]] == [("user", "first"), ("assistant", "ack"), ("user", "second")]


def test_extraction_runs_concurrently_with_completion():
    events: List[str] = []

    class SlowClient(ScriptedClient):
        async def complete(self, messages: Sequence[Message]) -> str:
            kind = "extract" if is_extraction_call(messages) else "main"
            events.append(f"start:{kind}")
            await asyncio.sleep(0.05)
            events.append(f"end:{kind}")
            return await super().complete(messages)

    orchestrator = _orchestrator(SlowClient())
    asyncio.run(orchestrator.send_message(ConversationSession(), "hello"))

    assert set(events[:2]) == {"start:extract", "start:main"}


def test_concurrent_sends_on_one_session_are_serialized():
    client = ScriptedClient(reply="ack")
    orchestrator = _orchestrator(client)
    session = ConversationSession()

    async def run():
        await asyncio.gather(
            orchestrator.send_message(session, "one"),
            orchestrator.send_message(session, "two"),
        )

    asyncio.run(run())

    assert [m.role for m in session.messages] == ["user", "assistant", "user", "assistant"]


def test_failed_insert_is_skipped():
    class PickyStore(InMemoryMemoryStore):
        def insert(self, content: str, source: Optional[str] = None) -> str:
            if "secret" in content:
                raise RuntimeError("write rejected")
            return super().insert(content, source)

    client = ScriptedClient(extraction="MEMORY: secret plan MEMORY: likes tea")
    store = PickyStore()
    orchestrator = _orchestrator(client, store)

    result = asyncio.run(orchestrator.send_message(ConversationSession(), "I like tea"))

    assert result.new_memories == ["likes tea"]
    assert [m.content for m in store.list_all()] == ["likes tea"]


def test_store_outage_degrades_to_no_memories():
    class DownStore(InMemoryMemoryStore):
        def list_recent(self, limit: int):
            raise ConnectionError("store offline")

    client = ScriptedClient(reply="still here")
    result = asyncio.run(_orchestrator(client, DownStore()).send_message(ConversationSession(), "hi"))

    assert result.reply.content == "still here"
    assert result.used_memories == []


def test_completion_exception_becomes_reply():
    class Broken(ScriptedClient):
        async def complete(self, messages):
            if is_extraction_call(messages):
                return "NO_MEMORY"
            raise RuntimeError("socket closed")

    session = ConversationSession()
    result = asyncio.run(_orchestrator(Broken()).send_message(session, "hello"))

    assert result.reply.content.startswith("I'm sorry, I encountered an error")
    assert "socket closed" in result.reply.content
    assert [m.role for m in session.messages] == ["user", "assistant"]


def test_abandoned_turn_still_persists_memories():
    class HangingMain(ScriptedClient):
        async def complete(self, messages):
            if not is_extraction_call(messages):
                await asyncio.sleep(10)
            return await super().complete(messages)

    client = HangingMain(extraction="MEMORY: lives in Porto")
    store = InMemoryMemoryStore()
    orchestrator = _orchestrator(client, store)

    async def run():
        turn = asyncio.create_task(orchestrator.send_message(ConversationSession(), "I live in Porto"))
        await asyncio.sleep(0.05)
        turn.cancel()
        with pytest.raises(asyncio.CancelledError):
            await turn
        await orchestrator.supervisor.drain()

    asyncio.run(run())

    assert [m.content for m in store.list_all()] == ["lives in Porto"]


def test_recent_limit_bounds_used_memories():
    store = InMemoryMemoryStore()
    for i in range(8):
        store.insert(f"fact {i}")
    orchestrator = _orchestrator(ScriptedClient(), store, config=OrchestratorConfig(recent_limit=3))

    result = asyncio.run(orchestrator.send_message(ConversationSession(), "hi"))

    assert result.used_memories == ["fact 7", "fact 6", "fact 5"]


def test_turn_emits_telemetry_spans():
    telemetry = CaptureTelemetry()
    orchestrator = _orchestrator(ScriptedClient(extraction="MEMORY: x"), telemetry=telemetry)

    asyncio.run(orchestrator.send_message(ConversationSession(), "hi"))

    names = [name for name, _ in telemetry.spans]
    assert {"turn.retrieve", "turn.complete", "turn.persist"} <= set(names)
    attrs: Dict[str, Any] = dict(telemetry.spans[names.index("turn.complete")][1])
    assert attrs["success"] is True
    assert "duration_ms" in attrs
    assert attrs["message_count"] == 2
    assert dict(telemetry.spans[names.index("turn.persist")][1])["stored_count"] == 1


def test_direct_memory_mutations():
    orchestrator = _orchestrator(ScriptedClient())

    async def run():
        created = await orchestrator.create_memory("  prefers window seats ")
        listed = await orchestrator.list_memories()
        deleted = await orchestrator.delete_memory(created["id"])
        return created, listed, deleted, await orchestrator.list_memories()

    created, listed, deleted, after = asyncio.run(run())

    assert created["success"] is True
    assert [(m.id, m.content, m.source) for m in listed] == [(created["id"], "prefers window seats", None)]
    assert deleted == {"success": True}
    assert after == []


def test_direct_mutations_propagate_errors():
    orchestrator = _orchestrator(ScriptedClient())
    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.create_memory("   "))
    with pytest.raises(NotFoundError):
        asyncio.run(orchestrator.delete_memory("missing"))
