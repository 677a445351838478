"""
Turn Orchestrator - one user message in, one reply plus memory side effects out

For each message the orchestrator runs fact extraction and memory retrieval
concurrently with building and sending the main completion request. The
reply is committed to the session log first; extracted facts are persisted
afterwards by a supervised task that keeps running even if the caller goes
away.

    RECEIVED -> EXTRACTING+RETRIEVING+COMPLETING -> AWAITING_EXTRACTION
             -> PERSISTING -> DONE            (FAILED only if a step raises)
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .context import ContextAssembler
from .extractor import MemoryExtractor
from .llm import CompletionClient
from .models import MemoryRecord, Message, TurnResult
from .retrieval import MemoryRetriever
from .session import ConversationSession
from .store import MemoryStore
from .tasks import TaskSupervisor
from .telemetry import TurnTelemetry

logger = logging.getLogger(__name__)


class TurnState(str, enum.Enum):
    RECEIVED = "received"
    GATHERING = "extracting+retrieving+completing"
    AWAITING_EXTRACTION = "awaiting_extraction"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class OrchestratorConfig:
    recent_limit: int = 5
    system_prompt: Optional[str] = None
    extraction_prompt_path: Optional[str] = None


class TurnOrchestrator:
    """Facade over completion, extraction, retrieval and the memory store."""

    def __init__(
        self,
        *,
        client: CompletionClient,
        store: MemoryStore,
        config: OrchestratorConfig | None = None,
        extractor: MemoryExtractor | None = None,
        retriever: MemoryRetriever | None = None,
        assembler: ContextAssembler | None = None,
        supervisor: TaskSupervisor | None = None,
        telemetry: TurnTelemetry | None = None,
    ) -> None:
        cfg = config or OrchestratorConfig()
        self.client = client
        self.store = store
        self.extractor = extractor or MemoryExtractor(client, prompt_path=cfg.extraction_prompt_path)
        self.retriever = retriever or MemoryRetriever(store, limit=cfg.recent_limit)
        self.assembler = assembler or (
            ContextAssembler(cfg.system_prompt) if cfg.system_prompt else ContextAssembler()
        )
        self.supervisor = supervisor or TaskSupervisor()
        self.telemetry = telemetry or TurnTelemetry()

    # ---------------------- turns ----------------------
    async def send_message(self, session: ConversationSession, text: str) -> TurnResult:
        """Run one turn; turns on the same session are serialized."""
        async with session.turn_lock:
            return await self._run_turn(session, text)

    async def _run_turn(self, session: ConversationSession, text: str) -> TurnResult:
        sid = session.session_id
        self._trace(sid, TurnState.RECEIVED)
        session.append("user", text)

        reply_committed = asyncio.Event()
        persist = self.supervisor.spawn(
            self._extract_and_persist(sid, text, reply_committed),
            name=f"persist-memories-{sid}",
        )
        try:
            self._trace(sid, TurnState.GATHERING)
            with self.telemetry.stage("turn.retrieve", session_id=sid) as stage:
                relevant = await asyncio.to_thread(self.retriever.retrieve, text)
                stage["memory_count"] = len(relevant)

            messages = self.assembler.assemble(session.messages, relevant)
            with self.telemetry.stage("turn.complete", message_count=len(messages)) as stage:
                reply_text = await self._complete(messages)
                stage["response_chars"] = len(reply_text)

            reply = session.append("assistant", reply_text)
        except BaseException:
            self._trace(sid, TurnState.FAILED)
            raise
        finally:
            # Persistence proceeds even when the turn is abandoned or fails.
            reply_committed.set()

        self._trace(sid, TurnState.AWAITING_EXTRACTION)
        new_memories = await asyncio.shield(persist)
        self._trace(sid, TurnState.DONE)
        return TurnResult(
            reply=reply,
            new_memories=new_memories,
            used_memories=[m.content for m in relevant],
        )

    async def _complete(self, messages: List[Message]) -> str:
        try:
            return await self.client.complete(messages)
        except Exception as e:
            logger.exception("Error in completion for turn")
            return f"I'm sorry, I encountered an error: {str(e) or 'Unknown error'}"

    async def _extract_and_persist(self, session_id: str, text: str, reply_committed: asyncio.Event) -> List[str]:
        facts = await self.extractor.extract(text)
        await reply_committed.wait()
        if not facts:
            return []

        self._trace(session_id, TurnState.PERSISTING)
        stored: List[str] = []
        with self.telemetry.stage("turn.persist", fact_count=len(facts)) as stage:
            for fact in facts:
                if not fact.strip():
                    continue
                try:
                    await asyncio.to_thread(self.store.insert, fact, text)
                except Exception:
                    logger.exception("Failed to store extracted memory %r", fact[:50])
                    continue
                stored.append(fact.strip())
            stage["stored_count"] = len(stored)
        return stored

    @staticmethod
    def _trace(session_id: str, state: TurnState) -> None:
        logger.debug("turn[%s] -> %s", session_id, state.value)

    # ---------------------- queries & direct mutations ----------------------
    def list_messages(self, session: ConversationSession) -> List[Message]:
        return list(session.messages)

    async def list_memories(self) -> List[MemoryRecord]:
        return await asyncio.to_thread(self.store.list_all)

    async def create_memory(self, text: str) -> Dict[str, Any]:
        """Store a user-supplied memory; ValidationError propagates."""
        memory_id = await asyncio.to_thread(self.store.insert, text)
        return {"success": True, "id": memory_id}

    async def delete_memory(self, memory_id: str) -> Dict[str, Any]:
        """Delete by id; NotFoundError propagates."""
        await asyncio.to_thread(self.store.delete, memory_id)
        return {"success": True}

    async def aclose(self) -> None:
        await self.supervisor.drain()
        await self.client.aclose()
