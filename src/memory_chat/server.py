"""FastAPI application exposing the turn orchestrator."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from . import llm as llm_module
from . import store as store_module
from .config import configure_logging, describe_backend, load_config
from .errors import NotFoundError, ValidationError
from .llm import CompletionClient
from .orchestrator import OrchestratorConfig, TurnOrchestrator
from .session import SessionRegistry
from .store import MemoryStore
from .telemetry import LoggingTurnTelemetry


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    session_id: str = Field(default="default", description="Conversation key.")
    message: str = Field(..., min_length=1)


class MessageOut(BaseModel):
    role: str
    content: str
    timestamp: datetime


class ChatResponse(BaseModel):
    reply: MessageOut
    new_memories: List[str] = Field(default_factory=list)
    used_memories: List[str] = Field(default_factory=list)


class MemoryOut(BaseModel):
    id: str
    content: str
    created_at: datetime
    source: Optional[str] = None
    is_global: bool = True


class CreateMemoryRequest(BaseModel):
    content: str


class CreateMemoryResponse(BaseModel):
    success: bool
    id: str


class DeleteMemoryResponse(BaseModel):
    success: bool


# -----------------------------
# Utilities
# -----------------------------
def _message_out(message: Any) -> MessageOut:
    return MessageOut(role=message.role, content=message.content, timestamp=message.timestamp)


def _make_orchestrator(
    cfg: Dict[str, Any],
    client: Optional[CompletionClient],
    store: Optional[MemoryStore],
) -> TurnOrchestrator:
    mem_cfg = cfg.get("memory", {}) or {}
    assistant_cfg = cfg.get("assistant", {}) or {}
    config = OrchestratorConfig(
        recent_limit=int(mem_cfg.get("recent_limit", 5)),
        system_prompt=assistant_cfg.get("system_prompt") or None,
        extraction_prompt_path=mem_cfg.get("extraction_prompt_path") or None,
    )
    return TurnOrchestrator(
        client=client or llm_module.create_from_config(cfg),
        store=store or store_module.create_from_config(cfg),
        config=config,
        telemetry=LoggingTurnTelemetry(),
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    client: Optional[CompletionClient] = None,
    store: Optional[MemoryStore] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    configure_logging(cfg)
    describe_backend(cfg)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    orchestrator = _make_orchestrator(cfg, client, store)
    sessions = SessionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.aclose()

    app = FastAPI(title="Memory Chat Server", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.sessions = sessions
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"success": False, "detail": str(exc)})

    def _ai_status() -> str:
        return "configured" if orchestrator.client.configured else "not configured"

    @app.get("/")
    def root() -> Dict[str, Any]:
        return {"message": "Memory chat server is running.", "ai_status": _ai_status()}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "ai_status": _ai_status(),
            "sessions": len(sessions.list_ids()),
            "background_failures": orchestrator.supervisor.failures,
        }

    @app.post("/chat", response_model=ChatResponse)
    async def chat(req: ChatRequest) -> ChatResponse:
        if not req.message.strip():
            raise HTTPException(status_code=400, detail="Message cannot be empty.")
        session = sessions.get(req.session_id)
        result = await orchestrator.send_message(session, req.message)
        return ChatResponse(
            reply=_message_out(result.reply),
            new_memories=result.new_memories,
            used_memories=result.used_memories,
        )

    @app.get("/messages", response_model=List[MessageOut])
    def list_messages(session_id: str = "default") -> List[MessageOut]:
        session = sessions.find(session_id)
        if session is None:
            return []
        return [_message_out(m) for m in orchestrator.list_messages(session)]

    @app.get("/memories", response_model=List[MemoryOut])
    async def list_memories() -> List[MemoryOut]:
        records = await orchestrator.list_memories()
        return [
            MemoryOut(
                id=r.id,
                content=r.content,
                created_at=r.created_at,
                source=r.source,
                is_global=r.is_global,
            )
            for r in records
        ]

    @app.post("/memories", response_model=CreateMemoryResponse)
    async def create_memory(req: CreateMemoryRequest) -> CreateMemoryResponse:
        return CreateMemoryResponse(**await orchestrator.create_memory(req.content))

    @app.delete("/memories/{memory_id}", response_model=DeleteMemoryResponse)
    async def delete_memory(memory_id: str) -> DeleteMemoryResponse:
        return DeleteMemoryResponse(**await orchestrator.delete_memory(memory_id))

    return app
