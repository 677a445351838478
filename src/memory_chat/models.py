"""Core value types shared by the orchestrator, store and HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Role = Literal["system", "user", "assistant"]
ROLES = ("system", "user", "assistant")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Message:
    """A single conversation message; immutable once created."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"unknown role {self.role!r}")

    def to_wire(self) -> Dict[str, str]:
        """Shape expected by the completion backend."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True, slots=True)
class MemoryRecord:
    """A persisted fact. ``id`` and ``created_at`` are assigned by the store."""

    id: str
    content: str
    created_at: datetime
    source: Optional[str] = None
    is_global: bool = True

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "is_global": self.is_global,
        }
        if self.source is not None:
            out["source"] = self.source
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        created = data.get("created_at")
        if isinstance(created, str):
            created_at = datetime.fromisoformat(created)
        elif isinstance(created, datetime):
            created_at = created
        else:
            created_at = utc_now()
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            created_at=created_at,
            source=data.get("source"),
            is_global=bool(data.get("is_global", True)),
        )


@dataclass(slots=True)
class TurnResult:
    """Outcome of one orchestrated turn; not persisted."""

    reply: Message
    new_memories: List[str] = field(default_factory=list)
    used_memories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply.to_dict(),
            "new_memories": list(self.new_memories),
            "used_memories": list(self.used_memories),
        }
