"""Conversation sessions: caller-owned, append-only message logs."""

from __future__ import annotations

import asyncio
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from .models import Message, Role


class ConversationSession:
    """Ordered log of one conversation.

    Turns are serialized through :attr:`turn_lock`; messages are never edited
    or removed.
    """

    def __init__(self, session_id: Optional[str] = None, *, system_prompt: Optional[str] = None) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._messages: List[Message] = []
        self.turn_lock = asyncio.Lock()
        if system_prompt:
            self.append("system", system_prompt)

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the log in append order."""
        return tuple(self._messages)

    def append(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self._messages.append(message)
        return message

    def __len__(self) -> int:
        return len(self._messages)


class SessionRegistry:
    """Sessions keyed by id, created on first use."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = ConversationSession(session_id)
                self._sessions[session_id] = session
            return session

    def find(self, session_id: str) -> Optional[ConversationSession]:
        """Return the session if it exists; never creates one."""
        with self._lock:
            return self._sessions.get(session_id)

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)
