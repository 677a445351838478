"""Build the message list sent to the main completion call."""

from __future__ import annotations

from typing import List, Sequence

from .models import MemoryRecord, Message

DEFAULT_SYSTEM_PROMPT = "You are a helpful, friendly and intelligent personal assistant."
MEMORY_HEADER = "Here are some memories about the user that may be relevant:"
MEMORY_FOOTER = "Use these memories to personalize your response when relevant."


def render_memories(memories: Sequence[MemoryRecord]) -> str:
    lines = [MEMORY_HEADER]
    lines.extend(f"Memory {i}: {m.content}" for i, m in enumerate(memories, start=1))
    lines.append(MEMORY_FOOTER)
    return "\n".join(lines)


class ContextAssembler:
    """System preamble + rendered memories + history, in append order.

    The history itself is never modified: an augmented copy of the system
    message replaces it in the output so memory blocks do not pile up turn
    after turn.
    """

    def __init__(self, system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> None:
        self.system_prompt = system_prompt

    def assemble(self, history: Sequence[Message], memories: Sequence[MemoryRecord] = ()) -> List[Message]:
        messages = list(history)
        if not messages or messages[0].role != "system":
            messages.insert(0, Message(role="system", content=self.system_prompt))

        if memories:
            system = messages[0]
            messages[0] = Message(
                role="system",
                content=f"{system.content}\n\n{render_memories(memories)}",
                timestamp=system.timestamp,
            )
        return messages
