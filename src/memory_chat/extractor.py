"""Memory extraction: a second completion pass that mines one user message for facts.

The agent replies in a small text protocol::

    NO_MEMORY
    MEMORY: <fact> MEMORY: <fact> ...

Parsing lives in :func:`parse_memories` so a structured-output protocol can
replace it without touching the orchestrator.
"""

from __future__ import annotations

import logging
import re
import warnings
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from .errors import ExtractionParseAmbiguity
from .llm import CompletionClient
from .models import Message

logger = logging.getLogger(__name__)

NO_MEMORY = "NO_MEMORY"
MEMORY_MARKER = "MEMORY:"
DEFAULT_PROMPT_PATH = Path(__file__).resolve().parent / "prompts" / "memory_agent.txt"
FALLBACK_PROMPT = (
    "You are a Memory Agent. Extract important information from user messages that should be remembered."
)

_MEMORY_RE = re.compile(r"MEMORY:\s*(.*?)(?=MEMORY:|\Z)", re.DOTALL)


@lru_cache(maxsize=8)
def load_extraction_prompt(path: Optional[str] = None) -> str:
    """Read the extraction system prompt once per path for the process lifetime."""
    prompt_path = Path(path) if path else DEFAULT_PROMPT_PATH
    try:
        prompt = prompt_path.read_text(encoding="utf-8").strip()
    except OSError:
        logger.exception("Error loading memory agent prompt from %s; using fallback", prompt_path)
        return FALLBACK_PROMPT
    if not prompt:
        logger.warning("Memory agent prompt at %s is empty; using fallback", prompt_path)
        return FALLBACK_PROMPT
    logger.info("Memory agent prompt loaded (%d chars)", len(prompt))
    return prompt


def parse_memories(response: str) -> List[str]:
    """Parse an extraction reply into facts, in order of appearance.

    ``NO_MEMORY`` anywhere in the reply wins, even alongside ``MEMORY:``
    markers; that case emits :class:`ExtractionParseAmbiguity`.
    """
    if not response:
        return []
    if NO_MEMORY in response:
        if MEMORY_MARKER in response.replace(NO_MEMORY, ""):
            msg = "extraction reply has both NO_MEMORY and MEMORY: markers; treating as no memory"
            logger.warning(msg)
            warnings.warn(msg, ExtractionParseAmbiguity, stacklevel=2)
        return []
    facts: List[str] = []
    for match in _MEMORY_RE.finditer(response):
        fact = match.group(1).strip()
        if fact:
            facts.append(fact)
    return facts


class MemoryExtractor:
    """Best-effort fact extraction; never raises."""

    def __init__(self, client: CompletionClient, *, prompt_path: Optional[str] = None) -> None:
        self.client = client
        self.prompt_path = prompt_path

    @property
    def system_prompt(self) -> str:
        return load_extraction_prompt(self.prompt_path)

    async def extract(self, user_message: str) -> List[str]:
        if not (user_message or "").strip():
            return []
        try:
            messages = [
                Message(role="system", content=self.system_prompt),
                Message(role="user", content=user_message),
            ]
            response = await self.client.complete(messages)
            facts = parse_memories(response)
        except Exception:
            logger.exception("Error processing message for memories")
            return []
        logger.info("Extracted %d memories from %r", len(facts), user_message[:50])
        return facts
