"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List, Sequence

import httpx
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from memory_chat.llm import CompletionClient  # noqa: E402
from memory_chat.models import Message  # noqa: E402

BACKEND_URL = "https://backend.test/v1"


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for the memory store during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["MEMORY_CHAT_CONFIG", "NEBIUS_API_KEY", "NEBIUS_API_URL"]:
        monkeypatch.delenv(var, raising=False)
    yield


def generation_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"result": {"generations": [{"text": text}]}})


@pytest.fixture
def mock_backend() -> Callable[..., CompletionClient]:
    """Build a configured CompletionClient whose HTTP calls go to ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> CompletionClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return CompletionClient(BACKEND_URL, "test-key", http_client=http, **kwargs)

    return _make


def is_extraction_call(messages: Sequence[Message]) -> bool:
    return bool(messages) and messages[0].content.startswith("You are a Memory Agent")


class ScriptedClient:
    """Completion double: fixed replies for the main call and the extraction call."""

    configured = True

    def __init__(self, reply: str = "ok", extraction: str = "NO_MEMORY") -> None:
        self.reply = reply
        self.extraction = extraction
        self.calls: List[List[Message]] = []

    async def complete(self, messages: Sequence[Message]) -> str:
        self.calls.append(list(messages))
        if is_extraction_call(messages):
            return self.extraction
        return self.reply

    @property
    def main_calls(self) -> List[List[Message]]:
        return [c for c in self.calls if not is_extraction_call(c)]

    async def aclose(self) -> None:
        pass
