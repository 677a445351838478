"""Async completion client for the chat backend, with a canned test mode."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from .config import api_key_configured
from .errors import BackendError, BackendFailure, BackendProtocolError, BackendUnavailable
from .models import Message

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    model: str = "qwq-32b-v0"
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: float = 30.0


def canned_reply(messages: Sequence[Message]) -> str:
    """Deterministic reply used when no backend credential is configured."""
    last_user = next((m for m in reversed(messages) if m.role == "user"), None)
    if last_user is None:
        return "I didn't receive a message to respond to. How can I help you?"

    text = last_user.content.lower()
    if "hello" in text or "hi" in text:
        return (
            "Hello there! I'm running in test mode since the API key is not configured. "
            "To use the actual AI, please set NEBIUS_API_KEY in your environment."
        )
    if "help" in text:
        return (
            "I'm here to help! Currently running in test mode. "
            "To use the full AI capabilities, please configure your API key."
        )
    if "weather" in text:
        return (
            "I'm sorry, I can't check the weather in test mode. "
            "To use the full AI capabilities, please configure your API key."
        )
    return (
        f'You said: "{last_user.content}". This is a test response because the API key '
        "is not configured. To use the actual AI, please set NEBIUS_API_KEY in your environment."
    )


def _extract_text(payload: Any) -> str:
    """Pull the first generated text out of a backend response body."""
    if not isinstance(payload, dict):
        raise BackendProtocolError("response body is not a JSON object")
    result = payload.get("result")
    generations = result.get("generations") if isinstance(result, dict) else None
    first = _first_entry(generations)
    if isinstance(first.get("text"), str):
        return first["text"]
    # OpenAI-compatible shape
    choice = _first_entry(payload.get("choices"))
    message = choice.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    if isinstance(choice.get("text"), str):
        return choice["text"]
    raise BackendProtocolError("no generated text in response body")


def _first_entry(entries: Any) -> Dict[str, Any]:
    if isinstance(entries, list) and entries and isinstance(entries[0], dict):
        return entries[0]
    return {}


# -----------------------------
# Client
# -----------------------------

class CompletionClient:
    """Send role-tagged messages to the backend and return the generated text.

    ``complete`` never raises for backend problems: failures are converted to a
    readable string so every user message still gets an assistant reply.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        *,
        model_path: str = "qwq",
        generation: Optional[GenerationConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key or ""
        self.model_path = model_path.strip("/")
        self.generation = generation or GenerationConfig()
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def configured(self) -> bool:
        return api_key_configured(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/{self.model_path}" if self.model_path else self.api_url

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.generation.timeout))
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def complete(self, messages: Sequence[Message]) -> str:
        if not self.configured:
            logger.info("Using test mode because API key is not configured")
            return canned_reply(messages)
        try:
            return await self._request(messages)
        except BackendFailure as e:
            logger.error("Completion request failed: %s", e)
            return e.describe()
        except Exception as e:
            logger.exception("Unexpected error calling completion backend")
            return f"Error: {str(e) or 'Unknown error occurred'}"

    async def _request(self, messages: Sequence[Message]) -> str:
        body: Dict[str, Any] = {
            "model": self.generation.model,
            "messages": [m.to_wire() for m in messages],
            "temperature": self.generation.temperature,
            "max_tokens": self.generation.max_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Api-Key {self.api_key}",
        }
        logger.debug("Sending %d messages to %s", len(messages), self.endpoint)
        try:
            r = await self._client().post(
                self.endpoint,
                json=body,
                headers=headers,
                timeout=self.generation.timeout,
            )
        except httpx.ConnectError as e:
            raise BackendUnavailable(str(e)) from e
        except httpx.TimeoutException as e:
            raise BackendUnavailable(str(e) or "request timed out", no_response=True) from e
        except httpx.RequestError as e:
            raise BackendUnavailable(str(e), no_response=True) from e

        if not r.is_success:
            try:
                detail: Any = json.dumps(r.json())
            except ValueError:
                detail = r.text
            raise BackendError(r.status_code, r.reason_phrase, detail)

        try:
            payload = r.json()
        except ValueError as e:
            raise BackendProtocolError("response body is not JSON") from e
        text = _extract_text(payload)
        logger.debug("Backend returned %d chars", len(text))
        return text


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any], http_client: Optional[httpx.AsyncClient] = None) -> CompletionClient:
    """Create a CompletionClient from a config dict (e.g., loaded YAML)."""
    backend = (cfg or {}).get("backend", {}) if isinstance(cfg, dict) else {}
    generation = GenerationConfig(
        model=str(backend.get("model", "qwq-32b-v0")),
        temperature=float(backend.get("temperature", 0.7)),
        max_tokens=int(backend.get("max_tokens", 2000)),
        timeout=float(backend.get("timeout", 30.0)),
    )
    return CompletionClient(
        str(backend.get("api_url", "https://api.studio.nebius.com/v1")),
        backend.get("api_key") or "",
        model_path=str(backend.get("model_path", "qwq") or ""),
        generation=generation,
        http_client=http_client,
    )
