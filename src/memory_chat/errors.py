"""Error taxonomy for the memory chat server.

Backend failures are caught inside the completion client and rendered as
assistant replies; store failures surface only for direct user mutations.
"""

from __future__ import annotations

from typing import Any, Optional


class MemoryChatError(Exception):
    """Base class for all errors raised by this package."""


# -----------------------------
# Completion backend
# -----------------------------
class BackendFailure(MemoryChatError):
    """Any failure talking to the completion backend."""

    def describe(self) -> str:
        return f"Error: {self}"


class BackendUnavailable(BackendFailure):
    """Connection-level failure (refused, DNS, timeout with no response)."""

    def __init__(self, message: str, *, no_response: bool = False) -> None:
        super().__init__(message)
        self.no_response = no_response

    def describe(self) -> str:
        if self.no_response:
            return (
                "No response received from the completion backend. "
                "Please check your API URL and internet connection."
            )
        return (
            "Error connecting to the completion backend. Please check your internet "
            "connection and firewall settings. If the issue persists, verify that "
            "the API URL is correct."
        )


class BackendError(BackendFailure):
    """Non-success HTTP status returned by the backend."""

    def __init__(self, status: int, reason: str = "", body: Any = None) -> None:
        super().__init__(f"backend returned status {status}")
        self.status = status
        self.reason = reason
        self.body = body

    def describe(self) -> str:
        body = self.body if self.body not in (None, "") else {}
        return f"Error from completion backend: Status {self.status} - {self.reason}. {body}"


class BackendProtocolError(BackendFailure):
    """Response arrived but did not have the expected shape."""

    def describe(self) -> str:
        return f"Error: Invalid response format from completion backend ({self})"


# -----------------------------
# Memory store
# -----------------------------
class ValidationError(MemoryChatError):
    """Memory content was empty after trimming."""


class NotFoundError(MemoryChatError):
    """No memory record exists with the requested id."""

    def __init__(self, memory_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"memory {memory_id!r} not found")
        self.memory_id = memory_id


# -----------------------------
# Extraction
# -----------------------------
class ExtractionParseAmbiguity(UserWarning):
    """Extraction reply contained both the NO_MEMORY sentinel and MEMORY: markers.

    Emitted as a warning; the sentinel wins and no facts are returned.
    """
