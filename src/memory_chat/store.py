"""Memory record stores: disk-backed JSON (thread-safe, atomic) and in-memory."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .errors import NotFoundError, ValidationError
from .models import MemoryRecord, utc_now

logger = logging.getLogger(__name__)


# -----------------------------
# Helpers
# -----------------------------
def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, obj: Any) -> None:
    _atomic_write_text(path, json.dumps(obj, ensure_ascii=False, indent=2))


def _preview(text: Optional[str], n: int = 50) -> str:
    if not text:
        return ""
    return text if len(text) <= n else f"{text[:n]}..."


def _clean_content(content: str) -> str:
    cleaned = (content or "").strip()
    if not cleaned:
        raise ValidationError("memory content cannot be empty")
    return cleaned


def _newest_first(records: List[MemoryRecord], order: Dict[str, int]) -> List[MemoryRecord]:
    # Insertion sequence breaks ties between records created in the same instant.
    return sorted(records, key=lambda r: (r.created_at, order.get(r.id, 0)), reverse=True)


class MemoryStore(Protocol):
    """Interface for memory persistence.

    Read operations never raise; a failing backend reads as empty.
    """

    def insert(self, content: str, source: Optional[str] = None) -> str:
        """Persist a new record; returns the store-assigned id."""

    def delete(self, memory_id: str) -> None:
        """Remove a record; raises NotFoundError if absent."""

    def list_all(self) -> List[MemoryRecord]:
        """All records, newest first."""

    def list_recent(self, limit: int) -> List[MemoryRecord]:
        """The ``limit`` newest records, newest first."""


def _check_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    return limit


# -----------------------------
# InMemoryMemoryStore
# -----------------------------
class InMemoryMemoryStore:
    """Process-local store; contents vanish with the process."""

    def __init__(self) -> None:
        self._records: Dict[str, MemoryRecord] = {}
        self._order: Dict[str, int] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def insert(self, content: str, source: Optional[str] = None) -> str:
        cleaned = _clean_content(content)
        with self._lock:
            record = MemoryRecord(id=uuid.uuid4().hex, content=cleaned, created_at=utc_now(), source=source)
            self._seq += 1
            self._records[record.id] = record
            self._order[record.id] = self._seq
        logger.info("Stored memory %s: %r", record.id, _preview(cleaned))
        return record.id

    def delete(self, memory_id: str) -> None:
        with self._lock:
            if memory_id not in self._records:
                raise NotFoundError(memory_id)
            del self._records[memory_id]
            self._order.pop(memory_id, None)
        logger.info("Deleted memory with ID: %s", memory_id)

    def list_all(self) -> List[MemoryRecord]:
        with self._lock:
            return _newest_first(list(self._records.values()), self._order)

    def list_recent(self, limit: int) -> List[MemoryRecord]:
        return self.list_all()[: _check_limit(limit)]


# -----------------------------
# DiskMemoryStore
# -----------------------------
class DiskMemoryStore:
    """JSON document store for memory records.

    Layout:
        data_dir/
          memories.json     # {"seq": int, "records": [ {id, content, created_at, source?, is_global, seq} ]}
    """

    FILENAME = "memories.json"

    def __init__(self, data_dir: str) -> None:
        self.root = Path(data_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.path = self.root / self.FILENAME
        self._lock = threading.RLock()

    # --------- internals ----------
    def _load_doc(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"seq": 0, "records": []}
        try:
            doc = _read_json(self.path)
        except (OSError, ValueError):
            logger.exception("Memory file %s is unreadable; moving it aside", self.path)
            return self._reset_corrupt()
        if not isinstance(doc, dict) or not isinstance(doc.get("records"), list):
            logger.error("Memory file %s has an unexpected layout; moving it aside", self.path)
            return self._reset_corrupt()
        return doc

    def _reset_corrupt(self) -> Dict[str, Any]:
        # Keep a backup and start fresh.
        with self._lock:
            try:
                self.path.replace(self.path.with_suffix(".corrupt.json"))
            except OSError:
                logger.warning("Could not move corrupt memory file %s", self.path)
        return {"seq": 0, "records": []}

    def _save_doc(self, doc: Dict[str, Any]) -> None:
        _write_json(self.path, doc)

    # --------- core API ----------
    def insert(self, content: str, source: Optional[str] = None) -> str:
        cleaned = _clean_content(content)
        with self._lock:
            doc = self._load_doc()
            seq = int(doc.get("seq", 0)) + 1
            record = MemoryRecord(id=uuid.uuid4().hex, content=cleaned, created_at=utc_now(), source=source)
            row = record.to_dict()
            row["seq"] = seq
            doc["seq"] = seq
            doc["records"].append(row)
            self._save_doc(doc)
        if source:
            logger.info("Stored memory %s: %r (source: %r)", record.id, _preview(cleaned), _preview(source))
        else:
            logger.info("Stored memory %s: %r (manually added)", record.id, _preview(cleaned))
        return record.id

    def delete(self, memory_id: str) -> None:
        with self._lock:
            doc = self._load_doc()
            kept = [r for r in doc["records"] if r.get("id") != memory_id]
            if len(kept) == len(doc["records"]):
                raise NotFoundError(memory_id)
            doc["records"] = kept
            self._save_doc(doc)
        logger.info("Deleted memory with ID: %s", memory_id)

    def list_all(self) -> List[MemoryRecord]:
        try:
            with self._lock:
                rows = self._load_doc()["records"]
            records = [MemoryRecord.from_dict(r) for r in rows]
            order = {str(r["id"]): int(r.get("seq", 0)) for r in rows}
        except Exception:
            logger.exception("Error retrieving memories from %s", self.path)
            return []
        logger.debug("Retrieved %d memories", len(records))
        return _newest_first(records, order)

    def list_recent(self, limit: int) -> List[MemoryRecord]:
        return self.list_all()[: _check_limit(limit)]


def create_from_config(cfg: Dict[str, Any]) -> MemoryStore:
    mem_cfg = (cfg or {}).get("memory", {}) or {}
    backend = str(mem_cfg.get("backend", "disk")).lower()
    if backend == "memory":
        return InMemoryMemoryStore()
    if backend != "disk":
        raise ValueError(f"unknown memory backend {backend!r}")
    return DiskMemoryStore(str(mem_cfg.get("data_dir") or "data"))
