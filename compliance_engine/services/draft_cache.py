"""SQLite-backed local draft cache with in-memory degradation and metrics."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from compliance_engine.errors.exceptions import LocalPersistenceError
from compliance_engine.schemas.response import Response, ResponseDraft

logger = logging.getLogger(__name__)


def cache_key(audit_id: int) -> str:
    """Storage key holding every draft of one audit."""
    return f"audit:{audit_id}:responses"


class LocalDraftCache:
    """
    Write-ahead buffer of response drafts, one JSON map per audit.

    Drafts survive a process restart. If the database cannot be opened or
    written, the cache logs a warning and keeps working in memory for the
    rest of the session; no method raises on storage failure.
    """

    _instance: LocalDraftCache | None = None
    _lock = threading.Lock()

    def __init__(self, db_path: Path | None):
        self.db_path = db_path
        self._memory: dict[str, dict[str, dict[str, Any]]] = {}
        self._degraded = db_path is None
        self._db_lock = threading.Lock()
        self._metrics = {"hits": 0, "misses": 0, "stores": 0, "reconciled": 0, "failures": 0}
        if db_path is not None:
            try:
                self._init_db(db_path)
            except LocalPersistenceError as e:
                self._degrade(e)

    @classmethod
    def get_instance(cls, db_path: Path | None = None) -> LocalDraftCache:
        """Get or create the singleton cache; without a path it is memory-only."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls(db_path)
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        with cls._lock:
            cls._instance = None

    @property
    def degraded(self) -> bool:
        return self._degraded

    # === Storage ===

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS drafts (
                cache_key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )
        conn.commit()

    def _init_db(self, db_path: Path) -> None:
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            with sqlite3.connect(db_path) as conn:
                self._create_schema(conn)
        except sqlite3.DatabaseError:
            # Corrupted file: recreate it once
            logger.warning(f"Draft cache {db_path} is unreadable, recreating it")
            try:
                if db_path.exists():
                    db_path.unlink()
                with sqlite3.connect(db_path) as conn:
                    self._create_schema(conn)
            except (sqlite3.Error, OSError) as e:
                raise LocalPersistenceError(f"Cannot open draft cache {db_path}: {e}") from e
        except OSError as e:
            raise LocalPersistenceError(f"Cannot open draft cache {db_path}: {e}") from e

    def _degrade(self, error: Exception) -> None:
        if not self._degraded:
            logger.warning(f"Local draft cache degraded to memory for this session: {error}")
        self._degraded = True
        self._increment("failures")

    def _increment(self, metric: str) -> None:
        self._metrics[metric] = self._metrics.get(metric, 0) + 1

    def _read_map(self, key: str) -> dict[str, dict[str, Any]]:
        if self._degraded:
            return dict(self._memory.get(key, {}))
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT value FROM drafts WHERE cache_key = ?", (key,)
                ).fetchone()
            return json.loads(row[0]) if row else {}
        except (sqlite3.Error, json.JSONDecodeError) as e:
            self._degrade(LocalPersistenceError(f"read failed for {key}: {e}"))
            return dict(self._memory.get(key, {}))

    def _write_map(self, key: str, drafts: dict[str, dict[str, Any]]) -> None:
        # Memory always mirrors the latest map so a later failure loses nothing
        self._memory[key] = dict(drafts)
        if self._degraded:
            return
        try:
            with sqlite3.connect(self.db_path) as conn:
                if drafts:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO drafts (cache_key, value, updated_at)
                        VALUES (?, ?, ?)
                        """,
                        (key, json.dumps(drafts), time.time()),
                    )
                else:
                    conn.execute("DELETE FROM drafts WHERE cache_key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            self._degrade(LocalPersistenceError(f"write failed for {key}: {e}"))

    # === Drafts ===

    def load(self, audit_id: int) -> dict[str, ResponseDraft]:
        """All cached drafts of an audit, keyed by question key."""
        with self._db_lock:
            raw = self._read_map(cache_key(audit_id))
        drafts: dict[str, ResponseDraft] = {}
        for question_key, data in raw.items():
            try:
                drafts[question_key] = ResponseDraft.model_validate(data)
            except ValueError:
                logger.warning(f"Dropping unreadable cached draft {audit_id}/{question_key}")
        self._increment("hits" if drafts else "misses")
        return drafts

    def get(self, audit_id: int, question_key: str) -> ResponseDraft | None:
        return self.load(audit_id).get(question_key)

    def put(self, audit_id: int, draft: ResponseDraft) -> None:
        """Write a draft ahead of any remote save."""
        key = cache_key(audit_id)
        with self._db_lock:
            drafts = self._read_map(key)
            drafts[draft.question_key] = draft.model_dump(mode="json")
            self._write_map(key, drafts)
        self._increment("stores")

    def remove(self, audit_id: int, question_key: str) -> bool:
        key = cache_key(audit_id)
        with self._db_lock:
            drafts = self._read_map(key)
            if question_key not in drafts:
                return False
            del drafts[question_key]
            self._write_map(key, drafts)
        return True

    def reconcile(self, audit_id: int, acknowledged: Response) -> bool:
        """
        Drop the cached draft once the remote store holds the same content.

        A draft edited after the write was sent no longer matches and is
        kept. Returns True if the draft was removed.
        """
        key = cache_key(audit_id)
        with self._db_lock:
            drafts = self._read_map(key)
            data = drafts.get(acknowledged.question_key)
            if data is None:
                return False
            try:
                cached = ResponseDraft.model_validate(data)
            except ValueError:
                cached = None
            if cached is not None and not cached.same_content(acknowledged):
                return False
            del drafts[acknowledged.question_key]
            self._write_map(key, drafts)
        self._increment("reconciled")
        return True

    def clear(self, audit_id: int) -> None:
        with self._db_lock:
            self._write_map(cache_key(audit_id), {})

    # === Stats ===

    def get_stats(self) -> dict[str, Any]:
        with self._db_lock:
            entries = 0
            if not self._degraded:
                try:
                    with sqlite3.connect(self.db_path) as conn:
                        entries = conn.execute("SELECT COUNT(*) FROM drafts").fetchone()[0]
                except sqlite3.Error:
                    entries = 0
            else:
                entries = sum(1 for drafts in self._memory.values() if drafts)
        return {
            "path": str(self.db_path) if self.db_path else None,
            "degraded": self._degraded,
            "audits_with_drafts": entries,
            "metrics": dict(self._metrics),
        }

    def check_connection(self) -> dict[str, Any]:
        if self._degraded or self.db_path is None:
            return {"connected": False, "path": str(self.db_path), "error": "memory-only"}
        try:
            with sqlite3.connect(self.db_path, timeout=5.0) as conn:
                integrity = conn.execute("PRAGMA integrity_check").fetchone()[0]
            return {"connected": True, "path": str(self.db_path), "integrity": integrity, "error": None}
        except sqlite3.Error as e:
            return {"connected": False, "path": str(self.db_path), "error": str(e)}
