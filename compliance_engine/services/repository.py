"""Persistent audit repository backed by SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from compliance_engine.errors.exceptions import AuditNotFoundError, LocalPersistenceError
from compliance_engine.schemas.analytics import CorrectiveAction
from compliance_engine.schemas.catalog import Audit, QualificationProfile
from compliance_engine.schemas.common import (
    ActionStatus,
    AuditStatus,
    EconomicRole,
    Market,
    ResponseValue,
    as_utc,
    utcnow,
)
from compliance_engine.schemas.response import Response, SaveAck, SaveStatus

logger = logging.getLogger(__name__)

DEFAULT_USER = "default"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS qualification (
        user_id TEXT PRIMARY KEY,
        economic_role TEXT NOT NULL,
        target_markets TEXT NOT NULL,
        target_standards TEXT NOT NULL,
        selected_processes TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        audit_type TEXT NOT NULL,
        referential_ids TEXT NOT NULL,
        economic_role TEXT NOT NULL,
        process_ids TEXT NOT NULL,
        market TEXT NOT NULL,
        site_id TEXT,
        organization_id TEXT,
        status TEXT NOT NULL DEFAULT 'draft',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        closed_at TEXT,
        score INTEGER,
        conformity_rate INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS responses (
        audit_id INTEGER NOT NULL,
        question_key TEXT NOT NULL,
        response_value TEXT NOT NULL,
        comment TEXT NOT NULL DEFAULT '',
        evidence_files TEXT NOT NULL DEFAULT '[]',
        updated_at TEXT NOT NULL,
        PRIMARY KEY (audit_id, question_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS actions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        audit_id INTEGER NOT NULL,
        question_key TEXT NOT NULL,
        title TEXT NOT NULL,
        owner TEXT,
        status TEXT NOT NULL DEFAULT 'open',
        due_date TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audits_status ON audits(status)",
    "CREATE INDEX IF NOT EXISTS idx_actions_audit ON actions(audit_id)",
)


def _dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


class AuditRepository:
    """
    Thread-safe store for qualification, audits, responses and actions.

    Responses keep one row per (audit_id, question_key); a write older than
    the stored row is acknowledged as superseded and leaves the row untouched.
    """

    _instance: AuditRepository | None = None
    _lock = threading.Lock()

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_lock = threading.Lock()
        self._init_tables()

    @classmethod
    def get_instance(cls, db_path: Path | None = None) -> AuditRepository:
        """Get or create the singleton repository instance."""
        with cls._lock:
            if cls._instance is None:
                if db_path is None:
                    raise ValueError("db_path required for first initialization")
                cls._instance = cls(db_path)
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        with cls._lock:
            cls._instance = None

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_tables(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn_lock:
            conn = self._get_connection()
            try:
                for statement in _SCHEMA:
                    conn.execute(statement)
                conn.commit()
            except sqlite3.Error as e:
                raise LocalPersistenceError(f"Cannot initialize audit database: {e}") from e
            finally:
                conn.close()

    # === Qualification ===

    def get_qualification(self, user_id: str = DEFAULT_USER) -> QualificationProfile | None:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM qualification WHERE user_id = ?", (user_id,)
                ).fetchone()
            finally:
                conn.close()

        if row is None:
            return None
        return QualificationProfile(
            economic_role=EconomicRole(row["economic_role"]),
            target_markets=tuple(Market(m) for m in json.loads(row["target_markets"])),
            target_standards=tuple(json.loads(row["target_standards"])),
            selected_processes=tuple(json.loads(row["selected_processes"])),
        )

    def save_qualification(
        self, profile: QualificationProfile, user_id: str = DEFAULT_USER
    ) -> QualificationProfile:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO qualification
                    (user_id, economic_role, target_markets, target_standards,
                     selected_processes, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        profile.economic_role.value,
                        json.dumps([m.value for m in profile.target_markets]),
                        json.dumps(list(profile.target_standards)),
                        json.dumps(list(profile.selected_processes)),
                        _iso(utcnow()),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return profile

    # === Audits ===

    @staticmethod
    def _row_to_audit(row: sqlite3.Row) -> Audit:
        return Audit(
            id=row["id"],
            name=row["name"],
            audit_type=row["audit_type"],
            referential_ids=json.loads(row["referential_ids"]),
            economic_role=EconomicRole(row["economic_role"]),
            process_ids=json.loads(row["process_ids"]),
            market=Market(row["market"]),
            site_id=row["site_id"],
            organization_id=row["organization_id"],
            status=AuditStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            completed_at=_dt(row["completed_at"]),
            closed_at=_dt(row["closed_at"]),
            score=row["score"],
            conformity_rate=row["conformity_rate"],
        )

    def create_audit(
        self,
        name: str,
        referential_ids: list[str],
        economic_role: EconomicRole,
        process_ids: list[str],
        market: Market,
        audit_type: str = "internal",
        site_id: str | None = None,
        organization_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Audit:
        """Insert a draft audit carrying its frozen qualification snapshot."""
        now = _iso(created_at or utcnow())
        with self._conn_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO audits
                    (name, audit_type, referential_ids, economic_role, process_ids,
                     market, site_id, organization_id, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'draft', ?, ?)
                    """,
                    (
                        name,
                        audit_type,
                        json.dumps(referential_ids),
                        economic_role.value,
                        json.dumps(process_ids),
                        market.value,
                        site_id,
                        organization_id,
                        now,
                        now,
                    ),
                )
                conn.commit()
                audit_id = cursor.lastrowid
                row = conn.execute("SELECT * FROM audits WHERE id = ?", (audit_id,)).fetchone()
            finally:
                conn.close()
        return self._row_to_audit(row)

    def get_audit(self, audit_id: int) -> Audit:
        """
        Get an audit by id.

        Raises:
            AuditNotFoundError: If no audit has this id
        """
        with self._conn_lock:
            conn = self._get_connection()
            try:
                row = conn.execute("SELECT * FROM audits WHERE id = ?", (audit_id,)).fetchone()
            finally:
                conn.close()
        if row is None:
            raise AuditNotFoundError(f"Audit {audit_id} not found")
        return self._row_to_audit(row)

    def list_audits(
        self, status: AuditStatus | None = None, page: int = 1, per_page: int = 10
    ) -> tuple[list[Audit], int]:
        """Newest audits first; returns one page and the total count."""
        where = "WHERE status = ?" if status is not None else ""
        params: tuple[Any, ...] = (status.value,) if status is not None else ()
        with self._conn_lock:
            conn = self._get_connection()
            try:
                total = conn.execute(f"SELECT COUNT(*) FROM audits {where}", params).fetchone()[0]
                rows = conn.execute(
                    f"SELECT * FROM audits {where} ORDER BY created_at DESC, id DESC "
                    "LIMIT ? OFFSET ?",
                    (*params, per_page, (page - 1) * per_page),
                ).fetchall()
            finally:
                conn.close()
        return [self._row_to_audit(r) for r in rows], total

    def all_audits(self) -> list[Audit]:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                rows = conn.execute("SELECT * FROM audits ORDER BY id").fetchall()
            finally:
                conn.close()
        return [self._row_to_audit(r) for r in rows]

    def update_audit(self, audit_id: int, **fields: Any) -> Audit:
        """Update audit columns; datetimes and enums are serialized."""
        if not fields:
            return self.get_audit(audit_id)

        values: list[Any] = []
        for value in fields.values():
            if isinstance(value, datetime):
                value = _iso(value)
            elif isinstance(value, AuditStatus):
                value = value.value
            values.append(value)
        assignments = ", ".join(f"{column} = ?" for column in fields)

        with self._conn_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    f"UPDATE audits SET {assignments} WHERE id = ?", (*values, audit_id)
                )
                conn.commit()
                updated = cursor.rowcount
            finally:
                conn.close()
        if updated == 0:
            raise AuditNotFoundError(f"Audit {audit_id} not found")
        return self.get_audit(audit_id)

    def delete_audit(self, audit_id: int) -> bool:
        """
        Delete an audit with its responses and actions.

        Returns True if the audit existed.
        """
        with self._conn_lock:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM responses WHERE audit_id = ?", (audit_id,))
                conn.execute("DELETE FROM actions WHERE audit_id = ?", (audit_id,))
                cursor = conn.execute("DELETE FROM audits WHERE id = ?", (audit_id,))
                conn.commit()
                return cursor.rowcount > 0
            finally:
                conn.close()

    # === Responses ===

    @staticmethod
    def _row_to_response(row: sqlite3.Row) -> Response:
        return Response(
            audit_id=row["audit_id"],
            question_key=row["question_key"],
            response_value=ResponseValue(row["response_value"]),
            comment=row["comment"],
            evidence_files=json.loads(row["evidence_files"]),
            updated_at=_dt(row["updated_at"]),
        )

    def get_responses(self, audit_id: int) -> list[Response]:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM responses WHERE audit_id = ? ORDER BY question_key",
                    (audit_id,),
                ).fetchall()
            finally:
                conn.close()
        return [self._row_to_response(r) for r in rows]

    def all_responses(self) -> list[Response]:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM responses ORDER BY audit_id, question_key"
                ).fetchall()
            finally:
                conn.close()
        return [self._row_to_response(r) for r in rows]

    def save_response(self, response: Response) -> SaveAck:
        """
        Upsert a response, last write wins by updated_at.

        An equal timestamp overwrites so that re-flushing the same draft is
        idempotent; an older one is acknowledged as superseded.
        """
        with self._conn_lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM responses WHERE audit_id = ? AND question_key = ?",
                    (response.audit_id, response.question_key),
                ).fetchone()

                if row is not None:
                    current = self._row_to_response(row)
                    if current.updated_at > response.updated_at:
                        return SaveAck(
                            audit_id=response.audit_id,
                            question_key=response.question_key,
                            status=SaveStatus.SUPERSEDED,
                            updated_at=current.updated_at,
                            response=current,
                        )

                conn.execute(
                    """
                    INSERT OR REPLACE INTO responses
                    (audit_id, question_key, response_value, comment, evidence_files, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        response.audit_id,
                        response.question_key,
                        response.response_value.value,
                        response.comment,
                        json.dumps(response.evidence_files),
                        _iso(response.updated_at),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

        return SaveAck(
            audit_id=response.audit_id,
            question_key=response.question_key,
            status=SaveStatus.SAVED,
            updated_at=response.updated_at,
            response=response,
        )

    # === Corrective actions ===

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> CorrectiveAction:
        return CorrectiveAction(
            id=row["id"],
            audit_id=row["audit_id"],
            question_key=row["question_key"],
            title=row["title"],
            owner=row["owner"],
            status=ActionStatus(row["status"]),
            due_date=_dt(row["due_date"]),
            created_at=_dt(row["created_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    def create_action(
        self,
        audit_id: int,
        question_key: str,
        title: str,
        owner: str | None = None,
        due_date: datetime | None = None,
        created_at: datetime | None = None,
    ) -> CorrectiveAction:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO actions (audit_id, question_key, title, owner, status,
                                         due_date, created_at)
                    VALUES (?, ?, ?, ?, 'open', ?, ?)
                    """,
                    (
                        audit_id,
                        question_key,
                        title,
                        owner,
                        _iso(due_date),
                        _iso(created_at or utcnow()),
                    ),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM actions WHERE id = ?", (cursor.lastrowid,)
                ).fetchone()
            finally:
                conn.close()
        return self._row_to_action(row)

    def get_action(self, action_id: int) -> CorrectiveAction | None:
        with self._conn_lock:
            conn = self._get_connection()
            try:
                row = conn.execute("SELECT * FROM actions WHERE id = ?", (action_id,)).fetchone()
            finally:
                conn.close()
        return self._row_to_action(row) if row is not None else None

    def update_action(
        self,
        action_id: int,
        status: ActionStatus,
        owner: str | None = None,
        due_date: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> CorrectiveAction | None:
        """Update status, optionally owner and due date. Returns None if not found."""
        with self._conn_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    UPDATE actions
                    SET status = ?,
                        owner = COALESCE(?, owner),
                        due_date = COALESCE(?, due_date),
                        completed_at = ?
                    WHERE id = ?
                    """,
                    (status.value, owner, _iso(due_date), _iso(completed_at), action_id),
                )
                conn.commit()
                row = conn.execute("SELECT * FROM actions WHERE id = ?", (action_id,)).fetchone()
            finally:
                conn.close()
        return self._row_to_action(row) if row is not None else None

    def list_actions(self, audit_id: int | None = None) -> list[CorrectiveAction]:
        query = "SELECT * FROM actions"
        params: tuple[Any, ...] = ()
        if audit_id is not None:
            query += " WHERE audit_id = ?"
            params = (audit_id,)
        with self._conn_lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(f"{query} ORDER BY id", params).fetchall()
            finally:
                conn.close()
        return [self._row_to_action(r) for r in rows]

    def checkpoint(self) -> None:
        """Fold the WAL back into the main database file."""
        with self._conn_lock:
            conn = self._get_connection()
            try:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            finally:
                conn.close()

    # === Health ===

    def check_connection(self) -> dict[str, Any]:
        """Check the database is reachable and report its integrity."""
        try:
            with self._conn_lock:
                conn = self._get_connection()
                try:
                    conn.execute("SELECT 1").fetchone()
                    integrity = conn.execute("PRAGMA integrity_check").fetchone()[0]
                    journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
                finally:
                    conn.close()
            return {
                "connected": True,
                "path": str(self.db_path),
                "integrity": integrity,
                "journal_mode": journal_mode,
                "error": None,
            }
        except sqlite3.Error as e:
            logger.warning(f"Audit database check failed: {e}")
            return {
                "connected": False,
                "path": str(self.db_path),
                "integrity": "unknown",
                "journal_mode": "unknown",
                "error": str(e),
            }

    def get_stats(self) -> dict[str, int]:
        """Row counts per table."""
        with self._conn_lock:
            conn = self._get_connection()
            try:
                return {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                    for table in ("audits", "responses", "actions")
                }
            finally:
                conn.close()
