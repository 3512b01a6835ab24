"""Tests for the local draft cache."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from compliance_engine.schemas.common import ResponseValue
from compliance_engine.schemas.response import Response, ResponseDraft
from compliance_engine.services.draft_cache import LocalDraftCache, cache_key

T0 = datetime(2025, 2, 1, tzinfo=UTC)


def _draft(key: str = "mdr.gov.qms", comment: str = "") -> ResponseDraft:
    return ResponseDraft(
        question_key=key,
        response_value=ResponseValue.PARTIAL,
        comment=comment,
        updated_at=T0,
    )


def _ack(key: str = "mdr.gov.qms", comment: str = "") -> Response:
    return Response(
        audit_id=1,
        question_key=key,
        response_value=ResponseValue.PARTIAL,
        comment=comment,
        updated_at=T0,
    )


class TestDraftCache:
    """Test draft persistence and reconciliation."""

    def test_cache_key(self):
        assert cache_key(12) == "audit:12:responses"

    def test_put_and_load(self, draft_cache: LocalDraftCache):
        draft_cache.put(1, _draft())
        loaded = draft_cache.load(1)
        assert list(loaded) == ["mdr.gov.qms"]
        assert loaded["mdr.gov.qms"] == _draft()
        assert draft_cache.load(2) == {}

    def test_survives_restart(self, tmp_path: Path):
        LocalDraftCache(tmp_path / "drafts.db").put(1, _draft(comment="before crash"))
        restarted = LocalDraftCache(tmp_path / "drafts.db")
        draft = restarted.get(1, "mdr.gov.qms")
        assert draft is not None
        assert draft.comment == "before crash"

    def test_reconcile_same_content(self, draft_cache: LocalDraftCache):
        draft_cache.put(1, _draft(comment="v1"))
        assert draft_cache.reconcile(1, _ack(comment="v1")) is True
        assert draft_cache.load(1) == {}

    def test_reconcile_keeps_newer_edit(self, draft_cache: LocalDraftCache):
        draft_cache.put(1, _draft(comment="edited after send"))
        assert draft_cache.reconcile(1, _ack(comment="v1")) is False
        assert "mdr.gov.qms" in draft_cache.load(1)

    def test_reconcile_without_draft(self, draft_cache: LocalDraftCache):
        assert draft_cache.reconcile(1, _ack()) is False

    def test_remove_and_clear(self, draft_cache: LocalDraftCache):
        draft_cache.put(1, _draft("a"))
        draft_cache.put(1, _draft("b"))
        assert draft_cache.remove(1, "a") is True
        assert draft_cache.remove(1, "a") is False
        draft_cache.clear(1)
        assert draft_cache.load(1) == {}

    def test_stats(self, draft_cache: LocalDraftCache):
        draft_cache.put(1, _draft())
        draft_cache.load(1)
        stats = draft_cache.get_stats()
        assert stats["degraded"] is False
        assert stats["audits_with_drafts"] == 1
        assert stats["metrics"]["stores"] == 1
        assert stats["metrics"]["hits"] == 1

    def test_singleton_instance(self, tmp_path: Path):
        first = LocalDraftCache.get_instance(tmp_path / "drafts.db")
        assert LocalDraftCache.get_instance() is first


class TestDegradation:
    """Test the in-memory fallback when local storage is unusable."""

    def test_memory_only(self):
        cache = LocalDraftCache(None)
        assert cache.degraded is True
        cache.put(1, _draft())
        assert "mdr.gov.qms" in cache.load(1)
        assert cache.check_connection()["connected"] is False

    def test_unwritable_path_degrades(self, tmp_path: Path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("plain file")
        cache = LocalDraftCache(blocker / "drafts.db")
        assert cache.degraded is True
        cache.put(1, _draft(comment="kept in memory"))
        assert cache.get(1, "mdr.gov.qms").comment == "kept in memory"
        assert cache.get_stats()["metrics"]["failures"] == 1

    def test_corrupted_file_is_recreated(self, tmp_path: Path):
        path = tmp_path / "drafts.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        cache = LocalDraftCache(path)
        assert cache.degraded is False
        cache.put(1, _draft())
        assert cache.check_connection()["connected"] is True
