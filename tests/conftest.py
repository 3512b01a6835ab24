"""Pytest fixtures for compliance engine tests."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from pathlib import Path

import pytest

from compliance_engine.config.settings import reset_config
from compliance_engine.core.catalog import QuestionCatalog, load_catalog, set_catalog
from compliance_engine.errors.exceptions import RemotePersistenceError
from compliance_engine.schemas.catalog import QualificationProfile
from compliance_engine.schemas.common import EconomicRole, Market
from compliance_engine.schemas.response import Response, ResponseDraft, SaveAck, SaveStatus
from compliance_engine.services.audits import reset_audit_service
from compliance_engine.services.circuit_breaker import CircuitBreakerRegistry
from compliance_engine.services.draft_cache import LocalDraftCache
from compliance_engine.services.repository import AuditRepository


def _reset_all() -> None:
    AuditRepository.reset_instance()
    LocalDraftCache.reset_instance()
    CircuitBreakerRegistry.reset_instance()
    reset_audit_service()
    set_catalog(None)
    reset_config()


@pytest.fixture(autouse=True, scope="function")
def reset_singletons(tmp_path: Path) -> Generator[None]:
    """Reset all singleton instances for each test."""
    # Per-test databases and fast timings
    os.environ["AUDIT_DB_PATH"] = str(tmp_path / "audits.db")
    os.environ["DRAFT_CACHE_PATH"] = str(tmp_path / "drafts.db")
    os.environ["REMOTE_RETRY_ATTEMPTS"] = "1"
    os.environ["REMOTE_RETRY_WAIT_MIN"] = "0"
    os.environ["REMOTE_RETRY_WAIT_MAX"] = "0"
    os.environ["REMOTE_WRITE_TIMEOUT"] = "0.5"
    os.environ["AUTOSAVE_DEBOUNCE_SECONDS"] = "0.05"
    os.environ["RETRY_INTERVAL_SECONDS"] = "0.05"

    _reset_all()

    yield

    _reset_all()


@pytest.fixture
def catalog() -> QuestionCatalog:
    """The packaged question catalog."""
    return load_catalog()


@pytest.fixture
def manufacturer_profile() -> QualificationProfile:
    return QualificationProfile(
        economic_role=EconomicRole.MANUFACTURER,
        target_markets=(Market.EU,),
        target_standards=("mdr",),
    )


@pytest.fixture
def repository(tmp_path: Path) -> AuditRepository:
    return AuditRepository.get_instance(tmp_path / "audits.db")


@pytest.fixture
def draft_cache(tmp_path: Path) -> LocalDraftCache:
    return LocalDraftCache(tmp_path / "drafts.db")


class FakeRemote:
    """
    In-memory stand-in for RemoteAuditClient.

    Applies last-write-wins by updated_at like the real server. Set ``fail``
    to make every call raise, or ``delay`` to hold saves before answering.
    """

    def __init__(self) -> None:
        self.rows: dict[tuple[int, str], Response] = {}
        self.fail = False
        self.delay = 0.0
        self.save_calls = 0

    async def get_responses(self, audit_id: int) -> list[Response]:
        if self.fail:
            raise RemotePersistenceError("remote store unreachable")
        return [r for (aid, _), r in self.rows.items() if aid == audit_id]

    async def save_response(
        self, audit_id: int, question_key: str, draft: ResponseDraft
    ) -> SaveAck:
        self.save_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RemotePersistenceError("remote store unreachable")

        assert draft.updated_at is not None
        current = self.rows.get((audit_id, question_key))
        if current is not None and current.updated_at > draft.updated_at:
            return SaveAck(
                audit_id=audit_id,
                question_key=question_key,
                status=SaveStatus.SUPERSEDED,
                updated_at=current.updated_at,
                response=current,
            )
        response = draft.to_response(audit_id, draft.updated_at)
        self.rows[(audit_id, question_key)] = response
        return SaveAck(
            audit_id=audit_id,
            question_key=question_key,
            status=SaveStatus.SAVED,
            updated_at=response.updated_at,
            response=response,
        )


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()
