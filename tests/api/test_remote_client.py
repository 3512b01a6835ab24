"""End-to-end tests: remote client, response store and autosave against the API app."""

from __future__ import annotations

import httpx
import pytest

from compliance_engine.core.lifecycle import AuditEvent
from compliance_engine.errors.exceptions import AuditStateError, ValidationError
from compliance_engine.main import app
from compliance_engine.schemas.analytics import Filter
from compliance_engine.schemas.audit import AuditCreateRequest
from compliance_engine.schemas.catalog import QualificationProfile, QuestionSet
from compliance_engine.schemas.common import AuditStatus, DrilldownType, ResponseValue
from compliance_engine.schemas.response import ResponseDraft, SaveStatus
from compliance_engine.services.autosave import AutosaveController, QuestionState
from compliance_engine.services.draft_cache import LocalDraftCache
from compliance_engine.services.remote import RemoteAuditClient
from compliance_engine.services.response_store import ResponseStore


def _client() -> RemoteAuditClient:
    return RemoteAuditClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app))


async def _new_audit(client: RemoteAuditClient, profile: QualificationProfile) -> int:
    await client.save_qualification(profile)
    created = await client.create_audit(
        AuditCreateRequest(name="Remote session", referential_ids=["mdr"])
    )
    return created.audit_id


class TestRemoteClient:
    @pytest.mark.asyncio
    async def test_qualification_and_questions(self, manufacturer_profile: QualificationProfile):
        async with _client() as client:
            assert await client.get_qualification() is None
            audit_id = await _new_audit(client, manufacturer_profile)
            questions = await client.list_questions(audit_id)
        assert len(questions.questions) == 12
        assert questions.empty is False

    @pytest.mark.asyncio
    async def test_save_and_read_back(self, manufacturer_profile: QualificationProfile):
        async with _client() as client:
            audit_id = await _new_audit(client, manufacturer_profile)
            draft = ResponseDraft(
                question_key="mdr.gov.qms",
                response_value=ResponseValue.PARTIAL,
                comment="manual drafted",
            )
            ack = await client.save_response(audit_id, "mdr.gov.qms", draft)
            responses = await client.get_responses(audit_id)
        assert ack.status == SaveStatus.SAVED
        assert [r.comment for r in responses] == ["manual drafted"]

    @pytest.mark.asyncio
    async def test_domain_errors_mapped(self, manufacturer_profile: QualificationProfile):
        async with _client() as client:
            audit_id = await _new_audit(client, manufacturer_profile)
            with pytest.raises(ValidationError):
                await client.save_response(
                    audit_id, "mdr.gov.qms", ResponseDraft(question_key="mdr.gov.qms")
                )

    @pytest.mark.asyncio
    async def test_analytics(self, manufacturer_profile: QualificationProfile):
        async with _client() as client:
            audit_id = await _new_audit(client, manufacturer_profile)
            await client.save_response(
                audit_id,
                "mdr.gov.qms",
                ResponseDraft(question_key="mdr.gov.qms", response_value=ResponseValue.NON_COMPLIANT),
            )
            summary = await client.get_summary(Filter())
            page = await client.get_drilldown(DrilldownType.FINDINGS)
            site_scores = await client.get_site_scores()
        assert summary.total_findings == 1
        assert page.items[0]["question_key"] == "mdr.gov.qms"
        assert site_scores.sites["unassigned"].answered == 1


class TestAutosaveSession:
    """Test a full answering session against the API."""

    @pytest.mark.asyncio
    async def test_session(
        self, manufacturer_profile: QualificationProfile, draft_cache: LocalDraftCache
    ):
        async with _client() as client:
            audit_id = await _new_audit(client, manufacturer_profile)
            question_set_response = await client.list_questions(audit_id)
            store = ResponseStore(client, draft_cache)

            question_set = QuestionSet(questions=tuple(question_set_response.questions))
            controller = AutosaveController(
                store, audit_id, question_set, debounce_seconds=60, retry_interval=60
            )
            await controller.start()

            first = controller.current_key
            assert first == "mdr.gov.prrc"
            await controller.set_value(first, ResponseValue.COMPLIANT)
            controller.set_comment(first, "PRRC appointed 2024")
            await controller.next()
            await controller.close()

            responses = {r.question_key: r for r in await client.get_responses(audit_id)}
        assert responses[first].comment == "PRRC appointed 2024"
        assert controller.state(first) == QuestionState.SAVED
        assert store.pending(audit_id) == {}

    @pytest.mark.asyncio
    async def test_locked_audit_rejects_autosave(
        self, manufacturer_profile: QualificationProfile, draft_cache: LocalDraftCache
    ):
        async with _client() as client:
            audit_id = await _new_audit(client, manufacturer_profile)
            store = ResponseStore(client, draft_cache)
            await store.put(
                audit_id,
                "mdr.gov.qms",
                ResponseDraft(question_key="mdr.gov.qms", response_value=ResponseValue.COMPLIANT),
            )
            audit = await client.apply_event(audit_id, AuditEvent.COMPLETE)
            assert audit.status == AuditStatus.COMPLETED

            with pytest.raises(AuditStateError):
                await store.put(
                    audit_id,
                    "mdr.gov.prrc",
                    ResponseDraft(question_key="mdr.gov.prrc", response_value=ResponseValue.PARTIAL),
                )
            # The rejected answer stays local
            assert "mdr.gov.prrc" in store.pending(audit_id)
