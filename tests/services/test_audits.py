"""Tests for the audit service."""

from __future__ import annotations

from datetime import timedelta

import pytest

from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.core.lifecycle import AuditEvent
from compliance_engine.errors.exceptions import (
    AuditNotFoundError,
    AuditStateError,
    ConfigurationError,
    ValidationError,
)
from compliance_engine.schemas.analytics import ActionCreateRequest, ActionUpdateRequest
from compliance_engine.schemas.audit import AuditCreateRequest
from compliance_engine.schemas.catalog import QualificationProfile
from compliance_engine.schemas.common import (
    ActionStatus,
    AuditStatus,
    EconomicRole,
    Market,
    ResponseValue,
    ScoreDimension,
    utcnow,
)
from compliance_engine.schemas.response import ResponseSaveRequest, SaveStatus
from compliance_engine.services.audits import AuditService, get_audit_service
from compliance_engine.services.repository import AuditRepository


@pytest.fixture
def service(repository: AuditRepository, catalog: QuestionCatalog) -> AuditService:
    return AuditService(repository, catalog)


@pytest.fixture
def audit_id(service: AuditService, manufacturer_profile: QualificationProfile) -> int:
    service.save_qualification(manufacturer_profile)
    audit, _ = service.create_audit(AuditCreateRequest(name="MDR gap", referential_ids=["mdr"]))
    return audit.id


class TestCreateAudit:
    """Test audit creation from the saved qualification."""

    def test_requires_qualification(self, service: AuditService):
        with pytest.raises(ConfigurationError):
            service.create_audit(AuditCreateRequest(name="x", referential_ids=["mdr"]))

    def test_requires_referential(
        self, service: AuditService, manufacturer_profile: QualificationProfile
    ):
        service.save_qualification(manufacturer_profile)
        with pytest.raises(ConfigurationError):
            service.create_audit(AuditCreateRequest(name="x", referential_ids=[]))

    def test_unknown_referential(
        self, service: AuditService, manufacturer_profile: QualificationProfile
    ):
        service.save_qualification(manufacturer_profile)
        with pytest.raises(ConfigurationError, match="nope"):
            service.create_audit(AuditCreateRequest(name="x", referential_ids=["nope"]))

    def test_freezes_qualification(self, service: AuditService, audit_id: int):
        service.save_qualification(QualificationProfile(economic_role=EconomicRole.DISTRIBUTOR))
        audit = service.get_audit(audit_id)
        assert audit.economic_role == EconomicRole.MANUFACTURER
        assert audit.market == Market.EU
        assert len(service.question_set(audit)) == 12

    def test_empty_question_set_still_creates(self, service: AuditService):
        service.save_qualification(QualificationProfile(economic_role=EconomicRole.DISTRIBUTOR))
        audit, question_set = service.create_audit(
            AuditCreateRequest(
                name="Vigilance", referential_ids=["fda_qmsr"], process_ids=["vigilance"]
            )
        )
        assert question_set.is_empty
        assert audit.status == AuditStatus.DRAFT

    def test_process_ids_default_to_profile(self, service: AuditService):
        service.save_qualification(
            QualificationProfile(
                economic_role=EconomicRole.MANUFACTURER,
                target_markets=(Market.US,),
                selected_processes=("design",),
            )
        )
        audit, question_set = service.create_audit(
            AuditCreateRequest(name="Design", referential_ids=["fda_qmsr"])
        )
        assert audit.process_ids == ["design"]
        assert audit.market == Market.US
        assert question_set.keys == ["fda.des.dhf"]


class TestSaveResponse:
    """Test remote-side response saves."""

    def test_first_response_starts_audit(self, service: AuditService, audit_id: int):
        ack = service.save_response(
            audit_id,
            "mdr.gov.qms",
            ResponseSaveRequest(response_value=ResponseValue.COMPLIANT),
        )
        assert ack.status == SaveStatus.SAVED
        audit = service.get_audit(audit_id)
        assert audit.status == AuditStatus.IN_PROGRESS
        assert audit.conformity_rate == 100
        assert audit.score == 100

    def test_value_required(self, service: AuditService, audit_id: int):
        with pytest.raises(ValidationError):
            service.save_response(audit_id, "mdr.gov.qms", ResponseSaveRequest(comment="only text"))

    def test_key_must_be_applicable(self, service: AuditService, audit_id: int):
        with pytest.raises(ValidationError):
            service.save_response(
                audit_id,
                "mdr.reg.importer_checks",
                ResponseSaveRequest(response_value=ResponseValue.COMPLIANT),
            )

    def test_missing_audit(self, service: AuditService):
        with pytest.raises(AuditNotFoundError):
            service.save_response(
                999, "mdr.gov.qms", ResponseSaveRequest(response_value=ResponseValue.COMPLIANT)
            )

    def test_completed_audit_is_read_only(self, service: AuditService, audit_id: int):
        request = ResponseSaveRequest(response_value=ResponseValue.COMPLIANT)
        service.save_response(audit_id, "mdr.gov.qms", request)
        service.apply_event(audit_id, AuditEvent.COMPLETE)
        with pytest.raises(AuditStateError):
            service.save_response(audit_id, "mdr.gov.prrc", request)

        service.apply_event(audit_id, AuditEvent.REOPEN)
        assert service.save_response(audit_id, "mdr.gov.prrc", request).status == SaveStatus.SAVED

    def test_stale_write_superseded(self, service: AuditService, audit_id: int):
        now = utcnow()
        service.save_response(
            audit_id,
            "mdr.gov.qms",
            ResponseSaveRequest(response_value=ResponseValue.COMPLIANT, updated_at=now),
        )
        ack = service.save_response(
            audit_id,
            "mdr.gov.qms",
            ResponseSaveRequest(
                response_value=ResponseValue.NON_COMPLIANT, updated_at=now - timedelta(seconds=5)
            ),
        )
        assert ack.status == SaveStatus.SUPERSEDED
        assert ack.response.response_value == ResponseValue.COMPLIANT


class TestLifecycle:
    def test_timestamps(self, service: AuditService, audit_id: int):
        service.save_response(
            audit_id, "mdr.gov.qms", ResponseSaveRequest(response_value=ResponseValue.COMPLIANT)
        )
        completed = service.apply_event(audit_id, AuditEvent.COMPLETE)
        assert completed.completed_at is not None
        closed = service.apply_event(audit_id, AuditEvent.CLOSE)
        assert closed.status == AuditStatus.CLOSED
        assert closed.closed_at is not None

    def test_cannot_complete_draft(self, service: AuditService, audit_id: int):
        with pytest.raises(AuditStateError):
            service.apply_event(audit_id, AuditEvent.COMPLETE)

    def test_delete(self, service: AuditService, audit_id: int):
        service.delete_audit(audit_id)
        with pytest.raises(AuditNotFoundError):
            service.delete_audit(audit_id)


class TestScoring:
    def test_score_and_breakdown(self, service: AuditService, audit_id: int):
        for key, value in (
            ("mdr.gov.qms", ResponseValue.NON_COMPLIANT),
            ("mdr.gov.prrc", ResponseValue.COMPLIANT),
            ("mdr.des.gspr", ResponseValue.PARTIAL),
        ):
            service.save_response(audit_id, key, ResponseSaveRequest(response_value=value))

        summary = service.score(audit_id)
        assert summary.total == 12
        assert summary.answered == 3
        assert summary.conformity_rate == 33
        assert summary.completion_rate == 25

        by_process = service.score_breakdown(audit_id, ScoreDimension.PROCESS)
        assert by_process["governance"].answered == 2
        assert by_process["vigilance"].answered == 0

        risks = service.top_risks(audit_id, limit=5)
        assert [r.question_key for r in risks] == ["mdr.gov.qms", "mdr.des.gspr"]


class TestActions:
    def test_action_lifecycle(self, service: AuditService, audit_id: int):
        action = service.create_action(
            audit_id, ActionCreateRequest(question_key="mdr.gov.qms", title="Write QMS manual")
        )
        done = service.update_action(action.id, ActionUpdateRequest(status=ActionStatus.COMPLETED))
        assert done.completed_at is not None

        reopened = service.update_action(
            action.id, ActionUpdateRequest(status=ActionStatus.IN_PROGRESS)
        )
        assert reopened.completed_at is None
        assert [a.id for a in service.list_actions(audit_id)] == [action.id]

    def test_action_key_must_be_applicable(self, service: AuditService, audit_id: int):
        with pytest.raises(ValidationError):
            service.create_action(
                audit_id, ActionCreateRequest(question_key="iso.pms.capa", title="CAPA")
            )

    def test_update_missing_action(self, service: AuditService):
        with pytest.raises(AuditNotFoundError):
            service.update_action(7, ActionUpdateRequest(status=ActionStatus.OPEN))


def test_service_singleton():
    assert get_audit_service() is get_audit_service()
