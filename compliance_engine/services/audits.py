"""Audit service: creation, response saves, lifecycle and corrective actions."""

from __future__ import annotations

import logging
import threading

from compliance_engine.config.settings import get_config
from compliance_engine.core import scoring
from compliance_engine.core.catalog import QuestionCatalog, get_catalog
from compliance_engine.core.lifecycle import AuditEvent, accepts_responses, transition
from compliance_engine.core.resolver import resolve
from compliance_engine.errors.exceptions import (
    AuditNotFoundError,
    AuditStateError,
    ConfigurationError,
    ValidationError,
)
from compliance_engine.schemas.analytics import (
    ActionCreateRequest,
    ActionUpdateRequest,
    CorrectiveAction,
)
from compliance_engine.schemas.audit import AuditCreateRequest
from compliance_engine.schemas.catalog import Audit, QualificationProfile, QuestionSet
from compliance_engine.schemas.common import AuditStatus, Market, ScoreDimension, utcnow
from compliance_engine.schemas.response import Response, ResponseSaveRequest, SaveAck, SaveStatus
from compliance_engine.schemas.scoring import ScoreSummary, TopRisk
from compliance_engine.services.repository import DEFAULT_USER, AuditRepository

logger = logging.getLogger(__name__)


class AuditService:
    """Remote-side operations over the repository and the question catalog."""

    def __init__(self, repository: AuditRepository, catalog: QuestionCatalog):
        self.repository = repository
        self.catalog = catalog
        # Serializes read-modify-write of audit status and cached score
        self._write_lock = threading.Lock()

    # === Qualification ===

    def get_qualification(self, user_id: str = DEFAULT_USER) -> QualificationProfile | None:
        return self.repository.get_qualification(user_id)

    def save_qualification(
        self, profile: QualificationProfile, user_id: str = DEFAULT_USER
    ) -> QualificationProfile:
        saved = self.repository.save_qualification(profile, user_id)
        logger.info(f"Saved qualification for {user_id}: role={profile.economic_role.value}")
        return saved

    # === Audits ===

    def create_audit(
        self, request: AuditCreateRequest, user_id: str = DEFAULT_USER
    ) -> tuple[Audit, QuestionSet]:
        """
        Create a draft audit, freezing the current qualification into it.

        Raises:
            ConfigurationError: If there is no qualification or no referential
        """
        profile = self.repository.get_qualification(user_id)
        if profile is None:
            raise ConfigurationError(
                "No qualification profile saved. Complete the qualification before creating an audit."
            )
        if not request.referential_ids:
            raise ConfigurationError(
                "An audit needs at least one referential. Select a referential and try again."
            )
        unknown = [r for r in request.referential_ids if r not in self.catalog.referential_ids]
        if unknown:
            raise ConfigurationError(f"Unknown referential(s): {', '.join(unknown)}")

        process_ids = list(request.process_ids or profile.selected_processes)
        market = request.market
        if market is None:
            market = profile.target_markets[0] if profile.target_markets else Market.EU

        audit = self.repository.create_audit(
            name=request.name,
            audit_type=request.audit_type,
            referential_ids=list(request.referential_ids),
            economic_role=profile.economic_role,
            process_ids=process_ids,
            market=market,
            site_id=request.site_id,
            organization_id=request.organization_id,
        )
        question_set = self.question_set(audit)
        logger.info(
            f"Created audit {audit.id} ({audit.economic_role.value}, "
            f"{len(question_set)} applicable questions)"
        )
        return audit, question_set

    def get_audit(self, audit_id: int) -> Audit:
        return self.repository.get_audit(audit_id)

    def question_set(self, audit: Audit) -> QuestionSet:
        """Resolve questions from the audit's own frozen snapshot."""
        return resolve(self.catalog, audit.profile_snapshot(), audit.config_snapshot())

    def list_audits(
        self, status: AuditStatus | None = None, page: int = 1, per_page: int = 10
    ) -> tuple[list[Audit], int]:
        return self.repository.list_audits(status, page, per_page)

    def delete_audit(self, audit_id: int) -> None:
        if not self.repository.delete_audit(audit_id):
            raise AuditNotFoundError(f"Audit {audit_id} not found")
        logger.info(f"Deleted audit {audit_id}")

    def apply_event(self, audit_id: int, event: AuditEvent) -> Audit:
        """Move an audit through its lifecycle and stamp the matching timestamps."""
        with self._write_lock:
            audit = self.repository.get_audit(audit_id)
            status = transition(audit.status, event)
            now = utcnow()
            fields: dict = {"status": status, "updated_at": now}
            if status == AuditStatus.COMPLETED:
                fields["completed_at"] = now
            elif status == AuditStatus.CLOSED:
                fields["closed_at"] = now
            updated = self.repository.update_audit(audit_id, **fields)
        logger.info(f"Audit {audit_id}: {audit.status.value} -> {status.value}")
        return updated

    # === Responses ===

    def get_responses(self, audit_id: int) -> list[Response]:
        self.repository.get_audit(audit_id)
        return self.repository.get_responses(audit_id)

    def save_response(
        self, audit_id: int, question_key: str, request: ResponseSaveRequest
    ) -> SaveAck:
        """
        Persist one answer.

        Raises:
            ValidationError: If the value is missing or the key is not in the audit
            AuditStateError: If the audit is completed or closed
            AuditNotFoundError: If the audit does not exist
        """
        if request.response_value is None:
            raise ValidationError("A response needs a compliance value before it can be saved.")

        with self._write_lock:
            audit = self.repository.get_audit(audit_id)
            if not accepts_responses(audit.status):
                raise AuditStateError(
                    f"Audit {audit_id} is {audit.status.value}; reopen it to edit responses."
                )

            question_set = self.question_set(audit)
            if question_set.get(question_key) is None:
                raise ValidationError(
                    f"Question '{question_key}' is not applicable to audit {audit_id}"
                )

            response = Response(
                audit_id=audit_id,
                question_key=question_key,
                response_value=request.response_value,
                comment=request.comment,
                evidence_files=list(request.evidence_files),
                updated_at=request.updated_at or utcnow(),
            )
            ack = self.repository.save_response(response)
            if ack.status == SaveStatus.SAVED:
                self._refresh_audit(audit, question_set)

        return ack

    def _refresh_audit(self, audit: Audit, question_set: QuestionSet) -> Audit:
        responses = self.repository.get_responses(audit.id)
        summary = scoring.score(responses, question_set)
        fields: dict = {
            "updated_at": utcnow(),
            "score": scoring.weighted_score(responses),
            "conformity_rate": summary.conformity_rate,
        }
        if audit.status == AuditStatus.DRAFT:
            fields["status"] = transition(audit.status, AuditEvent.FIRST_RESPONSE)
            logger.info(f"Audit {audit.id} started with its first response")
        return self.repository.update_audit(audit.id, **fields)

    def score(self, audit_id: int) -> ScoreSummary:
        """Score an audit on demand and refresh its cached values."""
        with self._write_lock:
            audit = self.repository.get_audit(audit_id)
            question_set = self.question_set(audit)
            responses = self.repository.get_responses(audit_id)
            summary = scoring.score(responses, question_set)
            self.repository.update_audit(
                audit_id,
                score=scoring.weighted_score(responses),
                conformity_rate=summary.conformity_rate,
            )
        return summary

    def score_breakdown(
        self, audit_id: int, dimension: ScoreDimension
    ) -> dict[str, ScoreSummary]:
        audit = self.repository.get_audit(audit_id)
        return scoring.score(
            self.repository.get_responses(audit_id), self.question_set(audit), dimension
        )

    def top_risks(self, audit_id: int, limit: int) -> list[TopRisk]:
        audit = self.repository.get_audit(audit_id)
        return scoring.top_risks(
            self.repository.get_responses(audit_id), self.question_set(audit), limit
        )

    # === Corrective actions ===

    def create_action(self, audit_id: int, request: ActionCreateRequest) -> CorrectiveAction:
        audit = self.repository.get_audit(audit_id)
        if self.question_set(audit).get(request.question_key) is None:
            raise ValidationError(
                f"Question '{request.question_key}' is not applicable to audit {audit_id}"
            )
        action = self.repository.create_action(
            audit_id=audit_id,
            question_key=request.question_key,
            title=request.title,
            owner=request.owner,
            due_date=request.due_date,
        )
        logger.info(f"Created action {action.id} on audit {audit_id}/{request.question_key}")
        return action

    def update_action(self, action_id: int, request: ActionUpdateRequest) -> CorrectiveAction:
        current = self.repository.get_action(action_id)
        if current is None:
            raise AuditNotFoundError(f"Action {action_id} not found")

        completed_at = current.completed_at
        if request.status.is_done:
            completed_at = completed_at or utcnow()
        else:
            completed_at = None

        updated = self.repository.update_action(
            action_id,
            status=request.status,
            owner=request.owner,
            due_date=request.due_date,
            completed_at=completed_at,
        )
        if updated is None:
            raise AuditNotFoundError(f"Action {action_id} not found")
        return updated

    def list_actions(self, audit_id: int) -> list[CorrectiveAction]:
        self.repository.get_audit(audit_id)
        return self.repository.list_actions(audit_id)


# Singleton service instance (lazy loaded)
_service: AuditService | None = None
_service_lock = threading.Lock()


def get_audit_service() -> AuditService:
    """Get the audit service singleton, wired to the configured database and catalog."""
    global _service
    with _service_lock:
        if _service is None:
            repository = AuditRepository.get_instance(get_config().audit_db_path)
            _service = AuditService(repository, get_catalog())
        return _service


def reset_audit_service() -> None:
    """Reset the service singleton (useful for testing)."""
    global _service
    with _service_lock:
        _service = None
