"""Audit, question set, response and scoring endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from compliance_engine.api.v1.deps import get_audit_service, get_settings, to_http_exception
from compliance_engine.config.settings import Config
from compliance_engine.core.lifecycle import AuditEvent
from compliance_engine.errors.exceptions import AuditError
from compliance_engine.schemas.audit import (
    NO_APPLICABLE_QUESTIONS,
    AuditCreateRequest,
    AuditCreateResponse,
    PaginatedAudits,
    QuestionSetResponse,
)
from compliance_engine.schemas.catalog import Audit
from compliance_engine.schemas.common import AuditStatus, ScoreDimension
from compliance_engine.schemas.response import Response, ResponseSaveRequest, SaveAck
from compliance_engine.schemas.scoring import ScoreSummary, TopRisk
from compliance_engine.services.audits import AuditService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/audits", response_model=AuditCreateResponse)
async def create_audit(
    request: AuditCreateRequest,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> AuditCreateResponse:
    """
    Create an audit from the saved qualification.

    The qualification is frozen into the audit. An audit with no applicable
    question is still created and reported with an explanatory message.
    """
    try:
        audit, question_set = service.create_audit(request)
    except AuditError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Error creating audit: {e}")
        raise HTTPException(status_code=500, detail=f"Unexpected error: {str(e)}") from e

    if question_set.is_empty:
        message = NO_APPLICABLE_QUESTIONS
    else:
        message = f"Audit created with {len(question_set)} applicable questions."
    return AuditCreateResponse(
        audit_id=audit.id,
        status=audit.status,
        question_count=len(question_set),
        message=message,
    )


@router.get("/audits", response_model=PaginatedAudits)
async def list_audits(
    status: AuditStatus | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> PaginatedAudits:
    """List audits, newest first, optionally filtered by status."""
    items, total = service.list_audits(status, page, per_page)
    return PaginatedAudits(
        items=items,
        total=total,
        page=page,
        per_page=per_page,
        has_next=page * per_page < total,
    )


@router.get("/audits/{audit_id}", response_model=Audit)
async def get_audit(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> Audit:
    try:
        return service.get_audit(audit_id)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.delete("/audits/{audit_id}")
async def delete_audit(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> dict[str, Any]:
    """Delete an audit with its responses and corrective actions."""
    try:
        service.delete_audit(audit_id)
    except AuditError as e:
        raise to_http_exception(e) from e
    return {"audit_id": audit_id, "deleted": True}


@router.get("/audits/{audit_id}/questions", response_model=QuestionSetResponse)
async def list_questions(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> QuestionSetResponse:
    """Questions applicable to the audit, in answering order."""
    try:
        audit = service.get_audit(audit_id)
        question_set = service.question_set(audit)
    except AuditError as e:
        raise to_http_exception(e) from e

    return QuestionSetResponse(
        audit_id=audit_id,
        questions=list(question_set.questions),
        empty=question_set.is_empty,
        message=NO_APPLICABLE_QUESTIONS if question_set.is_empty else None,
    )


@router.get("/audits/{audit_id}/responses", response_model=list[Response])
async def get_responses(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> list[Response]:
    try:
        return service.get_responses(audit_id)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.put("/audits/{audit_id}/responses/{question_key}", response_model=SaveAck)
async def save_response(
    audit_id: int,
    question_key: str,
    request: ResponseSaveRequest,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> SaveAck:
    """
    Save one answer, last write wins by updated_at.

    Returns status "superseded" with the stored row when a newer write
    already holds the question.
    """
    try:
        return service.save_response(audit_id, question_key, request)
    except AuditError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Error saving response {audit_id}/{question_key}: {e}")
        raise HTTPException(status_code=500, detail=f"Unexpected error: {str(e)}") from e


async def _apply_event(service: AuditService, audit_id: int, event: AuditEvent) -> Audit:
    try:
        return service.apply_event(audit_id, event)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.post("/audits/{audit_id}/complete", response_model=Audit)
async def complete_audit(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> Audit:
    return await _apply_event(service, audit_id, AuditEvent.COMPLETE)


@router.post("/audits/{audit_id}/close", response_model=Audit)
async def close_audit(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> Audit:
    return await _apply_event(service, audit_id, AuditEvent.CLOSE)


@router.post("/audits/{audit_id}/reopen", response_model=Audit)
async def reopen_audit(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> Audit:
    return await _apply_event(service, audit_id, AuditEvent.REOPEN)


@router.get("/audits/{audit_id}/score")
async def get_score(
    audit_id: int,
    dimension: ScoreDimension | None = None,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> ScoreSummary | dict[str, ScoreSummary]:
    """Score the audit, or break it down by process, criticality or referential."""
    try:
        if dimension is None:
            return service.score(audit_id)
        return service.score_breakdown(audit_id, dimension)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.get("/audits/{audit_id}/top-risks", response_model=list[TopRisk])
async def get_top_risks(
    audit_id: int,
    limit: int | None = Query(None, ge=1, le=50),
    service: AuditService = Depends(get_audit_service),  # noqa: B008
    settings: Config = Depends(get_settings),  # noqa: B008
) -> list[TopRisk]:
    try:
        return service.top_risks(audit_id, limit or settings.top_risks_limit)
    except AuditError as e:
        raise to_http_exception(e) from e
