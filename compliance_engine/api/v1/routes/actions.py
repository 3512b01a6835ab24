"""Corrective action endpoints."""

from fastapi import APIRouter, Depends

from compliance_engine.api.v1.deps import get_audit_service, to_http_exception
from compliance_engine.errors.exceptions import AuditError
from compliance_engine.schemas.analytics import (
    ActionCreateRequest,
    ActionUpdateRequest,
    CorrectiveAction,
)
from compliance_engine.services.audits import AuditService

router = APIRouter()


@router.post("/audits/{audit_id}/actions", response_model=CorrectiveAction)
async def create_action(
    audit_id: int,
    request: ActionCreateRequest,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> CorrectiveAction:
    """Open a corrective action against a question of the audit."""
    try:
        return service.create_action(audit_id, request)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.get("/audits/{audit_id}/actions", response_model=list[CorrectiveAction])
async def list_actions(
    audit_id: int,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> list[CorrectiveAction]:
    try:
        return service.list_actions(audit_id)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.patch("/actions/{action_id}", response_model=CorrectiveAction)
async def update_action(
    action_id: int,
    request: ActionUpdateRequest,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> CorrectiveAction:
    """Change an action's status; completing or verifying it stamps completed_at."""
    try:
        return service.update_action(action_id, request)
    except AuditError as e:
        raise to_http_exception(e) from e
