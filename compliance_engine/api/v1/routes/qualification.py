"""Qualification profile endpoints."""

from fastapi import APIRouter, Depends

from compliance_engine.api.v1.deps import get_audit_service
from compliance_engine.schemas.catalog import QualificationProfile
from compliance_engine.services.audits import AuditService

router = APIRouter()


@router.get("/qualification", response_model=QualificationProfile | None)
async def get_qualification(
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> QualificationProfile | None:
    """Saved qualification, or null before the first save."""
    return service.get_qualification()


@router.put("/qualification", response_model=QualificationProfile)
async def save_qualification(
    profile: QualificationProfile,
    service: AuditService = Depends(get_audit_service),  # noqa: B008
) -> QualificationProfile:
    """Replace the qualification. Existing audits keep their frozen copy."""
    return service.save_qualification(profile)
