"""Audit-related API schemas."""

from pydantic import BaseModel, Field

from compliance_engine.schemas.catalog import Audit, Process, Question, Referential
from compliance_engine.schemas.common import AuditStatus, Market

NO_APPLICABLE_QUESTIONS = (
    "No applicable questions for this configuration. "
    "Change the referentials, processes or economic role and create the audit again."
)


# === Request Models ===


class AuditCreateRequest(BaseModel):
    """Request model for audit creation."""

    name: str
    audit_type: str = "internal"
    referential_ids: list[str]
    process_ids: list[str] = Field(default_factory=list)
    market: Market | None = None
    site_id: str | None = None
    organization_id: str | None = None


# === Response Models ===


class AuditCreateResponse(BaseModel):
    audit_id: int
    status: AuditStatus
    question_count: int
    message: str


class QuestionSetResponse(BaseModel):
    """Resolved questions for an audit; an empty list is a valid state."""

    audit_id: int
    questions: list[Question]
    empty: bool
    message: str | None = None


class PaginatedAudits(BaseModel):
    items: list[Audit]
    total: int
    page: int
    per_page: int
    has_next: bool


class CatalogResponse(BaseModel):
    referentials: list[Referential]
    processes: list[Process]
    question_count: int
