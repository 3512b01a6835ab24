"""Response, draft and save acknowledgement schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from compliance_engine.schemas.common import ResponseValue, as_utc


class Response(BaseModel):
    """A persisted answer, one per (audit_id, question_key)."""

    audit_id: int
    question_key: str
    response_value: ResponseValue
    comment: str = ""
    evidence_files: list[str] = Field(default_factory=list)
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)


class ResponseDraft(BaseModel):
    """In-memory / locally cached answer, possibly without a value yet."""

    question_key: str
    response_value: ResponseValue | None = None
    comment: str = ""
    evidence_files: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None

    @field_validator("updated_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @property
    def has_value(self) -> bool:
        return self.response_value is not None

    def same_content(self, other: ResponseDraft | Response) -> bool:
        """Compare the answer content, ignoring timestamps."""
        return (
            self.question_key == other.question_key
            and self.response_value == other.response_value
            and self.comment == other.comment
            and list(self.evidence_files) == list(other.evidence_files)
        )

    def to_response(self, audit_id: int, updated_at: datetime) -> Response:
        if self.response_value is None:
            raise ValueError("draft has no response value")
        return Response(
            audit_id=audit_id,
            question_key=self.question_key,
            response_value=self.response_value,
            comment=self.comment,
            evidence_files=list(self.evidence_files),
            updated_at=updated_at,
        )

    @classmethod
    def from_response(cls, response: Response) -> ResponseDraft:
        return cls(
            question_key=response.question_key,
            response_value=response.response_value,
            comment=response.comment,
            evidence_files=list(response.evidence_files),
            updated_at=response.updated_at,
        )


class SaveStatus(str, Enum):
    """Outcome of a remote save."""

    SAVED = "saved"
    SUPERSEDED = "superseded"  # A newer write already holds the key


class SaveAck(BaseModel):
    """Acknowledgement returned by the remote store for a save."""

    audit_id: int
    question_key: str
    status: SaveStatus
    updated_at: datetime
    response: Response


# === Request Models ===


class ResponseSaveRequest(BaseModel):
    """Request model for the save response endpoint."""

    response_value: ResponseValue | None = None
    comment: str = ""
    evidence_files: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None

    @field_validator("updated_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None
