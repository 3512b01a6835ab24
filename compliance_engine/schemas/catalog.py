"""Question catalog, qualification and audit schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from compliance_engine.schemas.common import (
    AuditStatus,
    Criticality,
    EconomicRole,
    Market,
)

APPLICABLE_TO_ALL = "ALL"


# === Catalog Models ===


class Referential(BaseModel):
    """A regulatory framework grouping questions (MDR, ISO 13485, FDA QMSR...)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    market: Market
    display_order: int = 0


class Process(BaseModel):
    """A business process questions are attached to."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    display_order: int = 0


class Question(BaseModel):
    """A published catalog question. Immutable."""

    model_config = ConfigDict(frozen=True)

    key: str
    referential_id: str
    process_id: str
    criticality: Criticality
    applicability: Literal["ALL"] | tuple[EconomicRole, ...] = APPLICABLE_TO_ALL
    title: str = ""
    text: str = ""
    article: str | None = None
    risk: str | None = None
    expected_evidence: str | None = None
    sequence: int = 0

    def applies_to(self, role: EconomicRole) -> bool:
        """Check the applicability rule against an economic role."""
        if self.applicability == APPLICABLE_TO_ALL:
            return True
        return role in self.applicability


class QuestionSet(BaseModel):
    """Ordered questions resolved for one audit."""

    model_config = ConfigDict(frozen=True)

    questions: tuple[Question, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.questions

    @property
    def keys(self) -> list[str]:
        return [q.key for q in self.questions]

    def __len__(self) -> int:
        return len(self.questions)

    def get(self, key: str) -> Question | None:
        for question in self.questions:
            if question.key == key:
                return question
        return None

    def index_of(self, key: str) -> int | None:
        """Navigation index of a question key, None if not in the set."""
        for index, question in enumerate(self.questions):
            if question.key == key:
                return index
        return None


# === Qualification & Audit Models ===


class QualificationProfile(BaseModel):
    """User-level descriptor that parameterizes applicability."""

    model_config = ConfigDict(frozen=True)

    economic_role: EconomicRole
    target_markets: tuple[Market, ...] = ()
    target_standards: tuple[str, ...] = ()
    selected_processes: tuple[str, ...] = ()


class AuditConfig(BaseModel):
    """Audit-level constraints fed to the resolver."""

    model_config = ConfigDict(frozen=True)

    referential_ids: tuple[str, ...]
    process_filter: tuple[str, ...] = ()


class Audit(BaseModel):
    """An audit with its frozen qualification snapshot."""

    id: int
    name: str
    audit_type: str = "internal"
    referential_ids: list[str]
    economic_role: EconomicRole
    process_ids: list[str] = Field(default_factory=list)
    market: Market = Market.EU
    site_id: str | None = None
    organization_id: str | None = None
    status: AuditStatus = AuditStatus.DRAFT
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    closed_at: datetime | None = None
    score: int | None = None
    conformity_rate: int | None = None

    def profile_snapshot(self) -> QualificationProfile:
        """The qualification as it was frozen at creation time."""
        return QualificationProfile(
            economic_role=self.economic_role,
            target_markets=(self.market,),
            target_standards=tuple(self.referential_ids),
            selected_processes=tuple(self.process_ids),
        )

    def config_snapshot(self) -> AuditConfig:
        return AuditConfig(
            referential_ids=tuple(self.referential_ids),
            process_filter=tuple(self.process_ids),
        )
