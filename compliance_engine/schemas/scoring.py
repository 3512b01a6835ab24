"""Score summary schemas."""

from datetime import datetime

from pydantic import BaseModel

from compliance_engine.schemas.common import Criticality, ResponseValue


class ScoreSummary(BaseModel):
    """Counts and rates computed over a question set."""

    total: int = 0
    answered: int = 0
    compliant: int = 0
    non_compliant: int = 0
    partial: int = 0
    not_applicable: int = 0
    in_progress: int = 0
    conformity_rate: int = 0  # 0-100
    completion_rate: int = 0  # 0-100
    weighted_score: int = 100  # 0-100


class TopRisk(BaseModel):
    """An answered question flagged as a risk."""

    question_key: str
    title: str
    process_id: str
    referential_id: str
    criticality: Criticality
    response_value: ResponseValue
    updated_at: datetime
    comment: str = ""


class SiteScores(BaseModel):
    """Per-site scores merged from the per-audit summaries of each site."""

    sites: dict[str, ScoreSummary]
