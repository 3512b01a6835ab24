"""Aggregation filter, findings, actions and dashboard schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from compliance_engine.schemas.common import (
    ALL,
    ActionStatus,
    AllType,
    AuditStatus,
    Criticality,
    DrilldownType,
    EconomicRole,
    FindingType,
    Granularity,
    Market,
    SortDirection,
    as_utc,
)


# === Filter ===


class TimeWindow(BaseModel):
    """Inclusive start, exclusive end."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError("time window end must be after start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class Filter(BaseModel):
    """Immutable aggregation filter; every field defaults to the no-op "all"."""

    model_config = ConfigDict(frozen=True)

    market: Market | AllType = ALL
    economic_role: EconomicRole | AllType = ALL
    audit_status: AuditStatus | AllType = ALL
    criticality: Criticality | AllType = ALL
    site_id: str = ALL
    process_id: str = ALL
    period: TimeWindow | AllType = ALL

    @property
    def is_noop(self) -> bool:
        return self == Filter()


# === Findings & Actions ===


class Finding(BaseModel):
    """A non-compliant or partial response surfaced as a finding."""

    id: str
    audit_id: int
    audit_name: str
    question_key: str
    title: str
    process_id: str
    referential_id: str
    criticality: Criticality
    type: FindingType
    status: str  # open, in_treatment, resolved
    date: datetime


class CorrectiveAction(BaseModel):
    """A corrective action raised against a finding."""

    id: int
    audit_id: int
    question_key: str
    title: str
    owner: str | None = None
    status: ActionStatus = ActionStatus.OPEN
    due_date: datetime | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ActionCreateRequest(BaseModel):
    question_key: str
    title: str
    owner: str | None = None
    due_date: datetime | None = None

    @field_validator("due_date")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class ActionUpdateRequest(BaseModel):
    status: ActionStatus
    owner: str | None = None
    due_date: datetime | None = None

    @field_validator("due_date")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


# === Dashboard Models ===


class RiskyProcess(BaseModel):
    process_id: str
    process_name: str
    nc_count: int
    critical_count: int


class Summary(BaseModel):
    """KPI bundle for the dashboard header."""

    total_audits: int
    audits_by_status: dict[str, int]
    global_conformity_rate: int
    average_audit_score: int
    total_findings: int
    findings_by_type: dict[str, int]
    findings_by_criticality: dict[str, int]
    total_actions: int
    overdue_actions: int
    overdue_percentage: int
    average_closure_time: float  # days
    top_risky_processes: list[RiskyProcess]


class FunnelStage(BaseModel):
    name: str
    count: int


class FunnelConversionRates(BaseModel):
    audits_to_findings: int = 0
    findings_to_nc: int = 0
    nc_to_actions: int = 0
    actions_to_completed: int = 0


class Funnel(BaseModel):
    stages: list[FunnelStage]
    conversion_rates: FunnelConversionRates


class TimeseriesBucket(BaseModel):
    period: str
    start: datetime
    audit_count: int
    answered: int
    conformity_rate: int
    nc_major_count: int
    nc_minor_count: int


class Timeseries(BaseModel):
    granularity: Granularity
    timeseries: list[TimeseriesBucket]


class HeatmapRow(BaseModel):
    process_id: str
    process_name: str
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0


class Heatmap(BaseModel):
    heatmap: list[HeatmapRow]


class RadarDimension(BaseModel):
    id: str
    name: str
    score: int
    answered: int


class Radar(BaseModel):
    dimensions: list[RadarDimension]


# === Drilldown ===


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)  # None uses the configured default


class Sort(BaseModel):
    field: str = "date"
    direction: SortDirection = SortDirection.DESC


class DrilldownPage(BaseModel):
    type: DrilldownType
    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
    has_next: bool
    sort: Sort


# === Request Models ===


class TimeseriesRequest(BaseModel):
    filter: Filter = Field(default_factory=Filter)
    granularity: Granularity = Granularity.MONTH


class DrilldownRequest(BaseModel):
    type: DrilldownType
    filter: Filter = Field(default_factory=Filter)
    pagination: Pagination = Field(default_factory=Pagination)
    sort: Sort = Field(default_factory=Sort)
