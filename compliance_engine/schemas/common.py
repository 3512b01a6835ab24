"""Common schemas and enums shared across the application."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

# Filter wildcard: a field set to ALL never narrows a result.
ALL = "all"
AllType = Literal["all"]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so every comparison is aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EconomicRole(str, Enum):
    """Legal position of the respondent in the supply chain."""

    MANUFACTURER = "manufacturer"
    IMPORTER = "importer"
    DISTRIBUTOR = "distributor"
    AUTHORIZED_REPRESENTATIVE = "authorized_representative"


class Market(str, Enum):
    """Target regulatory market."""

    EU = "eu"
    US = "us"


class Criticality(str, Enum):
    """Severity tag on a question."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        """Numeric rank, higher is more severe."""
        return _SEVERITY[self]


_SEVERITY = {
    Criticality.LOW: 1,
    Criticality.MEDIUM: 2,
    Criticality.HIGH: 3,
    Criticality.CRITICAL: 4,
}


class ResponseValue(str, Enum):
    """Compliance value chosen by the respondent."""

    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    PARTIAL = "partial"
    NOT_APPLICABLE = "not_applicable"
    IN_PROGRESS = "in_progress"


class AuditStatus(str, Enum):
    """Audit lifecycle status."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class ActionStatus(str, Enum):
    """Corrective action status."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CANCELLED = "cancelled"

    @property
    def is_done(self) -> bool:
        return self in (ActionStatus.COMPLETED, ActionStatus.VERIFIED)


class FindingType(str, Enum):
    """Classification of a derived finding."""

    NC_MAJOR = "nc_major"
    NC_MINOR = "nc_minor"
    OBSERVATION = "observation"


class ScoreDimension(str, Enum):
    """Grouping dimension for score breakdowns."""

    PROCESS = "process"
    CRITICALITY = "criticality"
    REFERENTIAL = "referential"


class Granularity(str, Enum):
    """Time series bucket size."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class DrilldownType(str, Enum):
    """Record type listed by a drilldown."""

    FINDINGS = "findings"
    ACTIONS = "actions"
    AUDITS = "audits"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
