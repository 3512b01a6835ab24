"""
Cross-audit aggregation and drilldown.

All entry points take an AnalyticsDataset snapshot and an immutable Filter and
return fresh result models; none of them keeps state between calls.

Audit-level filter fields (market, economic role, status, site, period on
creation date) select audits. Question-level fields (criticality, process)
select the responses, findings and actions of those audits. Every field set
to "all" is ignored.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from compliance_engine.config.settings import get_config
from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.core.resolver import resolve
from compliance_engine.core.scoring import (
    latest_by_key,
    percent,
    score,
    score_by_site,
    weighted_score,
)
from compliance_engine.errors.exceptions import ValidationError
from compliance_engine.schemas.analytics import (
    CorrectiveAction,
    DrilldownPage,
    Filter,
    Finding,
    Funnel,
    FunnelConversionRates,
    FunnelStage,
    Heatmap,
    HeatmapRow,
    Pagination,
    Radar,
    RadarDimension,
    RiskyProcess,
    Sort,
    Summary,
    Timeseries,
    TimeseriesBucket,
    TimeWindow,
)
from compliance_engine.schemas.catalog import Audit, Question, QuestionSet
from compliance_engine.schemas.common import (
    ALL,
    ActionStatus,
    AuditStatus,
    Criticality,
    DrilldownType,
    FindingType,
    Granularity,
    ResponseValue,
    SortDirection,
    utcnow,
)
from compliance_engine.schemas.response import Response
from compliance_engine.schemas.scoring import ScoreSummary, SiteScores

DEFAULT_SORT_FIELD = "date"


@dataclass(frozen=True)
class AnalyticsDataset:
    """Snapshot of everything the aggregations read."""

    catalog: QuestionCatalog
    audits: tuple[Audit, ...] = ()
    responses: tuple[Response, ...] = ()
    actions: tuple[CorrectiveAction, ...] = ()
    now: datetime = field(default_factory=utcnow)


# =============================================================================
# Filtering
# =============================================================================


def audit_matches(audit: Audit, flt: Filter) -> bool:
    if flt.market != ALL and audit.market != flt.market:
        return False
    if flt.economic_role != ALL and audit.economic_role != flt.economic_role:
        return False
    if flt.audit_status != ALL and audit.status != flt.audit_status:
        return False
    if flt.site_id != ALL and audit.site_id != flt.site_id:
        return False
    if isinstance(flt.period, TimeWindow) and not flt.period.contains(audit.created_at):
        return False
    return True


def question_matches(question: Question | None, flt: Filter) -> bool:
    """Question-level predicate; unknown questions only pass an unrestricted filter."""
    if question is None:
        return flt.criticality == ALL and flt.process_id == ALL
    if flt.criticality != ALL and question.criticality != flt.criticality:
        return False
    if flt.process_id != ALL and question.process_id != flt.process_id:
        return False
    return True


@dataclass
class _Scope:
    """Filtered view of a dataset, computed once per call."""

    audits: list[Audit]
    responses: dict[int, list[Response]]
    findings: list[Finding]
    actions: list[CorrectiveAction]


def finding_type(question: Question, value: ResponseValue) -> FindingType | None:
    """Classify a response as a finding, None when it is not one."""
    if value == ResponseValue.NON_COMPLIANT:
        if question.criticality in (Criticality.HIGH, Criticality.CRITICAL):
            return FindingType.NC_MAJOR
        return FindingType.NC_MINOR
    if value == ResponseValue.PARTIAL:
        return FindingType.OBSERVATION
    return None


def finding_status(actions: list[CorrectiveAction]) -> str:
    """open without live actions, resolved when every live action is done."""
    live = [a for a in actions if a.status != ActionStatus.CANCELLED]
    if not live:
        return "open"
    if all(a.status.is_done for a in live):
        return "resolved"
    return "in_treatment"


def _scope(dataset: AnalyticsDataset, flt: Filter) -> _Scope:
    catalog = dataset.catalog
    audits = [a for a in dataset.audits if audit_matches(a, flt)]
    audit_ids = {a.id for a in audits}

    actions = [
        a
        for a in dataset.actions
        if a.audit_id in audit_ids and question_matches(catalog.get(a.question_key), flt)
    ]
    actions_by_key: dict[tuple[int, str], list[CorrectiveAction]] = {}
    for action in dataset.actions:
        actions_by_key.setdefault((action.audit_id, action.question_key), []).append(action)

    raw: dict[int, list[Response]] = {}
    for response in dataset.responses:
        if response.audit_id in audit_ids:
            raw.setdefault(response.audit_id, []).append(response)

    responses: dict[int, list[Response]] = {}
    findings: list[Finding] = []
    for audit in audits:
        kept: list[Response] = []
        for response in latest_by_key(raw.get(audit.id, [])).values():
            question = catalog.get(response.question_key)
            if question is None or not question_matches(question, flt):
                continue
            kept.append(response)
            ftype = finding_type(question, response.response_value)
            if ftype is None:
                continue
            findings.append(
                Finding(
                    id=f"{audit.id}:{question.key}",
                    audit_id=audit.id,
                    audit_name=audit.name,
                    question_key=question.key,
                    title=question.title,
                    process_id=question.process_id,
                    referential_id=question.referential_id,
                    criticality=question.criticality,
                    type=ftype,
                    status=finding_status(actions_by_key.get((audit.id, question.key), [])),
                    date=response.updated_at,
                )
            )
        responses[audit.id] = kept

    return _Scope(audits=audits, responses=responses, findings=findings, actions=actions)


def _ratio(part: int, whole: int) -> int:
    """Half-up integer percentage, unbounded above; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def _conformity(responses: list[Response]) -> int:
    compliant = sum(1 for r in responses if r.response_value == ResponseValue.COMPLIANT)
    applicable = sum(1 for r in responses if r.response_value != ResponseValue.NOT_APPLICABLE)
    return percent(compliant, max(applicable, 1))


def is_non_conformity(finding: Finding) -> bool:
    return finding.type in (FindingType.NC_MAJOR, FindingType.NC_MINOR)


def is_overdue(action: CorrectiveAction, now: datetime) -> bool:
    if action.status.is_done or action.status == ActionStatus.CANCELLED:
        return False
    return action.due_date is not None and action.due_date < now


# =============================================================================
# Summary & Funnel
# =============================================================================


def summary(dataset: AnalyticsDataset, flt: Filter, risky_limit: int = 5) -> Summary:
    """KPI bundle over the filtered audits."""
    scope = _scope(dataset, flt)
    catalog = dataset.catalog

    audits_by_status = {status.value: 0 for status in AuditStatus}
    for audit in scope.audits:
        audits_by_status[audit.status.value] += 1

    all_responses = [r for rows in scope.responses.values() for r in rows]
    scored = [weighted_score(rows) for rows in scope.responses.values() if rows]
    average_score = _ratio(sum(scored), 100 * len(scored)) if scored else 0

    findings_by_type = {t.value: 0 for t in FindingType}
    findings_by_criticality = {c.value: 0 for c in Criticality}
    for finding in scope.findings:
        findings_by_type[finding.type.value] += 1
        findings_by_criticality[finding.criticality.value] += 1

    overdue = sum(1 for a in scope.actions if is_overdue(a, dataset.now))
    closure_days = [
        (a.completed_at - a.created_at).total_seconds() / 86400
        for a in scope.actions
        if a.status.is_done and a.completed_at is not None
    ]
    average_closure = round(sum(closure_days) / len(closure_days), 1) if closure_days else 0.0

    risky: dict[str, RiskyProcess] = {}
    for finding in scope.findings:
        if not is_non_conformity(finding):
            continue
        entry = risky.setdefault(
            finding.process_id,
            RiskyProcess(
                process_id=finding.process_id,
                process_name=catalog.process_name(finding.process_id),
                nc_count=0,
                critical_count=0,
            ),
        )
        entry.nc_count += 1
        if finding.criticality == Criticality.CRITICAL:
            entry.critical_count += 1
    top_risky = sorted(
        risky.values(),
        key=lambda p: (-p.nc_count, -p.critical_count, catalog.process_rank(p.process_id)),
    )[:risky_limit]

    return Summary(
        total_audits=len(scope.audits),
        audits_by_status=audits_by_status,
        global_conformity_rate=_conformity(all_responses),
        average_audit_score=average_score,
        total_findings=len(scope.findings),
        findings_by_type=findings_by_type,
        findings_by_criticality=findings_by_criticality,
        total_actions=len(scope.actions),
        overdue_actions=overdue,
        overdue_percentage=percent(overdue, len(scope.actions)),
        average_closure_time=average_closure,
        top_risky_processes=top_risky,
    )


def funnel(dataset: AnalyticsDataset, flt: Filter) -> Funnel:
    """Audits -> findings -> non-conformities -> actions -> completed actions."""
    scope = _scope(dataset, flt)
    audits = len(scope.audits)
    findings = len(scope.findings)
    non_conformities = sum(1 for f in scope.findings if is_non_conformity(f))
    actions = len(scope.actions)
    completed = sum(1 for a in scope.actions if a.status.is_done)

    return Funnel(
        stages=[
            FunnelStage(name="audits", count=audits),
            FunnelStage(name="findings", count=findings),
            FunnelStage(name="non_conformities", count=non_conformities),
            FunnelStage(name="actions", count=actions),
            FunnelStage(name="completed_actions", count=completed),
        ],
        conversion_rates=FunnelConversionRates(
            audits_to_findings=_ratio(findings, audits),
            findings_to_nc=_ratio(non_conformities, findings),
            nc_to_actions=_ratio(actions, non_conformities),
            actions_to_completed=_ratio(completed, actions),
        ),
    )


# =============================================================================
# Timeseries
# =============================================================================


def bucket_start(moment: datetime, granularity: Granularity) -> datetime:
    """Floor a UTC datetime to the start of its bucket."""
    day = datetime(moment.year, moment.month, moment.day, tzinfo=UTC)
    if granularity == Granularity.DAY:
        return day
    if granularity == Granularity.WEEK:
        return day - timedelta(days=day.weekday())
    if granularity == Granularity.MONTH:
        return day.replace(day=1)
    if granularity == Granularity.QUARTER:
        return day.replace(month=3 * ((day.month - 1) // 3) + 1, day=1)
    return day.replace(month=1, day=1)


def next_bucket(start: datetime, granularity: Granularity) -> datetime | None:
    """Start of the following bucket; None past the last representable date."""
    try:
        if granularity == Granularity.DAY:
            return start + timedelta(days=1)
        if granularity == Granularity.WEEK:
            return start + timedelta(weeks=1)
        if granularity == Granularity.YEAR:
            return start.replace(year=start.year + 1)
        step = 1 if granularity == Granularity.MONTH else 3
        months = start.month - 1 + step
        return start.replace(year=start.year + months // 12, month=months % 12 + 1)
    except (OverflowError, ValueError):
        return None


def bucket_label(start: datetime, granularity: Granularity) -> str:
    if granularity == Granularity.DAY:
        return start.strftime("%Y-%m-%d")
    if granularity == Granularity.WEEK:
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"
    if granularity == Granularity.MONTH:
        return start.strftime("%Y-%m")
    if granularity == Granularity.QUARTER:
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    return str(start.year)


def bucket_starts(
    first: datetime, end: datetime, granularity: Granularity, max_buckets: int
) -> list[datetime]:
    """
    Starts of the contiguous buckets covering [first, end).

    Raises:
        ValidationError: If the window needs more than max_buckets buckets
    """
    starts: list[datetime] = []
    start: datetime | None = bucket_start(first, granularity)
    while start is not None and start < end:
        if len(starts) == max_buckets:
            raise ValidationError(
                f"Time window spans more than {max_buckets} {granularity.value} buckets; "
                "use a coarser granularity or a shorter period"
            )
        starts.append(start)
        start = next_bucket(start, granularity)
    return starts


def timeseries(
    dataset: AnalyticsDataset,
    flt: Filter,
    granularity: Granularity,
    max_buckets: int | None = None,
) -> Timeseries:
    """
    Contiguous buckets over the filter period, or over the observed audit range.

    Audits are bucketed by creation date; buckets without audits are emitted
    with zero values. The bucket count is capped by max_buckets, defaulting
    to MAX_TIMESERIES_BUCKETS.
    """
    limit = max_buckets or get_config().max_timeseries_buckets
    scope = _scope(dataset, flt)

    if isinstance(flt.period, TimeWindow):
        first, end = flt.period.start, flt.period.end
    elif scope.audits:
        first = min(a.created_at for a in scope.audits)
        end = max(a.created_at for a in scope.audits) + timedelta(microseconds=1)
    else:
        return Timeseries(granularity=granularity, timeseries=[])

    starts = bucket_starts(first, end, granularity, limit)

    audits_by_bucket: dict[datetime, list[Audit]] = {}
    for audit in scope.audits:
        audits_by_bucket.setdefault(bucket_start(audit.created_at, granularity), []).append(audit)
    findings_by_audit: dict[int, list[Finding]] = {}
    for finding in scope.findings:
        findings_by_audit.setdefault(finding.audit_id, []).append(finding)

    buckets: list[TimeseriesBucket] = []
    for start in starts:
        in_bucket = audits_by_bucket.get(start, [])
        responses = [r for a in in_bucket for r in scope.responses.get(a.id, [])]
        findings = [f for a in in_bucket for f in findings_by_audit.get(a.id, [])]
        buckets.append(
            TimeseriesBucket(
                period=bucket_label(start, granularity),
                start=start,
                audit_count=len(in_bucket),
                answered=len(responses),
                conformity_rate=_conformity(responses),
                nc_major_count=sum(1 for f in findings if f.type == FindingType.NC_MAJOR),
                nc_minor_count=sum(1 for f in findings if f.type == FindingType.NC_MINOR),
            )
        )

    return Timeseries(granularity=granularity, timeseries=buckets)


# =============================================================================
# Heatmap & Radar
# =============================================================================


def _processes_in_scope(catalog: QuestionCatalog, flt: Filter) -> list[tuple[str, str]]:
    processes = [(p.id, p.name) for p in catalog.processes]
    if flt.process_id != ALL:
        processes = [p for p in processes if p[0] == flt.process_id] or [
            (flt.process_id, flt.process_id)
        ]
    return processes


def heatmap(dataset: AnalyticsDataset, flt: Filter) -> Heatmap:
    """Non-conformity counts per process and criticality, one row per process."""
    scope = _scope(dataset, flt)
    catalog = dataset.catalog
    rows = {
        pid: HeatmapRow(process_id=pid, process_name=name)
        for pid, name in _processes_in_scope(catalog, flt)
    }

    for finding in scope.findings:
        if not is_non_conformity(finding):
            continue
        row = rows.get(finding.process_id)
        if row is None:
            continue
        setattr(row, finding.criticality.value, getattr(row, finding.criticality.value) + 1)
        row.total += 1

    ordered = sorted(rows.values(), key=lambda r: (-r.total, catalog.process_rank(r.process_id)))
    return Heatmap(heatmap=ordered)


def radar(dataset: AnalyticsDataset, flt: Filter) -> Radar:
    """Conformity score per process, zero for processes without answers."""
    scope = _scope(dataset, flt)
    catalog = dataset.catalog

    by_process: dict[str, list[Response]] = {}
    for rows in scope.responses.values():
        for response in rows:
            question = catalog.get(response.question_key)
            if question is not None:
                by_process.setdefault(question.process_id, []).append(response)

    return Radar(
        dimensions=[
            RadarDimension(
                id=pid,
                name=name,
                score=_conformity(by_process.get(pid, [])),
                answered=len(by_process.get(pid, [])),
            )
            for pid, name in _processes_in_scope(catalog, flt)
        ]
    )


def site_scores(dataset: AnalyticsDataset, flt: Filter) -> SiteScores:
    """
    Score every filtered audit on its own question set, then merge by site.

    Question-level filter fields narrow each audit's question set before
    scoring. Audits without a site are grouped under "unassigned".
    """
    scope = _scope(dataset, flt)
    entries: list[tuple[str | None, ScoreSummary]] = []
    for audit in scope.audits:
        resolved = resolve(dataset.catalog, audit.profile_snapshot(), audit.config_snapshot())
        question_set = QuestionSet(
            questions=tuple(q for q in resolved.questions if question_matches(q, flt))
        )
        entries.append((audit.site_id, score(scope.responses.get(audit.id, []), question_set)))
    return SiteScores(sites=score_by_site(entries))


# =============================================================================
# Drilldown
# =============================================================================


def _criticality_rank(criticality: Criticality | None) -> int:
    return criticality.severity if criticality is not None else 0


SortKey = Callable[[Any], Any]

FINDING_SORT_FIELDS: dict[str, SortKey] = {
    "date": lambda f: f.date,
    "criticality": lambda f: f.criticality.severity,
    "code": lambda f: f.question_key,
    "title": lambda f: f.title,
    "status": lambda f: f.status,
    "type": lambda f: f.type.value,
}

AUDIT_SORT_FIELDS: dict[str, SortKey] = {
    "date": lambda a: a.created_at,
    "status": lambda a: a.status.value,
    "name": lambda a: a.name,
    "conformity_rate": lambda a: a.conformity_rate,
    "score": lambda a: a.score,
}


def _action_sort_fields(catalog: QuestionCatalog) -> dict[str, SortKey]:
    def criticality(action: CorrectiveAction) -> int:
        question = catalog.get(action.question_key)
        return _criticality_rank(question.criticality if question else None)

    return {
        "date": lambda a: a.created_at,
        "due_date": lambda a: a.due_date,
        "status": lambda a: a.status.value,
        "criticality": criticality,
        "title": lambda a: a.title,
    }


def sort_rows(rows: list[Any], fields: dict[str, SortKey], sort: Sort) -> tuple[list[Any], Sort]:
    """
    Sort rows by a named field with the row id as tie-breaker.

    Unknown fields fall back to the date field; None values sort first
    ascending. Returns the rows and the sort actually applied.
    """
    field_name = sort.field if sort.field in fields else DEFAULT_SORT_FIELD
    getter = fields[field_name]

    def key(row: Any) -> tuple:
        value = getter(row)
        return (value is not None, value if value is not None else 0, row.id)

    ordered = sorted(rows, key=key, reverse=sort.direction == SortDirection.DESC)
    return ordered, Sort(field=field_name, direction=sort.direction)


def drilldown(
    dataset: AnalyticsDataset,
    kind: DrilldownType,
    flt: Filter,
    pagination: Pagination,
    sort: Sort,
) -> DrilldownPage:
    """
    One page of findings, actions or audits behind an aggregate.

    ``total`` counts the filtered rows before slicing; sorting is applied
    before pagination so concatenated pages reproduce the full ordering.
    """
    scope = _scope(dataset, flt)
    catalog = dataset.catalog

    if kind == DrilldownType.FINDINGS:
        rows, applied = sort_rows(scope.findings, FINDING_SORT_FIELDS, sort)
    elif kind == DrilldownType.ACTIONS:
        rows, applied = sort_rows(scope.actions, _action_sort_fields(catalog), sort)
    else:
        rows, applied = sort_rows(scope.audits, AUDIT_SORT_FIELDS, sort)

    total = len(rows)
    page_size = pagination.page_size or get_config().default_page_size
    offset = (pagination.page - 1) * page_size
    page_rows = rows[offset : offset + page_size]

    items: list[dict[str, Any]] = []
    for row in page_rows:
        item = row.model_dump(mode="json")
        if kind == DrilldownType.ACTIONS:
            question = catalog.get(row.question_key)
            item["criticality"] = question.criticality.value if question else None
            item["overdue"] = is_overdue(row, dataset.now)
        items.append(item)

    return DrilldownPage(
        type=kind,
        items=items,
        total=total,
        page=pagination.page,
        page_size=page_size,
        has_next=offset + page_size < total,
        sort=applied,
    )
