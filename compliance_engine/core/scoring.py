"""Scoring engine: counts, rates and risk ranking over a question set.

Every function here is pure. Inputs are never mutated and nothing is cached
between calls, so dashboards may call them concurrently with different
dimensions.
"""

from collections.abc import Iterable

from compliance_engine.schemas.catalog import Question, QuestionSet
from compliance_engine.schemas.common import ResponseValue, ScoreDimension
from compliance_engine.schemas.response import Response
from compliance_engine.schemas.scoring import ScoreSummary, TopRisk

# Per-value weight of the audit score (0-100)
RESPONSE_WEIGHTS: dict[ResponseValue, int] = {
    ResponseValue.COMPLIANT: 100,
    ResponseValue.PARTIAL: 60,
    ResponseValue.NON_COMPLIANT: 20,
    ResponseValue.NOT_APPLICABLE: 100,
    ResponseValue.IN_PROGRESS: 50,
}

RISK_VALUES = frozenset({ResponseValue.NON_COMPLIANT, ResponseValue.PARTIAL})

_COUNT_FIELDS: dict[ResponseValue, str] = {
    ResponseValue.COMPLIANT: "compliant",
    ResponseValue.NON_COMPLIANT: "non_compliant",
    ResponseValue.PARTIAL: "partial",
    ResponseValue.NOT_APPLICABLE: "not_applicable",
    ResponseValue.IN_PROGRESS: "in_progress",
}


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half-up, clamped to [0, 100]; 0 when whole is 0."""
    if whole <= 0 or part <= 0:
        return 0
    value = (200 * part + whole) // (2 * whole)
    return max(0, min(100, value))


def _summary_from_counts(total: int, counts: dict[ResponseValue, int]) -> ScoreSummary:
    answered = sum(counts.values())
    compliant = counts.get(ResponseValue.COMPLIANT, 0)
    not_applicable = counts.get(ResponseValue.NOT_APPLICABLE, 0)

    if answered:
        weight_sum = sum(RESPONSE_WEIGHTS[value] * n for value, n in counts.items())
        weighted = (2 * weight_sum + answered) // (2 * answered)
    else:
        weighted = 100

    return ScoreSummary(
        total=total,
        answered=answered,
        compliant=compliant,
        non_compliant=counts.get(ResponseValue.NON_COMPLIANT, 0),
        partial=counts.get(ResponseValue.PARTIAL, 0),
        not_applicable=not_applicable,
        in_progress=counts.get(ResponseValue.IN_PROGRESS, 0),
        conformity_rate=percent(compliant, max(answered - not_applicable, 1)),
        completion_rate=percent(answered, max(total, 1)),
        weighted_score=weighted,
    )


def latest_by_key(responses: Iterable[Response]) -> dict[str, Response]:
    """Collapse responses to one per question key, last write wins."""
    latest: dict[str, Response] = {}
    for response in responses:
        current = latest.get(response.question_key)
        if current is None or response.updated_at >= current.updated_at:
            latest[response.question_key] = response
    return latest


def _group_key(question: Question, dimension: ScoreDimension) -> str:
    if dimension == ScoreDimension.PROCESS:
        return question.process_id
    if dimension == ScoreDimension.CRITICALITY:
        return question.criticality.value
    return question.referential_id


def score(
    responses: Iterable[Response],
    question_set: QuestionSet,
    dimension: ScoreDimension | None = None,
) -> ScoreSummary | dict[str, ScoreSummary]:
    """
    Score responses against a question set.

    Responses for keys outside the set are ignored. With a dimension, one
    summary is returned per group value present in the set, including groups
    with no answers, in question set order.
    """
    by_key = latest_by_key(responses)

    if dimension is None:
        counts: dict[ResponseValue, int] = {}
        for question in question_set.questions:
            response = by_key.get(question.key)
            if response is not None:
                counts[response.response_value] = counts.get(response.response_value, 0) + 1
        return _summary_from_counts(len(question_set), counts)

    totals: dict[str, int] = {}
    grouped: dict[str, dict[ResponseValue, int]] = {}
    for question in question_set.questions:
        group = _group_key(question, dimension)
        totals[group] = totals.get(group, 0) + 1
        group_counts = grouped.setdefault(group, {})
        response = by_key.get(question.key)
        if response is not None:
            value = response.response_value
            group_counts[value] = group_counts.get(value, 0) + 1

    return {group: _summary_from_counts(totals[group], grouped[group]) for group in totals}


def merge_summaries(summaries: Iterable[ScoreSummary]) -> ScoreSummary:
    """Combine summaries of disjoint question sets into one."""
    total = 0
    counts: dict[ResponseValue, int] = {}
    for summary in summaries:
        total += summary.total
        for value, field in _COUNT_FIELDS.items():
            n = getattr(summary, field)
            if n:
                counts[value] = counts.get(value, 0) + n
    return _summary_from_counts(total, counts)


def score_by_site(entries: Iterable[tuple[str | None, ScoreSummary]]) -> dict[str, ScoreSummary]:
    """Merge per-audit summaries by site; audits without a site group under "unassigned"."""
    by_site: dict[str, list[ScoreSummary]] = {}
    for site_id, summary in entries:
        by_site.setdefault(site_id or "unassigned", []).append(summary)
    return {site: merge_summaries(items) for site, items in by_site.items()}


def weighted_score(responses: Iterable[Response]) -> int:
    """Audit score averaged over the given rows; 100 when there are none."""
    counts: dict[ResponseValue, int] = {}
    for response in latest_by_key(responses).values():
        counts[response.response_value] = counts.get(response.response_value, 0) + 1
    return _summary_from_counts(0, counts).weighted_score


def top_risks(
    responses: Iterable[Response],
    question_set: QuestionSet,
    limit: int = 5,
) -> list[TopRisk]:
    """
    Rank answered non-compliant and partial questions.

    Order is criticality severity desc, then most recent update, then
    question set order, so equal inputs always give the same slice.
    """
    if limit <= 0:
        return []

    by_key = latest_by_key(responses)
    ranked: list[tuple[int, float, int, Question, Response]] = []
    for index, question in enumerate(question_set.questions):
        response = by_key.get(question.key)
        if response is None or response.response_value not in RISK_VALUES:
            continue
        ranked.append(
            (
                -question.criticality.severity,
                -response.updated_at.timestamp(),
                index,
                question,
                response,
            )
        )

    ranked.sort(key=lambda item: item[:3])
    return [
        TopRisk(
            question_key=question.key,
            title=question.title,
            process_id=question.process_id,
            referential_id=question.referential_id,
            criticality=question.criticality,
            response_value=response.response_value,
            updated_at=response.updated_at,
            comment=response.comment,
        )
        for _, _, _, question, response in ranked[:limit]
    ]
