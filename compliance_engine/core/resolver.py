"""Applicability resolution: which catalog questions apply to an audit."""

from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.errors.exceptions import ConfigurationError
from compliance_engine.schemas.catalog import (
    AuditConfig,
    QualificationProfile,
    Question,
    QuestionSet,
)


def is_applicable(question: Question, profile: QualificationProfile, config: AuditConfig) -> bool:
    """
    Check whether one question belongs to an audit's question set.

    A question applies when its referential is selected, its applicability
    rule matches the economic role, and its process passes the process
    filter (an empty filter keeps every process).
    """
    if question.referential_id not in config.referential_ids:
        return False
    if not question.applies_to(profile.economic_role):
        return False
    if config.process_filter and question.process_id not in config.process_filter:
        return False
    return True


def resolve(
    catalog: QuestionCatalog,
    profile: QualificationProfile,
    audit_config: AuditConfig,
) -> QuestionSet:
    """
    Resolve the ordered question set for an audit.

    Args:
        catalog: Published questions
        profile: Frozen qualification snapshot of the audit
        audit_config: Referentials and process filter of the audit

    Returns:
        QuestionSet ordered by referential, process, sequence then key.
        An empty set is a valid result.

    Raises:
        ConfigurationError: If no referential is selected
    """
    if not audit_config.referential_ids:
        raise ConfigurationError(
            "An audit needs at least one referential. Select a referential and try again."
        )

    selected = [q for q in catalog.questions if is_applicable(q, profile, audit_config)]
    selected.sort(
        key=lambda q: (
            catalog.referential_rank(q.referential_id),
            catalog.process_rank(q.process_id),
            catalog.sequence_of(q),
            q.key,
        )
    )
    return QuestionSet(questions=tuple(selected))
