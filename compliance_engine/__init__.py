"""Compliance Engine - regulatory audit responses, scoring and compliance analytics."""

from compliance_engine.core.aggregation import AnalyticsDataset
from compliance_engine.core.catalog import QuestionCatalog, load_catalog
from compliance_engine.core.resolver import resolve
from compliance_engine.core.scoring import score, top_risks
from compliance_engine.schemas.analytics import Filter
from compliance_engine.schemas.catalog import AuditConfig, QualificationProfile, QuestionSet
from compliance_engine.schemas.common import Criticality, EconomicRole, ResponseValue

__all__ = [
    "resolve",
    "score",
    "top_risks",
    "load_catalog",
    "AnalyticsDataset",
    "AuditConfig",
    "Criticality",
    "EconomicRole",
    "Filter",
    "QualificationProfile",
    "QuestionCatalog",
    "QuestionSet",
    "ResponseValue",
]
