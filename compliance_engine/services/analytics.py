"""Aggregation service: snapshots the repository and runs the pure aggregations."""

from __future__ import annotations

from compliance_engine.config.settings import get_config
from compliance_engine.core import aggregation
from compliance_engine.core.aggregation import AnalyticsDataset
from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.schemas.analytics import (
    DrilldownPage,
    Filter,
    Funnel,
    Heatmap,
    Pagination,
    Radar,
    Sort,
    Summary,
    Timeseries,
)
from compliance_engine.schemas.common import DrilldownType, Granularity
from compliance_engine.schemas.scoring import SiteScores
from compliance_engine.services.repository import AuditRepository


class AnalyticsService:
    """Each call reads a fresh snapshot; no results are kept between calls."""

    def __init__(self, repository: AuditRepository, catalog: QuestionCatalog):
        self.repository = repository
        self.catalog = catalog

    def dataset(self) -> AnalyticsDataset:
        return AnalyticsDataset(
            catalog=self.catalog,
            audits=tuple(self.repository.all_audits()),
            responses=tuple(self.repository.all_responses()),
            actions=tuple(self.repository.list_actions()),
        )

    def summary(self, flt: Filter) -> Summary:
        return aggregation.summary(self.dataset(), flt, get_config().top_risks_limit)

    def funnel(self, flt: Filter) -> Funnel:
        return aggregation.funnel(self.dataset(), flt)

    def timeseries(self, flt: Filter, granularity: Granularity) -> Timeseries:
        """
        Raises:
            ValidationError: If the window needs more than MAX_TIMESERIES_BUCKETS buckets
        """
        return aggregation.timeseries(
            self.dataset(), flt, granularity, get_config().max_timeseries_buckets
        )

    def heatmap(self, flt: Filter) -> Heatmap:
        return aggregation.heatmap(self.dataset(), flt)

    def radar(self, flt: Filter) -> Radar:
        return aggregation.radar(self.dataset(), flt)

    def site_scores(self, flt: Filter) -> SiteScores:
        return aggregation.site_scores(self.dataset(), flt)

    def drilldown(
        self, kind: DrilldownType, flt: Filter, pagination: Pagination, sort: Sort
    ) -> DrilldownPage:
        """Drilldown with the configured default page size, capped at MAX_PAGE_SIZE."""
        config = get_config()
        page_size = min(pagination.page_size or config.default_page_size, config.max_page_size)
        pagination = Pagination(page=pagination.page, page_size=page_size)
        return aggregation.drilldown(self.dataset(), kind, flt, pagination, sort)
