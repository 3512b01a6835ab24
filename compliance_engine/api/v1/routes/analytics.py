"""Aggregation and drilldown endpoints."""

from fastapi import APIRouter, Depends

from compliance_engine.api.v1.deps import get_analytics_service, to_http_exception
from compliance_engine.errors.exceptions import AuditError
from compliance_engine.schemas.analytics import (
    DrilldownPage,
    DrilldownRequest,
    Filter,
    Funnel,
    Heatmap,
    Radar,
    Summary,
    Timeseries,
    TimeseriesRequest,
)
from compliance_engine.schemas.scoring import SiteScores
from compliance_engine.services.analytics import AnalyticsService

router = APIRouter(prefix="/analytics")


@router.post("/summary", response_model=Summary)
async def get_summary(
    flt: Filter,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> Summary:
    return service.summary(flt)


@router.post("/funnel", response_model=Funnel)
async def get_funnel(
    flt: Filter,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> Funnel:
    """Audits -> findings -> non-conformities -> actions -> completed actions."""
    return service.funnel(flt)


@router.post("/timeseries", response_model=Timeseries)
async def get_timeseries(
    request: TimeseriesRequest,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> Timeseries:
    try:
        return service.timeseries(request.filter, request.granularity)
    except AuditError as e:
        raise to_http_exception(e) from e


@router.post("/heatmap", response_model=Heatmap)
async def get_heatmap(
    flt: Filter,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> Heatmap:
    return service.heatmap(flt)


@router.post("/radar", response_model=Radar)
async def get_radar(
    flt: Filter,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> Radar:
    return service.radar(flt)


@router.post("/sites", response_model=SiteScores)
async def get_site_scores(
    flt: Filter,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> SiteScores:
    """Scores merged per site; audits without a site are grouped under "unassigned"."""
    return service.site_scores(flt)


@router.post("/drilldown", response_model=DrilldownPage)
async def get_drilldown(
    request: DrilldownRequest,
    service: AnalyticsService = Depends(get_analytics_service),  # noqa: B008
) -> DrilldownPage:
    """One sorted page of findings, actions or audits; unknown sort fields fall back to date."""
    return service.drilldown(request.type, request.filter, request.pagination, request.sort)
