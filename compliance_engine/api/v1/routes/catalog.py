"""Catalog endpoint for audit configuration screens."""

from fastapi import APIRouter, Depends

from compliance_engine.api.v1.deps import get_catalog
from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.schemas.audit import CatalogResponse

router = APIRouter()


@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog_overview(
    catalog: QuestionCatalog = Depends(get_catalog),  # noqa: B008
) -> CatalogResponse:
    return CatalogResponse(
        referentials=list(catalog.referentials),
        processes=list(catalog.processes),
        question_count=len(catalog),
    )
