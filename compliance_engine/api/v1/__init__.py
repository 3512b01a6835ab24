"""API v1 package."""

from fastapi import APIRouter

from compliance_engine.api.v1.routes import (
    actions,
    analytics,
    audits,
    catalog,
    health,
    qualification,
)

router = APIRouter(prefix="/v1")
router.include_router(health.router, tags=["health"])
router.include_router(catalog.router, tags=["catalog"])
router.include_router(qualification.router, tags=["qualification"])
router.include_router(audits.router, tags=["audits"])
router.include_router(actions.router, tags=["actions"])
router.include_router(analytics.router, tags=["analytics"])
