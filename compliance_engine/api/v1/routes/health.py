"""Health check endpoint with database connectivity verification."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from compliance_engine.api.v1.deps import get_catalog, get_repository
from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.services.circuit_breaker import get_all_circuit_breaker_snapshots
from compliance_engine.services.repository import AuditRepository

router = APIRouter()


@router.get("/health")
async def health_check(
    repository: AuditRepository = Depends(get_repository),  # noqa: B008
    catalog: QuestionCatalog = Depends(get_catalog),  # noqa: B008
) -> dict[str, Any]:
    """
    Report database connectivity, catalog size and circuit breaker states.

    Answers 503 when the audit database is unreachable.
    """
    db_status = repository.check_connection()
    circuit_breakers = get_all_circuit_breaker_snapshots()
    circuits_open = any(cb["state"] == "open" for cb in circuit_breakers.values())

    database = {
        "status": "healthy" if db_status["connected"] else "unhealthy",
        **db_status,
    }

    if not db_status["connected"]:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "unhealthy",
                "ready": False,
                "alive": True,
                "database": database,
                "reason": f"Database not connected: {db_status['error']}",
            },
        )

    return {
        "status": "healthy",
        "ready": True,
        "alive": True,
        "degraded": circuits_open,
        "database": database,
        "records": repository.get_stats(),
        "catalog": {"questions": len(catalog), "referentials": len(catalog.referentials)},
        "circuit_breakers": circuit_breakers,
    }
