"""API dependencies for dependency injection."""

from fastapi import HTTPException

from compliance_engine.config.settings import Config, get_config
from compliance_engine.core.catalog import QuestionCatalog
from compliance_engine.core.catalog import get_catalog as load_catalog
from compliance_engine.errors.exceptions import (
    AuditError,
    AuditNotFoundError,
    AuditStateError,
    ConfigurationError,
    ValidationError,
)
from compliance_engine.services.analytics import AnalyticsService
from compliance_engine.services.audits import AuditService
from compliance_engine.services.audits import get_audit_service as load_audit_service
from compliance_engine.services.repository import AuditRepository


def get_settings() -> Config:
    """Get application settings dependency."""
    return get_config()


def get_repository() -> AuditRepository:
    """Get audit repository dependency."""
    return AuditRepository.get_instance(get_config().audit_db_path)


def get_catalog() -> QuestionCatalog:
    """Get question catalog dependency."""
    return load_catalog()


def get_audit_service() -> AuditService:
    """Get audit service dependency."""
    return load_audit_service()


def get_analytics_service() -> AnalyticsService:
    """Get analytics service dependency."""
    return AnalyticsService(get_repository(), load_catalog())


def to_http_exception(error: AuditError) -> HTTPException:
    """Map a domain error to its HTTP status."""
    if isinstance(error, (ValidationError, ConfigurationError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, AuditNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, AuditStateError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
