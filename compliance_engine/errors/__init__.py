"""Custom exceptions."""

from compliance_engine.errors.exceptions import (
    AuditError,
    AuditNotFoundError,
    AuditStateError,
    ConfigurationError,
    LocalPersistenceError,
    PersistenceError,
    RemotePersistenceError,
    RemoteTimeoutError,
    ValidationError,
)

__all__ = [
    "AuditError",
    "AuditNotFoundError",
    "AuditStateError",
    "ConfigurationError",
    "LocalPersistenceError",
    "PersistenceError",
    "RemotePersistenceError",
    "RemoteTimeoutError",
    "ValidationError",
]
