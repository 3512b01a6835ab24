"""Custom exception classes for the compliance engine."""


class AuditError(Exception):
    """Base exception for audit engine failures."""

    pass


class ConfigurationError(AuditError):
    """Raised when an audit cannot be configured from the given inputs."""

    pass


class ValidationError(AuditError):
    """Exception for input validation failures."""

    pass


class AuditNotFoundError(AuditError):
    """Raised when an audit id does not exist."""

    pass


class AuditStateError(AuditError):
    """Raised on an invalid lifecycle transition or a write to a locked audit."""

    pass


class PersistenceError(AuditError):
    """Base exception for response persistence failures."""

    pass


class RemotePersistenceError(PersistenceError):
    """Exception for remote store failures (network, server, open circuit)."""

    pass


class RemoteTimeoutError(RemotePersistenceError):
    """Raised when a remote write is not acknowledged in time."""

    pass


class LocalPersistenceError(PersistenceError):
    """Raised internally when the local draft cache cannot be written."""

    pass
