"""Exception hierarchy for the metadata agent.

Startup failures (ConfigError, ConnectionFailedError during collector
construction) are fatal. Everything raised while the scheduler is running is
caught at the cycle boundary, logged, and the cycle is skipped.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Invalid or missing configuration."""


class UnsupportedSchemeError(ConfigError):
    """Connection URL scheme does not map to any known database engine."""

    def __init__(self, scheme: str):
        self.scheme = scheme
        super().__init__(
            f"Unsupported database URL scheme '{scheme}'. Supported schemes: "
            "postgres://, postgresql://, mysql://, mariadb://, mongodb://, mongodb+srv://"
        )


class UnsupportedDatabaseError(ConfigError):
    """Engine was recognised but no collector is available for it."""

    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(f"Database engine '{engine}' is not supported yet")


class CollectorError(AgentError):
    """Base class for collection failures."""


class ConnectionFailedError(CollectorError):
    """Database is unreachable or rejected the credentials."""


class QueryFailedError(CollectorError):
    """A single metric query failed; only its category is affected."""

    def __init__(self, message: str, category: Optional[str] = None):
        self.category = category
        super().__init__(message)


class UploadError(AgentError):
    """Base class for delivery failures."""


class RejectedError(UploadError):
    """Non-retryable delivery failure (4xx, TLS, bad payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DeliveryFailedError(UploadError):
    """Retry budget exhausted without a successful delivery."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Delivery failed after {attempts} attempt(s): {last_error}"
        )
