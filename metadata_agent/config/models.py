"""Pydantic configuration models for the metadata agent."""

import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_ENDPOINT = "https://api.datapace.ai/v1/ingest"


class DatabaseType(str, Enum):
    """Supported database engines."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"


class Provider(str, Enum):
    """Hosting provider override; AUTO runs detection."""

    AUTO = "auto"
    GENERIC = "generic"
    RDS = "rds"
    AURORA = "aurora"
    SUPABASE = "supabase"
    NEON = "neon"


class MetricType(str, Enum):
    """Metric categories; values are the payload section names."""

    QUERY_STATS = "query_stats"
    TABLE_STATS = "table_stats"
    INDEX_STATS = "index_stats"
    SETTINGS = "settings"
    SCHEMA = "schema"

    @classmethod
    def all(cls) -> List["MetricType"]:
        return list(cls)


# Accepted config spellings -> category. Legacy names come from the
# PostgreSQL views each category used to be named after.
METRIC_ALIASES = {
    "query_stats": MetricType.QUERY_STATS,
    "pg_stat_statements": MetricType.QUERY_STATS,
    "table_stats": MetricType.TABLE_STATS,
    "pg_stat_user_tables": MetricType.TABLE_STATS,
    "index_stats": MetricType.INDEX_STATS,
    "pg_stat_user_indexes": MetricType.INDEX_STATS,
    "settings": MetricType.SETTINGS,
    "pg_settings": MetricType.SETTINGS,
    "schema": MetricType.SCHEMA,
    "schema_metadata": MetricType.SCHEMA,
}


def normalize_metric(name: Any) -> MetricType:
    """
    Map a configured metric name (canonical or legacy) to its category.

    Raises:
        ValueError: If the name is not in METRIC_ALIASES
    """
    if isinstance(name, MetricType):
        return name
    key = str(name).strip().lower()
    if key not in METRIC_ALIASES:
        raise ValueError(
            f"Unknown metric '{name}'. Valid values: {', '.join(sorted(METRIC_ALIASES))}"
        )
    return METRIC_ALIASES[key]


def parse_duration_secs(value: Any) -> int:
    """
    Parse a duration such as 60, "60", "60s", "5m" or "1h" into seconds.

    Raises:
        ValueError: If the value is not a recognised duration
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    match = re.fullmatch(r"\s*(\d+)\s*([smh]?)\s*", str(value).lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. 60s, 5m, 1h)")
    number, unit = match.groups()
    return int(number) * {"": 1, "s": 1, "m": 60, "h": 3600}[unit]


class CloudConfig(BaseModel):
    """Ingestion endpoint and delivery policy."""
    api_key: str
    endpoint: str = DEFAULT_ENDPOINT
    timeout_secs: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay_secs: float = Field(default=1.0, ge=0)
    max_delay_secs: float = Field(default=30.0, ge=0)
    max_retry_duration_secs: float = Field(default=120.0, ge=0)
    compress: bool = True

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Reject empty keys (an unset ${VAR} resolves to '')."""
        if not v.strip():
            raise ValueError("API key cannot be empty")
        return v.strip()

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must start with http:// or https://")
        return v


class PoolConfig(BaseModel):
    """Database connection pool settings."""
    min_connections: int = Field(default=1, ge=0)
    max_connections: int = Field(default=5, ge=1, le=50)
    acquire_timeout_secs: int = Field(default=30, ge=1)
    statement_timeout_ms: int = Field(default=30000, ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "PoolConfig":
        if self.min_connections > self.max_connections:
            raise ValueError("min_connections cannot exceed max_connections")
        return self


class DatabaseConfig(BaseModel):
    """Monitored database."""
    url: str
    provider: Provider = Provider.AUTO
    pool: PoolConfig = Field(default_factory=PoolConfig)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require a URL with a recognised engine scheme."""
        v = v.strip()
        if not v:
            raise ValueError("Database URL cannot be empty")
        # Local import: the factory imports this module
        from ..collectors.factory import select_engine
        select_engine(v)
        return v

    @property
    def database_type(self) -> DatabaseType:
        from ..collectors.factory import select_engine
        return select_engine(self.url)


class CollectionConfig(BaseModel):
    """Collection cadence and enabled categories."""
    interval_secs: int = Field(default=60, alias="interval")
    metrics: List[MetricType] = Field(default_factory=MetricType.all)
    shutdown_grace_secs: float = Field(default=30.0, ge=0)

    model_config = {"populate_by_name": True}

    @field_validator("interval_secs", mode="before")
    @classmethod
    def validate_interval(cls, v: Any) -> int:
        """Accept seconds or duration strings; at least 10 seconds."""
        seconds = parse_duration_secs(v)
        if seconds < 10:
            raise ValueError("Collection interval must be at least 10 seconds")
        return seconds

    @field_validator("metrics", mode="before")
    @classmethod
    def validate_metrics(cls, v: Any) -> List[MetricType]:
        """Resolve aliases and drop duplicates, keeping first occurrence."""
        if v is None:
            return MetricType.all()
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        resolved: List[MetricType] = []
        for name in v:
            metric = normalize_metric(name)
            if metric not in resolved:
                resolved.append(metric)
        return resolved


class LoggingConfig(BaseModel):
    """Log level and output format."""
    level: str = "INFO"
    format: str = "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in ("json", "pretty"):
            raise ValueError("Log format must be 'json' or 'pretty'")
        return fmt


class AgentConfig(BaseModel):
    """Root configuration model for the agent."""
    cloud: CloudConfig
    database: DatabaseConfig
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def redacted(self) -> dict:
        """Configuration dump safe for logging."""
        from ..utils.urls import redact_url
        data = self.model_dump(mode="json")
        data["cloud"]["api_key"] = "***"
        data["database"]["url"] = redact_url(self.database.url)
        return data
