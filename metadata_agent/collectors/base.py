"""Base collector abstract class for all database engines."""

from abc import ABC, abstractmethod
import asyncio
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from ..config.models import DatabaseType, MetricType
from ..errors import CollectorError, ConnectionFailedError, QueryFailedError
from ..payload.models import DatabaseInfo, Payload
from .providers import ProviderInfo


class BaseCollector(ABC):
    """
    Abstract base class for database collectors.

    Subclasses connect to one engine, fetch each metric category and return
    it as a payload section. The base class owns the concurrent fan-out and
    the failure isolation between categories.
    """

    database_type: DatabaseType

    def __init__(
        self,
        database_url: str,
        provider_info: ProviderInfo,
        version: Optional[str],
        metrics: Optional[Iterable[MetricType]],
        logger: logging.Logger,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize base collector.

        Args:
            database_url: Connection URL (used for instance_id only)
            provider_info: Result of provider detection, cached for the lifetime
            version: Engine version string read by the initial probe
            metrics: Enabled categories (all when None)
            logger: Logger instance
            clock: Returns the collection start instant (UTC now by default)
        """
        self.database_url = database_url
        self.metrics = list(metrics) if metrics is not None else MetricType.all()
        self.logger = logger.getChild(self.__class__.__name__)
        self._provider_info = provider_info
        self._version = version
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._database_info = DatabaseInfo(
            engine=self.database_type.value,
            version=version,
            provider=provider_info.provider,
            provider_metadata=dict(provider_info.metadata),
        )

    @property
    def provider(self) -> str:
        """Detected provider label."""
        return self._provider_info.provider

    @property
    def provider_info(self) -> ProviderInfo:
        return self._provider_info

    @property
    def version(self) -> Optional[str]:
        """Engine version string, when the probe returned one."""
        return self._version

    async def collect(self) -> Payload:
        """
        Collect every enabled category concurrently and build a payload.

        A failed category is logged and left absent. A connectivity failure
        in any category fails the whole call.

        Returns:
            Payload: Snapshot for this cycle

        Raises:
            ConnectionFailedError: If the database could not be reached
        """
        started_at = self._clock()
        start_time = time.monotonic()
        payload = Payload.new(self._database_info, self.database_url, timestamp=started_at)

        if not self.metrics:
            self.logger.info("No metric categories enabled")
            return payload

        results = await asyncio.gather(
            *(self.collect_category(metric) for metric in self.metrics),
            return_exceptions=True
        )

        connection_error: Optional[ConnectionFailedError] = None
        failed: Dict[str, str] = {}
        for metric, result in zip(self.metrics, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, ConnectionFailedError):
                connection_error = connection_error or result
            elif isinstance(result, Exception):
                failed[metric.value] = str(result)
                self.logger.warning(
                    f"Category {metric.value} unavailable: {result}",
                    extra={"category": metric.value, "error_type": type(result).__name__}
                )
            elif result is not None:
                payload.set_section(metric.value, result)

        if connection_error is not None:
            self.logger.error(f"Collection aborted, database unreachable: {connection_error}")
            raise connection_error

        schema = payload.schema_metadata
        self.logger.info(
            "Metrics collection complete",
            extra={
                "sections": payload.included_sections(),
                "failed_categories": sorted(failed),
                "tables": len(schema.tables) if schema else 0,
                "indexes": len(schema.indexes) if schema else 0,
                "queries": len(payload.query_stats or []),
                "duration_ms": round((time.monotonic() - start_time) * 1000),
            }
        )
        return payload

    @abstractmethod
    async def collect_category(self, metric: MetricType) -> Any:
        """
        Fetch one category.

        Returns:
            The payload section, or None when its source is unavailable

        Raises:
            QueryFailedError: The category failed; others are unaffected
            ConnectionFailedError: The database is unreachable
        """
        pass

    @abstractmethod
    async def test_connection(self) -> None:
        """
        Issue a trivial round-trip query.

        Raises:
            ConnectionFailedError: If the query fails
        """
        pass

    def close(self) -> None:
        """Release pooled connections and worker threads."""


def safe_category(func):
    """
    Decorator that classifies category failures.

    Collector errors pass through (tagged with the category when missing);
    anything else is wrapped in QueryFailedError so it degrades only the
    category that raised it.

    Args:
        func: ``collect_category`` implementation to wrap

    Returns:
        Wrapped coroutine function
    """
    @wraps(func)
    async def wrapper(self, metric: MetricType, *args, **kwargs):
        try:
            return await func(self, metric, *args, **kwargs)
        except QueryFailedError as e:
            if e.category is None:
                e.category = metric.value
            raise
        except CollectorError:
            raise
        except Exception as e:
            self.logger.debug(f"Category {metric.value} raised {type(e).__name__}", exc_info=True)
            raise QueryFailedError(str(e), category=metric.value) from e
    return wrapper
