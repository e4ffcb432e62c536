"""Collector factory: URL scheme -> engine -> collector."""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..config.models import DatabaseType, MetricType, PoolConfig, Provider
from ..errors import UnsupportedDatabaseError, UnsupportedSchemeError
from .base import BaseCollector
from .postgres_collector import PostgresCollector


# Exact scheme prefixes, compared case-insensitively
SCHEME_PREFIXES = (
    ("postgresql://", DatabaseType.POSTGRES),
    ("postgres://", DatabaseType.POSTGRES),
    ("mysql://", DatabaseType.MYSQL),
    ("mariadb://", DatabaseType.MYSQL),
    ("mongodb+srv://", DatabaseType.MONGODB),
    ("mongodb://", DatabaseType.MONGODB),
)

CollectorConstructor = Callable[..., Awaitable[BaseCollector]]

# Engines with a collector implementation
COLLECTORS: Dict[DatabaseType, CollectorConstructor] = {
    DatabaseType.POSTGRES: PostgresCollector.create,
}


def select_engine(database_url: str) -> DatabaseType:
    """
    Select the database engine from the URL scheme.

    Args:
        database_url: Connection URL

    Returns:
        DatabaseType: Matching engine

    Raises:
        UnsupportedSchemeError: If no known scheme prefix matches
    """
    url = database_url.strip().lower()
    for prefix, engine in SCHEME_PREFIXES:
        if url.startswith(prefix):
            return engine
    scheme = url.split("://", 1)[0] if "://" in url else url[:20]
    raise UnsupportedSchemeError(scheme)


async def create_collector(
    database_url: str,
    provider: Provider = Provider.AUTO,
    pool: Optional[PoolConfig] = None,
    metrics: Optional[List[MetricType]] = None,
    logger: Optional[logging.Logger] = None
) -> BaseCollector:
    """
    Build the collector for the engine the URL points at.

    Args:
        database_url: Connection URL
        provider: Provider override (AUTO runs detection)
        pool: Connection pool settings
        metrics: Enabled categories
        logger: Logger instance

    Returns:
        BaseCollector: Connected collector with cached version and provider

    Raises:
        UnsupportedSchemeError: Unknown URL scheme
        UnsupportedDatabaseError: Engine recognised but not implemented
        ConnectionFailedError: Initial probe failed
    """
    engine = select_engine(database_url)
    constructor = COLLECTORS.get(engine)
    if constructor is None:
        raise UnsupportedDatabaseError(engine.value)

    return await constructor(
        database_url,
        provider=provider,
        pool_config=pool,
        metrics=metrics,
        logger=logger,
    )
