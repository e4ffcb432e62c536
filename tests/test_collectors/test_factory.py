"""Tests for collector factory."""

import pytest
from unittest.mock import AsyncMock, patch

from metadata_agent.collectors import factory
from metadata_agent.collectors.factory import create_collector, select_engine
from metadata_agent.config.models import DatabaseType, MetricType, PoolConfig, Provider
from metadata_agent.errors import (
    ConfigError,
    UnsupportedDatabaseError,
    UnsupportedSchemeError,
)


@pytest.mark.parametrize("url,engine", [
    ("postgres://u:p@localhost:5432/app", DatabaseType.POSTGRES),
    ("postgresql://u:p@localhost/app", DatabaseType.POSTGRES),
    ("POSTGRESQL://u:p@localhost/app", DatabaseType.POSTGRES),
    ("mysql://u:p@localhost:3306/app", DatabaseType.MYSQL),
    ("mariadb://u:p@localhost/app", DatabaseType.MYSQL),
    ("mongodb://localhost:27017/app", DatabaseType.MONGODB),
    ("mongodb+srv://cluster0.example.net/app", DatabaseType.MONGODB),
])
def test_select_engine(url, engine):
    assert select_engine(url) == engine


@pytest.mark.parametrize("url", [
    "redis://localhost:6379/0",
    "sqlite:///tmp/app.db",
    "postgres:/missing-slash",
    "localhost:5432",
])
def test_select_engine_rejects_unknown_scheme(url):
    with pytest.raises(UnsupportedSchemeError) as exc_info:
        select_engine(url)
    assert isinstance(exc_info.value, ConfigError)


def test_unsupported_scheme_names_scheme():
    with pytest.raises(UnsupportedSchemeError) as exc_info:
        select_engine("redis://localhost:6379/0")
    assert exc_info.value.scheme == "redis"


@pytest.mark.asyncio
async def test_create_collector_dispatches_to_postgres(logger):
    constructor = AsyncMock(return_value="collector")
    pool = PoolConfig(max_connections=3)

    with patch.dict(factory.COLLECTORS, {DatabaseType.POSTGRES: constructor}):
        result = await create_collector(
            "postgres://u:p@localhost/app",
            provider=Provider.NEON,
            pool=pool,
            metrics=[MetricType.SCHEMA],
            logger=logger,
        )

    assert result == "collector"
    constructor.assert_awaited_once_with(
        "postgres://u:p@localhost/app",
        provider=Provider.NEON,
        pool_config=pool,
        metrics=[MetricType.SCHEMA],
        logger=logger,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("url,engine", [
    ("mysql://u:p@localhost/app", "mysql"),
    ("mongodb://localhost/app", "mongodb"),
])
async def test_create_collector_recognised_but_unsupported(url, engine):
    with pytest.raises(UnsupportedDatabaseError) as exc_info:
        await create_collector(url)
    assert exc_info.value.engine == engine


@pytest.mark.asyncio
async def test_create_collector_unknown_scheme():
    with pytest.raises(UnsupportedSchemeError):
        await create_collector("oracle://u:p@localhost/app")
