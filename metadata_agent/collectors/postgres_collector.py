"""PostgreSQL metrics collector.

Collects query statistics (pg_stat_statements), table and index statistics
(pg_stat_user_tables / pg_stat_user_indexes), a curated set of pg_settings,
and schema metadata. Blocking psycopg2 calls run in a thread pool whose size
matches the connection pool, so concurrent category fetches never wait on
each other for a connection.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

import psycopg2
import psycopg2.extras
import psycopg2.pool

from ..config.models import DatabaseType, MetricType, PoolConfig, Provider
from ..errors import CollectorError, ConnectionFailedError, QueryFailedError
from ..payload.models import (
    ColumnMetadata,
    ForeignKeyMetadata,
    IndexMetadata,
    IndexStats,
    QueryStats,
    SchemaMetadata,
    SettingValue,
    TableMetadata,
    TableStats,
)
from ..utils.urls import parse_target, redact_url
from . import postgres_queries as queries
from .base import BaseCollector, safe_category
from .providers import ProviderInfo, QueryRunner, postgres_detector


# SQLSTATE classes/codes that mean the session itself is unusable
CONNECTION_SQLSTATE_CLASSES = ("08", "28")
CONNECTION_SQLSTATES = ("57P01", "57P02", "57P03")

PG13_VERSION_NUM = 130000


def is_connection_error(error: Exception, conn: Any = None) -> bool:
    """
    Decide whether a driver error means the database is unreachable.

    Args:
        error: Exception raised by psycopg2
        conn: Connection the error was raised on, if any

    Returns:
        bool: True for connectivity/authentication failures
    """
    if isinstance(error, psycopg2.InterfaceError):
        return True
    code = getattr(error, "pgcode", None) or ""
    if code[:2] in CONNECTION_SQLSTATE_CLASSES or code in CONNECTION_SQLSTATES:
        return True
    return bool(conn is not None and getattr(conn, "closed", 0))


def run_query(conn: Any, sql: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Execute one read-only statement and return its rows as dicts.

    Raises:
        ConnectionFailedError: If the connection is broken
        QueryFailedError: For any other database error
    """
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            cursor.execute(sql)
            return [dict(row) for row in cursor.fetchall()]
    except psycopg2.Error as e:
        message = (getattr(e, "pgerror", None) or str(e)).strip()
        if is_connection_error(e, conn):
            raise ConnectionFailedError(f"Database connection lost: {message}") from e
        raise QueryFailedError(message, category=category) from e


@contextmanager
def borrowed_connection(pool: Any):
    """
    Borrow a connection from the pool for one unit of work.

    Broken connections are closed instead of returned, so the next borrow
    reconnects.

    Raises:
        ConnectionFailedError: If no connection can be opened
    """
    try:
        conn = pool.getconn()
    except psycopg2.pool.PoolError as e:
        raise ConnectionFailedError(f"Connection pool unavailable: {e}") from e
    except psycopg2.Error as e:
        raise ConnectionFailedError(f"Could not connect to PostgreSQL: {str(e).strip()}") from e

    discard = False
    try:
        conn.autocommit = True
        yield conn
    except ConnectionFailedError:
        discard = True
        raise
    except psycopg2.Error as e:
        discard = is_connection_error(e, conn)
        if discard:
            raise ConnectionFailedError(f"Database connection lost: {str(e).strip()}") from e
        raise
    finally:
        pool.putconn(conn, close=discard or bool(getattr(conn, "closed", 0)))


@contextmanager
def snapshot_transaction(conn: Any):
    """
    Run the enclosed queries in one REPEATABLE READ, READ ONLY transaction.

    Every statement inside sees the same snapshot. The connection goes back
    to autocommit with server-default session settings afterwards.
    """
    conn.set_session(isolation_level="REPEATABLE READ", readonly=True, autocommit=False)
    try:
        yield conn
    finally:
        if not conn.closed:
            conn.rollback()
            conn.set_session(isolation_level="DEFAULT", readonly="DEFAULT", autocommit=True)


def open_pool(database_url: str, pool_config: PoolConfig) -> Any:
    """Open a thread-safe psycopg2 pool with read-only sessions."""
    options = (
        "-c default_transaction_read_only=on "
        f"-c statement_timeout={pool_config.statement_timeout_ms}"
    )
    return psycopg2.pool.ThreadedConnectionPool(
        pool_config.min_connections,
        pool_config.max_connections,
        dsn=database_url,
        connect_timeout=pool_config.acquire_timeout_secs,
        application_name="metadata-agent",
        options=options,
    )


def short_version(version: str) -> str:
    """Trim the compiler details from ``SELECT version()`` output."""
    return version.split(',')[0] if ',' in version else version[:100]


def typed_setting(value: Optional[str], vartype: Optional[str]) -> Optional[SettingValue]:
    """Convert a pg_settings value according to its declared vartype."""
    if value is None:
        return None
    try:
        if vartype == "bool":
            return value == "on"
        if vartype == "integer":
            return int(value)
        if vartype == "real":
            return float(value)
    except ValueError:
        return value
    return value


class PostgresCollector(BaseCollector):
    """Collector for PostgreSQL and its managed variants."""

    database_type = DatabaseType.POSTGRES

    def __init__(
        self,
        pool: Any,
        database_url: str,
        provider_info: ProviderInfo,
        version: Optional[str],
        logger: logging.Logger,
        version_num: Optional[int] = None,
        metrics: Optional[List[MetricType]] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 5,
        clock: Optional[Callable] = None
    ):
        """
        Initialize PostgreSQL collector around an already-probed pool.

        Use ``PostgresCollector.create`` to connect, probe and detect.

        Args:
            pool: psycopg2 connection pool (getconn/putconn/closeall)
            database_url: Connection URL
            provider_info: Detected or configured provider
            version: Server version string
            logger: Logger instance
            version_num: Numeric server version (e.g. 150004)
            metrics: Enabled categories
            executor: Worker threads for blocking calls
            max_workers: Size of the executor created when none is given
            clock: Collection timestamp source
        """
        super().__init__(database_url, provider_info, version, metrics, logger, clock)
        self.pool = pool
        self.version_num = version_num
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="pg-collector"
        )
        self._closed = False
        self._fetchers: Dict[MetricType, Callable[[QueryRunner], Any]] = {
            MetricType.QUERY_STATS: self._fetch_query_stats,
            MetricType.TABLE_STATS: self._fetch_table_stats,
            MetricType.INDEX_STATS: self._fetch_index_stats,
            MetricType.SETTINGS: self._fetch_settings,
            MetricType.SCHEMA: self._fetch_schema,
        }

    @classmethod
    async def create(
        cls,
        database_url: str,
        provider: Provider = Provider.AUTO,
        pool_config: Optional[PoolConfig] = None,
        metrics: Optional[List[MetricType]] = None,
        logger: Optional[logging.Logger] = None,
        pool_factory: Callable[[str, PoolConfig], Any] = open_pool
    ) -> "PostgresCollector":
        """
        Connect, probe the server version, detect the provider.

        Args:
            database_url: PostgreSQL connection URL
            provider: Provider override; AUTO runs detection
            pool_config: Pool sizing and timeouts
            metrics: Enabled categories
            logger: Logger instance
            pool_factory: Builds the pool (replaced in tests)

        Returns:
            PostgresCollector: Ready collector

        Raises:
            ConnectionFailedError: If the pool cannot be opened or the probe fails
        """
        logger = logger or logging.getLogger(__name__)
        pool_config = pool_config or PoolConfig()
        logger.info(f"Connecting to PostgreSQL at {redact_url(database_url)}")

        executor = ThreadPoolExecutor(
            max_workers=pool_config.max_connections,
            thread_name_prefix="pg-collector"
        )
        loop = asyncio.get_event_loop()

        try:
            pool = await loop.run_in_executor(executor, pool_factory, database_url, pool_config)
        except psycopg2.Error as e:
            executor.shutdown(wait=False)
            raise ConnectionFailedError(f"Could not connect to PostgreSQL: {str(e).strip()}") from e

        try:
            version, version_num, provider_info = await loop.run_in_executor(
                executor, cls._bootstrap, pool, database_url, provider, logger
            )
        except CollectorError as e:
            pool.closeall()
            executor.shutdown(wait=False)
            if isinstance(e, ConnectionFailedError):
                raise
            raise ConnectionFailedError(f"Initial probe failed: {e}") from e

        logger.info(
            "Connected to PostgreSQL",
            extra={"version": version, "provider": provider_info.provider}
        )
        return cls(
            pool=pool,
            database_url=database_url,
            provider_info=provider_info,
            version=version,
            version_num=version_num,
            logger=logger,
            metrics=metrics,
            executor=executor,
        )

    @staticmethod
    def _bootstrap(
        pool: Any,
        database_url: str,
        provider: Provider,
        logger: logging.Logger
    ) -> Tuple[str, Optional[int], ProviderInfo]:
        """Initial probe plus provider detection on one connection."""
        with borrowed_connection(pool) as conn:
            def run(sql: str) -> List[Dict[str, Any]]:
                return run_query(conn, sql)

            rows = run(queries.SERVER_VERSION)
            version = short_version(str(rows[0]["version"]))
            version_num = rows[0].get("version_num")

            if provider is Provider.AUTO:
                detector = postgres_detector(logger)
                provider_info = detector.detect(parse_target(database_url).host, run)
            else:
                provider_info = ProviderInfo(provider.value)

        return version, version_num, provider_info

    async def _in_worker(self, func: Callable, *args) -> Any:
        """Run a blocking call on the collector's worker threads."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _with_connection(
        self,
        fetch: Callable[[QueryRunner], Any],
        category: Optional[str],
        snapshot: bool = False
    ) -> Any:
        with borrowed_connection(self.pool) as conn:
            def run(sql: str) -> List[Dict[str, Any]]:
                return run_query(conn, sql, category)

            if not snapshot:
                return fetch(run)
            with snapshot_transaction(conn):
                return fetch(run)

    @safe_category
    async def collect_category(self, metric: MetricType) -> Any:
        """Fetch one category on its own pooled connection."""
        self.logger.debug(f"Collecting {metric.value}")
        return await self._in_worker(
            self._with_connection,
            self._fetchers[metric],
            metric.value,
            metric is MetricType.SCHEMA
        )

    async def test_connection(self) -> None:
        """Run ``SELECT 1``; any failure is reported as ConnectionFailedError."""
        try:
            await self._in_worker(self._with_connection, lambda run: run(queries.PING), None)
        except QueryFailedError as e:
            raise ConnectionFailedError(f"Connection test failed: {e}") from e

    def close(self) -> None:
        """Close pooled connections and stop worker threads."""
        if self._closed:
            return
        self._closed = True
        try:
            self.pool.closeall()
        except psycopg2.pool.PoolError:
            pass
        self._executor.shutdown(wait=False)

    def _fetch_query_stats(self, run: QueryRunner) -> Optional[List[QueryStats]]:
        rows = run(queries.PG_STAT_STATEMENTS_INSTALLED)
        if not rows or not rows[0].get("installed"):
            self.logger.warning("pg_stat_statements extension not installed, skipping query stats")
            return None

        if self.version_num is not None and self.version_num < PG13_VERSION_NUM:
            sql = queries.PG_STAT_STATEMENTS_LEGACY
        else:
            sql = queries.PG_STAT_STATEMENTS

        return [
            QueryStats(
                query_hash=format(row["queryid"] & 0xFFFFFFFFFFFFFFFF, "x")
                if row.get("queryid") is not None else None,
                query=row.get("query"),
                calls=row.get("calls"),
                total_time_ms=row.get("total_time"),
                mean_time_ms=row.get("mean_time"),
                rows=row.get("rows"),
                shared_blks_hit=row.get("shared_blks_hit"),
                shared_blks_read=row.get("shared_blks_read"),
            )
            for row in run(sql)
        ]

    def _fetch_table_stats(self, run: QueryRunner) -> List[TableStats]:
        return [
            TableStats(
                schema=row["schemaname"],
                table=row["relname"],
                seq_scan=row.get("seq_scan"),
                seq_tup_read=row.get("seq_tup_read"),
                idx_scan=row.get("idx_scan"),
                idx_tup_fetch=row.get("idx_tup_fetch"),
                n_tup_ins=row.get("n_tup_ins"),
                n_tup_upd=row.get("n_tup_upd"),
                n_tup_del=row.get("n_tup_del"),
                n_live_tup=row.get("n_live_tup"),
                n_dead_tup=row.get("n_dead_tup"),
                last_vacuum=row.get("last_vacuum"),
                last_autovacuum=row.get("last_autovacuum"),
                last_analyze=row.get("last_analyze"),
                last_autoanalyze=row.get("last_autoanalyze"),
            )
            for row in run(queries.PG_STAT_USER_TABLES)
        ]

    def _fetch_index_stats(self, run: QueryRunner) -> List[IndexStats]:
        return [
            IndexStats(
                schema=row["schemaname"],
                table=row["relname"],
                index=row["indexrelname"],
                idx_scan=row.get("idx_scan"),
                idx_tup_read=row.get("idx_tup_read"),
                idx_tup_fetch=row.get("idx_tup_fetch"),
            )
            for row in run(queries.PG_STAT_USER_INDEXES)
        ]

    def _fetch_settings(self, run: QueryRunner) -> Dict[str, SettingValue]:
        settings = {}
        for row in run(queries.PG_SETTINGS):
            value = typed_setting(row.get("setting"), row.get("vartype"))
            if value is not None:
                settings[row["name"]] = value
        return settings

    def _fetch_schema(self, run: QueryRunner) -> SchemaMetadata:
        # Called inside snapshot_transaction, so all four queries see one catalog state
        columns: Dict[Tuple[str, str], List[ColumnMetadata]] = {}
        for row in run(queries.COLUMN_INFO):
            key = (row["table_schema"], row["table_name"])
            columns.setdefault(key, []).append(ColumnMetadata(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row.get("is_nullable") == "YES",
                default=row.get("column_default"),
                position=row["ordinal_position"],
                max_length=row.get("character_maximum_length"),
                numeric_precision=row.get("numeric_precision"),
            ))

        tables = [
            TableMetadata(
                schema=row["table_schema"],
                name=row["table_name"],
                columns=columns.get((row["table_schema"], row["table_name"]), []),
                row_count_estimate=row.get("row_estimate"),
                size_bytes=row.get("total_bytes"),
            )
            for row in run(queries.TABLE_INFO)
        ]

        indexes = [
            IndexMetadata(
                schema=row["schemaname"],
                table=row["tablename"],
                name=row["indexname"],
                columns=row["columns"].split(", ") if row.get("columns") else [],
                is_unique=bool(row.get("is_unique")),
                is_primary=bool(row.get("is_primary")),
                size_bytes=row.get("index_size"),
                definition=row.get("indexdef"),
            )
            for row in run(queries.INDEX_INFO)
        ]

        foreign_keys = [
            ForeignKeyMetadata(
                constraint_name=row["constraint_name"],
                schema=row["table_schema"],
                table=row["table_name"],
                column=row["column_name"],
                foreign_schema=row["foreign_table_schema"],
                foreign_table=row["foreign_table_name"],
                foreign_column=row["foreign_column_name"],
            )
            for row in run(queries.FOREIGN_KEY_INFO)
        ]

        return SchemaMetadata(tables=tables, indexes=indexes, foreign_keys=foreign_keys)
