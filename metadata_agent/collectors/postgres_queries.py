"""SQL text used by the PostgreSQL collector and provider probes."""

# Initial probe: human-readable version plus the numeric form for feature checks
SERVER_VERSION = """
SELECT
    version() AS version,
    current_setting('server_version_num')::int AS version_num
"""

PING = "SELECT 1"

PG_STAT_STATEMENTS_INSTALLED = """
SELECT EXISTS(
    SELECT 1 FROM pg_extension WHERE extname = 'pg_stat_statements'
) AS installed
"""

# PostgreSQL 13+ column names
PG_STAT_STATEMENTS = """
SELECT
    queryid,
    query,
    calls,
    total_exec_time AS total_time,
    mean_exec_time AS mean_time,
    rows,
    shared_blks_hit,
    shared_blks_read
FROM pg_stat_statements
WHERE userid = (SELECT usesysid FROM pg_user WHERE usename = current_user)
ORDER BY total_exec_time DESC
LIMIT 100
"""

# PostgreSQL 12 and older
PG_STAT_STATEMENTS_LEGACY = """
SELECT
    queryid,
    query,
    calls,
    total_time,
    mean_time,
    rows,
    shared_blks_hit,
    shared_blks_read
FROM pg_stat_statements
WHERE userid = (SELECT usesysid FROM pg_user WHERE usename = current_user)
ORDER BY total_time DESC
LIMIT 100
"""

PG_STAT_USER_TABLES = """
SELECT
    schemaname,
    relname,
    seq_scan,
    seq_tup_read,
    idx_scan,
    idx_tup_fetch,
    n_tup_ins,
    n_tup_upd,
    n_tup_del,
    n_live_tup,
    n_dead_tup,
    last_vacuum,
    last_autovacuum,
    last_analyze,
    last_autoanalyze
FROM pg_stat_user_tables
ORDER BY n_live_tup DESC
"""

PG_STAT_USER_INDEXES = """
SELECT
    schemaname,
    relname,
    indexrelname,
    idx_scan,
    idx_tup_read,
    idx_tup_fetch
FROM pg_stat_user_indexes
ORDER BY idx_scan DESC
"""

PG_SETTINGS = """
SELECT name, setting, vartype
FROM pg_settings
WHERE name IN (
    'max_connections',
    'shared_buffers',
    'effective_cache_size',
    'maintenance_work_mem',
    'checkpoint_completion_target',
    'wal_buffers',
    'default_statistics_target',
    'random_page_cost',
    'effective_io_concurrency',
    'work_mem',
    'min_wal_size',
    'max_wal_size',
    'max_worker_processes',
    'max_parallel_workers_per_gather',
    'max_parallel_workers',
    'max_parallel_maintenance_workers',
    'autovacuum',
    'server_version',
    'server_encoding',
    'timezone'
)
ORDER BY name
"""

TABLE_INFO = """
SELECT
    t.table_schema,
    t.table_name,
    c.reltuples::bigint AS row_estimate,
    pg_total_relation_size(c.oid)::bigint AS total_bytes
FROM information_schema.tables t
JOIN pg_namespace n ON n.nspname = t.table_schema
JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
WHERE t.table_schema NOT IN ('pg_catalog', 'information_schema')
    AND t.table_type = 'BASE TABLE'
ORDER BY t.table_schema, t.table_name
"""

COLUMN_INFO = """
SELECT
    table_schema,
    table_name,
    column_name,
    ordinal_position,
    is_nullable,
    data_type,
    character_maximum_length,
    numeric_precision,
    column_default
FROM information_schema.columns
WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
ORDER BY table_schema, table_name, ordinal_position
"""

INDEX_INFO = """
SELECT
    i.schemaname,
    i.tablename,
    i.indexname,
    i.indexdef,
    pg_relation_size(c.oid)::bigint AS index_size,
    idx.indisunique AS is_unique,
    idx.indisprimary AS is_primary,
    (
        SELECT string_agg(a.attname, ', ' ORDER BY array_position(idx.indkey, a.attnum))
        FROM pg_attribute a
        WHERE a.attrelid = idx.indrelid
        AND a.attnum = ANY(idx.indkey)
    ) AS columns
FROM pg_indexes i
JOIN pg_namespace n ON n.nspname = i.schemaname
JOIN pg_class c ON c.relname = i.indexname AND c.relnamespace = n.oid
JOIN pg_index idx ON idx.indexrelid = c.oid
WHERE i.schemaname NOT IN ('pg_catalog', 'information_schema')
ORDER BY i.schemaname, i.tablename, i.indexname
"""

FOREIGN_KEY_INFO = """
SELECT
    tc.constraint_name,
    tc.table_schema,
    tc.table_name,
    kcu.column_name,
    ccu.table_schema AS foreign_table_schema,
    ccu.table_name AS foreign_table_name,
    ccu.column_name AS foreign_column_name
FROM information_schema.table_constraints AS tc
JOIN information_schema.key_column_usage AS kcu
    ON tc.constraint_name = kcu.constraint_name
    AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage AS ccu
    ON ccu.constraint_name = tc.constraint_name
    AND ccu.table_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema NOT IN ('pg_catalog', 'information_schema')
ORDER BY tc.table_schema, tc.table_name, tc.constraint_name, kcu.ordinal_position
"""

# Provider probes

AURORA_FUNCTION_EXISTS = """
SELECT EXISTS(SELECT 1 FROM pg_proc WHERE proname = 'aurora_version') AS present
"""

AURORA_VERSION = "SELECT aurora_version() AS aurora_version"

RDS_EXTENSIONS_SETTING = """
SELECT setting FROM pg_settings WHERE name = 'rds.extensions'
"""

INSTALLED_EXTENSIONS = "SELECT extname FROM pg_extension"
