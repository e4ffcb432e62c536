"""Normalized, database-agnostic payload sent to the ingestion endpoint."""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..utils.urls import parse_target


AGENT_VERSION = "0.3.0"

# Optional payload sections, in wire order
SECTIONS = ("query_stats", "table_stats", "index_stats", "settings", "schema")

SettingValue = Union[bool, int, float, str]


class DatabaseInfo(BaseModel):
    """Engine, version and hosting provider of the monitored database."""
    engine: str
    version: Optional[str] = None
    provider: str = "generic"
    provider_metadata: Dict[str, str] = Field(default_factory=dict)


class QueryStats(BaseModel):
    """Aggregated statistics for one normalized statement."""
    query_hash: Optional[str] = None
    query: Optional[str] = None
    calls: Optional[int] = None
    total_time_ms: Optional[float] = None
    mean_time_ms: Optional[float] = None
    rows: Optional[int] = None
    shared_blks_hit: Optional[int] = None
    shared_blks_read: Optional[int] = None


class TableStats(BaseModel):
    """Access and maintenance counters for one table."""
    schema_name: str = Field(alias="schema")
    table: str
    seq_scan: Optional[int] = None
    seq_tup_read: Optional[int] = None
    idx_scan: Optional[int] = None
    idx_tup_fetch: Optional[int] = None
    n_tup_ins: Optional[int] = None
    n_tup_upd: Optional[int] = None
    n_tup_del: Optional[int] = None
    n_live_tup: Optional[int] = None
    n_dead_tup: Optional[int] = None
    last_vacuum: Optional[datetime] = None
    last_autovacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    last_autoanalyze: Optional[datetime] = None

    model_config = {"populate_by_name": True}


class IndexStats(BaseModel):
    """Usage counters for one index."""
    schema_name: str = Field(alias="schema")
    table: str
    index: str
    idx_scan: Optional[int] = None
    idx_tup_read: Optional[int] = None
    idx_tup_fetch: Optional[int] = None

    model_config = {"populate_by_name": True}


class ColumnMetadata(BaseModel):
    """Column definition."""
    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    position: int
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None


class TableMetadata(BaseModel):
    """Table definition with its columns."""
    schema_name: str = Field(alias="schema")
    name: str
    columns: List[ColumnMetadata] = Field(default_factory=list)
    row_count_estimate: Optional[int] = None
    size_bytes: Optional[int] = None

    model_config = {"populate_by_name": True}


class IndexMetadata(BaseModel):
    """Index definition."""
    schema_name: str = Field(alias="schema")
    table: str
    name: str
    columns: List[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    size_bytes: Optional[int] = None
    definition: Optional[str] = None

    model_config = {"populate_by_name": True}


class ForeignKeyMetadata(BaseModel):
    """One column of a foreign key constraint."""
    constraint_name: str
    schema_name: str = Field(alias="schema")
    table: str
    column: str
    foreign_schema: str
    foreign_table: str
    foreign_column: str

    model_config = {"populate_by_name": True}


class SchemaMetadata(BaseModel):
    """Structure of the database: tables, indexes and keys."""
    tables: List[TableMetadata] = Field(default_factory=list)
    indexes: List[IndexMetadata] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyMetadata] = Field(default_factory=list)


class Payload(BaseModel):
    """
    One snapshot produced per collection cycle.

    Every optional section may be absent; a payload without any of them is
    still valid and uploadable.
    """
    agent_version: str = AGENT_VERSION
    timestamp: datetime
    instance_id: str
    database: DatabaseInfo
    query_stats: Optional[List[QueryStats]] = None
    table_stats: Optional[List[TableStats]] = None
    index_stats: Optional[List[IndexStats]] = None
    settings: Optional[Dict[str, SettingValue]] = None
    schema_metadata: Optional[SchemaMetadata] = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Store timestamps as aware UTC datetimes."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @classmethod
    def new(
        cls,
        database: DatabaseInfo,
        database_url: str,
        timestamp: Optional[datetime] = None
    ) -> "Payload":
        """
        Start a payload for one cycle.

        Args:
            database: Engine/provider description (shared across cycles)
            database_url: Connection URL, used only to derive instance_id
            timestamp: Collection start instant (defaults to now, UTC)

        Returns:
            Payload: Payload with no optional sections
        """
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            instance_id=generate_instance_id(database_url),
            database=database.model_copy(deep=True),
        )

    def set_section(self, name: str, value: Any) -> None:
        """Attach an optional section by its wire name."""
        if name not in SECTIONS:
            raise ValueError(f"Unknown payload section: {name}")
        attr = "schema_metadata" if name == "schema" else name
        setattr(self, attr, value)

    def get_section(self, name: str) -> Any:
        """Return an optional section by its wire name (None when absent)."""
        if name not in SECTIONS:
            raise ValueError(f"Unknown payload section: {name}")
        return getattr(self, "schema_metadata" if name == "schema" else name)

    def included_sections(self) -> List[str]:
        """Names of the optional sections present in this payload."""
        return [name for name in SECTIONS if self.get_section(name) is not None]

    def to_dict(self) -> Dict[str, Any]:
        """
        Wire representation.

        Absent values are omitted rather than sent as null, and an empty
        provider_metadata mapping is dropped.
        """
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not data["database"].get("provider_metadata"):
            data["database"].pop("provider_metadata", None)
        return data

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize to JSON text."""
        return json.dumps(self.to_dict(), indent=indent)


def generate_instance_id(database_url: str) -> str:
    """
    Derive a stable instance identifier from the connection target.

    Only host, port and database name participate, so credentials never
    leak into the identifier and rotating a password keeps the same id.

    Args:
        database_url: Database connection URL

    Returns:
        str: 32 hex characters (first 16 bytes of a SHA-256 digest)
    """
    target = parse_target(database_url)
    digest = hashlib.sha256(str(target).encode("utf-8")).digest()
    return digest[:16].hex()
