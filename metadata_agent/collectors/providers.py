"""Hosting provider detection.

Resolution order, first match wins:

1. URL rules: pure string checks on the connection host, no I/O.
2. Live probes: queries against catalog objects that only exist on certain
   managed offerings, tried in a fixed priority order.
3. Default: ``generic``.

Adding a provider means appending one rule or one probe.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..errors import QueryFailedError
from . import postgres_queries as queries


GENERIC = "generic"

# Runs one read-only query and returns its rows as dicts
QueryRunner = Callable[[str], List[Dict[str, Any]]]
UrlRule = Callable[[str], Optional["ProviderInfo"]]
Probe = Callable[[QueryRunner], Optional["ProviderInfo"]]


@dataclass(frozen=True)
class ProviderInfo:
    """Detected provider label and side metadata; immutable once built."""

    provider: str
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


class ProviderDetector:
    """Ordered chain of URL rules and live probes for one engine."""

    def __init__(
        self,
        url_rules: Sequence[UrlRule],
        probes: Sequence[Probe],
        logger: Optional[logging.Logger] = None
    ):
        self.url_rules = list(url_rules)
        self.probes = list(probes)
        self.logger = logger or logging.getLogger(__name__)

    def match_url(self, host: str) -> Optional[ProviderInfo]:
        """Evaluate the URL tier only."""
        host = (host or "").lower()
        for rule in self.url_rules:
            info = rule(host)
            if info is not None:
                self.logger.debug(f"Provider {info.provider} matched by host pattern")
                return info
        return None

    def detect(self, host: str, run_query: QueryRunner) -> ProviderInfo:
        """
        Resolve the provider for a database.

        Args:
            host: Connection host (lower-cased by the caller or here)
            run_query: Executes a probe query; raises QueryFailedError for a
                failed query and ConnectionFailedError when the database is gone

        Returns:
            ProviderInfo: First match, or generic

        Raises:
            ConnectionFailedError: If the connection drops during probing
        """
        info = self.match_url(host)
        if info is not None:
            return info

        for probe in self.probes:
            try:
                info = probe(run_query)
            except QueryFailedError as e:
                self.logger.debug(f"Provider probe {probe.__name__} failed: {e}")
                continue
            if info is not None:
                self.logger.debug(f"Provider {info.provider} matched by {probe.__name__}")
                return info

        return ProviderInfo(GENERIC)


# PostgreSQL URL rules

def _supabase_host(host: str) -> Optional[ProviderInfo]:
    if not host.endswith((".supabase.co", ".supabase.com")):
        return None
    labels = host.split(".")
    # db.<project_ref>.supabase.co
    if len(labels) == 4 and labels[0] == "db":
        return ProviderInfo("supabase", {"project_ref": labels[1]})
    return ProviderInfo("supabase")


def _neon_host(host: str) -> Optional[ProviderInfo]:
    if not host.endswith(".neon.tech"):
        return None
    labels = host.split(".")
    metadata = {}
    if labels[0].startswith("ep-"):
        metadata["endpoint_id"] = labels[0].replace("-pooler", "")
    # ep-xxx.<region>[.aws].neon.tech
    if len(labels) >= 4:
        metadata["region"] = labels[1]
    return ProviderInfo("neon", metadata)


def _aws_host(host: str) -> Optional[ProviderInfo]:
    if not host.endswith(".rds.amazonaws.com"):
        return None
    labels = host.split(".")
    metadata = {"region": labels[-4]} if len(labels) >= 5 else {}
    # Aurora cluster endpoints: <name>.cluster-<id>.<region>.rds.amazonaws.com
    if ".cluster-" in host:
        return ProviderInfo("aurora", metadata)
    return ProviderInfo("rds", metadata)


# PostgreSQL live probes

def probe_aurora(run_query: QueryRunner) -> Optional[ProviderInfo]:
    rows = run_query(queries.AURORA_FUNCTION_EXISTS)
    if not rows or not rows[0].get("present"):
        return None

    metadata = {}
    try:
        version_rows = run_query(queries.AURORA_VERSION)
        if version_rows and version_rows[0].get("aurora_version"):
            metadata["aurora_version"] = str(version_rows[0]["aurora_version"])
    except QueryFailedError:
        pass
    return ProviderInfo("aurora", metadata)


def probe_rds(run_query: QueryRunner) -> Optional[ProviderInfo]:
    rows = run_query(queries.RDS_EXTENSIONS_SETTING)
    return ProviderInfo("rds") if rows else None


def _installed_extensions(run_query: QueryRunner) -> List[str]:
    return [row["extname"] for row in run_query(queries.INSTALLED_EXTENSIONS)]


def probe_supabase(run_query: QueryRunner) -> Optional[ProviderInfo]:
    extensions = _installed_extensions(run_query)
    if "supabase_vault" in extensions or "pgsodium" in extensions:
        return ProviderInfo("supabase")
    return None


def probe_neon(run_query: QueryRunner) -> Optional[ProviderInfo]:
    if "neon" in _installed_extensions(run_query):
        return ProviderInfo("neon")
    return None


POSTGRES_URL_RULES: List[UrlRule] = [_supabase_host, _neon_host, _aws_host]
POSTGRES_PROBES: List[Probe] = [probe_aurora, probe_rds, probe_supabase, probe_neon]


def postgres_detector(logger: Optional[logging.Logger] = None) -> ProviderDetector:
    """Detector chain for PostgreSQL."""
    return ProviderDetector(POSTGRES_URL_RULES, POSTGRES_PROBES, logger)
