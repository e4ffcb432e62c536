"""Connection URL helpers."""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit


DEFAULT_PORTS = {
    "postgres": 5432,
    "postgresql": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "mongodb": 27017,
    "mongodb+srv": 27017,
}


@dataclass(frozen=True)
class ConnectionTarget:
    """Where a connection URL points, without credentials."""

    scheme: str
    host: str
    port: Optional[int]
    database: str

    def __str__(self) -> str:
        port = f":{self.port}" if self.port is not None else ""
        return f"{self.host}{port}/{self.database}"


def parse_target(database_url: str) -> ConnectionTarget:
    """
    Extract scheme, host, port and database name from a connection URL.

    Handles the libpq socket form (``postgres:///db?host=/var/run/postgresql``)
    and multi-host netlocs (``h1:5432,h2:5433``), where the first host is
    the target.

    Args:
        database_url: Database connection URL

    Returns:
        ConnectionTarget: Normalized target (host lower-cased)
    """
    parts = urlsplit(database_url.strip())
    scheme = parts.scheme.lower()
    first = urlsplit("//" + parts.netloc.rpartition("@")[2].split(",")[0])

    try:
        host = first.hostname or ""
        port = first.port
    except ValueError:
        host, port = first.hostname or "", None

    if not host:
        host = parse_qs(parts.query).get("host", [""])[0].split(",")[0]

    if port is None:
        port = DEFAULT_PORTS.get(scheme)

    return ConnectionTarget(
        scheme=scheme,
        host=host.lower(),
        port=port,
        database=parts.path.lstrip("/"),
    )


def redact_url(database_url: str) -> str:
    """Replace the password in a URL with ``***`` so it can be logged."""
    parts = urlsplit(database_url)
    if "@" not in parts.netloc:
        return database_url

    userinfo, _, hostinfo = parts.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    netloc = f"{user}:***@{hostinfo}" if ":" in userinfo else f"{user}@{hostinfo}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
