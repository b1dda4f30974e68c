from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

from osm2arango.exceptions import ConfigError

DEFAULT_ARANGO_URL = "http://127.0.0.1:8529"
DEFAULT_ARANGO_USER = "root"
DEFAULT_IMPORT_TRANSPORT = "driver"

IMPORT_TRANSPORTS = ("driver", "http", "curl")

ARANGO_ENV_VARS = (
    "ARANGO_URL",
    "ARANGO_DB",
    "ARANGO_USER",
    "ARANGO_PASS",
    "ARANGO_IMPORT_TRANSPORT",
)


@dataclass(frozen=True)
class ArangoConnectionConfig:
    url: str
    database: str
    username: str
    password: str
    import_transport: str = DEFAULT_IMPORT_TRANSPORT

    def __post_init__(self):
        if self.import_transport not in IMPORT_TRANSPORTS:
            raise ConfigError(
                f"import_transport must be one of {IMPORT_TRANSPORTS}, "
                f"got {self.import_transport!r}"
            )

    def for_database(self, database: str) -> ArangoConnectionConfig:
        """Same server and credentials, different database (e.g. ``_system``)."""
        return replace(self, database=database)

    @classmethod
    def from_env_file(
        cls,
        env_path: str | Path,
        env: Mapping[str, str] | None = None,
        **overrides: str | None,
    ) -> ArangoConnectionConfig:
        """
        Resolve a connection from a .env file. Variables already present in
        the process environment take precedence over the file, and explicit
        overrides take precedence over both.
        """
        merged = read_arango_env_file(env_path)
        merged.update(os.environ if env is None else env)
        return resolve_arango_connection_config(merged, **overrides)

    def __str__(self) -> str:
        return (
            f"ArangoConnectionConfig(url={self.url!r}, database={self.database!r}, "
            f"username={self.username!r}, password='****', "
            f"import_transport={self.import_transport!r})"
        )

    def __repr__(self) -> str:
        return self.__str__()


def read_arango_env_file(env_path: str | Path) -> dict[str, str]:
    """
    Connection variables from a .env file; a missing file yields {}.

    Lines look like ``ARANGO_DB=osm`` or ``export ARANGO_DB="osm"``. Keys
    outside ARANGO_ENV_VARS, comments and malformed lines are ignored.
    """
    path = Path(env_path)
    if not path.is_file():
        return {}

    found: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or key not in ARANGO_ENV_VARS:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        found[key] = value
    return found


def resolve_arango_connection_config(
    env: Mapping[str, str] | None = None,
    url: str | None = None,
    database: str | None = None,
    username: str | None = None,
    password: str | None = None,
    import_transport: str | None = None,
) -> ArangoConnectionConfig:
    """
    Build connection settings from explicit values, falling back to the
    ARANGO_URL / ARANGO_DB / ARANGO_USER / ARANGO_PASS /
    ARANGO_IMPORT_TRANSPORT environment variables.
    """
    env = os.environ if env is None else env

    database = database or env.get("ARANGO_DB") or ""
    password = password or env.get("ARANGO_PASS") or ""
    if not database:
        raise ConfigError("Missing ArangoDB database. Set ARANGO_DB or pass --arango-db.")
    if not password:
        raise ConfigError("Missing ArangoDB password. Set ARANGO_PASS or pass --arango-pass.")

    return ArangoConnectionConfig(
        url=url or env.get("ARANGO_URL") or DEFAULT_ARANGO_URL,
        database=database,
        username=username or env.get("ARANGO_USER") or DEFAULT_ARANGO_USER,
        password=password,
        import_transport=(
            import_transport or env.get("ARANGO_IMPORT_TRANSPORT") or DEFAULT_IMPORT_TRANSPORT
        ),
    )


def parse_positive_number(raw: str | float | None, name: str, default: float) -> float:
    """Parse a strictly positive, finite option value."""
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid --{name} value: {raw}") from None
    if not math.isfinite(value) or value <= 0:
        raise ConfigError(f"Invalid --{name} value: {raw}")
    return value
