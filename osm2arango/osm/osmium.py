"""
Conversion of osmium ``export -f geojsonseq`` output into feature documents.

Usage:
    proc = spawn_osmium_export("berlin-latest.osm.pbf")
    for line in read_lines(iter_byte_chunks(proc.stdout)):
        doc = osmium_feature_to_doc(json.loads(strip_record_separator(line)))
"""

from __future__ import annotations

import logging
import re
import shutil
import signal
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from osm2arango.exceptions import ConversionProcessError, MalformedRecordError

logger = logging.getLogger(__name__)

OSM_CORE_ATTRIBUTES = ("type", "id", "version", "changeset", "timestamp", "uid", "user")

# Property names osmium uses for core attributes; never treated as tags.
RESERVED_PROPERTIES = frozenset(OSM_CORE_ATTRIBUTES + ("tags",))

_INVALID_KEY_CHARS = re.compile(r"[^A-Za-z0-9_:\-.]")


def build_osmium_export_args(input_path: str | Path) -> list[str]:
    return [
        "export",
        str(input_path),
        "-f",
        "geojsonseq",
        "-x",
        "print_record_separator=false",
        "-x",
        "tags_type=array",
        "--add-unique-id=type_id",
        "--attributes=type,id,version,changeset,timestamp,uid,user",
    ]


def spawn_osmium_export(
    input_path: str | Path,
    osmium_path: str = "osmium",
) -> subprocess.Popen:
    """
    Start ``osmium export`` writing GeoJSON sequences to a stdout pipe.

    Raises ConversionProcessError if the binary cannot be started.
    """
    cmd = [osmium_path, *build_osmium_export_args(input_path)]
    logger.info("Starting %s", " ".join(cmd))
    try:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
        )
    except OSError as e:
        raise osmium_start_failure(e, osmium_path) from e


# ------------------------------------------------------------------ #
#  Failure reporting
# ------------------------------------------------------------------ #


@dataclass
class InstallPlan:
    name: str
    steps: list[list[str]]

    def format(self) -> str:
        return "\n".join(" ".join(step) for step in self.steps)


def detect_osmium_install_plan(
    platform: str,
    which: Callable[[str], str | None],
) -> InstallPlan | None:
    """Suggest how to install osmium-tool with the local package manager."""
    if platform == "darwin" and which("brew"):
        return InstallPlan("Homebrew", [["brew", "install", "osmium-tool"]])
    if platform.startswith("linux") and which("apt-get"):
        return InstallPlan(
            "apt-get",
            [
                ["sudo", "apt-get", "update"],
                ["sudo", "apt-get", "install", "-y", "osmium-tool"],
            ],
        )
    if platform.startswith("linux") and which("pacman"):
        return InstallPlan("pacman", [["sudo", "pacman", "-S", "osmium-tool"]])
    return None


def osmium_start_failure(
    err: OSError,
    osmium_path: str = "osmium",
    platform: str = sys.platform,
    which: Callable[[str], str | None] = shutil.which,
) -> ConversionProcessError:
    if isinstance(err, FileNotFoundError):
        message = (
            f"osmium binary not found ({osmium_path}). "
            "To import .osm.pbf you need osmium-tool (binary: osmium) in $PATH. "
            "If you already have a .ndjson file (one GeoJSON Feature per line), "
            "import it with --adapter=ndjson."
        )
        plan = detect_osmium_install_plan(platform, which)
        if plan is not None:
            message += f"\nInstall with {plan.name}:\n{plan.format()}"
        return ConversionProcessError(message)
    return ConversionProcessError(f"Failed to start osmium ({osmium_path}): {err}")


def osmium_exit_failure(returncode: int) -> ConversionProcessError:
    if returncode == -signal.SIGKILL:
        return ConversionProcessError(
            "osmium export was killed (SIGKILL). This usually means the system ran "
            "out of memory while assembling areas; try a smaller extract or add swap.",
            returncode,
        )
    if returncode < 0:
        return ConversionProcessError(
            f"osmium export terminated by signal {-returncode}", returncode
        )
    return ConversionProcessError(
        f"osmium export failed with exit code {returncode}", returncode
    )


# ------------------------------------------------------------------ #
#  Feature -> document
# ------------------------------------------------------------------ #


def osmium_feature_to_doc(feature: Any) -> dict[str, Any]:
    """Convert one osmium GeoJSON Feature into a feature document."""
    f = _assert_object(feature, "feature")
    geometry = _assert_object(f.get("geometry"), "feature.geometry")
    properties = _assert_object(f.get("properties"), "feature.properties")

    feature_id = f.get("id")
    key = feature_id if isinstance(feature_id, str) and feature_id else _fallback_key(properties)

    geometry_type = geometry.get("type")
    if not isinstance(geometry_type, str) or not geometry_type:
        raise MalformedRecordError("feature.geometry.type must be a string")

    normalized_geometry: dict[str, Any] = {"type": geometry_type}
    if "coordinates" in geometry:
        normalized_geometry["coordinates"] = geometry["coordinates"]
    if "geometries" in geometry:
        normalized_geometry["geometries"] = geometry["geometries"]

    tags = _normalize_tags(properties)

    return {
        "_key": sanitize_key(key),
        "geometry": normalized_geometry,
        "tags": tags,
        "tagsKeys": list(tags),
        "tagsKV": [f"{k}={v}" for k, v in tags.items()],
        "osm": _core_attributes(properties),
    }


def normalize_input_to_doc(value: Any) -> dict[str, Any]:
    """
    Accept either an already-normalized feature document (passed through
    after a shallow check) or an osmium GeoJSON Feature (converted).
    """
    if not isinstance(value, dict):
        raise MalformedRecordError("NDJSON line must be a JSON object")

    if isinstance(value.get("_key"), str) and isinstance(value.get("geometry"), dict):
        geometry_type = value["geometry"].get("type")
        if not isinstance(geometry_type, str) or not geometry_type:
            raise MalformedRecordError("NDJSON document geometry.type must be a non-empty string")
        return value

    if value.get("type") == "Feature":
        return osmium_feature_to_doc(value)

    raise MalformedRecordError("Unsupported NDJSON document shape")


def sanitize_key(key: str) -> str:
    """Replace characters ArangoDB does not allow in ``_key``."""
    return _INVALID_KEY_CHARS.sub("_", key)


def _assert_object(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedRecordError(f"{label} must be an object")
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _fallback_key(properties: dict[str, Any]) -> str:
    osm_type = properties.get("type")
    prefix = osm_type[0] if isinstance(osm_type, str) and osm_type else "x"
    osm_id = properties.get("id")
    return f"{prefix}{osm_id if _is_number(osm_id) else 0}"


def _core_attributes(properties: dict[str, Any]) -> dict[str, Any]:
    core: dict[str, Any] = {}
    for name in OSM_CORE_ATTRIBUTES:
        value = properties.get(name)
        if name in ("type", "user"):
            keep = isinstance(value, str)
        elif name == "timestamp":
            # ISO string by default, epoch seconds with some osmium configs
            keep = isinstance(value, str) or _is_number(value)
        else:
            keep = _is_number(value)
        if keep:
            core[name] = value
    return core


def _first_string(entry: dict[str, Any], *names: str) -> str | None:
    for name in names:
        if isinstance(entry.get(name), str):
            return entry[name]
    return None


def _normalize_tags(properties: dict[str, Any]) -> dict[str, str]:
    tags: dict[str, str] = {}

    # `-x tags_type=array` puts tags into properties.tags as [{k, v}, ...]
    raw_tags = properties.get("tags")
    if isinstance(raw_tags, list):
        for entry in raw_tags:
            if not isinstance(entry, dict):
                continue
            k = _first_string(entry, "k", "key")
            v = _first_string(entry, "v", "value")
            if not k or v is None:
                continue
            tags[k] = v
        return tags

    for k, v in properties.items():
        if k in RESERVED_PROPERTIES:
            continue
        if isinstance(v, str):
            tags[k] = v
    return tags
