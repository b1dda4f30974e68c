from __future__ import annotations

from typing import Any

# Geometry types accepted by ArangoDB geo indexes and GEO_* functions.
SUPPORTED_GEOMETRY_TYPES = (
    "Point",
    "MultiPoint",
    "LineString",
    "MultiLineString",
    "Polygon",
    "MultiPolygon",
)

_SUPPORTED = frozenset(SUPPORTED_GEOMETRY_TYPES)


def is_supported_geometry_type(geometry_type: str) -> bool:
    return geometry_type in _SUPPORTED


def geometry_type_of(doc: dict[str, Any]) -> str:
    """The document's geometry type, or "unknown" when absent or not a string."""
    geometry = doc.get("geometry")
    raw = geometry.get("type") if isinstance(geometry, dict) else None
    if isinstance(raw, str) and raw:
        return raw
    return "unknown"
