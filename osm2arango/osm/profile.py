"""
Import profiles: named, tag-based inclusion filters applied to feature
documents before they are batched for upload.

    all         every feature
    amenities   features with a non-empty ``amenity`` tag
    recreation  parks, water, woods and other green/blue space
    places      amenities + recreation
"""

from __future__ import annotations

from typing import Any

IMPORT_PROFILES = ("all", "places", "amenities", "recreation")

RECREATION_NATURAL_VALUES = frozenset(
    {"wood", "water", "wetland", "beach", "grassland", "heath", "scrub"}
)

RECREATION_LANDUSE_VALUES = frozenset(
    {"forest", "meadow", "grass", "recreation_ground", "village_green", "allotments"}
)

PROTECTED_BOUNDARY_VALUES = frozenset({"national_park", "protected_area"})


def should_import_feature_for_profile(doc: dict[str, Any], profile: str) -> bool:
    if profile not in IMPORT_PROFILES:
        raise ValueError(f"profile must be one of {IMPORT_PROFILES}, got {profile!r}")
    if profile == "all":
        return True

    tags = doc.get("tags") or {}

    if profile == "amenities":
        return _has_value(tags, "amenity")

    if profile == "recreation":
        return _is_recreation_feature(tags)

    return _has_value(tags, "amenity") or _is_recreation_feature(tags)


def _has_value(tags: dict[str, Any], key: str) -> bool:
    value = tags.get(key)
    return isinstance(value, str) and len(value) > 0


def _is_recreation_feature(tags: dict[str, Any]) -> bool:
    if _has_value(tags, "leisure") or _has_value(tags, "waterway"):
        return True
    if _value_in(tags, "natural", RECREATION_NATURAL_VALUES):
        return True
    if _value_in(tags, "landuse", RECREATION_LANDUSE_VALUES):
        return True
    return _value_in(tags, "boundary", PROTECTED_BOUNDARY_VALUES)


def _value_in(tags: dict[str, Any], key: str, values: frozenset[str]) -> bool:
    value = tags.get(key)
    return isinstance(value, str) and value in values
