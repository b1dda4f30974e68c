"""
GeofabrikIndex: the tree of regions offered by Geofabrik's download server.

The index is a flat list of GeoJSON features whose properties reference a
parent region, forming a tree (continents -> countries -> states ...).

Usage:
    index = load_geofabrik_index()

    index.list_regions()                        # continents / top-level
    index.list_regions("north-america")         # subregions of a parent
    index.list_regions("us", keyword="illinois")
    index.search("DE", by="iso")
    index.get_download_url("europe/germany/berlin")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
import requests

from osm2arango.exceptions import DownloadError

logger = logging.getLogger(__name__)

INDEX_URLS = (
    "https://download.geofabrik.de/index-v1-nogeom.json",
    "https://download.geofabrik.de/index-v1.json",
)

REGION_COLUMNS = ["id", "name", "parent", "iso", "pbf_url"]


@dataclass
class GeofabrikRegion:
    id: str
    name: str
    parent_id: str | None = None
    pbf_url: str | None = None
    iso_codes: list[str] = field(default_factory=list)

    def to_row(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "parent": self.parent_id or "",
            "iso": ", ".join(self.iso_codes),
            "pbf_url": self.pbf_url or "",
        }


@dataclass
class GeofabrikIndex:
    regions_by_id: dict[str, GeofabrikRegion]
    children_by_parent_id: dict[str, list[str]]
    root_ids: list[str]

    def children(self, parent_id: str | None = None) -> list[GeofabrikRegion]:
        """Direct children of ``parent_id`` (roots when None), sorted by name."""
        ids = self.root_ids if parent_id is None else self.children_by_parent_id.get(parent_id, [])
        return [self.regions_by_id[i] for i in ids]

    def get_region(self, region_id: str) -> GeofabrikRegion:
        try:
            return self.regions_by_id[region_id]
        except KeyError:
            raise KeyError(f"Region {region_id!r} not found in Geofabrik index.") from None

    def get_download_url(self, region_id: str) -> str:
        region = self.get_region(region_id)
        if not region.pbf_url:
            raise KeyError(f"No .osm.pbf download available for {region_id!r}.")
        return region.pbf_url

    def list_regions(self, parent: str | None = None, keyword: str | None = None) -> pd.DataFrame:
        """
        List the children of ``parent`` (top-level regions when None),
        optionally filtered by a case-insensitive keyword on name or id.

        Returns a DataFrame with columns: id, name, parent, iso, pbf_url.
        """
        regions = self.children(parent)
        if keyword:
            regions = [r for r in regions if _matches(r, keyword)]
        return _to_frame(regions)

    def search(self, keyword: str, by: str = "name") -> pd.DataFrame:
        """
        Search every region. ``by="name"`` matches name or id substrings;
        ``by="iso"`` matches ISO 3166 codes exactly (case-insensitive).
        """
        if by == "iso":
            wanted = keyword.upper()
            regions = [
                r
                for r in self.regions_by_id.values()
                if any(code.upper() == wanted for code in r.iso_codes)
            ]
        else:
            regions = [r for r in self.regions_by_id.values() if _matches(r, keyword)]
        return _to_frame(sorted(regions, key=_sort_key))


def _matches(region: GeofabrikRegion, keyword: str) -> bool:
    return keyword.lower() in f"{region.name} {region.id}".lower()


def _sort_key(region: GeofabrikRegion) -> tuple[str, str]:
    return (region.name.casefold(), region.id)


def _to_frame(regions: list[GeofabrikRegion]) -> pd.DataFrame:
    return pd.DataFrame([r.to_row() for r in regions], columns=REGION_COLUMNS)


def _assert_object(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{label} must be an object")
    return value


def parse_geofabrik_index(value: Any) -> GeofabrikIndex:
    """Build the region tree from a Geofabrik ``index-v1*.json`` document."""
    root = _assert_object(value, "index")
    features = root.get("features")
    if not isinstance(features, list):
        raise TypeError("index.features must be an array")

    regions: list[GeofabrikRegion] = []
    for i, feature in enumerate(features):
        f = _assert_object(feature, f"index.features[{i}]")
        props = _assert_object(f.get("properties"), f"index.features[{i}].properties")

        region_id = props.get("id")
        if not isinstance(region_id, str) or not region_id:
            raise TypeError(f"index.features[{i}].properties.id must be a non-empty string")

        name = props.get("name")
        parent = props.get("parent")
        urls = props.get("urls")
        pbf_url = urls.get("pbf") if isinstance(urls, dict) else None
        iso_codes = [
            code
            for key in ("iso3166-1:alpha2", "iso3166-2")
            for code in (props.get(key) or [])
            if isinstance(code, str)
        ]

        regions.append(
            GeofabrikRegion(
                id=region_id,
                name=name if isinstance(name, str) and name else region_id,
                parent_id=parent if isinstance(parent, str) and parent else None,
                pbf_url=pbf_url if isinstance(pbf_url, str) and pbf_url else None,
                iso_codes=iso_codes,
            )
        )

    return _build_index(regions)


def _build_index(regions: list[GeofabrikRegion]) -> GeofabrikIndex:
    regions_by_id: dict[str, GeofabrikRegion] = {}
    for region in regions:
        if region.id in regions_by_id:
            raise ValueError(f"Duplicate Geofabrik region id: {region.id}")
        regions_by_id[region.id] = region

    children_by_parent_id: dict[str, list[str]] = {}
    root_ids: list[str] = []
    for region in regions:
        if region.parent_id:
            children_by_parent_id.setdefault(region.parent_id, []).append(region.id)
        else:
            root_ids.append(region.id)

    def by_name(region_id: str) -> tuple[str, str]:
        return _sort_key(regions_by_id[region_id])

    root_ids.sort(key=by_name)
    for ids in children_by_parent_id.values():
        ids.sort(key=by_name)

    return GeofabrikIndex(regions_by_id, children_by_parent_id, root_ids)


def load_geofabrik_index(
    session: requests.Session | None = None,
    urls: tuple[str, ...] = INDEX_URLS,
    request_timeout: int = 30,
) -> GeofabrikIndex:
    """Fetch the index, falling back to the next URL on any failure."""
    session = session or requests.Session()
    last_error: Exception | None = None
    for url in urls:
        try:
            resp = session.get(url, timeout=request_timeout)
            resp.raise_for_status()
            return parse_geofabrik_index(resp.json())
        except (requests.RequestException, ValueError, TypeError) as e:
            logger.warning("Failed to load Geofabrik index from %s: %s", url, e)
            last_error = e

    detail = f" Last error: {last_error}" if last_error else ""
    raise DownloadError(f"Failed to download Geofabrik index.{detail}")
