from __future__ import annotations

import logging
from collections.abc import Callable

from osm2arango.arango.client import ArangoClient, create_arango_client
from osm2arango.config import ArangoConnectionConfig

logger = logging.getLogger(__name__)

INDEX_SETS = ("all", "none", "geo", "tags")

SYSTEM_DATABASE = "_system"


def bootstrap_arango(
    conn: ArangoConnectionConfig,
    collection: str,
    indexes: str = "all",
    client_factory: Callable[[ArangoConnectionConfig], ArangoClient] = create_arango_client,
) -> None:
    """
    Create the target database, the feature collection, and its indexes.

    Safe to re-run: objects that already exist are left alone.

    Index sets:
        geo   GeoJSON geo index on ``geometry`` (for GEO_* functions).
        tags  Sparse array indexes on ``tagsKeys[*]`` and ``tagsKV[*]``.
        all   geo + tags.
        none  collection only.
    """
    if indexes not in INDEX_SETS:
        raise ValueError(f"indexes must be one of {INDEX_SETS}, got {indexes!r}")

    # Databases can only be created through _system.
    system_client = client_factory(conn.for_database(SYSTEM_DATABASE))
    try:
        system_client.ensure_database(conn.database)
    finally:
        system_client.close()

    db_client = client_factory(conn)
    try:
        db_client.ensure_collection(collection)

        if indexes in ("geo", "all"):
            db_client.ensure_geo_index(collection, ["geometry"], True, "geometry_geo")

        if indexes in ("tags", "all"):
            db_client.ensure_persistent_index(collection, ["tagsKeys[*]"], True, "tagsKeys_arr")
            db_client.ensure_persistent_index(collection, ["tagsKV[*]"], True, "tagsKV_arr")
    finally:
        db_client.close()

    logger.info(
        "Bootstrapped database=%s collection=%s indexes=%s",
        conn.database,
        collection,
        indexes,
    )
