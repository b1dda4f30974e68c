from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from arango import ArangoClient as ArangoDriver

from osm2arango.arango.errors import (
    HTTP_CONFLICT,
    HTTP_NOT_FOUND,
    status_code_from_error,
    to_arango_api_error,
)
from osm2arango.arango.transport import ImportResult, ImportTransport, create_import_transport
from osm2arango.config import ArangoConnectionConfig

logger = logging.getLogger(__name__)


@dataclass
class CollectionInfo:
    name: str
    status: int | None = None
    type: int | None = None


class ArangoClient:
    """
    Database, collection, and index management for one database, plus
    bulk import through the configured upload transport.

    Creation calls are idempotent: a 409 Conflict from the server means
    the object already exists and is treated as success.

    Parameters
    ----------
    conn : ArangoConnectionConfig
    db : python-arango StandardDatabase, optional
        Injected database handle. Built from ``conn`` when omitted.
    transport : ImportTransport, optional
        Upload strategy. Built lazily from ``conn.import_transport`` when
        omitted.
    """

    def __init__(
        self,
        conn: ArangoConnectionConfig,
        db: Any | None = None,
        transport: ImportTransport | None = None,
    ) -> None:
        self.conn = conn
        # Only set when this client built the driver itself.
        self._driver: ArangoDriver | None = None
        if db is None:
            self._driver = ArangoDriver(hosts=conn.url)
            db = self._driver.db(
                conn.database,
                username=conn.username,
                password=conn.password,
            )
        self._db = db
        self._transport = transport
        self.logger = logging.getLogger("osm2arango.arango_client")

    @property
    def transport(self) -> ImportTransport:
        if self._transport is None:
            if self.conn.import_transport == "driver":
                self._transport = create_import_transport(self.conn, db=self._db)
            else:
                self._transport = create_import_transport(self.conn)
        return self._transport

    def ensure_database(self, name: str) -> None:
        """Create ``name``. Must be called on a client bound to ``_system``."""
        try:
            self._db.create_database(name)
            self.logger.info("Created database %s", name)
        except Exception as e:
            if status_code_from_error(e) == HTTP_CONFLICT:
                self.logger.info("Database %s already exists", name)
                return
            raise to_arango_api_error(e, f"Failed to create database: {name}") from e

    def ensure_collection(self, name: str) -> None:
        try:
            self._db.create_collection(name)
            self.logger.info("Created collection %s", name)
        except Exception as e:
            if status_code_from_error(e) == HTTP_CONFLICT:
                self.logger.info("Collection %s already exists", name)
                return
            raise to_arango_api_error(e, f"Failed to create collection: {name}") from e

    def get_collection_info(self, name: str) -> CollectionInfo | None:
        """Collection properties, or None if the collection does not exist."""
        try:
            props = self._db.collection(name).properties()
        except Exception as e:
            if status_code_from_error(e) == HTTP_NOT_FOUND:
                return None
            raise to_arango_api_error(e, f"Failed to load collection info: {name}") from e
        status = props.get("status")
        collection_type = props.get("type")
        return CollectionInfo(
            name=props.get("name", name),
            status=status if isinstance(status, int) else None,
            type=collection_type if isinstance(collection_type, int) else None,
        )

    def ensure_geo_index(
        self,
        collection: str,
        fields: list[str],
        geo_json: bool,
        name: str | None = None,
    ) -> None:
        options: dict[str, Any] = {"type": "geo", "fields": fields, "geoJson": geo_json}
        if name:
            options["name"] = name
        self._ensure_index(collection, options, f"Failed to create geo index on {collection}")

    def ensure_persistent_index(
        self,
        collection: str,
        fields: list[str],
        sparse: bool,
        name: str | None = None,
    ) -> None:
        options: dict[str, Any] = {
            "type": "persistent",
            "fields": fields,
            "sparse": sparse,
            "unique": False,
        }
        if name:
            options["name"] = name
        self._ensure_index(
            collection, options, f"Failed to create persistent index on {collection}"
        )

    def _ensure_index(self, collection: str, options: dict[str, Any], message: str) -> None:
        try:
            self._db.collection(collection).add_index(options)
            self.logger.info(
                "Ensured %s index %s on %s", options["type"], options["fields"], collection
            )
        except Exception as e:
            if status_code_from_error(e) == HTTP_CONFLICT:
                return
            raise to_arango_api_error(e, message) from e

    def import_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> ImportResult:
        return self.transport.import_documents(collection, docs, on_duplicate)

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
        if self._driver is not None:
            self._driver.close()
            self._driver = None


def create_arango_client(conn: ArangoConnectionConfig) -> ArangoClient:
    return ArangoClient(conn)
