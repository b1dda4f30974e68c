from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from osm2arango.arango.client import ArangoClient, CollectionInfo
from osm2arango.arango.errors import ArangoApiError
from osm2arango.arango.transport import DriverImportTransport, ImportResult, ImportTransport
from tests.arango.conftest import FakeServerError


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def client(conn, db):
    return ArangoClient(conn, db=db)


class TestEnsureDatabaseAndCollection:
    def test_creates_database(self, client, db):
        client.ensure_database("osm")
        db.create_database.assert_called_once_with("osm")

    def test_existing_database_is_success(self, client, db):
        db.create_database.side_effect = FakeServerError("duplicate name", 409, 1207)
        client.ensure_database("osm")

    def test_other_database_errors_raise(self, client, db):
        db.create_database.side_effect = FakeServerError("forbidden", 403)
        with pytest.raises(ArangoApiError) as exc_info:
            client.ensure_database("osm")
        assert exc_info.value.status == 403

    def test_existing_collection_is_success(self, client, db):
        db.create_collection.side_effect = FakeServerError("duplicate name", 409)
        client.ensure_collection("features")
        db.create_collection.assert_called_once_with("features")

    def test_collection_error_without_status_maps_to_500(self, client, db):
        db.create_collection.side_effect = RuntimeError("")
        with pytest.raises(ArangoApiError, match="Failed to create collection: features") as e:
            client.ensure_collection("features")
        assert e.value.status == 500


class TestGetCollectionInfo:
    def test_returns_info(self, client, db):
        db.collection.return_value.properties.return_value = {
            "name": "features",
            "status": 3,
            "type": 2,
        }
        assert client.get_collection_info("features") == CollectionInfo("features", 3, 2)

    def test_missing_collection_returns_none(self, client, db):
        db.collection.return_value.properties.side_effect = FakeServerError("not found", 404)
        assert client.get_collection_info("features") is None


class TestIndexes:
    def test_geo_index(self, client, db):
        client.ensure_geo_index("features", ["geometry"], True, "geometry_geo")
        db.collection.return_value.add_index.assert_called_once_with(
            {"type": "geo", "fields": ["geometry"], "geoJson": True, "name": "geometry_geo"}
        )

    def test_persistent_index(self, client, db):
        client.ensure_persistent_index("features", ["tagsKeys[*]"], True, "tagsKeys_arr")
        db.collection.return_value.add_index.assert_called_once_with(
            {
                "type": "persistent",
                "fields": ["tagsKeys[*]"],
                "sparse": True,
                "unique": False,
                "name": "tagsKeys_arr",
            }
        )

    def test_conflict_is_success(self, client, db):
        db.collection.return_value.add_index.side_effect = FakeServerError("exists", 409)
        client.ensure_geo_index("features", ["geometry"], True)

    def test_other_errors_raise(self, client, db):
        db.collection.return_value.add_index.side_effect = FakeServerError("bad", 400, 10)
        with pytest.raises(ArangoApiError) as exc_info:
            client.ensure_geo_index("features", ["geometry"], True)
        assert exc_info.value.status == 400


class TestTransport:
    def test_driver_transport_reuses_db(self, client, db):
        transport = client.transport
        assert isinstance(transport, DriverImportTransport)
        assert transport._db is db

    def test_import_delegates_to_transport(self, conn, db):
        transport = MagicMock(spec=ImportTransport)
        transport.import_documents.return_value = ImportResult(created=1)
        client = ArangoClient(conn, db=db, transport=transport)

        assert client.import_documents("features", [{"_key": "a"}], "update") == ImportResult(
            created=1
        )
        transport.import_documents.assert_called_once_with("features", [{"_key": "a"}], "update")

        client.close()
        transport.close.assert_called_once()


class TestClose:
    @patch("osm2arango.arango.client.ArangoDriver")
    def test_closes_owned_driver(self, mock_driver, conn):
        client = ArangoClient(conn)
        mock_driver.assert_called_once_with(hosts=conn.url)

        client.close()
        client.close()
        mock_driver.return_value.close.assert_called_once()

    @patch("osm2arango.arango.client.ArangoDriver")
    def test_closes_transport_before_driver(self, mock_driver, conn):
        order = MagicMock()
        transport = MagicMock(spec=ImportTransport)
        order.attach_mock(transport.close, "transport_close")
        order.attach_mock(mock_driver.return_value.close, "driver_close")

        ArangoClient(conn, transport=transport).close()

        assert [c[0] for c in order.mock_calls] == ["transport_close", "driver_close"]

    def test_injected_db_is_not_closed(self, client, db):
        client.close()
        db.close.assert_not_called()
