from __future__ import annotations

import pytest

from osm2arango.config import ArangoConnectionConfig


class FakeServerError(Exception):
    """Mimics python-arango's ArangoServerError attributes."""

    def __init__(self, message: str, http_code: int, error_code: int | None = None):
        super().__init__(message)
        self.http_code = http_code
        self.error_code = error_code


@pytest.fixture
def conn():
    return ArangoConnectionConfig(
        url="http://arango:8529/",
        database="osm db",
        username="root",
        password="secret",
    )
