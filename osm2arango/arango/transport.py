"""
Upload transports for ArangoDB's bulk import endpoint.

Three interchangeable strategies, chosen once per run by
``create_import_transport`` from ``ArangoConnectionConfig.import_transport``:

  - driver: python-arango ``Collection.import_bulk``.
  - http:   hand-built ``POST /_db/{db}/_api/import`` sent with requests.
  - curl:   the same request delegated to a ``curl`` child process.

Every strategy returns an ImportResult and raises ArangoApiError on any
failure. Nothing is retried.
"""

from __future__ import annotations

import base64
import json
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import requests
from arango import ArangoClient as ArangoDriver

from osm2arango.arango.errors import (
    DEFAULT_ERROR_STATUS,
    ArangoApiError,
    api_error_from_response,
    to_arango_api_error,
)
from osm2arango.config import ArangoConnectionConfig
from osm2arango.util.document_chunker import encode_document

logger = logging.getLogger(__name__)

ON_DUPLICATE_MODES = ("error", "update", "replace", "ignore")

LDJSON_CONTENT_TYPE = "application/x-ldjson"


@dataclass
class ImportResult:
    """Counts reported by one bulk import call."""

    created: int = 0
    updated: int = 0
    ignored: int = 0
    empty: int = 0
    errors: int = 0

    @classmethod
    def from_response(cls, payload: Any) -> ImportResult:
        if not isinstance(payload, dict):
            raise ArangoApiError(
                f"Unexpected import response: {payload!r}", DEFAULT_ERROR_STATUS
            )

        def count(name: str) -> int:
            value = payload.get(name)
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return cls(
            created=count("created"),
            updated=count("updated"),
            ignored=count("ignored"),
            empty=count("empty"),
            errors=count("errors"),
        )


# ------------------------------------------------------------------ #
#  Wire helpers
# ------------------------------------------------------------------ #


def build_import_path(database: str, collection: str, on_duplicate: str | None = None) -> str:
    params = [("collection", collection), ("type", "documents")]
    if on_duplicate:
        params.append(("onDuplicate", on_duplicate))
    return f"/_db/{quote(database, safe='')}/_api/import?{urlencode(params)}"


def build_import_url(
    base_url: str, database: str, collection: str, on_duplicate: str | None = None
) -> str:
    return base_url.rstrip("/") + build_import_path(database, collection, on_duplicate)


def encode_ldjson_body(docs: list[Any]) -> bytes:
    """One JSON document per line, with a trailing newline."""
    return b"".join(encode_document(doc) + b"\n" for doc in docs)


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def build_import_headers(username: str, password: str, body: bytes) -> dict[str, str]:
    return {
        "authorization": basic_auth_header(username, password),
        "accept": "application/json",
        "content-type": LDJSON_CONTENT_TYPE,
        "content-length": str(len(body)),
    }


def _parse_result_body(body_text: str, status: int) -> ImportResult:
    try:
        payload = json.loads(body_text)
    except ValueError:
        raise ArangoApiError(
            f"Invalid JSON in import response (HTTP {status}): {body_text[:200]!r}", status
        ) from None
    return ImportResult.from_response(payload)


# ------------------------------------------------------------------ #
#  Transports
# ------------------------------------------------------------------ #


class ImportTransport(ABC):
    """Sends one batch of documents to a collection's bulk import endpoint."""

    name: str = ""

    def __init__(self, conn: ArangoConnectionConfig) -> None:
        self.conn = conn

    @abstractmethod
    def import_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> ImportResult:
        """Upload ``docs`` in one request and return the server's counts."""

    def close(self) -> None:
        """Release pooled connections, if any."""


class DriverImportTransport(ImportTransport):
    """Bulk import through python-arango."""

    name = "driver"

    def __init__(self, conn: ArangoConnectionConfig, db: Any | None = None) -> None:
        super().__init__(conn)
        self._driver: ArangoDriver | None = None
        if db is None:
            self._driver = ArangoDriver(hosts=conn.url)
            db = self._driver.db(
                conn.database,
                username=conn.username,
                password=conn.password,
            )
        self._db = db

    def import_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> ImportResult:
        options: dict[str, Any] = {"halt_on_error": False, "details": False}
        if on_duplicate:
            options["on_duplicate"] = on_duplicate
        try:
            response = self._db.collection(collection).import_bulk(docs, **options)
        except Exception as e:
            raise to_arango_api_error(e, f"Import failed for collection: {collection}") from e
        return ImportResult.from_response(response)

    def close(self) -> None:
        if self._driver is not None:
            self._driver.close()
            self._driver = None


class HttpImportTransport(ImportTransport):
    """
    Builds the import request by hand and sends it as-is with
    ``Session.send``, so no session-level headers are merged in.

    requests.Session is not thread-safe, so each uploading thread gets its
    own session unless one is injected. ``close`` closes all of them.
    """

    name = "http"

    def __init__(
        self,
        conn: ArangoConnectionConfig,
        session: requests.Session | None = None,
        request_timeout: float = 300,
    ) -> None:
        super().__init__(conn)
        self.request_timeout = request_timeout
        self._session = session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def build_request(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> requests.PreparedRequest:
        body = encode_ldjson_body(docs)
        url = build_import_url(self.conn.url, self.conn.database, collection, on_duplicate)
        headers = build_import_headers(self.conn.username, self.conn.password, body)
        return requests.Request("POST", url, headers=headers, data=body).prepare()

    def import_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> ImportResult:
        prepared = self.build_request(collection, docs, on_duplicate)
        logger.debug("POST %s (%s bytes)", prepared.url, prepared.headers["content-length"])
        try:
            resp = self.session.send(prepared, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise to_arango_api_error(e, f"Import failed for collection: {collection}") from e

        try:
            if not 200 <= resp.status_code < 300:
                raise api_error_from_response(
                    resp.status_code, resp.text, f"Import failed for collection: {collection}"
                )
            return _parse_result_body(resp.text, resp.status_code)
        finally:
            resp.close()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()


class CurlImportTransport(ImportTransport):
    """
    Pipes the import body into ``curl``, which appends the HTTP status code
    as a final output line.
    """

    name = "curl"

    def __init__(
        self,
        conn: ArangoConnectionConfig,
        curl_path: str = "curl",
        request_timeout: float = 300,
    ) -> None:
        super().__init__(conn)
        self.curl_path = curl_path
        self.request_timeout = request_timeout

    def build_command(self, url: str, headers: dict[str, str]) -> list[str]:
        cmd = [self.curl_path, "-sS", "-X", "POST", url]
        for name, value in headers.items():
            cmd += ["-H", f"{name}: {value}"]
        cmd += ["--data-binary", "@-", "-w", "\n%{http_code}"]
        return cmd

    def import_documents(
        self,
        collection: str,
        docs: list[dict[str, Any]],
        on_duplicate: str | None = None,
    ) -> ImportResult:
        body = encode_ldjson_body(docs)
        url = build_import_url(self.conn.url, self.conn.database, collection, on_duplicate)
        headers = build_import_headers(self.conn.username, self.conn.password, body)
        fallback = f"Import failed for collection: {collection}"

        try:
            proc = subprocess.run(
                self.build_command(url, headers),
                input=body,
                capture_output=True,
                timeout=self.request_timeout,
            )
        except FileNotFoundError as e:
            raise ArangoApiError(
                f"curl binary not found ({self.curl_path}); use another import transport",
                DEFAULT_ERROR_STATUS,
            ) from e
        except (OSError, subprocess.SubprocessError) as e:
            raise to_arango_api_error(e, fallback) from e

        output = proc.stdout.decode("utf-8", errors="replace")
        body_text, _, status_line = output.rpartition("\n")
        status = int(status_line) if status_line.strip().isdigit() else None

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise ArangoApiError(
                f"curl exited with code {proc.returncode}: {stderr or fallback}",
                status or DEFAULT_ERROR_STATUS,
            )
        if status is None or not 200 <= status < 300:
            raise api_error_from_response(status or DEFAULT_ERROR_STATUS, body_text, fallback)
        return _parse_result_body(body_text, status)


def create_import_transport(conn: ArangoConnectionConfig, **kwargs: Any) -> ImportTransport:
    """Instantiate the transport named by ``conn.import_transport``."""
    if conn.import_transport == "driver":
        return DriverImportTransport(conn, **kwargs)
    if conn.import_transport == "http":
        return HttpImportTransport(conn, **kwargs)
    if conn.import_transport == "curl":
        return CurlImportTransport(conn, **kwargs)
    raise ValueError(f"Unknown import transport: {conn.import_transport!r}")
