"""
ArangoDB API error type and the mapping rules shared by every transport
and by the bootstrap client.

Any failure (driver exception, non-2xx HTTP response, failed curl process)
becomes an ArangoApiError carrying a message, a numeric HTTP-style status,
and the ArangoDB ``errorNum`` when the server reported one.
"""

from __future__ import annotations

import json
from typing import Any

from osm2arango.exceptions import Osm2ArangoError

DEFAULT_ERROR_STATUS = 500

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


class ArangoApiError(Osm2ArangoError):
    """A request to ArangoDB failed."""

    def __init__(self, message: str, status: int, error_num: int | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.error_num = error_num

    def __repr__(self) -> str:
        return f"ArangoApiError({str(self)!r}, status={self.status}, error_num={self.error_num})"


def _as_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def status_code_from_error(err: Any) -> int | None:
    """Find an HTTP status on a driver/requests exception, if it carries one."""
    for attr in ("http_code", "status_code", "code", "status"):
        status = _as_int(getattr(err, attr, None))
        if status is not None:
            return status

    response = getattr(err, "response", None)
    if response is not None:
        for attr in ("status_code", "status", "statusCode"):
            status = _as_int(getattr(response, attr, None))
            if status is not None:
                return status
    return None


def error_num_from_error(err: Any) -> int | None:
    """Find the ArangoDB errorNum on an exception or its response body."""
    for attr in ("error_code", "error_num", "errorNum"):
        num = _as_int(getattr(err, attr, None))
        if num is not None:
            return num

    response = getattr(err, "response", None)
    body = getattr(response, "body", None) if response is not None else None
    if isinstance(body, dict):
        return _as_int(body.get("errorNum"))
    return None


def to_arango_api_error(err: BaseException, fallback_message: str) -> ArangoApiError:
    if isinstance(err, ArangoApiError):
        return err
    status = status_code_from_error(err)
    message = str(err) or fallback_message
    return ArangoApiError(
        message,
        status if status is not None else DEFAULT_ERROR_STATUS,
        error_num_from_error(err),
    )


def parse_error_body(body_text: str) -> tuple[str | None, int | None]:
    """Pull (errorMessage, errorNum) out of an ArangoDB JSON error body."""
    try:
        body = json.loads(body_text)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(body, dict):
        return None, None
    message = body.get("errorMessage")
    return (message if isinstance(message, str) and message else None), _as_int(
        body.get("errorNum")
    )


def api_error_from_response(status: int, body_text: str, fallback_message: str) -> ArangoApiError:
    message, error_num = parse_error_body(body_text)
    return ArangoApiError(message or f"{fallback_message} (HTTP {status})", status, error_num)
