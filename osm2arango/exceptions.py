from __future__ import annotations


class Osm2ArangoError(Exception):
    """Base class for errors raised by an import, bootstrap, or download run."""


class ConfigError(Osm2ArangoError):
    """Connection settings or numeric options are missing or invalid."""


class MalformedRecordError(Osm2ArangoError):
    """An input line could not be parsed or normalized into a feature document."""


class UnsupportedGeometryError(Osm2ArangoError):
    """A feature carries a geometry type the target geo index cannot handle."""

    def __init__(self, geometry_type: str) -> None:
        super().__init__(
            f"Unsupported GeoJSON geometry type: {geometry_type}. "
            "ArangoDB geo indexes / Geo utility functions require GeoJSON Geometry "
            "Objects like Point/Polygon/MultiPolygon. "
            "Use --unsupported-geometry=skip (default) or --unsupported-geometry=keep."
        )
        self.geometry_type = geometry_type


class LineTooLongError(Osm2ArangoError):
    """An input line grew past the configured byte limit."""

    def __init__(self, observed_bytes: int, max_line_bytes: int) -> None:
        super().__init__(
            f"Input line exceeds max line bytes ({observed_bytes} > {max_line_bytes}). "
            "Raise --max-line-mb or use --too-long-line=skip."
        )
        self.observed_bytes = observed_bytes
        self.max_line_bytes = max_line_bytes


class ConversionProcessError(Osm2ArangoError):
    """The external osmium conversion process could not start or exited abnormally."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class ImportFailedError(Osm2ArangoError):
    """The import finished but the run as a whole must be reported as failed."""


class DownloadError(Osm2ArangoError):
    """An extract or index download returned a non-success response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
