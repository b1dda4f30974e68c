"""
Streaming import of OSM feature records into an ArangoDB collection.

Reads newline-delimited records (an NDJSON file, or the stdout of
``osmium export -f geojsonseq``), normalizes and filters them, groups them
into byte-bounded batches, and uploads the batches with a bounded number
of concurrent requests.

Usage:
    from osm2arango.config import resolve_arango_connection_config
    from osm2arango.domain.importer import ImportOptions, import_osm

    conn = resolve_arango_connection_config()
    summary = import_osm(
        conn,
        "berlin-latest.osm.pbf",
        ImportOptions(collection="osm_features", adapter="osmium-geojsonseq"),
        progress=print,
    )
    print(summary.created, summary.skipped_unsupported_geometry)
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from osm2arango.arango.client import ArangoClient, create_arango_client
from osm2arango.arango.transport import ON_DUPLICATE_MODES, ImportResult, ImportTransport
from osm2arango.config import ArangoConnectionConfig
from osm2arango.exceptions import (
    ImportFailedError,
    MalformedRecordError,
    UnsupportedGeometryError,
)
from osm2arango.osm.geojson import geometry_type_of, is_supported_geometry_type
from osm2arango.osm.osmium import (
    normalize_input_to_doc,
    osmium_exit_failure,
    osmium_feature_to_doc,
    spawn_osmium_export,
)
from osm2arango.osm.profile import IMPORT_PROFILES, should_import_feature_for_profile
from osm2arango.util.document_chunker import DocumentChunker
from osm2arango.util.lines import (
    TOO_LONG_LINE_MODES,
    iter_byte_chunks,
    read_lines,
    strip_record_separator,
)
from osm2arango.util.progress import ThrottledProgress

logger = logging.getLogger(__name__)

ADAPTERS = ("osmium-geojsonseq", "ndjson")
UNSUPPORTED_GEOMETRY_MODES = ("skip", "keep", "error")
INVALID_JSON_MODES = ("error", "skip")
PHASES = ("reading", "importing", "finalizing", "done")

DEFAULT_CHUNK_BYTES = 8 * 1024 * 1024


@dataclass
class ImportOptions:
    """
    Settings for one import run.

    Attributes:
        collection:               Target collection (must already exist).
        adapter:                  "ndjson" or "osmium-geojsonseq".
        chunk_bytes:              Upper bound on the estimated payload of one batch.
        concurrency:              Maximum number of batch uploads in flight.
        on_duplicate:             ArangoDB onDuplicate mode for existing _keys.
        unsupported_geometry:     "skip", "keep", or "error" for geometry types
                                  the geo index cannot handle.
        profile:                  Tag-based inclusion filter (see osm.profile).
        max_line_bytes:           Per-line byte limit. None disables it.
        too_long_line:            "skip" or "error" for lines over the limit.
        invalid_json:             "error" or "skip" for unparseable lines.
        flush_final_partial_line: Treat bytes after the last newline as a record.
        progress_interval:        Minimum seconds between throttled progress events.
        osmium_path:              osmium binary for the osmium-geojsonseq adapter.
    """

    collection: str
    adapter: str = "ndjson"
    chunk_bytes: int = DEFAULT_CHUNK_BYTES
    concurrency: int = 2
    on_duplicate: str = "update"
    unsupported_geometry: str = "skip"
    profile: str = "all"
    max_line_bytes: int | None = None
    too_long_line: str = "skip"
    invalid_json: str = "error"
    flush_final_partial_line: bool = True
    progress_interval: float = 1.0
    osmium_path: str = "osmium"

    def __post_init__(self):
        choices = {
            "adapter": ADAPTERS,
            "on_duplicate": ON_DUPLICATE_MODES,
            "unsupported_geometry": UNSUPPORTED_GEOMETRY_MODES,
            "profile": IMPORT_PROFILES,
            "too_long_line": TOO_LONG_LINE_MODES,
            "invalid_json": INVALID_JSON_MODES,
        }
        for name, allowed in choices.items():
            value = getattr(self, name)
            if value not in allowed:
                raise ValueError(f"{name} must be one of {allowed}, got {value!r}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.chunk_bytes <= 0:
            raise ValueError(f"chunk_bytes must be > 0, got {self.chunk_bytes}")


@dataclass
class ImportSummary:
    """Counters accumulated over one import run."""

    seen: int = 0
    created: int = 0
    updated: int = 0
    ignored: int = 0
    empty: int = 0
    errors: int = 0
    skipped_unsupported_geometry: int = 0
    skipped_by_profile: int = 0
    skipped_too_long_lines: int = 0
    skipped_invalid_json_lines: int = 0
    skipped_partial_final_lines: int = 0
    max_too_long_line_bytes: int = 0
    unsupported_geometry_mode: str = "skip"
    profile: str = "all"
    geometry_type_counts: dict[str, int] = field(default_factory=dict)
    unsupported_geometry_type_counts: dict[str, int] = field(default_factory=dict)

    def add_result(self, result: ImportResult) -> None:
        self.created += result.created
        self.updated += result.updated
        self.ignored += result.ignored
        self.empty += result.empty
        self.errors += result.errors


@dataclass(frozen=True)
class ImportProgress:
    """Point-in-time snapshot delivered to the progress sink."""

    phase: str
    adapter: str
    seen: int
    created: int
    updated: int
    ignored: int
    empty: int
    errors: int
    skipped_unsupported_geometry: int
    skipped_by_profile: int
    skipped_too_long_lines: int
    skipped_invalid_json_lines: int
    in_flight: int
    unsupported_geometry_mode: str


class ImportOrchestrator:
    """
    Drives one import: lines -> documents -> batches -> concurrent uploads.

    Documents are read, filtered and batched strictly in input order.
    Uploads run on a thread pool with at most ``options.concurrency``
    outstanding; completion order is not guaranteed, so every counter is a
    plain sum. Results are folded into the summary on the calling thread
    when their future is collected, so the summary is never shared across
    threads.

    Any fatal condition aborts the run with a single exception. Batches not
    yet dispatched are never started; uploads already in flight are left to
    finish on their own and their results are discarded.

    Parameters
    ----------
    transport : ImportTransport
    options : ImportOptions
    progress : callable, optional
        Receives ImportProgress snapshots, throttled to
        ``options.progress_interval`` except on phase transitions.
    normalize : callable
        Turns a parsed JSON value into a feature document.
    profile_filter : callable
        ``(doc, profile) -> bool``; False drops the document.
    clock : callable
        Monotonic time source for progress throttling.
    """

    def __init__(
        self,
        transport: ImportTransport,
        options: ImportOptions,
        progress: Callable[[ImportProgress], None] | None = None,
        normalize: Callable[[Any], dict[str, Any]] = normalize_input_to_doc,
        profile_filter: Callable[[dict[str, Any], str], bool] = should_import_feature_for_profile,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.options = options
        self._normalize = normalize
        self._profile_filter = profile_filter
        self._progress = ThrottledProgress(progress, options.progress_interval, clock)
        self.logger = logging.getLogger("osm2arango.import_orchestrator")

        self.summary = self._new_summary()
        self.phase = PHASES[0]
        self.batches_dispatched = 0
        self._in_flight: set[Future[ImportResult]] = set()
        self._line_number = 0

    def _new_summary(self) -> ImportSummary:
        return ImportSummary(
            unsupported_geometry_mode=self.options.unsupported_geometry,
            profile=self.options.profile,
        )

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #

    def run(self, chunks: Iterable[bytes]) -> ImportSummary:
        """
        Import every record in ``chunks`` and return the final summary.

        Raises ImportFailedError if the server reported document errors,
        and propagates the first fatal error otherwise.
        """
        opts = self.options
        self.summary = self._new_summary()
        self.phase = PHASES[0]
        self.batches_dispatched = 0
        self._in_flight = set()
        self._line_number = 0

        chunker = DocumentChunker(opts.chunk_bytes)
        executor = ThreadPoolExecutor(
            max_workers=opts.concurrency,
            thread_name_prefix="arango-import",
        )
        started = time.monotonic()
        self.logger.info(
            "Importing into %s (adapter=%s, transport=%s, chunk_bytes=%d, concurrency=%d)",
            opts.collection,
            opts.adapter,
            self.transport.name,
            opts.chunk_bytes,
            opts.concurrency,
        )
        self._report(force=True)

        try:
            for line in self._lines(chunks):
                doc = self._process_line(line)
                if doc is None:
                    continue
                batch = chunker.push(doc)
                if batch:
                    self._dispatch(executor, batch)

            batch = chunker.flush()
            if batch:
                self._dispatch(executor, batch)

            self._set_phase("finalizing")
            for future in as_completed(list(self._in_flight)):
                self._settle(future)
            self._set_phase("done")
        finally:
            # Uploads still running after a failure are not cancelled.
            executor.shutdown(wait=False)

        summary = self.summary
        elapsed = time.monotonic() - started
        rate = summary.seen / elapsed if elapsed > 0 else 0
        self.logger.info(
            "Import into %s finished: seen=%d created=%d updated=%d ignored=%d "
            "empty=%d errors=%d batches=%d (%.0f docs/sec)",
            opts.collection,
            summary.seen,
            summary.created,
            summary.updated,
            summary.ignored,
            summary.empty,
            summary.errors,
            self.batches_dispatched,
            rate,
        )
        self._log_skips()

        if summary.errors > 0:
            raise ImportFailedError(
                f"Import finished with errors: {summary.errors} "
                f"(created: {summary.created}, updated: {summary.updated})"
            )
        return summary

    # ------------------------------------------------------------------ #
    #  Reading and per-record processing
    # ------------------------------------------------------------------ #

    def _lines(self, chunks: Iterable[bytes]) -> Iterator[str]:
        opts = self.options
        return read_lines(
            chunks,
            max_line_bytes=opts.max_line_bytes,
            too_long_line=opts.too_long_line,
            on_too_long_line=self._on_too_long_line,
            flush_final_partial_line=opts.flush_final_partial_line,
            on_partial_final_line=self._on_partial_final_line,
        )

    def _on_too_long_line(self, observed_bytes: int, max_line_bytes: int) -> None:
        self._line_number += 1
        self.summary.skipped_too_long_lines += 1
        self.summary.max_too_long_line_bytes = max(
            self.summary.max_too_long_line_bytes, observed_bytes
        )
        self._report()

    def _on_partial_final_line(self, trailing_bytes: int) -> None:
        self.summary.skipped_partial_final_lines += 1
        self.logger.warning(
            "Dropped %d trailing bytes without a final newline", trailing_bytes
        )

    def _process_line(self, raw_line: str) -> dict[str, Any] | None:
        """Parse, normalize, count and filter one line. None means dropped."""
        self._line_number += 1
        line = strip_record_separator(raw_line).strip()
        if not line:
            return None

        try:
            parsed = json.loads(line)
        except json.JSONDecodeError as e:
            if self.options.invalid_json == "skip":
                self.summary.skipped_invalid_json_lines += 1
                self.logger.debug("Skipping invalid JSON on line %d: %s", self._line_number, e)
                self._report()
                return None
            raise MalformedRecordError(
                f"Invalid JSON on input line {self._line_number}: {e}"
            ) from e

        doc = self._normalize(parsed)

        summary = self.summary
        geometry_type = geometry_type_of(doc)
        summary.seen += 1
        summary.geometry_type_counts[geometry_type] = (
            summary.geometry_type_counts.get(geometry_type, 0) + 1
        )

        if not self._profile_filter(doc, self.options.profile):
            summary.skipped_by_profile += 1
            self._report()
            return None

        if is_supported_geometry_type(geometry_type):
            self._report()
            return doc

        summary.unsupported_geometry_type_counts[geometry_type] = (
            summary.unsupported_geometry_type_counts.get(geometry_type, 0) + 1
        )
        mode = self.options.unsupported_geometry
        if mode == "keep":
            self._report()
            return doc
        if mode == "error":
            raise UnsupportedGeometryError(geometry_type)

        summary.skipped_unsupported_geometry += 1
        self._report()
        return None

    # ------------------------------------------------------------------ #
    #  Bounded-concurrency dispatch
    # ------------------------------------------------------------------ #

    def _dispatch(self, executor: ThreadPoolExecutor, batch: list[dict[str, Any]]) -> None:
        # Surface failures from uploads that already finished.
        for future in [f for f in self._in_flight if f.done()]:
            self._settle(future)

        while len(self._in_flight) >= self.options.concurrency:
            done, _ = wait(self._in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                self._settle(future)

        if self.phase == "reading":
            self._set_phase("importing")

        future = executor.submit(self._upload, batch)
        self._in_flight.add(future)
        self.batches_dispatched += 1

    def _upload(self, batch: list[dict[str, Any]]) -> ImportResult:
        self.logger.debug("Uploading batch of %d documents", len(batch))
        return self.transport.import_documents(
            self.options.collection,
            batch,
            self.options.on_duplicate,
        )

    def _settle(self, future: Future[ImportResult]) -> None:
        self._in_flight.discard(future)
        try:
            result = future.result()
        except Exception as e:
            self.logger.error("Batch upload to %s failed: %s", self.options.collection, e)
            raise
        self.summary.add_result(result)
        self._report()

    # ------------------------------------------------------------------ #
    #  Progress
    # ------------------------------------------------------------------ #

    def _set_phase(self, phase: str) -> None:
        self.phase = phase
        self._report(force=True)

    def _report(self, force: bool = False) -> None:
        self._progress.emit(self._snapshot, force=force)

    def _snapshot(self) -> ImportProgress:
        s = self.summary
        return ImportProgress(
            phase=self.phase,
            adapter=self.options.adapter,
            seen=s.seen,
            created=s.created,
            updated=s.updated,
            ignored=s.ignored,
            empty=s.empty,
            errors=s.errors,
            skipped_unsupported_geometry=s.skipped_unsupported_geometry,
            skipped_by_profile=s.skipped_by_profile,
            skipped_too_long_lines=s.skipped_too_long_lines,
            skipped_invalid_json_lines=s.skipped_invalid_json_lines,
            in_flight=len(self._in_flight),
            unsupported_geometry_mode=self.options.unsupported_geometry,
        )

    def _log_skips(self) -> None:
        s = self.summary
        if s.skipped_too_long_lines:
            self.logger.warning(
                "Skipped %d lines over %s bytes (largest: %d bytes)",
                s.skipped_too_long_lines,
                self.options.max_line_bytes,
                s.max_too_long_line_bytes,
            )
        if s.skipped_invalid_json_lines:
            self.logger.warning("Skipped %d lines with invalid JSON", s.skipped_invalid_json_lines)
        if s.unsupported_geometry_type_counts:
            self.logger.warning(
                "Unsupported geometry types (%s): %s",
                self.options.unsupported_geometry,
                s.unsupported_geometry_type_counts,
            )


# ------------------------------------------------------------------ #
#  Entry point
# ------------------------------------------------------------------ #


def import_osm(
    conn: ArangoConnectionConfig,
    input_path: str | Path,
    options: ImportOptions,
    client_factory: Callable[[ArangoConnectionConfig], ArangoClient] = create_arango_client,
    progress: Callable[[ImportProgress], None] | None = None,
) -> ImportSummary:
    """
    Import an NDJSON file or an .osm.pbf extract (through osmium) into
    ``options.collection``.
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    client = client_factory(conn)
    try:
        if client.get_collection_info(options.collection) is None:
            raise ImportFailedError(
                f"Collection not found: {options.collection}. Run: osm2arango bootstrap"
            )

        if options.adapter == "ndjson":
            orchestrator = ImportOrchestrator(
                client.transport, options, progress=progress, normalize=normalize_input_to_doc
            )
            with open(input_path, "rb") as f:
                return orchestrator.run(iter_byte_chunks(f))

        orchestrator = ImportOrchestrator(
            client.transport, options, progress=progress, normalize=osmium_feature_to_doc
        )
        proc = spawn_osmium_export(input_path, options.osmium_path)
        try:
            return orchestrator.run(_osmium_output(proc))
        finally:
            _reap(proc)
    finally:
        client.close()


def _osmium_output(proc: subprocess.Popen) -> Iterator[bytes]:
    """Stream osmium's stdout, then fail before the final flush if it exited badly."""
    yield from iter_byte_chunks(proc.stdout)
    returncode = proc.wait()
    if returncode != 0:
        raise osmium_exit_failure(returncode)


def _reap(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        logger.info("Stopping osmium (pid %d)", proc.pid)
        proc.kill()
        proc.wait()
    if proc.stdout is not None:
        proc.stdout.close()
