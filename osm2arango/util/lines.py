"""
Byte-accurate line reading for newline-delimited input.

Splits an arbitrary sequence of byte chunks on ``\\n`` (0x0A) and yields
decoded text lines. Lines are assembled from raw bytes before decoding, so
a line (or a multi-byte UTF-8 character) split across chunk boundaries is
reassembled exactly.

Usage:
    with open("berlin.ndjson", "rb") as f:
        for line in read_lines(iter_byte_chunks(f), max_line_bytes=1 << 20):
            ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import BinaryIO

from osm2arango.exceptions import LineTooLongError

logger = logging.getLogger(__name__)

TOO_LONG_LINE_MODES = ("skip", "error")

RECORD_SEPARATOR = "\x1e"

DEFAULT_CHUNK_SIZE = 1 << 16


def iter_byte_chunks(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive reads from a binary stream until EOF."""
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        yield chunk


def strip_record_separator(line: str) -> str:
    """Drop a single leading RS (0x1E) control character, as written by geojsonseq."""
    if line.startswith(RECORD_SEPARATOR):
        return line[1:]
    return line


def read_lines(
    chunks: Iterable[bytes],
    max_line_bytes: int | None = None,
    too_long_line: str = "skip",
    on_too_long_line: Callable[[int, int], None] | None = None,
    flush_final_partial_line: bool = True,
    on_partial_final_line: Callable[[int], None] | None = None,
    errors: str = "replace",
) -> Iterator[str]:
    """
    Lazily turn byte chunks into UTF-8 decoded lines.

    Args:
        chunks:                   Ordered, forward-only byte chunks.
        max_line_bytes:           Byte limit for a single line, excluding the
                                  newline. None disables the check.
        too_long_line:            "skip" drops the line and resumes after its
                                  newline; "error" raises LineTooLongError.
        on_too_long_line:         Called as (observed_bytes, max_line_bytes)
                                  for every skipped line.
        flush_final_partial_line: Yield bytes after the last newline as a final
                                  line. When False they are reported to
                                  on_partial_final_line and dropped.
        on_partial_final_line:    Called with the trailing byte count.
        errors:                   Codec error handler used when decoding.

    Yields:
        Decoded lines without their terminating newline.
    """
    if too_long_line not in TOO_LONG_LINE_MODES:
        raise ValueError(
            f"too_long_line must be one of {TOO_LONG_LINE_MODES}, got {too_long_line!r}"
        )
    if max_line_bytes is not None and max_line_bytes <= 0:
        raise ValueError(f"Invalid max_line_bytes: {max_line_bytes}")

    buf = bytearray()
    # While dropping, bytes of the current oversized line are counted but not kept.
    dropping = False
    dropped = 0

    def _report_too_long(observed: int) -> None:
        logger.debug("Skipping line of %d bytes (limit %d)", observed, max_line_bytes)
        if on_too_long_line is not None:
            on_too_long_line(observed, max_line_bytes)

    for chunk in chunks:
        start = 0
        size = len(chunk)
        while start < size:
            idx = chunk.find(b"\n", start)
            end = size if idx == -1 else idx
            piece = end - start

            if dropping:
                dropped += piece
            elif max_line_bytes is not None and len(buf) + piece > max_line_bytes:
                observed = len(buf) + piece
                if too_long_line == "error":
                    raise LineTooLongError(observed, max_line_bytes)
                dropping = True
                dropped = observed
                buf.clear()
            else:
                buf += chunk[start:end]

            if idx == -1:
                break

            if dropping:
                _report_too_long(dropped)
                dropping = False
                dropped = 0
            else:
                line = buf.decode("utf-8", errors)
                buf.clear()
                yield line
            start = idx + 1

    if dropping:
        _report_too_long(dropped)
    elif buf:
        if flush_final_partial_line:
            yield buf.decode("utf-8", errors)
        else:
            logger.debug("Dropping %d trailing bytes without a newline", len(buf))
            if on_partial_final_line is not None:
                on_partial_final_line(len(buf))
