from __future__ import annotations

import json
import math
from typing import Any


def encode_document(doc: Any) -> bytes:
    """
    Serialize one document exactly as it is written to the import body.

    Lone surrogates (valid in JSON input, not encodable as UTF-8) are
    written back as their \\uXXXX escape.
    """
    return json.dumps(doc, ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8", "backslashreplace"
    )


def estimate_document_bytes(doc: Any) -> int:
    """Wire size of a document plus its one-byte record separator."""
    return len(encode_document(doc)) + 1


class DocumentChunker:
    """
    Groups documents into batches whose estimated wire size stays under
    ``max_bytes``.

    A document that alone exceeds ``max_bytes`` still forms a batch of its
    own; it is never split.

    Usage:
        chunker = DocumentChunker(8 * 1024 * 1024)
        for doc in docs:
            batch = chunker.push(doc)
            if batch:
                upload(batch)
        batch = chunker.flush()
        if batch:
            upload(batch)
    """

    def __init__(self, max_bytes: int) -> None:
        if not math.isfinite(max_bytes) or max_bytes <= 0:
            raise ValueError(f"Invalid max_bytes: {max_bytes}")
        self.max_bytes = max_bytes
        self._docs: list[Any] = []
        self._bytes = 0

    @property
    def pending_documents(self) -> int:
        return len(self._docs)

    @property
    def pending_bytes(self) -> int:
        return self._bytes

    def push(self, doc: Any, estimated_bytes: int | None = None) -> list[Any] | None:
        """
        Add a document. Returns the previously open batch when this document
        would push it past ``max_bytes``, otherwise None.
        """
        doc_bytes = estimated_bytes if estimated_bytes is not None else estimate_document_bytes(doc)

        batch = None
        if self._docs and self._bytes + doc_bytes > self.max_bytes:
            batch = self.flush()

        self._docs.append(doc)
        self._bytes += doc_bytes
        return batch

    def flush(self) -> list[Any] | None:
        """Return and clear the open batch, or None if it is empty."""
        if not self._docs:
            return None
        batch = self._docs
        self._docs = []
        self._bytes = 0
        return batch
