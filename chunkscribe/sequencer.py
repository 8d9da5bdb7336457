"""
chunkscribe.sequencer - In-order delivery of out-of-order transcriptions.

Chunks finish transcribing in any order. The sequencer buffers each result by
sequence number and releases them to the document strictly in capture order,
filtering out empty text and non-speech annotations on the way. Failed chunks
are submitted with empty text so they never hold back later chunks, and a
chunk the document refuses is logged and skipped.
"""

from __future__ import annotations

import threading
from typing import Iterable

from chunkscribe.config import DEFAULT_FILLER_TOKENS
from chunkscribe.document import DocumentSink
from chunkscribe.logging import logger

_ANNOTATION_BRACKETS = (("[", "]"), ("(", ")"))


class ContentFilter:
    """Decides whether a transcript is speech worth inserting."""

    def __init__(self, filler_tokens: Iterable[str] = DEFAULT_FILLER_TOKENS) -> None:
        self.filler_tokens = frozenset(filler_tokens)

    def accepts(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        if text in self.filler_tokens:
            return False
        for opening, closing in _ANNOTATION_BRACKETS:
            if text.startswith(opening) and text.endswith(closing):
                return False
        return True


class ResultSequencer:
    """Releases submitted texts to a DocumentSink in sequence order.

    Invariants: next_expected only increases, and the pending buffer never
    holds a sequence number below it.
    """

    def __init__(
        self,
        sink: DocumentSink,
        cursor: int = 0,
        content_filter: ContentFilter | None = None,
        first_seq: int = 1,
    ) -> None:
        self.sink = sink
        self.content_filter = content_filter or ContentFilter()
        self._cursor = cursor
        self._next_expected = first_seq
        self._pending: dict[int, str] = {}
        self._lock = threading.Lock()

    @property
    def next_expected(self) -> int:
        return self._next_expected

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, seq: int, text: str | None) -> list[str]:
        """Record the terminal result for seq and flush whatever is now in order.

        Args:
            seq: Capture-order sequence number
            text: Transcript, or None/"" for a dropped chunk

        Returns:
            Texts inserted into the sink by this call, in order
        """
        with self._lock:
            if seq < self._next_expected or seq in self._pending:
                logger.warning("Chunk #%d submitted twice, ignoring", seq)
                return []
            self._pending[seq] = text or ""
            return self._flush()

    def skip(self, seq: int) -> list[str]:
        """Mark seq as finished with nothing to insert."""
        return self.submit(seq, None)

    def _flush(self) -> list[str]:
        inserted = []
        while self._next_expected in self._pending:
            seq = self._next_expected
            text = self._pending.pop(seq).strip()
            if self.content_filter.accepts(text):
                insert_text = text + " "
                logger.debug("Chunk #%d inserting at cursor %d", seq, self._cursor)
                try:
                    self._cursor = self.sink.insert_at(self._cursor, insert_text)
                except Exception as e:
                    logger.error("Chunk #%d could not be inserted: %s", seq, e)
                else:
                    inserted.append(insert_text)
            else:
                logger.debug("Chunk #%d empty transcription, nothing to insert", seq)
            self._next_expected += 1
        return inserted
