"""
chunkscribe.document - Documents that receive dictated text.

A DocumentSink only needs insert_at(cursor, text) -> new cursor, where the
cursor is a character offset. TextDocument keeps the text in memory and,
when given a path, saves it atomically after every insert.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol

from chunkscribe.io import read_text, write_text


class DocumentSink(Protocol):
    def insert_at(self, cursor: int, text: str) -> int: ...


class TextDocument:
    """Plain-text document with optional file backing."""

    def __init__(self, text: str = "", path: Path | None = None) -> None:
        self._text = text
        self.path = path
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Path) -> TextDocument:
        """Open path for dictation, starting empty if it does not exist."""
        text = read_text(path) if path.exists() else ""
        return cls(text, path)

    @property
    def text(self) -> str:
        return self._text

    @property
    def end(self) -> int:
        return len(self._text)

    def insert_at(self, cursor: int, text: str) -> int:
        """Insert text at a character offset and return the offset after it."""
        with self._lock:
            cursor = max(0, min(cursor, len(self._text)))
            updated = self._text[:cursor] + text + self._text[cursor:]
            if self.path is not None:
                write_text(self.path, updated)
            self._text = updated
        return cursor + len(text)
