"""
chunkscribe.progress - Provisioning and model-load progress reporting.

Engines and the provisioner report phases (downloading, extracting, loading,
ready) through a ProgressReporter. The console implementation renders them
with rich and throttles byte-level download updates.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from rich.console import Console

from chunkscribe.logging import logger
from chunkscribe.utils import format_percent, format_size


class Phase(str, Enum):
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class ProgressDetail:
    """What a phase report carries: a message and, for downloads, byte counts."""

    message: str = ""
    loaded: int | None = None
    total: int | None = None

    @property
    def has_bytes(self) -> bool:
        return self.loaded is not None and bool(self.total)


class ProgressReporter(Protocol):
    def report(self, phase: Phase, detail: ProgressDetail) -> None: ...


class NullProgressReporter:
    """Discards reports; logs them at DEBUG."""

    def report(self, phase: Phase, detail: ProgressDetail) -> None:
        logger.debug("progress %s: %s", phase.value, detail.message)


def byte_progress(
    reporter: ProgressReporter, label: str
) -> Callable[[int, int], None]:
    """Adapt a reporter into a (loaded, total) download callback."""

    def callback(loaded: int, total: int) -> None:
        message = f"{label}: {format_percent(loaded, total)} ({format_size(loaded)})"
        reporter.report(Phase.DOWNLOADING, ProgressDetail(message, loaded, total))

    return callback


class ConsoleProgressReporter:
    """Prints progress to a rich console, at most one byte update per interval."""

    def __init__(
        self,
        console: Console | None = None,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.console = console or Console()
        self.min_interval = min_interval
        self._clock = clock
        self._last_byte_update: float | None = None

    def report(self, phase: Phase, detail: ProgressDetail) -> None:
        if detail.has_bytes:
            now = self._clock()
            finished = detail.loaded == detail.total
            if (
                not finished
                and self._last_byte_update is not None
                and now - self._last_byte_update < self.min_interval
            ):
                return
            self._last_byte_update = now

        if phase is Phase.READY:
            self.console.print(f"[green]✓[/green] {detail.message or 'Model ready'}")
        elif detail.message:
            self.console.print(f"[dim]  {detail.message}[/dim]")
