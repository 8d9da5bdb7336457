"""
chunkscribe.transcribe.base - Engine interface and single-flight initialization.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, TypeVar

import numpy as np

from chunkscribe.progress import NullProgressReporter, ProgressReporter

T = TypeVar("T")


@dataclass(frozen=True)
class TranscriptionResult:
    """Terminal outcome of one chunk; error is set when the chunk was dropped."""

    seq: int
    text: str
    latency_ms: float
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SingleFlight:
    """Runs at most one call at a time; concurrent callers share its outcome.

    The first caller executes the function. Callers arriving while it is in
    flight block until it finishes and receive the same result or exception.
    Once finished, the next call runs the function again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._future: Future | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._future is not None

    def run(self, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._future
            leader = future is None
            if leader:
                future = self._future = Future()

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._future = None


class InferenceEngine(ABC):
    """Speech-to-text backend: initialize once, then transcribe 16kHz mono samples."""

    name = "base"

    def __init__(self) -> None:
        self._flight = SingleFlight()

    @property
    @abstractmethod
    def ready(self) -> bool:
        """True once initialization has completed successfully."""

    @property
    def loading(self) -> bool:
        return self._flight.in_flight

    def initialize(self, reporter: ProgressReporter | None = None) -> None:
        """Provision and load the engine; concurrent calls share one attempt."""
        if self.ready:
            return
        reporter = reporter or NullProgressReporter()
        self._flight.run(lambda: None if self.ready else self._load(reporter))

    @abstractmethod
    def _load(self, reporter: ProgressReporter) -> None:
        """Do the actual provisioning and loading."""

    @abstractmethod
    def transcribe(self, samples: np.ndarray) -> str:
        """Transcribe 16kHz mono float32 samples.

        Raises:
            StateError: If called before initialize() succeeded
            EngineInvocationError: If the engine fails on this input
        """

    def close(self) -> None:
        """Release engine resources."""
