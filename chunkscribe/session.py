"""
chunkscribe.session - Dictation session lifecycle and chunk pipeline.

A Session owns one engine (created and initialized lazily on the first
start), and for each recording run a ChunkRecorder, a transcription worker
pool and a ResultSequencer. Captured chunks are decoded, resampled and
transcribed concurrently; the sequencer puts the results into the document
in capture order.

State machine: IDLE -> RECORDING (start) -> STOPPING (stop) -> IDLE once the
final chunk has been captured and every dispatched transcription has been
delivered to the sequencer.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from chunkscribe.audio import TARGET_SAMPLE_RATE, AudioChunk, prepare_samples
from chunkscribe.config import SettingsStore, TranscriberSettings
from chunkscribe.document import DocumentSink
from chunkscribe.exceptions import ChunkscribeError
from chunkscribe.logging import logger
from chunkscribe.progress import NullProgressReporter, ProgressReporter
from chunkscribe.record.microphone import CaptureConstraints, Microphone
from chunkscribe.record.recorder import ChunkRecorder
from chunkscribe.sequencer import ContentFilter, ResultSequencer
from chunkscribe.transcribe.base import InferenceEngine, TranscriptionResult

EngineFactory = Callable[[TranscriberSettings], InferenceEngine]


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"


class EngineHandle:
    """The session's single engine, created on first use."""

    def __init__(self, factory: Callable[[], InferenceEngine]) -> None:
        self._factory = factory
        self._engine: InferenceEngine | None = None
        self._lock = threading.Lock()

    @property
    def engine(self) -> InferenceEngine | None:
        return self._engine

    def get(self, reporter: ProgressReporter | None = None) -> InferenceEngine:
        """Return the initialized engine, creating and initializing it if needed."""
        with self._lock:
            if self._engine is None:
                self._engine = self._factory()
            engine = self._engine
        engine.initialize(reporter)
        return engine

    def dispose(self) -> None:
        with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.close()


@dataclass
class _Run:
    """Per-recording state, discarded when the run goes idle."""

    engine: InferenceEngine
    sequencer: ResultSequencer
    executor: ThreadPoolExecutor
    recorder: ChunkRecorder | None = None
    results: list[TranscriptionResult] = field(default_factory=list)


class Session:
    """Live dictation into a DocumentSink."""

    def __init__(
        self,
        sink: DocumentSink,
        microphone: Microphone,
        settings_store: SettingsStore,
        engine_factory: EngineFactory,
        reporter: ProgressReporter | None = None,
        cursor: int = 0,
        on_result: Callable[[TranscriptionResult], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.microphone = microphone
        self.settings_store = settings_store
        self.reporter = reporter or NullProgressReporter()
        self.on_result = on_result
        self._clock = clock
        self._cursor = cursor
        self._settings: TranscriberSettings | None = None
        self._handle = EngineHandle(lambda: engine_factory(self._current_settings()))
        self._engine_stale = False

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._starting = False
        self._run: _Run | None = None
        self._idle = threading.Event()
        self._idle.set()
        self.last_results: list[TranscriptionResult] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cursor(self) -> int:
        with self._lock:
            if self._run is not None:
                return self._run.sequencer.cursor
            return self._cursor

    @property
    def engine(self) -> InferenceEngine | None:
        return self._handle.engine

    def _current_settings(self) -> TranscriberSettings:
        if self._settings is None:
            self._settings = self.settings_store.get()
        return self._settings

    def initialize_engine(self) -> InferenceEngine:
        """Create and initialize the engine without recording."""
        self._settings = self.settings_store.get()
        if self._engine_stale:
            self._handle.dispose()
            self._engine_stale = False
        return self._handle.get(self.reporter)

    def start(self) -> bool:
        """Initialize the engine if needed, acquire the microphone and start capturing.

        Returns:
            False if a recording is already running or starting

        Raises:
            ProvisioningError: If the engine could not be initialized
            CaptureError: If the microphone could not be acquired
        """
        with self._lock:
            if self._state is not SessionState.IDLE or self._starting:
                logger.debug("Already recording, ignoring start")
                return False
            self._starting = True

        try:
            engine = self.initialize_engine()
            settings = self._current_settings()
            stream = self.microphone.acquire(CaptureConstraints(sample_rate=TARGET_SAMPLE_RATE))
        except BaseException:
            with self._lock:
                self._starting = False
            raise

        with self._lock:
            run = _Run(
                engine=engine,
                sequencer=ResultSequencer(
                    self.sink, self._cursor, ContentFilter(settings.filler_tokens)
                ),
                executor=ThreadPoolExecutor(
                    max_workers=settings.max_in_flight, thread_name_prefix="transcribe"
                ),
            )
            run.recorder = ChunkRecorder(
                stream,
                settings.chunk_duration_ms,
                on_chunk=lambda chunk: self._dispatch(run, chunk),
                on_finished=lambda: self._capture_finished(run),
            )
            self._run = run
            self.last_results = run.results
            self._idle.clear()
            self._state = SessionState.RECORDING
            self._starting = False

        logger.debug("Recording started: %d ms chunks", settings.chunk_duration_ms)
        run.recorder.start()
        return True

    def stop(self) -> bool:
        """Stop capturing; the partial window and in-flight chunks still complete.

        Returns:
            False if no recording was running
        """
        with self._lock:
            if self._state is not SessionState.RECORDING or self._run is None:
                logger.debug("Was not recording")
                return False
            self._state = SessionState.STOPPING
            recorder = self._run.recorder

        logger.debug("Stopping recording")
        recorder.stop()
        return True

    def toggle(self, state: bool | None = None) -> bool:
        """Start or stop; state=True only starts, state=False only stops."""
        if self._state is SessionState.IDLE:
            if state is not False:
                return self.start()
            return False
        if state is not True:
            return self.stop()
        return False

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until the session is idle and all results are delivered."""
        return self._idle.wait(timeout)

    def update_settings(self, settings: TranscriberSettings) -> None:
        """Persist new settings; a model or engine change takes effect on next start."""
        previous = self._current_settings()
        self.settings_store.set(settings)
        if (settings.model_id, settings.engine) != (previous.model_id, previous.engine):
            self._engine_stale = True
        self._settings = settings

    def dispose(self, timeout: float | None = None) -> None:
        """Stop, wait for outstanding chunks, and release the engine."""
        self.stop()
        self.wait_idle(timeout)
        self._handle.dispose()

    def _dispatch(self, run: _Run, chunk: AudioChunk) -> None:
        logger.debug("Chunk #%d dispatched for transcription", chunk.seq)
        future = run.executor.submit(self._process, run, chunk)
        future.add_done_callback(lambda f: _log_failure(chunk.seq, f))

    def _process(self, run: _Run, chunk: AudioChunk) -> TranscriptionResult:
        started = self._clock()
        text = ""
        error = None
        try:
            samples = prepare_samples(chunk.samples, chunk.sample_rate)
            logger.debug(
                "Chunk #%d audio ready: %d samples (%.2fs)",
                chunk.seq,
                len(samples),
                len(samples) / TARGET_SAMPLE_RATE,
            )
            text = run.engine.transcribe(samples)
        except ChunkscribeError as e:
            error = str(e)
            logger.warning("Chunk #%d transcription failed: %s", chunk.seq, e)
        except Exception as e:
            error = f"Unexpected error: {e}"
            logger.exception("Chunk #%d transcription crashed", chunk.seq)

        latency_ms = (self._clock() - started) * 1000
        run.sequencer.submit(chunk.seq, text)

        result = TranscriptionResult(chunk.seq, text, latency_ms, error)
        logger.debug("Chunk #%d done in %.0fms", chunk.seq, latency_ms)
        with self._lock:
            run.results.append(result)
        if self.on_result:
            try:
                self.on_result(result)
            except Exception as e:
                logger.warning("Result callback failed for chunk #%d: %s", chunk.seq, e)
        return result

    def _capture_finished(self, run: _Run) -> None:
        run.executor.shutdown(wait=True)
        with self._lock:
            self._cursor = run.sequencer.cursor
            if self._run is run:
                self._run = None
            self._state = SessionState.IDLE
        self._idle.set()
        logger.debug("Recording stopped")


def _log_failure(seq: int, future: Future) -> None:
    if future.cancelled():
        logger.warning("Chunk #%d was cancelled before transcription", seq)
        return
    error = future.exception()
    if error is not None:
        logger.error("Chunk #%d processing failed: %s", seq, error, exc_info=error)
