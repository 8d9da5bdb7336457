"""
chunkscribe.record.recorder - Gapless fixed-duration chunk capture.

One capture stream runs for the whole session. The recorder drains its
blocks and cuts them into windows of exactly chunk_duration frames; the
frames that overflow a window open the next one, so no audio falls between
chunks. Each finished window is handed off immediately with the next
sequence number. Stopping flushes the partial window as a final chunk.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

import numpy as np

from chunkscribe.audio import AudioChunk
from chunkscribe.logging import logger
from chunkscribe.record.microphone import AudioStream

READ_TIMEOUT = 0.1


class ChunkRecorder:
    """Cuts a continuous AudioStream into numbered AudioChunks on a worker thread."""

    def __init__(
        self,
        stream: AudioStream,
        chunk_duration_ms: int,
        on_chunk: Callable[[AudioChunk], None],
        on_finished: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")
        self.stream = stream
        self.chunk_duration_ms = chunk_duration_ms
        self.on_chunk = on_chunk
        self.on_finished = on_finished
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        self.window_frames = max(1, int(stream.sample_rate * chunk_duration_ms / 1000))
        self.chunks_emitted = 0
        self._blocks: list[np.ndarray] = []
        self._frames = 0
        self._started_at: float | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("ChunkRecorder can only be started once")
        self._thread = threading.Thread(target=self.run, name="chunk-recorder", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Request a stop; the partial window is flushed by the worker."""
        self._stop.set()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def run(self) -> None:
        """Capture until stop() is called, then flush and close the stream."""
        try:
            while not self._stop.is_set():
                block = self.stream.read(timeout=READ_TIMEOUT)
                if block is not None:
                    self._consume(block)
        except Exception as e:
            logger.warning("Capture stream failed: %s", e)
        finally:
            try:
                self.stream.close()
            except Exception as e:
                logger.warning("Failed to close capture stream: %s", e)
            self._drain()
            if self._frames:
                self._emit()
            logger.debug("Recorder finished after %d chunk(s)", self.chunks_emitted)
            if self.on_finished:
                self.on_finished()

    def _drain(self) -> None:
        while True:
            try:
                block = self.stream.read(timeout=0)
            except Exception as e:
                logger.debug("Stopped draining capture stream: %s", e)
                return
            if block is None:
                return
            self._consume(block)

    def _consume(self, block: np.ndarray) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

        while len(block):
            needed = self.window_frames - self._frames
            if len(block) < needed:
                self._blocks.append(block)
                self._frames += len(block)
                return
            self._blocks.append(block[:needed])
            self._frames += needed
            block = block[needed:]
            self._emit()
            if len(block):
                self._started_at = self._clock()

    def _emit(self) -> None:
        self.chunks_emitted += 1
        samples = np.concatenate(self._blocks) if len(self._blocks) > 1 else self._blocks[0]
        chunk = AudioChunk(
            seq=self.chunks_emitted,
            samples=samples,
            sample_rate=self.stream.sample_rate,
            capture_started_at=self._started_at if self._started_at is not None else self._clock(),
        )
        self._blocks = []
        self._frames = 0
        self._started_at = None
        logger.debug("Chunk #%d captured: %.2fs", chunk.seq, chunk.duration_seconds)
        try:
            self.on_chunk(chunk)
        except Exception as e:
            logger.warning("Chunk #%d hand-off failed: %s", chunk.seq, e)
