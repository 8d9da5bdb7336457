"""
chunkscribe.record.microphone - Microphone access via sounddevice.

A Microphone hands out an AudioStream: a continuously running capture that
queues float32 frame blocks for the recorder to drain.
"""

from __future__ import annotations

import queue
from dataclasses import dataclass, replace
from typing import Any, Protocol

import numpy as np

from chunkscribe.exceptions import CaptureError, DependencyError
from chunkscribe.logging import logger


@dataclass(frozen=True)
class CaptureConstraints:
    channels: int = 1
    sample_rate: int = 16000
    device: int | str | None = None
    block_duration: float = 0.1


class AudioStream(Protocol):
    sample_rate: int

    def read(self, timeout: float | None = None) -> np.ndarray | None:
        """Next block of frames, shape (frames, channels), or None on timeout."""
        ...

    def close(self) -> None: ...


class Microphone(Protocol):
    def acquire(self, constraints: CaptureConstraints) -> AudioStream: ...


def _import_sounddevice():
    try:
        import sounddevice
    except ImportError as e:
        raise DependencyError(
            "sounddevice", "not installed", "Install with: pip install sounddevice"
        ) from e
    except OSError as e:
        raise DependencyError(
            "sounddevice",
            f"PortAudio library not available: {e}",
            "Install PortAudio: brew install portaudio (macOS) or apt install libportaudio2 (Linux)",
        ) from e
    return sounddevice


class SoundDeviceStream:
    """Queues blocks from a sounddevice InputStream callback."""

    def __init__(self, sd: Any, constraints: CaptureConstraints) -> None:
        self._queue: queue.Queue[np.ndarray] = queue.Queue()
        self._closed = False

        def audio_callback(indata, frames, time_info, status):  # noqa: ANN001
            if status:
                logger.debug("Audio status: %s", status)
            self._queue.put(indata.copy())

        self._stream = sd.InputStream(
            samplerate=constraints.sample_rate,
            channels=constraints.channels,
            dtype="float32",
            device=constraints.device,
            callback=audio_callback,
            blocksize=int(constraints.sample_rate * constraints.block_duration),
        )
        self.sample_rate = int(self._stream.samplerate)
        self._stream.start()

    def read(self, timeout: float | None = None) -> np.ndarray | None:
        try:
            if timeout == 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.stop()
        finally:
            self._stream.close()


class SoundDeviceMicrophone:
    """Default-input microphone via PortAudio."""

    def acquire(self, constraints: CaptureConstraints) -> SoundDeviceStream:
        sd = _import_sounddevice()
        logger.debug("Requesting microphone access")
        try:
            stream = SoundDeviceStream(sd, constraints)
        except sd.PortAudioError as e:
            logger.debug(
                "%d Hz capture unavailable (%s), using device default rate",
                constraints.sample_rate,
                e,
            )
            try:
                info = sd.query_devices(constraints.device, "input")
                fallback = replace(constraints, sample_rate=int(info["default_samplerate"]))
                stream = SoundDeviceStream(sd, fallback)
            except (sd.PortAudioError, ValueError) as retry_error:
                raise CaptureError(f"Microphone access failed: {retry_error}") from retry_error
        logger.debug("Microphone access granted at %d Hz", stream.sample_rate)
        return stream
