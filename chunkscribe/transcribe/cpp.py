"""
chunkscribe.transcribe.cpp - whisper.cpp subprocess engine.

Each transcription writes the samples to a temporary 16kHz WAV file, runs
the provisioned whisper-cli binary on it, and returns the trimmed standard
output. The temporary file is removed on every exit path.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from pathlib import Path

import numpy as np

from chunkscribe.audio import write_wav
from chunkscribe.exceptions import EngineInvocationError, StateError
from chunkscribe.logging import logger
from chunkscribe.progress import Phase, ProgressDetail, ProgressReporter
from chunkscribe.provision.platform import PlatformDescriptor
from chunkscribe.provision.provisioner import EngineProvisioner
from chunkscribe.transcribe.base import InferenceEngine


def build_command(binary: Path, model: Path, wav_path: Path) -> list[str]:
    """Arguments for whisper-cli: model, input file, no timestamps, no progress."""
    return [str(binary), "-m", str(model), "-f", str(wav_path), "-nt", "-np"]


class SubprocessEngine(InferenceEngine):
    """Runs the native whisper.cpp binary once per chunk."""

    name = "cpp"

    def __init__(
        self,
        provisioner: EngineProvisioner,
        descriptor: PlatformDescriptor,
        model_id: str,
        temp_dir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__()
        self.provisioner = provisioner
        self.descriptor = descriptor
        self.model_id = model_id
        self.temp_dir = temp_dir
        self.timeout = timeout
        self.binary_path: Path | None = None
        self.model_path: Path | None = None

    @property
    def ready(self) -> bool:
        return self.binary_path is not None and self.model_path is not None

    def _load(self, reporter: ProgressReporter) -> None:
        binary = self.provisioner.ensure_binary(self.descriptor, reporter)
        model = self.provisioner.ensure_model(self.model_id, reporter)
        self.binary_path, self.model_path = binary, model
        reporter.report(Phase.READY, ProgressDetail("Model ready"))
        logger.debug("whisper.cpp engine initialized: %s with %s", binary, model)

    def transcribe(self, samples: np.ndarray) -> str:
        if not self.ready:
            raise StateError("Transcriber not initialized")

        fd, name = tempfile.mkstemp(prefix="chunkscribe-", suffix=".wav", dir=self.temp_dir)
        os.close(fd)
        wav_path = Path(name)

        try:
            write_wav(wav_path, samples)
            cmd = build_command(self.binary_path, self.model_path, wav_path)
            logger.debug("Spawning whisper: %s", " ".join(cmd))
            try:
                proc = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise EngineInvocationError(f"whisper.cpp timed out after {e.timeout}s") from e
            except OSError as e:
                raise EngineInvocationError(f"Could not start whisper.cpp: {e}") from e
        finally:
            _remove_temp(wav_path)

        if proc.returncode != 0:
            stderr = proc.stderr.strip()
            raise EngineInvocationError(
                f"whisper.cpp exited with code {proc.returncode}: {stderr}",
                exit_code=proc.returncode,
                stderr=stderr,
            )

        text = proc.stdout.strip()
        logger.debug("Transcription result: %s", text)
        return text


def _remove_temp(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to delete temp file %s: %s", path, e)
