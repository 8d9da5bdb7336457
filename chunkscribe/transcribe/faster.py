"""
chunkscribe.transcribe.faster - In-process faster-whisper engine.

The model is fetched into a local Hugging Face cache on first use and then
loaded into memory; later sessions load it from cache without network access.
A cache probe runs first, only to tell the user whether the load is offline.
While a download runs, the repo's blob directory is polled so byte progress
can be reported against the sizes published on the Hub.
"""

from __future__ import annotations

import fnmatch
import threading
from pathlib import Path
from typing import Any, Callable, Protocol

import numpy as np

from chunkscribe.config import EngineConfig
from chunkscribe.exceptions import (
    ChunkscribeError,
    DependencyError,
    EngineInvocationError,
    ProvisioningError,
    StateError,
)
from chunkscribe.logging import logger
from chunkscribe.progress import Phase, ProgressDetail, ProgressReporter, byte_progress
from chunkscribe.transcribe.base import InferenceEngine

# Files faster-whisper pulls from a model repo
MODEL_FILE_PATTERNS = (
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
)


class ModelLoader(Protocol):
    def is_cached(self, config: EngineConfig) -> bool: ...

    def fetch(
        self, config: EngineConfig, on_progress: Callable[[int, int], None] | None = None
    ) -> str: ...

    def load(self, config: EngineConfig, model_path: str) -> Any: ...


def _faster_whisper_utils():
    try:
        from faster_whisper import utils
    except ImportError as e:
        raise DependencyError(
            "faster-whisper",
            "not installed",
            "Install with: pip install faster-whisper",
        ) from e
    return utils


def repo_id_for(model_id: str) -> str:
    """Map a model size like "base.en" to its Hub repo; full repo ids pass through."""
    if "/" in model_id:
        return model_id
    models = getattr(_faster_whisper_utils(), "_MODELS", {})
    return models.get(model_id, f"Systran/faster-whisper-{model_id}")


def repo_cache_dir(cache_dir: Path, repo_id: str) -> Path:
    return cache_dir / f"models--{repo_id.replace('/', '--')}"


def expected_download_size(repo_id: str) -> int:
    """Total size in bytes of the model files in repo_id, or 0 if unknown."""
    try:
        from huggingface_hub import HfApi

        info = HfApi().model_info(repo_id, files_metadata=True)
    except Exception as e:
        logger.debug("Could not read file sizes for %s: %s", repo_id, e)
        return 0
    return sum(
        sibling.size or 0
        for sibling in info.siblings or []
        if any(fnmatch.fnmatch(sibling.rfilename, pattern) for pattern in MODEL_FILE_PATTERNS)
    )


class DownloadMonitor:
    """Reports bytes written into a repo cache while a download is running.

    Used as a context manager around the download call. Samples are taken on
    a background thread every interval seconds and once more on a clean exit.
    """

    def __init__(
        self,
        repo_dir: Path,
        total: int,
        on_progress: Callable[[int, int], None],
        interval: float = 0.5,
    ) -> None:
        self.blobs_dir = repo_dir / "blobs"
        self.total = total
        self.on_progress = on_progress
        self.interval = interval
        self._last = -1
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def downloaded(self) -> int:
        if not self.blobs_dir.is_dir():
            return 0
        size = 0
        for path in self.blobs_dir.iterdir():
            try:
                size += path.stat().st_size
            except OSError:
                # .incomplete blob renamed between listing and stat
                continue
        return size

    def sample(self) -> None:
        loaded = min(self.downloaded(), self.total)
        if loaded != self._last:
            self._last = loaded
            self.on_progress(loaded, self.total)

    def __enter__(self) -> DownloadMonitor:
        self._thread = threading.Thread(target=self._run, name="model-download", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        if exc_type is None:
            self.sample()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.sample()


class FasterWhisperLoader:
    """Fetches and loads CTranslate2 Whisper models via faster-whisper."""

    def is_cached(self, config: EngineConfig) -> bool:
        utils = _faster_whisper_utils()
        try:
            utils.download_model(
                config.model_id,
                local_files_only=True,
                cache_dir=str(config.cache_dir) if config.cache_dir else None,
            )
        except Exception as e:
            logger.debug("Model %s not in cache: %s", config.model_id, e)
            return False
        return True

    def fetch(
        self, config: EngineConfig, on_progress: Callable[[int, int], None] | None = None
    ) -> str:
        utils = _faster_whisper_utils()

        def download() -> str:
            return utils.download_model(
                config.model_id,
                local_files_only=config.local_files_only,
                cache_dir=str(config.cache_dir) if config.cache_dir else None,
            )

        if on_progress is None or config.local_files_only or config.cache_dir is None:
            return download()

        repo_id = repo_id_for(config.model_id)
        total = expected_download_size(repo_id)
        if not total:
            return download()

        logger.debug("Downloading %s (%d bytes)", repo_id, total)
        with DownloadMonitor(repo_cache_dir(config.cache_dir, repo_id), total, on_progress):
            return download()

    def load(self, config: EngineConfig, model_path: str) -> Any:
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise DependencyError(
                "faster-whisper",
                "not installed",
                "Install with: pip install faster-whisper",
            ) from e
        return WhisperModel(model_path, device=config.device, compute_type=config.compute_type)


class EmbeddedEngine(InferenceEngine):
    """Holds a faster-whisper model in process."""

    name = "faster"

    def __init__(self, config: EngineConfig, loader: ModelLoader | None = None) -> None:
        super().__init__()
        self.config = config
        self.loader = loader or FasterWhisperLoader()
        self._model: Any = None
        self._infer_lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._model is not None

    def is_cached(self) -> bool:
        return self.loader.is_cached(self.config)

    def _load(self, reporter: ProgressReporter) -> None:
        model_id = self.config.model_id
        cached = self.is_cached()
        if cached:
            logger.debug("Loading model from cache (offline)")
            reporter.report(Phase.LOADING, ProgressDetail("Loading model from cache"))
        else:
            logger.debug("Downloading model (online required)")
            reporter.report(
                Phase.DOWNLOADING,
                ProgressDetail(f"Downloading model: {model_id}. This only happens once."),
            )

        try:
            on_progress = None if cached else byte_progress(reporter, "Downloading model")
            model_path = self.loader.fetch(self.config, on_progress)
            if not cached:
                reporter.report(Phase.LOADING, ProgressDetail("Initializing model"))
            model = self.loader.load(self.config, model_path)
        except ChunkscribeError:
            raise
        except Exception as e:
            if not cached:
                raise ProvisioningError(
                    f"Model {model_id} not cached and could not be downloaded: {e}"
                ) from e
            raise ProvisioningError(f"Model load failed: {e}") from e

        self._model = model
        reporter.report(Phase.READY, ProgressDetail("Model ready"))
        logger.debug("Model loaded successfully")

    def transcribe(self, samples: np.ndarray) -> str:
        if self._model is None:
            raise StateError("Transcriber not initialized")

        audio = np.asarray(samples, dtype=np.float32)
        kwargs: dict[str, Any] = {"beam_size": self.config.beam_size}
        if self.config.language:
            kwargs["language"] = self.config.language

        try:
            with self._infer_lock:
                segments, _info = self._model.transcribe(audio, **kwargs)
                text = " ".join(segment.text.strip() for segment in segments)
        except Exception as e:
            raise EngineInvocationError(f"Embedded transcription failed: {e}") from e

        return text.strip()

    def close(self) -> None:
        self._model = None
