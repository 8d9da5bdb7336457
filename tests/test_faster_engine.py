"""Tests for chunkscribe.transcribe.faster and base modules."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest

from chunkscribe.config import EngineConfig
from chunkscribe.exceptions import EngineInvocationError, ProvisioningError, StateError
from chunkscribe.progress import Phase, ProgressReporter
from chunkscribe.transcribe.base import InferenceEngine, SingleFlight
from chunkscribe.transcribe.faster import (
    DownloadMonitor,
    EmbeddedEngine,
    FasterWhisperLoader,
    expected_download_size,
    repo_cache_dir,
)

from tests.conftest import ListReporter


class FakeModel:
    def __init__(self, texts: list[str] | None = None, error: Exception | None = None):
        self.texts = texts or []
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def transcribe(self, audio: np.ndarray, **kwargs: Any) -> tuple[Any, Any]:
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        segments = (SimpleNamespace(text=text) for text in self.texts)
        return segments, SimpleNamespace(language="en")


class FakeLoader:
    def __init__(self, cached: bool = True, model: FakeModel | None = None, fetch_error: Exception | None = None):
        self.cached = cached
        self.model = model or FakeModel([" Hello", " world. "])
        self.fetch_error = fetch_error
        self.fetches = 0
        self.gate: threading.Event | None = None
        self.progress_callbacks: list[Any] = []

    def is_cached(self, config: EngineConfig) -> bool:
        return self.cached

    def fetch(self, config: EngineConfig, on_progress: Any = None) -> str:
        self.fetches += 1
        self.progress_callbacks.append(on_progress)
        if on_progress is not None:
            on_progress(50, 100)
        if self.gate is not None:
            self.gate.wait(5)
        if self.fetch_error:
            raise self.fetch_error
        return f"/cache/{config.model_id}"

    def load(self, config: EngineConfig, model_path: str) -> FakeModel:
        return self.model


class TestEmbeddedEngineInitialize:
    def test_cached_model_phases(self) -> None:
        reporter = ListReporter()
        engine = EmbeddedEngine(EngineConfig(), FakeLoader(cached=True))

        engine.initialize(reporter)

        assert engine.ready
        assert reporter.phases == [Phase.LOADING, Phase.READY]
        assert reporter.reports[0][1].message == "Loading model from cache"

    def test_uncached_model_phases(self) -> None:
        reporter = ListReporter()
        engine = EmbeddedEngine(EngineConfig(model_id="small.en"), FakeLoader(cached=False))

        engine.initialize(reporter)

        assert reporter.phases == [Phase.DOWNLOADING, Phase.DOWNLOADING, Phase.LOADING, Phase.READY]
        assert "small.en" in reporter.reports[0][1].message

    def test_uncached_model_reports_bytes(self) -> None:
        reporter = ListReporter()
        engine = EmbeddedEngine(EngineConfig(), FakeLoader(cached=False))

        engine.initialize(reporter)

        detail = reporter.reports[1][1]
        assert (detail.loaded, detail.total) == (50, 100)
        assert detail.message == "Downloading model: 50% (50.0 B)"

    def test_cached_model_has_no_byte_callback(self) -> None:
        loader = FakeLoader(cached=True)
        engine = EmbeddedEngine(EngineConfig(), loader)

        engine.initialize()

        assert loader.progress_callbacks == [None]

    def test_download_failure(self) -> None:
        loader = FakeLoader(cached=False, fetch_error=OSError("offline"))
        engine = EmbeddedEngine(EngineConfig(), loader)

        with pytest.raises(ProvisioningError, match="not cached and could not be downloaded"):
            engine.initialize()
        assert not engine.ready

    def test_cached_load_failure(self) -> None:
        engine = EmbeddedEngine(EngineConfig(), FakeLoader(cached=True, fetch_error=RuntimeError("corrupt")))

        with pytest.raises(ProvisioningError, match="Model load failed"):
            engine.initialize()

    def test_retry_after_failure(self) -> None:
        loader = FakeLoader(cached=False, fetch_error=OSError("offline"))
        engine = EmbeddedEngine(EngineConfig(), loader)
        with pytest.raises(ProvisioningError):
            engine.initialize()

        loader.fetch_error = None
        engine.initialize()

        assert engine.ready
        assert loader.fetches == 2

    def test_concurrent_initialize_fetches_once(self) -> None:
        loader = FakeLoader()
        loader.gate = threading.Event()
        engine = EmbeddedEngine(EngineConfig(), loader)

        threads = [threading.Thread(target=engine.initialize) for _ in range(4)]
        for t in threads:
            t.start()
        time.sleep(0.2)
        assert engine.loading
        loader.gate.set()
        for t in threads:
            t.join(5)

        assert engine.ready
        assert not engine.loading
        assert loader.fetches == 1


class TestEmbeddedEngineTranscribe:
    def test_joins_segments(self) -> None:
        engine = EmbeddedEngine(EngineConfig(), FakeLoader())
        engine.initialize()

        assert engine.transcribe(np.zeros(16000, dtype=np.float32)) == "Hello world."

    def test_passes_language_and_beam_size(self) -> None:
        model = FakeModel(["Hallo"])
        engine = EmbeddedEngine(EngineConfig(language="de", beam_size=2), FakeLoader(model=model))
        engine.initialize()

        engine.transcribe(np.zeros(10, dtype=np.float32))

        assert model.calls == [{"beam_size": 2, "language": "de"}]

    def test_no_speech(self) -> None:
        engine = EmbeddedEngine(EngineConfig(), FakeLoader(model=FakeModel([])))
        engine.initialize()

        assert engine.transcribe(np.zeros(10, dtype=np.float32)) == ""

    def test_model_error(self) -> None:
        engine = EmbeddedEngine(EngineConfig(), FakeLoader(model=FakeModel(error=RuntimeError("cuda"))))
        engine.initialize()

        with pytest.raises(EngineInvocationError, match="cuda"):
            engine.transcribe(np.zeros(10, dtype=np.float32))

    def test_before_initialize(self) -> None:
        with pytest.raises(StateError):
            EmbeddedEngine(EngineConfig(), FakeLoader()).transcribe(np.zeros(10, dtype=np.float32))

    def test_close_releases_model(self) -> None:
        engine = EmbeddedEngine(EngineConfig(), FakeLoader())
        engine.initialize()

        engine.close()

        assert not engine.ready


class GatedEngine(InferenceEngine):
    name = "gated"

    def __init__(self, error: Exception | None = None) -> None:
        super().__init__()
        self.error = error
        self.loads = 0
        self.entered = threading.Event()
        self.release = threading.Event()
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def _load(self, reporter: ProgressReporter) -> None:
        self.loads += 1
        self.entered.set()
        self.release.wait(5)
        if self.error:
            raise self.error
        self._ready = True

    def transcribe(self, samples: np.ndarray) -> str:
        return ""


class TestSingleFlight:
    def test_sequential_calls_rerun(self) -> None:
        flight = SingleFlight()
        assert flight.run(lambda: 1) == 1
        assert flight.run(lambda: 2) == 2
        assert not flight.in_flight

    def test_waiters_share_failure(self) -> None:
        engine = GatedEngine(error=ProvisioningError("offline"))
        errors: list[BaseException] = []

        def call() -> None:
            try:
                engine.initialize()
            except ProvisioningError as e:
                errors.append(e)

        leader = threading.Thread(target=call)
        leader.start()
        assert engine.entered.wait(5)
        follower = threading.Thread(target=call)
        follower.start()
        time.sleep(0.2)
        engine.release.set()
        leader.join(5)
        follower.join(5)

        assert engine.loads == 1
        assert len(errors) == 2
        assert errors[0] is errors[1]
        assert not engine.ready

    def test_waiters_share_success(self) -> None:
        engine = GatedEngine()

        leader = threading.Thread(target=engine.initialize)
        leader.start()
        assert engine.entered.wait(5)
        follower = threading.Thread(target=engine.initialize)
        follower.start()
        time.sleep(0.2)
        engine.release.set()
        leader.join(5)
        follower.join(5)

        assert engine.loads == 1
        assert engine.ready

    def test_ready_engine_skips_load(self) -> None:
        engine = GatedEngine()
        engine.release.set()
        engine.initialize()
        engine.initialize()
        assert engine.loads == 1


class TestDownloadMonitor:
    def test_sums_blobs_and_caps_at_total(self, tmp_path: Path) -> None:
        seen: list[tuple[int, int]] = []
        monitor = DownloadMonitor(tmp_path, 100, lambda loaded, total: seen.append((loaded, total)))

        monitor.sample()
        (tmp_path / "blobs").mkdir()
        (tmp_path / "blobs" / "abc.incomplete").write_bytes(b"x" * 40)
        monitor.sample()
        monitor.sample()
        (tmp_path / "blobs" / "def").write_bytes(b"x" * 90)
        monitor.sample()

        assert seen == [(0, 100), (40, 100), (100, 100)]

    def test_final_sample_on_exit(self, tmp_path: Path) -> None:
        seen: list[tuple[int, int]] = []
        blobs = tmp_path / "blobs"
        blobs.mkdir()

        with DownloadMonitor(tmp_path, 10, lambda loaded, total: seen.append((loaded, total)), interval=60):
            (blobs / "model").write_bytes(b"x" * 10)

        assert seen[-1] == (10, 10)


class TestFasterWhisperLoaderFetch:
    def _utils(self, cache_dir: Path, calls: list[dict[str, Any]]) -> SimpleNamespace:
        def download_model(model_id: str, **kwargs: Any) -> str:
            calls.append(kwargs)
            blobs = repo_cache_dir(cache_dir, "Systran/faster-whisper-base.en") / "blobs"
            blobs.mkdir(parents=True, exist_ok=True)
            (blobs / "model").write_bytes(b"x" * 1000)
            return str(blobs.parent / "snapshots" / "main")

        return SimpleNamespace(
            download_model=download_model,
            _MODELS={"base.en": "Systran/faster-whisper-base.en"},
        )

    def test_reports_bytes_while_downloading(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[dict[str, Any]] = []
        monkeypatch.setattr(
            "chunkscribe.transcribe.faster._faster_whisper_utils", lambda: self._utils(tmp_path, calls)
        )
        monkeypatch.setattr("chunkscribe.transcribe.faster.expected_download_size", lambda repo_id: 1000)
        seen: list[tuple[int, int]] = []

        path = FasterWhisperLoader().fetch(
            EngineConfig(cache_dir=tmp_path), lambda loaded, total: seen.append((loaded, total))
        )

        assert path.endswith("main")
        assert calls == [{"local_files_only": False, "cache_dir": str(tmp_path)}]
        assert seen[-1] == (1000, 1000)

    def test_unknown_size_skips_monitor(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[dict[str, Any]] = []
        monkeypatch.setattr(
            "chunkscribe.transcribe.faster._faster_whisper_utils", lambda: self._utils(tmp_path, calls)
        )
        monkeypatch.setattr("chunkscribe.transcribe.faster.expected_download_size", lambda repo_id: 0)
        seen: list[tuple[int, int]] = []

        FasterWhisperLoader().fetch(EngineConfig(cache_dir=tmp_path), lambda *args: seen.append(args))

        assert len(calls) == 1
        assert seen == []


class TestExpectedDownloadSize:
    def test_sums_model_files_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        siblings = [
            SimpleNamespace(rfilename="model.bin", size=1000),
            SimpleNamespace(rfilename="config.json", size=10),
            SimpleNamespace(rfilename="vocabulary.txt", size=5),
            SimpleNamespace(rfilename="README.md", size=999),
        ]

        class FakeApi:
            def model_info(self, repo_id: str, files_metadata: bool = False) -> SimpleNamespace:
                assert files_metadata
                return SimpleNamespace(siblings=siblings)

        monkeypatch.setattr("huggingface_hub.HfApi", FakeApi)

        assert expected_download_size("Systran/faster-whisper-base.en") == 1015

    def test_offline_is_unknown(self, monkeypatch: pytest.MonkeyPatch) -> None:
        class OfflineApi:
            def model_info(self, repo_id: str, files_metadata: bool = False) -> None:
                raise OSError("offline")

        monkeypatch.setattr("huggingface_hub.HfApi", OfflineApi)

        assert expected_download_size("Systran/faster-whisper-base.en") == 0
