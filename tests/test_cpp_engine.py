"""Tests for chunkscribe.transcribe.cpp module."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import numpy as np
import pytest

from chunkscribe.exceptions import EngineInvocationError, ProvisioningError, StateError
from chunkscribe.progress import Phase
from chunkscribe.provision.platform import describe_platform
from chunkscribe.transcribe.cpp import SubprocessEngine, build_command

from tests.conftest import ListReporter

SAMPLES = np.zeros(1600, dtype=np.float32)


@pytest.fixture
def provisioner(tmp_path: Path) -> MagicMock:
    mock = MagicMock()
    mock.ensure_binary.return_value = tmp_path / "bin" / "whisper-cli"
    mock.ensure_model.return_value = tmp_path / "models" / "ggml-base.en.bin"
    return mock


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def engine(provisioner: MagicMock, temp_dir: Path) -> SubprocessEngine:
    engine = SubprocessEngine(
        provisioner, describe_platform("Linux", "x86_64"), "base.en", temp_dir=temp_dir
    )
    engine.initialize()
    return engine


class TestBuildCommand:
    def test_arguments(self) -> None:
        cmd = build_command(Path("/b/whisper-cli"), Path("/m/model.bin"), Path("/t/a.wav"))
        assert cmd == ["/b/whisper-cli", "-m", "/m/model.bin", "-f", "/t/a.wav", "-nt", "-np"]


class TestInitialize:
    def test_provisions_binary_then_model(self, provisioner: MagicMock) -> None:
        reporter = ListReporter()
        descriptor = describe_platform("Linux", "x86_64")
        engine = SubprocessEngine(provisioner, descriptor, "small.en")

        engine.initialize(reporter)

        assert engine.ready
        provisioner.ensure_binary.assert_called_once_with(descriptor, reporter)
        provisioner.ensure_model.assert_called_once_with("small.en", reporter)
        assert reporter.phases[-1] is Phase.READY

    def test_logs_engine_paths(self, provisioner: MagicMock, caplog: pytest.LogCaptureFixture) -> None:
        engine = SubprocessEngine(provisioner, describe_platform("Linux", "x86_64"), "base.en")

        with caplog.at_level(logging.DEBUG, logger="chunkscribe"):
            engine.initialize()

        assert "whisper.cpp engine initialized" in caplog.text
        assert "ggml-base.en.bin" in caplog.text

    def test_initialize_is_idempotent(self, engine: SubprocessEngine, provisioner: MagicMock) -> None:
        engine.initialize()
        assert provisioner.ensure_binary.call_count == 1

    def test_failure_leaves_engine_retryable(self, provisioner: MagicMock) -> None:
        provisioner.ensure_model.side_effect = [ProvisioningError("offline"), provisioner.ensure_model.return_value]
        engine = SubprocessEngine(provisioner, describe_platform("Linux", "x86_64"), "base.en")

        with pytest.raises(ProvisioningError):
            engine.initialize()
        assert not engine.ready

        engine.initialize()
        assert engine.ready

    def test_transcribe_before_initialize(self, provisioner: MagicMock) -> None:
        engine = SubprocessEngine(provisioner, describe_platform("Linux", "x86_64"), "base.en")
        with pytest.raises(StateError, match="not initialized"):
            engine.transcribe(SAMPLES)


class TestTranscribe:
    def test_returns_trimmed_stdout(
        self, engine: SubprocessEngine, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seen: dict[str, Any] = {}

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
            wav = Path(cmd[cmd.index("-f") + 1])
            seen["cmd"] = cmd
            seen["kwargs"] = kwargs
            seen["wav_header"] = wav.read_bytes()[:4]
            seen["wav_size"] = wav.stat().st_size
            return subprocess.CompletedProcess(cmd, 0, "  Hello world.\n\n", "")

        monkeypatch.setattr("chunkscribe.transcribe.cpp.subprocess.run", fake_run)

        assert engine.transcribe(SAMPLES) == "Hello world."
        assert seen["wav_header"] == b"RIFF"
        assert seen["wav_size"] == 44 + 2 * len(SAMPLES)
        assert seen["cmd"][1:3] == ["-m", str(engine.model_path)]
        assert seen["cmd"][-2:] == ["-nt", "-np"]
        assert seen["kwargs"]["capture_output"] is True
        assert list(temp_dir.iterdir()) == []

    def test_non_zero_exit(
        self, engine: SubprocessEngine, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            "chunkscribe.transcribe.cpp.subprocess.run",
            lambda cmd, **kw: subprocess.CompletedProcess(cmd, 3, "", "failed to load model\n"),
        )

        with pytest.raises(EngineInvocationError) as exc_info:
            engine.transcribe(SAMPLES)

        assert exc_info.value.exit_code == 3
        assert exc_info.value.stderr == "failed to load model"
        assert "code 3" in str(exc_info.value)
        assert list(temp_dir.iterdir()) == []

    def test_spawn_failure(
        self, engine: SubprocessEngine, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def fail(cmd: list[str], **kwargs: Any) -> None:
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr("chunkscribe.transcribe.cpp.subprocess.run", fail)

        with pytest.raises(EngineInvocationError, match="Could not start"):
            engine.transcribe(SAMPLES)
        assert list(temp_dir.iterdir()) == []

    def test_timeout(
        self, provisioner: MagicMock, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        engine = SubprocessEngine(
            provisioner, describe_platform("Linux", "x86_64"), "base.en", temp_dir=temp_dir, timeout=5
        )
        engine.initialize()

        def slow(cmd: list[str], **kwargs: Any) -> None:
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr("chunkscribe.transcribe.cpp.subprocess.run", slow)

        with pytest.raises(EngineInvocationError, match="timed out"):
            engine.transcribe(SAMPLES)
        assert list(temp_dir.iterdir()) == []

    def test_temp_files_are_unique(
        self, engine: SubprocessEngine, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        paths = []

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
            paths.append(cmd[cmd.index("-f") + 1])
            return subprocess.CompletedProcess(cmd, 0, "x", "")

        monkeypatch.setattr("chunkscribe.transcribe.cpp.subprocess.run", fake_run)

        engine.transcribe(SAMPLES)
        engine.transcribe(SAMPLES)

        assert len(set(paths)) == 2
