"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

import io
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest

from chunkscribe.config import SettingsStore, TranscriberSettings
from chunkscribe.progress import Phase, ProgressDetail
from chunkscribe.provision.store import CachedAssetStore


class FakeResponse:
    """Minimal urllib response double."""

    def __init__(self, status: int = 200, body: bytes = b"", headers: dict | None = None):
        self.status = status
        self.headers = headers or {}
        self._body = io.BytesIO(body)
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._body.read(size)

    def close(self) -> None:
        self.closed = True


class FakeOpener:
    """Serves canned responses per URL and records every request."""

    def __init__(self, routes: dict[str, Callable[[], Any]] | None = None):
        self.routes = routes or {}
        self.requests: list[Any] = []

    @property
    def urls(self) -> list[str]:
        return [r.full_url for r in self.requests]

    def open(self, request: Any, timeout: float | None = None) -> Any:
        self.requests.append(request)
        route = self.routes.get(request.full_url)
        if route is None:
            raise AssertionError(f"Unexpected request to {request.full_url}")
        result = route()
        if isinstance(result, BaseException):
            raise result
        return result


class FakeStream:
    """AudioStream double that serves a fixed list of blocks."""

    def __init__(self, blocks: list[np.ndarray], sample_rate: int = 16000):
        self._blocks = deque(blocks)
        self.sample_rate = sample_rate
        self.closed = False
        self.exhausted = threading.Event()

    def read(self, timeout: float | None = None) -> np.ndarray | None:
        if self._blocks:
            return self._blocks.popleft()
        self.exhausted.set()
        if timeout:
            time.sleep(min(timeout, 0.01))
        return None

    def close(self) -> None:
        self.closed = True


class FakeMicrophone:
    def __init__(self, stream: FakeStream):
        self.stream = stream
        self.constraints = []

    def acquire(self, constraints: Any) -> FakeStream:
        self.constraints.append(constraints)
        return self.stream


class ListReporter:
    """ProgressReporter that keeps every report."""

    def __init__(self) -> None:
        self.reports: list[tuple[Phase, ProgressDetail]] = []

    @property
    def phases(self) -> list[Phase]:
        return [phase for phase, _ in self.reports]

    def report(self, phase: Phase, detail: ProgressDetail) -> None:
        self.reports.append((phase, detail))


@pytest.fixture
def tmp_home(tmp_path: Path) -> Path:
    """Create a temporary application home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def asset_store(tmp_home: Path) -> CachedAssetStore:
    return CachedAssetStore(tmp_home)


@pytest.fixture
def settings_store(tmp_home: Path) -> SettingsStore:
    store = SettingsStore.in_home(tmp_home)
    store.set(TranscriberSettings(chunk_duration_ms=5000, max_in_flight=3))
    return store


@pytest.fixture
def reporter() -> ListReporter:
    return ListReporter()
