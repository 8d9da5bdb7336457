"""
chunkscribe.transcribe.engine - Engine selection and file transcription.

Chooses the whisper.cpp subprocess engine when a prebuilt binary exists for
the host platform and the in-process faster-whisper engine otherwise, unless
the settings force one of them.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from chunkscribe.audio import TARGET_SAMPLE_RATE, clamp
from chunkscribe.config import EngineConfig, TranscriberSettings
from chunkscribe.exceptions import ConfigError, DecodeError, DependencyError
from chunkscribe.progress import ProgressReporter
from chunkscribe.provision.download import Opener
from chunkscribe.provision.platform import describe_platform
from chunkscribe.provision.provisioner import EngineProvisioner
from chunkscribe.provision.store import CachedAssetStore
from chunkscribe.transcribe.base import InferenceEngine
from chunkscribe.transcribe.cpp import SubprocessEngine
from chunkscribe.transcribe.faster import EmbeddedEngine


@dataclass(frozen=True)
class PlatformFacts:
    system: str
    machine: str

    @classmethod
    def current(cls) -> PlatformFacts:
        return cls(platform.system(), platform.machine())


def resolve_backend(facts: PlatformFacts, requested: str = "auto") -> str:
    """Return "cpp" or "faster" for the requested backend on this host."""
    descriptor = describe_platform(facts.system, facts.machine)
    if requested == "auto":
        return "cpp" if descriptor.supports_native else "faster"
    if requested not in {"cpp", "faster"}:
        raise ConfigError(f"Unknown engine: {requested}")
    if requested == "cpp" and not descriptor.supports_native:
        raise ConfigError(
            f"No prebuilt whisper.cpp binary for {descriptor.os}/{descriptor.arch}; "
            "use engine 'faster' or 'auto'"
        )
    return requested


def select_engine(
    facts: PlatformFacts,
    settings: TranscriberSettings,
    store: CachedAssetStore,
    opener: Opener | None = None,
) -> InferenceEngine:
    """Build the engine for this host and settings (not yet initialized)."""
    backend = resolve_backend(facts, settings.engine)
    if backend == "cpp":
        descriptor = describe_platform(facts.system, facts.machine)
        provisioner = EngineProvisioner(store, opener=opener)
        return SubprocessEngine(provisioner, descriptor, settings.model_id)

    config = EngineConfig.from_settings(settings, cache_dir=store.embedded_dir)
    return EmbeddedEngine(config)


def is_model_cached(engine: InferenceEngine, store: CachedAssetStore, model_id: str) -> bool:
    """Whether the engine can load model_id without network access."""
    if isinstance(engine, EmbeddedEngine):
        return engine.is_cached()
    return store.is_model_cached(model_id)


def load_audio_file(path: Path) -> np.ndarray:
    """Load any audio file as 16kHz mono float32 samples.

    Raises:
        DecodeError: If the file is missing or cannot be decoded
    """
    if not path.exists():
        raise DecodeError(f"Audio file not found: {path}")

    try:
        import librosa
    except ImportError as e:
        raise DependencyError("librosa", "not installed", "Install with: pip install librosa") from e

    try:
        samples, _sr = librosa.load(str(path), sr=TARGET_SAMPLE_RATE, mono=True)
    except Exception as e:
        raise DecodeError(f"Could not decode {path}: {e}") from e

    return clamp(samples)


def transcribe_file(
    engine: InferenceEngine,
    audio_path: Path,
    reporter: ProgressReporter | None = None,
) -> str:
    """Initialize the engine if needed and transcribe a whole audio file."""
    samples = load_audio_file(audio_path)
    engine.initialize(reporter)
    return engine.transcribe(samples)
