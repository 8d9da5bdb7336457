"""
chunkscribe.provision.store - Local cache of engine binaries and model files.

The store owns two directories under the application home: bin/ (extracted
whisper.cpp release) and models/ (ggml model files). Presence is always judged
from the final artifact, never from temporary download files.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from chunkscribe.logging import logger
from chunkscribe.provision.models import model_filename
from chunkscribe.provision.platform import PlatformDescriptor


class AssetKind(str, Enum):
    BINARY = "binary"
    MODEL = "model"


@dataclass(frozen=True)
class CachedAsset:
    kind: AssetKind
    local_path: Path
    present: bool


def find_by_name(root: Path, candidate_names: Iterable[str]) -> Path | None:
    """Depth-first search of root for a regular file with one of the given names.

    Entries are visited in sorted order; symlinked directories are not followed.

    Returns:
        Path of the first match, or None
    """
    names = set(candidate_names)
    if not root.is_dir():
        return None

    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.debug("Cannot list %s: %s", current, e)
            continue
        for entry in entries:
            if entry.is_file() and entry.name in names:
                return entry
        stack.extend(
            entry for entry in reversed(entries) if entry.is_dir() and not entry.is_symlink()
        )
    return None


def list_tree(root: Path) -> list[str]:
    """List everything under root as relative paths; directories end with '/'."""
    if not root.is_dir():
        return []

    results = []
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root).as_posix()
        results.append(relative + "/" if path.is_dir() else relative)
    return results


class CachedAssetStore:
    """Tracks engine binaries and model files under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.bin_dir = root / "bin"
        self.models_dir = root / "models"
        self.embedded_dir = root / "hf"

    def ensure_dirs(self) -> None:
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        self.models_dir.mkdir(parents=True, exist_ok=True)

    def binary(self, descriptor: PlatformDescriptor) -> CachedAsset:
        found = find_by_name(self.bin_dir, descriptor.executable_names)
        if found is not None:
            return CachedAsset(AssetKind.BINARY, found, True)
        default_name = sorted(descriptor.executable_names)[0]
        return CachedAsset(AssetKind.BINARY, self.bin_dir / default_name, False)

    def model(self, model_id: str) -> CachedAsset:
        path = self.models_dir / model_filename(model_id)
        return CachedAsset(AssetKind.MODEL, path, path.is_file())

    def is_model_cached(self, model_id: str) -> bool:
        return self.model(model_id).present

    def binary_listing(self) -> list[str]:
        return list_tree(self.bin_dir)

    def clear(self) -> None:
        """Delete the binary, model and embedded-engine cache directories recursively."""
        for directory in (self.bin_dir, self.models_dir, self.embedded_dir):
            if directory.exists():
                logger.debug("Removing %s", directory)
                shutil.rmtree(directory)
