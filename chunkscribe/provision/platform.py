"""
chunkscribe.provision.platform - Host platform description.

Maps operating system and CPU architecture to the whisper.cpp release archive
and executable names for that host.
"""

from __future__ import annotations

import platform as _platform
from dataclasses import dataclass

POSIX_EXECUTABLES = frozenset({"whisper-cli"})
WINDOWS_EXECUTABLES = frozenset({"whisper-cli.exe"})

_ARCH_ALIASES = {
    "amd64": "x64",
    "x86_64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


@dataclass(frozen=True)
class PlatformDescriptor:
    """Immutable facts needed to provision the native engine."""

    os: str
    arch: str
    executable_names: frozenset[str]
    archive_asset_name: str | None

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def supports_native(self) -> bool:
        return self.archive_asset_name is not None


def normalize_arch(machine: str) -> str:
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def describe_platform(system: str | None = None, machine: str | None = None) -> PlatformDescriptor:
    """Describe a host platform, defaulting to the current one.

    Args:
        system: platform.system() style name (Windows, Darwin, Linux)
        machine: platform.machine() style architecture

    Returns:
        PlatformDescriptor; archive_asset_name is None when no prebuilt
        whisper.cpp archive exists for the host
    """
    os_name = (system or _platform.system()).lower()
    arch = normalize_arch(machine or _platform.machine())

    if os_name == "windows":
        return PlatformDescriptor(os_name, arch, WINDOWS_EXECUTABLES, "whisper-blas-bin-x64.zip")
    if os_name == "darwin":
        suffix = "arm64" if arch == "arm64" else "x64"
        return PlatformDescriptor(
            os_name, arch, POSIX_EXECUTABLES, f"whisper-bin-{suffix}-apple-darwin.zip"
        )
    if os_name == "linux" and arch == "x64":
        return PlatformDescriptor(os_name, arch, POSIX_EXECUTABLES, "whisper-bin-x86_64-linux-gnu.zip")
    return PlatformDescriptor(os_name, arch, POSIX_EXECUTABLES, None)
