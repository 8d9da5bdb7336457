"""
chunkscribe.exceptions - Custom exception classes.

All Chunkscribe-specific exceptions inherit from ChunkscribeError.
"""


class ChunkscribeError(Exception):
    """Base exception for all Chunkscribe errors."""

    pass


class ConfigError(ChunkscribeError):
    """Settings loading or validation error."""

    pass


class ProvisioningError(ChunkscribeError):
    """Engine binary or model could not be made available locally."""

    pass


class MissingAssetError(ProvisioningError):
    """The latest release does not publish the archive this platform needs."""

    def __init__(self, asset_name: str, available: list[str]):
        self.asset_name = asset_name
        self.available = available
        listing = ", ".join(available) if available else "none"
        super().__init__(f"Could not find {asset_name} in release. Available: {listing}")


class EngineInvocationError(ChunkscribeError):
    """A single transcription call failed."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class DecodeError(ChunkscribeError):
    """Captured audio could not be turned into samples."""

    pass


class StateError(ChunkscribeError):
    """Operation requested in the wrong lifecycle state."""

    pass


class CaptureError(ChunkscribeError):
    """Microphone acquisition or stream error."""

    pass


class DependencyError(ChunkscribeError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")
