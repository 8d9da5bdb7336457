"""
chunkscribe.provision.provisioner - Ensure the whisper.cpp binary and models exist.

On first use the latest whisper.cpp release is queried for the archive built
for this platform, downloaded, extracted with the platform's unzip tool, and
searched for the command-line executable. Models are fetched by file name
from a fixed base URL. Both operations are idempotent: an asset already on
disk is returned without any network activity.
"""

from __future__ import annotations

import os
import shutil
import stat
import subprocess
from pathlib import Path

from chunkscribe.exceptions import MissingAssetError, ProvisioningError
from chunkscribe.logging import logger
from chunkscribe.progress import (
    NullProgressReporter,
    Phase,
    ProgressDetail,
    ProgressReporter,
    byte_progress,
)
from chunkscribe.provision.download import Opener, download_file, fetch_json
from chunkscribe.provision.models import MODEL_BASE_URL, model_filename, model_url
from chunkscribe.provision.platform import PlatformDescriptor
from chunkscribe.provision.store import CachedAssetStore, find_by_name

RELEASES_URL = "https://api.github.com/repos/ggerganov/whisper.cpp/releases/latest"
ARCHIVE_FILENAME = "whisper.zip"


def select_asset_url(release: dict, archive_name: str) -> str:
    """Return the download URL of the asset named exactly archive_name.

    Raises:
        MissingAssetError: If the release has no asset with that name
    """
    assets = release.get("assets") or []
    for asset in assets:
        if asset.get("name") == archive_name:
            url = asset.get("browser_download_url")
            if not url:
                raise ProvisioningError(f"Release asset {archive_name} has no download URL")
            return url
    raise MissingAssetError(archive_name, [a.get("name", "?") for a in assets])


def extract_archive(archive_path: Path, dest_dir: Path, os_name: str) -> None:
    """Extract a zip archive with the platform's extraction tool.

    Raises:
        ProvisioningError: If the tool cannot be started or exits non-zero
    """
    if os_name == "windows":
        cmd = [
            "powershell",
            "-NoProfile",
            "-Command",
            f'Expand-Archive -Path "{archive_path}" -DestinationPath "{dest_dir}" -Force',
        ]
    else:
        cmd = ["unzip", "-o", str(archive_path), "-d", str(dest_dir)]

    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise ProvisioningError(f"Could not run {cmd[0]} to extract archive: {e}") from e

    if proc.returncode != 0:
        raise ProvisioningError(
            f"Extraction failed with code {proc.returncode}: {proc.stderr.strip()}"
        )


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class EngineProvisioner:
    """Makes the native engine binary and model files available locally."""

    def __init__(
        self,
        store: CachedAssetStore,
        opener: Opener | None = None,
        releases_url: str = RELEASES_URL,
        model_base_url: str = MODEL_BASE_URL,
    ) -> None:
        self.store = store
        self.opener = opener
        self.releases_url = releases_url
        self.model_base_url = model_base_url

    def ensure_binary(
        self,
        descriptor: PlatformDescriptor,
        reporter: ProgressReporter | None = None,
    ) -> Path:
        """Return the path of the whisper.cpp executable, provisioning it if absent.

        Raises:
            ProvisioningError: If the platform has no release archive, the
                download or extraction fails, or no executable is found
        """
        reporter = reporter or NullProgressReporter()
        self.store.ensure_dirs()

        asset = self.store.binary(descriptor)
        if asset.present:
            path = asset.local_path
        else:
            try:
                path = self._install_binary(descriptor, reporter)
            except BaseException:
                self._reset_bin_dir()
                raise

        if not descriptor.is_windows:
            make_executable(path)

        logger.debug("Using whisper executable: %s", path)
        return path

    def _install_binary(self, descriptor: PlatformDescriptor, reporter: ProgressReporter) -> Path:
        if descriptor.archive_asset_name is None:
            raise ProvisioningError(
                f"No prebuilt whisper.cpp archive for {descriptor.os}/{descriptor.arch}"
            )

        reporter.report(Phase.DOWNLOADING, ProgressDetail("Downloading whisper executable"))
        logger.debug("Fetching latest whisper.cpp release info")
        release = fetch_json(self.releases_url, opener=self.opener)
        logger.debug("Latest release: %s", release.get("tag_name", "unknown"))
        url = select_asset_url(release, descriptor.archive_asset_name)

        archive_path = self.store.bin_dir / ARCHIVE_FILENAME
        logger.debug("Downloading from: %s", url)
        try:
            download_file(
                url,
                archive_path,
                on_progress=byte_progress(reporter, "Downloading executable"),
                opener=self.opener,
            )
            reporter.report(Phase.EXTRACTING, ProgressDetail("Extracting"))
            extract_archive(archive_path, self.store.bin_dir, descriptor.os)
        finally:
            _remove_archive(archive_path)

        found = find_by_name(self.store.bin_dir, descriptor.executable_names)
        if found is None:
            contents = ", ".join(self.store.binary_listing()) or "(empty)"
            raise ProvisioningError(
                f"Could not find whisper executable after extraction. Contents: {contents}"
            )
        return found

    def _reset_bin_dir(self) -> None:
        logger.debug("Discarding partial binary install in %s", self.store.bin_dir)
        shutil.rmtree(self.store.bin_dir, ignore_errors=True)
        self.store.bin_dir.mkdir(parents=True, exist_ok=True)

    def ensure_model(self, model_id: str, reporter: ProgressReporter | None = None) -> Path:
        """Return the path of the model file for model_id, downloading it if absent.

        The file is written under a .part name and renamed into place only
        once complete.

        Raises:
            ProvisioningError: If the download fails
        """
        reporter = reporter or NullProgressReporter()
        self.store.ensure_dirs()

        asset = self.store.model(model_id)
        if asset.present:
            return asset.local_path

        filename = model_filename(model_id)
        url = model_url(filename, self.model_base_url)
        partial = asset.local_path.with_name(asset.local_path.name + ".part")

        reporter.report(Phase.DOWNLOADING, ProgressDetail(f"Downloading model: {filename}"))
        logger.debug("Downloading model from: %s", url)
        try:
            download_file(
                url,
                partial,
                on_progress=byte_progress(reporter, "Downloading model"),
                opener=self.opener,
            )
            os.replace(partial, asset.local_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        logger.debug("Model downloaded: %s", asset.local_path)
        return asset.local_path

    def clear_cache(self) -> None:
        """Delete all provisioned binaries and models."""
        self.store.clear()


def _remove_archive(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to delete archive %s: %s", path, e)
