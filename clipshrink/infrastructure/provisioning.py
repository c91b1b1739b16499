import logging
import threading
import time
from concurrent.futures import Future
from pathlib import Path, PurePosixPath
from typing import Dict, Optional
from urllib.parse import urlparse
from clipshrink.config.models import ProvisioningConfig
from clipshrink.domain.errors import ProvisioningIncomplete, ToolUnavailable, UnsupportedPlatform
from clipshrink.domain.events import ProvisioningCompleted, ProvisioningProgress, ProvisioningStarted
from clipshrink.domain.models import Platform, ToolInstallation
from clipshrink.infrastructure.download_lock import DownloadLockFile
from clipshrink.infrastructure.event_bus import EventBus
from clipshrink.infrastructure.extractor import ArchiveExtractor
from clipshrink.infrastructure.fetcher import ArchiveFetcher

class ProvisioningState:
    """Last verified installation, shared by everything that runs the binary."""

    def __init__(self):
        self._lock = threading.Lock()
        self._installation: Optional[ToolInstallation] = None

    @property
    def installation(self) -> Optional[ToolInstallation]:
        with self._lock:
            return self._installation

    @property
    def binary_path(self) -> Optional[Path]:
        installation = self.installation
        return installation.binary_path if installation else None

    def record(self, installation: ToolInstallation):
        with self._lock:
            self._installation = installation

    def require_binary(self) -> Path:
        binary_path = self.binary_path
        if binary_path is None:
            raise ToolUnavailable("ffmpeg has not been provisioned yet")
        return binary_path

class ProvisioningManager:
    """Makes sure the platform's ffmpeg build is present in the install directory."""

    TEMP_ARCHIVE_STEM = "ffmpeg-download"

    def __init__(
        self,
        config: ProvisioningConfig,
        event_bus: EventBus,
        platform: Optional[Platform],
        state: Optional[ProvisioningState] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        extractor: Optional[ArchiveExtractor] = None,
        lock_file: Optional[DownloadLockFile] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.platform = platform
        self.state = state or ProvisioningState()
        self.install_dir = config.install_dir
        self.fetcher = fetcher or ArchiveFetcher(timeout=config.download_timeout)
        self.extractor = extractor or (ArchiveExtractor(platform) if platform else None)
        self.lock_file = lock_file or DownloadLockFile(
            self.install_dir,
            poll_interval=config.lock_poll_interval,
            wait_ceiling=config.lock_wait_ceiling,
        )
        self.logger = logging.getLogger(__name__)

        self._pending_lock = threading.Lock()
        self._pending: Optional[Future] = None

    @property
    def download_urls(self) -> Dict[Platform, str]:
        return self.config.download_urls

    def _archive_url(self) -> str:
        url = self.download_urls.get(self.platform) if self.platform else None
        if not url:
            tag = self.platform.value if self.platform else "unknown"
            raise UnsupportedPlatform(f"Unsupported platform: {tag}")
        return url

    def resolve_binary(self) -> Optional[Path]:
        """Returns the installed binary if present, checking the root then bin/."""
        if self.platform is None or not self.install_dir.exists():
            return None
        name = self.platform.binary_name
        for candidate in (self.install_dir / name, self.install_dir / "bin" / name):
            if candidate.is_file():
                return candidate
        return None

    def ensure(self) -> ToolInstallation:
        """Returns the installation, downloading it first if needed.

        Concurrent callers in this process share one in-flight acquisition;
        other processes are kept out by the lock file.
        """
        url = self._archive_url()

        existing = self.resolve_binary()
        if existing is not None:
            return self._remember(existing)

        with self._pending_lock:
            pending = self._pending
            owner = pending is None
            if owner:
                pending = Future()
                self._pending = pending

        if not owner:
            self.logger.info("ffmpeg download already in progress, waiting...")
            return pending.result()

        try:
            installation = self._acquire(url)
        except BaseException as e:
            pending.set_exception(e)
            raise
        else:
            pending.set_result(installation)
            return installation
        finally:
            with self._pending_lock:
                self._pending = None

    def _remember(self, binary_path: Path) -> ToolInstallation:
        installation = ToolInstallation(
            install_dir=self.install_dir,
            binary_path=binary_path,
            platform=self.platform,
        )
        self.state.record(installation)
        return installation

    def _acquire(self, url: str) -> ToolInstallation:
        # Another thread may have finished between the fast path and taking ownership.
        existing = self.resolve_binary()
        if existing is not None:
            return self._remember(existing)

        self.logger.info(f"ffmpeg not found in {self.install_dir}, downloading...")
        self.event_bus.publish(ProvisioningStarted(install_dir=self.install_dir, platform=self.platform))
        start_time = time.monotonic()

        self.install_dir.mkdir(parents=True, exist_ok=True)
        self._download_and_extract(url)

        binary_path = self.resolve_binary()
        if binary_path is None:
            raise ProvisioningIncomplete(f"ffmpeg download finished but no binary was found in {self.install_dir}")

        installation = self._remember(binary_path)
        elapsed = time.monotonic() - start_time
        self.logger.info(f"ffmpeg ready at {binary_path} ({elapsed:.1f}s)")
        self.event_bus.publish(ProvisioningCompleted(binary_path=binary_path))
        return installation

    def _temp_archive_path(self, url: str) -> Path:
        suffix = PurePosixPath(urlparse(url).path).suffix
        return self.install_dir / f"{self.TEMP_ARCHIVE_STEM}{suffix}"

    def _download_and_extract(self, url: str):
        temp_archive = self._temp_archive_path(url)
        self.lock_file.acquire()
        try:
            # Another process may have installed it while we waited on the lock.
            existing = self.resolve_binary()
            if existing is not None:
                self.logger.info(f"ffmpeg installed by another process at {existing}, skipping download")
                return
            self.fetcher.fetch(url, temp_archive, on_progress=self._on_download_progress)
            self.extractor.extract(temp_archive, self.install_dir)
            self.logger.info("ffmpeg extracted successfully")
        finally:
            self._remove_temp_archive(temp_archive)
            self.lock_file.release()

    def _on_download_progress(self, downloaded_bytes: int, total_bytes: Optional[int]):
        self.event_bus.publish(ProvisioningProgress(downloaded_bytes=downloaded_bytes, total_bytes=total_bytes))

    def _remove_temp_archive(self, temp_archive: Path):
        try:
            temp_archive.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Could not remove temporary archive {temp_archive}: {e}")
