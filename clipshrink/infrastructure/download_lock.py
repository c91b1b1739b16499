import logging
import time
from pathlib import Path
from typing import Callable, Optional
from clipshrink.domain.models import DownloadLock

LOCK_FILE_NAME = ".download.lock"

class DownloadLockFile:
    """Cross-process download marker kept in the install directory.

    Waiting is a bounded poll: processes share nothing but the directory, so
    there is no channel to be notified on. After `wait_ceiling` seconds the
    caller proceeds regardless, and a marker already older than the ceiling
    is treated as abandoned.
    """

    def __init__(
        self,
        install_dir: Path,
        poll_interval: float = 1.0,
        wait_ceiling: float = 300.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.path = install_dir / LOCK_FILE_NAME
        self.poll_interval = poll_interval
        self.wait_ceiling = wait_ceiling
        self._clock = clock
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    def read(self) -> Optional[DownloadLock]:
        """Returns the current marker, None when absent or unreadable."""
        try:
            raw = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            self.logger.warning(f"Could not read lock file {self.path}: {e}")
            return None
        try:
            return DownloadLock(created_at_epoch_ms=int(raw))
        except ValueError:
            return None

    def is_stale(self, lock: DownloadLock) -> bool:
        age_ms = self._clock() * 1000 - lock.created_at_epoch_ms
        return age_ms >= self.wait_ceiling * 1000

    def wait_for_release(self) -> bool:
        """Blocks while another process holds the marker. Returns True if it was released."""
        if not self.path.exists():
            return True

        lock = self.read()
        if lock is not None and self.is_stale(lock):
            self.logger.warning(f"Ignoring stale download lock {self.path} (created {lock.created_at_epoch_ms})")
            return False

        self.logger.info("Another download is in progress (lock file exists), waiting...")
        deadline = self._clock() + self.wait_ceiling
        while self._clock() < deadline:
            self._sleep(self.poll_interval)
            if not self.path.exists():
                self.logger.info("Lock released, continuing")
                return True

        self.logger.warning(f"Download lock still present after {self.wait_ceiling:g}s, proceeding anyway")
        return False

    def acquire(self) -> DownloadLock:
        """Waits for other holders, then writes our own marker."""
        self.wait_for_release()
        lock = DownloadLock(created_at_epoch_ms=int(self._clock() * 1000))
        try:
            self.path.write_text(str(lock.created_at_epoch_ms))
        except OSError as e:
            self.logger.warning(f"Failed to create lock file {self.path}: {e}")
        return lock

    def release(self):
        """Removes the marker. Failures are logged: a leftover marker expires on its own."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Failed to remove lock file {self.path}: {e}")
