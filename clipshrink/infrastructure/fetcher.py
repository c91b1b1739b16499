import logging
from pathlib import Path
from typing import Callable, Optional
import requests
from clipshrink.domain.errors import NetworkError

ProgressCallback = Callable[[int, Optional[int]], None]

class ArchiveFetcher:
    """Streams a remote archive to a local file."""

    CHUNK_SIZE = 1024 * 256

    def __init__(self, timeout: float = 30.0):
        # Applies to connecting and to every read, not to the whole transfer.
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def fetch(self, url: str, destination: Path, on_progress: Optional[ProgressCallback] = None) -> Path:
        """Downloads url to destination, following 301/302 redirects."""
        self.logger.info(f"Downloading {url} -> {destination}")
        try:
            with requests.get(url, stream=True, timeout=(self.timeout, self.timeout), allow_redirects=True) as response:
                for hop in response.history:
                    self.logger.debug(f"Redirect {hop.status_code}: {hop.url} -> {hop.headers.get('location')}")

                if response.status_code != 200:
                    raise NetworkError(f"Download failed: {response.status_code}")

                total_bytes = self._content_length(response)
                downloaded_bytes = 0
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded_bytes += len(chunk)
                        if on_progress:
                            on_progress(downloaded_bytes, total_bytes)
        except NetworkError:
            self._discard(destination)
            raise
        except requests.Timeout as e:
            self._discard(destination)
            raise NetworkError(f"Download timeout after {self.timeout:g}s: {url}") from e
        except requests.RequestException as e:
            self._discard(destination)
            raise NetworkError(f"Download failed: {e}") from e
        except OSError as e:
            self._discard(destination)
            raise NetworkError(f"Could not write {destination}: {e}") from e

        self.logger.info(f"Download complete: {downloaded_bytes} bytes")
        return destination

    @staticmethod
    def _content_length(response) -> Optional[int]:
        value = response.headers.get("content-length")
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    def _discard(self, destination: Path):
        try:
            destination.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Could not remove partial download {destination}: {e}")
