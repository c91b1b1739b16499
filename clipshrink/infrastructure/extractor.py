import logging
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Optional
from clipshrink.domain.errors import ExtractionError
from clipshrink.domain.models import Platform

class ArchiveExtractor:
    """Unpacks a downloaded ffmpeg archive and normalizes the binary location.

    Windows and macOS builds ship as zip, Linux static builds as tar.xz with a
    single version-named top directory that is stripped on extraction.
    """

    def __init__(self, platform: Platform):
        self.platform = platform
        self.logger = logging.getLogger(__name__)

    def extract(self, archive_path: Path, destination: Path) -> Path:
        """Extracts archive_path into destination and returns the canonical binary path."""
        self.logger.info(f"Extracting {archive_path.name} into {destination} ({self.platform.value})")
        try:
            if self.platform is Platform.LINUX:
                self._extract_tar(archive_path, destination)
            else:
                self._extract_zip(archive_path, destination)
        except (zipfile.BadZipFile, tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Failed to extract {archive_path.name}: {e}") from e

        binary = self._normalize(destination)
        if self.platform is not Platform.WIN:
            self._make_executable(binary)
        return binary

    def _extract_zip(self, archive_path: Path, destination: Path):
        with zipfile.ZipFile(archive_path, "r") as zip_ref:
            members = [name for name in zip_ref.namelist() if not self._is_installed_binary(name, destination)]
            zip_ref.extractall(destination, members=members)

    def _extract_tar(self, archive_path: Path, destination: Path):
        # Equivalent of `tar -xf --strip-components=1`
        with tarfile.open(archive_path, "r:*") as tar_ref:
            members = []
            for member in tar_ref.getmembers():
                stripped = self._strip_first_component(member.name)
                if stripped is None or self._is_installed_binary(stripped, destination):
                    continue
                changes = {"name": stripped}
                if member.islnk():
                    changes["linkname"] = self._strip_first_component(member.linkname) or member.linkname
                members.append(member.replace(**changes, deep=False))
            tar_ref.extractall(destination, members=members, filter="data")

    def _is_installed_binary(self, member_name: str, destination: Path) -> bool:
        """True for the archive entry that would land on an existing canonical binary."""
        if PurePosixPath(member_name) != PurePosixPath(self.platform.binary_name):
            return False
        return (destination / self.platform.binary_name).is_file()

    @staticmethod
    def _strip_first_component(name: str) -> Optional[str]:
        parts = PurePosixPath(name).parts
        if len(parts) <= 1:
            return None
        return str(PurePosixPath(*parts[1:]))

    def candidate_paths(self, root: Path) -> List[Path]:
        """Where a freshly extracted binary may sit, most canonical first."""
        name = self.platform.binary_name
        candidates = [root / name, root / "bin" / name]
        candidates.extend(sorted(root.glob(f"*/bin/{name}")))
        candidates.extend(sorted(root.glob(f"*/{name}")))
        return candidates

    def _normalize(self, root: Path) -> Path:
        canonical = root / self.platform.binary_name
        if canonical.is_file():
            return canonical

        found = next((c for c in self.candidate_paths(root) if c.is_file()), None)
        if found is None:
            raise ExtractionError(f"{self.platform.binary_name} not found in extracted archive")

        try:
            shutil.copy2(found, canonical)
        except OSError as e:
            raise ExtractionError(f"Could not move {found} to {canonical}: {e}") from e
        self.logger.debug(f"Normalized {found} -> {canonical}")
        return canonical

    def _make_executable(self, path: Path):
        try:
            mode = path.stat().st_mode
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            raise ExtractionError(f"Could not mark {path} executable: {e}") from e
