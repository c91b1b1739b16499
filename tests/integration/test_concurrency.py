import threading
import concurrent.futures
from pathlib import Path
from unittest.mock import MagicMock, patch
from clipshrink.config.models import AppConfig, EncodingConfig
from clipshrink.domain.errors import NetworkError
from clipshrink.domain.events import JobCompleted, JobFailed, JobProgressUpdated
from clipshrink.domain.models import CompressionRequest, Platform
from clipshrink.infrastructure.extractor import ArchiveExtractor
from clipshrink.infrastructure.provisioning import ProvisioningManager
from clipshrink.pipeline.service import CompressionService
from conftest import FAKE_BINARY, PROBE_OUTPUT, build_tar, ffmpeg_output

CALLERS = 8


def gated_fetcher(gate: threading.Event, started: threading.Event):
    """Fetcher that blocks inside the download until the test opens the gate."""
    fetcher = MagicMock()

    def fetch(url, destination, on_progress=None):
        started.set()
        assert gate.wait(timeout=5)
        build_tar(Path(destination), {"ffmpeg-7.0.2-amd64-static/ffmpeg": FAKE_BINARY})
        return destination

    fetcher.fetch.side_effect = fetch
    return fetcher


def test_concurrent_ensure_downloads_once(provisioning_config, event_bus, install_dir):
    gate, started = threading.Event(), threading.Event()
    fetcher = gated_fetcher(gate, started)
    manager = ProvisioningManager(
        provisioning_config, event_bus, Platform.LINUX, fetcher=fetcher, extractor=ArchiveExtractor(Platform.LINUX)
    )

    with concurrent.futures.ThreadPoolExecutor(max_workers=CALLERS) as executor:
        futures = [executor.submit(manager.ensure) for _ in range(CALLERS)]
        assert started.wait(timeout=5)
        gate.set()
        results = [f.result(timeout=10) for f in futures]

    assert fetcher.fetch.call_count == 1
    assert {r.binary_path for r in results} == {install_dir / "ffmpeg"}


def test_concurrent_callers_share_failure(provisioning_config, event_bus):
    gate, started = threading.Event(), threading.Event()
    fetcher = MagicMock()

    def failing_fetch(url, destination, on_progress=None):
        started.set()
        gate.wait(timeout=5)
        raise NetworkError("Download failed: 503")

    fetcher.fetch.side_effect = failing_fetch
    manager = ProvisioningManager(
        provisioning_config, event_bus, Platform.LINUX, fetcher=fetcher, extractor=ArchiveExtractor(Platform.LINUX)
    )

    with concurrent.futures.ThreadPoolExecutor(max_workers=4) as executor:
        futures = [executor.submit(manager.ensure) for _ in range(4)]
        assert started.wait(timeout=5)
        gate.set()
        errors = [f.exception(timeout=10) for f in futures]

    assert all(isinstance(e, NetworkError) for e in errors)
    assert fetcher.fetch.call_count == 1


def test_parallel_jobs_do_not_mix_events(tmp_path, event_bus):
    install_dir = tmp_path / "ffmpeg"
    install_dir.mkdir()
    (install_dir / "ffmpeg").write_bytes(FAKE_BINARY)
    config = AppConfig(encoding=EncodingConfig(max_parallel_jobs=3))
    config.provisioning.install_dir = install_dir

    sources = []
    for name in ("a.mp4", "b.mp4", "broken.mp4"):
        path = tmp_path / name
        path.write_bytes(b"\x00")
        sources.append(path)

    events = []
    for event_type in (JobProgressUpdated, JobCompleted, JobFailed):
        event_bus.subscribe(event_type, events.append)

    def fake_popen(cmd, **kwargs):
        process = MagicMock()
        if any("broken.mp4" in part for part in cmd):
            process.stdout = ffmpeg_output(["broken.mp4: Invalid data found when processing input\n"])
            process.returncode = 1
        else:
            process.stdout = ffmpeg_output([
                "  Duration: 00:00:04.00, start: 0.000000, bitrate: 900 kb/s\n",
                "frame=   60 fps=60 q=28.0 size=  128kB time=00:00:02.00 bitrate= 500kbits/s speed=2x\n",
                "frame=  120 fps=60 q=28.0 Lsize=  256kB time=00:00:04.00 bitrate= 500kbits/s speed=2x\n",
            ])
            process.returncode = 0
        return process

    with patch("subprocess.run") as mock_run, patch("subprocess.Popen", side_effect=fake_popen):
        mock_run.return_value.returncode = 1
        mock_run.return_value.stdout = ""
        mock_run.return_value.stderr = PROBE_OUTPUT

        with CompressionService.create(config, event_bus, platform=Platform.LINUX) as service:
            futures = {
                src.name: service.submit(CompressionRequest(source_path=src, quality="480", job_id=src.stem))
                for src in sources
            }
            done = {name: f.exception(timeout=10) for name, f in futures.items()}

    assert done["a.mp4"] is None
    assert done["b.mp4"] is None
    assert done["broken.mp4"] is not None

    for job_id in ("a", "b", "broken"):
        job_events = [e for e in events if e.job_id == job_id]
        terminal = [e for e in job_events if isinstance(e, (JobCompleted, JobFailed))]
        assert len(terminal) == 1
        assert job_events[-1] is terminal[0]

    assert [e.progress_percent for e in events if e.job_id == "a" and isinstance(e, JobProgressUpdated)] == [50.0, 100.0]
