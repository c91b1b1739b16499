import logging
import shutil
import threading
import concurrent.futures
from pathlib import Path
from typing import Iterable, List, Optional
from clipshrink.config.models import AppConfig
from clipshrink.domain.errors import MissingInput, ProvisioningError
from clipshrink.domain.events import JobFailed, JobStarted
from clipshrink.domain.models import (
    CompressionRequest, CompressionResult, Platform, ToolInstallation, VideoDimensions, detect_platform
)
from clipshrink.infrastructure.event_bus import EventBus
from clipshrink.infrastructure.ffmpeg import JobSupervisor
from clipshrink.infrastructure.prober import MediaProber
from clipshrink.infrastructure.provisioning import ProvisioningManager, ProvisioningState
from clipshrink.pipeline.policy import plan_encoding

def output_name_for(source_path: Path, request: CompressionRequest) -> str:
    return f"compressed_{source_path.stem}_{request.quality}.{request.format.value}"

def unique_destination(path: Path) -> Path:
    """Returns path, or 'name (n).ext' for the first n not already taken."""
    if not path.exists():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1

class CompressionService:
    """Process-wide entry point: provisioning, metadata queries and compression jobs.

    Construction is cheap and never touches the network. The tool is
    provisioned by warm_up() or by the first job that needs it.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        provisioning: ProvisioningManager,
        prober: MediaProber,
        supervisor: JobSupervisor,
        platform: Optional[Platform],
    ):
        self.config = config
        self.event_bus = event_bus
        self.provisioning = provisioning
        self.prober = prober
        self.supervisor = supervisor
        self.platform = platform
        self.logger = logging.getLogger(__name__)

        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @classmethod
    def create(cls, config: AppConfig, event_bus: EventBus, platform: Optional[Platform] = None) -> "CompressionService":
        platform = platform if platform is not None else detect_platform()
        state = ProvisioningState()
        provisioning = ProvisioningManager(config.provisioning, event_bus, platform, state=state)
        return cls(
            config=config,
            event_bus=event_bus,
            provisioning=provisioning,
            prober=MediaProber(state),
            supervisor=JobSupervisor(state, event_bus),
            platform=platform,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown()

    def shutdown(self, wait: bool = True):
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.config.encoding.max_parallel_jobs,
                    thread_name_prefix="clipshrink-job",
                )
            return self._executor

    def ensure_tool(self) -> ToolInstallation:
        return self.provisioning.ensure()

    def warm_up(self) -> bool:
        """Provisions the tool ahead of the first job. Failures are reported, not raised."""
        try:
            installation = self.ensure_tool()
        except ProvisioningError as e:
            self.logger.error(f"Failed to initialize ffmpeg: {e}")
            return False
        self.logger.info(f"ffmpeg initialized at {installation.binary_path}")
        return True

    def _validate_source(self, source_path: Optional[Path]) -> Path:
        if not source_path:
            raise MissingInput("File path is missing")
        source_path = Path(source_path)
        if not source_path.is_file():
            raise MissingInput(f"Source file not found: {source_path}")
        return source_path

    def get_video_metadata(self, source_path: Optional[Path]) -> VideoDimensions:
        source_path = self._validate_source(source_path)
        self.ensure_tool()
        probe = self.prober.probe(source_path)
        return VideoDimensions(
            width=probe.width,
            height=probe.height,
            aspect_ratio=probe.width / probe.height,
        )

    def submit(self, request: CompressionRequest) -> concurrent.futures.Future:
        """Schedules a job. Its errors are delivered only through the returned future."""
        return self._get_executor().submit(self._process, request)

    def compress(self, request: CompressionRequest) -> CompressionResult:
        return self.submit(request).result()

    def _process(self, request: CompressionRequest) -> CompressionResult:
        job_id = request.job_id
        try:
            source_path = self._validate_source(request.source_path)
            self.event_bus.publish(JobStarted(job_id=job_id, source_path=source_path))
            self.ensure_tool()
            probe = self.prober.probe(source_path)
            plan = plan_encoding(probe, request, self.platform)
            output_path = source_path.with_name(output_name_for(source_path, request))
        except Exception as e:
            self.logger.error(f"Job {job_id} failed before encoding: {e}")
            self.event_bus.publish(JobFailed(job_id=job_id, error_message=str(e)))
            raise

        self.logger.info(f"Starting compression: {source_path} -> {output_path} (quality={request.quality}, format={request.format.value})")
        if plan.stream_copy:
            self.logger.info("Preserving original quality (no re-encoding)")
        elif plan.hardware_accel:
            self.logger.info("8K video: using VideoToolbox hardware acceleration")
        return self.supervisor.run(source_path, plan, job_id, output_path, request.format)

    def export_results(self, paths: Iterable[Path], destination_dir: Path) -> List[Path]:
        """Copies finished outputs into destination_dir without overwriting anything there."""
        destination_dir.mkdir(parents=True, exist_ok=True)
        saved: List[Path] = []
        for source in paths:
            if not source:
                continue
            source = Path(source)
            destination = unique_destination(destination_dir / source.name)
            try:
                shutil.copy2(source, destination)
            except OSError as e:
                self.logger.error(f"Failed to save {source} to {destination_dir}: {e}")
                continue
            saved.append(destination)
        return saved
