import subprocess
import shlex
import re
import logging
import time
from collections import deque
from pathlib import Path
from typing import List, Optional
from clipshrink.domain.errors import EncodeProcessError
from clipshrink.domain.events import JobCompleted, JobFailed, JobProgressUpdated
from clipshrink.domain.models import CompressionResult, EncodingPlan, OutputFormat
from clipshrink.infrastructure.event_bus import EventBus
from clipshrink.infrastructure.provisioning import ProvisioningState

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
TIME_RE = re.compile(r"time=\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
ERROR_HINTS = ("error", "invalid", "failed", "not supported", "unknown", "no such file")

def _to_seconds(h: str, m: str, s: str) -> float:
    return int(h) * 3600 + int(m) * 60 + float(s)

class JobSupervisor:
    """Runs one ffmpeg encode per call and reports its progress on the event bus."""

    DIAGNOSTIC_LINES = 40

    def __init__(self, state: ProvisioningState, event_bus: EventBus):
        self.state = state
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    def _build_command(self, binary: Path, source_path: Path, plan: EncodingPlan, output_path: Path) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [str(binary), "-y"]
        cmd.extend(plan.input_flags)
        cmd.extend(["-i", str(source_path)])

        cmd.extend(["-c:v", plan.video_codec])
        if plan.stream_copy:
            cmd.extend(["-c:a", plan.audio_codec])
            cmd.append(str(output_path))
            return cmd

        if plan.video_bitrate:
            cmd.extend(["-b:v", plan.video_bitrate])
        cmd.extend(plan.encoder_options)
        if plan.target_width_expr:
            cmd.extend(["-vf", f"scale={plan.target_width_expr}"])
        if plan.fps:
            cmd.extend(["-r", str(plan.fps)])

        cmd.extend(["-c:a", plan.audio_codec])
        if plan.audio_bitrate:
            cmd.extend(["-b:a", plan.audio_bitrate])
        if plan.audio_channels:
            cmd.extend(["-ac", str(plan.audio_channels)])
        if plan.audio_sample_rate:
            cmd.extend(["-ar", str(plan.audio_sample_rate)])

        cmd.extend(plan.container_flags)
        cmd.append(str(output_path))
        return cmd

    def run(
        self,
        source_path: Path,
        plan: EncodingPlan,
        job_id: str,
        output_path: Path,
        output_format: OutputFormat = OutputFormat.MP4,
    ) -> CompressionResult:
        """Executes the encode. Publishes exactly one JobCompleted or JobFailed."""
        try:
            result = self._run(source_path, plan, job_id, output_path, output_format)
        except Exception as e:
            self.event_bus.publish(JobFailed(job_id=job_id, error_message=str(e)))
            raise
        self.event_bus.publish(JobCompleted(job_id=job_id, result=result))
        return result

    def _run(
        self, source_path: Path, plan: EncodingPlan, job_id: str, output_path: Path, output_format: OutputFormat
    ) -> CompressionResult:
        binary = self.state.require_binary()
        cmd = self._build_command(binary, source_path, plan, output_path)
        self.logger.info(f"Spawned ffmpeg with command: {shlex.join(cmd)}")
        start_time = time.monotonic()

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                errors="replace",
                bufsize=1
            )
        except OSError as e:
            raise EncodeProcessError(f"Could not start ffmpeg: {e}") from e

        tail = deque(maxlen=self.DIAGNOSTIC_LINES)
        duration: Optional[float] = None
        last_error: Optional[str] = None

        try:
            # universal_newlines splits ffmpeg's \r-terminated status lines too
            for line in process.stdout:
                line = line.rstrip()
                if not line:
                    continue
                tail.append(line)

                if duration is None:
                    match = DURATION_RE.search(line)
                    if match:
                        duration = _to_seconds(*match.groups())

                if "time=" not in line and any(hint in line.lower() for hint in ERROR_HINTS):
                    last_error = line

                match = TIME_RE.search(line)
                if match and duration:
                    percent = min(100.0, _to_seconds(*match.groups()) * 100.0 / duration)
                    self.event_bus.publish(JobProgressUpdated(job_id=job_id, progress_percent=percent))
        finally:
            if process.poll() is None:
                self.logger.warning(f"Stopping ffmpeg for job {job_id}")
                process.kill()
            process.wait()
            process.stdout.close()
        elapsed = time.monotonic() - start_time

        if process.returncode != 0:
            diagnostics = "\n".join(tail)
            message = last_error or (tail[-1] if tail else f"ffmpeg exited with code {process.returncode}")
            self.logger.error(
                f"ffmpeg failed for job {job_id} (code={process.returncode}, elapsed={elapsed:.2f}s): {message}\n{diagnostics}"
            )
            raise EncodeProcessError(
                f"ffmpeg exited with code {process.returncode}: {message}",
                returncode=process.returncode,
                diagnostics=diagnostics,
            )

        self.logger.info(f"Processing finished successfully: {output_path.name} elapsed={elapsed:.2f}s")
        return CompressionResult(
            output_path=output_path,
            output_name=output_path.name,
            format=output_format,
        )
