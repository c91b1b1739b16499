import threading
from typing import Dict, Optional
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeElapsedColumn
from clipshrink.domain.events import (
    JobCompleted, JobFailed, JobProgressUpdated, JobStarted,
    ProvisioningCompleted, ProvisioningProgress, ProvisioningStarted
)
from clipshrink.infrastructure.event_bus import EventBus

SIZE_UNITS = ("Bytes", "KB", "MB", "GB")

def _two_places(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")

def format_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    size = float(num_bytes)
    for unit in SIZE_UNITS[:-1]:
        if size < 1024:
            return f"{_two_places(size)} {unit}"
        size /= 1024
    return f"{_two_places(size)} {SIZE_UNITS[-1]}"

class ConsoleReporter:
    """Subscribes to the EventBus and renders provisioning and job progress."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )
        self._lock = threading.Lock()
        self._download_task: Optional[TaskID] = None
        self._job_tasks: Dict[str, TaskID] = {}
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(ProvisioningStarted, self.on_provisioning_started)
        self.bus.subscribe(ProvisioningProgress, self.on_provisioning_progress)
        self.bus.subscribe(ProvisioningCompleted, self.on_provisioning_completed)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, *exc_info):
        self.progress.stop()

    def on_provisioning_started(self, event: ProvisioningStarted):
        with self._lock:
            self.console.print(f"Downloading ffmpeg for {event.platform.value} into {event.install_dir}")
            self._download_task = self.progress.add_task("ffmpeg", total=None)

    def on_provisioning_progress(self, event: ProvisioningProgress):
        with self._lock:
            if self._download_task is None:
                return
            self.progress.update(self._download_task, completed=event.downloaded_bytes, total=event.total_bytes)

    def on_provisioning_completed(self, event: ProvisioningCompleted):
        with self._lock:
            if self._download_task is not None:
                self.progress.remove_task(self._download_task)
                self._download_task = None
        self.console.print(f"[green]ffmpeg ready at {event.binary_path}")

    def on_job_started(self, event: JobStarted):
        with self._lock:
            self._job_tasks[event.job_id] = self.progress.add_task(event.source_path.name, total=100)

    def on_job_progress(self, event: JobProgressUpdated):
        with self._lock:
            task = self._job_tasks.get(event.job_id)
            if task is not None:
                self.progress.update(task, completed=event.progress_percent)

    def on_job_completed(self, event: JobCompleted):
        with self._lock:
            task = self._job_tasks.pop(event.job_id, None)
            if task is not None:
                self.progress.update(task, completed=100)

    def on_job_failed(self, event: JobFailed):
        with self._lock:
            task = self._job_tasks.pop(event.job_id, None)
            if task is not None:
                self.progress.remove_task(task)
        self.console.print(f"[red]Job {event.job_id} failed: {event.error_message}")
