from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import CompressionResult, Platform

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class ProvisioningStarted(Event):
    install_dir: Path
    platform: Platform

class ProvisioningProgress(Event):
    downloaded_bytes: int
    total_bytes: Optional[int] = None

    @property
    def progress_percent(self) -> Optional[float]:
        if not self.total_bytes:
            return None
        return min(100.0, self.downloaded_bytes * 100.0 / self.total_bytes)

class ProvisioningCompleted(Event):
    binary_path: Path

class JobEvent(Event):
    job_id: str

class JobStarted(JobEvent):
    source_path: Path

class JobProgressUpdated(JobEvent):
    progress_percent: float

class JobCompleted(JobEvent):
    result: CompressionResult

class JobFailed(JobEvent):
    error_message: str
