import sys
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

class Platform(str, Enum):
    WIN = "win"
    MAC = "mac"
    LINUX = "linux"

    @property
    def binary_name(self) -> str:
        return "ffmpeg.exe" if self is Platform.WIN else "ffmpeg"

def detect_platform(sys_platform: Optional[str] = None) -> Optional[Platform]:
    """Maps sys.platform to a platform tag, None when there is no build for it."""
    name = sys_platform if sys_platform is not None else sys.platform
    if name == "win32":
        return Platform.WIN
    if name == "darwin":
        return Platform.MAC
    if name.startswith("linux"):
        return Platform.LINUX
    return None

class Quality(str, Enum):
    Q144 = "144"
    Q240 = "240"
    Q360 = "360"
    Q480 = "480"
    Q720 = "720"
    Q1080 = "1080"
    ORIGINAL = "original"

class OutputFormat(str, Enum):
    MP4 = "mp4"
    WEBM = "webm"

class ToolInstallation(BaseModel):
    install_dir: Path
    binary_path: Optional[Path] = None
    platform: Platform

    @property
    def installed(self) -> bool:
        return self.binary_path is not None

class DownloadLock(BaseModel):
    created_at_epoch_ms: int = Field(ge=0)

class VideoProbe(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    codec_name: str = ""
    bit_rate_bps: int = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

class VideoDimensions(BaseModel):
    width: int
    height: int
    aspect_ratio: Optional[float] = None

class CompressionOverrides(BaseModel):
    model_config = ConfigDict(frozen=True)

    height: Optional[int] = Field(default=None, gt=0)
    video_bitrate: Optional[str] = None
    audio_bitrate: Optional[str] = None

class CompressionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_path: Optional[Path] = None
    # Kept as a plain string: tiers outside Quality fall back to the 360 row.
    quality: str = Quality.Q360.value
    format: OutputFormat = OutputFormat.MP4
    overrides: CompressionOverrides = Field(default_factory=CompressionOverrides)
    job_id: str = "unknown"

class EncodingPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    stream_copy: bool = False
    video_codec: str
    video_bitrate: Optional[str] = None
    audio_codec: str
    audio_bitrate: Optional[str] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    target_width_expr: Optional[str] = None
    target_height: Optional[int] = None
    fps: Optional[int] = None
    hardware_accel: bool = False
    input_flags: Tuple[str, ...] = ()
    encoder_options: Tuple[str, ...] = ()
    container_flags: Tuple[str, ...] = ()

class CompressionResult(BaseModel):
    output_path: Path
    output_name: str
    format: OutputFormat
