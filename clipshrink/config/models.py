from pathlib import Path
from typing import Dict
from pydantic import BaseModel, Field, field_validator, model_validator
from clipshrink.domain.models import OutputFormat, Platform

DEFAULT_DOWNLOAD_URLS: Dict[Platform, str] = {
    Platform.WIN: "https://github.com/BtbN/FFmpeg-Builds/releases/download/latest/ffmpeg-n7.1-latest-win64-gpl-7.1.zip",
    Platform.MAC: "https://evermeet.cx/ffmpeg/ffmpeg-7.1.zip",
    Platform.LINUX: "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz",
}

def default_install_dir() -> Path:
    return Path.home() / ".clipshrink" / "ffmpeg"

class ProvisioningConfig(BaseModel):
    install_dir: Path = Field(default_factory=default_install_dir)
    download_timeout: float = Field(default=30.0, gt=0)
    lock_poll_interval: float = Field(default=1.0, gt=0)
    lock_wait_ceiling: float = Field(default=300.0, gt=0)
    download_urls: Dict[Platform, str] = Field(default_factory=lambda: dict(DEFAULT_DOWNLOAD_URLS))

    @field_validator('install_dir')
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator('download_urls')
    @classmethod
    def validate_urls(cls, v: Dict[Platform, str]) -> Dict[Platform, str]:
        for platform, url in v.items():
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid download URL {url!r} for platform {platform.value}. Must be http(s).")
        return v

    @model_validator(mode='after')
    def validate_lock_timing(self) -> 'ProvisioningConfig':
        if self.lock_wait_ceiling < self.lock_poll_interval:
            raise ValueError("lock_wait_ceiling must not be shorter than lock_poll_interval")
        return self

class EncodingConfig(BaseModel):
    default_quality: str = "360"
    default_format: OutputFormat = OutputFormat.MP4
    max_parallel_jobs: int = Field(default=2, gt=0)

class AppConfig(BaseModel):
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    debug: bool = False
