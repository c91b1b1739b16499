import io
import tarfile
import zipfile
import pytest
import yaml
from pathlib import Path
from clipshrink.config.models import ProvisioningConfig
from clipshrink.domain.models import Platform, ToolInstallation
from clipshrink.infrastructure.event_bus import EventBus
from clipshrink.infrastructure.provisioning import ProvisioningState

FAKE_BINARY = b"#!/bin/sh\necho ffmpeg\n"

PROBE_OUTPUT = """Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input.mp4':
  Metadata:
    major_brand     : isom
  Duration: 00:00:10.00, start: 0.000000, bitrate: 1600 kb/s
  Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p(tv, bt709, progressive), 1920x1080 [SAR 1:1 DAR 16:9], 1500 kb/s, 30 fps, 30 tbr, 15360 tbn (default)
  Stream #0:1(und): Audio: aac (LC) (mp4a / 0x6134706D), 48000 Hz, stereo, fltp, 96 kb/s (default)
At least one output file must be specified
"""

@pytest.fixture
def event_bus():
    return EventBus()

@pytest.fixture
def install_dir(tmp_path):
    return tmp_path / "ffmpeg"

@pytest.fixture
def provisioning_config(install_dir):
    return ProvisioningConfig(
        install_dir=install_dir,
        download_timeout=5,
        lock_poll_interval=0.01,
        lock_wait_ceiling=0.2,
    )

@pytest.fixture
def installed_state(tmp_path):
    """ProvisioningState pointing at a placeholder binary."""
    binary = tmp_path / "bin" / "ffmpeg"
    binary.parent.mkdir(parents=True)
    binary.write_bytes(FAKE_BINARY)
    state = ProvisioningState()
    state.record(ToolInstallation(install_dir=binary.parent, binary_path=binary, platform=Platform.LINUX))
    return state

@pytest.fixture
def source_video(tmp_path):
    video = tmp_path / "videos" / "holiday.mov"
    video.parent.mkdir()
    video.write_bytes(b"\x00" * 2048)
    return video

def build_zip(path: Path, members: dict) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path

def build_tar(path: Path, members: dict) -> Path:
    with tarfile.open(path, "w:xz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return path

@pytest.fixture
def clipshrink_yaml(tmp_path):
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "clipshrink.yaml"

    content = {
        'provisioning': {
            'install_dir': str(tmp_path / "cache" / "ffmpeg"),
            'download_timeout': 10,
            'lock_poll_interval': 0.5,
            'lock_wait_ceiling': 60,
        },
        'encoding': {
            'default_quality': '720',
            'default_format': 'webm',
            'max_parallel_jobs': 3,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

def ffmpeg_output(lines) -> io.StringIO:
    """Stand-in for a Popen text stdout pipe."""
    return io.StringIO("".join(lines))
