import re
import subprocess
import logging
from pathlib import Path
from clipshrink.domain.errors import MissingInput, NoVideoStream, ToolUnavailable
from clipshrink.domain.models import VideoProbe
from clipshrink.infrastructure.provisioning import ProvisioningState

VIDEO_MARKER = "Video:"
CODEC_RE = re.compile(r"Video:\s*(\w+)")
RESOLUTION_RE = re.compile(r"\b(\d{2,5})x(\d{2,5})\b")
BITRATE_RE = re.compile(r"(\d+)\s*kb/s")
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

def parse_duration(output: str) -> float:
    match = DURATION_RE.search(output)
    if not match:
        return 0.0
    h, m, s = match.groups()
    return int(h) * 3600 + int(m) * 60 + float(s)

def parse_probe_output(output: str) -> VideoProbe:
    """Extracts the first video stream from ffmpeg's diagnostic text.

    Example line: "Stream #0:0: Video: h264, yuv420p, 1920x1080, 1500 kb/s, 30 fps".
    Only the first stream line counts. Codec and bit rate are optional,
    the resolution is not.
    """
    for line in output.splitlines():
        if VIDEO_MARKER not in line:
            continue

        codec_match = CODEC_RE.search(line)
        codec = codec_match.group(1) if codec_match else ""

        res_match = RESOLUTION_RE.search(line)
        width, height = (int(res_match.group(1)), int(res_match.group(2))) if res_match else (0, 0)

        bitrate_match = BITRATE_RE.search(line)
        bit_rate = int(bitrate_match.group(1)) * 1000 if bitrate_match else 0

        if width == 0 or height == 0:
            raise NoVideoStream(f"Could not parse video dimensions from: {line.strip()}")

        return VideoProbe(
            width=width,
            height=height,
            codec_name=codec,
            bit_rate_bps=bit_rate,
            duration_seconds=parse_duration(output),
        )

    raise NoVideoStream("No video stream found")

class MediaProber:
    """Reads stream properties by running ffmpeg with an input and no output."""

    def __init__(self, state: ProvisioningState):
        self.state = state
        self.logger = logging.getLogger(__name__)

    def probe(self, file_path: Path) -> VideoProbe:
        if not file_path:
            raise MissingInput("File path is missing")
        binary = self.state.require_binary()

        cmd = [str(binary), "-hide_banner", "-i", str(file_path)]
        # ffmpeg exits 1 here ("At least one output file must be specified"),
        # the stream description is still printed.
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            raise ToolUnavailable(f"Could not start ffmpeg at {binary}: {e}") from e
        output = (result.stdout or "") + (result.stderr or "")

        try:
            probe = parse_probe_output(output)
        except NoVideoStream:
            self.logger.error(f"Failed to parse ffmpeg output for {file_path}. Output was:\n{output}")
            raise

        self.logger.info(
            f"Input: {probe.width}x{probe.height} {probe.codec_name} @ {probe.bit_rate_bps // 1000}kbps"
        )
        return probe
