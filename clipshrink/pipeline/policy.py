"""Encoding policy: turns a probed source and a request into an EncodingPlan.

Everything here is pure. The runtime platform is passed in so the same
inputs always give the same plan.
"""
from typing import Dict, List, NamedTuple
from clipshrink.domain.models import (
    CompressionRequest, EncodingPlan, OutputFormat, Platform, Quality, VideoProbe
)

PIXELS_8K = 7680 * 4320
PIXELS_4K = 3840 * 2160

# Platform whose ffmpeg build ships a native H.264 hardware encoder (VideoToolbox).
HARDWARE_PLATFORM = Platform.MAC
HARDWARE_ENCODER = "h264_videotoolbox"
HARDWARE_INPUT_FLAGS = ("-hwaccel", "videotoolbox")

class LadderRung(NamedTuple):
    height: int
    max_width: int
    video_bitrate: str
    audio_bitrate: str

LADDER: Dict[str, LadderRung] = {
    Quality.Q144.value: LadderRung(144, 256, "100k", "32k"),
    Quality.Q240.value: LadderRung(240, 426, "200k", "48k"),
    Quality.Q360.value: LadderRung(360, 640, "400k", "64k"),
    Quality.Q480.value: LadderRung(480, 854, "600k", "96k"),
    Quality.Q720.value: LadderRung(720, 1280, "1000k", "128k"),
    Quality.Q1080.value: LadderRung(1080, 1920, "2000k", "128k"),
}
DEFAULT_RUNG = LADDER[Quality.Q360.value]

class ResolutionClass(NamedTuple):
    is_8k: bool
    is_4k: bool

def classify_resolution(probe: VideoProbe) -> ResolutionClass:
    pixels = probe.pixel_count
    return ResolutionClass(
        is_8k=pixels >= PIXELS_8K,
        is_4k=PIXELS_4K <= pixels < PIXELS_8K,
    )

def ladder_rung(quality: str) -> LadderRung:
    return LADDER.get(str(quality), DEFAULT_RUNG)

def stream_copy_plan() -> EncodingPlan:
    return EncodingPlan(stream_copy=True, video_codec="copy", audio_codec="copy")

def plan_encoding(probe: VideoProbe, request: CompressionRequest, platform: Platform) -> EncodingPlan:
    if request.quality == Quality.ORIGINAL.value:
        return stream_copy_plan()

    resolution = classify_resolution(probe)
    is_webm = request.format == OutputFormat.WEBM
    use_hardware = resolution.is_8k and platform == HARDWARE_PLATFORM and not is_webm
    use_fast_preset = not resolution.is_8k

    rung = ladder_rung(request.quality)
    overrides = request.overrides
    height = overrides.height if overrides.height is not None else rung.height
    video_bitrate = overrides.video_bitrate if overrides.video_bitrate is not None else rung.video_bitrate
    audio_bitrate = overrides.audio_bitrate if overrides.audio_bitrate is not None else rung.audio_bitrate

    encoder_options: List[str] = []
    container_flags: List[str] = []

    if is_webm:
        video_codec = "libvpx-vp9"
        encoder_options.extend(["-crf", "30", "-cpu-used", "2"])
        audio_codec = "libopus"
        audio_sample_rate = 48000
    elif use_hardware:
        # VideoToolbox picks profile, level and pixel format itself.
        video_codec = HARDWARE_ENCODER
        audio_codec = "aac"
        audio_sample_rate = 44100
    else:
        video_codec = "libx264"
        if use_fast_preset:
            encoder_options.extend(["-preset", "ultrafast", "-crf", "28"])
        else:
            encoder_options.extend(["-preset", "veryfast", "-crf", "23"])
        encoder_options.extend(["-profile:v", "main", "-pix_fmt", "yuv420p", "-level", "3.1"])
        audio_codec = "aac"
        audio_sample_rate = 44100

    if not is_webm:
        container_flags.extend(["-movflags", "+faststart"])

    return EncodingPlan(
        video_codec=video_codec,
        video_bitrate=video_bitrate,
        audio_codec=audio_codec,
        audio_bitrate=audio_bitrate,
        audio_channels=2,
        audio_sample_rate=audio_sample_rate,
        target_width_expr=f"{rung.max_width}:-2",
        target_height=height,
        fps=24 if resolution.is_8k else 30,
        hardware_accel=use_hardware,
        input_flags=HARDWARE_INPUT_FLAGS if use_hardware else (),
        encoder_options=tuple(encoder_options),
        container_flags=tuple(container_flags),
    )
