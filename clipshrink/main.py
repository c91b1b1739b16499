import typer
import uuid
from pathlib import Path
from typing import Optional

from clipshrink.config.loader import load_config
from clipshrink.config.models import AppConfig
from clipshrink.domain.errors import JobError, ProvisioningError
from clipshrink.domain.models import CompressionOverrides, CompressionRequest, OutputFormat
from clipshrink.infrastructure.event_bus import EventBus
from clipshrink.infrastructure.logging import setup_logging
from clipshrink.pipeline.service import CompressionService
from clipshrink.ui.console import ConsoleReporter, format_size

app = typer.Typer(help="clipshrink - compress videos with an on-demand ffmpeg build")

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to YAML config")
DEBUG_OPTION = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")

def _bootstrap(config_path: Optional[Path], debug: bool) -> AppConfig:
    config = load_config(config_path)
    if debug:
        config.debug = True
    logger = setup_logging(config.provisioning.install_dir.parent, debug=config.debug)
    logger.info(f"clipshrink started: install_dir={config.provisioning.install_dir}, debug={config.debug}")
    return config

def _fail(message: str):
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)

@app.command()
def compress(
    source: Path = typer.Argument(..., help="Video file to compress"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="144, 240, 360, 480, 720, 1080 or original"),
    output_format: Optional[OutputFormat] = typer.Option(None, "--format", "-f", help="Output container"),
    height: Optional[int] = typer.Option(None, "--height", help="Override the target height"),
    video_bitrate: Optional[str] = typer.Option(None, "--video-bitrate", help="Override the video bitrate, e.g. 800k"),
    audio_bitrate: Optional[str] = typer.Option(None, "--audio-bitrate", help="Override the audio bitrate, e.g. 96k"),
    save_to: Optional[Path] = typer.Option(None, "--save-to", help="Also copy the result into this directory"),
    config_path: Optional[Path] = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Compress a single video file."""
    if not source.exists():
        _fail(f"Error: File {source} does not exist.")

    config = _bootstrap(config_path, debug)
    request = CompressionRequest(
        source_path=source,
        quality=quality or config.encoding.default_quality,
        format=output_format or config.encoding.default_format,
        overrides=CompressionOverrides(height=height, video_bitrate=video_bitrate, audio_bitrate=audio_bitrate),
        job_id=uuid.uuid4().hex[:8],
    )

    bus = EventBus()
    reporter = ConsoleReporter(bus)
    with CompressionService.create(config, bus) as service:
        try:
            with reporter:
                result = service.compress(request)
        except ProvisioningError as e:
            _fail(f"Could not obtain ffmpeg: {e}")
        except JobError as e:
            _fail(f"Compression failed: {e}")

        original_size = source.stat().st_size
        compressed_size = result.output_path.stat().st_size if result.output_path.exists() else 0
        typer.secho(f"Saved {result.output_path}", fg=typer.colors.GREEN)
        typer.echo(f"{format_size(original_size)} -> {format_size(compressed_size)}")

        if save_to is not None:
            for saved in service.export_results([result.output_path], save_to):
                typer.echo(f"Copied to {saved}")

@app.command()
def metadata(
    source: Path = typer.Argument(..., help="Video file to inspect"),
    config_path: Optional[Path] = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Print width, height and aspect ratio of a video."""
    config = _bootstrap(config_path, debug)
    bus = EventBus()
    with ConsoleReporter(bus), CompressionService.create(config, bus) as service:
        try:
            dimensions = service.get_video_metadata(source)
        except ProvisioningError as e:
            _fail(f"Could not obtain ffmpeg: {e}")
        except JobError as e:
            _fail(f"Could not read {source}: {e}")

    typer.echo(f"width={dimensions.width} height={dimensions.height} aspect_ratio={dimensions.aspect_ratio:.4f}")

@app.command()
def warmup(
    config_path: Optional[Path] = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Download ffmpeg now instead of on first use."""
    config = _bootstrap(config_path, debug)
    bus = EventBus()
    with ConsoleReporter(bus), CompressionService.create(config, bus) as service:
        ready = service.warm_up()
        installation = service.provisioning.state.installation
    if not ready:
        _fail("ffmpeg is not available and could not be downloaded. Please check your internet connection.")
    typer.secho(f"ffmpeg available at {installation.binary_path}", fg=typer.colors.GREEN)

if __name__ == "__main__":
    app()
