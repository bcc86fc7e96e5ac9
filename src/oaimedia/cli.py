"""
Command-line interface for oaimedia package.

This module provides the main CLI application using Typer, with rich UI components
for progress indication and user feedback.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.status import Status
from rich.table import Table

from .api import redact_api_key, transient_retry
from .client import MediaClient
from .config import Settings, find_config_file, load_config
from .core.cancellation import CancellationToken
from .core.generation import VARIANT_EXTENSIONS, process_image_job, process_video_job
from .core.io_utils import generate_timestamped_filename
from .core.polling import PollingCancelledError, ProgressUpdate
from .core.storage import LocalStorageUploader
from .models import (
    ContentVariant,
    CreateVideoRequest,
    EditImageRequest,
    GenerateImageRequest,
    GenerationResult,
    ImageJob,
    VariationRequest,
    VideoJob,
    VideoJobSpec,
)

# Create the main Typer application
app = typer.Typer(
    name="oaimedia",
    help="Asynchronous command-line toolkit for OpenAI image and video generation.",
    no_args_is_help=True,
)

image_app = typer.Typer(name="image", help="Image generation commands", no_args_is_help=True)
video_app = typer.Typer(name="video", help="Video generation commands", no_args_is_help=True)

app.add_typer(image_app, name="image")
app.add_typer(video_app, name="video")

# Create console for rich output
console = Console()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Options shared by every command, set by the app callback
_options = {"verbose": False, "retries": 0}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    ),
    retries: int = typer.Option(
        0,
        "--retries",
        min=0,
        help="Retry rate-limited, unavailable and network failures this many times",
    ),
) -> None:
    """OpenAI image and video generation from the command line."""
    level = log_level.upper()
    if level not in LOG_LEVELS:
        raise typer.BadParameter(
            f"must be one of {', '.join(LOG_LEVELS)}", param_hint="--log-level"
        )
    _options["verbose"] = verbose
    _options["retries"] = retries
    _configure_logging("DEBUG" if verbose else level)


async def _call(func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
    """Invoke a client operation, retrying transient failures when requested."""
    if _options["retries"] > 0:
        func = transient_retry(attempts=_options["retries"] + 1)(func)
    return await func(*args, **kwargs)


@contextlib.contextmanager
def _cancel_on_interrupt(token: CancellationToken):
    """Route Ctrl-C to the cancellation token while the block runs."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        # Not supported on this platform or outside the main thread
        yield token
        return
    try:
        yield token
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _load_settings() -> Settings:
    with Status("Loading configuration...", console=console):
        config = await load_config()
    if _options["verbose"]:
        console.print(f"✓ Configuration loaded, output to {config.defaults.output_path}")
    return config


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")
    if _options["verbose"]:
        console.print_exception()
    sys.exit(1)


def _run(coro_factory: Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(coro_factory())
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(1)


# ----------------------------------------------------------------------
# Image commands


@image_app.command("generate")
def generate_image_command(
    prompt: str = typer.Argument(..., help="Text prompt for image generation"),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Image model (dall-e-2, dall-e-3, gpt-image-1)"
    ),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Image size, e.g. 1024x1024"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="Image quality"),
    n: int = typer.Option(1, "--n", "-n", min=1, help="Number of images to generate"),
    style: Optional[str] = typer.Option(None, "--style", help="vivid or natural (dall-e-3)"),
    background: Optional[str] = typer.Option(
        None, "--background", help="auto, transparent or opaque (gpt-image)"
    ),
    output_format: Optional[str] = typer.Option(
        None, "--output-format", help="png, jpeg or webp (gpt-image)"
    ),
    output_filename: Optional[str] = typer.Option(
        None,
        "--filename",
        "-f",
        help="Custom filename for the generated image (without extension)",
    ),
) -> None:
    """
    Generate images from a text prompt.

    Examples:
        oaimedia image generate "A beautiful sunset over mountains"
        oaimedia image generate "A cat wearing a hat" --model dall-e-3 --style natural
        oaimedia image generate "Logo" --model gpt-image-1 --background transparent
    """

    async def _async_generate() -> None:
        try:
            config = await _load_settings()
            request = GenerateImageRequest(
                prompt=prompt,
                model=model or config.defaults.image_model,
                n=n,
                size=size,
                quality=quality,
                style=style,
                background=background,
                output_format=output_format,
            )
            job = ImageJob(request=request, output_filename=output_filename)

            if _options["verbose"]:
                _display_request_info("Image Request", request.payload())

            async with MediaClient.from_settings(config) as client:
                with Status("Generating image...", console=console):
                    result = await _call(process_image_job, job, config, client)

            _display_success(result, "Image")

        except Exception as e:
            _fail(e)

    _run(_async_generate)


@image_app.command("edit")
def edit_image_command(
    prompt: str = typer.Argument(..., help="Description of the desired edit"),
    images: List[Path] = typer.Option(
        ..., "--image", "-i", help="Image to edit; repeat for several (gpt-image)"
    ),
    mask: Optional[Path] = typer.Option(None, "--mask", help="PNG mask marking the area to edit"),
    model: str = typer.Option("dall-e-2", "--model", "-m", help="Image model"),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Output size"),
    n: int = typer.Option(1, "--n", "-n", min=1, help="Number of images to generate"),
    output_filename: Optional[str] = typer.Option(
        None, "--filename", "-f", help="Custom filename (without extension)"
    ),
) -> None:
    """Edit an image with a text prompt and an optional mask."""

    async def _async_edit() -> None:
        try:
            config = await _load_settings()
            request = EditImageRequest(
                prompt=prompt, image=images, mask=mask, model=model, size=size, n=n
            )
            base_name = output_filename or Path(
                generate_timestamped_filename(prompt, model)
            ).stem

            async with MediaClient.from_settings(config) as client:
                with Status("Editing image...", console=console):
                    response = await _call(client.edit_image, request)
                    paths = await client.save_images(
                        response, config.defaults.output_path, base_name
                    )

            _display_paths(paths, "Image")

        except Exception as e:
            _fail(e)

    _run(_async_edit)


@image_app.command("variation")
def variation_command(
    image: Path = typer.Option(..., "--image", "-i", help="Source image (square PNG)"),
    n: int = typer.Option(1, "--n", "-n", min=1, help="Number of variations"),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Output size"),
    output_filename: Optional[str] = typer.Option(
        None, "--filename", "-f", help="Custom filename (without extension)"
    ),
) -> None:
    """Create variations of an image (dall-e-2)."""

    async def _async_variation() -> None:
        try:
            config = await _load_settings()
            request = VariationRequest(image=image, n=n, size=size)
            base_name = output_filename or f"{image.stem}_variation"

            async with MediaClient.from_settings(config) as client:
                with Status("Creating variations...", console=console):
                    response = await _call(client.create_variation, request)
                    paths = await client.save_images(
                        response, config.defaults.output_path, base_name
                    )

            _display_paths(paths, "Variation")

        except Exception as e:
            _fail(e)

    _run(_async_variation)


# ----------------------------------------------------------------------
# Video commands


@video_app.command("create")
def create_video_command(
    prompt: str = typer.Argument(..., help="Text prompt for video generation"),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Video model (sora-2, sora-2-pro)"
    ),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Resolution, e.g. 1280x720"),
    seconds: Optional[int] = typer.Option(None, "--seconds", help="Duration: 4, 8 or 12"),
    input_image: Optional[Path] = typer.Option(
        None, "--input-image", help="Reference image for the first frame"
    ),
    no_wait: bool = typer.Option(
        False, "--no-wait", help="Submit the job and return without polling"
    ),
    interval: float = typer.Option(10.0, "--interval", min=0.1, help="Polling interval in seconds"),
    timeout: float = typer.Option(600.0, "--timeout", min=1.0, help="Polling timeout in seconds"),
    output_filename: Optional[str] = typer.Option(
        None, "--filename", "-f", help="Custom filename (without extension)"
    ),
) -> None:
    """
    Create a video from a text prompt and, by default, wait for it and download it.

    Examples:
        oaimedia video create "A calico cat playing piano on stage"
        oaimedia video create "Ocean waves at dusk" --seconds 8 --size 1280x720
        oaimedia video create "Timelapse of a city" --no-wait
    """

    async def _async_create() -> None:
        token = CancellationToken()
        try:
            config = await _load_settings()
            request = CreateVideoRequest(
                prompt=prompt,
                model=model or config.defaults.video_model,
                size=size,
                seconds=seconds,
                input_reference=input_image,
            )

            if _options["verbose"]:
                _display_request_info("Video Request", request.payload())

            async with MediaClient.from_settings(config) as client:
                if no_wait:
                    job = await _call(client.create_video, request)
                    console.print(f"[green]✓ Video job submitted:[/green] {job.id}")
                    console.print(f"Check progress with: oaimedia video status {job.id}")
                    return

                spec = VideoJobSpec(
                    request=request,
                    output_filename=output_filename,
                    interval_seconds=interval,
                    timeout_seconds=timeout,
                )
                with Status("Submitting video job...", console=console) as status:

                    def _on_progress(update: ProgressUpdate) -> None:
                        status.update(f"Generating video... {update.describe()}")

                    with _cancel_on_interrupt(token):
                        result = await process_video_job(
                            spec,
                            config,
                            client=client,
                            cancel_token=token,
                            on_progress=_on_progress,
                        )

            _display_success(result, "Video")

        except PollingCancelledError:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(1)
        except Exception as e:
            if token.cancelled:
                console.print("\n[yellow]Operation cancelled by user[/yellow]")
                sys.exit(1)
            _fail(e)

    _run(_async_create)


@video_app.command("status")
def video_status_command(
    video_id: str = typer.Argument(..., help="Video job id"),
) -> None:
    """Show the status of a video job."""

    async def _async_status() -> None:
        try:
            config = await _load_settings()
            async with MediaClient.from_settings(config) as client:
                job = await _call(client.retrieve_video, video_id)
            _display_video_job(job)
        except Exception as e:
            _fail(e)

    _run(_async_status)


@video_app.command("download")
def video_download_command(
    video_id: str = typer.Argument(..., help="Video job id"),
    variant: ContentVariant = typer.Option(
        ContentVariant.VIDEO, "--variant", help="video, thumbnail or spritesheet"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Destination file; defaults to the output path"
    ),
) -> None:
    """Download the content of a completed video job."""

    async def _async_download() -> None:
        try:
            config = await _load_settings()
            async with MediaClient.from_settings(config) as client:
                with Status(f"Downloading {variant.value}...", console=console):
                    content = await _call(
                        client.download_video_content, video_id, variant
                    )

            if output is not None:
                storage = LocalStorageUploader(output.parent)
                destination = await storage.save_bytes(content, output.name)
            else:
                storage = LocalStorageUploader(config.defaults.output_path)
                destination = await storage.save_bytes(
                    content, f"{video_id}.{VARIANT_EXTENSIONS[variant]}"
                )
            console.print(f"[green]✓ Downloaded {variant.value}[/green]")
            console.print(f"[blue]Saved to:[/blue] {destination}")
        except Exception as e:
            _fail(e)

    _run(_async_download)


@video_app.command("list")
def video_list_command(
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100, help="Maximum results"),
    after: Optional[str] = typer.Option(None, "--after", help="Cursor: list after this id"),
    order: str = typer.Option("desc", "--order", help="asc or desc"),
) -> None:
    """List video jobs."""

    async def _async_list() -> None:
        try:
            config = await _load_settings()
            async with MediaClient.from_settings(config) as client:
                videos = await _call(client.list_videos, limit=limit, after=after, order=order)

            if not videos.data:
                console.print("No videos found")
                return

            table = Table(title="Videos")
            table.add_column("ID", style="cyan")
            table.add_column("Status", style="white")
            table.add_column("Model")
            table.add_column("Progress", justify="right")
            table.add_column("Prompt")
            for job in videos.data:
                prompt_display = (job.prompt or "")[:40]
                table.add_row(
                    job.id,
                    job.status.value,
                    job.model or "",
                    f"{job.progress or 0}%",
                    prompt_display,
                )
            console.print(table)
            if videos.has_more:
                console.print(f"More results: --after {videos.last_id}")
        except Exception as e:
            _fail(e)

    _run(_async_list)


@video_app.command("delete")
def video_delete_command(
    video_id: str = typer.Argument(..., help="Video job id"),
) -> None:
    """Delete a video job."""

    async def _async_delete() -> None:
        try:
            config = await _load_settings()
            async with MediaClient.from_settings(config) as client:
                await _call(client.delete_video, video_id)
            console.print(f"[green]✓ Deleted video {video_id}[/green]")
        except Exception as e:
            _fail(e)

    _run(_async_delete)


@video_app.command("remix")
def video_remix_command(
    video_id: str = typer.Argument(..., help="Id of the completed video to remix"),
    prompt: str = typer.Argument(..., help="Prompt describing the change"),
) -> None:
    """Create a new video job that remixes an existing one."""

    async def _async_remix() -> None:
        try:
            config = await _load_settings()
            async with MediaClient.from_settings(config) as client:
                job = await _call(client.remix_video, video_id, prompt)
            console.print(f"[green]✓ Remix job submitted:[/green] {job.id}")
            console.print(f"Check progress with: oaimedia video status {job.id}")
        except Exception as e:
            _fail(e)

    _run(_async_remix)


# ----------------------------------------------------------------------
# Display helpers


def _display_request_info(title: str, payload: dict) -> None:
    """Display the parameters of a request."""
    table = Table(title=title, show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    for key, value in payload.items():
        text = str(value)
        table.add_row(key, text[:100] + "..." if len(text) > 100 else text)
    console.print(table)
    console.print()


def _display_success(result: GenerationResult, label: str) -> None:
    """Display success message with result information."""
    console.print(f"[green]✓ {label} generated successfully![/green]")
    for path in result.local_paths:
        console.print(f"[blue]Saved to:[/blue] {path}")

    if _options["verbose"]:
        table = Table(title="Generation Results", show_header=False)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")

        if result.file_size_bytes is not None:
            table.add_row("File Size", f"{result.file_size_bytes:,} bytes")
        if result.generation_time_seconds is not None:
            table.add_row(
                "Generation Time", f"{result.generation_time_seconds:.2f} seconds"
            )
        table.add_row("Model Used", result.get_metadata("api_model", "unknown"))
        if result.job_id:
            table.add_row("Job ID", result.job_id)

        console.print()
        console.print(table)


def _display_paths(paths: List[Path], label: str) -> None:
    if not paths:
        console.print("[yellow]No images were returned[/yellow]")
        return
    console.print(f"[green]✓ {label} saved ({len(paths)} file(s))[/green]")
    for path in paths:
        console.print(f"[blue]Saved to:[/blue] {path}")


def _display_video_job(job: VideoJob) -> None:
    table = Table(title=f"Video {job.id}", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", job.status.value)
    table.add_row("Progress", f"{job.progress or 0}%")
    if job.model:
        table.add_row("Model", job.model)
    if job.seconds is not None:
        table.add_row("Duration", f"{job.seconds}s")
    if job.size:
        table.add_row("Size", job.size)
    if job.prompt:
        table.add_row("Prompt", job.prompt[:100])
    if job.error and job.error.message:
        table.add_row("Error", job.error.message)
    console.print(table)


@app.command("version")
def version_command() -> None:
    """Display version information."""
    from . import __version__

    console.print(f"oaimedia version {__version__}")


@app.command("config")
def config_command(
    show_path: bool = typer.Option(
        False, "--show-path", help="Show the configuration file path"
    ),
) -> None:
    """Display current configuration."""

    async def _async_config() -> None:
        try:
            config = await load_config()

            if show_path:
                config_file = find_config_file()
                if config_file:
                    console.print(f"Configuration file: {config_file}")
                else:
                    console.print("Configuration from environment variables")
                console.print()

            # Display configuration (without sensitive data)
            table = Table(title="Current Configuration")
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="white")

            table.add_row("Image Model", config.defaults.image_model)
            table.add_row("Video Model", config.defaults.video_model)
            table.add_row("Output Path", str(config.defaults.output_path))
            table.add_row("Base URL", config.client.base_url)
            table.add_row("Environment", config.client.environment)
            table.add_row("API Key", redact_api_key(config.auth.openai_api_key))

            console.print(table)

        except Exception as e:
            console.print(f"[red]Error loading configuration: {e}[/red]")
            sys.exit(1)

    asyncio.run(_async_config())


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
