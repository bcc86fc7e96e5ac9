"""
Core orchestration layer for oaimedia package.

This module coordinates complete generation jobs, from API calls to file
storage and metadata sidecars, with consistent error wrapping.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import aiofiles.os

from ..api import APIError
from ..client import MediaClient
from ..config import Settings
from ..models import (
    ContentVariant,
    GenerationResult,
    ImageJob,
    VideoJobSpec,
)
from .cancellation import CancellationToken
from .constraints import ParameterValidationError, get_video_constraints
from .io_utils import (
    DEFAULT_VIDEO_MAX_BYTES,
    FileReadError,
    MetadataError,
    VideoMetadata,
    generate_timestamped_filename,
    validate_video_bytes,
    write_metadata,
)
from .polling import PollingCancelledError, PollingError, ProgressUpdate
from .storage import LocalStorageUploader, StorageError
from .url_security import DownloadError, URLValidationError

logger = logging.getLogger(__name__)

VARIANT_EXTENSIONS = {
    ContentVariant.VIDEO: "mp4",
    ContentVariant.THUMBNAIL: "webp",
    ContentVariant.SPRITESHEET: "jpg",
}

# Raised unchanged from the job functions
_PASSTHROUGH_ERRORS = (
    APIError,
    PollingError,
    ParameterValidationError,
    URLValidationError,
    StorageError,
)


class GenerationError(Exception):
    """Base exception for generation-related errors."""

    pass


def _base_name(output_filename: Optional[str], prompt: str, model: str) -> str:
    if output_filename:
        return Path(output_filename).stem
    return Path(generate_timestamped_filename(prompt, model)).stem


async def process_image_job(
    job: ImageJob, config: Settings, client: Optional[MediaClient] = None
) -> GenerationResult:
    """
    Process a single image generation job from start to finish.

    Args:
        job: The image job to process
        config: Application configuration
        client: Optional client to reuse; one is built from ``config`` otherwise

    Returns:
        GenerationResult: Saved paths and metadata

    Raises:
        GenerationError: For generation-related failures
        StorageError: For storage-related failures
        APIError: Classified API failures propagate unchanged
    """
    start_time = time.time()
    owns_client = client is None
    client = client or MediaClient.from_settings(config)
    request = job.request
    output_dir = config.defaults.output_path

    try:
        response = await client.generate_image(request)
        if not response.data:
            raise GenerationError("API returned no images")

        fmt = request.output_format or response.output_format or "png"
        base_name = _base_name(job.output_filename, request.prompt, request.model)
        paths = await client.save_images(response, output_dir, base_name, fmt)
        if not paths:
            raise GenerationError("No image data found in API response")

        sizes = [await aiofiles.os.path.getsize(p) for p in paths]
        result = GenerationResult(
            local_paths=paths,
            media_type="image",
            file_size_bytes=sum(sizes),
            generation_time_seconds=time.time() - start_time,
            metadata={
                "api_model": request.model,
                "prompt_length": len(request.prompt),
                "image_count": len(paths),
                "storage_backend": "local",
                "generation_timestamp": time.time(),
            },
        )
        if request.size:
            result.add_metadata("size", request.size)
        if request.quality:
            result.add_metadata("quality", request.quality)
        revised = [d.revised_prompt for d in response.data if d.revised_prompt]
        if revised:
            result.add_metadata("revised_prompt", revised[0])

        if config.defaults.enable_metadata:
            metadata_path = paths[0].with_suffix(".json")
            await write_metadata(
                {
                    "created": response.created,
                    "prompt": request.prompt,
                    "request": request.payload(),
                    "files": [str(p) for p in paths],
                    "revised_prompts": revised,
                    "usage": response.usage,
                },
                metadata_path,
            )
            result.add_metadata("metadata_path", str(metadata_path))

        return result

    except _PASSTHROUGH_ERRORS + (GenerationError,):
        raise
    except (DownloadError, FileReadError, MetadataError, ValueError, OSError) as e:
        raise GenerationError(f"Image generation job failed: {e}") from e

    finally:
        if owns_client:
            await client.close()


async def process_video_job(
    spec: VideoJobSpec,
    config: Settings,
    client: Optional[MediaClient] = None,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
) -> GenerationResult:
    """
    Create a video job, wait for it, download the requested asset and save it.

    Args:
        spec: The video job to process
        config: Application configuration
        client: Optional client to reuse; one is built from ``config`` otherwise
        cancel_token: Cancels polling and in-flight requests
        on_progress: Receives a progress update after each status fetch

    Returns:
        GenerationResult: Saved path, job id and metadata

    Raises:
        GenerationError: For invalid downloads and other generation failures
        StorageError: For storage-related failures
        APIError, PollingError: Propagate unchanged
    """
    start_time = time.time()
    owns_client = client is None
    client = client or MediaClient.from_settings(config)
    request = spec.request

    try:
        job = await client.create_and_wait(
            request,
            interval_seconds=spec.interval_seconds,
            timeout_seconds=spec.timeout_seconds,
            cancel_token=cancel_token,
            on_progress=on_progress,
        )

        if cancel_token is not None and cancel_token.cancelled:
            raise PollingCancelledError("Video generation was cancelled", job.id)

        content = await client.download_video_content(
            job.id, spec.variant, cancel_token=cancel_token
        )

        if spec.variant is ContentVariant.VIDEO:
            constraints = get_video_constraints(request.model) or {}
            max_bytes = constraints.get("video_max_size", DEFAULT_VIDEO_MAX_BYTES)
            problems = validate_video_bytes(content, max_bytes)
            if problems:
                raise GenerationError(
                    f"Downloaded video failed validation: {'; '.join(problems)}"
                )

        extension = VARIANT_EXTENSIONS[spec.variant]
        filename = f"{_base_name(spec.output_filename, request.prompt, request.model)}.{extension}"
        storage = LocalStorageUploader(config.defaults.output_path, create_dirs=True)
        path = await storage.save_bytes(content, filename)

        result = GenerationResult(
            local_paths=[path],
            media_type="video",
            job_id=job.id,
            file_size_bytes=len(content),
            generation_time_seconds=time.time() - start_time,
            metadata={
                "api_model": request.model,
                "prompt_length": len(request.prompt),
                "variant": spec.variant.value,
                "storage_backend": "local",
                "generation_timestamp": time.time(),
            },
        )
        if job.seconds is not None:
            result.add_metadata("seconds", job.seconds)
        if job.size:
            result.add_metadata("size", job.size)

        if config.defaults.enable_metadata:
            metadata_path = path.with_suffix(".json")
            await write_metadata(VideoMetadata.from_job(job), metadata_path)
            result.add_metadata("metadata_path", str(metadata_path))

        logger.info(f"Video job {job.id} saved to {path}")
        return result

    except _PASSTHROUGH_ERRORS + (GenerationError,):
        raise
    except (FileReadError, MetadataError, ValueError, OSError) as e:
        raise GenerationError(f"Video generation job failed: {e}") from e

    finally:
        if owns_client:
            await client.close()
