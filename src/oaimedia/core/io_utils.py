"""
I/O utilities for oaimedia package.

Local file acceptance checks (magic bytes), multipart file parts, filename
generation, and JSON metadata sidecars.
"""

import base64
import binascii
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ConfigDict, Field

from ..api import FilePart
from ..models import VideoJob

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

MP4_BOX_SIGNATURES = (b"ftyp", b"mdat", b"moov", b"wide", b"free", b"skip")

DEFAULT_VIDEO_MAX_BYTES = 100 * 1024 * 1024


class FileReadError(Exception):
    """Raised when a local input file is missing, unreadable or not an image."""

    pass


class MetadataError(Exception):
    """Raised when a metadata sidecar cannot be written."""

    pass


class VideoMetadata(BaseModel):
    """Metadata sidecar written next to a downloaded video."""

    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "video"
    status: str
    model: Optional[str] = None
    created_at: Optional[int] = None
    progress: Optional[int] = None
    seconds: Optional[Union[int, str]] = None
    size: Optional[str] = None
    prompt: Optional[str] = None
    remixed_from_video_id: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_job(cls, job: VideoJob) -> "VideoMetadata":
        return cls(
            id=job.id,
            object=job.object,
            status=job.status.value,
            model=job.model,
            created_at=job.created_at,
            progress=job.progress,
            seconds=job.seconds,
            size=job.size,
            prompt=job.prompt,
            remixed_from_video_id=job.remixed_from_video_id,
            error=job.error.model_dump(exclude_none=True) if job.error else None,
        )


def _looks_like_image(header: bytes) -> bool:
    is_png = header[:4] == b"\x89PNG"
    is_jpeg = header[:3] == b"\xff\xd8\xff"
    is_webp = header[8:12] == b"WEBP"
    is_gif = header[:3] == b"GIF"
    return is_png or is_jpeg or is_webp or is_gif


async def validate_image_path(filepath: Union[str, Path]) -> Path:
    """
    Check that a local file exists, is non-empty and is a PNG/JPEG/WebP/GIF.

    Returns:
        Path: The validated path

    Raises:
        FileReadError: If the file is missing, unreadable, empty or not an image
    """
    path = Path(filepath)
    try:
        async with aiofiles.open(path, "rb") as f:
            header = await f.read(12)
    except FileNotFoundError as e:
        raise FileReadError(f"Image file not found: {path}") from e
    except PermissionError as e:
        raise FileReadError(f"Permission denied reading image file: {path}") from e
    except IsADirectoryError as e:
        raise FileReadError(f"Image path is a directory: {path}") from e

    if not header:
        raise FileReadError(f"Image file is empty: {path}")

    if not _looks_like_image(header):
        raise FileReadError(
            "File does not appear to be a valid image "
            f"(PNG, JPEG, WebP, or GIF): {path}"
        )
    return path


def guess_image_mime_type(filepath: Union[str, Path]) -> str:
    return IMAGE_MIME_TYPES.get(Path(filepath).suffix.lower(), "image/png")


async def read_image_part(filepath: Union[str, Path], field: str) -> FilePart:
    """Validate a local image and load it as a multipart file part."""
    path = await validate_image_path(filepath)
    async with aiofiles.open(path, "rb") as f:
        content = await f.read()
    return FilePart(
        field=field,
        filename=path.name,
        content=content,
        content_type=guess_image_mime_type(path),
    )


def decode_base64_image(b64_data: str) -> bytes:
    """Decode base64 image data returned by the API."""
    try:
        return base64.b64decode(b64_data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Failed to decode base64 image data: {e}") from e


def validate_video_bytes(
    data: bytes, max_bytes: int = DEFAULT_VIDEO_MAX_BYTES
) -> List[str]:
    """
    Check a downloaded video buffer.

    Returns:
        List[str]: Problems found; empty when the buffer looks like an MP4
    """
    if not data:
        return ["Video buffer is empty"]

    errors: List[str] = []
    if len(data) > max_bytes:
        errors.append(
            f"Video file size ({len(data) / (1024 * 1024):.1f}MB) exceeds "
            f"maximum ({max_bytes / (1024 * 1024):.1f}MB)"
        )

    if len(data) < 8:
        errors.append("Video file is too small to be valid")
    elif data[4:8] not in MP4_BOX_SIGNATURES:
        errors.append("File does not appear to be a valid MP4 video")
    return errors


def sanitize_for_filename(text: str, max_length: int = 50) -> str:
    """Lowercase, collapse non-alphanumerics to underscores, and truncate."""
    cleaned = re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")
    return cleaned[:max_length]


def generate_timestamped_filename(
    prompt: str, model: str, extension: str = "png", now: Optional[datetime] = None
) -> str:
    """Build ``YYYY-MM-DD_HH-MM-SS_<model>_<prompt>.<ext>``."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%d_%H-%M-%S")
    return f"{timestamp}_{model}_{sanitize_for_filename(prompt, 40)}.{extension}"


async def write_metadata(
    metadata: Union[BaseModel, Dict[str, Any]], filepath: Union[str, Path]
) -> Path:
    """
    Write a metadata document as pretty-printed JSON.

    Raises:
        MetadataError: If the file cannot be written
    """
    path = Path(filepath)
    if isinstance(metadata, BaseModel):
        document = metadata.model_dump(mode="json", exclude_none=True)
    else:
        document = metadata

    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(document, indent=2, default=str))
    except OSError as e:
        raise MetadataError(f"Failed to write metadata to {path}: {e}") from e

    logger.info(f"Saved metadata: {path}")
    return path
