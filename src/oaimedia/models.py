"""
Core data models for oaimedia package.

This module defines Pydantic models for API requests, remote job records,
image responses, and local generation results.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Lifecycle status of a remote video job."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ContentVariant(str, Enum):
    """Downloadable asset of a completed video job."""

    VIDEO = "video"
    THUMBNAIL = "thumbnail"
    SPRITESHEET = "spritesheet"


class JobError(BaseModel):
    """Error information attached to a failed job."""

    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    code: Optional[str] = None


class VideoJob(BaseModel):
    """Snapshot of a remote video job as reported by the service."""

    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "video"
    status: JobStatus
    model: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    created_at: Optional[int] = None
    completed_at: Optional[int] = None
    seconds: Optional[Union[int, str]] = None
    size: Optional[str] = None
    prompt: Optional[str] = None
    remixed_from_video_id: Optional[str] = None
    error: Optional[JobError] = None

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, v: Any) -> Any:
        if v is None:
            return v
        return max(0, min(100, int(v)))


class VideoList(BaseModel):
    """A page of video jobs."""

    model_config = ConfigDict(extra="allow")

    object: str = "list"
    data: List[VideoJob] = Field(default_factory=list)
    has_more: bool = False
    first_id: Optional[str] = None
    last_id: Optional[str] = None


class ImageData(BaseModel):
    """One generated image: either a URL or base64 content."""

    model_config = ConfigDict(extra="allow")

    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageResponse(BaseModel):
    """Response of the image generation, edit, and variation endpoints."""

    model_config = ConfigDict(extra="allow")

    created: int
    data: List[ImageData] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    output_format: Optional[str] = None


class _RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    def payload(self, exclude: Optional[set] = None) -> Dict[str, Any]:
        """Return the non-empty fields as an API payload."""
        return self.model_dump(exclude_none=True, exclude=exclude or set())


class GenerateImageRequest(_RequestModel):
    """Parameters for text-to-image generation."""

    prompt: str = Field(..., min_length=1)
    model: str = "dall-e-2"
    n: int = Field(default=1, ge=1)
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[Literal["vivid", "natural"]] = None
    background: Optional[Literal["auto", "transparent", "opaque"]] = None
    output_format: Optional[Literal["png", "jpeg", "webp"]] = None
    output_compression: Optional[int] = None
    moderation: Optional[Literal["auto", "low"]] = None
    response_format: Optional[Literal["url", "b64_json"]] = None
    user: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Prompt cannot be empty or only whitespace")
        return cleaned


class EditImageRequest(GenerateImageRequest):
    """Parameters for editing one or more images."""

    image: List[Path] = Field(..., min_length=1)
    mask: Optional[Path] = None
    input_fidelity: Optional[Literal["high", "low"]] = None

    @field_validator("image", mode="before")
    @classmethod
    def coerce_image_list(cls, v: Any) -> Any:
        if isinstance(v, (str, Path)):
            return [v]
        return v


class VariationRequest(_RequestModel):
    """Parameters for creating variations of an image."""

    image: Path
    model: str = "dall-e-2"
    n: int = Field(default=1, ge=1)
    size: Optional[str] = None
    response_format: Optional[Literal["url", "b64_json"]] = None
    user: Optional[str] = None


class CreateVideoRequest(_RequestModel):
    """Parameters for creating a video job."""

    prompt: str = Field(..., min_length=1)
    model: str = "sora-2"
    size: Optional[str] = None
    seconds: Optional[str] = None
    input_reference: Optional[Path] = None

    @field_validator("seconds", mode="before")
    @classmethod
    def seconds_as_string(cls, v: Any) -> Any:
        # The API expects "4", "8" or "12"
        if v is None:
            return v
        return str(v)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Prompt cannot be empty or only whitespace")
        return cleaned


class ImageJob(BaseModel):
    """
    A local image generation job: the request plus output preferences.
    """

    model_config = ConfigDict(extra="forbid")

    request: GenerateImageRequest
    output_filename: Optional[str] = Field(
        default=None,
        description="Custom base filename for the generated image(s)",
    )

    @field_validator("output_filename")
    @classmethod
    def validate_filename(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v

        cleaned = Path(v).name.strip()
        if not cleaned:
            raise ValueError("Output filename cannot be empty")

        invalid_chars = '<>:"/\\|?*'
        if any(char in cleaned for char in invalid_chars):
            raise ValueError(
                f"Output filename contains invalid characters: {invalid_chars}"
            )
        return cleaned


class VideoJobSpec(BaseModel):
    """A local video generation job: the request plus output preferences."""

    model_config = ConfigDict(extra="forbid")

    request: CreateVideoRequest
    output_filename: Optional[str] = None
    variant: ContentVariant = ContentVariant.VIDEO
    interval_seconds: float = Field(default=10.0, gt=0)
    timeout_seconds: float = Field(default=600.0, gt=0)


class GenerationResult(BaseModel):
    """
    Represents the result of a completed generation job.

    Contains the saved file paths and metadata about the generation process.
    """

    model_config = ConfigDict(validate_assignment=True)

    local_paths: List[Path] = Field(
        ..., description="Local paths where generated media is stored"
    )
    media_type: Literal["image", "video"]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    job_id: Optional[str] = Field(
        default=None, description="Remote job id, for video results"
    )
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    generation_time_seconds: Optional[float] = Field(default=None, ge=0.0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("local_paths")
    @classmethod
    def resolve_paths(cls, v: List[Path]) -> List[Path]:
        return [Path(p).resolve() for p in v]

    @property
    def local_path(self) -> Optional[Path]:
        return self.local_paths[0] if self.local_paths else None

    def add_metadata(self, key: str, value: Any) -> None:
        """Add a metadata entry to the result."""
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        """Get a metadata value with optional default."""
        return self.metadata.get(key, default)
