"""
High-level client for OpenAI image and video generation.

``MediaClient`` composes the request dispatcher, the URL validator and the
polling engine into one call per API operation. A single dispatcher (and so a
single pacing timestamp) is shared by every operation of an instance.

Example:
    async with MediaClient() as client:
        job = await client.create_and_wait(
            CreateVideoRequest(prompt="a cat on a motorcycle", seconds=8)
        )
        video = await client.download_video_content(job.id)
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import aiohttp
from pydantic import ValidationError

from .api import (
    FilePart,
    InvalidResponseError,
    RequestDispatcher,
    ResponseKind,
    TransportRequest,
)
from .config import (
    BASE_URL,
    IMAGE_ENDPOINTS,
    VIDEO_ENDPOINTS,
    Settings,
    get_api_key,
    is_production,
)
from .core.cancellation import CancellationToken
from .core.constraints import (
    ParameterValidationError,
    get_image_constraints,
    is_gpt_image_model,
    validate_image_params,
    validate_video_params,
)
from .core.io_utils import decode_base64_image, read_image_part
from .core.polling import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    ProgressUpdate,
    wait_for_job,
)
from .core.storage import LocalStorageUploader
from .core.url_security import fetch_remote_bytes
from .models import (
    ContentVariant,
    CreateVideoRequest,
    EditImageRequest,
    GenerateImageRequest,
    ImageResponse,
    VariationRequest,
    VideoJob,
    VideoList,
)

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 60.0


def _require(value: Optional[str], message: str) -> str:
    if not value or not str(value).strip():
        raise ValueError(message)
    return str(value).strip()


def _parse(model_class, data: Any, what: str):
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        raise InvalidResponseError(f"Invalid API response for {what}: {e}") from e


class MediaClient:
    """Async client for the image and video endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = BASE_URL,
        min_delay_seconds: float = 1.0,
        production: Optional[bool] = None,
        request_timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: OpenAI API key; read from OPENAI_API_KEY when omitted
            base_url: API base URL, must use HTTPS
            min_delay_seconds: Minimum gap between successive requests
            production: Hide upstream error details; defaults to OAIMEDIA_ENV
            request_timeout_seconds: Timeout for regular API calls
            session: Optional aiohttp session to share

        Raises:
            ValueError: If ``base_url`` is not HTTPS
            MissingAPIKeyError: If no API key can be found
        """
        if not base_url.startswith("https://"):
            raise ValueError("API base URL must use HTTPS protocol for security")

        self.request_timeout_seconds = request_timeout_seconds
        self._dispatcher = RequestDispatcher(
            api_key=get_api_key(api_key),
            base_url=base_url,
            min_delay_seconds=min_delay_seconds,
            production=is_production() if production is None else production,
            session=session,
        )
        self._session = session
        logger.info("MediaClient initialized successfully")

    @classmethod
    def from_settings(
        cls, settings: Settings, session: Optional[aiohttp.ClientSession] = None
    ) -> "MediaClient":
        """Build a client from loaded application settings."""
        return cls(
            api_key=settings.auth.openai_api_key,
            base_url=settings.client.base_url,
            min_delay_seconds=settings.client.min_delay_seconds,
            production=settings.client.environment == "production",
            request_timeout_seconds=settings.client.request_timeout_seconds,
            session=session,
        )

    @property
    def dispatcher(self) -> RequestDispatcher:
        return self._dispatcher

    async def __aenter__(self) -> "MediaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._dispatcher.close()

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> TransportRequest:
        kwargs.setdefault("timeout_seconds", self.request_timeout_seconds)
        return TransportRequest(method, endpoint, **kwargs)

    async def _send(self, request: TransportRequest) -> Any:
        return await self._dispatcher.send(request)

    # ------------------------------------------------------------------
    # Images

    async def generate_image(self, request: GenerateImageRequest) -> ImageResponse:
        """Generate image(s) from a text prompt."""
        model = request.model
        errors = validate_image_params(model, request.payload())
        if errors:
            raise ParameterValidationError(errors)

        payload: Dict[str, Any] = {"prompt": request.prompt, "model": model, "n": request.n}
        if request.size:
            payload["size"] = request.size
        if request.quality:
            payload["quality"] = request.quality
        if request.style and model == "dall-e-3":
            payload["style"] = request.style

        if is_gpt_image_model(model):
            for key in ("background", "output_format", "output_compression", "moderation"):
                value = getattr(request, key)
                if value is not None:
                    payload[key] = value
        elif request.response_format:
            payload["response_format"] = request.response_format

        if request.user:
            payload["user"] = request.user

        logger.info(f'Generating image with {model}: "{request.prompt[:50]}..."')
        data = await self._send(
            self._request("POST", IMAGE_ENDPOINTS["generate"], json_body=payload)
        )
        response = _parse(ImageResponse, data, "image generation")
        logger.info(f"Image generation complete. Generated {len(response.data)} image(s)")
        return response

    async def edit_image(self, request: EditImageRequest) -> ImageResponse:
        """Edit one or more images guided by a prompt and optional mask."""
        model = request.model
        constraints = get_image_constraints(model)
        if not constraints or not constraints["supports_edit"]:
            raise ValueError(f"Model {model} does not support image editing")

        errors = validate_image_params(model, request.payload(exclude={"image", "mask"}))
        max_images = constraints.get("edit_max_images", 1)
        if len(request.image) > max_images:
            errors.append(f"{model} supports at most {max_images} input image(s) for edits")
        if errors:
            raise ParameterValidationError(errors)

        image_field = "image[]" if is_gpt_image_model(model) else "image"
        files: List[FilePart] = [
            await read_image_part(path, image_field) for path in request.image
        ]
        if request.mask is not None:
            files.append(await read_image_part(request.mask, "mask"))

        fields: Dict[str, Any] = {
            "prompt": request.prompt,
            "model": model,
            "n": request.n,
            "size": request.size,
            "quality": request.quality,
            "user": request.user,
        }
        if is_gpt_image_model(model):
            fields.update(
                input_fidelity=request.input_fidelity,
                background=request.background,
                output_format=request.output_format,
                output_compression=request.output_compression,
            )
        else:
            fields["response_format"] = request.response_format

        logger.info(f'Editing image(s) with {model}: "{request.prompt[:50]}..."')
        data = await self._send(
            self._request(
                "POST", IMAGE_ENDPOINTS["edit"], form_fields=fields, files=files
            )
        )
        response = _parse(ImageResponse, data, "image edit")
        logger.info(f"Image edit complete. Generated {len(response.data)} image(s)")
        return response

    async def create_variation(self, request: VariationRequest) -> ImageResponse:
        """Create variations of a single image (dall-e-2 only)."""
        model = request.model
        constraints = get_image_constraints(model)
        if not constraints or not constraints["supports_variation"]:
            raise ValueError(f"Model {model} does not support image variations")

        errors = validate_image_params(model, request.payload(exclude={"image"}))
        if errors:
            raise ParameterValidationError(errors)

        files = [await read_image_part(request.image, "image")]
        fields = {
            "model": model,
            "n": request.n,
            "size": request.size,
            "response_format": request.response_format,
            "user": request.user,
        }

        logger.info(f"Creating {request.n} variation(s) with {model}")
        data = await self._send(
            self._request(
                "POST", IMAGE_ENDPOINTS["variation"], form_fields=fields, files=files
            )
        )
        response = _parse(ImageResponse, data, "image variation")
        logger.info(f"Image variation complete. Generated {len(response.data)} image(s)")
        return response

    async def save_images(
        self,
        response: ImageResponse,
        output_dir: Union[str, Path],
        base_filename: str,
        fmt: str = "png",
    ) -> List[Path]:
        """
        Save every image of a response to ``output_dir``.

        URL results are fetched through the SSRF-validated downloader; base64
        results are decoded locally.
        """
        storage = LocalStorageUploader(output_dir, create_dirs=True)
        saved: List[Path] = []
        multiple = len(response.data) > 1

        for index, image in enumerate(response.data, start=1):
            filename = (
                f"{base_filename}_{index}.{fmt}" if multiple else f"{base_filename}.{fmt}"
            )
            if image.url:
                content, _ = await fetch_remote_bytes(image.url, session=self._session)
            elif image.b64_json:
                content = decode_base64_image(image.b64_json)
            else:
                logger.warning(f"No image data found for index {index - 1}")
                continue
            saved.append(await storage.save_bytes(content, filename))

        return saved

    # ------------------------------------------------------------------
    # Videos

    async def create_video(
        self,
        request: CreateVideoRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> VideoJob:
        """Submit a video generation job."""
        model = request.model
        errors = validate_video_params(model, request.payload(exclude={"input_reference"}))
        if errors:
            raise ParameterValidationError(errors)

        if request.input_reference is not None:
            part = await read_image_part(request.input_reference, "input_reference")
            fields = {
                "prompt": request.prompt,
                "model": model,
                "size": request.size,
                "seconds": request.seconds,
            }
            transport = self._request(
                "POST",
                VIDEO_ENDPOINTS["create"],
                form_fields=fields,
                files=[part],
                cancel_token=cancel_token,
            )
            logger.info(
                f'Creating video with {model} and input reference: "{request.prompt[:50]}..."'
            )
        else:
            payload = request.payload(exclude={"input_reference"})
            transport = self._request(
                "POST",
                VIDEO_ENDPOINTS["create"],
                json_body=payload,
                cancel_token=cancel_token,
            )
            logger.info(f'Creating video with {model}: "{request.prompt[:50]}..."')
            logger.debug(f"Request payload: {payload}")

        job = _parse(VideoJob, await self._send(transport), "video creation")
        logger.info(f"Video job created: {job.id} (status: {job.status.value})")
        return job

    async def retrieve_video(
        self, video_id: str, cancel_token: Optional[CancellationToken] = None
    ) -> VideoJob:
        """Fetch the current status of a video job."""
        video_id = _require(video_id, "Video ID is required")
        logger.debug(f"Retrieving video status: {video_id}")

        data = await self._send(
            self._request(
                "GET",
                VIDEO_ENDPOINTS["retrieve"],
                resource_id=video_id,
                cancel_token=cancel_token,
            )
        )
        job = _parse(VideoJob, data, "video retrieval")
        logger.debug(f"Video {video_id} status: {job.status.value} ({job.progress or 0}% complete)")
        return job

    async def download_video_content(
        self,
        video_id: str,
        variant: Union[ContentVariant, str] = ContentVariant.VIDEO,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bytes:
        """Download the video, thumbnail, or spritesheet of a completed job."""
        video_id = _require(video_id, "Video ID is required")
        try:
            variant = ContentVariant(variant)
        except ValueError as e:
            raise ValueError(
                f"Invalid variant: {variant}. Valid options: video, thumbnail, spritesheet"
            ) from e

        query = {} if variant is ContentVariant.VIDEO else {"variant": variant.value}
        logger.info(f"Downloading {variant.value} content for video: {video_id}")

        content = await self._send(
            self._request(
                "GET",
                VIDEO_ENDPOINTS["content"],
                resource_id=video_id,
                query=query,
                response_kind=ResponseKind.BINARY,
                timeout_seconds=DOWNLOAD_TIMEOUT_SECONDS,
                cancel_token=cancel_token,
            )
        )
        logger.info(f"Downloaded {variant.value}: {len(content) / (1024 * 1024):.2f}MB")
        return content

    async def list_videos(
        self, limit: int = 20, after: Optional[str] = None, order: str = "desc"
    ) -> VideoList:
        """List video jobs, newest first by default."""
        if order not in ("asc", "desc"):
            raise ValueError(f"Invalid order: {order}. Valid options: asc, desc")

        query = {"limit": limit, "after": after, "order": order}
        logger.debug(f"Listing videos: limit={limit}, order={order}")

        data = await self._send(
            self._request("GET", VIDEO_ENDPOINTS["list"], query=query)
        )
        videos = _parse(VideoList, data, "video list")
        logger.info(f"Retrieved {len(videos.data)} video(s)")
        return videos

    async def delete_video(self, video_id: str) -> Dict[str, Any]:
        """Delete a video job and its stored content."""
        video_id = _require(video_id, "Video ID is required")
        logger.info(f"Deleting video: {video_id}")

        data = await self._send(
            self._request("DELETE", VIDEO_ENDPOINTS["delete"], resource_id=video_id)
        )
        logger.info(f"Video deleted: {video_id}")
        return data

    async def remix_video(self, video_id: str, prompt: str) -> VideoJob:
        """Create a new job that remixes an existing video with a new prompt."""
        video_id = _require(video_id, "Video ID is required")
        prompt = _require(prompt, "Prompt is required for remix")

        errors = validate_video_params("sora-2", {"prompt": prompt})
        if errors:
            raise ParameterValidationError(errors)

        logger.info(f'Remixing video {video_id}: "{prompt[:50]}..."')
        data = await self._send(
            self._request(
                "POST",
                VIDEO_ENDPOINTS["remix"],
                resource_id=video_id,
                json_body={"prompt": prompt},
            )
        )
        job = _parse(VideoJob, data, "video remix")
        logger.info(f"Remix job created: {job.id} (based on {video_id})")
        return job

    async def wait_for_video(
        self,
        video_id: str,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
    ) -> VideoJob:
        """Poll a video job until it completes, fails, times out or is cancelled."""
        video_id = _require(video_id, "Video ID is required")
        return await wait_for_job(
            self.retrieve_video,
            video_id,
            interval_seconds=interval_seconds,
            timeout_seconds=timeout_seconds,
            cancel_token=cancel_token,
            on_progress=on_progress,
        )

    async def create_and_wait(
        self,
        request: CreateVideoRequest,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
    ) -> VideoJob:
        """Submit a video job and wait for it with the same session semantics."""
        job = await self.create_video(request, cancel_token=cancel_token)
        return await self.wait_for_video(
            job.id,
            interval_seconds=interval_seconds,
            timeout_seconds=timeout_seconds,
            cancel_token=cancel_token,
            on_progress=on_progress,
        )
