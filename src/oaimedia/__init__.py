"""
oaimedia - An asynchronous command-line toolkit and Python library for OpenAI
image and video generation.

This package wraps the OpenAI image and video (Sora) endpoints with request
pacing, classified errors, SSRF-safe downloads of remote images, and
cancellable polling of long-running video jobs.
"""

# Runtime guard to ensure Pydantic v2 is installed
import pydantic

# Essential package-level exports for public API
from .config import Settings, load_config
from .models import (
    CreateVideoRequest,
    GenerateImageRequest,
    GenerationResult,
    VideoJob,
)

assert pydantic.VERSION.startswith("2."), (
    f"Pydantic v2 or greater is required, but found version {pydantic.VERSION}. "
    "Please upgrade with: pip install 'pydantic>=2.0,<3.0'"
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Settings",
    "load_config",
    "GenerateImageRequest",
    "CreateVideoRequest",
    "VideoJob",
    "GenerationResult",
]
