"""
Core functionality for oaimedia package.

This package contains cancellation, polling, URL validation, model
constraints, and local storage. The generation orchestration and I/O helpers
live in ``oaimedia.core.generation`` and ``oaimedia.core.io_utils`` and are
imported from there directly, since they depend on the API layer.
"""

from .cancellation import CancellationToken
from .constraints import (
    ParameterValidationError,
    validate_image_params,
    validate_video_params,
)
from .polling import (
    JobFailedError,
    JobTimeoutError,
    PollingCancelledError,
    PollingError,
    ProgressUpdate,
    wait_for_job,
)
from .storage import LocalStorageUploader, StorageError
from .url_security import URLValidationError, fetch_remote_bytes, validate_url

__all__ = [
    "CancellationToken",
    "ParameterValidationError",
    "validate_image_params",
    "validate_video_params",
    "PollingError",
    "JobFailedError",
    "JobTimeoutError",
    "PollingCancelledError",
    "ProgressUpdate",
    "wait_for_job",
    "LocalStorageUploader",
    "StorageError",
    "URLValidationError",
    "validate_url",
    "fetch_remote_bytes",
]
