"""
Request dispatching for the upstream media API.

This module issues authenticated, paced HTTP requests against the configured
API host and converts every failure into a classified exception. The
dispatcher itself never retries; callers that want backoff can opt in with
``transient_retry``.
"""

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import aiohttp
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .config import BASE_URL
from .core.cancellation import CancellationToken

# Configure logging for this module
logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Classification of a failed request."""

    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CANCELLED = "cancelled"
    NETWORK = "network"
    UNCLASSIFIED = "unclassified"


class APIError(Exception):
    """Base exception for API-related errors."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class AuthenticationError(APIError):
    """Raised for HTTP 401."""

    kind = ErrorKind.UNAUTHORIZED


class BadRequestError(APIError):
    """Raised for HTTP 400."""

    kind = ErrorKind.BAD_REQUEST


class NotFoundError(APIError):
    """Raised for HTTP 404."""

    kind = ErrorKind.NOT_FOUND


class RateLimitError(APIError):
    """Raised for HTTP 429."""

    kind = ErrorKind.RATE_LIMITED


class ServiceUnavailableError(APIError):
    """Raised for HTTP 500, 502 and 503."""

    kind = ErrorKind.SERVICE_UNAVAILABLE


class RequestCancelledError(APIError):
    """Raised when a request is aborted through its cancellation token."""

    kind = ErrorKind.CANCELLED


class NetworkError(APIError):
    """Raised when no HTTP response was received at all."""

    kind = ErrorKind.NETWORK


class UnexpectedStatusError(APIError):
    """Raised for any other HTTP error status."""

    kind = ErrorKind.UNCLASSIFIED


class InvalidResponseError(APIError):
    """Raised when a successful response body cannot be decoded."""

    kind = ErrorKind.UNCLASSIFIED


# Shown instead of upstream error bodies in production mode
GENERIC_ERROR_MESSAGES: Dict[int, str] = {
    400: "Invalid request parameters",
    401: "Authentication failed",
    403: "Access forbidden",
    404: "Resource not found",
    429: "Rate limit exceeded",
    500: "Service error",
    502: "Service temporarily unavailable",
    503: "Service temporarily unavailable",
}
DEFAULT_GENERIC_MESSAGE = "An error occurred"

_STATUS_ERRORS = {
    401: (AuthenticationError, "Authentication failed. Please check your API key."),
    400: (BadRequestError, "Bad request: {detail}"),
    404: (NotFoundError, "Resource not found: {detail}"),
    429: (RateLimitError, "Rate limit exceeded. Please try again later."),
    500: (ServiceUnavailableError, "OpenAI service error. Please try again later."),
    502: (ServiceUnavailableError, "OpenAI service error. Please try again later."),
    503: (ServiceUnavailableError, "OpenAI service error. Please try again later."),
}

TRANSIENT_ERRORS = (RateLimitError, ServiceUnavailableError, NetworkError)


def redact_api_key(api_key: Optional[str]) -> str:
    """
    Redact an API key for logging.

    Keys shorter than 8 characters are fully hidden; longer keys keep their
    last 4 characters.
    """
    if not api_key or len(api_key) < 8:
        return "[REDACTED]"
    return f"sk-...{api_key[-4:]}"


def sanitize_error_detail(
    status: int, upstream_detail: Optional[str], production: bool
) -> str:
    """Return the detail text that may be shown for an HTTP error status."""
    if production:
        return GENERIC_ERROR_MESSAGES.get(status, DEFAULT_GENERIC_MESSAGE)
    return upstream_detail or "Unknown error"


def classify_http_error(
    status: int, upstream_detail: Optional[str], production: bool = False
) -> APIError:
    """
    Map an HTTP error status to a classified exception.

    Args:
        status: HTTP status code of the failed response
        upstream_detail: Error message extracted from the response body
        production: Replace the upstream detail with a generic phrase

    Returns:
        APIError: The classified exception (not raised)
    """
    detail = sanitize_error_detail(status, upstream_detail, production)
    error_class, template = _STATUS_ERRORS.get(
        status, (UnexpectedStatusError, "API error ({status}): {detail}")
    )
    message = template.format(status=status, detail=detail)
    return error_class(message, status_code=status, detail=detail)


class ResponseKind(str, Enum):
    """How a successful response body is decoded."""

    JSON = "json"
    BINARY = "binary"


@dataclass
class FilePart:
    """A single file uploaded in a multipart request."""

    field: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class TransportRequest:
    """Everything the dispatcher needs to issue one API call."""

    method: str
    endpoint: str
    resource_id: Optional[str] = None
    json_body: Optional[Dict[str, Any]] = None
    form_fields: Dict[str, Any] = field(default_factory=dict)
    files: List[FilePart] = field(default_factory=list)
    query: Dict[str, Any] = field(default_factory=dict)
    response_kind: ResponseKind = ResponseKind.JSON
    timeout_seconds: float = 30.0
    cancel_token: Optional[CancellationToken] = None

    @property
    def is_multipart(self) -> bool:
        return bool(self.files)


class RequestDispatcher:
    """
    Issues authenticated requests to a single trusted API host.

    Successive requests are separated by at least ``min_delay_seconds``. The
    last-issued timestamp is updated under a lock, so concurrent callers on
    the same instance are serialized rather than racing past the delay.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        min_delay_seconds: float = 1.0,
        production: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not api_key or not api_key.strip():
            raise ValueError("API key cannot be empty")
        if not base_url.startswith("https://"):
            raise ValueError("API base URL must use HTTPS protocol for security")

        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.min_delay_seconds = min_delay_seconds
        self.production = production

        self._session = session
        self._owns_session = session is None
        self._pacing_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None

    @property
    def last_request_at(self) -> Optional[float]:
        return self._last_request_at

    async def __aenter__(self) -> "RequestDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this dispatcher created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _pace(self, cancel_token: Optional[CancellationToken]) -> None:
        async with self._pacing_lock:
            if self._last_request_at is not None:
                elapsed = time.monotonic() - self._last_request_at
                delay = self.min_delay_seconds - elapsed
                if delay > 0:
                    logger.debug(
                        f"Rate limit: waiting {delay * 1000:.0f}ms before next request"
                    )
                    if cancel_token is not None:
                        await cancel_token.sleep(delay)
                        if cancel_token.cancelled:
                            raise RequestCancelledError("Request was cancelled")
                    else:
                        await asyncio.sleep(delay)

            now = time.monotonic()
            if self._last_request_at is None or now > self._last_request_at:
                self._last_request_at = now

    def _resolve_endpoint(self, request: TransportRequest) -> str:
        endpoint = request.endpoint
        if "{id}" in endpoint:
            if not request.resource_id:
                raise ValueError(f"Endpoint {endpoint} requires a resource id")
            endpoint = endpoint.replace("{id}", quote(request.resource_id, safe=""))
        return endpoint

    def _build_form(self, request: TransportRequest) -> aiohttp.FormData:
        form = aiohttp.FormData()
        for name, value in request.form_fields.items():
            if value is None:
                continue
            form.add_field(name, str(value))
        for part in request.files:
            form.add_field(
                part.field,
                part.content,
                filename=part.filename,
                content_type=part.content_type,
            )
        return form

    async def send(self, request: TransportRequest) -> Union[Any, bytes]:
        """
        Issue a request and return the decoded JSON value or raw bytes.

        Args:
            request: The request description

        Returns:
            Decoded JSON for ``ResponseKind.JSON``, bytes for ``ResponseKind.BINARY``

        Raises:
            APIError: A classified subclass for every failure mode
        """
        token = request.cancel_token
        if token is not None and token.cancelled:
            logger.info("API request was cancelled")
            raise RequestCancelledError("Request was cancelled")

        endpoint = self._resolve_endpoint(request)
        await self._pace(token)

        headers = {"Authorization": f"Bearer {self.api_key}"}
        if not request.is_multipart:
            headers["Content-Type"] = "application/json"

        logger.debug(
            f"API request: {request.method.upper()} {endpoint} "
            f"(Authorization: Bearer {redact_api_key(self.api_key)})"
        )
        if request.is_multipart:
            logger.debug("Request body: multipart/form-data")
        elif request.json_body is not None:
            logger.debug(f"Request body: {json.dumps(request.json_body)[:500]}")

        issue = self._issue(request, endpoint, headers)
        if token is None:
            return await issue
        return await self._run_cancellable(issue, token)

    async def _run_cancellable(self, coro, token: CancellationToken) -> Any:
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("API request was cancelled")
        raise RequestCancelledError("Request was cancelled")

    async def _issue(
        self, request: TransportRequest, endpoint: str, headers: Dict[str, str]
    ) -> Union[Any, bytes]:
        method = request.method.upper()
        url = f"{self.base_url}{endpoint}"
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "timeout": aiohttp.ClientTimeout(total=request.timeout_seconds),
        }
        if request.query:
            kwargs["params"] = {
                k: str(v) for k, v in request.query.items() if v is not None
            }
        if request.is_multipart:
            kwargs["data"] = self._build_form(request)
        elif request.json_body is not None:
            kwargs["json"] = request.json_body

        session = await self._get_session()
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    upstream_detail = await _extract_error_detail(response)
                    error = classify_http_error(
                        response.status, upstream_detail, self.production
                    )
                    logger.error(f"API request failed: {error}")
                    raise error

                logger.debug(f"API request successful: {method} {endpoint}")
                if request.response_kind is ResponseKind.BINARY:
                    return await response.read()
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise InvalidResponseError(
                        f"Invalid API response: {e}", status_code=response.status
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"API request failed: {message}")
            raise NetworkError(f"Request failed: {message}", detail=message) from e


async def _extract_error_detail(response: aiohttp.ClientResponse) -> Optional[str]:
    """Pull the most useful error message out of an error response."""
    try:
        body = await response.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return response.reason

    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:500] or response.reason

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason


def transient_retry(attempts: int = 3, max_wait_seconds: float = 60.0):
    """
    Build an opt-in retry decorator for transient API failures.

    Only rate limiting, service unavailability and network failures are
    retried, with randomized exponential backoff.

    Args:
        attempts: Total number of attempts, including the first one
        max_wait_seconds: Upper bound for a single backoff sleep

    Returns:
        A tenacity decorator for async callables
    """
    return retry(
        wait=wait_random_exponential(multiplier=1, max=max_wait_seconds),
        stop=stop_after_attempt(max(1, attempts)),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
