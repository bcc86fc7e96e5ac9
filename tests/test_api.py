"""
Tests for oaimedia request dispatching.

This module tests error classification, API key redaction, request pacing,
cancellation, response decoding, and the opt-in retry decorator.
"""

import asyncio
import logging
import time
from unittest.mock import patch

import aiohttp
import pytest
from aioresponses import aioresponses

from oaimedia.api import (
    DEFAULT_GENERIC_MESSAGE,
    GENERIC_ERROR_MESSAGES,
    APIError,
    AuthenticationError,
    BadRequestError,
    ErrorKind,
    FilePart,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestCancelledError,
    RequestDispatcher,
    ResponseKind,
    ServiceUnavailableError,
    TransportRequest,
    UnexpectedStatusError,
    classify_http_error,
    redact_api_key,
    sanitize_error_detail,
    transient_retry,
)
from oaimedia.core.cancellation import CancellationToken


def _only_call(mock_responses):
    calls = [call for calls in mock_responses.requests.values() for call in calls]
    assert len(calls) == 1
    return calls[0]


class TestErrorClassification:
    """Test classify_http_error in development and production mode."""

    @pytest.mark.parametrize(
        "status,error_class,kind",
        [
            (401, AuthenticationError, ErrorKind.UNAUTHORIZED),
            (400, BadRequestError, ErrorKind.BAD_REQUEST),
            (404, NotFoundError, ErrorKind.NOT_FOUND),
            (429, RateLimitError, ErrorKind.RATE_LIMITED),
            (500, ServiceUnavailableError, ErrorKind.SERVICE_UNAVAILABLE),
            (502, ServiceUnavailableError, ErrorKind.SERVICE_UNAVAILABLE),
            (503, ServiceUnavailableError, ErrorKind.SERVICE_UNAVAILABLE),
            (418, UnexpectedStatusError, ErrorKind.UNCLASSIFIED),
        ],
    )
    @pytest.mark.parametrize("production", [False, True])
    def test_status_maps_to_error_kind(self, status, error_class, kind, production):
        """Each status maps to exactly one error class in either mode."""
        error = classify_http_error(status, "upstream says no", production=production)
        assert type(error) is error_class
        assert error.kind is kind
        assert error.status_code == status
        if production:
            assert error.detail == GENERIC_ERROR_MESSAGES.get(
                status, DEFAULT_GENERIC_MESSAGE
            )
            assert "upstream says no" not in str(error)
        else:
            assert error.detail == "upstream says no"

    def test_unauthorized_message(self):
        error = classify_http_error(401, "Incorrect API key provided")
        assert str(error) == "Authentication failed. Please check your API key."

    def test_bad_request_includes_upstream_detail_in_development(self):
        error = classify_http_error(400, "Invalid size 999x999", production=False)
        assert str(error) == "Bad request: Invalid size 999x999"

    def test_bad_request_hides_upstream_detail_in_production(self):
        error = classify_http_error(400, "Invalid size 999x999", production=True)
        assert str(error) == "Bad request: Invalid request parameters"
        assert "999x999" not in str(error)

    def test_not_found_message(self):
        error = classify_http_error(404, "No video with id video_x")
        assert str(error) == "Resource not found: No video with id video_x"

    def test_not_found_generic_in_production(self):
        error = classify_http_error(404, "No video with id video_x", production=True)
        assert str(error) == "Resource not found: Resource not found"

    def test_rate_limit_message(self):
        error = classify_http_error(429, "Slow down")
        assert str(error) == "Rate limit exceeded. Please try again later."

    def test_service_error_message(self):
        for status in (500, 502, 503):
            error = classify_http_error(status, "stack trace here")
            assert str(error) == "OpenAI service error. Please try again later."

    def test_unclassified_status_message(self):
        error = classify_http_error(418, "I'm a teapot")
        assert str(error) == "API error (418): I'm a teapot"

    def test_unclassified_status_generic_in_production(self):
        error = classify_http_error(418, "internal detail", production=True)
        assert str(error) == "API error (418): An error occurred"

    def test_missing_detail_in_development(self):
        assert sanitize_error_detail(400, None, production=False) == "Unknown error"

    def test_forbidden_generic_in_production(self):
        assert sanitize_error_detail(403, "nope", production=True) == "Access forbidden"


class TestRedactApiKey:
    """Test redact_api_key."""

    def test_long_key_keeps_last_four(self):
        assert redact_api_key("sk-proj-1234567890abcd") == "sk-...abcd"

    def test_short_key_fully_hidden(self):
        assert redact_api_key("sk-123") == "[REDACTED]"

    def test_empty_key(self):
        assert redact_api_key("") == "[REDACTED]"
        assert redact_api_key(None) == "[REDACTED]"


class TestDispatcherConstruction:
    """Test RequestDispatcher argument validation."""

    def test_empty_api_key_raises_error(self):
        with pytest.raises(ValueError, match="API key cannot be empty"):
            RequestDispatcher(api_key="   ")

    def test_non_https_base_url_raises_error(self, api_key):
        with pytest.raises(ValueError, match="HTTPS"):
            RequestDispatcher(api_key=api_key, base_url="http://api.openai.com")

    def test_resolve_endpoint_escapes_resource_id(self, api_key):
        dispatcher = RequestDispatcher(api_key=api_key)
        request = TransportRequest("GET", "/v1/videos/{id}", resource_id="a/b c")
        assert dispatcher._resolve_endpoint(request) == "/v1/videos/a%2Fb%20c"

    def test_resolve_endpoint_requires_resource_id(self, api_key):
        dispatcher = RequestDispatcher(api_key=api_key)
        request = TransportRequest("GET", "/v1/videos/{id}")
        with pytest.raises(ValueError, match="requires a resource id"):
            dispatcher._resolve_endpoint(request)


class TestDispatcherSend:
    """Test RequestDispatcher.send against mocked HTTP responses."""

    @pytest.mark.asyncio
    async def test_json_request_sends_bearer_token_and_body(self, api_key, base_url):
        """JSON requests carry the bearer token and a JSON content type."""
        with aioresponses() as mock_responses:
            mock_responses.post(
                f"{base_url}/v1/videos",
                status=200,
                payload={"id": "video_123", "status": "queued"},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                result = await dispatcher.send(
                    TransportRequest(
                        "POST", "/v1/videos", json_body={"prompt": "A cat"}
                    )
                )

            assert result == {"id": "video_123", "status": "queued"}
            call = _only_call(mock_responses)
            assert call.kwargs["headers"]["Authorization"] == f"Bearer {api_key}"
            assert call.kwargs["headers"]["Content-Type"] == "application/json"
            assert call.kwargs["json"] == {"prompt": "A cat"}

    @pytest.mark.asyncio
    async def test_api_key_never_logged_in_full(self, base_url, caplog):
        """Debug logs show only the redacted key, on success and on failure."""
        secret = "sk-live-abcdef1234567890"
        caplog.set_level(logging.DEBUG, logger="oaimedia.api")

        with aioresponses() as mock_responses:
            mock_responses.post(
                f"{base_url}/v1/videos", status=200, payload={"id": "video_123"}
            )
            mock_responses.get(
                f"{base_url}/v1/videos/video_123",
                status=401,
                payload={"error": {"message": "Incorrect API key provided"}},
            )

            async with RequestDispatcher(
                api_key=secret, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                await dispatcher.send(
                    TransportRequest("POST", "/v1/videos", json_body={"prompt": "A cat"})
                )
                with pytest.raises(AuthenticationError):
                    await dispatcher.send(
                        TransportRequest(
                            "GET", "/v1/videos/{id}", resource_id="video_123"
                        )
                    )

        assert "sk-...7890" in caplog.text
        assert secret not in caplog.text

    @pytest.mark.asyncio
    async def test_resource_id_substituted_into_endpoint(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos/video_123",
                status=200,
                payload={"id": "video_123", "status": "in_progress"},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                result = await dispatcher.send(
                    TransportRequest("GET", "/v1/videos/{id}", resource_id="video_123")
                )

            assert result["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_multipart_request_omits_json_content_type(self, api_key, base_url):
        """Multipart requests let aiohttp set the boundary content type."""
        with aioresponses() as mock_responses:
            mock_responses.post(
                f"{base_url}/v1/images/edits",
                status=200,
                payload={"created": 1, "data": []},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                await dispatcher.send(
                    TransportRequest(
                        "POST",
                        "/v1/images/edits",
                        form_fields={"prompt": "Add a hat", "size": None},
                        files=[FilePart("image", "in.png", b"\x89PNG", "image/png")],
                    )
                )

            call = _only_call(mock_responses)
            assert "Content-Type" not in call.kwargs["headers"]
            assert isinstance(call.kwargs["data"], aiohttp.FormData)

    @pytest.mark.asyncio
    async def test_binary_response_returns_bytes(self, api_key, base_url, mp4_bytes):
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos/video_123/content",
                status=200,
                body=mp4_bytes,
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                content = await dispatcher.send(
                    TransportRequest(
                        "GET",
                        "/v1/videos/{id}/content",
                        resource_id="video_123",
                        response_kind=ResponseKind.BINARY,
                    )
                )

            assert content == mp4_bytes

    @pytest.mark.asyncio
    async def test_error_status_uses_upstream_message(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.post(
                f"{base_url}/v1/images/generations",
                status=400,
                payload={"error": {"message": "Invalid size", "type": "invalid_request"}},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                with pytest.raises(BadRequestError, match="Bad request: Invalid size"):
                    await dispatcher.send(
                        TransportRequest("POST", "/v1/images/generations", json_body={})
                    )

    @pytest.mark.asyncio
    async def test_error_status_hidden_in_production(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.post(
                f"{base_url}/v1/images/generations",
                status=400,
                payload={"error": {"message": "org-secret-123 is not allowed"}},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0, production=True
            ) as dispatcher:
                with pytest.raises(BadRequestError) as exc_info:
                    await dispatcher.send(
                        TransportRequest("POST", "/v1/images/generations", json_body={})
                    )

            assert "org-secret-123" not in str(exc_info.value)
            assert str(exc_info.value) == "Bad request: Invalid request parameters"

    @pytest.mark.asyncio
    async def test_unauthorized_status(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos/video_123",
                status=401,
                payload={"error": {"message": "Incorrect API key"}},
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                with pytest.raises(AuthenticationError):
                    await dispatcher.send(
                        TransportRequest("GET", "/v1/videos/{id}", resource_id="video_123")
                    )

    @pytest.mark.asyncio
    async def test_undecodable_json_raises_invalid_response(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(f"{base_url}/v1/videos", status=200, body="not json")

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                with pytest.raises(InvalidResponseError):
                    await dispatcher.send(TransportRequest("GET", "/v1/videos"))

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos",
                exception=aiohttp.ClientConnectionError("Connection refused"),
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                with pytest.raises(NetworkError, match="Request failed: Connection refused"):
                    await dispatcher.send(TransportRequest("GET", "/v1/videos"))


class TestPacing:
    """Test the minimum delay between successive requests."""

    @pytest.mark.asyncio
    async def test_successive_requests_are_spaced(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos", status=200, payload={"data": []}, repeat=True
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0.1
            ) as dispatcher:
                await dispatcher.send(TransportRequest("GET", "/v1/videos"))
                first = dispatcher.last_request_at
                await dispatcher.send(TransportRequest("GET", "/v1/videos"))
                second = dispatcher.last_request_at

            assert second - first >= 0.09

    @pytest.mark.asyncio
    async def test_concurrent_requests_are_serialized(self, api_key, base_url):
        """Concurrent callers on one dispatcher do not race past the delay."""
        with aioresponses() as mock_responses:
            mock_responses.get(
                f"{base_url}/v1/videos", status=200, payload={"data": []}, repeat=True
            )

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0.1
            ) as dispatcher:
                start = time.monotonic()
                await asyncio.gather(
                    *(dispatcher.send(TransportRequest("GET", "/v1/videos")) for _ in range(3))
                )
                elapsed = time.monotonic() - start

            assert elapsed >= 0.18

    @pytest.mark.asyncio
    async def test_first_request_is_not_delayed(self, api_key, base_url):
        with aioresponses() as mock_responses:
            mock_responses.get(f"{base_url}/v1/videos", status=200, payload={"data": []})

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=5
            ) as dispatcher:
                start = time.monotonic()
                await dispatcher.send(TransportRequest("GET", "/v1/videos"))
                assert time.monotonic() - start < 1


class TestCancellation:
    """Test cancellation of requests through a CancellationToken."""

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_sends_nothing(self, api_key, base_url):
        token = CancellationToken()
        token.cancel()

        with aioresponses() as mock_responses:
            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=0
            ) as dispatcher:
                with pytest.raises(RequestCancelledError, match="Request was cancelled"):
                    await dispatcher.send(
                        TransportRequest("GET", "/v1/videos", cancel_token=token)
                    )

            assert not mock_responses.requests

    @pytest.mark.asyncio
    async def test_token_cancelled_during_request(self, api_key, base_url):
        """Cancelling mid-flight aborts the request promptly."""
        token = CancellationToken()

        async def slow_issue(*args, **kwargs):
            await asyncio.sleep(10)

        async with RequestDispatcher(
            api_key=api_key, base_url=base_url, min_delay_seconds=0
        ) as dispatcher:
            with patch.object(dispatcher, "_issue", slow_issue):
                asyncio.get_running_loop().call_later(0.05, token.cancel)
                start = time.monotonic()
                with pytest.raises(RequestCancelledError) as exc_info:
                    await dispatcher.send(
                        TransportRequest("GET", "/v1/videos", cancel_token=token)
                    )

        assert time.monotonic() - start < 2
        assert exc_info.value.kind is ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_token_cancelled_during_pacing_wait(self, api_key, base_url):
        token = CancellationToken()

        with aioresponses() as mock_responses:
            mock_responses.get(f"{base_url}/v1/videos", status=200, payload={"data": []})

            async with RequestDispatcher(
                api_key=api_key, base_url=base_url, min_delay_seconds=10
            ) as dispatcher:
                await dispatcher.send(TransportRequest("GET", "/v1/videos"))

                asyncio.get_running_loop().call_later(0.05, token.cancel)
                with pytest.raises(RequestCancelledError):
                    await dispatcher.send(
                        TransportRequest("GET", "/v1/videos", cancel_token=token)
                    )


class TestTransientRetry:
    """Test the opt-in retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        calls = []

        @transient_retry(attempts=3, max_wait_seconds=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RateLimitError("Rate limit exceeded. Please try again later.")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self):
        calls = []

        @transient_retry(attempts=3, max_wait_seconds=0)
        async def bad_request():
            calls.append(1)
            raise BadRequestError("Bad request: nope", status_code=400)

        with pytest.raises(BadRequestError):
            await bad_request()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_reraises_after_last_attempt(self):
        @transient_retry(attempts=2, max_wait_seconds=0)
        async def always_down():
            raise ServiceUnavailableError("OpenAI service error. Please try again later.")

        with pytest.raises(APIError, match="OpenAI service error"):
            await always_down()
