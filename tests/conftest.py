"""
Shared pytest fixtures for oaimedia test suite.

This module provides reusable fixtures for common test data and mock objects
used across multiple test modules.
"""

import base64
import tempfile
from pathlib import Path

import pytest
from rich.console import Console

from oaimedia.config import Auth, ClientSettings, Defaults, Settings
from oaimedia.models import GenerationResult, VideoJob

TEST_API_KEY = "sk-test-key-abcdef123456"
TEST_BASE_URL = "https://api.test.example"


@pytest.fixture
def api_key():
    """Provide a syntactically valid fake API key."""
    return TEST_API_KEY


@pytest.fixture
def base_url():
    """Provide the base URL used for mocked API calls."""
    return TEST_BASE_URL


@pytest.fixture
def temp_directory():
    """Provide a temporary directory for testing file operations."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def sample_auth():
    """Provide a sample Auth configuration for testing."""
    return Auth(openai_api_key=TEST_API_KEY)


@pytest.fixture
def sample_defaults(temp_directory):
    """Provide sample default configuration for testing."""
    return Defaults(
        image_model="dall-e-3",
        video_model="sora-2",
        output_path=temp_directory / "output",
    )


@pytest.fixture
def sample_config(sample_auth, sample_defaults):
    """Provide a complete Settings configuration for testing."""
    return Settings(
        auth=sample_auth,
        defaults=sample_defaults,
        client=ClientSettings(base_url=TEST_BASE_URL, min_delay_seconds=0.0),
    )


@pytest.fixture
def png_bytes():
    """Provide bytes with a PNG signature."""
    return b"\x89PNG\r\n\x1a\n" + b"fake_image_data" * 100


@pytest.fixture
def mp4_bytes():
    """Provide bytes with an MP4 ftyp box header."""
    return b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 256


@pytest.fixture
def png_file(temp_directory, png_bytes):
    """Write a small PNG-signed file and return its path."""
    path = temp_directory / "input.png"
    path.write_bytes(png_bytes)
    return path


@pytest.fixture
def b64_png(png_bytes):
    """Provide base64-encoded PNG data as returned by the images API."""
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def video_job_payload():
    """Provide a raw video job record as returned by the videos API."""

    def _make(status="queued", progress=0, video_id="video_123", **extra):
        payload = {
            "id": video_id,
            "object": "video",
            "status": status,
            "model": "sora-2",
            "progress": progress,
            "created_at": 1712697600,
            "seconds": "4",
            "size": "1280x720",
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def completed_video_job(video_job_payload):
    """Provide a completed VideoJob."""
    return VideoJob.model_validate(
        video_job_payload(status="completed", progress=100, prompt="A cat")
    )


@pytest.fixture
def sample_generation_result(temp_directory):
    """Provide a sample GenerationResult for testing."""
    return GenerationResult(
        local_paths=[temp_directory / "output" / "test_image.png"],
        media_type="image",
        file_size_bytes=1024000,
        generation_time_seconds=2.5,
        metadata={
            "api_model": "dall-e-3",
            "prompt_length": 32,
            "storage_backend": "local",
        },
    )


class _NoOpLiveComponent:
    """A no-op class to replace Rich's live-rendering components during tests."""

    def __init__(self, *args, **kwargs):
        pass  # Absorb all arguments without action.

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False  # Do not suppress exceptions.

    def update(self, *args, **kwargs):
        pass

    def start(self, *args, **kwargs):
        pass

    def stop(self, *args, **kwargs):
        pass

    def refresh(self, *args, **kwargs):
        pass


@pytest.fixture(autouse=True)
def mock_rich_live_display(monkeypatch):
    """
    Automatically mocks Rich live-rendering components and the console
    for all tests to ensure speed and deterministic output.
    """
    import rich.live
    import rich.status

    import oaimedia.cli

    monkeypatch.setattr(rich.status, "Status", _NoOpLiveComponent)
    monkeypatch.setattr(rich.live, "Live", _NoOpLiveComponent)
    monkeypatch.setattr(oaimedia.cli, "Status", _NoOpLiveComponent)

    # Non-interactive console that still outputs to stdout for CliRunner
    test_console = Console(
        force_terminal=False,
        force_interactive=False,
        no_color=True,
        emoji=False,
        highlight=False,
        width=120,
    )
    monkeypatch.setattr(oaimedia.cli, "console", test_console)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove environment variables that change configuration behaviour."""
    for name in (
        "OPENAI_API_KEY",
        "OAIMEDIA_ENV",
        "OAIMEDIA_OUTPUT_PATH",
        "OAIMEDIA_IMAGE_MODEL",
        "OAIMEDIA_VIDEO_MODEL",
        "OAIMEDIA_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
