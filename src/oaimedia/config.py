"""
Configuration management for oaimedia package.

This module loads settings from TOML files and environment variables, validates
them with Pydantic, and exposes the fixed endpoint table of the upstream API.
"""

import os
from pathlib import Path
from typing import Literal, Optional

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator

# OpenAI API base URL
BASE_URL = "https://api.openai.com"

IMAGE_ENDPOINTS = {
    "generate": "/v1/images/generations",
    "edit": "/v1/images/edits",
    "variation": "/v1/images/variations",
}

# {id} is replaced with the video id by the dispatcher
VIDEO_ENDPOINTS = {
    "create": "/v1/videos",
    "retrieve": "/v1/videos/{id}",
    "content": "/v1/videos/{id}/content",
    "remix": "/v1/videos/{id}/remix",
    "list": "/v1/videos",
    "delete": "/v1/videos/{id}",
}

API_KEY_ENV_VAR = "OPENAI_API_KEY"

CONFIG_FILENAMES = ("oaimedia.toml", ".oaimedia.toml")


class MissingAPIKeyError(RuntimeError):
    """Raised when no API key is available from arguments or the environment."""

    pass


class Auth(BaseModel):
    """Authentication settings."""

    openai_api_key: str = Field(..., description="OpenAI API key")

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("OpenAI API key cannot be empty")
        return cleaned


class Defaults(BaseModel):
    """Default generation settings."""

    image_model: str = Field(
        default="dall-e-3", description="Default model for image generation"
    )
    video_model: str = Field(
        default="sora-2", description="Default model for video generation"
    )
    output_path: Path = Field(
        default_factory=lambda: Path.cwd() / "generated_media",
        description="Directory where generated media is saved",
    )
    enable_metadata: bool = Field(
        default=True, description="Write a JSON metadata sidecar for each output"
    )

    @field_validator("output_path")
    @classmethod
    def resolve_output_path(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()


class ClientSettings(BaseModel):
    """Transport settings for the upstream API."""

    base_url: str = Field(default=BASE_URL, description="Upstream API base URL")
    min_delay_seconds: float = Field(
        default=1.0, ge=0.0, description="Minimum gap between requests"
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for a single API request"
    )
    environment: Literal["development", "production"] = Field(
        default="development",
        description="Production mode hides upstream error details",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("API base URL must use HTTPS protocol for security")
        return v.rstrip("/")


class Settings(BaseModel):
    """Top-level application settings."""

    auth: Auth
    defaults: Defaults = Field(default_factory=Defaults)
    client: ClientSettings = Field(default_factory=ClientSettings)


def get_api_key(explicit: Optional[str] = None) -> str:
    """
    Resolve the API key from an explicit value or the environment.

    Args:
        explicit: Key passed by the caller, takes priority when non-empty

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If no key is available
    """
    api_key = (explicit or "").strip() or (os.getenv(API_KEY_ENV_VAR) or "").strip()
    if not api_key:
        raise MissingAPIKeyError(
            f"{API_KEY_ENV_VAR} not found. Provide an api_key argument, "
            f"export {API_KEY_ENV_VAR}=YOUR_KEY, or add [auth] openai_api_key "
            "to ./oaimedia.toml or ~/.oaimedia.toml"
        )
    return api_key


def is_production() -> bool:
    """Return True when OAIMEDIA_ENV selects production mode."""
    return (os.getenv("OAIMEDIA_ENV") or "").strip().lower() == "production"


def find_config_file() -> Optional[Path]:
    """Return the first existing config file, or None."""
    candidates = [
        Path.cwd() / CONFIG_FILENAMES[0],
        Path.home() / CONFIG_FILENAMES[1],
    ]
    for path in candidates:
        if path.exists():
            return path
    return None


async def load_config() -> Settings:
    """
    Load configuration from TOML file and environment variables.

    Files are searched in ./oaimedia.toml then ~/.oaimedia.toml. Environment
    variables override file values.

    Returns:
        Settings: Validated configuration

    Raises:
        FileNotFoundError: If no config file exists and OPENAI_API_KEY is unset
        ValueError: If the TOML is malformed or validation fails
    """
    config_file = find_config_file()
    data: dict = {}

    if config_file is not None:
        try:
            with open(config_file, "rb") as f:
                data = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {config_file}: {e}") from e

    env_api_key = os.getenv(API_KEY_ENV_VAR)
    if config_file is None and not env_api_key:
        raise FileNotFoundError(
            "No configuration file found (./oaimedia.toml or ~/.oaimedia.toml) "
            f"and {API_KEY_ENV_VAR} environment variable is not set"
        )

    auth = dict(data.get("auth", {}))
    defaults = dict(data.get("defaults", {}))
    client = dict(data.get("client", {}))

    if env_api_key:
        auth["openai_api_key"] = env_api_key

    env_overrides = {
        "OAIMEDIA_OUTPUT_PATH": (defaults, "output_path"),
        "OAIMEDIA_IMAGE_MODEL": (defaults, "image_model"),
        "OAIMEDIA_VIDEO_MODEL": (defaults, "video_model"),
        "OAIMEDIA_BASE_URL": (client, "base_url"),
        "OAIMEDIA_ENV": (client, "environment"),
    }
    for env_name, (section, key) in env_overrides.items():
        value = os.getenv(env_name)
        if value:
            section[key] = value

    try:
        return Settings(auth=auth, defaults=defaults, client=client)
    except ValidationError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
