"""
Local storage for generated media.

Files are written beneath a base directory; destination keys that would
escape it are refused.
"""

import logging
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Exception for storage-related errors."""

    pass


class LocalStorageUploader:
    """Writes media files below a fixed base directory."""

    def __init__(self, base_directory: Union[str, Path], create_dirs: bool = True):
        self.base_directory = Path(base_directory).expanduser().resolve()
        self.create_dirs = create_dirs

    def resolve_destination(self, destination_key: str) -> Path:
        """
        Map a destination key to an absolute path inside the base directory.

        Raises:
            StorageError: If the key contains ``..`` or escapes the base directory
        """
        if ".." in Path(destination_key).parts:
            raise StorageError(
                "Path traversal sequences (..) are not allowed in output paths"
            )

        destination = (self.base_directory / destination_key).resolve()
        if destination != self.base_directory and not destination.is_relative_to(
            self.base_directory
        ):
            raise StorageError(f"Output path must be within {self.base_directory}")
        return destination

    async def save_bytes(self, data: bytes, destination_key: str) -> Path:
        """
        Write ``data`` to ``destination_key`` below the base directory.

        Returns:
            Path: Absolute path of the written file
        """
        destination = self.resolve_destination(destination_key)

        try:
            if self.create_dirs:
                await aiofiles.os.makedirs(destination.parent, exist_ok=True)
            elif not await aiofiles.os.path.exists(destination.parent):
                raise StorageError(f"Directory does not exist: {destination.parent}")

            async with aiofiles.open(destination, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {destination}: {e}") from e

        logger.info(
            f"Saved file: {destination} ({len(data) / (1024 * 1024):.2f}MB)"
        )
        return destination
