"""
Local filesystem storage provider for development and tests.
Saves files to a local directory instead of Azure Blob Storage.
"""
from typing import Optional
from pathlib import Path

import structlog

from ..config import settings
from ..errors import NotFoundError, StorageError
from .provider import StorageProvider


log = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._get_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Local write failed for {key}: {e}") from e
        return key.lstrip("/")

    def get(self, key: str) -> bytes:
        path = self._get_path(key)
        if not path.exists():
            raise NotFoundError(f"File not found: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Local read failed for {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> bool:
        path = self._get_path(key)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            log.warning("local_delete_failed", key=key, error=str(e))
            return False
        return True
