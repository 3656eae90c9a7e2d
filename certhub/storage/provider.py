from typing import Optional


class StorageProvider:
    """Key/value blob store. Keys are slash-separated relative paths."""

    name = "base"

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError
