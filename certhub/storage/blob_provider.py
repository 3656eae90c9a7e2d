from typing import Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from ..errors import NotFoundError, StorageError
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    def _client(self, key: str):
        return self._service.get_blob_client(self._container, key.lstrip("/"))

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        content_settings = ContentSettings(content_type=content_type) if content_type else None
        try:
            self._client(key).upload_blob(data, overwrite=True, content_settings=content_settings)
        except AzureError as e:
            raise StorageError(f"Blob upload failed for {key}: {e}") from e
        return key.lstrip("/")

    def get(self, key: str) -> bytes:
        try:
            return self._client(key).download_blob().readall()
        except ResourceNotFoundError:
            raise NotFoundError(f"File not found: {key}")
        except AzureError as e:
            raise StorageError(f"Blob download failed for {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def delete(self, key: str) -> bool:
        try:
            self._client(key).delete_blob()
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise StorageError(f"Blob delete failed for {key}: {e}") from e
        return True
