from ..config import settings
from .provider import StorageProvider
from .local_provider import LocalStorageProvider
from .blob_provider import BlobStorageProvider


def get_storage() -> StorageProvider:
    """Get storage provider based on configuration"""
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()
