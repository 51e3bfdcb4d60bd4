from .base import StorageAdapter
from .blob_adapter import BlobStorageAdapter, BlobStore, GistBlobStore
from .factory import clear_cache, create_adapter, dispose, get_adapter, get_current_adapter
from .file_adapter import FileStorageAdapter
from .sqlite_adapter import SqliteStorageAdapter

__all__ = [
    "StorageAdapter",
    "FileStorageAdapter",
    "SqliteStorageAdapter",
    "BlobStorageAdapter",
    "BlobStore",
    "GistBlobStore",
    "get_adapter",
    "create_adapter",
    "get_current_adapter",
    "clear_cache",
    "dispose",
]
