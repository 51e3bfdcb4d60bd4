"""
Error taxonomy shared by the storage adapters, the configuration manager and the catalog client.
"""

import sqlite3
from enum import Enum
from typing import Any, Dict, Optional

import requests


class ErrorCode(str, Enum):
    INVALID_CONFIG = "INVALID_CONFIG"
    SAVE_FAILED = "SAVE_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    # Embedded relational store
    DATABASE_CONNECTION = "DATABASE_CONNECTION"
    DATABASE_LOCKED = "DATABASE_LOCKED"
    DATABASE_CORRUPT = "DATABASE_CORRUPT"
    # Blob store
    BLOB_QUOTA_EXCEEDED = "BLOB_QUOTA_EXCEEDED"
    BLOB_ACCESS_DENIED = "BLOB_ACCESS_DENIED"
    BLOB_NOT_FOUND = "BLOB_NOT_FOUND"


# Status-like code attached to each error code for boundary translation
STATUS_CODES = {
    ErrorCode.INVALID_CONFIG: 400,
    ErrorCode.SAVE_FAILED: 500,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INITIALIZATION_FAILED: 500,
    ErrorCode.DATABASE_CONNECTION: 503,
    ErrorCode.DATABASE_LOCKED: 503,
    ErrorCode.DATABASE_CORRUPT: 500,
    ErrorCode.BLOB_QUOTA_EXCEEDED: 413,
    ErrorCode.BLOB_ACCESS_DENIED: 403,
    ErrorCode.BLOB_NOT_FOUND: 404,
}


class ConfigError(Exception):
    """Typed storage-layer failure carrying the backend platform and a status-like code."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.SAVE_FAILED,
                 platform: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.platform = platform
        self.status_code = status_code if status_code is not None else STATUS_CODES[self.code]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "platform": self.platform,
            "statusCode": self.status_code,
        }

    def __repr__(self):
        return f"ConfigError(code={self.code.value}, platform={self.platform}, message={self.message!r})"


class BlobStoreError(Exception):
    """Raw failure reported by a blob store client, with the HTTP status when known."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CatalogApiError(Exception):
    """Failure talking to the external product catalog."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 endpoint: Optional[str] = None, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.original_error = original_error

    @property
    def code(self) -> Optional[int]:
        return self.status_code


class BackupError(Exception):
    """Backup creation failed."""


class RestoreError(Exception):
    """Restore from a backup file failed."""


class MaintenanceError(Exception):
    """A maintenance routine could not complete."""


def _relational_code(error: BaseException, message: str) -> Optional[ErrorCode]:
    if "locked" in message or "busy" in message:
        return ErrorCode.DATABASE_LOCKED
    if "malformed" in message or "not a database" in message or "corrupt" in message:
        return ErrorCode.DATABASE_CORRUPT
    if "unable to open" in message or "connection" in message or "disk i/o" in message:
        return ErrorCode.DATABASE_CONNECTION
    if isinstance(error, sqlite3.OperationalError):
        return ErrorCode.DATABASE_CONNECTION
    if isinstance(error, sqlite3.DatabaseError) and not isinstance(error, sqlite3.IntegrityError):
        return ErrorCode.DATABASE_CORRUPT
    return None


def _blob_code(error: BaseException, message: str) -> Optional[ErrorCode]:
    status = getattr(error, "status_code", None)
    if status is None and isinstance(error, requests.HTTPError) and error.response is not None:
        status = error.response.status_code

    if status == 404 or "not found" in message:
        return ErrorCode.BLOB_NOT_FOUND
    if status in (401, 403) or "access" in message or "forbidden" in message or "unauthorized" in message:
        return ErrorCode.BLOB_ACCESS_DENIED
    if status in (413, 507) or "quota" in message or "too large" in message or "rate limit" in message:
        return ErrorCode.BLOB_QUOTA_EXCEEDED
    return None


def translate_storage_error(error: BaseException, platform: Optional[str] = None) -> ConfigError:
    """
    Map a raw backend error to a ConfigError.

    Already-typed errors pass through. Relational and blob platforms inspect the
    error's type, status and message; anything unrecognised becomes SAVE_FAILED.
    """
    if isinstance(error, ConfigError):
        if error.platform is None:
            error.platform = platform
        return error

    message = str(error)
    lowered = message.lower()
    code = None

    if platform == "relationalEmbedded" or isinstance(error, sqlite3.Error):
        code = _relational_code(error, lowered)
    elif platform == "blobStore":
        code = _blob_code(error, lowered)

    if code is None and isinstance(error, FileNotFoundError):
        code = ErrorCode.NOT_FOUND

    if code is None:
        code = ErrorCode.SAVE_FAILED

    translated = ConfigError(message or type(error).__name__, code, platform)
    translated.__cause__ = error
    return translated


def translate_request_error(error: requests.RequestException, endpoint: str) -> CatalogApiError:
    """Convert a transport-level requests failure into a CatalogApiError."""
    if isinstance(error, requests.Timeout):
        return CatalogApiError("Request timeout", 408, endpoint, error)
    if isinstance(error, requests.ConnectionError):
        return CatalogApiError(f"Connection failed: {error}", 503, endpoint, error)
    response = getattr(error, "response", None)
    status = response.status_code if response is not None else None
    return CatalogApiError(str(error), status, endpoint, error)
