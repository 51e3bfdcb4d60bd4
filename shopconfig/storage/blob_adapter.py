"""
Blob store backend: one JSON document {config, metadata, audit} rewritten whole on every save.

GistBlobStore keeps the document as a file inside a GitHub Gist, which gives
serverless deployments durable storage without a local filesystem.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

import requests

from .base import StorageAdapter, parse_stamp
from ..core.config import AUDIT_LOG_LIMIT, BLOB_REQUEST_TIMEOUT_SEC, get_blob_store_name, get_gist_credentials
from ..core.errors import BlobStoreError, ConfigError, ErrorCode
from ..core.migrations import MigrationLedger, MigrationManager, MigrationStep
from ..core.models import backfill_legacy, utcnow
from ..core.platform import PlatformType
from ..core.retry import RetryPolicy
from ..core.schema import AuditAction, AuditEntry, MigrationLedgerEntry
from ..util.logging import logger


class BlobStore(ABC):
    """Named text blobs. Writes replace the whole value."""

    @abstractmethod
    def read(self, name: str) -> Optional[str]:
        """Blob content, None when the blob does not exist."""

    @abstractmethod
    def write(self, name: str, content: str) -> None:
        ...

    def probe(self, name: str) -> None:
        self.read(name)


class GistBlobStore(BlobStore):
    """Blobs stored as files of a single GitHub Gist."""

    API_URL = "https://api.github.com/gists"

    def __init__(self, gist_id: Optional[str] = None, token: Optional[str] = None,
                 timeout: int = BLOB_REQUEST_TIMEOUT_SEC, session: Optional[requests.Session] = None):
        env_id, env_token = get_gist_credentials()
        self.gist_id = gist_id or env_id
        self.token = token or env_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self.gist_id and self.token)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _check(self, response: requests.Response, verb: str) -> None:
        status = response.status_code
        if status == 404:
            raise BlobStoreError(f"Gist {self.gist_id} not found", status)
        if status in (401, 403):
            raise BlobStoreError(f"Gist {verb} access denied (HTTP {status})", status)
        if status in (413, 422):
            raise BlobStoreError(f"Gist {verb} rejected, quota or size limit (HTTP {status})", status)
        if status >= 400:
            raise BlobStoreError(f"Gist {verb} failed (HTTP {status})", status)

    def read(self, name: str) -> Optional[str]:
        url = f"{self.API_URL}/{self.gist_id}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise BlobStoreError(f"Gist fetch error: {e}") from e
        self._check(response, "fetch")

        entry = response.json().get("files", {}).get(name)
        if not entry:
            return None
        if entry.get("truncated") and entry.get("raw_url"):
            try:
                raw = self.session.get(entry["raw_url"], headers=self._headers(), timeout=self.timeout)
            except requests.RequestException as e:
                raise BlobStoreError(f"Gist raw fetch error: {e}") from e
            self._check(raw, "fetch")
            return raw.text
        return entry.get("content")

    def write(self, name: str, content: str) -> None:
        url = f"{self.API_URL}/{self.gist_id}"
        body = {"files": {name: {"content": content}}}
        try:
            response = self.session.patch(url, headers=self._headers(), data=json.dumps(body), timeout=self.timeout)
        except requests.RequestException as e:
            raise BlobStoreError(f"Gist save error: {e}") from e
        self._check(response, "save")


def _empty_metadata() -> Dict[str, Any]:
    now = utcnow().isoformat()
    return {"createdAt": now, "updatedAt": now, "version": 0, "migrations": []}


def _initialize_document(blob: Dict[str, Any]) -> None:
    blob.setdefault("config", None)
    metadata = blob.setdefault("metadata", _empty_metadata())
    for key, value in _empty_metadata().items():
        metadata.setdefault(key, value)
    if not isinstance(blob.get("audit"), list):
        blob["audit"] = []


def _backfill_legacy(blob: Dict[str, Any]) -> None:
    upgraded = backfill_legacy(blob.get("config"))
    if upgraded is None:
        return
    blob["config"] = upgraded.to_document()
    metadata = blob["metadata"]
    metadata["updatedAt"] = utcnow().isoformat()
    metadata["version"] = int(metadata.get("version", 0)) + 1
    entry = AuditEntry(uuid.uuid4().hex, AuditAction.MIGRATE.value, upgraded.to_json(), utcnow(),
                       PlatformType.BLOB_STORE.value)
    blob["audit"] = [entry.to_dict()] + blob.get("audit", [])[:AUDIT_LOG_LIMIT - 1]


BLOB_MIGRATIONS = [
    MigrationStep(1, "Initialize blob document", _initialize_document, creates=("config", "metadata", "audit")),
    MigrationStep(2, "Backfill legacy configuration documents", _backfill_legacy),
]


class BlobMigrationLedger(MigrationLedger):
    """Ledger kept in metadata.migrations; a step and its row are written in one blob write."""

    platform = PlatformType.BLOB_STORE.value

    def __init__(self, adapter: 'BlobStorageAdapter'):
        self.adapter = adapter

    def applied(self) -> List[MigrationLedgerEntry]:
        blob = self.adapter._load_blob() or {}
        metadata = blob.get("metadata") or {}
        entries = [MigrationLedgerEntry.from_dict(e) for e in metadata.get("migrations", [])]
        return sorted(entries, key=lambda e: e.version)

    def apply_step(self, step: MigrationStep) -> None:
        blob = self.adapter._load_blob() or {}
        step.apply(blob)
        metadata = blob.setdefault("metadata", _empty_metadata())
        metadata.setdefault("migrations", []).append(
            MigrationLedgerEntry(step.version, step.description, utcnow()).to_dict()
        )
        self.adapter._save_blob(blob)

    def existing_structures(self) -> Set[str]:
        blob = self.adapter._load_blob() or {}
        return set(blob.keys())


class BlobStorageAdapter(StorageAdapter):
    platform = PlatformType.BLOB_STORE

    def __init__(self, store: Optional[BlobStore] = None, blob_name: Optional[str] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        super().__init__(retry_policy)
        self.store = store if store is not None else GistBlobStore()
        self.blob_name = blob_name or f"{get_blob_store_name()}.json"

    def _initialize(self) -> None:
        if isinstance(self.store, GistBlobStore) and not self.store.is_available():
            raise ConfigError("Blob store requires GITHUB_GIST_ID and GITHUB_TOKEN",
                              ErrorCode.INITIALIZATION_FAILED, self.platform_tag)
        self._migration_manager().run()

    def _migration_manager(self) -> MigrationManager:
        return MigrationManager(BlobMigrationLedger(self), BLOB_MIGRATIONS)

    def _load_blob(self) -> Optional[Dict[str, Any]]:
        content = self.store.read(self.blob_name)
        if content is None or not content.strip():
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.log_storage_operation("read", self.platform_tag, "invalid", {"blob": self.blob_name})
            return {}
        return data if isinstance(data, dict) else {}

    def _save_blob(self, blob: Dict[str, Any]) -> None:
        self.store.write(self.blob_name, json.dumps(blob, ensure_ascii=False, indent=2))

    def _load_or_create(self) -> Dict[str, Any]:
        blob = self._load_blob() or {}
        _initialize_document(blob)
        return blob

    def _read_document(self) -> Optional[Dict[str, Any]]:
        blob = self._load_blob()
        if blob is None:
            return None
        config = blob.get("config")
        if config is None:
            return None
        return config if isinstance(config, dict) else {}

    def _write_document(self, document: Dict[str, Any]) -> None:
        blob = self._load_or_create()
        blob["config"] = document
        metadata = blob["metadata"]
        metadata["updatedAt"] = utcnow().isoformat()
        metadata["version"] = int(metadata.get("version", 0)) + 1
        self._save_blob(blob)

    def _append_audit(self, action: str, snapshot: str, timestamp: datetime, actor_tag: Optional[str]) -> None:
        entry = AuditEntry(
            id=uuid.uuid4().hex,
            action=action,
            config_snapshot=snapshot,
            timestamp=timestamp,
            platform=self.platform_tag,
            actor_tag=actor_tag,
        )
        blob = self._load_or_create()
        blob["audit"] = [entry.to_dict()] + blob["audit"][:AUDIT_LOG_LIMIT - 1]
        self._save_blob(blob)

    def _read_audit(self, limit: int) -> List[AuditEntry]:
        blob = self._load_blob() or {}
        entries = []
        for raw in (blob.get("audit") or [])[:limit]:
            try:
                entries.append(AuditEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return entries

    def _prune_audit(self, cutoff: datetime) -> int:
        blob = self._load_blob()
        if not blob or not blob.get("audit"):
            return 0
        entries = blob["audit"]
        kept = [e for e in entries if (parse_stamp(e.get("timestamp")) or cutoff) >= cutoff]
        if len(kept) != len(entries):
            blob["audit"] = kept
            self._save_blob(blob)
        return len(entries) - len(kept)

    def _probe(self) -> None:
        self.store.probe(self.blob_name)

    def _stats(self) -> Dict[str, Any]:
        blob = self._load_blob() or {}
        metadata = blob.get("metadata") or {}
        return {
            "configExists": blob.get("config") is not None,
            "blobVersion": metadata.get("version", 0),
            "createdAt": metadata.get("createdAt"),
            "updatedAt": metadata.get("updatedAt"),
            "auditEntries": len(blob.get("audit") or []),
            "schemaVersion": max((int(m.get("version", 0)) for m in metadata.get("migrations", [])), default=0),
            "location": self.blob_name,
        }

    def _dispose(self) -> None:
        session = getattr(self.store, "session", None)
        if session is not None:
            session.close()
