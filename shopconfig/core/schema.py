"""
Plain records shared by the storage layer, migrations and the catalog cache.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    RESET = "RESET"
    IMPORT = "IMPORT"
    MIGRATE = "MIGRATE"


@dataclass(frozen=True)
class PlatformInfo:
    type: str  # fileBased, relationalEmbedded, blobStore
    display_name: str
    supports_file_system: bool
    storage_kind: str  # file, database, blob

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.display_name,
            "supportsFileSystem": self.supports_file_system,
            "storageType": self.storage_kind,
        }


@dataclass
class AuditEntry:
    id: Union[int, str]
    action: str
    config_snapshot: str  # serialized Configuration
    timestamp: datetime
    platform: str
    actor_tag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "configSnapshot": self.config_snapshot,
            "timestamp": self.timestamp.isoformat(),
            "actorTag": self.actor_tag,
            "platform": self.platform,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEntry':
        return cls(
            id=data["id"],
            action=data["action"],
            config_snapshot=data.get("configSnapshot", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            platform=data.get("platform", ""),
            actor_tag=data.get("actorTag"),
        )


@dataclass
class MigrationLedgerEntry:
    version: int
    description: str
    applied_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["applied_at"] = self.applied_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationLedgerEntry':
        return cls(
            version=int(data["version"]),
            description=data.get("description", ""),
            applied_at=datetime.fromisoformat(data["applied_at"]),
        )


@dataclass
class HealthReport:
    healthy: bool
    version: int
    error: Optional[str] = None


@dataclass
class CacheEntry(Generic[T]):
    data: T
    inserted_at: float
    expires_at: float
