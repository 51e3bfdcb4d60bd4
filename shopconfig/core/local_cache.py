"""
Client-side configuration cache that survives process restarts.
Never authoritative; the configuration manager falls back to it when storage is unreachable.
"""

import json
from pathlib import Path
from typing import Optional

from .config import get_cache_path
from .models import Configuration, parse_document
from ..util.files import read_json, write_json_atomic
from ..util.logging import logger


class LocalConfigCache:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_cache_path()

    def load(self) -> Optional[Configuration]:
        """Cached snapshot, None when absent or unreadable."""
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.log_cache_event("local.unreadable", {"path": str(self.path), "error": str(e)[:200]})
            return None
        return parse_document(data)

    def save(self, config: Configuration) -> bool:
        """Write-through; returns False instead of raising when the write fails."""
        try:
            write_json_atomic(self.path, config.to_document())
        except OSError as e:
            logger.warning(f"Local config cache write failed ({self.path}): {e}")
            return False
        logger.log_cache_event("local.write", {"path": str(self.path)})
        return True

    def exists(self) -> bool:
        return self.path.exists()

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
