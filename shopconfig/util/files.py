"""
Whole-file JSON persistence. Readers never observe a partially written file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def write_json_atomic(path: Union[str, Path], data: Any) -> None:
    """Write JSON to a temp file in the same directory, fsync, then rename over `path`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_json(path: Union[str, Path]) -> Any:
    """Parsed JSON content; raises FileNotFoundError or json.JSONDecodeError."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
