"""Profile key-value storage and generated asset files."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from modules.errors import PersistenceReadError

logger = logging.getLogger(__name__)

_MISSING = object()


class ProfileStore:
    """JSON-file backed key-value map scoped to one local profile.

    Values must be JSON serializable. Unreadable data is treated as absent
    and every write failure is logged instead of raised, so persistence never
    blocks the action that triggered it.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise PersistenceReadError(f"配置文件根节点不是对象：{type(data).__name__}")
        except (OSError, ValueError, PersistenceReadError) as exc:
            logger.warning("Could not read profile %s, using defaults: %s", self.path, exc)
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not write profile %s: %s", self.path, exc)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value or ``default``."""
        with self._lock:
            return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
        with self._lock:
            data = self._read_all()
            if data.pop(key, _MISSING) is not _MISSING:
                self._write_all(data)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read, transform and write one key as a single step.

        ``fn`` receives the current value (or ``default``) and returns the new
        one, which is also returned to the caller.
        """
        with self._lock:
            data = self._read_all()
            value = fn(data.get(key, default))
            data[key] = value
            self._write_all(data)
            return value


class StorageService:
    """Handle saving generated assets such as videos and speech clips."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def save_bytes(self, data: bytes, suffix: str, prefix: str = "asset") -> Path:
        """Persist raw bytes and return the file path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%d-%H%M%S")
        target = self.output_dir / f"{prefix}-{stamp}-{uuid.uuid4().hex[:8]}{suffix}"
        target.write_bytes(data)
        return target

    def list_assets(self, prefix: Optional[str] = None) -> List[Path]:
        """Return stored assets, newest first."""
        if not self.output_dir.exists():
            return []
        files = [
            item
            for item in self.output_dir.iterdir()
            if item.is_file() and (prefix is None or item.name.startswith(f"{prefix}-"))
        ]
        return sorted(files, key=lambda item: item.stat().st_mtime_ns, reverse=True)

    def cleanup(self, max_items: int = 100, prefix: Optional[str] = None) -> int:
        """Limit the number of stored artifacts; return how many were removed."""
        removed = 0
        for stale in self.list_assets(prefix)[max_items:]:
            try:
                stale.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("Could not remove %s: %s", stale, exc)
        return removed
