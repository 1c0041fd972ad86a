"""Generation history tracking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from modules.services.storage_service import ProfileStore

logger = logging.getLogger(__name__)

IMAGE_GENERATION_HISTORY_KEY = "image_generation_history"
IMAGE_EDIT_HISTORY_KEY = "image_edit_history"


@dataclass(frozen=True, slots=True)
class GenerationRecord:
    """Snapshot of one finished generation or edit."""

    id: int
    prompt: str
    result_url: str
    aspect_ratio: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "prompt": self.prompt, "resultUrl": self.result_url}
        if self.aspect_ratio is not None:
            data["aspectRatio"] = self.aspect_ratio
        if self.source_url is not None:
            data["sourceUrl"] = self.source_url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRecord":
        return cls(
            id=int(data["id"]),
            prompt=str(data["prompt"]),
            result_url=str(data["resultUrl"]),
            aspect_ratio=data.get("aspectRatio"),
            source_url=data.get("sourceUrl"),
        )


class GenerationHistoryService:
    """Capped, newest-first history persisted in the profile store."""

    def __init__(self, store: ProfileStore, key: str, limit: int = 20) -> None:
        self.store = store
        self.key = key
        self.limit = limit

    def _decode(self, raw: Any) -> List[GenerationRecord]:
        if not isinstance(raw, list):
            if raw is not None:
                logger.warning("History %s is not a list, ignoring it", self.key)
            return []
        records: List[GenerationRecord] = []
        for entry in raw:
            try:
                records.append(GenerationRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed history entry in %s: %s", self.key, exc)
        return records

    def record(
        self,
        prompt: str,
        result_url: str,
        aspect_ratio: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> GenerationRecord:
        """Prepend a new record and drop everything past the cap."""
        created: List[GenerationRecord] = []

        def _prepend(raw: Any) -> List[Dict[str, Any]]:
            existing = self._decode(raw)
            record_id = int(time.time() * 1000)
            if existing and record_id <= existing[0].id:
                record_id = existing[0].id + 1
            record = GenerationRecord(
                id=record_id,
                prompt=prompt,
                result_url=result_url,
                aspect_ratio=aspect_ratio,
                source_url=source_url,
            )
            created.append(record)
            return [item.to_dict() for item in [record, *existing][: self.limit]]

        self.store.update(self.key, _prepend, default=[])
        return created[0]

    def list(self, limit: Optional[int] = None) -> List[GenerationRecord]:
        """Return the most recent records."""
        records = self._decode(self.store.get(self.key, []))[: self.limit]
        if limit is not None:
            return records[:limit]
        return records

    def get(self, record_id: int) -> Optional[GenerationRecord]:
        for record in self.list():
            if record.id == record_id:
                return record
        return None

    def clear(self) -> None:
        """Forget every record in this collection."""
        self.store.remove(self.key)
