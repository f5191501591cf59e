from __future__ import annotations
import json
from collections import Counter
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, Optional, Sequence

from models.readings import CanonicalReading
from settings import get_settings


class MockTimeSeriesCollection:
    """Time-series collection of canonical readings keyed by reading id.

    Readings are immutable; the collection only supports bulk insert, full
    scan and bulk delete.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, CanonicalReading] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert_many(self, readings: Sequence[CanonicalReading]) -> None:
        with self._lock:
            counts = Counter(reading.id for reading in readings)
            duplicates = sorted(
                item_id
                for item_id, seen in counts.items()
                if seen > 1 or item_id in self._items
            )
            if duplicates:
                raise ValueError(
                    f"Readings already stored in {self.name!r}: {', '.join(duplicates)}"
                )
            for reading in readings:
                self._items[reading.id] = reading
            self._persist()

    def find_all(self) -> list[CanonicalReading]:
        """Return every stored reading ordered by timestamp."""

        with self._lock:
            items = list(self._items.values())
        return sorted(items, key=lambda reading: reading.timestamp)

    def delete_many(self, ids: Iterable[str]) -> int:
        with self._lock:
            removed = 0
            for item_id in ids:
                if self._items.pop(item_id, None) is not None:
                    removed += 1
            self._persist()
            return removed

    def delete_all(self) -> int:
        with self._lock:
            removed = len(self._items)
            self._items.clear()
            self._persist()
            return removed

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            item_id: item.model_dump(mode="json") for item_id, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for item_id, payload in data.items():
            self._items[item_id] = CanonicalReading.model_validate(payload)


@lru_cache
def build_default_collection(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockTimeSeriesCollection:
    settings = get_settings()
    collection_name = settings.collection_name if name is None else name
    collection_path = settings.collection_persistence_path if path is None else path
    persistence = Path(collection_path) if collection_path else None
    return MockTimeSeriesCollection(name=collection_name, persistence_path=persistence)
