"""
Recently completed explanations, newest first.

Invariants held after every call:
- at most `max_entries` entries
- no two entries share a (topic, level) pair
- list order is recency order

The whole list is re-serialized into the key-value store on every mutation.
"""
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from frontend.storage import KeyValueStore
from levels.catalog import Level, resolve_level

logger = logging.getLogger(__name__)

STORAGE_KEY = "explanation-history"
MAX_HISTORY_ITEMS = 20


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    topic: str
    level: Level
    explanation: str
    timestamp: int  # epoch milliseconds

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "topic": self.topic,
            "level": self.level.value,
            "explanation": self.explanation,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        if not isinstance(data["topic"], str) or not isinstance(data["explanation"], str):
            raise TypeError("topic and explanation must be strings")
        return cls(
            id=str(data["id"]),
            topic=data["topic"],
            level=resolve_level(data["level"]),
            explanation=data["explanation"],
            timestamp=int(data["timestamp"]),
        )


class HistoryStore:
    def __init__(
        self,
        storage: KeyValueStore,
        key: str = STORAGE_KEY,
        max_entries: int = MAX_HISTORY_ITEMS,
    ):
        self._storage = storage
        self._key = key
        self._max_entries = max_entries
        # Guards read-modify-write when a store is shared across threads
        self._lock = threading.Lock()
        self._entries: list[HistoryEntry] = self._load()

    def _load(self) -> list[HistoryEntry]:
        """Hydrate from storage. Unreadable data means an empty history."""
        try:
            raw = self._storage.get(self._key)
            if raw is None:
                return []
            data = json.loads(raw)
        except Exception as e:
            logger.warning(f"Failed to load history, starting empty: {e}")
            return []

        if not isinstance(data, list):
            logger.warning("Stored history is not a list, starting empty")
            return []

        entries: list[HistoryEntry] = []
        seen: set[tuple[str, Level]] = set()
        for item in data:
            try:
                entry = HistoryEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed history entry: {e}")
                continue
            if (entry.topic, entry.level) in seen:
                continue
            seen.add((entry.topic, entry.level))
            entries.append(entry)
        return entries[: self._max_entries]

    def _persist(self) -> None:
        payload = json.dumps([entry.to_dict() for entry in self._entries])
        try:
            self._storage.set(self._key, payload)
        except Exception as e:
            logger.error(f"Failed to save history: {e}")

    def add(self, topic: str, level: Level | str, explanation: str) -> HistoryEntry:
        """Prepend a new entry, evicting any entry for the same topic and level."""
        level = resolve_level(level)
        entry = HistoryEntry(
            id=str(uuid.uuid4()),
            topic=topic,
            level=level,
            explanation=explanation,
            timestamp=int(time.time() * 1000),
        )
        with self._lock:
            kept = [e for e in self._entries if not (e.topic == topic and e.level == level)]
            self._entries = [entry, *kept][: self._max_entries]
            self._persist()
        return entry

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            kept = [e for e in self._entries if e.id != entry_id]
            removed = len(kept) != len(self._entries)
            self._entries = kept
            self._persist()
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries = []
            self._persist()

    def list(self) -> list[HistoryEntry]:
        """Entries, most recent first."""
        with self._lock:
            return list(self._entries)

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            return next((e for e in self._entries if e.id == entry_id), None)

    def __len__(self) -> int:
        return len(self._entries)
