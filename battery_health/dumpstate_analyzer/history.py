"""History persistence, duplicate detection and replacement markers."""
from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .reconcile import Reading
from .timestamps import now_iso, now_millis

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100
BACKUP_VERSION = "1.0"

# Python attribute -> persisted key.
ENTRY_KEYS = {
    "id": "id",
    "timestamp": "timestamp",
    "logfile_timestamp": "logfileTimestamp",
    "device_model": "deviceModel",
    "health_pct": "healthPercentage",
    "current_capacity_mah": "currentCapacityMah",
    "design_capacity_mah": "designCapacityMah",
    "cycle_count": "cycleCount",
    "state_of_charge_pct": "stateOfCharge",
    "first_use_date": "firstUseDate",
    "logfile_timestamp_epoch": "logfileTimestampLong",
    "rated_capacity_mah": "ratedCapacityMah",
}
INT_FIELDS = {
    "timestamp",
    "current_capacity_mah",
    "design_capacity_mah",
    "cycle_count",
    "state_of_charge_pct",
    "logfile_timestamp_epoch",
    "rated_capacity_mah",
}


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    timestamp: int
    logfile_timestamp: str | None = None
    device_model: str | None = None
    health_pct: float | None = None
    current_capacity_mah: int | None = None
    design_capacity_mah: int | None = None
    cycle_count: int | None = None
    state_of_charge_pct: int | None = None
    first_use_date: str | None = None
    logfile_timestamp_epoch: int | None = None
    rated_capacity_mah: int | None = None

    @classmethod
    def from_reading(cls, reading: Reading, *, now: int | None = None) -> HistoryEntry:
        """Project ``reading``; the log's own time orders the entry when known."""
        if reading.logfile_timestamp_epoch is not None:
            stamp = reading.logfile_timestamp_epoch
        else:
            stamp = now if now is not None else now_millis()
        return cls(
            id=str(stamp),
            timestamp=stamp,
            logfile_timestamp=reading.logfile_timestamp,
            device_model=reading.device_model,
            health_pct=reading.health_pct,
            current_capacity_mah=reading.current_capacity_mah,
            design_capacity_mah=reading.design_capacity_mah,
            cycle_count=reading.cycle_count,
            state_of_charge_pct=reading.state_of_charge_pct,
            first_use_date=reading.first_use_date,
            logfile_timestamp_epoch=reading.logfile_timestamp_epoch,
            rated_capacity_mah=reading.rated_capacity_mah,
        )

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> HistoryEntry:
        if "id" not in data or "timestamp" not in data:
            raise ValueError("history entry requires 'id' and 'timestamp'")
        values: dict[str, Any] = {}
        for attr, key in ENTRY_KEYS.items():
            raw = data.get(key)
            if raw is None or raw == "":
                values[attr] = None
            elif attr in INT_FIELDS:
                values[attr] = int(raw)
            elif attr == "health_pct":
                values[attr] = float(raw)
            else:
                values[attr] = str(raw)
        if values["id"] is None or values["timestamp"] is None:
            raise ValueError("history entry requires 'id' and 'timestamp'")
        return cls(**values)

    def to_json(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in ENTRY_KEYS.items()}

    @property
    def duplicate_key(self) -> tuple[str | None, str | None, int | None, int | None]:
        return (
            self.logfile_timestamp,
            self.device_model,
            self.current_capacity_mah,
            self.cycle_count,
        )

    def is_duplicate_of(self, other: HistoryEntry) -> bool:
        return self.duplicate_key == other.duplicate_key

    @property
    def calculated_health_pct(self) -> float | None:
        base = self.rated_capacity_mah if self.rated_capacity_mah is not None else self.design_capacity_mah
        if self.current_capacity_mah is None or base is None or base <= 0:
            return None
        return self.current_capacity_mah / base * 100.0


@dataclass(frozen=True)
class ReplacementMarker:
    """Timeline row between two readings taken from different batteries."""

    new_battery_date: str


TimelineItem = HistoryEntry | ReplacementMarker


def sort_entries(entries: Iterable[HistoryEntry]) -> list[HistoryEntry]:
    return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)


def build_timeline(entries: Sequence[HistoryEntry]) -> list[TimelineItem]:
    """Interleave replacement markers into newest-first ``entries``.

    A marker goes between two adjacent entries whose first-use dates are both
    known and differ; it carries the newer entry's date.
    """
    timeline: list[TimelineItem] = []
    for index, entry in enumerate(entries):
        timeline.append(entry)
        if index + 1 >= len(entries):
            break
        older = entries[index + 1]
        if (
            entry.first_use_date is not None
            and older.first_use_date is not None
            and entry.first_use_date != older.first_use_date
        ):
            timeline.append(ReplacementMarker(new_battery_date=entry.first_use_date))
    return timeline


def entries_from_json(payload: Any) -> list[HistoryEntry]:
    """Decode a backup document or a bare array of entry records."""
    if isinstance(payload, Mapping):
        records = payload.get("history")
        if records is None:
            records = []
    else:
        records = payload
    if not isinstance(records, list):
        raise ValueError("history must be a JSON array of entries")
    entries: list[HistoryEntry] = []
    for record in records:
        if not isinstance(record, Mapping):
            raise ValueError(f"history entry must be an object, got {type(record).__name__}")
        entries.append(HistoryEntry.from_json(record))
    return entries


def build_backup_document(
    entries: Iterable[HistoryEntry],
    *,
    design_capacity: int | None = None,
    version: str = BACKUP_VERSION,
) -> dict[str, Any]:
    settings: dict[str, Any] = {}
    if design_capacity is not None and design_capacity > 0:
        settings["design_capacity"] = design_capacity
    return {
        "version": version,
        "exportDate": now_iso(),
        "settings": settings,
        "history": [entry.to_json() for entry in entries],
    }


def load_backup_document(path: Path) -> tuple[list[HistoryEntry], int | None]:
    """Read a backup file; return its entries and any saved design capacity."""
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    design_capacity = None
    if isinstance(payload, Mapping):
        settings = payload.get("settings") or {}
        if isinstance(settings, Mapping) and settings.get("design_capacity") is not None:
            design_capacity = int(settings["design_capacity"])
    return entries_from_json(payload), design_capacity


class HistoryStore:
    """JSON-file history owned by a single writer.

    Read-modify-write operations hold ``self._lock`` so a duplicate check and
    the append that follows it cannot interleave with another save.
    """

    def __init__(self, path: Path, limit: int = HISTORY_LIMIT) -> None:
        self.path = path
        self.limit = limit
        self._lock = threading.Lock()

    def _load(self) -> list[HistoryEntry]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                return entries_from_json(json.load(fh))
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Ignoring unreadable history %s: %s", self.path, exc)
            self._keep_backup()
            return []

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def _keep_backup(self) -> None:
        # First unreadable copy wins; later saves must not replace it.
        if self.backup_path.exists():
            return
        try:
            shutil.copy2(self.path, self.backup_path)
        except OSError as exc:
            logger.error("Could not back up %s: %s", self.path, exc)
            return
        logger.warning("Unreadable history kept at %s", self.backup_path)

    def _save(self, entries: Sequence[HistoryEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump([entry.to_json() for entry in entries], fh, indent=2)
            tmp_path.replace(self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def entries(self) -> list[HistoryEntry]:
        return sort_entries(self._load())

    def timeline(self) -> list[TimelineItem]:
        return build_timeline(self.entries())

    def count(self) -> int:
        return len(self._load())

    def save_result(self, reading: Reading, *, now: int | None = None) -> bool:
        """Store ``reading``; ``False`` means an equivalent entry already exists."""
        candidate = HistoryEntry.from_reading(reading, now=now)
        with self._lock:
            current = self.entries()
            if any(entry.is_duplicate_of(candidate) for entry in current):
                logger.info("Skipping duplicate reading from %s", candidate.logfile_timestamp)
                return False
            self._save(sort_entries([candidate, *current])[: self.limit])
        logger.info("Saved reading %s", candidate.id)
        return True

    def import_entries(self, entries: Iterable[HistoryEntry]) -> tuple[int, int]:
        imported = 0
        skipped = 0
        with self._lock:
            current = self.entries()
            for entry in entries:
                if any(existing.is_duplicate_of(entry) for existing in current):
                    skipped += 1
                    continue
                current.append(entry)
                imported += 1
            merged = sort_entries(current)[: self.limit]
            self._save(merged)
        logger.info("Imported %d entries, skipped %d duplicates", imported, skipped)
        return imported, skipped

    def delete_entry(self, entry_id: str) -> bool:
        with self._lock:
            current = self.entries()
            remaining = [entry for entry in current if entry.id != entry_id]
            if len(remaining) == len(current):
                return False
            self._save(remaining)
        return True

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)
