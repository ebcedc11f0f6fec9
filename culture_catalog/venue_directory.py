"""Venue directory - the persisted name-to-location store.

Loads venues from venues.json and gives lookups by display name. The
resolver enriches records and saves the whole file back at the end of a
run; the pipeline only reads a snapshot.
"""

import json
import os
import tempfile
import unicodedata
from collections import Counter
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .exceptions import PersistedStoreCorrupt
from .logger import get_logger
from .models.venue import Precision, VenueRecord

logger = get_logger(__name__)


def normalize_name(name: str) -> str:
    """Normalize a venue name for comparison: NFKC, case-fold, collapse whitespace."""
    text = unicodedata.normalize("NFKC", name or "")
    return " ".join(text.casefold().split())


class VenueDirectory:
    """Persisted name -> VenueRecord store.

    Records are keyed by the venue display name exactly as sources spell
    it. Lookups try the exact key first, then a normalized form, so
    "세종문화회관  대극장" and "세종문화회관 대극장" share one record.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._records: dict[str, VenueRecord] = {}
        self._normalized: dict[str, str] = {}  # normalized name -> key
        self._dirty = False

        self._load()

    def _load(self) -> None:
        """Load records from the JSON file.

        A missing file is an empty directory. Anything unreadable raises,
        since saving over it would lose data.

        Raises:
            PersistedStoreCorrupt: If the file is not a valid venue map.
        """
        if not self.path.exists():
            logger.info(f"Venue directory not found, starting empty: {self.path}")
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PersistedStoreCorrupt(str(self.path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise PersistedStoreCorrupt(
                str(self.path), f"expected an object, got {type(data).__name__}"
            )

        for name, raw in data.items():
            try:
                record = VenueRecord.from_dict(name, raw)
            except (TypeError, ValueError) as e:
                raise PersistedStoreCorrupt(str(self.path), f"venue {name!r}: {e}") from e
            self._add(record)

        logger.debug(f"Loaded {len(self._records)} venues from {self.path}")

    def _add(self, record: VenueRecord) -> None:
        self._records[record.name] = record
        self._normalized.setdefault(normalize_name(record.name), record.name)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None

    @property
    def dirty(self) -> bool:
        """Whether records changed since loading or the last save."""
        return self._dirty

    def get(self, name: str) -> VenueRecord | None:
        """Exact-key lookup."""
        return self._records.get(name)

    def lookup(self, name: str) -> VenueRecord | None:
        """Find a record by exact name, then by normalized name."""
        if not name:
            return None
        record = self._records.get(name)
        if record is not None:
            return record
        key = self._normalized.get(normalize_name(name))
        return self._records.get(key) if key is not None else None

    def ensure(self, name: str) -> VenueRecord:
        """Return the record for ``name``, creating an empty one if needed."""
        record = self.lookup(name)
        if record is None:
            record = VenueRecord(name=name)
            self._add(record)
            self._dirty = True
            logger.debug(f"New venue: {name}")
        return record

    def update(self, record: VenueRecord) -> list[str]:
        """
        Merge a resolution into the stored record for ``record.name``.

        The stored record never loses precision; see VenueRecord.merge.

        Returns:
            Names of the fields that changed.
        """
        stored = self.ensure(record.name)
        changes = stored.merge(record)
        if changes:
            self._dirty = True
            logger.debug(f"Updated {stored.name}: {', '.join(changes)}")
        return changes

    def names(self) -> list[str]:
        return list(self._records)

    def snapshot(self) -> Mapping[str, VenueRecord]:
        """Read-only view of the records, for the pipeline."""
        return MappingProxyType(self._records)

    def to_dict(self) -> dict[str, dict]:
        return {name: record.to_dict() for name, record in self._records.items()}

    def save(self) -> None:
        """Write every record to disk atomically.

        The JSON goes to a temp file in the same directory first and is
        then moved over the real file, so readers never see a partial
        write.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
                f.write("\n")
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self._dirty = False
        logger.info(f"Saved {len(self._records)} venues to {self.path}")

    def get_stats(self) -> dict[str, int]:
        """Count records per precision level."""
        counts = Counter(record.precision for record in self._records.values())
        stats = {"total": len(self._records)}
        for level in Precision:
            stats[level.label] = counts.get(level, 0)
        return stats
