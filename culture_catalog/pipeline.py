"""Aggregation pipeline: raw source batches in, canonical catalog out.

Steps, in order:
1. Validate   - coerce ids to strings, drop records missing id/title/link
2. Activity   - drop ended listings (some genres are always active)
3. Region     - keep seoul/gyeonggi/incheon only, attach the district
4. Exclusion  - drop placeholder, date-like and blocked venues
5. Dedup      - collapse the same event listed by several sources
6. Sort       - stable sort by normalized date

The pipeline is a pure function of its inputs: the same batches, venue
snapshot and reference time always give the same output.
"""

import json
import os
import re
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .activity import is_active, normalize_date
from .config import PipelineSettings
from .deduplicator import PerformanceDeduplicator
from .logger import get_logger
from .models.performance import Performance
from .models.venue import VenueRecord
from .region import (
    Region,
    coerce_region,
    district_from_address,
    district_from_name,
    region_from_address,
)
from .venue_directory import normalize_name

logger = get_logger(__name__)

# Scrapers sometimes pick up the date cell instead of the venue ("12.05 (금)")
_DATE_LIKE_VENUE_RE = re.compile(r"^\d{1,2}\.\d{1,2}")

STAT_KEYS = (
    "input",
    "invalid",
    "inactive",
    "out_of_region",
    "excluded_venue",
    "duplicates",
    "output",
)


@dataclass
class PipelineResult:
    """Canonical performances plus per-step counts."""

    performances: list[Performance]
    stats: dict[str, int] = field(default_factory=dict)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.performances]


def referenced_venues(performances: Iterable[Performance]) -> list[str]:
    """Distinct venue names in output order."""
    seen: dict[str, None] = {}
    for performance in performances:
        if performance.venue:
            seen.setdefault(performance.venue, None)
    return list(seen)


class AggregationPipeline:
    """
    Merge raw listings from many sources into one catalog.

    Args:
        settings: Filtering and dedup rules
        directory: Read-only venue snapshot (name -> VenueRecord) used to
            infer regions and districts; optional
    """

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        directory: Mapping[str, VenueRecord] | None = None,
    ):
        self.settings = settings or PipelineSettings()
        self.directory = directory if directory is not None else {}
        self._normalized = {normalize_name(name): name for name in self.directory}

    def run(
        self, batches: Mapping[str, list[dict[str, Any]]], now: datetime
    ) -> PipelineResult:
        """
        Run all steps over the batches.

        Args:
            batches: source_id -> raw records, in source priority order
            now: Reference instant for the activity filter

        Returns:
            PipelineResult with the canonical list and drop counts
        """
        stats = dict.fromkeys(STAT_KEYS, 0)
        deduplicator = PerformanceDeduplicator(
            date_keyed_genres=frozenset(self.settings.date_keyed_genres)
        )

        for source_id, records in batches.items():
            for raw in records or []:
                stats["input"] += 1
                performance = self._process(source_id, raw, now, stats)
                if performance is not None:
                    deduplicator.add(performance)

        stats["duplicates"] = deduplicator.get_stats()["duplicates"]

        # sorted() is stable, so equal dates keep first-seen order
        performances = sorted(deduplicator.results(), key=lambda p: normalize_date(p.date))
        stats["output"] = len(performances)

        logger.info(
            f"Pipeline: {stats['input']} in, {stats['output']} out "
            f"({stats['invalid']} invalid, {stats['inactive']} inactive, "
            f"{stats['out_of_region']} out of region, "
            f"{stats['excluded_venue']} excluded venues, "
            f"{stats['duplicates']} duplicates)"
        )
        return PipelineResult(performances=performances, stats=stats)

    def _process(
        self, source_id: str, raw: Any, now: datetime, stats: dict[str, int]
    ) -> Performance | None:
        if not isinstance(raw, dict):
            stats["invalid"] += 1
            logger.debug(f"[{source_id}] skipping non-object record")
            return None

        for required in ("id", "title", "link"):
            value = raw.get(required)
            if value is None or not str(value).strip():
                stats["invalid"] += 1
                logger.debug(f"[{source_id}] skipping record without {required}: {raw!r:.120}")
                return None

        genre = str(raw.get("genre") or "").strip().lower()
        if genre not in self.settings.always_active_genres:
            if not is_active(raw.get("date"), now):
                stats["inactive"] += 1
                return None

        venue = str(raw.get("venue") or "").strip()
        region, district = self.locate(raw.get("region"), venue)
        if region is None:
            stats["out_of_region"] += 1
            logger.debug(
                f"[{source_id}] out of region: {raw.get('title')} ({raw.get('region')!r})"
            )
            return None

        if self.is_excluded_venue(venue):
            stats["excluded_venue"] += 1
            logger.debug(f"[{source_id}] excluded venue {venue!r}: {raw.get('title')}")
            return None

        try:
            return Performance.from_raw(raw, region, district)
        except ValueError as e:
            stats["invalid"] += 1
            logger.debug(f"[{source_id}] invalid record: {e}")
            return None

    def lookup_venue(self, name: str) -> VenueRecord | None:
        if not name:
            return None
        record = self.directory.get(name)
        if record is None:
            key = self._normalized.get(normalize_name(name))
            record = self.directory.get(key) if key is not None else None
        return record

    def locate(self, tag: Any, venue: str) -> tuple[Region | None, str]:
        """
        Resolve a record's (region, district).

        A recognised region tag is authoritative. An unrecognised non-empty
        tag places the record outside the catalog. An empty tag is inferred
        from the venue's directory address, then from its name.
        """
        record = self.lookup_venue(venue)
        address = record.address if record else ""

        district = ""
        if record is not None:
            district = record.district or district_from_address(address)
        name_region, name_district = district_from_name(venue)
        district = district or name_district

        if tag is not None and str(tag).strip():
            return coerce_region(tag), district

        region = region_from_address(address) or name_region
        return region, district

    def is_excluded_venue(self, venue: str) -> bool:
        if venue in self.settings.placeholder_venues:
            return True
        if _DATE_LIKE_VENUE_RE.match(venue):
            return True
        return any(blocked in venue for blocked in self.settings.blocked_venues)


def save_catalog(performances: Iterable[Performance], path: Path) -> int:
    """
    Write the catalog as a JSON array, atomically.

    Returns:
        Number of records written
    """
    records = [p.to_dict() for p in performances]
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info(f"Wrote {len(records)} performances to {path}")
    return len(records)


def load_catalog(path: Path) -> list[dict[str, Any]]:
    """
    Read a catalog written by save_catalog().

    Raises:
        ValueError: If the file is not a JSON array
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a JSON array")
    return [r for r in data if isinstance(r, dict)]
