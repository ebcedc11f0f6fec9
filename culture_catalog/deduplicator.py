"""Duplicate performance detection and merging across sources."""

import re
from dataclasses import dataclass, field

from .activity import normalize_date
from .logger import get_logger
from .models.performance import Performance

logger = get_logger(__name__)

# Whitespace plus punctuation and brackets that sources use inconsistently
_KEY_STRIP_RE = re.compile(r"""[\s()\[\]\-_!~.,:'"<>〈〉《》「」『』【】]""")

# Genres whose listings repeat under one title and differ only by date
DEFAULT_DATE_KEYED_GENRES = frozenset({"travel"})


def normalize_title(title: str) -> str:
    """Strip whitespace and punctuation, then case-fold."""
    return _KEY_STRIP_RE.sub("", title or "").casefold()


def dedup_key(
    title: str,
    genre: str = "",
    date: str = "",
    date_keyed_genres: frozenset[str] | set[str] = DEFAULT_DATE_KEYED_GENRES,
) -> str:
    """
    Build the identity key used to collapse duplicate listings.

    Examples:
        "Hamlet (Reprise)" and "Hamlet(Reprise)" -> "hamletreprise"
        travel "Jeju 3 days" on "2025.12.20" -> "jeju3days_2025.12.20"
    """
    key = normalize_title(title)
    if genre in date_keyed_genres:
        key += f"_{normalize_date(date)}"
    return key


@dataclass
class MergeResult:
    """Outcome of adding one performance to the deduplicator."""

    key: str
    kept: Performance
    duplicate: bool = False
    replaced: bool = False


@dataclass
class PerformanceDeduplicator:
    """
    Collapse listings of the same event coming from several sources.

    Records must be added in the fixed source order. On a key collision
    the first-seen record is kept, unless the newcomer carries a price
    and the kept record does not; the priced record then takes over the
    first-seen slot. This makes the outcome depend only on the inputs,
    never on fetch timing.
    """

    date_keyed_genres: frozenset[str] = DEFAULT_DATE_KEYED_GENRES
    _unique: dict[str, Performance] = field(default_factory=dict, init=False)
    _stats: dict[str, int] = field(
        default_factory=lambda: {"seen": 0, "duplicates": 0, "replaced": 0},
        init=False,
    )

    def key_for(self, performance: Performance) -> str:
        return dedup_key(
            performance.title,
            performance.genre,
            performance.date,
            self.date_keyed_genres,
        )

    def add(self, performance: Performance) -> MergeResult:
        """Add a performance, resolving any collision with a kept one."""
        self._stats["seen"] += 1
        key = self.key_for(performance)

        existing = self._unique.get(key)
        if existing is None:
            self._unique[key] = performance
            return MergeResult(key=key, kept=performance)

        self._stats["duplicates"] += 1
        if performance.has_price and not existing.has_price:
            self._unique[key] = performance
            self._stats["replaced"] += 1
            logger.debug(
                f"Duplicate '{performance.title}': priced {performance.id} "
                f"replaces {existing.id}"
            )
            return MergeResult(key=key, kept=performance, duplicate=True, replaced=True)

        logger.debug(
            f"Duplicate '{performance.title}': keeping {existing.id}, "
            f"dropping {performance.id}"
        )
        return MergeResult(key=key, kept=existing, duplicate=True)

    def add_all(self, performances) -> None:
        for performance in performances:
            self.add(performance)

    def results(self) -> list[Performance]:
        """Surviving performances in first-seen key order."""
        return list(self._unique.values())

    def get_stats(self) -> dict[str, int]:
        return {
            "seen": self._stats["seen"],
            "unique": len(self._unique),
            "duplicates": self._stats["duplicates"],
            "replaced": self._stats["replaced"],
        }
