"""Tests for cross-source duplicate detection."""

from culture_catalog.deduplicator import (
    PerformanceDeduplicator,
    dedup_key,
    normalize_title,
)
from culture_catalog.models import Performance
from culture_catalog.region import Region


def make_performance(id, title, price=None, genre="play", date="2025.12.20"):
    extras = {"price": price} if price is not None else {}
    return Performance(
        id=id,
        title=title,
        link=f"https://example.com/{id}",
        region=Region.SEOUL,
        date=date,
        genre=genre,
        extras=extras,
    )


class TestDedupKey:
    def test_punctuation_and_spacing_ignored(self):
        assert dedup_key("Hamlet (Reprise)") == dedup_key("Hamlet(Reprise)")
        assert dedup_key("연극 [라면]") == dedup_key("연극 라면")

    def test_case_folded(self):
        assert normalize_title("HAMLET") == normalize_title("hamlet")

    def test_korean_brackets_ignored(self):
        assert dedup_key("뮤지컬 〈지킬앤하이드〉") == dedup_key("뮤지컬 지킬앤하이드")

    def test_different_titles_differ(self):
        assert dedup_key("Hamlet") != dedup_key("Macbeth")

    def test_date_keyed_genre_includes_date(self):
        assert dedup_key("Jeju 3 days", "travel", "2025.12.20") == "jeju3days_2025.12.20"

    def test_other_genres_ignore_date(self):
        assert dedup_key("Hamlet", "play", "2025.12.20") == "hamlet"

    def test_date_normalized_in_key(self):
        assert dedup_key("Jeju", "travel", "2025-12-20") == dedup_key("Jeju", "travel", "2025.12.20")

    def test_custom_date_keyed_genres(self):
        assert dedup_key("Class", "class", "2025.12.20", {"class"}) == "class_2025.12.20"


class TestPerformanceDeduplicator:
    def test_first_seen_wins(self):
        dedup = PerformanceDeduplicator()
        first = make_performance("a", "Hamlet (Reprise)")
        second = make_performance("b", "Hamlet(Reprise)")
        dedup.add(first)
        result = dedup.add(second)
        assert result.duplicate is True
        assert result.replaced is False
        assert dedup.results() == [first]

    def test_priced_newcomer_replaces_unpriced(self):
        dedup = PerformanceDeduplicator()
        dedup.add(make_performance("a", "Hamlet (Reprise)"))
        priced = make_performance("b", "Hamlet(Reprise)", price="30,000원")
        result = dedup.add(priced)
        assert result.replaced is True
        assert dedup.results() == [priced]

    def test_priced_first_is_kept(self):
        dedup = PerformanceDeduplicator()
        priced = make_performance("a", "Hamlet", price="30,000원")
        dedup.add(priced)
        dedup.add(make_performance("b", "Hamlet"))
        assert dedup.results() == [priced]

    def test_both_priced_first_kept(self):
        dedup = PerformanceDeduplicator()
        first = make_performance("a", "Hamlet", price="30,000원")
        dedup.add(first)
        dedup.add(make_performance("b", "Hamlet", price="25,000원"))
        assert dedup.results()[0].id == "a"

    def test_replacement_keeps_first_seen_position(self):
        dedup = PerformanceDeduplicator()
        dedup.add(make_performance("a", "Hamlet"))
        dedup.add(make_performance("b", "Macbeth"))
        dedup.add(make_performance("c", "Hamlet", price="30,000원"))
        assert [p.id for p in dedup.results()] == ["c", "b"]

    def test_travel_dates_kept_apart(self):
        dedup = PerformanceDeduplicator()
        dedup.add(make_performance("a", "Jeju 3 days", genre="travel", date="2025.12.20"))
        dedup.add(make_performance("b", "Jeju 3 days", genre="travel", date="2025.12.27"))
        assert len(dedup.results()) == 2

    def test_travel_same_date_collapses(self):
        dedup = PerformanceDeduplicator()
        dedup.add(make_performance("a", "Jeju 3 days", genre="travel", date="2025.12.20"))
        dedup.add(make_performance("b", "Jeju 3 days", genre="travel", date="2025.12.20"))
        assert len(dedup.results()) == 1

    def test_stats(self):
        dedup = PerformanceDeduplicator()
        dedup.add_all(
            [
                make_performance("a", "Hamlet"),
                make_performance("b", "Hamlet", price="1원"),
                make_performance("c", "Hamlet"),
                make_performance("d", "Macbeth"),
            ]
        )
        assert dedup.get_stats() == {"seen": 4, "unique": 2, "duplicates": 2, "replaced": 1}
