"""Tests for listing date parsing and the activity filter."""

from datetime import datetime

import pytest

from culture_catalog.activity import (
    SEOUL_TZ,
    is_active,
    normalize_date,
    parse_end_of_day,
)
from culture_catalog.exceptions import UnparseableDate

NOW = datetime(2025, 12, 10, 9, 0, 0, tzinfo=SEOUL_TZ)


class TestParseEndOfDay:
    def test_range_uses_end_date(self):
        end = parse_end_of_day("2025.12.01 ~ 2025.12.31")
        assert end == datetime(2025, 12, 31, 23, 59, 59, 999000, tzinfo=SEOUL_TZ)

    def test_single_timestamp(self):
        end = parse_end_of_day("2025-12-10 19:00")
        assert end.date() == datetime(2025, 12, 10).date()
        assert (end.hour, end.minute) == (23, 59)

    def test_single_date(self):
        end = parse_end_of_day("2025.12.20")
        assert end.day == 20

    def test_mixed_separators_and_spacing(self):
        end = parse_end_of_day("2025-12-01~  2025/12/24")
        assert (end.month, end.day) == (12, 24)

    def test_trailing_weekday_annotation(self):
        end = parse_end_of_day("2025.12.01 ~ 2025.12.13(토)")
        assert end.day == 13

    def test_open_ended_range(self):
        assert parse_end_of_day("2025.12.01 ~") is None

    def test_missing_start(self):
        end = parse_end_of_day("~ 2025.12.31")
        assert end.day == 31

    def test_result_is_timezone_aware(self):
        end = parse_end_of_day("2025.12.20")
        assert end.tzinfo is SEOUL_TZ

    @pytest.mark.parametrize(
        "text",
        ["", "   ", "garbage-string", "상시", "매주 토요일", "2025.13.01", "2025.02.30"],
    )
    def test_unparseable(self, text):
        with pytest.raises(UnparseableDate):
            parse_end_of_day(text)

    def test_open_ended_with_garbage_start(self):
        with pytest.raises(UnparseableDate):
            parse_end_of_day("soon ~")

    @pytest.mark.parametrize("value", [20251220, 2025.1220, ["2025.12.20"], {"end": "2025.12.20"}])
    def test_non_string_is_unparseable(self, value):
        with pytest.raises(UnparseableDate):
            parse_end_of_day(value)


class TestIsActive:
    def test_ended_yesterday_is_inactive(self):
        assert is_active("2025.12.09~2025.12.09", NOW) is False

    def test_ends_today_is_active(self):
        assert is_active("2025.12.10~2025.12.10", NOW) is True

    def test_timestamp_today_is_active(self):
        assert is_active("2025-12-10 19:00", NOW) is True

    def test_garbage_is_active(self):
        assert is_active("garbage-string", NOW) is True

    def test_empty_is_active(self):
        assert is_active("", NOW) is True
        assert is_active(None, NOW) is True

    def test_non_string_is_active(self):
        assert is_active(20251220, NOW) is True
        assert is_active(["2025.12.01"], NOW) is True

    def test_open_ended_is_active(self):
        assert is_active("2020.01.01 ~", NOW) is True

    def test_active_until_last_millisecond(self):
        late = datetime(2025, 12, 10, 23, 59, 59, tzinfo=SEOUL_TZ)
        assert is_active("2025.12.10", late) is True

    def test_inactive_after_midnight(self):
        next_day = datetime(2025, 12, 11, 0, 0, 0, tzinfo=SEOUL_TZ)
        assert is_active("2025.12.10", next_day) is False

    def test_naive_now_is_seoul_time(self):
        naive = datetime(2025, 12, 10, 23, 0)
        assert is_active("2025.12.10", naive) is True


class TestNormalizeDate:
    def test_unifies_separators(self):
        assert normalize_date("2025-12-10 19:00") == "2025.12.10 19:00"
        assert normalize_date("2025/12/10") == "2025.12.10"

    def test_collapses_whitespace(self):
        assert normalize_date("  2025.12.01   ~  2025.12.31 ") == "2025.12.01 ~ 2025.12.31"

    def test_empty(self):
        assert normalize_date("") == ""
        assert normalize_date(None) == ""

    def test_sorts_chronologically(self):
        dates = ["2025.12.20", "2025-12-03 19:00", "2025/12/10 ~ 2025/12/11"]
        assert sorted(dates, key=normalize_date) == [
            "2025-12-03 19:00",
            "2025/12/10 ~ 2025/12/11",
            "2025.12.20",
        ]
