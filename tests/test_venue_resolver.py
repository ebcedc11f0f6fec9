"""Tests for the venue resolver and its strategy chain."""

import json
import time
from unittest.mock import MagicMock, patch

import httpx
import pytest

from culture_catalog.exceptions import GeocodeServiceError
from culture_catalog.geocoder import GeocodeResult, build_geocoders
from culture_catalog.models import Performance, Precision, VenueRecord
from culture_catalog.region import DISTRICT_CENTROIDS, Region
from culture_catalog.utils.http import HTTPClient
from culture_catalog.venue_directory import VenueDirectory
from culture_catalog.venue_resolver import (
    DetailPageStrategy,
    VenueResolver,
    collect_venue_links,
)

DETAIL_HTML = """
<html><body>
  <div class="info">
    <p>공연기간 : 2025.12.01 ~ 2025.12.31</p>
    <p>매표소 위치: 1층 로비</p>
    <p>주소 : 서울 종로구 동숭길 76</p>
    <a href="#">주소복사</a>
  </div>
</body></html>
"""


class FakeGeocoder:
    """Geocoder answering from a fixed table and recording its queries."""

    def __init__(self, name, answers=None, errors=(), crashes=None):
        self.name = name
        self.rate_key = name
        self.http_client = MagicMock()
        self.answers = answers or {}
        self.errors = set(errors)
        self.crashes = crashes or {}
        self.queries = []

    def resolve(self, query):
        self.queries.append(query)
        if query in self.errors:
            raise GeocodeServiceError(self.name, query, "timed out")
        if query in self.crashes:
            raise self.crashes[query]
        return self.answers.get(query)


@pytest.fixture
def venues_path(tmp_path):
    return tmp_path / "venues.json"


@pytest.fixture
def directory(venues_path):
    return VenueDirectory(venues_path)


@pytest.fixture
def address_geocoder():
    return FakeGeocoder("address")


@pytest.fixture
def keyword_geocoder():
    return FakeGeocoder("keyword")


@pytest.fixture
def http_client():
    client = MagicMock()
    client.get_text.side_effect = httpx.ConnectError("offline")
    return client


def make_resolver(directory, address_geocoder, keyword_geocoder, http_client, **kwargs):
    kwargs.setdefault("min_delay", 0)
    return VenueResolver(directory, address_geocoder, keyword_geocoder, http_client, **kwargs)


class TestCollectVenueLinks:
    def test_from_performances_and_dicts(self):
        performances = [
            Performance("1", "A", "https://example.com/1", Region.SEOUL, venue="홀"),
            {"id": "2", "title": "B", "link": "https://example.com/2", "venue": "홀"},
            {"id": "3", "title": "C", "link": "https://example.com/3", "venue": "극장"},
            {"id": "4", "title": "D", "link": "https://example.com/4", "venue": ""},
        ]
        assert collect_venue_links(performances) == {
            "홀": ["https://example.com/1", "https://example.com/2"],
            "극장": ["https://example.com/3"],
        }


class TestExtractAddress:
    def test_inline_label_skips_decoys(self):
        assert DetailPageStrategy.extract_address(DETAIL_HTML) == "서울 종로구 동숭길 76"

    def test_table_prefers_address_over_place_name(self):
        html = """
        <table>
          <tr><th>장소</th><td>예술의전당 콘서트홀</td></tr>
          <tr><th>주소</th><td>서울 서초구 남부순환로 2406</td></tr>
        </table>
        """
        assert DetailPageStrategy.extract_address(html) == "서울 서초구 남부순환로 2406"

    def test_only_decoys(self):
        html = "<p>주소 : 상세페이지 참조</p><p>Location: https://maps.example.com/x</p>"
        assert DetailPageStrategy.extract_address(html) == ""

    def test_falls_back_to_first_value(self):
        html = "<dl><dt>장소</dt><dd>블루스퀘어 신한카드홀</dd></dl>"
        assert DetailPageStrategy.extract_address(html) == "블루스퀘어 신한카드홀"


class TestStrategies:
    def test_curated_address(self, directory, address_geocoder, keyword_geocoder, http_client):
        address_geocoder.answers["서울 종로구 대학로11길 23"] = GeocodeResult(37.5826, 127.0028)
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client,
            curated_addresses={"후암씨어터": "서울 종로구 대학로11길 23"},
        )
        report = resolver.run({"후암씨어터": []})

        record = directory.get("후암씨어터")
        assert record.precision is Precision.CURATED
        assert record.address == "서울 종로구 대학로11길 23"
        assert record.district == "종로구"
        assert report.upgraded == 1
        assert keyword_geocoder.queries == []

    def test_curated_address_kept_when_geocoding_fails(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client,
            curated_addresses={"후암씨어터": "서울 종로구 대학로11길 23"},
        )
        resolver.run({"후암씨어터": []})

        record = directory.get("후암씨어터")
        assert record.address == "서울 종로구 대학로11길 23"
        assert record.precision is Precision.DISTRICT_CENTROID
        assert (record.lat, record.lng) == DISTRICT_CENTROIDS[Region.SEOUL]["종로구"]

    def test_detail_page(self, directory, address_geocoder, keyword_geocoder):
        http_client = MagicMock()
        http_client.get_text.return_value = DETAIL_HTML
        address_geocoder.answers["서울 종로구 동숭길 76"] = GeocodeResult(37.5830, 127.0025)
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        resolver.run({"해바라기 소극장": ["https://tickets.example.com/goods/1"]})

        record = directory.get("해바라기 소극장")
        assert record.precision is Precision.DETAIL_PAGE
        assert record.address == "서울 종로구 동숭길 76"
        assert (record.lat, record.lng) == (37.5830, 127.0025)
        http_client.get_text.assert_called_once()
        assert http_client.get_text.call_args.kwargs["rate_key"] == "detail-page"

    def test_detail_page_failure_falls_through_to_keyword(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        keyword_geocoder.answers["해바라기 소극장"] = GeocodeResult(37.58, 127.0, "서울 종로구 동숭길 76")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        report = resolver.run({"해바라기 소극장": ["https://tickets.example.com/goods/1"]})

        assert directory.get("해바라기 소극장").precision is Precision.KEYWORD
        assert report.failed == 0

    def test_keyword_retries_without_parentheses(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        keyword_geocoder.answers["와일드 와일드 전용관"] = GeocodeResult(
            37.5659, 126.9987, "서울 중구 마른내로 47"
        )
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        resolver.run({"와일드 와일드 전용관 (명보아트홀)": []})

        record = directory.get("와일드 와일드 전용관 (명보아트홀)")
        assert record.precision is Precision.KEYWORD
        assert record.district == "중구"
        assert keyword_geocoder.queries == [
            "와일드 와일드 전용관 (명보아트홀)",
            "와일드 와일드 전용관",
        ]

    def test_district_centroid_fallback(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        report = resolver.run({"송파 어린이 극장": []})

        record = directory.get("송파 어린이 극장")
        assert record.precision is Precision.DISTRICT_CENTROID
        assert record.district == "송파구"
        assert report.centroid_assigned == 1
        assert report.unresolved == 0

    def test_unresolved_venue_is_kept(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        report = resolver.run({"블루스퀘어 신한카드홀": []})

        record = directory.get("블루스퀘어 신한카드홀")
        assert record is not None
        assert not record.has_coordinates
        assert report.unresolved == 1


class TestPrecisionMonotonicity:
    def test_precise_venue_is_not_overwritten(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        directory.update(
            VenueRecord("세종문화회관", "서울 종로구 세종대로 175", "종로구", 37.5725, 126.976,
                        Precision.DETAIL_PAGE)
        )
        keyword_geocoder.answers["세종문화회관"] = GeocodeResult(37.0, 127.0)
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        report = resolver.run({"세종문화회관": []})

        record = directory.get("세종문화회관")
        assert (record.lat, record.lng) == (37.5725, 126.976)
        assert record.precision is Precision.DETAIL_PAGE
        assert report.skipped == 1
        assert keyword_geocoder.queries == []

    def test_lower_strategies_not_tried_above_their_level(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        directory.update(
            VenueRecord("세종문화회관", lat=37.5725, lng=126.976, precision=Precision.KEYWORD)
        )
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client,
            curated_addresses={"세종문화회관": "서울 종로구 세종대로 175"},
        )

        report = resolver.run({"세종문화회관": []})

        # The curated address is unknown to the geocoder, so nothing improves
        record = directory.get("세종문화회관")
        assert record.precision is Precision.KEYWORD
        assert (record.lat, record.lng) == (37.5725, 126.976)
        assert record.address == "서울 종로구 세종대로 175"
        assert report.processed == 1
        assert keyword_geocoder.queries == []

    def test_curated_address_replaces_keyword_address_without_coordinates(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        directory.update(
            VenueRecord(
                "세종문화회관", address="서울 중구 세종대로", district="중구",
                lat=37.5725, lng=126.976, precision=Precision.KEYWORD,
            )
        )
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client,
            curated_addresses={"세종문화회관": "서울 종로구 세종대로 175"},
        )

        resolver.run({"세종문화회관": []})

        record = directory.get("세종문화회관")
        assert record.address == "서울 종로구 세종대로 175"
        assert record.district == "종로구"
        assert record.precision is Precision.KEYWORD
        assert (record.lat, record.lng) == (37.5725, 126.976)

    def test_curated_address_upgrades_keyword_result(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        directory.update(
            VenueRecord("세종문화회관", lat=37.57, lng=126.97, precision=Precision.KEYWORD)
        )
        address_geocoder.answers["서울 종로구 세종대로 175"] = GeocodeResult(37.5725, 126.976)
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client,
            curated_addresses={"세종문화회관": "서울 종로구 세종대로 175"},
        )

        resolver.run({"세종문화회관": []})

        assert directory.get("세종문화회관").precision is Precision.CURATED


class TestBatchBehaviour:
    def test_per_run_cap(self, directory, address_geocoder, keyword_geocoder, http_client):
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client, max_per_run=2
        )
        venues = {f"극장 {i}": [] for i in range(5)}

        report = resolver.run(venues)

        assert report.processed == 2
        assert report.deferred == 3
        assert len(keyword_geocoder.queries) == 2
        # Every referenced venue still gets a record
        assert all(name in directory for name in venues)

    def test_limit_overrides_cap(self, directory, address_geocoder, keyword_geocoder, http_client):
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client, max_per_run=100
        )
        report = resolver.run({f"극장 {i}": [] for i in range(3)}, limit=1)
        assert report.processed == 1

    def test_failure_is_isolated(self, directory, address_geocoder, keyword_geocoder, http_client):
        keyword_geocoder.errors.add("고장난 극장")
        keyword_geocoder.answers["멀쩡한 극장"] = GeocodeResult(37.55, 126.92, "서울 마포구 어울마당로 35")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        report = resolver.run({"고장난 극장": [], "멀쩡한 극장": []})

        assert report.failed == 1
        assert "고장난 극장" in report.failures
        assert report.upgraded == 1
        assert directory.get("멀쩡한 극장").precision is Precision.KEYWORD
        assert directory.get("고장난 극장").precision is Precision.UNRESOLVED

    def test_unexpected_error_is_isolated(
        self, directory, venues_path, address_geocoder, keyword_geocoder, http_client, caplog
    ):
        keyword_geocoder.crashes["고장난 극장"] = AttributeError("'str' object has no attribute 'get'")
        keyword_geocoder.answers["멀쩡한 극장"] = GeocodeResult(37.55, 126.92, "서울 마포구 어울마당로 35")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        caplog.set_level("ERROR", logger="culture_catalog")

        report = resolver.run({"고장난 극장": [], "멀쩡한 극장": []})

        assert report.failed == 1
        assert report.failures["고장난 극장"].startswith("AttributeError")
        assert report.upgraded == 1
        data = json.loads(venues_path.read_text(encoding="utf-8"))
        assert data["멀쩡한 극장"]["precision"] == "keyword"
        assert [r.venue for r in caplog.records if r.levelname == "ERROR"] == ["고장난 극장"]

    def test_malformed_kakao_response_counts_as_failure(self, directory, venues_path, http_client):
        geocoder_client = MagicMock()
        geocoder_client.get_json.return_value = {"documents": ["junk"]}
        address_geocoder, keyword_geocoder = build_geocoders(geocoder_client, "kakao", "test-key")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        report = resolver.run({"블루스퀘어 신한카드홀": [], "멀쩡한 극장": []})

        assert report.failed == 2
        assert set(report.failures) == {"블루스퀘어 신한카드홀", "멀쩡한 극장"}
        assert venues_path.exists()

    def test_failed_venue_keeps_best_precision(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        keyword_geocoder.errors.add("송파 어린이 극장")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)

        report = resolver.run({"송파 어린이 극장": []})

        assert report.failed == 1
        assert directory.get("송파 어린이 극장").precision is Precision.DISTRICT_CENTROID

    def test_second_run_is_a_no_op(
        self, directory, venues_path, address_geocoder, keyword_geocoder, http_client
    ):
        keyword_geocoder.answers["멀쩡한 극장"] = GeocodeResult(37.55, 126.92, "서울 마포구 어울마당로 35")
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        resolver.run({"멀쩡한 극장": []})
        first = venues_path.read_text(encoding="utf-8")
        queries = len(keyword_geocoder.queries)

        report = resolver.run({"멀쩡한 극장": []})

        assert report.skipped == 1
        assert report.processed == 0
        assert len(keyword_geocoder.queries) == queries
        assert venues_path.read_text(encoding="utf-8") == first

    def test_saves_directory(self, directory, venues_path, address_geocoder, keyword_geocoder, http_client):
        keyword_geocoder.answers["멀쩡한 극장"] = GeocodeResult(37.55, 126.92)
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        resolver.run({"멀쩡한 극장": []})

        data = json.loads(venues_path.read_text(encoding="utf-8"))
        assert data["멀쩡한 극장"]["precision"] == "keyword"

    def test_dry_run_does_not_save(
        self, directory, venues_path, address_geocoder, keyword_geocoder, http_client
    ):
        keyword_geocoder.answers["멀쩡한 극장"] = GeocodeResult(37.55, 126.92)
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        report = resolver.run({"멀쩡한 극장": []}, dry_run=True)

        assert report.upgraded == 1
        assert not venues_path.exists()

    def test_assign_districts_makes_no_network_calls(
        self, directory, address_geocoder, keyword_geocoder, http_client
    ):
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        assigned = resolver.assign_districts(["강남구민회관", "블루스퀘어 신한카드홀"])

        assert assigned == 1
        assert directory.get("강남구민회관").district == "강남구"
        assert "블루스퀘어 신한카드홀" in directory
        assert address_geocoder.queries == []
        assert keyword_geocoder.queries == []
        http_client.get_text.assert_not_called()

    def test_accepts_performances(self, directory, address_geocoder, keyword_geocoder, http_client):
        resolver = make_resolver(directory, address_geocoder, keyword_geocoder, http_client)
        report = resolver.run(
            [Performance("1", "A", "https://example.com/1", Region.SEOUL, venue="송파 어린이 극장")]
        )
        assert report.referenced == 1

    def test_rate_limits_configured(self, directory, address_geocoder, keyword_geocoder, http_client):
        make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client, min_delay=1.5
        )
        address_geocoder.http_client.set_rate_limit.assert_called_with("address", 1.5)
        keyword_geocoder.http_client.set_rate_limit.assert_called_with("keyword", 1.5)
        http_client.set_rate_limit.assert_called_with("detail-page", 1.5)


class TestRateLimiting:
    @patch("httpx.Client")
    def test_kakao_searches_share_one_rate_limit(self, mock_client_class, directory, http_client):
        call_times = []

        def fake_get(url, params=None, headers=None):
            call_times.append(time.monotonic())
            response = MagicMock()
            response.json.return_value = {"documents": []}
            return response

        mock_client = MagicMock()
        mock_client.get.side_effect = fake_get
        mock_client_class.return_value = mock_client

        client = HTTPClient(rate_limit_delay=0)
        address_geocoder, keyword_geocoder = build_geocoders(client, "kakao", "test-key")
        resolver = make_resolver(
            directory, address_geocoder, keyword_geocoder, http_client, min_delay=0.3,
            curated_addresses={"블루스퀘어 신한카드홀": "서울 용산구 이태원로 294"},
        )

        resolver.run({"블루스퀘어 신한카드홀": []})
        client.close()

        # Address search for the curated address, then keyword search for the name
        assert len(call_times) == 2
        assert call_times[1] - call_times[0] >= 0.25
