"""Geocoding clients for venue addresses and names.

Two services are supported:
- Kakao Local: address search (street addresses) and keyword search
  (place names). Needs a REST API key.
- Nominatim (OpenStreetMap): free-text search, no key, at most one
  request per second and an identifying User-Agent.

Both answer ``resolve(query)`` with a GeocodeResult, or None when the
service has no match. Timeouts, HTTP errors and malformed bodies raise
GeocodeServiceError so the caller can retry the venue on a later run.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from .exceptions import GeocodeServiceError
from .logger import get_logger
from .utils.http import HTTPClient, SSRFError

logger = get_logger(__name__)

KAKAO_ADDRESS_URL = "https://dapi.kakao.com/v2/local/search/address.json"
KAKAO_KEYWORD_URL = "https://dapi.kakao.com/v2/local/search/keyword.json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"

# Text in brackets confuses address search: "… 23 (동숭동)" -> "… 23"
_PARENTHESES_RE = re.compile(r"\s*[(（][^)）]*[)）]")


def clean_query(query: str) -> str:
    """Remove bracketed annotations and collapse whitespace."""
    cleaned = _PARENTHESES_RE.sub("", query or "")
    return " ".join(cleaned.split())


@dataclass(frozen=True)
class GeocodeResult:
    """A geocoded location."""

    lat: float
    lng: float
    normalized_address: str = ""


class Geocoder(ABC):
    """Common interface for geocoding services."""

    name: str = "geocoder"
    # Calls sharing a quota share a rate-limit key
    rate_key: str = "geocoder"

    def __init__(self, http_client: HTTPClient):
        self.http_client = http_client

    def resolve(self, query: str) -> GeocodeResult | None:
        """
        Geocode an address or keyword.

        Returns:
            The best match, or None when the service found nothing.

        Raises:
            GeocodeServiceError: On transport failures or malformed responses.
        """
        query = (query or "").strip()
        if not query:
            return None

        try:
            payload = self._request(query)
        except (httpx.HTTPError, SSRFError, ValueError) as e:
            raise GeocodeServiceError(self.name, query, str(e)) from e

        try:
            result = self._parse(payload)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GeocodeServiceError(self.name, query, f"malformed response: {e}") from e

        if result is None:
            logger.debug(f"[{self.name}] no match for {query!r}")
        else:
            logger.debug(f"[{self.name}] {query!r} -> {result.lat}, {result.lng}")
        return result

    @abstractmethod
    def _request(self, query: str) -> Any:
        """Call the service and return the decoded JSON body."""

    @abstractmethod
    def _parse(self, payload: Any) -> GeocodeResult | None:
        """Turn the decoded body into a result."""


class KakaoGeocoder(Geocoder):
    """Kakao Local search, in "address" or "keyword" mode."""

    MODES = {"address": KAKAO_ADDRESS_URL, "keyword": KAKAO_KEYWORD_URL}

    rate_key = "kakao"

    def __init__(self, http_client: HTTPClient, api_key: str, mode: str = "address"):
        super().__init__(http_client)
        if mode not in self.MODES:
            raise ValueError(f"Unknown Kakao search mode: {mode}")
        if not api_key:
            raise ValueError("Kakao geocoding requires a REST API key")
        self.api_key = api_key
        self.mode = mode
        self.name = f"kakao-{mode}"

    def _request(self, query: str) -> Any:
        return self.http_client.get_json(
            self.MODES[self.mode],
            params={"query": query},
            headers={"Authorization": f"KakaoAK {self.api_key}"},
            rate_key=self.rate_key,
        )

    def _parse(self, payload: Any) -> GeocodeResult | None:
        documents = payload["documents"]
        if not isinstance(documents, list):
            raise TypeError("documents is not a list")
        if not documents:
            return None

        doc = documents[0]
        if not isinstance(doc, dict):
            raise TypeError(f"document is not an object: {doc!r:.80}")
        address = doc.get("road_address_name") or doc.get("address_name") or ""
        if not address and isinstance(doc.get("road_address"), dict):
            address = doc["road_address"].get("address_name", "")
        return GeocodeResult(
            lat=float(doc["y"]),
            lng=float(doc["x"]),
            normalized_address=address,
        )


class NominatimGeocoder(Geocoder):
    """OpenStreetMap Nominatim search restricted to South Korea."""

    name = "nominatim"
    rate_key = "nominatim"

    def _request(self, query: str) -> Any:
        return self.http_client.get_json(
            NOMINATIM_URL,
            params={
                "q": query,
                "format": "json",
                "limit": 1,
                "countrycodes": "kr",
                "accept-language": "ko",
            },
            rate_key=self.rate_key,
        )

    def _parse(self, payload: Any) -> GeocodeResult | None:
        if not isinstance(payload, list):
            raise TypeError("expected a list of places")
        if not payload:
            return None
        place = payload[0]
        if not isinstance(place, dict):
            raise TypeError(f"place is not an object: {place!r:.80}")
        return GeocodeResult(
            lat=float(place["lat"]),
            lng=float(place["lon"]),
            normalized_address=_nominatim_to_address(place.get("display_name", "")),
        )


def _nominatim_to_address(display_name: str) -> str:
    """
    Reorder a Nominatim display name into Korean address order.

    "세종대로, 종로구, 서울, 03172, 대한민국" -> "서울 종로구 세종대로"
    """
    parts = [p.strip() for p in display_name.split(",") if p.strip()]
    parts = [p for p in parts if p not in ("대한민국", "South Korea") and not p.isdigit()]
    return " ".join(reversed(parts))


def build_geocoders(
    http_client: HTTPClient, service: str, kakao_api_key: str = ""
) -> tuple[Geocoder, Geocoder]:
    """
    Create the (address, keyword) geocoder pair for a service.

    Args:
        http_client: Shared HTTP client
        service: "kakao" or "nominatim"
        kakao_api_key: Kakao REST API key, required for "kakao"

    Raises:
        ValueError: For an unknown service or a missing Kakao key
    """
    if service == "kakao":
        return (
            KakaoGeocoder(http_client, kakao_api_key, mode="address"),
            KakaoGeocoder(http_client, kakao_api_key, mode="keyword"),
        )
    if service == "nominatim":
        geocoder = NominatimGeocoder(http_client)
        return geocoder, geocoder
    raise ValueError(f"Unknown geocoding service: {service}. Available: kakao, nominatim")
