"""Venue resolver - locate venues referenced by the catalog.

Runs as a batch job separate from the aggregation pipeline. Each venue
goes through an ordered chain of strategies, most precise first:

1. Curated address  - manually verified address, geocoded
2. Detail page      - address scraped from a performance's detail page
3. Keyword search   - the venue name submitted to a place search
4. District centroid - district guessed from address or name, fixed point

The first strategy that yields coordinates wins. A venue's coordinates
are never replaced by a less precise strategy (see VenueRecord.merge).
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from .exceptions import GeocodeServiceError, UnresolvableVenue
from .geocoder import Geocoder, clean_query
from .logger import get_logger
from .models.performance import Performance
from .models.venue import Precision, VenueRecord
from .region import centroid_for, classify, district_from_address, region_from_address
from .utils.http import HTTPClient, SSRFError
from .utils.parser import HTMLParser
from .venue_directory import VenueDirectory, normalize_name

logger = get_logger(__name__)

DEFAULT_MAX_PER_RUN = 100
DEFAULT_MIN_DELAY = 1.2

DETAIL_PAGE_RATE_KEY = "detail-page"

ADDRESS_LABELS = ["주소", "장소", "위치", "소재지", "Address", "Location"]

# Labelled values on ticketing pages that are not the venue address
ADDRESS_DECOYS = ["매표소", "주소복사", "Copy Address", "상세페이지 참조", "정보 없음"]


@dataclass
class ResolutionContext:
    """What a strategy knows about the venue it is resolving."""

    record: VenueRecord
    links: list[str] = field(default_factory=list)
    curated_address: str = ""


class ResolutionStrategy(ABC):
    """One step of the resolution chain."""

    name: str = "strategy"
    precision: Precision = Precision.UNRESOLVED

    @abstractmethod
    def resolve(self, ctx: ResolutionContext) -> VenueRecord | None:
        """
        Try to locate the venue.

        Returns:
            A candidate record (possibly without coordinates when only an
            address was learned), or None when the strategy does not apply.

        Raises:
            GeocodeServiceError: If a geocoding call failed.
        """

    def _candidate(
        self, ctx: ResolutionContext, lat=None, lng=None, address: str = ""
    ) -> VenueRecord:
        address = address or ctx.record.address
        return VenueRecord(
            name=ctx.record.name,
            address=address,
            district=district_from_address(address),
            lat=lat,
            lng=lng,
            precision=self.precision if lat is not None else Precision.UNRESOLVED,
        )


class CuratedAddressStrategy(ResolutionStrategy):
    name = "curated"
    precision = Precision.CURATED

    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder

    def resolve(self, ctx: ResolutionContext) -> VenueRecord | None:
        if not ctx.curated_address:
            return None

        result = self.geocoder.resolve(ctx.curated_address)
        if result is None:
            cleaned = clean_query(ctx.curated_address)
            if cleaned != ctx.curated_address:
                result = self.geocoder.resolve(cleaned)

        # The curated address always replaces the stored one, geocoded or not
        candidate = self._candidate(ctx, address=ctx.curated_address)
        candidate.precision = self.precision
        if result is not None:
            candidate.lat, candidate.lng = result.lat, result.lng
        return candidate


class DetailPageStrategy(ResolutionStrategy):
    name = "detail_page"
    precision = Precision.DETAIL_PAGE

    def __init__(self, geocoder: Geocoder, http_client: HTTPClient):
        self.geocoder = geocoder
        self.http_client = http_client

    def resolve(self, ctx: ResolutionContext) -> VenueRecord | None:
        if not ctx.links:
            return None

        link = ctx.links[0]
        try:
            html = self.http_client.get_text(link, rate_key=DETAIL_PAGE_RATE_KEY)
        except (httpx.HTTPError, SSRFError) as e:
            logger.warning(f"[{ctx.record.name}] detail page unavailable: {link} ({e})")
            return None

        address = self.extract_address(html)
        if not address:
            logger.debug(f"[{ctx.record.name}] no address on {link}")
            return None

        result = self.geocoder.resolve(address)
        if result is None:
            # Keep the address: the centroid step can still use its district
            return self._candidate(ctx, address=address)
        return self._candidate(ctx, result.lat, result.lng, address=address)

    @staticmethod
    def extract_address(html: str) -> str:
        """
        Pick the venue address out of a detail page.

        Labelled values are collected in document order, decoys excluded.
        A value that reads like a Korean address (province or district
        token) is preferred over one that only names a place.
        """
        parser = HTMLParser(html)
        values = parser.find_labeled_values(ADDRESS_LABELS, exclude=ADDRESS_DECOYS)
        for value in values:
            if region_from_address(value) or district_from_address(value):
                return value
        return values[0] if values else ""


class KeywordStrategy(ResolutionStrategy):
    name = "keyword"
    precision = Precision.KEYWORD

    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder

    def resolve(self, ctx: ResolutionContext) -> VenueRecord | None:
        name = ctx.record.name
        result = self.geocoder.resolve(name)
        if result is None:
            cleaned = clean_query(name)
            if cleaned and cleaned != name:
                logger.debug(f"[{name}] retrying keyword search as {cleaned!r}")
                result = self.geocoder.resolve(cleaned)
        if result is None:
            return None
        return self._candidate(
            ctx, result.lat, result.lng, address=result.normalized_address
        )


class DistrictCentroidStrategy(ResolutionStrategy):
    name = "district_centroid"
    precision = Precision.DISTRICT_CENTROID

    def resolve(self, ctx: ResolutionContext) -> VenueRecord | None:
        return centroid_candidate(ctx.record)


def centroid_candidate(record: VenueRecord) -> VenueRecord | None:
    """District-centroid resolution from a record's address or name."""
    region, district = classify(record.address, record.name)
    if not district and record.address:
        # Address without a usable district token; the name may still help
        region, district = classify(None, record.name)
    district = record.district or district
    if not district:
        return None

    coords = centroid_for(district, record.address, region) or centroid_for(
        district, record.address
    )
    if coords is None:
        return VenueRecord(name=record.name, district=district)
    return VenueRecord(
        name=record.name,
        district=district,
        lat=coords[0],
        lng=coords[1],
        precision=Precision.DISTRICT_CENTROID,
    )


@dataclass
class ResolverReport:
    """Summary of one resolver run."""

    referenced: int = 0
    processed: int = 0
    upgraded: int = 0
    unresolved: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    centroid_assigned: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def collect_venue_links(performances: Iterable[Performance | dict]) -> dict[str, list[str]]:
    """Map each referenced venue name to its performance links, in first-seen order."""
    venues: dict[str, list[str]] = {}
    for performance in performances:
        if isinstance(performance, Performance):
            venue, link = performance.venue, performance.link
        else:
            venue = str(performance.get("venue") or "").strip()
            link = str(performance.get("link") or "").strip()
        if not venue:
            continue
        links = venues.setdefault(venue, [])
        if link and link not in links:
            links.append(link)
    return venues


class VenueResolver:
    """
    Ensure every referenced venue has a record and raise its precision.

    Usage:
        resolver = VenueResolver(directory, address_geocoder, keyword_geocoder, http)
        report = resolver.run(collect_venue_links(performances))
    """

    def __init__(
        self,
        directory: VenueDirectory,
        address_geocoder: Geocoder,
        keyword_geocoder: Geocoder,
        http_client: HTTPClient,
        curated_addresses: Mapping[str, str] | None = None,
        max_per_run: int = DEFAULT_MAX_PER_RUN,
        min_delay: float = DEFAULT_MIN_DELAY,
    ):
        self.directory = directory
        self.max_per_run = max_per_run
        self.curated_addresses = {
            normalize_name(name): address
            for name, address in (curated_addresses or {}).items()
            if address
        }

        for geocoder in (address_geocoder, keyword_geocoder):
            geocoder.http_client.set_rate_limit(geocoder.rate_key, min_delay)
        http_client.set_rate_limit(DETAIL_PAGE_RATE_KEY, min_delay)

        self.strategies: list[ResolutionStrategy] = [
            CuratedAddressStrategy(address_geocoder),
            DetailPageStrategy(address_geocoder, http_client),
            KeywordStrategy(keyword_geocoder),
            DistrictCentroidStrategy(),
        ]

    def curated_address_for(self, name: str) -> str:
        return self.curated_addresses.get(normalize_name(name), "")

    def is_fully_resolved(self, record: VenueRecord) -> bool:
        """Whether the network chain has nothing left to add for this venue."""
        if not record.has_coordinates or record.precision < Precision.KEYWORD:
            return False
        if self.curated_address_for(record.name) and record.precision < Precision.CURATED:
            return False
        return True

    def assign_districts(self, names: Iterable[str]) -> int:
        """
        Name-heuristic pass over every referenced venue.

        Creates missing records and fills missing districts and centroid
        coordinates. Makes no network calls and does not count against
        the per-run cap.

        Returns:
            Number of venues that received centroid coordinates.
        """
        assigned = 0
        for name in names:
            record = self.directory.ensure(name)
            if record.district and record.has_coordinates:
                continue
            candidate = centroid_candidate(record)
            if candidate is None:
                continue
            changes = self.directory.update(candidate)
            if "coordinates" in changes:
                assigned += 1
        if assigned:
            logger.info(f"Assigned district centroids to {assigned} venues")
        return assigned

    def resolve_venue(self, name: str, links: list[str] | None = None) -> VenueRecord:
        """
        Run the strategy chain for one venue.

        Strategies at or below the stored precision are not tried.

        Raises:
            GeocodeServiceError: If a geocoding call failed.
            UnresolvableVenue: If no strategy produced coordinates.
        """
        record = self.directory.ensure(name)
        ctx = ResolutionContext(
            record=record,
            links=list(links or []),
            curated_address=self.curated_address_for(name),
        )

        for strategy in self.strategies:
            if record.has_coordinates and strategy.precision <= record.precision:
                break

            candidate = strategy.resolve(ctx)
            if candidate is None:
                continue

            changes = self.directory.update(candidate)
            if candidate.has_coordinates:
                logger.debug(
                    f"[{name}] resolved by {strategy.name}"
                    + (f" ({', '.join(changes)})" if changes else "")
                )
                break

        if not record.has_coordinates:
            raise UnresolvableVenue(name)
        return record

    def run(
        self,
        venues: Mapping[str, list[str]] | Iterable[Performance | dict],
        limit: int | None = None,
        dry_run: bool = False,
    ) -> ResolverReport:
        """
        Resolve every referenced venue, up to the per-run cap.

        Args:
            venues: venue name -> detail page links, or performances to
                collect them from
            limit: Override the per-run cap
            dry_run: Resolve in memory without saving the directory

        Returns:
            ResolverReport with per-run counts
        """
        if not isinstance(venues, Mapping):
            venues = collect_venue_links(venues)
        cap = self.max_per_run if limit is None else limit

        report = ResolverReport(referenced=len(venues))
        report.centroid_assigned = self.assign_districts(venues)

        for name, links in venues.items():
            record = self.directory.ensure(name)
            if self.is_fully_resolved(record):
                report.skipped += 1
                continue
            if report.processed >= cap:
                report.deferred += 1
                continue

            report.processed += 1
            before = record.precision
            try:
                record = self.resolve_venue(name, links)
            except UnresolvableVenue as e:
                logger.info(str(e))
                report.unresolved += 1
            except (GeocodeServiceError, httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"[{name}] resolution failed, retrying next run: {e}",
                    extra={"venue": name},
                )
                report.failed += 1
                report.failures[name] = str(e)
            except Exception as e:
                logger.error(
                    f"[{name}] unexpected error during resolution: {e}",
                    extra={"venue": name},
                )
                report.failed += 1
                report.failures[name] = f"{type(e).__name__}: {e}"
            else:
                if record.precision > before:
                    report.upgraded += 1
                    logger.info(
                        f"[{name}] {before.label} -> {record.precision.label}"
                    )

        if report.deferred:
            logger.info(f"Per-run cap of {cap} reached, {report.deferred} venues deferred")

        if dry_run:
            logger.info("Dry run: venue directory not saved")
        elif self.directory.dirty:
            self.directory.save()

        logger.info(
            f"Resolver: {report.processed} processed, {report.upgraded} upgraded, "
            f"{report.unresolved} unresolved, {report.failed} failed, "
            f"{report.skipped} skipped"
        )
        return report
