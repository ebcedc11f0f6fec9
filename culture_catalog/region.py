"""Region and district classification for addresses and venue names.

Everything here is a best-effort guess. An empty district is a normal
result, and a wrong non-empty district is possible when a venue name
happens to contain a district fragment, so callers must not treat the
output as authoritative.
"""

from enum import Enum

from .logger import get_logger

logger = get_logger(__name__)


class Region(str, Enum):
    """Target regions covered by the catalog."""

    SEOUL = "seoul"
    GYEONGGI = "gyeonggi"
    INCHEON = "incheon"


# Province labels as they appear in region tags and address prefixes
REGION_ALIASES: dict[str, Region] = {
    "seoul": Region.SEOUL,
    "서울": Region.SEOUL,
    "서울시": Region.SEOUL,
    "서울특별시": Region.SEOUL,
    "gyeonggi": Region.GYEONGGI,
    "경기": Region.GYEONGGI,
    "경기도": Region.GYEONGGI,
    "incheon": Region.INCHEON,
    "인천": Region.INCHEON,
    "인천시": Region.INCHEON,
    "인천광역시": Region.INCHEON,
}

WARD_SUFFIX = "구"
CITY_SUFFIX = "시"

# Approximate district centroids (lat, lng), used when nothing better is known
DISTRICT_CENTROIDS: dict[Region, dict[str, tuple[float, float]]] = {
    Region.SEOUL: {
        "강남구": (37.5172, 127.0473),
        "강동구": (37.5301, 127.1238),
        "강북구": (37.6396, 127.0257),
        "강서구": (37.5509, 126.8497),
        "관악구": (37.4784, 126.9516),
        "광진구": (37.5385, 127.0824),
        "구로구": (37.4954, 126.8874),
        "금천구": (37.4565, 126.8954),
        "노원구": (37.6542, 127.0568),
        "도봉구": (37.6688, 127.0471),
        "동대문구": (37.5744, 127.0400),
        "동작구": (37.5124, 126.9393),
        "마포구": (37.5665, 126.9018),
        "서대문구": (37.5791, 126.9368),
        "서초구": (37.4837, 127.0324),
        "성동구": (37.5633, 127.0371),
        "성북구": (37.5891, 127.0182),
        "송파구": (37.5145, 127.1066),
        "양천구": (37.5169, 126.8660),
        "영등포구": (37.5264, 126.8962),
        "용산구": (37.5323, 126.9906),
        "은평구": (37.6027, 126.9291),
        "종로구": (37.5730, 126.9794),
        "중구": (37.5637, 126.9975),
        "중랑구": (37.6066, 127.0924),
    },
    Region.GYEONGGI: {
        "수원시": (37.2636, 127.0286),
        "성남시": (37.4386, 127.1378),
        "고양시": (37.6584, 126.8320),
        "용인시": (37.2410, 127.1775),
        "부천시": (37.5034, 126.7660),
        "안산시": (37.3680, 126.8360),
        "안양시": (37.3943, 126.9568),
        "화성시": (37.1996, 126.8312),
        "파주시": (37.7600, 126.7802),
        "김포시": (37.6153, 126.7156),
        "광명시": (37.4786, 126.8646),
        "의정부시": (37.7381, 127.0338),
        "평택시": (36.9921, 127.1129),
        "남양주시": (37.6360, 127.2165),
        "하남시": (37.5393, 127.2148),
        "과천시": (37.4292, 126.9876),
        "안성시": (37.0080, 127.2797),
        "이천시": (37.2720, 127.4350),
        "오산시": (37.1499, 127.0774),
        "광주시": (37.4295, 127.2550),
    },
    Region.INCHEON: {
        "연수구": (37.4102, 126.6782),
        "남동구": (37.4473, 126.7314),
        "부평구": (37.5074, 126.7217),
        "미추홀구": (37.4635, 126.6500),
        "계양구": (37.5372, 126.7376),
        "서구": (37.5453, 126.6759),
        "동구": (37.4739, 126.6432),
        "중구": (37.4738, 126.6216),
    },
}

# Cities whose "시" token counts as a district when an address has no ward
TARGET_CITIES: frozenset[str] = frozenset(
    name
    for region in (Region.GYEONGGI, Region.INCHEON)
    for name in DISTRICT_CENTROIDS[region]
    if name.endswith(CITY_SUFFIX)
)

# Fragments no longer than this are only trusted when nothing longer matches
SHORT_FRAGMENT_LEN = 2


def _build_fragment_catalog() -> list[tuple[str, str, Region]]:
    """Return (fragment, district, region) triples for name matching.

    Each district contributes its full name ("강남구") and its stem
    ("강남") when the stem is at least two characters long.
    """
    catalog: list[tuple[str, str, Region]] = []
    seen: set[str] = set()
    for region, districts in DISTRICT_CENTROIDS.items():
        for district in districts:
            stem = district[:-1]
            for fragment in (district, stem):
                if len(fragment) < 2 or fragment in seen:
                    continue
                seen.add(fragment)
                catalog.append((fragment, district, region))
    return catalog


FRAGMENT_CATALOG = _build_fragment_catalog()


def coerce_region(tag: str | None) -> Region | None:
    """Map a loosely-typed region tag to a Region, or None if out of scope."""
    if not tag:
        return None
    if isinstance(tag, Region):
        return tag
    return REGION_ALIASES.get(str(tag).strip().lower())


def region_from_address(address: str | None) -> Region | None:
    """Infer the region from the province token that starts an address."""
    if not address:
        return None
    for token in address.split()[:2]:
        region = REGION_ALIASES.get(token.lower())
        if region:
            return region
    return None


def district_from_address(address: str | None) -> str:
    """
    Extract the district label from a Korean street address.

    The first whitespace-delimited token ending in the ward suffix wins.
    Without a ward, the first token ending in the city suffix is used,
    but only for cities inside the target regions.

    Examples:
        "서울 종로구 대학로11길 23" -> "종로구"
        "경기 고양시 덕양구 항공대학로 76" -> "덕양구"
        "경기 이천시 부악로 40" -> "이천시"
        "충남 천안시 동남구 ..." -> "동남구"
        "부산 해운대 ..." -> ""
    """
    if not address:
        return ""

    tokens = address.split()
    for token in tokens:
        if len(token) > 1 and token.endswith(WARD_SUFFIX):
            return token

    for token in tokens:
        if token in TARGET_CITIES:
            return token

    return ""


def district_from_name(name: str | None) -> tuple[Region | None, str]:
    """
    Guess a district from a venue display name.

    Fragments are matched by substring containment. A short fragment such
    as "서구" is discarded when a longer fragment ("강서구") also matches,
    which keeps incidental collisions out. Among the remaining matches the
    longest fragment wins; ties go to catalog order.

    Returns:
        (region, district), or (None, "") when nothing matches.
    """
    if not name:
        return None, ""

    matches = [
        (fragment, district, region)
        for fragment, district, region in FRAGMENT_CATALOG
        if fragment in name
    ]
    if not matches:
        return None, ""

    longest = max(len(fragment) for fragment, _, _ in matches)
    if longest > SHORT_FRAGMENT_LEN:
        matches = [m for m in matches if len(m[0]) > SHORT_FRAGMENT_LEN]

    # max() keeps the first of equal-length candidates
    fragment, district, region = max(matches, key=lambda m: len(m[0]))
    logger.debug(f"Name heuristic: '{name}' -> {district} (via '{fragment}')")
    return region, district


def classify(
    address: str | None = None, venue_name: str | None = None
) -> tuple[Region | None, str]:
    """
    Classify a venue into (region, district).

    The address is preferred. Name heuristics are only used when no
    address is available.
    """
    if address:
        return region_from_address(address), district_from_address(address)
    return district_from_name(venue_name)


def centroid_for(
    district: str | None,
    address: str | None = "",
    region: Region | None = None,
) -> tuple[float, float] | None:
    """
    Look up the approximate centroid for a district.

    When the district itself is unknown (for instance a ward inside a
    Gyeonggi city), the city token of the address is tried instead.
    """
    if region is None and address:
        region = region_from_address(address)

    candidates = [district] if district else []
    if address:
        candidates.extend(t for t in address.split() if t in TARGET_CITIES)

    for candidate in candidates:
        if not candidate:
            continue
        regions = [region] if region else list(DISTRICT_CENTROIDS)
        for reg in regions:
            coords = DISTRICT_CENTROIDS.get(reg, {}).get(candidate)
            if coords:
                return coords
    return None


def is_centroid(lat: float | None, lng: float | None) -> bool:
    """Check whether coordinates are exactly one of the fixed centroids."""
    if lat is None or lng is None:
        return False
    return any(
        (lat, lng) == coords
        for districts in DISTRICT_CENTROIDS.values()
        for coords in districts.values()
    )
