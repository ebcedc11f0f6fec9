"""Venue data model for the persisted venue directory."""

from dataclasses import dataclass
from enum import IntEnum

from ..region import is_centroid

# Placeholder older venue files use for "address unknown"
NO_ADDRESS = "정보 없음"


class Precision(IntEnum):
    """How trustworthy a venue's coordinates are, lowest to highest."""

    UNRESOLVED = 0
    DISTRICT_CENTROID = 1
    KEYWORD = 2
    DETAIL_PAGE = 3
    CURATED = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Precision":
        return cls[label.strip().upper()]


@dataclass
class VenueRecord:
    """
    Location metadata for one venue, keyed by its display name.

    Records are created on first sighting of a venue name and enriched by
    later resolver runs. Coordinates only ever move up in precision.
    """

    name: str
    address: str = ""
    district: str = ""
    lat: float | None = None
    lng: float | None = None
    precision: Precision = Precision.UNRESOLVED

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def merge(self, other: "VenueRecord") -> list[str]:
        """
        Fold a newer resolution into this record.

        Coordinates and their precision are taken only when ``other`` is at
        least as precise as what is stored. Address and district fill in
        when missing, and are replaced by equally or more precise results.
        A result without coordinates never touches the stored coordinates
        or precision, but its precision still ranks its address, so a
        curated address replaces a keyword-search one even when it could
        not be geocoded.

        Returns:
            Names of the fields that changed.
        """
        changes: list[str] = []
        at_least_as_precise = other.precision >= self.precision

        if other.has_coordinates and at_least_as_precise:
            if (other.lat, other.lng) != (self.lat, self.lng):
                self.lat, self.lng = other.lat, other.lng
                changes.append("coordinates")
            if other.precision != self.precision:
                self.precision = other.precision
                changes.append("precision")

        if other.address and other.address != self.address:
            if not self.address or at_least_as_precise:
                self.address = other.address
                changes.append("address")

        if other.district and other.district != self.district:
            if not self.district or at_least_as_precise:
                self.district = other.district
                changes.append("district")

        return changes

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        d: dict = {"address": self.address}
        if self.district:
            d["district"] = self.district
        if self.has_coordinates:
            d["lat"] = self.lat
            d["lng"] = self.lng
        d["precision"] = self.precision.label
        return d

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "VenueRecord":
        """
        Build a record from its persisted JSON shape.

        Records written before precision was tracked get one inferred from
        their coordinates.

        Raises:
            ValueError: If a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")

        lat = data.get("lat")
        lng = data.get("lng")
        lat = float(lat) if lat is not None else None
        lng = float(lng) if lng is not None else None
        if lat is None or lng is None:
            lat = lng = None

        label = data.get("precision")
        if label is not None and not isinstance(label, str):
            raise ValueError(f"precision must be a string, got {label!r}")
        if label:
            try:
                precision = Precision.from_label(label)
            except KeyError as e:
                raise ValueError(f"unknown precision {label!r}") from e
        elif lat is None:
            precision = Precision.UNRESOLVED
        elif is_centroid(lat, lng):
            precision = Precision.DISTRICT_CENTROID
        else:
            precision = Precision.KEYWORD

        address = data.get("address") or ""
        district = data.get("district") or ""
        if not isinstance(address, str) or not isinstance(district, str):
            raise ValueError("address and district must be strings")
        if address.strip() == NO_ADDRESS:
            address = ""

        return cls(
            name=name,
            address=address,
            district=district,
            lat=lat,
            lng=lng,
            precision=precision,
        )
