"""Performance data model: the canonical catalog entry."""

from dataclasses import dataclass, field
from typing import Any

from ..region import Region

# Fields every source record shares; everything else is carried as extras
BASE_FIELDS = ("id", "title", "image", "date", "venue", "link", "region", "genre")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class Performance:
    """
    One bookable or attendable event in the canonical catalog.

    Built from a raw source record after its region has been resolved.
    Optional source-dependent fields (price, discount, cast, ...) are kept
    untouched in ``extras``.
    """

    id: str
    title: str
    link: str
    region: Region
    date: str = ""
    venue: str = ""
    image: str = ""
    genre: str = ""
    district: str = ""
    extras: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Performance id is required")
        if not self.title:
            raise ValueError("Performance title is required")
        if not self.link:
            raise ValueError("Performance link is required")

    @property
    def price(self) -> str:
        return _text(self.extras.get("price"))

    @property
    def has_price(self) -> bool:
        return bool(self.price)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the source record shape for output."""
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "image": self.image,
            "date": self.date,
            "venue": self.venue,
            "link": self.link,
            "region": self.region.value,
            "genre": self.genre,
        }
        if self.district:
            d["district"] = self.district
        for key, value in self.extras.items():
            d.setdefault(key, value)
        return d

    @classmethod
    def from_raw(
        cls, raw: dict[str, Any], region: Region, district: str = ""
    ) -> "Performance":
        """
        Create a Performance from a raw source record.

        Raises:
            ValueError: If id, title or link is missing or empty.
        """
        extras = {
            k: v for k, v in raw.items() if k not in BASE_FIELDS and k != "district"
        }
        return cls(
            id=_text(raw.get("id")),
            title=_text(raw.get("title")),
            link=_text(raw.get("link")),
            region=region,
            date=_text(raw.get("date")),
            venue=_text(raw.get("venue")),
            image=_text(raw.get("image")),
            genre=_text(raw.get("genre")).lower(),
            district=district,
            extras=extras,
        )
