"""Data models for catalog entries and venues."""

from .performance import Performance
from .venue import Precision, VenueRecord

__all__ = ["Performance", "Precision", "VenueRecord"]
