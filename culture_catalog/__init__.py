"""Culture Catalog - event aggregation for the Seoul metro culture guide."""

from .deduplicator import MergeResult, PerformanceDeduplicator
from .models import Performance, Precision, VenueRecord
from .pipeline import AggregationPipeline, PipelineResult
from .region import Region
from .venue_directory import VenueDirectory
from .venue_resolver import ResolverReport, VenueResolver

__version__ = "1.0.0"

__all__ = [
    "AggregationPipeline",
    "MergeResult",
    "Performance",
    "PerformanceDeduplicator",
    "PipelineResult",
    "Precision",
    "Region",
    "ResolverReport",
    "VenueDirectory",
    "VenueRecord",
    "VenueResolver",
]
