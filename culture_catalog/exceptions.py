"""Exceptions raised by the aggregation pipeline and the venue resolver."""


class CatalogError(Exception):
    """Base class for catalog errors."""


class SourceUnavailable(CatalogError):
    """A source provider produced no records (fetch failure or empty payload)."""

    def __init__(self, source_id: str, reason: str = "no records"):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Source '{source_id}' unavailable: {reason}")


class UnparseableDate(CatalogError):
    """A date string matches none of the known listing formats."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"Unparseable date: {text!r}")


class UnresolvableVenue(CatalogError):
    """Every resolution strategy failed to locate a venue."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Could not locate venue: {name}")


class GeocodeServiceError(CatalogError):
    """The geocoding service timed out, errored, or returned a malformed body."""

    def __init__(self, service: str, query: str, reason: str):
        self.service = service
        self.query = query
        self.reason = reason
        super().__init__(f"{service} geocoding failed for {query!r}: {reason}")


class PersistedStoreCorrupt(CatalogError):
    """The venue directory file exists but cannot be read as a venue mapping."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Venue directory {path} is corrupt: {reason}")
