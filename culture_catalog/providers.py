"""Source providers: uniform access to the listing snapshots of each site.

Site-specific scrapers write their listings as JSON arrays of raw
records. A provider returns one source's array; fetch_all() runs every
provider concurrently and collects the results in configured order.
"""

import json
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

import httpx

from .config import Source, SourcesConfig
from .exceptions import SourceUnavailable
from .logger import get_logger
from .utils.http import HTTPClient, SSRFError

logger = get_logger(__name__)

RawRecord = dict[str, Any]


class SourceProvider(ABC):
    """
    Abstract base class for source providers.

    Subclasses implement fetch() and raise SourceUnavailable when the
    source cannot be read. Callers treat an unavailable source as empty.
    """

    def __init__(self, source: Source):
        self.source = source

    @property
    def source_id(self) -> str:
        return self.source.id

    @abstractmethod
    def fetch(self) -> list[RawRecord]:
        """
        Return the source's raw records.

        Raises:
            SourceUnavailable: If the source cannot be read
        """

    def _check_records(self, payload: Any) -> list[RawRecord]:
        if not isinstance(payload, list):
            raise SourceUnavailable(
                self.source_id, f"expected a JSON array, got {type(payload).__name__}"
            )
        records = [r for r in payload if isinstance(r, dict)]
        if len(records) != len(payload):
            logger.warning(
                f"[{self.source_id}] ignored {len(payload) - len(records)} non-object entries"
            )
        return records


class JsonFileProvider(SourceProvider):
    """Reads a snapshot file written by the site's scraper."""

    def __init__(self, source: Source, path: Path | str | None = None):
        super().__init__(source)
        self.path = Path(path if path is not None else source.path or "")

    def fetch(self) -> list[RawRecord]:
        if not self.path.exists():
            raise SourceUnavailable(self.source_id, f"file not found: {self.path}")
        try:
            with open(self.path, encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SourceUnavailable(self.source_id, f"unreadable {self.path}: {e}") from e
        return self._check_records(payload)


class HttpJsonProvider(SourceProvider):
    """Fetches a snapshot published over HTTP."""

    def __init__(self, source: Source, http_client: HTTPClient):
        super().__init__(source)
        self.http_client = http_client

    def fetch(self) -> list[RawRecord]:
        if not self.source.url:
            raise SourceUnavailable(self.source_id, "no url configured")
        try:
            payload = self.http_client.get_json(self.source.url, rate_key=self.source_id)
        except (httpx.HTTPError, SSRFError, ValueError) as e:
            raise SourceUnavailable(self.source_id, str(e)) from e
        return self._check_records(payload)


PROVIDERS = {
    "json": JsonFileProvider,
    "http": HttpJsonProvider,
}


def get_provider(kind: str):
    """
    Get provider class by kind.

    Args:
        kind: Provider kind (e.g., 'json', 'http')

    Returns:
        Provider class

    Raises:
        ValueError: If the kind is not registered
    """
    provider_class = PROVIDERS.get(kind.lower())
    if not provider_class:
        available = ", ".join(PROVIDERS.keys())
        raise ValueError(f"Unknown provider kind: {kind}. Available: {available}")
    return provider_class


def list_providers() -> list[str]:
    return list(PROVIDERS.keys())


def build_providers(
    config: SourcesConfig, http_client: HTTPClient | None = None
) -> list[SourceProvider]:
    """Instantiate a provider for every enabled source, in configured order."""
    providers: list[SourceProvider] = []
    for source in config.get_enabled_sources():
        provider_class = get_provider(source.kind)
        if provider_class is HttpJsonProvider:
            if http_client is None:
                raise ValueError(f"Source {source.id} needs an HTTP client")
            providers.append(HttpJsonProvider(source, http_client))
        else:
            providers.append(provider_class(source, config.resolve_path(source)))
    return providers


def _fetch_one(provider: SourceProvider) -> list[RawRecord]:
    records = provider.fetch()
    if not records:
        raise SourceUnavailable(provider.source_id)
    return records


def fetch_all(
    providers: list[SourceProvider], max_workers: int = 5
) -> dict[str, list[RawRecord]]:
    """
    Fetch every source concurrently.

    All branches are awaited. A branch that fails or returns nothing
    contributes an empty list and is logged; it never aborts the others.

    Returns:
        source_id -> records, in the order of ``providers`` (not in
        completion order)
    """
    results: dict[str, list[RawRecord]] = {p.source_id: [] for p in providers}
    if not providers:
        return results

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_to_provider = {
            executor.submit(_fetch_one, provider): provider for provider in providers
        }
        for future in as_completed(future_to_provider):
            provider = future_to_provider[future]
            try:
                results[provider.source_id] = future.result()
            except SourceUnavailable as e:
                logger.warning(str(e), extra={"source_id": provider.source_id})
            except Exception as e:
                logger.warning(
                    str(SourceUnavailable(provider.source_id, repr(e))),
                    extra={"source_id": provider.source_id},
                )
            else:
                logger.info(
                    f"[{provider.source_id}] {len(results[provider.source_id])} records"
                )

    return results
