"""Configuration loading and validation for the catalog."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from .logger import get_logger

logger = get_logger(__name__)

KAKAO_API_KEY_ENV = "KAKAO_REST_API_KEY"

DEFAULT_ALWAYS_ACTIVE_GENRES = ("movie", "travel", "kids", "class")
DEFAULT_PLACEHOLDER_VENUES = ("예매하기",)
DEFAULT_BLOCKED_VENUES = ("블루마린 스쿠버 다이브", "광주 조선대학교 해오름관")
DEFAULT_DATE_KEYED_GENRES = ("travel",)


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class Source:
    """Configuration for a single listing source."""

    id: str
    name: str
    kind: str = "json"
    path: str | None = None
    url: str | None = None
    enabled: bool = True

    def __post_init__(self):
        """Apply environment variable overrides."""
        env_prefix = f"CATALOG_SOURCE_{self.id.upper().replace('-', '_')}"

        path_override = os.environ.get(f"{env_prefix}_PATH")
        if path_override:
            logger.debug(f"Overriding path for {self.id} from environment")
            self.path = path_override

        url_override = os.environ.get(f"{env_prefix}_URL")
        if url_override:
            logger.debug(f"Overriding URL for {self.id} from environment")
            self.url = url_override

        enabled_override = os.environ.get(f"{env_prefix}_ENABLED")
        if enabled_override is not None:
            self.enabled = enabled_override.lower() in ("true", "1", "yes")
            logger.debug(f"Overriding enabled for {self.id}: {self.enabled}")


@dataclass
class SourcesConfig:
    """Configuration for all listing sources, in fetch order."""

    sources: list[Source]
    base_dir: Path = field(default_factory=Path)

    def get_enabled_sources(self) -> list[Source]:
        """Return only enabled sources."""
        return [s for s in self.sources if s.enabled]

    def get_source_by_id(self, source_id: str) -> Source | None:
        """Find a source by its ID."""
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def resolve_path(self, source: Source) -> Path:
        """Snapshot paths are relative to the project root."""
        path = Path(source.path or "")
        return path if path.is_absolute() else self.base_dir / path


def load_sources_config(config_path: Path, base_dir: Path | None = None) -> SourcesConfig:
    """
    Load and validate sources configuration from YAML file.

    Args:
        config_path: Path to sources.yaml file
        base_dir: Directory that relative snapshot paths start from
            (defaults to the parent of the config directory)

    Returns:
        SourcesConfig object with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Sources config file not found: {config_path}")

    logger.info(f"Loading sources configuration from {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in sources config: {e}") from e

    if not raw_config:
        raise ConfigurationError("Sources config file is empty")

    validate_sources_config(raw_config, config_path.parent)

    raw_sources = raw_config.get("sources", [])
    if not raw_sources:
        raise ConfigurationError("No sources defined in configuration")

    sources = []
    seen_ids: set[str] = set()
    for i, raw_source in enumerate(raw_sources):
        try:
            source = _parse_source(raw_source)
        except (ConfigurationError, KeyError, TypeError, ValueError) as e:
            source_name = raw_source.get("name", f"source #{i + 1}")
            raise ConfigurationError(f"Invalid source '{source_name}': {e}") from e
        if source.id in seen_ids:
            raise ConfigurationError(f"Duplicate source id: {source.id}")
        seen_ids.add(source.id)
        sources.append(source)

    logger.info(f"Loaded {len(sources)} sources ({len([s for s in sources if s.enabled])} enabled)")

    if base_dir is None:
        base_dir = config_path.parent.parent
    return SourcesConfig(sources=sources, base_dir=Path(base_dir))


def _parse_source(raw: dict) -> Source:
    """Parse a single source from raw config."""
    for required in ["id", "name", "kind"]:
        if required not in raw:
            raise ConfigurationError(f"Missing required field: {required}")

    source = Source(
        id=raw["id"],
        name=raw["name"],
        kind=raw["kind"],
        path=raw.get("path"),
        url=raw.get("url"),
        enabled=raw.get("enabled", True),
    )

    # Checked after env overrides so an override can supply the location
    if source.kind == "json" and not source.path:
        raise ConfigurationError("json sources need a 'path'")
    if source.kind == "http" and not source.url:
        raise ConfigurationError("http sources need a 'url'")
    return source


def validate_sources_config(config: dict, config_dir: Path) -> None:
    """
    Validate configuration against JSON Schema.

    Args:
        config: Parsed configuration dictionary
        config_dir: Directory containing schema file

    Raises:
        ConfigurationError: If validation fails
    """
    schema_path = config_dir / "sources.schema.json"

    if not schema_path.exists():
        logger.warning(f"Schema file not found: {schema_path}, skipping validation")
        return

    try:
        with open(schema_path, encoding="utf-8") as f:
            schema = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON schema: {e}") from e

    try:
        jsonschema.validate(instance=config, schema=schema)
    except jsonschema.ValidationError as e:
        path = " -> ".join(str(p) for p in e.absolute_path) if e.absolute_path else "root"
        raise ConfigurationError(f"Configuration validation failed at '{path}': {e.message}") from e

    logger.debug("Configuration validated against schema")


@dataclass
class PipelineSettings:
    """Filtering and deduplication rules for the aggregation pipeline."""

    always_active_genres: frozenset[str] = frozenset(DEFAULT_ALWAYS_ACTIVE_GENRES)
    placeholder_venues: tuple[str, ...] = DEFAULT_PLACEHOLDER_VENUES
    blocked_venues: tuple[str, ...] = DEFAULT_BLOCKED_VENUES
    date_keyed_genres: frozenset[str] = frozenset(DEFAULT_DATE_KEYED_GENRES)
    max_workers: int = 5


@dataclass
class ResolverSettings:
    """Venue resolver limits and geocoding service."""

    geocoder: str = "kakao"
    max_per_run: int = 100
    min_delay: float = 1.2
    kakao_api_key: str = ""

    def __post_init__(self):
        env_key = os.environ.get(KAKAO_API_KEY_ENV)
        if env_key:
            self.kakao_api_key = env_key


@dataclass
class HttpSettings:
    """Shared HTTP client settings."""

    timeout: float = 15
    retry_count: int = 2
    retry_delay: float = 1.0
    rate_limit_delay: float = 1.0
    user_agent: str = "CultureCatalog/1.0 (metro culture guide batch)"


@dataclass
class Settings:
    """Everything config.yaml configures."""

    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    paths: dict[str, str] = field(default_factory=dict)
    logging: dict[str, Any] = field(default_factory=dict)

    def path(self, key: str, default: str) -> Path:
        return Path(self.paths.get(key, default))


def load_config(config_path: Path) -> dict:
    """Load config.yaml, returning an empty dict when it does not exist."""
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e


def load_settings(config: dict) -> Settings:
    """
    Build typed settings from the parsed config.yaml.

    Raises:
        ConfigurationError: If a section has the wrong shape
    """
    if not isinstance(config, dict):
        raise ConfigurationError("config.yaml must contain a mapping")

    try:
        raw_pipeline = config.get("pipeline") or {}
        pipeline = PipelineSettings(
            always_active_genres=frozenset(
                g.lower()
                for g in raw_pipeline.get("always_active_genres", DEFAULT_ALWAYS_ACTIVE_GENRES)
            ),
            placeholder_venues=tuple(
                raw_pipeline.get("placeholder_venues", DEFAULT_PLACEHOLDER_VENUES)
            ),
            blocked_venues=tuple(raw_pipeline.get("blocked_venues", DEFAULT_BLOCKED_VENUES)),
            date_keyed_genres=frozenset(
                g.lower()
                for g in raw_pipeline.get("date_keyed_genres", DEFAULT_DATE_KEYED_GENRES)
            ),
            max_workers=int(raw_pipeline.get("max_workers", 5)),
        )

        raw_resolver = config.get("resolver") or {}
        resolver = ResolverSettings(
            geocoder=raw_resolver.get("geocoder", "kakao"),
            max_per_run=int(raw_resolver.get("max_per_run", 100)),
            min_delay=float(raw_resolver.get("min_delay", 1.2)),
            kakao_api_key=raw_resolver.get("kakao_api_key", ""),
        )

        raw_http = config.get("http") or {}
        http = HttpSettings(
            timeout=float(raw_http.get("timeout", 15)),
            retry_count=int(raw_http.get("retry_count", 2)),
            retry_delay=float(raw_http.get("retry_delay", 1.0)),
            rate_limit_delay=float(raw_http.get("rate_limit_delay", 1.0)),
            user_agent=raw_http.get("user_agent", HttpSettings.user_agent),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid setting in config.yaml: {e}") from e

    if resolver.max_per_run < 0:
        raise ConfigurationError("resolver.max_per_run must not be negative")
    if pipeline.max_workers < 1:
        raise ConfigurationError("pipeline.max_workers must be at least 1")

    return Settings(
        pipeline=pipeline,
        resolver=resolver,
        http=http,
        paths=dict(config.get("paths") or {}),
        logging=dict(config.get("logging") or {}),
    )


def load_curated_addresses(path: Path) -> dict[str, str]:
    """
    Load the manually verified venue addresses (venue name -> address).

    A missing file means no curated addresses.

    Raises:
        ConfigurationError: If the file is not a name -> address mapping
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"No curated addresses at {path}")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must map venue names to addresses")

    addresses = {}
    for name, address in data.items():
        if not isinstance(address, str):
            raise ConfigurationError(f"Curated address for {name!r} must be a string")
        addresses[str(name)] = address.strip()
    logger.debug(f"Loaded {len(addresses)} curated addresses")
    return addresses
