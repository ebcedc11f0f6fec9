#!/usr/bin/env python3
"""
Culture Catalog
===============

Command-line interface for building the metro culture catalog.

Usage:
    python catalog.py run                       # Aggregate all enabled sources
    python catalog.py run --dry-run             # Preview without writing files
    python catalog.py resolve-venues            # Locate venues of the last catalog
    python catalog.py resolve-venues --limit 20 # Cap network lookups for this run
    python catalog.py list-sources              # List configured sources
    python catalog.py validate                  # Check configuration
    python catalog.py status                    # Show last run results
"""

import json
import sys
from datetime import datetime
from pathlib import Path

import click
import yaml

from culture_catalog.activity import SEOUL_TZ
from culture_catalog.config import (
    ConfigurationError,
    Settings,
    load_config,
    load_curated_addresses,
    load_settings,
    load_sources_config,
    validate_sources_config,
)
from culture_catalog.exceptions import PersistedStoreCorrupt
from culture_catalog.geocoder import build_geocoders
from culture_catalog.logger import get_logger, setup_logging
from culture_catalog.pipeline import (
    AggregationPipeline,
    PipelineResult,
    load_catalog,
    save_catalog,
)
from culture_catalog.providers import PROVIDERS, build_providers, fetch_all
from culture_catalog.utils import HTTPClient
from culture_catalog.venue_directory import VenueDirectory
from culture_catalog.venue_resolver import VenueResolver, collect_venue_links

# Status file for tracking run results
STATUS_FILE = ".catalog_status.json"

DEFAULT_PATHS = {
    "sources_file": "config/sources.yaml",
    "venues_file": "data/venues.json",
    "curated_file": "data/curated-addresses.yaml",
    "output_file": "output/performances.json",
}

logger = get_logger("culture_catalog.cli")


def setup_logging_from_config(
    settings: Settings,
    config_dir: Path,
    log_level_override: str | None = None,
    log_file_override: Path | None = None,
) -> None:
    """Configure logging based on config file and CLI overrides."""
    logging_cfg = settings.logging

    effective_log_level = log_level_override or logging_cfg.get("log_level", "INFO")
    effective_log_file = log_file_override or logging_cfg.get("log_file")
    log_dir = config_dir if effective_log_file else None

    setup_logging(
        level=effective_log_level,
        log_file=str(effective_log_file) if effective_log_file else None,
        log_dir=log_dir,
        log_format=logging_cfg.get("log_format", "text"),
        max_bytes=logging_cfg.get("max_file_size", 5 * 1024 * 1024),
        backup_count=logging_cfg.get("backup_count", 3),
    )


def resolve_path(ctx, key: str) -> Path:
    settings: Settings = ctx.obj["settings"]
    return ctx.obj["config_dir"] / settings.path(key, DEFAULT_PATHS[key])


def make_http_client(settings: Settings) -> HTTPClient:
    http_cfg = settings.http
    return HTTPClient(
        timeout=http_cfg.timeout,
        retry_count=http_cfg.retry_count,
        retry_delay=http_cfg.retry_delay,
        rate_limit_delay=http_cfg.rate_limit_delay,
        user_agent=http_cfg.user_agent,
    )


def save_status(config_dir: Path, section: str, status: dict) -> None:
    """Save one command's results to the status file, keeping the others."""
    status_path = config_dir / STATUS_FILE
    data = load_status(config_dir) or {}
    status["timestamp"] = datetime.now(SEOUL_TZ).isoformat()
    data[section] = status
    with open(status_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_status(config_dir: Path) -> dict | None:
    """Load last run status from file."""
    status_path = config_dir / STATUS_FILE
    if not status_path.exists():
        return None
    try:
        with open(status_path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring unreadable status file: {status_path}")
        return None


def load_directory(path: Path) -> VenueDirectory:
    """Open the venue directory, exiting on a corrupt file."""
    try:
        return VenueDirectory(path)
    except PersistedStoreCorrupt as e:
        logger.critical(str(e))
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


def aggregate(ctx, now: datetime, concurrency: int | None) -> tuple[PipelineResult, dict, VenueDirectory]:
    """Fetch every enabled source and run the pipeline."""
    settings: Settings = ctx.obj["settings"]

    try:
        sources_config = load_sources_config(resolve_path(ctx, "sources_file"), ctx.obj["config_dir"])
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    directory = load_directory(resolve_path(ctx, "venues_file"))

    with make_http_client(settings) as http_client:
        providers = build_providers(sources_config, http_client)
        batches = fetch_all(providers, max_workers=concurrency or settings.pipeline.max_workers)

    pipeline = AggregationPipeline(settings.pipeline, directory.snapshot())
    return pipeline.run(batches, now), batches, directory


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=Path(__file__).parent / "config.yaml",
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default=None,
    help="Override log level from config",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path from config",
)
@click.version_option(version="1.0.0", prog_name="culture-catalog")
@click.pass_context
def cli(ctx, config: Path, log_level: str | None, log_file: Path | None):
    """
    Culture Catalog - Aggregate performances across Seoul, Gyeonggi and Incheon.

    Reads the listing snapshots of every configured source, merges them
    into one deduplicated catalog, and locates the venues on a map.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["config_dir"] = config.parent
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file

    try:
        ctx.obj["config"] = load_config(config)
        ctx.obj["settings"] = load_settings(ctx.obj["config"])
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--dry-run",
    "-n",
    is_flag=True,
    default=False,
    help="Preview without writing the catalog",
)
@click.option(
    "--now",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M"]),
    default=None,
    help="Reference time for the activity filter (Asia/Seoul, default: now)",
)
@click.option(
    "--concurrency",
    type=int,
    default=None,
    help="Max concurrent source fetches (default from config)",
)
@click.pass_context
def run(ctx, dry_run: bool, now: datetime | None, concurrency: int | None):
    """
    Fetch every enabled source and rebuild the catalog.

    Unavailable sources are skipped with a warning; the others still make
    it into the catalog.
    """
    settings: Settings = ctx.obj["settings"]
    config_dir = ctx.obj["config_dir"]
    setup_logging_from_config(settings, config_dir, ctx.obj["log_level"], ctx.obj["log_file"])

    now = now.replace(tzinfo=SEOUL_TZ) if now else datetime.now(SEOUL_TZ)
    logger.info(f"Culture Catalog run starting (now={now.isoformat()})")

    if dry_run:
        click.echo(click.style("DRY RUN MODE - No files will be written", fg="yellow"))

    result, batches, _ = aggregate(ctx, now, concurrency)

    sources_total = len(batches)
    sources_ok = sum(1 for records in batches.values() if records)
    output_file = resolve_path(ctx, "output_file")

    if not dry_run:
        save_catalog(result.performances, output_file)

    click.echo("\n" + "=" * 50)
    click.echo(click.style("RUN SUMMARY", bold=True))
    click.echo("=" * 50)
    click.echo(f"  Sources with data:  {sources_ok}/{sources_total}")
    for source_id, records in batches.items():
        marker = click.style("ok", fg="green") if records else click.style("empty", fg="yellow")
        click.echo(f"    {source_id:<20} {len(records):>5}  {marker}")
    stats = result.stats
    click.echo(f"  Records in:         {stats['input']}")
    click.echo(f"  Dropped invalid:    {stats['invalid']}")
    click.echo(f"  Dropped inactive:   {stats['inactive']}")
    click.echo(f"  Out of region:      {stats['out_of_region']}")
    click.echo(f"  Excluded venues:    {stats['excluded_venue']}")
    click.echo(f"  Duplicates:         {stats['duplicates']}")
    click.echo(f"  Performances out:   {stats['output']}")
    click.echo("=" * 50)

    if dry_run:
        click.echo(click.style("\nDRY RUN - No files were written", fg="yellow"))
    else:
        click.echo(f"\nCatalog written to {output_file}")

    save_status(
        config_dir,
        "run",
        {
            "sources_ok": sources_ok,
            "sources_total": sources_total,
            "stats": stats,
            "dry_run": dry_run,
        },
    )

    # Every source empty means nothing was aggregated
    sys.exit(1 if sources_total and sources_ok == 0 else 0)


@cli.command("resolve-venues")
@click.option(
    "--limit",
    type=int,
    default=None,
    help="Max venues sent through network lookups (default from config)",
)
@click.option(
    "--dry-run",
    "-n",
    is_flag=True,
    default=False,
    help="Resolve without saving the venue directory",
)
@click.option(
    "--geocoder",
    type=click.Choice(["kakao", "nominatim"]),
    default=None,
    help="Geocoding service (default from config)",
)
@click.option(
    "--fresh",
    is_flag=True,
    default=False,
    help="Rebuild the catalog from sources instead of reading the last output",
)
@click.pass_context
def resolve_venues(ctx, limit: int | None, dry_run: bool, geocoder: str | None, fresh: bool):
    """
    Locate the venues referenced by the catalog.

    Venues already located precisely are skipped. Each run improves the
    rest, up to the per-run cap.
    """
    settings: Settings = ctx.obj["settings"]
    config_dir = ctx.obj["config_dir"]
    setup_logging_from_config(settings, config_dir, ctx.obj["log_level"], ctx.obj["log_file"])

    output_file = resolve_path(ctx, "output_file")
    if fresh or not output_file.exists():
        logger.info("Building catalog from sources")
        result, _, directory = aggregate(ctx, datetime.now(SEOUL_TZ), None)
        venues = collect_venue_links(result.performances)
    else:
        try:
            venues = collect_venue_links(load_catalog(output_file))
        except ValueError as e:
            logger.error(f"Cannot read catalog {output_file}: {e}")
            sys.exit(1)
        directory = load_directory(resolve_path(ctx, "venues_file"))

    try:
        curated = load_curated_addresses(resolve_path(ctx, "curated_file"))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if dry_run:
        click.echo(click.style("DRY RUN MODE - Venue directory will not be saved", fg="yellow"))

    service = geocoder or settings.resolver.geocoder
    with make_http_client(settings) as http_client:
        try:
            address_geocoder, keyword_geocoder = build_geocoders(
                http_client, service, settings.resolver.kakao_api_key
            )
        except ValueError as e:
            logger.error(f"Geocoder unavailable: {e}")
            sys.exit(1)

        resolver = VenueResolver(
            directory,
            address_geocoder,
            keyword_geocoder,
            http_client,
            curated_addresses=curated,
            max_per_run=settings.resolver.max_per_run,
            min_delay=settings.resolver.min_delay,
        )
        report = resolver.run(venues, limit=limit, dry_run=dry_run)

    click.echo("\n" + "=" * 50)
    click.echo(click.style("RESOLVER SUMMARY", bold=True))
    click.echo("=" * 50)
    click.echo(f"  Venues referenced:  {report.referenced}")
    click.echo(f"  Centroids assigned: {report.centroid_assigned}")
    click.echo(f"  Processed:          {report.processed}")
    click.echo(f"  Upgraded:           {report.upgraded}")
    click.echo(f"  Unresolved:         {report.unresolved}")
    click.echo(f"  Failed:             {report.failed}")
    click.echo(f"  Already resolved:   {report.skipped}")
    click.echo(f"  Deferred (cap):     {report.deferred}")
    click.echo("=" * 50)

    stats = directory.get_stats()
    click.echo(
        "  Directory: "
        + ", ".join(f"{key} {value}" for key, value in stats.items())
    )

    save_status(config_dir, "resolve", {**report.to_dict(), "dry_run": dry_run})


@cli.command("list-sources")
@click.pass_context
def list_sources(ctx):
    """
    List all configured sources.

    Shows source ID, name, kind and enabled status for each source.
    """
    try:
        sources_config = load_sources_config(resolve_path(ctx, "sources_file"), ctx.obj["config_dir"])
    except ConfigurationError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\nConfigured sources:")
    click.echo("-" * 70)
    click.echo(f"{'ID':<20} {'NAME':<30} {'STATUS':<10} {'KIND':<8}")
    click.echo("-" * 70)

    for src in sources_config.sources:
        status = (
            click.style("enabled", fg="green")
            if src.enabled
            else click.style("disabled", fg="red")
        )
        click.echo(f"{src.id:<20} {src.name:<30} {status:<19} {src.kind:<8}")

    click.echo("-" * 70)
    enabled_count = len(sources_config.get_enabled_sources())
    total_count = len(sources_config.sources)
    click.echo(f"Total: {total_count} sources ({enabled_count} enabled)")


@cli.command()
@click.pass_context
def validate(ctx):
    """
    Validate configuration and data files.

    Checks config.yaml, sources.yaml, the curated addresses and the venue
    directory. Reports any problems found.
    """
    cfg = ctx.obj["config"]
    config_path = ctx.obj["config_path"]
    settings: Settings = ctx.obj["settings"]

    errors = []
    warnings = []

    click.echo("\nValidating configuration files...\n")

    # 1. Main config.yaml
    click.echo(f"  Checking {config_path.name}...")
    for key in ["paths", "pipeline", "resolver", "http", "logging"]:
        if key not in cfg:
            warnings.append(f"Missing recommended key in config.yaml: {key}")
    click.echo(click.style("    ✓ config.yaml is valid", fg="green"))

    # 2. sources.yaml
    sources_file = resolve_path(ctx, "sources_file")
    click.echo(f"  Checking {sources_file.name}...")
    if not sources_file.exists():
        errors.append(f"Sources file not found: {sources_file}")
    else:
        try:
            with open(sources_file, encoding="utf-8") as f:
                sources_cfg = yaml.safe_load(f) or {}
            try:
                validate_sources_config(sources_cfg, sources_file.parent)
                click.echo(click.style("    ✓ sources.yaml is valid", fg="green"))
            except ConfigurationError as e:
                errors.append(f"Sources validation error: {e}")

            for source in sources_cfg.get("sources", []):
                kind = source.get("kind")
                if kind and kind not in PROVIDERS:
                    warnings.append(f"Unknown kind '{kind}' for source '{source.get('id')}'")
        except yaml.YAMLError as e:
            errors.append(f"Invalid YAML in sources.yaml: {e}")

    # 3. Curated addresses
    curated_file = resolve_path(ctx, "curated_file")
    click.echo(f"  Checking {curated_file.name}...")
    if not curated_file.exists():
        warnings.append(f"Curated addresses file not found: {curated_file}")
    else:
        try:
            curated = load_curated_addresses(curated_file)
            click.echo(click.style(f"    ✓ {len(curated)} curated addresses", fg="green"))
        except ConfigurationError as e:
            errors.append(str(e))

    # 4. Venue directory
    venues_file = resolve_path(ctx, "venues_file")
    click.echo(f"  Checking {venues_file.name}...")
    try:
        directory = VenueDirectory(venues_file)
        click.echo(click.style(f"    ✓ {len(directory)} venues", fg="green"))
    except PersistedStoreCorrupt as e:
        errors.append(str(e))

    # 5. Geocoding credentials
    if settings.resolver.geocoder == "kakao" and not settings.resolver.kakao_api_key:
        warnings.append("KAKAO_REST_API_KEY is not set; resolve-venues needs it for kakao")

    click.echo("\n" + "=" * 50)
    if errors:
        click.echo(click.style("VALIDATION FAILED", fg="red", bold=True))
        click.echo("=" * 50)
        click.echo("\nErrors:")
        for error in errors:
            click.echo(click.style(f"  ✗ {error}", fg="red"))
    else:
        click.echo(click.style("VALIDATION PASSED", fg="green", bold=True))
        click.echo("=" * 50)

    if warnings:
        click.echo("\nWarnings:")
        for warning in warnings:
            click.echo(click.style(f"  ! {warning}", fg="yellow"))

    click.echo()

    sys.exit(1 if errors else 0)


@cli.command()
@click.pass_context
def status(ctx):
    """
    Show the results of the last runs.
    """
    status_data = load_status(ctx.obj["config_dir"])

    if not status_data:
        click.echo("No previous run status found.")
        click.echo("Run 'python catalog.py run' to build the catalog.")
        return

    click.echo("\n" + "=" * 50)
    click.echo(click.style("LAST RUN STATUS", bold=True))
    click.echo("=" * 50)

    run_status = status_data.get("run")
    if run_status:
        stats = run_status.get("stats", {})
        click.echo(f"  Timestamp:          {run_status.get('timestamp', 'Unknown')}")
        click.echo(
            f"  Sources with data:  {run_status.get('sources_ok', 0)}/{run_status.get('sources_total', 0)}"
        )
        click.echo(f"  Performances:       {stats.get('output', 0)}")
        if run_status.get("dry_run"):
            click.echo(click.style("  Mode:               DRY RUN", fg="yellow"))
    else:
        click.echo("  No aggregation run recorded.")

    resolve_status = status_data.get("resolve")
    if resolve_status:
        click.echo("-" * 50)
        click.echo(f"  Resolver run:       {resolve_status.get('timestamp', 'Unknown')}")
        click.echo(f"  Processed:          {resolve_status.get('processed', 0)}")
        click.echo(f"  Upgraded:           {resolve_status.get('upgraded', 0)}")
        failed = resolve_status.get("failed", 0)
        if failed:
            click.echo(click.style(f"  Failed:             {failed}", fg="red"))

    click.echo("=" * 50)


if __name__ == "__main__":
    cli()
