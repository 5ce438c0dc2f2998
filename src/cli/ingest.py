"""CLI commands for market snapshot ingestion."""

import json
import logging
import sys
import time
import uuid
from typing import Any, NoReturn

import click
import structlog

from src.fetch.errors import IngestionError
from src.ingestion.service import MarketSnapshotService, build_service
from src.observability.logging import (
    bind_run_context,
    configure_logging,
    parse_log_level,
)
from src.settings.app import AppSettings, get_settings
from src.store.store import CacheEntryStore


logger = structlog.get_logger()

COMPONENT_CLI = "cli"


def _load_settings(**overrides: Any) -> AppSettings:
    """Load environment settings and apply command-line overrides."""
    settings = get_settings()
    update = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=update) if update else settings


def _setup_logging(
    settings: AppSettings, command: str, verbose: bool
) -> structlog.typing.FilteringBoundLogger:
    """Configure logging and bind the run context for one command."""
    level = logging.DEBUG if verbose else parse_log_level(settings.log_level)
    configure_logging(level=level, json_format=settings.log_json)
    bind_run_context(str(uuid.uuid4()))
    return logger.bind(component=COMPONENT_CLI, command=command)


def _echo_json(payload: dict[str, Any], err: bool = False) -> None:
    click.echo(json.dumps(payload, indent=2, default=str), err=err)


def _fail_degraded(
    service: MarketSnapshotService, error: IngestionError
) -> NoReturn:
    """Print the degraded response for a failure and exit non-zero."""
    response = service.describe_failure(error)
    _echo_json({"status": response.status_code, **response.payload}, err=True)
    service.close()
    sys.exit(1)


def _metrics_summary(service: MarketSnapshotService) -> dict[str, Any]:
    metrics = service.get_metrics()
    return metrics.model_dump(exclude={"failures_by_class", "avg_duration_ms"})


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """Market order snapshot ingestion CLI."""


@cli.command()
@click.option(
    "--db",
    "db_path",
    type=str,
    default=None,
    help="Path to the SQLite cache database (default: SQLITE_DB_PATH).",
)
@click.option(
    "--base-url",
    type=str,
    default=None,
    help="API base URL (default: ESI_BASE_URL).",
)
@click.option("--region", "region_id", type=int, default=None, help="Region ID.")
@click.option(
    "--system",
    "system_id",
    type=int,
    default=None,
    help="Keep only orders of this system; 0 keeps every system.",
)
@click.option(
    "--max-pages",
    type=click.IntRange(min=1),
    default=None,
    help="Read at most this many pages.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def snapshot(  # noqa: PLR0913
    db_path: str | None,
    base_url: str | None,
    region_id: int | None,
    system_id: int | None,
    max_pages: int | None,
    verbose: bool,
) -> None:
    """Fetch one consistent snapshot and print a JSON summary."""
    settings = _load_settings(
        sqlite_db_path=db_path,
        esi_base_url=base_url,
        market_region_id=region_id,
        market_system_id=system_id,
        market_max_pages=max_pages,
    )
    log = _setup_logging(settings, "snapshot", verbose)
    service = build_service(settings)

    log.info("snapshot_command_started", selector=service.selector.model_dump())
    try:
        result = service.fetch_snapshot()
    except IngestionError as e:
        _fail_degraded(service, e)

    _echo_json(
        {
            "item_count": result.item_count,
            "pages_fetched": result.pages_fetched,
            "last_modified": result.last_modified,
            "fetched_at": result.fetched_at.isoformat(),
            "fallback_used": result.fallback_used,
            "metrics": _metrics_summary(service),
        }
    )
    service.close()


@cli.command()
@click.option(
    "--db",
    "db_path",
    type=str,
    default=None,
    help="Path to the SQLite cache database (default: SQLITE_DB_PATH).",
)
@click.option(
    "--base-url",
    type=str,
    default=None,
    help="API base URL (default: ESI_BASE_URL).",
)
@click.option(
    "--interval-ms",
    type=int,
    default=None,
    help="Scheduler interval (default: MARKET_SNAPSHOT_INTERVAL_MS).",
)
@click.option(
    "--duration",
    type=click.FloatRange(min=0),
    default=None,
    help="Stop after this many seconds instead of waiting for Ctrl-C.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def watch(
    db_path: str | None,
    base_url: str | None,
    interval_ms: int | None,
    duration: float | None,
    verbose: bool,
) -> None:
    """Publish snapshots in the background until interrupted."""
    settings = _load_settings(
        sqlite_db_path=db_path,
        esi_base_url=base_url,
        market_snapshot_interval_ms=interval_ms,
    )
    log = _setup_logging(settings, "watch", verbose)
    service = build_service(settings)
    service.start()

    deadline = None if duration is None else time.monotonic() + duration
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        log.info("watch_interrupted")
    finally:
        service.close(timeout=settings.esi_timeout_seconds)

    _echo_json(
        {
            "status": service.snapshot_status().model_dump(mode="json"),
            "metrics": _metrics_summary(service),
        }
    )


@cli.command()
@click.argument("type_ids", nargs=-1, required=True, type=int)
@click.option(
    "--db",
    "db_path",
    type=str,
    default=None,
    help="Path to the SQLite cache database (default: SQLITE_DB_PATH).",
)
@click.option(
    "--base-url",
    type=str,
    default=None,
    help="API base URL (default: ESI_BASE_URL).",
)
@click.option("--region", "region_id", type=int, default=None, help="Region ID.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def history(
    type_ids: tuple[int, ...],
    db_path: str | None,
    base_url: str | None,
    region_id: int | None,
    verbose: bool,
) -> None:
    """Print daily price history for one or more item types."""
    settings = _load_settings(
        sqlite_db_path=db_path,
        esi_base_url=base_url,
        market_region_id=region_id,
    )
    _setup_logging(settings, "history", verbose)
    service = build_service(settings)

    try:
        rows = service.fetch_price_history(list(type_ids))
    except IngestionError as e:
        _fail_degraded(service, e)

    _echo_json(
        {
            str(type_id): [row.model_dump() for row in type_rows]
            for type_id, type_rows in rows.items()
        }
    )
    service.close()


@cli.command("cache-stats")
@click.option(
    "--db",
    "db_path",
    type=str,
    default=None,
    help="Path to the SQLite cache database (default: SQLITE_DB_PATH).",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
def cache_stats(db_path: str | None, json_output: bool) -> None:
    """Display conditional-request cache statistics."""
    settings = _load_settings(sqlite_db_path=db_path)
    configure_logging(json_format=False, level=logging.WARNING)

    with CacheEntryStore(settings.sqlite_db_path) as store:
        output = {
            "db_path": store.db_path,
            "schema_version": store.get_schema_version(),
            "entries": store.count(),
        }

    if json_output:
        _echo_json(output)
        return

    click.echo("Cache Database Statistics")
    click.echo("=" * 40)
    click.echo(f"  Path: {output['db_path']}")
    click.echo(f"  Schema Version: {output['schema_version']}")
    click.echo(f"  Entries: {output['entries']}")

