"""CLI entrypoint for health-export."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

import typer

from health_export.core.config import Settings, get_settings
from health_export.core.errors import HealthExportError
from health_export.core.logging import setup_logging
from health_export.data.models import DateRange
from health_export.data.parsing import extract_date_from_filename
from health_export.data.store import HealthDataStore
from health_export.query.engine import QueryEngine
from health_export.query.models import OutputFormat
from health_export.reports import (
    build_report,
    get_metrics,
    query_metric,
    run_query,
    schema_overview,
    steps_for_date,
)

app = typer.Typer(
    name="health-export",
    help="Query Health Export CSV files with a small SQL dialect",
    add_completion=False,
)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return get_settings()


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _fail(exc: Exception) -> typer.Exit:
    code = exc.code if isinstance(exc, HealthExportError) else "INVALID_ARGUMENT"
    typer.echo(f"Error [{code}]: {exc}", err=True)
    return typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
    data_dir: Path | None = typer.Option(
        None, "--data-dir", "-d", help="Directory with export files (overrides HEALTH_EXPORT_DIR)"
    ),
) -> None:
    setup_logging(level=log_level)
    if data_dir is not None:
        ctx.obj = get_settings().model_copy(update={"data_dir": data_dir})


@app.command()
def info(ctx: typer.Context) -> None:
    settings = _settings(ctx)
    typer.echo("=" * 50)
    typer.echo("Health Export - Active Configuration")
    typer.echo("=" * 50)
    typer.echo(f"Data dir: {settings.data_dir}")
    typer.echo(f"File pattern: {settings.file_prefix}*.{settings.file_extension}")
    typer.echo(f"Timezone: {settings.timezone}")
    typer.echo(f"Caching: {settings.enable_caching} (size {settings.cache_size})")
    typer.echo(f"Workers: {settings.max_workers}")
    typer.echo(f"Source name: {settings.source_name}")


@app.command()
def files(ctx: typer.Context) -> None:
    """List discovered export files with their file dates."""
    settings = _settings(ctx)
    store = HealthDataStore(settings)
    try:
        paths = store.discover_files()
    except HealthExportError as exc:
        raise _fail(exc) from exc

    for path in paths:
        try:
            day = extract_date_from_filename(
                Path(path).name, settings.file_prefix, settings.file_extension
            ).isoformat()
        except HealthExportError:
            day = "?"
        typer.echo(f"{day}  {path}")
    typer.echo(f"Files: {len(paths)}")


@app.command()
def query(
    ctx: typer.Context,
    sql: str = typer.Argument(..., help="Query, e.g. \"SELECT * FROM health_data LIMIT 5\""),
    fmt: OutputFormat = typer.Option(OutputFormat.JSON, "--format", "-f", help="json|csv|summary"),
) -> None:
    settings = _settings(ctx)
    store = HealthDataStore(settings)
    engine = QueryEngine(settings.zone)
    try:
        result = run_query(store, engine, sql, fmt)
    except HealthExportError as exc:
        raise _fail(exc) from exc
    _echo_json(result.to_dict())


@app.command()
def report(
    ctx: typer.Context,
    report_type: str = typer.Argument(..., help="daily|weekly|monthly|custom"),
    start: str | None = typer.Option(None, help="Start date for custom reports (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, help="End date for custom reports (YYYY-MM-DD)"),
    metrics: str | None = typer.Option(None, help="Comma-separated metrics to include"),
) -> None:
    store = HealthDataStore(_settings(ctx))
    try:
        result = build_report(
            store, report_type, start=start, end=end, include_metrics=_split_csv(metrics)
        )
    except (HealthExportError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo_json(result.to_dict())


@app.command()
def metric(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Metric column, e.g. \"Step Count (steps)\""),
    start: str | None = typer.Option(None, help="Start date (YYYY-MM-DD or ISO timestamp)"),
    end: str | None = typer.Option(None, help="End date (YYYY-MM-DD or ISO timestamp)"),
    aggregation: str | None = typer.Option(None, help="sum|avg|min|max|count"),
) -> None:
    store = HealthDataStore(_settings(ctx))
    try:
        payload = query_metric(store, name, start=start, end=end, aggregation=aggregation)
    except (HealthExportError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo_json(payload)


@app.command("range")
def range_(
    ctx: typer.Context,
    start: str = typer.Argument(..., help="Start date (YYYY-MM-DD or ISO timestamp)"),
    end: str = typer.Argument(..., help="End date (YYYY-MM-DD or ISO timestamp)"),
    metrics: str | None = typer.Option(None, help="Comma-separated metrics to include"),
) -> None:
    """Records between two dates, deduplicated and time ordered."""
    store = HealthDataStore(_settings(ctx))
    try:
        payload = get_metrics(store, start, end, _split_csv(metrics) or None)
    except (HealthExportError, ValueError) as exc:
        raise _fail(exc) from exc
    _echo_json(payload)


@app.command()
def steps(
    ctx: typer.Context,
    day: str = typer.Argument(..., help="Calendar day (YYYY-MM-DD)"),
) -> None:
    settings = _settings(ctx)
    store = HealthDataStore(settings)
    try:
        target = date.fromisoformat(day)
        start, end = store.day_bounds(target)
        records = store.get_data_in_range(DateRange(start, end))
    except (HealthExportError, ValueError) as exc:
        raise _fail(exc) from exc
    total = steps_for_date(records, target, settings.zone)
    _echo_json({"date": target.isoformat(), "total_steps": total})


@app.command()
def schema(ctx: typer.Context) -> None:
    """Available metrics, overall date range, samples and cache state."""
    store = HealthDataStore(_settings(ctx))
    try:
        payload = schema_overview(store)
    except HealthExportError as exc:
        raise _fail(exc) from exc
    _echo_json(payload)


if __name__ == "__main__":
    app()
