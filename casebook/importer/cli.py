"""
CLI commands for the bulk client importer, registered as ``flask importer``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from casebook.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from casebook.importer.errors import ImporterError
from casebook.utils.importer import is_importer_enabled, is_worker_enabled


@click.group(name="importer")
@click.pass_context
def importer_cli(ctx):
    """Bulk client import commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )


def get_disabled_importer_group() -> click.Group:
    """Placeholder group telling the operator the importer is switched off."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _load_app(ctx):
    return ctx.ensure_object(ScriptInfo).load_app()


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def parse_mapping_option(value: str) -> dict[str, str]:
    """Parse ``COLUMN=target[:transform]``; the last ``=`` separates the column."""

    column, sep, target = value.rpartition("=")
    if not sep or not column.strip() or not target.strip():
        raise click.BadParameter(f"Expected COLUMN=target[:transform], got '{value}'.", param_hint="--mapping")
    target_field, _, transform = target.strip().partition(":")
    entry = {"source_column": column.strip(), "target_field": target_field}
    if transform:
        entry["transform"] = transform
    return entry


@importer_cli.command("upload")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--org", "organization_id", required=True, type=int, help="Tenant organization id.")
@click.option("--user", "actor_id", type=int, help="Acting user id recorded on the batch.")
@click.pass_context
def importer_upload(ctx, file_path: Path, organization_id: int, actor_id: Optional[int]):
    """Parse FILE_PATH and store it as a new import batch."""
    from casebook.importer.pipeline.service import ImportService

    app = _load_app(ctx)
    with app.app_context():
        try:
            result = ImportService().upload(organization_id, actor_id, file_path.name, file_path.read_bytes())
        except ImporterError as exc:
            raise click.ClickException(f"{exc.code}: {exc.message}") from exc

    click.echo(f"Batch {result.batch_id} created from {result.file_name} ({result.total_rows} rows).")
    for warning in result.warnings:
        click.echo(f"  warning: {warning}", err=True)
    if result.suggested_mappings:
        click.echo("Suggested mappings:")
        for suggestion in result.suggested_mappings:
            click.echo(
                f"  {suggestion['source_column']} -> {suggestion['target_field']} "
                f"({suggestion['confidence']:.2f}, {suggestion['reason']})"
            )


@importer_cli.command("execute")
@click.argument("batch_id", type=int)
@click.option("--org", "organization_id", required=True, type=int)
@click.option("--user", "actor_id", type=int)
@click.option("--mapping", "mappings", multiple=True, required=True, help="COLUMN=target[:transform]; repeatable.")
@click.option("--threshold", type=float, help="Fuzzy name-match threshold (0-1).")
@click.option(
    "--probable-action",
    type=click.Choice(["create", "update", "skip", "merge"]),
    help="Action applied to probable duplicates.",
)
@click.option("--no-duplicates", is_flag=True, help="Disable duplicate detection.")
@click.pass_context
def importer_execute(
    ctx,
    batch_id: int,
    organization_id: int,
    actor_id: Optional[int],
    mappings: tuple[str, ...],
    threshold: Optional[float],
    probable_action: Optional[str],
    no_duplicates: bool,
):
    """Execute BATCH_ID inline and print the resulting counts."""
    from casebook.importer.pipeline.service import ImportService
    from casebook.models import JobProgress, db

    mapping_payload = [parse_mapping_option(value) for value in mappings]
    settings_payload: dict = {"enabled": not no_duplicates}
    if threshold is not None:
        settings_payload["threshold"] = threshold
    if probable_action:
        settings_payload["probable_action"] = probable_action

    app = _load_app(ctx)
    with app.app_context():
        config = dict(app.config, IMPORTER_WORKER_ENABLED=False)
        try:
            handle = ImportService(config=config).execute(
                batch_id, organization_id, actor_id, mapping_payload, settings_payload
            )
        except ImporterError as exc:
            raise click.ClickException(f"{exc.code}: {exc.message}") from exc
        job = db.session.get(JobProgress, handle.job_id)
        status = job.status.value
        result = job.result_json or {}
        error = job.error_message

    click.echo(f"Batch {batch_id} job {handle.job_id}: {status}")
    if error:
        raise click.ClickException(error)
    _echo_json(result.get("counts", result))


@importer_cli.command("rollback")
@click.argument("batch_id", type=int)
@click.option("--org", "organization_id", required=True, type=int)
@click.option("--user", "actor_id", type=int)
@click.pass_context
def importer_rollback(ctx, batch_id: int, organization_id: int, actor_id: Optional[int]):
    """Reverse a completed batch while its rollback window is open."""
    from casebook.importer.pipeline.service import ImportService

    app = _load_app(ctx)
    with app.app_context():
        try:
            result = ImportService().rollback(batch_id, organization_id, actor_id=actor_id)
        except ImporterError as exc:
            raise click.ClickException(f"{exc.code}: {exc.message}") from exc

    click.echo(f"Rolled back {result.rolled_back_count} row(s) of batch {batch_id}.")
    for flagged in result.flagged:
        click.echo(f"  row {flagged['row_number']}: {flagged['reason']}", err=True)


@importer_cli.command("batches")
@click.option("--org", "organization_id", required=True, type=int)
@click.option("--status", "statuses", help="Comma-separated status filter.")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=20, show_default=True, type=int)
@click.pass_context
def importer_batches(ctx, organization_id: int, statuses: Optional[str], page: int, page_size: int):
    """List a tenant's import batches, newest first."""
    from casebook.importer.pipeline.batch_service import BatchFilters
    from casebook.importer.pipeline.service import ImportService

    try:
        filters = BatchFilters.coerce(page=page, page_size=page_size, statuses=statuses)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--status") from exc

    app = _load_app(ctx)
    with app.app_context():
        try:
            result = ImportService().list_batches(organization_id, filters)
        except ImporterError as exc:
            raise click.ClickException(f"{exc.code}: {exc.message}") from exc

    if not result.items:
        click.echo("No import batches found.")
        return
    for item in result.items:
        counts = ", ".join(f"{key}={value}" for key, value in item.counts.items())
        click.echo(f"#{item.id} {item.status:<12} {item.file_name} rows={item.total_rows} {counts}")
    click.echo(f"Page {result.page}/{result.total_pages} ({result.total} total)")


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true before running worker commands."
        )
    return celery_app


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    app = _load_app(ctx)
    if not is_worker_enabled(app):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Executions will run inline until it is enabled.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    celery_app = _resolve_celery(_load_app(ctx))
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Execute the heartbeat task through the broker."""
    celery_app = _resolve_celery(_load_app(ctx))
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")
    try:
        payload = task.apply_async().get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    _echo_json(payload)
