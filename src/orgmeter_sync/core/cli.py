"""Command line interface for the OrgMeter sync."""

import os
import sys
import json
import logging
from typing import Any, Dict, Optional, Tuple

import click
import uvicorn

from .config import SyncSettings, get_required_env, setup_logging, load_environment
from ..engine.graph import SyncPipeline, get_engine_class, resolve_sync_order
from ..exceptions import ConfigurationError, FunderNotFoundError, OrgMeterSyncError
from ..models.sync import SyncOptions, SyncRunResult, SyncStatusFilter
from ..services.firestore import FirestoreRepository
from ..services.repository import DocumentRepository


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set the logging level')
@click.option('--env-file', type=click.Path(exists=True), help='Path to .env file')
@click.pass_context
def cli(ctx: click.Context, log_level: str, env_file: Optional[str]) -> None:
    """OrgMeter to CRM Sync Tool."""
    setup_logging(log_level)
    load_environment(env_file)
    ctx.ensure_object(dict)


def _settings(ctx: click.Context) -> SyncSettings:
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = SyncSettings.from_env()
    return ctx.obj["settings"]


def _repository(ctx: click.Context) -> DocumentRepository:
    if "repository" not in ctx.obj:
        settings = _settings(ctx)
        ctx.obj["repository"] = FirestoreRepository(settings.project_id, settings.collection_prefix)
    return ctx.obj["repository"]


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


@cli.command()
@click.argument('entity_types', nargs=-1, required=True)
@click.option('--funder', help='Funder id (defaults to ORGMETER_FUNDER_ID)')
@click.option('--dry-run', is_flag=True, help='Count the records without writing anything')
@click.option('--all/--only-selected', 'sync_all_records', default=False,
              help='Sync every record instead of only those marked for sync')
@click.option('--skip-existing', is_flag=True, help='Skip records already present in the CRM')
@click.option('--resume-from', type=int, default=0, help='Index of the first record of the first requested entity type')
@click.option('--output', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def sync(ctx: click.Context, entity_types: Tuple[str, ...], funder: Optional[str], dry_run: bool,
         sync_all_records: bool, skip_existing: bool, resume_from: int, output: str) -> None:
    """Sync ENTITY_TYPES (and the types they depend on) into the CRM."""
    try:
        settings = _settings(ctx)
        funder_id = settings.require_funder(funder)
        options = SyncOptions(
            dry_run=dry_run,
            update_existing=not skip_existing,
            only_selected=not sync_all_records,
            resume_from_index=resume_from
        )

        def on_progress(processed: int, total: int, name: str) -> None:
            logging.debug(f"[{processed}/{total}] {name}")

        pipeline = SyncPipeline(_repository(ctx), funder_id, settings.sync_user)
        results = pipeline.run(entity_types, options, on_progress)

        if output == 'json':
            click.echo(json.dumps({key: result.to_dict() for key, result in results.items()}, indent=2, default=str))
        else:
            _display_results_table(results)

    except FunderNotFoundError as e:
        _fail(f"Funder Error: {e}")
    except ConfigurationError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")


def _display_results_table(results: Dict[str, SyncRunResult]) -> None:
    click.echo(f"{'Entity':<16} {'Processed':<10} {'Synced':<8} {'Updated':<8} {'Skipped':<8} {'Failed':<8}")
    click.echo("-" * 62)
    for entity_type, result in results.items():
        stats = result.stats
        click.echo(f"{entity_type:<16} {stats.total_processed:<10} {stats.total_synced:<8} "
                   f"{stats.total_updated:<8} {stats.total_skipped:<8} {stats.total_failed:<8}")

    for entity_type, result in results.items():
        for error in result.stats.errors:
            click.echo(f"  {entity_type} {error.source_id} ({error.name}): {error.error}", err=True)


@cli.command()
@click.argument('entity_type')
@click.argument('source_ids', nargs=-1, required=True, type=int)
@click.option('--funder', help='Funder id (defaults to ORGMETER_FUNDER_ID)')
@click.pass_context
def mark(ctx: click.Context, entity_type: str, source_ids: Tuple[int, ...], funder: Optional[str]) -> None:
    """Mark OrgMeter records of ENTITY_TYPE for the next sync."""
    try:
        settings = _settings(ctx)
        funder_id = settings.require_funder(funder)
        engine = get_engine_class(entity_type)(_repository(ctx), funder_id, settings.sync_user)

        result = engine.mark_for_sync(list(source_ids))
        click.echo(result.message)

    except ConfigurationError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")


@cli.command()
@click.argument('entity_type')
@click.option('--funder', help='Funder id (defaults to ORGMETER_FUNDER_ID)')
@click.option('--page', type=int, default=1, help='Page number')
@click.option('--limit', type=int, default=20, help='Records per page')
@click.option('--search', help='Case-insensitive search text')
@click.option('--sync-status', type=click.Choice([status.value for status in SyncStatusFilter]),
              default=SyncStatusFilter.ALL.value, help='Filter by sync state')
@click.option('--output', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def status(ctx: click.Context, entity_type: str, funder: Optional[str], page: int, limit: int,
           search: Optional[str], sync_status: str, output: str) -> None:
    """Show the sync state of OrgMeter records of ENTITY_TYPE."""
    try:
        settings = _settings(ctx)
        funder_id = settings.require_funder(funder)
        engine = get_engine_class(entity_type)(_repository(ctx), funder_id, settings.sync_user)

        result = engine.get_sync_status(page=page, limit=limit, search=search, sync_status=SyncStatusFilter(sync_status))

        if output == 'json':
            click.echo(json.dumps(result.to_dict(), indent=2, default=str))
            return

        _display_status_table(result.records)
        counts = result.stats
        click.echo(f"\nPage {result.pagination.current} of {result.pagination.pages} (Total: {result.pagination.total})")
        click.echo(f"Selected: {counts.selected}  Pending: {counts.pending}  "
                   f"Synced: {counts.synced}  Ignored: {counts.ignored}  Total: {counts.total}")

    except ConfigurationError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")


def _display_status_table(records: Any) -> None:
    if not records:
        click.echo("No records found.")
        return

    click.echo(f"{'ID':<10} {'Name':<35} {'Selected':<9} {'Synced To':<25}")
    click.echo("-" * 80)
    for record in records:
        metadata = record.get("syncMetadata") or {}
        target = record.get("syncedTarget") or {}
        selected = "yes" if metadata.get("needsSync") else "no"
        click.echo(f"{str(record.get('id')):<10} {str(record.get('name'))[:35]:<35} {selected:<9} "
                   f"{str(target.get('id') or '-'):<25}")


@cli.command()
@click.argument('entity_types', nargs=-1)
def order(entity_types: Tuple[str, ...]) -> None:
    """Print the order in which entity types are synced."""
    try:
        for position, entity_type in enumerate(resolve_sync_order(entity_types or None), start=1):
            click.echo(f"{position}. {entity_type}")
    except OrgMeterSyncError as e:
        _fail(f"Configuration Error: {e}")


@cli.command()
@click.option('--host', default='0.0.0.0', help='Interface to bind')
@click.option('--port', type=int, default=lambda: int(os.getenv('PORT', '8080')), help='Port to listen on')
@click.option('--project', help='Google Cloud project (defaults to GOOGLE_CLOUD_PROJECT)')
def serve(host: str, port: int, project: Optional[str]) -> None:
    """Run the HTTP API."""
    try:
        os.environ['GOOGLE_CLOUD_PROJECT'] = project or get_required_env('GOOGLE_CLOUD_PROJECT')
    except ConfigurationError as e:
        _fail(f"Configuration Error: {e}")

    uvicorn.run("orgmeter_sync.api.app:app", host=host, port=port)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
