"""Command-line interface with Rich formatting."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table
import structlog

from .config import ConfigurationError, create_example_config, load_settings
from .mapping_store import MappingStore, MappingStoreError
from .models import SyncReport, TargetKind
from .scheduler import SchedulerLoop
from .services import AuthenticationError
from .services.google import authorize_interactively
from .sync_engine import SyncEngine

console = Console()
logger = structlog.get_logger()


def setup_logging(level: str, debug: bool = False) -> None:
    """Set up structured logging."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def async_command(f):
    """Decorator to wrap async click commands."""
    @click.pass_context
    def wrapper(ctx, *args, **kwargs):
        return asyncio.run(f(ctx, *args, **kwargs))
    wrapper.__name__ = f.__name__
    wrapper.__doc__ = f.__doc__
    return wrapper


@click.group()
@click.version_option(version="1.0.0")
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Path to configuration file')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, config, debug, verbose):
    """calmirror - mirror a source calendar onto Google and CalDAV calendars."""
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config)
        if debug:
            settings.debug = True
        if verbose:
            settings.log_level = 'DEBUG'

        ctx.obj['settings'] = settings
        setup_logging(settings.log_level, settings.debug)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


def _build_engine(settings) -> SyncEngine:
    try:
        return SyncEngine.from_settings(settings)
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        console.print("Use 'calmirror config create' to generate an example configuration.")
        sys.exit(1)


async def _initialize(engine: SyncEngine) -> None:
    try:
        await engine.initialize()
    except AuthenticationError as e:
        console.print(f"[red]Startup failed: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@async_command
async def sync(ctx):
    """Run a single sync pass."""
    settings = ctx.obj['settings']
    engine = _build_engine(settings)
    await _initialize(engine)

    report = await engine.sync_calendars()
    _display_sync_results(report)
    if report.aborted or any(not t.succeeded for t in report.targets):
        sys.exit(1)


@cli.command()
@click.option('--interval', '-i', type=int,
              help='Sync interval in minutes (overrides config)')
@click.option('--max-runs', type=int,
              help='Maximum number of sync runs (default: infinite)')
@async_command
async def daemon(ctx, interval, max_runs):
    """Sync now, then keep syncing on a fixed interval."""
    settings = ctx.obj['settings']
    if interval:
        settings.sync_config.sync_interval_minutes = interval

    engine = _build_engine(settings)
    await _initialize(engine)

    sync_interval = settings.sync_config.sync_interval_minutes
    console.print(f"[green]Starting calmirror daemon[/green] - interval: {sync_interval} minutes")
    logger.info("daemon_started", interval_minutes=sync_interval, max_runs=max_runs,
                targets=[t.name for t in engine.targets])

    scheduler = SchedulerLoop(
        engine.sync_calendars,
        interval_seconds=sync_interval * 60,
        max_runs=max_runs,
        on_result=lambda report: _display_sync_results(report, compact=True),
    )
    try:
        await scheduler.run()
    except asyncio.CancelledError:
        await scheduler.stop()
        console.print("\n[yellow]Daemon stopped[/yellow]")


@cli.command()
@click.option('--host', default='0.0.0.0', help='Bind host for HTTP server')
@click.option('--port', default=8080, type=int, help='Bind port for HTTP server')
def serve(host, port):
    """Run the HTTP server with the background sync scheduler."""
    import uvicorn
    uvicorn.run("calmirror.server:create_app", factory=True, host=host, port=port, reload=False)


@cli.command()
@click.pass_context
def mappings(ctx):
    """Show the synced event mappings of every target."""
    settings = ctx.obj['settings']
    targets = settings.get_active_targets()
    if not targets:
        console.print("[yellow]No targets configured[/yellow]")
        return

    for target in targets:
        store = MappingStore(settings.mapping_file_for(target))
        try:
            store.load()
        except MappingStoreError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            continue

        table = Table(title=f"{target.name} ({len(store)} mappings, {store.path})")
        table.add_column("Source event", style="cyan")
        table.add_column("Target event", style="green")
        for mapping in store.entries():
            table.add_row(mapping.source_event_id, mapping.target_event_ref)
        console.print(table)


@cli.group()
def auth():
    """Authorization commands."""
    pass


@auth.command('google')
@click.option('--target', '-t', 'target_name', help='Target to authorize (default: the source account)')
@click.option('--port', default=0, type=int, help='Local port for the OAuth redirect (0 picks a free one)')
@click.pass_context
def auth_google(ctx, target_name, port):
    """Authorize a Google account in the browser and store its token."""
    settings = ctx.obj['settings']

    if target_name:
        matches = [t for t in settings.get_active_targets() if t.name == target_name]
        if not matches:
            console.print(f"[red]Unknown target: {target_name}[/red]")
            sys.exit(1)
        if matches[0].kind != TargetKind.GOOGLE:
            console.print(f"[red]Target {target_name} is not a Google calendar[/red]")
            sys.exit(1)
        token_path = settings.token_path_for(matches[0])
        account = target_name
    else:
        token_path = settings.resolved_source_token_path
        account = "source"

    console.print(f"Please authorize the {account} calendar account in your browser...")
    try:
        authorize_interactively(settings.google_client_secrets_file, token_path, settings.google_scopes, port=port)
    except AuthenticationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    console.print(f"[green]Token stored to {token_path}[/green]")


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command('create')
@click.option('--path', '-p', type=click.Path(), default='.env',
              help='Path for the configuration file')
@click.option('--force', '-f', is_flag=True,
              help='Overwrite existing file')
def create_config(path, force):
    """Create an example configuration file."""
    path = Path(path)
    if path.exists() and not force:
        console.print(f"[red]{path} already exists, use --force to overwrite[/red]")
        sys.exit(1)

    create_example_config(path)
    console.print(f"[green]Example configuration written to {path}[/green]")


@config.command('validate')
@click.pass_context
def validate_config(ctx):
    """Validate the current configuration."""
    settings = ctx.obj['settings']
    missing = settings.validate_required_settings()
    if missing:
        console.print("[red]Missing required configuration:[/red]")
        for field in missing:
            console.print(f"  - {escape(field)}")
        sys.exit(1)

    table = Table(title="Targets")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Calendar")
    table.add_column("Mapping file", style="dim")
    for target in settings.get_active_targets():
        table.add_row(target.name, target.kind.value, target.calendar_id, str(settings.mapping_file_for(target)))

    console.print(f"[green]Configuration is valid[/green] - source: {settings.source_calendar_id}")
    console.print(table)


def _display_sync_results(report: SyncReport, compact: bool = False) -> None:
    """Render a sync report."""
    if report.aborted:
        console.print(f"[red]Sync aborted: {escape(report.error)}[/red]")
        return

    if compact:
        for t in report.targets:
            status = "[green]ok[/green]" if t.succeeded else f"[red]{escape(t.error)}[/red]"
            console.print(
                f"{t.target}: +{t.created} ~{t.updated} -{t.deleted} "
                f"skipped {t.skipped}, failed {t.failed} ({status})"
            )
        return

    table = Table(title=f"Sync {report.sync_id} ({report.fetched} source events)")
    table.add_column("Target", style="cyan")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Mappings", justify="right")
    table.add_column("Status")
    for t in report.targets:
        table.add_row(
            t.target, str(t.created), str(t.updated), str(t.deleted),
            str(t.skipped), str(t.failed), str(t.mappings),
            "ok" if t.succeeded else escape(t.error),
        )
    console.print(table)

    failures = [r for t in report.targets for r in t.results if not r.success]
    for result in failures:
        console.print(
            f"  [red]{escape(result.target)}: {result.operation.value} "
            f"{escape(result.source_event_id)}: {escape(result.error_message or '')}[/red]"
        )


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
