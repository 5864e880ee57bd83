"""
CLI commands for subscriber-sync.

Provides the `subscriber-sync` command-line interface for running the
service, on-demand backfills, index creation, and status checks.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from config import ConfigurationLoader, ConfigurationError, setup_logging
from core import __version__
from core.errors import ConsumerFatalError, DocumentStoreError, IndexSchemaError, StartupError
from core.models.config import GlobalSettings, ServiceConfig
from core.source.client import DocumentStoreClient
from core.storage.client import SearchIndexClient
from core.storage.schemas import IndexSchema, IndexSchemaManager
from core.sync.engine import SyncService

console = Console()
logger = logging.getLogger(__name__)

config_option = click.option(
    '--config', '-c', 'config_file',
    type=click.Path(dir_okay=False),
    default=None,
    help='JSON configuration file (environment variables still take precedence)'
)


@click.group()
@click.version_option(version=__version__, prog_name="subscriber-sync")
def main():
    """
    Subscriber Sync CLI.

    Keeps the subscriber search index in step with the document store.
    """
    load_dotenv()


def _load_config(config_file: Optional[str]) -> ServiceConfig:
    """Set up logging and load configuration, exiting 1 when it is invalid"""
    settings = GlobalSettings()
    setup_logging(settings)
    try:
        return ConfigurationLoader(settings).load(config_file)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


@main.command()
@config_option
@click.option(
    '--skip-backfill',
    is_flag=True,
    help='Start tailing the change stream without the initial backfill'
)
def run(config_file: Optional[str], skip_backfill: bool):
    """Run the sync service until interrupted."""
    config = _load_config(config_file)
    run_backfill = False if skip_backfill else None

    try:
        asyncio.run(_run_service(config, run_backfill))
    except (StartupError, ConsumerFatalError, DocumentStoreError) as e:
        logger.error(f"Sync service failed: {e}")
        sys.exit(1)

    logger.info("Sync service shut down cleanly")


async def _run_service(config: ServiceConfig, run_backfill: Optional[bool]) -> None:
    service = SyncService(config)
    loop = asyncio.get_running_loop()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, service, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal support in this loop or thread
            pass

    try:
        await service.run(run_backfill=run_backfill)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _on_signal(service: SyncService, sig: signal.Signals) -> None:
    logger.info(f"Received {sig.name}, shutting down gracefully")
    service.request_stop()


@main.command()
@config_option
@click.option(
    '--batch-size', '-b',
    type=click.IntRange(min=1),
    default=None,
    help='Documents per bulk request (default: sync.batch_size)'
)
@click.option(
    '--progress', '-p',
    is_flag=True,
    help='Show a progress bar'
)
def backfill(config_file: Optional[str], batch_size: Optional[int], progress: bool):
    """Project every existing document into the index once."""
    config = _load_config(config_file)
    service = SyncService(config)

    console.print(
        f"[blue]📚 Backfilling '{config.mongo.collection}' into '{config.opensearch.index_name}'...[/blue]"
    )
    try:
        synced = asyncio.run(service.run_backfill_only(batch_size=batch_size, show_progress=progress))
    except (StartupError, DocumentStoreError) as e:
        console.print(f"[red]❌ Backfill failed: {e}[/red]")
        sys.exit(1)

    result = service.backfill.last_result
    table = Table(title="Backfill Result")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Synced", str(synced))
    if result is not None:
        table.add_row("Documents read", str(result.total_documents))
        table.add_row("Failed", str(result.failed_documents))
        table.add_row("Skipped", str(result.skipped_documents))
        table.add_row("Failed batches", f"{result.failed_batches}/{result.total_batches}")
        table.add_row("Time", f"{result.total_time:.2f}s")
    console.print(table)

    if result is not None and (result.failed_documents or result.failed_batches):
        console.print("[yellow]⚠️  Some documents were not indexed. See the error log.[/yellow]")
    else:
        console.print("[green]🎉 Backfill completed successfully![/green]")


@main.command(name='ensure-index')
@config_option
def ensure_index(config_file: Optional[str]):
    """Create the search index if it does not exist."""
    config = _load_config(config_file)

    try:
        created = asyncio.run(_ensure_index(config))
    except StartupError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    index_name = config.opensearch.index_name
    if created:
        console.print(f"[green]✅ Created index '{index_name}'[/green]")
    else:
        console.print(f"[blue]Index '{index_name}' already exists[/blue]")


async def _ensure_index(config: ServiceConfig) -> bool:
    client = _build_index_client(config)
    if not await client.connect():
        raise StartupError(f"Search Index unavailable at {config.opensearch.url}")
    try:
        index_config = IndexSchema.get_subscriber_index_config(
            config.opensearch.index_name,
            number_of_shards=config.opensearch.number_of_shards,
            number_of_replicas=config.opensearch.number_of_replicas
        )
        return await IndexSchemaManager(client).ensure_index(config.opensearch.index_name, index_config)
    except IndexSchemaError as e:
        raise StartupError(str(e)) from e
    finally:
        await client.disconnect()


@main.command()
@config_option
def status(config_file: Optional[str]):
    """Check the document store and search index."""
    config = _load_config(config_file)

    console.print("[blue]🔍 Checking subscriber-sync status...[/blue]\n")
    rows = asyncio.run(_collect_status(config))

    table = Table(title="Subscriber Sync Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")
    for component, ok, details in rows:
        status_text = "[green]✅ OK[/green]" if ok else "[red]❌ Unavailable[/red]"
        table.add_row(component, status_text, details)
    console.print(table)

    if all(ok for _, ok, _ in rows):
        console.print("\n[green]🎉 All systems ready.[/green]")
    else:
        console.print("\n[yellow]⚠️  Some components need attention. See status above.[/yellow]")
        sys.exit(1)


async def _collect_status(config: ServiceConfig) -> List[Tuple[str, bool, str]]:
    rows: List[Tuple[str, bool, str]] = []

    store = _build_store(config)
    try:
        await store.connect()
        count = await store.count_documents()
        rows.append(("Document Store", True, f"{config.mongo.collection}: {count} documents"))
    except DocumentStoreError as e:
        rows.append(("Document Store", False, str(e)))
    finally:
        await store.disconnect()

    client = _build_index_client(config)
    index_name = config.opensearch.index_name
    if await client.connect():
        health: Dict[str, Any] = await client.health_check()
        rows.append(("Search Index", health.get("status") != "unhealthy",
                     f"{config.opensearch.url} ({health.get('cluster_status', 'unknown')})"))

        exists = await client.index_exists(index_name)
        if exists.success and exists.details.get('exists'):
            count_result = await client.count(index_name)
            rows.append(("Index", count_result.success,
                         f"{index_name}: {count_result.affected_count} documents"))
        else:
            rows.append(("Index", False, f"{index_name} missing, run 'subscriber-sync ensure-index'"))
        await client.disconnect()
    else:
        rows.append(("Search Index", False, config.opensearch.url))

    return rows


def _build_store(config: ServiceConfig) -> DocumentStoreClient:
    return DocumentStoreClient(
        uri=config.mongo.uri,
        database=config.mongo.database,
        collection=config.mongo.collection,
        server_selection_timeout_ms=config.mongo.server_selection_timeout_ms,
        max_await_time_ms=config.mongo.max_await_time_ms
    )


def _build_index_client(config: ServiceConfig) -> SearchIndexClient:
    return SearchIndexClient(
        url=config.opensearch.url,
        username=config.opensearch.username,
        password=config.opensearch.password,
        verify_certs=config.opensearch.verify_certs,
        timeout=config.opensearch.timeout
    )


if __name__ == "__main__":
    main()
