"""
CLI commands for workspace-sync.

Provides the `wsync` command-line interface for workspace initialization,
tree inspection, change detection, indexing and semantic search.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from config.loader import ConfigurationLoader
from core.embeddings.sentence_transformer import SentenceTransformerEmbedder
from core.errors import WorkspaceSyncError
from core.indexer.incremental import IncrementalIndexer
from core.indexer.pipeline import ContentPipeline
from core.models.config import EngineConfig, GlobalSettings, SyncConfig
from core.models.storage import IndexingSummary
from core.models.tree import SyncDelta
from core.search.engine import SearchQuery, SemanticSearchEngine
from core.storage.qdrant import QdrantEmbeddingStore
from core.sync.engine import WorkspaceSyncEngine
from core.sync.snapshot import SNAPSHOT_FILENAME, load_tree, save_tree
from core.sync.source import FileSystemWorkspaceSource
from workspace_sync import __version__

console = Console()
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="wsync")
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    help='Log level (default: WORKSPACE_SYNC_LOG_LEVEL or WARNING)'
)
def main(log_level: Optional[str]):
    """
    workspace-sync CLI.

    Keep an encrypted semantic index of a workspace up to date by syncing only
    what changed.
    """
    if log_level is None:
        settings = GlobalSettings()
        # Quiet unless configured explicitly
        log_level = settings.log_level if "log_level" in settings.model_fields_set else "WARNING"
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--force', '-f', is_flag=True, help='Overwrite existing configuration')
@click.option('--name', help='Workspace name (default: directory name)')
def init(path: Path, force: bool, name: Optional[str]):
    """Initialize workspace-sync for a workspace directory."""
    loader = ConfigurationLoader()

    if loader.is_initialized(path) and not force:
        console.print("[yellow]⚠️  Workspace already initialized. Use --force to overwrite.[/yellow]")
        return

    console.print("[blue]🚀 Initializing workspace-sync...[/blue]")

    try:
        config = loader.setup_workspace(path, name, overwrite=force)
    except (OSError, ValueError) as e:
        console.print(f"[red]❌ Failed to initialize workspace: {e}[/red]")
        sys.exit(1)

    console.print(f"[blue]📂 Workspace: {config.name}[/blue]")
    console.print(f"[blue]🗄️  Collection: {config.qdrant.collection_name}[/blue]")
    console.print(f"[green]✅ Created {loader.config_file_for(path)}[/green]")

    if not loader.validate_qdrant_connection(config):
        console.print(f"[yellow]⚠️  Qdrant not available at {config.qdrant.url}[/yellow]")
        console.print("   docker run -d --name qdrant -p 6333:6333 qdrant/qdrant")

    console.print("\n[blue]Next steps:[/blue]")
    console.print("1. Check for changes: [bold]wsync diff[/bold]")
    console.print("2. Index the workspace: [bold]wsync index[/bold]")
    console.print("3. Search: [bold]wsync search \"where are sessions refreshed\"[/bold]")


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--verbose', '-v', is_flag=True, help='Show detailed status information')
def status(path: Path, verbose: bool):
    """Check the status of a workspace and related services."""
    loader = ConfigurationLoader()
    config = loader.load_workspace_config(path)

    table = Table(title="Workspace Sync Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    initialized = loader.is_initialized(path)
    if initialized:
        table.add_row("Workspace Config", "[green]✅ Initialized[/green]", str(loader.config_file_for(path)))
    else:
        table.add_row("Workspace Config", "[red]❌ Not initialized[/red]", "Run 'wsync init' to initialize")

    saved_tree = asyncio.run(load_tree(_tree_file(loader, path)))
    if saved_tree is not None:
        synced = datetime.fromtimestamp(saved_tree.last_sync).isoformat(timespec='seconds')
        table.add_row("Tree Snapshot", "[green]✅ Saved[/green]", f"{saved_tree.node_count} nodes, built {synced}")
        if verbose:
            table.add_row("Root Hash", f"[yellow]{saved_tree.root_hash[:16]}[/yellow]", "SHA-256")
    else:
        table.add_row("Tree Snapshot", "[yellow]⚠️  None[/yellow]", "Run 'wsync diff --save' or 'wsync index'")

    try:
        loader.load_encryption_key(path)
        table.add_row("Encryption Key", "[green]✅ Available[/green]", "AES-256-GCM")
    except WorkspaceSyncError as e:
        table.add_row("Encryption Key", "[red]❌ Missing[/red]", str(e))

    qdrant_available = loader.validate_qdrant_connection(config)
    if qdrant_available:
        table.add_row("Qdrant Database", "[green]✅ Connected[/green]", config.qdrant.url)
    else:
        table.add_row("Qdrant Database", "[red]❌ Not available[/red]", config.qdrant.url)

    if verbose:
        table.add_row("Sync Interval", f"[yellow]{config.sync.interval_ms}ms[/yellow]", "Periodic sync cadence")
        table.add_row("Chunk Size", f"[yellow]{config.pipeline.chunk_size}[/yellow]", "Characters per chunk")
        table.add_row("Embedding Model", f"[yellow]{config.embedder.model_name}[/yellow]", f"{config.embedder.dimensions} dims")

    console.print(table)


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
def tree(path: Path):
    """Build the Merkle tree of a workspace and print its summary."""
    config = ConfigurationLoader().load_workspace_config(path)
    engine = WorkspaceSyncEngine(_create_source(config), config.sync)

    workspace_tree = asyncio.run(engine.build_tree())

    table = Table(title=f"Merkle Tree: {config.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Root hash", workspace_tree.root_hash)
    table.add_row("Nodes", str(workspace_tree.node_count))
    table.add_row("Files", str(len(workspace_tree.leaves())))
    table.add_row("Directories", str(len(workspace_tree.directories())))
    table.add_row("Depth", str(workspace_tree.depth()))
    console.print(table)


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--save', '-s', is_flag=True, help='Save the current tree as the new snapshot')
def diff(path: Path, save: bool):
    """Show what changed since the last saved snapshot."""
    loader = ConfigurationLoader()
    config = loader.load_workspace_config(path)

    try:
        delta = asyncio.run(_run_diff(loader, config, path, save))
    except WorkspaceSyncError as e:
        console.print(f"[red]❌ Diff failed: {e}[/red]")
        sys.exit(1)

    _print_delta(delta)
    if save:
        console.print("[green]✅ Snapshot saved[/green]")


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--interval-ms', type=click.IntRange(min=1), help='Sync interval (default: from config)')
def watch(path: Path, interval_ms: Optional[int]):
    """Run periodic sync and print every change set until interrupted."""
    loader = ConfigurationLoader()
    config = loader.load_workspace_config(path)
    sync_config = config.sync.model_copy(update={
        "interval_ms": interval_ms or config.sync.interval_ms,
        "initial_delay_ms": 0,
    })

    console.print(f"[blue]👀 Watching {config.path} every {sync_config.interval_ms}ms (Ctrl+C to stop)[/blue]")
    try:
        asyncio.run(_run_watch(loader, config, path, sync_config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@main.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
def index(path: Path):
    """Index changed files into Qdrant and save the new snapshot."""
    loader = ConfigurationLoader()
    config = loader.load_workspace_config(path)

    try:
        key = loader.load_encryption_key(path)
    except WorkspaceSyncError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    console.print("[blue]📚 Starting incremental indexing...[/blue]")

    try:
        delta, summary = asyncio.run(_run_indexing(loader, config, path, key))
    except WorkspaceSyncError as e:
        console.print(f"[red]❌ Indexing failed: {e}[/red]")
        sys.exit(1)

    _print_delta(delta)
    if summary is None:
        console.print("[green]✅ Index is up to date[/green]")
        return

    console.print(
        f"[green]📊 Indexed {len(summary.indexed_paths)} files "
        f"({summary.chunks_embedded} chunks), removed {len(summary.removed_prefixes)} paths[/green]"
    )
    if summary.failures:
        console.print(f"[yellow]⚠️  {len(summary.failures)} files failed and will be retried:[/yellow]")
        for failed_path, error in sorted(summary.failures.items()):
            console.print(f"   • {failed_path}: {error}")


@main.command()
@click.argument('query')
@click.option('--path', '-p', 'path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Workspace directory (default: current directory)')
@click.option('--top-k', '-k', type=click.IntRange(min=1), help='Maximum results (default: from config)')
@click.option('--threshold', '-t', type=click.FloatRange(-1.0, 1.0), help='Minimum similarity (default: from config)')
def search(query: str, path: Path, top_k: Optional[int], threshold: Optional[float]):
    """Search the indexed workspace by meaning."""
    config = ConfigurationLoader().load_workspace_config(path)
    search_query = SearchQuery(text=query, top_k=top_k, threshold=threshold)

    try:
        hits = asyncio.run(_run_search(config, search_query))
    except WorkspaceSyncError as e:
        console.print(f"[red]❌ Search failed: {e}[/red]")
        sys.exit(1)

    if not hits:
        console.print("[yellow]No matches above the similarity threshold.[/yellow]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Path", style="cyan")
    table.add_column("Score", style="green", justify="right")
    for rank, hit in enumerate(hits, start=1):
        table.add_row(str(rank), hit.path, f"{hit.score:.3f}")
    console.print(table)


async def _run_diff(loader: ConfigurationLoader, config: EngineConfig, path: Path, save: bool) -> SyncDelta:
    """Diff the workspace against its snapshot, optionally saving the new tree."""
    tree_file = _tree_file(loader, path)
    engine = WorkspaceSyncEngine(_create_source(config), config.sync, initial_tree=await load_tree(tree_file))

    if not save:
        return await engine.diff()

    delta = await engine.sync_once()
    await save_tree(engine.server_tree, tree_file)
    return delta


async def _run_watch(loader: ConfigurationLoader, config: EngineConfig, path: Path, sync_config: SyncConfig) -> None:
    """Run the periodic scheduler until cancelled."""
    engine = WorkspaceSyncEngine(
        _create_source(config), sync_config, initial_tree=await load_tree(_tree_file(loader, path))
    )

    def on_delta(delta: SyncDelta) -> None:
        console.print(f"[dim]{datetime.now().isoformat(timespec='seconds')}[/dim]")
        _print_delta(delta)

    async with engine:
        await engine.start(on_delta)
        await asyncio.Event().wait()


async def _run_indexing(
    loader: ConfigurationLoader,
    config: EngineConfig,
    path: Path,
    key: bytes
) -> Tuple[SyncDelta, Optional[IndexingSummary]]:
    """Run one sync cycle with the incremental indexer as the delta handler."""
    tree_file = _tree_file(loader, path)
    source = _create_source(config)
    engine = WorkspaceSyncEngine(source, config.sync, initial_tree=await load_tree(tree_file))
    indexer = IncrementalIndexer(
        source,
        ContentPipeline(config.pipeline),
        _create_embedder(config),
        _create_store(config),
        key,
        config.indexer
    )

    summaries = []

    async def on_delta(delta: SyncDelta) -> IndexingSummary:
        summary = await indexer.index_delta(delta, engine.last_snapshot)
        summaries.append(summary)
        return summary

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True
    ) as progress:
        progress.add_task("Syncing and indexing...", total=None)
        delta = await engine.sync_once(on_delta)

    await save_tree(engine.server_tree, tree_file)
    return delta, (summaries[0] if summaries else None)


async def _run_search(config: EngineConfig, query: SearchQuery):
    """Run one semantic search against the workspace collection."""
    engine = SemanticSearchEngine(_create_embedder(config), _create_store(config), config.search)
    return await engine.search(query)


def _create_source(config: EngineConfig) -> FileSystemWorkspaceSource:
    return FileSystemWorkspaceSource(config.path, config.workspace)


def _create_embedder(config: EngineConfig) -> SentenceTransformerEmbedder:
    return SentenceTransformerEmbedder(config.embedder)


def _create_store(config: EngineConfig) -> QdrantEmbeddingStore:
    return QdrantEmbeddingStore(config.qdrant, dimensions=config.embedder.dimensions)


def _tree_file(loader: ConfigurationLoader, path: Path) -> Path:
    return loader.state_dir_for(path) / SNAPSHOT_FILENAME


def _print_delta(delta: SyncDelta) -> None:
    """Render a delta as a table."""
    if delta.is_empty:
        console.print(f"[green]✅ No changes ({delta.unchanged} unchanged)[/green]")
        return

    table = Table(title=f"{delta.total_changes} changes")
    table.add_column("Change", style="cyan", no_wrap=True)
    table.add_column("Path", style="white")
    for label, style, paths in (
        ("added", "green", delta.added),
        ("modified", "yellow", delta.modified),
        ("deleted", "red", delta.deleted),
    ):
        for changed_path in paths:
            table.add_row(f"[{style}]{label}[/{style}]", changed_path)
    console.print(table)


if __name__ == "__main__":
    main()
