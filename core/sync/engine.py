"""
Workspace synchronization engine.

Coordinates one workspace: snapshots its content, builds the client Merkle
tree, diffs it against the retained server tree and hands deltas to a
callback, either once on demand or periodically through the scheduler.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .differ import TreeDiffer
from .scheduler import DeltaCallback, PeriodicSyncScheduler
from .source import WorkspaceSnapshot, WorkspaceSource
from .tree_builder import TreeBuilder
from ..errors import WorkspaceSyncError
from ..models.config import SyncConfig
from ..models.storage import IndexingSummary
from ..models.tree import MerkleTree, SyncDelta

logger = logging.getLogger(__name__)


@dataclass
class SyncEngineMetrics:
    """Counters for the synchronization engine."""
    cycles_completed: int = 0
    deltas_delivered: int = 0
    callback_failures: int = 0
    paths_rebased: int = 0
    last_delta_changes: int = 0
    last_error_message: Optional[str] = None


class WorkspaceSyncEngine:
    """
    Sync coordinator for a single workspace.

    The retained server tree only advances once a delta has been handled:
    - a callback returning an IndexingSummary has its failed paths rebased
      onto the previous tree so they show up again next cycle
    - a callback that raises leaves the server tree untouched
    - a delta dropped because the engine was stopping is never committed
    """

    def __init__(
        self,
        source: WorkspaceSource,
        config: Optional[SyncConfig] = None,
        initial_tree: Optional[MerkleTree] = None,
        builder: Optional[TreeBuilder] = None,
        differ: Optional[TreeDiffer] = None
    ):
        """
        Initialize the synchronization engine.

        Args:
            source: Provider of workspace snapshots
            config: Sync cadence and hashing settings
            initial_tree: Previously saved server tree; empty tree when None,
                so the first cycle reports every file as added
            builder: Tree builder, created from config when None
            differ: Tree differ
        """
        self.source = source
        self.config = config or SyncConfig()
        self.builder = builder or TreeBuilder(max_workers=self.config.hash_workers)
        self.differ = differ or TreeDiffer()

        self._server_tree = initial_tree or self.builder.build({})
        self._last_sync: Optional[float] = None
        self._last_snapshot: Optional[WorkspaceSnapshot] = None

        # Client tree waiting for its delta to be handled
        self._pending_tree: Optional[MerkleTree] = None

        self._callback: Optional[DeltaCallback] = None
        self._scheduler: Optional[PeriodicSyncScheduler] = None
        self._manual_lock = asyncio.Lock()

        self.metrics = SyncEngineMetrics()

    @property
    def server_tree(self) -> MerkleTree:
        """Tree describing what downstream consumers have acknowledged"""
        return self._server_tree

    @property
    def last_snapshot(self) -> Optional[WorkspaceSnapshot]:
        """Snapshot the most recent delta was computed from"""
        return self._last_snapshot

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    async def build_tree(self, snapshot: Optional[WorkspaceSnapshot] = None) -> MerkleTree:
        """Build a client tree from a snapshot, taking a fresh one if omitted"""
        if snapshot is None:
            snapshot = await self.source.snapshot()
        return await asyncio.to_thread(
            self.builder.build, snapshot.files, self._server_tree.root_path, snapshot.mtimes
        )

    async def diff(self) -> SyncDelta:
        """Compute the current delta without advancing the server tree"""
        _, delta = await self._prepare()
        return delta

    async def sync_once(self, callback: Optional[DeltaCallback] = None) -> SyncDelta:
        """
        Run one sync cycle now.

        Args:
            callback: Receives the delta if it is non-empty. Without a
                callback the delta counts as handled and the server tree
                advances directly.

        Returns:
            The computed delta

        Raises:
            WorkspaceSyncError: If the periodic scheduler's cycle failed
            Exception: Whatever the callback raises; the server tree is kept
        """
        if self.is_running:
            if callback is not None:
                raise WorkspaceSyncError("Cannot pass a callback while periodic sync is running")
            result = await self._scheduler.trigger_immediate_run()
            if not result.success:
                raise WorkspaceSyncError(result.error or "Sync cycle failed")
            return result.data

        async with self._manual_lock:
            client, delta = await self._prepare()
            if delta.is_empty or callback is None:
                self._commit(client, delta, None)
            else:
                await self._deliver(delta, client, callback)
            return delta

    async def start(self, callback: DeltaCallback) -> bool:
        """
        Start periodic sync.

        Args:
            callback: Receives every non-empty delta; may be sync or async and
                may return an IndexingSummary

        Returns:
            True if started, False if already running
        """
        if self.is_running:
            logger.warning("Workspace sync engine is already running")
            return False

        self._callback = callback
        self._scheduler = PeriodicSyncScheduler(
            self._compute_pending,
            interval_ms=self.config.interval_ms,
            initial_delay_ms=self.config.initial_delay_ms
        )
        return await self._scheduler.start(self._deliver_pending)

    async def stop(self) -> None:
        """Stop periodic sync; no callback fires after this returns"""
        if self._scheduler is not None:
            await self._scheduler.stop()
        self._pending_tree = None

    def get_metrics(self) -> Dict[str, Any]:
        """Get engine metrics."""
        metrics = {
            "sync_interval_ms": self.config.interval_ms,
            "last_sync": self._last_sync,
            "node_count": self._server_tree.node_count,
            "tree_depth": self._server_tree.depth(),
            "root_hash": self._server_tree.root_hash,
            "is_running": self.is_running,
            "cycles_completed": self.metrics.cycles_completed,
            "deltas_delivered": self.metrics.deltas_delivered,
            "callback_failures": self.metrics.callback_failures,
            "paths_rebased": self.metrics.paths_rebased,
            "last_delta_changes": self.metrics.last_delta_changes,
            "last_error": self.metrics.last_error_message,
        }
        if self._scheduler is not None:
            metrics["scheduler"] = self._scheduler.get_status()
        return metrics

    async def _prepare(self) -> Tuple[MerkleTree, SyncDelta]:
        snapshot = await self.source.snapshot()
        client = await self.build_tree(snapshot)
        delta = self.differ.diff(client, self._server_tree)
        self._last_snapshot = snapshot
        self.metrics.cycles_completed += 1
        self.metrics.last_delta_changes = delta.total_changes
        return client, delta

    async def _compute_pending(self) -> SyncDelta:
        client, delta = await self._prepare()
        if delta.is_empty:
            self._commit(client, delta, None)
        else:
            self._pending_tree = client
        return delta

    async def _deliver_pending(self, delta: SyncDelta) -> Any:
        client, self._pending_tree = self._pending_tree, None
        if client is None:
            raise WorkspaceSyncError("Delta delivered without a pending tree")
        return await self._deliver(delta, client, self._callback)

    async def _deliver(self, delta: SyncDelta, client: MerkleTree, callback: DeltaCallback) -> Any:
        try:
            result = callback(delta)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self.metrics.callback_failures += 1
            self.metrics.last_error_message = str(e)
            logger.error(f"Delta callback failed, keeping previous tree: {e}")
            raise

        self.metrics.deltas_delivered += 1
        self._commit(client, delta, result)
        return result

    def _commit(self, client: MerkleTree, delta: SyncDelta, result: Any) -> None:
        if isinstance(result, IndexingSummary) and result.failures:
            failed = result.failed_paths
            client = self.builder.rebase(client, self._server_tree, failed)
            self.metrics.paths_rebased += len(failed)
            logger.info(f"Retrying {len(failed)} failed paths next cycle")

        self._server_tree = client
        self._last_sync = time.time()
        logger.debug(
            f"Server tree advanced: {client.node_count} nodes, "
            f"{delta.total_changes} changes handled"
        )

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
