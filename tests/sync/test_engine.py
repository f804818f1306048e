"""
Tests for the workspace synchronization engine.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from core.errors import WorkspaceSyncError
from core.models.config import SyncConfig
from core.models.storage import IndexingSummary
from core.sync.engine import WorkspaceSyncEngine
from core.sync.hasher import EMPTY_HASH
from core.sync.source import InMemoryWorkspaceSource
from core.sync.tree_builder import TreeBuilder


class TestManualSync:
    """Test on-demand sync cycles"""

    @pytest.mark.asyncio
    async def test_first_sync_reports_everything_added(self, sample_files):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource(sample_files))
        assert engine.server_tree.root_hash == EMPTY_HASH

        delta = await engine.sync_once()

        assert sorted(delta.added) == ["README.md", "docs/", "src/"]
        assert set(engine.server_tree.leaves()) == set(sample_files)

    @pytest.mark.asyncio
    async def test_second_sync_is_empty(self, sample_files):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource(sample_files))
        await engine.sync_once()

        delta = await engine.sync_once()

        assert delta.is_empty
        assert delta.unchanged == 1

    @pytest.mark.asyncio
    async def test_callback_receives_delta(self):
        source = InMemoryWorkspaceSource({"a.txt": "hello", "dir/b.txt": "world"})
        engine = WorkspaceSyncEngine(source)
        await engine.sync_once()

        source.set("a.txt", "hello!")
        callback = Mock(return_value=None)
        delta = await engine.sync_once(callback)

        callback.assert_called_once_with(delta)
        assert delta.modified == ["a.txt"]
        assert delta.unchanged == 1
        assert (await engine.diff()).is_empty

    @pytest.mark.asyncio
    async def test_empty_delta_skips_callback(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource({"a.txt": "x"}))
        await engine.sync_once()

        callback = Mock()
        await engine.sync_once(callback)

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_callback(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource({"a.txt": "x"}))
        callback = AsyncMock(return_value=None)

        await engine.sync_once(callback)

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_callback_keeps_server_tree(self):
        """A raising callback leaves the retained tree where it was"""
        source = InMemoryWorkspaceSource({"a.txt": "x"})
        engine = WorkspaceSyncEngine(source)
        await engine.sync_once()
        before = engine.server_tree.root_hash

        source.set("a.txt", "y")
        with pytest.raises(RuntimeError):
            await engine.sync_once(Mock(side_effect=RuntimeError("indexer down")))

        assert engine.server_tree.root_hash == before
        assert (await engine.diff()).modified == ["a.txt"]
        assert engine.get_metrics()["callback_failures"] == 1
        assert engine.get_metrics()["last_error"] == "indexer down"

    @pytest.mark.asyncio
    async def test_failed_paths_are_retried(self):
        """Paths failed by the indexer reappear in the next delta"""
        source = InMemoryWorkspaceSource({"a.txt": "1", "b.txt": "1"})
        engine = WorkspaceSyncEngine(source)
        await engine.sync_once()

        source.set("a.txt", "2")
        source.set("b.txt", "2")
        summary = IndexingSummary(indexed_paths=["b.txt"], failures={"a.txt": "timeout"})
        await engine.sync_once(Mock(return_value=summary))

        retry = await engine.diff()
        assert retry.modified == ["a.txt"]
        assert engine.get_metrics()["paths_rebased"] == 1

    @pytest.mark.asyncio
    async def test_failed_new_file_is_retried(self):
        source = InMemoryWorkspaceSource({"a.txt": "1"})
        engine = WorkspaceSyncEngine(source)
        await engine.sync_once()

        source.set("new/b.txt", "2")
        summary = IndexingSummary(failures={"new/b.txt": "content unavailable"})
        await engine.sync_once(Mock(return_value=summary))

        retry = await engine.diff()
        assert retry.added == ["new/b.txt"]

    @pytest.mark.asyncio
    async def test_diff_does_not_commit(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource({"a.txt": "x"}))

        first = await engine.diff()
        second = await engine.diff()

        assert first.added == second.added == ["a.txt"]
        assert engine.server_tree.root_hash == EMPTY_HASH

    @pytest.mark.asyncio
    async def test_initial_tree(self):
        """A saved tree is used as the starting server state"""
        files = {"a.txt": "x", "b.txt": "y"}
        saved = TreeBuilder().build(files)
        source = InMemoryWorkspaceSource(dict(files, **{"b.txt": "changed"}))
        engine = WorkspaceSyncEngine(source, initial_tree=saved)

        delta = await engine.diff()

        assert delta.modified == ["b.txt"]
        assert delta.unchanged == 1

    @pytest.mark.asyncio
    async def test_last_snapshot(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource({"a.txt": "x"}))
        assert engine.last_snapshot is None

        await engine.sync_once()

        assert engine.last_snapshot.get("a.txt") == b"x"

    @pytest.mark.asyncio
    async def test_deletion(self):
        source = InMemoryWorkspaceSource({"a.txt": "x", "old/b.txt": "y"})
        engine = WorkspaceSyncEngine(source)
        await engine.sync_once()

        source.remove("old/")
        delta = await engine.sync_once()

        assert delta.deleted == ["old/"]
        assert "old/" not in engine.server_tree


class TestPeriodicSync:
    """Test scheduler-driven sync"""

    @pytest.mark.asyncio
    async def test_periodic_delivery_and_commit(self):
        source = InMemoryWorkspaceSource({"a.txt": "x"})
        engine = WorkspaceSyncEngine(source, SyncConfig(interval_ms=10, initial_delay_ms=0))
        received = []

        assert await engine.start(received.append) is True
        assert engine.is_running
        await asyncio.sleep(0.05)
        source.set("b.txt", "y")
        await asyncio.sleep(0.05)
        await engine.stop()

        assert not engine.is_running
        assert [d.added for d in received] == [["a.txt"], ["b.txt"]]
        assert set(engine.server_tree.leaves()) == {"a.txt", "b.txt"}

    @pytest.mark.asyncio
    async def test_failed_callback_redelivers(self):
        """A delta whose callback raised is delivered again next cycle"""
        source = InMemoryWorkspaceSource({"a.txt": "x"})
        engine = WorkspaceSyncEngine(source, SyncConfig(interval_ms=10, initial_delay_ms=0))
        attempts = []

        def flaky(delta):
            attempts.append(list(delta.added))
            if len(attempts) == 1:
                raise RuntimeError("transient")

        await engine.start(flaky)
        await asyncio.sleep(0.08)
        await engine.stop()

        assert attempts[:2] == [["a.txt"], ["a.txt"]]
        assert "a.txt" in engine.server_tree

    @pytest.mark.asyncio
    async def test_double_start(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource(), SyncConfig(interval_ms=60_000))
        assert await engine.start(Mock()) is True
        assert await engine.start(Mock()) is False
        await engine.stop()

    @pytest.mark.asyncio
    async def test_sync_once_while_running(self):
        """Manual runs go through the scheduler and reuse its callback"""
        engine = WorkspaceSyncEngine(
            InMemoryWorkspaceSource({"a.txt": "x"}), SyncConfig(interval_ms=60_000)
        )
        callback = Mock(return_value=None)
        await engine.start(callback)

        with pytest.raises(WorkspaceSyncError):
            await engine.sync_once(Mock())

        delta = await engine.sync_once()
        await engine.stop()

        assert delta.added == ["a.txt"]
        callback.assert_called_once_with(delta)
        assert "a.txt" in engine.server_tree

    @pytest.mark.asyncio
    async def test_context_manager_stops(self):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource(), SyncConfig(interval_ms=60_000))
        async with engine:
            await engine.start(Mock())
            assert engine.is_running
        assert not engine.is_running


class TestEngineMetrics:
    """Test engine metrics reporting"""

    @pytest.mark.asyncio
    async def test_metrics(self, sample_files):
        engine = WorkspaceSyncEngine(InMemoryWorkspaceSource(sample_files), SyncConfig(interval_ms=5000))
        await engine.sync_once()

        metrics = engine.get_metrics()

        assert metrics["sync_interval_ms"] == 5000
        assert metrics["node_count"] == 8
        assert metrics["tree_depth"] == 4
        assert metrics["cycles_completed"] == 1
        assert metrics["last_delta_changes"] == 3
        assert metrics["last_sync"] is not None
        assert metrics["is_running"] is False
        assert "scheduler" not in metrics
