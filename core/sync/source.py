"""
Workspace content sources for sync cycles.

A source produces a path->content snapshot once per cycle. The file system
source walks a directory with os.scandir and reads files with aiofiles.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

import aiofiles

from ..models.config import WorkspaceConfig
from ..models.tree import DIRECTORY_SEPARATOR

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceSnapshot:
    """Content and metadata of a workspace at one point in time"""
    files: Dict[str, bytes] = field(default_factory=dict)
    mtimes: Dict[str, float] = field(default_factory=dict)
    scan_time: float = 0.0

    def __len__(self) -> int:
        return len(self.files)

    def get(self, path: str) -> Optional[bytes]:
        return self.files.get(path)

    def paths_under(self, prefix: str) -> List[str]:
        """File paths below a directory prefix, excluding directory markers"""
        return sorted(
            path for path in self.files
            if path.startswith(prefix) and not path.endswith(DIRECTORY_SEPARATOR)
        )


@runtime_checkable
class WorkspaceSource(Protocol):
    """Protocol for snapshot providers"""

    async def snapshot(self) -> WorkspaceSnapshot:
        """Return the current workspace state"""
        ...


class InMemoryWorkspaceSource:
    """
    Workspace held in memory.

    Useful for embedding the engine in an application that already tracks
    file content, and for tests.
    """

    def __init__(self, files: Optional[Mapping[str, Union[bytes, str]]] = None):
        self._files: Dict[str, bytes] = {}
        for path, content in (files or {}).items():
            self.set(path, content)

    def set(self, path: str, content: Union[bytes, str]) -> None:
        self._files[path] = content.encode("utf-8") if isinstance(content, str) else content

    def remove(self, path: str) -> None:
        """Remove a file, or a whole directory when ``path`` ends with the separator"""
        if path.endswith(DIRECTORY_SEPARATOR):
            for key in [key for key in self._files if key.startswith(path)]:
                del self._files[key]
        else:
            self._files.pop(path, None)

    async def snapshot(self) -> WorkspaceSnapshot:
        now = time.time()
        return WorkspaceSnapshot(
            files=dict(self._files),
            mtimes={path: now for path in self._files},
        )


class FileSystemWorkspaceSource:
    """
    Workspace backed by a directory on disk.

    Paths in the snapshot are POSIX-style and relative to the workspace root.
    Empty directories are reported as directory markers.
    """

    SKIPPED_DIRECTORIES = {
        'node_modules', '__pycache__', '.git', '.svn', '.hg',
        '.cache', '.pytest_cache', '.mypy_cache',
        'venv', '.venv', '.workspace-sync'
    }

    def __init__(self, root: Union[str, Path], config: Optional[WorkspaceConfig] = None):
        """
        Initialize file system source.

        Args:
            root: Workspace root directory
            config: Include/exclude patterns and size limits
        """
        self.root = Path(root).resolve()
        self.config = config or WorkspaceConfig()

    def _should_include(self, relative_path: str, size: int) -> bool:
        for pattern in self.config.exclude_patterns:
            if fnmatch(relative_path, pattern):
                return False
        if size > self.config.max_file_size_bytes:
            logger.debug(f"Skipping oversized file {relative_path} ({size} bytes)")
            return False
        if not self.config.include_patterns:
            return True
        name = relative_path.rsplit("/", 1)[-1]
        return any(
            fnmatch(relative_path, pattern) or fnmatch(name, pattern)
            for pattern in self.config.include_patterns
        )

    def scan(self) -> Dict[str, float]:
        """
        Walk the workspace and collect candidate paths.

        Returns:
            Mapping of relative path to mtime; empty directories map to
            their own mtime under a trailing-separator key
        """
        found: Dict[str, float] = {}

        def scan_directory(dir_path: Path, prefix: str) -> bool:
            has_entries = False
            try:
                with os.scandir(dir_path) as entries:
                    for entry in entries:
                        if entry.name in self.SKIPPED_DIRECTORIES:
                            continue
                        relative = prefix + entry.name
                        try:
                            if entry.is_dir(follow_symlinks=False):
                                if not scan_directory(Path(entry.path), relative + "/"):
                                    found[relative + "/"] = entry.stat(follow_symlinks=False).st_mtime
                                has_entries = True
                            elif entry.is_file(follow_symlinks=False):
                                stat_result = entry.stat(follow_symlinks=False)
                                if self._should_include(relative, stat_result.st_size):
                                    found[relative] = stat_result.st_mtime
                                    has_entries = True
                        except OSError as e:
                            logger.debug(f"Skipping entry {entry.name}: {e}")
            except OSError as e:
                logger.warning(f"Cannot scan directory {dir_path}: {e}")
            return has_entries

        scan_directory(self.root, "")
        return found

    async def snapshot(self) -> WorkspaceSnapshot:
        """Read every included file under the root"""
        start_time = time.perf_counter()
        found = await asyncio.to_thread(self.scan)

        snapshot = WorkspaceSnapshot()
        for relative, mtime in sorted(found.items()):
            if relative.endswith("/"):
                snapshot.files[relative] = b""
                snapshot.mtimes[relative] = mtime
                continue
            try:
                async with aiofiles.open(self.root / relative, 'rb') as f:
                    snapshot.files[relative] = await f.read()
                snapshot.mtimes[relative] = mtime
            except OSError as e:
                # File vanished or became unreadable between scan and read
                logger.warning(f"Cannot read file {relative}: {e}")

        snapshot.scan_time = time.perf_counter() - start_time
        logger.info(
            f"Workspace snapshot of {self.root}: {len(snapshot)} entries "
            f"in {snapshot.scan_time:.3f}s"
        )
        return snapshot
