"""
Merkle tree construction from workspace snapshots.

Builds a complete MerkleTree from a flat path->content mapping. Leaf hashing
can run in a thread pool; directory aggregation is always sequential and
bottom-up, so the result is identical to a fully sequential build.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..errors import BuildError
from ..models.tree import DIRECTORY_SEPARATOR, FileNode, MerkleTree
from .hasher import Content, hash_content, hash_directory

logger = logging.getLogger(__name__)

SEP = DIRECTORY_SEPARATOR


def parent_path(path: str, root_path: str = "") -> str:
    """
    Get the parent directory path of a node.

    Args:
        path: File or directory path (directories end with the separator)
        root_path: Root marker of the tree

    Returns:
        Parent directory path, ``root_path`` for top-level entries
    """
    relative = path[len(root_path):]
    trimmed = relative[:-1] if relative.endswith(SEP) else relative
    index = trimmed.rfind(SEP)
    if index < 0:
        return root_path
    return root_path + trimmed[:index + 1]


def _depth(path: str) -> int:
    return path.count(SEP)


class TreeBuilder:
    """
    Construct MerkleTree snapshots from path->content mappings.

    Paths ending with the separator are explicit directory markers, every
    other key is a file. Intermediate directories are implied by prefixes.
    """

    def __init__(self, max_workers: Optional[int] = None, parallel_threshold: int = 256):
        """
        Initialize tree builder.

        Args:
            max_workers: Thread pool size for leaf hashing (None hashes inline)
            parallel_threshold: Minimum file count before the pool is used
        """
        self.max_workers = max_workers
        self.parallel_threshold = parallel_threshold

    def build(
        self,
        files: Mapping[str, Content],
        root_path: str = "",
        mtimes: Optional[Mapping[str, float]] = None
    ) -> MerkleTree:
        """
        Build a Merkle tree for a workspace snapshot.

        Args:
            files: Mapping of path to file content
            root_path: Root directory marker ("" or a path ending in "/")
            mtimes: Optional modification times, informational only

        Returns:
            Complete MerkleTree with every node hashed

        Raises:
            BuildError: If the mapping is malformed
        """
        start_time = time.perf_counter()

        if root_path and not root_path.endswith(SEP):
            raise BuildError(f"Root path must end with '{SEP}': {root_path!r}", root_path)

        file_paths, directories = self._classify(files, root_path)
        mtimes = mtimes or {}

        leaves = self._hash_leaves(
            [(path, files[path], mtimes.get(path)) for path in file_paths]
        )
        tree = self.assemble(leaves, directories, root_path)

        logger.debug(
            f"Built tree with {tree.node_count} nodes ({len(leaves)} files) "
            f"in {(time.perf_counter() - start_time) * 1000:.1f}ms"
        )
        return tree

    def assemble(
        self,
        leaves: Mapping[str, FileNode],
        directories: Iterable[str] = (),
        root_path: str = ""
    ) -> MerkleTree:
        """
        Assemble a tree from already hashed leaf nodes.

        Directories implied by leaf paths are created automatically; the
        ``directories`` argument only needs to name empty ones.

        Args:
            leaves: File nodes keyed by path
            directories: Additional directory paths to include
            root_path: Root directory marker

        Returns:
            MerkleTree with directory hashes computed bottom-up
        """
        all_dirs: Set[str] = {root_path}
        for path in list(leaves) + list(directories):
            if path == root_path:
                continue
            if path.endswith(SEP):
                all_dirs.add(path)
            current = parent_path(path, root_path)
            while current not in all_dirs:
                all_dirs.add(current)
                current = parent_path(current, root_path)

        for path in leaves:
            if path + SEP in all_dirs:
                raise BuildError(
                    f"Path is both a file and a directory: {path!r}", path
                )

        children: Dict[str, Dict[str, str]] = {directory: {} for directory in all_dirs}
        for path in list(leaves) + [d for d in all_dirs if d != root_path]:
            parent = parent_path(path, root_path)
            children[parent][path[len(parent):]] = path

        nodes: Dict[str, FileNode] = dict(leaves)
        now = time.time()
        # Deepest directories first so every child hash exists before its parent
        for directory in sorted(all_dirs, key=_depth, reverse=True):
            child_map = children[directory]
            nodes[directory] = FileNode(
                path=directory,
                hash=hash_directory({name: nodes[path].hash for name, path in child_map.items()}),
                size=0,
                last_modified=now,
                is_directory=True,
                children=child_map,
            )

        ordered = {root_path: nodes[root_path]}
        for path in sorted(nodes):
            if path != root_path:
                ordered[path] = nodes[path]

        return MerkleTree(
            root_path=root_path,
            nodes=ordered,
            node_count=len(ordered),
            last_sync=now,
        )

    def rebase(
        self,
        client: MerkleTree,
        server: MerkleTree,
        failed_paths: Iterable[str]
    ) -> MerkleTree:
        """
        Revert failed paths in a client tree to their server-side state.

        Used to retain a tree after a partially failed indexing pass: a failed
        path keeps its previous leaf (or disappears if it is new), so the next
        diff reports it again.

        Args:
            client: Tree built from current workspace content
            server: Previously retained tree
            failed_paths: File paths whose processing failed

        Returns:
            New MerkleTree combining both
        """
        failed = set(failed_paths)
        if not failed:
            return client

        leaves = dict(client.leaves())
        server_leaves = server.leaves()
        for path in failed:
            if path in server_leaves:
                leaves[path] = server_leaves[path]
            else:
                leaves.pop(path, None)

        logger.debug(f"Rebased {len(failed)} failed paths onto retained tree")
        return self.assemble(leaves, client.directories(), client.root_path)

    def _classify(self, files: Mapping[str, Content], root_path: str) -> Tuple[List[str], Set[str]]:
        """Split keys into files and explicit directories, validating each"""
        file_paths: List[str] = []
        directories: Set[str] = set()

        for path in files:
            if not isinstance(path, str):
                raise BuildError(f"Path must be a string, got {type(path).__name__}")
            if not path.startswith(root_path):
                raise BuildError(f"Path {path!r} is outside root {root_path!r}", path)
            if path == root_path:
                continue

            relative = path[len(root_path):]
            segments = relative[:-1].split(SEP) if relative.endswith(SEP) else relative.split(SEP)
            if any(segment == "" for segment in segments):
                raise BuildError(f"Path has an empty segment: {path!r}", path)

            if path.endswith(SEP):
                directories.add(path)
            else:
                file_paths.append(path)

        return file_paths, directories

    def _hash_leaves(self, entries: List[Tuple[str, Content, Optional[float]]]) -> Dict[str, FileNode]:
        def make_leaf(entry: Tuple[str, Content, Optional[float]]) -> FileNode:
            path, content, mtime = entry
            try:
                digest = hash_content(content)
            except TypeError as e:
                raise BuildError(f"Invalid content for {path!r}: {e}", path) from e
            size = len(content) if isinstance(content, bytes) else len(content.encode("utf-8"))
            return FileNode(
                path=path,
                hash=digest,
                size=size,
                last_modified=mtime if mtime is not None else time.time(),
                is_directory=False,
            )

        if self.max_workers and len(entries) >= self.parallel_threshold:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                nodes = list(pool.map(make_leaf, entries))
        else:
            nodes = [make_leaf(entry) for entry in entries]

        return {node.path: node for node in nodes}
