"""
Merkle tree data models for workspace synchronization.

Trees are stored as an arena: a flat mapping from path to node, where
directory nodes reference their children by path instead of owning them.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


DIRECTORY_SEPARATOR = "/"


@dataclass(frozen=True)
class FileNode:
    """A single file or directory in a Merkle tree"""
    path: str
    hash: str
    size: int = 0
    last_modified: float = 0.0  # Informational only, never hashed
    is_directory: bool = False
    children: Optional[Dict[str, str]] = None  # child name -> child path

    @property
    def name(self) -> str:
        """Last path segment (directories keep their trailing separator)"""
        trimmed = self.path[:-1] if self.is_directory and self.path else self.path
        name = trimmed.rsplit(DIRECTORY_SEPARATOR, 1)[-1]
        return name + DIRECTORY_SEPARATOR if self.is_directory and name else name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = {
            "path": self.path,
            "hash": self.hash,
            "size": self.size,
            "last_modified": self.last_modified,
            "is_directory": self.is_directory,
        }
        if self.children is not None:
            data["children"] = dict(self.children)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileNode':
        """Create from dictionary (JSON deserialization)"""
        children = data.get("children")
        return cls(
            path=data["path"],
            hash=data["hash"],
            size=int(data.get("size", 0)),
            last_modified=float(data.get("last_modified", 0.0)),
            is_directory=bool(data.get("is_directory", False)),
            children=dict(children) if children is not None else None,
        )


@dataclass(frozen=True)
class MerkleTree:
    """
    Immutable snapshot of a workspace as a Merkle tree.

    A new sync cycle always builds a fresh tree, so a differ comparing two
    trees always sees two complete, consistent snapshots.
    """
    root_path: str
    nodes: Dict[str, FileNode]
    node_count: int
    last_sync: float = field(default_factory=time.time)

    @property
    def root(self) -> FileNode:
        return self.nodes[self.root_path]

    @property
    def root_hash(self) -> str:
        return self.root.hash

    def get(self, path: str) -> Optional[FileNode]:
        return self.nodes.get(path)

    def __contains__(self, path: str) -> bool:
        return path in self.nodes

    def children_of(self, node: FileNode) -> Dict[str, FileNode]:
        """Resolve a directory's children from the arena"""
        if not node.children:
            return {}
        return {name: self.nodes[child_path] for name, child_path in node.children.items()}

    def leaves(self) -> Dict[str, FileNode]:
        """All file nodes keyed by path"""
        return {path: node for path, node in self.nodes.items() if not node.is_directory}

    def directories(self) -> List[str]:
        return [path for path, node in self.nodes.items() if node.is_directory]

    def depth(self) -> int:
        """Depth of the tree, counting the root as level 1"""
        max_depth = 0
        stack = [(self.root_path, 1)]
        while stack:
            path, level = stack.pop()
            max_depth = max(max_depth, level)
            node = self.nodes[path]
            if node.children:
                stack.extend((child, level + 1) for child in node.children.values())
        return max_depth

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_path": self.root_path,
            "node_count": self.node_count,
            "last_sync": self.last_sync,
            "nodes": [node.to_dict() for node in self.nodes.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleTree':
        nodes = {}
        for node_data in data["nodes"]:
            node = FileNode.from_dict(node_data)
            nodes[node.path] = node
        return cls(
            root_path=data["root_path"],
            nodes=nodes,
            node_count=int(data.get("node_count", len(nodes))),
            last_sync=float(data.get("last_sync", 0.0)),
        )


@dataclass
class SyncDelta:
    """
    Result of comparing a client tree against a server tree.

    Produced once per sync cycle and consumed immediately by the indexer.
    """
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def total_changes(self) -> int:
        """Total number of changed paths"""
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
            "unchanged": self.unchanged,
            "timestamp": self.timestamp,
        }
