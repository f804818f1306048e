"""
Tree diff logic for client and server Merkle trees.

This module determines which paths were added, modified, or deleted between
two tree snapshots. Subtrees whose hashes match are pruned in O(1), so the
cost is proportional to the number of nodes that actually differ.
"""

import logging
import time
from typing import List, Optional, Tuple

from ..models.tree import FileNode, MerkleTree, SyncDelta

logger = logging.getLogger(__name__)


class TreeDiffer:
    """
    Paired traversal of a client tree against a server tree.

    Rules per node pair:
    - Client node without a server counterpart: added
    - Equal hashes: unchanged, subtree pruned
    - Two files with different hashes: modified
    - Two directories with different hashes: recurse into client children and
      report server-only children as deleted
    """

    def diff(self, client: MerkleTree, server: Optional[MerkleTree]) -> SyncDelta:
        """
        Calculate the delta between two trees.

        Args:
            client: Tree built from the local workspace
            server: Previously retained tree; None means nothing is retained

        Returns:
            SyncDelta with categorized paths
        """
        start_time = time.perf_counter()
        delta = SyncDelta()

        server_root = server.root if server is not None else None
        stack: List[Tuple[FileNode, Optional[FileNode]]] = [(client.root, server_root)]

        while stack:
            client_node, server_node = stack.pop()

            if server_node is None:
                delta.added.append(client_node.path)
                continue

            if client_node.hash == server_node.hash:
                delta.unchanged += 1
                continue

            if not client_node.is_directory and not server_node.is_directory:
                delta.modified.append(client_node.path)
                continue

            client_children = client.children_of(client_node)
            server_children = server.children_of(server_node) if server_node.is_directory else {}

            # Reversed push keeps name order when popping
            pairs = [
                (child, server_children.get(name))
                for name, child in sorted(client_children.items())
            ]
            stack.extend(reversed(pairs))

            for name in sorted(server_children):
                if name not in client_children:
                    delta.deleted.append(server_children[name].path)

        logger.debug(
            f"Tree diff completed in {(time.perf_counter() - start_time) * 1000:.1f}ms: "
            f"{len(delta.added)} added, {len(delta.modified)} modified, "
            f"{len(delta.deleted)} deleted, {delta.unchanged} unchanged"
        )
        return delta


def diff_trees(client: MerkleTree, server: Optional[MerkleTree]) -> SyncDelta:
    """Convenience wrapper around TreeDiffer.diff"""
    return TreeDiffer().diff(client, server)
