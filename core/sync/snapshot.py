"""
Persistence for the retained server tree.

Trees are stored as JSON next to the workspace config so a later run can diff
against what was last acknowledged instead of re-indexing everything.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

import aiofiles

from ..models.tree import MerkleTree

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1
SNAPSHOT_FILENAME = "tree.json"


async def save_tree(tree: MerkleTree, path: Union[str, Path]) -> Path:
    """
    Write a tree to disk.

    The file is written to a temporary sibling and renamed into place, so a
    crash never leaves a truncated snapshot behind.

    Args:
        tree: Tree to persist
        path: Target file

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    data = {"version": SNAPSHOT_FORMAT_VERSION, "tree": tree.to_dict()}
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=2))
    os.replace(tmp_path, path)

    logger.debug(f"Saved tree with {tree.node_count} nodes to {path}")
    return path


async def load_tree(path: Union[str, Path]) -> Optional[MerkleTree]:
    """
    Read a tree written by ``save_tree``.

    Returns:
        The tree, or None if the file does not exist or cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read tree snapshot {path}: {e}")
        return None

    if data.get("version") != SNAPSHOT_FORMAT_VERSION:
        logger.warning(f"Ignoring tree snapshot {path} with version {data.get('version')}")
        return None

    try:
        tree = MerkleTree.from_dict(data["tree"])
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed tree snapshot {path}: {e}")
        return None

    logger.debug(f"Loaded tree with {tree.node_count} nodes from {path}")
    return tree
