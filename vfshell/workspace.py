#!/usr/bin/env python3
"""
Workspace export and import.

A workspace file is a JSON array of the tree's top-level nodes, with folders
nesting their children recursively. Importing replaces the whole tree; asking
the user for confirmation first is the caller's job.
"""

import json
import logging
from typing import Any, List

from .errors import InvalidArgument, PathExists
from .filetree import VirtualFileTree
from .nodes import AnyNode, NodeType, node_from_record, validate_name
from .paths import ROOT, join_path

logger = logging.getLogger(__name__)


def export_workspace(tree: VirtualFileTree, indent: int = 2) -> str:
    """Serialize the tree's top-level nodes to a JSON array."""
    return json.dumps([node.to_dict() for node in tree.root.children], indent=indent)


def parse_workspace(text: str) -> List[AnyNode]:
    """
    Build nodes from an exported workspace.

    Paths are recomputed from the nesting rather than trusted, so the result
    always satisfies the tree's path invariant.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidArgument(f"invalid workspace file: {e}") from e
    if not isinstance(data, list):
        raise InvalidArgument("invalid workspace file: expected a JSON array")
    return _build_level(data, ROOT)


def _build_level(items: List[Any], parent: str) -> List[AnyNode]:
    nodes = []
    names = set()
    for item in items:
        if not isinstance(item, dict):
            raise InvalidArgument("invalid workspace file: nodes must be objects")
        name = item.get('name')
        if not isinstance(name, str):
            raise InvalidArgument("invalid workspace file: node without a name")
        validate_name(name)
        if name in names:
            raise PathExists(f"{join_path(parent, name)}: File exists")
        names.add(name)

        path = join_path(parent, name)
        record = dict(item, path=path)
        children = None
        if record.get('type') == NodeType.FOLDER.value:
            children = _build_level(record.get('children') or [], path)
        nodes.append(node_from_record(record, children))
    return nodes


async def import_workspace(tree: VirtualFileTree, text: str) -> List[AnyNode]:
    """Replace the tree with the nodes of an exported workspace."""
    nodes = parse_workspace(text)
    placed = await tree.replace_all(nodes)
    logger.info("imported workspace with %d top-level nodes", len(placed))
    return placed
