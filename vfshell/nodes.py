#!/usr/bin/env python3
"""
Node types for the virtual file tree.

A node is either a FileNode or a FolderNode. Both share the Node base
(identity, name, absolute path and the explorer flags). Folders own their
children directly; the path of every child is its parent's path plus its
own name.

Nodes serialize two ways:
- to_dict(): nested form used by workspace export (children embedded)
- to_record(): flat form used by the persistence store (children by name)
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import InvalidArgument
from .paths import ROOT, base_name, join_path

# Revisions kept per file; the oldest is dropped first.
MAX_REVISIONS = 50

LANGUAGES = {
    'py': 'python',
    'js': 'javascript',
    'jsx': 'javascript',
    'mjs': 'javascript',
    'ts': 'typescript',
    'tsx': 'typescript',
    'json': 'json',
    'md': 'markdown',
    'html': 'html',
    'htm': 'html',
    'css': 'css',
    'scss': 'scss',
    'sh': 'shell',
    'yml': 'yaml',
    'yaml': 'yaml',
    'txt': 'text',
}


class NodeType(Enum):
    FILE = 'file'
    FOLDER = 'folder'


def new_id(node_type: NodeType) -> str:
    """Fresh node id, e.g. 'file-3f2a...'."""
    return f"{node_type.value}-{uuid.uuid4().hex}"


def detect_language(name: str) -> str:
    """Guess the editor language from a file name's extension."""
    if '.' not in name.strip('.'):
        return 'text'
    extension = name.rsplit('.', 1)[1].lower()
    return LANGUAGES.get(extension, extension)


def validate_name(name: str) -> str:
    """Reject names that cannot be a single path segment."""
    if not name or '/' in name or name in ('.', '..'):
        raise InvalidArgument(f"invalid name: '{name}'")
    return name


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Revision:
    """A previous version of a file's content."""
    content: str
    timestamp: str = field(default_factory=_timestamp)

    def to_dict(self) -> dict:
        return {'content': self.content, 'timestamp': self.timestamp}


@dataclass
class Node:
    """Base class for all tree nodes."""
    name: str
    path: str
    id: str = ''
    is_locked: bool = False
    is_starred: bool = False

    node_type = NodeType.FILE

    def __post_init__(self):
        if not self.id:
            self.id = new_id(self.node_type)

    def is_file(self) -> bool:
        return self.node_type is NodeType.FILE

    def is_dir(self) -> bool:
        return self.node_type is NodeType.FOLDER

    def _common_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.node_type.value,
            'path': self.path,
            'isLocked': self.is_locked,
            'isStarred': self.is_starred,
        }

    def to_dict(self) -> dict:
        """Nested, JSON-compatible representation."""
        return self._common_dict()

    def to_record(self) -> dict:
        """Flat, JSON-compatible representation for the store."""
        return self._common_dict()


@dataclass
class FileNode(Node):
    """Regular file with text content and a bounded revision history."""
    content: str = ''
    language: str = ''
    version: int = 0
    history: List[Revision] = field(default_factory=list)

    node_type = NodeType.FILE

    def __post_init__(self):
        super().__post_init__()
        if not self.language:
            self.language = detect_language(self.name)

    def with_content(self, content: str) -> 'FileNode':
        """Return a saved copy holding content, one version later."""
        history = list(self.history)
        if content != self.content:
            history.append(Revision(self.content))
            history = history[-MAX_REVISIONS:]
        return FileNode(
            name=self.name, path=self.path, id=self.id,
            is_locked=self.is_locked, is_starred=self.is_starred,
            content=content, language=self.language,
            version=self.version + 1, history=history,
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({
            'content': self.content,
            'language': self.language,
            'version': self.version,
            'history': [revision.to_dict() for revision in self.history],
        })
        return d

    def to_record(self) -> dict:
        return self.to_dict()


@dataclass
class FolderNode(Node):
    """Folder holding an ordered list of children."""
    children: List['AnyNode'] = field(default_factory=list)
    is_open: bool = False

    node_type = NodeType.FOLDER

    def child(self, name: str) -> Optional['AnyNode']:
        """Return the direct child called name, if any."""
        for node in self.children:
            if node.name == name:
                return node
        return None

    def child_names(self) -> List[str]:
        return [node.name for node in self.children]

    def with_children(self, children: List['AnyNode']) -> 'FolderNode':
        """Shallow copy of this folder holding a different child list."""
        return FolderNode(
            name=self.name, path=self.path, id=self.id,
            is_locked=self.is_locked, is_starred=self.is_starred,
            children=list(children), is_open=self.is_open,
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d['isOpen'] = self.is_open
        d['children'] = [node.to_dict() for node in self.children]
        return d

    def to_record(self) -> dict:
        d = super().to_record()
        d['isOpen'] = self.is_open
        d['children'] = self.child_names()
        return d


AnyNode = Union[FileNode, FolderNode]


def iter_subtree(node: AnyNode) -> Iterator[AnyNode]:
    """Yield node and all of its descendants, depth-first, parents first."""
    yield node
    if isinstance(node, FolderNode):
        for child in node.children:
            yield from iter_subtree(child)


def rebase(node: AnyNode, new_path: str, name: Optional[str] = None,
           fresh_ids: bool = False) -> AnyNode:
    """
    Copy a subtree so that it lives at new_path.

    Every descendant path is recomputed from its parent (the cascade).
    With fresh_ids the copy gets new ids throughout; otherwise ids are kept
    so the copy can replace the original.
    """
    clone = copy.copy(node)
    clone.path = new_path
    if name is not None:
        clone.name = name
        if isinstance(clone, FileNode):
            clone.language = detect_language(name)
    if fresh_ids:
        clone.id = new_id(clone.node_type)
    if isinstance(clone, FileNode):
        clone.history = list(node.history)
    else:
        clone.children = [
            rebase(child, join_path(new_path, child.name), fresh_ids=fresh_ids)
            for child in node.children
        ]
    return clone


def deep_copy(node: AnyNode, new_path: str) -> AnyNode:
    """Clone a subtree with fresh ids, remapping every path under new_path."""
    return rebase(node, new_path, name=base_name(new_path) or node.name,
                  fresh_ids=True)


def _revisions(items: Any) -> List[Revision]:
    revisions = []
    for item in items or []:
        revisions.append(Revision(str(item.get('content', '')),
                                  str(item.get('timestamp', ''))))
    return revisions[-MAX_REVISIONS:]


def node_from_record(record: Dict[str, Any],
                     children: Optional[List[AnyNode]] = None) -> AnyNode:
    """
    Build a node from a store record or an exported dict.

    Folder children are not read from the record; callers resolve them and
    pass the built nodes in.
    """
    try:
        node_type = NodeType(record.get('type'))
    except ValueError:
        raise InvalidArgument(f"unknown node type: {record.get('type')!r}") from None
    name = record.get('name')
    path = record.get('path')
    if not isinstance(name, str) or not isinstance(path, str):
        raise InvalidArgument("node record needs a string 'name' and 'path'")

    common = dict(
        name=name,
        path=path,
        id=str(record.get('id') or ''),
        is_locked=bool(record.get('isLocked', False)),
        is_starred=bool(record.get('isStarred', False)),
    )
    if node_type is NodeType.FILE:
        return FileNode(
            content=str(record.get('content') or ''),
            language=str(record.get('language') or ''),
            version=int(record.get('version') or 0),
            history=_revisions(record.get('history')),
            **common,
        )
    return FolderNode(
        children=list(children or []),
        is_open=bool(record.get('isOpen', False)),
        **common,
    )


def make_root() -> FolderNode:
    """The unnamed folder at '/' that owns all top-level nodes."""
    return FolderNode(name='', path=ROOT, id='root', is_open=True)
