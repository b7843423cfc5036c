#!/usr/bin/env python3
"""
vfshell.filetree - the in-memory tree of files and folders.

Core rules:
- Every node is addressed by its absolute path; sibling names are unique
- Renaming or moving a folder rewrites the path of every descendant
- Mutations are persist-first: the new state is computed, written to the
  store, and only then applied in memory. A store failure raises
  PersistenceError and leaves the tree untouched.
- Mutations on one tree are serialized by a single asyncio lock
"""

import asyncio
import copy
import logging
from typing import Iterable, Iterator, List, Optional, Sequence

from .errors import (
    DirectoryNotEmpty, FileLocked, InvalidArgument, InvalidOperation,
    NotADirectory, NotAFile, PathExists, PathNotFound, PersistenceError,
    ShellError,
)
from .nodes import (
    AnyNode, FileNode, FolderNode, NodeType, deep_copy, iter_subtree,
    make_root, node_from_record, rebase, validate_name,
)
from .paths import ROOT, is_within, join_path, split_path
from .store import MemoryStore, PersistenceStore

logger = logging.getLogger(__name__)


class VirtualFileTree:
    """
    Path-addressed tree of FileNode and FolderNode objects.

    The tree owns an unnamed root folder at '/'. Top-level nodes are its
    children and live at '/<name>'.
    """

    def __init__(self, store: Optional[PersistenceStore] = None,
                 root: Optional[FolderNode] = None):
        self.store = store if store is not None else MemoryStore()
        self.root = root or make_root()
        self._lock = asyncio.Lock()

    # Loading

    @classmethod
    async def load(cls, store: PersistenceStore) -> 'VirtualFileTree':
        """Rebuild a tree from the folder and file records of a store."""
        try:
            folders = await store.list_all_folders()
            files = await store.list_all_files()
        except Exception as e:
            raise PersistenceError(f"cannot read store: {e}") from e

        tree = cls(store)
        folder_records = {r.get('path'): r for r in folders}
        file_records = {r.get('path'): r for r in files}
        root_record = folder_records.get(ROOT)
        if root_record is None:
            if folders or files:
                logger.warning("store has no root folder; ignoring %d records",
                               len(folders) + len(files))
            return tree

        seen = set()

        def build(record: dict, path: str) -> Optional[AnyNode]:
            seen.add(path)
            children = []
            names = set()
            for name in record.get('children') or []:
                if name in names:
                    logger.warning("skipping duplicate child %s in %s", name, path)
                    continue
                names.add(name)
                child_path = join_path(path, name)
                if child_path in folder_records:
                    child = build(folder_records[child_path], child_path)
                elif child_path in file_records:
                    seen.add(child_path)
                    child = _from_record(file_records[child_path])
                else:
                    logger.warning("skipping dangling child %s", child_path)
                    continue
                if child is not None:
                    children.append(child)
            return _from_record(record, children)

        root = build(root_record, ROOT)
        if isinstance(root, FolderNode):
            tree.root = root
        orphans = (set(folder_records) | set(file_records)) - seen
        if orphans:
            logger.warning("ignoring %d orphan records", len(orphans))
        logger.info("loaded tree with %d nodes", sum(1 for _ in tree.walk()))
        return tree

    # Queries

    def lookup(self, path: str) -> Optional[AnyNode]:
        """Return the node at path, or None."""
        if not path.startswith('/'):
            return None
        if path != ROOT:
            path = path.rstrip('/') or ROOT
        if path == ROOT:
            return self.root
        node: AnyNode = self.root
        for part in path[1:].split('/'):
            if not isinstance(node, FolderNode):
                return None
            child = node.child(part)
            if child is None:
                return None
            node = child
        return node

    def exists(self, path: str) -> bool:
        return self.lookup(path) is not None

    def walk(self) -> Iterator[AnyNode]:
        """Yield every node below the root, depth-first."""
        for child in self.root.children:
            yield from iter_subtree(child)

    def _require(self, path: str) -> AnyNode:
        node = self.lookup(path)
        if node is None:
            raise PathNotFound(f"{path}: No such file or directory")
        return node

    def _require_folder(self, path: str) -> FolderNode:
        node = self._require(path)
        if not isinstance(node, FolderNode):
            raise NotADirectory(f"{path}: Not a directory")
        return node

    def _require_file(self, path: str) -> FileNode:
        node = self._require(path)
        if not isinstance(node, FileNode):
            raise NotAFile(f"{path}: Not a file")
        return node

    def _parent_of(self, node: AnyNode) -> FolderNode:
        if node is self.root:
            raise InvalidOperation("the root folder has no parent")
        return self._require_folder(split_path(node.path)[0])

    # Persistence

    async def _persist(self, save: Iterable[AnyNode] = (),
                       deleted_files: Iterable[str] = (),
                       deleted_folders: Iterable[str] = ()) -> None:
        """Write a change to the store; deletions first, then saves."""
        try:
            for path in deleted_files:
                await self.store.delete_file(path)
            for folder_id in deleted_folders:
                await self.store.delete_folder(folder_id)
            for node in save:
                if isinstance(node, FileNode):
                    await self.store.save_file(node)
                else:
                    await self.store.save_folder(node)
        except ShellError:
            raise
        except Exception as e:
            logger.error("store write failed: %s", e)
            raise PersistenceError(f"store write failed: {e}") from e

    # Mutations

    async def insert(self, parent_path: str, node: AnyNode) -> AnyNode:
        """Add node (and its subtree) as the last child of parent_path."""
        async with self._lock:
            return await self._insert(parent_path, node)

    async def _insert(self, parent_path: str, node: AnyNode) -> AnyNode:
        parent = self._require_folder(parent_path)
        validate_name(node.name)
        if parent.child(node.name) is not None:
            raise PathExists(f"{join_path(parent.path, node.name)}: File exists")

        placed = rebase(node, join_path(parent.path, node.name))
        children = parent.children + [placed]
        await self._persist(save=[*iter_subtree(placed), parent.with_children(children)])
        parent.children.append(placed)
        logger.debug("inserted %s", placed.path)
        return placed

    async def create_node(self, parent_path: str, name: str,
                          node_type: NodeType = NodeType.FILE,
                          content: str = '') -> AnyNode:
        """Create an empty folder or a file holding content."""
        validate_name(name)
        path = join_path(parent_path, name)
        if node_type is NodeType.FOLDER:
            node: AnyNode = FolderNode(name=name, path=path)
        else:
            node = FileNode(name=name, path=path, content=content)
        return await self.insert(parent_path, node)

    async def rename_node(self, path: str, new_name: str) -> AnyNode:
        """Rename the node at path, cascading the new path to descendants."""
        async with self._lock:
            node = self._require(path)
            if node is self.root:
                raise InvalidOperation("cannot rename the root folder")
            validate_name(new_name)
            parent = self._parent_of(node)
            if new_name == node.name:
                return node
            return await self._relocate(node, parent, parent, new_name)

    async def move_node(self, source: str, target_folder: str,
                        new_name: Optional[str] = None) -> AnyNode:
        """
        Re-parent the node at source under target_folder.

        With new_name the node is renamed in the same step, which is how the
        terminal's mv works.
        """
        async with self._lock:
            node = self._require(source)
            if node is self.root:
                raise InvalidOperation("cannot move the root folder")
            target = self._require_folder(target_folder)
            name = validate_name(new_name) if new_name else node.name
            if isinstance(node, FolderNode) and is_within(target.path, node.path):
                raise InvalidOperation(
                    f"cannot move '{node.path}' into itself or a descendant")
            parent = self._parent_of(node)
            if target is parent and name == node.name:
                return node
            return await self._relocate(node, parent, target, name)

    async def _relocate(self, node: AnyNode, parent: FolderNode,
                        target: FolderNode, name: str) -> AnyNode:
        new_path = join_path(target.path, name)
        if target.child(name) is not None:
            raise PathExists(f"{new_path}: File exists")

        moved = rebase(node, new_path, name=name)
        old_files = [n.path for n in iter_subtree(node) if isinstance(n, FileNode)]
        if target is parent:
            siblings = [moved if c is node else c for c in parent.children]
            folders = [parent.with_children(siblings)]
        else:
            remaining = [c for c in parent.children if c is not node]
            siblings = target.children + [moved]
            folders = [parent.with_children(remaining), target.with_children(siblings)]

        await self._persist(save=[*iter_subtree(moved), *folders],
                            deleted_files=old_files)

        if target is parent:
            parent.children[:] = siblings
        else:
            parent.children[:] = remaining
            target.children.append(moved)
        logger.debug("moved %s to %s", node.path, new_path)
        return moved

    async def delete_node(self, path: str, recursive: bool = False) -> AnyNode:
        """Remove the node at path; folders with children need recursive."""
        async with self._lock:
            node = self._require(path)
            if node is self.root:
                raise InvalidOperation("cannot remove the root folder")
            if isinstance(node, FolderNode) and node.children and not recursive:
                raise DirectoryNotEmpty(f"{path}: Directory not empty")

            parent = self._parent_of(node)
            remaining = [c for c in parent.children if c is not node]
            subtree = list(iter_subtree(node))
            await self._persist(
                save=[parent.with_children(remaining)],
                deleted_files=[n.path for n in subtree if isinstance(n, FileNode)],
                deleted_folders=[n.id for n in subtree if isinstance(n, FolderNode)],
            )
            parent.children[:] = remaining
            logger.debug("removed %s (%d nodes)", path, len(subtree))
            return node

    async def copy_node(self, source: str, destination: str) -> AnyNode:
        """Copy the subtree at source to destination with fresh ids."""
        async with self._lock:
            node = self._require(source)
            if node is self.root:
                raise InvalidOperation("cannot copy the root folder")
            parent_path, name = split_path(destination)
            validate_name(name)
            return await self._insert(parent_path, deep_copy(node, destination))

    async def convert_node(self, path: str, node_type: NodeType) -> AnyNode:
        """
        Replace a node's variant in place, keeping id, name and flags.

        A file becomes an empty folder (its content is dropped); only an
        empty folder can become a file.
        """
        async with self._lock:
            node = self._require(path)
            if node is self.root:
                raise InvalidOperation("cannot convert the root folder")
            if node.node_type is node_type:
                return node

            common = dict(name=node.name, path=node.path, id=node.id,
                          is_locked=node.is_locked, is_starred=node.is_starred)
            if isinstance(node, FolderNode):
                if node.children:
                    raise DirectoryNotEmpty(
                        f"{path}: cannot convert a non-empty folder to a file")
                converted: AnyNode = FileNode(**common)
                await self._persist(save=[converted], deleted_folders=[node.id])
            else:
                converted = FolderNode(**common)
                await self._persist(save=[converted], deleted_files=[node.path])

            self._replace(node, converted)
            logger.debug("converted %s to %s", path, node_type.value)
            return converted

    async def write_file(self, path: str, content: str, create: bool = False,
                         append: bool = False) -> FileNode:
        """
        Save new content to a file, bumping its version.

        With create a missing file is created holding content. With append
        the content is added on a new line after non-empty existing content.
        The lookup and the write happen under the tree lock.
        """
        async with self._lock:
            if create and self.lookup(path) is None:
                parent_path, name = split_path(path)
                return await self._insert(
                    parent_path, FileNode(name=name, path=path, content=content))
            node = self._require_file(path)
            if node.is_locked:
                raise FileLocked(f"{path}: File is locked")
            if append and node.content:
                content = node.content + '\n' + content
            saved = node.with_content(content)
            await self._persist(save=[saved])
            self._replace(node, saved)
            return saved

    async def update_node(self, path: str, is_locked: Optional[bool] = None,
                          is_starred: Optional[bool] = None,
                          is_open: Optional[bool] = None) -> AnyNode:
        """Set explorer flags on a node."""
        async with self._lock:
            node = self._require(path)
            if node is self.root:
                raise InvalidOperation("the root folder has no flags")
            if is_open is not None and not isinstance(node, FolderNode):
                raise NotADirectory(f"{path}: Not a directory")

            updated = copy.copy(node)
            if is_locked is not None:
                updated.is_locked = is_locked
            if is_starred is not None:
                updated.is_starred = is_starred
            if is_open is not None:
                updated.is_open = is_open
            await self._persist(save=[updated])
            self._replace(node, updated)
            return updated

    async def replace_all(self, nodes: Sequence[AnyNode]) -> List[AnyNode]:
        """Swap every top-level node for nodes, e.g. on workspace import."""
        async with self._lock:
            names = set()
            placed = []
            for node in nodes:
                validate_name(node.name)
                if node.name in names:
                    raise PathExists(f"{join_path(ROOT, node.name)}: File exists")
                names.add(node.name)
                placed.append(rebase(node, join_path(ROOT, node.name)))

            current = list(self.walk())
            saves: List[AnyNode] = []
            for node in placed:
                saves.extend(iter_subtree(node))
            saves.append(self.root.with_children(placed))
            await self._persist(
                save=saves,
                deleted_files=[n.path for n in current if isinstance(n, FileNode)],
                deleted_folders=[n.id for n in current if isinstance(n, FolderNode)],
            )
            self.root.children[:] = placed
            logger.info("replaced tree with %d top-level nodes", len(placed))
            return placed

    def _replace(self, old: AnyNode, new: AnyNode) -> None:
        parent = self._parent_of(old)
        index = next(i for i, c in enumerate(parent.children) if c is old)
        parent.children[index] = new


def _from_record(record: dict, children: Optional[List[AnyNode]] = None) -> Optional[AnyNode]:
    try:
        return node_from_record(record, children)
    except InvalidArgument as e:
        logger.warning("skipping malformed record %s: %s", record.get('path'), e)
        return None
