#!/usr/bin/env python3
"""
Persistence backends for the virtual file tree.

The store is the system of record: the tree is rebuilt from it on startup and
every tree mutation is written to it before being applied in memory. Records
are plain JSON-compatible dicts:

- file records are keyed by path and carry content, version and history
- folder records are keyed by id and list the names of their children
- settings are arbitrary JSON values under string keys (terminal recall logs
  live here)
"""

import asyncio
import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .nodes import FileNode, FolderNode

logger = logging.getLogger(__name__)


class PersistenceStore(ABC):
    """Async key-value interface the tree and the terminal depend on."""

    @abstractmethod
    async def get_file(self, path: str) -> Optional[dict]:
        """Return the file record stored under path."""

    @abstractmethod
    async def save_file(self, node: FileNode) -> None:
        """Insert or replace the record of a file."""

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete the file record under path; missing records are ignored."""

    @abstractmethod
    async def list_all_files(self) -> List[dict]:
        """Return every file record."""

    @abstractmethod
    async def get_folder(self, path: str) -> Optional[dict]:
        """Return the folder record whose path is path."""

    @abstractmethod
    async def save_folder(self, node: FolderNode) -> None:
        """Insert or replace the record of a folder (children by name)."""

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> None:
        """Delete the folder record with id folder_id."""

    @abstractmethod
    async def list_all_folders(self) -> List[dict]:
        """Return every folder record."""

    @abstractmethod
    async def get_setting(self, key: str) -> Any:
        """Return the setting stored under key, or None."""

    @abstractmethod
    async def save_setting(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under key."""

    @abstractmethod
    async def delete_setting(self, key: str) -> None:
        """Remove the setting under key, if present."""


class MemoryStore(PersistenceStore):
    """
    Dictionary-backed store.

    Records are deep-copied on the way in and out so that callers never share
    state with the store.
    """

    def __init__(self):
        self.files: Dict[str, dict] = {}
        self.folders: Dict[str, dict] = {}
        self.settings: Dict[str, Any] = {}

    async def _commit(self) -> None:
        """Hook run after every change; the memory store has nothing to do."""

    async def get_file(self, path: str) -> Optional[dict]:
        record = self.files.get(path)
        return copy.deepcopy(record) if record is not None else None

    async def save_file(self, node: FileNode) -> None:
        self.files[node.path] = node.to_record()
        logger.debug("saved file %s (version %d)", node.path, node.version)
        await self._commit()

    async def delete_file(self, path: str) -> None:
        if self.files.pop(path, None) is not None:
            logger.debug("deleted file %s", path)
            await self._commit()

    async def list_all_files(self) -> List[dict]:
        return [copy.deepcopy(record) for record in self.files.values()]

    async def get_folder(self, path: str) -> Optional[dict]:
        for record in self.folders.values():
            if record.get('path') == path:
                return copy.deepcopy(record)
        return None

    async def save_folder(self, node: FolderNode) -> None:
        self.folders[node.id] = node.to_record()
        logger.debug("saved folder %s (%d children)", node.path, len(node.children))
        await self._commit()

    async def delete_folder(self, folder_id: str) -> None:
        if self.folders.pop(folder_id, None) is not None:
            logger.debug("deleted folder %s", folder_id)
            await self._commit()

    async def list_all_folders(self) -> List[dict]:
        return [copy.deepcopy(record) for record in self.folders.values()]

    async def get_setting(self, key: str) -> Any:
        return copy.deepcopy(self.settings.get(key))

    async def save_setting(self, key: str, value: Any) -> None:
        self.settings[key] = copy.deepcopy(value)
        await self._commit()

    async def delete_setting(self, key: str) -> None:
        if self.settings.pop(key, None) is not None:
            await self._commit()


class JsonFileStore(MemoryStore):
    """
    Store persisted to a single JSON file on the host.

    The whole state is rewritten after each change. Writes go through a
    temporary file and os.replace so a crash never leaves a truncated file.
    """

    def __init__(self, filename: str):
        super().__init__()
        self.filename = filename
        if os.path.exists(filename):
            self._load()

    def _load(self) -> None:
        with open(self.filename, 'r', encoding='utf-8') as f:
            data = json.load(f)
        self.files = dict(data.get('files', {}))
        self.folders = dict(data.get('folders', {}))
        self.settings = dict(data.get('settings', {}))
        logger.info("loaded %d files and %d folders from %s",
                    len(self.files), len(self.folders), self.filename)

    def to_json(self) -> str:
        data = {
            'files': self.files,
            'folders': self.folders,
            'settings': self.settings,
        }
        return json.dumps(data, indent=2)

    def _write(self, text: str) -> None:
        directory = os.path.dirname(os.path.abspath(self.filename))
        os.makedirs(directory, exist_ok=True)
        tmp = self.filename + '.tmp'
        with open(tmp, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp, self.filename)

    async def _commit(self) -> None:
        await asyncio.to_thread(self._write, self.to_json())
