#!/usr/bin/env python3
"""
Terminal session management.

A SessionManager owns the open terminals of one workspace. All sessions share
the same tree and store but keep their own directory, environment, output
history and recall log.
"""

import logging
import uuid
from typing import Dict, List, Optional

from .errors import InvalidArgument, PersistenceError
from .filetree import VirtualFileTree
from .terminal import (
    CommandExecutor, CommandHistory, CommandResult, EntryType, RecallDirection,
    TerminalConfig, TerminalSession, command_log_key,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, tracks and closes terminal sessions."""

    def __init__(self, tree: VirtualFileTree, config: Optional[TerminalConfig] = None,
                 executor: Optional[CommandExecutor] = None):
        self.tree = tree
        self.store = tree.store
        self.config = config or TerminalConfig()
        self.executor = executor or CommandExecutor(tree, self.config)
        self._sessions: Dict[str, TerminalSession] = {}
        self._created = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def create_session(self, name: Optional[str] = None,
                             session_id: Optional[str] = None) -> TerminalSession:
        """
        Open a new terminal.

        If the store still holds a recall log for session_id (a terminal that
        was not closed properly), it is restored.
        """
        session_id = session_id or f"terminal-{uuid.uuid4().hex[:8]}"
        if session_id in self._sessions:
            raise InvalidArgument(f"session already open: {session_id}")

        self._created += 1
        session = TerminalSession(
            id=session_id,
            name=name or f"Terminal {self._created}",
            current_dir=self.config.initial_dir,
            env={'PATH': self.config.path_env, 'HOME': self.config.home_dir,
                 'PWD': self.config.initial_dir},
            command_log=CommandHistory(self.config.command_log_size),
        )
        session.append(self.config.welcome_message, EntryType.OUTPUT)

        try:
            saved = await self.store.get_setting(command_log_key(session_id))
        except Exception as e:
            raise PersistenceError(f"cannot read command log: {e}") from e
        if isinstance(saved, list):
            session.command_log.load(saved)

        self._sessions[session_id] = session
        logger.info("opened %s (%s)", session.name, session_id)
        return session

    def get_session(self, session_id: str) -> TerminalSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise InvalidArgument(f"no such session: {session_id}")
        return session

    def list_sessions(self) -> List[TerminalSession]:
        """Open sessions in creation order."""
        return list(self._sessions.values())

    def rename_session(self, session_id: str, name: str) -> TerminalSession:
        session = self.get_session(session_id)
        if not name or not name.strip():
            raise InvalidArgument("session name cannot be empty")
        session.name = name.strip()
        return session

    async def close_session(self, session_id: str) -> TerminalSession:
        """Stop streaming, purge the stored recall log and forget the session."""
        session = self.get_session(session_id)
        session.cancel_streaming()
        try:
            await self.store.delete_setting(command_log_key(session_id))
        except Exception as e:
            raise PersistenceError(f"cannot purge command log: {e}") from e
        del self._sessions[session_id]
        logger.info("closed %s (%s)", session.name, session_id)
        return session

    async def close_all(self):
        for session_id in list(self._sessions):
            await self.close_session(session_id)

    async def execute(self, session_id: str, command_line: str) -> CommandResult:
        return await self.executor.execute(self.get_session(session_id), command_line)

    def recall(self, session_id: str, direction: RecallDirection) -> str:
        """Step through previously submitted lines (arrow keys)."""
        return self.get_session(session_id).command_log.recall(direction)

    def clear_terminal(self, session_id: str):
        """Stop any streaming command and empty the output history."""
        session = self.get_session(session_id)
        session.cancel_streaming()
        session.history.clear()

    def interrupt(self, session_id: str) -> bool:
        """Ctrl+C: stop a streaming command. Returns True if one was running."""
        session = self.get_session(session_id)
        stopped = session.cancel_streaming()
        session.append('^C', EntryType.OUTPUT)
        return stopped
