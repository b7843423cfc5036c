#!/usr/bin/env python3
"""
Terminal emulator for vfshell.

This module provides the terminal layer on top of the virtual file tree:
per-session state (working directory, environment, output history, recall
log), the command executor that interprets parsed command lines, and an
interactive command-line front end.

Design Principles:
- All filesystem changes go through VirtualFileTree
- Clean separation between parsing and execution
- Command errors end up in the session history, never kill the session
- One streaming command per session; a busy session rejects new input
"""

import argparse
import asyncio
import logging
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .command_parser import CommandParser, ParsedCommand, Redirect, RedirectMode
from .errors import (
    BusyError, ErrorKind, InvalidArgument, MissingArgument, NotADirectory,
    NotAFile, PathNotFound, ShellError, UnknownCommand,
)
from .filetree import VirtualFileTree
from .nodes import FileNode, FolderNode, NodeType
from .paths import ROOT, is_normalized, resolve_path, split_path
from .store import PersistenceStore

logger = logging.getLogger(__name__)

HELP_TEXT = """Available commands:
  cat <file>             - Display file contents
  cd <dir>               - Change directory
  clear                  - Clear terminal
  cp <src> <dest>        - Copy file or folder
  date                   - Show current date
  echo <message>         - Echo message
  env                    - Show environment variables
  git status             - Show working tree status
  grep <pattern> <file>  - Search pattern in file
  history                - Show command history
  ls [dir]               - List directory contents
  mkdir <dir>            - Create directory
  mv <src> <dest>        - Move or rename file/folder
  npm start              - Start development server
  pwd                    - Print working directory
  rm [-r] <path>         - Remove file or folder
  touch <file>           - Create empty file

Redirection and piping:
  command > file         - Write output to file
  command >> file        - Append output to file
  cmd1 | cmd2            - Pass the output of cmd1 as the first argument of cmd2"""

GIT_STATUS = """On branch main
Your branch is up to date with 'origin/main'.

Changes not staged for commit:
  (use "git add <file>..." to update what will be committed)
  (use "git restore <file>..." to discard changes in working directory)
\tmodified:   src/App.tsx

Untracked files:
  (use "git add <file>..." to include in what will be committed)
\tnew-file.txt

no changes added to commit (use "git add" and/or "git commit -m")"""

NPM_START_OUTPUT = [
    'Starting the development server...',
    'Compiled successfully!',
    '',
    'You can now view the project in the browser.',
    '  Local:            http://localhost:3000',
    '  On Your Network:  http://192.168.1.100:3000',
    '',
    'Note that the development build is not optimized.',
    'To create a production build, use npm run build.',
]


@dataclass
class TerminalConfig:
    """Configuration for terminal sessions."""
    initial_dir: str = '/src'
    home_dir: str = '/home/user'
    path_env: str = '/bin:/usr/bin'
    command_log_size: int = 50
    stream_interval: float = 0.5  # seconds between streamed output lines
    welcome_message: str = 'Welcome to vfshell terminal'
    prompt_format: str = '{cwd}$ '


class EntryType(Enum):
    COMMAND = 'command'
    OUTPUT = 'output'
    ERROR = 'error'


@dataclass
class HistoryEntry:
    """One line block shown in a terminal."""
    content: str
    type: EntryType
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class RecallDirection(Enum):
    UP = 'up'
    DOWN = 'down'


class CommandHistory:
    """
    Bounded log of submitted command lines with an arrow-key cursor.

    The cursor sits past the newest entry (the empty input) after every
    submission. Recalling never changes the log.
    """

    def __init__(self, max_size: int = 50):
        self.max_size = max_size
        self.history: List[str] = []
        self.position = 0

    def add(self, command: str):
        """Record a submitted line, dropping the oldest past max_size."""
        if command.strip():
            self.history = (self.history + [command])[-self.max_size:]
        self.position = len(self.history)

    def load(self, commands: List[str]):
        """Replace the log, e.g. with the copy kept in the store."""
        self.history = [str(c) for c in commands][-self.max_size:]
        self.position = len(self.history)

    def previous(self) -> str:
        """Move toward the oldest command; stays on it once reached."""
        if not self.history:
            return ''
        if self.position > 0:
            self.position -= 1
        return self.history[self.position]

    def next(self) -> str:
        """Move toward the newest command, then to the empty input."""
        if self.position < len(self.history) - 1:
            self.position += 1
            return self.history[self.position]
        self.position = len(self.history)
        return ''

    def recall(self, direction: RecallDirection) -> str:
        if direction is RecallDirection.UP:
            return self.previous()
        return self.next()

    def __len__(self) -> int:
        return len(self.history)


@dataclass
class TerminalSession:
    """State of one terminal: directory, environment and what it shows."""
    id: str
    name: str
    current_dir: str
    env: Dict[str, str] = field(default_factory=dict)
    history: List[HistoryEntry] = field(default_factory=list)
    command_log: CommandHistory = field(default_factory=CommandHistory)
    is_running: bool = False
    active_command: Optional[str] = None
    stream_task: Optional['asyncio.Task[None]'] = field(default=None, repr=False)

    def append(self, content: str, entry_type: EntryType = EntryType.OUTPUT) -> HistoryEntry:
        entry = HistoryEntry(content, entry_type)
        self.history.append(entry)
        return entry

    def is_streaming(self) -> bool:
        return self.stream_task is not None and not self.stream_task.done()

    def cancel_streaming(self) -> bool:
        """Stop a streaming command. Returns True if one was running."""
        cancelled = False
        if self.is_streaming():
            self.stream_task.cancel()
            cancelled = True
        self.stream_task = None
        self.is_running = False
        self.active_command = None
        return cancelled

    async def wait_idle(self):
        """Wait until a streaming command has finished or was cancelled."""
        task = self.stream_task
        if task is not None:
            await asyncio.wait([task])


@dataclass
class CommandResult:
    """Outcome of one submitted command line."""
    output_lines: List[str] = field(default_factory=list)
    error: Optional[ErrorKind] = None
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        if self.error is None:
            return 0
        return 127 if self.error is ErrorKind.UNKNOWN_COMMAND else 1

    @property
    def text(self) -> str:
        return '\n'.join(self.output_lines)

    def __str__(self) -> str:
        return self.message if self.error is not None else self.text


def command_log_key(session_id: str) -> str:
    """Store key under which a session's recall log is kept."""
    return f"terminal-history-{session_id}"


Handler = Callable[[TerminalSession, List[str]], Awaitable[str]]


class CommandExecutor:
    """
    Executes parsed command lines against a session and the shared tree.

    Each handler receives the session and the argument list and returns the
    command's textual output, or raises a ShellError.
    """

    def __init__(self, tree: VirtualFileTree, config: Optional[TerminalConfig] = None):
        self.tree = tree
        self.config = config or TerminalConfig()
        self.parser = CommandParser()
        self.commands: Dict[str, Handler] = {
            'help': self._help,
            'clear': self._clear,
            'ls': self._ls,
            'pwd': self._pwd,
            'echo': self._echo,
            'date': self._date,
            'mkdir': self._mkdir,
            'touch': self._touch,
            'cd': self._cd,
            'rm': self._rm,
            'mv': self._mv,
            'cp': self._cp,
            'cat': self._cat,
            'grep': self._grep,
            'npm': self._npm,
            'git': self._git,
            'env': self._env,
            'history': self._history,
        }

    @property
    def store(self) -> PersistenceStore:
        return self.tree.store

    async def execute(self, session: TerminalSession, command_line: str) -> CommandResult:
        """Run one command line in session and record it in its history."""
        if session.is_running:
            error = BusyError(f"'{session.active_command}' is still running")
            session.append(f"Error: {error}", EntryType.ERROR)
            return CommandResult(error=error.kind, message=str(error))

        line = command_line.strip()
        if not line:
            return CommandResult()

        session.append(line, EntryType.COMMAND)
        session.command_log.add(line)
        await self._save_command_log(session)

        session.is_running = True
        session.active_command = line.split()[0]
        try:
            parsed = self.parser.parse(line, cwd=session.current_dir)
            output = await self._run(session, parsed)
        except ShellError as e:
            logger.debug("session %s: %s failed: %s", session.id, line, e)
            session.append(f"Error: {e}", EntryType.ERROR)
            return CommandResult(error=e.kind, message=str(e))
        finally:
            if not session.is_streaming():
                session.is_running = False
                session.active_command = None

        if output:
            session.append(output, EntryType.OUTPUT)
        return CommandResult(output_lines=output.splitlines())

    async def _save_command_log(self, session: TerminalSession):
        """
        Store the recall log of session.

        Unlike tree mutations, a failed write here does not fail the command:
        it is logged and the in-memory log stays current.
        """
        try:
            await self.store.save_setting(command_log_key(session.id),
                                          list(session.command_log.history))
        except Exception as e:
            logger.warning("could not persist command log of %s: %s", session.id, e)

    async def _run(self, session: TerminalSession, parsed: ParsedCommand) -> str:
        output = await self._dispatch(session, parsed.command, parsed.args)

        shown = output
        if parsed.redirect is not None:
            await self._redirect(parsed.redirect, output)
            shown = ''

        if parsed.pipe is not None:
            if parsed.pipe.is_empty():
                raise MissingArgument("missing command after '|'")
            # The left output becomes the first argument of the right command.
            piped = ParsedCommand(
                command=parsed.pipe.command,
                args=[output] + parsed.pipe.args,
                pipe=parsed.pipe.pipe,
                redirect=parsed.pipe.redirect,
            )
            return await self._run(session, piped)
        return shown

    async def _dispatch(self, session: TerminalSession, name: str, args: List[str]) -> str:
        handler = self.commands.get(name.lower())
        if handler is None:
            raise UnknownCommand(f"Command not found: {name}")
        return await handler(session, args)

    async def _redirect(self, redirect: Redirect, output: str):
        """Write output into the redirect target, creating it if needed."""
        path = self._checked(redirect.target)
        await self.tree.write_file(path, output, create=True,
                                   append=redirect.mode is RedirectMode.APPEND)

    def _resolve(self, session: TerminalSession, value: str) -> str:
        return self._checked(resolve_path(session.current_dir, value))

    @staticmethod
    def _checked(path: str) -> str:
        if path != ROOT:
            path = path.rstrip('/') or ROOT
        if not is_normalized(path):
            raise InvalidArgument(
                f"{path}: paths with '.' or '..' inside are not supported")
        return path

    def _read_file(self, path: str) -> FileNode:
        node = self.tree.lookup(path)
        if node is None:
            raise PathNotFound(f"{path}: No such file or directory")
        if not isinstance(node, FileNode):
            raise NotAFile(f"{path}: Not a file")
        return node

    # Commands

    async def _help(self, session: TerminalSession, args: List[str]) -> str:
        return HELP_TEXT

    async def _clear(self, session: TerminalSession, args: List[str]) -> str:
        session.history.clear()
        return ''

    async def _ls(self, session: TerminalSession, args: List[str]) -> str:
        path = self._resolve(session, args[0]) if args else session.current_dir
        node = self.tree.lookup(path)
        if node is None:
            raise PathNotFound(f"{path}: No such file or directory")
        if isinstance(node, FolderNode):
            return '\n'.join(node.child_names())
        return node.name

    async def _pwd(self, session: TerminalSession, args: List[str]) -> str:
        return session.current_dir

    async def _echo(self, session: TerminalSession, args: List[str]) -> str:
        return ' '.join(args)

    async def _date(self, session: TerminalSession, args: List[str]) -> str:
        return datetime.now().strftime('%c')

    async def _mkdir(self, session: TerminalSession, args: List[str]) -> str:
        if not args:
            raise MissingArgument("mkdir: missing directory name")
        path = self._resolve(session, args[0])
        parent, name = split_path(path)
        await self.tree.create_node(parent, name, NodeType.FOLDER)
        return f"Created directory: {path}"

    async def _touch(self, session: TerminalSession, args: List[str]) -> str:
        if not args:
            raise MissingArgument("touch: missing file name")
        path = self._resolve(session, args[0])
        parent, name = split_path(path)
        await self.tree.create_node(parent, name, NodeType.FILE)
        return f"Created file: {path}"

    async def _cd(self, session: TerminalSession, args: List[str]) -> str:
        if args:
            path = self._resolve(session, args[0])
        else:
            path = self._checked(session.env.get('HOME', ROOT))
        node = self.tree.lookup(path)
        if node is None:
            raise PathNotFound(f"{path}: No such file or directory")
        if not isinstance(node, FolderNode):
            raise NotADirectory(f"{path}: Not a directory")
        session.current_dir = node.path
        session.env['PWD'] = node.path
        return ''

    async def _rm(self, session: TerminalSession, args: List[str]) -> str:
        flags = [a for a in args if a.startswith('-') and len(a) > 1]
        targets = [a for a in args if a not in flags]
        if not targets:
            raise MissingArgument("rm: missing path")
        recursive = any('r' in flag.lower() for flag in flags)
        removed = []
        for target in targets:
            path = self._resolve(session, target)
            await self.tree.delete_node(path, recursive=recursive)
            removed.append(f"Removed {path}")
        return '\n'.join(removed)

    async def _mv(self, session: TerminalSession, args: List[str]) -> str:
        if len(args) < 2:
            raise MissingArgument("mv: missing source or destination")
        source = self._resolve(session, args[0])
        destination = self._resolve(session, args[1])
        parent, name = split_path(destination)
        await self.tree.move_node(source, parent, new_name=name)
        return f"Moved {source} to {destination}"

    async def _cp(self, session: TerminalSession, args: List[str]) -> str:
        operands = [a for a in args if a.lower() not in ('-r', '-rf', '-fr')]
        if len(operands) < 2:
            raise MissingArgument("cp: missing source or destination")
        source = self._resolve(session, operands[0])
        destination = self._resolve(session, operands[1])
        await self.tree.copy_node(source, destination)
        return f"Copied {source} to {destination}"

    async def _cat(self, session: TerminalSession, args: List[str]) -> str:
        if not args:
            raise MissingArgument("cat: missing file")
        return self._read_file(self._resolve(session, args[0])).content

    async def _grep(self, session: TerminalSession, args: List[str]) -> str:
        if len(args) < 2:
            raise MissingArgument("grep: missing pattern or file")
        try:
            regex = re.compile(args[0])
        except re.error as e:
            raise InvalidArgument(f"grep: invalid pattern '{args[0]}': {e}") from e
        node = self._read_file(self._resolve(session, args[1]))
        return '\n'.join(line for line in node.content.split('\n') if regex.search(line))

    async def _npm(self, session: TerminalSession, args: List[str]) -> str:
        if args[:1] != ['start']:
            raise UnknownCommand(f"npm: unknown command {' '.join(args)}".rstrip())
        self._start_stream(session, NPM_START_OUTPUT)
        return ''

    async def _git(self, session: TerminalSession, args: List[str]) -> str:
        if args[:1] != ['status']:
            raise UnknownCommand(f"git: unknown command {' '.join(args)}".rstrip())
        return GIT_STATUS

    async def _env(self, session: TerminalSession, args: List[str]) -> str:
        return '\n'.join(f"{key}={value}" for key, value in session.env.items())

    async def _history(self, session: TerminalSession, args: List[str]) -> str:
        return '\n'.join(f"{i + 1}  {cmd}"
                         for i, cmd in enumerate(session.command_log.history))

    # Streaming

    def _start_stream(self, session: TerminalSession, lines: List[str]):
        session.is_running = True
        session.stream_task = asyncio.create_task(self._stream(session, list(lines)))

    async def _stream(self, session: TerminalSession, lines: List[str]):
        """Append one line per tick until done or cancelled."""
        try:
            for line in lines:
                await asyncio.sleep(self.config.stream_interval)
                session.append(line, EntryType.OUTPUT)
        finally:
            # A cancelled stream may already have been replaced by a new one.
            if session.stream_task is asyncio.current_task():
                session.stream_task = None
                session.is_running = False
                session.active_command = None
            logger.debug("session %s: streaming finished", session.id)


async def _seed(tree: VirtualFileTree, config: TerminalConfig):
    """Give an empty workspace the folder new terminals start in."""
    if tree.root.children or tree.exists(config.initial_dir):
        return
    parent, name = split_path(config.initial_dir)
    if name and tree.exists(parent):
        await tree.create_node(parent, name, NodeType.FOLDER)


async def _run_terminal(args: argparse.Namespace) -> int:
    from .sessions import SessionManager
    from .store import JsonFileStore, MemoryStore

    store = JsonFileStore(args.store) if args.store else MemoryStore()
    tree = await VirtualFileTree.load(store)
    config = TerminalConfig(initial_dir=args.directory)
    await _seed(tree, config)

    manager = SessionManager(tree, config)
    session = await manager.create_session(session_id='terminal-cli')

    async def run(line: str) -> CommandResult:
        mark = len(session.history)
        result = await manager.execute(session.id, line)
        await session.wait_idle()
        for entry in session.history[mark:]:
            if entry.type is not EntryType.COMMAND:
                print(entry.content)
        return result

    try:
        if args.command:
            result = await run(args.command)
            return result.exit_code

        print(config.welcome_message)
        print("Type 'help' for help, 'exit' to quit")
        while True:
            prompt = config.prompt_format.format(cwd=session.current_dir)
            try:
                line = await asyncio.to_thread(input, prompt)
            except EOFError:
                print()
                break
            if line.strip() in ('exit', 'quit'):
                break
            await run(line)
        return 0
    finally:
        await manager.close_session(session.id)


def main():
    """Main entry point for the terminal."""
    parser = argparse.ArgumentParser(description='vfshell terminal')
    parser.add_argument('-c', '--command', help='Execute command and exit')
    parser.add_argument('-d', '--directory', help='Set initial directory', default='/src')
    parser.add_argument('--store', help='JSON file holding the workspace')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s',
    )
    try:
        sys.exit(asyncio.run(_run_terminal(args)))
    except KeyboardInterrupt:
        print('^C')
        sys.exit(130)


if __name__ == '__main__':
    main()
