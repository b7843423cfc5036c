"""
vfshell - a virtual filesystem with a shell-command interpreter

This package provides a path-addressed tree of files and folders persisted to
a pluggable key-value store, a small command language (ls, cd, mkdir, rm, mv,
cp, cat, grep, echo, redirection and piping) and independent terminal
sessions that run it.
"""

__version__ = "0.1.0"

from .errors import (
    ErrorKind,
    ShellError,
    PathNotFound,
    PathExists,
    NotADirectory,
    NotAFile,
    DirectoryNotEmpty,
    UnknownCommand,
    MissingArgument,
    BusyError,
    PersistenceError,
    FileLocked,
    InvalidArgument,
    InvalidOperation,
)

from .paths import resolve_path

from .nodes import (
    Node,
    FileNode,
    FolderNode,
    NodeType,
    Revision,
)

from .store import (
    PersistenceStore,
    MemoryStore,
    JsonFileStore,
)

from .filetree import VirtualFileTree

from .workspace import (
    export_workspace,
    import_workspace,
    parse_workspace,
)

from .command_parser import (
    CommandParser,
    ParsedCommand,
    Redirect,
    RedirectMode,
)

from .terminal import (
    TerminalSession,
    TerminalConfig,
    CommandExecutor,
    CommandHistory,
    CommandResult,
    EntryType,
    HistoryEntry,
    RecallDirection,
)

from .sessions import SessionManager

__all__ = [
    # Errors
    "ErrorKind",
    "ShellError",
    "PathNotFound",
    "PathExists",
    "NotADirectory",
    "NotAFile",
    "DirectoryNotEmpty",
    "UnknownCommand",
    "MissingArgument",
    "BusyError",
    "PersistenceError",
    "FileLocked",
    "InvalidArgument",
    "InvalidOperation",

    # Filesystem
    "resolve_path",
    "Node",
    "FileNode",
    "FolderNode",
    "NodeType",
    "Revision",
    "VirtualFileTree",

    # Persistence
    "PersistenceStore",
    "MemoryStore",
    "JsonFileStore",
    "export_workspace",
    "import_workspace",
    "parse_workspace",

    # Command parser
    "CommandParser",
    "ParsedCommand",
    "Redirect",
    "RedirectMode",

    # Terminal
    "TerminalSession",
    "TerminalConfig",
    "CommandExecutor",
    "CommandHistory",
    "CommandResult",
    "EntryType",
    "HistoryEntry",
    "RecallDirection",
    "SessionManager",

    # Version info
    "__version__",
]
