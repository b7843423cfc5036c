#!/usr/bin/env python3
"""
Error taxonomy for vfshell.

Every failure a tree operation or a terminal command can report is a
ShellError carrying an ErrorKind. The terminal catches ShellError at the
executor boundary and turns it into an error entry; explorer callers catch it
around individual tree operations.
"""

from enum import Enum


class ErrorKind(Enum):
    """Stable identifiers for error categories."""
    PATH_NOT_FOUND = 'PathNotFound'
    PATH_EXISTS = 'PathExists'
    NOT_A_DIRECTORY = 'NotADirectory'
    NOT_A_FILE = 'NotAFile'
    DIRECTORY_NOT_EMPTY = 'DirectoryNotEmpty'
    UNKNOWN_COMMAND = 'UnknownCommand'
    MISSING_ARGUMENT = 'MissingArgument'
    BUSY = 'BusyError'
    PERSISTENCE = 'PersistenceError'
    FILE_LOCKED = 'FileLocked'
    INVALID_ARGUMENT = 'InvalidArgument'
    INVALID_OPERATION = 'InvalidOperation'


class ShellError(Exception):
    """Base class for all vfshell errors."""
    kind: ErrorKind = ErrorKind.INVALID_OPERATION


class PathNotFound(ShellError):
    kind = ErrorKind.PATH_NOT_FOUND


class PathExists(ShellError):
    kind = ErrorKind.PATH_EXISTS


class NotADirectory(ShellError):
    kind = ErrorKind.NOT_A_DIRECTORY


class NotAFile(ShellError):
    kind = ErrorKind.NOT_A_FILE


class DirectoryNotEmpty(ShellError):
    kind = ErrorKind.DIRECTORY_NOT_EMPTY


class UnknownCommand(ShellError):
    kind = ErrorKind.UNKNOWN_COMMAND


class MissingArgument(ShellError):
    kind = ErrorKind.MISSING_ARGUMENT


class BusyError(ShellError):
    """Raised when a session is still running a streaming command."""
    kind = ErrorKind.BUSY


class PersistenceError(ShellError):
    """The store rejected a write; the in-memory mutation was not applied."""
    kind = ErrorKind.PERSISTENCE


class FileLocked(ShellError):
    kind = ErrorKind.FILE_LOCKED


class InvalidArgument(ShellError):
    kind = ErrorKind.INVALID_ARGUMENT


class InvalidOperation(ShellError):
    kind = ErrorKind.INVALID_OPERATION
