#!/usr/bin/env python3
"""
Command parser for the vfshell terminal.

Translates a raw command line into a ParsedCommand. The grammar is small:

    command arg... [> target | >> target] [| command arg... ]

Tokens are separated by whitespace; there is no quoting. The pipe is split
off first and the right-hand side is parsed recursively, so a redirect binds
to the command it appears in.

Design Principles:
- Single responsibility: parse commands, don't execute them
- Pure functions with predictable outputs
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import MissingArgument
from .paths import resolve_path

PIPE = '|'


class RedirectMode(Enum):
    """Output redirection operators."""
    TRUNCATE = '>'   # Overwrite file
    APPEND = '>>'    # Append to file


@dataclass
class Redirect:
    """Where a command's output goes instead of the terminal."""
    mode: RedirectMode
    target: str


@dataclass
class ParsedCommand:
    """
    A command with its arguments, optional redirect and optional pipe.

    pipe holds the command that receives this command's output.
    """
    command: str
    args: List[str] = field(default_factory=list)
    pipe: Optional['ParsedCommand'] = None
    redirect: Optional[Redirect] = None

    def __str__(self) -> str:
        parts = [self.command] + self.args
        if self.redirect:
            parts += [self.redirect.mode.value, self.redirect.target]
        text = ' '.join(parts)
        if self.pipe:
            text += f" {PIPE} {self.pipe}"
        return text

    def is_empty(self) -> bool:
        return not self.command


class CommandParser:
    """Parser for terminal command lines."""

    REDIRECT_OPERATORS = {mode.value: mode for mode in RedirectMode}

    def parse(self, command_line: str, cwd: Optional[str] = None) -> ParsedCommand:
        """
        Parse a command line.

        When cwd is given, a redirect target is resolved against it.
        """
        return self._parse_tokens(command_line.split(), cwd)

    def _parse_tokens(self, tokens: List[str], cwd: Optional[str]) -> ParsedCommand:
        if not tokens:
            return ParsedCommand(command='')

        command, args = tokens[0], tokens[1:]

        pipe = None
        if PIPE in args:
            index = args.index(PIPE)
            pipe = self._parse_tokens(args[index + 1:], cwd)
            args = args[:index]

        redirect = None
        for index, token in enumerate(args):
            mode = self.REDIRECT_OPERATORS.get(token)
            if mode is None:
                continue
            if index + 1 >= len(args):
                raise MissingArgument(f"{command}: missing redirect target after '{token}'")
            target = args[index + 1]
            if cwd is not None:
                target = resolve_path(cwd, target)
            redirect = Redirect(mode=mode, target=target)
            args = args[:index]
            break

        return ParsedCommand(command=command, args=args, pipe=pipe, redirect=redirect)
