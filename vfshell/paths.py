#!/usr/bin/env python3
"""
Path helpers for the virtual filesystem.

Paths are absolute, '/'-joined strings. Resolution only understands the
three literal forms '.', '..' and a plain relative name; a longer relative
path such as '../../x' is joined verbatim and will not be found by lookup.
Use is_normalized() to detect those.
"""

from typing import Tuple

ROOT = '/'


def resolve_path(cwd: str, value: str) -> str:
    """Resolve value against the working directory cwd."""
    if value.startswith('/'):
        return value
    if value == '.':
        return cwd
    if value == '..':
        parts = [p for p in cwd.split('/') if p]
        if parts:
            parts.pop()
        return '/' + '/'.join(parts) if parts else ROOT
    if cwd == ROOT:
        return ROOT + value
    return f"{cwd}/{value}"


def join_path(parent: str, name: str) -> str:
    """Path of child name under parent."""
    if parent == ROOT:
        return ROOT + name
    return f"{parent}/{name}"


def split_path(path: str) -> Tuple[str, str]:
    """Split path into (parent, name). The root splits into ('/', '')."""
    if path == ROOT:
        return ROOT, ''
    parent, _, name = path.rstrip('/').rpartition('/')
    return parent or ROOT, name


def parent_path(path: str) -> str:
    return split_path(path)[0]


def base_name(path: str) -> str:
    return split_path(path)[1]


def is_normalized(path: str) -> bool:
    """True when path is absolute and free of empty, '.' and '..' segments."""
    if path == ROOT:
        return True
    if not path.startswith('/') or path.endswith('/'):
        return False
    return all(part not in ('', '.', '..') for part in path[1:].split('/'))


def is_within(path: str, ancestor: str) -> bool:
    """True when path equals ancestor or lies below it."""
    if ancestor == ROOT:
        return path.startswith('/')
    return path == ancestor or path.startswith(ancestor + '/')
