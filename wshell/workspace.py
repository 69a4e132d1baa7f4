#!/usr/bin/env python3
"""
Workspace filesystems for wshell.

The interpreter never touches a real disk directly: every builtin goes
through a WorkspaceStore, which keys files by a workspace identifier and
a slash-separated path relative to that workspace's root.

Two stores are provided:
- MemoryWorkspace keeps everything in dictionaries (tests, throwaway sessions)
- DirectoryWorkspace maps each workspace onto a directory on the host
"""

import os
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Set

logger = logging.getLogger(__name__)

WORKSPACE_MOUNT = '/workspace'
ROOT = '.'


class WorkspaceError(Exception):
    """A workspace operation could not be completed."""


class WorkspaceNotFound(WorkspaceError, FileNotFoundError):
    """The requested file or directory does not exist."""


def normalize_path(path: str, cwd: str = ROOT) -> str:
    """
    Resolve a user supplied path to a workspace-relative path.

    A leading /workspace is stripped, other absolute paths are taken from
    the workspace root, and relative paths are joined onto cwd. The root
    itself is returned as '.'.
    """
    cleaned = path
    if cleaned == WORKSPACE_MOUNT or cleaned.startswith(WORKSPACE_MOUNT + '/'):
        cleaned = cleaned[len(WORKSPACE_MOUNT):]
        if not cleaned.strip('/'):
            return ROOT
        cleaned = '/' + cleaned.lstrip('/')

    if not cleaned.startswith('/') and cwd != ROOT:
        cleaned = f"{cwd}/{cleaned}"

    parts: List[str] = []
    for part in cleaned.split('/'):
        if part == '' or part == '.':
            continue
        elif part == '..':
            if parts:
                parts.pop()
        else:
            parts.append(part)

    return '/'.join(parts) or ROOT


def display_path(path: str) -> str:
    """Render a workspace-relative path the way the shell shows it."""
    if path == ROOT:
        return WORKSPACE_MOUNT
    return f"{WORKSPACE_MOUNT}/{path}"


def _split(path: str) -> List[str]:
    return [part for part in path.replace('\\', '/').split('/') if part and part != '.']


class WorkspaceStore(ABC):
    """Interface every workspace filesystem implements."""

    @abstractmethod
    async def read_file(self, workspace_id: str, path: str) -> str:
        """Return the text of a file; raises WorkspaceNotFound if absent."""

    @abstractmethod
    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        """Write a file, creating intermediate directories."""

    @abstractmethod
    async def list_files(self, workspace_id: str, path: str = ROOT) -> List[str]:
        """Sorted entry names of a directory, directories suffixed with '/'."""

    @abstractmethod
    async def delete_file(self, workspace_id: str, path: str) -> None:
        """Remove a file or an empty directory."""

    async def file_exists(self, workspace_id: str, path: str) -> bool:
        """True if path names a readable file."""
        try:
            await self.read_file(workspace_id, path)
            return True
        except WorkspaceError:
            return False


class MemoryWorkspace(WorkspaceStore):
    """
    In-memory workspace filesystem.

    Files live in a dict per workspace; directories are tracked in a set
    so that they survive the deletion of their last file.
    """

    def __init__(self):
        # workspace id -> path -> content
        self.files: Dict[str, Dict[str, str]] = {}
        # workspace id -> directory paths
        self.dirs: Dict[str, Set[str]] = {}

    def _files(self, workspace_id: str) -> Dict[str, str]:
        return self.files.setdefault(workspace_id, {})

    def _dirs(self, workspace_id: str) -> Set[str]:
        return self.dirs.setdefault(workspace_id, set())

    def _is_dir(self, workspace_id: str, path: str) -> bool:
        return path == ROOT or path in self._dirs(workspace_id)

    async def read_file(self, workspace_id: str, path: str) -> str:
        key = '/'.join(_split(path))
        files = self._files(workspace_id)
        if key not in files:
            raise WorkspaceNotFound(f"{path}: No such file")
        return files[key]

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        parts = _split(path)
        if not parts:
            raise WorkspaceError('Empty file path')
        key = '/'.join(parts)
        if self._is_dir(workspace_id, key):
            raise WorkspaceError(f"{path}: Is a directory")

        # Create intermediate directories
        dirs = self._dirs(workspace_id)
        for depth in range(1, len(parts)):
            parent = '/'.join(parts[:depth])
            if parent in self._files(workspace_id):
                raise WorkspaceError(f"{parent}: Not a directory")
            dirs.add(parent)

        self._files(workspace_id)[key] = content

    async def list_files(self, workspace_id: str, path: str = ROOT) -> List[str]:
        key = '/'.join(_split(path)) or ROOT
        if not self._is_dir(workspace_id, key):
            raise WorkspaceNotFound(f"{path}: No such directory")

        prefix = '' if key == ROOT else key + '/'
        entries = set()
        for file_path in self._files(workspace_id):
            if file_path.startswith(prefix) and '/' not in file_path[len(prefix):]:
                entries.add(file_path[len(prefix):])
        for dir_path in self._dirs(workspace_id):
            if dir_path.startswith(prefix) and '/' not in dir_path[len(prefix):]:
                entries.add(dir_path[len(prefix):] + '/')
        return sorted(entries)

    async def delete_file(self, workspace_id: str, path: str) -> None:
        key = '/'.join(_split(path))
        files = self._files(workspace_id)
        if key in files:
            del files[key]
            return
        if key and self._is_dir(workspace_id, key):
            if await self.list_files(workspace_id, key):
                raise WorkspaceError(f"{path}: Directory not empty")
            self._dirs(workspace_id).discard(key)
            return
        raise WorkspaceNotFound(f"{path}: No such file")


class DirectoryWorkspace(WorkspaceStore):
    """
    Workspace filesystem backed by a host directory.

    Workspace `id` lives under ``root/groups/<id>``; colons in ids are
    replaced with dashes so ids like ``chat:42`` stay portable.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def workspace_dir(self, workspace_id: str) -> Path:
        safe_id = workspace_id.replace(':', '-')
        return self.root / 'groups' / safe_id

    def _resolve(self, workspace_id: str, path: str) -> Path:
        base = self.workspace_dir(workspace_id)
        resolved = base.joinpath(*_split(path))
        # Paths are normalized upstream; still refuse anything escaping base
        if '..' in _split(path):
            raise WorkspaceError(f"{path}: Path escapes the workspace")
        return resolved

    async def read_file(self, workspace_id: str, path: str) -> str:
        target = self._resolve(workspace_id, path)
        if not target.is_file():
            raise WorkspaceNotFound(f"{path}: No such file")
        return await asyncio.to_thread(target.read_text, encoding='utf-8')

    async def write_file(self, workspace_id: str, path: str, content: str) -> None:
        if not _split(path):
            raise WorkspaceError('Empty file path')
        target = self._resolve(workspace_id, path)
        if target.is_dir():
            raise WorkspaceError(f"{path}: Is a directory")

        def write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding='utf-8')

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise WorkspaceError(f"{path}: {e.strerror or e}") from e

    async def list_files(self, workspace_id: str, path: str = ROOT) -> List[str]:
        target = self._resolve(workspace_id, path)
        is_root = not _split(path)

        def listing():
            if is_root:
                target.mkdir(parents=True, exist_ok=True)
            if not target.is_dir():
                return None
            return sorted(
                entry.name + '/' if entry.is_dir() else entry.name
                for entry in target.iterdir()
            )

        entries = await asyncio.to_thread(listing)
        if entries is None:
            raise WorkspaceNotFound(f"{path}: No such directory")
        return entries

    async def delete_file(self, workspace_id: str, path: str) -> None:
        if not _split(path):
            raise WorkspaceError('Cannot delete the workspace root')
        target = self._resolve(workspace_id, path)
        try:
            if target.is_dir():
                await asyncio.to_thread(target.rmdir)
            else:
                await asyncio.to_thread(target.unlink)
        except FileNotFoundError as e:
            raise WorkspaceNotFound(f"{path}: No such file") from e
        except OSError as e:
            logger.debug("delete of %s in %s failed: %s", path, workspace_id, e)
            raise WorkspaceError(f"{path}: {e.strerror or e}") from e
