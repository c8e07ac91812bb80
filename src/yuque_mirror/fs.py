"""Filesystem primitives for the output area.

The build engine touches the output area only through
:class:`LocalFilesystem`, which works on ``/``-separated paths relative to
the output root.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PathTraversalError(Exception):
    """Raised when a path would escape its intended directory."""


def safe_path_join(base_dir: Path, *parts: str) -> Path:
    """Join path parts and ensure the result stays within ``base_dir``."""
    if any(Path(part).is_absolute() for part in parts):
        absolute_part = next(part for part in parts if Path(part).is_absolute())
        msg = f"Absolute paths not allowed: {absolute_part}"
        raise PathTraversalError(msg)

    base_resolved = base_dir.resolve()
    candidate = base_resolved.joinpath(*parts)
    try:
        candidate.resolve().relative_to(base_resolved)
    except (ValueError, OSError) as err:
        msg = f"Path traversal detected: joining {parts} to {base_dir} would escape base directory"
        raise PathTraversalError(msg) from err
    # Returned unresolved: callers act on the link itself, never its target.
    return candidate


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via a temporary file and an atomic replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


def write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=2))


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


@dataclass(frozen=True, slots=True)
class DirEntry:
    name: str
    is_dir: bool


class LocalFilesystem:
    """The five primitives the build engine needs, rooted at ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def resolve(self, path: str) -> Path:
        if not path:
            return self.root.resolve()
        return safe_path_join(self.root, *path.split("/"))

    def create_directory(self, path: str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def write_file(self, path: str, data: bytes | str) -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            data = data.encode("utf-8")
        target.write_bytes(data)

    def delete(self, path: str) -> bool:
        """Remove a file or directory tree; return ``False`` if nothing was there."""
        target = self.resolve(path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
            return True
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, path: str) -> bool:
        return os.path.lexists(self.resolve(path))

    def list_directory(self, path: str) -> list[DirEntry]:
        entries: list[DirEntry] = []
        with os.scandir(self.resolve(path)) as iterator:
            for entry in iterator:
                entries.append(DirEntry(entry.name, entry.is_dir(follow_symlinks=False)))
        entries.sort(key=lambda entry: entry.name)
        return entries
