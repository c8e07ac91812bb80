"""Live reconciliation of the output area against the expected path set.

After a build walk, the output area is scanned and everything the current
tree does not expect is removed. Scanning (rather than diffing a saved
manifest of the previous run) also cleans up files that were added or
moved by hand between runs, at the cost of one directory walk per cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from yuque_mirror.exceptions import FilesystemTaskError, ReconciliationError
from yuque_mirror.fs import LocalFilesystem, PathTraversalError
from yuque_mirror.tree.paths import RESERVED_OUTPUT_PATHS

logger = logging.getLogger(__name__)

RESERVED_TOP_LEVEL = RESERVED_OUTPUT_PATHS


def _depth(path: str) -> int:
    return path.count("/")


def ancestors(path: str) -> Iterable[str]:
    """Yield every proper ancestor directory of a relative path."""
    parts = path.split("/")
    for end in range(1, len(parts)):
        yield "/".join(parts[:end])


@dataclass(slots=True)
class ReconcileResult:
    deleted_files: list[str] = field(default_factory=list)
    pruned_directories: list[str] = field(default_factory=list)
    failures: list[FilesystemTaskError] = field(default_factory=list)


class OutputReconciler:
    """Delete orphaned files and directories left empty in the output area.

    Top-level reserved areas (metadata, shared assets, temp) and hidden
    top-level entries are never scanned, so nothing inside them is ever
    deleted. Below the top level every entry is subject to reconciliation.
    """

    def __init__(self, fs: LocalFilesystem, reserved: Iterable[str] = RESERVED_TOP_LEVEL) -> None:
        self._fs = fs
        self._reserved = frozenset(reserved)

    def _is_excluded(self, parent: str, name: str) -> bool:
        # Only the top level is special; hidden names deeper down are mirrored titles.
        if parent:
            return False
        return name in self._reserved or name.startswith(".")

    def scan(self) -> list[tuple[str, bool]]:
        """Return every ``(path, is_dir)`` under the output root, excluded areas aside."""
        found: list[tuple[str, bool]] = []
        try:
            if not self._fs.exists(""):
                return found
            pending = [""]
            while pending:
                directory = pending.pop()
                for entry in self._fs.list_directory(directory):
                    if self._is_excluded(directory, entry.name):
                        continue
                    path = f"{directory}/{entry.name}" if directory else entry.name
                    found.append((path, entry.is_dir))
                    if entry.is_dir:
                        pending.append(path)
        except (OSError, PathTraversalError) as exc:
            msg = f"Cannot enumerate output area {self._fs.root}: {exc}"
            raise ReconciliationError(msg) from exc
        return found

    def reconcile(self, expected_files: set[str], expected_dirs: set[str]) -> ReconcileResult:
        """Remove what the current tree does not expect, deepest paths first."""
        protected = set(expected_dirs)
        for path in (*expected_files, *expected_dirs):
            protected.update(ancestors(path))

        result = ReconcileResult()
        discovered = sorted(self.scan(), key=lambda item: (-_depth(item[0]), item[0]))
        for path, is_dir in discovered:
            if not is_dir:
                if path in expected_files:
                    continue
                self._delete(path, result.deleted_files, result)
                continue

            if path in protected:
                continue
            try:
                empty = not self._fs.list_directory(path)
            except OSError as exc:
                msg = f"Cannot list {path}: {exc}"
                raise ReconciliationError(msg) from exc
            if empty:
                self._delete(path, result.pruned_directories, result)

        if result.deleted_files or result.pruned_directories:
            logger.info(
                "Reconciled output: %d orphaned file(s), %d empty directory(ies) removed",
                len(result.deleted_files),
                len(result.pruned_directories),
            )
        return result

    def _delete(self, path: str, bucket: list[str], result: ReconcileResult) -> None:
        try:
            self._fs.delete(path)
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path, exc)
            result.failures.append(FilesystemTaskError(path, str(exc)))
            return
        logger.info("Deleted: %s", path)
        bucket.append(path)
