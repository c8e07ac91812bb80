"""Cross-run state: per-document revision tags and last-known output paths.

Both stores follow the same lifecycle: the previous cycle's table is read
once and never mutated, observations for the current cycle accumulate in
a separate map, and :meth:`commit` writes that map atomically. Callers
commit only after a fully drained, reconciled cycle, so an interrupted
run leaves the files of the last successful one in place.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from yuque_mirror.fs import read_json, write_json

logger = logging.getLogger(__name__)

REVISIONS_FILENAME = "docs-published-at.json"
RENAME_INDEX_FILENAME = "docs-filepath.json"
UNWRITTEN_FILENAME = "docs-unwritten.json"


def _load_table(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    try:
        data = read_json(path)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("State file corrupted, starting from scratch: %s", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("State file is not a mapping, starting from scratch: %s", path)
        return {}
    return {str(key): str(value) for key, value in data.items() if value is not None}


class ChangeCache:
    """Last rendered revision tag per document of one namespace.

    A tag can also be recorded as *unwritten*: the renderer saw that
    revision and chose to produce no file for it. Such a document is not
    rendered again until its tag changes, even though its output is absent.
    """

    def __init__(
        self,
        namespace: str,
        previous: dict[str, str] | None = None,
        unwritten: dict[str, str] | None = None,
    ) -> None:
        self.namespace = namespace
        self._previous = dict(previous or {})
        self._previous_unwritten = dict(unwritten or {})
        self._current: dict[str, str] = {}
        self._unwritten: dict[str, str] = {}

    @staticmethod
    def path_for(meta_dir: Path, namespace: str) -> Path:
        return meta_dir / namespace / REVISIONS_FILENAME

    @staticmethod
    def unwritten_path_for(meta_dir: Path, namespace: str) -> Path:
        return meta_dir / namespace / UNWRITTEN_FILENAME

    @classmethod
    def load(cls, meta_dir: Path, namespace: str) -> ChangeCache:
        return cls(
            namespace,
            _load_table(cls.path_for(meta_dir, namespace)),
            _load_table(cls.unwritten_path_for(meta_dir, namespace)),
        )

    def previous_tag(self, doc_id: str | int) -> str | None:
        return self._previous.get(str(doc_id))

    def should_render(self, doc_id: str | int, remote_tag: str | None, output_exists: bool) -> bool:
        """Return ``False`` for a known tag whose output is on disk or was deliberately not written."""
        key = str(doc_id)
        if remote_tag is None or self._previous.get(key) != remote_tag:
            return True
        if output_exists:
            return False
        return self._previous_unwritten.get(key) != remote_tag

    def record(self, doc_id: str | int, tag: str | None, *, written: bool = True) -> None:
        """Remember ``tag`` as rendered for the next cycle."""
        if tag is None:
            return
        key = str(doc_id)
        self._current[key] = tag
        if written:
            self._unwritten.pop(key, None)
        else:
            self._unwritten[key] = tag

    def carry_forward(self, doc_id: str | int) -> None:
        """Keep the previous tag (if any), e.g. after a failed render."""
        key = str(doc_id)
        previous = self._previous.get(key)
        if previous is not None:
            self._current[key] = previous
        else:
            self._current.pop(key, None)
        unwritten = self._previous_unwritten.get(key)
        if unwritten is not None and unwritten == previous:
            self._unwritten[key] = unwritten
        else:
            self._unwritten.pop(key, None)

    @property
    def observed(self) -> dict[str, str]:
        return dict(self._current)

    @property
    def unwritten(self) -> dict[str, str]:
        return dict(self._unwritten)

    def commit(self, meta_dir: Path) -> None:
        write_json(self.path_for(meta_dir, self.namespace), dict(sorted(self._current.items())))
        write_json(self.unwritten_path_for(meta_dir, self.namespace), dict(sorted(self._unwritten.items())))
        logger.debug(
            "Saved %d revision tag(s) for %s (%d unwritten)",
            len(self._current),
            self.namespace,
            len(self._unwritten),
        )


class RenameIndex:
    """Identity key (``namespace/slug``) to the output path used last cycle."""

    def __init__(self, previous: dict[str, str] | None = None) -> None:
        self._previous = dict(previous or {})
        self._current: dict[str, str] = {}

    @staticmethod
    def path_for(meta_dir: Path) -> Path:
        return meta_dir / RENAME_INDEX_FILENAME

    @classmethod
    def load(cls, meta_dir: Path) -> RenameIndex:
        return cls(_load_table(cls.path_for(meta_dir)))

    def detect_move(self, identity_key: str, new_path: str) -> str | None:
        """Return the previous path when the document lived somewhere else."""
        old_path = self._previous.get(identity_key)
        if old_path is not None and old_path != new_path:
            return old_path
        return None

    def record(self, identity_key: str, path: str) -> None:
        self._current[identity_key] = path

    @property
    def observed(self) -> dict[str, str]:
        return dict(self._current)

    def commit(self, meta_dir: Path) -> None:
        path = self.path_for(meta_dir)
        write_json(path, dict(sorted(self._current.items())))
        logger.info("Saved doc-filepath mapping to %s", path)
