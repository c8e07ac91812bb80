"""Title sanitization and collision-free path assignment."""

from __future__ import annotations

import logging
import re
import unicodedata

from yuque_mirror.config import ASSETS_DIR_NAME, META_DIR_NAME, TEMP_DIR_NAME
from yuque_mirror.models import NodeKind

logger = logging.getLogger(__name__)

REPLACEMENT = "_"
MAX_SEGMENT_LENGTH = 100
FALLBACK_SEGMENT = "untitled"
MARKDOWN_SUFFIX = ".md"
RESERVED_OUTPUT_PATHS = frozenset({META_DIR_NAME, ASSETS_DIR_NAME, TEMP_DIR_NAME})

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]+')
_REPEATED_REPLACEMENT = re.compile(rf"{re.escape(REPLACEMENT)}{{2,}}")
_WINDOWS_RESERVED = re.compile(r"^(con|prn|aux|nul|com[1-9]|lpt[1-9])(\..*)?$", re.IGNORECASE)


def sanitize_segment(title: str | None) -> str:
    """Turn a document title into a single filesystem-safe path segment.

    Examples:
        >>> sanitize_segment("a/b: c?")
        'a_b_ c_'
        >>> sanitize_segment("..")
        '_'
        >>> sanitize_segment("CON")
        'CON_'

    """
    if title is None:
        return FALLBACK_SEGMENT

    text = unicodedata.normalize("NFC", title).strip()
    if not text:
        return FALLBACK_SEGMENT
    if text in (".", ".."):
        return REPLACEMENT

    text = _ILLEGAL_CHARS.sub(REPLACEMENT, text)
    text = _REPEATED_REPLACEMENT.sub(REPLACEMENT, text)
    if _WINDOWS_RESERVED.match(text):
        text = f"{text}{REPLACEMENT}"

    if len(text) > MAX_SEGMENT_LENGTH:
        text = text[:MAX_SEGMENT_LENGTH].rstrip()
    return text or FALLBACK_SEGMENT


def join_path(parent_path: str, segment: str) -> str:
    return f"{parent_path}/{segment}" if parent_path else segment


class PathAssigner:
    """Assign unique relative paths in traversal order.

    Collisions are counted per ``(parent identity, kind, sanitized title)``:
    the first node gets the bare title, later ones ``_1``, ``_2``... in the
    order they are assigned. Callers must assign pre-order (parent before
    children, siblings in source order) for the result to be reproducible.

    Every assignment also claims the path the node materializes as on disk
    (``<path>.md`` for files, ``<path>`` for directories). A candidate whose
    output path is already claimed, or is one of the reserved top-level
    areas, moves on to the next suffix.

    Hidden names at the top level are prefixed with ``_``: that level's
    hidden entries belong to the tooling, not the mirror.
    """

    def __init__(self) -> None:
        self._counters: dict[tuple[str, NodeKind, str], int] = {}
        self._claimed: set[str] = set(RESERVED_OUTPUT_PATHS)

    def assign(self, parent_path: str, kind: NodeKind, raw_title: str | None, traversal_key: str) -> str:
        """Return the relative path for a node titled ``raw_title``.

        ``traversal_key`` is the identity of the parent node; siblings share it.
        """
        title = sanitize_segment(raw_title)
        if not parent_path and title.startswith("."):
            title = f"{REPLACEMENT}{title}"
        key = (traversal_key, kind, title)
        count = self._counters.get(key, 0)

        while True:
            segment = f"{title}{REPLACEMENT}{count}" if count else title
            candidate = join_path(parent_path, segment)
            count += 1
            claim = f"{candidate}{MARKDOWN_SUFFIX}" if kind.is_file else candidate
            if claim not in self._claimed:
                break
            logger.debug("Path %s already claimed, trying next suffix", candidate)

        self._counters[key] = count
        self._claimed.add(claim)
        return candidate

    def passthrough(self) -> str:
        """Path for a root that maps onto the output root itself."""
        self._claimed.add("")
        return ""
