"""Local metadata cache that feeds the build.

The crawler stores every remote payload under ``<output>/.meta``; the
build reads records back through the :class:`ContentSource` protocol, so
it never needs network access itself.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, TypeAdapter, ValidationError

from yuque_mirror.exceptions import SourceReadError
from yuque_mirror.fs import read_json, write_json
from yuque_mirror.models import DocDetail, DocSummary, Repository, TocItem

logger = logging.getLogger(__name__)

_TOC_ADAPTER = TypeAdapter(list[TocItem])
_DOCS_ADAPTER = TypeAdapter(list[DocSummary])


class ContentSource(Protocol):
    """What the build needs from wherever the corpus records come from."""

    def list_repos(self) -> list[Repository]: ...

    def list_records(self, namespace: str) -> tuple[list[TocItem], list[DocSummary]]: ...

    def fetch_document_body(self, namespace: str, slug: str) -> DocDetail | None: ...


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


class MetaStore:
    """Read/write access to the crawled payloads under ``meta_dir``."""

    def __init__(self, meta_dir: Path) -> None:
        self.meta_dir = meta_dir

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def repo_dir(self, namespace: str) -> Path:
        return self.meta_dir.joinpath(*namespace.split("/"))

    def doc_detail_path(self, namespace: str, slug: str) -> Path:
        return self.repo_dir(namespace) / "docs" / f"{slug}.json"

    def _read(self, path: Path, what: str) -> Any:
        try:
            return read_json(path)
        except FileNotFoundError as exc:
            msg = f"Missing {what}: {path}"
            raise SourceReadError(msg, "Run the crawl step first.") from exc
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"Cannot read {what} at {path}: {exc}"
            raise SourceReadError(msg) from exc

    # ------------------------------------------------------------------
    # ContentSource
    # ------------------------------------------------------------------

    def list_repos(self) -> list[Repository]:
        repos: list[Repository] = []
        if not self.meta_dir.exists():
            return repos
        for path in sorted(self.meta_dir.glob("*/*/repo.json")):
            try:
                repo = Repository.model_validate(self._read(path, "repository"))
            except ValidationError as exc:
                msg = f"Invalid repository payload at {path}: {exc}"
                raise SourceReadError(msg) from exc
            if repo.is_book:
                repos.append(repo)
        return repos

    def list_records(self, namespace: str) -> tuple[list[TocItem], list[DocSummary]]:
        base = self.repo_dir(namespace)
        raw_toc = self._read(base / "toc.json", "table of contents")
        raw_docs = self._read(base / "docs.json", "document list")
        try:
            toc = _TOC_ADAPTER.validate_python(raw_toc or [])
            docs = _DOCS_ADAPTER.validate_python(raw_docs or [])
        except ValidationError as exc:
            msg = f"Invalid records for {namespace}: {exc}"
            raise SourceReadError(msg) from exc
        return toc, docs

    def fetch_document_body(self, namespace: str, slug: str) -> DocDetail | None:
        path = self.doc_detail_path(namespace, slug)
        if not path.exists():
            return None
        try:
            return DocDetail.model_validate(read_json(path))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable document cache %s: %s", path, exc)
            return None

    # ------------------------------------------------------------------
    # Crawl side
    # ------------------------------------------------------------------

    def save(self, relative: str, payload: Any) -> Path:
        path = self.meta_dir.joinpath(*relative.split("/"))
        write_json(path, _dump(payload))
        return path

    def save_doc_detail(self, namespace: str, detail: DocDetail) -> None:
        write_json(self.doc_detail_path(namespace, detail.slug), _dump(detail))

    def cached_published_at(self, namespace: str, slug: str) -> str | None:
        detail = self.fetch_document_body(namespace, slug)
        return detail.published_at if detail else None

    def prune_doc_details(self, namespace: str, keep: set[str]) -> list[str]:
        """Drop cached details of documents that are no longer listed."""
        docs_dir = self.repo_dir(namespace) / "docs"
        removed: list[str] = []
        if not docs_dir.exists():
            return removed
        for path in sorted(docs_dir.glob("*.json")):
            if path.stem not in keep:
                path.unlink(missing_ok=True)
                removed.append(path.stem)
        if removed:
            logger.info("Pruned %d cached document(s) from %s", len(removed), namespace)
        return removed
