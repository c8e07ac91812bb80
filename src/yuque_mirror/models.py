"""Remote payload models and the node kinds of the mirror tree."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeKind(str, Enum):
    """Kinds of nodes in the mirror tree."""

    ROOT = "ROOT"
    CONTAINER = "CONTAINER"
    DOC = "DOC"
    DRAFT_DOC = "DRAFT_DOC"
    UNCREATED_DOC = "UNCREATED_DOC"
    LINK = "LINK"

    @property
    def is_document(self) -> bool:
        """Whether the node is addressable by ``namespace/slug``."""
        return self in (NodeKind.DOC, NodeKind.DRAFT_DOC, NodeKind.UNCREATED_DOC)

    @property
    def is_file(self) -> bool:
        return self not in (NodeKind.ROOT, NodeKind.CONTAINER)


# Remote TOC ``type`` -> node kind. ``META`` entries carry no content.
TOC_KIND_MAP: dict[str, NodeKind] = {
    "TITLE": NodeKind.CONTAINER,
    "DOC": NodeKind.DOC,
    "UNCREATED_DOC": NodeKind.UNCREATED_DOC,
    "LINK": NodeKind.LINK,
}
TOC_META_TYPE = "META"


class _Payload(BaseModel):
    # Keep unknown remote fields so cached JSON round-trips untouched.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class User(_Payload):
    id: int
    login: str
    name: str = ""


class Repository(_Payload):
    id: int | None = None
    type: str = "Book"
    namespace: str
    slug: str = ""
    name: str

    @property
    def is_book(self) -> bool:
        return self.type == "Book"


class RepositoryDetail(Repository):
    toc_yml: str = ""


class TocItem(_Payload):
    type: str
    title: str = ""
    uuid: str
    url: str = ""
    parent_uuid: str = ""
    level: int | None = None

    @field_validator("url", "parent_uuid", "title", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("uuid", mode="before")
    @classmethod
    def _stringify_uuid(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class DocSummary(_Payload):
    id: int
    slug: str
    title: str = ""
    format: str = "markdown"
    published_at: str | None = None


class DocDetail(DocSummary):
    body: str | None = None
    body_lake: str | None = None
    body_sheet: str | None = Field(default=None, description="JSON payload for lakesheet documents")


class ApiEnvelope(_Payload):
    """Top-level ``{"data": ..., "meta": ...}`` envelope of API responses."""

    data: Any = None
    meta: dict[str, Any] | None = None
    message: str | None = None

    @property
    def total(self) -> int | None:
        if not self.meta:
            return None
        total = self.meta.get("total")
        return int(total) if total is not None else None
