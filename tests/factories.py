"""Record builders and in-memory collaborators shared by the test modules."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from yuque_mirror.models import DocDetail, DocSummary, Repository, RepositoryDetail, TocItem, User
from yuque_mirror.tree import RepoRecords, TreeNode


def toc(type_: str, title: str, uuid: str, parent: str = "", url: str = "") -> TocItem:
    return TocItem(type=type_, title=title, uuid=uuid, parent_uuid=parent, url=url)


def doc(doc_id: int, slug: str, title: str = "", published_at: str = "2024-01-01T00:00:00Z") -> DocSummary:
    return DocSummary(id=doc_id, slug=slug, title=title or slug, published_at=published_at)


def records(namespace: str, name: str, items: list[TocItem], docs: list[DocSummary] | None = None) -> RepoRecords:
    return RepoRecords(Repository(namespace=namespace, name=name), items, docs or [])


@dataclass
class FakeSource:
    """In-memory content source with mutable records between cycles."""

    repos: list[Repository] = field(default_factory=list)
    tocs: dict[str, list[TocItem]] = field(default_factory=dict)
    docs: dict[str, list[DocSummary]] = field(default_factory=dict)
    bodies: dict[tuple[str, str], str] = field(default_factory=dict)

    def add_repo(self, namespace: str, name: str) -> None:
        self.repos.append(Repository(namespace=namespace, name=name, type="Book"))
        self.tocs.setdefault(namespace, [])
        self.docs.setdefault(namespace, [])

    def list_repos(self) -> list[Repository]:
        return list(self.repos)

    def list_records(self, namespace: str) -> tuple[list[TocItem], list[DocSummary]]:
        return list(self.tocs[namespace]), list(self.docs[namespace])

    def fetch_document_body(self, namespace: str, slug: str) -> DocDetail | None:
        body = self.bodies.get((namespace, slug))
        if body is None:
            return None
        summary = next(item for item in self.docs[namespace] if item.slug == slug)
        return DocDetail(**summary.model_dump(), body=body)


class StubRenderer:
    """Renders ``# title`` plus the revision; can be told to fail or to write nothing for some slugs."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self.empty: set[str] = set()

    def render(self, node: TreeNode, docs: Mapping[str, TreeNode]) -> str | None:
        self.calls.append(node.slug)
        if node.slug in self.failing:
            msg = f"cannot render {node.slug}"
            raise RuntimeError(msg)
        if node.slug in self.empty:
            return None
        return f"# {node.title}\n\n{node.revision}\n"


TOC_YML = """\
- type: META
  count: 3
  display_level: 1
  tail_type: UNCREATED_DOC
  published: true
- type: TITLE
  title: Guide
  uuid: g
  url: ""
  parent_uuid: ""
- type: DOC
  title: Intro
  uuid: i
  url: intro
  parent_uuid: g
- type: DOC
  title: Setup
  uuid: s
  url: setup
  parent_uuid: null
"""


class FakeClient:
    """Stands in for :class:`yuque_mirror.sdk.YuqueClient` with canned payloads."""

    host = "https://www.yuque.com"

    def __init__(self, toc_yml: str = TOC_YML) -> None:
        self.toc_yml = toc_yml
        self.published = {"intro": "2024-01-01T00:00:00Z", "setup": "2024-01-01T00:00:00Z"}
        self.titles = {"intro": "Intro", "setup": "Setup"}
        self.ids = {"intro": 1, "setup": 2}
        self.detail_calls: list[str] = []

    def __enter__(self) -> FakeClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def get_user(self, user: str = "") -> User:
        return User(id=1, login=user or "me", name="Me")

    def get_repos(self, user: str) -> list[Repository]:
        return [
            Repository(id=1, namespace=f"{user}/book", name="Book", type="Book"),
            Repository(id=2, namespace=f"{user}/board", name="Board", type="Design"),
        ]

    def get_repo_detail(self, namespace: str) -> RepositoryDetail:
        return RepositoryDetail(namespace=namespace, name="Handbook", toc_yml=self.toc_yml)

    def _summaries(self) -> list[DocSummary]:
        return [
            DocSummary(id=self.ids[slug], slug=slug, title=self.titles[slug], published_at=published)
            for slug, published in self.published.items()
        ]

    def get_docs(self, namespace: str, on_progress=None) -> list[DocSummary]:
        docs = self._summaries()
        if on_progress is not None:
            on_progress(len(docs), len(docs))
        return docs

    def get_doc_detail(self, namespace: str, slug: str) -> DocDetail:
        self.detail_calls.append(slug)
        summary = next(item for item in self._summaries() if item.slug == slug)
        return DocDetail(**summary.model_dump(), body=f"Body of {slug}")
