"""Assemble flat parent-pointer records into the mirror tree.

Nodes live in an arena (``Tree.nodes``) and reference each other by
integer index, so the tree never holds shared object references and a
single visited-set check during traversal is enough to reject cycles.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from yuque_mirror.exceptions import SourceReadError
from yuque_mirror.models import TOC_KIND_MAP, TOC_META_TYPE, DocSummary, NodeKind, Repository, TocItem
from yuque_mirror.tree.paths import MARKDOWN_SUFFIX, PathAssigner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TreeNode:
    """A record placed in the tree, with its assigned relative path."""

    index: int
    kind: NodeKind
    title: str
    uuid: str
    parent_uuid: str
    namespace: str
    slug: str
    file_path: str = ""
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    doc_id: int | None = None
    revision: str | None = None
    content: str | None = None

    @property
    def identity_key(self) -> str:
        return f"{self.namespace}/{self.slug}"

    @property
    def output_path(self) -> str:
        """Relative path this node materializes as in the output area."""
        if self.kind.is_file:
            return f"{self.file_path}{MARKDOWN_SUFFIX}"
        return self.file_path


@dataclass(slots=True)
class RepoRecords:
    """Everything read from the content source for one repository."""

    repository: Repository
    toc: list[TocItem]
    docs: list[DocSummary]


@dataclass(slots=True)
class Tree:
    """Rooted forest of :class:`TreeNode` plus the ``namespace/slug`` index."""

    nodes: list[TreeNode] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)
    docs: dict[str, TreeNode] = field(default_factory=dict)

    def add(self, node: TreeNode) -> TreeNode:
        if node.parent is None:
            self.roots.append(node.index)
        else:
            self.nodes[node.parent].children.append(node.index)
        if node.kind.is_document and node.slug:
            self.docs[node.identity_key] = node
        self.nodes.append(node)
        return node

    def new_index(self) -> int:
        return len(self.nodes)

    def children_of(self, node: TreeNode) -> list[TreeNode]:
        return [self.nodes[index] for index in node.children]

    def parent_of(self, node: TreeNode) -> TreeNode | None:
        return None if node.parent is None else self.nodes[node.parent]

    def walk(self) -> Iterator[TreeNode]:
        """Yield every node pre-order, siblings in insertion order."""
        visited: set[int] = set()
        stack = list(reversed(self.roots))
        while stack:
            index = stack.pop()
            if index in visited:
                msg = f"Node {self.nodes[index].uuid} reached twice while walking the tree"
                raise SourceReadError(msg)
            visited.add(index)
            node = self.nodes[index]
            yield node
            stack.extend(reversed(node.children))

    def __iter__(self) -> Iterator[TreeNode]:
        return self.walk()

    def __len__(self) -> int:
        return len(self.nodes)


def _find_cycle(start: TocItem, by_uuid: dict[str, TocItem], root_uuid: str) -> list[str] | None:
    """Follow parent pointers from ``start``; return the cycle if one exists."""
    chain: list[str] = []
    seen: set[str] = set()
    current: TocItem | None = start
    while current is not None:
        if current.uuid in seen:
            return chain[chain.index(current.uuid) :]
        seen.add(current.uuid)
        chain.append(current.uuid)
        parent_uuid = current.parent_uuid or root_uuid
        if parent_uuid == root_uuid:
            return None
        current = by_uuid.get(parent_uuid)
    return None


def _listed_items(repo: Repository, toc: Sequence[TocItem]) -> list[TocItem]:
    items: list[TocItem] = []
    for item in toc:
        if item.type == TOC_META_TYPE:
            continue
        if item.type not in TOC_KIND_MAP:
            logger.warning("Skipping TOC entry %r of unknown type %s in %s", item.title, item.type, repo.namespace)
            continue
        items.append(item)
    return items


def build_repo_tree(
    records: RepoRecords,
    *,
    tree: Tree,
    assigner: PathAssigner,
    repo_dir: str | None = None,
    skip_draft: bool = True,
    uncategorized_title: str = "_uncategorized",
) -> TreeNode:
    """Attach one repository (ROOT node and all descendants) to ``tree``."""
    repo = records.repository
    namespace = repo.namespace
    root_uuid = namespace

    if repo_dir == ".":
        root_path = assigner.passthrough()
    else:
        root_path = assigner.assign("", NodeKind.ROOT, repo_dir or repo.name, "")
    root = tree.add(
        TreeNode(
            index=tree.new_index(),
            kind=NodeKind.ROOT,
            title=repo_dir or repo.name,
            uuid=root_uuid,
            parent_uuid="",
            namespace=namespace,
            slug=namespace,
            file_path=root_path,
        )
    )

    listed = _listed_items(repo, records.toc)
    by_uuid: dict[str, TocItem] = {}
    children_by_parent: dict[str, list[TocItem]] = {}
    for item in listed:
        if item.uuid in by_uuid or item.uuid == root_uuid:
            msg = f"Duplicate TOC identity {item.uuid} in {namespace}"
            raise SourceReadError(msg)
        by_uuid[item.uuid] = item
        children_by_parent.setdefault(item.parent_uuid or root_uuid, []).append(item)

    docs_by_slug = {doc.slug: doc for doc in records.docs}

    reached: set[str] = set()
    stack: list[tuple[TocItem, int]] = [(item, root.index) for item in reversed(children_by_parent.get(root_uuid, []))]
    while stack:
        item, parent_index = stack.pop()
        if item.uuid in reached:
            msg = f"TOC entry {item.uuid} in {namespace} is reachable twice"
            raise SourceReadError(msg)
        reached.add(item.uuid)

        parent = tree.nodes[parent_index]
        kind = TOC_KIND_MAP[item.type]
        summary = docs_by_slug.get(item.url) if kind.is_document else None
        node = tree.add(
            TreeNode(
                index=tree.new_index(),
                kind=kind,
                title=item.title,
                uuid=item.uuid,
                parent_uuid=parent.uuid,
                namespace=namespace,
                slug=item.url,
                file_path=assigner.assign(parent.file_path, kind, item.title, parent.uuid),
                parent=parent.index,
                doc_id=summary.id if summary else None,
                revision=summary.published_at if summary else None,
            )
        )
        stack.extend((child, node.index) for child in reversed(children_by_parent.get(item.uuid, [])))

    for item in listed:
        if item.uuid in reached:
            continue
        cycle = _find_cycle(item, by_uuid, root_uuid)
        if cycle:
            msg = f"Parent-pointer cycle in {namespace}: {' -> '.join(cycle)}"
            raise SourceReadError(msg, "The TOC of this repository is malformed; re-crawl it.")
        logger.warning("Dropping TOC entry %r in %s: parent %s not found", item.title, namespace, item.parent_uuid)

    listed_slugs = {item.url for item in listed}
    drafts = [doc for doc in records.docs if doc.slug not in listed_slugs]
    if drafts and not skip_draft:
        bucket_uuid = f"{root_uuid}_uncategorized"
        bucket = tree.add(
            TreeNode(
                index=tree.new_index(),
                kind=NodeKind.CONTAINER,
                title=uncategorized_title,
                uuid=bucket_uuid,
                parent_uuid=root_uuid,
                namespace=namespace,
                slug="",
                file_path=assigner.assign(root.file_path, NodeKind.CONTAINER, uncategorized_title, root_uuid),
                parent=root.index,
            )
        )
        for doc in drafts:
            tree.add(
                TreeNode(
                    index=tree.new_index(),
                    kind=NodeKind.DRAFT_DOC,
                    title=doc.title,
                    uuid=str(doc.id),
                    parent_uuid=bucket_uuid,
                    namespace=namespace,
                    slug=doc.slug,
                    file_path=assigner.assign(bucket.file_path, NodeKind.DRAFT_DOC, doc.title, bucket_uuid),
                    parent=bucket.index,
                    doc_id=doc.id,
                    revision=doc.published_at,
                )
            )
    elif drafts:
        logger.debug("Skipping %d unlisted document(s) in %s", len(drafts), namespace)

    return root


def build_tree(
    repos: Sequence[RepoRecords],
    *,
    repo_dir: str | None = None,
    skip_draft: bool = True,
    uncategorized_title: str = "_uncategorized",
) -> Tree:
    """Build the whole mirror tree, assigning every node its unique path."""
    tree = Tree()
    assigner = PathAssigner()
    for records in repos:
        build_repo_tree(
            records,
            tree=tree,
            assigner=assigner,
            repo_dir=repo_dir,
            skip_draft=skip_draft,
            uncategorized_title=uncategorized_title,
        )
    logger.debug("Built tree with %d node(s) across %d repo(s)", len(tree), len(repos))
    return tree
