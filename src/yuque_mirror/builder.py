"""One build cycle: turn the cached corpus into the Markdown mirror.

The cycle reads records from a :class:`~yuque_mirror.source.ContentSource`,
builds the tree, walks it once (single-threaded) to decide what has to be
created, rewritten or moved, runs those tasks on the bounded scheduler,
removes whatever the tree no longer expects and finally commits the
cross-run state.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from yuque_mirror.config import META_DIR_NAME, MirrorSettings
from yuque_mirror.exceptions import TaskError
from yuque_mirror.fs import LocalFilesystem
from yuque_mirror.models import NodeKind
from yuque_mirror.reconcile import OutputReconciler
from yuque_mirror.render import DocumentRenderer
from yuque_mirror.scheduler import BuildScheduler, CreateDir, DeletePath, ScheduleResult, Task, TaskStatus, WriteFile
from yuque_mirror.source import ContentSource, MetaStore
from yuque_mirror.state import ChangeCache, RenameIndex
from yuque_mirror.tree import RepoRecords, Tree, TreeNode, build_tree

logger = logging.getLogger(__name__)


class Renderer(Protocol):
    def render(self, node: TreeNode, docs: Mapping[str, TreeNode]) -> str | None: ...


@dataclass(slots=True)
class BuildSummary:
    """Paths touched by one cycle, grouped by what happened to them."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[TaskError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "pruned": len(self.pruned),
            "skipped": len(self.skipped),
            "failed": len(self.failures),
        }


@dataclass(slots=True)
class _PendingTag:
    cache: ChangeCache
    key: str
    tag: str | None
    directory_doc: bool = False


@dataclass(slots=True)
class _Move:
    index: RenameIndex
    identity_key: str
    old_path: str


@dataclass(slots=True)
class BuildPlan:
    """Output of the planning walk: tasks plus what the tree expects on disk."""

    tasks: list[Task] = field(default_factory=list)
    expected_files: set[str] = field(default_factory=set)
    expected_dirs: set[str] = field(default_factory=set)
    skipped: list[str] = field(default_factory=list)
    pending_tags: dict[str, _PendingTag] = field(default_factory=dict)
    moves: dict[str, _Move] = field(default_factory=dict)
    deletions: list[DeletePath] = field(default_factory=list)
    retained: set[str] = field(default_factory=set)

    def apply(self, result: ScheduleResult, summary: BuildSummary | None = None) -> BuildSummary:
        """Fold scheduler outcomes into a summary and settle revision tags.

        A moved document's previous path is queued on :attr:`deletions` only
        once its new output settled. A failed move keeps the previous path,
        its file and its tag for the next cycle.
        """
        if summary is None:
            summary = BuildSummary(skipped=list(self.skipped))
        for outcome in result.outcomes:
            task = outcome.task
            pending = self.pending_tags.get(task.path) if isinstance(task, WriteFile) else None
            move = self.moves.get(task.path) if isinstance(task, WriteFile) else None

            if outcome.status is TaskStatus.FAILED:
                if outcome.error is not None:
                    summary.failures.append(outcome.error)
                if pending is not None:
                    pending.cache.carry_forward(pending.key)
                if move is not None:
                    move.index.record(move.identity_key, move.old_path)
                    self.retained.add(move.old_path)
                continue

            if pending is not None:
                unwritten = outcome.status is TaskStatus.SKIPPED and pending.directory_doc
                pending.cache.record(pending.key, pending.tag, written=not unwritten)
            if move is not None:
                self._queue_deletion(move.old_path)

            if outcome.status is TaskStatus.SKIPPED:
                if not isinstance(task, DeletePath):
                    summary.skipped.append(task.path)
            elif isinstance(task, DeletePath):
                summary.deleted.append(task.path)
            elif isinstance(task, WriteFile) and task.replaces_existing:
                summary.updated.append(task.path)
            else:
                summary.created.append(task.path)
        return summary

    def _queue_deletion(self, old_path: str) -> None:
        if old_path in self.expected_files or any(task.path == old_path for task in self.tasks):
            logger.debug("Previous path %s is reused this cycle, not deleting", old_path)
            return
        if all(task.path != old_path for task in self.deletions):
            self.deletions.append(DeletePath(old_path))


def content_tag(content: str) -> str:
    """Revision tag for nodes whose file content is known up front."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def _static_content(node: TreeNode) -> str:
    return node.slug if node.kind is NodeKind.LINK else ""


def plan_build(
    tree: Tree,
    *,
    fs: LocalFilesystem,
    caches: Mapping[str, ChangeCache],
    rename_index: RenameIndex,
    renderer: Renderer,
) -> BuildPlan:
    """Walk ``tree`` pre-order and decide every physical operation of the cycle."""
    plan = BuildPlan()

    for node in tree.walk():
        path = node.output_path

        if node.kind is NodeKind.ROOT:
            if path:
                plan.expected_dirs.add(path)
            continue

        if node.kind is NodeKind.CONTAINER:
            plan.expected_dirs.add(path)
            if not fs.exists(path):
                plan.tasks.append(CreateDir(path))
            continue

        plan.expected_files.add(path)
        cache = caches[node.namespace]
        exists = fs.exists(path)

        old_path = None
        if node.kind.is_document and node.slug:
            old_path = rename_index.detect_move(node.identity_key, path)
            rename_index.record(node.identity_key, path)
            if old_path is not None:
                logger.info("Moved: %s -> %s", old_path, path)
                plan.moves[path] = _Move(rename_index, node.identity_key, old_path)

        if node.kind in (NodeKind.DOC, NodeKind.DRAFT_DOC):
            key = str(node.doc_id) if node.doc_id is not None else node.uuid
            tag = node.revision
            task = WriteFile(path, render=_render_closure(renderer, node, tree.docs), replaces_existing=exists)
        else:
            content = _static_content(node)
            key = node.uuid
            tag = content_tag(content)
            task = WriteFile(path, content=content, replaces_existing=exists)

        if old_path is None and not cache.should_render(key, tag, exists):
            cache.record(key, tag, written=exists)
            plan.skipped.append(path)
            continue

        plan.tasks.append(task)
        plan.pending_tags[path] = _PendingTag(cache, key, tag, directory_doc=bool(node.children))

    logger.debug(
        "Planned %d task(s); %d file(s) and %d directory(ies) expected",
        len(plan.tasks),
        len(plan.expected_files),
        len(plan.expected_dirs),
    )
    return plan


def _render_closure(renderer: Renderer, node: TreeNode, docs: Mapping[str, TreeNode]) -> Callable[[], str | None]:
    def _render() -> str | None:
        content = renderer.render(node, docs)
        node.content = content
        return content

    return _render


def clean_output(fs: LocalFilesystem) -> list[str]:
    """Remove everything in the output area except the metadata area."""
    removed: list[str] = []
    if not fs.exists(""):
        return removed
    for entry in fs.list_directory(""):
        if entry.name == META_DIR_NAME:
            continue
        fs.delete(entry.name)
        removed.append(entry.name)
    logger.info("Cleaned %d top-level entr(ies) from %s", len(removed), fs.root)
    return removed


def build(
    settings: MirrorSettings,
    *,
    source: ContentSource | None = None,
    renderer: Renderer | None = None,
    http_client: httpx.Client | None = None,
) -> BuildSummary:
    """Run one full build cycle against ``settings.output_dir``."""
    fs = LocalFilesystem(settings.output_dir)
    source = source if source is not None else MetaStore(settings.meta_dir)

    if settings.clean:
        clean_output(fs)

    repos = source.list_repos()
    if not repos:
        logger.warning("No repositories found under %s; run the crawl step first.", settings.meta_dir)
        return BuildSummary()

    records = [RepoRecords(repo, *source.list_records(repo.namespace)) for repo in repos]
    tree = build_tree(
        records,
        repo_dir=settings.repo_dir,
        skip_draft=settings.skip_draft,
        uncategorized_title=settings.uncategorized_title,
    )
    caches = {repo.namespace: ChangeCache.load(settings.meta_dir, repo.namespace) for repo in repos}
    rename_index = RenameIndex.load(settings.meta_dir)

    owned_client = None
    if renderer is None:
        if http_client is None:
            owned_client = httpx.Client(
                headers={"User-Agent": settings.user_agent},
                timeout=settings.timeout,
            )
            http_client = owned_client
        renderer = DocumentRenderer(
            source,
            output_dir=settings.output_dir,
            host=settings.host,
            http_client=http_client,
        )

    scheduler = BuildScheduler(fs, settings.concurrency)
    try:
        plan = plan_build(tree, fs=fs, caches=caches, rename_index=rename_index, renderer=renderer)
        result = scheduler.schedule(plan.tasks)
    finally:
        if owned_client is not None:
            owned_client.close()

    summary = plan.apply(result)
    plan.apply(scheduler.schedule(plan.deletions), summary)

    if not settings.clean:
        reconciled = OutputReconciler(fs).reconcile(plan.expected_files | plan.retained, plan.expected_dirs)
        summary.deleted.extend(reconciled.deleted_files)
        summary.pruned.extend(reconciled.pruned_directories)
        summary.failures.extend(reconciled.failures)

    for cache in caches.values():
        cache.commit(settings.meta_dir)
    rename_index.commit(settings.meta_dir)

    logger.info(
        "Build finished: %s",
        ", ".join(f"{name}={count}" for name, count in summary.counts().items()),
    )
    return summary
