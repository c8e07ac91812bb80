"""Fetch repositories, tables of contents and changed documents into the metadata cache."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field

import yaml
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from yuque_mirror.config import DEFAULT_CONCURRENCY
from yuque_mirror.exceptions import SourceReadError
from yuque_mirror.logging_setup import console
from yuque_mirror.models import DocSummary, RepositoryDetail, TocItem
from yuque_mirror.sdk import YuqueClient
from yuque_mirror.source import MetaStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrawlResult:
    """What one repository crawl fetched."""

    namespace: str
    repository: RepositoryDetail
    toc: list[TocItem]
    docs: list[DocSummary]
    fetched: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)


def resolve_targets(client: YuqueClient, store: MetaStore, inputs: Sequence[str] | None) -> list[str]:
    """Expand ``user`` / ``user/repo`` / empty inputs into repo namespaces."""
    targets = list(inputs or []) or [""]
    namespaces: dict[str, None] = {}
    for raw in targets:
        parts = raw.strip().strip("/").split("/") if raw.strip() else [""]
        if len(parts) > 2:
            logger.warning("Invalid url path: %s", raw)
            continue
        if len(parts) == 2:
            namespaces[f"{parts[0]}/{parts[1]}"] = None
            continue

        user = client.get_user(parts[0])
        store.save(f"{user.login}/user.json", user)
        repos = client.get_repos(user.login)
        store.save(f"{user.login}/repos.json", repos)
        for repo in repos:
            if repo.is_book:
                namespaces[repo.namespace] = None

    found = list(namespaces)
    logger.info("Found %d repo(s) to crawl: %s", len(found), ", ".join(found) or "-")
    return found


def _parse_toc(detail: RepositoryDetail) -> list[TocItem]:
    try:
        raw = yaml.safe_load(detail.toc_yml or "") or []
    except yaml.YAMLError as exc:
        msg = f"Cannot parse table of contents of {detail.namespace}: {exc}"
        raise SourceReadError(msg) from exc
    if not isinstance(raw, list):
        msg = f"Table of contents of {detail.namespace} is not a list"
        raise SourceReadError(msg)
    # The first entry of ``toc_yml`` is a META header describing the format.
    return [TocItem.model_validate(item) for item in raw if isinstance(item, dict) and item.get("uuid")]


def _changed_docs(store: MetaStore, namespace: str, docs: Sequence[DocSummary]) -> list[DocSummary]:
    changed = []
    for doc in docs:
        cached = store.cached_published_at(namespace, doc.slug)
        if cached is None or cached != doc.published_at:
            changed.append(doc)
    return changed


def crawl_repo(
    client: YuqueClient,
    store: MetaStore,
    namespace: str,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> CrawlResult:
    """Crawl one repository: detail, TOC, doc list and changed doc bodies."""
    logger.info("Crawling repo detail: %s/%s", client.host, namespace)
    detail = client.get_repo_detail(namespace)
    toc = _parse_toc(detail)

    show_progress = console.is_terminal
    progress = (
        Progress(
            SpinnerColumn(),
            TextColumn("Loading documents"),
            BarColumn(bar_width=None),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        )
        if show_progress
        else nullcontext()
    )
    with progress:
        task_id = progress.add_task("docs", total=None) if show_progress else None

        def _report(loaded: int, total: int) -> None:
            if show_progress:
                progress.update(task_id, completed=loaded, total=total)

        docs = client.get_docs(namespace, on_progress=_report)
    logger.info("Loaded %d document(s) from %s", len(docs), namespace)

    result = CrawlResult(namespace=namespace, repository=detail, toc=toc, docs=docs)
    changed = _changed_docs(store, namespace, docs)
    if changed:
        logger.info("Fetching %d changed document(s) with concurrency: %d", len(changed), concurrency)

        def _fetch(doc: DocSummary) -> str:
            logger.info(" - [%s](%s/%s/%s)", doc.title, client.host, namespace, doc.slug)
            store.save_doc_detail(namespace, client.get_doc_detail(namespace, doc.slug))
            return doc.slug

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="crawl") as executor:
            result.fetched = list(executor.map(_fetch, changed))
    else:
        logger.info("Nothing new in %s", namespace)

    # Listings go last; an interrupted crawl leaves the previous listings in place.
    store.save(f"{namespace}/repo.json", detail)
    store.save(f"{namespace}/toc.json", toc)
    store.save(f"{namespace}/docs.json", docs)
    result.pruned = store.prune_doc_details(namespace, {doc.slug for doc in docs})
    return result


def crawl(
    client: YuqueClient,
    store: MetaStore,
    inputs: Sequence[str] | None = None,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> list[CrawlResult]:
    """Crawl every repository named by ``inputs`` (all of the token's repos by default)."""
    logger.info("Start crawling...")
    results = []
    for namespace in resolve_targets(client, store, inputs):
        results.append(crawl_repo(client, store, namespace, concurrency=concurrency))
    return results
