"""Bounded-concurrency execution of the physical build operations."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from yuque_mirror.config import DEFAULT_CONCURRENCY
from yuque_mirror.exceptions import FilesystemTaskError, RenderError, TaskError
from yuque_mirror.fs import LocalFilesystem, PathTraversalError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CreateDir:
    path: str


@dataclass(slots=True)
class WriteFile:
    """Write ``content``, or the result of ``render`` when it is given.

    ``render`` runs inside the worker; returning ``None`` means there is
    nothing to write and the task counts as skipped.
    """

    path: str
    content: str | None = None
    render: Callable[[], str | None] | None = None
    replaces_existing: bool = False


@dataclass(slots=True)
class DeletePath:
    path: str


Task = CreateDir | WriteFile | DeletePath


class TaskStatus(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class TaskOutcome:
    task: Task
    status: TaskStatus
    error: TaskError | None = None

    @property
    def ok(self) -> bool:
        return self.status is not TaskStatus.FAILED


@dataclass(slots=True)
class ScheduleResult:
    """Outcomes in the same order as the submitted tasks."""

    outcomes: list[TaskOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[TaskOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is TaskStatus.FAILED]

    def counts(self) -> Counter[tuple[str, TaskStatus]]:
        return Counter((type(outcome.task).__name__, outcome.status) for outcome in self.outcomes)


class BuildScheduler:
    """Run create/write/delete tasks on a bounded thread pool.

    A failing task never stops the others; every failure is collected in
    the returned :class:`ScheduleResult`. :meth:`schedule` returns only
    after every task has finished.
    """

    def __init__(self, fs: LocalFilesystem, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self._fs = fs
        self._concurrency = concurrency

    def schedule(self, tasks: Sequence[Task]) -> ScheduleResult:
        if not tasks:
            return ScheduleResult()

        seen: set[str] = set()
        for task in tasks:
            if task.path in seen:
                msg = f"More than one task targets {task.path!r}"
                raise ValueError(msg)
            seen.add(task.path)

        logger.debug("Running %d task(s) with concurrency %d", len(tasks), self._concurrency)
        with ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="build") as executor:
            futures = [executor.submit(self._run, task) for task in tasks]
            return ScheduleResult([future.result() for future in futures])

    def _run(self, task: Task) -> TaskOutcome:
        if isinstance(task, WriteFile) and task.render is not None:
            try:
                content = task.render()
            except Exception as exc:
                logger.exception("Failed to render %s", task.path)
                error = exc if isinstance(exc, RenderError) else RenderError(task.path, str(exc))
                return TaskOutcome(task, TaskStatus.FAILED, error)
            if content is None:
                return TaskOutcome(task, TaskStatus.SKIPPED)
        elif isinstance(task, WriteFile):
            content = task.content or ""
        else:
            content = None

        try:
            if isinstance(task, CreateDir):
                self._fs.create_directory(task.path)
            elif isinstance(task, WriteFile):
                self._fs.write_file(task.path, content or "")
                logger.info("Wrote: %s", task.path)
            elif not self._fs.delete(task.path):
                return TaskOutcome(task, TaskStatus.SKIPPED)
            else:
                logger.info("Removed: %s", task.path)
        except (OSError, PathTraversalError) as exc:
            logger.error("Filesystem task failed for %s: %s", task.path, exc)
            return TaskOutcome(task, TaskStatus.FAILED, FilesystemTaskError(task.path, str(exc)))
        return TaskOutcome(task, TaskStatus.DONE)
