from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta

from sprint_scheduler.core.duration import format_work_duration
from sprint_scheduler.core.errors import NegativeRemainingWarning, SchedulerWarning, UnknownTaskError
from sprint_scheduler.core.model import ZERO, Task, Worklog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    tasks: list[Task]
    warnings: list[SchedulerWarning]


@dataclass(frozen=True)
class EffortTotals:
    original_estimation: timedelta
    remaining: timedelta
    worked: timedelta


def log_work(
    task: Task, worklog: Worklog, *, with_margin: bool = False
) -> tuple[Task, list[SchedulerWarning]]:
    """Book a worklog against a task and return the updated task.

    Worked time grows by the time spent. Remaining effort shrinks by the same amount,
    or is set to the worklog's explicit re-estimate when it carries one. Remaining
    never goes below zero: an overage is clamped and reported as a warning.
    """
    if worklog.task_id != task.id:
        raise UnknownTaskError(
            code="E_NOT_FOUND",
            message=f"worklog {worklog.id} belongs to task {worklog.task_id}, not {task.id}",
            path=f"worklogs.{worklog.id}.task_id",
        )

    warnings: list[SchedulerWarning] = []
    worked = task.worked + worklog.time_spent

    if worklog.time_remaining is not None:
        remaining = worklog.time_remaining
    elif task.status == "done":
        # late booking against finished work
        remaining = ZERO
    else:
        remaining = task.remaining(with_margin) - worklog.time_spent

    if remaining < ZERO:
        overage = -remaining
        w = NegativeRemainingWarning(
            code="W_NEGATIVE_REMAINING",
            message=(
                f"worklog {worklog.id} exceeds remaining effort of task {task.id} "
                f"by {format_work_duration(overage)}; remaining clamped to 0h"
            ),
            path=f"worklogs.{worklog.id}",
        )
        logger.warning(str(w))
        warnings.append(w)
        remaining = ZERO

    status = task.status
    if status == "todo":
        status = "in_progress"

    return replace(task, worked=worked, remaining_estimate=remaining, status=status), warnings


def apply_worklogs(
    tasks: list[Task], worklogs: list[Worklog], *, with_margin: bool = False
) -> LedgerResult:
    """Replay a worklog history in (start, id) order; same history, same result."""
    by_id: dict[str, Task] = {t.id: t for t in tasks}
    warnings: list[SchedulerWarning] = []

    for wl in sort_worklogs(worklogs):
        task = by_id.get(wl.task_id)
        if task is None:
            raise UnknownTaskError(
                code="E_NOT_FOUND",
                message=f"worklog references unknown task: {wl.task_id}",
                path=f"worklogs.{wl.id}.task_id",
            )
        updated, ws = log_work(task, wl, with_margin=with_margin)
        by_id[wl.task_id] = updated
        warnings.extend(ws)

    return LedgerResult(tasks=[by_id[t.id] for t in tasks], warnings=warnings)


def sort_worklogs(worklogs: list[Worklog]) -> list[Worklog]:
    return sorted(worklogs, key=lambda w: (w.start, w.id))


def leaf_tasks(tasks: list[Task]) -> list[Task]:
    parents = {t.parent for t in tasks if t.parent is not None}
    return [t for t in tasks if t.id not in parents]


def totals(tasks: list[Task], *, with_margin: bool = False) -> EffortTotals:
    """Sum effort over leaf tasks; a story's effort is the sum of its children."""
    original = worked = remaining = ZERO
    for t in leaf_tasks(tasks):
        original += t.original_estimate(with_margin)
        worked += t.worked
        remaining += t.remaining(with_margin)
    return EffortTotals(original_estimation=original, remaining=remaining, worked=worked)


def story_effort(tasks: list[Task], story_id: str, *, with_margin: bool = False) -> timedelta:
    """Planned effort of a story: the sum over its leaf descendants."""
    children: dict[str, list[Task]] = {}
    for t in tasks:
        if t.parent is not None:
            children.setdefault(t.parent, []).append(t)

    total = ZERO
    stack = list(children.get(story_id, []))
    while stack:
        t = stack.pop()
        kids = children.get(t.id)
        if kids:
            stack.extend(kids)
        else:
            total += t.planned_effort(with_margin)
    return total
