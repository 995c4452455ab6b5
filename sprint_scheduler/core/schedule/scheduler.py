from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sprint_scheduler.core.calendar.working_calendar import ONE_DAY, CalendarProvider
from sprint_scheduler.core.config.scheduler_config import DEFAULT_CONFIG, SchedulerConfig
from sprint_scheduler.core.errors import ManualStartWarning, SchedulerWarning, SprintValidationError
from sprint_scheduler.core.graph.dependency_graph import build_graph
from sprint_scheduler.core.ledger.effort_ledger import leaf_tasks, story_effort, totals
from sprint_scheduler.core.model import (
    ZERO,
    ScheduledTask,
    Sprint,
    SprintDocument,
    SprintSchedule,
    SprintStatus,
    Task,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleContext:
    """Everything one scheduling pass reads. Passed explicitly, never stored globally."""

    sprint: Sprint
    tasks: list[Task]
    calendars: CalendarProvider
    config: SchedulerConfig = DEFAULT_CONFIG
    file: Optional[str] = None

    @classmethod
    def from_document(
        cls, doc: SprintDocument, config: SchedulerConfig, tasks: Optional[list[Task]] = None
    ) -> "ScheduleContext":
        return cls(
            sprint=doc.sprint,
            tasks=list(doc.tasks if tasks is None else tasks),
            calendars=CalendarProvider(doc.users_by_id, config),
            config=config,
            file=doc.file,
        )


def schedule_sprint(ctx: ScheduleContext, anchor: Optional[date] = None) -> SprintSchedule:
    """Place every task of the sprint on its assignee's calendar.

    Tasks are visited in topological order. An auto-scheduled task starts on the
    assignee's first working day that is not earlier than the sprint anchor, the day
    after its latest predecessor ends and, with resource levelling, the day after the
    assignee's previous task ends. Its end is where its planned effort is used up.

    Raises CyclicDependencyError, UnschedulableTaskError, UnknownUserError.
    """
    cfg = ctx.config
    margin = cfg.schedule_with_margin
    by_id = {t.id: t for t in ctx.tasks}
    graph = build_graph(ctx.tasks)
    order = graph.topological_order(file=ctx.file)

    start_anchor = anchor or ctx.sprint.start or _earliest_manual_start(ctx.tasks)
    if start_anchor is None and ctx.tasks:
        raise SprintValidationError(
            code="E_NO_ANCHOR",
            message="sprint has no start date and no manually scheduled task to anchor the schedule",
            file=ctx.file,
            path="sprint.start",
        )

    placed: dict[str, ScheduledTask] = {}
    ready: dict[str, date] = {}
    busy_until: dict[str, date] = {}
    warnings: list[SchedulerWarning] = []

    for tid in order:
        task = by_id[tid]
        deps = graph.deps[tid]

        if graph.is_story(tid):
            kids = [placed[c] for c in graph.children[tid]]
            placed[tid] = ScheduledTask(
                task=task,
                start=min(k.start for k in kids),
                end=max(k.end for k in kids),
                effort=story_effort(ctx.tasks, tid, with_margin=margin),
            )
            ready[tid] = max(ready[c] for c in graph.children[tid])
            continue

        assert start_anchor is not None
        cal = ctx.calendars.for_user(task.assignee)
        pred_end = max((placed[d].end for d in deps), default=None)
        pred_ready = max((ready[d] for d in deps), default=None)

        if task.milestone:
            base = max(start_anchor, pred_end) if pred_end else start_anchor
            day = cal.next_working_day(base)
            st = ScheduledTask(task=task, start=day, end=day, effort=ZERO)
        elif task.mode == "manual":
            assert task.start is not None
            effort = task.planned_effort(margin)
            start = cal.next_working_day(task.start)
            end = cal.end_date_for_effort(start, effort) if effort > ZERO else start
            if pred_ready is not None and start < pred_ready:
                w = ManualStartWarning(
                    code="W_MANUAL_BEFORE_PREDECESSOR",
                    message=(
                        f"manually scheduled task {tid} starts {start.isoformat()} "
                        f"before its predecessors finish ({pred_end.isoformat() if pred_end else '?'})"
                    ),
                    path=f"tasks.{tid}.start",
                )
                logger.warning(str(w))
                warnings.append(w)
            st = ScheduledTask(task=task, start=start, end=end, effort=effort)
        else:
            earliest = start_anchor
            if pred_ready is not None:
                earliest = max(earliest, pred_ready)
            if cfg.level_resources and task.assignee in busy_until:
                earliest = max(earliest, busy_until[task.assignee] + ONE_DAY)
            effort = task.planned_effort(margin)
            start = cal.next_working_day(earliest)
            end = cal.end_date_for_effort(start, effort) if effort > ZERO else start
            st = ScheduledTask(task=task, start=start, end=end, effort=effort)

        if st.effort > ZERO and task.assignee is not None:
            prev = busy_until.get(task.assignee)
            busy_until[task.assignee] = st.end if prev is None else max(prev, st.end)

        placed[tid] = st
        if st.effort > ZERO:
            ready[tid] = st.end + ONE_DAY
        else:
            # zero-effort nodes pass their predecessors' readiness through
            ready[tid] = max(st.end, pred_ready) if pred_ready is not None else st.end
        logger.debug(f"placed {tid} ({task.assignee or 'unassigned'}): {st.start} .. {st.end}")

    leaves = [placed[tid] for tid in graph.leaves()]
    sprint_start = min((st.start for st in leaves), default=None)
    sprint_end = max((st.end for st in leaves), default=None)
    release = _release_date(ctx, sprint_end)
    effort = totals(ctx.tasks, with_margin=margin)

    return SprintSchedule(
        sprint=ctx.sprint,
        tasks=[placed[t.id] for t in ctx.tasks],
        start=sprint_start,
        end=sprint_end,
        release_date=release,
        original_estimation=effort.original_estimation,
        remaining=effort.remaining,
        worked=effort.worked,
        status=sprint_status(ctx.tasks),
        warnings=warnings,
    )


def sprint_status(tasks: list[Task]) -> SprintStatus:
    leaves = leaf_tasks(tasks)
    if leaves and all(t.status == "done" for t in leaves):
        return "closed"
    if any(t.status != "todo" or t.worked > timedelta(0) for t in leaves):
        return "started"
    return "created"


def _release_date(ctx: ScheduleContext, end: Optional[date]) -> Optional[date]:
    if end is None:
        return None
    cur = end
    for _ in range(ctx.config.release_buffer_days):
        cur = ctx.calendars.default.next_working_day(cur + ONE_DAY)
    return cur


def _earliest_manual_start(tasks: list[Task]) -> Optional[date]:
    starts = [t.start for t in tasks if t.mode == "manual" and t.start is not None]
    return min(starts) if starts else None
