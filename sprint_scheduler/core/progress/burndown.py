from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from typing import Optional

from sprint_scheduler.core.calendar.working_calendar import ONE_DAY, WorkingCalendar
from sprint_scheduler.core.errors import SchedulerWarning, UnknownTaskError
from sprint_scheduler.core.ledger.effort_ledger import leaf_tasks, log_work, sort_worklogs
from sprint_scheduler.core.model import ZERO, BurndownPoint, Task, Worklog


def burndown(
    tasks: list[Task],
    worklogs: list[Worklog],
    first_day: date,
    last_day: date,
    calendar: WorkingCalendar,
    *,
    as_of: Optional[date] = None,
    with_margin: bool = False,
) -> tuple[list[BurndownPoint], list[SchedulerWarning]]:
    """Remaining effort per calendar day of ``first_day..last_day``.

    ``tasks`` is the sprint before any worklog was booked. The actual value of a day
    is the remaining effort over leaf tasks once every worklog started on or before
    that day is booked; days after ``as_of`` have no actual value. The ideal line
    falls linearly from the total estimate to zero across the working days of
    ``calendar`` and stays flat on non-working days. Both series are end-of-day
    values, so the first working day already shows one day burned; the full total
    is the value before ``first_day``.

    A task marked done is replayed from its original estimate and counts as done
    from the day of its last worklog, or from ``first_day`` when it has none.
    """
    if last_day < first_day:
        return [], []

    leaves = {t.id: t for t in leaf_tasks(tasks)}
    known = {t.id for t in tasks}
    pending = sort_worklogs(worklogs)

    # done tasks are replayed open and close with their last booking
    last_booking = {wl.task_id: wl.id for wl in pending}
    finished = {tid for tid, t in leaves.items() if t.status == "done"}
    baseline = {tid: _reopened(t) if tid in finished else t for tid, t in leaves.items()}
    total = sum((t.remaining(with_margin) for t in baseline.values()), ZERO)
    current = dict(baseline)
    for tid in finished - set(last_booking):
        current[tid] = leaves[tid]

    working = calendar.working_days(first_day, last_day)
    n_working = len(working)
    working_set = set(working)

    idx = 0
    warnings: list[SchedulerWarning] = []
    points: list[BurndownPoint] = []
    burned_days = 0

    day = first_day
    while day <= last_day:
        while idx < len(pending) and pending[idx].start.date() <= day:
            wl = pending[idx]
            idx += 1
            if wl.task_id not in known:
                raise UnknownTaskError(
                    code="E_NOT_FOUND",
                    message=f"worklog references unknown task: {wl.task_id}",
                    path=f"worklogs.{wl.id}.task_id",
                )
            if wl.task_id not in current:
                # booked on a story; effort is tracked on its children
                continue
            booked, ws = log_work(current[wl.task_id], wl, with_margin=with_margin)
            if wl.task_id in finished and last_booking[wl.task_id] == wl.id:
                booked = replace(booked, status="done")
            current[wl.task_id] = booked
            warnings.extend(ws)

        is_working = day in working_set
        if is_working:
            burned_days += 1

        if n_working:
            ideal = total * (1 - burned_days / n_working)
        else:
            ideal = total

        actual: Optional[timedelta] = None
        if as_of is None or day <= as_of:
            actual = sum((t.remaining(with_margin) for t in current.values()), ZERO)

        points.append(BurndownPoint(day=day, ideal=_round_minutes(ideal), actual=actual, working_day=is_working))
        day += ONE_DAY

    return points, warnings


def _reopened(task: Task) -> Task:
    return replace(task, status="in_progress", remaining_estimate=None, worked=ZERO)


def _round_minutes(value: timedelta) -> timedelta:
    return timedelta(minutes=round(value.total_seconds() / 60))
