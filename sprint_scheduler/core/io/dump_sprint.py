from __future__ import annotations

from datetime import date
from typing import Any, Optional

import yaml

from sprint_scheduler.core.config.scheduler_config import WEEKDAYS
from sprint_scheduler.core.duration import DEFAULT_HOURS_PER_DAY, format_work_duration, hours
from sprint_scheduler.core.model import (
    BurndownPoint,
    SprintDocument,
    SprintSchedule,
    Task,
    User,
    Worklog,
)

_WEEKDAY_NAMES = {v: k for k, v in WEEKDAYS.items()}


def document_to_dict(doc: SprintDocument, hours_per_day: float = DEFAULT_HOURS_PER_DAY) -> dict[str, Any]:
    """Inverse of validate_sprint: a plain mapping ready for YAML/JSON."""
    out: dict[str, Any] = {"schema_version": doc.schema_version}
    if doc.settings:
        out["settings"] = dict(doc.settings)

    s = doc.sprint
    out["sprint"] = _drop_none(
        {
            "id": s.id,
            "name": s.name,
            "feature_id": s.feature_id,
            "user_id": s.user_id,
            "start": _iso(s.start),
        }
    )
    if doc.users_by_id:
        out["users"] = [_user_to_dict(u) for u in doc.users_by_id.values()]
    out["tasks"] = [_task_to_dict(t, hours_per_day) for t in doc.tasks]
    if doc.worklogs:
        out["worklogs"] = [_worklog_to_dict(w, hours_per_day) for w in doc.worklogs]
    return out


def dump_sprint_yaml(doc: dict[str, Any], path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, sort_keys=False, default_flow_style=False, allow_unicode=True)


def schedule_to_dict(schedule: SprintSchedule, hours_per_day: float = DEFAULT_HOURS_PER_DAY) -> dict[str, Any]:
    return {
        "sprint": {
            "id": schedule.sprint.id,
            "name": schedule.sprint.name,
            "start": _iso(schedule.start),
            "end": _iso(schedule.end),
            "release_date": _iso(schedule.release_date),
            "status": schedule.status,
            "original_estimation": format_work_duration(schedule.original_estimation, hours_per_day),
            "remaining": format_work_duration(schedule.remaining, hours_per_day),
            "worked": format_work_duration(schedule.worked, hours_per_day),
        },
        "tasks": [
            {
                "id": st.task.id,
                "name": st.task.name,
                "assignee": st.task.assignee,
                "start": st.start.isoformat(),
                "end": st.end.isoformat(),
                "effort": format_work_duration(st.effort, hours_per_day),
                "milestone": st.task.milestone,
                "mode": st.task.mode,
                "status": st.task.status,
            }
            for st in schedule.tasks
        ],
    }


def burndown_to_rows(points: list[BurndownPoint]) -> list[dict[str, Any]]:
    return [
        {
            "day": p.day.isoformat(),
            "working_day": p.working_day,
            "ideal_hours": round(hours(p.ideal), 2),
            "actual_hours": None if p.actual is None else round(hours(p.actual), 2),
        }
        for p in points
    ]


def _user_to_dict(u: User) -> dict[str, Any]:
    out: dict[str, Any] = {"id": u.id}
    if u.name:
        out["name"] = u.name
    if u.work_week is not None:
        out["work_week"] = [_WEEKDAY_NAMES[d] for d in sorted(u.work_week)]
    if u.locations:
        out["locations"] = [
            _drop_none(
                {
                    "country": loc.country,
                    "state": loc.state,
                    "start": loc.start.isoformat(),
                    "holidays": [d.isoformat() for d in sorted(loc.holidays)] or None,
                }
            )
            for loc in u.locations
        ]
    if u.off_days:
        out["off_days"] = [
            {"first_day": o.first_day.isoformat(), "last_day": o.last_day.isoformat(), "type": o.type}
            for o in u.off_days
        ]
    if u.availabilities:
        out["availabilities"] = [
            {"availability": a.availability, "start": a.start.isoformat()} for a in u.availabilities
        ]
    return out


def _task_to_dict(t: Task, hours_per_day: float) -> dict[str, Any]:
    def dur(v):
        return None if v is None else format_work_duration(v, hours_per_day)

    return _drop_none(
        {
            "id": t.id,
            "name": t.name,
            "min_estimate": dur(t.min_estimate) if t.min_estimate else None,
            "max_estimate": dur(t.max_estimate),
            "remaining_estimate": dur(t.remaining_estimate),
            "worked": dur(t.worked) if t.worked else None,
            "status": t.status if t.status != "todo" else None,
            "mode": t.mode if t.mode != "auto" else None,
            "milestone": True if t.milestone else None,
            "assignee": t.assignee,
            "predecessors": list(t.predecessors) or None,
            "parent": t.parent,
            "start": _iso(t.start),
        }
    )


def _worklog_to_dict(w: Worklog, hours_per_day: float) -> dict[str, Any]:
    return _drop_none(
        {
            "id": w.id,
            "task_id": w.task_id,
            "start": w.start.isoformat(),
            "time_spent": format_work_duration(w.time_spent, hours_per_day),
            "time_remaining": None
            if w.time_remaining is None
            else format_work_duration(w.time_remaining, hours_per_day),
            "author": w.author,
            "comment": w.comment,
        }
    )


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}
