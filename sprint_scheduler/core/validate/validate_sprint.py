from __future__ import annotations

import datetime as dt
from collections import Counter
from typing import Any, Iterable, Optional, cast

from sprint_scheduler.core.config.scheduler_config import (
    DEFAULT_CONFIG,
    ConfigError,
    SchedulerConfig,
    apply_overrides,
    parse_work_week,
)
from sprint_scheduler.core.duration import format_work_duration, parse_work_duration
from sprint_scheduler.core.errors import SprintValidationError
from sprint_scheduler.core.graph.dependency_graph import build_graph, find_cycle
from sprint_scheduler.core.model import (
    ZERO,
    Availability,
    Location,
    OffDay,
    OffDayType,
    Sprint,
    SprintDocument,
    Task,
    TaskMode,
    TaskStatus,
    User,
    Worklog,
)


ALLOWED_STATUSES: set[str] = {"todo", "in_progress", "done"}
ALLOWED_MODES: set[str] = {"auto", "manual"}
ALLOWED_OFF_DAY_TYPES: set[str] = {"vacation", "sick", "trip", "holiday"}
MAX_AVAILABILITY = 1.5


class _Collector:
    def __init__(self, file: Optional[str]):
        self.file = file
        self.errors: list[SprintValidationError] = []

    def add(self, code: str, message: str, path: str) -> None:
        self.errors.append(SprintValidationError(code=code, message=message, file=self.file, path=path))


def validate_sprint(
    doc: dict[str, Any], base: SchedulerConfig = DEFAULT_CONFIG
) -> tuple[Optional[SprintDocument], list[SprintValidationError]]:
    """Validate a sprint document (schema v0).

    Durations are read with the day length of ``base`` overridden by the
    document's own ``settings``. Returns (document, errors). Document is None
    when errors exist.
    """

    file = cast(Optional[str], doc.get("__file__"))
    c = _Collector(file)

    schema_version = doc.get("schema_version")
    if not isinstance(schema_version, str) or not schema_version.strip():
        c.add("E_REQUIRED_FIELD", "schema_version is required and must be a non-empty string", "schema_version")

    settings = doc.get("settings") or {}
    hours_per_day = base.hours_per_day
    if not isinstance(settings, dict):
        c.add("E_INVALID_TYPE", "settings must be an object", "settings")
        settings = {}
    else:
        try:
            hours_per_day = apply_overrides(base, settings).hours_per_day
        except ConfigError as e:
            c.add("E_INVALID_SETTING", str(e), "settings")

    sprint = _validate_sprint_header(doc.get("sprint"), c)
    users_by_id = _validate_users(doc.get("users"), c)

    raw_tasks = doc.get("tasks")
    if not isinstance(raw_tasks, list):
        c.add("E_REQUIRED_FIELD", "tasks is required and must be an array", "tasks")
        return None, _sorted(c.errors)

    tasks = _validate_tasks(raw_tasks, users_by_id, hours_per_day, c)
    worklogs = _validate_worklogs(doc.get("worklogs"), tasks, hours_per_day, c)

    if sprint is not None and sprint.user_id is not None and sprint.user_id not in users_by_id:
        c.add("E_UNKNOWN_USER", f"sprint.user_id references unknown user: {sprint.user_id}", "sprint.user_id")

    # Cycles are only meaningful once every reference resolves.
    if not c.errors:
        graph = build_graph(tasks)
        cycle = find_cycle(graph.deps, [t.id for t in tasks])
        if cycle:
            c.add(
                "E_CYCLIC_DEPENDENCY",
                "dependency cycle detected: " + " -> ".join(cycle),
                f"tasks[{_index_of(raw_tasks, cycle[0])}].predecessors",
            )

    if c.errors:
        return None, _sorted(c.errors)

    assert sprint is not None
    return (
        SprintDocument(
            schema_version=cast(str, schema_version),
            sprint=sprint,
            users_by_id=users_by_id,
            tasks=tasks,
            worklogs=worklogs,
            settings=dict(settings),
            file=file,
        ),
        [],
    )


def summarize_sprint(doc: SprintDocument) -> str:
    counts = Counter([t.status for t in doc.tasks])
    ordered: list[str] = ["todo", "in_progress", "done"]
    parts = [f"{s}={counts.get(s, 0)}" for s in ordered]
    milestones = sum(1 for t in doc.tasks if t.milestone)
    total = sum((t.original_estimate() for t in doc.tasks if not _has_children(doc.tasks, t.id)), ZERO)
    return (
        f"OK: sprint {doc.sprint.id} with {len(doc.tasks)} tasks ("
        + ", ".join(parts)
        + f"), {milestones} milestones, {len(doc.users_by_id)} users, {len(doc.worklogs)} worklogs"
        + f"\nEstimate: {format_work_duration(total)}"
    )


def _validate_sprint_header(raw: Any, c: _Collector) -> Optional[Sprint]:
    if not isinstance(raw, dict):
        c.add("E_REQUIRED_FIELD", "sprint is required and must be an object", "sprint")
        return None

    ok = True
    sid = raw.get("id")
    if not isinstance(sid, (str, int)) or isinstance(sid, bool) or not str(sid).strip():
        c.add("E_REQUIRED_FIELD", "id is required and must be a non-empty string", "sprint.id")
        ok = False

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        c.add("E_REQUIRED_FIELD", "name is required and must be a non-empty string", "sprint.name")
        ok = False

    feature_id = _optional_id(raw.get("feature_id"), "sprint.feature_id", c)
    user_id = _optional_id(raw.get("user_id"), "sprint.user_id", c)

    start = None
    if raw.get("start") is not None:
        start = _as_date(raw.get("start"))
        if start is None:
            c.add("E_INVALID_TYPE", "start must be an ISO date (YYYY-MM-DD)", "sprint.start")
            ok = False

    if not ok:
        return None
    return Sprint(id=str(sid), name=cast(str, name), feature_id=feature_id, user_id=user_id, start=start)


def _validate_users(raw: Any, c: _Collector) -> dict[str, User]:
    users: dict[str, User] = {}
    if raw is None:
        return users
    if not isinstance(raw, list):
        c.add("E_INVALID_TYPE", "users must be an array", "users")
        return users

    for i, u in enumerate(raw):
        upath = f"users[{i}]"
        if not isinstance(u, dict):
            c.add("E_INVALID_TYPE", "user must be an object", upath)
            continue

        uid = u.get("id")
        if not isinstance(uid, str) or not uid.strip():
            c.add("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{upath}.id")
            continue
        if uid in users:
            c.add("E_DUPLICATE_ID", f"duplicate user id: {uid}", f"{upath}.id")
            continue

        name = u.get("name")
        if name is not None and not isinstance(name, str):
            c.add("E_INVALID_TYPE", "name must be a string", f"{upath}.name")
            name = None

        work_week = None
        if u.get("work_week") is not None:
            try:
                work_week = parse_work_week(u.get("work_week"), where=f"{upath}.work_week")
            except ConfigError as e:
                c.add("E_INVALID_TYPE", str(e), f"{upath}.work_week")

        users[uid] = User(
            id=uid,
            name=name,
            work_week=work_week,
            locations=_validate_locations(u.get("locations"), f"{upath}.locations", c),
            off_days=_validate_off_days(u.get("off_days"), f"{upath}.off_days", c),
            availabilities=_validate_availabilities(u.get("availabilities"), f"{upath}.availabilities", c),
        )
    return users


def _validate_locations(raw: Any, path: str, c: _Collector) -> list[Location]:
    out: list[Location] = []
    for i, loc in enumerate(_as_list(raw, path, c)):
        lpath = f"{path}[{i}]"
        if not isinstance(loc, dict):
            c.add("E_INVALID_TYPE", "location must be an object", lpath)
            continue
        country = loc.get("country")
        if not isinstance(country, str) or not country.strip():
            c.add("E_REQUIRED_FIELD", "country is required and must be a non-empty string", f"{lpath}.country")
            continue
        state = loc.get("state")
        if state is not None and not isinstance(state, str):
            c.add("E_INVALID_TYPE", "state must be a string", f"{lpath}.state")
            continue
        start = _as_date(loc.get("start"))
        if start is None:
            c.add("E_REQUIRED_FIELD", "start is required and must be an ISO date", f"{lpath}.start")
            continue
        holidays: set[dt.date] = set()
        for hi, h in enumerate(_as_list(loc.get("holidays"), f"{lpath}.holidays", c)):
            d = _as_date(h)
            if d is None:
                c.add("E_INVALID_TYPE", "holiday must be an ISO date", f"{lpath}.holidays[{hi}]")
                continue
            holidays.add(d)
        out.append(Location(country=country.strip().lower(), state=state, start=start, holidays=frozenset(holidays)))
    return out


def _validate_off_days(raw: Any, path: str, c: _Collector) -> list[OffDay]:
    out: list[OffDay] = []
    for i, off in enumerate(_as_list(raw, path, c)):
        opath = f"{path}[{i}]"
        if not isinstance(off, dict):
            c.add("E_INVALID_TYPE", "off day must be an object", opath)
            continue
        first = _as_date(off.get("first_day"))
        last = _as_date(off.get("last_day", off.get("first_day")))
        if first is None:
            c.add("E_REQUIRED_FIELD", "first_day is required and must be an ISO date", f"{opath}.first_day")
            continue
        if last is None:
            c.add("E_INVALID_TYPE", "last_day must be an ISO date", f"{opath}.last_day")
            continue
        if last < first:
            c.add("E_INVALID_RANGE", "last_day must not be before first_day", f"{opath}.last_day")
            continue
        otype = off.get("type", "vacation")
        if not isinstance(otype, str) or otype not in ALLOWED_OFF_DAY_TYPES:
            c.add("E_INVALID_ENUM", f"type must be one of {sorted(ALLOWED_OFF_DAY_TYPES)}", f"{opath}.type")
            continue
        out.append(OffDay(first_day=first, last_day=last, type=cast(OffDayType, otype)))
    return out


def _validate_availabilities(raw: Any, path: str, c: _Collector) -> list[Availability]:
    out: list[Availability] = []
    starts: set[dt.date] = set()
    for i, a in enumerate(_as_list(raw, path, c)):
        apath = f"{path}[{i}]"
        if not isinstance(a, dict):
            c.add("E_INVALID_TYPE", "availability must be an object", apath)
            continue
        value = a.get("availability")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            c.add("E_INVALID_TYPE", "availability must be a number", f"{apath}.availability")
            continue
        if value < 0 or value > MAX_AVAILABILITY:
            c.add(
                "E_INVALID_RANGE",
                f"availability must be between 0 and {MAX_AVAILABILITY}",
                f"{apath}.availability",
            )
            continue
        start = _as_date(a.get("start"))
        if start is None:
            c.add("E_REQUIRED_FIELD", "start is required and must be an ISO date", f"{apath}.start")
            continue
        if start in starts:
            c.add("E_DUPLICATE_AVAILABILITY", f"duplicate availability start: {start.isoformat()}", f"{apath}.start")
            continue
        starts.add(start)
        out.append(Availability(availability=float(value), start=start))
    return out


def _validate_tasks(
    raw_tasks: list[Any], users_by_id: dict[str, User], hours_per_day: float, c: _Collector
) -> list[Task]:
    tasks: list[Task] = []
    seen: set[str] = set()

    for i, raw in enumerate(raw_tasks):
        tpath = f"tasks[{i}]"
        if not isinstance(raw, dict):
            c.add("E_INVALID_TYPE", "task must be an object", tpath)
            continue

        tid = raw.get("id")
        if not isinstance(tid, str) or not tid.strip():
            c.add("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{tpath}.id")
            continue
        if tid in seen:
            c.add("E_DUPLICATE_ID", f"duplicate task id: {tid}", f"{tpath}.id")
            continue
        seen.add(tid)

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            c.add("E_REQUIRED_FIELD", "name is required and must be a non-empty string", f"{tpath}.name")
            continue

        min_est = _duration(raw, "min_estimate", tpath, hours_per_day, c) or ZERO
        max_est = _duration(raw, "max_estimate", tpath, hours_per_day, c)
        remaining = _duration(raw, "remaining_estimate", tpath, hours_per_day, c)
        worked = _duration(raw, "worked", tpath, hours_per_day, c) or ZERO

        if max_est is not None and max_est < min_est:
            c.add("E_INVALID_RANGE", "max_estimate must not be less than min_estimate", f"{tpath}.max_estimate")

        status = raw.get("status", "todo")
        if not isinstance(status, str) or status not in ALLOWED_STATUSES:
            c.add("E_INVALID_ENUM", f"status must be one of {sorted(ALLOWED_STATUSES)}", f"{tpath}.status")
            continue

        mode = raw.get("mode", "auto")
        if not isinstance(mode, str) or mode not in ALLOWED_MODES:
            c.add("E_INVALID_ENUM", f"mode must be one of {sorted(ALLOWED_MODES)}", f"{tpath}.mode")
            continue

        milestone = raw.get("milestone", False)
        if not isinstance(milestone, bool):
            c.add("E_INVALID_TYPE", "milestone must be a boolean", f"{tpath}.milestone")
            continue
        if milestone and (min_est > ZERO or (max_est or ZERO) > ZERO or (remaining or ZERO) > ZERO):
            c.add("E_MILESTONE_HAS_ESTIMATE", "a milestone must have zero estimates", f"{tpath}.min_estimate")

        assignee = raw.get("assignee")
        if assignee is not None:
            if not isinstance(assignee, str):
                c.add("E_INVALID_TYPE", "assignee must be a string", f"{tpath}.assignee")
                assignee = None
            elif assignee not in users_by_id:
                c.add("E_UNKNOWN_ASSIGNEE", f"assignee references unknown user: {assignee}", f"{tpath}.assignee")

        preds = raw.get("predecessors", [])
        if preds is None:
            preds = []
        if not isinstance(preds, list) or not all(isinstance(p, str) for p in preds):
            c.add("E_INVALID_TYPE", "predecessors must be an array of strings", f"{tpath}.predecessors")
            continue

        parent = raw.get("parent")
        if parent is not None and not isinstance(parent, str):
            c.add("E_INVALID_TYPE", "parent must be a string", f"{tpath}.parent")
            parent = None

        start = None
        if raw.get("start") is not None:
            start = _as_date(raw.get("start"))
            if start is None:
                c.add("E_INVALID_TYPE", "start must be an ISO date (YYYY-MM-DD)", f"{tpath}.start")
        if mode == "manual" and start is None:
            c.add("E_MANUAL_WITHOUT_START", "a manually scheduled task needs a start date", f"{tpath}.start")

        tasks.append(
            Task(
                id=tid,
                name=name,
                min_estimate=min_est,
                max_estimate=max_est,
                remaining_estimate=remaining,
                worked=worked,
                status=cast(TaskStatus, status),
                mode=cast(TaskMode, mode),
                milestone=milestone,
                assignee=cast(Optional[str], assignee),
                predecessors=list(preds),
                parent=parent,
                start=start,
            )
        )

    # Referential integrity checks.
    all_ids = {t.id for t in tasks}
    for t in tasks:
        idx = _index_of(raw_tasks, t.id)
        for pi, p in enumerate(t.predecessors):
            if p not in all_ids:
                c.add(
                    "E_UNKNOWN_DEPENDENCY",
                    f"predecessors references unknown id: {p}",
                    f"tasks[{idx}].predecessors[{pi}]",
                )
        if t.parent is not None and t.parent not in all_ids:
            c.add("E_UNKNOWN_PARENT", f"parent references unknown id: {t.parent}", f"tasks[{idx}].parent")
        if t.parent is not None and t.parent in all_ids:
            parent_task = next(p for p in tasks if p.id == t.parent)
            if parent_task.milestone:
                c.add("E_MILESTONE_HAS_CHILDREN", f"milestone {t.parent} cannot have child tasks", f"tasks[{idx}].parent")

    return tasks


def _validate_worklogs(raw: Any, tasks: list[Task], hours_per_day: float, c: _Collector) -> list[Worklog]:
    out: list[Worklog] = []
    task_ids = {t.id for t in tasks}
    seen: set[str] = set()

    for i, w in enumerate(_as_list(raw, "worklogs", c)):
        wpath = f"worklogs[{i}]"
        if not isinstance(w, dict):
            c.add("E_INVALID_TYPE", "worklog must be an object", wpath)
            continue

        wid = w.get("id")
        if not isinstance(wid, str) or not wid.strip():
            c.add("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{wpath}.id")
            continue
        if wid in seen:
            c.add("E_DUPLICATE_ID", f"duplicate worklog id: {wid}", f"{wpath}.id")
            continue
        seen.add(wid)

        task_id = w.get("task_id")
        if not isinstance(task_id, str) or task_id not in task_ids:
            c.add("E_UNKNOWN_TASK", f"task_id references unknown task: {task_id}", f"{wpath}.task_id")
            continue

        start = _as_datetime(w.get("start"))
        if start is None:
            c.add("E_REQUIRED_FIELD", "start is required and must be an ISO date/time", f"{wpath}.start")
            continue

        spent = _duration(w, "time_spent", wpath, hours_per_day, c)
        if spent is None or spent <= ZERO:
            if spent is not None or "time_spent" not in w:
                c.add("E_INVALID_DURATION", "time_spent must be greater than zero", f"{wpath}.time_spent")
            continue

        time_remaining = _duration(w, "time_remaining", wpath, hours_per_day, c)

        author = w.get("author")
        comment = w.get("comment")
        out.append(
            Worklog(
                id=wid,
                task_id=task_id,
                start=start,
                time_spent=spent,
                time_remaining=time_remaining,
                author=author if isinstance(author, str) else None,
                comment=comment if isinstance(comment, str) else None,
            )
        )
    return out


def _duration(
    raw: dict[str, Any], key: str, path: str, hours_per_day: float, c: _Collector
) -> Optional[dt.timedelta]:
    value = raw.get(key)
    if value is None:
        return None
    try:
        return parse_work_duration(value, hours_per_day)
    except ValueError as e:
        c.add("E_INVALID_DURATION", f"{key}: {e}", f"{path}.{key}")
        return None


def _optional_id(value: Any, path: str, c: _Collector) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        c.add("E_INVALID_TYPE", "must be a string", path)
        return None
    return str(value)


def _as_list(raw: Any, path: str, c: _Collector) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        c.add("E_INVALID_TYPE", "must be an array", path)
        return []
    return raw


def _as_date(value: Any) -> Optional[dt.date]:
    # yaml.safe_load already turns ISO dates into date objects
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> Optional[dt.datetime]:
    """Worklog timestamps are kept as wall-clock time; an offset is dropped."""
    if isinstance(value, dt.datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if isinstance(value, str):
        try:
            return dt.datetime.fromisoformat(value.strip()).replace(tzinfo=None)
        except ValueError:
            return None
    return None


def _has_children(tasks: list[Task], task_id: str) -> bool:
    return any(t.parent == task_id for t in tasks)


def _sorted(errors: Iterable[SprintValidationError]) -> list[SprintValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )


def _index_of(items: list[Any], item_id: str) -> int:
    for i, n in enumerate(items):
        if isinstance(n, dict) and n.get("id") == item_id:
            return i
    return 0
