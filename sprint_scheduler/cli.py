from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, NoReturn

import typer

from sprint_scheduler.core.calendar.working_calendar import CalendarProvider
from sprint_scheduler.core.config.scheduler_config import (
    ConfigError,
    SchedulerConfig,
    apply_overrides,
    load_and_merge,
)
from sprint_scheduler.core.duration import format_work_duration, parse_work_duration
from sprint_scheduler.core.errors import (
    SchedulerError,
    SchedulerWarning,
    SprintLoadError,
    SprintValidationError,
)
from sprint_scheduler.core.io.dump_sprint import (
    burndown_to_rows,
    document_to_dict,
    dump_sprint_yaml,
    schedule_to_dict,
)
from sprint_scheduler.core.io.load_sprint import load_sprint
from sprint_scheduler.core.ledger.effort_ledger import apply_worklogs
from sprint_scheduler.core.model import SprintDocument, Worklog
from sprint_scheduler.core.progress.burndown import burndown
from sprint_scheduler.core.schedule.scheduler import ScheduleContext, schedule_sprint
from sprint_scheduler.core.validate.validate_sprint import summarize_sprint, validate_sprint

app = typer.Typer(add_completion=False, no_args_is_help=True)

TOOL = "sprint-scheduler"


@app.callback()
def _callback(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level: DEBUG|INFO|WARNING|ERROR"),
) -> None:
    """Sprint scheduling and burn-down CLI."""
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"unknown log level: {log_level}", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a sprint file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate a sprint document against schema v0."""
    _check_format(format, ("text", "json"), "validate")

    try:
        raw = load_sprint(path)
    except SprintLoadError as e:
        _fail("validate", format, [e], exit_code=1)

    doc, errors = validate_sprint(raw)
    if errors:
        _fail("validate", format, errors, exit_code=2)

    assert doc is not None
    if format == "text":
        typer.echo(summarize_sprint(doc))
        return

    summary = {
        "sprint_id": doc.sprint.id,
        "task_count": len(doc.tasks),
        "user_count": len(doc.users_by_id),
        "worklog_count": len(doc.worklogs),
    }
    _emit_json("validate", True, exit_code=0, summary=summary, schema_version=doc.schema_version)


@app.command("schedule")
def schedule(
    path: str = typer.Argument(..., help="Path to a sprint file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    config_file: str | None = typer.Option(None, "--config", help="Optional YAML file with scheduler settings"),
    start: str | None = typer.Option(None, "--start", help="Anchor date (YYYY-MM-DD), overrides sprint.start"),
) -> None:
    """Compute task start/end dates and sprint start/end/release dates."""
    _check_format(format, ("text", "json"), "schedule")
    doc, cfg = _load_document("schedule", path, format, config_file)
    anchor = _parse_cli_date(start, "start", "schedule", format)

    try:
        ledger = apply_worklogs(doc.tasks, doc.worklogs, with_margin=cfg.schedule_with_margin)
        ctx = ScheduleContext.from_document(doc, cfg, tasks=ledger.tasks)
        result = schedule_sprint(ctx, anchor=anchor)
    except SchedulerError as e:
        _fail("schedule", format, [_with_file(e, doc.file)], exit_code=2)

    warnings: list[SchedulerWarning] = ledger.warnings + list(result.warnings)
    hpd = cfg.hours_per_day

    if format == "json":
        payload = schedule_to_dict(result, hpd)
        payload["warnings"] = [_warning_item(w) for w in warnings]
        _emit_json("schedule", True, exit_code=0, schedule=payload)

    typer.echo(f"Sprint {result.sprint.id}: {result.sprint.name} [{result.status}]")
    typer.echo(
        f"Start: {_iso(result.start)}  End: {_iso(result.end)}  Release: {_iso(result.release_date)}"
    )
    typer.echo(
        "Estimate: "
        + format_work_duration(result.original_estimation, hpd)
        + "  Worked: "
        + format_work_duration(result.worked, hpd)
        + "  Remaining: "
        + format_work_duration(result.remaining, hpd)
    )
    for st in result.tasks:
        kind = "milestone" if st.task.milestone else st.task.mode
        typer.echo(
            f"- {st.task.id} {st.start.isoformat()} .. {st.end.isoformat()} "
            f"{format_work_duration(st.effort, hpd):>8} {st.task.assignee or '-'} ({kind}) {st.task.name}"
        )
    for w in warnings:
        typer.echo(f"WARN: {w}", err=True)


@app.command("burndown")
def burndown_cmd(
    path: str = typer.Argument(..., help="Path to a sprint file (.yaml/.yml/.json)"),
    as_of: str | None = typer.Option(None, "--as-of", help="Last day with actual values (YYYY-MM-DD)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json|csv"),
    config_file: str | None = typer.Option(None, "--config", help="Optional YAML file with scheduler settings"),
    start: str | None = typer.Option(None, "--start", help="Anchor date (YYYY-MM-DD), overrides sprint.start"),
) -> None:
    """Print the ideal vs actual remaining-effort series for every day of the sprint."""
    _check_format(format, ("text", "json", "csv"), "burndown")
    doc, cfg = _load_document("burndown", path, format, config_file)
    as_of_day = _parse_cli_date(as_of, "as_of", "burndown", format)
    anchor = _parse_cli_date(start, "start", "burndown", format)

    margin = cfg.schedule_with_margin
    try:
        ledger = apply_worklogs(doc.tasks, doc.worklogs, with_margin=margin)
        ctx = ScheduleContext.from_document(doc, cfg, tasks=ledger.tasks)
        result = schedule_sprint(ctx, anchor=anchor)
        cal = ctx.calendars.for_user(doc.sprint.user_id)
        if result.start is None or result.end is None:
            points, warnings = [], []
        else:
            points, warnings = burndown(
                doc.tasks,
                doc.worklogs,
                result.start,
                result.end,
                cal,
                as_of=as_of_day,
                with_margin=margin,
            )
    except SchedulerError as e:
        _fail("burndown", format, [_with_file(e, doc.file)], exit_code=2)

    rows = burndown_to_rows(points)
    if format == "json":
        _emit_json(
            "burndown",
            True,
            exit_code=0,
            sprint_id=doc.sprint.id,
            points=rows,
            warnings=[_warning_item(w) for w in warnings],
        )

    if format == "csv":
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=["day", "working_day", "ideal_hours", "actual_hours"], lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        typer.echo(buf.getvalue().rstrip("\n"))
        return

    typer.echo(f"Burn-down {doc.sprint.id} ({_iso(result.start)} .. {_iso(result.end)})")
    for row in rows:
        actual = "-" if row["actual_hours"] is None else f"{row['actual_hours']:.1f}h"
        marker = "" if row["working_day"] else " (off)"
        typer.echo(f"{row['day']}  ideal {row['ideal_hours']:.1f}h  actual {actual}{marker}")


@app.command("calendar")
def calendar_cmd(
    path: str = typer.Argument(..., help="Path to a sprint file (.yaml/.yml/.json)"),
    user: str = typer.Argument(..., help="User id"),
    from_day: str = typer.Option(..., "--from", help="First day (YYYY-MM-DD)"),
    to_day: str = typer.Option(..., "--to", help="Last day (YYYY-MM-DD)"),
    config_file: str | None = typer.Option(None, "--config", help="Optional YAML file with scheduler settings"),
) -> None:
    """List a user's days with working-day flag, capacity and reason for days off."""
    doc, cfg = _load_document("calendar", path, "text", config_file)
    first = _parse_cli_date(from_day, "from", "calendar", "text")
    last = _parse_cli_date(to_day, "to", "calendar", "text")
    assert first is not None and last is not None

    try:
        cal = CalendarProvider(doc.users_by_id, cfg).for_user(user)
    except SchedulerError as e:
        _print_errors([_with_file(e, doc.file)])
        raise typer.Exit(code=2)

    day = first
    while day <= last:
        if cal.is_working_day(day):
            note = format_work_duration(cal.capacity(day), cfg.hours_per_day)
        elif day.weekday() not in cal.work_week:
            note = "weekend"
        elif cal.is_holiday(day):
            note = "holiday"
        elif cal.off_day_on(day) is not None:
            note = cal.off_day_on(day).type
        else:
            note = "unavailable"
        typer.echo(f"{day.isoformat()} {day.strftime('%a')} {note}")
        day += dt.timedelta(days=1)


@app.command("log-work")
def log_work_cmd(
    path: str = typer.Argument(..., help="Path to a sprint file (.yaml/.yml/.json)"),
    task_id: str = typer.Argument(..., help="Task to book the work against"),
    time_spent: str = typer.Argument(..., help="Time spent, e.g. '1d 2h 30m'"),
    out: str = typer.Option(..., "--out", help="Path to write the updated YAML sprint file"),
    remaining: str | None = typer.Option(None, "--remaining", help="New remaining estimate, e.g. '2d'"),
    at: str | None = typer.Option(None, "--at", help="When the work started (ISO date/time), default now"),
    author: str | None = typer.Option(None, "--author"),
    comment: str | None = typer.Option(None, "--comment"),
    config_file: str | None = typer.Option(None, "--config", help="Optional YAML file with scheduler settings"),
) -> None:
    """Append a worklog to the sprint document and report the task's remaining effort."""
    doc, cfg = _load_document("log-work", path, "text", config_file)
    hpd = cfg.hours_per_day

    if task_id not in doc.tasks_by_id:
        _fail_text(
            SprintValidationError(
                code="E_UNKNOWN_TASK",
                message=f"unknown task: {task_id}",
                file=doc.file,
                path="task_id",
            )
        )

    try:
        spent = parse_work_duration(time_spent, hpd)
        left = parse_work_duration(remaining, hpd) if remaining is not None else None
    except ValueError as e:
        _fail_text(SprintValidationError(code="E_INVALID_DURATION", message=str(e), file=None, path="time_spent"))
    if spent <= dt.timedelta(0):
        _fail_text(
            SprintValidationError(
                code="E_INVALID_DURATION",
                message="time spent must be greater than zero",
                file=None,
                path="time_spent",
            )
        )

    try:
        started = dt.datetime.fromisoformat(at).replace(tzinfo=None) if at else dt.datetime.now().replace(microsecond=0)
    except ValueError:
        _fail_text(
            SprintValidationError(code="E_INVALID_TYPE", message=f"invalid date/time: {at}", file=None, path="at")
        )

    worklog = Worklog(
        id=_next_worklog_id(doc),
        task_id=task_id,
        start=started,
        time_spent=spent,
        time_remaining=left,
        author=author,
        comment=comment,
    )
    updated = replace(doc, worklogs=list(doc.worklogs) + [worklog])

    ledger = apply_worklogs(updated.tasks, updated.worklogs, with_margin=cfg.schedule_with_margin)
    task = next(t for t in ledger.tasks if t.id == task_id)

    _write_yaml(out, document_to_dict(updated, hpd))
    for w in ledger.warnings:
        typer.echo(f"WARN: {w}", err=True)
    typer.echo(
        f"OK: logged {format_work_duration(spent, hpd)} on {task_id} as {worklog.id}; "
        f"remaining {format_work_duration(task.remaining(cfg.schedule_with_margin), hpd)}; wrote {out}"
    )


def _load_document(
    command: str, path: str, format: str, config_file: str | None
) -> tuple[SprintDocument, SchedulerConfig]:
    try:
        raw = load_sprint(path)
    except SprintLoadError as e:
        _fail(command, format, [e], exit_code=1)

    base = _load_config(command, format, config_file)
    doc, errors = validate_sprint(raw, base)
    if errors or doc is None:
        _fail(command, format, list(errors), exit_code=2)

    # settings were checked against the same base during validation
    return doc, apply_overrides(base, doc.settings)


def _load_config(command: str, format: str, config_file: str | None) -> SchedulerConfig:
    try:
        return load_and_merge(config_file)
    except FileNotFoundError:
        _fail(
            command,
            format,
            [
                SprintLoadError(
                    code="E_CONFIG_FILE_NOT_FOUND",
                    message=f"config file not found: {config_file}",
                    file=None,
                    path="config",
                )
            ],
            exit_code=1,
        )
    except ConfigError as e:
        _fail(
            command,
            format,
            [SprintValidationError(code="E_CONFIG_FILE_INVALID", message=str(e), file=None, path="config")],
            exit_code=2,
        )


def _check_format(format: str, allowed: tuple[str, ...], command: str) -> None:
    if format not in allowed:
        err = SprintValidationError(
            code=f"E_{command.upper().replace('-', '_')}_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: {', '.join(allowed)})",
            file=None,
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _parse_cli_date(value: str | None, name: str, command: str, format: str) -> dt.date | None:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        _fail(
            command,
            format,
            [
                SprintValidationError(
                    code="E_INVALID_TYPE",
                    message=f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}",
                    file=None,
                    path=name,
                )
            ],
            exit_code=2,
        )


def _fail(command: str, format: str, errors: list[SchedulerError], *, exit_code: int) -> NoReturn:
    if format == "json":
        _emit_json(command, False, exit_code=exit_code, errors=errors)
    _print_errors(errors)
    raise typer.Exit(code=exit_code)


def _fail_text(err: SchedulerError) -> NoReturn:
    _print_errors([err])
    raise typer.Exit(code=2)


def _emit_json(command: str, ok: bool, *, exit_code: int, errors: list[SchedulerError] | None = None, **extra: Any) -> NoReturn:
    errors = errors or []
    payload: dict[str, Any] = {
        "tool": TOOL,
        "command": command,
        "ok": ok,
        "error_count": len(errors),
        "errors": [_error_item(e) for e in errors],
    }
    payload.update(extra)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _error_item(e: SchedulerError) -> dict[str, Any]:
    source = "load" if isinstance(e, SprintLoadError) else "validate" if isinstance(e, SprintValidationError) else "schedule"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _warning_item(w: SchedulerWarning) -> dict[str, Any]:
    return {"code": w.code, "message": w.message, "path": w.path, "severity": "warning"}


def _with_file(e: SchedulerError, file: str | None) -> SchedulerError:
    if e.file or not file:
        return e
    return type(e)(code=e.code, message=e.message, file=file, path=e.path)


def _next_worklog_id(doc: SprintDocument) -> str:
    existing = {w.id for w in doc.worklogs}
    n = len(doc.worklogs) + 1
    while f"W-{n}" in existing:
        n += 1
    return f"W-{n}"


def _write_yaml(path: str, doc: dict[str, Any]) -> None:
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)
    dump_sprint_yaml(doc, str(p))


def _iso(d: dt.date | None) -> str:
    return d.isoformat() if d is not None else "-"


def _print_errors(errors: list[SchedulerError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="sprint-scheduler")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
