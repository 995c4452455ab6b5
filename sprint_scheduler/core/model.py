from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Literal, Optional


TaskStatus = Literal["todo", "in_progress", "done"]
TaskMode = Literal["auto", "manual"]
OffDayType = Literal["vacation", "sick", "trip", "holiday"]
SprintStatus = Literal["created", "started", "closed"]

ZERO = timedelta(0)


@dataclass(frozen=True)
class Task:
    id: str
    name: str
    min_estimate: timedelta = ZERO
    max_estimate: Optional[timedelta] = None
    remaining_estimate: Optional[timedelta] = None
    worked: timedelta = ZERO
    status: TaskStatus = "todo"
    mode: TaskMode = "auto"
    milestone: bool = False
    assignee: Optional[str] = None
    predecessors: list[str] = field(default_factory=list)
    parent: Optional[str] = None
    start: Optional[date] = None

    def original_estimate(self, with_margin: bool = False) -> timedelta:
        if self.milestone:
            return ZERO
        if with_margin and self.max_estimate is not None:
            return self.max_estimate
        return self.min_estimate

    def remaining(self, with_margin: bool = False) -> timedelta:
        """Remaining effort; defaults to the original estimate until work is logged."""
        if self.milestone or self.status == "done":
            return ZERO
        if self.remaining_estimate is not None:
            return self.remaining_estimate
        return self.original_estimate(with_margin)

    def planned_effort(self, with_margin: bool = False) -> timedelta:
        return self.worked + self.remaining(with_margin)


@dataclass(frozen=True)
class Sprint:
    id: str
    name: str
    feature_id: Optional[str] = None
    user_id: Optional[str] = None
    start: Optional[date] = None


@dataclass(frozen=True)
class Location:
    country: str
    start: date
    state: Optional[str] = None
    holidays: frozenset[date] = frozenset()


@dataclass(frozen=True)
class OffDay:
    first_day: date
    last_day: date
    type: OffDayType = "vacation"

    def covers(self, d: date) -> bool:
        return self.first_day <= d <= self.last_day


@dataclass(frozen=True)
class Availability:
    availability: float
    start: date


@dataclass(frozen=True)
class User:
    id: str
    name: Optional[str] = None
    work_week: Optional[frozenset[int]] = None  # None: use the configured work week
    locations: list[Location] = field(default_factory=list)
    off_days: list[OffDay] = field(default_factory=list)
    availabilities: list[Availability] = field(default_factory=list)


@dataclass(frozen=True)
class Worklog:
    id: str
    task_id: str
    start: datetime
    time_spent: timedelta
    time_remaining: Optional[timedelta] = None
    author: Optional[str] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class SprintDocument:
    """Immutable snapshot a scheduling pass runs on."""

    schema_version: str
    sprint: Sprint
    users_by_id: dict[str, User]
    tasks: list[Task]
    worklogs: list[Worklog]
    settings: dict[str, object] = field(default_factory=dict)
    file: Optional[str] = None

    @property
    def tasks_by_id(self) -> dict[str, Task]:
        return {t.id: t for t in self.tasks}


@dataclass(frozen=True)
class ScheduledTask:
    task: Task
    start: date
    end: date
    effort: timedelta

    @property
    def id(self) -> str:
        return self.task.id


@dataclass(frozen=True)
class SprintSchedule:
    sprint: Sprint
    tasks: list[ScheduledTask]
    start: Optional[date]
    end: Optional[date]
    release_date: Optional[date]
    original_estimation: timedelta
    remaining: timedelta
    worked: timedelta
    status: SprintStatus
    warnings: list = field(default_factory=list)

    @property
    def by_id(self) -> dict[str, ScheduledTask]:
        return {st.id: st for st in self.tasks}


@dataclass(frozen=True)
class BurndownPoint:
    day: date
    ideal: timedelta
    actual: Optional[timedelta]
    working_day: bool
