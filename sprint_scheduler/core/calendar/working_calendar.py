from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from sprint_scheduler.core.config.scheduler_config import DEFAULT_CONFIG, SchedulerConfig
from sprint_scheduler.core.errors import UnknownUserError, UnschedulableTaskError
from sprint_scheduler.core.model import Availability, Location, OffDay, User

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "<default>"

ONE_DAY = timedelta(days=1)


class WorkingCalendar:
    """Answers "does this user work on day D, and for how long".

    A day is a working day when its weekday is in the user's work week, it is not a
    holiday of the location governing that day (or a configured default holiday), it is
    not covered by an off-day range, and the user's availability on that day is above 0.
    """

    def __init__(self, user: User, config: SchedulerConfig = DEFAULT_CONFIG):
        self.user = user
        self.config = config
        self.work_week = user.work_week if user.work_week is not None else config.work_week
        self._locations: list[Location] = sorted(user.locations, key=lambda loc: loc.start)
        self._availabilities: list[Availability] = sorted(user.availabilities, key=lambda a: a.start)
        self._off_days: list[OffDay] = list(user.off_days)
        self._day_seconds = int(round(config.hours_per_day * 3600))

    @property
    def user_id(self) -> str:
        return self.user.id

    def location_on(self, day: date) -> Optional[Location]:
        current: Optional[Location] = None
        for loc in self._locations:
            if loc.start <= day:
                current = loc
            else:
                break
        return current

    def availability_on(self, day: date) -> float:
        if not self._availabilities:
            return 1.0
        current = 0.0
        for a in self._availabilities:
            if a.start <= day:
                current = a.availability
            else:
                break
        return current

    def is_holiday(self, day: date) -> bool:
        if day in self.config.default_holidays:
            return True
        loc = self.location_on(day)
        return loc is not None and day in loc.holidays

    def off_day_on(self, day: date) -> Optional[OffDay]:
        for off in self._off_days:
            if off.covers(day):
                return off
        return None

    def is_working_day(self, day: date) -> bool:
        if day.weekday() not in self.work_week:
            return False
        if self.is_holiday(day):
            return False
        if self.off_day_on(day) is not None:
            return False
        return self.availability_on(day) > 0

    def capacity(self, day: date) -> timedelta:
        """Hours of work available on ``day``; zero on non-working days."""
        if not self.is_working_day(day):
            return timedelta(0)
        return timedelta(seconds=int(round(self._day_seconds * self.availability_on(day))))

    def next_working_day(self, day: date) -> date:
        """First working day on or after ``day``."""
        if not self.work_week:
            raise self._unschedulable(day, "no working days configured in work week")
        limit = day + timedelta(days=self.config.horizon_days)
        cur = day
        while not self.is_working_day(cur):
            cur += ONE_DAY
            if cur > limit:
                raise self._unschedulable(day, f"no working day within {self.config.horizon_days} days")
        return cur

    def add_working_days(self, day: date, n: int) -> date:
        """The n-th working day after ``day``; n == 0 is next_working_day(day)."""
        if n < 0:
            raise ValueError("n must not be negative")
        cur = self.next_working_day(day)
        for _ in range(n):
            cur = self.next_working_day(cur + ONE_DAY)
        return cur

    def end_date_for_effort(self, start: date, effort: timedelta) -> date:
        """Day on which ``effort`` is used up when work begins on ``start``.

        Capacity is consumed day by day, skipping non-working days. Zero effort
        ends on the first working day on or after ``start``.
        """
        cur = self.next_working_day(start)
        left = int(round(effort.total_seconds()))
        limit = start + timedelta(days=self.config.horizon_days)
        while True:
            left -= int(self.capacity(cur).total_seconds())
            if left <= 0:
                return cur
            cur = self.next_working_day(cur + ONE_DAY)
            if cur > limit:
                raise self._unschedulable(start, f"effort does not fit within {self.config.horizon_days} days")

    def working_days(self, first: date, last: date) -> list[date]:
        out: list[date] = []
        cur = first
        while cur <= last:
            if self.is_working_day(cur):
                out.append(cur)
            cur += ONE_DAY
        return out

    def _unschedulable(self, day: date, reason: str) -> UnschedulableTaskError:
        logger.warning(f"calendar of {self.user.id} cannot place work after {day}: {reason}")
        return UnschedulableTaskError(
            code="E_UNSCHEDULABLE",
            message=f"user {self.user.id}: {reason} (from {day.isoformat()})",
            path=f"users.{self.user.id}",
        )


class CalendarProvider:
    """Hands out one WorkingCalendar per user; unassigned work uses the default calendar."""

    def __init__(self, users_by_id: dict[str, User], config: SchedulerConfig = DEFAULT_CONFIG):
        self.config = config
        self._users = dict(users_by_id)
        self._calendars: dict[str, WorkingCalendar] = {}
        self.default = WorkingCalendar(User(id=DEFAULT_CALENDAR_ID), config)

    def for_user(self, user_id: Optional[str]) -> WorkingCalendar:
        if user_id is None:
            return self.default
        cal = self._calendars.get(user_id)
        if cal is None:
            user = self._users.get(user_id)
            if user is None:
                raise UnknownUserError(
                    code="E_NOT_FOUND",
                    message=f"unknown user: {user_id}",
                    path=f"users.{user_id}",
                )
            cal = WorkingCalendar(user, self.config)
            self._calendars[user_id] = cal
        return cal
