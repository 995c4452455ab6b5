import random
from datetime import date, datetime, timedelta

import pytest

from sprint_scheduler.core.calendar.working_calendar import WorkingCalendar
from sprint_scheduler.core.errors import UnknownTaskError
from sprint_scheduler.core.model import Task, User, Worklog
from sprint_scheduler.core.progress.burndown import burndown

MON = date(2025, 8, 4)
FRI = date(2025, 8, 8)
SUN = date(2025, 8, 10)

CAL = WorkingCalendar(User(id="alice"))


def days(n: float) -> timedelta:
    return timedelta(hours=8 * n)


TASKS = [
    Task(id="A", name="a", min_estimate=days(2)),
    Task(id="B", name="b", min_estimate=days(3)),
    Task(id="C", name="c", min_estimate=days(1)),
]


def wl(id: str, task_id: str, when: datetime, spent: timedelta, remaining=None) -> Worklog:
    return Worklog(id=id, task_id=task_id, start=when, time_spent=spent, time_remaining=remaining)


def test_single_worklog_and_linear_ideal():
    logs = [wl("W-1", "A", datetime(2025, 8, 4, 9, 0), days(1))]
    points, warnings = burndown(TASKS, logs, MON, FRI, CAL)
    assert warnings == []
    assert [p.actual for p in points] == [timedelta(hours=40)] * 5
    assert [p.ideal for p in points] == [
        timedelta(hours=38, minutes=24),
        timedelta(hours=28, minutes=48),
        timedelta(hours=19, minutes=12),
        timedelta(hours=9, minutes=36),
        timedelta(0),
    ]


def test_ideal_is_flat_over_the_weekend():
    points, _ = burndown(TASKS, [], MON, SUN, CAL)
    assert [p.working_day for p in points] == [True] * 5 + [False, False]
    assert points[-3].ideal == points[-2].ideal == points[-1].ideal == timedelta(0)
    assert all(p.actual == days(6) for p in points)


def test_worklog_counts_from_its_own_day():
    logs = [wl("W-1", "B", datetime(2025, 8, 6, 17, 30), days(1))]
    points, _ = burndown(TASKS, logs, MON, FRI, CAL)
    assert [p.actual for p in points] == [days(6), days(6), days(5), days(5), days(5)]


def test_worklog_before_the_range_is_applied_on_the_first_day():
    logs = [wl("W-1", "C", datetime(2025, 8, 1, 10, 0), timedelta(hours=4))]
    points, _ = burndown(TASKS, logs, MON, FRI, CAL)
    assert points[0].actual == days(6) - timedelta(hours=4)


def test_days_after_as_of_have_no_actual():
    points, _ = burndown(TASKS, [], MON, FRI, CAL, as_of=date(2025, 8, 6))
    assert [p.actual is None for p in points] == [False, False, False, True, True]
    assert points[-1].ideal == timedelta(0)


def test_remaining_override_and_clamp_warning():
    logs = [
        wl("W-1", "A", datetime(2025, 8, 4, 9, 0), days(1), remaining=days(3)),
        wl("W-2", "C", datetime(2025, 8, 5, 9, 0), days(2)),
    ]
    points, warnings = burndown(TASKS, logs, MON, FRI, CAL)
    assert points[0].actual == days(7)
    assert points[1].actual == days(6)
    assert [w.code for w in warnings] == ["W_NEGATIVE_REMAINING"]


def test_worklog_on_story_is_ignored():
    tasks = [
        Task(id="S", name="story"),
        Task(id="S.1", name="child", min_estimate=days(2), parent="S"),
    ]
    logs = [wl("W-1", "S", datetime(2025, 8, 4, 9, 0), days(1))]
    points, warnings = burndown(tasks, logs, MON, FRI, CAL)
    assert warnings == []
    assert all(p.actual == days(2) for p in points)


def test_unknown_task_in_worklog_raises():
    logs = [wl("W-1", "NOPE", datetime(2025, 8, 4, 9, 0), days(1))]
    with pytest.raises(UnknownTaskError):
        burndown(TASKS, logs, MON, FRI, CAL)


def test_empty_range():
    assert burndown(TASKS, [], FRI, MON, CAL) == ([], [])


def test_range_without_working_days_keeps_ideal_at_total():
    points, _ = burndown(TASKS, [], date(2025, 8, 9), SUN, CAL)
    assert [p.ideal for p in points] == [days(6), days(6)]


@pytest.mark.parametrize("seed", [11, 12, 13])
def test_actual_never_increases_and_is_idempotent(seed):
    rng = random.Random(seed)
    logs = [
        wl(
            f"W-{i}",
            rng.choice(["A", "B", "C"]),
            datetime(2025, 8, 4, 9, 0) + timedelta(hours=rng.randint(0, 24 * 6)),
            timedelta(minutes=30 * rng.randint(1, 12)),
        )
        for i in range(25)
    ]
    first, _ = burndown(TASKS, logs, MON, SUN, CAL)
    second, _ = burndown(TASKS, list(reversed(logs)), MON, SUN, CAL)
    assert first == second
    actual = [p.actual for p in first]
    assert all(later <= earlier for earlier, later in zip(actual, actual[1:]))
    assert actual[-1] >= timedelta(0)


def test_done_task_is_replayed_from_its_worklogs():
    tasks = [
        Task(id="A", name="a", min_estimate=days(2), status="done", remaining_estimate=timedelta(0), worked=days(2)),
        Task(id="B", name="b", min_estimate=days(3)),
    ]
    logs = [
        wl("W-1", "A", datetime(2025, 8, 4, 9, 0), days(1)),
        wl("W-2", "A", datetime(2025, 8, 5, 9, 0), days(1)),
    ]
    points, warnings = burndown(tasks, logs, MON, FRI, CAL)
    assert warnings == []
    assert points[0].ideal == timedelta(hours=32)
    assert [p.actual for p in points] == [
        timedelta(hours=32),
        timedelta(hours=24),
        timedelta(hours=24),
        timedelta(hours=24),
        timedelta(hours=24),
    ]


def test_done_task_closes_with_its_last_worklog_even_if_under_estimate():
    tasks = [Task(id="A", name="a", min_estimate=days(2), status="done")]
    logs = [wl("W-1", "A", datetime(2025, 8, 6, 9, 0), days(1))]
    points, _ = burndown(tasks, logs, MON, FRI, CAL)
    assert [p.actual for p in points] == [days(2), days(2), timedelta(0), timedelta(0), timedelta(0)]


def test_done_task_without_worklogs_counts_in_total_but_not_in_actual():
    tasks = [
        Task(id="A", name="a", min_estimate=days(2), status="done"),
        Task(id="B", name="b", min_estimate=days(3)),
    ]
    points, _ = burndown(tasks, [], MON, FRI, CAL)
    assert points[0].ideal == timedelta(hours=32)
    assert all(p.actual == days(3) for p in points)


def test_ideal_is_an_end_of_day_value():
    points, _ = burndown(TASKS, [], MON, FRI, CAL)
    total = days(6)
    assert points[0].ideal == total - total / 5
    assert points[0].actual == total
