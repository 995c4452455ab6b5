import random
from datetime import date, timedelta

import pytest

from sprint_scheduler.core.calendar.working_calendar import CalendarProvider
from sprint_scheduler.core.config.scheduler_config import DEFAULT_CONFIG, SchedulerConfig
from sprint_scheduler.core.errors import CyclicDependencyError, SprintValidationError, UnschedulableTaskError
from sprint_scheduler.core.model import Availability, Location, OffDay, Sprint, Task, User
from sprint_scheduler.core.schedule.scheduler import ScheduleContext, schedule_sprint, sprint_status

MON = date(2025, 8, 4)
FRI = date(2025, 8, 8)
NEXT_MON = date(2025, 8, 11)

USERS = {
    "alice": User(id="alice", locations=[Location(country="de", start=date(2025, 1, 1), holidays=frozenset({date(2025, 8, 13)}))]),
    "bob": User(id="bob", off_days=[OffDay(first_day=date(2025, 8, 18), last_day=date(2025, 8, 22))]),
    "carol": User(id="carol", availabilities=[Availability(availability=0.5, start=date(2025, 1, 1))]),
}


def days(n: float) -> timedelta:
    return timedelta(hours=8 * n)


def make_ctx(tasks, users=None, config: SchedulerConfig = DEFAULT_CONFIG, start=MON) -> ScheduleContext:
    return ScheduleContext(
        sprint=Sprint(id="S", name="sprint", start=start),
        tasks=tasks,
        calendars=CalendarProvider(USERS if users is None else users, config),
        config=config,
    )


def test_successor_of_friday_task_starts_monday():
    tasks = [
        Task(id="A", name="a", min_estimate=days(5), assignee="alice"),
        Task(id="B", name="b", min_estimate=days(1), assignee="bob", predecessors=["A"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert (s.by_id["A"].start, s.by_id["A"].end) == (MON, FRI)
    assert s.by_id["B"].start == NEXT_MON
    assert s.by_id["B"].end == NEXT_MON


def test_holiday_pushes_end_to_following_monday():
    users = {"alice": User(id="alice", locations=[Location(country="de", start=MON, holidays=frozenset({date(2025, 8, 6)}))])}
    s = schedule_sprint(make_ctx([Task(id="A", name="a", min_estimate=days(5), assignee="alice")], users=users))
    assert s.by_id["A"].start == MON
    assert s.by_id["A"].end == NEXT_MON


def test_milestone_has_zero_duration_and_follows_predecessors():
    tasks = [
        Task(id="M0", name="start", milestone=True),
        Task(id="A", name="a", min_estimate=days(5), assignee="alice", predecessors=["M0"]),
        Task(id="M1", name="done", milestone=True, predecessors=["A"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert s.by_id["M0"].start == s.by_id["M0"].end == MON
    assert s.by_id["A"].start == MON
    assert s.by_id["M1"].start == s.by_id["M1"].end == FRI
    assert s.by_id["M1"].effort == timedelta(0)


def test_milestone_between_tasks_does_not_let_successor_overlap():
    tasks = [
        Task(id="A", name="a", min_estimate=days(5), assignee="alice"),
        Task(id="M", name="gate", milestone=True, predecessors=["A"]),
        Task(id="B", name="b", min_estimate=days(1), assignee="bob", predecessors=["M"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert s.by_id["M"].start == FRI
    assert s.by_id["B"].start == NEXT_MON
    assert s.by_id["B"].start > s.by_id["A"].end


def test_chained_milestones_pass_readiness_through():
    tasks = [
        Task(id="A", name="a", min_estimate=days(2), assignee="alice"),
        Task(id="M1", name="one", milestone=True, predecessors=["A"]),
        Task(id="M2", name="two", milestone=True, predecessors=["M1"]),
        Task(id="B", name="b", min_estimate=days(1), assignee="bob", predecessors=["M2"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert s.by_id["M2"].start == date(2025, 8, 5)
    assert s.by_id["B"].start == date(2025, 8, 6)


def test_resource_levelling_serialises_a_users_tasks():
    tasks = [
        Task(id="A", name="a", min_estimate=days(2), assignee="alice"),
        Task(id="B", name="b", min_estimate=days(2), assignee="alice"),
    ]
    levelled = schedule_sprint(make_ctx(tasks))
    assert levelled.by_id["B"].start == date(2025, 8, 6)

    parallel = schedule_sprint(make_ctx(tasks, config=SchedulerConfig(level_resources=False)))
    assert parallel.by_id["B"].start == MON


def test_manual_task_keeps_its_start_and_warns_when_early(caplog):
    tasks = [
        Task(id="A", name="a", min_estimate=days(3), assignee="alice"),
        Task(id="B", name="b", min_estimate=days(1), assignee="bob", mode="manual", start=date(2025, 8, 5), predecessors=["A"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert s.by_id["B"].start == date(2025, 8, 5)
    assert [w.code for w in s.warnings] == ["W_MANUAL_BEFORE_PREDECESSOR"]
    assert "W_MANUAL_BEFORE_PREDECESSOR" in caplog.text


def test_manual_task_on_weekend_moves_to_next_working_day():
    tasks = [Task(id="A", name="a", min_estimate=days(1), mode="manual", start=date(2025, 8, 9))]
    s = schedule_sprint(make_ctx(tasks, start=None))
    assert s.by_id["A"].start == NEXT_MON
    assert s.warnings == []


def test_release_buffer_adds_working_days():
    tasks = [Task(id="A", name="a", min_estimate=days(5), assignee="bob")]
    s = schedule_sprint(make_ctx(tasks, config=SchedulerConfig(release_buffer_days=2)))
    assert s.end == FRI
    assert s.release_date == date(2025, 8, 12)


def test_release_defaults_to_sprint_end():
    s = schedule_sprint(make_ctx([Task(id="A", name="a", min_estimate=days(1))]))
    assert s.release_date == s.end == MON


def test_story_spans_its_children():
    tasks = [
        Task(id="P", name="prep", min_estimate=days(1), assignee="bob"),
        Task(id="S", name="story", predecessors=["P"]),
        Task(id="S.1", name="one", min_estimate=days(2), assignee="alice", parent="S"),
        Task(id="S.2", name="two", min_estimate=days(1), assignee="bob", parent="S"),
        Task(id="N", name="next", min_estimate=days(1), assignee="bob", predecessors=["S"]),
    ]
    s = schedule_sprint(make_ctx(tasks))
    assert s.by_id["S.1"].start == date(2025, 8, 5)
    assert s.by_id["S.2"].start == date(2025, 8, 5)
    story = s.by_id["S"]
    assert story.start == date(2025, 8, 5)
    assert story.end == date(2025, 8, 6)
    assert story.effort == days(3)
    assert s.by_id["N"].start == date(2025, 8, 7)
    assert s.original_estimation == days(5)


def test_margin_schedules_with_max_estimate():
    tasks = [Task(id="A", name="a", min_estimate=days(1), max_estimate=days(3), assignee="bob")]
    assert schedule_sprint(make_ctx(tasks)).end == MON
    assert schedule_sprint(make_ctx(tasks, config=SchedulerConfig(schedule_with_margin=True))).end == date(2025, 8, 6)


def test_cycle_aborts_the_pass():
    tasks = [
        Task(id="A", name="a", min_estimate=days(1), predecessors=["B"]),
        Task(id="B", name="b", min_estimate=days(1), predecessors=["A"]),
    ]
    with pytest.raises(CyclicDependencyError):
        schedule_sprint(make_ctx(tasks))


def test_user_without_working_days_is_unschedulable():
    users = {"ghost": User(id="ghost", work_week=frozenset())}
    with pytest.raises(UnschedulableTaskError):
        schedule_sprint(make_ctx([Task(id="A", name="a", min_estimate=days(1), assignee="ghost")], users=users))


def test_missing_anchor_is_reported():
    with pytest.raises(SprintValidationError) as ei:
        schedule_sprint(make_ctx([Task(id="A", name="a", min_estimate=days(1))], start=None))
    assert ei.value.code == "E_NO_ANCHOR"


def test_explicit_anchor_overrides_sprint_start():
    s = schedule_sprint(make_ctx([Task(id="A", name="a", min_estimate=days(1))]), anchor=NEXT_MON)
    assert s.start == NEXT_MON


def test_empty_sprint():
    s = schedule_sprint(make_ctx([], start=None))
    assert s.start is None and s.end is None and s.release_date is None
    assert s.status == "created"


def test_sprint_status():
    todo = Task(id="A", name="a", min_estimate=days(1))
    assert sprint_status([todo]) == "created"
    assert sprint_status([todo, Task(id="B", name="b", status="in_progress")]) == "started"
    assert sprint_status([Task(id="A", name="a", status="done")]) == "closed"


def _random_tasks(seed: int, n: int = 40) -> list[Task]:
    rng = random.Random(seed)
    assignees = ["alice", "bob", "carol", None]
    tasks: list[Task] = []
    for i in range(n):
        preds = rng.sample([t.id for t in tasks], k=min(len(tasks), rng.randint(0, 3)))
        if i % 9 == 8:
            tasks.append(Task(id=f"T{i}", name=f"milestone {i}", milestone=True, predecessors=preds))
            continue
        tasks.append(
            Task(
                id=f"T{i}",
                name=f"task {i}",
                min_estimate=timedelta(hours=rng.randint(1, 30)),
                assignee=rng.choice(assignees),
                predecessors=preds,
            )
        )
    rng.shuffle(tasks)
    return tasks


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_every_task_starts_after_its_predecessors_end(seed):
    tasks = _random_tasks(seed)
    s = schedule_sprint(make_ctx(tasks))
    placed = s.by_id
    for t in tasks:
        for p in t.predecessors:
            assert placed[t.id].start >= placed[p].end, (t.id, p)
            if not t.milestone and placed[p].effort > timedelta(0):
                assert placed[t.id].start > placed[p].end


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_end_is_a_working_day_and_no_working_day_is_skipped(seed):
    tasks = _random_tasks(seed)
    ctx = make_ctx(tasks)
    s = schedule_sprint(ctx)
    for st in s.tasks:
        cal = ctx.calendars.for_user(st.task.assignee)
        assert cal.is_working_day(st.start)
        assert cal.is_working_day(st.end)
        if st.effort == timedelta(0):
            assert st.start == st.end
            continue
        worked_days = cal.working_days(st.start, st.end)
        capacity = sum((cal.capacity(d) for d in worked_days), timedelta(0))
        before_last = sum((cal.capacity(d) for d in worked_days[:-1]), timedelta(0))
        assert capacity >= st.effort
        assert before_last < st.effort


@pytest.mark.parametrize("seed", [1, 2])
def test_scheduling_is_idempotent(seed):
    tasks = _random_tasks(seed)
    first = schedule_sprint(make_ctx(tasks))
    second = schedule_sprint(make_ctx(tasks))
    assert first == second
    assert first.release_date == second.release_date


def _ancestors(task_id: str, by_id: dict[str, Task]) -> set[str]:
    seen: set[str] = set()
    stack = list(by_id[task_id].predecessors)
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        stack.extend(by_id[cur].predecessors)
    return seen


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_every_task_starts_after_all_ancestors_with_effort(seed):
    tasks = _random_tasks(seed)
    by_id = {t.id: t for t in tasks}
    placed = schedule_sprint(make_ctx(tasks)).by_id
    for t in tasks:
        for a in _ancestors(t.id, by_id):
            assert placed[t.id].start >= placed[a].end, (t.id, a)
            if not t.milestone and placed[a].effort > timedelta(0):
                assert placed[t.id].start > placed[a].end, (t.id, a)
