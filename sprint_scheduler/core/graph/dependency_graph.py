from __future__ import annotations

import heapq
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from sprint_scheduler.core.errors import UnknownTaskError, cycle_error
from sprint_scheduler.core.model import Task


@dataclass(frozen=True)
class DependencyGraph:
    """Task dependency DAG.

    ``deps[t]`` holds every node that must finish before ``t`` can be placed:

    - the task's own predecessors,
    - for a child task, the predecessors of each enclosing story,
    - for a story, its direct children (a story finishes with its last child).
    """

    order_index: dict[str, int]
    deps: dict[str, list[str]]
    children: dict[str, list[str]]

    def is_story(self, task_id: str) -> bool:
        return bool(self.children.get(task_id))

    def leaves(self) -> list[str]:
        return [tid for tid in self.order_index if not self.is_story(tid)]

    def topological_order(self, file: Optional[str] = None) -> list[str]:
        """Kahn's algorithm; ties are broken by document order.

        Raises CyclicDependencyError naming one cycle when the graph is not a DAG.
        """
        cycle = find_cycle(self.deps, list(self.order_index))
        if cycle:
            raise cycle_error(cycle, file=file)

        indegree: dict[str, int] = {tid: len(set(ds)) for tid, ds in self.deps.items()}
        dependents: dict[str, list[str]] = defaultdict(list)
        for tid, ds in self.deps.items():
            for d in set(ds):
                dependents[d].append(tid)

        ready = [(self.order_index[tid], tid) for tid, n in indegree.items() if n == 0]
        heapq.heapify(ready)
        out: list[str] = []
        while ready:
            _, cur = heapq.heappop(ready)
            out.append(cur)
            for nxt in dependents.get(cur, []):
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(ready, (self.order_index[nxt], nxt))
        return out


def build_graph(tasks: list[Task]) -> DependencyGraph:
    by_id = {t.id: t for t in tasks}
    order_index = {t.id: i for i, t in enumerate(tasks)}

    children: dict[str, list[str]] = defaultdict(list)
    for t in tasks:
        if t.parent is not None:
            if t.parent not in by_id:
                raise UnknownTaskError(
                    code="E_NOT_FOUND",
                    message=f"parent references unknown task: {t.parent}",
                    path=f"tasks.{t.id}.parent",
                )
            children[t.parent].append(t.id)

    deps: dict[str, list[str]] = {}
    for t in tasks:
        ds: list[str] = []
        for p in t.predecessors:
            if p not in by_id:
                raise UnknownTaskError(
                    code="E_NOT_FOUND",
                    message=f"predecessor references unknown task: {p}",
                    path=f"tasks.{t.id}.predecessors",
                )
            ds.append(p)
        ds.extend(_inherited_predecessors(t, by_id))
        ds.extend(children.get(t.id, []))
        deps[t.id] = _dedupe(ds)

    return DependencyGraph(order_index=order_index, deps=deps, children=dict(children))


def find_cycle(deps: dict[str, list[str]], ids: list[str]) -> list[str]:
    """Return one cycle as ``[a, b, ..., a]`` or an empty list."""
    WHITE, GRAY, BLACK = 0, 1, 2
    state: dict[str, int] = {nid: WHITE for nid in ids}
    stack: list[str] = []

    # iterative DFS so deep chains do not hit the recursion limit
    for root in ids:
        if state[root] != WHITE:
            continue
        state[root] = GRAY
        stack.append(root)
        iters = [iter(deps.get(root, []))]
        while iters:
            u = stack[-1]
            v = next(iters[-1], None)
            if v is None:
                state[u] = BLACK
                stack.pop()
                iters.pop()
                continue
            if v not in state:
                continue
            if state[v] == GRAY:
                idx = stack.index(v)
                return stack[idx:] + [v]
            if state[v] == WHITE:
                state[v] = GRAY
                stack.append(v)
                iters.append(iter(deps.get(v, [])))
    return []


def _inherited_predecessors(t: Task, by_id: dict[str, Task]) -> list[str]:
    out: list[str] = []
    seen: set[str] = {t.id}
    parent_id = t.parent
    while parent_id is not None and parent_id not in seen:
        seen.add(parent_id)
        parent = by_id[parent_id]
        out.extend(p for p in parent.predecessors if p in by_id)
        parent_id = parent.parent
    return out


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out
