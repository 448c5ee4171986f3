"""Post-hoc consistency checks for model-produced cross references.

Task dependencies and the critical path are linked by id and title strings
that the model cannot guarantee to be consistent. These checks report what
is wrong; they do not reject the plan.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Dict, Iterable, List, Sequence

from .schemas import ActionPlanV1, DanglingReference, IntegrityReport

TIME_ESTIMATE_PATTERN = re.compile(r"\d+(-\d+)?\s*(day|days|week|weeks)", re.IGNORECASE)

PROCUREMENT_KEYWORDS = (
    "procure",
    "procurement",
    "supplier",
    "vendor",
    "freelance",
    "freelancer",
    "outsource",
    "agency",
    "upwork",
    "fiverr",
    "contractor",
    "sourcing",
)


def _dependencies(task: object) -> List[str]:
    # v1 tasks carry no dependency list.
    return list(getattr(task, "dependencies", []) or [])


def _find_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
    """Return each dependency cycle once, as the ids along the loop."""

    cycles: List[List[str]] = []
    seen_cycles: set[frozenset[str]] = set()
    state: Dict[str, int] = {}  # 1 = on stack, 2 = finished
    stack: List[str] = []

    def visit(node: str) -> None:
        state[node] = 1
        stack.append(node)
        for neighbour in graph.get(node, []):
            if neighbour not in graph or neighbour == node:
                continue
            if state.get(neighbour) == 1:
                loop = stack[stack.index(neighbour):]
                key = frozenset(loop)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(loop)
            elif state.get(neighbour) is None:
                visit(neighbour)
        stack.pop()
        state[node] = 2

    for node in graph:
        if state.get(node) is None:
            visit(node)
    return cycles


def check_action_plan(plan: ActionPlanV1) -> IntegrityReport:
    """Flag duplicate ids, dangling or circular dependencies, and a loose critical path."""

    tasks = plan.all_tasks()
    id_counts = Counter(task.id for task in tasks)
    known_ids = set(id_counts)

    dangling: List[DanglingReference] = []
    self_refs: List[str] = []
    graph: Dict[str, List[str]] = {}
    for task in tasks:
        deps = _dependencies(task)
        graph.setdefault(task.id, []).extend(deps)
        for dep in deps:
            if dep == task.id:
                self_refs.append(task.id)
            elif dep not in known_ids:
                dangling.append(DanglingReference(task_id=task.id, missing_id=dep))

    titles = {task.title.strip().lower() for task in tasks}
    critical_title = plan.critical_path.task_title.strip().lower()

    return IntegrityReport(
        duplicate_task_ids=sorted(task_id for task_id, count in id_counts.items() if count > 1),
        dangling_dependencies=dangling,
        self_dependencies=sorted(set(self_refs)),
        dependency_cycles=_find_cycles(graph),
        critical_path_resolved=critical_title in titles,
        time_estimate_well_formed=bool(TIME_ESTIMATE_PATTERN.search(plan.critical_path.time_estimate)),
    )


def has_procurement_emphasis(plan: ActionPlanV1, keywords: Iterable[str] = PROCUREMENT_KEYWORDS) -> bool:
    """True when at least one task reads like supplier discovery or procurement."""

    lowered = tuple(keyword.lower() for keyword in keywords)
    for category in plan.categories:
        for task in category.tasks:
            text = " ".join((category.category_title, task.title, task.description, task.category)).lower()
            if any(keyword in text for keyword in lowered):
                return True
    return False


def check_rank_permutation(ranks: Sequence[int], expected: int) -> List[str]:
    """Return problems that stop *ranks* from being a permutation of 1..expected."""

    problems: List[str] = []
    if len(ranks) != expected:
        problems.append(f"expected {expected} ranks, got {len(ranks)}")
    counts = Counter(ranks)
    duplicates = sorted(rank for rank, count in counts.items() if count > 1)
    if duplicates:
        problems.append(f"duplicate ranks {duplicates}")
    missing = sorted(set(range(1, expected + 1)) - set(counts))
    if missing:
        problems.append(f"missing ranks {missing}")
    out_of_range = sorted(rank for rank in counts if rank < 1 or rank > expected)
    if out_of_range:
        problems.append(f"ranks out of range {out_of_range}")
    return problems
