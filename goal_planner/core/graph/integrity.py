from __future__ import annotations

from typing import Iterable, Iterator, Mapping, Optional

from goal_planner.core.errors import GraphIntegrityError, ValidationError
from goal_planner.core.model import GoalSnapshot


# Longest cycle path rendered in full inside an error message.
MAX_RENDERED_PATH = 8


def check_dependencies(
    task_id: str,
    depends_on: Iterable[str],
    deps_by_id: Mapping[str, Iterable[str]],
) -> tuple[str, ...]:
    """Validate a dependency set about to be written for `task_id`.

    `deps_by_id` maps every task of the goal (other than the one being written,
    or including its current edges, either is fine) to its dependency ids.
    Returns the normalized dependency tuple (duplicates dropped, order kept).
    """

    normalized: list[str] = []
    for i, dep in enumerate(depends_on):
        if not isinstance(dep, str) or not dep.strip():
            raise ValidationError(
                code="E_INVALID_DEPENDENCY",
                message="depends_on entries must be non-empty task ids",
                entity=task_id,
                field=f"depends_on[{i}]",
            )
        if dep == task_id:
            raise GraphIntegrityError(
                code="E_SELF_DEPENDENCY",
                message="a task cannot depend on itself",
                entity=task_id,
                field=f"depends_on[{i}]",
            )
        if dep not in deps_by_id:
            raise ValidationError(
                code="E_UNKNOWN_DEPENDENCY",
                message=f"depends_on references unknown task id: {dep}",
                entity=task_id,
                field=f"depends_on[{i}]",
            )
        if dep not in normalized:
            normalized.append(dep)

    path = find_cycle_path(task_id, normalized, deps_by_id)
    if path is not None:
        raise GraphIntegrityError(
            code="E_DEPENDENCY_CYCLE",
            message=f"dependency cycle would be introduced ({len(path) - 1} edges): {render_path(path)}",
            entity=task_id,
            field="depends_on",
        )
    return tuple(normalized)


def find_cycle_path(
    task_id: str,
    new_deps: Iterable[str],
    deps_by_id: Mapping[str, Iterable[str]],
) -> Optional[list[str]]:
    """Return the edge path task_id -> ... -> task_id if the new edges close a loop.

    Walks from each new dependency through the existing edges, visiting every
    task at most once. Parent links rebuild the path only when a loop is found.
    """

    parent: dict[str, str] = {}
    stack: list[str] = []
    for d in new_deps:
        if d == task_id:
            return [task_id, task_id]
        if d not in parent:
            parent[d] = task_id
            stack.append(d)

    seen: set[str] = set()
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        for nxt in deps_by_id.get(cur, ()):
            if nxt == task_id:
                path = [task_id, cur]
                while path[-1] != task_id:
                    path.append(parent[path[-1]])
                path.reverse()
                return path
            if nxt not in parent:
                parent[nxt] = cur
                stack.append(nxt)
    return None


def would_create_cycle(
    task_id: str,
    new_deps: Iterable[str],
    deps_by_id: Mapping[str, Iterable[str]],
) -> bool:
    return find_cycle_path(task_id, new_deps, deps_by_id) is not None


def render_path(path: list[str], limit: int = MAX_RENDERED_PATH) -> str:
    if len(path) <= limit:
        return " -> ".join(path)
    head = path[: limit // 2]
    tail = path[-(limit - len(head)) :]
    return " -> ".join(head + ["..."] + tail)


def detect_cycles(deps_by_id: Mapping[str, Iterable[str]]) -> list[list[str]]:
    WHITE, GRAY, BLACK = 0, 1, 2
    state: dict[str, int] = {nid: WHITE for nid in deps_by_id.keys()}
    emitted: set[frozenset[str]] = set()
    out: list[list[str]] = []

    for root in sorted(state.keys()):
        if state[root] != WHITE:
            continue

        # Explicit stack: long chains must not hit the interpreter recursion limit.
        path: list[str] = [root]
        position: dict[str, int] = {root: 0}
        frames: list[tuple[str, Iterator[str]]] = [(root, iter(deps_by_id.get(root, ())))]
        state[root] = GRAY

        while frames:
            u, edges = frames[-1]
            descended = False
            for v in edges:
                if v not in state:
                    continue
                if state[v] == GRAY:
                    # cycle: v ... u -> v
                    cycle = path[position[v] :] + [v]
                    key = frozenset(cycle)
                    if key not in emitted:
                        emitted.add(key)
                        out.append(cycle)
                elif state[v] == WHITE:
                    state[v] = GRAY
                    position[v] = len(path)
                    path.append(v)
                    frames.append((v, iter(deps_by_id.get(v, ()))))
                    descended = True
                    break
            if not descended:
                frames.pop()
                path.pop()
                del position[u]
                state[u] = BLACK

    return out


def dangling_dependencies(snapshot: GoalSnapshot) -> dict[str, list[str]]:
    known = snapshot.task_by_id()
    out: dict[str, list[str]] = {}
    for t in snapshot.iter_tasks():
        missing = [d for d in t.depends_on if d not in known]
        if missing:
            out[t.id] = missing
    return out


def deps_by_task(snapshot: GoalSnapshot) -> dict[str, tuple[str, ...]]:
    return {t.id: t.depends_on for t in snapshot.iter_tasks()}
