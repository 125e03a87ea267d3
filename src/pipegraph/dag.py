# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import ConfigError

# needs: job id -> ids that must run BEFORE it


def build_dag(needs: Mapping[str, Iterable[str]]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build adjacency (dep -> dependents) and in-degree tables.

    Every dependency must itself be a key of `needs`.
    """
    names = set(needs)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for name, deps in needs.items():
        for dep in deps:
            if dep not in names:
                raise ConfigError(
                    f"job '{name}' needs missing job '{dep}'. Known jobs: {sorted(names)}"
                )
            # edge dep -> name (dep must run before name)
            if name not in adj[dep]:
                adj[dep].add(name)
                indeg[name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> Tuple[List[List[str]], List[str]]:
    """
    Convert a DAG into topological "levels" (stages).
    Each level can run in parallel; members are sorted by name.

    Returns (levels, stuck) where stuck lists the nodes that never reached
    in-degree zero, i.e. sit on or behind a cycle.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    current = sorted(n for n, d in indeg.items() if d == 0)

    levels: List[List[str]] = []
    processed = 0

    while current:
        levels.append(current)
        processed += len(current)

        nxt: Set[str] = set()
        for node in current:
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.add(child)
        current = sorted(nxt)

    stuck = sorted(n for n, d in indeg.items() if d > 0) if processed != len(indeg) else []
    return levels, stuck


def find_cycle(needs: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """
    DFS colouring. Returns the first cycle found as a closed path
    (first == last), following dependency direction, or None.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    colour: Dict[str, int] = {n: WHITE for n in needs}

    for root in sorted(needs):
        if colour[root] != WHITE:
            continue
        path: List[str] = [root]
        colour[root] = GREY
        stack = deque([iter(sorted(needs[root]))])

        while stack:
            advanced = False
            for dep in stack[-1]:
                c = colour.get(dep, BLACK)
                if c == GREY:
                    start = path.index(dep)
                    return path[start:] + [dep]
                if c == WHITE:
                    colour[dep] = GREY
                    path.append(dep)
                    stack.append(iter(sorted(needs[dep])))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                colour[path.pop()] = BLACK

    return None
