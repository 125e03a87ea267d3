# sequencer.py
from __future__ import annotations

from typing import Dict, Iterable, List, Set, Union

from .compiler import JobGraph
from .dag import build_dag, find_cycle, topo_levels
from .errors import ConfigError, CycleError
from .model import Job, Stage

BUILD = "build"
TEARDOWN = "teardown"


def _ids(selected: Iterable[Union[Job, str]]) -> Set[str]:
    return {s if isinstance(s, str) else s.job_id for s in selected}


def induced_needs(graph: JobGraph, selected: Set[str]) -> Dict[str, Set[str]]:
    """
    Dependencies among the selected jobs only.

    A selected job depends on a selected job it reaches through unselected
    ones too: selecting only deploy jobs still orders a consumer after the
    producer whose artifacts job sits in between.
    """
    out: Dict[str, Set[str]] = {}
    for job_id in selected:
        deps: Set[str] = set()
        seen: Set[str] = set()
        stack = list(graph.needs(job_id))
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            if cur in selected:
                deps.add(cur)
            else:
                stack.extend(graph.needs(cur))
        out[job_id] = deps
    return out


def _levels(needs: Dict[str, Set[str]]) -> List[List[str]]:
    if not needs:
        return []
    adj, indeg = build_dag(needs)
    levels, stuck = topo_levels(adj, indeg)
    if stuck:
        cycle = find_cycle({k: needs[k] for k in stuck}) or stuck
        raise CycleError(cycle)
    return levels


def sequence(graph: JobGraph, selected: Iterable[Union[Job, str]]) -> List[Stage]:
    """
    Order the selected jobs into stages.

    Build-up jobs come first, destroy jobs form a trailing teardown segment.
    Inside each segment a job lands in the first stage after all of its
    dependencies (Kahn levels); members of a stage are sorted by job id.
    """
    ids = _ids(selected)
    unknown = sorted(ids - set(graph.jobs))
    if unknown:
        raise ConfigError(f"jobs not in the compiled graph: {unknown}")

    needs = induced_needs(graph, ids)
    build = {j for j in ids if not graph.job(j).is_teardown}
    teardown = ids - build

    stages: List[Stage] = []
    for segment, members in ((BUILD, build), (TEARDOWN, teardown)):
        # destroy jobs only ever need destroy jobs
        seg_needs = {j: needs[j] & members for j in members}
        for pos, level in enumerate(_levels(seg_needs), start=1):
            stages.append(Stage(index=len(stages) + 1, segment=segment, position=pos, job_ids=tuple(level)))
    return stages


def flatten(stages: Iterable[Stage]) -> List[str]:
    return [j for s in stages for j in s.job_ids]
