# export.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from .compiler import JobGraph
from .emitter import ExecutionContract
from .model import Job, Stage


def pipeline_document(
    stages: Iterable[Stage],
    contracts: Iterable[ExecutionContract],
    *,
    action: Optional[str] = None,
) -> Dict[str, Any]:
    """JSON-ready pipeline definition handed to a CI backend."""
    return {
        "action": action,
        "stages": [{"name": s.name, "segment": s.segment, "jobs": list(s.job_ids)} for s in stages],
        "jobs": {c.job_id: c.to_dict() for c in contracts},
    }


def _q(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def to_dot(graph: JobGraph, selected: Optional[Iterable[Job]] = None) -> str:
    """
    GraphViz rendering of the job graph, one cluster per top-level owner.

    With `selected`, only those jobs are drawn (edges between them only).
    """
    keep: Set[str] = {j.job_id for j in selected} if selected is not None else set(graph.jobs)

    clusters: Dict[str, List[Job]] = {}
    for job in graph:
        if job.job_id in keep:
            clusters.setdefault(job.node.path[0], []).append(job)

    lines = ["digraph pipeline {", "  rankdir=LR;", "  node [shape=box];"]
    for idx, (owner, jobs) in enumerate(sorted(clusters.items())):
        lines.append(f"  subgraph cluster_{idx} {{")
        lines.append(f"    label={_q(owner)};")
        for job in jobs:
            shape = "ellipse" if job.is_teardown else "box"
            label = _q(f"{job.node.ref} ({job.phase.value})")
            lines.append(f"    {_q(job.job_id)} [label={label}, shape={shape}];")
        lines.append("  }")

    for dep, dependent in graph.edges():
        if dep in keep and dependent in keep:
            lines.append(f"  {_q(dep)} -> {_q(dependent)};")
    lines.append("}")
    return "\n".join(lines) + "\n"
