# emitter.py
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .compiler import JobGraph
from .errors import IncompleteJobError
from .model import Job, Phase, RetryPolicy, Stage
from .sequencer import induced_needs


@dataclass(frozen=True)
class ExecutionContract:
    """What the CI backend needs to run one job. Commands stay opaque."""
    job_id: str
    node: str
    kind: str
    phase: str
    script: Tuple[str, ...]
    artifact_paths: FrozenSet[str]
    timeout: int
    retry: RetryPolicy
    stage: Optional[str] = None
    needs: Tuple[str, ...] = ()
    variables: Mapping[str, str] = field(default_factory=dict)
    artifacts_dir: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "node": self.node,
            "kind": self.kind,
            "phase": self.phase,
            "stage": self.stage,
            "needs": list(self.needs),
            "script": list(self.script),
            "artifacts_dir": self.artifacts_dir,
            "artifact_paths": sorted(self.artifact_paths),
            "timeout": self.timeout,
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "max_retries": self.retry.max_retries,
                "retryable_failure_kinds": sorted(k.value for k in self.retry.retryable),
            },
            "variables": dict(sorted(self.variables.items())),
        }


def job_artifacts_dir(root: str, job_id: str) -> str:
    """Every job writes below its own directory; job ids are unique, so are these."""
    return posixpath.join(root, job_id)


def emit(
    graph: JobGraph,
    job: Job,
    *,
    stage: Optional[str] = None,
    needs: Iterable[str] = (),
) -> ExecutionContract:
    """
    Project a compiled job onto its execution contract.

    Raises IncompleteJobError when the job's phase has no commands or the
    node resolved to a non-positive timeout.
    """
    script = tuple(c for c in job.script if c and c.strip())
    if not script:
        raise IncompleteJobError(job.node.ref, job.phase.value)
    if job.node.timeout <= 0:
        raise IncompleteJobError(job.node.ref, job.phase.value, reason="has no positive timeout")

    base = job_artifacts_dir(graph.topology.artifacts_root, job.job_id)
    paths: FrozenSet[str] = frozenset()
    if job.phase is Phase.ARTIFACTS:
        paths = frozenset(posixpath.join(base, p) for p in job.node.artifacts)

    return ExecutionContract(
        job_id=job.job_id,
        node=job.node.ref,
        kind=job.node.kind.value,
        phase=job.phase.value,
        script=script,
        artifact_paths=paths,
        timeout=job.node.timeout,
        retry=job.node.retry,
        stage=stage,
        needs=tuple(sorted(needs)),
        variables=dict(job.node.variables),
        artifacts_dir=base,
    )


def emit_pipeline(graph: JobGraph, stages: Iterable[Stage]) -> List[ExecutionContract]:
    """Contracts for every job of the sequenced selection, in stage order."""
    stages = list(stages)
    selected = {j for s in stages for j in s.job_ids}
    needs = induced_needs(graph, selected)

    contracts: List[ExecutionContract] = []
    for stage in stages:
        for job_id in stage.job_ids:
            contracts.append(emit(graph, graph.job(job_id), stage=stage.name, needs=needs[job_id]))
    return contracts
