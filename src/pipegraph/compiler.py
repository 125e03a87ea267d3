# compiler.py
"""
Topology -> JobGraph.

Wiring rules:

  * artifacts job of a node needs the primary (deploy/apply) job of the
    same node and nothing else;
  * a child's primary job needs the primary job of its nearest ancestor
    that has one (containment);
  * a consumer's primary job needs the producer's artifacts job, or the
    producer's primary job when it has no artifacts phase; a producer
    without jobs stands for the producing jobs of its subtree;
  * destroy jobs mirror the build-up: a producer/owner is torn down only
    after everything depending on it.

Compilation is all-or-nothing; no partial graph ever leaves this module.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from .dag import find_cycle
from .errors import CycleError, DuplicateJobIdError, IncompleteJobError
from .model import EdgeKind, Job, Node, Phase
from .topology import Topology
from .ui.console import get_console


@dataclass(frozen=True)
class JobGraph:
    topology: Topology
    jobs: Mapping[str, Job]
    _dependents: Mapping[str, FrozenSet[str]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rev: Dict[str, Set[str]] = {j: set() for j in self.jobs}
        for job_id, job in self.jobs.items():
            for dep in job.needs:
                rev[dep].add(job_id)
        object.__setattr__(self, "_dependents", {k: frozenset(v) for k, v in rev.items()})

    def __contains__(self, job_id: object) -> bool:
        return job_id in self.jobs

    def __iter__(self):
        return iter(self.jobs.values())

    def __len__(self) -> int:
        return len(self.jobs)

    def job(self, job_id: str) -> Job:
        return self.jobs[job_id]

    def needs(self, job_id: str) -> FrozenSet[str]:
        return self.jobs[job_id].needs

    def dependents(self, job_id: str) -> FrozenSet[str]:
        return self._dependents[job_id]

    def jobs_for(self, node_ref: str) -> List[Job]:
        return [j for j in self.jobs.values() if j.node.ref == node_ref]

    def predecessors(self, job_id: str) -> Set[str]:
        """All jobs `job_id` transitively depends on."""
        seen: Set[str] = set()
        stack = list(self.jobs[job_id].needs)
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            stack.extend(self.jobs[cur].needs)
        return seen

    def edges(self) -> List[Tuple[str, str]]:
        """(dependency, dependent) pairs, sorted."""
        return sorted((dep, j.job_id) for j in self.jobs.values() for dep in j.needs)


def _job_id(node: Node, phase: Phase) -> str:
    return f"{node.job_id}-{phase.value}"


def _within(node: Node, root: Node) -> bool:
    """True if `node` is `root` or one of its descendants."""
    return node.path[: len(root.path)] == root.path


class _Wiring:
    def __init__(self, topology: Topology):
        self.topology = topology
        self.needs: Dict[str, Set[str]] = {}
        self.owner: Dict[str, Node] = {}
        self.phase: Dict[str, Phase] = {}

    def has(self, node: Node, phase: Phase) -> bool:
        return phase in node.scripts

    def primary(self, node: Node) -> Optional[str]:
        return _job_id(node, node.primary_phase) if self.has(node, node.primary_phase) else None

    def outputs(self, node: Node, consumer: Optional[Node] = None) -> List[str]:
        """
        The job(s) a consumer of `node` waits for.

        When `node` expands to its subtree, the consumer and its own subtree
        are left out; containment already orders them.
        """
        if self.has(node, Phase.ARTIFACTS):
            return [_job_id(node, Phase.ARTIFACTS)]
        p = self.primary(node)
        if p is not None:
            return [p]
        out: List[str] = []
        for child in self.topology.children(node.ref):
            if consumer is not None and _within(child, consumer):
                continue
            out.extend(self.outputs(child, consumer))
        return out

    def nearest_primary_ancestor(self, node: Node) -> Optional[str]:
        parent = node.parent
        while parent is not None:
            pnode = self.topology.node(parent)
            p = self.primary(pnode)
            if p is not None:
                return p
            parent = pnode.parent
        return None

    def destroy_followers(self, node: Node, seen: Set[str]) -> Set[str]:
        """Destroy jobs that must finish before `node` is destroyed."""
        out: Set[str] = set()
        for edge in self.topology.edges:
            if edge.src != node.ref or edge.dst in seen:
                continue
            seen.add(edge.dst)
            dependent = self.topology.node(edge.dst)
            if self.has(dependent, Phase.DESTROY):
                out.add(_job_id(dependent, Phase.DESTROY))
            else:
                out |= self.destroy_followers(dependent, seen)
        return out


def _declare_jobs(w: _Wiring, nodes: Iterable[Node]) -> None:
    claimed: Dict[str, str] = {}
    for node in nodes:
        if node.job_id in claimed:
            raise DuplicateJobIdError(node.job_id, [claimed[node.job_id], node.ref])
        claimed[node.job_id] = node.ref

    for node in nodes:
        for phase in node.phases:
            commands = [c for c in node.scripts[phase] if c and c.strip()]
            if not commands:
                raise IncompleteJobError(node.ref, phase.value)
            job_id = _job_id(node, phase)
            if job_id in w.needs:
                raise DuplicateJobIdError(job_id, [w.owner[job_id].ref, node.ref])
            w.needs[job_id] = set()
            w.owner[job_id] = node
            w.phase[job_id] = phase


def _wire(w: _Wiring) -> None:
    topo = w.topology
    for node in topo.nodes:
        primary = w.primary(node)

        if w.has(node, Phase.ARTIFACTS) and primary is not None:
            w.needs[_job_id(node, Phase.ARTIFACTS)].add(primary)

        if primary is not None:
            anc = w.nearest_primary_ancestor(node)
            if anc is not None:
                w.needs[primary].add(anc)
            for edge in topo.incoming(node.ref, EdgeKind.ARTIFACT):
                producer = topo.node(edge.src)
                outs = w.outputs(producer, node)
                if not outs:
                    get_console().print_debug(
                        f"compile: {node.ref} needs {producer.ref}, which produces no jobs; edge dropped"
                    )
                w.needs[primary].update(outs)

        if w.has(node, Phase.DESTROY):
            w.needs[_job_id(node, Phase.DESTROY)] |= w.destroy_followers(node, {node.ref})


def _collapse(cycle: List[str], owner: Mapping[str, Node]) -> List[str]:
    nodes: List[str] = []
    for job_id in cycle:
        ref = owner[job_id].ref
        if not nodes or nodes[-1] != ref:
            nodes.append(ref)
    return nodes


def compile_topology(topology: Topology) -> JobGraph:
    """
    Compile a topology into a JobGraph.

    Raises:
      DuplicateJobIdError: two nodes derive the same job id
      IncompleteJobError: a declared phase has no script commands
      CycleError: containment + artifact edges form a cycle
    """
    w = _Wiring(topology)
    _declare_jobs(w, topology.nodes)
    _wire(w)

    cycle = find_cycle(w.needs)
    if cycle is not None:
        raise CycleError(cycle, _collapse(cycle, w.owner))

    jobs = {
        job_id: Job(node=w.owner[job_id], phase=w.phase[job_id], needs=frozenset(w.needs[job_id]))
        for job_id in sorted(w.needs)
    }
    get_console().print_debug(f"compile: {len(jobs)} jobs, {sum(len(j.needs) for j in jobs.values())} edges")
    return JobGraph(topology=topology, jobs=jobs)
