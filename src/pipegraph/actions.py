# actions.py
"""
Trigger actions.

An action is the free-text token a pipeline is triggered with (the CI
`ACTION` variable):

    action      = verb [ "-" target_path ]
    verb        = "deploy" | "destroy" | "artifacts" | "test" | "verify"
                | "test-and-verify"
    target_path = segment *( "-" segment ),  segment = [a-z0-9]+

Without a target every job of the verb's phase is selected. With a target
the node whose job id equals the target is selected (or, if it has no job
of that phase, its subtree), plus the artifacts jobs it consumes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from .compiler import JobGraph
from .errors import UnknownActionError
from .model import Job, NodeKind, Phase
from .ui.console import get_console


@dataclass(frozen=True)
class Verb:
    name: str
    phase: Phase
    kinds: Optional[FrozenSet[NodeKind]] = None  # None: any kind

    def matches(self, job: Job) -> bool:
        if job.phase is not self.phase:
            return False
        return self.kinds is None or job.node.kind in self.kinds


VERBS: Dict[str, Verb] = {
    v.name: v
    for v in (
        Verb("deploy", Phase.DEPLOY),
        Verb("destroy", Phase.DESTROY),
        Verb("artifacts", Phase.ARTIFACTS),
        Verb("test", Phase.APPLY, frozenset({NodeKind.TEST})),
        Verb("verify", Phase.APPLY, frozenset({NodeKind.VERIFICATION})),
        Verb("test-and-verify", Phase.APPLY, frozenset({NodeKind.TEST, NodeKind.VERIFICATION})),
    )
}

# longest first so "test-and-verify" wins over "test"
_VERB_ORDER: Tuple[str, ...] = tuple(sorted(VERBS, key=len, reverse=True))
_TARGET = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


@dataclass(frozen=True)
class Action:
    token: str
    verb: Verb
    target: Optional[str] = None

    def __str__(self) -> str:
        return self.token


def parse_action(token: str) -> Action:
    """Split a token into verb + target. Raises UnknownActionError."""
    raw = (token or "").strip()
    if not raw:
        raise UnknownActionError(token or "", "empty action")

    for verb in _VERB_ORDER:
        if raw == verb:
            return Action(token=raw, verb=VERBS[verb])
        if raw.startswith(verb + "-"):
            target = raw[len(verb) + 1:]
            if not _TARGET.match(target):
                raise UnknownActionError(
                    raw, f"target {target!r} is not a hyphen-joined list of [a-z0-9] segments"
                )
            return Action(token=raw, verb=VERBS[verb], target=target)

    raise UnknownActionError(raw, "unknown verb", known=sorted(VERBS))


def _pull_artifacts(graph: JobGraph, selected: Set[str]) -> Set[str]:
    """Add every artifacts job the selection transitively consumes."""
    out = set(selected)
    stack = list(selected)
    while stack:
        cur = stack.pop()
        for dep in graph.needs(cur):
            if dep in out:
                continue
            if graph.job(dep).phase is Phase.ARTIFACTS:
                out.add(dep)
                stack.append(dep)
    return out


def _select(graph: JobGraph, action: Action) -> Set[str]:
    verb = action.verb
    if action.target is None:
        return {j.job_id for j in graph if verb.matches(j)}

    topo = graph.topology
    target = topo.by_job_id(action.target)
    if target is None:
        raise UnknownActionError(action.token, f"no node with id '{action.target}'")

    own = [j for j in graph.jobs_for(target.ref) if verb.matches(j)]
    if own:
        picked = {j.job_id for j in own}
    else:
        picked = set()
        for n in topo.descendants(target.ref):
            picked.update(j.job_id for j in graph.jobs_for(n.ref) if verb.matches(j))

    if not picked:
        raise UnknownActionError(
            action.token, f"'{action.target}' has no {verb.name} job"
        )
    return _pull_artifacts(graph, picked)


def resolve(graph: JobGraph, token: str) -> FrozenSet[Job]:
    """
    Resolve a trigger token against a compiled graph.

    Never returns an empty selection; an action that selects nothing is an
    UnknownActionError. Cross-pipeline preconditions (e.g. a destroy of a
    component assumes its deploy ran in an earlier pipeline) are not
    checked here.
    """
    action = parse_action(token)
    selected = _select(graph, action)
    if not selected:
        raise UnknownActionError(action.token, f"no {action.verb.name} jobs in this pipeline")
    get_console().print_debug(f"resolve {action.token}: {sorted(selected)}")
    return frozenset(graph.job(j) for j in selected)


def action_names(graph: JobGraph) -> List[str]:
    """Every token that resolves against `graph`, sorted."""
    names: Set[str] = set()
    for verb_name, verb in VERBS.items():
        matching = [j for j in graph if verb.matches(j)]
        if not matching:
            continue
        names.add(verb_name)
        for j in matching:
            names.add(f"{verb_name}-{j.node.job_id}")
            # owners with a matching job in their subtree are targets as well
            parent = j.node.parent
            while parent is not None:
                pnode = graph.topology.node(parent)
                names.add(f"{verb_name}-{pnode.job_id}")
                parent = pnode.parent
    return sorted(names)

