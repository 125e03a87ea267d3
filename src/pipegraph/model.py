# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Mapping, Optional, Sequence, Tuple

from .errors import ConfigError


class NodeKind(str, Enum):
    PROJECT = "project"
    EUT = "eut"
    SITE = "site"
    FEATURE = "feature"
    APPLICATION = "application"
    RTE = "rte"
    SHARE = "share"
    COMPONENT = "component"
    COLLECTOR = "collector"
    REPORT = "report"
    DASHBOARD = "dashboard"
    TEST = "test"
    VERIFICATION = "verification"


class Phase(str, Enum):
    DEPLOY = "deploy"
    APPLY = "apply"
    ARTIFACTS = "artifacts"
    DESTROY = "destroy"


class EdgeKind(str, Enum):
    STRUCTURAL = "structural"
    ARTIFACT = "artifact"


class FailureKind(str, Enum):
    SCRIPT_FAILURE = "script_failure"
    TIMEOUT_FAILURE = "timeout_failure"
    RUNNER_INFRASTRUCTURE_FAILURE = "runner_infrastructure_failure"
    CONFIGURATION_ERROR = "configuration_error"


RUNTIME_FAILURES: FrozenSet[FailureKind] = frozenset({
    FailureKind.SCRIPT_FAILURE,
    FailureKind.TIMEOUT_FAILURE,
    FailureKind.RUNNER_INFRASTRUCTURE_FAILURE,
})

INFRA_PHASES: Tuple[Phase, ...] = (Phase.DEPLOY, Phase.ARTIFACTS, Phase.DESTROY)
CHECK_PHASES: Tuple[Phase, ...] = (Phase.APPLY, Phase.ARTIFACTS)


def capabilities(kind: NodeKind) -> Tuple[Phase, ...]:
    """Phases a node of `kind` is allowed to declare."""
    if kind in (NodeKind.TEST, NodeKind.VERIFICATION):
        return CHECK_PHASES
    return INFRA_PHASES


def primary_phase(kind: NodeKind) -> Phase:
    """The phase that builds the node; its artifacts phase consumes it."""
    if kind in (NodeKind.TEST, NodeKind.VERIFICATION):
        return Phase.APPLY
    return Phase.DEPLOY


# ----------------------------------------------------------------------
# Job id derivation
# ----------------------------------------------------------------------

_SEPARATORS = re.compile(r"[_\s.]+")
_DASHES = re.compile(r"-{2,}")
_SEGMENT = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def normalize_segment(name: str) -> str:
    seg = _SEPARATORS.sub("-", name.strip().lower())
    seg = _DASHES.sub("-", seg).strip("-")
    if not _SEGMENT.match(seg):
        raise ConfigError(f"name {name!r} cannot be turned into a job id segment")
    return seg


def derive_job_id(path: Sequence[str]) -> str:
    """
    The one place where node names become identifiers.

        ("my_rte", "Share.A") -> "my-rte-share-a"
    """
    if not path:
        raise ConfigError("cannot derive a job id from an empty path")
    return "-".join(normalize_segment(p) for p in path)


# ----------------------------------------------------------------------
# Topology values
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """
    How often a failed job attempt is re-run.

    max_retries counts re-runs after the first attempt, so the job runs at
    most `max_attempts` times.
    """
    max_retries: int = 1
    retryable: FrozenSet[FailureKind] = RUNTIME_FAILURES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError(f"retry max must be >= 0, got {self.max_retries}")
        bad = sorted(k.value for k in self.retryable if k not in RUNTIME_FAILURES)
        if bad:
            raise ConfigError(f"failure kinds are never retryable: {bad}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def allows(self, kind: FailureKind) -> bool:
        return kind in self.retryable


@dataclass(frozen=True)
class Node:
    """A declared topology object. Built once, never mutated."""
    kind: NodeKind
    name: str
    path: Tuple[str, ...]
    job_id: str
    parent: Optional[str] = None
    provider: Optional[str] = None
    scripts: Mapping[Phase, Tuple[str, ...]] = field(default_factory=dict)
    artifacts: Tuple[str, ...] = ()
    timeout: int = 3600
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    variables: Mapping[str, str] = field(default_factory=dict)

    @property
    def ref(self) -> str:
        return "/".join(self.path)

    @property
    def primary_phase(self) -> Phase:
        return primary_phase(self.kind)

    @property
    def phases(self) -> Tuple[Phase, ...]:
        # capability order, not declaration order
        return tuple(p for p in capabilities(self.kind) if p in self.scripts)

    def __hash__(self) -> int:
        return hash((self.kind, self.path))


@dataclass(frozen=True)
class Edge:
    """dst depends on src (structural: src owns dst, artifact: dst consumes src)."""
    src: str
    dst: str
    kind: EdgeKind


@dataclass(frozen=True)
class Job:
    """A compiled unit: one phase of one node."""
    node: Node
    phase: Phase
    needs: FrozenSet[str] = frozenset()

    @property
    def job_id(self) -> str:
        return f"{self.node.job_id}-{self.phase.value}"

    @property
    def script(self) -> Tuple[str, ...]:
        return tuple(self.node.scripts.get(self.phase, ()))

    @property
    def is_teardown(self) -> bool:
        return self.phase is Phase.DESTROY


@dataclass(frozen=True)
class Stage:
    """Jobs with no edge between any two of them; safe to run in parallel."""
    index: int
    segment: str
    position: int
    job_ids: Tuple[str, ...]

    @property
    def name(self) -> str:
        return f"{self.segment}-{self.position}"
