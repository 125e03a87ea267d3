# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence


class PipelineError(Exception):
    """
    Base class for everything pipegraph raises on purpose.

    `exit_code` is what the CLI exits with when the error reaches it.
    """
    exit_code = 1


class ConfigError(PipelineError):
    """Bad or incomplete topology input. The pipeline is not generated."""
    exit_code = 2

    def __init__(self, message: str, *, location: Optional[str] = None):
        self.message = message
        self.location = location
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


class UnresolvedReferenceError(ConfigError):
    """A node refers to a name that was never declared."""
    exit_code = 3

    def __init__(self, reference: str, *, referrer: str, what: str = "node"):
        self.reference = reference
        self.referrer = referrer
        self.what = what
        super().__init__(f"{what} '{reference}' is not declared", location=referrer)


class CycleError(PipelineError):
    """
    Illegal dependency cycle.

    `jobs` is the closed cycle of job ids, `nodes` the same cycle collapsed
    onto topology nodes (consecutive jobs of one node are merged).
    """
    exit_code = 4

    def __init__(self, jobs: Sequence[str], nodes: Sequence[str] = ()):
        self.jobs = list(jobs)
        self.nodes = list(nodes)
        super().__init__(str(self))

    def __str__(self) -> str:
        msg = "dependency cycle: " + " -> ".join(self.jobs)
        if self.nodes:
            msg += f" (nodes: {' -> '.join(self.nodes)})"
        return msg


class DuplicateJobIdError(PipelineError):
    exit_code = 5

    def __init__(self, job_id: str, refs: Sequence[str]):
        self.job_id = job_id
        self.refs = list(refs)
        super().__init__(f"job id '{job_id}' is derived by more than one node: {', '.join(self.refs)}")


class IncompleteJobError(PipelineError):
    """A phase was declared but has no script body."""
    exit_code = 6

    def __init__(self, node: str, phase: str, reason: str = "declares no script commands"):
        self.node = node
        self.phase = phase
        super().__init__(f"{node}: phase '{phase}' {reason}")


class UnknownActionError(PipelineError):
    """The trigger token does not select any compiled job."""
    exit_code = 7

    def __init__(self, action: str, reason: str, *, known: Optional[List[str]] = None):
        self.action = action
        self.reason = reason
        self.known = known or []
        super().__init__(f"unknown action {action!r}: {reason}")


class InvalidTransitionError(PipelineError):
    def __init__(self, job_id: str, state: str, event: str):
        self.job_id = job_id
        self.state = state
        self.event = event
        super().__init__(f"[{job_id}] cannot {event} while {state}")


# ----------------------------------------------------------------------
# Runtime failures (retryable per job policy)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class JobFailure(PipelineError):
    """
    Structured runtime failure of one job attempt.

    `kind` is a FailureKind value; the runner matches it against the
    job's retry policy.
    """
    job: str
    message: str
    details: Dict[str, object] = field(default_factory=dict)

    kind = "script_failure"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class ScriptFailure(JobFailure):
    kind = "script_failure"


@dataclass(eq=False)
class TimeoutFailure(JobFailure):
    kind = "timeout_failure"


@dataclass(eq=False)
class RunnerInfrastructureFailure(JobFailure):
    kind = "runner_infrastructure_failure"
