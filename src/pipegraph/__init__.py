from .actions import action_names, parse_action, resolve
from .compiler import JobGraph, compile_topology
from .config import load_file
from .emitter import ExecutionContract, emit, emit_pipeline
from .errors import (
    ConfigError,
    CycleError,
    DuplicateJobIdError,
    IncompleteJobError,
    PipelineError,
    UnknownActionError,
    UnresolvedReferenceError,
)
from .model import Job, Node, NodeKind, Phase, RetryPolicy, Stage
from .runner import run_pipeline
from .sequencer import sequence
from .state import JobRun, JobState
from .topology import Topology, load

__all__ = [
    "load_file", "load", "Topology",
    "compile_topology", "JobGraph",
    "parse_action", "resolve", "action_names",
    "sequence", "emit", "emit_pipeline", "ExecutionContract",
    "run_pipeline", "JobRun", "JobState",
    "Job", "Node", "NodeKind", "Phase", "RetryPolicy", "Stage",
    "PipelineError", "ConfigError", "UnresolvedReferenceError", "CycleError",
    "DuplicateJobIdError", "IncompleteJobError", "UnknownActionError",
]
