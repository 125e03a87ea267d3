import pytest

from pipegraph.compiler import compile_topology
from pipegraph.dsl import node, rte, topology
from pipegraph.emitter import emit, emit_pipeline, job_artifacts_dir
from pipegraph.errors import IncompleteJobError
from pipegraph.model import Job, Node, NodeKind, Phase
from pipegraph.sequencer import sequence


def test_artifacts_job_contract(scenario_graph):
    c = emit(scenario_graph, scenario_graph.job("rte-share-artifacts"), stage="build-2", needs=["rte-share-deploy"])
    assert c.job_id == "rte-share-artifacts"
    assert c.node == "rte/share"
    assert c.kind == "share"
    assert c.phase == "artifacts"
    assert c.script == ("echo '{}' > \"$ARTIFACTS_DIR/out.json\"",)
    assert c.artifacts_dir == "artifacts/rte-share-artifacts"
    assert c.artifact_paths == frozenset({"artifacts/rte-share-artifacts/out.json"})
    assert c.timeout == 3600
    assert c.retry.max_attempts == 2
    assert c.needs == ("rte-share-deploy",)


def test_only_artifacts_phase_publishes_paths(scenario_graph):
    c = emit(scenario_graph, scenario_graph.job("rte-share-deploy"))
    assert c.artifact_paths == frozenset()
    assert c.artifacts_dir == "artifacts/rte-share-deploy"


def test_artifact_dirs_are_disjoint(scenario_graph):
    dirs = [job_artifacts_dir("artifacts", j) for j in scenario_graph.jobs]
    assert len(set(dirs)) == len(dirs)


def test_to_dict(scenario_graph):
    d = emit(scenario_graph, scenario_graph.job("rte-share-artifacts")).to_dict()
    assert d["retry"] == {
        "max_attempts": 2,
        "max_retries": 1,
        "retryable_failure_kinds": ["runner_infrastructure_failure", "script_failure", "timeout_failure"],
    }
    assert d["artifact_paths"] == ["artifacts/rte-share-artifacts/out.json"]
    assert d["stage"] is None
    assert d["script"] == ["echo '{}' > \"$ARTIFACTS_DIR/out.json\""]


def test_emit_pipeline_uses_selected_needs(scenario_graph):
    stages = sequence(scenario_graph, {"rte-share-deploy", "rte-component-deploy"})
    contracts = emit_pipeline(scenario_graph, stages)
    assert [c.job_id for c in contracts] == ["rte-share-deploy", "rte-component-deploy"]
    assert [c.stage for c in contracts] == ["build-1", "build-2"]
    # the artifacts job in between is not part of this pipeline
    assert contracts[1].needs == ("rte-share-deploy",)


def test_contract_carries_variables_and_policy():
    graph = compile_topology(
        topology(
            providers=[{"name": "aws", "timeout": 60, "retry": {"max": 0}, "variables": {"REGION": "eu"}}],
            rtes=[rte("lab", provider="aws", components=[node("c", deploy=["make"])])],
        )
    )
    c = emit(graph, graph.job("lab-c-deploy"))
    assert c.variables == {"REGION": "eu"}
    assert c.timeout == 60
    assert c.retry.max_attempts == 1


def test_non_positive_timeout_is_incomplete(scenario_graph):
    n = Node(
        kind=NodeKind.COMPONENT,
        name="c",
        path=("rte", "c"),
        job_id="rte-c",
        scripts={Phase.DEPLOY: ("make",)},
        timeout=0,
    )
    with pytest.raises(IncompleteJobError, match="timeout"):
        emit(scenario_graph, Job(node=n, phase=Phase.DEPLOY))


def test_empty_script_is_incomplete(scenario_graph):
    n = Node(kind=NodeKind.COMPONENT, name="c", path=("rte", "c"), job_id="rte-c", scripts={Phase.DEPLOY: ()})
    with pytest.raises(IncompleteJobError):
        emit(scenario_graph, Job(node=n, phase=Phase.DEPLOY))
