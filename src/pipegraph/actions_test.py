import pytest

from pipegraph.actions import VERBS, action_names, parse_action, resolve
from pipegraph.compiler import compile_topology
from pipegraph.dsl import node, rte
from pipegraph.dsl import test as rte_test
from pipegraph.dsl import topology
from pipegraph.errors import UnknownActionError
from pipegraph.sequencer import sequence


def _ids(jobs):
    return {j.job_id for j in jobs}


@pytest.mark.parametrize(
    "token, verb, target",
    [
        ("deploy", "deploy", None),
        ("  destroy ", "destroy", None),
        ("test-and-verify", "test-and-verify", None),
        ("test-and-verify-myrte-mytest", "test-and-verify", "myrte-mytest"),
        ("test-myrte-mytest", "test", "myrte-mytest"),
        ("verify-lab-smoke-check", "verify", "lab-smoke-check"),
        ("artifacts-lab-storage", "artifacts", "lab-storage"),
    ],
)
def test_parse_action(token, verb, target):
    action = parse_action(token)
    assert action.verb is VERBS[verb]
    assert action.target == target


@pytest.mark.parametrize("token", ["", "   ", "build", "testing", "deploy-", "deploy-Lab", "deploy-lab--x"])
def test_parse_action_rejects(token):
    with pytest.raises(UnknownActionError):
        parse_action(token)


def test_unknown_verb_lists_known_verbs():
    with pytest.raises(UnknownActionError) as e:
        parse_action("launch")
    assert "deploy" in e.value.known
    assert e.value.exit_code == 7


def test_global_deploy_excludes_artifacts(scenario_graph):
    selected = resolve(scenario_graph, "deploy")
    assert _ids(selected) == {"eut-site-deploy", "rte-share-deploy", "rte-component-deploy"}


def test_global_deploy_orders_consumer_after_producer(scenario_graph):
    stages = sequence(scenario_graph, resolve(scenario_graph, "deploy"))
    assert [s.job_ids for s in stages] == [
        ("eut-site-deploy", "rte-share-deploy"),
        ("rte-component-deploy",),
    ]


def test_global_deploy_without_artifact_dependency_is_one_stage(make_scenario):
    graph = compile_topology(make_scenario(component_needs_share=False))
    stages = sequence(graph, resolve(graph, "deploy"))
    assert [s.job_ids for s in stages] == [
        ("eut-site-deploy", "rte-component-deploy", "rte-share-deploy"),
    ]


def _myrte_graph():
    return compile_topology(
        topology(
            rtes=[
                rte(
                    "myrte",
                    shares=[node("share", deploy=["true"], artifacts=["true"], outputs=["out.json"])],
                )
            ],
            tests=[
                rte_test("mytest", "myrte", apply=["true"], needs=["myrte/share"]),
                rte_test("other", "myrte", apply=["true"]),
            ],
        )
    )


def test_targeted_test_pulls_in_artifacts_producers():
    graph = _myrte_graph()
    selected = resolve(graph, "test-myrte-mytest")
    assert _ids(selected) == {"myrte-mytest-apply", "myrte-share-artifacts"}
    stages = sequence(graph, selected)
    assert [s.job_ids for s in stages] == [("myrte-share-artifacts",), ("myrte-mytest-apply",)]


def test_targeted_test_unknown_name():
    with pytest.raises(UnknownActionError, match="myrte-nosuch"):
        resolve(_myrte_graph(), "test-myrte-nosuch")


def test_target_without_matching_phase():
    with pytest.raises(UnknownActionError, match="has no deploy job"):
        resolve(_myrte_graph(), "deploy-myrte-mytest")


def test_targeting_an_owner_selects_its_subtree(scenario_graph):
    selected = resolve(scenario_graph, "deploy-rte")
    assert _ids(selected) == {"rte-share-deploy", "rte-component-deploy", "rte-share-artifacts"}

    selected = resolve(scenario_graph, "verify-rte-test")
    assert _ids(selected) == {"rte-test-verification-apply"}


def test_check_verbs(scenario_graph):
    assert _ids(resolve(scenario_graph, "test")) == {"rte-test-apply"}
    assert _ids(resolve(scenario_graph, "verify")) == {"rte-test-verification-apply"}
    assert _ids(resolve(scenario_graph, "test-and-verify")) == {
        "rte-test-apply",
        "rte-test-verification-apply",
    }
    assert _ids(resolve(scenario_graph, "artifacts")) == {"rte-share-artifacts"}


def test_verb_without_jobs(scenario_graph):
    with pytest.raises(UnknownActionError, match="no destroy jobs"):
        resolve(scenario_graph, "destroy")


def test_action_names_all_resolve(scenario_graph):
    names = action_names(scenario_graph)
    assert names == sorted(names)
    assert "deploy" in names
    assert "deploy-rte" in names
    assert "test-rte-test" in names
    assert "verify-rte-test" in names
    assert "destroy" not in names
    for name in names:
        assert resolve(scenario_graph, name)
