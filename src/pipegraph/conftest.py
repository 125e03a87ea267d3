import pytest

from pipegraph.compiler import compile_topology
from pipegraph.dsl import eut, node, rte
from pipegraph.dsl import test as rte_test
from pipegraph.dsl import topology
from pipegraph.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console())
    yield


def scenario(component_needs_share: bool = True):
    """
    eut/site, rte/{share, component}, rte/test/verification.

    The share publishes out.json through its artifacts phase.
    """
    return topology(
        eut=eut("eut", sites=[node("site", deploy=["echo site"])]),
        rtes=[
            rte(
                "rte",
                shares=[
                    node(
                        "share",
                        deploy=["echo share"],
                        artifacts=["echo '{}' > \"$ARTIFACTS_DIR/out.json\""],
                        outputs=["out.json"],
                    )
                ],
                components=[
                    node(
                        "component",
                        deploy=["echo component"],
                        needs=["rte/share"] if component_needs_share else None,
                    )
                ],
            )
        ],
        tests=[
            rte_test(
                "test",
                "rte",
                apply=["echo test"],
                verifications=[node("verification", apply=["echo verify"])],
            )
        ],
    )


@pytest.fixture
def scenario_topology():
    return scenario()


@pytest.fixture
def scenario_graph(scenario_topology):
    return compile_topology(scenario_topology)


@pytest.fixture
def make_scenario():
    return scenario
