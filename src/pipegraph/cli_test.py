import json

import pytest
from click.testing import CliRunner

from pipegraph.cli import cli

PIPELINE = """
rtes:
  - name: myrte
    shares:
      - name: share
        scripts:
          deploy: ["echo share"]
          artifacts: ["echo out > \\"$ARTIFACTS_DIR/out.json\\""]
        artifacts: [out.json]
    components:
      - name: component
        needs: [myrte/share]
        scripts:
          deploy: ["echo component"]
tests:
  - name: mytest
    rte: myrte
    scripts:
      apply: ["echo test"]
"""

CYCLE = """
rtes:
  - name: r
tests:
  - name: t
    rte: r
    needs: [r/t/v]
    scripts:
      apply: ["true"]
    verifications:
      - name: v
        scripts:
          apply: ["true"]
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    p = tmp_path / "pipeline.yml"
    p.write_text(PIPELINE)
    return str(p)


def test_compile(runner, config_file):
    result = runner.invoke(cli, ["compile", "--config", config_file])
    assert result.exit_code == 0, result.output
    assert "build-1:" in result.output
    assert "myrte-share-deploy" in result.output
    assert "4 jobs in 3 stages" in result.output


def test_config_from_environment(runner, config_file):
    result = runner.invoke(cli, ["compile"], env={"PIPEGRAPH_CONFIG": config_file})
    assert result.exit_code == 0, result.output


def test_resolve(runner, config_file):
    result = runner.invoke(cli, ["resolve", "--config", config_file, "--action", "test-myrte-mytest"])
    assert result.exit_code == 0, result.output
    assert "PLAN (test-myrte-mytest)" in result.output
    assert "myrte-mytest-apply" in result.output
    assert "myrte-component-deploy" not in result.output


def test_action_from_environment(runner, config_file):
    result = runner.invoke(cli, ["resolve", "--config", config_file], env={"ACTION": "deploy"})
    assert result.exit_code == 0, result.output
    assert "PLAN (deploy)" in result.output


def test_unknown_action(runner, config_file):
    result = runner.invoke(cli, ["resolve", "--config", config_file, "--action", "test-myrte-nosuch"])
    assert result.exit_code == 7
    assert "UnknownActionError" in result.output


def test_missing_config(runner, tmp_path):
    result = runner.invoke(cli, ["compile", "--config", str(tmp_path / "missing.yml")])
    assert result.exit_code == 2
    assert "config file not found" in result.output


def test_cycle(runner, tmp_path):
    p = tmp_path / "cycle.yml"
    p.write_text(CYCLE)
    result = runner.invoke(cli, ["compile", "--config", str(p)])
    assert result.exit_code == 4
    assert "r/t -> r/t/v -> r/t" in result.output


def test_render(runner, config_file, tmp_path):
    out = tmp_path / "pipeline.json"
    result = runner.invoke(cli, ["render", "--config", config_file, "--action", "deploy", "-o", str(out)])
    assert result.exit_code == 0, result.output
    doc = json.loads(out.read_text())
    assert doc["action"] == "deploy"
    assert [s["jobs"] for s in doc["stages"]] == [["myrte-share-deploy"], ["myrte-component-deploy"]]
    assert doc["jobs"]["myrte-component-deploy"]["timeout"] == 3600


def test_render_respects_artifacts_root_override(runner, config_file):
    result = runner.invoke(
        cli,
        ["render", "--config", config_file, "--action", "artifacts"],
        env={"PIPEGRAPH_ARTIFACTS_ROOT": "build/out"},
    )
    assert result.exit_code == 0, result.output
    doc = json.loads(result.output)
    assert doc["jobs"]["myrte-share-artifacts"]["artifact_paths"] == ["build/out/myrte-share-artifacts/out.json"]


def test_actions(runner, config_file):
    result = runner.invoke(cli, ["actions", "--config", config_file])
    assert result.exit_code == 0, result.output
    names = result.output.split()
    assert "deploy" in names
    assert "test-myrte-mytest" in names
    assert "artifacts-myrte-share" in names
    assert "destroy" not in names


def test_graph(runner, config_file):
    result = runner.invoke(cli, ["graph", "--config", config_file])
    assert result.exit_code == 0, result.output
    assert '"myrte-share-artifacts" -> "myrte-component-deploy";' in result.output


def test_run(runner, config_file, tmp_path):
    result = runner.invoke(
        cli,
        ["run", "--config", config_file, "--action", "deploy", "--workdir", str(tmp_path), "--workers", "1"],
    )
    assert result.exit_code == 0, result.output
    assert "myrte-component-deploy: SUCCEEDED" in result.output


def test_run_failure_exit_code(runner, tmp_path):
    p = tmp_path / "fail.yml"
    p.write_text(
        "rtes:\n"
        "  - name: lab\n"
        "    retry: {max: 0}\n"
        "    scripts:\n"
        "      deploy: [\"exit 2\"]\n"
    )
    result = runner.invoke(cli, ["run", "--config", str(p), "--action", "deploy", "--workdir", str(tmp_path)])
    assert result.exit_code == 1
    assert "lab-deploy: FAILED" in result.output


def test_artifacts_root_override_with_empty_defaults(runner, tmp_path):
    p = tmp_path / "pipeline.yml"
    p.write_text("defaults:\n" + PIPELINE)
    result = runner.invoke(
        cli,
        ["render", "--config", str(p), "--action", "artifacts"],
        env={"PIPEGRAPH_ARTIFACTS_ROOT": "out"},
    )
    assert result.exit_code == 0, result.output
    doc = json.loads(result.output)
    assert doc["jobs"]["myrte-share-artifacts"]["artifacts_dir"] == "out/myrte-share-artifacts"


def test_run_interrupted(runner, tmp_path, monkeypatch):
    def interrupted(futures):
        raise KeyboardInterrupt

    monkeypatch.setattr("pipegraph.runner.as_completed", interrupted)
    p = tmp_path / "slow.yml"
    p.write_text(
        "rtes:\n"
        "  - name: lab\n"
        "    scripts:\n"
        "      deploy: [\"sleep 5\"]\n"
    )
    result = runner.invoke(cli, ["run", "--config", str(p), "--action", "deploy", "--workdir", str(tmp_path)])
    assert result.exit_code == 130
    assert "lab-deploy: CANCELLED" in result.output
