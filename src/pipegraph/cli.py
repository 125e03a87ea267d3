# cli.py
from __future__ import annotations

import json
import os
import sys
import threading
from pathlib import Path
from typing import Optional

import click

from .actions import action_names, resolve
from .compiler import JobGraph, compile_topology
from .config import ENV_ACTION, ENV_ARTIFACTS_ROOT, ENV_CONFIG, load_file
from .emitter import emit_pipeline
from .errors import CycleError, PipelineError, UnknownActionError, UnresolvedReferenceError
from .export import pipeline_document, to_dot
from .runner import run_pipeline
from .sequencer import sequence
from .state import JobState
from .topology import load
from .ui.console import Console, get_console, set_console


def _suggestion(e: PipelineError) -> Optional[str]:
    if isinstance(e, UnknownActionError):
        return "List the valid actions:\n  pipegraph actions --config <file>"
    if isinstance(e, UnresolvedReferenceError):
        return "Declare the node, or fix the reference (refs look like rte/share)."
    if isinstance(e, CycleError):
        return "Remove one of the needs entries on the cycle."
    return None


def _fail(ctx: click.Context, e: PipelineError) -> None:
    console = get_console()
    title = type(e).__name__
    details = []
    if isinstance(e, UnknownActionError) and e.known:
        details.append("known verbs: " + ", ".join(e.known))
    console.print_error(title, str(e), details=details or None, suggestion=_suggestion(e))
    if ctx.obj.get("debug", False):
        console.print_exception(e)
    sys.exit(e.exit_code)


def _compile(config_path: str) -> JobGraph:
    raw = load_file(config_path)
    defaults = raw.get("defaults") or {}
    if os.environ.get(ENV_ARTIFACTS_ROOT) and isinstance(defaults, dict):
        # a non-mapping defaults block is left for the schema to reject
        raw["defaults"] = {**defaults, "artifacts_root": os.environ[ENV_ARTIFACTS_ROOT]}
    return compile_topology(load(raw))


def _write(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text, encoding="utf-8")
        get_console().print_info(f"wrote {output}")
    else:
        click.echo(text, nl=False)


config_option = click.option(
    "--config",
    "config_path",
    envvar=ENV_CONFIG,
    required=True,
    type=click.Path(dir_okay=False),
    help=f"Topology config file (YAML or JSON). Defaults to ${ENV_CONFIG}.",
)
action_option = click.option(
    "--action",
    envvar=ENV_ACTION,
    required=True,
    help=f"Trigger action, e.g. deploy or test-myrte-mytest. Defaults to ${ENV_ACTION}.",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show traces and stack traces)",
)
@click.option("--verbose", is_flag=True, default=False, help="Echo command output of locally run jobs")
@click.pass_context
def cli(ctx, debug, verbose):
    """pipegraph: compile infrastructure topologies into staged CI pipelines."""
    set_console(Console(debug=debug, verbose=verbose))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command("compile")
@config_option
@click.pass_context
def compile_cmd(ctx, config_path):
    """Compile the topology and print the full stage plan."""
    try:
        graph = _compile(config_path)
        stages = sequence(graph, graph.jobs)
        emit_pipeline(graph, stages)  # rejects jobs that cannot be emitted
    except PipelineError as e:
        _fail(ctx, e)
        return
    get_console().print_plan(stages)
    get_console().print_info(f"\n{len(graph)} jobs in {len(stages)} stages")


@cli.command("resolve")
@config_option
@action_option
@click.pass_context
def resolve_cmd(ctx, config_path, action):
    """Print the stages an action selects."""
    try:
        graph = _compile(config_path)
        stages = sequence(graph, resolve(graph, action))
    except PipelineError as e:
        _fail(ctx, e)
        return
    get_console().print_plan(stages, action=action.strip())


@cli.command("render")
@config_option
@action_option
@click.option("--output", "-o", default=None, help="Write the JSON document here instead of stdout")
@click.pass_context
def render_cmd(ctx, config_path, action, output):
    """Render the execution contracts of an action as JSON."""
    try:
        graph = _compile(config_path)
        stages = sequence(graph, resolve(graph, action))
        contracts = emit_pipeline(graph, stages)
    except PipelineError as e:
        _fail(ctx, e)
        return
    doc = pipeline_document(stages, contracts, action=action.strip())
    _write(json.dumps(doc, indent=2) + "\n", output)


@cli.command("actions")
@config_option
@click.pass_context
def actions_cmd(ctx, config_path):
    """List every action token the topology accepts."""
    try:
        graph = _compile(config_path)
    except PipelineError as e:
        _fail(ctx, e)
        return
    for name in action_names(graph):
        click.echo(name)


@cli.command("graph")
@config_option
@click.option("--action", default=None, help="Only draw the jobs this action selects")
@click.option("--output", "-o", default=None, help="Write the dot file here instead of stdout")
@click.pass_context
def graph_cmd(ctx, config_path, action, output):
    """Export the job graph as GraphViz dot."""
    try:
        graph = _compile(config_path)
        selected = resolve(graph, action) if action else None
    except PipelineError as e:
        _fail(ctx, e)
        return
    _write(to_dot(graph, selected), output)


@cli.command("run")
@config_option
@action_option
@click.option("--workers", default=None, type=int, help="Number of parallel workers per stage")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Cancel remaining jobs after the first failure")
@click.option("--workdir", default=".", type=click.Path(file_okay=False), help="Directory commands run in")
@click.pass_context
def run_cmd(ctx, config_path, action, workers, fail_fast, workdir):
    """Run an action locally, stage by stage."""
    console = get_console()
    cancel = threading.Event()
    try:
        graph = _compile(config_path)
        stages = sequence(graph, resolve(graph, action))
        contracts = emit_pipeline(graph, stages)
    except PipelineError as e:
        _fail(ctx, e)
        return

    console.print_plan(stages, action=action.strip())
    try:
        runs = run_pipeline(
            stages,
            contracts,
            workdir=workdir,
            max_workers=workers,
            fail_fast=fail_fast,
            cancel_event=cancel,
            action=action.strip(),
        )
    except KeyboardInterrupt:
        cancel.set()
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    console.print_results(runs)
    if cancel.is_set():
        sys.exit(130)
    if any(r.state is not JobState.SUCCEEDED for r in runs.values()):
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
