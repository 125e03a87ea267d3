# runner.py
"""
Local execution of a sequenced pipeline.

A development stand-in for the CI backend: stages run strictly one after
another, jobs inside a stage run in a thread pool. Retry, timeout and
cancellation follow the JobRun state machine.
"""
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from .emitter import ExecutionContract
from .errors import JobFailure, RunnerInfrastructureFailure, ScriptFailure, TimeoutFailure
from .model import FailureKind, Stage
from .state import JobRun, JobState
from .ui.console import get_console

OUTPUT_TAIL = 4000
# how often a running command checks for cancellation
POLL_INTERVAL = 0.1


class _Cancelled(Exception):
    pass


def _kill(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _job_env(contract: ExecutionContract, workdir: Path, action: Optional[str], base: Mapping[str, str]) -> Dict[str, str]:
    env = dict(base)
    env.update(contract.variables)
    env["JOB_ID"] = contract.job_id
    env["ARTIFACTS_DIR"] = str((workdir / contract.artifacts_dir).resolve())
    if action is not None:
        env["ACTION"] = action
    if contract.stage:
        env["PIPEGRAPH_STAGE"] = contract.stage
    return env


def run_script(
    contract: ExecutionContract,
    workdir: Path,
    *,
    env: Mapping[str, str],
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """
    Run one attempt of a job: every command in order, sharing the job's
    timeout budget.

    Raises ScriptFailure, TimeoutFailure or RunnerInfrastructureFailure.
    """
    deadline = time.monotonic() + contract.timeout
    try:
        (workdir / contract.artifacts_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RunnerInfrastructureFailure(contract.job_id, f"cannot create artifacts dir: {e}") from e

    for idx, cmd in enumerate(contract.script, start=1):
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled()
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutFailure(contract.job_id, f"timed out after {contract.timeout}s", {"command": idx})

        get_console().print_step(contract.job_id, cmd)
        try:
            proc = subprocess.Popen(
                cmd,
                shell=True,
                cwd=str(workdir),
                env=dict(env),
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise RunnerInfrastructureFailure(contract.job_id, f"cannot start command: {e}", {"command": idx}) from e

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=min(POLL_INTERVAL, max(remaining, 0)))
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel_event is not None and cancel_event.is_set():
                _kill(proc)
                proc.communicate()
                raise _Cancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                proc.communicate()
                raise TimeoutFailure(contract.job_id, f"timed out after {contract.timeout}s", {"command": idx})

        if proc.returncode != 0:
            raise ScriptFailure(
                contract.job_id,
                f"command {idx} failed (exit={proc.returncode}): {cmd}",
                {"exit_code": proc.returncode, "stderr": (stderr or "")[-OUTPUT_TAIL:].strip()},
            )
        get_console().print_output(contract.job_id, (stdout or "")[-OUTPUT_TAIL:])


def _run_job(
    contract: ExecutionContract,
    run: JobRun,
    workdir: Path,
    env: Mapping[str, str],
    cancel_event: threading.Event,
) -> JobRun:
    console = get_console()
    while run.state is JobState.PENDING:
        if cancel_event.is_set():
            run.cancel("pipeline cancelled")
            break
        run.start()
        console.print_job_start(contract.job_id, run.attempts, run.retry.max_attempts)
        try:
            run_script(contract, workdir, env=env, cancel_event=cancel_event)
        except _Cancelled:
            run.cancel("pipeline cancelled")
        except JobFailure as e:
            state = run.fail(FailureKind(e.kind), e.message)
            console.print_failure(contract.job_id, e, retrying=state is JobState.PENDING)
        else:
            if cancel_event.is_set():
                run.cancel("pipeline cancelled")
            else:
                run.succeed()
    console.print_job_done(contract.job_id, run.state.value)
    return run


def run_pipeline(
    stages: Iterable[Stage],
    contracts: Iterable[ExecutionContract],
    *,
    workdir: str | Path = ".",
    max_workers: int | None = None,
    fail_fast: bool = False,
    cancel_event: Optional[threading.Event] = None,
    action: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Dict[str, JobRun]:
    """
    Run stages in order; returns the final JobRun of every job.

    A job whose dependency did not succeed is cancelled. Jobs that do not
    depend on a failure keep running unless fail_fast is set. Setting
    `cancel_event` cancels every job that has not finished yet, killing
    running commands. Ctrl-C inside a stage sets the event the same way.
    """
    by_id: Dict[str, ExecutionContract] = {c.job_id: c for c in contracts}
    stages = list(stages)
    runs: Dict[str, JobRun] = {}
    for stage in stages:
        for job_id in stage.job_ids:
            if job_id not in by_id:
                raise KeyError(f"no execution contract for job '{job_id}'")
            runs[job_id] = JobRun(job_id=job_id, retry=by_id[job_id].retry)

    workdir_p = Path(workdir).resolve()
    base_env = dict(os.environ if env is None else env)
    cancel = cancel_event or threading.Event()
    console = get_console()

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    failed = False
    for stage in stages:
        console.print_stage(stage)
        ready: List[str] = []
        for job_id in stage.job_ids:
            run = runs[job_id]
            if cancel.is_set():
                run.cancel("pipeline cancelled")
            elif fail_fast and failed:
                run.cancel("fail-fast after an earlier failure")
            else:
                blocked = [d for d in by_id[job_id].needs if d in runs and runs[d].state is not JobState.SUCCEEDED]
                if blocked:
                    run.cancel(f"dependency {blocked[0]} did not succeed")
                else:
                    ready.append(job_id)

        for job_id in stage.job_ids:
            if runs[job_id].state is JobState.CANCELLED and job_id not in ready:
                console.print_job_skipped(job_id, runs[job_id].reason or "cancelled")

        if not ready:
            continue

        futures: Dict[Future, str] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            try:
                for job_id in ready:
                    env_ = _job_env(by_id[job_id], workdir_p, action, base_env)
                    futures[pool.submit(_run_job, by_id[job_id], runs[job_id], workdir_p, env_, cancel)] = job_id
                for future in as_completed(futures):
                    run = future.result()
                    if run.state is JobState.FAILED:
                        failed = True
            except KeyboardInterrupt:
                # running jobs see the event and kill their commands
                cancel.set()
                for future in futures:
                    future.cancel()
                console.print_info("\nInterrupted by user, cancelling")

        for job_id in ready:
            if runs[job_id].state is JobState.PENDING:
                runs[job_id].cancel("pipeline cancelled")

    return runs
