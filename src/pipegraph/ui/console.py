"""Console output formatting utilities for pipegraph."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

if TYPE_CHECKING:
    from ..errors import JobFailure
    from ..model import Stage
    from ..state import JobRun


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, verbose: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show debug traces and stack traces
            verbose: If True, echo command output of locally run jobs
        """
        self.debug = debug
        self.verbose = verbose
        self._lock = threading.Lock()

    def _out(self, text: str, *, err: bool = False) -> None:
        # jobs of one stage print from worker threads
        with self._lock:
            print(text, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}\n" + "-" * len(title))

    def print_plan(self, stages: Iterable["Stage"], action: Optional[str] = None) -> None:
        """Print the stage plan of a pipeline."""
        self.print_header(f"PLAN ({action})" if action else "PLAN")
        for stage in stages:
            self._out(f"{stage.name}:")
            for job_id in stage.job_ids:
                self._out(f"  {job_id}")

    def print_stage(self, stage: "Stage") -> None:
        self._out(f"\n=== Stage {stage.index} ({stage.name}): {list(stage.job_ids)} ===")

    def print_job_start(self, job_id: str, attempt: int, max_attempts: int) -> None:
        suffix = f" (attempt {attempt}/{max_attempts})" if attempt > 1 else ""
        self._out(f"\nJOB STARTED: {job_id}{suffix}")

    def print_step(self, job_id: str, cmd: str) -> None:
        self._out(f"[{job_id}] ▶ {cmd}")

    def print_output(self, job_id: str, text: str) -> None:
        if self.verbose and text.strip():
            for line in text.rstrip().splitlines():
                self._out(f"[{job_id}]   {line}")

    def print_failure(self, job_id: str, failure: "JobFailure", retrying: bool = False) -> None:
        """
        Print a failed attempt.

        Args:
            job_id: Job that failed
            failure: Structured runtime failure
            retrying: If True the job goes back to pending
        """
        self._out(f"JOB FAILED: {job_id} ({failure.kind})")
        if self.debug:
            self._out(f"Error details: {failure}")
        else:
            self._out(f"Error: {failure.message}")
        if retrying:
            self._out(f"[{job_id}] retrying")

    def print_job_done(self, job_id: str, state: str) -> None:
        mark = "✓" if state == "succeeded" else "✗"
        self._out(f"{mark} {job_id}: {state}")

    def print_job_skipped(self, job_id: str, reason: str) -> None:
        self._out(f"⏭ {job_id} (skipped: {reason})")

    def print_results(self, runs: Mapping[str, "JobRun"]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40 + "\nRESULTS\n" + "=" * 40)
        for job_id, run in runs.items():
            line = f"  {job_id}: {run.state.value.upper()}"
            if run.attempts > 1:
                line += f" after {run.attempts} attempts"
            if run.reason and run.state.value != "succeeded":
                line += f" ({run.reason.splitlines()[0]})"
            self._out(line)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
