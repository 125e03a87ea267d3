import pytest

from pipegraph.errors import InvalidTransitionError
from pipegraph.model import FailureKind, RetryPolicy
from pipegraph.state import JobRun, JobState

POLICY = RetryPolicy(
    max_retries=1,
    retryable=frozenset({FailureKind.SCRIPT_FAILURE, FailureKind.TIMEOUT_FAILURE}),
)


def test_retryable_failures_exhaust_the_budget():
    run = JobRun("lab-deploy", retry=POLICY)
    run.start()
    assert run.fail(FailureKind.SCRIPT_FAILURE, "exit 1") is JobState.PENDING
    assert run.retries_used == 1

    run.start()
    assert run.fail(FailureKind.TIMEOUT_FAILURE, "timed out") is JobState.FAILED
    assert run.state.terminal
    assert run.attempts == 2
    assert run.reason == "timed out"
    assert run.last_failure is FailureKind.TIMEOUT_FAILURE


def test_non_retryable_failure_is_terminal_immediately():
    run = JobRun("lab-deploy", retry=POLICY)
    run.start()
    assert run.fail(FailureKind.RUNNER_INFRASTRUCTURE_FAILURE) is JobState.FAILED
    assert run.retries_used == 0
    assert run.reason == "runner_infrastructure_failure"


def test_success_after_retry():
    run = JobRun("lab-deploy", retry=POLICY)
    run.start()
    run.fail(FailureKind.SCRIPT_FAILURE)
    run.start()
    assert run.succeed() is JobState.SUCCEEDED
    assert run.attempts == 2
    assert run.failures == [(FailureKind.SCRIPT_FAILURE, "")]


def test_zero_retries():
    run = JobRun("lab-deploy", retry=RetryPolicy(max_retries=0))
    run.start()
    assert run.fail(FailureKind.SCRIPT_FAILURE) is JobState.FAILED


def test_cancel_from_pending_and_running():
    run = JobRun("a")
    assert run.cancel("dependency failed") is JobState.CANCELLED
    assert run.reason == "dependency failed"

    run = JobRun("b")
    run.start()
    assert run.cancel() is JobState.CANCELLED


@pytest.mark.parametrize("event", ["start", "succeed", "cancel"])
def test_terminal_states_reject_transitions(event):
    run = JobRun("a")
    run.start()
    run.succeed()
    with pytest.raises(InvalidTransitionError):
        getattr(run, event)()


def test_succeed_requires_running():
    with pytest.raises(InvalidTransitionError, match="cannot succeed while pending"):
        JobRun("a").succeed()
