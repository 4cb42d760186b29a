import pytest

from dbhelper.copy.models import FailureClass
from dbhelper.copy.retry import RetryPolicy, classify_failure
from dbhelper.copy.runner import ToolResult


@pytest.mark.parametrize(
    "stderr",
    [
        'psql: error: connection to server at "db" (10.0.0.1), port 5432 failed: Connection refused',
        "FATAL:  the database system is starting up",
        "server closed the connection unexpectedly",
        "FATAL:  sorry, too many clients already",
        "ERROR:  deadlock detected",
        'ERROR:  source database "appdb" is being accessed by other users',
    ],
)
def test_transient_failures(stderr):
    assert classify_failure(ToolResult(returncode=1, stderr=stderr)) == FailureClass.TRANSIENT


@pytest.mark.parametrize(
    "stderr",
    [
        'ERROR:  syntax error at or near "CREATE"',
        "ERROR:  permission denied for table users",
        'ERROR:  relation "public.users" does not exist',
        'ERROR:  duplicate key value violates unique constraint "users_pkey"',
        "",
    ],
)
def test_fatal_failures(stderr):
    assert classify_failure(ToolResult(returncode=1, stderr=stderr)) == FailureClass.FATAL


def test_timeout_is_transient():
    result = ToolResult(returncode=-15, timed_out=True)

    assert classify_failure(result) == FailureClass.TRANSIENT


def test_command_not_found_is_fatal():
    """A missing binary will not appear on retry, whatever stderr says."""
    result = ToolResult(returncode=127, stderr="command not found: connection refused")

    assert classify_failure(result) == FailureClass.FATAL


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(base_delay=1.0, factor=2.0, max_delay=5.0)

    assert [policy.delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_should_retry_respects_attempt_limit():
    policy = RetryPolicy(max_attempts=3)

    assert policy.should_retry(FailureClass.TRANSIENT, 1)
    assert policy.should_retry(FailureClass.TRANSIENT, 2)
    assert not policy.should_retry(FailureClass.TRANSIENT, 3)


def test_fatal_never_retried():
    assert not RetryPolicy(max_attempts=5).should_retry(FailureClass.FATAL, 1)


def test_no_retry_policy():
    assert not RetryPolicy.no_retry().should_retry(FailureClass.TRANSIENT, 1)
