import subprocess

import pytest
import requests

from monorepo_merger.errors import AcquisitionError
from monorepo_merger.retry import PERMANENT, TRANSIENT, backoff_delay, classify_error, retry_call


def test_classify_errors():
    assert classify_error(subprocess.TimeoutExpired(["git"], 5)).classification == TRANSIENT
    assert classify_error(requests.ConnectionError("reset")).classification == TRANSIENT
    assert classify_error(RuntimeError("fatal: early EOF")).transient
    assert classify_error(RuntimeError("ECONNRESET while fetching")).transient
    assert classify_error(RuntimeError("something odd")).classification == PERMANENT


def test_auth_failure_is_permanent_even_with_network_words():
    err = subprocess.CalledProcessError(
        128, ["git", "clone"], stderr="fatal: Authentication failed (network timeout while prompting)"
    )
    result = classify_error(err)
    assert result.classification == PERMANENT
    assert result.detail.startswith("fatal: Authentication failed")


def test_http_status_classification():
    response = requests.Response()
    response.status_code = 503
    assert classify_error(requests.HTTPError("server", response=response)).transient
    response.status_code = 404
    assert not classify_error(requests.HTTPError("missing", response=response)).transient


def test_backoff_delay_doubles_and_caps():
    assert [backoff_delay(n, 1.0, 5.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_retry_recovers_from_transient_failures():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("connection reset by peer")
        return "ok"

    assert retry_call(flaky, max_retries=3, backoff_base=0.5, sleep=sleeps.append) == "ok"
    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]


def test_retry_gives_up_after_max_attempts():
    calls = []

    def always_down():
        calls.append(1)
        raise RuntimeError("Could not resolve host: github.com")

    with pytest.raises(AcquisitionError) as exc_info:
        retry_call(always_down, max_retries=2, sleep=lambda _: None)
    assert len(calls) == 2
    assert exc_info.value.classification == TRANSIENT
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_permanent_failure_is_not_retried():
    calls = []

    def not_found():
        calls.append(1)
        raise RuntimeError("remote: Repository not found.")

    with pytest.raises(AcquisitionError) as exc_info:
        retry_call(not_found, max_retries=5, sleep=lambda _: pytest.fail("should not sleep"))
    assert len(calls) == 1
    assert exc_info.value.classification == PERMANENT
