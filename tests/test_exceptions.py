import asyncio

import pytest

from api.v1.core.exceptions import (
    ConfigurationError,
    InvalidStateError,
    JobTimeoutError,
    NotFoundError,
    QueueUnavailableError,
    TransientProcessingError,
    UnknownJobTypeError,
    ValidationError,
    create_error_response,
    create_success_response,
    is_retryable,
    public_error_message,
)


@pytest.mark.parametrize(
    "error, retryable",
    [
        (RuntimeError("boom"), True),
        (asyncio.TimeoutError(), True),
        (TransientProcessingError("upstream 502"), True),
        (JobTimeoutError(100), True),
        (ValidationError("bad payload"), False),
        (ConfigurationError("missing credentials"), False),
        (UnknownJobTypeError("ghost"), False),
    ],
)
def test_is_retryable(error, retryable):
    assert is_retryable(error) is retryable


@pytest.mark.parametrize(
    "error, status_code",
    [
        (ValidationError("x"), 400),
        (InvalidStateError("x"), 400),
        (UnknownJobTypeError("ghost"), 400),
        (NotFoundError("x"), 404),
        (QueueUnavailableError(), 503),
        (JobTimeoutError(5), 500),
    ],
)
def test_status_codes(error, status_code):
    assert error.status_code == status_code


def test_public_error_message():
    assert public_error_message(RuntimeError("first line\nsecond line")) == "first line"
    assert public_error_message(KeyError()) == "KeyError"
    assert len(public_error_message(RuntimeError("x" * 5000), limit=100)) == 100


def test_response_envelopes():
    success = create_success_response({"a": 1}, message="done", request_id="req-1")
    assert success["ok"] is True
    assert success["data"] == {"a": 1}
    assert success["message"] == "done"
    assert success["request_id"] == "req-1"

    error = create_error_response(404, "Job not found", {"job_id": "x"})
    assert error["ok"] is False
    assert error["error"] == {
        "message": "Job not found",
        "code": 404,
        "details": {"job_id": "x"},
    }
