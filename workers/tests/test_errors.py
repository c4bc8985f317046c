import httpx
import psycopg
import pytest

from carenote_workers.errors import (
    CareNoteError,
    ConcernCommandError,
    ConcernConflictError,
    ConcernNotFoundError,
    InvalidStatusTransitionError,
    MessageDeliveryError,
    TransientError,
    classify_error,
    is_retryable,
)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (ConcernNotFoundError("back"), "resolution"),
        (ConcernConflictError("Knee", "Knee Injury"), "resolution"),
        (ConcernCommandError("bad"), "validation"),
        (InvalidStatusTransitionError("resolved", "active"), "validation"),
        (ValueError("bad payload"), "validation"),
        (MessageDeliveryError("503"), "transient"),
        (psycopg.OperationalError("connection lost"), "transient"),
        (httpx.ConnectError("refused"), "transient"),
        (TimeoutError(), "transient"),
        (RuntimeError("boom"), "other"),
    ],
)
def test_classify_error(exc, expected):
    assert classify_error(exc) == expected


def test_retryable_classes():
    assert is_retryable(MessageDeliveryError("x"))
    assert is_retryable(RuntimeError("x"))
    assert not is_retryable(ConcernNotFoundError("back"))
    assert not is_retryable(ConcernCommandError("x"))


def test_codes_are_stable():
    assert ConcernNotFoundError("x").code == "concern_not_found"
    assert ConcernCommandError("x").code == "invalid_command"
    assert MessageDeliveryError("x").code == "delivery_failed"
    assert MessageDeliveryError("x").retryable is True
    assert issubclass(MessageDeliveryError, TransientError)
    assert issubclass(TransientError, CareNoteError)


def test_not_found_carries_target():
    exc = ConcernNotFoundError("migraine")
    assert exc.target == "migraine"
    assert "migraine" in str(exc)
