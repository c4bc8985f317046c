"""Error taxonomy for concern commands, follow-ups and job execution.

Callers branch on exception type (or ``classify_error``), never on message
text. User-facing resolution failures are not retried; transient failures
are handed back to the job queue's retry policy.
"""

from typing import Literal

import httpx
import psycopg

ErrorClass = Literal["resolution", "validation", "transient", "other"]


class CareNoteError(Exception):
    code = "carenote_error"
    retryable = False


class ConcernNotFoundError(CareNoteError):
    """No active concern matched the free-text target."""

    code = "concern_not_found"

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"Could not find a concern matching {target!r}")


class ConcernCommandError(CareNoteError):
    code = "invalid_command"


class ConcernConflictError(CareNoteError):
    code = "concern_conflict"

    def __init__(self, new_title: str, existing_title: str) -> None:
        self.new_title = new_title
        self.existing_title = existing_title
        super().__init__(
            f"Title {new_title!r} collides with active concern {existing_title!r}"
        )


class InvalidStatusTransitionError(CareNoteError):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move concern from {current!r} to {requested!r}")


class TransientError(CareNoteError):
    code = "transient"
    retryable = True


class MessageDeliveryError(TransientError):
    code = "delivery_failed"


_RESOLUTION_ERRORS = (ConcernNotFoundError, ConcernConflictError)
_VALIDATION_ERRORS = (ConcernCommandError, InvalidStatusTransitionError, ValueError)
_TRANSIENT_ERRORS = (
    TransientError,
    psycopg.OperationalError,
    httpx.TransportError,
    TimeoutError,
)


def classify_error(exc: BaseException) -> ErrorClass:
    if isinstance(exc, _RESOLUTION_ERRORS):
        return "resolution"
    if isinstance(exc, _TRANSIENT_ERRORS):
        return "transient"
    # pydantic.ValidationError subclasses ValueError.
    if isinstance(exc, _VALIDATION_ERRORS):
        return "validation"
    return "other"


def is_retryable(exc: BaseException) -> bool:
    """Whether the job queue should retry a job that raised ``exc``.

    Unclassified errors stay retryable: the attempt budget bounds them.
    """
    return classify_error(exc) in ("transient", "other")
