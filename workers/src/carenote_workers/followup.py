"""Scheduled follow-up check-ins.

A new summary schedules one delayed ``followup.checkin`` job per user (the
job key is derived from the user id). When the job fires the state row is
reloaded and re-validated before anything is sent, because the user may
have re-engaged, been canceled, or been rescheduled in the meantime. The
``followup_state.status`` column is the cancellation signal of record;
removing the queued job is only an optimization.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import MessageDeliveryError
from .followup_store import FollowUpStore
from .job_queue import JobQueue, checkin_job_key
from .message_templates import (
    CheckinReply,
    checkin_acknowledgment,
    checkin_message,
    checkin_note_entry,
    classify_checkin_reply,
)
from .messaging import Messenger
from .metrics import record_checkin_sent, record_checkin_suppressed
from .models import FollowUpState

logger = logging.getLogger(__name__)

CHECKIN_JOB_TYPE = "followup.checkin"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _same_second(a: datetime, b: datetime) -> bool:
    # Payload timestamps round-trip through JSON; compare at second precision.
    return a.astimezone(timezone.utc).replace(microsecond=0) == b.astimezone(
        timezone.utc
    ).replace(microsecond=0)


@dataclass(frozen=True)
class CheckinResult:
    sent: bool
    reason: str
    message: str | None = None


@dataclass(frozen=True)
class CheckinResponse:
    category: CheckinReply
    acknowledgment: str
    note_entry: str
    concern_id: str | None
    conversation_ref: str | None


class FollowUpScheduler:
    def __init__(
        self,
        store: FollowUpStore,
        queue: JobQueue,
        messenger: Messenger,
        *,
        delay: timedelta = timedelta(hours=24),
        active_window: timedelta = timedelta(hours=6),
        send_timeout_seconds: float = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.queue = queue
        self.messenger = messenger
        self.delay = delay
        self.active_window = active_window
        self.send_timeout_seconds = send_timeout_seconds
        self.clock = clock

    async def schedule_checkin(
        self,
        user_id: str,
        conversation_ref: str,
        case_label: str | None,
        *,
        concern_id: str | None = None,
    ) -> FollowUpState:
        """(Re)schedule the user's check-in ``delay`` from now, replacing any earlier one."""
        await self.cancel_existing_checkin(user_id)

        now = self.clock()
        scheduled_for = now + self.delay
        state = await self.store.mark_scheduled(
            user_id,
            scheduled_for=scheduled_for,
            summary_created_at=now,
            case_label=case_label,
            concern_id=concern_id,
            conversation_ref=conversation_ref,
        )
        payload: dict[str, Any] = {
            "user_id": user_id,
            "conversation_ref": conversation_ref,
            "scheduled_for": scheduled_for.isoformat(),
        }
        await self.queue.enqueue(
            checkin_job_key(user_id),
            CHECKIN_JOB_TYPE,
            payload,
            user_id=user_id,
            delay=self.delay,
        )
        logger.info(
            "Check-in scheduled for user %s at %s (label=%r)",
            user_id, scheduled_for.isoformat(), case_label,
            extra={"carenote_user_id": user_id, "carenote_scheduled_for": scheduled_for.isoformat()},
        )
        return state

    async def cancel_existing_checkin(self, user_id: str) -> None:
        """Idempotent: safe when nothing is scheduled."""
        try:
            removed = await self.queue.cancel(checkin_job_key(user_id))
        except Exception:
            # The status flag below is authoritative; a leftover job is re-validated at fire time.
            logger.warning("Queue cancel failed for user %s", user_id, exc_info=True)
            removed = False
        await self.store.mark_canceled(user_id)
        logger.info(
            "Check-in canceled for user %s (queued job removed=%s)", user_id, removed,
            extra={"carenote_user_id": user_id},
        )

    async def _suppress(self, user_id: str, reason: str) -> CheckinResult:
        await self.store.transition(user_id, "scheduled", "canceled")
        record_checkin_suppressed(reason)
        logger.info(
            "Check-in suppressed for user %s: %s", user_id, reason,
            extra={"carenote_user_id": user_id, "carenote_reason": reason},
        )
        return CheckinResult(sent=False, reason=reason)

    async def execute_checkin(
        self,
        user_id: str,
        conversation_ref: str,
        *,
        scheduled_for: datetime | None = None,
    ) -> CheckinResult:
        """Fire-time path of a check-in job.

        ``scheduled_for`` is the due time carried in the job payload; a job
        whose due time no longer matches the state row was superseded by a
        later schedule and does nothing.
        """
        state = await self.store.get_state(user_id, for_update=True)
        if state is None:
            logger.info("Check-in skipped for user %s: no follow-up state", user_id)
            return CheckinResult(sent=False, reason="no_state")
        if state.status != "scheduled":
            # Duplicate fire, or canceled/answered since scheduling.
            logger.info(
                "Check-in skipped for user %s: status=%s", user_id, state.status,
                extra={"carenote_user_id": user_id},
            )
            return CheckinResult(sent=False, reason="not_scheduled")
        if (
            scheduled_for is not None
            and state.scheduled_for is not None
            and not _same_second(scheduled_for, state.scheduled_for)
        ):
            logger.info(
                "Check-in skipped for user %s: job for %s superseded by %s",
                user_id, scheduled_for.isoformat(), state.scheduled_for.isoformat(),
                extra={"carenote_user_id": user_id},
            )
            return CheckinResult(sent=False, reason="stale_job")

        if (
            state.last_user_message_at is not None
            and state.last_summary_created_at is not None
            and state.last_user_message_at > state.last_summary_created_at
        ):
            return await self._suppress(user_id, "user_reengaged")

        now = self.clock()
        window_start = now - self.active_window
        if (
            state.last_bot_message_at is not None
            and state.last_user_message_at is not None
            and state.last_bot_message_at >= window_start
            and state.last_user_message_at >= window_start
        ):
            return await self._suppress(user_id, "conversation_active")

        recipient = await self.store.get_recipient(user_id)
        if recipient is None:
            return await self._suppress(user_id, "no_recipient")

        text = checkin_message(recipient.name, state.case_label, recipient.language)
        await self._send_bounded(conversation_ref, text)

        advanced = await self.store.transition(
            user_id, "scheduled", "sent", bot_message_at=self.clock()
        )
        if not advanced:
            logger.warning("Check-in for user %s sent but state had already moved on", user_id)
        record_checkin_sent()
        logger.info(
            "Check-in sent to user %s", user_id,
            extra={"carenote_user_id": user_id, "carenote_conversation_ref": conversation_ref},
        )
        return CheckinResult(sent=True, reason="sent", message=text)

    async def handle_checkin_response(self, user_id: str, text: str) -> CheckinResponse | None:
        """Classify a reply to a sent check-in, or None when no check-in is awaiting one."""
        state = await self.store.get_state(user_id, for_update=True)
        if state is None or state.status != "sent":
            return None

        if not await self.store.transition(user_id, "sent", "completed"):
            return None

        recipient = await self.store.get_recipient(user_id)
        language = recipient.language if recipient else None
        category = classify_checkin_reply(text)
        logger.info(
            "Check-in completed for user %s (reply=%s)", user_id, category,
            extra={"carenote_user_id": user_id, "carenote_reply": category},
        )
        return CheckinResponse(
            category=category,
            acknowledgment=checkin_acknowledgment(category, language),
            note_entry=checkin_note_entry(category, text, language),
            concern_id=state.concern_id,
            conversation_ref=state.conversation_ref,
        )

    async def _send_bounded(self, conversation_ref: str, text: str) -> None:
        try:
            async with asyncio.timeout(self.send_timeout_seconds):
                await self.messenger.send(conversation_ref, text)
        except TimeoutError as exc:
            raise MessageDeliveryError(
                f"Send to {conversation_ref} timed out after {self.send_timeout_seconds}s"
            ) from exc

    async def send_message(self, user_id: str, conversation_ref: str, text: str) -> None:
        """Send a bot reply and count it as bot activity for the active-conversation check."""
        await self._send_bounded(conversation_ref, text)
        await self.record_bot_message(user_id)

    async def record_user_message(self, user_id: str, at: datetime | None = None) -> None:
        await self.store.record_user_message(user_id, at or self.clock())

    async def record_bot_message(self, user_id: str, at: datetime | None = None) -> None:
        await self.store.record_bot_message(user_id, at or self.clock())
