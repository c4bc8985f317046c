"""Inbound user messages: activity tracking and check-in replies."""

import logging
from typing import Any

import psycopg

from ..context import Runtime, Services, build_services
from ..models import Concern
from ..payloads import UserMessagePayload
from ..registry import register

logger = logging.getLogger(__name__)


async def _note_target(services: Services, user_id: str, concern_id: str | None) -> Concern | None:
    """The check-in's concern if still open, else the most recently updated open one."""
    if concern_id is not None:
        concern = await services.concerns.store.get_concern(concern_id)
        if concern is not None and concern.is_open:
            return concern
    active = await services.concerns.get_active_concerns(user_id)
    return active[0] if active else None


@register("conversation.user_message")
async def handle_user_message(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any], runtime: Runtime
) -> None:
    job = UserMessagePayload.model_validate(payload)
    services = build_services(conn, runtime)

    await services.followups.record_user_message(job.user_id, job.sent_at)

    response = await services.followups.handle_checkin_response(job.user_id, job.text)
    if response is None:
        return

    target = await _note_target(services, job.user_id, response.concern_id)
    if target is None:
        logger.info(
            "Check-in reply from user %s has no open concern to annotate", job.user_id
        )
    else:
        await services.concerns.append_note_entry(target.id, response.note_entry)

    await services.followups.send_message(
        job.user_id, job.conversation_ref, response.acknowledgment
    )
