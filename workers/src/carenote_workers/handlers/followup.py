"""Delivery callback for delayed check-in jobs."""

import logging
from typing import Any

import psycopg

from ..context import Runtime, build_services
from ..followup import CHECKIN_JOB_TYPE
from ..payloads import CheckinJobPayload
from ..registry import register

logger = logging.getLogger(__name__)


@register(CHECKIN_JOB_TYPE)
async def handle_followup_checkin(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any], runtime: Runtime
) -> None:
    job = CheckinJobPayload.model_validate(payload)
    services = build_services(conn, runtime)

    result = await services.followups.execute_checkin(
        job.user_id, job.conversation_ref, scheduled_for=job.scheduled_for
    )
    logger.debug("followup.checkin for user %s: %s", job.user_id, result.reason)
