"""Concern jobs: new summaries and user-issued commands."""

import logging
from typing import Any

import psycopg

from ..context import Runtime, Services, build_services
from ..errors import ConcernCommandError, ConcernConflictError, ConcernNotFoundError
from ..message_templates import (
    command_confirmation,
    command_conflict_message,
    command_invalid_message,
    command_not_found_message,
    extract_case_label,
)
from ..payloads import ConcernCommandPayload, SummaryCreatedPayload
from ..registry import register

logger = logging.getLogger(__name__)


async def _user_language(services: Services, user_id: str) -> str | None:
    recipient = await services.followups.store.get_recipient(user_id)
    return recipient.language if recipient else None


async def _resolve_title(services: Services, job: SummaryCreatedPayload) -> str:
    if job.title:
        return job.title
    if services.classifier is None:
        raise ConcernCommandError(
            "summary_created payload has no title and no topic classifier is configured"
        )

    active = await services.concerns.get_active_concerns(job.user_id)
    candidates = await services.classifier.detect_topic(
        job.conversation_excerpt or job.summary, [c.title for c in active]
    )
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    raise ConcernCommandError(f"Topic classifier returned no title for user {job.user_id}")


@register("concern.summary_created")
async def handle_summary_created(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any], runtime: Runtime
) -> None:
    """Fold a new summary into its concern, then (re)schedule the follow-up."""
    job = SummaryCreatedPayload.model_validate(payload)
    services = build_services(conn, runtime)

    title = await _resolve_title(services, job)
    concern = await services.concerns.get_or_create_concern(job.user_id, title)
    concern = await services.concerns.update_concern_summary(
        concern.id, job.summary, "auto_update"
    )

    language = await _user_language(services, job.user_id)
    case_label = extract_case_label(f"{concern.title}\n{job.summary}", language)
    await services.followups.schedule_checkin(
        job.user_id, job.conversation_ref, case_label, concern_id=concern.id
    )


@register("concern.command")
async def handle_concern_command(
    conn: psycopg.AsyncConnection[Any], payload: dict[str, Any], runtime: Runtime
) -> None:
    job = ConcernCommandPayload.model_validate(payload)
    services = build_services(conn, runtime)
    language = await _user_language(services, job.user_id)

    try:
        affected = await services.commands.execute(
            job.command, job.user_id, job.target_names, job.new_name
        )
    except ConcernConflictError as exc:
        logger.info(
            "concern.command %s for user %s conflicts with %r",
            job.command, job.user_id, exc.existing_title,
        )
        text = command_conflict_message(exc.existing_title, language)
    except ConcernNotFoundError as exc:
        # User-facing: answer in chat instead of retrying.
        logger.info(
            "concern.command %s for user %s not applied: %s", job.command, job.user_id, exc
        )
        text = command_not_found_message(language)
    except ConcernCommandError as exc:
        logger.info(
            "concern.command %s for user %s not applied: %s", job.command, job.user_id, exc
        )
        text = command_invalid_message(language)
    else:
        new_name = affected[-1] if job.command == "rename" else None
        text = command_confirmation(job.command, affected, language, new_name=new_name)

    await services.followups.send_message(job.user_id, job.conversation_ref, text)
