"""Concern lifecycle: matching topics to concerns, versioned summaries, status.

Every mutating operation ends by recomputing the user's legacy aggregate
(``memories`` row with category ``health_summary``). The recompute runs in
its own savepoint and its failures are logged, never raised: the concern
rows are the source of truth and the aggregate is a derived view.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .concern_store import ConcernStore
from .errors import (
    ConcernCommandError,
    ConcernConflictError,
    ConcernNotFoundError,
    InvalidStatusTransitionError,
)
from .matching import DEFAULT_MATCH_THRESHOLD, find_best_match
from .metrics import record_aggregate_failure
from .models import (
    CONCERN_TRANSITIONS,
    OPEN_CONCERN_STATUSES,
    SNAPSHOT_REASONS,
    Concern,
    ConcernSnapshot,
    ConcernStatus,
    SnapshotReason,
)

logger = logging.getLogger(__name__)

NOTE_SEPARATOR = "\n\n---\n"


class TopicClassifier(Protocol):
    """Language-model collaborator naming the topic of a conversation.

    Output is untrusted free text; it is always fuzzy-matched before use.
    """

    async def detect_topic(self, conversation_excerpt: str, existing_titles: list[str]) -> list[str]: ...


def normalize_content(content: str | None) -> str:
    return " ".join((content or "").split())


def build_aggregate(concerns: list[Concern]) -> str:
    """'--- Title ---\\ncontent' blocks, oldest concern first, blank-line separated."""
    ordered = sorted(concerns, key=lambda c: (c.created_at, c.title))
    blocks = [
        f"--- {c.title} ---\n{c.summary_content.strip()}"
        for c in ordered
        if c.summary_content and c.summary_content.strip()
    ]
    return "\n\n".join(blocks)


class ConcernLifecycle:
    def __init__(
        self,
        store: ConcernStore,
        *,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        aggregate_enabled: bool = True,
    ) -> None:
        self.store = store
        self.match_threshold = match_threshold
        self.aggregate_enabled = aggregate_enabled

    # --- Reads ---

    async def get_active_concerns(self, user_id: str) -> list[Concern]:
        """Active and improving concerns, most recently updated first."""
        return await self.store.list_concerns(user_id, OPEN_CONCERN_STATUSES)

    async def get_all_concerns(self, user_id: str) -> list[Concern]:
        return await self.store.list_concerns(user_id)

    async def get_concern(self, concern_id: str, *, for_update: bool = False) -> Concern:
        concern = await self.store.get_concern(concern_id, for_update=for_update)
        if concern is None:
            raise ConcernNotFoundError(concern_id)
        return concern

    async def get_concern_history(self, concern_id: str) -> list[ConcernSnapshot]:
        """Snapshots for a concern, newest first. Survives deletion of the concern."""
        return await self.store.list_snapshots(concern_id)

    async def find_concern(
        self,
        user_id: str,
        name: str,
        candidates: list[Concern] | None = None,
    ) -> Concern | None:
        if candidates is None:
            candidates = await self.get_active_concerns(user_id)
        index = find_best_match(
            name,
            [c.title for c in candidates],
            threshold=self.match_threshold,
            recency=[c.updated_at for c in candidates],
        )
        return None if index is None else candidates[index]

    async def resolve_concern(
        self,
        user_id: str,
        name: str,
        candidates: list[Concern] | None = None,
    ) -> Concern:
        concern = await self.find_concern(user_id, name, candidates)
        if concern is None:
            raise ConcernNotFoundError(name)
        return concern

    # --- Mutations ---

    async def get_or_create_concern(self, user_id: str, candidate_title: str) -> Concern:
        title = " ".join(candidate_title.split())
        if not title:
            raise ConcernCommandError("Concern title must not be empty")

        await self.store.lock_user(user_id)
        existing = await self.find_concern(user_id, title)
        if existing is not None:
            logger.debug(
                "Matched %r to concern %s (%r) for user %s",
                title, existing.id, existing.title, user_id,
            )
            return existing

        concern = await self.store.insert_concern(user_id, title)
        logger.info(
            "Concern created: %s (%r) for user %s", concern.id, concern.title, user_id,
            extra={"carenote_user_id": user_id, "carenote_concern_id": concern.id},
        )
        # No content yet, so the aggregate is unchanged, but the set changed.
        await self.recompute_aggregate(user_id)
        return concern

    async def update_concern_summary(
        self,
        concern_id: str,
        new_content: str,
        reason: SnapshotReason = "auto_update",
        *,
        recompute: bool = True,
    ) -> Concern:
        """Replace a concern's summary, recording a snapshot of the new content.

        Content equal to the current summary after whitespace normalization is
        a no-op: no snapshot, no row update.
        """
        if reason not in SNAPSHOT_REASONS:
            raise ConcernCommandError(f"Unknown snapshot reason {reason!r}")

        concern = await self.get_concern(concern_id, for_update=True)
        try:
            if not normalize_content(new_content):
                logger.debug("Ignoring empty summary update for concern %s", concern_id)
                return concern
            if normalize_content(new_content) == normalize_content(concern.summary_content):
                logger.debug("Summary unchanged for concern %s", concern_id)
                return concern

            content = new_content.strip()
            updated = await self.store.update_summary(concern_id, content)
            await self.store.insert_snapshot(updated, content, reason)
            logger.info(
                "Concern summary updated: %s (reason=%s) for user %s",
                concern_id, reason, concern.user_id,
                extra={"carenote_user_id": concern.user_id, "carenote_concern_id": concern_id},
            )
            return updated
        finally:
            if recompute:
                await self.recompute_aggregate(concern.user_id)

    async def append_note_entry(
        self,
        concern_id: str,
        entry: str,
        reason: SnapshotReason = "auto_update",
    ) -> Concern:
        concern = await self.get_concern(concern_id, for_update=True)
        current = (concern.summary_content or "").rstrip()
        content = f"{current}{NOTE_SEPARATOR}{entry}" if current else entry
        return await self.update_concern_summary(concern_id, content, reason)

    async def rename_concern(
        self,
        concern_id: str,
        new_title: str,
        *,
        recompute: bool = True,
    ) -> Concern:
        """Change the title only. Titles are metadata, so no snapshot is taken."""
        title = " ".join(new_title.split())
        if not title:
            raise ConcernCommandError("New concern name must not be empty")

        concern = await self.get_concern(concern_id, for_update=True)
        try:
            others = [
                c for c in await self.get_active_concerns(concern.user_id)
                if c.id != concern.id
            ]
            clash = await self.find_concern(concern.user_id, title, others)
            if clash is not None:
                raise ConcernConflictError(title, clash.title)

            if title == concern.title:
                return concern
            renamed = await self.store.update_title(concern_id, title)
            logger.info(
                "Concern renamed: %s %r -> %r for user %s",
                concern_id, concern.title, title, concern.user_id,
                extra={"carenote_user_id": concern.user_id, "carenote_concern_id": concern_id},
            )
            return renamed
        finally:
            if recompute:
                await self.recompute_aggregate(concern.user_id)

    async def update_concern_status(
        self,
        concern_id: str,
        status: ConcernStatus,
        *,
        recompute: bool = True,
    ) -> Concern:
        concern = await self.get_concern(concern_id, for_update=True)
        try:
            if status == concern.status:
                return concern
            if status not in CONCERN_TRANSITIONS.get(concern.status, frozenset()):
                raise InvalidStatusTransitionError(concern.status, status)

            updated = await self.store.update_status(concern_id, status)
            logger.info(
                "Concern status: %s %s -> %s for user %s",
                concern_id, concern.status, status, concern.user_id,
                extra={"carenote_user_id": concern.user_id, "carenote_concern_id": concern_id},
            )
            return updated
        finally:
            if recompute:
                await self.recompute_aggregate(concern.user_id)

    async def delete_concern(self, concern_id: str, *, recompute: bool = True) -> Concern:
        """Hard-delete the concern row. Its snapshots are kept for audit."""
        concern = await self.get_concern(concern_id, for_update=True)
        try:
            await self.store.delete_concern(concern_id)
            logger.info(
                "Concern deleted: %s (%r) for user %s",
                concern_id, concern.title, concern.user_id,
                extra={"carenote_user_id": concern.user_id, "carenote_concern_id": concern_id},
            )
            return concern
        finally:
            if recompute:
                await self.recompute_aggregate(concern.user_id)

    async def recompute_aggregate(self, user_id: str) -> str | None:
        """Rewrite the legacy aggregate from the current open concerns.

        Returns the written content, or None when skipped or failed.
        """
        if not self.aggregate_enabled:
            logger.debug("Aggregate table unavailable, skipping recompute for user %s", user_id)
            return None
        try:
            async with self.store.transaction():
                content = build_aggregate(await self.get_active_concerns(user_id))
                await self.store.write_aggregate(user_id, content)
            return content
        except Exception:
            record_aggregate_failure()
            logger.warning(
                "Aggregate recompute failed for user %s", user_id,
                exc_info=True,
                extra={"carenote_user_id": user_id},
            )
            return None
