"""User-issued concern commands: merge, delete, rename.

Names arrive as free text from the intent parser and are resolved against
the user's open concerns with the fuzzy matcher. Any name that does not
resolve fails the whole command with ConcernNotFoundError before anything
is written.
"""

from __future__ import annotations

import logging

from .concerns import ConcernLifecycle
from .errors import ConcernCommandError
from .models import Concern

logger = logging.getLogger(__name__)


class ConcernCommandExecutor:
    def __init__(self, lifecycle: ConcernLifecycle) -> None:
        self.lifecycle = lifecycle

    async def _resolve_all(self, user_id: str, names: list[str]) -> list[Concern]:
        active = await self.lifecycle.get_active_concerns(user_id)
        resolved: list[Concern] = []
        for name in names:
            concern = await self.lifecycle.resolve_concern(user_id, name, active)
            if all(c.id != concern.id for c in resolved):
                resolved.append(concern)
        return resolved

    async def merge(self, user_id: str, target_names: list[str]) -> list[str]:
        """Fold every named concern into the first one.

        Content is concatenated in input order, blank-line separated, without
        deduplication. Returns the matched titles.
        """
        if len(target_names) < 2:
            raise ConcernCommandError("Merge needs at least two concern names")

        store = self.lifecycle.store
        try:
            async with store.transaction():
                await store.lock_user(user_id)
                resolved = await self._resolve_all(user_id, target_names)
                if len(resolved) < 2:
                    raise ConcernCommandError(
                        "Merge needs at least two distinct concerns, "
                        f"all names matched {resolved[0].title!r}"
                    )

                primary, secondaries = resolved[0], resolved[1:]
                combined = "\n\n".join(
                    c.summary_content.strip()
                    for c in resolved
                    if c.summary_content and c.summary_content.strip()
                )
                await self.lifecycle.update_concern_summary(
                    primary.id, combined, "user_edit", recompute=False
                )
                for secondary in secondaries:
                    await self.lifecycle.delete_concern(secondary.id, recompute=False)
        finally:
            await self.lifecycle.recompute_aggregate(user_id)

        titles = [c.title for c in resolved]
        logger.info(
            "Concerns merged into %s for user %s: %s", primary.id, user_id, titles,
            extra={"carenote_user_id": user_id, "carenote_concern_id": primary.id},
        )
        return titles

    async def delete(self, user_id: str, target_name: str) -> str:
        store = self.lifecycle.store
        async with store.transaction():
            await store.lock_user(user_id)
            concern = await self.lifecycle.resolve_concern(user_id, target_name)
            await self.lifecycle.delete_concern(concern.id)
        return concern.title

    async def rename(self, user_id: str, target_name: str, new_name: str) -> list[str]:
        """Returns ``[old_title, new_title]``."""
        store = self.lifecycle.store
        async with store.transaction():
            await store.lock_user(user_id)
            concern = await self.lifecycle.resolve_concern(user_id, target_name)
            renamed = await self.lifecycle.rename_concern(concern.id, new_name)
        return [concern.title, renamed.title]

    async def execute(
        self,
        command: str,
        user_id: str,
        target_names: list[str],
        new_name: str | None = None,
    ) -> list[str]:
        """Dispatch a parsed command; returns the affected titles for confirmation."""
        if command == "merge":
            return await self.merge(user_id, target_names)
        if command == "delete":
            return [await self.delete(user_id, target_names[0])]
        if command == "rename":
            if not new_name:
                raise ConcernCommandError("Rename needs a new name")
            return await self.rename(user_id, target_names[0], new_name)
        raise ConcernCommandError(f"Unknown concern command {command!r}")
