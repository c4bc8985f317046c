"""In-memory doubles for the store, queue and messenger protocols."""

import asyncio
import copy
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from carenote_workers.concern_commands import ConcernCommandExecutor
from carenote_workers.concerns import ConcernLifecycle
from carenote_workers.followup import FollowUpScheduler
from carenote_workers.models import Concern, ConcernSnapshot, FollowUpState, Recipient

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryConcernStore:
    def __init__(self) -> None:
        self.concerns: dict[str, Concern] = {}
        self.snapshots: list[ConcernSnapshot] = []
        self.aggregates: dict[str, str] = {}
        self.locked_users: list[str] = []
        self.fail_aggregate = False
        self.fail_delete_ids: set[str] = set()
        self._tick = 0

    def _now(self) -> datetime:
        # Strictly increasing so recency ordering is deterministic.
        self._tick += 1
        return T0 + timedelta(seconds=self._tick)

    @asynccontextmanager
    async def transaction(self):
        saved = (
            copy.copy(self.concerns),
            list(self.snapshots),
            copy.copy(self.aggregates),
        )
        try:
            yield self
        except BaseException:
            self.concerns, self.snapshots, self.aggregates = saved
            raise

    async def lock_user(self, user_id: str) -> None:
        self.locked_users.append(user_id)

    async def list_concerns(self, user_id, statuses=None):
        rows = [
            c for c in self.concerns.values()
            if c.user_id == user_id and (statuses is None or c.status in statuses)
        ]
        return sorted(rows, key=lambda c: c.updated_at, reverse=True)

    async def get_concern(self, concern_id, *, for_update=False):
        return self.concerns.get(concern_id)

    async def insert_concern(self, user_id, title):
        now = self._now()
        concern = Concern(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            status="active",
            summary_content=None,
            created_at=now,
            updated_at=now,
        )
        self.concerns[concern.id] = concern
        return concern

    def _update(self, concern_id: str, **changes: Any) -> Concern:
        if concern_id not in self.concerns:
            raise LookupError(concern_id)
        updated = replace(self.concerns[concern_id], updated_at=self._now(), **changes)
        self.concerns[concern_id] = updated
        return updated

    async def update_summary(self, concern_id, content):
        return self._update(concern_id, summary_content=content)

    async def update_title(self, concern_id, title):
        return self._update(concern_id, title=title)

    async def update_status(self, concern_id, status):
        return self._update(concern_id, status=status)

    async def delete_concern(self, concern_id):
        if concern_id in self.fail_delete_ids:
            raise RuntimeError(f"delete failed for {concern_id}")
        return self.concerns.pop(concern_id, None) is not None

    async def insert_snapshot(self, concern, content, reason):
        snapshot = ConcernSnapshot(
            id=str(uuid.uuid4()),
            concern_id=concern.id,
            content=content,
            reason=reason,
            created_at=self._now(),
        )
        self.snapshots.append(snapshot)
        return snapshot

    async def list_snapshots(self, concern_id):
        rows = [s for s in self.snapshots if s.concern_id == concern_id]
        return sorted(rows, key=lambda s: s.created_at, reverse=True)

    async def write_aggregate(self, user_id, content):
        if self.fail_aggregate:
            raise RuntimeError("memories unavailable")
        self.aggregates[user_id] = content


class InMemoryFollowUpStore:
    def __init__(self) -> None:
        self.states: dict[str, FollowUpState] = {}
        self.recipients: dict[str, Recipient] = {}

    def add_user(self, user_id: str, name: str | None = "Ana", language: str = "en") -> None:
        self.recipients[user_id] = Recipient(user_id=user_id, name=name, language=language)

    async def get_state(self, user_id, *, for_update=False):
        return self.states.get(user_id)

    async def mark_scheduled(
        self, user_id, *, scheduled_for, summary_created_at, case_label, concern_id, conversation_ref
    ):
        state = replace(
            self.states.get(user_id, FollowUpState(user_id=user_id)),
            status="scheduled",
            scheduled_for=scheduled_for,
            last_summary_created_at=summary_created_at,
            case_label=case_label,
            concern_id=concern_id,
            conversation_ref=conversation_ref,
        )
        self.states[user_id] = state
        return state

    async def mark_canceled(self, user_id):
        self.states[user_id] = replace(
            self.states.get(user_id, FollowUpState(user_id=user_id)),
            status="canceled",
            scheduled_for=None,
        )

    async def transition(self, user_id, expected, new_status, *, bot_message_at=None):
        state = self.states.get(user_id)
        if state is None or state.status != expected:
            return False
        self.states[user_id] = replace(
            state,
            status=new_status,
            last_bot_message_at=bot_message_at or state.last_bot_message_at,
        )
        return True

    def _bump(self, user_id: str, field: str, at: datetime) -> None:
        state = self.states.get(user_id, FollowUpState(user_id=user_id))
        current = getattr(state, field)
        if current is None or at > current:
            state = replace(state, **{field: at})
        self.states[user_id] = state

    async def record_user_message(self, user_id, at):
        self._bump(user_id, "last_user_message_at", at)

    async def record_bot_message(self, user_id, at):
        self._bump(user_id, "last_bot_message_at", at)

    async def get_recipient(self, user_id):
        return self.recipients.get(user_id)


class FakeJobQueue:
    def __init__(self) -> None:
        self.pending: dict[str, dict[str, Any]] = {}
        self.enqueued: list[dict[str, Any]] = []
        self.cancel_calls: list[str] = []
        self.fail_cancel = False
        self._next_id = 0

    async def enqueue(self, job_key, job_type, payload, *, user_id=None, delay=timedelta(0)):
        self._next_id += 1
        job = {
            "id": self._next_id,
            "job_key": job_key,
            "job_type": job_type,
            "payload": payload,
            "user_id": user_id,
            "delay": delay,
        }
        self.enqueued.append(job)
        if job_key is not None:
            self.pending[job_key] = job
        return self._next_id

    async def cancel(self, job_key):
        self.cancel_calls.append(job_key)
        if self.fail_cancel:
            raise RuntimeError("queue unavailable")
        return self.pending.pop(job_key, None) is not None


class FakeMessenger:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.error: Exception | None = None
        self.delay_seconds = 0.0

    async def send(self, conversation_ref, text):
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        self.sent.append((conversation_ref, text))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def concern_store() -> InMemoryConcernStore:
    return InMemoryConcernStore()


@pytest.fixture
def lifecycle(concern_store) -> ConcernLifecycle:
    return ConcernLifecycle(concern_store)


@pytest.fixture
def executor(lifecycle) -> ConcernCommandExecutor:
    return ConcernCommandExecutor(lifecycle)


@pytest.fixture
def followup_store() -> InMemoryFollowUpStore:
    store = InMemoryFollowUpStore()
    store.add_user("user-1")
    return store


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def scheduler(followup_store, job_queue, messenger, clock) -> FollowUpScheduler:
    return FollowUpScheduler(
        followup_store,
        job_queue,
        messenger,
        send_timeout_seconds=0.5,
        clock=clock,
    )
