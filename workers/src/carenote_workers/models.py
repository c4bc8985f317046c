"""Row types for concerns and follow-up state."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

ConcernStatus = Literal["active", "improving", "resolved"]
SnapshotReason = Literal["auto_update", "user_edit"]
FollowUpStatus = Literal["not_scheduled", "scheduled", "sent", "canceled", "completed"]

OPEN_CONCERN_STATUSES: tuple[ConcernStatus, ...] = ("active", "improving")
SNAPSHOT_REASONS: tuple[SnapshotReason, ...] = ("auto_update", "user_edit")

# Resolved is terminal: a new mention creates a fresh concern instead.
CONCERN_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"improving", "resolved"}),
    "improving": frozenset({"resolved"}),
    "resolved": frozenset(),
}


@dataclass(frozen=True)
class Concern:
    id: str
    user_id: str
    title: str
    status: ConcernStatus
    summary_content: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_CONCERN_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Concern":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            status=row["status"],
            summary_content=row["summary_content"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class ConcernSnapshot:
    id: str
    concern_id: str
    content: str
    reason: SnapshotReason
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ConcernSnapshot":
        return cls(
            id=str(row["id"]),
            concern_id=str(row["concern_id"]),
            content=row["content"],
            reason=row["reason"],
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class FollowUpState:
    user_id: str
    status: FollowUpStatus = "not_scheduled"
    scheduled_for: datetime | None = None
    last_summary_created_at: datetime | None = None
    last_user_message_at: datetime | None = None
    last_bot_message_at: datetime | None = None
    case_label: str | None = None
    concern_id: str | None = None
    conversation_ref: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "FollowUpState":
        concern_id = row.get("concern_id")
        return cls(
            user_id=str(row["user_id"]),
            status=row["status"],
            scheduled_for=row.get("scheduled_for"),
            last_summary_created_at=row.get("last_summary_created_at"),
            last_user_message_at=row.get("last_user_message_at"),
            last_bot_message_at=row.get("last_bot_message_at"),
            case_label=row.get("case_label"),
            concern_id=str(concern_id) if concern_id is not None else None,
            conversation_ref=row.get("conversation_ref"),
        )


@dataclass(frozen=True)
class Recipient:
    """Who a check-in is addressed to."""

    user_id: str
    name: str | None
    language: str
