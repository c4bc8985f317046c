"""Pydantic validation for queued job payloads.

Payloads arrive as JSON from ``background_jobs.payload``; a payload that
fails validation raises ``pydantic.ValidationError`` and the job is
dead-lettered without retry.
"""

from typing import Literal

from pydantic import AwareDatetime, BaseModel, field_validator, model_validator


def _strip_required(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field} must not be empty")
    return value


class CheckinJobPayload(BaseModel):
    """Fired by the delayed ``followup.checkin`` job."""

    user_id: str
    conversation_ref: str
    scheduled_for: AwareDatetime | None = None

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        return _strip_required(v, "user_id")


class SummaryCreatedPayload(BaseModel):
    """A new summary was generated for the user.

    ``title`` is the topic detected upstream. When absent the topic
    classifier is asked, with ``conversation_excerpt`` as context.
    """

    user_id: str
    conversation_ref: str
    summary: str
    title: str | None = None
    conversation_excerpt: str | None = None

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        return _strip_required(v, "user_id")

    @field_validator("summary")
    @classmethod
    def summary_not_empty(cls, v: str) -> str:
        return _strip_required(v, "summary")

    @field_validator("title")
    @classmethod
    def title_blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class ConcernCommandPayload(BaseModel):
    user_id: str
    conversation_ref: str
    command: Literal["merge", "delete", "rename"]
    target_names: list[str]
    new_name: str | None = None

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        return _strip_required(v, "user_id")

    @field_validator("target_names")
    @classmethod
    def target_names_not_empty(cls, v: list[str]) -> list[str]:
        names = [name.strip() for name in v if name.strip()]
        if not names:
            raise ValueError("target_names must not be empty")
        return names

    @model_validator(mode="after")
    def check_command_arguments(self) -> "ConcernCommandPayload":
        if self.command == "merge" and len(self.target_names) < 2:
            raise ValueError("merge requires at least two target_names")
        if self.command in ("delete", "rename") and len(self.target_names) != 1:
            raise ValueError(f"{self.command} requires exactly one target name")
        if self.command == "rename":
            if self.new_name is None or not self.new_name.strip():
                raise ValueError("rename requires new_name")
            self.new_name = self.new_name.strip()
        return self


class UserMessagePayload(BaseModel):
    user_id: str
    conversation_ref: str
    text: str
    sent_at: AwareDatetime | None = None

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        return _strip_required(v, "user_id")
