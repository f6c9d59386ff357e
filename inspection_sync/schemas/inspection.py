from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from inspection_sync.models.entities import InspectionStatus

Answer = Literal["yes", "no", "na"]


def ensure_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on read; stored timestamps are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PhotoRecord(BaseModel):
    id: str
    question_id: str
    storage_path: str
    file_name: str
    file_size: int

    class Config:
        from_attributes = True


class ResponseEntry(BaseModel):
    question_id: str
    answer: Answer | None = None
    comments: str = ""
    flagged: bool = False
    action_required: bool = False
    action_notes: str = ""
    photos: List[PhotoRecord] = Field(default_factory=list)

    @field_validator("answer", mode="before")
    @classmethod
    def blank_answer_is_none(cls, value: object) -> object:
        return value or None

    @field_validator("comments", "action_notes", mode="before")
    @classmethod
    def none_text_is_empty(cls, value: object) -> object:
        return "" if value is None else value

    @model_validator(mode="after")
    def derive_flagged(self) -> "ResponseEntry":
        # Stored rows may carry a stale flag; the answer is the only source.
        self.flagged = self.answer == "no"
        return self

    @property
    def is_answered(self) -> bool:
        return self.answer is not None

    def persisted(self) -> dict:
        data = self.model_dump(mode="json")
        if not self.action_required:
            data["action_notes"] = ""
        return data


class ResponseUpdate(BaseModel):
    """Partial update for one checklist item; only fields sent are applied."""

    answer: Answer | None = None
    comments: str | None = None
    action_required: bool | None = None
    action_notes: str | None = None

    @field_validator("answer", mode="before")
    @classmethod
    def blank_answer_is_none(cls, value: object) -> object:
        return value or None


class InspectionPayload(BaseModel):
    """Full-document write sent to the draft repository."""

    facility_id: str
    account_id: str
    user_id: str
    team_number: int = 1
    template_id: str | None = None
    inspector_name: str = "Draft"
    conducted_at: datetime
    responses: List[dict] = Field(default_factory=list)
    general_comments: str = ""
    signature_data: str | None = None
    status: InspectionStatus = InspectionStatus.draft
    flagged_items_count: int = 0
    actions_count: int = 0
    updated_at: datetime


class InspectionRecord(BaseModel):
    id: str
    facility_id: str
    account_id: str
    user_id: str
    team_number: int = 1
    template_id: str | None = None
    inspector_name: str
    conducted_at: datetime
    responses: List[ResponseEntry] = Field(default_factory=list)
    general_comments: str = ""
    signature_data: str | None = None
    status: InspectionStatus
    flagged_items_count: int = 0
    actions_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("general_comments", mode="before")
    @classmethod
    def none_comments_is_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("conducted_at", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class LocalSnapshot(BaseModel):
    responses: List[ResponseEntry] = Field(default_factory=list)
    general_comments: str = ""
    facility_id: str
    facility_name: str | None = None
    timestamp: datetime
    user_id: str | None = None
    account_id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ResponseCounts(BaseModel):
    flagged_count: int
    actions_count: int
