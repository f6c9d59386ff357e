from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from inspection_sync.models.entities import InspectionStatus
from inspection_sync.schemas.account import BrandingRead, FacilityRead
from inspection_sync.schemas.inspection import PhotoRecord, ResponseCounts, ResponseEntry


class SessionOpen(BaseModel):
    facility_id: str = Field(min_length=1)


class SessionView(BaseModel):
    facility: FacilityRead
    template_id: str
    template_name: str
    remote_id: str | None = None
    status: InspectionStatus
    dirty: bool
    autosave_pending: bool = False
    last_saved_at: datetime | None = None
    source: str | None = None
    remote_error: str | None = None
    responses: List[ResponseEntry]
    general_comments: str = ""
    counts: ResponseCounts
    has_signature: bool = False
    branding: BrandingRead = Field(default_factory=BrandingRead)


class CommentsUpdate(BaseModel):
    general_comments: str = ""


class CompleteRequest(BaseModel):
    # None means the caller has not answered the auto-fill prompt yet.
    confirm_auto_fill: bool | None = None


class LifecycleRequest(BaseModel):
    signal: str


class PhotoBatchRead(BaseModel):
    attached: List[PhotoRecord] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    rejected: List[str] = Field(default_factory=list)
    capacity_message: str | None = None

    class Config:
        from_attributes = True
