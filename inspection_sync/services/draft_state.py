"""
Explicit draft state and the pure transitions applied to it.

Nothing here performs I/O; the session and scheduler own persistence and only
ever swap one ``DraftState`` for the next.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from inspection_sync.models.entities import InspectionStatus
from inspection_sync.schemas.inspection import (
    InspectionPayload,
    PhotoRecord,
    ResponseCounts,
    ResponseEntry,
    ResponseUpdate,
)
from inspection_sync.schemas.template import InspectionTemplateRead


@dataclass(frozen=True)
class DraftState:
    facility_id: str
    account_id: str
    user_id: str
    responses: tuple[ResponseEntry, ...]
    general_comments: str = ""
    remote_id: str | None = None
    status: InspectionStatus = InspectionStatus.draft
    dirty: bool = False
    revision: int = 0
    last_saved_at: datetime | None = None
    facility_name: str | None = None
    team_number: int = 1

    @property
    def is_completed(self) -> bool:
        return self.status == InspectionStatus.completed

    def response(self, question_id: str) -> ResponseEntry | None:
        return next((r for r in self.responses if r.question_id == question_id), None)


def fresh_response(question_id: str) -> ResponseEntry:
    return ResponseEntry(question_id=question_id)


def build_fresh_responses(template: InspectionTemplateRead) -> tuple[ResponseEntry, ...]:
    return tuple(fresh_response(question_id) for question_id in template.question_ids)


def align_responses(
    template: InspectionTemplateRead,
    stored: Iterable[ResponseEntry],
) -> tuple[ResponseEntry, ...]:
    """Order stored responses by the template, one per question.

    Unknown question ids are dropped, duplicates keep the first entry, and
    questions with no stored entry start fresh. Comment-only questions lose
    any answer they were persisted with.
    """
    by_question: dict[str, ResponseEntry] = {}
    for entry in stored:
        by_question.setdefault(entry.question_id, entry)

    aligned: list[ResponseEntry] = []
    for question in template.questions:
        entry = by_question.get(question.id) or fresh_response(question.id)
        if question.type == "comment" and entry.answer is not None:
            entry = entry.model_copy(update={"answer": None, "flagged": False})
        aligned.append(entry)
    return tuple(aligned)


def apply_mutation(
    state: DraftState,
    template: InspectionTemplateRead,
    question_id: str,
    update: ResponseUpdate,
) -> DraftState:
    if state.is_completed:
        raise ValueError("Completed inspections cannot be modified")
    question = template.question(question_id)
    if question is None:
        raise LookupError(f"Question '{question_id}' is not part of the template")

    changes = {name: getattr(update, name) for name in update.model_fields_set}
    if question.type == "comment":
        changes.pop("answer", None)
    for text_field in ("comments", "action_notes"):
        if text_field in changes and changes[text_field] is None:
            changes[text_field] = ""
    if "action_required" in changes and changes["action_required"] is None:
        changes.pop("action_required")

    responses = []
    for entry in state.responses:
        if entry.question_id == question_id:
            entry = entry.model_copy(update=changes)
            if "answer" in changes:
                entry = entry.model_copy(update={"flagged": entry.answer == "no"})
        responses.append(entry)
    return _touched(state, responses=tuple(responses))


def set_general_comments(state: DraftState, text: str) -> DraftState:
    if state.is_completed:
        raise ValueError("Completed inspections cannot be modified")
    return _touched(state, general_comments=text or "")


def attach_photos(state: DraftState, question_id: str, photos: list[PhotoRecord]) -> DraftState:
    responses = tuple(
        entry.model_copy(update={"photos": [*entry.photos, *photos]})
        if entry.question_id == question_id
        else entry
        for entry in state.responses
    )
    return _touched(state, responses=responses)


def detach_photo(state: DraftState, question_id: str, photo_id: str) -> DraftState:
    responses = tuple(
        entry.model_copy(update={"photos": [p for p in entry.photos if p.id != photo_id]})
        if entry.question_id == question_id
        else entry
        for entry in state.responses
    )
    return _touched(state, responses=responses)


def with_photos(state: DraftState, photos: Iterable[PhotoRecord]) -> DraftState:
    """Replace every response's photo list with the catalogued rows."""
    by_question: dict[str, list[PhotoRecord]] = {}
    for photo in photos:
        by_question.setdefault(photo.question_id, []).append(photo)
    responses = tuple(
        entry.model_copy(update={"photos": by_question.get(entry.question_id, [])})
        for entry in state.responses
    )
    return replace(state, responses=responses)


def auto_fill_required(
    state: DraftState,
    template: InspectionTemplateRead,
) -> DraftState:
    responses = []
    for entry in state.responses:
        question = template.question(entry.question_id)
        if question is not None and not question.is_optional:
            entry = entry.model_copy(update={"answer": "yes", "flagged": False, "action_required": False})
        responses.append(entry)
    return _touched(state, responses=tuple(responses))


def compute_counts(responses: Iterable[ResponseEntry]) -> ResponseCounts:
    entries = list(responses)
    return ResponseCounts(
        flagged_count=sum(1 for entry in entries if entry.answer == "no"),
        actions_count=sum(1 for entry in entries if entry.action_required),
    )


def build_payload(
    state: DraftState,
    *,
    template_id: str | None,
    inspector_name: str,
    now: datetime,
    status: InspectionStatus = InspectionStatus.draft,
    signature_data: str | None = None,
) -> InspectionPayload:
    counts = compute_counts(state.responses)
    return InspectionPayload(
        facility_id=state.facility_id,
        account_id=state.account_id,
        user_id=state.user_id,
        team_number=state.team_number,
        template_id=template_id,
        inspector_name=inspector_name,
        conducted_at=now,
        responses=[entry.persisted() for entry in state.responses],
        general_comments=state.general_comments,
        signature_data=signature_data if status == InspectionStatus.completed else None,
        status=status,
        flagged_items_count=counts.flagged_count,
        actions_count=counts.actions_count,
        updated_at=now,
    )


def _touched(state: DraftState, **changes) -> DraftState:
    return replace(state, dirty=True, revision=state.revision + 1, **changes)


class DraftCell:
    """The single mutable reference to the current draft state for one session."""

    def __init__(self, state: DraftState) -> None:
        self.state = state

    def update(self, **changes) -> DraftState:
        self.state = replace(self.state, **changes)
        return self.state
