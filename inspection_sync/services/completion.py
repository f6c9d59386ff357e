from __future__ import annotations

import logging
from typing import Callable

from inspection_sync.models.entities import InspectionStatus
from inspection_sync.schemas.account import SignatureRead
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services.autosave import SAVE_FAILED_MESSAGE, AutoSaveScheduler
from inspection_sync.services.draft_state import DraftState, auto_fill_required, build_payload
from inspection_sync.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)

SIGNATURE_REQUIRED_MESSAGE = (
    "Please set up your signature before completing inspections. "
    "Your signature will be automatically applied to all inspections you complete."
)
INCOMPLETE_MESSAGE = "Please answer all required questions before completing the inspection"
AUTO_FILL_PROMPT = (
    "No questions have been answered. Do you want to complete this inspection "
    'with all questions marked as "Yes" (100% passed)?'
)

ConfirmPrompt = Callable[[str], bool]


def unanswered_required(state: DraftState, template: InspectionTemplateRead) -> tuple[list[str], list[str]]:
    """Return ``(required_ids, unanswered_required_ids)`` in template order."""
    required = [question.id for question in template.questions if not question.is_optional]
    unanswered = [
        question_id
        for question_id in required
        if (entry := state.response(question_id)) is None or not entry.is_answered
    ]
    return required, unanswered


async def complete_inspection(
    autosave: AutoSaveScheduler,
    template: InspectionTemplateRead,
    signature: SignatureRead | None,
    confirm: ConfirmPrompt,
) -> Result[DraftState]:
    """Validate and persist the one-way ``draft -> completed`` transition."""
    cell = autosave.cell
    state = cell.state
    if state.is_completed:
        return Result.failure(ErrorKind.already_completed, "Inspection is already completed")
    if signature is None:
        return Result.failure(ErrorKind.signature_required, SIGNATURE_REQUIRED_MESSAGE)

    required, unanswered = unanswered_required(state, template)
    if unanswered:
        if len(unanswered) == len(required):
            if not confirm(AUTO_FILL_PROMPT):
                logger.info("Auto-fill declined for facility %s", state.facility_id)
                return Result.failure(ErrorKind.cancelled, "Completion cancelled")
            state = auto_fill_required(state, template)
            cell.state = state
        else:
            return Result.failure(ErrorKind.incomplete_answers, INCOMPLETE_MESSAGE)

    now = autosave.clock.now()
    payload = build_payload(
        state,
        template_id=template.id,
        inspector_name=signature.inspector_name,
        now=now,
        status=InspectionStatus.completed,
        signature_data=signature.signature_data,
    )
    try:
        if state.remote_id:
            record = await autosave.repository.update(state.remote_id, payload)
        else:
            record = await autosave.repository.create(payload)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to complete inspection for facility %s", state.facility_id)
        autosave.write_local()
        return Result.failure(ErrorKind.save, SAVE_FAILED_MESSAGE)

    autosave.cancel()
    cell.update(
        status=InspectionStatus.completed,
        remote_id=state.remote_id or record.id,
        dirty=False,
        last_saved_at=now,
    )
    autosave.delete_local()
    logger.info("Inspection %s completed for facility %s", cell.state.remote_id, state.facility_id)
    return Result.success(cell.state)
