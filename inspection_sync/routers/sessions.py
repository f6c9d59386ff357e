from __future__ import annotations

import logging
from typing import List, NoReturn

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from inspection_sync.models.entities import User
from inspection_sync.schemas.inspection import ResponseEntry, ResponseUpdate
from inspection_sync.schemas.session import (
    CommentsUpdate,
    CompleteRequest,
    LifecycleRequest,
    PhotoBatchRead,
    SessionOpen,
    SessionView,
)
from inspection_sync.services import auth as auth_service
from inspection_sync.services.lifecycle import event_for_signal
from inspection_sync.services.photos import PhotoUpload
from inspection_sync.services.results import EngineError, ErrorKind
from inspection_sync.services.sessions import InspectionSession, SessionRegistry, get_session_registry

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.already_completed: status.HTTP_409_CONFLICT,
    ErrorKind.cancelled: status.HTTP_409_CONFLICT,
    ErrorKind.no_remote_draft: status.HTTP_409_CONFLICT,
    ErrorKind.incomplete_answers: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.signature_required: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.capacity: status.HTTP_400_BAD_REQUEST,
    ErrorKind.upload: status.HTTP_400_BAD_REQUEST,
    ErrorKind.load: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.save: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.photo_delete: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _raise_for(error: EngineError) -> NoReturn:
    raise HTTPException(
        status_code=ERROR_STATUS.get(error.kind, status.HTTP_400_BAD_REQUEST),
        detail={"kind": error.kind.value, "message": error.message},
    )


def _view(session: InspectionSession) -> SessionView:
    state = session.state
    outcome = session.outcome
    return SessionView(
        facility=session.facility,
        template_id=session.template.id,
        template_name=session.template.name,
        remote_id=state.remote_id,
        status=state.status,
        dirty=state.dirty,
        autosave_pending=bool(session.autosave and session.autosave.pending),
        last_saved_at=state.last_saved_at,
        source=outcome.source if outcome else None,
        remote_error=outcome.remote_error if outcome else None,
        responses=list(state.responses),
        general_comments=state.general_comments,
        counts=session.counts,
        has_signature=session.signature is not None,
        branding=session.branding,
    )


def _get_session_or_404(registry: SessionRegistry, facility_id: str, user: User) -> InspectionSession:
    session = registry.get(facility_id, user.id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No open session for this facility")
    return session


# Handlers stay async: auto-save timers are armed on the running event loop.
@router.post("/", response_model=SessionView)
async def open_session(
    payload: SessionOpen,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    result = await registry.open(
        facility_id=payload.facility_id,
        user_id=current_user.id,
        account_id=current_user.effective_account_id,
        team_number=current_user.team_number,
    )
    if not result.ok:
        _raise_for(result.error)
    return _view(result.value)


@router.get("/{facility_id}", response_model=SessionView)
async def read_session(
    facility_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    return _view(_get_session_or_404(registry, facility_id, current_user))


@router.delete("/{facility_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    facility_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> Response:
    if not registry.close(facility_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No open session for this facility")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{facility_id}/responses/{question_id}", response_model=ResponseEntry)
async def update_response(
    facility_id: str,
    question_id: str,
    payload: ResponseUpdate,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> ResponseEntry:
    session = _get_session_or_404(registry, facility_id, current_user)
    result = session.update_response(question_id, payload)
    if not result.ok:
        _raise_for(result.error)
    return result.value


@router.put("/{facility_id}/comments", response_model=SessionView)
async def update_general_comments(
    facility_id: str,
    payload: CommentsUpdate,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    session = _get_session_or_404(registry, facility_id, current_user)
    result = session.set_general_comments(payload.general_comments)
    if not result.ok:
        _raise_for(result.error)
    return _view(session)


@router.post("/{facility_id}/save", response_model=SessionView)
async def save_draft(
    facility_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    session = _get_session_or_404(registry, facility_id, current_user)
    result = await session.save_draft()
    if not result.ok:
        _raise_for(result.error)
    return _view(session)


@router.post("/{facility_id}/complete", response_model=SessionView)
async def complete_inspection(
    facility_id: str,
    payload: CompleteRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    session = _get_session_or_404(registry, facility_id, current_user)
    pending_prompts: list[str] = []

    def confirm(prompt: str) -> bool:
        if payload.confirm_auto_fill is None:
            pending_prompts.append(prompt)
            return False
        return payload.confirm_auto_fill

    result = await session.complete(confirm)
    if not result.ok:
        if pending_prompts:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"kind": "confirmation_required", "message": pending_prompts[0]},
            )
        _raise_for(result.error)
    return _view(session)


@router.post("/{facility_id}/lifecycle", response_model=SessionView)
async def lifecycle_signal(
    facility_id: str,
    payload: LifecycleRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> SessionView:
    session = _get_session_or_404(registry, facility_id, current_user)
    try:
        event = event_for_signal(payload.signal)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    session.emit(event)
    return _view(session)


@router.post("/{facility_id}/responses/{question_id}/photos", response_model=PhotoBatchRead)
async def upload_photos(
    facility_id: str,
    question_id: str,
    files: List[UploadFile] = File(...),
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> PhotoBatchRead:
    session = _get_session_or_404(registry, facility_id, current_user)
    uploads = [PhotoUpload(file_name=upload.filename or "photo.jpg", content=await upload.read()) for upload in files]
    result = await session.upload_photos(question_id, uploads)
    if not result.ok:
        _raise_for(result.error)
    return PhotoBatchRead.model_validate(result.value)


@router.delete(
    "/{facility_id}/responses/{question_id}/photos/{photo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_photo(
    facility_id: str,
    question_id: str,
    photo_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> Response:
    session = _get_session_or_404(registry, facility_id, current_user)
    result = await session.delete_photo(question_id, photo_id)
    if not result.ok:
        _raise_for(result.error)
    if result.warning is not None:
        logger.warning("Photo %s removed but its file was kept: %s", photo_id, result.warning.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
