from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from inspection_sync.core.database import get_db
from inspection_sync.models.entities import Inspection, User
from inspection_sync.schemas.inspection import InspectionRecord
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services import auth as auth_service
from inspection_sync.services import reports as report_service
from inspection_sync.services.drafts import get_inspection
from inspection_sync.services.sessions import SessionRegistry, get_session_registry

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/draft", response_model=InspectionRecord)
async def get_latest_draft(
    facility_id: str = Query(..., min_length=1),
    registry: SessionRegistry = Depends(get_session_registry),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> InspectionRecord:
    try:
        record = await registry.repository.find_draft_for_facility(facility_id, current_user.effective_account_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to load draft for facility %s", facility_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Unable to load draft") from exc
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No draft for this facility")
    return record


@router.get("/{inspection_id}", response_model=InspectionRecord)
def read_inspection(
    inspection_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> InspectionRecord:
    return _get_inspection_or_404(db, inspection_id, current_user)


@router.get("/{inspection_id}/report.pdf")
def export_report(
    inspection_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_active_user),
) -> Response:
    inspection = _get_inspection_or_404(db, inspection_id, current_user)
    template = InspectionTemplateRead.model_validate(inspection.template) if inspection.template else None
    try:
        summary = report_service.build_inspection_summary(inspection, template)
    except ValueError as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    pdf_bytes = report_service.render_pdf(summary)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="inspection-{inspection_id}.pdf"'},
    )


def _get_inspection_or_404(db: Session, inspection_id: str, user: User) -> Inspection:
    inspection = get_inspection(db, inspection_id, user.effective_account_id)
    if not inspection:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inspection not found")
    return inspection
