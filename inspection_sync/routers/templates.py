from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from inspection_sync.core.database import get_db
from inspection_sync.models.entities import User
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services import auth as auth_service
from inspection_sync.services import templates as template_service

router = APIRouter()


@router.get("/{name}", response_model=InspectionTemplateRead)
def get_template(
    name: str,
    db: Session = Depends(get_db),
    _: User = Depends(auth_service.get_current_active_user),
) -> InspectionTemplateRead:
    if template_service.get_template_by_name(db, name) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    result = template_service.load_template(db, name)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error.message)
    return result.value
