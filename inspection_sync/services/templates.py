from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inspection_sync.models.entities import InspectionTemplate
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)


def get_template_by_name(db: Session, name: str) -> InspectionTemplate | None:
    return db.query(InspectionTemplate).filter(InspectionTemplate.name == name).first()


def load_template(db: Session, name: str) -> Result[InspectionTemplateRead]:
    """Fetch and validate the checklist template; any problem is fatal to the form."""
    try:
        template = get_template_by_name(db, name)
    except SQLAlchemyError as exc:
        logger.exception("Database error loading template %r", name)
        return Result.failure(
            ErrorKind.load,
            f"Database error: {exc.__class__.__name__}. Please check your connection and try again.",
        )

    if template is None:
        logger.error("No template found for %r", name)
        return Result.failure(
            ErrorKind.load,
            "Inspection template not found. Please contact your administrator to set up the inspection template.",
        )

    try:
        parsed = InspectionTemplateRead.model_validate(template)
    except ValidationError:
        logger.exception("Template %r is empty or malformed", name)
        return Result.failure(
            ErrorKind.load,
            "Inspection template is empty or corrupted. Please contact your administrator.",
        )

    logger.info("Template %r loaded with %s questions", parsed.name, len(parsed.questions))
    return Result.success(parsed)
