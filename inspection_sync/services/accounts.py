from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inspection_sync.models.entities import Account, Facility, UserSignature
from inspection_sync.schemas.account import BrandingRead, SignatureRead

logger = logging.getLogger(__name__)


def get_facility(db: Session, facility_id: str, account_id: str) -> Facility | None:
    return (
        db.query(Facility)
        .filter(Facility.id == facility_id)
        .filter((Facility.account_id == account_id) | (Facility.account_id.is_(None)))
        .first()
    )


def load_signature(db: Session, *, account_id: str, user_id: str) -> SignatureRead | None:
    """Signature lookups never block editing; only completion needs one."""
    try:
        signature = (
            db.query(UserSignature)
            .filter(UserSignature.account_id == account_id, UserSignature.user_id == user_id)
            .first()
        )
    except SQLAlchemyError:
        logger.exception("Error loading signature for user %s", user_id)
        return None
    return SignatureRead.model_validate(signature) if signature else None


def load_branding(db: Session, account_id: str) -> BrandingRead:
    try:
        account = db.get(Account, account_id)
    except SQLAlchemyError:
        logger.exception("Error loading account branding for %s", account_id)
        return BrandingRead()
    return BrandingRead.model_validate(account) if account else BrandingRead()


def mark_facility_inspected(db: Session, facility_id: str, completed_at: datetime) -> None:
    facility = db.get(Facility, facility_id)
    if facility is None:
        raise ValueError("Facility not found")
    facility.last_inspection_at = completed_at
    db.commit()
