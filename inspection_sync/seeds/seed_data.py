from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from inspection_sync.core.config import settings
from inspection_sync.core.database import SessionLocal
from inspection_sync.core.security import get_password_hash
from inspection_sync.models.entities import Account, Facility, InspectionTemplate, User, UserSignature

DEFAULT_ACCOUNT = {"company_name": "Acme Midstream", "logo_url": None}

DEFAULT_USERS = [
    {
        "email": "inspector@example.com",
        "full_name": "Inspector One",
        "password": "inspectorpass",
        "signature": "Inspector One",
    },
    {
        "email": "trainee@example.com",
        "full_name": "Trainee Inspector",
        "password": "traineepass",
        "signature": None,
    },
]

DEFAULT_FACILITIES = ["North Tank Battery", "Compressor Station 7"]

SPCC_QUESTIONS: list[dict[str, Any]] = [
    {
        "id": "q1",
        "text": (
            "Are drains, dumps, drip pans, compressor rails and secondary containment "
            "free of accumulation of oil and water?"
        ),
        "category": "Audit",
    },
    {"id": "q2", "text": "Are valves free of signs of corrosion, leaks, or improper operation?", "category": "Audit"},
    {"id": "q3", "text": "Are tanks properly vented?", "category": "Audit"},
    {
        "id": "q4",
        "text": "Is equipment free of visible signs of corrosion, damaged paint, or leaks?",
        "category": "Audit",
    },
    {
        "id": "q5",
        "text": "Are piping, flanges, and joints free of visible signs of corrosion, damaged paint, or leaks?",
        "category": "Audit",
    },
    {
        "id": "q6",
        "text": "Is secondary containment free of visible signs of cracks, low spots, holes, animal burrows or erosion?",
        "category": "Audit",
    },
    {
        "id": "q7",
        "text": (
            "If the flow through process vessel does NOT have sized secondary containment, is the vessel "
            "or its components free of visible signs of corrosion, leaks, or defects?"
        ),
        "category": "Audit",
    },
    {
        "id": "q8",
        "text": "Does all applicable oil filled containers have properly sized secondary containment?",
        "category": "Audit",
    },
    {"id": "q9", "text": "Are all on-site storage containers and equipment properly labeled?", "category": "Audit"},
    {
        "id": "q10",
        "text": "Any comments, findings or important information can be entered below?",
        "category": "General",
        "type": "comment",
        "optional": True,
    },
]

# Placeholder signature image (1x1 transparent PNG).
_SIGNATURE_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def _get_or_create_account(db: Session) -> Account:
    account = db.query(Account).filter(Account.company_name == DEFAULT_ACCOUNT["company_name"]).first()
    if account:
        return account
    account = Account(**DEFAULT_ACCOUNT)
    db.add(account)
    db.flush()
    return account


def _get_or_create_user(
    db: Session,
    account: Account,
    *,
    email: str,
    full_name: str,
    password: str,
    signature: str | None,
) -> None:
    if db.query(User).filter(User.email == email).first():
        return

    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(password),
        account_id=account.id,
    )
    db.add(user)
    db.flush()
    if signature:
        db.add(
            UserSignature(
                user_id=user.id,
                account_id=account.id,
                inspector_name=signature,
                signature_data=_SIGNATURE_PNG,
            )
        )


def _ensure_facilities(db: Session, account: Account) -> None:
    for name in DEFAULT_FACILITIES:
        exists = db.query(Facility).filter(Facility.account_id == account.id, Facility.name == name).first()
        if not exists:
            db.add(Facility(account_id=account.id, name=name))


def _ensure_template(db: Session, *, name: str, questions: list[dict[str, Any]]) -> None:
    """Idempotently create the checklist template."""
    if db.query(InspectionTemplate).filter(InspectionTemplate.name == name).first():
        return
    db.add(InspectionTemplate(name=name, questions=questions))


def seed_initial_data() -> None:
    db = SessionLocal()
    try:
        account = _get_or_create_account(db)
        for user_config in DEFAULT_USERS:
            _get_or_create_user(db, account, **user_config)
        _ensure_facilities(db, account)
        _ensure_template(db, name=settings.inspection_template_name, questions=SPCC_QUESTIONS)
        db.commit()
    finally:
        db.close()
