from __future__ import annotations

from typing import Callable, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from inspection_sync.models.entities import Inspection, InspectionPhoto, InspectionStatus
from inspection_sync.schemas.inspection import InspectionPayload, InspectionRecord, PhotoRecord


class DraftRepository(Protocol):
    async def create(self, payload: InspectionPayload) -> InspectionRecord: ...

    async def update(self, remote_id: str, payload: InspectionPayload) -> InspectionRecord: ...

    async def find_draft_for_facility(self, facility_id: str, account_id: str) -> InspectionRecord | None: ...

    async def list_photos(self, remote_id: str) -> list[PhotoRecord]: ...

    async def insert_photo(
        self,
        *,
        remote_id: str,
        question_id: str,
        storage_path: str,
        file_name: str,
        file_size: int,
    ) -> PhotoRecord: ...

    async def delete_photo(self, photo_id: str) -> None: ...


class SqlDraftRepository:
    """Draft repository backed by the service database.

    Each call opens its own session so a failed write never leaves a dirty
    session behind for the next auto-save cycle. Queries run in the
    threadpool so pending auto-save timers keep firing.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def create(self, payload: InspectionPayload) -> InspectionRecord:
        return await run_in_threadpool(self._create, payload)

    async def update(self, remote_id: str, payload: InspectionPayload) -> InspectionRecord:
        return await run_in_threadpool(self._update, remote_id, payload)

    async def find_draft_for_facility(self, facility_id: str, account_id: str) -> InspectionRecord | None:
        return await run_in_threadpool(self._find_draft_for_facility, facility_id, account_id)

    async def list_photos(self, remote_id: str) -> list[PhotoRecord]:
        return await run_in_threadpool(self._list_photos, remote_id)

    async def insert_photo(
        self,
        *,
        remote_id: str,
        question_id: str,
        storage_path: str,
        file_name: str,
        file_size: int,
    ) -> PhotoRecord:
        return await run_in_threadpool(
            self._insert_photo,
            remote_id=remote_id,
            question_id=question_id,
            storage_path=storage_path,
            file_name=file_name,
            file_size=file_size,
        )

    async def delete_photo(self, photo_id: str) -> None:
        await run_in_threadpool(self._delete_photo, photo_id)

    def _create(self, payload: InspectionPayload) -> InspectionRecord:
        with self._session_factory() as db:
            inspection = Inspection(**_columns(payload))
            db.add(inspection)
            db.commit()
            db.refresh(inspection)
            return InspectionRecord.model_validate(inspection)

    def _update(self, remote_id: str, payload: InspectionPayload) -> InspectionRecord:
        with self._session_factory() as db:
            inspection = db.query(Inspection).filter(Inspection.id == remote_id).first()
            if inspection is None:
                raise ValueError("Inspection not found")
            if inspection.status == InspectionStatus.completed.value:
                raise ValueError("Completed inspections cannot be modified")
            if inspection.facility_id != payload.facility_id or inspection.account_id != payload.account_id:
                raise ValueError("Inspection belongs to another facility or account")
            for field, value in _columns(payload).items():
                setattr(inspection, field, value)
            db.commit()
            db.refresh(inspection)
            return InspectionRecord.model_validate(inspection)

    def _find_draft_for_facility(self, facility_id: str, account_id: str) -> InspectionRecord | None:
        with self._session_factory() as db:
            inspection = (
                db.query(Inspection)
                .filter(
                    Inspection.facility_id == facility_id,
                    Inspection.account_id == account_id,
                    Inspection.status == InspectionStatus.draft.value,
                )
                .order_by(Inspection.created_at.desc())
                .first()
            )
            return InspectionRecord.model_validate(inspection) if inspection else None

    def _list_photos(self, remote_id: str) -> list[PhotoRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(InspectionPhoto)
                .filter(InspectionPhoto.inspection_id == remote_id)
                .order_by(InspectionPhoto.created_at.asc())
                .all()
            )
            return [PhotoRecord.model_validate(row) for row in rows]

    def _insert_photo(
        self,
        *,
        remote_id: str,
        question_id: str,
        storage_path: str,
        file_name: str,
        file_size: int,
    ) -> PhotoRecord:
        with self._session_factory() as db:
            if db.get(Inspection, remote_id) is None:
                raise ValueError("Inspection not found")
            photo = InspectionPhoto(
                inspection_id=remote_id,
                question_id=question_id,
                storage_path=storage_path,
                file_name=file_name,
                file_size=file_size,
            )
            db.add(photo)
            db.commit()
            db.refresh(photo)
            return PhotoRecord.model_validate(photo)

    def _delete_photo(self, photo_id: str) -> None:
        with self._session_factory() as db:
            photo = db.get(InspectionPhoto, photo_id)
            if photo is None:
                raise ValueError("Photo not found")
            db.delete(photo)
            db.commit()


def get_inspection(db: Session, inspection_id: str, account_id: str) -> Inspection | None:
    return (
        db.query(Inspection)
        .filter(Inspection.id == inspection_id, Inspection.account_id == account_id)
        .first()
    )


def _columns(payload: InspectionPayload) -> dict:
    data = payload.model_dump()
    data["status"] = payload.status.value
    return data
