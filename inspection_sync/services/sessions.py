from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from inspection_sync.core.config import Settings
from inspection_sync.schemas.account import BrandingRead, FacilityRead, SignatureRead
from inspection_sync.schemas.inspection import ResponseCounts, ResponseEntry, ResponseUpdate
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services import accounts as accounts_service
from inspection_sync.services import templates as templates_service
from inspection_sync.services.autosave import DEFAULT_AUTOSAVE_DELAY, AutoSaveScheduler
from inspection_sync.services.clock import AsyncioScheduler, Clock, Scheduler, SystemClock
from inspection_sync.services.completion import ConfirmPrompt, complete_inspection
from inspection_sync.services.draft_state import (
    DraftCell,
    DraftState,
    apply_mutation,
    attach_photos,
    compute_counts,
    detach_photo,
    set_general_comments,
    with_photos,
)
from inspection_sync.services.drafts import DraftRepository, SqlDraftRepository
from inspection_sync.services.lifecycle import LifecycleBus, LifecycleEvent
from inspection_sync.services.local_cache import FileLocalCache, LocalCache
from inspection_sync.services.photos import (
    JPEG_QUALITY,
    MAX_DIMENSION,
    MAX_PHOTO_BYTES,
    MAX_PHOTOS_PER_RESPONSE,
    BlobStorage,
    LocalBlobStorage,
    PhotoBatch,
    PhotoPipeline,
    PhotoUpload,
)
from inspection_sync.services.reconciliation import ReconcileOutcome, load_photos, reconcile
from inspection_sync.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionConfig:
    autosave_delay: float = DEFAULT_AUTOSAVE_DELAY
    retry_on_failure: bool = True
    snapshot_ttl: timedelta = timedelta(hours=24)
    max_photos: int = MAX_PHOTOS_PER_RESPONSE
    max_dimension: int = MAX_DIMENSION
    jpeg_quality: int = JPEG_QUALITY
    max_photo_bytes: int = MAX_PHOTO_BYTES

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfig":
        return cls(
            autosave_delay=settings.autosave_delay_seconds,
            retry_on_failure=settings.autosave_retry_on_failure,
            snapshot_ttl=timedelta(hours=settings.local_snapshot_ttl_hours),
            max_photos=settings.max_photos_per_response,
            max_dimension=settings.photo_max_dimension,
            jpeg_quality=settings.photo_jpeg_quality,
            max_photo_bytes=settings.photo_max_bytes,
        )


class InspectionSession:
    """One inspector editing one facility's draft.

    The rendering layer dispatches intents to this object and reads
    ``state``; persistence, reconciliation and attachments stay behind it.
    """

    def __init__(
        self,
        *,
        template: InspectionTemplateRead,
        facility: FacilityRead,
        user_id: str,
        account_id: str,
        repository: DraftRepository,
        cache: LocalCache,
        clock: Clock,
        scheduler: Scheduler,
        storage: BlobStorage,
        team_number: int = 1,
        signature: SignatureRead | None = None,
        branding: BrandingRead | None = None,
        config: SessionConfig | None = None,
        lifecycle: LifecycleBus | None = None,
    ) -> None:
        self.template = template
        self.facility = facility
        self.user_id = user_id
        self.account_id = account_id
        self.team_number = team_number
        self.repository = repository
        self.cache = cache
        self.clock = clock
        self.scheduler = scheduler
        self.signature = signature
        self.branding = branding or BrandingRead()
        self.config = config or SessionConfig()
        self.lifecycle = lifecycle or LifecycleBus()
        self.photos = PhotoPipeline(
            repository,
            storage,
            clock,
            max_photos=self.config.max_photos,
            max_dimension=self.config.max_dimension,
            quality=self.config.jpeg_quality,
            max_bytes=self.config.max_photo_bytes,
        )
        self.cell: DraftCell | None = None
        self.autosave: AutoSaveScheduler | None = None
        self.outcome: ReconcileOutcome | None = None
        self.closed = False
        self._saved_listeners: list[Callable[[], None]] = []
        self._completed_listeners: list[Callable[[FacilityRead], None]] = []

    @property
    def state(self) -> DraftState:
        if self.cell is None:
            raise RuntimeError("Session has not been opened")
        return self.cell.state

    @property
    def counts(self) -> ResponseCounts:
        return compute_counts(self.state.responses)

    def on_saved(self, listener: Callable[[], None]) -> None:
        self._saved_listeners.append(listener)

    def on_inspection_completed_with_facility(self, listener: Callable[[FacilityRead], None]) -> None:
        self._completed_listeners.append(listener)

    async def open(self) -> ReconcileOutcome:
        outcome = await reconcile(
            template=self.template,
            repository=self.repository,
            cache=self.cache,
            facility_id=self.facility.id,
            account_id=self.account_id,
            user_id=self.user_id,
            now=self.clock.now(),
            ttl=self.config.snapshot_ttl,
        )
        state = DraftState(
            facility_id=self.facility.id,
            account_id=self.account_id,
            user_id=self.user_id,
            responses=outcome.responses,
            general_comments=outcome.general_comments,
            remote_id=outcome.remote_id,
            dirty=outcome.dirty,
            facility_name=self.facility.name,
            team_number=self.team_number,
        )
        if outcome.remote_id:
            photos = await load_photos(self.repository, outcome.remote_id)
            if photos is not None:
                state = with_photos(state, photos)

        self.cell = DraftCell(state)
        self.autosave = AutoSaveScheduler(
            self.cell,
            repository=self.repository,
            cache=self.cache,
            clock=self.clock,
            scheduler=self.scheduler,
            template_id=self.template.id,
            inspector_name=self.signature.inspector_name if self.signature else "Draft",
            delay=self.config.autosave_delay,
            retry_on_failure=self.config.retry_on_failure,
            lifecycle=self.lifecycle,
        )
        if state.dirty:
            # Restored local work still has to reach the repository.
            self.autosave.notify_mutation()
        self.outcome = outcome
        logger.info(
            "Opened inspection session for facility %s (source=%s, remote_id=%s)",
            self.facility.id,
            outcome.source,
            outcome.remote_id,
        )
        return outcome

    def update_response(self, question_id: str, update: ResponseUpdate) -> Result[ResponseEntry]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        try:
            self.cell.state = apply_mutation(self.state, self.template, question_id, update)
        except LookupError as exc:
            return Result.failure(ErrorKind.not_found, str(exc))
        self.autosave.notify_mutation()
        return Result.success(self.state.response(question_id))

    def set_general_comments(self, text: str) -> Result[DraftState]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        self.cell.state = set_general_comments(self.state, text)
        self.autosave.notify_mutation()
        return Result.success(self.state)

    async def save_draft(self) -> Result[DraftState]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        return await self.autosave.save_draft()

    async def complete(self, confirm: ConfirmPrompt) -> Result[DraftState]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        result = await complete_inspection(self.autosave, self.template, self.signature, confirm)
        if result.ok:
            self._notify_completed()
            self.close()
        return result

    async def upload_photos(self, question_id: str, files: list[PhotoUpload]) -> Result[PhotoBatch]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        entry = self.state.response(question_id)
        if entry is None:
            return Result.failure(ErrorKind.not_found, f"Question '{question_id}' is not part of the template")
        result = await self.photos.upload(self.state.remote_id, question_id, len(entry.photos), files)
        if result.ok:
            self.cell.state = attach_photos(self.state, question_id, result.value.attached)
            self.autosave.notify_mutation()
        return result

    async def delete_photo(self, question_id: str, photo_id: str) -> Result[None]:
        blocked = self._guard()
        if blocked is not None:
            return blocked
        entry = self.state.response(question_id)
        photo = next((p for p in entry.photos if p.id == photo_id), None) if entry else None
        if photo is None:
            return Result.failure(ErrorKind.not_found, "Photo not found")
        result = await self.photos.delete(photo)
        if result.ok:
            self.cell.state = detach_photo(self.state, question_id, photo_id)
            self.autosave.notify_mutation()
        return result

    def emit(self, event: LifecycleEvent) -> None:
        self.lifecycle.emit(event)

    def close(self) -> None:
        """Tear the session down, flushing unsaved work to the local cache."""
        if self.closed:
            return
        self.closed = True
        if self.autosave is not None:
            self.lifecycle.emit(LifecycleEvent.terminate)
            self.autosave.close()

    def _guard(self) -> Result | None:
        if self.cell is None or self.autosave is None:
            return Result.failure(ErrorKind.not_found, "Session has not been opened")
        if self.state.is_completed:
            return Result.failure(ErrorKind.already_completed, "Inspection is already completed")
        if self.closed:
            return Result.failure(ErrorKind.not_found, "Session is closed")
        return None

    def _notify_completed(self) -> None:
        for listener in list(self._completed_listeners):
            try:
                listener(self.facility)
            except Exception:  # noqa: BLE001
                logger.exception("Completion listener failed for facility %s", self.facility.id)
        for listener in list(self._saved_listeners):
            try:
                listener()
            except Exception:  # noqa: BLE001
                logger.exception("Saved listener failed for facility %s", self.facility.id)


class SessionRegistry:
    """Live editing sessions inside the service, one per (facility, user)."""

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        repository: DraftRepository,
        cache: LocalCache,
        storage: BlobStorage,
        clock: Clock,
        scheduler: Scheduler,
        template_name: str,
        config: SessionConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.repository = repository
        self.cache = cache
        self.storage = storage
        self.clock = clock
        self.scheduler = scheduler
        self.template_name = template_name
        self.config = config or SessionConfig()
        self._sessions: dict[tuple[str, str], InspectionSession] = {}

    def get(self, facility_id: str, user_id: str) -> InspectionSession | None:
        return self._sessions.get((facility_id, user_id))

    async def open(
        self,
        *,
        facility_id: str,
        user_id: str,
        account_id: str,
        team_number: int = 1,
    ) -> Result[InspectionSession]:
        key = (facility_id, user_id)
        existing = self._sessions.get(key)
        if existing is not None:
            return Result.success(existing)

        with self.session_factory() as db:
            facility = accounts_service.get_facility(db, facility_id, account_id)
            if facility is None:
                return Result.failure(ErrorKind.not_found, "Facility not found")
            template_result = templates_service.load_template(db, self.template_name)
            if not template_result.ok:
                return Result(error=template_result.error)
            signature = accounts_service.load_signature(db, account_id=account_id, user_id=user_id)
            branding = accounts_service.load_branding(db, account_id)
            facility_view = FacilityRead.model_validate(facility)

        session = InspectionSession(
            template=template_result.value,
            facility=facility_view,
            user_id=user_id,
            account_id=account_id,
            team_number=team_number,
            repository=self.repository,
            cache=self.cache,
            clock=self.clock,
            scheduler=self.scheduler,
            storage=self.storage,
            signature=signature,
            branding=branding,
            config=self.config,
        )
        session.on_inspection_completed_with_facility(lambda _facility: self._sessions.pop(key, None))
        session.on_saved(lambda: self._mark_inspected(facility_id))
        await session.open()
        self._sessions[key] = session
        return Result.success(session)

    def close(self, facility_id: str, user_id: str) -> bool:
        session = self._sessions.pop((facility_id, user_id), None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for key in list(self._sessions):
            self.close(*key)

    def _mark_inspected(self, facility_id: str) -> None:
        with self.session_factory() as db:
            accounts_service.mark_facility_inspected(db, facility_id, self.clock.now())


def build_registry(settings: Settings, session_factory: Callable[[], Session]) -> SessionRegistry:
    return SessionRegistry(
        session_factory=session_factory,
        repository=SqlDraftRepository(session_factory),
        cache=FileLocalCache(settings.local_cache_dir),
        storage=LocalBlobStorage(settings.storage_dir),
        clock=SystemClock(),
        scheduler=AsyncioScheduler(),
        template_name=settings.inspection_template_name,
        config=SessionConfig.from_settings(settings),
    )


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry
