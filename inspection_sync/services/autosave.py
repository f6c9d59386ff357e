"""
Debounced persistence of the working draft.

Every mutation re-arms one timer; when it fires the full current state is
written to the draft repository and, whatever the outcome, to the local
cache. Lifecycle suspend signals flush to the local cache synchronously.
"""
from __future__ import annotations

import logging
from datetime import datetime

from inspection_sync.schemas.inspection import InspectionPayload, InspectionRecord, LocalSnapshot
from inspection_sync.services.clock import Cancel, Clock, Scheduler
from inspection_sync.services.draft_state import DraftCell, DraftState, build_payload
from inspection_sync.services.drafts import DraftRepository
from inspection_sync.services.lifecycle import LifecycleBus, LifecycleEvent
from inspection_sync.services.local_cache import LocalCache, snapshot_key
from inspection_sync.services.results import ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_DELAY = 30.0
SAVE_FAILED_MESSAGE = "Failed to save inspection. Your progress has been saved locally."


class AutoSaveScheduler:
    def __init__(
        self,
        cell: DraftCell,
        *,
        repository: DraftRepository,
        cache: LocalCache,
        clock: Clock,
        scheduler: Scheduler,
        template_id: str | None,
        inspector_name: str = "Draft",
        delay: float = DEFAULT_AUTOSAVE_DELAY,
        retry_on_failure: bool = True,
        lifecycle: LifecycleBus | None = None,
    ) -> None:
        self.cell = cell
        self.repository = repository
        self.cache = cache
        self.clock = clock
        self.scheduler = scheduler
        self.template_id = template_id
        self.inspector_name = inspector_name
        self.delay = delay
        self.retry_on_failure = retry_on_failure
        self.save_attempts = 0
        self._cancel_timer: Cancel | None = None
        self._unsubscribe = lifecycle.subscribe(self.handle_lifecycle) if lifecycle else None

    @property
    def pending(self) -> bool:
        return self._cancel_timer is not None

    @property
    def cache_key(self) -> str:
        state = self.cell.state
        return snapshot_key(state.facility_id, state.user_id)

    def notify_mutation(self) -> None:
        """Mark the draft dirty and restart the debounce window."""
        if self.cell.state.is_completed:
            return
        if not self.cell.state.dirty:
            self.cell.update(dirty=True)
        self._arm()

    async def flush(self) -> bool:
        """One auto-save cycle. Failures are logged and left for the next cycle."""
        state = self.cell.state
        if state.is_completed:
            return False
        now = self.clock.now()
        self.save_attempts += 1
        try:
            record = await self._write_remote(state, self._payload(state, now))
        except Exception:  # noqa: BLE001
            logger.exception("Auto-save failed for facility %s", state.facility_id)
            self.write_local()
            if self.retry_on_failure and not self.pending and not self.cell.state.is_completed:
                self._arm()
            return False

        self._record_success(state, record, now)
        # A clean snapshot carries the write time so it ties with the remote record.
        self.write_local(timestamp=None if self.cell.state.dirty else now)
        logger.info(
            "Auto-save completed for facility %s (%s responses)",
            state.facility_id,
            len(state.responses),
        )
        return True

    async def save_draft(self) -> Result[DraftState]:
        """User-triggered save; reports the outcome instead of swallowing it."""
        state = self.cell.state
        if state.is_completed:
            return Result.failure(ErrorKind.already_completed, "Inspection is already completed")
        had_remote = state.remote_id is not None
        now = self.clock.now()
        self.save_attempts += 1
        try:
            record = await self._write_remote(state, self._payload(state, now))
        except Exception:  # noqa: BLE001
            logger.exception("Draft save failed for facility %s", state.facility_id)
            self.write_local()
            return Result.failure(ErrorKind.save, SAVE_FAILED_MESSAGE)

        self._record_success(state, record, now)
        self.delete_local()
        if not had_remote:
            await self._resolve_remote_id()
        logger.info("Draft saved for facility %s as %s", state.facility_id, self.cell.state.remote_id)
        return Result.success(self.cell.state)

    def write_local(self, timestamp: datetime | None = None) -> None:
        state = self.cell.state
        snapshot = LocalSnapshot(
            responses=list(state.responses),
            general_comments=state.general_comments,
            facility_id=state.facility_id,
            facility_name=state.facility_name,
            timestamp=timestamp or self.clock.now(),
            user_id=state.user_id,
            account_id=state.account_id,
        )
        try:
            self.cache.set(self.cache_key, snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to save local snapshot for facility %s", state.facility_id)

    def delete_local(self) -> None:
        try:
            self.cache.delete(self.cache_key)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to clear local snapshot for facility %s", self.cell.state.facility_id)

    def handle_lifecycle(self, event: LifecycleEvent) -> None:
        if event == LifecycleEvent.suspend:
            if self.cell.state.dirty and not self.cell.state.is_completed:
                logger.info("Suspend signal, saving facility %s locally", self.cell.state.facility_id)
                self.write_local()
        elif event == LifecycleEvent.terminate:
            if self.cell.state.dirty and not self.cell.state.is_completed:
                logger.info("Teardown signal, saving facility %s locally", self.cell.state.facility_id)
                self.write_local()
            self.cancel()
        else:
            logger.debug("Resume signal for facility %s", self.cell.state.facility_id)

    def cancel(self) -> None:
        if self._cancel_timer is not None:
            self._cancel_timer()
            self._cancel_timer = None

    def close(self) -> None:
        self.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _arm(self) -> None:
        self.cancel()
        self._cancel_timer = self.scheduler.after(self.delay, self._on_timer)

    async def _on_timer(self) -> None:
        self._cancel_timer = None
        await self.flush()

    def _payload(self, state: DraftState, now: datetime) -> InspectionPayload:
        # Counts are rebuilt from the responses on every write.
        return build_payload(
            state,
            template_id=self.template_id,
            inspector_name=self.inspector_name,
            now=now,
        )

    async def _write_remote(self, state: DraftState, payload: InspectionPayload) -> InspectionRecord:
        remote_id = self.cell.state.remote_id or state.remote_id
        if remote_id:
            return await self.repository.update(remote_id, payload)
        return await self.repository.create(payload)

    def _record_success(self, saved: DraftState, record: InspectionRecord, now: datetime) -> None:
        current = self.cell.state
        changes: dict = {"last_saved_at": now}
        if current.remote_id is None:
            changes["remote_id"] = record.id
        if current.revision == saved.revision:
            changes["dirty"] = False
        self.cell.update(**changes)

    async def _resolve_remote_id(self) -> None:
        state = self.cell.state
        try:
            record = await self.repository.find_draft_for_facility(state.facility_id, state.account_id)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to reload draft for facility %s", state.facility_id)
            return
        if record is None:
            return
        if state.remote_id is None:
            self.cell.update(remote_id=record.id)
        elif record.id != state.remote_id:
            # The id issued by the first write is kept for the life of the draft.
            logger.warning(
                "Latest draft %s for facility %s differs from saved draft %s",
                record.id,
                state.facility_id,
                state.remote_id,
            )
