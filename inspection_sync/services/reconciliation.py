from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from inspection_sync.schemas.inspection import InspectionRecord, LocalSnapshot, PhotoRecord, ResponseEntry
from inspection_sync.schemas.template import InspectionTemplateRead
from inspection_sync.services.draft_state import align_responses, build_fresh_responses
from inspection_sync.services.drafts import DraftRepository
from inspection_sync.services.local_cache import LocalCache, snapshot_key

logger = logging.getLogger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"
SOURCE_FRESH = "fresh"


@dataclass(frozen=True)
class ReconcileOutcome:
    responses: tuple[ResponseEntry, ...]
    general_comments: str
    remote_id: str | None
    dirty: bool
    source: str
    remote_error: str | None = None


def load_local_snapshot(
    cache: LocalCache,
    key: str,
    *,
    now: datetime,
    ttl: timedelta,
) -> LocalSnapshot | None:
    """Return the cached snapshot unless it has expired, deleting stale ones."""
    try:
        snapshot = cache.get(key)
        if snapshot is None:
            return None
        age = now - snapshot.timestamp
        if age >= ttl:
            logger.info("Discarding expired local snapshot %s (age %s)", key, age)
            cache.delete(key)
            return None
        logger.info("Found local snapshot %s (age %ss)", key, round(age.total_seconds()))
        return snapshot
    except Exception:  # noqa: BLE001
        logger.exception("Failed to check local snapshot %s", key)
        return None


async def reconcile(
    *,
    template: InspectionTemplateRead,
    repository: DraftRepository,
    cache: LocalCache,
    facility_id: str,
    account_id: str,
    user_id: str,
    now: datetime,
    ttl: timedelta = timedelta(hours=24),
) -> ReconcileOutcome:
    """Pick the working draft from the remote record, the local backup, or neither."""
    key = snapshot_key(facility_id, user_id)
    remote: InspectionRecord | None = None
    remote_error: str | None = None
    try:
        remote = await repository.find_draft_for_facility(facility_id, account_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to load remote draft for facility %s", facility_id)
        remote_error = str(exc) or exc.__class__.__name__

    local = load_local_snapshot(cache, key, now=now, ttl=ttl)

    if remote is not None and local is not None:
        if local.timestamp > remote.updated_at:
            logger.info("Using local snapshot for facility %s (newer than remote draft)", facility_id)
            return ReconcileOutcome(
                responses=align_responses(template, local.responses),
                general_comments=local.general_comments,
                remote_id=remote.id,
                dirty=True,
                source=SOURCE_LOCAL,
            )
        logger.info("Using remote draft for facility %s (newer than local snapshot)", facility_id)
        _delete_quietly(cache, key)
        return _from_remote(template, remote)

    if remote is not None:
        logger.info("Loading remote draft %s for facility %s", remote.id, facility_id)
        return _from_remote(template, remote)

    if local is not None:
        logger.info("Loading local snapshot for facility %s (no remote draft)", facility_id)
        return ReconcileOutcome(
            responses=align_responses(template, local.responses),
            general_comments=local.general_comments,
            remote_id=None,
            dirty=True,
            source=SOURCE_LOCAL,
            remote_error=remote_error,
        )

    return ReconcileOutcome(
        responses=build_fresh_responses(template),
        general_comments="",
        remote_id=None,
        dirty=False,
        source=SOURCE_FRESH,
        remote_error=remote_error,
    )


async def load_photos(repository: DraftRepository, remote_id: str) -> list[PhotoRecord] | None:
    """Photo rows are authoritative for attachments; ``None`` means keep what we have."""
    try:
        return await repository.list_photos(remote_id)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load photos for inspection %s", remote_id)
        return None


def _from_remote(template: InspectionTemplateRead, remote: InspectionRecord) -> ReconcileOutcome:
    return ReconcileOutcome(
        responses=align_responses(template, remote.responses),
        general_comments=remote.general_comments,
        remote_id=remote.id,
        dirty=False,
        source=SOURCE_REMOTE,
    )


def _delete_quietly(cache: LocalCache, key: str) -> None:
    try:
        cache.delete(key)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to clear local snapshot %s", key)
