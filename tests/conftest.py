from __future__ import annotations

import inspect
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure the application uses an isolated SQLite database and scratch dirs for tests
_SCRATCH_DIR = Path(tempfile.mkdtemp(prefix="inspection-sync-tests-"))
os.environ["SQLITE_URL"] = "sqlite:///./test_app.db"
os.environ["STORAGE_DIR"] = str(_SCRATCH_DIR / "uploads")
os.environ["LOCAL_CACHE_DIR"] = str(_SCRATCH_DIR / "draft_cache")
# Ensure deterministic secrets and demo data for tests
os.environ.setdefault("JWT_SECRET", "test-secret-please-change")
os.environ.setdefault("SEED_INITIAL_DATA", "1")
# Background auto-save never fires inside a request-driven test
os.environ.setdefault("AUTOSAVE_DELAY_SECONDS", "3600")

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_sync.main import app  # noqa: E402
from inspection_sync.core.database import engine  # noqa: E402
from inspection_sync.models.entities import InspectionStatus  # noqa: E402
from inspection_sync.schemas.account import FacilityRead, SignatureRead  # noqa: E402
from inspection_sync.schemas.inspection import (  # noqa: E402
    InspectionPayload,
    InspectionRecord,
    PhotoRecord,
    ResponseEntry,
)
from inspection_sync.schemas.template import InspectionTemplateRead  # noqa: E402
from inspection_sync.services.lifecycle import LifecycleBus  # noqa: E402
from inspection_sync.services.local_cache import MemoryLocalCache  # noqa: E402
from inspection_sync.services.sessions import InspectionSession, SessionConfig  # noqa: E402

TEST_DB_PATH = Path("test_app.db")
START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def client() -> TestClient:
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
    with TestClient(app) as test_client:
        yield test_client
    engine.dispose()
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
    shutil.rmtree(_SCRATCH_DIR / "draft_cache", ignore_errors=True)
    shutil.rmtree(_SCRATCH_DIR / "uploads", ignore_errors=True)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start
        # Set by tests that need time to move on every read.
        self.tick = timedelta(0)

    def now(self) -> datetime:
        value = self.current
        self.current += self.tick
        return value

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass
class _Timer:
    due: datetime
    fn: object
    cancelled: bool = False


class ManualScheduler:
    """Timers that only fire when the test advances the fake clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: list[_Timer] = []
        self.armed = 0

    def after(self, delay: float, fn):
        timer = _Timer(due=self.clock.now() + timedelta(seconds=delay), fn=fn)
        self.timers.append(timer)
        self.armed += 1

        def cancel() -> None:
            timer.cancelled = True

        return cancel

    @property
    def pending(self) -> list[_Timer]:
        return [timer for timer in self.timers if not timer.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.clock.now() + timedelta(seconds=seconds)
        while True:
            due = sorted((t for t in self.pending if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.clock.current = max(self.clock.current, timer.due)
            outcome = timer.fn()
            if inspect.isawaitable(outcome):
                await outcome
        self.clock.current = target


class FakeRepository:
    """In-memory draft repository that records every call."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.records: dict[str, InspectionRecord] = {}
        self.photos: dict[str, PhotoRecord] = {}
        self.calls: list[str] = []
        self.fail_writes = False
        self.fail_find = False
        self.fail_photo_insert: set[str] = set()
        self.fail_photo_delete = False
        self._seq = 0

    @property
    def writes(self) -> list[str]:
        return [call for call in self.calls if call in {"create", "update"}]

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    async def create(self, payload: InspectionPayload) -> InspectionRecord:
        self.calls.append("create")
        if self.fail_writes:
            raise RuntimeError("network unavailable")
        record = InspectionRecord(id=self._next_id("insp"), created_at=self.clock.now(), **payload.model_dump())
        self.records[record.id] = record
        return record

    async def update(self, remote_id: str, payload: InspectionPayload) -> InspectionRecord:
        self.calls.append("update")
        if self.fail_writes:
            raise RuntimeError("network unavailable")
        existing = self.records.get(remote_id)
        if existing is None:
            raise ValueError("Inspection not found")
        if existing.status == InspectionStatus.completed:
            raise ValueError("Completed inspections cannot be modified")
        record = InspectionRecord(id=remote_id, created_at=existing.created_at, **payload.model_dump())
        self.records[remote_id] = record
        return record

    async def find_draft_for_facility(self, facility_id: str, account_id: str) -> InspectionRecord | None:
        self.calls.append("find")
        if self.fail_find:
            raise RuntimeError("network unavailable")
        drafts = [
            record
            for record in reversed(list(self.records.values()))
            if record.facility_id == facility_id
            and record.account_id == account_id
            and record.status == InspectionStatus.draft
        ]
        return sorted(drafts, key=lambda record: record.created_at, reverse=True)[0] if drafts else None

    async def list_photos(self, remote_id: str) -> list[PhotoRecord]:
        self.calls.append("list_photos")
        return [photo for photo in self.photos.values() if photo.storage_path.startswith(f"{remote_id}/")]

    async def insert_photo(
        self,
        *,
        remote_id: str,
        question_id: str,
        storage_path: str,
        file_name: str,
        file_size: int,
    ) -> PhotoRecord:
        self.calls.append("insert_photo")
        if file_name in self.fail_photo_insert:
            raise RuntimeError("insert rejected")
        photo = PhotoRecord(
            id=self._next_id("photo"),
            question_id=question_id,
            storage_path=storage_path,
            file_name=file_name,
            file_size=file_size,
        )
        self.photos[photo.id] = photo
        return photo

    async def delete_photo(self, photo_id: str) -> None:
        self.calls.append("delete_photo")
        if self.fail_photo_delete:
            raise RuntimeError("delete rejected")
        self.photos.pop(photo_id, None)

    def add_draft(self, *, updated_at: datetime, responses: list[ResponseEntry], **overrides) -> InspectionRecord:
        data = {
            "facility_id": "fac-1",
            "account_id": "acct-1",
            "user_id": "user-1",
            "inspector_name": "Draft",
            "conducted_at": updated_at,
            "status": InspectionStatus.draft,
        }
        data.update(overrides)
        record = InspectionRecord(
            id=self._next_id("insp"),
            responses=responses,
            created_at=updated_at,
            updated_at=updated_at,
            **data,
        )
        self.records[record.id] = record
        return record


class FakeBlobStorage:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.fail_uploads: set[int] = set()
        self.fail_remove = False
        self._uploads = 0

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        self.calls.append("upload")
        index = self._uploads
        self._uploads += 1
        if index in self.fail_uploads:
            raise RuntimeError("upload failed")
        self.blobs[path] = content

    async def remove(self, path: str) -> None:
        self.calls.append("remove")
        if self.fail_remove:
            raise RuntimeError("storage unavailable")
        self.blobs.pop(path, None)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture()
def repository(clock: FakeClock) -> FakeRepository:
    return FakeRepository(clock)


@pytest.fixture()
def cache() -> MemoryLocalCache:
    return MemoryLocalCache()


@pytest.fixture()
def storage() -> FakeBlobStorage:
    return FakeBlobStorage()


@pytest.fixture()
def template() -> InspectionTemplateRead:
    """Five required yes/no questions plus one optional comment question."""
    questions = [{"id": f"q{i}", "text": f"Question {i}?", "category": "Audit"} for i in range(1, 6)]
    questions.append({"id": "q6", "text": "Any other findings?", "type": "comment", "optional": True})
    return InspectionTemplateRead(id="tpl-1", name="SPCC Inspection", questions=questions)


@pytest.fixture()
def signature() -> SignatureRead:
    return SignatureRead(inspector_name="Inspector One", signature_data="data:image/png;base64,AAAA")


@pytest.fixture()
def make_session(template, repository, cache, clock, scheduler, storage, signature):
    def _make(**overrides) -> InspectionSession:
        options = {
            "template": template,
            "facility": FacilityRead(id="fac-1", name="North Tank Battery"),
            "user_id": "user-1",
            "account_id": "acct-1",
            "repository": repository,
            "cache": cache,
            "clock": clock,
            "scheduler": scheduler,
            "storage": storage,
            "signature": signature,
            "config": SessionConfig(autosave_delay=30),
            "lifecycle": LifecycleBus(),
        }
        options.update(overrides)
        return InspectionSession(**options)

    return _make
