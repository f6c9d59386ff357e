from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image

from inspection_sync.schemas.inspection import ResponseUpdate
from inspection_sync.services.photos import (
    NO_DRAFT_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    LocalBlobStorage,
    PhotoPipeline,
    PhotoUpload,
    capacity_message,
    fit_within,
    normalize_image,
)
from inspection_sync.services.results import ErrorKind
from inspection_sync.services.sessions import SessionConfig


def _image_bytes(size=(12, 8), fmt="PNG", mode="RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, "red").save(buffer, format=fmt)
    return buffer.getvalue()


def _uploads(count: int) -> list[PhotoUpload]:
    return [PhotoUpload(file_name=f"img_{index}.png", content=_image_bytes()) for index in range(count)]


@pytest.mark.parametrize(
    "size, expected",
    [
        ((800, 600), (800, 600)),
        ((4000, 2000), (1920, 960)),
        ((1500, 3000), (960, 1920)),
        ((1920, 1920), (1920, 1920)),
    ],
)
def test_fit_within_preserves_aspect_ratio(size, expected) -> None:
    assert fit_within(*size, 1920) == expected


def test_normalize_resizes_and_reencodes_as_jpeg() -> None:
    processed = normalize_image(_image_bytes(size=(3840, 1000), mode="RGBA"))
    with Image.open(io.BytesIO(processed)) as image:
        assert image.format == "JPEG"
        assert image.size == (1920, 500)


def test_normalize_falls_back_to_original_bytes() -> None:
    garbage = b"definitely not an image"
    assert normalize_image(garbage) == garbage


def test_upload_requires_remote_draft(repository, storage, clock) -> None:
    pipeline = PhotoPipeline(repository, storage, clock)
    result = asyncio.run(pipeline.upload(None, "q1", 0, _uploads(1)))
    assert result.error.kind == ErrorKind.no_remote_draft
    assert result.error.message == NO_DRAFT_MESSAGE
    assert storage.calls == []
    assert repository.calls == []


def test_overflow_files_never_touch_the_network(repository, storage, clock) -> None:
    pipeline = PhotoPipeline(repository, storage, clock)
    result = asyncio.run(pipeline.upload("insp-1", "q1", 0, _uploads(12)))

    batch = result.value
    assert result.ok
    assert len(batch.attached) == 10
    assert batch.rejected == ["img_10.png", "img_11.png"]
    assert batch.capacity_message == capacity_message(0, 10)
    assert storage.calls.count("upload") == 10
    assert repository.calls.count("insert_photo") == 10
    ms = int(clock.now().timestamp() * 1000)
    assert batch.attached[0].storage_path == f"insp-1/q1/{ms}_0.jpg"
    assert batch.attached[9].storage_path == f"insp-1/q1/{ms}_9.jpg"


def test_full_response_rejects_whole_request(repository, storage, clock) -> None:
    pipeline = PhotoPipeline(repository, storage, clock)
    result = asyncio.run(pipeline.upload("insp-1", "q1", 10, _uploads(2)))
    assert result.error.kind == ErrorKind.capacity
    assert "10 photo(s)" in result.error.message
    assert storage.calls == []


def test_partial_failures_skip_files_but_keep_the_batch(repository, storage, clock) -> None:
    storage.fail_uploads = {1}
    repository.fail_photo_insert = {"img_2.png"}
    pipeline = PhotoPipeline(repository, storage, clock)

    result = asyncio.run(pipeline.upload("insp-1", "q1", 0, _uploads(4)))

    assert result.ok
    assert [photo.file_name for photo in result.value.attached] == ["img_0.png", "img_3.png"]
    assert result.value.skipped == ["img_1.png", "img_2.png"]
    # The blob of a file whose metadata insert failed is cleaned up.
    assert sorted(storage.blobs) == sorted(photo.storage_path for photo in result.value.attached)


def test_zero_successes_is_a_batch_error(repository, storage, clock) -> None:
    storage.fail_uploads = {0, 1}
    pipeline = PhotoPipeline(repository, storage, clock)
    result = asyncio.run(pipeline.upload("insp-1", "q1", 0, _uploads(2)))
    assert result.error.kind == ErrorKind.upload
    assert result.error.message == UPLOAD_FAILED_MESSAGE


def test_oversize_files_are_skipped(repository, storage, clock) -> None:
    pipeline = PhotoPipeline(repository, storage, clock, max_bytes=100)
    uploads = [
        PhotoUpload(file_name="huge.bin", content=b"x" * 500),
        PhotoUpload(file_name="tiny.bin", content=b"y" * 50),
    ]

    result = asyncio.run(pipeline.upload("insp-1", "q1", 0, uploads))

    assert [photo.file_name for photo in result.value.attached] == ["tiny.bin"]
    assert result.value.skipped == ["huge.bin"]
    assert storage.calls == ["upload"]


def test_local_blob_storage_stays_inside_root(tmp_path) -> None:
    blob_storage = LocalBlobStorage(tmp_path)
    asyncio.run(blob_storage.upload("insp-1/q1/1_0.jpg", b"jpeg", "image/jpeg"))
    assert (tmp_path / "insp-1" / "q1" / "1_0.jpg").read_bytes() == b"jpeg"
    with pytest.raises(FileExistsError):
        asyncio.run(blob_storage.upload("insp-1/q1/1_0.jpg", b"again", "image/jpeg"))
    with pytest.raises(ValueError):
        blob_storage.resolve("../outside.jpg")
    asyncio.run(blob_storage.remove("insp-1/q1/1_0.jpg"))
    assert not (tmp_path / "insp-1" / "q1" / "1_0.jpg").exists()


def test_session_upload_needs_saved_draft(make_session, storage) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        result = await session.upload_photos("q1", _uploads(1))
        assert result.error.kind == ErrorKind.no_remote_draft
        assert storage.calls == []

    asyncio.run(scenario())


def test_session_attaches_uploaded_photos(make_session, repository) -> None:
    async def scenario() -> None:
        session = make_session(config=SessionConfig(max_photos=3))
        await session.open()
        session.update_response("q1", ResponseUpdate(answer="no"))
        assert (await session.save_draft()).ok

        result = await session.upload_photos("q1", _uploads(2))
        assert result.ok
        assert len(session.state.response("q1").photos) == 2
        assert session.state.dirty is True

        overflow = await session.upload_photos("q1", _uploads(2))
        assert len(overflow.value.attached) == 1
        assert len(overflow.value.rejected) == 1
        assert len(session.state.response("q1").photos) == 3

        full = await session.upload_photos("q1", _uploads(1))
        assert full.error.kind == ErrorKind.capacity

    asyncio.run(scenario())


def test_delete_removes_photo_after_row_even_if_blob_fails(make_session, storage) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        assert (await session.save_draft()).ok
        await session.upload_photos("q2", _uploads(2))
        photo = session.state.response("q2").photos[0]
        storage.fail_remove = True

        result = await session.delete_photo("q2", photo.id)

        assert result.ok
        assert result.warning.kind == ErrorKind.storage_delete
        remaining = [p.id for p in session.state.response("q2").photos]
        assert len(remaining) == 1
        assert photo.id not in remaining
        assert photo.storage_path in storage.blobs

    asyncio.run(scenario())


def test_delete_keeps_photo_when_row_delete_fails(make_session, repository, storage) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        assert (await session.save_draft()).ok
        await session.upload_photos("q2", _uploads(1))
        photo = session.state.response("q2").photos[0]
        repository.fail_photo_delete = True

        result = await session.delete_photo("q2", photo.id)

        assert result.error.kind == ErrorKind.photo_delete
        assert [p.id for p in session.state.response("q2").photos] == [photo.id]
        assert "remove" not in storage.calls

    asyncio.run(scenario())


def test_reopened_session_loads_catalogued_photos(make_session, repository, cache) -> None:
    async def scenario() -> None:
        first = make_session()
        await first.open()
        first.update_response("q1", ResponseUpdate(answer="no"))
        assert (await first.save_draft()).ok
        await first.upload_photos("q1", _uploads(2))
        first.close()

        second = make_session()
        outcome = await second.open()
        assert outcome.remote_id == first.state.remote_id
        assert len(second.state.response("q1").photos) == 2

    asyncio.run(scenario())
