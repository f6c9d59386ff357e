"""
Photo attachment pipeline: normalize, upload the blob, then catalog it.

A photo only exists once both the blob and its metadata row were written.
Deletion goes the other way round: the row first, then the blob on a
best-effort basis.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from inspection_sync.schemas.inspection import PhotoRecord
from inspection_sync.services.clock import Clock
from inspection_sync.services.drafts import DraftRepository
from inspection_sync.services.results import EngineError, ErrorKind, Result

logger = logging.getLogger(__name__)

MAX_PHOTOS_PER_RESPONSE = 10
MAX_DIMENSION = 1920
JPEG_QUALITY = 85
MAX_PHOTO_BYTES = 5 * 1024 * 1024

NO_DRAFT_MESSAGE = "Please save the inspection as a draft before adding photos."
UPLOAD_FAILED_MESSAGE = "Failed to upload photos. Please check file format and try again."


@dataclass(frozen=True)
class PhotoUpload:
    file_name: str
    content: bytes


@dataclass
class PhotoBatch:
    attached: list[PhotoRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    capacity_message: str | None = None


class BlobStorage(Protocol):
    async def upload(self, path: str, content: bytes, content_type: str) -> None: ...

    async def remove(self, path: str) -> None: ...


class LocalBlobStorage:
    """Blob store on the local filesystem, rooted at ``base_dir``."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        target = self.resolve(path)
        if target.exists():
            raise FileExistsError(f"Blob already exists at {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    async def remove(self, path: str) -> None:
        target = self.resolve(path)
        if target.is_file():
            target.unlink()

    def resolve(self, path: str) -> Path:
        root = self.base_dir.resolve()
        candidate = (root / path).resolve()
        try:
            candidate.relative_to(root)
        except ValueError as exc:
            raise ValueError(f"Blob path escapes storage root: {path}") from exc
        return candidate


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale ``(width, height)`` down so neither side exceeds ``max_dimension``."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height / width * max_dimension))
    return max(1, round(width / height * max_dimension)), max_dimension


def normalize_image(content: bytes, *, max_dimension: int = MAX_DIMENSION, quality: int = JPEG_QUALITY) -> bytes:
    """Re-encode as a bounded JPEG; undecodable input is returned untouched."""
    try:
        with Image.open(io.BytesIO(content)) as source:
            image = ImageOps.exif_transpose(source)
            if image.mode != "RGB":
                image = image.convert("RGB")
            size = fit_within(image.width, image.height, max_dimension)
            if size != (image.width, image.height):
                image = image.resize(size, Image.Resampling.LANCZOS)
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.warning("Image conversion failed, using original bytes: %s", exc)
        return content
    return buffer.getvalue()


def capacity_message(current_count: int, limit: int) -> str:
    return f"You can only add up to {limit} photos per question. You currently have {current_count} photo(s)."


def storage_path(remote_id: str, question_id: str, uploaded_at_ms: int, index: int) -> str:
    return f"{remote_id}/{question_id}/{uploaded_at_ms}_{index}.jpg"


class PhotoPipeline:
    def __init__(
        self,
        repository: DraftRepository,
        storage: BlobStorage,
        clock: Clock,
        *,
        max_photos: int = MAX_PHOTOS_PER_RESPONSE,
        max_dimension: int = MAX_DIMENSION,
        quality: int = JPEG_QUALITY,
        max_bytes: int = MAX_PHOTO_BYTES,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.clock = clock
        self.max_photos = max_photos
        self.max_dimension = max_dimension
        self.quality = quality
        self.max_bytes = max_bytes

    async def upload(
        self,
        remote_id: str | None,
        question_id: str,
        current_count: int,
        files: list[PhotoUpload],
    ) -> Result[PhotoBatch]:
        if not remote_id:
            return Result.failure(ErrorKind.no_remote_draft, NO_DRAFT_MESSAGE)
        if not files:
            return Result.failure(ErrorKind.upload, "No photos were provided")

        remaining = max(self.max_photos - current_count, 0)
        if remaining == 0:
            return Result.failure(ErrorKind.capacity, capacity_message(current_count, self.max_photos))

        batch = PhotoBatch()
        accepted = files[:remaining]
        if len(files) > remaining:
            # Overflow files never reach storage.
            batch.rejected = [upload.file_name for upload in files[remaining:]]
            batch.capacity_message = capacity_message(current_count, self.max_photos)

        uploaded_at_ms = int(self.clock.now().timestamp() * 1000)
        for index, upload in enumerate(accepted):
            photo = await self._attach_one(remote_id, question_id, upload, uploaded_at_ms, index)
            if photo is None:
                batch.skipped.append(upload.file_name)
            else:
                batch.attached.append(photo)

        if not batch.attached:
            logger.error("No photos were uploaded for question %s on %s", question_id, remote_id)
            return Result.failure(ErrorKind.upload, UPLOAD_FAILED_MESSAGE)
        return Result.success(batch)

    async def delete(self, photo: PhotoRecord) -> Result[None]:
        try:
            await self.repository.delete_photo(photo.id)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to delete photo row %s", photo.id)
            return Result.failure(ErrorKind.photo_delete, "Failed to delete photo")
        try:
            await self.storage.remove(photo.storage_path)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to remove photo blob %s", photo.storage_path)
            return Result(warning=EngineError(kind=ErrorKind.storage_delete, message="Failed to remove photo file"))
        return Result.success(None)

    async def _attach_one(
        self,
        remote_id: str,
        question_id: str,
        upload: PhotoUpload,
        uploaded_at_ms: int,
        index: int,
    ) -> PhotoRecord | None:
        processed = normalize_image(upload.content, max_dimension=self.max_dimension, quality=self.quality)
        if len(processed) > self.max_bytes:
            logger.warning("Photo %r is too large even after conversion, skipping", upload.file_name)
            return None

        path = storage_path(remote_id, question_id, uploaded_at_ms, index)
        try:
            await self.storage.upload(path, processed, "image/jpeg")
        except Exception:  # noqa: BLE001
            logger.exception("Upload failed for photo %r", upload.file_name)
            return None

        try:
            return await self.repository.insert_photo(
                remote_id=remote_id,
                question_id=question_id,
                storage_path=path,
                file_name=upload.file_name,
                file_size=len(upload.content),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Metadata insert failed for photo %r", upload.file_name)
            try:
                await self.storage.remove(path)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to remove orphaned blob %s", path)
            return None
