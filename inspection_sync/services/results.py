from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    load = "load"
    save = "save"
    incomplete_answers = "incomplete_answers"
    signature_required = "signature_required"
    upload = "upload"
    storage_delete = "storage_delete"
    photo_delete = "photo_delete"
    capacity = "capacity"
    no_remote_draft = "no_remote_draft"
    already_completed = "already_completed"
    cancelled = "cancelled"
    not_found = "not_found"


@dataclass(frozen=True)
class EngineError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: EngineError | None = None
    # Non-blocking problem reported alongside a successful outcome.
    warning: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=EngineError(kind=kind, message=message))
