from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    suspend = "suspend"
    resume = "resume"
    terminate = "terminate"


# Host signals understood by the HTTP layer.
HOST_SIGNALS: dict[str, LifecycleEvent] = {
    "visibility_hidden": LifecycleEvent.suspend,
    "page_hide": LifecycleEvent.suspend,
    "visibility_visible": LifecycleEvent.resume,
    "page_show": LifecycleEvent.resume,
    "unmount": LifecycleEvent.terminate,
}

LifecycleHandler = Callable[[LifecycleEvent], None]


class LifecycleBus:
    def __init__(self) -> None:
        self._handlers: list[LifecycleHandler] = []

    def subscribe(self, handler: LifecycleHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: LifecycleEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                logger.exception("Lifecycle handler failed for %s", event.value)


def event_for_signal(signal: str) -> LifecycleEvent:
    try:
        return HOST_SIGNALS[signal]
    except KeyError as exc:
        raise ValueError(f"Unknown lifecycle signal '{signal}'") from exc
