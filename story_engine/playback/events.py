from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import Any, Callable

from loguru import logger

Handler = Callable[[Any], None]


class PlaybackEvent(str, Enum):
    IMAGE_READY = "image_ready"
    AUDIO_STARTED = "audio_started"
    AUDIO_FINISHED_OR_FAILED = "audio_finished_or_failed"
    CHOICES_REVEALED = "choices_revealed"


class EventBus:
    """Synchronous publish/subscribe between the playback sub-machines."""

    def __init__(self) -> None:
        self._handlers: dict[PlaybackEvent, list[Handler]] = defaultdict(list)

    def subscribe(self, event: PlaybackEvent, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def publish(self, event: PlaybackEvent, payload: Any = None) -> None:
        logger.trace("playback event={} payload={}", event.value, payload)
        for handler in list(self._handlers[event]):
            handler(payload)
