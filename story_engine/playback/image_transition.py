from __future__ import annotations

from enum import Enum

from loguru import logger

from story_engine.playback.events import EventBus, PlaybackEvent
from story_engine.playback.scheduler import Scheduler, TimerSlot

node_log = logger.bind(node="image_transition")


class ImagePhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CROSSFADING = "crossfading"
    FADING_OUT = "fading_out"


class ImageTransition:
    """Keeps the previous image on screen while the next one loads, then cross-fades.

    Publishes ``IMAGE_READY`` once per ``show`` call: on the load event, on a load
    error, or immediately when the new scene has no image.
    """

    def __init__(self, bus: EventBus, scheduler: Scheduler, *, crossfade_ms: int = 1000) -> None:
        self.bus = bus
        self.crossfade_ms = crossfade_ms
        self._fade = TimerSlot(scheduler)
        self.phase = ImagePhase.IDLE
        self.previous_ref: str | None = None
        self.current_ref: str | None = None
        self._ready_published = False

    @property
    def is_loading(self) -> bool:
        return self.phase is ImagePhase.LOADING

    @property
    def is_transitioning(self) -> bool:
        return self.phase in (ImagePhase.CROSSFADING, ImagePhase.FADING_OUT)

    def show(self, target_ref: str | None) -> None:
        self._settle_running_fade()
        self._ready_published = False

        if target_ref is not None and target_ref == self.current_ref:
            self.phase = ImagePhase.IDLE
            self._publish_ready()
            return

        if target_ref is not None:
            self.previous_ref = self.current_ref
            self.current_ref = target_ref
            self.phase = ImagePhase.LOADING
            return

        if self.current_ref is not None:
            self.previous_ref = self.current_ref
            self.current_ref = None
            self.phase = ImagePhase.FADING_OUT
            self._fade.schedule(self.crossfade_ms, self._finish_fade_out)
        else:
            self.phase = ImagePhase.IDLE
        self._publish_ready()

    def on_load(self, loaded_ref: str | None = None) -> None:
        if self.phase is not ImagePhase.LOADING:
            return
        if loaded_ref is not None and loaded_ref != self.current_ref:
            # Load event from an image that has since been replaced.
            return
        self._start_crossfade()

    def on_error(self, failed_ref: str | None = None) -> None:
        if self.phase is not ImagePhase.LOADING:
            return
        if failed_ref is not None and failed_ref != self.current_ref:
            return
        node_log.warning("Image failed to load; continuing without waiting for it")
        self._start_crossfade()

    def reset(self) -> None:
        self._fade.cancel()
        self.phase = ImagePhase.IDLE
        self.previous_ref = None
        self.current_ref = None
        self._ready_published = False

    def _start_crossfade(self) -> None:
        self.phase = ImagePhase.CROSSFADING
        self._fade.schedule(self.crossfade_ms, self._finish_crossfade)
        self._publish_ready()

    def _finish_crossfade(self) -> None:
        self.previous_ref = self.current_ref
        self.phase = ImagePhase.IDLE

    def _finish_fade_out(self) -> None:
        self.previous_ref = None
        self.phase = ImagePhase.IDLE

    def _settle_running_fade(self) -> None:
        if not self._fade.cancel():
            return
        if self.phase is ImagePhase.CROSSFADING:
            self._finish_crossfade()
        elif self.phase is ImagePhase.FADING_OUT:
            self._finish_fade_out()

    def _publish_ready(self) -> None:
        if self._ready_published:
            return
        self._ready_published = True
        self.bus.publish(PlaybackEvent.IMAGE_READY, self.current_ref)
