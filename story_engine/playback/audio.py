from __future__ import annotations

from enum import Enum
from typing import Protocol

from loguru import logger

from story_engine.playback.events import EventBus, PlaybackEvent

node_log = logger.bind(node="audio_lifecycle")


class AudioSink(Protocol):
    """The media element. It reports back through AudioLifecycle.on_started/on_ended/on_error."""

    def load(self, audio_data: str | None) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...


class AudioPhase(str, Enum):
    NO_AUDIO = "no_audio"
    PENDING = "pending"
    STARTING = "starting"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    FAILED = "failed"


class AudioLifecycle:
    """Narration audio for the displayed scene.

    Publishes ``AUDIO_STARTED`` when the sink reports playback actually began and
    ``AUDIO_FINISHED_OR_FAILED`` once per loaded clip when it ends or errors.
    """

    def __init__(self, bus: EventBus, sink: AudioSink) -> None:
        self.bus = bus
        self.sink = sink
        self.phase = AudioPhase.NO_AUDIO
        self.last_error: str | None = None

    @property
    def has_audio(self) -> bool:
        return self.phase is not AudioPhase.NO_AUDIO

    @property
    def is_playing(self) -> bool:
        return self.phase is AudioPhase.PLAYING

    def load(self, audio_data: str | None) -> None:
        self.sink.stop()
        self.sink.load(audio_data)
        self.last_error = None
        self.phase = AudioPhase.PENDING if audio_data else AudioPhase.NO_AUDIO

    def play(self) -> bool:
        if self.phase not in (AudioPhase.PENDING, AudioPhase.PAUSED):
            return False
        self.phase = AudioPhase.STARTING
        self.sink.play()
        return True

    def pause(self) -> bool:
        if self.phase not in (AudioPhase.PLAYING, AudioPhase.STARTING):
            return False
        self.sink.pause()
        self.phase = AudioPhase.PAUSED
        return True

    def stop(self) -> None:
        self.sink.stop()
        self.sink.load(None)
        self.phase = AudioPhase.NO_AUDIO

    def on_started(self) -> None:
        if self.phase not in (AudioPhase.STARTING, AudioPhase.PENDING, AudioPhase.PAUSED):
            return
        self.phase = AudioPhase.PLAYING
        self.bus.publish(PlaybackEvent.AUDIO_STARTED)

    def on_ended(self) -> None:
        self._finish(AudioPhase.FINISHED)

    def on_error(self, message: str = "") -> None:
        self.last_error = message or "playback error"
        node_log.warning("Audio playback failed: {}", self.last_error)
        self._finish(AudioPhase.FAILED)

    def _finish(self, phase: AudioPhase) -> None:
        if self.phase in (AudioPhase.NO_AUDIO, AudioPhase.FINISHED, AudioPhase.FAILED):
            return
        self.phase = phase
        self.bus.publish(PlaybackEvent.AUDIO_FINISHED_OR_FAILED, phase.value)
