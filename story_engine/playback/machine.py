from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from story_engine.domain.models import FinalScene, SceneChoice
from story_engine.playback.audio import AudioLifecycle, AudioPhase, AudioSink
from story_engine.playback.events import EventBus, PlaybackEvent
from story_engine.playback.focus import ChoiceFocus
from story_engine.playback.image_transition import ImageTransition
from story_engine.playback.scheduler import Scheduler, TimerSlot

node_log = logger.bind(node="playback")


class Phase(str, Enum):
    SELECTING_SCENARIO = "selecting_scenario"
    LOADING_FIRST_NODE = "loading_first_node"
    PLAYING = "playing"
    ERROR = "error"


@dataclass(frozen=True)
class PlaybackState:
    phase: Phase
    displayed_scene: FinalScene | None
    previous_image_ref: str | None
    current_image_ref: str | None
    is_image_loading: bool
    is_transitioning: bool
    audio_playing: bool
    user_paused: bool
    choices_visible: bool
    focused_choice_index: int
    awaiting_scene: bool
    error_message: str | None


class PlaybackMachine:
    """Client-side playback for delivered scenes.

    One narrative phase plus two sub-machines (image transition and audio lifecycle)
    wired together through an EventBus. All timers go through the injected scheduler.

    Choices for a scene are revealed exactly once: when audio finishes or fails, or
    when the fallback timer fires for a scene whose audio cannot start on its own.
    The fallback timer is cancelled the moment audio actually starts.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        sink: AudioSink,
        *,
        choice_fallback_ms: int = 150,
        crossfade_ms: int = 1000,
    ) -> None:
        self.bus = EventBus()
        self.image = ImageTransition(self.bus, scheduler, crossfade_ms=crossfade_ms)
        self.audio = AudioLifecycle(self.bus, sink)
        self.focus = ChoiceFocus()
        self.choice_fallback_ms = choice_fallback_ms
        self._fallback = TimerSlot(scheduler)

        self.phase = Phase.SELECTING_SCENARIO
        self.displayed_scene: FinalScene | None = None
        self.has_user_interacted = False
        self.user_paused = False
        self.choices_visible = False
        self.awaiting_scene = False
        self.error_message: str | None = None
        self._choices_revealed = False

        self.bus.subscribe(PlaybackEvent.IMAGE_READY, self._on_image_ready)
        self.bus.subscribe(PlaybackEvent.AUDIO_STARTED, self._on_audio_started)
        self.bus.subscribe(PlaybackEvent.AUDIO_FINISHED_OR_FAILED, self._on_audio_finished_or_failed)

    # -- snapshot -----------------------------------------------------------

    def snapshot(self) -> PlaybackState:
        return PlaybackState(
            phase=self.phase,
            displayed_scene=self.displayed_scene,
            previous_image_ref=self.image.previous_ref,
            current_image_ref=self.image.current_ref,
            is_image_loading=self.image.is_loading,
            is_transitioning=self.image.is_transitioning,
            audio_playing=self.audio.is_playing,
            user_paused=self.user_paused,
            choices_visible=self.choices_visible,
            focused_choice_index=self.focus.index,
            awaiting_scene=self.awaiting_scene,
            error_message=self.error_message,
        )

    @property
    def fallback_pending(self) -> bool:
        return self._fallback.pending

    # -- user actions -------------------------------------------------------

    def select_scenario(self) -> None:
        self._hard_reset()
        self.has_user_interacted = True
        self.awaiting_scene = True
        self.phase = Phase.LOADING_FIRST_NODE

    def restart(self) -> None:
        self._hard_reset()
        self.phase = Phase.SELECTING_SCENARIO

    def resume(self, scene: FinalScene) -> None:
        """Show a restored scene without counting it as a user gesture."""

        self._hard_reset()
        self.phase = Phase.LOADING_FIRST_NODE
        self.on_scene(scene)

    def choose(self, index: int) -> SceneChoice:
        if self.phase is not Phase.PLAYING or self.displayed_scene is None:
            raise RuntimeError(f"cannot choose while {self.phase.value}")
        if not self.choices_visible:
            raise RuntimeError("choices are not visible yet")
        choices = self.displayed_scene.choices
        if not 0 <= index < len(choices):
            raise IndexError(f"choice index {index} out of range")

        self.has_user_interacted = True
        self._fallback.cancel()
        self.audio.stop()
        self.choices_visible = False
        self.awaiting_scene = True
        return choices[index]

    def handle_key(self, key: str) -> SceneChoice | None:
        if not self.choices_visible:
            return None
        selected = self.focus.handle_key(key)
        if selected is None:
            return None
        return self.choose(selected)

    def toggle_play_pause(self) -> None:
        self.has_user_interacted = True
        if self.audio.phase in (AudioPhase.PLAYING, AudioPhase.STARTING):
            self.audio.pause()
            self.user_paused = True
            return
        if self.audio.phase in (AudioPhase.PENDING, AudioPhase.PAUSED):
            self.user_paused = False
            self.audio.play()

    # -- pipeline callbacks -------------------------------------------------

    def on_scene(self, scene: FinalScene) -> None:
        if self.phase is Phase.SELECTING_SCENARIO:
            node_log.warning("Ignoring scene delivered while selecting a scenario")
            return

        self._fallback.cancel()
        self.audio.stop()

        self.phase = Phase.PLAYING
        self.displayed_scene = scene
        self.awaiting_scene = False
        self.error_message = None
        self.choices_visible = False
        self._choices_revealed = False
        self.focus.reset(len(scene.choices))

        # A pause applies to one clip only.
        self.user_paused = False
        self.audio.load(scene.audio_data)
        if not self._audio_can_autostart():
            self._fallback.schedule(self.choice_fallback_ms, self._on_fallback_elapsed)

        # May publish IMAGE_READY synchronously when the scene has no image.
        self.image.show(scene.image_url)

    def on_error(self, message: str) -> None:
        self._fallback.cancel()
        self.audio.stop()
        self.awaiting_scene = False
        self.choices_visible = False
        self.error_message = message
        self.phase = Phase.ERROR

    def clear_error(self) -> None:
        if self.phase is not Phase.ERROR:
            return
        self.error_message = None
        if self.displayed_scene is not None:
            self.phase = Phase.PLAYING
            self.choices_visible = self._choices_revealed
        else:
            self.phase = Phase.SELECTING_SCENARIO

    def retry_started(self) -> None:
        """An explicit retry was submitted; wait for the next scene."""

        self.clear_error()
        self.choices_visible = False
        self.awaiting_scene = True
        if self.displayed_scene is None:
            self.phase = Phase.LOADING_FIRST_NODE

    # -- media element callbacks ---------------------------------------------

    def on_image_loaded(self, ref: str | None = None) -> None:
        self.image.on_load(ref)

    def on_image_error(self, ref: str | None = None) -> None:
        self.image.on_error(ref)

    def on_audio_started(self) -> None:
        self.audio.on_started()

    def on_audio_ended(self) -> None:
        self.audio.on_ended()

    def on_audio_error(self, message: str = "") -> None:
        self.audio.on_error(message)

    # -- internals ----------------------------------------------------------

    def _audio_can_autostart(self) -> bool:
        return self.audio.has_audio and self.has_user_interacted and not self.user_paused

    def _on_image_ready(self, _ref: object) -> None:
        if self.phase is Phase.PLAYING and self._audio_can_autostart():
            self.audio.play()

    def _on_audio_started(self, _payload: object) -> None:
        if self._fallback.cancel():
            node_log.debug("Audio started; fallback reveal cancelled")

    def _on_audio_finished_or_failed(self, _payload: object) -> None:
        self.user_paused = False
        self._reveal_choices()

    def _on_fallback_elapsed(self) -> None:
        if self.audio.is_playing:
            return
        self._reveal_choices()

    def _reveal_choices(self) -> None:
        if self.phase is not Phase.PLAYING or self._choices_revealed:
            return
        self._choices_revealed = True
        self.choices_visible = True
        self.bus.publish(PlaybackEvent.CHOICES_REVEALED, self.displayed_scene)

    def _hard_reset(self) -> None:
        self.audio.stop()
        self._fallback.cancel()
        self.image.reset()

        self.displayed_scene = None
        self.user_paused = False
        self.choices_visible = False
        self.awaiting_scene = False
        self.error_message = None
        self._choices_revealed = False
        self.focus.reset(0)
