from __future__ import annotations

from typing import Callable

import pytest

from story_engine.domain.models import FinalScene, SceneChoice
from story_engine.playback import Phase, PlaybackEvent, PlaybackMachine
from story_engine.playback.focus import ChoiceFocus


class _FakeTimer:
    def __init__(self, due_ms: int, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class _FakeScheduler:
    def __init__(self) -> None:
        self.now_ms = 0
        self.timers: list[_FakeTimer] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _FakeTimer:
        timer = _FakeTimer(self.now_ms + delay_ms, callback)
        self.timers.append(timer)
        return timer

    def advance(self, ms: int) -> None:
        target = self.now_ms + ms
        while True:
            due = [timer for timer in self.timers if not timer.cancelled and not timer.fired and timer.due_ms <= target]
            if not due:
                break
            timer = min(due, key=lambda item: item.due_ms)
            self.now_ms = timer.due_ms
            timer.fired = True
            timer.callback()
        self.now_ms = target


class _FakeSink:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def load(self, audio_data: str | None) -> None:
        self.calls.append(f"load:{audio_data}")

    def play(self) -> None:
        self.calls.append("play")

    def pause(self) -> None:
        self.calls.append("pause")

    def stop(self) -> None:
        self.calls.append("stop")


def _scene(*, image: str | None = None, audio: str | None = None, choices: int = 3) -> FinalScene:
    return FinalScene(
        passage="The corridor splits.",
        choices=[SceneChoice(text=f"Option {index + 1}") for index in range(choices)],
        image_prompt="A split corridor",
        updated_summary="You reached a fork.",
        image_url=image,
        audio_data=audio,
        generation_prompt="prompt",
    )


def _machine() -> tuple[PlaybackMachine, _FakeScheduler, _FakeSink, list[object]]:
    scheduler = _FakeScheduler()
    sink = _FakeSink()
    machine = PlaybackMachine(scheduler, sink, choice_fallback_ms=150, crossfade_ms=1000)
    reveals: list[object] = []
    machine.bus.subscribe(PlaybackEvent.CHOICES_REVEALED, reveals.append)
    return machine, scheduler, sink, reveals


def test_scene_without_media_reveals_choices_after_fallback() -> None:
    machine, scheduler, sink, reveals = _machine()
    machine.select_scenario()
    assert machine.phase is Phase.LOADING_FIRST_NODE

    machine.on_scene(_scene())

    assert machine.phase is Phase.PLAYING
    assert not machine.choices_visible
    scheduler.advance(149)
    assert not machine.choices_visible
    scheduler.advance(1)
    assert machine.choices_visible
    assert len(reveals) == 1
    assert "play" not in sink.calls


def test_audio_autoplays_after_image_ready_and_reveals_on_end() -> None:
    machine, scheduler, sink, reveals = _machine()
    machine.select_scenario()

    machine.on_scene(_scene(image="img-1", audio="QVVE"))

    assert machine.snapshot().is_image_loading
    assert "play" not in sink.calls
    assert not machine.fallback_pending

    machine.on_image_loaded("img-1")
    assert sink.calls[-1] == "play"
    assert machine.snapshot().is_transitioning

    machine.on_audio_started()
    assert machine.snapshot().audio_playing
    scheduler.advance(5000)
    assert not machine.choices_visible
    assert not machine.snapshot().is_transitioning

    machine.on_audio_ended()
    assert machine.choices_visible
    assert len(reveals) == 1


def test_audio_ending_before_fallback_reveals_exactly_once() -> None:
    machine, scheduler, _sink, reveals = _machine()
    machine.resume(_scene(audio="QVVE"))
    assert machine.fallback_pending

    machine.toggle_play_pause()
    machine.on_audio_started()
    assert not machine.fallback_pending

    machine.on_audio_ended()
    scheduler.advance(1000)

    assert machine.choices_visible
    assert len(reveals) == 1


def test_fallback_reveals_when_audio_cannot_autostart() -> None:
    machine, scheduler, sink, reveals = _machine()

    machine.resume(_scene(audio="QVVE"))

    assert machine.phase is Phase.PLAYING
    assert "play" not in sink.calls
    scheduler.advance(150)
    assert machine.choices_visible

    machine.on_audio_ended()
    assert len(reveals) == 1


def test_audio_error_reveals_choices() -> None:
    machine, _scheduler, _sink, reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(audio="QVVE"))

    machine.on_audio_error("decode failure")

    assert machine.choices_visible
    assert machine.audio.last_error == "decode failure"
    assert len(reveals) == 1


def test_image_error_still_starts_audio() -> None:
    machine, _scheduler, sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(image="broken", audio="QVVE"))

    machine.on_image_error("broken")

    assert sink.calls[-1] == "play"


def test_next_scene_without_image_fades_out_previous() -> None:
    machine, scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(image="img-1"))
    machine.on_image_loaded("img-1")
    scheduler.advance(1000)
    assert machine.choices_visible

    machine.choose(0)
    assert machine.awaiting_scene
    machine.on_scene(_scene())

    state = machine.snapshot()
    assert state.current_image_ref is None
    assert state.previous_image_ref == "img-1"
    assert state.is_transitioning
    scheduler.advance(1000)
    assert machine.snapshot().previous_image_ref is None


def test_crossfade_keeps_previous_image_until_load() -> None:
    machine, scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(image="img-1"))
    machine.on_image_loaded("img-1")
    scheduler.advance(1000)
    machine.choose(1)

    machine.on_scene(_scene(image="img-2"))

    state = machine.snapshot()
    assert state.previous_image_ref == "img-1"
    assert state.current_image_ref == "img-2"
    assert state.is_image_loading

    machine.on_image_loaded("img-1")
    assert machine.snapshot().is_image_loading

    machine.on_image_loaded("img-2")
    assert machine.snapshot().is_transitioning
    scheduler.advance(1000)
    assert machine.snapshot().previous_image_ref == "img-2"


def test_choice_stops_audio_and_hides_choices() -> None:
    machine, scheduler, sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene())
    scheduler.advance(150)

    selected = machine.choose(2)

    assert selected.text == "Option 3"
    assert not machine.choices_visible
    assert sink.calls[-1] == "load:None"


def test_choose_before_reveal_is_rejected() -> None:
    machine, _scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene())

    with pytest.raises(RuntimeError):
        machine.choose(0)


def test_terminal_scene_reveals_without_choices() -> None:
    machine, scheduler, _sink, reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(choices=0))
    scheduler.advance(150)

    assert len(reveals) == 1
    with pytest.raises(IndexError):
        machine.choose(0)


def test_error_and_recovery() -> None:
    machine, scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene())
    scheduler.advance(150)
    machine.choose(0)

    machine.on_error("Failed to parse AI response.")
    assert machine.phase is Phase.ERROR
    assert machine.snapshot().error_message == "Failed to parse AI response."
    assert not machine.awaiting_scene

    machine.retry_started()
    assert machine.phase is Phase.PLAYING
    assert machine.awaiting_scene
    assert machine.error_message is None


def test_error_before_first_scene_returns_to_selection() -> None:
    machine, _scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_error("down")

    machine.clear_error()

    assert machine.phase is Phase.SELECTING_SCENARIO


def test_restart_cancels_pending_timers() -> None:
    machine, scheduler, _sink, reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(image="img-1"))
    machine.on_image_loaded("img-1")
    assert machine.fallback_pending

    machine.restart()
    scheduler.advance(2000)

    assert machine.phase is Phase.SELECTING_SCENARIO
    assert not machine.fallback_pending
    assert reveals == []
    assert machine.snapshot().current_image_ref is None


def test_scene_while_selecting_is_ignored() -> None:
    machine, _scheduler, _sink, _reveals = _machine()

    machine.on_scene(_scene())

    assert machine.phase is Phase.SELECTING_SCENARIO
    assert machine.displayed_scene is None


def test_keyboard_navigation_selects_choice() -> None:
    machine, scheduler, _sink, _reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene())

    assert machine.handle_key("Enter") is None
    scheduler.advance(150)
    assert machine.handle_key("ArrowRight") is None
    assert machine.snapshot().focused_choice_index == 1

    selected = machine.handle_key("Enter")

    assert selected is not None
    assert selected.text == "Option 2"


def test_choice_focus_wraps_and_accepts_digits() -> None:
    focus = ChoiceFocus()
    focus.reset(3)

    assert focus.handle_key("ArrowLeft") is None
    assert focus.index == 2
    assert focus.handle_key("ArrowRight") is None
    assert focus.index == 0
    assert focus.handle_key("3") == 2
    assert focus.handle_key("9") is None


def test_pause_does_not_carry_over_to_next_scene() -> None:
    machine, scheduler, sink, _reveals = _machine()
    machine.resume(_scene(audio="QVVE"))
    scheduler.advance(150)
    assert machine.choices_visible

    machine.toggle_play_pause()
    machine.on_audio_started()
    machine.toggle_play_pause()
    assert machine.user_paused
    assert sink.calls[-1] == "pause"

    machine.choose(0)
    sink.calls.clear()
    machine.on_scene(_scene(audio="QkJC"))

    assert not machine.user_paused
    assert not machine.fallback_pending
    assert sink.calls.count("play") == 1
    assert machine.snapshot().audio_playing is False

    machine.on_audio_started()
    assert machine.snapshot().audio_playing


def test_pause_keeps_choices_hidden_until_audio_ends() -> None:
    machine, scheduler, sink, reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(audio="QVVE"))
    machine.on_audio_started()

    machine.toggle_play_pause()
    assert machine.user_paused
    scheduler.advance(5000)
    assert not machine.choices_visible
    assert reveals == []

    machine.toggle_play_pause()
    assert not machine.user_paused
    assert sink.calls[-1] == "play"
    machine.on_audio_started()
    machine.on_audio_ended()

    assert machine.choices_visible
    assert len(reveals) == 1


def test_pause_then_audio_error_reveals_choices() -> None:
    machine, scheduler, _sink, reveals = _machine()
    machine.select_scenario()
    machine.on_scene(_scene(audio="QVVE"))
    machine.on_audio_started()
    machine.toggle_play_pause()
    scheduler.advance(1000)
    assert not machine.choices_visible

    machine.on_audio_error("decode failed")

    assert machine.choices_visible
    assert not machine.user_paused
    assert len(reveals) == 1
