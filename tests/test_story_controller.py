from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from story_engine.client.session import StoryController
from story_engine.domain.models import (
    FinalScene,
    GenerationResult,
    RateLimitErrorInfo,
    RequestClass,
    SceneChoice,
    StorySceneRequest,
)
from story_engine.history.store import HistoryStore
from story_engine.playback import Phase, PlaybackMachine


class _FakeTimer:
    def cancel(self) -> None:
        return None


class _ImmediateScheduler:
    """Fires timers only when ``flush`` is called."""

    def __init__(self) -> None:
        self.pending: list[Callable[[], None]] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _FakeTimer:
        self.pending.append(callback)
        return _FakeTimer()

    def flush(self) -> None:
        callbacks, self.pending = self.pending, []
        for callback in callbacks:
            callback()


class _FakeSink:
    def load(self, audio_data: str | None) -> None:
        return None

    def play(self) -> None:
        return None

    def pause(self) -> None:
        return None

    def stop(self) -> None:
        return None


class _MemoryBackend:
    def __init__(self) -> None:
        self.data: bytes | None = None

    def read(self) -> bytes | None:
        return self.data

    def write(self, data: bytes) -> None:
        self.data = data

    def clear(self) -> None:
        self.data = None


def _scene(index: int) -> FinalScene:
    return FinalScene(
        passage=f"passage {index}",
        choices=[SceneChoice(text=f"go left {index}"), SceneChoice(text=f"go right {index}")],
        image_prompt=f"image {index}",
        updated_summary=f"summary {index}",
        image_url=f"data:image/png;base64,{index}",
        generation_prompt=f"prompt {index}",
    )


class _FakeFetcher:
    def __init__(self, results: list[GenerationResult] | None = None) -> None:
        self.results = results or []
        self.requests: list[StorySceneRequest] = []

    async def __call__(self, request: StorySceneRequest) -> GenerationResult:
        self.requests.append(request)
        if self.results:
            return self.results.pop(0)
        index = len(self.requests) - 1
        return GenerationResult(scene=_scene(index), prompt_used=f"prompt {index}")


def _controller(fetcher: _FakeFetcher, store: HistoryStore | None = None):
    scheduler = _ImmediateScheduler()
    machine = PlaybackMachine(scheduler, _FakeSink())
    return StoryController(fetcher, machine, history_store=store), machine, scheduler


_SCENARIO = SceneChoice(text="A sealed tomb", genre="Fantasy", tone="Grim", visual_style="Oil painting", voice="en-GB-A")


def test_start_sends_initial_scenario_and_records_scene() -> None:
    fetcher = _FakeFetcher()
    controller, machine, _scheduler = _controller(fetcher)

    result = asyncio.run(controller.start(_SCENARIO))

    request = fetcher.requests[0]
    assert request.initial_scenario_text == "A sealed tomb"
    assert request.story_context.history == []
    assert request.genre == "Fantasy"
    assert request.voice == "en-GB-A"
    assert result.scene is not None
    assert machine.phase is Phase.PLAYING
    assert controller.history[0].passage == "passage 0"
    assert controller.history[0].summary == "summary 0"
    assert controller.history[0].prompt == "prompt 0"
    assert controller.history[0].choice_text is None


def test_choose_marks_previous_beat_before_requesting_next() -> None:
    fetcher = _FakeFetcher()
    controller, _machine, scheduler = _controller(fetcher)
    asyncio.run(controller.start(_SCENARIO))
    scheduler.flush()

    asyncio.run(controller.choose(1))

    request = fetcher.requests[1]
    assert request.initial_scenario_text is None
    assert [item.choice_text for item in request.story_context.history] == ["go right 0"]
    assert request.story_context.history[0].prompt is None
    assert len(controller.history) == 2
    assert controller.history[-1].choice_text is None


def test_malformed_response_can_be_retried() -> None:
    failure = GenerationResult(error="Failed to parse AI response.", error_kind="malformed_parse")
    fetcher = _FakeFetcher()
    controller, machine, scheduler = _controller(fetcher)
    asyncio.run(controller.start(_SCENARIO))
    scheduler.flush()
    fetcher.results = [failure]

    asyncio.run(controller.choose(0))
    assert machine.phase is Phase.ERROR
    assert controller.can_retry

    result = asyncio.run(controller.retry_last())

    assert result.scene is not None
    assert fetcher.requests[2] == fetcher.requests[1]
    assert machine.phase is Phase.PLAYING
    assert len(controller.history) == 2


def test_rate_limit_error_is_shown() -> None:
    limited = GenerationResult(
        rate_limit_error=RateLimitErrorInfo(message="Rate limit exceeded.", reset_timestamp=1, request_class=RequestClass.TEXT),
        error_kind="rate_limit_exceeded",
    )
    controller, machine, _scheduler = _controller(_FakeFetcher([limited]))

    asyncio.run(controller.start(_SCENARIO))

    assert machine.phase is Phase.ERROR
    assert machine.error_message == "Rate limit exceeded."
    assert controller.history == []


def test_restart_clears_story_and_saved_history() -> None:
    backend = _MemoryBackend()
    controller, machine, _scheduler = _controller(_FakeFetcher(), HistoryStore(backend))
    asyncio.run(controller.start(_SCENARIO))
    assert backend.data is not None

    controller.restart()

    assert controller.history == []
    assert controller.current_scene is None
    assert machine.phase is Phase.SELECTING_SCENARIO
    assert backend.data is None
    with pytest.raises(RuntimeError):
        asyncio.run(controller.retry_last())


def test_saved_story_is_restored_into_a_new_controller() -> None:
    backend = _MemoryBackend()
    first, _machine, _scheduler = _controller(_FakeFetcher(), HistoryStore(backend))
    asyncio.run(first.start(_SCENARIO))

    fetcher = _FakeFetcher()
    second, machine, scheduler = _controller(fetcher, HistoryStore(backend))
    assert second.restore()

    assert second.metadata.initial_scenario_text == "A sealed tomb"
    assert second.voice == "en-GB-A"
    assert second.current_scene is not None
    assert second.current_scene.image_url is None
    assert machine.phase is Phase.PLAYING
    assert not machine.has_user_interacted

    scheduler.flush()
    asyncio.run(second.choose(0))
    assert fetcher.requests[0].story_context.history[0].choice_text == "go left 0"
