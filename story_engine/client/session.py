from __future__ import annotations

from typing import Awaitable, Callable

from loguru import logger

from story_engine.domain.errors import StorageFull
from story_engine.domain.models import (
    AdventureMetadata,
    FinalScene,
    GenerationResult,
    NarrativeHistoryItem,
    SceneChoice,
    StoryContextPayload,
    StorySceneRequest,
    StorySnapshot,
)
from story_engine.history.store import HistoryStore
from story_engine.playback.machine import PlaybackMachine

node_log = logger.bind(node="story_controller")

SceneFetcher = Callable[[StorySceneRequest], Awaitable[GenerationResult]]


class StoryController:
    """Client-side story flow.

    Owns the narrative history and adventure metadata, builds scene requests from
    them, feeds delivered scenes into the playback machine and persists the
    snapshot after every scene.
    """

    def __init__(
        self,
        fetch_scene: SceneFetcher,
        machine: PlaybackMachine,
        *,
        history_store: HistoryStore | None = None,
    ) -> None:
        self.fetch_scene = fetch_scene
        self.machine = machine
        self.history_store = history_store

        self.metadata = AdventureMetadata()
        self.voice: str | None = None
        self.history: list[NarrativeHistoryItem] = []
        self.current_scene: FinalScene | None = None
        self.last_result: GenerationResult | None = None
        self._retry_request: StorySceneRequest | None = None

    @property
    def can_retry(self) -> bool:
        return self._pending_request() is not None

    def snapshot(self) -> StorySnapshot:
        return StorySnapshot(
            metadata=self.metadata,
            voice=self.voice,
            history=list(self.history),
            current_scene=self.current_scene,
        )

    def build_request(self) -> StorySceneRequest:
        history = [
            NarrativeHistoryItem(passage=item.passage, choice_text=item.choice_text, summary=item.summary)
            for item in self.history
        ]
        return StorySceneRequest(
            story_context=StoryContextPayload(history=history),
            initial_scenario_text=None if history else self.metadata.initial_scenario_text,
            genre=self.metadata.genre,
            tone=self.metadata.tone,
            visual_style=self.metadata.visual_style,
            voice=self.voice,
        )

    async def start(self, scenario: SceneChoice) -> GenerationResult:
        self.machine.select_scenario()
        self._clear()
        self.metadata = AdventureMetadata(
            genre=scenario.genre,
            tone=scenario.tone,
            visual_style=scenario.visual_style,
            initial_scenario_text=scenario.text,
        )
        self.voice = scenario.voice
        node_log.info("Starting adventure genre={} tone={}", scenario.genre, scenario.tone)
        return await self._fetch(self.build_request())

    async def choose(self, index: int) -> GenerationResult:
        choice = self.machine.choose(index)
        if not self.history:
            raise RuntimeError("no scene to choose from")
        self.history[-1] = self.history[-1].model_copy(update={"choice_text": choice.text})
        return await self._fetch(self.build_request())

    async def retry_last(self) -> GenerationResult:
        """Resubmit the request whose scene never arrived."""

        request = self._pending_request()
        if request is None:
            raise RuntimeError("nothing to retry")
        self.machine.retry_started()
        return await self._fetch(request)

    def restart(self) -> None:
        self.machine.restart()
        self._clear()
        self.metadata = AdventureMetadata()
        self.voice = None
        if self.history_store is not None:
            self.history_store.clear()

    def restore(self) -> bool:
        """Reload the persisted snapshot; return True when a scene was resumed."""

        if self.history_store is None:
            return False
        snapshot = self.history_store.load()
        if snapshot is None:
            return False
        self.metadata = snapshot.metadata
        self.voice = snapshot.voice
        self.history = list(snapshot.history)
        self.current_scene = snapshot.current_scene
        if self.current_scene is None:
            return False
        self.machine.resume(self.current_scene)
        return True

    async def _fetch(self, request: StorySceneRequest) -> GenerationResult:
        self._retry_request = None
        result = await self.fetch_scene(request)
        self.last_result = result

        if result.scene is not None:
            self._accept(result.scene, result.prompt_used or "")
            for warning in result.media_warnings:
                node_log.info("Scene delivered without {}: {}", warning.medium, warning.reason)
            return result

        if result.rate_limit_error is not None:
            self.machine.on_error(result.rate_limit_error.message)
            return result

        if result.is_retryable:
            self._retry_request = request
            self._persist()
        self.machine.on_error(result.error or "An unexpected error occurred.")
        return result

    def _accept(self, scene: FinalScene, prompt: str) -> None:
        self.history.append(
            NarrativeHistoryItem(
                passage=scene.passage,
                summary=scene.updated_summary,
                prompt=prompt,
                image_prompt=scene.image_prompt,
                choices=list(scene.choices),
            )
        )
        self.current_scene = scene
        self.machine.on_scene(scene)
        self._persist()

    def _persist(self) -> None:
        if self.history_store is None:
            return
        try:
            self.history_store.save(self.snapshot())
        except StorageFull:
            node_log.error("Could not persist story history; continuing in memory")

    def _pending_request(self) -> StorySceneRequest | None:
        if self._retry_request is not None:
            return self._retry_request
        # A restored snapshot whose latest beat already records a choice never got its next scene.
        if self.history and self.history[-1].choice_text:
            return self.build_request()
        if not self.history and self.metadata.initial_scenario_text:
            return self.build_request()
        return None

    def _clear(self) -> None:
        self.history = []
        self.current_scene = None
        self.last_result = None
        self._retry_request = None
