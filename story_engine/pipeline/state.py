from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from story_engine.domain.models import FinalScene, GenerationRequest, NarrativeContext, ValidatedScene


class SceneState(TypedDict):
    # Inputs
    trace_id: str
    user_id: str
    context: NarrativeContext
    initial_scenario_text: NotRequired[str | None]
    voice: NotRequired[str | None]

    # Node outputs
    prompt: NotRequired[str]
    generation_request: NotRequired[GenerationRequest]
    text_quota_remaining: NotRequired[int]
    raw_text: NotRequired[str]
    scene: NotRequired[ValidatedScene]
    # MediaSuccess | MediaFailure
    image_outcome: NotRequired[Any]
    audio_outcome: NotRequired[Any]
    final_scene: NotRequired[FinalScene]
