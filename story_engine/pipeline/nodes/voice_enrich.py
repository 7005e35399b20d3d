from __future__ import annotations

from story_engine.domain.models import MediaFailure
from story_engine.media.voice import VoiceEnricher
from story_engine.pipeline.state import SceneState
from story_engine.utils.logging import request_logger


async def run(state: SceneState, *, enricher: VoiceEnricher | None) -> dict:
    node_log = request_logger("voice_enrich", trace_id=state["trace_id"], user_id=state["user_id"])
    if enricher is None:
        return {"audio_outcome": MediaFailure(reason="Speech synthesis is disabled.")}

    scene = state["scene"]
    try:
        outcome = await enricher.enrich(state["user_id"], scene.passage, state.get("voice"))
    except Exception as exc:  # noqa: BLE001
        node_log.exception("Voice branch raised; continuing without audio")
        outcome = MediaFailure(reason=f"voice branch error: {type(exc).__name__}")
    return {"audio_outcome": outcome}
