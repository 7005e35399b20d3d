from __future__ import annotations

from story_engine.domain.models import MediaFailure
from story_engine.media.image import ImageEnricher
from story_engine.pipeline.state import SceneState
from story_engine.utils.logging import request_logger


async def run(state: SceneState, *, enricher: ImageEnricher | None) -> dict:
    node_log = request_logger("image_enrich", trace_id=state["trace_id"], user_id=state["user_id"])
    if enricher is None:
        return {"image_outcome": MediaFailure(reason="Image generation is disabled.")}

    scene = state["scene"]
    try:
        outcome = await enricher.enrich(state["user_id"], scene.image_prompt, state["context"].style)
    except Exception as exc:  # noqa: BLE001
        node_log.exception("Image branch raised; continuing without image")
        outcome = MediaFailure(reason=f"image branch error: {type(exc).__name__}")
    return {"image_outcome": outcome}
