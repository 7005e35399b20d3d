from __future__ import annotations

from story_engine.config.schema import AppConfigRoot
from story_engine.llm.factory import NarrationGenerator
from story_engine.pipeline.state import SceneState
from story_engine.utils.logging import request_logger


async def run(state: SceneState, *, config: AppConfigRoot, narrator: NarrationGenerator) -> dict:
    node_log = request_logger("narrate", trace_id=state["trace_id"], user_id=state["user_id"])
    request = narrator.build_request(state["prompt"], config.llm.narration_sampling)
    raw_text = await narrator.generate(
        request,
        context={"node": "narrate", "trace_id": state["trace_id"], "user_id": state["user_id"]},
    )
    node_log.debug("Narration received model={} chars={}", request.model_id, len(raw_text))
    return {"generation_request": request, "raw_text": raw_text}
