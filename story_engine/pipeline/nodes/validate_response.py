from __future__ import annotations

from story_engine.config.schema import AppConfigRoot
from story_engine.domain.errors import MalformedResponse
from story_engine.llm.factory import log_json_parse_failure
from story_engine.narration.validator import validate_scene
from story_engine.pipeline.state import SceneState


async def run(state: SceneState, *, config: AppConfigRoot) -> dict:
    raw_text = state["raw_text"]
    try:
        scene = validate_scene(raw_text)
    except MalformedResponse as exc:
        log_json_parse_failure(
            config,
            source=f"narration_{exc.malformed_kind}",
            raw_text=raw_text,
            exc=exc,
            context={"node": "validate_response", "trace_id": state["trace_id"], "user_id": state["user_id"]},
        )
        raise
    return {"scene": scene}
