from __future__ import annotations

from story_engine.domain.hashing import prompt_hash
from story_engine.narration.prompts import build_story_prompt
from story_engine.pipeline.state import SceneState
from story_engine.utils.logging import request_logger


async def run(state: SceneState) -> dict:
    node_log = request_logger("build_prompt", trace_id=state["trace_id"], user_id=state["user_id"])
    context = state["context"]
    prompt = build_story_prompt(context, state.get("initial_scenario_text"))
    node_log.debug(
        "Prompt built history_len={} prompt_len={} prompt_hash={}",
        len(context.history),
        len(prompt),
        prompt_hash(prompt),
    )
    return {"prompt": prompt}
