from __future__ import annotations

from story_engine.pipeline.assembler import assemble
from story_engine.pipeline.state import SceneState


async def run(state: SceneState) -> dict:
    final_scene = assemble(
        state["scene"],
        state["image_outcome"],
        state["audio_outcome"],
        state["prompt"],
    )
    return {"final_scene": final_scene}
