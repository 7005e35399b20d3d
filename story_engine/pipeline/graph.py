from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from story_engine.config.schema import AppConfigRoot
from story_engine.pipeline.clients import PipelineClients
from story_engine.pipeline.nodes import (
    assemble_scene,
    build_prompt,
    image_enrich,
    narrate,
    text_quota,
    validate_response,
    voice_enrich,
)
from story_engine.pipeline.state import SceneState


def build_scene_graph(*, config: AppConfigRoot, clients: PipelineClients):
    """Prompt -> text quota -> narration -> validation -> (image || voice) -> assembly.

    Any node before the fan-out may raise a StoryEngineError, which aborts the run
    before media is attempted. The two media nodes never raise, and the assembly
    node waits for both.
    """

    workflow = StateGraph(SceneState)

    async def _build_prompt(state: SceneState) -> dict:
        return await build_prompt.run(state)

    async def _text_quota(state: SceneState) -> dict:
        return await text_quota.run(state, guard=clients.text_guard)

    async def _narrate(state: SceneState) -> dict:
        return await narrate.run(state, config=config, narrator=clients.narrator)

    async def _validate_response(state: SceneState) -> dict:
        return await validate_response.run(state, config=config)

    async def _image_enrich(state: SceneState) -> dict:
        return await image_enrich.run(state, enricher=clients.image)

    async def _voice_enrich(state: SceneState) -> dict:
        return await voice_enrich.run(state, enricher=clients.voice)

    async def _assemble_scene(state: SceneState) -> dict:
        return await assemble_scene.run(state)

    workflow.add_node("build_prompt", _build_prompt)
    workflow.add_node("text_quota", _text_quota)
    workflow.add_node("narrate", _narrate)
    workflow.add_node("validate_response", _validate_response)
    workflow.add_node("image_enrich", _image_enrich)
    workflow.add_node("voice_enrich", _voice_enrich)
    workflow.add_node("assemble_scene", _assemble_scene)

    workflow.add_edge(START, "build_prompt")
    workflow.add_edge("build_prompt", "text_quota")
    workflow.add_edge("text_quota", "narrate")
    workflow.add_edge("narrate", "validate_response")
    workflow.add_edge("validate_response", "image_enrich")
    workflow.add_edge("validate_response", "voice_enrich")
    workflow.add_edge(["image_enrich", "voice_enrich"], "assemble_scene")
    workflow.add_edge("assemble_scene", END)

    return workflow.compile()
