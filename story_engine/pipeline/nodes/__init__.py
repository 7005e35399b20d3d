"""Scene pipeline graph nodes."""

from story_engine.pipeline.nodes import (
    assemble_scene,
    build_prompt,
    image_enrich,
    narrate,
    text_quota,
    validate_response,
    voice_enrich,
)

__all__ = [
    "build_prompt",
    "text_quota",
    "narrate",
    "validate_response",
    "image_enrich",
    "voice_enrich",
    "assemble_scene",
]
