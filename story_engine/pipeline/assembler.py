from __future__ import annotations

from loguru import logger

from story_engine.domain.models import FinalScene, MediaFailure, MediaOutcome, MediaSuccess, MediaWarning, ValidatedScene

node_log = logger.bind(node="assemble_scene")


def assemble(
    scene: ValidatedScene,
    image_outcome: MediaOutcome,
    audio_outcome: MediaOutcome,
    prompt: str,
) -> FinalScene:
    """Merge validated text with both media outcomes.

    Text and choices always come through. Media fields are filled only from
    ``MediaSuccess`` outcomes of this call.
    """

    for medium, outcome in (("image", image_outcome), ("voice", audio_outcome)):
        if isinstance(outcome, MediaFailure):
            node_log.info("Scene delivered without {}: {}", medium, outcome.reason)

    return FinalScene(
        passage=scene.passage,
        choices=[choice.model_copy() for choice in scene.choices],
        image_prompt=scene.image_prompt,
        updated_summary=scene.updated_summary,
        image_url=image_outcome.data if isinstance(image_outcome, MediaSuccess) else None,
        audio_data=audio_outcome.data if isinstance(audio_outcome, MediaSuccess) else None,
        generation_prompt=prompt,
    )


def media_warnings(image_outcome: MediaOutcome, audio_outcome: MediaOutcome) -> list[MediaWarning]:
    warnings: list[MediaWarning] = []
    for medium, outcome in (("image", image_outcome), ("voice", audio_outcome)):
        if isinstance(outcome, MediaFailure):
            warnings.append(
                MediaWarning(
                    medium=medium,
                    reason=outcome.reason,
                    rate_limited=outcome.rate_limited,
                    retry_after=outcome.retry_after,
                )
            )
    return warnings
