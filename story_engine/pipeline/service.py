from __future__ import annotations

from pydantic import ValidationError

from story_engine.config.schema import AppConfigRoot
from story_engine.domain.errors import (
    AuthenticationRequired,
    MalformedResponse,
    RateLimitExceeded,
    StoryEngineError,
    UnexpectedInternal,
)
from story_engine.domain.hashing import new_trace_id
from story_engine.domain.models import (
    GenerationResult,
    RateLimitErrorInfo,
    RequestClass,
    ScenariosResult,
    StorySceneRequest,
    UserSession,
)
from story_engine.narration.prompts import build_scenarios_prompt
from story_engine.narration.validator import validate_scenarios
from story_engine.pipeline.assembler import media_warnings
from story_engine.pipeline.clients import PipelineClients
from story_engine.pipeline.graph import build_scene_graph
from story_engine.utils.logging import request_logger


def _rate_limit_result(exc: RateLimitExceeded) -> GenerationResult:
    return GenerationResult(
        rate_limit_error=RateLimitErrorInfo(
            message=str(exc),
            reset_timestamp=exc.reset_timestamp,
            request_class=RequestClass(exc.request_class),
        ),
        error_kind=exc.kind,
    )


async def generate_story_scene(
    request: StorySceneRequest,
    session: UserSession | None,
    *,
    clients: PipelineClients,
    config: AppConfigRoot,
) -> GenerationResult:
    """Produce the next scene for ``request``.

    Exactly one of scene, error or rate-limit error is populated in the result.
    Media failures never turn into errors; they are reported in ``media_warnings``.
    """

    trace_id = new_trace_id()
    user_id = session.user_id if session else None
    log = request_logger("generate_story_scene", trace_id=trace_id, user_id=user_id)

    if not user_id:
        exc = AuthenticationRequired()
        return GenerationResult(error=exc.user_message, error_kind=exc.kind)

    try:
        context = request.to_context()
    except ValidationError as exc:
        log.warning("Rejected story context: {}", exc.errors()[:1])
        return GenerationResult(error="Invalid story context.", error_kind="invalid_request")

    graph = build_scene_graph(config=config, clients=clients)
    try:
        final_state = await graph.ainvoke(
            {
                "trace_id": trace_id,
                "user_id": user_id,
                "context": context,
                "initial_scenario_text": request.initial_scenario_text,
                "voice": request.voice,
            }
        )
    except RateLimitExceeded as exc:
        return _rate_limit_result(exc)
    except MalformedResponse as exc:
        log.warning("Malformed narration response kind={}", exc.malformed_kind)
        return GenerationResult(error=exc.user_message, error_kind=exc.kind)
    except StoryEngineError as exc:
        log.warning("Scene generation failed kind={} error={}", exc.kind, exc)
        return GenerationResult(error=exc.user_message, error_kind=exc.kind)
    except Exception:  # noqa: BLE001
        log.exception("Unexpected error while generating scene")
        internal = UnexpectedInternal()
        return GenerationResult(error=internal.user_message, error_kind=internal.kind)

    scene = final_state["final_scene"]
    warnings = media_warnings(final_state["image_outcome"], final_state["audio_outcome"])
    log.info(
        "Scene generated choices={} image={} audio={}",
        len(scene.choices),
        scene.image_url is not None,
        scene.audio_data is not None,
    )
    return GenerationResult(scene=scene, prompt_used=final_state["prompt"], media_warnings=warnings)


async def generate_scenarios(
    session: UserSession | None,
    *,
    clients: PipelineClients,
    config: AppConfigRoot,
    count: int = 4,
) -> ScenariosResult:
    trace_id = new_trace_id()
    user_id = session.user_id if session else None
    log = request_logger("generate_scenarios", trace_id=trace_id, user_id=user_id)

    if not user_id:
        exc = AuthenticationRequired()
        return ScenariosResult(error=exc.user_message, error_kind=exc.kind)

    limit = await clients.text_guard.check_and_consume(user_id, RequestClass.TEXT)
    if not limit.success:
        if limit.error_kind == "AuthenticationRequired":
            return ScenariosResult(error="Authentication required.", error_kind="authentication_required")
        message = limit.error_message or "Rate limit exceeded."
        return ScenariosResult(
            rate_limit_error=RateLimitErrorInfo(
                message=message,
                reset_timestamp=limit.reset_timestamp,
                request_class=RequestClass.TEXT,
            ),
            error_kind="rate_limit_exceeded",
        )

    narrator = clients.scenarios_narrator or clients.narrator
    request = narrator.build_request(build_scenarios_prompt(count), config.llm.scenarios_sampling)
    try:
        raw_text = await narrator.generate(request, context={"node": "generate_scenarios", "trace_id": trace_id})
        scenarios = validate_scenarios(raw_text)
    except MalformedResponse as exc:
        log.warning("Scenario response rejected kind={} detail={}", exc.malformed_kind, exc.detail)
        return ScenariosResult(error="Received invalid scenario data from AI.", error_kind=exc.kind)
    except StoryEngineError as exc:
        return ScenariosResult(error=exc.user_message, error_kind=exc.kind)

    log.info("Generated {} scenarios", len(scenarios))
    return ScenariosResult(scenarios=scenarios)
