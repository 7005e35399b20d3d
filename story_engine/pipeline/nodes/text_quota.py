from __future__ import annotations

from story_engine.domain.errors import AuthenticationRequired, RateLimitExceeded
from story_engine.domain.models import RequestClass
from story_engine.pipeline.state import SceneState
from story_engine.quota.guard import QuotaGuard
from story_engine.utils.logging import request_logger


async def run(state: SceneState, *, guard: QuotaGuard) -> dict:
    node_log = request_logger(
        "text_quota",
        trace_id=state["trace_id"],
        user_id=state["user_id"],
        request_class=RequestClass.TEXT.value,
    )
    result = await guard.check_and_consume(state["user_id"], RequestClass.TEXT)
    if result.success:
        return {"text_quota_remaining": result.remaining}

    if result.error_kind == "AuthenticationRequired":
        raise AuthenticationRequired(result.error_message or "Authentication required.")

    # Store errors are reported like an exhausted quota.
    node_log.warning("Text generation denied kind={} message={}", result.error_kind, result.error_message)
    raise RateLimitExceeded(
        result.error_message or "Rate limit exceeded.",
        request_class=RequestClass.TEXT.value,
        reset_timestamp=result.reset_timestamp,
        limit=result.limit,
    )
