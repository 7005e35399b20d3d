from __future__ import annotations

from typing import Literal


class StoryEngineError(Exception):
    """Base class for failures surfaced by the generation pipeline."""

    kind = "internal"
    user_message = "An unexpected error occurred."


class AuthenticationRequired(StoryEngineError):
    kind = "authentication_required"
    user_message = "Authentication required."


class RateLimitExceeded(StoryEngineError):
    kind = "rate_limit_exceeded"

    def __init__(self, message: str, *, request_class: str, reset_timestamp: int, limit: int) -> None:
        super().__init__(message)
        self.request_class = request_class
        self.reset_timestamp = reset_timestamp
        self.limit = limit
        self.user_message = message


class MalformedResponse(StoryEngineError):
    """Upstream text could not be turned into a scene.

    Retryable by the user: the pipeline never resubmits on its own.
    """

    def __init__(self, kind: Literal["parse", "schema"], detail: str = "") -> None:
        self.kind = f"malformed_{kind}"
        self.malformed_kind = kind
        self.detail = detail
        if kind == "parse":
            self.user_message = "Failed to parse AI response."
        else:
            self.user_message = "AI response validation failed."
        super().__init__(f"{self.user_message} {detail}".strip())


class UpstreamUnavailable(StoryEngineError):
    kind = "upstream_unavailable"
    user_message = "The story service is currently unavailable."


class UnexpectedInternal(StoryEngineError):
    kind = "internal"


class MediaGenerationFailed(StoryEngineError):
    """Raised inside an enricher; always converted into a MediaFailure before leaving it."""

    kind = "media_generation_failed"

    def __init__(self, medium: str, reason: str) -> None:
        super().__init__(f"{medium} generation failed: {reason}")
        self.medium = medium
        self.reason = reason


class StorageFull(Exception):
    """Raised by a history backend when a write does not fit."""
