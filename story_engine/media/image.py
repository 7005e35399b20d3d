from __future__ import annotations

import asyncio
import re

from loguru import logger

from story_engine.domain.errors import MediaGenerationFailed
from story_engine.domain.models import MediaFailure, MediaOutcome, MediaSuccess, RequestClass, StyleHints
from story_engine.llm.media_clients import ImageClient
from story_engine.quota.guard import QuotaGuard

node_log = logger.bind(node="image_enrich")

ILLUSTRATIVE_KEYWORDS = (
    "painting",
    "sketch",
    "anime",
    "cartoon",
    "illustration",
    "pixel art",
    "watercolor",
    "comic",
    "drawing",
    "graphic",
    "line art",
    "cel shaded",
    "vector",
    "art nouveau",
    "art deco",
    "impressionist",
    "cubist",
    "surrealist",
    "abstract",
    "charcoal",
    "ink",
    "low poly",
    "claymation",
    "manga",
)

_ILLUSTRATIVE_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(keyword).replace(r"\ ", r"\s+") for keyword in ILLUSTRATIVE_KEYWORDS) + r")(?:e?s)?\b"
)

NEGATIVE_PHOTOREALISM = "avoid photorealism, photograph, photo, real life."
FIRST_PERSON_CONSTRAINT = (
    "First-person point of view of the player. The protagonist is never visible in the frame."
)


def is_illustrative_style(visual_style: str | None) -> bool:
    """Whole-word match, so "photographic" is not read as "graphic"."""

    return bool(_ILLUSTRATIVE_PATTERN.search((visual_style or "").lower()))


def compose_image_prompt(image_prompt: str, style: StyleHints) -> str:
    details = [f"Genre: {style.genre}" if style.genre else None, f"Tone: {style.tone}" if style.tone else None]
    detail_text = ". ".join(part for part in details if part)
    scene = image_prompt.strip().rstrip(".")

    if style.visual_style and is_illustrative_style(style.visual_style):
        parts = [f"{style.visual_style}: {scene}."]
        if detail_text:
            parts.append(f"{detail_text}.")
        parts.append("illustration, artwork.")
        parts.append(NEGATIVE_PHOTOREALISM)
    else:
        prefix = f"{style.visual_style}: " if style.visual_style else ""
        parts = [f"{prefix}Scene Description: {scene}."]
        if detail_text:
            parts.append(f"{detail_text}.")

    parts.append(FIRST_PERSON_CONSTRAINT)
    return " ".join(parts)


def to_data_uri(b64_png: str) -> str:
    return f"data:image/png;base64,{b64_png}"


class ImageEnricher:
    """Image branch of scene enrichment. ``enrich`` never raises."""

    def __init__(self, client: ImageClient, guard: QuotaGuard, *, timeout_s: float):
        self.client = client
        self.guard = guard
        self.timeout_s = timeout_s

    async def enrich(self, user_id: str | None, image_prompt: str | None, style: StyleHints) -> MediaOutcome:
        log = node_log.bind(user_id=user_id or "-", request_class=RequestClass.IMAGE.value)
        if not image_prompt or not image_prompt.strip():
            return MediaFailure(reason="Scene has no image prompt.")

        limit = await self.guard.check_and_consume(user_id, RequestClass.IMAGE)
        if not limit.success:
            log.warning("Image generation skipped: {}", limit.error_message)
            return MediaFailure(
                reason=limit.error_message or "Image generation rate limit exceeded.",
                retry_after=limit.reset_timestamp,
                rate_limited=limit.error_kind == "RateLimitExceeded",
            )

        final_prompt = compose_image_prompt(image_prompt, style)
        try:
            b64_png = await asyncio.wait_for(self.client.generate(final_prompt), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            failure = MediaGenerationFailed("image", f"timed out after {self.timeout_s}s")
        except Exception as exc:  # noqa: BLE001
            failure = MediaGenerationFailed("image", f"{type(exc).__name__}: {exc}")
        else:
            log.debug("Image generated prompt_len={} b64_len={}", len(final_prompt), len(b64_png))
            return MediaSuccess(data=to_data_uri(b64_png))

        log.warning("Image generation failed: {}", failure.reason)
        return MediaFailure(reason=str(failure))
