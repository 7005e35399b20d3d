from __future__ import annotations

import asyncio

from loguru import logger

from story_engine.domain.errors import MediaGenerationFailed
from story_engine.domain.models import MediaFailure, MediaOutcome, MediaSuccess, RequestClass
from story_engine.llm.media_clients import SpeechClient, encode_audio
from story_engine.quota.guard import QuotaGuard

node_log = logger.bind(node="voice_enrich")

DEFAULT_LANGUAGE_CODE = "en-US"


def language_code_for(voice: str | None) -> str:
    """``en-US-Wavenet-A`` -> ``en-US``; anything without two dash-separated parts falls back."""

    if not voice:
        return DEFAULT_LANGUAGE_CODE
    parts = voice.split("-")
    if len(parts) >= 2 and parts[0] and parts[1]:
        return f"{parts[0]}-{parts[1]}"
    return DEFAULT_LANGUAGE_CODE


class VoiceEnricher:
    """Voice branch of scene enrichment. ``enrich`` never raises."""

    def __init__(self, client: SpeechClient, guard: QuotaGuard, *, default_voice: str, timeout_s: float):
        self.client = client
        self.guard = guard
        self.default_voice = default_voice
        self.timeout_s = timeout_s

    async def enrich(self, user_id: str | None, text: str, voice: str | None = None) -> MediaOutcome:
        log = node_log.bind(user_id=user_id or "-", request_class=RequestClass.VOICE.value)
        if not text or not text.strip():
            return MediaFailure(reason="No text to synthesize.")

        limit = await self.guard.check_and_consume(user_id, RequestClass.VOICE)
        if not limit.success:
            log.warning("Speech synthesis skipped: {}", limit.error_message)
            return MediaFailure(
                reason=limit.error_message or "Speech synthesis rate limit exceeded.",
                retry_after=limit.reset_timestamp,
                rate_limited=limit.error_kind == "RateLimitExceeded",
            )

        voice_name = voice or self.default_voice
        language_code = language_code_for(voice_name)
        try:
            audio = await asyncio.wait_for(
                self.client.synthesize(text, voice=voice_name, language_code=language_code),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            failure = MediaGenerationFailed("voice", f"timed out after {self.timeout_s}s")
        except Exception as exc:  # noqa: BLE001
            failure = MediaGenerationFailed("voice", f"{type(exc).__name__}: {exc}")
        else:
            log.debug("Speech synthesized voice={} language={} bytes={}", voice_name, language_code, len(audio))
            return MediaSuccess(data=encode_audio(audio))

        log.warning("Speech synthesis failed: {}", failure.reason)
        return MediaFailure(reason=str(failure))
