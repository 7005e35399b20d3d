from __future__ import annotations

from dataclasses import dataclass

from story_engine.config.schema import AppConfigRoot
from story_engine.llm.factory import NarrationGenerator, OpenAINarrationClient
from story_engine.llm.media_clients import OpenAIImageClient, OpenAISpeechClient, resolve_media_runtime
from story_engine.media.image import ImageEnricher
from story_engine.media.voice import VoiceEnricher
from story_engine.quota.guard import QuotaGuard
from story_engine.storage.db import DatabaseService


@dataclass
class PipelineClients:
    """External collaborators for one process, passed explicitly into the pipeline."""

    narrator: NarrationGenerator
    text_guard: QuotaGuard
    image: ImageEnricher | None = None
    voice: VoiceEnricher | None = None
    scenarios_narrator: NarrationGenerator | None = None


def build_clients(config: AppConfigRoot, db: DatabaseService) -> PipelineClients:
    guard = QuotaGuard(db, config.quota.limits)

    image = None
    if config.media.image.enabled:
        image = ImageEnricher(
            OpenAIImageClient(resolve_media_runtime(config, "image"), size=config.media.image.size),
            guard,
            timeout_s=config.media.image.timeout_s,
        )

    voice = None
    if config.media.voice.enabled:
        voice = VoiceEnricher(
            OpenAISpeechClient(
                resolve_media_runtime(config, "voice"),
                provider_voice=config.media.voice.provider_voice,
            ),
            guard,
            default_voice=config.media.voice.default_voice,
            timeout_s=config.media.voice.timeout_s,
        )

    scenarios_narrator = None
    if config.llm.routes.scenarios_chat:
        scenarios_narrator = OpenAINarrationClient(config, route="scenarios")

    return PipelineClients(
        narrator=OpenAINarrationClient(config, route="narration"),
        text_guard=guard,
        image=image,
        voice=voice,
        scenarios_narrator=scenarios_narrator,
    )
