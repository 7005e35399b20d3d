from __future__ import annotations

import base64
from dataclasses import dataclass
import os
from typing import Any, Literal, Protocol

import httpx

from story_engine.config.schema import AppConfigRoot, ImageConfig, VoiceConfig

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class ResolvedMediaRuntime:
    medium: str
    provider_name: str
    model: str
    timeout_s: float
    base_url: str
    api_key_env: str | None
    api_key: str | None


class ImageClient(Protocol):
    async def generate(self, prompt: str) -> str:
        """Return base64-encoded PNG data."""
        ...


class SpeechClient(Protocol):
    async def synthesize(self, text: str, *, voice: str, language_code: str) -> bytes:
        """Return MP3 bytes."""
        ...


def resolve_media_runtime(config: AppConfigRoot, medium: Literal["image", "voice"]) -> ResolvedMediaRuntime:
    endpoint: ImageConfig | VoiceConfig = config.media.image if medium == "image" else config.media.voice
    provider = config.llm.providers[endpoint.provider]

    api_key = None
    if provider.api_key_env:
        api_key = os.getenv(provider.api_key_env)
        if not api_key:
            raise ValueError(f"Missing required API key env for {medium} generation: {provider.api_key_env}")

    return ResolvedMediaRuntime(
        medium=medium,
        provider_name=endpoint.provider,
        model=endpoint.model,
        timeout_s=endpoint.timeout_s,
        base_url=(provider.base_url or DEFAULT_OPENAI_BASE_URL).rstrip("/"),
        api_key_env=provider.api_key_env,
        api_key=api_key,
    )


def _headers(runtime: ResolvedMediaRuntime) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if runtime.api_key:
        headers["Authorization"] = f"Bearer {runtime.api_key}"
    return headers


class OpenAIImageClient:
    """Calls ``POST {base_url}/images/generations`` and returns the first image as base64."""

    def __init__(
        self,
        runtime: ResolvedMediaRuntime,
        *,
        size: str = "1536x1024",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.runtime = runtime
        self.size = size
        self._transport = transport

    async def generate(self, prompt: str) -> str:
        body: dict[str, Any] = {"model": self.runtime.model, "prompt": prompt, "n": 1, "size": self.size}
        async with httpx.AsyncClient(timeout=self.runtime.timeout_s, transport=self._transport) as client:
            response = await client.post(
                f"{self.runtime.base_url}/images/generations",
                headers=_headers(self.runtime),
                json=body,
            )
            response.raise_for_status()
            payload = response.json()

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data or not isinstance(data, list):
            raise ValueError("Image response has no 'data' entries")
        first = data[0] if isinstance(data[0], dict) else {}
        b64 = first.get("b64_json")
        if not b64:
            raise ValueError("Image response entry has no 'b64_json'")
        return str(b64)


class OpenAISpeechClient:
    """Calls ``POST {base_url}/audio/speech`` and returns MP3 bytes."""

    def __init__(
        self,
        runtime: ResolvedMediaRuntime,
        *,
        provider_voice: str = "alloy",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.runtime = runtime
        self.provider_voice = provider_voice
        self._transport = transport

    async def synthesize(self, text: str, *, voice: str, language_code: str) -> bytes:
        body = {
            "model": self.runtime.model,
            "input": text,
            "voice": self.provider_voice,
            "response_format": "mp3",
            # Speech models take style guidance as free text.
            "instructions": f"Narrate as an audiobook storyteller. Language: {language_code}. Voice profile: {voice}.",
        }
        async with httpx.AsyncClient(timeout=self.runtime.timeout_s, transport=self._transport) as client:
            response = await client.post(
                f"{self.runtime.base_url}/audio/speech",
                headers=_headers(self.runtime),
                json=body,
            )
            response.raise_for_status()
            audio = response.content

        if not audio:
            raise ValueError("Speech response is empty")
        return audio


def encode_audio(audio: bytes) -> str:
    return base64.b64encode(audio).decode("ascii")
