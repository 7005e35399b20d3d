from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


RequestClassName = Literal["text", "image", "voice"]


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: Path = Field(default=Path("./data"))
    output_dir: Path = Field(default=Path("./output"))
    log_level: str = Field(default="INFO")


class LLMProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["openai_compatible"] = "openai_compatible"
    base_url: str | None = None
    api_key_env: str | None = None


class ChatEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    temperature: float = 1.0
    timeout_s: int = 60
    max_concurrency: int = 6
    max_tokens: int | None = 900

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("timeout_s", "max_concurrency")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("endpoint integer settings must be positive")
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_optional_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_tokens must be positive when provided")
        return value


class SamplingConfig(BaseModel):
    """Sampling knobs forwarded to the narration model.

    ``top_k`` is carried for providers that accept it and ignored by the
    OpenAI-compatible transport.
    """

    model_config = ConfigDict(extra="forbid")

    temperature: float = 1.0
    top_p: float = 0.95
    top_k: int = 40
    frequency_penalty: float = 0.3
    presence_penalty: float = 0.6

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("top_p")
    @classmethod
    def _top_p_range(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("top_p must be in range (0, 1]")
        return value

    @field_validator("frequency_penalty", "presence_penalty")
    @classmethod
    def _penalty_range(cls, value: float) -> float:
        if not -2 <= value <= 2:
            raise ValueError("penalties must be between -2 and 2")
        return value

    def as_mapping(self) -> dict[str, float]:
        return {key: float(value) for key, value in self.model_dump().items()}


class LLMRoutesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    narration_chat: str = "narration_default"
    scenarios_chat: str | None = None


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    providers: dict[str, LLMProviderConfig]
    chat_endpoints: dict[str, ChatEndpointConfig]
    routes: LLMRoutesConfig = LLMRoutesConfig()
    narration_sampling: SamplingConfig = SamplingConfig()
    scenarios_sampling: SamplingConfig = SamplingConfig(
        temperature=1.0,
        top_p=0.9,
        top_k=60,
        frequency_penalty=0.5,
        presence_penalty=0.7,
    )

    @model_validator(mode="after")
    def _validate_references(self) -> "LLMConfig":
        if not self.providers:
            raise ValueError("llm.providers cannot be empty")
        if not self.chat_endpoints:
            raise ValueError("llm.chat_endpoints cannot be empty")

        for endpoint_name, endpoint in self.chat_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"chat endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        if self.routes.narration_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.narration_chat not found: {self.routes.narration_chat}")
        if self.routes.scenarios_chat and self.routes.scenarios_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.scenarios_chat not found: {self.routes.scenarios_chat}")

        return self

    def resolve_chat_route(
        self,
        route: Literal["narration", "scenarios"],
    ) -> tuple[str, ChatEndpointConfig, LLMProviderConfig]:
        if route == "narration":
            endpoint_name = self.routes.narration_chat
        else:
            endpoint_name = self.routes.scenarios_chat or self.routes.narration_chat

        endpoint = self.chat_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider


class MediaEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    provider: str = "default"
    model: str
    timeout_s: float = 60.0

    @field_validator("timeout_s")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout_s must be positive")
        return value


class ImageConfig(MediaEndpointConfig):
    model: str = "gpt-image-1"
    size: str = "1536x1024"


class VoiceConfig(MediaEndpointConfig):
    model: str = "gpt-4o-mini-tts"
    default_voice: str = "en-US-Chirp3-HD-Aoede"
    provider_voice: str = "alloy"


class MediaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image: ImageConfig = ImageConfig()
    voice: VoiceConfig = VoiceConfig()


class QuotaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limits: dict[RequestClassName, int] = Field(
        default_factory=lambda: {"text": 100, "image": 100, "voice": 100}
    )

    @field_validator("limits")
    @classmethod
    def _validate_limits(cls, value: dict[str, int]) -> dict[str, int]:
        for name in ("text", "image", "voice"):
            if name not in value:
                raise ValueError(f"quota.limits.{name} is required")
        for name, limit in value.items():
            if limit < 0:
                raise ValueError(f"quota.limits.{name} must be non-negative")
        return value

    def limit_for(self, request_class: str) -> int:
        return int(self.limits[request_class])  # type: ignore[index]


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqlite_path: Path = Field(default=Path("./data/story_engine.db"))
    busy_timeout_ms: int = 5000

    @field_validator("busy_timeout_ms")
    @classmethod
    def _non_negative_timeout(cls, value: int) -> int:
        if value < 0:
            raise ValueError("busy_timeout_ms must be non-negative")
        return value


class PlaybackConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    choice_fallback_ms: int = 150
    crossfade_ms: int = 1000

    @field_validator("choice_fallback_ms", "crossfade_ms")
    @classmethod
    def _non_negative_ms(cls, value: int) -> int:
        if value < 0:
            raise ValueError("playback durations must be non-negative")
        return value


class HistoryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: Path = Field(default=Path("./data/story_history.json"))
    max_bytes: int = 5_000_000
    max_prune_attempts: int = 20

    @field_validator("max_bytes", "max_prune_attempts")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("history integer settings must be positive")
        return value


class ObservabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_json_error_payload: bool = True
    json_error_payload_max_chars: int = 0

    @field_validator("json_error_payload_max_chars")
    @classmethod
    def _non_negative_chars(cls, value: int) -> int:
        if value < 0:
            raise ValueError("json_error_payload_max_chars must be non-negative")
        return value


def default_llm_config() -> LLMConfig:
    return LLMConfig.model_validate(
        {
            "providers": {
                "default": {
                    "kind": "openai_compatible",
                    "base_url": None,
                    "api_key_env": "OPENAI_API_KEY",
                }
            },
            "chat_endpoints": {
                "narration_default": {
                    "provider": "default",
                    "model": "gpt-4.1-mini",
                    "temperature": 1.0,
                    "timeout_s": 60,
                    "max_concurrency": 4,
                    "max_tokens": 900,
                },
            },
            "routes": {
                "narration_chat": "narration_default",
            },
        }
    )


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    llm: LLMConfig = Field(default_factory=default_llm_config)
    media: MediaConfig = MediaConfig()
    quota: QuotaConfig = QuotaConfig()
    storage: StorageConfig = StorageConfig()
    playback: PlaybackConfig = PlaybackConfig()
    history: HistoryConfig = HistoryConfig()
    observability: ObservabilityConfig = ObservabilityConfig()

    @model_validator(mode="after")
    def _validate_media_providers(self) -> "AppConfigRoot":
        for name, endpoint in (("image", self.media.image), ("voice", self.media.voice)):
            if endpoint.enabled and endpoint.provider not in self.llm.providers:
                raise ValueError(f"media.{name}.provider references unknown provider '{endpoint.provider}'")
        return self


def resolve_paths(config: AppConfigRoot, base_dir: Path) -> AppConfigRoot:
    def _resolve(path_value: Path) -> Path:
        return path_value if path_value.is_absolute() else (base_dir / path_value).resolve()

    config.app.data_dir = _resolve(config.app.data_dir)
    config.app.output_dir = _resolve(config.app.output_dir)
    config.storage.sqlite_path = _resolve(config.storage.sqlite_path)
    config.history.path = _resolve(config.history.path)
    return config
