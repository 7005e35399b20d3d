from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_SCENE_CHOICES = 4


class RequestClass(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"


class _WireModel(BaseModel):
    """Models exchanged with callers use camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SceneChoice(_WireModel):
    text: str = Field(min_length=1)
    genre: str | None = None
    tone: str | None = None
    visual_style: str | None = None
    voice: str | None = None


class NarrativeHistoryItem(_WireModel):
    passage: str
    choice_text: str | None = None
    summary: str | None = None
    # Audit fields kept for export; ignored by the prompt builder.
    prompt: str | None = None
    image_prompt: str | None = None
    choices: list[SceneChoice] = Field(default_factory=list)


class StyleHints(_WireModel):
    genre: str | None = None
    tone: str | None = None
    visual_style: str | None = None


class NarrativeContext(_WireModel):
    history: list[NarrativeHistoryItem] = Field(default_factory=list)
    style: StyleHints = Field(default_factory=StyleHints)

    @model_validator(mode="after")
    def _check_history_order(self) -> "NarrativeContext":
        self.validate_history_order()
        return self

    def validate_history_order(self) -> None:
        for index, item in enumerate(self.history[:-1]):
            if not item.choice_text:
                raise ValueError(f"history item {index} lacks choice_text; only the latest beat may be unresolved")

    def latest_summary(self) -> str | None:
        for item in reversed(self.history):
            if item.summary:
                return item.summary
        return None


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    model_id: str
    sampling_config: dict[str, float] = Field(default_factory=dict)


class ValidatedScene(_WireModel):
    passage: str = Field(min_length=1)
    choices: list[SceneChoice] = Field(max_length=MAX_SCENE_CHOICES)
    image_prompt: str | None = None
    updated_summary: str

    @field_validator("image_prompt")
    @classmethod
    def _blank_image_prompt_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def is_terminal(self) -> bool:
        return not self.choices


class MediaSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    data: str


class MediaFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    reason: str
    retry_after: int | None = None
    rate_limited: bool = False


MediaOutcome = Annotated[Union[MediaSuccess, MediaFailure], Field(discriminator="status")]


class FinalScene(ValidatedScene):
    image_url: str | None = None
    audio_data: str | None = None
    generation_prompt: str


class RateLimitResult(_WireModel):
    success: bool
    limit: int
    remaining: int
    reset_timestamp: int
    error_kind: Literal["RateLimitExceeded", "AuthenticationRequired", "InternalError"] | None = None
    error_message: str | None = None


class RateLimitErrorInfo(_WireModel):
    message: str
    reset_timestamp: int | None = None
    request_class: RequestClass


class MediaWarning(_WireModel):
    medium: Literal["image", "voice"]
    reason: str
    rate_limited: bool = False
    retry_after: int | None = None


class GenerationResult(_WireModel):
    scene: FinalScene | None = None
    prompt_used: str | None = None
    error: str | None = None
    error_kind: str | None = None
    rate_limit_error: RateLimitErrorInfo | None = None
    media_warnings: list[MediaWarning] = Field(default_factory=list)

    @model_validator(mode="after")
    def _exactly_one_shape(self) -> "GenerationResult":
        populated = sum(value is not None for value in (self.scene, self.error, self.rate_limit_error))
        if populated != 1:
            raise ValueError("exactly one of scene, error, rate_limit_error must be set")
        if self.scene is not None and self.prompt_used is None:
            raise ValueError("prompt_used is required alongside scene")
        return self

    @property
    def is_retryable(self) -> bool:
        return bool(self.error_kind and self.error_kind.startswith("malformed_"))


class StoryContextPayload(_WireModel):
    history: list[NarrativeHistoryItem] = Field(default_factory=list)


class StorySceneRequest(_WireModel):
    story_context: StoryContextPayload = Field(default_factory=StoryContextPayload)
    initial_scenario_text: str | None = None
    genre: str | None = None
    tone: str | None = None
    visual_style: str | None = None
    voice: str | None = None

    def to_context(self) -> NarrativeContext:
        return NarrativeContext(
            history=list(self.story_context.history),
            style=StyleHints(genre=self.genre, tone=self.tone, visual_style=self.visual_style),
        )


class ScenariosResult(_WireModel):
    scenarios: list[SceneChoice] | None = None
    error: str | None = None
    error_kind: str | None = None
    rate_limit_error: RateLimitErrorInfo | None = None

    @model_validator(mode="after")
    def _exactly_one_shape(self) -> "ScenariosResult":
        populated = sum(value is not None for value in (self.scenarios, self.error, self.rate_limit_error))
        if populated != 1:
            raise ValueError("exactly one of scenarios, error, rate_limit_error must be set")
        return self


class UserSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str


class AdventureMetadata(_WireModel):
    genre: str | None = None
    tone: str | None = None
    visual_style: str | None = None
    initial_scenario_text: str | None = None

    def style(self) -> StyleHints:
        return StyleHints(genre=self.genre, tone=self.tone, visual_style=self.visual_style)


class StorySnapshot(_WireModel):
    """Client-side story state: what gets persisted between sessions and exported."""

    metadata: AdventureMetadata = Field(default_factory=AdventureMetadata)
    voice: str | None = None
    history: list[NarrativeHistoryItem] = Field(default_factory=list)
    current_scene: FinalScene | None = None

    def without_media(self) -> "StorySnapshot":
        if self.current_scene is None:
            return self.model_copy()
        scene = self.current_scene.model_copy(update={"image_url": None, "audio_data": None})
        return self.model_copy(update={"current_scene": scene})
