from __future__ import annotations

import asyncio
from dataclasses import dataclass
import os
import time
from typing import Any, Callable, Literal, Mapping, Protocol

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger

from story_engine.config.schema import AppConfigRoot, SamplingConfig
from story_engine.domain.errors import UpstreamUnavailable
from story_engine.domain.hashing import sha256_text
from story_engine.domain.models import GenerationRequest
from story_engine.narration.prompts import NARRATION_SYSTEM_PROMPT

ChatRoute = Literal["narration", "scenarios"]

# Sampling keys the OpenAI-compatible chat API accepts.
_FORWARDED_SAMPLING_KEYS = ("temperature", "top_p", "frequency_penalty", "presence_penalty")


@dataclass(frozen=True)
class ResolvedChatRuntime:
    route: str
    endpoint_name: str
    provider_name: str
    model: str
    temperature: float
    timeout_s: int
    max_concurrency: int
    max_tokens: int | None
    base_url: str | None
    api_key_env: str | None
    api_key: str | None


class NarrationGenerator(Protocol):
    model_identifier: str

    def build_request(self, prompt: str, sampling: SamplingConfig | None = None) -> GenerationRequest: ...

    async def generate(self, request: GenerationRequest, *, context: Mapping[str, Any] | None = None) -> str: ...


def _short_key(value: str | None, length: int = 12) -> str:
    if not value:
        return "-"
    return value[:length]


def _extract_json_error_location(exc: Exception) -> str | None:
    lineno = getattr(exc, "lineno", None)
    colno = getattr(exc, "colno", None)
    pos = getattr(exc, "pos", None)

    parts: list[str] = []
    if isinstance(lineno, int):
        parts.append(f"line={lineno}")
    if isinstance(colno, int):
        parts.append(f"column={colno}")
    if isinstance(pos, int):
        parts.append(f"pos={pos}")

    if not parts:
        return None
    return ", ".join(parts)


def _format_payload_for_log(payload: str, max_chars: int) -> str:
    if max_chars <= 0 or len(payload) <= max_chars:
        return payload

    head = max_chars // 2
    tail = max_chars - head
    omitted = max(0, len(payload) - max_chars)
    if head <= 0 or tail <= 0:
        return payload[:max_chars]

    return f"{payload[:head]}\n...[truncated {omitted} chars]...\n{payload[-tail:]}"


def log_json_parse_failure(
    config: AppConfigRoot,
    *,
    source: str,
    raw_text: str,
    exc: Exception,
    context: Mapping[str, Any] | None = None,
) -> None:
    log = logger.bind(**{key: value for key, value in (context or {}).items() if value is not None})
    location = _extract_json_error_location(exc.__cause__ or exc)
    raw_hash = sha256_text(raw_text)

    log.warning(
        "JSON parse failed source={} error_type={} error={} location={} raw_len={} raw_hash={}",
        source,
        type(exc).__name__,
        exc,
        location or "-",
        len(raw_text),
        _short_key(raw_hash, 16),
    )

    if config.observability.log_json_error_payload:
        payload_to_log = _format_payload_for_log(raw_text, int(config.observability.json_error_payload_max_chars))
        log.warning("JSON parse raw_response={}", payload_to_log)


def resolve_chat_runtime(config: AppConfigRoot, route: ChatRoute) -> ResolvedChatRuntime:
    endpoint_name, endpoint, provider = config.llm.resolve_chat_route(route)
    api_key = None
    if provider.api_key_env:
        api_key = os.getenv(provider.api_key_env)
        if not api_key:
            raise ValueError(
                f"Missing required API key env for route '{route}': {provider.api_key_env}"
            )

    return ResolvedChatRuntime(
        route=route,
        endpoint_name=endpoint_name,
        provider_name=endpoint.provider,
        model=endpoint.model,
        temperature=endpoint.temperature,
        timeout_s=endpoint.timeout_s,
        max_concurrency=endpoint.max_concurrency,
        max_tokens=endpoint.max_tokens,
        base_url=provider.base_url,
        api_key_env=provider.api_key_env,
        api_key=api_key,
    )


def _build_chat_model(runtime: ResolvedChatRuntime) -> ChatOpenAI:
    kwargs: dict[str, Any] = {
        "model": runtime.model,
        "temperature": runtime.temperature,
        "timeout": runtime.timeout_s,
        # Callers decide whether to resubmit; the transport never retries on its own.
        "max_retries": 0,
    }

    if runtime.max_tokens:
        kwargs["max_tokens"] = runtime.max_tokens
    if runtime.base_url:
        kwargs["base_url"] = runtime.base_url
    if runtime.api_key:
        kwargs["api_key"] = runtime.api_key

    return ChatOpenAI(**kwargs)


class OpenAINarrationClient:
    """Single-shot chat completion against an OpenAI-compatible endpoint.

    Every failure (transport, provider, empty text, timeout) is raised as
    ``UpstreamUnavailable``. Nothing is cached and nothing is retried.
    """

    def __init__(self, config: AppConfigRoot, route: ChatRoute = "narration"):
        self.config = config
        self.runtime = resolve_chat_runtime(config, route)
        self.model = _build_chat_model(self.runtime)
        self.model_identifier = f"{self.runtime.provider_name}/{self.runtime.endpoint_name}/{self.runtime.model}"
        self._async_semaphore = asyncio.Semaphore(max(1, self.runtime.max_concurrency))

    def build_request(self, prompt: str, sampling: SamplingConfig | None = None) -> GenerationRequest:
        sampling = sampling or self.config.llm.narration_sampling
        return GenerationRequest(
            prompt=prompt,
            model_id=self.model_identifier,
            sampling_config=sampling.as_mapping(),
        )

    def _build_log_context(self, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
        merged: dict[str, Any] = {
            "route": self.runtime.route,
            "provider": self.runtime.provider_name,
            "endpoint": self.runtime.endpoint_name,
            "model": self.runtime.model,
        }
        if context:
            for key, value in context.items():
                if value is not None:
                    merged[key] = value
        return merged

    async def _invoke_on_worker(self, fn: Callable[..., Any], *args: Any) -> Any:
        async with self._async_semaphore:
            return await asyncio.to_thread(fn, *args)

    async def generate(self, request: GenerationRequest, *, context: Mapping[str, Any] | None = None) -> str:
        log = logger.bind(**self._build_log_context(context))
        params = {
            key: request.sampling_config[key]
            for key in _FORWARDED_SAMPLING_KEYS
            if key in request.sampling_config
        }
        runnable = self.model.bind(**params) if params else self.model
        messages = [SystemMessage(NARRATION_SYSTEM_PROMPT), HumanMessage(request.prompt)]

        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._invoke_on_worker(runnable.invoke, messages),
                timeout=self.runtime.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            log.warning("Narration call timed out after {}s", self.runtime.timeout_s)
            raise UpstreamUnavailable(f"narration call timed out after {self.runtime.timeout_s}s") from exc
        except Exception as exc:  # noqa: BLE001
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            log.warning(
                "Narration call failed elapsed_ms={} error_type={} error={}",
                elapsed_ms,
                type(exc).__name__,
                exc,
            )
            raise UpstreamUnavailable(f"narration call failed: {type(exc).__name__}") from exc

        text = str(getattr(response, "content", response) or "").strip()
        if not text:
            raise UpstreamUnavailable("narration service returned an empty response")

        log.debug(
            "Narration call ok elapsed_ms={} prompt_len={} response_len={}",
            int((time.perf_counter() - started) * 1000),
            len(request.prompt),
            len(text),
        )
        return text
