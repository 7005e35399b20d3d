from __future__ import annotations

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from story_engine.domain.errors import MalformedResponse
from story_engine.domain.models import SceneChoice, ValidatedScene
from story_engine.narration.json_utils import safe_load_json_dict, safe_load_json_list

node_log = logger.bind(node="validate_response")

_SCENARIOS_ADAPTER = TypeAdapter(list[SceneChoice])


def _summarize_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:5]:
        location = ".".join(str(part) for part in error.get("loc", ())) or "-"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def validate_scene(raw_text: str) -> ValidatedScene:
    """Turn raw narration output into a ValidatedScene.

    Raises ``MalformedResponse("parse")`` when the text is not a JSON object and
    ``MalformedResponse("schema")`` when the object does not have the scene shape.
    """

    try:
        payload = safe_load_json_dict(raw_text)
    except ValueError as exc:
        # orjson.JSONDecodeError is a ValueError subclass.
        raise MalformedResponse("parse", str(exc)) from exc

    try:
        return ValidatedScene.model_validate(payload)
    except ValidationError as exc:
        detail = _summarize_errors(exc)
        node_log.warning("Scene schema validation failed: {}", detail)
        raise MalformedResponse("schema", detail) from exc


def validate_scenarios(raw_text: str) -> list[SceneChoice]:
    try:
        payload = safe_load_json_list(raw_text)
    except ValueError as exc:
        raise MalformedResponse("parse", str(exc)) from exc

    try:
        scenarios = _SCENARIOS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise MalformedResponse("schema", _summarize_errors(exc)) from exc
    if not scenarios:
        raise MalformedResponse("schema", "no scenarios returned")
    return scenarios
