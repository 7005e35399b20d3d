from __future__ import annotations

import pytest

from story_engine.domain.errors import MalformedResponse
from story_engine.narration.json_utils import safe_load_json_dict, strip_code_fence
from story_engine.narration.validator import validate_scenarios, validate_scene

_VALID = '{"passage": "The door creaks open.", "choices": [{"text": "Enter"}, {"text": "Run"}], "imagePrompt": "A dark doorway", "updatedSummary": "You found a door."}'


def test_valid_scene_is_parsed() -> None:
    scene = validate_scene(_VALID)

    assert scene.passage == "The door creaks open."
    assert [choice.text for choice in scene.choices] == ["Enter", "Run"]
    assert scene.image_prompt == "A dark doorway"
    assert scene.updated_summary == "You found a door."
    assert not scene.is_terminal


def test_fenced_scene_is_parsed() -> None:
    scene = validate_scene(f"```json\n{_VALID}\n```")

    assert scene.passage == "The door creaks open."


def test_strip_code_fence_leaves_plain_text() -> None:
    assert strip_code_fence("  {\"a\": 1}  ") == '{"a": 1}'
    assert strip_code_fence("```\n[1]\n```") == "[1]"


def test_trailing_commas_and_prose_are_tolerated() -> None:
    payload = safe_load_json_dict('Here you go: {"a": [1, 2,],} thanks')

    assert payload == {"a": [1, 2]}


def test_non_json_is_parse_error() -> None:
    with pytest.raises(MalformedResponse) as exc_info:
        validate_scene("the tomb is dark")

    assert exc_info.value.malformed_kind == "parse"
    assert exc_info.value.kind == "malformed_parse"
    assert exc_info.value.user_message == "Failed to parse AI response."


def test_array_is_parse_error() -> None:
    with pytest.raises(MalformedResponse) as exc_info:
        validate_scene("[1, 2]")

    assert exc_info.value.malformed_kind == "parse"


def test_missing_fields_is_schema_error() -> None:
    with pytest.raises(MalformedResponse) as exc_info:
        validate_scene('{"passage": "text only"}')

    assert exc_info.value.malformed_kind == "schema"
    assert exc_info.value.user_message == "AI response validation failed."
    assert "choices" in exc_info.value.detail


def test_too_many_choices_is_schema_error() -> None:
    choices = ", ".join(f'{{"text": "c{index}"}}' for index in range(5))
    raw = f'{{"passage": "p", "choices": [{choices}], "updatedSummary": "s"}}'

    with pytest.raises(MalformedResponse) as exc_info:
        validate_scene(raw)

    assert exc_info.value.malformed_kind == "schema"


def test_empty_passage_is_schema_error() -> None:
    with pytest.raises(MalformedResponse) as exc_info:
        validate_scene('{"passage": "", "choices": [], "updatedSummary": "s"}')

    assert exc_info.value.malformed_kind == "schema"


def test_terminal_scene_and_blank_image_prompt() -> None:
    scene = validate_scene('{"passage": "The end.", "choices": [], "imagePrompt": "  ", "updatedSummary": "Done."}')

    assert scene.is_terminal
    assert scene.image_prompt is None


def test_scenarios_are_validated() -> None:
    scenarios = validate_scenarios(
        '[{"text": "A sealed tomb", "genre": "Fantasy", "visualStyle": "Oil painting"}, {"text": "Neon rain"}]'
    )

    assert [item.text for item in scenarios] == ["A sealed tomb", "Neon rain"]
    assert scenarios[0].visual_style == "Oil painting"


def test_empty_scenarios_is_schema_error() -> None:
    with pytest.raises(MalformedResponse) as exc_info:
        validate_scenarios("[]")

    assert exc_info.value.malformed_kind == "schema"
