from __future__ import annotations

from story_engine.domain.models import MediaFailure, MediaSuccess, SceneChoice, ValidatedScene
from story_engine.pipeline.assembler import assemble, media_warnings


def _scene() -> ValidatedScene:
    return ValidatedScene(
        passage="You step into the tomb.",
        choices=[SceneChoice(text="Light a torch"), SceneChoice(text="Turn back")],
        image_prompt="A dark tomb entrance",
        updated_summary="You entered a tomb.",
    )


def test_both_media_succeed() -> None:
    final = assemble(_scene(), MediaSuccess(data="data:image/png;base64,AAA"), MediaSuccess(data="QUJD"), "prompt")

    assert final.image_url == "data:image/png;base64,AAA"
    assert final.audio_data == "QUJD"
    assert final.generation_prompt == "prompt"
    assert [choice.text for choice in final.choices] == ["Light a torch", "Turn back"]


def test_image_failure_keeps_audio() -> None:
    final = assemble(_scene(), MediaFailure(reason="quota"), MediaSuccess(data="QUJD"), "prompt")

    assert final.image_url is None
    assert final.audio_data == "QUJD"
    assert final.passage == "You step into the tomb."


def test_both_failures_keep_text_and_choices() -> None:
    final = assemble(_scene(), MediaFailure(reason="a"), MediaFailure(reason="b"), "prompt")

    assert final.image_url is None
    assert final.audio_data is None
    assert final.updated_summary == "You entered a tomb."
    assert len(final.choices) == 2


def test_assemble_is_idempotent() -> None:
    scene = _scene()
    image = MediaSuccess(data="img")
    audio = MediaFailure(reason="x")

    assert assemble(scene, image, audio, "p") == assemble(scene, image, audio, "p")


def test_media_warnings_list_only_failures() -> None:
    warnings = media_warnings(
        MediaFailure(reason="Rate limit exceeded", rate_limited=True, retry_after=123),
        MediaSuccess(data="QUJD"),
    )

    assert len(warnings) == 1
    assert warnings[0].medium == "image"
    assert warnings[0].rate_limited is True
    assert warnings[0].retry_after == 123
