from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from loguru import logger

from story_engine.domain.models import StorySnapshot

SCENARIO_SELECTION = "(Scenario Selection)"

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


@dataclass
class ExportResult:
    output_dir: Path
    story_path: Path
    prompt_log_path: Path
    image_path: Path | None = None
    audio_path: Path | None = None


def _write_json(path: Path, payload: Any) -> None:
    path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))


def _decode_image(image_url: str) -> tuple[bytes, str] | None:
    match = _DATA_URI_RE.match(image_url)
    if not match:
        return None
    extension = match.group("mime").split("/")[-1] or "png"
    try:
        return base64.b64decode(match.group("data"), validate=True), extension
    except binascii.Error:
        return None


def build_prompt_log(snapshot: StorySnapshot) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for step, item in enumerate(snapshot.history):
        if step == 0:
            choice_made = SCENARIO_SELECTION
        else:
            choice_made = snapshot.history[step - 1].choice_text or "(Choice text missing)"
        entries.append(
            {
                "step": step,
                "prompt": item.prompt or "Prompt not recorded",
                "passage": item.passage,
                "imagePrompt": item.image_prompt or "Image prompt not generated",
                "choices": [choice.text for choice in item.choices],
                "summary": item.summary or "Summary not recorded",
                "choiceMade": choice_made,
            }
        )
    return entries


def export_story(snapshot: StorySnapshot, output_dir: Path) -> ExportResult:
    """Write story.json, prompt_log.json and the current scene's media into ``output_dir``."""

    if not snapshot.history and snapshot.current_scene is None:
        raise ValueError("No story data to export")

    output_dir.mkdir(parents=True, exist_ok=True)
    story_path = output_dir / "story.json"
    prompt_log_path = output_dir / "prompt_log.json"

    history = [
        item.model_dump(mode="json", by_alias=True, exclude={"prompt", "image_prompt", "choices"}, exclude_none=True)
        for item in snapshot.history
    ]
    story = {
        "metadata": {
            "genre": snapshot.metadata.genre,
            "tone": snapshot.metadata.tone,
            "visualStyle": snapshot.metadata.visual_style,
            "savedAt": datetime.now(timezone.utc).isoformat(),
        },
        "history": history,
    }
    _write_json(story_path, story)
    _write_json(prompt_log_path, build_prompt_log(snapshot))

    result = ExportResult(output_dir=output_dir, story_path=story_path, prompt_log_path=prompt_log_path)

    scene = snapshot.current_scene
    if scene is None:
        return result

    media_dir = output_dir / "media"
    if scene.image_url:
        decoded = _decode_image(scene.image_url)
        if decoded is None:
            logger.warning("Skipping current image: not an inline base64 data URI")
        else:
            data, extension = decoded
            media_dir.mkdir(parents=True, exist_ok=True)
            result.image_path = media_dir / f"current_image.{extension}"
            result.image_path.write_bytes(data)

    if scene.audio_data:
        try:
            audio = base64.b64decode(scene.audio_data, validate=True)
        except binascii.Error:
            logger.warning("Skipping current audio: payload is not valid base64")
        else:
            media_dir.mkdir(parents=True, exist_ok=True)
            result.audio_path = media_dir / "current_audio.mp3"
            result.audio_path.write_bytes(audio)

    logger.info("Exported story to {}", output_dir)
    return result
