from __future__ import annotations

from story_engine.domain.models import NarrativeContext, StyleHints

STORY_PROMPT_VERSION = "v1"
RECENT_STEPS_WINDOW = 3
SCENE_CHOICE_COUNT = 3
OLDER_STEPS_MARKER = "(...earlier events are condensed in the Story So Far summary above...)"

NARRATION_SYSTEM_PROMPT = (
    "You are a storyteller running an interactive adventure. "
    "Respond only with strict, valid JSON. No markdown, no commentary."
)


def _output_contract(visual_style: str | None) -> str:
    style = visual_style or "any"
    return (
        "{\n"
        '  "passage": "(string) The next part of the story, describing the current situation and the outcome of the last choice.",\n'
        f'  "choices": [ {{ "text": "(string)" }} ], /* exactly {SCENE_CHOICE_COUNT} distinct player choices; an empty array only when the story ends */\n'
        f'  "imagePrompt": "(string) A visual description of the new passage only, in the visual style: {style}.",\n'
        '  "updatedSummary": "(string) A brief (1-2 sentence) summary of the entire story including this new passage."\n'
        "}"
    )


def _style_section(style: StyleHints) -> str:
    lines = ["Adventure Style Hints:"]
    if style.genre:
        lines.append(f"- Genre: {style.genre}")
    if style.tone:
        lines.append(f"- Tone: {style.tone}")
    if style.visual_style:
        lines.append(f"- Visual Style (for image prompts): {style.visual_style}")
    if len(lines) == 1:
        lines.append("(None specified)")
    return "\n".join(lines)


def _instructions(style: StyleHints) -> str:
    visual_style = style.visual_style or "any"
    return (
        "**Your Goal:** Write the next beat of the story, offer meaningful choices, describe the new scene "
        "for an illustrator and update the running summary.\n\n"
        "**Instructions:**\n"
        "1.  **Continuity:** The new \"passage\" must follow logically from the story so far and the most recent "
        "choice. Keep characters, places and established facts consistent. Keep the Genre and Tone.\n"
        f"2.  **Branching:** Provide exactly {SCENE_CHOICE_COUNT} \"choices\" that lead the story in clearly "
        "different directions. Never offer cosmetic variations of the same action.\n"
        "3.  **Progress:** Every beat should move the adventure toward an eventual resolution. When the story "
        "reaches its natural ending, return an empty \"choices\" array.\n"
        "4.  **Image Prompt:** Describe ONLY what is visible in the new passage, seen through the player's eyes. "
        f"Match the Visual Style: {visual_style}.\n"
        "5.  **Summary:** \"updatedSummary\" covers the whole story so far, including the new passage.\n"
        "6.  **Output Format:** Respond ONLY with a valid JSON object matching this structure:\n"
        f"{_output_contract(style.visual_style)}"
    )


def _recent_steps_section(context: NarrativeContext) -> str:
    history = context.history
    recent = history[-RECENT_STEPS_WINDOW:]
    lines = ["Recent Steps:"]
    if len(history) > RECENT_STEPS_WINDOW:
        lines.append(OLDER_STEPS_MARKER)
    for item in recent:
        lines.append(f"Previously: {item.passage}")
        if item.choice_text:
            lines.append(f"Choice Made: {item.choice_text}")
    return "\n".join(lines)


def build_story_prompt(context: NarrativeContext, initial_scenario_text: str | None = None) -> str:
    """Build the single generation prompt for the next story beat.

    The prompt carries the latest summary as long-term memory and at most the last
    ``RECENT_STEPS_WINDOW`` history items verbatim. With an empty history the initial
    scenario text takes the place of the recent steps. The output is a pure function of
    its inputs.
    """

    parts = [
        "You are a storyteller creating an interactive adventure.",
        _instructions(context.style),
        "**Context for Next Step:**",
        _style_section(context.style),
    ]

    if not context.history:
        if initial_scenario_text:
            parts.append(f"Initial Scenario: {initial_scenario_text}")
        parts.append("This is the opening beat of the adventure.")
    else:
        summary = context.latest_summary()
        if summary:
            parts.append(f"Story So Far: {summary}")
        parts.append(_recent_steps_section(context))

    parts.append("Generate the JSON for the next step:")
    return "\n\n".join(part for part in parts if part)


def build_scenarios_prompt(count: int = 4) -> str:
    if count <= 0:
        raise ValueError("count must be positive")
    return (
        "You are a creative director pitching openings for interactive adventures.\n\n"
        f"Generate {count} distinct starting scenarios. Each must be one or two evocative sentences that drop "
        "the player straight into a situation with an immediate hook. Vary the genres widely.\n\n"
        "For each scenario also suggest:\n"
        '- "genre": a short genre label\n'
        '- "tone": a short tone label\n'
        '- "visualStyle": an art direction for illustrations (for example "Watercolor painting" or '
        '"Cinematic photograph")\n'
        '- "voice": optional narrator voice name such as "en-US-Chirp3-HD-Aoede"\n\n'
        "Respond ONLY with a JSON array of objects shaped like:\n"
        '[ { "text": "string", "genre": "string", "tone": "string", "visualStyle": "string", "voice": "string" } ]'
    )
