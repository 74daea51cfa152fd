from __future__ import annotations

from app.config import Settings
from app.models.domain import SegmentRole

DEFAULT_SUBJECT = "product"
SUBJECT_WORDS = 3

SCENE_DESCRIPTIONS: dict[SegmentRole, str] = {
    SegmentRole.INTRO: "Close-up hero shot of {subject}, static camera, focus pull. ",
    SegmentRole.MAIN: "Slow panning shot around {subject} revealing details. ",
    SegmentRole.OUTRO: "Wide shot of {subject} with lifestyle elements, fade out vibe. ",
}


def subject_label(prompt: str | None) -> str:
    words = (prompt or "").split()
    return " ".join(words[:SUBJECT_WORDS]) or DEFAULT_SUBJECT


def style_prompt(settings: Settings, style_id: str | None) -> str:
    return settings.style_prompts.get(style_id or "", settings.default_style_prompt)


def scene_prompt(role: SegmentRole, subject: str, base: str) -> str:
    return SCENE_DESCRIPTIONS[role].format(subject=subject) + base
