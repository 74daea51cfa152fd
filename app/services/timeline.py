"""Frame-indexed evaluation of a timeline.

``evaluate_frame`` is the contract a rendering backend has to reproduce: given
the timeline and a frame number it says which scene is on screen, how a
still image is zoomed and panned, where the logo sits, and how visible each
caption is. Everything here is pure; nothing reads or writes job state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np

from app.errors import FrameOutOfRange
from app.models.domain import (
    SCENE_COUNT,
    SEGMENT_ROLE_ORDER,
    Caption,
    LogoPosition,
    SegmentRole,
    TimelineSpecification,
)

KEN_BURNS_SCALE = (1.0, 1.15)
KEN_BURNS_TRANSLATE_X = (0.0, 20.0)

CAPTION_BREAKPOINTS = (0.0, 0.1, 0.9, 1.0)
CAPTION_OFFSETS = (50.0, 0.0, 0.0, -50.0)
CAPTION_OPACITIES = (0.0, 1.0, 1.0, 0.0)

LOGO_PADDING = 40
LOGO_SIZE = 180

ACCENT_BAR_HEIGHT = 8
CORNER_SIZE = 40
CORNER_INSET = 20
CORNER_STROKE = 4


@dataclass(frozen=True)
class StyleBackground:
    style_id: str
    stops: Tuple[str, ...]
    angle: int = 135


STYLE_BACKGROUNDS: dict[str, StyleBackground] = {
    "cinematic": StyleBackground("cinematic", ("#1a1a2e", "#16213e", "#0f3460")),
    "vibrant": StyleBackground("vibrant", ("#2d132c", "#801336", "#c72c41")),
    "slowmo": StyleBackground("slowmo", ("#0f2027", "#203a43", "#2c5364")),
    "minimal": StyleBackground("minimal", ("#232526", "#414345")),
    "rustic": StyleBackground("rustic", ("#3e2723", "#5d4037", "#8d6e63")),
    "luxury": StyleBackground("luxury", ("#0f0c29", "#302b63", "#24243e")),
}
DEFAULT_BACKGROUND = StyleBackground("default", ("#1a1a2e", "#16213e"))


@dataclass(frozen=True)
class SceneLayer:
    index: int
    role: SegmentRole
    source: str
    kind: str
    local_frame: int
    scale: float = 1.0
    translate_x: float = 0.0


@dataclass(frozen=True)
class LogoLayer:
    ref: str
    position: LogoPosition
    x: int
    y: int
    size: int = LOGO_SIZE


@dataclass(frozen=True)
class CaptionLayer:
    index: int
    text: str
    opacity: float
    offset_y: float


@dataclass(frozen=True)
class ChromeLayer:
    color: str
    bar_height: int = ACCENT_BAR_HEIGHT
    corner_size: int = CORNER_SIZE
    corner_inset: int = CORNER_INSET
    corner_stroke: int = CORNER_STROKE
    corners: Tuple[LogoPosition, ...] = tuple(LogoPosition)


@dataclass(frozen=True)
class VisualState:
    frame: int
    scene_index: int
    local_frame: int
    background: StyleBackground
    chrome: ChromeLayer
    scene: Optional[SceneLayer] = None
    logo: Optional[LogoLayer] = None
    captions: Tuple[CaptionLayer, ...] = field(default_factory=tuple)


def cubic_bezier(x1: float, y1: float, x2: float, y2: float) -> Callable[[float], float]:
    """CSS-style cubic-bezier timing function on [0, 1]."""

    def coordinate(t: float, p1: float, p2: float) -> float:
        return ((1.0 - 3.0 * p2 + 3.0 * p1) * t + (3.0 * p2 - 6.0 * p1)) * t * t + 3.0 * p1 * t

    def slope(t: float, p1: float, p2: float) -> float:
        return 3.0 * (1.0 - 3.0 * p2 + 3.0 * p1) * t * t + 2.0 * (3.0 * p2 - 6.0 * p1) * t + 3.0 * p1

    def solve(x: float) -> float:
        t = x
        for _ in range(8):
            error = coordinate(t, x1, x2) - x
            if abs(error) < 1e-7:
                return t
            derivative = slope(t, x1, x2)
            if abs(derivative) < 1e-6:
                break
            t -= error / derivative
        low, high = 0.0, 1.0
        t = x
        for _ in range(60):
            value = coordinate(t, x1, x2)
            if abs(value - x) < 1e-7:
                break
            if value < x:
                low = t
            else:
                high = t
            t = (low + high) / 2.0
        return t

    def timing(x: float) -> float:
        if x <= 0.0:
            return 0.0
        if x >= 1.0:
            return 1.0
        return coordinate(solve(x), y1, y2)

    return timing


ease = cubic_bezier(0.42, 0.0, 1.0, 1.0)


def ease_in_out(t: float) -> float:
    if t < 0.5:
        return ease(t * 2.0) / 2.0
    return 1.0 - ease((1.0 - t) * 2.0) / 2.0


def interpolate(value: float, input_range: Sequence[float], output_range: Sequence[float]) -> float:
    """Piecewise-linear interpolation, clamped to the end values outside the input range."""
    return float(np.interp(value, input_range, output_range))


def background_for_style(
    style_id: str | None,
    backgrounds: Mapping[str, StyleBackground] = STYLE_BACKGROUNDS,
) -> StyleBackground:
    return backgrounds.get(style_id or "", DEFAULT_BACKGROUND)


def scene_index_for_frame(frame: int, scene_duration_frames: int) -> int:
    return min(max(frame // scene_duration_frames, 0), SCENE_COUNT - 1)


def ken_burns(local_frame: int, scene_duration_frames: int) -> tuple[float, float]:
    """Scale and horizontal shift of a still image at a scene-local frame."""
    progress = min(max(local_frame / scene_duration_frames, 0.0), 1.0)
    eased = ease_in_out(progress)
    return interpolate(eased, (0.0, 1.0), KEN_BURNS_SCALE), interpolate(eased, (0.0, 1.0), KEN_BURNS_TRANSLATE_X)


def caption_state(caption: Caption, frame: int, index: int = 0) -> CaptionLayer | None:
    span = caption.end_frame - caption.start_frame
    if span <= 0:
        return None
    if not caption.start_frame <= frame <= caption.end_frame:
        return None
    progress = (frame - caption.start_frame) / span
    return CaptionLayer(
        index=index,
        text=caption.text,
        opacity=interpolate(progress, CAPTION_BREAKPOINTS, CAPTION_OPACITIES),
        offset_y=interpolate(progress, CAPTION_BREAKPOINTS, CAPTION_OFFSETS),
    )


def logo_anchor(position: LogoPosition, width: int, height: int) -> tuple[int, int]:
    far_x = width - LOGO_PADDING - LOGO_SIZE
    far_y = height - LOGO_PADDING - LOGO_SIZE
    return {
        LogoPosition.TOP_LEFT: (LOGO_PADDING, LOGO_PADDING),
        LogoPosition.TOP_RIGHT: (far_x, LOGO_PADDING),
        LogoPosition.BOTTOM_LEFT: (LOGO_PADDING, far_y),
        LogoPosition.BOTTOM_RIGHT: (far_x, far_y),
    }[position]


def evaluate_frame(
    timeline: TimelineSpecification,
    frame: int,
    backgrounds: Mapping[str, StyleBackground] = STYLE_BACKGROUNDS,
) -> VisualState:
    total = timeline.total_duration_frames
    if frame < 0 or frame >= total:
        raise FrameOutOfRange(frame, total)

    duration = timeline.scene_duration_frames
    scene_index = scene_index_for_frame(frame, duration)
    local_frame = frame % duration

    scene: SceneLayer | None = None
    if scene_index < len(timeline.scenes):
        scale, translate_x = 1.0, 0.0
        if timeline.scene_kind == "image":
            scale, translate_x = ken_burns(local_frame, duration)
        scene = SceneLayer(
            index=scene_index,
            role=SEGMENT_ROLE_ORDER[scene_index],
            source=timeline.scenes[scene_index],
            kind=timeline.scene_kind,
            local_frame=local_frame,
            scale=scale,
            translate_x=translate_x,
        )

    overlay = timeline.overlay
    logo: LogoLayer | None = None
    if overlay.logo_ref:
        x, y = logo_anchor(overlay.logo_position, timeline.width, timeline.height)
        logo = LogoLayer(ref=overlay.logo_ref, position=overlay.logo_position, x=x, y=y)

    captions = tuple(
        layer
        for layer in (caption_state(caption, frame, index) for index, caption in enumerate(overlay.captions))
        if layer is not None
    )

    return VisualState(
        frame=frame,
        scene_index=scene_index,
        local_frame=local_frame,
        background=background_for_style(timeline.style_id, backgrounds),
        chrome=ChromeLayer(color=overlay.primary_color),
        scene=scene,
        logo=logo,
        captions=captions,
    )


def iter_frames(timeline: TimelineSpecification) -> Iterator[VisualState]:
    for frame in range(timeline.total_duration_frames):
        yield evaluate_frame(timeline, frame)
