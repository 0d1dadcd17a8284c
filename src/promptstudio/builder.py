"""Deterministic prompt construction.

Used when a generation provider is unavailable so the user always gets a
usable prompt set. Prompts follow the lens model:

1. Start from the base image description (the visual structure to keep)
2. Apply each filled dimension as a lens:
   - FILTER: what to preserve from the base
   - TRANSFORM: how the reference content is applied
   - WEIGHT: how strongly, so 0.5 reads as "balanced blend of"
3. Vary camera, time of day and atmosphere by prompt index

The same inputs always yield the same prompt text and element ids.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from promptstudio.models.prompts import (
    DimensionType,
    ElementCategory,
    FilterMode,
    GeneratedPrompt,
    OutputMode,
    PromptElement,
    SceneType,
    TransformMode,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from promptstudio.learning.preferences import LearnedContext
    from promptstudio.models.prompts import Dimension

MAX_PROMPT_LENGTH = 1500
MAX_NEGATIVE_LENGTH = 500
BASE_DESCRIPTION_LIMIT = 200

CAMERA_ANGLES = (
    "low angle",
    "bird's eye view",
    "eye-level shot",
    "dutch angle",
    "wide shot",
    "medium shot",
    "close-up",
    "panoramic",
)

TIME_OF_DAY = (
    "golden hour",
    "blue hour",
    "midday light",
    "overcast",
    "dawn",
    "night",
    "morning mist",
    "neon night",
)

ATMOSPHERIC_CONDITIONS = (
    "fog",
    "dust particles",
    "rain",
    "snow",
    "heat haze",
    "smoke",
    "clear",
    "stormy",
)

COMPOSITION_STYLES = ("rule of thirds", "centered", "leading lines", "layered depth")

# (moment, focus) per shot type
SCENE_VARIATIONS: dict[SceneType, tuple[str, str]] = {
    SceneType.CINEMATIC_WIDE_SHOT: ("establishing shot", "epic scale"),
    SceneType.HERO_PORTRAIT: ("character portrait", "heroic pose"),
    SceneType.ACTION_SEQUENCE: ("action scene", "dynamic motion"),
    SceneType.ENVIRONMENTAL_STORYTELLING: ("environment detail", "world-building"),
}


@dataclass(frozen=True)
class ModeKeywords:
    style: tuple[str, ...]
    technical: tuple[str, ...]
    element: str
    fallback_clause: str


MODE_KEYWORDS: dict[OutputMode, ModeKeywords] = {
    OutputMode.GAMEPLAY: ModeKeywords(
        style=("authentic gameplay screenshot", "in-game capture", "video game screen"),
        technical=("HUD elements visible", "game UI overlay", "health bars", "minimap corner"),
        element="game UI visible",
        fallback_clause="game UI overlay",
    ),
    OutputMode.CONCEPT: ModeKeywords(
        style=("concept art sketch", "hand-drawn illustration", "pencil drawing"),
        technical=("visible pencil strokes", "graphite shading", "sketch paper texture"),
        element="concept art",
        fallback_clause="concept art",
    ),
    OutputMode.POSTER: ModeKeywords(
        style=("official movie poster", "key art", "promotional artwork", "theatrical poster"),
        technical=("poster composition", "dramatic lighting", "iconic pose", "title space"),
        element="poster composition",
        fallback_clause="key art",
    ),
}

DEFAULT_NEGATIVES = (
    "blurry",
    "low quality",
    "watermark",
    "signature",
    "text",
    "bad anatomy",
    "deformed",
)

_FILTER_HINTS = {
    FilterMode.PRESERVE_STRUCTURE: "maintaining composition and layout",
    FilterMode.PRESERVE_SUBJECT: "keeping main subjects",
    FilterMode.PRESERVE_MOOD: "preserving emotional tone",
    FilterMode.PRESERVE_COLOR_PALETTE: "keeping color palette",
}

_TRANSFORM_INSTRUCTIONS = {
    TransformMode.BLEND: "blended with",
    TransformMode.STYLE_TRANSFER: "style of",
    TransformMode.SEMANTIC_SWAP: "semantic essence of",
    TransformMode.ADDITIVE: "layered with",
}

# Content dimensions in the order they appear in the prompt, with the
# reference length each may use and an optional suffix.
_CONTENT_SWAPS: tuple[tuple[DimensionType, int, str], ...] = (
    (DimensionType.ENVIRONMENT, 60, ""),
    (DimensionType.CHARACTERS, 60, ""),
    (DimensionType.CREATURES, 60, ""),
    (DimensionType.TECHNOLOGY, 60, ""),
    (DimensionType.ACTION, 60, ""),
    (DimensionType.ERA, 40, " era"),
    (DimensionType.GENRE, 40, " genre"),
    (DimensionType.CUSTOM, 50, ""),
)

_ELEMENT_SOURCES: tuple[tuple[tuple[DimensionType, ...], ElementCategory], ...] = (
    ((DimensionType.ENVIRONMENT,), ElementCategory.SETTING),
    ((DimensionType.CHARACTERS, DimensionType.CREATURES), ElementCategory.SUBJECT),
    ((DimensionType.TECHNOLOGY,), ElementCategory.STYLE),
    ((DimensionType.ART_STYLE,), ElementCategory.LIGHTING),
    ((DimensionType.MOOD,), ElementCategory.MOOD),
    ((DimensionType.ERA,), ElementCategory.SETTING),
    ((DimensionType.GENRE,), ElementCategory.STYLE),
    ((DimensionType.CUSTOM,), ElementCategory.STYLE),
)


@dataclass(frozen=True)
class BuiltPrompt:
    prompt: str
    negative_prompt: str
    elements: list[PromptElement]


def truncate_at_comma(text: str, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Cut text to ``max_length``, preferring the last comma past 70% of the limit."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_comma = truncated.rfind(",")
    if last_comma > max_length * 0.7:
        return truncated[:last_comma]
    return truncated


def weight_phrase(weight: float) -> str:
    """Intensity modifier for a 0.0-1.0 weight; empty for full or negligible weight."""
    if weight >= 0.9:
        return ""
    if weight >= 0.7:
        return "strong influence of"
    if weight >= 0.5:
        return "balanced blend of"
    if weight >= 0.3:
        return "subtle hints of"
    if weight >= 0.1:
        return "traces of"
    return ""


def weighted_clause(dimension: Dimension, max_length: int = 60) -> str | None:
    """Render one dimension as a lens clause, or None when it has no effect."""
    if not dimension.is_filled or dimension.weight == 0:
        return None
    reference = dimension.reference.strip()[:max_length]
    parts = [
        weight_phrase(dimension.weight),
        _TRANSFORM_INSTRUCTIONS.get(dimension.transform_mode, ""),
        reference,
    ]
    return " ".join(p for p in parts if p)


def filter_hints(dimensions: Sequence[Dimension]) -> list[str]:
    hints: list[str] = []
    for dimension in dimensions:
        hint = _FILTER_HINTS.get(dimension.filter_mode)
        if hint and hint not in hints:
            hints.append(hint)
    return hints


def variety_modifiers(index: int) -> tuple[str, str, str, str]:
    """(camera, time, atmosphere, composition) for a prompt index."""
    return (
        CAMERA_ANGLES[index % len(CAMERA_ANGLES)],
        TIME_OF_DAY[(index * 2) % len(TIME_OF_DAY)],
        ATMOSPHERIC_CONDITIONS[(index * 3) % len(ATMOSPHERIC_CONDITIONS)],
        COMPOSITION_STYLES[index % len(COMPOSITION_STYLES)],
    )


def element_id(index: int, category: ElementCategory, text: str) -> str:
    digest = hashlib.sha256(f"{index}|{category.value}|{text}".encode()).hexdigest()
    return digest[:16]


def _short(reference: str, limit: int = 30) -> str:
    head = reference.split(" - ")[0].strip()
    return head or reference.strip()[:limit]


def _first(dimensions: Sequence[Dimension], dim_type: DimensionType) -> Dimension | None:
    return next((d for d in dimensions if d.type == dim_type), None)


def build_elements(
    base_image: str,
    dimensions: Sequence[Dimension],
    output_mode: OutputMode,
    locked_elements: Sequence[PromptElement],
    index: int = 0,
) -> list[PromptElement]:
    """Split a built prompt into lockable elements.

    Locked elements from earlier iterations replace the first element of the
    same category, or are appended when no such element exists.
    """
    pairs: list[tuple[ElementCategory, str]] = [
        (ElementCategory.COMPOSITION, _short(base_image, 35))
    ]
    for sources, category in _ELEMENT_SOURCES:
        for dim_type in sources:
            dimension = _first(dimensions, dim_type)
            if dimension is not None:
                pairs.append((category, _short(dimension.reference)))
                break
    pairs.append((ElementCategory.COMPOSITION, MODE_KEYWORDS[output_mode].element))
    pairs.append((ElementCategory.QUALITY, "detailed"))

    elements = [
        PromptElement(id=element_id(index, category, text), text=text, category=category)
        for category, text in pairs
        if text
    ]

    for locked in locked_elements:
        replacement = PromptElement(
            id=element_id(index, locked.category, locked.text),
            text=locked.text,
            category=locked.category,
            locked=True,
        )
        position = next(
            (i for i, e in enumerate(elements) if e.category == locked.category and not e.locked),
            None,
        )
        if position is None:
            elements.append(replacement)
        else:
            elements[position] = replacement
    return elements


def build_negative_prompt(
    extra: Sequence[str] = (), max_length: int = MAX_NEGATIVE_LENGTH
) -> str:
    """Default quality negatives plus extra terms, deduplicated and bounded."""
    terms = list(dict.fromkeys([*DEFAULT_NEGATIVES, *(t for t in extra if len(t) > 2)]))
    return truncate_at_comma(", ".join(terms), max_length)


def _apply_learned_context(parts: list[str], context: LearnedContext | None) -> list[str]:
    if context is None:
        return parts
    enhanced = list(parts)
    if context.emphasize_elements:
        enhanced.insert(2, f"with emphasis on {', '.join(context.emphasize_elements[:3])}")
    for adjustment in context.dimension_adjustments:
        label = adjustment.type.value.replace("_", " ")
        if not any(label in part.casefold() for part in enhanced):
            enhanced.append(adjustment.adjustment)
    if context.avoid_elements:
        enhanced = [
            part
            for part in enhanced
            if not any(avoid in part.casefold() for avoid in context.avoid_elements)
        ]
    return enhanced


def build_prompt(
    base_image: str,
    dimensions: Sequence[Dimension],
    scene_type: SceneType,
    index: int,
    locked_elements: Sequence[PromptElement] = (),
    output_mode: OutputMode = OutputMode.GAMEPLAY,
    learned_context: LearnedContext | None = None,
) -> BuiltPrompt:
    """Build one prompt for a scene type.

    Args:
        base_image: Description of the visual structure to preserve.
        dimensions: Dimensions to apply; unfilled ones are ignored.
        scene_type: Shot type, which picks the scene moment and focus.
        index: Position in the set, used to vary camera/time/atmosphere.
        locked_elements: Elements that must survive into the new prompt.
        output_mode: Gameplay, concept or poster keywords.
        learned_context: Optional learned emphasis and avoid terms.

    Returns:
        BuiltPrompt with prompt text, negative prompt and elements.
    """
    filled = [d for d in dimensions if d.is_filled]
    moment, focus = SCENE_VARIATIONS[scene_type]
    camera, time_of_day, atmosphere, composition = variety_modifiers(index)
    mode = MODE_KEYWORDS[output_mode]

    camera_dim = _first(filled, DimensionType.CAMERA)
    camera_clause = weighted_clause(camera_dim, 30) if camera_dim else None
    parts = [camera_clause or camera, base_image.strip()[:BASE_DESCRIPTION_LIMIT]]

    hints = filter_hints(filled)
    if hints:
        parts.append(" and ".join(hints))
    parts.append(moment)

    swaps = []
    for dim_type, limit, suffix in _CONTENT_SWAPS:
        dimension = _first(filled, dim_type)
        clause = weighted_clause(dimension, limit) if dimension else None
        if clause:
            swaps.append(f"{clause}{suffix}")
    if swaps:
        parts.append(", ".join(swaps))

    for dim_type, limit in ((DimensionType.ART_STYLE, 50), (DimensionType.MOOD, 30)):
        dimension = _first(filled, dim_type)
        clause = weighted_clause(dimension, limit) if dimension else None
        if clause:
            parts.append(clause)

    parts.extend([time_of_day, atmosphere, composition])
    parts.extend(mode.style[:2])
    if output_mode is OutputMode.GAMEPLAY:
        ui_dim = _first(filled, DimensionType.GAME_UI)
        ui_clause = weighted_clause(ui_dim, 50) if ui_dim else None
        parts.append(ui_clause or mode.fallback_clause)
    else:
        parts.append(mode.fallback_clause)
    parts.extend(t for t in mode.technical[:3] if t not in parts)
    parts.extend([focus, "detailed"])

    parts = _apply_learned_context(parts, learned_context)
    prompt = truncate_at_comma(", ".join(p for p in parts if p))
    avoid = learned_context.avoid_elements if learned_context else ()

    return BuiltPrompt(
        prompt=prompt,
        negative_prompt=build_negative_prompt(avoid),
        elements=build_elements(base_image, filled, output_mode, locked_elements, index),
    )


def build_fallback_prompts(
    base_image: str,
    dimensions: Sequence[Dimension],
    *,
    output_mode: OutputMode = OutputMode.GAMEPLAY,
    locked_elements: Sequence[PromptElement] = (),
    learned_context: LearnedContext | None = None,
    scene_types: Sequence[SceneType] = tuple(SceneType),
) -> list[GeneratedPrompt]:
    """Build one prompt per scene type, numbered from 1."""
    prompts = []
    for index, scene_type in enumerate(scene_types):
        built = build_prompt(
            base_image,
            dimensions,
            scene_type,
            index,
            locked_elements,
            output_mode,
            learned_context,
        )
        prompts.append(
            GeneratedPrompt(
                scene_number=index + 1,
                scene_type=scene_type,
                prompt=built.prompt,
                negative_prompt=built.negative_prompt,
                elements=built.elements,
            )
        )
    return prompts
