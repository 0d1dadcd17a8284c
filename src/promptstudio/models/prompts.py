"""Editing models: dimensions, prompt elements, generated prompts and feedback.

A Dimension is a lens over the base image description:
- FILTER: what to preserve from the base (``filter_mode``)
- TRANSFORM: how the reference is applied (``transform_mode``)
- WEIGHT: how strongly to apply it, 0.0 (no effect) to 1.0 (full swap)
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

Rating = Literal["up", "down"]


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid4().hex


class DimensionType(StrEnum):
    """Categories of transformation axes."""

    ENVIRONMENT = "environment"
    CHARACTERS = "characters"
    ART_STYLE = "art_style"
    MOOD = "mood"
    ACTION = "action"
    TECHNOLOGY = "technology"
    CAMERA = "camera"
    CREATURES = "creatures"
    GAME_UI = "game_ui"
    ERA = "era"
    GENRE = "genre"
    CUSTOM = "custom"


class FilterMode(StrEnum):
    """What to preserve from the base image."""

    PRESERVE_STRUCTURE = "preserve_structure"
    PRESERVE_SUBJECT = "preserve_subject"
    PRESERVE_MOOD = "preserve_mood"
    PRESERVE_COLOR_PALETTE = "preserve_color_palette"
    NONE = "none"


class TransformMode(StrEnum):
    """How the reference content is applied."""

    REPLACE = "replace"
    BLEND = "blend"
    STYLE_TRANSFER = "style_transfer"
    SEMANTIC_SWAP = "semantic_swap"
    ADDITIVE = "additive"


class OutputMode(StrEnum):
    """Kind of visual the generation targets."""

    GAMEPLAY = "gameplay"
    CONCEPT = "concept"
    POSTER = "poster"


class SceneType(StrEnum):
    """The fixed shot types produced per generation."""

    CINEMATIC_WIDE_SHOT = "Cinematic Wide Shot"
    HERO_PORTRAIT = "Hero Portrait"
    ACTION_SEQUENCE = "Action Sequence"
    ENVIRONMENTAL_STORYTELLING = "Environmental Storytelling"


class ElementCategory(StrEnum):
    """Category of a prompt sub-claim."""

    COMPOSITION = "composition"
    LIGHTING = "lighting"
    STYLE = "style"
    MOOD = "mood"
    SUBJECT = "subject"
    SETTING = "setting"
    QUALITY = "quality"


class Dimension(BaseModel):
    """A named transformation axis applied to the base image."""

    id: str = Field(default_factory=new_id, min_length=1)
    type: DimensionType
    label: str = ""
    reference: str = ""
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    filter_mode: FilterMode = FilterMode.PRESERVE_STRUCTURE
    transform_mode: TransformMode = TransformMode.REPLACE

    @property
    def is_filled(self) -> bool:
        """True when the dimension carries a non-blank reference."""
        return bool(self.reference.strip())

    @property
    def display_label(self) -> str:
        return self.label or self.type.value.replace("_", " ")


class PromptElement(BaseModel):
    """One sub-claim of a generated prompt, lockable across regenerations."""

    id: str = Field(default_factory=new_id, min_length=1)
    text: str = Field(min_length=1)
    category: ElementCategory
    locked: bool = False


class GeneratedPrompt(BaseModel):
    """One candidate output of a generation call."""

    id: str = Field(default_factory=new_id, min_length=1)
    scene_number: int = Field(ge=1)
    scene_type: SceneType
    prompt: str = Field(min_length=1)
    negative_prompt: str | None = None
    rating: Rating | None = None
    locked: bool = False
    elements: list[PromptElement] = Field(default_factory=list)


class PromptFeedback(BaseModel):
    """A rating event (with optional detail) for a single prompt."""

    id: str = Field(default_factory=new_id, min_length=1)
    prompt_id: str = Field(min_length=1)
    rating: Rating | None = None
    text_feedback: str | None = None
    liked_elements: list[str] = Field(default_factory=list)
    disliked_elements: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    session_id: str | None = None


class RefinementFeedback(BaseModel):
    """Free-text steering carried into the next generation call."""

    positive: str = ""
    negative: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.positive or self.negative)
