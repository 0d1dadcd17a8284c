"""Tests for deterministic prompt construction."""

from __future__ import annotations

import pytest

from promptstudio.builder import (
    DEFAULT_NEGATIVES,
    MAX_PROMPT_LENGTH,
    build_elements,
    build_fallback_prompts,
    build_negative_prompt,
    build_prompt,
    truncate_at_comma,
    variety_modifiers,
    weight_phrase,
    weighted_clause,
)
from promptstudio.learning.preferences import LearnedContext
from promptstudio.models import (
    Dimension,
    DimensionType,
    ElementCategory,
    OutputMode,
    PromptElement,
    SceneType,
    TransformMode,
)

BASE = "stone bridge over a canyon"


class TestWeightPhrase:
    @pytest.mark.parametrize(
        ("weight", "phrase"),
        [
            (1.0, ""),
            (0.75, "strong influence of"),
            (0.5, "balanced blend of"),
            (0.3, "subtle hints of"),
            (0.1, "traces of"),
            (0.05, ""),
        ],
    )
    def test_bands(self, weight: float, phrase: str) -> None:
        assert weight_phrase(weight) == phrase

    def test_weighted_clause_uses_transform(self) -> None:
        dimension = Dimension(
            type=DimensionType.ART_STYLE,
            reference="ukiyo-e woodblock",
            weight=0.5,
            transform_mode=TransformMode.STYLE_TRANSFER,
        )

        assert weighted_clause(dimension) == "balanced blend of style of ukiyo-e woodblock"

    def test_zero_weight_and_blank_reference_have_no_effect(self) -> None:
        silent = Dimension(type=DimensionType.MOOD, reference="calm", weight=0)

        assert weighted_clause(silent) is None
        assert weighted_clause(Dimension(type=DimensionType.MOOD, reference="  ")) is None


def test_truncate_at_comma_prefers_late_comma() -> None:
    text = "a" * 80 + ", " + "b" * 40

    assert truncate_at_comma(text, 100) == "a" * 80
    assert truncate_at_comma("short, text", 100) == "short, text"
    assert len(truncate_at_comma("x" * 200, 100)) == 100


def test_variety_modifiers_cycle() -> None:
    assert variety_modifiers(0) == ("low angle", "golden hour", "fog", "rule of thirds")
    assert variety_modifiers(1) != variety_modifiers(0)


def test_negative_prompt_deduplicates_and_drops_short_terms() -> None:
    negative = build_negative_prompt(["blurry", "fog", "ok"])

    assert negative.split(", ") == [*DEFAULT_NEGATIVES, "fog"]


class TestBuildPrompt:
    def test_same_inputs_same_output(self, dimensions: list[Dimension]) -> None:
        first = build_prompt(BASE, dimensions, SceneType.HERO_PORTRAIT, 1)
        second = build_prompt(BASE, dimensions, SceneType.HERO_PORTRAIT, 1)

        assert first == second

    def test_includes_base_dimensions_and_mode(self, dimensions: list[Dimension]) -> None:
        built = build_prompt(BASE, dimensions, SceneType.CINEMATIC_WIDE_SHOT, 0)

        assert BASE in built.prompt
        assert "neon-lit rainy alley" in built.prompt
        assert "balanced blend of melancholic" in built.prompt
        assert "game UI overlay" in built.prompt
        assert "establishing shot" in built.prompt
        assert len(built.prompt) <= MAX_PROMPT_LENGTH

    def test_concept_mode_keywords(self) -> None:
        built = build_prompt(
            BASE, [], SceneType.ACTION_SEQUENCE, 2, output_mode=OutputMode.CONCEPT
        )

        assert "concept art sketch" in built.prompt
        assert "game UI" not in built.prompt

    def test_camera_dimension_replaces_default_angle(self) -> None:
        camera = Dimension(type=DimensionType.CAMERA, reference="fisheye lens")

        built = build_prompt(BASE, [camera], SceneType.HERO_PORTRAIT, 0)

        assert built.prompt.startswith("fisheye lens, ")

    def test_learned_context_emphasizes_and_avoids(self) -> None:
        context = LearnedContext(avoid_elements=("fog",), emphasize_elements=("rim light",))

        built = build_prompt(BASE, [], SceneType.CINEMATIC_WIDE_SHOT, 0, learned_context=context)

        assert "with emphasis on rim light" in built.prompt
        assert "fog" not in built.prompt.split(", ")
        assert built.negative_prompt.endswith("fog")

    def test_long_base_is_bounded(self) -> None:
        built = build_prompt("vast " * 400, [], SceneType.CINEMATIC_WIDE_SHOT, 0)

        assert len(built.prompt) <= MAX_PROMPT_LENGTH


class TestBuildElements:
    def test_elements_map_dimensions_to_categories(self, dimensions: list[Dimension]) -> None:
        filled = [d for d in dimensions if d.is_filled]

        elements = build_elements(BASE, filled, OutputMode.GAMEPLAY, [])

        pairs = [(e.category, e.text) for e in elements]
        assert (ElementCategory.SETTING, "neon-lit rainy alley") in pairs
        assert (ElementCategory.MOOD, "melancholic") in pairs
        assert (ElementCategory.QUALITY, "detailed") in pairs

    def test_locked_element_replaces_same_category(self, dimensions: list[Dimension]) -> None:
        locked = PromptElement(text="storm clouds", category=ElementCategory.MOOD, locked=True)

        elements = build_elements(BASE, dimensions, OutputMode.GAMEPLAY, [locked])

        moods = [e for e in elements if e.category == ElementCategory.MOOD]
        assert [(e.text, e.locked) for e in moods] == [("storm clouds", True)]

    def test_locked_element_without_slot_is_appended(self) -> None:
        locked = PromptElement(text="warm key light", category=ElementCategory.LIGHTING)

        elements = build_elements(BASE, [], OutputMode.GAMEPLAY, [locked])

        assert elements[-1].text == "warm key light"
        assert elements[-1].locked

    def test_element_ids_are_stable(self) -> None:
        first = build_elements(BASE, [], OutputMode.POSTER, [])
        second = build_elements(BASE, [], OutputMode.POSTER, [])

        assert [e.id for e in first] == [e.id for e in second]


class TestBuildFallbackPrompts:
    def test_one_prompt_per_scene_type(self, dimensions: list[Dimension]) -> None:
        prompts = build_fallback_prompts(BASE, dimensions)

        assert [p.scene_number for p in prompts] == [1, 2, 3, 4]
        assert [p.scene_type for p in prompts] == list(SceneType)
        assert len({p.prompt for p in prompts}) == 4
        assert all(p.negative_prompt for p in prompts)

    def test_texts_are_deterministic(self, dimensions: list[Dimension]) -> None:
        first = build_fallback_prompts(BASE, dimensions, output_mode=OutputMode.POSTER)
        second = build_fallback_prompts(BASE, dimensions, output_mode=OutputMode.POSTER)

        assert [p.prompt for p in first] == [p.prompt for p in second]
        assert [[e.id for e in p.elements] for p in first] == [
            [e.id for e in p.elements] for p in second
        ]

    def test_scene_subset(self) -> None:
        prompts = build_fallback_prompts(BASE, [], scene_types=[SceneType.HERO_PORTRAIT])

        assert len(prompts) == 1
        assert prompts[0].scene_type == SceneType.HERO_PORTRAIT
