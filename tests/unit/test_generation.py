"""Tests for manual prompt generation and its fallback path."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from promptstudio.context import StudioContext
from promptstudio.errors import PreconditionError
from promptstudio.generation import build_request, generate, keep_locked_prompts
from promptstudio.models import (
    Dimension,
    DimensionType,
    GeneratedPrompt,
    GenerationFailure,
    GenerationRequest,
    SceneType,
)
from promptstudio.providers import ProviderConnectionError


class FakeGenerator:
    """Prompt generator returning a canned response."""

    def __init__(self, response: Any = None, *, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[GenerationRequest] = []

    async def generate_prompts(self, request: GenerationRequest) -> Any:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class SlowGenerator:
    async def generate_prompts(self, request: GenerationRequest) -> Any:
        await asyncio.sleep(5)
        return {}


def _provider_payload(*texts: str) -> dict[str, Any]:
    scene_types = list(SceneType)
    return {
        "success": True,
        "prompts": [
            {"scene_number": i + 1, "scene_type": scene_types[i].value, "prompt": text}
            for i, text in enumerate(texts)
        ],
        "reasoning": "leaned into the rain",
    }


@pytest.fixture
def context(dimensions: list[Dimension]) -> StudioContext:
    ctx = StudioContext()
    ctx.base_image = "isometric city street at dusk"
    ctx.dimensions = dimensions
    return ctx


# --- Tests for build_request ---


def test_build_request_copies_editing_state(context: StudioContext) -> None:
    request = build_request(context)

    request.dimensions[0].reference = "changed"

    assert request.base_image == "isometric city street at dusk"
    assert context.dimensions[0].reference == "neon-lit rainy alley"


# --- Tests for keep_locked_prompts ---


class TestKeepLockedPrompts:
    def _prompt(self, scene: int, text: str, *, locked: bool = False) -> GeneratedPrompt:
        return GeneratedPrompt(
            scene_number=scene,
            scene_type=SceneType.HERO_PORTRAIT,
            prompt=text,
            locked=locked,
        )

    def test_locked_prompt_replaces_same_scene(self) -> None:
        previous = [self._prompt(1, "old one"), self._prompt(2, "keep me", locked=True)]
        fresh = [self._prompt(1, "new one"), self._prompt(2, "new two")]

        merged = keep_locked_prompts(previous, fresh)

        assert [p.prompt for p in merged] == ["new one", "keep me"]

    def test_locked_prompt_without_scene_is_appended(self) -> None:
        previous = [self._prompt(4, "keep me", locked=True)]
        fresh = [self._prompt(1, "new one")]

        merged = keep_locked_prompts(previous, fresh)

        assert [p.scene_number for p in merged] == [1, 4]

    def test_nothing_locked_returns_fresh(self) -> None:
        fresh = [self._prompt(1, "new one")]

        assert keep_locked_prompts([self._prompt(1, "old")], fresh) is fresh


# --- Tests for generate ---


class TestGenerate:
    @pytest.mark.asyncio
    async def test_provider_success(self, context: StudioContext) -> None:
        generator = FakeGenerator(_provider_payload("first", "second"))

        outcome = await generate(context, generator)

        assert outcome.source == "provider"
        assert not outcome.used_fallback
        assert [p.prompt for p in outcome.prompts] == ["first", "second"]
        assert outcome.reasoning == "leaned into the rain"
        assert generator.requests[0].output_mode == context.output_mode

    @pytest.mark.asyncio
    async def test_provider_adjustments_update_dimensions(self, context: StudioContext) -> None:
        payload = _provider_payload("first")
        payload["adjusted_dimensions"] = [
            {"type": "mood", "new_value": "wistful", "was_modified": True},
            {"type": "environment", "new_value": "ignored", "was_modified": False},
        ]

        await generate(context, FakeGenerator(payload))

        by_type = {d.type: d.reference for d in context.dimensions}
        assert by_type[DimensionType.MOOD] == "wistful"
        assert by_type[DimensionType.ENVIRONMENT] == "neon-lit rainy alley"

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self, context: StudioContext) -> None:
        generator = FakeGenerator(error=ProviderConnectionError("llm", "refused"))

        outcome = await generate(context, generator)

        assert outcome.used_fallback
        assert "refused" in (outcome.error or "")
        assert [p.scene_number for p in outcome.prompts] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_tagged_failure_falls_back(self, context: StudioContext) -> None:
        generator = FakeGenerator(GenerationFailure(error="quota exceeded"))

        outcome = await generate(context, generator)

        assert outcome.used_fallback
        assert outcome.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back(self, context: StudioContext) -> None:
        generator = FakeGenerator({"status": "success", "prompts": []})

        outcome = await generate(context, generator)

        assert outcome.used_fallback
        assert (outcome.error or "").startswith("MalformedResponseError")

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, context: StudioContext) -> None:
        outcome = await generate(context, SlowGenerator(), timeout=0.01)

        assert outcome.used_fallback
        assert (outcome.error or "").startswith("ProviderTimeoutError")

    @pytest.mark.asyncio
    async def test_empty_base_image_is_rejected(self, context: StudioContext) -> None:
        context.base_image = "   "

        with pytest.raises(PreconditionError) as exc_info:
            await generate(context, FakeGenerator(_provider_payload("first")))

        assert exc_info.value.operation == "generate"
        assert context.sessions.get_active_session() is None

    @pytest.mark.asyncio
    async def test_starts_session_and_records_history(self, context: StudioContext) -> None:
        generator = FakeGenerator(_provider_payload("first"))

        await generate(context, generator)
        await generate(context, generator)

        session = context.sessions.get_active_session()
        assert session is not None
        assert session.iteration_count == 2
        assert context.history.can_undo
        assert context.history.position_label == "2 of 2"

    @pytest.mark.asyncio
    async def test_locked_prompts_survive_regeneration(self, context: StudioContext) -> None:
        await generate(context, FakeGenerator(error=RuntimeError("offline")))
        keeper = context.prompts[1]
        keeper.locked = True

        outcome = await generate(context, FakeGenerator(_provider_payload("a", "b", "c")))

        assert outcome.prompts[1].id == keeper.id
        assert outcome.prompts[1].prompt == keeper.prompt
        assert [p.prompt for p in outcome.prompts[::2]] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_fallback_uses_learned_avoid_terms(self, context: StudioContext) -> None:
        context.learner.model.avoid_counts["fog"] = 1

        outcome = await generate(context, FakeGenerator(error=RuntimeError("offline")))

        negatives = [p.negative_prompt or "" for p in outcome.prompts]
        assert all(n.endswith("fog") for n in negatives)
