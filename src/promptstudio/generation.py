"""Manual (user-triggered) prompt generation with a deterministic fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from promptstudio.builder import build_fallback_prompts
from promptstudio.errors import PreconditionError
from promptstudio.models.results import (
    GenerationFailure,
    GenerationRequest,
    GenerationSuccess,
    parse_generation_result,
)
from promptstudio.observability.logging import get_logger
from promptstudio.providers.base import await_with_timeout

if TYPE_CHECKING:
    from promptstudio.context import StudioContext
    from promptstudio.models.prompts import GeneratedPrompt
    from promptstudio.models.results import DimensionAdjustment
    from promptstudio.providers.base import PromptGenerator

log = get_logger(__name__)


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of a manual generation.

    Attributes:
        prompts: The prompt set now current on the context.
        source: ``provider`` when the generator succeeded, ``fallback`` when
            the deterministic builder was used.
        error: Why the fallback was used, if it was.
        reasoning: Generator's explanation, when provided.
    """

    prompts: list[GeneratedPrompt]
    source: Literal["provider", "fallback"]
    error: str | None = None
    reasoning: str = ""

    @property
    def used_fallback(self) -> bool:
        return self.source == "fallback"


def build_request(context: StudioContext) -> GenerationRequest:
    return GenerationRequest(
        base_image=context.base_image,
        dimensions=[d.model_copy(deep=True) for d in context.dimensions],
        feedback=context.feedback.model_copy(),
        output_mode=context.output_mode,
        locked_elements=context.locked_elements(),
    )


def keep_locked_prompts(
    previous: list[GeneratedPrompt], fresh: list[GeneratedPrompt]
) -> list[GeneratedPrompt]:
    """Carry locked prompts over into a new set.

    A locked prompt replaces the fresh prompt with the same scene number,
    or is appended when the fresh set has no such scene.
    """
    locked = {p.scene_number: p for p in previous if p.locked}
    if not locked:
        return fresh
    merged = [locked.pop(p.scene_number, p) for p in fresh]
    merged.extend(sorted(locked.values(), key=lambda p: p.scene_number))
    return merged


def _apply_adjustments(context: StudioContext, adjustments: list[DimensionAdjustment]) -> None:
    for adjustment in adjustments:
        if not adjustment.was_modified or not adjustment.new_value:
            continue
        target = next((d for d in context.dimensions if d.type == adjustment.type), None)
        if target is None:
            continue
        target.reference = adjustment.new_value
        log.info(
            "dimension_adjusted",
            dimension=adjustment.type.value,
            reason=adjustment.change_reason or None,
        )


async def generate(
    context: StudioContext,
    generator: PromptGenerator,
    *,
    timeout: float | None = None,
) -> GenerationOutcome:
    """Generate a prompt set for the context's current editing state.

    Starts a session when none is active. Provider errors, timeouts,
    tagged failures and malformed responses all fall back to the
    deterministic builder, so a prompt set is always produced.

    Args:
        context: Editing scope supplying base image, dimensions and services.
        generator: Prompt generation backend.
        timeout: Seconds allowed for the generator; defaults to the
            configured call timeout.

    Returns:
        GenerationOutcome describing the new prompt set.

    Raises:
        PreconditionError: If the context has no base image.
    """
    if not context.base_image.strip():
        raise PreconditionError("generate", "no base image")

    if context.sessions.get_active_session() is None:
        context.start_session()

    budget = context.config.autoplay.call_timeout if timeout is None else timeout
    error: str | None = None
    result: GenerationSuccess | GenerationFailure | None = None
    try:
        raw = await await_with_timeout(
            generator.generate_prompts(build_request(context)),
            budget,
            operation="generate_prompts",
        )
        result = parse_generation_result(raw)
    except Exception as e:
        # Any failure here falls back to local prompts rather than surfacing
        error = f"{type(e).__name__}: {e}"

    if isinstance(result, GenerationFailure):
        error = result.error

    if isinstance(result, GenerationSuccess):
        _apply_adjustments(context, result.adjusted_dimensions)
        fresh = [p.model_copy(deep=True) for p in result.prompts]
        outcome_source: Literal["provider", "fallback"] = "provider"
        reasoning = result.reasoning
    else:
        log.warning("generation_fallback", error=error)
        fresh = build_fallback_prompts(
            context.base_image,
            context.dimensions,
            output_mode=context.output_mode,
            locked_elements=context.locked_elements(),
            learned_context=context.learned_context(),
        )
        outcome_source = "fallback"
        reasoning = ""

    prompts = keep_locked_prompts(context.prompts, fresh)
    context.apply_prompts(prompts)

    learner = context.learner
    context.queue.submit("learn_style_preferences", learner.learn_style_preferences)
    context.queue.submit("learn_dimension_combinations", learner.learn_dimension_combinations)

    log.info("generation_completed", source=outcome_source, prompts=len(prompts))
    return GenerationOutcome(
        prompts=list(context.prompts),
        source=outcome_source,
        error=error,
        reasoning=reasoning,
    )
