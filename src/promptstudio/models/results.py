"""Provider request/result models and boundary validation.

Every provider result is an explicit tagged variant discriminated by
``status``. Payloads that still use the legacy ``success: bool`` flag are
normalized first; anything that then fails validation is rejected with
:class:`~promptstudio.errors.MalformedResponseError` instead of leaking
half-formed data into the autoplay loop or the learner.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from promptstudio.errors import MalformedResponseError
from promptstudio.models.prompts import (
    Dimension,
    DimensionType,
    GeneratedPrompt,
    OutputMode,
    PromptElement,
    RefinementFeedback,
)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class GenerationRequest(BaseModel):
    """Everything a prompt generator needs for one call."""

    base_image: str = Field(min_length=1)
    dimensions: list[Dimension] = Field(default_factory=list)
    feedback: RefinementFeedback = Field(default_factory=RefinementFeedback)
    output_mode: OutputMode = OutputMode.GAMEPLAY
    locked_elements: list[PromptElement] = Field(default_factory=list)


class DimensionAdjustment(BaseModel):
    """A change the generator made to a dimension reference."""

    type: DimensionType
    original_value: str = ""
    new_value: str = ""
    was_modified: bool = False
    change_reason: str = ""


class GenerationSuccess(BaseModel):
    status: Literal["success"] = "success"
    prompts: list[GeneratedPrompt] = Field(min_length=1)
    adjusted_dimensions: list[DimensionAdjustment] = Field(default_factory=list)
    reasoning: str = ""


class GenerationFailure(BaseModel):
    status: Literal["failure"] = "failure"
    error: str = Field(min_length=1)


GenerationResult = Annotated[GenerationSuccess | GenerationFailure, Field(discriminator="status")]

# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class EvaluationCriteria(BaseModel):
    """Goal context an image is judged against."""

    original_prompt: str
    expected_aspects: list[str] = Field(default_factory=list)
    output_mode: OutputMode = OutputMode.GAMEPLAY
    approval_threshold: float = Field(default=70.0, ge=0.0, le=100.0)


class Evaluation(BaseModel):
    """Score and critique for one rendered candidate."""

    prompt_id: str = Field(min_length=1)
    score: float = Field(ge=0.0, le=100.0)
    approved: bool
    feedback: str = ""
    improvements: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Polish
# ---------------------------------------------------------------------------


class PolishSuccess(BaseModel):
    status: Literal["success"] = "success"
    polished_url: str = Field(min_length=1)
    re_evaluation: Evaluation | None = None
    improved: bool = False


class PolishFailure(BaseModel):
    status: Literal["failure"] = "failure"
    error: str = Field(min_length=1)


PolishResult = Annotated[PolishSuccess | PolishFailure, Field(discriminator="status")]

_GENERATION_ADAPTER: TypeAdapter[GenerationSuccess | GenerationFailure] = TypeAdapter(
    GenerationResult
)
_POLISH_ADAPTER: TypeAdapter[PolishSuccess | PolishFailure] = TypeAdapter(PolishResult)
_EVALUATION_ADAPTER: TypeAdapter[Evaluation] = TypeAdapter(Evaluation)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _as_tagged(kind: str, payload: object) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(kind, f"expected a mapping, got {type(payload).__name__}")
    data = dict(payload)
    if "status" not in data and "success" in data:
        data["status"] = "success" if data.pop("success") else "failure"
        if data["status"] == "failure" and not data.get("error"):
            data["error"] = f"{kind} provider reported failure without detail"
    return data


def _validate(kind: str, adapter: TypeAdapter[T], data: object) -> T:
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedResponseError(kind, _summarize(e)) from e


def parse_generation_result(payload: object) -> GenerationSuccess | GenerationFailure:
    """Validate a prompt generator response.

    Raises:
        MalformedResponseError: If the payload matches neither variant.
    """
    if isinstance(payload, GenerationSuccess | GenerationFailure):
        return payload
    return _validate("generation", _GENERATION_ADAPTER, _as_tagged("generation", payload))


def parse_polish_result(payload: object) -> PolishSuccess | PolishFailure:
    """Validate an image polisher response.

    Raises:
        MalformedResponseError: If the payload matches neither variant.
    """
    if isinstance(payload, PolishSuccess | PolishFailure):
        return payload
    return _validate("polish", _POLISH_ADAPTER, _as_tagged("polish", payload))


def parse_evaluation(payload: object, prompt_id: str | None = None) -> Evaluation:
    """Validate an image evaluator response.

    Args:
        payload: Evaluation instance or raw mapping.
        prompt_id: Filled in when the evaluator omits the prompt id.

    Raises:
        MalformedResponseError: If the payload is not a valid evaluation.
    """
    if isinstance(payload, Evaluation):
        return payload
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "evaluation", f"expected a mapping, got {type(payload).__name__}"
        )
    data = dict(payload)
    if prompt_id is not None:
        data.setdefault("prompt_id", prompt_id)
    return _validate("evaluation", _EVALUATION_ADAPTER, data)
