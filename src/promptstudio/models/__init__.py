"""Pydantic models for the studio's editing state and provider boundary."""

from promptstudio.models.prompts import (
    Dimension,
    DimensionType,
    ElementCategory,
    FilterMode,
    GeneratedPrompt,
    OutputMode,
    PromptElement,
    PromptFeedback,
    Rating,
    RefinementFeedback,
    SceneType,
    TransformMode,
    new_id,
)
from promptstudio.models.results import (
    DimensionAdjustment,
    Evaluation,
    EvaluationCriteria,
    GenerationFailure,
    GenerationRequest,
    GenerationResult,
    GenerationSuccess,
    PolishFailure,
    PolishResult,
    PolishSuccess,
    parse_evaluation,
    parse_generation_result,
    parse_polish_result,
)

__all__ = [
    "Dimension",
    "DimensionAdjustment",
    "DimensionType",
    "ElementCategory",
    "Evaluation",
    "EvaluationCriteria",
    "FilterMode",
    "GeneratedPrompt",
    "GenerationFailure",
    "GenerationRequest",
    "GenerationResult",
    "GenerationSuccess",
    "OutputMode",
    "PolishFailure",
    "PolishResult",
    "PolishSuccess",
    "PromptElement",
    "PromptFeedback",
    "Rating",
    "RefinementFeedback",
    "SceneType",
    "TransformMode",
    "new_id",
    "parse_evaluation",
    "parse_generation_result",
    "parse_polish_result",
]
