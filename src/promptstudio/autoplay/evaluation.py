"""Evaluation criteria, candidate classification and refinement feedback."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from promptstudio.models.prompts import RefinementFeedback
from promptstudio.models.results import EvaluationCriteria

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from promptstudio.models.prompts import Dimension, OutputMode
    from promptstudio.models.results import Evaluation

Verdict = Literal["accept", "polish", "reject"]

FEEDBACK_ITEMS = 3


def build_criteria(
    base_image: str,
    dimensions: Sequence[Dimension],
    output_mode: OutputMode,
    approval_threshold: float,
) -> EvaluationCriteria:
    """Goal context for judging renders: the base image plus every filled lens."""
    return EvaluationCriteria(
        original_prompt=base_image,
        expected_aspects=[
            f"{d.display_label}: {d.reference.strip()}" for d in dimensions if d.is_filled
        ],
        output_mode=output_mode,
        approval_threshold=approval_threshold,
    )


def classify(
    score: float,
    *,
    approval_threshold: float,
    polish_floor: float,
) -> Verdict:
    """Decide what to do with a candidate.

    Scores at or above the threshold are accepted. Scores in the near-miss
    band ``[polish_floor, approval_threshold)`` are worth one polish pass.
    Anything lower is rejected without polishing.
    """
    if score >= approval_threshold:
        return "accept"
    if score >= polish_floor:
        return "polish"
    return "reject"


def _unique(items: Iterable[str], limit: int) -> list[str]:
    seen: list[str] = []
    for item in items:
        text = item.strip()
        if text and text not in seen:
            seen.append(text)
        if len(seen) == limit:
            break
    return seen


def extract_refinement_feedback(
    evaluations: Sequence[Evaluation], approval_threshold: float
) -> RefinementFeedback:
    """Condense evaluations into steering for the next iteration.

    Improvements requested for rejected candidates become "Avoid: ..."; the
    strengths seen across all candidates become "Keep: ...".
    """
    rejected = [e for e in evaluations if e.score < approval_threshold]
    avoid = _unique((i for e in rejected for i in e.improvements), FEEDBACK_ITEMS)
    keep = _unique((s for e in evaluations for s in e.strengths), FEEDBACK_ITEMS)
    return RefinementFeedback(
        positive=f"Keep: {', '.join(keep)}" if keep else "",
        negative=f"Avoid: {', '.join(avoid)}" if avoid else "",
    )
