"""Feedback analysis built on top of the preference learner.

Turns learned preferences and recent ratings into refinement suggestions,
per-element explanations, A/B variants and analytics. Everything here reads
learner state; nothing mutates it.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from promptstudio.learning.preferences import normalize
from promptstudio.models.prompts import SceneType, new_id

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from promptstudio.learning.preferences import ElementPattern, PreferenceLearner
    from promptstudio.models.prompts import GeneratedPrompt, PromptElement, PromptFeedback, Rating

SuggestionType = Literal["add", "remove", "modify", "emphasize", "deemphasize"]
SuggestionSource = Literal["feedback_history", "pattern", "text"]
Sentiment = Literal["positive", "negative", "neutral"]
Impact = Literal["high", "medium", "low"]

POSITIVE_WORDS = ("love", "great", "perfect", "amazing", "good", "nice", "excellent")
NEGATIVE_WORDS = ("hate", "bad", "wrong", "ugly", "terrible", "poor", "remove")

_TOO_MUCH = re.compile(r"too much\s+(\w+)")
_WANT_MORE = re.compile(r"(?:need|want|add)\s+more\s+(\w+)")
_REMOVE = re.compile(r"\b(?:remove|no|without)\s+(\w+)")
_NON_WORD = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class RefinementSuggestion:
    type: SuggestionType
    target: str
    suggestion: str
    reason: str
    confidence: float
    source: SuggestionSource


@dataclass(frozen=True)
class TextAnalysis:
    sentiment: Sentiment
    keywords: list[str]
    suggested_actions: list[str]


@dataclass(frozen=True)
class ElementExplanation:
    element_id: str
    text: str
    reason: str
    influenced_by_preference: bool
    related_patterns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AppliedPreference:
    value: str
    impact: Impact


@dataclass(frozen=True)
class PromptExplanation:
    prompt_id: str
    summary: str
    elements: list[ElementExplanation]
    applied_preferences: list[AppliedPreference]


@dataclass(frozen=True)
class ABVariant:
    """One arm of an A/B comparison with its running tally."""

    id: str
    name: str
    prompt: str
    elements: tuple[PromptElement, ...]
    impressions: int = 0
    positive: int = 0
    negative: int = 0

    @property
    def conversion_rate(self) -> float:
        return self.positive / self.impressions if self.impressions else 0.0


@dataclass(frozen=True)
class DailyCount:
    date: str
    positive: int
    negative: int
    total: int


@dataclass(frozen=True)
class ScenePerformance:
    scene_type: str
    positive_rate: float
    total: int


@dataclass(frozen=True)
class FeedbackAnalytics:
    total_feedback: int
    positive_rate: float
    top_patterns: list[ElementPattern]
    avoid: list[tuple[str, int]]
    daily_trend: list[DailyCount]
    scene_performance: list[ScenePerformance]


def suggestion_from_text(text: str) -> RefinementSuggestion | None:
    """Read one actionable request out of free-text feedback, if there is one."""
    lowered = text.casefold()

    match = _TOO_MUCH.search(lowered)
    if match:
        target = match.group(1)
        return RefinementSuggestion(
            type="deemphasize",
            target=target,
            suggestion=f'Reduce "{target}", there was too much of it',
            reason="Direct feedback about element intensity",
            confidence=0.9,
            source="text",
        )

    match = _WANT_MORE.search(lowered)
    if match:
        target = match.group(1)
        return RefinementSuggestion(
            type="emphasize",
            target=target,
            suggestion=f'Emphasize "{target}"',
            reason="Direct feedback asking for more of this element",
            confidence=0.9,
            source="text",
        )

    match = _REMOVE.search(lowered)
    if match:
        target = match.group(1)
        return RefinementSuggestion(
            type="remove",
            target=target,
            suggestion=f'Remove "{target}"',
            reason="Direct feedback to remove this element",
            confidence=0.95,
            source="text",
        )
    return None


def refinement_suggestions(
    prompt: GeneratedPrompt,
    recent_feedback: Sequence[PromptFeedback],
    learner: PreferenceLearner,
    *,
    limit: int = 5,
) -> list[RefinementSuggestion]:
    """Suggest edits to a prompt from learned preferences and recent feedback."""
    context = learner.build_learned_context()
    texts = [normalize(e.text) for e in prompt.elements]
    suggestions: list[RefinementSuggestion] = []

    for avoid in context.avoid_elements:
        if any(avoid in text for text in texts):
            suggestions.append(
                RefinementSuggestion(
                    type="remove",
                    target=avoid,
                    suggestion=f'Consider removing "{avoid}"',
                    reason="This element has drawn negative feedback before",
                    confidence=0.8,
                    source="feedback_history",
                )
            )

    for emphasize in context.emphasize_elements:
        if not any(emphasize in text for text in texts):
            suggestions.append(
                RefinementSuggestion(
                    type="add",
                    target=emphasize,
                    suggestion=f'Consider adding "{emphasize}"',
                    reason="This element often appears in prompts you rated positively",
                    confidence=0.7,
                    source="pattern",
                )
            )

    present = {(e.category.value, normalize(e.text)) for e in prompt.elements}
    for pattern in context.patterns:
        if pattern.confidence < 0.7 or pattern.successes <= pattern.failures:
            continue
        if (pattern.category, pattern.value) in present:
            continue
        suggestions.append(
            RefinementSuggestion(
                type="add",
                target=pattern.value,
                suggestion=(
                    f'Try adding "{pattern.value}" ({pattern.category}), '
                    f"{pattern.confidence:.0%} success rate"
                ),
                reason=f"This {pattern.category} element worked in {pattern.successes} prompts",
                confidence=pattern.confidence,
                source="pattern",
            )
        )

    negative = [f for f in recent_feedback if f.rating == "down"][:3]
    for feedback in negative:
        if feedback.text_feedback:
            extracted = suggestion_from_text(feedback.text_feedback)
            if extracted is not None:
                suggestions.append(extracted)

    for adjustment in context.dimension_adjustments:
        suggestions.append(
            RefinementSuggestion(
                type="modify",
                target=adjustment.type.value,
                suggestion=f"Adjust {adjustment.type.value}: {adjustment.adjustment}",
                reason=adjustment.reason,
                confidence=0.6,
                source="pattern",
            )
        )

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:limit]


def analyze_text_feedback(text: str) -> TextAnalysis:
    """Cheap local sentiment and keyword read of free-text feedback."""
    lowered = text.casefold()
    positive = sum(1 for w in POSITIVE_WORDS if w in lowered)
    negative = sum(1 for w in NEGATIVE_WORDS if w in lowered)

    sentiment: Sentiment = "neutral"
    if positive > negative:
        sentiment = "positive"
    elif negative > positive:
        sentiment = "negative"

    words = [w for w in _NON_WORD.sub("", lowered).split() if len(w) > 3]
    keywords = [word for word, _ in Counter(words).most_common(5)]

    actions = []
    if "more" in lowered:
        actions.append("Increase intensity of mentioned elements")
    if "less" in lowered or "too much" in lowered:
        actions.append("Reduce intensity of mentioned elements")
    if "remove" in lowered or "without" in lowered:
        actions.append("Remove mentioned elements")

    return TextAnalysis(sentiment=sentiment, keywords=keywords, suggested_actions=actions)


def _impact(strength: float) -> Impact:
    if strength >= 0.7:
        return "high"
    if strength >= 0.4:
        return "medium"
    return "low"


def explain_prompt(prompt: GeneratedPrompt, learner: PreferenceLearner) -> PromptExplanation:
    """Explain which elements were shaped by learned preferences."""
    patterns = learner.element_patterns()
    explanations: list[ElementExplanation] = []
    applied: list[AppliedPreference] = []

    for element in prompt.elements:
        text = normalize(element.text)
        reason = f"Standard {element.category.value} element for {prompt.scene_type.value}"
        strength = learner.value_strength("element", element.category.value, text)
        influenced = strength is not None and strength >= 0.5
        if influenced:
            assert strength is not None
            reason = f"Included because you previously liked this {element.category.value} element"
            applied.append(AppliedPreference(value=text, impact=_impact(strength)))

        related = [
            f"{p.confidence:.0%} success rate in similar prompts"
            for p in patterns
            if text in p.value
        ]
        if related:
            reason += f". Pattern data: {'; '.join(related)}"

        explanations.append(
            ElementExplanation(
                element_id=element.id,
                text=element.text,
                reason=reason,
                influenced_by_preference=influenced,
                related_patterns=related,
            )
        )

    summary = f"This prompt was generated for your {prompt.scene_type.value} request"
    if applied:
        summary += f", personalized with {len(applied)} of your preferences"
        high = sum(1 for a in applied if a.impact == "high")
        if high:
            summary += f" ({high} high-impact)"
    summary += "."

    return PromptExplanation(
        prompt_id=prompt.id,
        summary=summary,
        elements=explanations,
        applied_preferences=applied,
    )


def _strip_terms(prompt: str, terms: Iterable[str]) -> str:
    cleaned = prompt
    for term in terms:
        cleaned = re.sub(re.escape(term), "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r",\s*,", ",", cleaned)
    cleaned = re.sub(r"\s{2,}", " ", cleaned)
    return cleaned.strip().strip(",").strip()


def ab_variants(prompt: GeneratedPrompt, learner: PreferenceLearner) -> list[ABVariant]:
    """Build A/B variants: A is the control, B adds emphasis, C drops avoided terms.

    B and C are only produced when there is something to emphasize or remove.
    """
    context = learner.build_learned_context()
    elements = tuple(prompt.elements)
    variants = [
        ABVariant(id=new_id(), name="A", prompt=prompt.prompt, elements=elements, impressions=1)
    ]

    if context.emphasize_elements:
        emphasis = " and ".join(context.emphasize_elements[:2])
        variants.append(
            ABVariant(
                id=new_id(),
                name="B",
                prompt=f"{prompt.prompt}, with emphasis on {emphasis}",
                elements=elements,
            )
        )

    if context.avoid_elements:
        cleaned = _strip_terms(prompt.prompt, context.avoid_elements)
        if cleaned and cleaned != prompt.prompt:
            kept = tuple(
                e
                for e in prompt.elements
                if not any(a in normalize(e.text) for a in context.avoid_elements)
            )
            variants.append(ABVariant(id=new_id(), name="C", prompt=cleaned, elements=kept))

    return variants


def record_variant_result(variant: ABVariant, rating: Rating | None) -> ABVariant:
    """Return the variant with one more impression and the rating tallied."""
    return replace(
        variant,
        impressions=variant.impressions + 1,
        positive=variant.positive + (rating == "up"),
        negative=variant.negative + (rating == "down"),
    )


def _daily_trend(feedback: Iterable[PromptFeedback], now: datetime) -> list[DailyCount]:
    day = timedelta(days=1)
    items = list(feedback)
    trend = []
    for offset in range(6, -1, -1):
        end = now - offset * day
        start = end - day
        in_window = [f for f in items if start <= f.created_at < end]
        trend.append(
            DailyCount(
                date=end.date().isoformat(),
                positive=sum(1 for f in in_window if f.rating == "up"),
                negative=sum(1 for f in in_window if f.rating == "down"),
                total=len(in_window),
            )
        )
    return trend


def feedback_analytics(
    learner: PreferenceLearner, now: datetime | None = None
) -> FeedbackAnalytics:
    """Summarize learning so far: rates, top patterns, avoid list and trends."""
    now = now or datetime.now(UTC)
    model = learner.model
    rated = model.positive_count + model.negative_count

    scenes = []
    for scene in SceneType:
        counts = model.scene_counts.get(scene.value)
        scenes.append(
            ScenePerformance(
                scene_type=scene.value,
                positive_rate=counts.positive_ratio if counts else 0.0,
                total=counts.total if counts else 0,
            )
        )

    avoid_ranked = sorted(model.avoid_counts.items(), key=lambda kv: (-kv[1], kv[0]))

    return FeedbackAnalytics(
        total_feedback=model.feedback_count,
        positive_rate=model.positive_count / rated if rated else 0.0,
        top_patterns=learner.element_patterns()[:5],
        avoid=avoid_ranked[:5],
        daily_trend=_daily_trend(learner.recent_feedback, now),
        scene_performance=scenes,
    )
