"""Preference learning from ratings and closed generation sessions.

All learned state is plain counts in a :class:`PreferenceModel`. Updates are
pure additions, so feeding the same events in any order yields the same
counts. Derived views (style preferences, dimension combinations, element
patterns) are recomputed from the counts by batch passes and only consider a
value once it has at least ``min_samples`` observations.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Literal, NamedTuple

from pydantic import BaseModel, Field, model_validator

from promptstudio.config import LearningConfig
from promptstudio.learning.tasks import BestEffortTaskQueue
from promptstudio.models.prompts import DimensionType, ElementCategory, OutputMode, SceneType
from promptstudio.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from promptstudio.models.prompts import (
        Dimension,
        GeneratedPrompt,
        PromptElement,
        PromptFeedback,
        Rating,
    )
    from promptstudio.sessions import GenerationSession

log = get_logger(__name__)

SNAPSHOT_VERSION = 1

# Minimum positive ratio for a value to be emphasized
EMPHASIZE_RATIO = 0.6
# Minimum positive ratio for a style/mood value to become a dimension adjustment
ADJUSTMENT_RATIO = 0.5
WEIGHT_DRIFT = 0.15
OUTPUT_MODE_MIN_SESSIONS = 5
OUTPUT_MODE_MIN_SHARE = 0.6

AVOID_PHRASES = (
    "too much",
    "don't like",
    "remove",
    "less",
    "no more",
    "hate",
    "dislike",
    "avoid",
    "not",
    "without",
)

STYLE_KEYWORDS: dict[str, str] = {
    "lighting": "lighting",
    "cinematic": "lighting",
    "dramatic": "lighting",
    "soft": "lighting",
    "render": "rendering",
    "realistic": "rendering",
    "stylized": "rendering",
    "hand-painted": "rendering",
    "composition": "composition",
    "wide shot": "composition",
    "close-up": "composition",
    "portrait": "composition",
    "color": "color",
    "vibrant": "color",
    "muted": "color",
    "monochrome": "color",
    "texture": "texture",
    "detailed": "detail",
    "intricate": "detail",
}

_WORD_SPLIT = re.compile(r"[,.\s]+")


def normalize(text: str) -> str:
    """Case-fold and collapse whitespace so equivalent values share a key."""
    return " ".join(text.casefold().split())


def extract_avoid_keywords(text: str) -> list[str]:
    """Pull the words that follow avoid phrases ("too much", "remove", ...).

    Up to three words follow each phrase; words of two letters or fewer are
    dropped. Order of first appearance is kept, duplicates removed.
    """
    lowered = text.casefold()
    keywords: list[str] = []
    for phrase in AVOID_PHRASES:
        match = re.search(rf"\b{re.escape(phrase)}\b", lowered)
        if match is None:
            continue
        words = _WORD_SPLIT.split(lowered[match.end() :].strip())[:3]
        keywords.extend(w for w in words if len(w) > 2)
    return list(dict.fromkeys(keywords))


class ValueKey(NamedTuple):
    """Key of a learned value.

    ``kind`` separates prompt elements (typed by element category) from
    dimension references (typed by dimension type).
    """

    kind: Literal["element", "dimension"]
    type: str
    value: str


@dataclass
class RatingCounts:
    positive: int = 0
    negative: int = 0

    def add(self, rating: Rating) -> None:
        if rating == "up":
            self.positive += 1
        else:
            self.negative += 1

    @property
    def total(self) -> int:
        return self.positive + self.negative

    @property
    def positive_ratio(self) -> float:
        return self.positive / self.total if self.total else 0.0


@dataclass
class ModeStats:
    """Session outcomes for one output mode."""

    attempts: int = 0
    satisfied: int = 0
    total_iterations: int = 0
    total_seconds: float = 0.0

    @property
    def average_iterations(self) -> float | None:
        """Mean iterations to satisfaction, None before any satisfied session."""
        return self.total_iterations / self.satisfied if self.satisfied else None

    @property
    def average_seconds(self) -> float | None:
        return self.total_seconds / self.satisfied if self.satisfied else None


@dataclass
class WeightStats:
    total: float = 0.0
    samples: int = 0

    @property
    def mean(self) -> float | None:
        return self.total / self.samples if self.samples else None


@dataclass
class CombinationStats:
    """Outcomes of sessions that used one set of filled dimension types."""

    types: tuple[str, ...]
    successes: int = 0
    failures: int = 0
    weights: dict[str, WeightStats] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        total = self.successes + self.failures
        return self.successes / total if total else 0.0


@dataclass
class PreferenceModel:
    """Raw learned counts. Everything else is derived from these."""

    value_counts: dict[ValueKey, RatingCounts] = field(default_factory=dict)
    avoid_counts: dict[str, int] = field(default_factory=dict)
    scene_counts: dict[str, RatingCounts] = field(default_factory=dict)
    mode_stats: dict[str, ModeStats] = field(default_factory=dict)
    combinations: dict[str, CombinationStats] = field(default_factory=dict)
    weight_stats: dict[str, WeightStats] = field(default_factory=dict)
    feedback_count: int = 0
    positive_count: int = 0
    negative_count: int = 0
    session_count: int = 0


# --- derived views ---


@dataclass(frozen=True)
class StylePreference:
    category: str
    value: str
    strength: float
    samples: int


@dataclass(frozen=True)
class DimensionCombination:
    signature: str
    types: tuple[str, ...]
    successes: int
    failures: int
    success_rate: float
    average_weights: dict[str, float]


@dataclass(frozen=True)
class ElementPattern:
    """An element value with enough ratings to be meaningful."""

    category: str
    value: str
    successes: int
    failures: int

    @property
    def confidence(self) -> float:
        return self.successes / (self.successes + self.failures)


@dataclass(frozen=True)
class LearnedAdjustment:
    type: DimensionType
    adjustment: str
    reason: str


@dataclass(frozen=True)
class LearnedContext:
    """Learned steering applied when building prompts."""

    avoid_elements: tuple[str, ...] = ()
    emphasize_elements: tuple[str, ...] = ()
    dimension_adjustments: tuple[LearnedAdjustment, ...] = ()
    patterns: tuple[ElementPattern, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.avoid_elements or self.emphasize_elements or self.dimension_adjustments)


SuggestionKind = Literal["dimension", "reference", "weight", "negative_prompt", "output_mode"]


@dataclass(frozen=True)
class Suggestion:
    """A ranked recommendation for the dimension editor.

    Attributes:
        kind: What the suggestion changes.
        confidence: 0.0-1.0, used for ranking.
        reason: Short human-readable justification.
        dimension_type: Target dimension type, for dimension/reference/weight.
        dimension_id: Target dimension, for weight adjustments.
        value: Suggested reference text or negative prompt.
        weight: Suggested weight, for weight adjustments.
        output_mode: Suggested mode, for output_mode suggestions.
    """

    kind: SuggestionKind
    confidence: float
    reason: str
    dimension_type: DimensionType | None = None
    dimension_id: str | None = None
    value: str | None = None
    weight: float | None = None
    output_mode: OutputMode | None = None


@dataclass(frozen=True)
class LearningStatus:
    feedback_count: int
    required_count: int
    session_count: int
    positive_rate: float
    style_preferences: int
    combinations: int

    @property
    def ready(self) -> bool:
        return self.feedback_count >= self.required_count

    @property
    def progress(self) -> float:
        return min(1.0, self.feedback_count / self.required_count) if self.required_count else 1.0


# --- export format ---


class CountsRecord(BaseModel):
    positive: int = Field(default=0, ge=0)
    negative: int = Field(default=0, ge=0)


class ValueRecord(CountsRecord):
    kind: Literal["element", "dimension"]
    type: str
    value: str

    @model_validator(mode="after")
    def _validate_type_for_kind(self) -> ValueRecord:
        valid = ElementCategory if self.kind == "element" else DimensionType
        if self.type not in {t.value for t in valid}:
            raise ValueError(f"unknown {self.kind} type '{self.type}'")
        return self


class ModeRecord(BaseModel):
    attempts: int = Field(default=0, ge=0)
    satisfied: int = Field(default=0, ge=0)
    total_iterations: int = Field(default=0, ge=0)
    total_seconds: float = Field(default=0.0, ge=0.0)


class WeightRecord(BaseModel):
    total: float = 0.0
    samples: int = Field(default=0, ge=0)


class CombinationRecord(BaseModel):
    types: list[DimensionType]
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    weights: dict[DimensionType, WeightRecord] = Field(default_factory=dict)


class PreferenceSnapshot(BaseModel):
    """Serializable learner state, used for export, import and persistence."""

    version: int = SNAPSHOT_VERSION
    values: list[ValueRecord] = Field(default_factory=list)
    avoid: dict[str, int] = Field(default_factory=dict)
    scenes: dict[SceneType, CountsRecord] = Field(default_factory=dict)
    modes: dict[OutputMode, ModeRecord] = Field(default_factory=dict)
    combinations: list[CombinationRecord] = Field(default_factory=list)
    weights: dict[DimensionType, WeightRecord] = Field(default_factory=dict)
    feedback_count: int = Field(default=0, ge=0)
    positive_count: int = Field(default=0, ge=0)
    negative_count: int = Field(default=0, ge=0)
    session_count: int = Field(default=0, ge=0)


def combination_signature(types: Sequence[str]) -> str:
    return "|".join(sorted(set(types)))


class PreferenceLearner:
    """Aggregates feedback and session outcomes into ranked suggestions.

    Args:
        config: Learning thresholds; defaults apply when omitted.
        queue: Queue used by the ``submit_*`` fire-and-forget entry points.
    """

    def __init__(
        self,
        config: LearningConfig | None = None,
        queue: BestEffortTaskQueue | None = None,
    ) -> None:
        self.config = config or LearningConfig()
        self.queue = queue or BestEffortTaskQueue()
        self.model = PreferenceModel()
        self.recent_feedback: deque[PromptFeedback] = deque(
            maxlen=self.config.recent_feedback_limit
        )
        self.style_preferences: list[StylePreference] = []
        self.dimension_combinations: list[DimensionCombination] = []

    # ------------------------------------------------------------------
    # Event ingestion
    # ------------------------------------------------------------------

    def process_feedback(
        self,
        feedback: PromptFeedback,
        prompt: GeneratedPrompt,
        dimensions: Sequence[Dimension] | None = None,
    ) -> None:
        """Count one rating event.

        For an ``up`` rating the liked elements are implicated (all elements
        when none are named); for ``down`` the disliked ones. Every filled
        dimension passed in is implicated as well. Disliked elements and
        avoid phrases in the text feed the avoid list.
        """
        model = self.model
        model.feedback_count += 1
        self.recent_feedback.append(feedback)

        rating = feedback.rating
        if rating is None:
            return

        if rating == "up":
            model.positive_count += 1
        else:
            model.negative_count += 1

        for element in self._implicated_elements(feedback, prompt):
            key = ValueKey("element", element.category.value, normalize(element.text))
            model.value_counts.setdefault(key, RatingCounts()).add(rating)

        for dimension in dimensions or ():
            if not dimension.is_filled:
                continue
            key = ValueKey("dimension", dimension.type.value, normalize(dimension.reference))
            model.value_counts.setdefault(key, RatingCounts()).add(rating)

        model.scene_counts.setdefault(prompt.scene_type.value, RatingCounts()).add(rating)

        if rating == "down":
            disliked = set(feedback.disliked_elements)
            for element in prompt.elements:
                if element.id in disliked:
                    self._add_avoid(normalize(element.text))
            if feedback.text_feedback:
                for keyword in extract_avoid_keywords(feedback.text_feedback):
                    self._add_avoid(keyword)

        log.debug(
            "feedback_processed",
            prompt_id=prompt.id,
            rating=rating,
            feedback_count=model.feedback_count,
        )

    def record_session(self, session: GenerationSession) -> None:
        """Merge a closed session into mode and combination statistics."""
        if not session.is_closed:
            log.debug("open_session_ignored", session_id=session.id)
            return

        model = self.model
        model.session_count += 1
        stats = model.mode_stats.setdefault(session.output_mode.value, ModeStats())
        stats.attempts += 1
        if session.satisfied:
            stats.satisfied += 1
            stats.total_iterations += session.iteration_count
            duration = session.duration or timedelta(0)
            stats.total_seconds += duration.total_seconds()

        filled = [d for d in session.dimensions_snapshot if d.is_filled]
        if not filled:
            return

        types = tuple(sorted({d.type.value for d in filled}))
        signature = combination_signature(types)
        combo = model.combinations.setdefault(signature, CombinationStats(types=types))
        if session.satisfied:
            combo.successes += 1
            for d in filled:
                combo.weights.setdefault(d.type.value, WeightStats())
                combo.weights[d.type.value].total += d.weight
                combo.weights[d.type.value].samples += 1
                weight = model.weight_stats.setdefault(d.type.value, WeightStats())
                weight.total += d.weight
                weight.samples += 1
        else:
            combo.failures += 1

    # ------------------------------------------------------------------
    # Fire-and-forget entry points
    # ------------------------------------------------------------------

    def submit_feedback(
        self,
        feedback: PromptFeedback,
        prompt: GeneratedPrompt,
        dimensions: Sequence[Dimension] | None = None,
    ) -> None:
        """Learn from feedback without ever raising into the caller."""
        self.queue.submit("learn_feedback", self._learn_feedback, feedback, prompt, dimensions)

    def submit_session(self, session: GenerationSession) -> None:
        """Learn from a closed session without ever raising into the caller."""
        self.queue.submit("learn_session", self._learn_session, session)

    def _learn_feedback(
        self,
        feedback: PromptFeedback,
        prompt: GeneratedPrompt,
        dimensions: Sequence[Dimension] | None,
    ) -> None:
        self.process_feedback(feedback, prompt, dimensions)
        self.learn_style_preferences()

    def _learn_session(self, session: GenerationSession) -> None:
        self.record_session(session)
        self.learn_dimension_combinations()

    # ------------------------------------------------------------------
    # Batch passes
    # ------------------------------------------------------------------

    def learn_style_preferences(self) -> list[StylePreference]:
        """Recompute style preferences from element ratings.

        An element value counts as a style preference when its text mentions a
        style keyword and it has at least ``min_samples`` ratings.
        """
        found: list[StylePreference] = []
        for key, counts in self.model.value_counts.items():
            if key.kind != "element" or counts.total < self.config.min_samples:
                continue
            category = _style_category(key.value)
            if category is None:
                continue
            found.append(
                StylePreference(
                    category=category,
                    value=key.value,
                    strength=counts.positive_ratio,
                    samples=counts.total,
                )
            )
        found.sort(key=lambda p: (-p.strength, -p.samples, p.value))
        self.style_preferences = found
        return list(found)

    def learn_dimension_combinations(self) -> list[DimensionCombination]:
        """Recompute combinations with at least ``min_combination_usage`` successes."""
        found = [
            _to_combination(signature, stats)
            for signature, stats in self.model.combinations.items()
            if stats.successes >= self.config.min_combination_usage
        ]
        found.sort(key=lambda c: (-c.successes, -c.success_rate, c.signature))
        self.dimension_combinations = found
        return list(found)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def element_patterns(self, min_confidence: float = 0.0) -> list[ElementPattern]:
        """Element values with at least ``min_samples`` ratings, best first."""
        patterns = [
            ElementPattern(
                category=key.type,
                value=key.value,
                successes=counts.positive,
                failures=counts.negative,
            )
            for key, counts in self.model.value_counts.items()
            if key.kind == "element" and counts.total >= self.config.min_samples
        ]
        patterns = [p for p in patterns if p.confidence >= min_confidence]
        patterns.sort(key=lambda p: (-p.confidence, -(p.successes + p.failures), p.value))
        return patterns

    def avoid_terms(self, limit: int | None = None) -> list[str]:
        """Avoid terms ranked by how often they were disliked."""
        ranked = sorted(self.model.avoid_counts.items(), key=lambda kv: (-kv[1], kv[0]))
        terms = [term for term, _ in ranked]
        return terms if limit is None else terms[:limit]

    def value_strength(
        self, kind: Literal["element", "dimension"], type_: str, text: str
    ) -> float | None:
        """Positive ratio of a value, None until it has ``min_samples`` ratings."""
        counts = self.model.value_counts.get(ValueKey(kind, type_, normalize(text)))
        if counts is None or counts.total < self.config.min_samples:
            return None
        return counts.positive_ratio

    def build_learned_context(self) -> LearnedContext:
        """Summarize what to avoid and emphasize when building prompts."""
        patterns = self.element_patterns(min_confidence=EMPHASIZE_RATIO)
        emphasize = tuple(dict.fromkeys(p.value for p in patterns))

        adjustments: list[LearnedAdjustment] = []
        for category, dim_type, label in (
            ("style", DimensionType.ART_STYLE, "style"),
            ("mood", DimensionType.MOOD, "mood"),
        ):
            values = [
                p.value
                for p in self.element_patterns(min_confidence=ADJUSTMENT_RATIO)
                if p.category == category
            ]
            if values:
                adjustments.append(
                    LearnedAdjustment(
                        type=dim_type,
                        adjustment=", ".join(values),
                        reason=f"You tend to rate these {label} elements positively",
                    )
                )

        return LearnedContext(
            avoid_elements=tuple(self.avoid_terms()),
            emphasize_elements=emphasize,
            dimension_adjustments=tuple(adjustments),
            patterns=tuple(patterns),
        )

    def score_prompt(self, prompt: GeneratedPrompt) -> float:
        """Score 0-100 for how well a prompt matches learned preferences.

        Starts neutral at 50. Avoided elements cost up to 30 points each;
        rated elements move the score by up to 20 points in either direction.
        """
        score = 50.0
        avoid = self.model.avoid_counts
        for element in prompt.elements:
            text = normalize(element.text)
            if text in avoid:
                score -= 30.0 * min(1.0, avoid[text] / self.config.min_samples)
            strength = self.value_strength("element", element.category.value, text)
            if strength is not None:
                score += (strength - 0.5) * 40.0
        return max(0.0, min(100.0, score))

    def get_suggestions(
        self,
        current_dimensions: Sequence[Dimension],
        *,
        output_mode: OutputMode | None = None,
        limit: int | None = None,
    ) -> list[Suggestion]:
        """Ranked suggestions for the current dimension set.

        Pure and deterministic: the same model state and input always produce
        the same list. Dimension additions and reference suggestions skip types
        that already have a filled dimension. The sort is stable, so equal
        confidences keep the insertion order of the underlying counts.
        """
        limit = self.config.suggestion_limit if limit is None else limit
        present = {d.type for d in current_dimensions if d.is_filled}
        suggestions: list[Suggestion] = []

        suggestions.extend(self._addition_suggestions(present))
        suggestions.extend(self._reference_suggestions(present))
        suggestions.extend(self._weight_suggestions(current_dimensions))

        avoid = self.avoid_terms(limit=5)
        if avoid:
            suggestions.append(
                Suggestion(
                    kind="negative_prompt",
                    confidence=0.8,
                    reason="Elements you have disliked before",
                    value=", ".join(avoid),
                )
            )

        mode_suggestion = self._output_mode_suggestion(output_mode)
        if mode_suggestion is not None:
            suggestions.append(mode_suggestion)

        ranked = sorted(suggestions, key=lambda s: -s.confidence)
        return ranked[:limit]

    def _addition_suggestions(self, present: set[DimensionType]) -> list[Suggestion]:
        combos = [
            (signature, stats)
            for signature, stats in self.model.combinations.items()
            if stats.successes >= self.config.min_combination_usage
        ]
        combos.sort(key=lambda item: (-item[1].successes, item[0]))

        result: list[Suggestion] = []
        seen: set[DimensionType] = set()
        for _, stats in combos[:3]:
            for type_name in stats.types:
                dim_type = DimensionType(type_name)
                if dim_type in present or dim_type in seen:
                    continue
                seen.add(dim_type)
                partners = [t for t in stats.types if t != type_name]
                reason = f"Used in {stats.successes} successful sessions"
                if partners:
                    reason += f" together with {', '.join(partners)}"
                result.append(
                    Suggestion(
                        kind="dimension",
                        confidence=min(0.9, stats.successes / 10 + 0.5),
                        reason=reason,
                        dimension_type=dim_type,
                    )
                )
        return result

    def _reference_suggestions(self, present: set[DimensionType]) -> list[Suggestion]:
        best: dict[str, tuple[str, RatingCounts]] = {}
        for key, counts in self.model.value_counts.items():
            if key.kind != "dimension" or counts.total < self.config.min_samples:
                continue
            if counts.positive_ratio < EMPHASIZE_RATIO:
                continue
            current = best.get(key.type)
            rank = (-counts.positive_ratio, -counts.total, key.value)
            if current is None or rank < (
                -current[1].positive_ratio,
                -current[1].total,
                current[0],
            ):
                best[key.type] = (key.value, counts)

        result = []
        for type_name, (value, counts) in best.items():
            dim_type = DimensionType(type_name)
            if dim_type in present:
                continue
            result.append(
                Suggestion(
                    kind="reference",
                    confidence=round(min(0.85, counts.positive_ratio), 4),
                    reason=f"Rated positively {counts.positive} of {counts.total} times",
                    dimension_type=dim_type,
                    value=value,
                )
            )
        return result

    def _weight_suggestions(self, dimensions: Sequence[Dimension]) -> list[Suggestion]:
        result = []
        for dimension in dimensions:
            if not dimension.is_filled:
                continue
            stats = self.model.weight_stats.get(dimension.type.value)
            if stats is None or stats.samples < self.config.min_samples:
                continue
            mean = stats.mean
            assert mean is not None
            if abs(dimension.weight - mean) <= WEIGHT_DRIFT:
                continue
            result.append(
                Suggestion(
                    kind="weight",
                    confidence=0.7,
                    reason=(
                        f"Successful sessions used {dimension.display_label} at about {mean:.0%}"
                    ),
                    dimension_type=dimension.type,
                    dimension_id=dimension.id,
                    weight=round(mean, 2),
                )
            )
        return result

    def _output_mode_suggestion(self, current: OutputMode | None) -> Suggestion | None:
        satisfied = {mode: s.satisfied for mode, s in self.model.mode_stats.items() if s.satisfied}
        total = sum(satisfied.values())
        if total < OUTPUT_MODE_MIN_SESSIONS:
            return None
        best_mode = max(satisfied, key=lambda m: satisfied[m])
        share = satisfied[best_mode] / total
        if share < OUTPUT_MODE_MIN_SHARE or (current is not None and current.value == best_mode):
            return None
        return Suggestion(
            kind="output_mode",
            confidence=0.6,
            reason=f"{share:.0%} of your satisfying sessions used {best_mode} mode",
            output_mode=OutputMode(best_mode),
        )

    def average_time_to_satisfaction(
        self, output_mode: OutputMode | None = None
    ) -> timedelta | None:
        """Mean time to a satisfied session, overall or for one mode."""
        stats = self.model.mode_stats.values()
        if output_mode is not None:
            selected = self.model.mode_stats.get(output_mode.value)
            stats = [selected] if selected is not None else []
        satisfied = sum(s.satisfied for s in stats)
        if not satisfied:
            return None
        return timedelta(seconds=sum(s.total_seconds for s in stats) / satisfied)

    def learning_status(self) -> LearningStatus:
        model = self.model
        rated = model.positive_count + model.negative_count
        return LearningStatus(
            feedback_count=model.feedback_count,
            required_count=self.config.ready_threshold,
            session_count=model.session_count,
            positive_rate=model.positive_count / rated if rated else 0.0,
            style_preferences=len(self.style_preferences),
            combinations=len(self.dimension_combinations),
        )

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_state(self) -> PreferenceSnapshot:
        model = self.model
        return PreferenceSnapshot(
            values=[
                ValueRecord(
                    kind=key.kind,
                    type=key.type,
                    value=key.value,
                    positive=c.positive,
                    negative=c.negative,
                )
                for key, c in model.value_counts.items()
            ],
            avoid=dict(model.avoid_counts),
            scenes={
                k: CountsRecord(positive=c.positive, negative=c.negative)
                for k, c in model.scene_counts.items()
            },
            modes={
                k: ModeRecord(
                    attempts=s.attempts,
                    satisfied=s.satisfied,
                    total_iterations=s.total_iterations,
                    total_seconds=s.total_seconds,
                )
                for k, s in model.mode_stats.items()
            },
            combinations=[
                CombinationRecord(
                    types=list(c.types),
                    successes=c.successes,
                    failures=c.failures,
                    weights={
                        t: WeightRecord(total=w.total, samples=w.samples)
                        for t, w in c.weights.items()
                    },
                )
                for c in model.combinations.values()
            ],
            weights={
                t: WeightRecord(total=w.total, samples=w.samples)
                for t, w in model.weight_stats.items()
            },
            feedback_count=model.feedback_count,
            positive_count=model.positive_count,
            negative_count=model.negative_count,
            session_count=model.session_count,
        )

    def import_state(self, snapshot: PreferenceSnapshot) -> None:
        """Merge exported state into the current counts.

        Counts are added, so importing is itself commutative with local
        learning; derived views are recomputed afterwards.
        """
        model = self.model
        for record in snapshot.values:
            key = ValueKey(record.kind, record.type, normalize(record.value))
            counts = model.value_counts.setdefault(key, RatingCounts())
            counts.positive += record.positive
            counts.negative += record.negative
        for term, count in snapshot.avoid.items():
            self._add_avoid(normalize(term), count)
        for scene, record in snapshot.scenes.items():
            counts = model.scene_counts.setdefault(scene.value, RatingCounts())
            counts.positive += record.positive
            counts.negative += record.negative
        for mode, record in snapshot.modes.items():
            stats = model.mode_stats.setdefault(mode.value, ModeStats())
            stats.attempts += record.attempts
            stats.satisfied += record.satisfied
            stats.total_iterations += record.total_iterations
            stats.total_seconds += record.total_seconds
        for record in snapshot.combinations:
            types = tuple(sorted({t.value for t in record.types}))
            combo = model.combinations.setdefault(
                combination_signature(types), CombinationStats(types=types)
            )
            combo.successes += record.successes
            combo.failures += record.failures
            _merge_weights(combo.weights, record.weights)
        _merge_weights(model.weight_stats, snapshot.weights)
        model.feedback_count += snapshot.feedback_count
        model.positive_count += snapshot.positive_count
        model.negative_count += snapshot.negative_count
        model.session_count += snapshot.session_count

        self.learn_style_preferences()
        self.learn_dimension_combinations()
        log.info(
            "preferences_imported",
            values=len(snapshot.values),
            sessions=snapshot.session_count,
        )

    def reset(self) -> None:
        self.model = PreferenceModel()
        self.recent_feedback.clear()
        self.style_preferences = []
        self.dimension_combinations = []
        log.info("preferences_reset")

    # ------------------------------------------------------------------

    @staticmethod
    def _implicated_elements(
        feedback: PromptFeedback, prompt: GeneratedPrompt
    ) -> list[PromptElement]:
        named = feedback.liked_elements if feedback.rating == "up" else feedback.disliked_elements
        if not named:
            return list(prompt.elements)
        wanted = set(named)
        return [e for e in prompt.elements if e.id in wanted]

    def _add_avoid(self, term: str, count: int = 1) -> None:
        if term:
            self.model.avoid_counts[term] = self.model.avoid_counts.get(term, 0) + count


def _style_category(text: str) -> str | None:
    for keyword, category in STYLE_KEYWORDS.items():
        if keyword in text:
            return category
    return None


def _to_combination(signature: str, stats: CombinationStats) -> DimensionCombination:
    return DimensionCombination(
        signature=signature,
        types=stats.types,
        successes=stats.successes,
        failures=stats.failures,
        success_rate=stats.success_rate,
        average_weights={
            t: w.mean for t, w in stats.weights.items() if w.mean is not None
        },
    )


def _merge_weights(
    target: dict[str, WeightStats], records: dict[DimensionType, WeightRecord]
) -> None:
    for dim_type, record in records.items():
        stats = target.setdefault(dim_type.value, WeightStats())
        stats.total += record.total
        stats.samples += record.samples
