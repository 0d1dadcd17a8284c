"""Autoplay loop: generate, evaluate, polish near misses, refine."""

from promptstudio.autoplay.evaluation import build_criteria, classify, extract_refinement_feedback
from promptstudio.autoplay.orchestrator import AutoplayOrchestrator
from promptstudio.autoplay.state import (
    AutoplayEvent,
    AutoplayPhase,
    AutoplayState,
    CompletionReason,
    EventLog,
    IterationSummary,
    SavedCandidate,
)

__all__ = [
    "AutoplayEvent",
    "AutoplayOrchestrator",
    "AutoplayPhase",
    "AutoplayState",
    "CompletionReason",
    "EventLog",
    "IterationSummary",
    "SavedCandidate",
    "build_criteria",
    "classify",
    "extract_refinement_feedback",
]
