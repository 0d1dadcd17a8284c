"""Preference learning and feedback analysis."""

from promptstudio.learning.preferences import (
    LearnedContext,
    PreferenceLearner,
    PreferenceSnapshot,
    Suggestion,
)
from promptstudio.learning.tasks import BestEffortTaskQueue, TaskFailure

__all__ = [
    "BestEffortTaskQueue",
    "LearnedContext",
    "PreferenceLearner",
    "PreferenceSnapshot",
    "Suggestion",
    "TaskFailure",
]
