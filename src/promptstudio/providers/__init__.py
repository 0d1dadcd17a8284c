"""External collaborator protocols: generation, rendering, evaluation, polish, storage."""

from promptstudio.providers.base import (
    PromptGenerator,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    await_with_timeout,
)
from promptstudio.providers.image import (
    ImageEvaluator,
    ImagePolisher,
    ImageProvider,
    ImageProviderError,
    ImageResult,
)
from promptstudio.providers.store import JsonFileStore, StudioStore

__all__ = [
    "ImageEvaluator",
    "ImagePolisher",
    "ImageProvider",
    "ImageProviderError",
    "ImageResult",
    "JsonFileStore",
    "PromptGenerator",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderTimeoutError",
    "StudioStore",
    "await_with_timeout",
]
