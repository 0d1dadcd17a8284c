"""PromptStudio: adaptive prompt refinement core."""

__version__ = "0.1.0"
