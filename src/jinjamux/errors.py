from __future__ import annotations


class GenerationError(Exception):
    """Base class for every error raised while turning fragments into a routes module."""


class GrammarError(GenerationError):
    """A route label is malformed (verb, path segment, status, parameter or call)."""

    def __init__(self, message: str, label: str = "") -> None:
        self.label = label
        super().__init__(f"{message} (in {label!r})" if label else message)


class ResolutionError(GenerationError):
    """A call could not be matched against the receiver, functions or synthesized signatures."""


class DuplicatePatternError(GenerationError):
    def __init__(self, pattern: str, first: str = "", second: str = "") -> None:
        self.pattern = pattern
        self.sources = tuple(s for s in (first, second) if s)
        message = f"duplicate route pattern: {pattern}"
        if self.sources:
            message += " (defined in " + " and ".join(self.sources) + ")"
        super().__init__(message)


class FragmentDefinitionError(GenerationError):
    """A fragment file declares a fragment twice or leaves a define block open."""
