from __future__ import annotations


class AssistMemError(Exception):
    """Base class for assistmem errors."""


class DuplicateNameError(AssistMemError):
    def __init__(self, name: str) -> None:
        super().__init__(f"session name already exists: {name!r}")
        self.name = name


class ProtectedResourceError(AssistMemError):
    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} cannot be deleted")
        self.resource = resource


class ConfigurationError(AssistMemError):
    """A collaborator (embedding provider, summarizer) is not configured."""


class IntegrityMismatch(AssistMemError):
    """A stored vector is empty, truncated, or has the wrong dimension."""


class TransientProviderError(AssistMemError):
    """An embedding or summarization call failed."""
