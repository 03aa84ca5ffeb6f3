"""Exception hierarchy.

Everything derives from RuntimeError so callers that only care about
"the run failed" can keep catching RuntimeError.
"""

from __future__ import annotations


class StyleError(RuntimeError):
    """Base class for all application errors."""


# ── Input validation (never reaches the model) ───────────────────────────────

class ValidationError(StyleError):
    pass


class TooManyImagesError(ValidationError):
    pass


class MissingProductImageError(ValidationError):
    pass


class EmptyPromptError(ValidationError):
    pass


class SessionLimitError(ValidationError):
    pass


class StateError(ValidationError):
    """Operation not allowed in the current application state."""


class GenerationBusyError(ValidationError):
    pass


class IngestError(StyleError):
    pass


# ── Service failures ─────────────────────────────────────────────────────────

class AnalysisError(StyleError):
    pass


class GenerationError(StyleError):
    pass


class NoImageReturnedError(GenerationError):
    pass


class CredentialError(GenerationError):
    """Paid key missing, invalid or expired."""
