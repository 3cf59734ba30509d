"""
Error taxonomy for the document generation core.

Recoverable conditions are handled inside the pipeline (spec lookups fall
back to ``None``, failed attempts are retried).  Everything raised to the
caller names the concrete items that were missing so the UI layer can
show actionable diagnostics.
"""

from __future__ import annotations

from typing import Any


class DocGenError(Exception):
    """Base class for every error raised by primus_docgen."""


class SpecNotFoundError(DocGenError):
    """A module / submodule / checklist / template file is missing or invalid."""


class InsufficientQuestionsError(DocGenError):
    """The submodule specification could not be resolved into requirement questions."""


class QuestionExtractionError(DocGenError):
    """The model returned a question list that is not a valid JSON array."""


class GenerationFailedError(DocGenError):
    """All generation attempts were used without producing an acceptable document."""

    def __init__(self, message: str, attempts: int, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.details = details or {}


class ForbiddenPatternError(GenerationFailedError):
    """Meta-commentary survived every attempt."""


class MissingCoreAnswerOrHeaderError(GenerationFailedError):
    """Core answers or ``### {code} -`` headers were still missing on the last attempt."""


class IncompleteSectionCountError(GenerationFailedError):
    """The last attempt had fewer than the mandatory sections, or too few words."""
