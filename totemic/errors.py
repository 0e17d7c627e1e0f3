"""
totemic.errors — Engagement Error Kinds
========================================

Every failure the engagement engine reports to a caller is one of four
kinds.  Services raise the matching exception; the public engine
operations convert it into an :class:`~totemic.services.engagement_service.EngagementResult`
with ``success=False`` and the error's message kept verbatim, so the
client layer can show it as-is.

=====================  ===========================================  =========
Kind                   Meaning                                      Retried
=====================  ===========================================  =========
``NOT_FOUND``          Post, answer or label is missing             no
``CONTENTION``         Commit kept conflicting after the retry cap  by caller
``QUOTA_EXHAUSTED``    No refreshes left today                      no
``VALIDATION``         Request is inconsistent with current state   no
=====================  ===========================================  =========
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    NOT_FOUND = "not_found"
    CONTENTION = "contention"
    QUOTA_EXHAUSTED = "quota_exhausted"
    VALIDATION = "validation"


class EngagementError(Exception):
    """Base class for errors surfaced to engagement callers."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(EngagementError):
    kind = ErrorKind.NOT_FOUND


class ContentionError(EngagementError):
    """The transaction could not be committed within the retry budget.

    Safe to retry from the top: nothing was written.
    """

    kind = ErrorKind.CONTENTION

    def __init__(
        self,
        message: str = "The totem is busy right now. Please try again.",
        *,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts


class QuotaExhaustedError(EngagementError):
    kind = ErrorKind.QUOTA_EXHAUSTED

    def __init__(
        self,
        message: str = "No refreshes remaining today.",
        *,
        resets_on: str | None = None,
    ) -> None:
        super().__init__(message)
        self.resets_on = resets_on


class ValidationError(EngagementError):
    kind = ErrorKind.VALIDATION
