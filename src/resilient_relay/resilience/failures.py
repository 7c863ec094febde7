"""
Failure records and aggregate error messages.

Failures are collected per run in attempt order and condensed into one
user-facing message. The message is chosen from the most informative
failure, not the last one.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import IntEnum

from resilient_relay.errors import ErrorKind, is_input_class


@dataclass(frozen=True)
class FailureRecord:
    """One candidate's failure within a run.

    Attributes:
        provider_id: Provider, mirror or strategy that failed
        kind: Classified failure kind
        message: Failure message
        attempts: Calls made against the candidate (0 if quarantined)
        timestamp: Wall-clock time the failure was recorded
    """

    provider_id: str
    kind: ErrorKind
    message: str
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)

    def describe(self) -> str:
        """Short human-readable reason."""
        if self.kind == ErrorKind.QUARANTINED:
            return f"{self.provider_id} (skipped after recent failures)"
        plural = "attempt" if self.attempts == 1 else "attempts"
        return f"{self.provider_id} ({self.kind.value} after {self.attempts} {plural})"


class _Severity(IntEnum):
    QUARANTINED = 0
    OTHER = 1
    CREDENTIALS = 2
    CONNECTIVITY = 3
    CAPACITY = 4
    INPUT = 5


def _severity(kind: ErrorKind) -> _Severity:
    if is_input_class(kind):
        return _Severity.INPUT
    if kind in (ErrorKind.RATE_LIMITED, ErrorKind.OVERLOADED, ErrorKind.SERVER_ERROR, ErrorKind.BLOCKED):
        return _Severity.CAPACITY
    if kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK):
        return _Severity.CONNECTIVITY
    if kind in (ErrorKind.AUTHENTICATION, ErrorKind.PERMISSION_DENIED):
        return _Severity.CREDENTIALS
    if kind == ErrorKind.QUARANTINED:
        return _Severity.QUARANTINED
    return _Severity.OTHER


@dataclass(frozen=True)
class FailureSummary:
    """Condensed view of a failed run.

    Attributes:
        kind: Kind of the most informative failure
        headline: User-facing explanation
        hint: What the caller can do about it
        tried: Per-candidate reasons in attempt order
    """

    kind: ErrorKind
    headline: str
    hint: str
    tried: list[str]

    @property
    def message(self) -> str:
        """Headline followed by the per-candidate reasons."""
        if not self.tried:
            return self.headline
        return f"{self.headline} Tried: {', '.join(self.tried)}."


def most_informative(failures: list[FailureRecord]) -> FailureRecord | None:
    """Pick the failure that best explains a run; earliest wins ties."""
    best: FailureRecord | None = None
    for record in failures:
        if best is None or _severity(record.kind) > _severity(best.kind):
            best = record
    return best


def summarize_failures(failures: list[FailureRecord], subject: str = "provider") -> FailureSummary:
    """Build the aggregate message for a run where every candidate failed.

    Args:
        failures: Failure records in attempt order
        subject: What the candidates provide (e.g., 'transcription')

    Returns:
        FailureSummary
    """
    tried = [f.describe() for f in failures]
    best = most_informative(failures)
    if best is None:
        return FailureSummary(
            kind=ErrorKind.OTHER,
            headline=f"No {subject} services are available or configured.",
            hint="Configure credentials for at least one provider.",
            tried=tried,
        )

    severity = _severity(best.kind)
    if severity == _Severity.INPUT:
        headline = f"The {subject} request cannot be completed: {best.message}"
        hint = "Retrying will not help; change the input and try again."
    elif severity == _Severity.CAPACITY:
        headline = f"All {subject} services are currently overloaded or rate limited."
        hint = "Please try again in a few minutes."
    elif severity == _Severity.CONNECTIVITY:
        headline = f"Network connection issue while contacting {subject} services."
        hint = "Check your connection and try again."
    elif severity == _Severity.CREDENTIALS:
        headline = f"{subject.capitalize()} services rejected the configured credentials."
        hint = "Please contact support."
    elif severity == _Severity.QUARANTINED:
        headline = f"All {subject} services are temporarily disabled after repeated failures."
        hint = "Please try again in a few minutes."
    else:
        headline = f"{subject.capitalize()} failed with all available providers."
        hint = "Please try again later or contact support."

    return FailureSummary(kind=best.kind, headline=headline, hint=hint, tried=tried)
