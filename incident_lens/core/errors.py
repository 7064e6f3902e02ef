"""
Error taxonomy for evidence ingestion and the measurement tools.

Only SourceUnreadable is meant to reach the user: it blocks the case and the
caller must offer a restart. Every other kind is absorbed at the component
boundary that raises it (logged, then the operation degrades or is discarded).
"""


class IncidentLensError(Exception):
    """Base class for all errors raised by incident_lens."""


class SourceUnreadable(IncidentLensError):
    """Video metadata could not be read or a frame could not be decoded."""

    def __init__(self, resource: str, reason: str):
        super().__init__(f"Unreadable video source {resource}: {reason}")
        self.resource = resource
        self.reason = reason


class AudioUnavailable(IncidentLensError):
    """Audio could not be fetched or decoded. The case proceeds without audio."""


class InvalidCalibrationInput(IncidentLensError):
    """Declared calibration distance was missing, non-numeric or not positive."""


class DegenerateGesture(IncidentLensError):
    """A line or rectangle was below the minimum size and counts as a stray click."""


class StaleAsyncResult(IncidentLensError):
    """An extraction finished after the session had moved on to a newer case."""

    def __init__(self, generation: int, current: int):
        super().__init__(
            f"Result from generation {generation} is stale (current={current})"
        )
        self.generation = generation
        self.current = current


class AnalysisParseError(IncidentLensError):
    """Reasoning engine output did not contain a parsable JSON report."""
