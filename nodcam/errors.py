"""
Exception hierarchy for calls into external collaborators.

Benign outcomes (no speech, ambiguous answer, busy lock) are enum
members, not exceptions.
"""
from typing import Optional


class NodcamError(Exception):
    """Base class for all nodcam errors."""


class TransientIOError(NodcamError):
    """Network or process failure that is worth retrying."""


class ExtractorError(TransientIOError):
    """The media extractor process exited unsuccessfully."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class NoDataError(TransientIOError):
    """A capture completed but produced no bytes."""


class OperationTimeout(NodcamError):
    """An operation exceeded its allotted window."""


class AuthChallengeFailed(NodcamError):
    """Digest handshake could not be parsed or was rejected. Not retried."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RetriesExhausted(NodcamError):
    """Every attempt failed; ``last_error`` is the final failure."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"gave up after {attempts} attempts: {last_error!r}")
        self.last_error = last_error
        self.attempts = attempts
