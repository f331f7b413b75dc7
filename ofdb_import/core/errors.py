"""Error taxonomy for the import pipeline.

Row scoped errors (decode, enrich, submission) are recorded in the report and
never stop a batch. ``FatalError`` subclasses are run scoped: they stop new row
intake and the partial report is flushed.
"""

from typing import Optional


class DecodeError(ValueError):
    """A single input row could not be turned into a record."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class MissingField(DecodeError):
    pass


class InvalidCoordinate(DecodeError):
    pass


class InvalidEmail(DecodeError):
    pass


class InvalidDate(DecodeError):
    pass


class LicenseNotPatchable(DecodeError):
    pass


class MissingVersion(DecodeError):
    pass


class MalformedRow(DecodeError):
    pass


class InvalidReviewDecision(DecodeError):
    pass


class SourceError(RuntimeError):
    """The input as a whole is unreadable; no row can be decoded."""


class EnrichError(RuntimeError):
    """Geocoding failed for a row."""


class NoResult(EnrichError):
    pass


class ProviderError(EnrichError):
    pass


class AmbiguousAddress(EnrichError):
    pass


class SubmissionError(RuntimeError):
    """The catalog rejected or could not process a single row."""


class FatalError(RuntimeError):
    """A run scoped failure that aborts the remaining batch."""


class ReportDestinationError(FatalError):
    pass
