"""Exception hierarchy for dBase stream decoding."""

from __future__ import annotations


class DbfError(Exception):
    """Base class for every error raised while decoding a dBase stream."""


class OptionsError(DbfError, ValueError):
    """Raised at construction time when decoder options are invalid."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class HeaderError(DbfError):
    """Structural problem in the header or field-descriptor array."""


class RecordError(DbfError):
    """Problem decoding one record."""

    def __init__(self, message: str, record_index: int | None = None):
        super().__init__(message)
        self.record_index = record_index


class CompletionError(DbfError):
    """The stream did not end the way the header said it would."""


class IncompleteHeaderError(CompletionError):
    pass


class TruncatedStreamError(CompletionError):
    pass


class EndOfFileMarkerError(CompletionError):
    pass


class TrailingDataError(CompletionError):
    pass
