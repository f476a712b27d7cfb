"""Deletion and offset/size filtering over decoded records."""

from __future__ import annotations

from dbfstream.core.options import DecoderOptions
from dbfstream.core.records import Record


class RecordFilter:
    """Decides which decoded records are emitted.

    Eligible records (not deleted, or any record when deleted ones are
    included) are numbered from zero in input order; a record is emitted
    when its number falls in [offset, offset + size).
    """

    def __init__(self, include_deleted: bool = False, offset: int = 0, size: int | None = None) -> None:
        self.include_deleted = include_deleted
        self.offset = offset
        self.size = size
        self.eligible_count = 0

    @classmethod
    def from_options(cls, options: DecoderOptions) -> RecordFilter:
        return cls(include_deleted=options.deleted, offset=options.offset, size=options.size)

    def is_eligible(self, record: Record) -> bool:
        return not record.deleted or self.include_deleted

    def is_within_page(self, index: int) -> bool:
        if index < self.offset:
            return False
        return self.size is None or index < self.offset + self.size

    def accept(self, record: Record) -> bool:
        """Count the record if eligible and report whether it should be emitted."""
        if not self.is_eligible(record):
            return False
        emit = self.is_within_page(self.eligible_count)
        self.eligible_count += 1
        return emit
