"""Incremental, push-driven dBase stream decoder.

Bytes are fed in arbitrarily sized chunks. Each call to `DbfDecoder.feed`
appends the chunk and returns a lazy iterator of events; records are only
decoded as the caller pulls them, so a slow consumer holds back input.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from dbfstream.core.buffer import PREAMBLE_SIZE, ByteAccumulator
from dbfstream.core.errors import (
    DbfError,
    EndOfFileMarkerError,
    HeaderError,
    IncompleteHeaderError,
    RecordError,
    TrailingDataError,
    TruncatedStreamError,
)
from dbfstream.core.header import Header, parse_header
from dbfstream.core.options import DecoderOptions
from dbfstream.core.paging import RecordFilter
from dbfstream.core.records import Record, decode_record

logger = logging.getLogger(__name__)

END_OF_FILE_MARKER = 0x1A


@dataclass(frozen=True)
class NeedMoreInput:
    """The buffered bytes do not complete the header or the next record."""


@dataclass(frozen=True)
class HeaderParsed:
    header: Header


@dataclass(frozen=True)
class RecordDecoded:
    record: Record


@dataclass(frozen=True)
class EndOfStream:
    """All declared records were consumed and the end-of-file marker verified."""


@dataclass(frozen=True)
class DecodeFailed:
    error: DbfError


DecoderEvent = NeedMoreInput | HeaderParsed | RecordDecoded | EndOfStream | DecodeFailed


class DecoderState(Enum):
    AWAITING_HEADER = "awaiting_header"
    READING_RECORDS = "reading_records"
    DONE = "done"
    FAILED = "failed"


class DbfDecoder:
    """State machine turning a byte stream into a header and records.

    Every error is terminal: once a `DecodeFailed` has been produced, later
    calls keep reporting it and consume nothing.
    """

    def __init__(self, options: DecoderOptions | None = None) -> None:
        self.options = options if options is not None else DecoderOptions()
        self.header: Header | None = None
        self.records_consumed = 0
        self.state = DecoderState.AWAITING_HEADER
        self._buffer = ByteAccumulator()
        self._filter = RecordFilter.from_options(self.options)
        self._failure: DecodeFailed | None = None

    @property
    def eligible_count(self) -> int:
        return self._filter.eligible_count

    @property
    def buffered(self) -> int:
        """Number of bytes held but not yet consumed."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[DecoderEvent]:
        """Append `chunk` and return an iterator over the resulting events."""
        if self.state is DecoderState.FAILED:
            return iter((self._failure,))
        if self.state is DecoderState.DONE:
            if not chunk:
                return iter(())
            return iter((self._fail(TrailingDataError(
                f"Unexpected {len(chunk)} byte(s) after end-of-file marker"
            )),))
        self._buffer.append(chunk)
        return self._drain()

    def close(self) -> DecoderEvent:
        """Signal that no more input will arrive.

        Iterators returned by earlier `feed` calls must be exhausted first.
        """
        if self.state is DecoderState.FAILED:
            return self._failure
        if self.state is DecoderState.DONE:
            return EndOfStream()

        held = len(self._buffer)
        if self.header is None:
            declared = self._buffer.declared_header_length()
            if declared is None:
                message = f"Unable to parse first 32 bytes from header, found {held} byte(s)"
            else:
                message = f"Unable to parse header, expected {declared} header bytes, found {held} byte(s)"
            return self._fail(IncompleteHeaderError(message))

        expected = self.header.number_of_records
        if self.records_consumed < expected:
            return self._fail(TruncatedStreamError(
                f"Stream ended after {self.records_consumed} of {expected} declared records"
            ))
        if held == 0:
            return self._fail(EndOfFileMarkerError("Missing end-of-file marker"))
        if self._buffer.peek(1)[0] != END_OF_FILE_MARKER:
            return self._fail(EndOfFileMarkerError("Last byte of file is not end-of-file marker"))
        return self._fail(TrailingDataError(
            f"Unexpected {held - 1} byte(s) after end-of-file marker"
        ))

    def _fail(self, error: DbfError) -> DecodeFailed:
        logger.debug("Decoding failed: %s", error)
        self.state = DecoderState.FAILED
        self._failure = DecodeFailed(error)
        return self._failure

    def _drain(self) -> Iterator[DecoderEvent]:
        # A stale iterator from an earlier feed() must not act on a finished decoder
        if self.state in (DecoderState.FAILED, DecoderState.DONE):
            return

        if self.header is None:
            if not self._buffer.has_header():
                yield NeedMoreInput()
                return
            declared = self._buffer.declared_header_length()
            try:
                header = parse_header(self._buffer.peek(max(declared, PREAMBLE_SIZE)), self.options.quirks)
            except HeaderError as e:
                yield self._fail(e)
                return
            self._buffer.take(header.number_of_header_bytes)
            self.header = header
            self.state = DecoderState.READING_RECORDS
            logger.debug(
                "Parsed header: version=0x%02X fields=%d records=%d record_bytes=%d",
                header.version,
                len(header.fields),
                header.number_of_records,
                header.number_of_bytes_in_record,
            )
            yield HeaderParsed(header)

        header = self.header
        while (
            self.state is DecoderState.READING_RECORDS
            and self.records_consumed < header.number_of_records
            and self._buffer.has_record(header)
        ):
            raw = self._buffer.take(header.number_of_bytes_in_record)
            try:
                record = decode_record(raw, header, self.options)
            except RecordError as e:
                e.record_index = self.records_consumed
                yield self._fail(e)
                return
            self.records_consumed += 1
            if self._filter.accept(record):
                yield RecordDecoded(record)

        if self.state is not DecoderState.READING_RECORDS:
            return

        if self.records_consumed == header.number_of_records and len(self._buffer) == 1:
            marker = self._buffer.take(1)[0]
            if marker != END_OF_FILE_MARKER:
                yield self._fail(EndOfFileMarkerError("Last byte of file is not end-of-file marker"))
                return
            self.state = DecoderState.DONE
            logger.debug(
                "End of stream: %d records consumed, %d eligible",
                self.records_consumed,
                self.eligible_count,
            )
            yield EndOfStream()
            return

        yield NeedMoreInput()


def iter_events(
    chunks: Iterable[bytes], options: DecoderOptions | None = None
) -> Iterator[HeaderParsed | RecordDecoded]:
    """Decode an iterable of byte chunks, yielding the header and records.

    Raises the terminal DbfError if decoding fails. Chunks are pulled from
    `chunks` only as the caller consumes events.
    """
    decoder = DbfDecoder(options)
    for chunk in chunks:
        for event in decoder.feed(chunk):
            if isinstance(event, DecodeFailed):
                raise event.error
            if isinstance(event, (HeaderParsed, RecordDecoded)):
                yield event
    final = decoder.close()
    if isinstance(final, DecodeFailed):
        raise final.error


def iter_records(
    chunks: Iterable[bytes],
    options: DecoderOptions | None = None,
    on_header: Callable[[Header], None] | None = None,
) -> Iterator[Record]:
    for event in iter_events(chunks, options):
        if isinstance(event, HeaderParsed):
            if on_header is not None:
                on_header(event.header)
        else:
            yield event.record
