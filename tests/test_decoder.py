from __future__ import annotations

from datetime import date

import pytest

from dbf_fixtures import FieldSpec, RecordSpec, build_dbf, split_every
from dbfstream.core.decoder import (
    DbfDecoder,
    DecodeFailed,
    DecoderState,
    EndOfStream,
    HeaderParsed,
    NeedMoreInput,
    RecordDecoded,
    iter_events,
    iter_records,
)
from dbfstream.core.errors import (
    EndOfFileMarkerError,
    HeaderError,
    IncompleteHeaderError,
    OptionsError,
    RecordError,
    TrailingDataError,
    TruncatedStreamError,
)
from dbfstream.core.options import DecoderOptions

FIELD1 = FieldSpec("field1", "C", 25)
FIELD2 = FieldSpec("field2", "C", 30)


def three_records(**kwargs) -> bytes:
    return build_dbf(
        [FIELD1, FIELD2],
        [
            RecordSpec(["record 1 field 1 value", "record 1 field 2 value"]),
            RecordSpec(["record 2 field 1 value", "record 2 field 2 value"], flag="*"),
            RecordSpec(["record 3 field 1 value", "record 3 field 2 value"]),
        ],
        **kwargs,
    )


def numbered(count: int, deleted: set[int] = frozenset()) -> bytes:
    return build_dbf(
        [FieldSpec("n", "N", 3)],
        [RecordSpec([f"{i:3d}"], flag="*" if i in deleted else " ") for i in range(count)],
    )


def run(chunks, options: DecoderOptions | None = None) -> tuple[list, DbfDecoder]:
    """Feed chunks, collecting every event including the final close()."""
    decoder = DbfDecoder(options)
    events = []
    for chunk in chunks:
        events.extend(e for e in decoder.feed(chunk) if not isinstance(e, NeedMoreInput))
    events.append(decoder.close())
    return events, decoder


def payload(events) -> list:
    out = []
    for e in events:
        if isinstance(e, HeaderParsed):
            out.append(e.header)
        elif isinstance(e, RecordDecoded):
            out.append(e.record.to_dict())
    return out


def test_non_deleted_records_are_emitted() -> None:
    events, decoder = run([three_records()])
    assert isinstance(events[0], HeaderParsed)
    assert [e.record.to_dict() for e in events if isinstance(e, RecordDecoded)] == [
        {"@meta": {"deleted": False}, "field1": "record 1 field 1 value", "field2": "record 1 field 2 value"},
        {"@meta": {"deleted": False}, "field1": "record 3 field 1 value", "field2": "record 3 field 2 value"},
    ]
    assert isinstance(events[-2], EndOfStream)
    assert isinstance(events[-1], EndOfStream)
    assert decoder.state is DecoderState.DONE
    assert decoder.records_consumed == 3
    assert decoder.eligible_count == 2
    assert decoder.buffered == 0


def test_deleted_records_included() -> None:
    events, decoder = run([three_records()], DecoderOptions(deleted=True))
    records = [e.record for e in events if isinstance(e, RecordDecoded)]
    assert [r.deleted for r in records] == [False, True, False]
    assert records[1]["field1"] == "record 2 field 1 value"
    assert decoder.records_consumed == 3
    assert decoder.eligible_count == 3


@pytest.mark.parametrize("size", [1, 2, 3, 7, 32, 64])
def test_chunking_does_not_change_output(size: int) -> None:
    data = build_dbf(
        [FIELD1, FieldSpec("born", "D"), FieldSpec("ok", "L"), FieldSpec("memo", "M")],
        [
            RecordSpec(["a", "19520719", "T", "0000000001"]),
            RecordSpec(["b", "20000101", "?", " " * 10], flag="*"),
            RecordSpec(["c", "19991231", "n", "0000000002"]),
        ],
    )
    whole, _ = run([data], DecoderOptions(deleted=True))
    pieces, _ = run(split_every(data, size), DecoderOptions(deleted=True))
    assert payload(pieces) == payload(whole)
    assert isinstance(pieces[-1], EndOfStream)


def test_header_one_byte_at_a_time() -> None:
    data = build_dbf([FieldSpec("field", "C", 1, precision=104, work_area_id=119, indexed=1)])
    decoder = DbfDecoder()
    headers = []
    for i, chunk in enumerate(split_every(data, 1)):
        events = list(decoder.feed(chunk))
        if i < 64:
            assert events == [NeedMoreInput()]
        headers.extend(e.header for e in events if isinstance(e, HeaderParsed))
    assert len(headers) == 1
    assert headers[0].number_of_header_bytes == 65
    assert headers[0].number_of_bytes_in_record == 2
    assert decoder.state is DecoderState.DONE


def test_records_are_decoded_on_demand() -> None:
    decoder = DbfDecoder()
    events = decoder.feed(numbered(3))
    assert decoder.records_consumed == 0
    assert isinstance(next(events), HeaderParsed)
    first = next(events)
    assert first.record["n"] == 0
    assert decoder.records_consumed == 1
    assert decoder.buffered == 2 * 4 + 1
    rest = list(events)
    assert [e.record["n"] for e in rest[:-1]] == [1.0, 2.0]
    assert isinstance(rest[-1], EndOfStream)


@pytest.mark.parametrize(
    "offset, size, expected",
    [
        (None, None, [0, 1, 3, 4, 5]),
        (2, None, [3, 4, 5]),
        (1, 2, [1, 3]),
        (0, 0, []),
        (5, None, []),
        (3, 100, [4, 5]),
    ],
)
def test_pagination_over_eligible_records(offset, size, expected) -> None:
    kwargs = {}
    if offset is not None:
        kwargs["offset"] = offset
    if size is not None:
        kwargs["size"] = size
    records = list(iter_records([numbered(6, deleted={2})], DecoderOptions(**kwargs)))
    assert [int(r["n"]) for r in records] == expected


def test_pagination_with_deleted_included() -> None:
    records = list(iter_records([numbered(6, deleted={2})], DecoderOptions(deleted=True, offset=1, size=3)))
    assert [int(r["n"]) for r in records] == [1, 2, 3]
    assert [r.deleted for r in records] == [False, True, False]


def test_records_without_fields() -> None:
    data = build_dbf(records=[RecordSpec(), RecordSpec(), RecordSpec()])
    records = list(iter_records([data]))
    assert [r.to_dict() for r in records] == [{"@meta": {"deleted": False}}] * 3


def test_fields_without_records() -> None:
    events, _ = run([build_dbf([FIELD1, FIELD2])])
    assert [type(e) for e in events] == [HeaderParsed, EndOfStream, EndOfStream]


def test_memo_and_date_values() -> None:
    data = build_dbf(
        [FieldSpec("born", "D"), FieldSpec("memo", "M")],
        [RecordSpec(["19520719", " " * 10])],
    )
    (record,) = iter_records([data])
    assert record["born"] == date(1952, 7, 19)
    assert record["memo"] == " " * 10


def test_on_header_callback() -> None:
    seen = []
    list(iter_records([three_records()], on_header=seen.append))
    assert [h.field_names for h in seen] == [["field1", "field2"]]


# --- failures ---------------------------------------------------------------


def test_no_input_is_an_error() -> None:
    events, _ = run([])
    assert len(events) == 1
    assert isinstance(events[0].error, IncompleteHeaderError)
    assert str(events[0].error) == "Unable to parse first 32 bytes from header, found 0 byte(s)"


def test_short_preamble_is_an_error() -> None:
    events, _ = run([bytes(31)])
    assert str(events[-1].error) == "Unable to parse first 32 bytes from header, found 31 byte(s)"


def test_partial_field_descriptors_is_an_error() -> None:
    data = build_dbf([FIELD1])
    events, _ = run([data[:40]])
    assert isinstance(events[-1].error, IncompleteHeaderError)
    assert "expected 65 header bytes, found 40 byte(s)" in str(events[-1].error)


def test_header_error_is_terminal() -> None:
    decoder = DbfDecoder()
    events = list(decoder.feed(build_dbf(version=0x04)))
    assert len(events) == 1
    assert isinstance(events[0], DecodeFailed)
    assert isinstance(events[0].error, HeaderError)
    assert decoder.header is None
    assert list(decoder.feed(b"more")) == events
    assert decoder.close() == events[0]


def test_invalid_deleted_flag_stops_stream() -> None:
    data = build_dbf([FIELD1], [RecordSpec(["record 1 field 1 value"], flag="#")])
    events, decoder = run([data])
    assert isinstance(events[0], HeaderParsed)
    assert isinstance(events[1], DecodeFailed)
    assert str(events[1].error) == "Invalid deleted record value: #"
    assert events[1].error.record_index == 0
    assert not any(isinstance(e, RecordDecoded) for e in events)
    assert decoder.state is DecoderState.FAILED


def test_invalid_memo_value_reports_offending_value() -> None:
    data = build_dbf([FieldSpec("memo", "M")], [RecordSpec(["0000000001"]), RecordSpec(["     4    "])])
    with pytest.raises(RecordError, match="Invalid M-type field value: '     4    '") as excinfo:
        list(iter_records([data]))
    assert excinfo.value.record_index == 1


def test_invalid_logical_value() -> None:
    data = build_dbf([FieldSpec("ok", "L")], [RecordSpec(["X"])])
    with pytest.raises(RecordError, match="Invalid L-type field value: X"):
        list(iter_records([data]))


@pytest.mark.parametrize("marker", [b"\x1b", b"Z"])
def test_wrong_end_of_file_marker(marker: bytes) -> None:
    data = build_dbf([FIELD1], [RecordSpec(["record 1 field 1 value"])], end_of_file=marker)
    events, _ = run([data])
    assert [type(e) for e in events] == [HeaderParsed, RecordDecoded, DecodeFailed, DecodeFailed]
    assert isinstance(events[-1].error, EndOfFileMarkerError)
    assert str(events[-1].error) == "Last byte of file is not end-of-file marker"


def test_missing_end_of_file_marker() -> None:
    data = build_dbf([FIELD1], [RecordSpec(["x"])], end_of_file=b"")
    with pytest.raises(EndOfFileMarkerError, match="Missing end-of-file marker"):
        list(iter_events([data]))


def test_truncated_records() -> None:
    data = numbered(3)
    with pytest.raises(TruncatedStreamError, match="Stream ended after 1 of 3 declared records"):
        list(iter_events([data[: 33 + 32 + 4 + 2]]))


def test_trailing_bytes_after_marker() -> None:
    data = numbered(1)
    with pytest.raises(TrailingDataError, match="Unexpected 2 byte"):
        list(iter_events([data + b"ab"]))
    with pytest.raises(TrailingDataError, match="Unexpected 2 byte"):
        list(iter_events([data, b"ab"]))


def test_iter_events_yields_header_then_records() -> None:
    events = list(iter_events(split_every(three_records(), 5)))
    assert isinstance(events[0], HeaderParsed)
    assert all(isinstance(e, RecordDecoded) for e in events[1:])
    assert len(events) == 3


def test_independent_decoders() -> None:
    a, b = DbfDecoder(), DbfDecoder(DecoderOptions(deleted=True))
    data = three_records()
    ra = [e for e in a.feed(data) if isinstance(e, RecordDecoded)]
    rb = [e for e in b.feed(data) if isinstance(e, RecordDecoded)]
    assert (len(ra), len(rb)) == (2, 3)


def test_non_text_encoding_rejected_before_any_byte() -> None:
    with pytest.raises(OptionsError, match="encoding not recognized: 'hex'"):
        DbfDecoder(DecoderOptions(encoding="hex"))
