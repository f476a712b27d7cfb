"""Per-type field value decoders."""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Callable

from dbfstream.core.errors import RecordError
from dbfstream.core.header import FieldDescriptor, FieldType
from dbfstream.core.options import DecoderOptions, Quirks

# Returned by the logical decoder for '?' / ' '; the record omits the key
ABSENT = object()

TRUTHY_VALUES = frozenset("YyTt")
FALSEY_VALUES = frozenset("NnFf")
UNKNOWN_LOGICAL_VALUES = frozenset("? ")

MEMO_VALUE_RE = re.compile(r"[0-9]{10}| {10}")
MEMO_VALUE_PADDED_RE = re.compile(r" {0,10}[0-9]{0,10}")

# Leading decimal prefix, the way a lenient number parser reads it
_NUMBER_PREFIX_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_NUMBER_SPECIAL_RE = re.compile(r"[+-]?Infinity")


def decode_character(value: str, quirks: Quirks) -> str:
    return value.rstrip("\x00 ")


def decode_date(value: str, quirks: Quirks) -> date | None:
    """YYYYMMDD text to a date. The month digits are used as written."""
    if len(value) != 8 or not value.isascii() or not value.isdigit():
        return None
    try:
        return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))
    except ValueError:
        return None


def decode_logical(value: str, quirks: Quirks) -> Any:
    if value in TRUTHY_VALUES:
        return True
    if value in FALSEY_VALUES:
        return False
    if value in UNKNOWN_LOGICAL_VALUES or quirks.logical_allow_unknown_values:
        return ABSENT
    raise RecordError(f"Invalid L-type field value: {value}")


def decode_number(value: str, quirks: Quirks) -> float:
    text = value.lstrip()
    m = _NUMBER_SPECIAL_RE.match(text)
    if m:
        return float(m.group(0).replace("Infinity", "inf"))
    m = _NUMBER_PREFIX_RE.match(text)
    if not m:
        return float("nan")
    return float(m.group(0))


def decode_memo(value: str, quirks: Quirks) -> str:
    regex = MEMO_VALUE_PADDED_RE if quirks.memo_allow_left_space_padding else MEMO_VALUE_RE
    if not regex.fullmatch(value):
        raise RecordError(f"Invalid M-type field value: '{value}'")
    return value


DECODERS: dict[FieldType, Callable[[str, Quirks], Any]] = {
    FieldType.CHARACTER: decode_character,
    FieldType.DATE: decode_date,
    FieldType.FLOAT: decode_number,
    FieldType.LOGICAL: decode_logical,
    FieldType.MEMO: decode_memo,
    FieldType.NUMERIC: decode_number,
}


def decode_field_value(raw: bytes, field: FieldDescriptor, options: DecoderOptions) -> Any:
    """Decode one field's bytes.

    A custom parser registered for the field name receives the raw bytes and
    the descriptor and bypasses text decoding entirely.
    """
    custom = options.custom_field_parsers.get(field.name)
    if custom is not None:
        try:
            return custom(raw, field)
        except RecordError:
            raise
        except Exception as e:
            raise RecordError(f"Custom parser for field '{field.name}' failed: {e}") from e
    text = raw.decode(options.encoding, errors="replace")
    return DECODERS[field.type](text, options.quirks)
