"""Header and field-descriptor parsing with structural validation."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any

from dbfstream.core.buffer import PREAMBLE_SIZE
from dbfstream.core.errors import HeaderError
from dbfstream.core.options import Quirks

logger = logging.getLogger(__name__)

DESCRIPTOR_SIZE = 32
FIELD_DESCRIPTOR_TERMINATOR = 0x0D

# see: https://github.com/infused/dbf/blob/master/lib/dbf/table.rb
SUPPORTED_VERSIONS = {
    0x03: "FoxBASE+/dBASE III PLUS, no memo",
    0x83: "FoxBASE+/dBASE III PLUS, with memo",
    0xF5: "FoxPro 2.x (or earlier) with memo",
    0x8B: "dBASE IV with memo",
    0x8E: "dBASE IV with SQL table",
}

# version, yy, mm, dd, record count, header bytes, record bytes
_PREAMBLE = struct.Struct("<BBBBiHh")


class FieldType(Enum):
    """Single-letter field type tags."""

    CHARACTER = "C"
    DATE = "D"
    FLOAT = "F"
    LOGICAL = "L"
    MEMO = "M"
    NUMERIC = "N"


# Types whose byte length is fixed by the format
FIXED_LENGTHS = {
    FieldType.DATE: 8,
    FieldType.LOGICAL: 1,
    FieldType.MEMO: 10,
}


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: FieldType
    length: int
    precision: int = 0
    work_area_id: int = 0
    is_indexed_in_mdx_file: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "length": self.length,
            "precision": self.precision,
            "work_area_id": self.work_area_id,
            "is_indexed_in_mdx_file": self.is_indexed_in_mdx_file,
        }


@dataclass(frozen=True)
class Header:
    version: int
    date_of_last_update: date
    number_of_records: int
    number_of_header_bytes: int
    number_of_bytes_in_record: int
    has_production_mdx_file: bool
    language_driver_id: int
    fields: tuple[FieldDescriptor, ...] = ()

    @property
    def version_description(self) -> str:
        return SUPPORTED_VERSIONS[self.version]

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "date_of_last_update": self.date_of_last_update.isoformat(),
            "number_of_records": self.number_of_records,
            "number_of_header_bytes": self.number_of_header_bytes,
            "number_of_bytes_in_record": self.number_of_bytes_in_record,
            "has_production_mdx_file": self.has_production_mdx_file,
            "language_driver_id": self.language_driver_id,
            "fields": [f.to_dict() for f in self.fields],
        }


def last_update_date(yy: int, mm: int, dd: int) -> date:
    """Decode the 3-byte last-update date.

    The month byte is 1-based. Out-of-range months and days roll over into
    the neighbouring month or year instead of failing.
    """
    year = 1900 + yy
    month_index = mm - 1
    year += month_index // 12
    month_index %= 12
    return date(year, month_index + 1, 1) + timedelta(days=dd - 1)


def parse_header(data: bytes, quirks: Quirks | None = None) -> Header:
    """Parse and validate a complete header region.

    `data` must hold at least the declared number of header bytes. The
    function is pure: the same input always produces an equal Header or the
    same HeaderError.
    """
    quirks = quirks or Quirks()
    if len(data) < PREAMBLE_SIZE:
        raise HeaderError(
            f"Unable to parse first 32 bytes from header, found {len(data)} byte(s)"
        )

    version, yy, mm, dd, record_count, header_bytes, record_bytes = _PREAMBLE.unpack_from(data, 0)

    if version not in SUPPORTED_VERSIONS:
        raise HeaderError(f"Unsupported version: {version}")

    # 32 bytes of preamble, 32 per field descriptor and 1 for the terminator
    if header_bytes % DESCRIPTOR_SIZE != 1 or header_bytes < PREAMBLE_SIZE + 1:
        raise HeaderError(f"Invalid number of header bytes: {header_bytes}")
    if len(data) < header_bytes:
        raise HeaderError(
            f"Unable to parse header, expected {header_bytes} bytes, found {len(data)} byte(s)"
        )

    if data[header_bytes - 1] != FIELD_DESCRIPTOR_TERMINATOR:
        raise HeaderError(f"Invalid field descriptor array terminator at byte {header_bytes}")

    encryption = data[15]
    if encryption == 1:
        raise HeaderError("Encryption flag is set, cannot process")
    if encryption > 1:
        if not quirks.ignore_unknown_encryption_byte:
            raise HeaderError(f"Invalid encryption flag value: {encryption}")
        logger.warning("Ignoring unknown encryption flag value %d", encryption)

    has_mdx = data[28]
    if has_mdx > 1:
        raise HeaderError(f"Invalid production MDX file existence value: {has_mdx}")

    if record_count < 0:
        raise HeaderError(f"Invalid number of records: {record_count}")
    if record_count > 0 and record_bytes < 1:
        raise HeaderError(f"Invalid number of bytes in record: {record_bytes}")

    field_count = (header_bytes - PREAMBLE_SIZE - 1) // DESCRIPTOR_SIZE
    fields = tuple(
        parse_field_descriptor(
            data[PREAMBLE_SIZE + i * DESCRIPTOR_SIZE : PREAMBLE_SIZE + (i + 1) * DESCRIPTOR_SIZE],
            quirks,
        )
        for i in range(field_count)
    )

    seen: set[str] = set()
    for f in fields:
        if f.name in seen:
            raise HeaderError(f"Duplicate field name '{f.name}'")
        seen.add(f.name)

    return Header(
        version=version,
        date_of_last_update=last_update_date(yy, mm, dd),
        number_of_records=record_count,
        number_of_header_bytes=header_bytes,
        number_of_bytes_in_record=record_bytes,
        has_production_mdx_file=has_mdx == 1,
        language_driver_id=data[29],
        fields=fields,
    )


def parse_field_descriptor(raw: bytes, quirks: Quirks | None = None) -> FieldDescriptor:
    """Parse one 32-byte field descriptor."""
    quirks = quirks or Quirks()

    length = raw[16]
    if length == 255:
        if not quirks.allow_field_length_255:
            raise HeaderError("Field length must be less than 255")
        logger.warning("Accepting field length 255")

    tag = raw[11:12].decode("latin-1")
    try:
        ftype = FieldType(tag)
    except ValueError:
        allowed = ", ".join(t.value for t in FieldType)
        raise HeaderError(f"Field type must be one of: {allowed}") from None

    expected = FIXED_LENGTHS.get(ftype)
    if expected is not None and length != expected:
        raise HeaderError(f"Invalid {ftype.value} ({ftype.name.lower()}) field length: {length}")

    indexed = raw[31]
    if indexed > 1:
        raise HeaderError(f"Invalid indexed in production MDX file value: {indexed}")

    return FieldDescriptor(
        name=raw[0:10].decode("utf-8", errors="replace").replace("\x00", ""),
        type=ftype,
        length=length,
        precision=raw[17],
        work_area_id=int.from_bytes(raw[18:20], "little", signed=False),
        is_indexed_in_mdx_file=indexed == 1,
    )
