"""Fixed-width record decoding."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from dbfstream.core.errors import RecordError
from dbfstream.core.fields import ABSENT, decode_field_value
from dbfstream.core.header import Header
from dbfstream.core.options import DecoderOptions

ACTIVE_FLAG = 0x20  # ' '
DELETED_FLAG = 0x2A  # '*'


@dataclass(frozen=True)
class Record:
    """One decoded row: deletion flag plus field values by name.

    Logical fields holding '?' or ' ' have no entry in `values`, which is
    read-only.
    """

    deleted: bool
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def to_dict(self) -> dict[str, Any]:
        return {"@meta": {"deleted": self.deleted}, **self.values}


def is_deleted(raw: bytes) -> bool:
    flag = raw[0]
    if flag == ACTIVE_FLAG:
        return False
    if flag == DELETED_FLAG:
        return True
    raise RecordError(f"Invalid deleted record value: {chr(flag)}")


def decode_record(raw: bytes, header: Header, options: DecoderOptions) -> Record:
    """Decode one record-sized slice using the header's field layout."""
    deleted = is_deleted(raw)
    values: dict[str, Any] = {}

    # byte 0 is the deletion flag
    offset = 1
    for fd in header.fields:
        value = decode_field_value(raw[offset : offset + fd.length], fd, options)
        if value is not ABSENT:
            values[fd.name] = value
        offset += fd.length

    return Record(deleted=deleted, values=values)
