"""Decoder configuration: validated once, immutable afterwards."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable

import yaml

from dbfstream.core.errors import OptionsError

if TYPE_CHECKING:
    from dbfstream.core.header import FieldDescriptor

# (raw field bytes, descriptor) -> decoded value
FieldParser = Callable[[bytes, "FieldDescriptor"], Any]

DEFAULT_ENCODING = "utf-8"


@dataclass(frozen=True)
class Quirks:
    """Leniency flags for files that bend the format."""

    logical_allow_unknown_values: bool = False  # unknown L values decode as absent
    memo_allow_left_space_padding: bool = False  # M values like '      1234'
    ignore_unknown_encryption_byte: bool = False  # encryption byte other than 0/1
    allow_field_length_255: bool = False


QUIRK_NAMES = tuple(f.name for f in fields(Quirks))


@dataclass(frozen=True)
class DecoderOptions:
    deleted: bool = False  # include deleted records in output
    offset: int = 0
    size: int | None = None  # None means unbounded
    encoding: str = DEFAULT_ENCODING
    custom_field_parsers: Mapping[str, FieldParser] = field(default_factory=dict)
    quirks: Quirks = field(default_factory=Quirks)

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not isinstance(self.deleted, bool):
            errors.append("deleted must be a boolean")
        if not _is_non_negative_int(self.offset):
            errors.append("offset must be a non-negative integer")
        if self.size is not None and not _is_non_negative_int(self.size):
            errors.append("size must be a non-negative integer")

        if not isinstance(self.encoding, str):
            errors.append(f"encoding not recognized: '{self.encoding}'")
        else:
            # bytes-to-bytes codecs such as hex or rot13 are not text encodings
            try:
                b"".decode(self.encoding)
            except (LookupError, ValueError):
                errors.append(f"encoding not recognized: '{self.encoding}'")

        if not isinstance(self.custom_field_parsers, Mapping):
            errors.append("custom_field_parsers must be a mapping of field name to callable")
        else:
            for name, parser in self.custom_field_parsers.items():
                if not callable(parser):
                    errors.append(f"custom field parser for '{name}' is not callable")

        if not isinstance(self.quirks, Quirks):
            errors.append("quirks must be a Quirks instance")
        else:
            for name in QUIRK_NAMES:
                if not isinstance(getattr(self.quirks, name), bool):
                    errors.append(f"quirks.{name} must be a boolean")

        if errors:
            raise OptionsError(errors)

        # Parser table is read-only after construction
        object.__setattr__(
            self, "custom_field_parsers", MappingProxyType(dict(self.custom_field_parsers))
        )


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def load_options(text: str, **overrides: Any) -> DecoderOptions:
    """Build DecoderOptions from a YAML document.

    Recognized keys are deleted, offset, size, encoding and quirks (a mapping
    of quirk flag names). Keyword `overrides` take precedence over the file,
    which is how callers attach `custom_field_parsers`.
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise OptionsError([f"YAML parse error: {e}"]) from None

    if not isinstance(data, dict):
        raise OptionsError(["Top-level YAML must be a mapping of option names."])

    errors: list[str] = []
    allowed = {"deleted", "offset", "size", "encoding", "quirks"}
    for key in data:
        if key not in allowed:
            errors.append(f"unknown option '{key}'")

    kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in allowed and k != "quirks"}

    raw_quirks = data.get("quirks") or {}
    if not isinstance(raw_quirks, dict):
        errors.append("quirks must be a mapping")
    else:
        for key in raw_quirks:
            if key not in QUIRK_NAMES:
                errors.append(f"unknown quirk '{key}'")
        if not errors:
            kwargs["quirks"] = Quirks(**raw_quirks)

    if errors:
        raise OptionsError(errors)

    kwargs.update(overrides)
    return DecoderOptions(**kwargs)
