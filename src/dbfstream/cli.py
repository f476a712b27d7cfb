from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys
from datetime import date
from typing import Any

import yaml
from rich.console import Console
from rich.table import Table

from dbfstream.core.decoder import HeaderParsed, iter_events
from dbfstream.core.errors import DbfError, OptionsError
from dbfstream.core.header import Header
from dbfstream.core.io import DEFAULT_CHUNK_SIZE, FileChunkSource
from dbfstream.core.options import DecoderOptions, load_options
from dbfstream.core.records import Record

logger = logging.getLogger("dbfstream")


def _build_options(args: argparse.Namespace) -> DecoderOptions:
    overrides: dict[str, Any] = {}
    if args.offset is not None:
        overrides["offset"] = args.offset
    if args.size is not None:
        overrides["size"] = args.size
    if args.deleted:
        overrides["deleted"] = True
    if args.encoding is not None:
        overrides["encoding"] = args.encoding

    if args.options:
        with open(args.options, encoding="utf-8") as f:
            return load_options(f.read(), **overrides)
    return DecoderOptions(**overrides)


def _plain(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _record_row(record: Record) -> dict[str, Any]:
    row = record.to_dict()
    return {k: (_plain(v) if k != "@meta" else v) for k, v in row.items()}


def _out(console: Console, text: str) -> None:
    console.out(text, highlight=False, end="")


def _print_table(console: Console, header: Header, records: list[Record], title: str) -> None:
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("del")
    for fd in header.fields:
        justify = "right" if fd.type.value in ("F", "N") else "left"
        table.add_column(fd.name, justify=justify)
    for i, record in enumerate(records):
        cells = []
        for fd in header.fields:
            value = record.values.get(fd.name)
            cells.append("" if value is None else str(_plain(value)))
        table.add_row(str(i), "*" if record.deleted else "", *cells)
    console.print(table)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="dbfstream", description="Stream records out of a dBase (.dbf) file")
    parser.add_argument("path", help="Path to .dbf file")
    parser.add_argument("--options", help="YAML file with decoder options")
    parser.add_argument("--offset", type=int, help="Skip this many eligible records")
    parser.add_argument("--size", type=int, help="Emit at most this many records")
    parser.add_argument("--deleted", action="store_true", help="Include deleted records")
    parser.add_argument("--encoding", help="Text encoding of character fields")
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, help="Read size in bytes")
    parser.add_argument(
        "--format",
        choices=("table", "yaml", "jsonl"),
        default="table",
        help="yaml and jsonl stream records as they are decoded; table holds them all until the end",
    )
    parser.add_argument("--header-only", action="store_true", help="Print the header and stop")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not os.path.exists(args.path):
        print(f"dbfstream: file not found: {args.path}", file=sys.stderr)
        return 2

    try:
        options = _build_options(args)
    except (OptionsError, OSError) as e:
        print(f"dbfstream: invalid options: {e}", file=sys.stderr)
        return 2

    console = Console()
    header: Header | None = None
    records: list[Record] = []
    streamed = 0
    try:
        with FileChunkSource(args.path, chunk_size=args.chunk_size) as source:
            for event in iter_events(source, options):
                if isinstance(event, HeaderParsed):
                    header = event.header
                    logger.info("%s: %s, %d records", args.path, header.version_description, header.number_of_records)
                    if args.header_only:
                        _out(console, yaml.safe_dump(header.to_dict(), sort_keys=False))
                        break
                    if args.format == "yaml":
                        _out(console, yaml.safe_dump({"header": header.to_dict()}, sort_keys=False))
                    continue
                if args.format == "jsonl":
                    console.out(json.dumps(_record_row(event.record), ensure_ascii=False), highlight=False)
                elif args.format == "yaml":
                    if streamed == 0:
                        _out(console, "records:\n")
                    # one block-sequence item per record under the records key
                    _out(console, yaml.safe_dump([_record_row(event.record)], sort_keys=False, allow_unicode=True))
                    streamed += 1
                else:
                    records.append(event.record)
    except DbfError as e:
        print(f"dbfstream: {e}", file=sys.stderr)
        return 1

    if header is None:  # pragma: no cover - iter_events raises before this
        return 1

    if args.header_only:
        return 0
    if args.format == "yaml" and streamed == 0:
        _out(console, "records: []\n")
    elif args.format == "table":
        _print_table(console, header, records, title=os.path.basename(args.path))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
