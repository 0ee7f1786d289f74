"""
app/services/csv_reader.py

Parses uploaded CSV bytes into headers and rows. Failures come back as a
typed result instead of an exception so callers can tell I/O, encoding and
syntax problems apart.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field


class CSVReadErrorKind:
    MISSING_FILE = "missing_file"
    IO = "io"
    ENCODING = "encoding"
    SYNTAX = "syntax"
    EMPTY = "empty"


@dataclass(frozen=True)
class CSVReadError:
    kind: str
    message: str
    line_number: int | None = None


@dataclass(frozen=True)
class CSVReadResult:
    """
    Parsed file. Exactly one of (`headers`/`rows`) or `error` is meaningful.
    Rows are keyed by the raw header text.
    """

    headers: tuple[str, ...] = ()
    rows: tuple[dict[str, str | None], ...] = ()
    error: CSVReadError | None = None
    row_numbers: tuple[int, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, kind: str, message: str, *, line_number: int | None = None) -> CSVReadResult:
        return cls(error=CSVReadError(kind=kind, message=message, line_number=line_number))


def read_csv_bytes(content: bytes | None, *, file_name: str = "upload.csv") -> CSVReadResult:
    """
    Decode `content` as UTF-8 (a BOM is tolerated) and parse it strictly.

    Blank lines are skipped. A row with more fields than the header row is a
    syntax error; short rows leave the missing fields as None.
    """

    if content is None:
        return CSVReadResult.failure(CSVReadErrorKind.MISSING_FILE, "No file chosen.")

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        return CSVReadResult.failure(
            CSVReadErrorKind.ENCODING,
            f"Couldn't read {file_name}: invalid UTF-8 byte sequence at position {exc.start}.",
        )

    if not text.strip():
        return CSVReadResult.failure(CSVReadErrorKind.EMPTY, f"{file_name} is empty.")

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    headers: list[str] | None = None
    rows: list[dict[str, str | None]] = []
    row_numbers: list[int] = []
    try:
        for record in reader:
            if not record:
                continue
            if headers is None:
                headers = list(record)
                continue
            if len(record) > len(headers):
                return CSVReadResult.failure(
                    CSVReadErrorKind.SYNTAX,
                    f"Couldn't parse {file_name}: line {reader.line_num} has {len(record)} "
                    f"fields but the header row has {len(headers)}.",
                    line_number=reader.line_num,
                )
            padded: list[str | None] = list(record) + [None] * (len(headers) - len(record))
            rows.append(dict(zip(headers, padded)))
            row_numbers.append(reader.line_num)
    except csv.Error as exc:
        return CSVReadResult.failure(
            CSVReadErrorKind.SYNTAX,
            f"Couldn't parse {file_name}: {exc} (line {reader.line_num}).",
            line_number=reader.line_num,
        )

    if headers is None:
        return CSVReadResult.failure(CSVReadErrorKind.EMPTY, f"{file_name} has no header row.")

    return CSVReadResult(headers=tuple(headers), rows=tuple(rows), row_numbers=tuple(row_numbers))
