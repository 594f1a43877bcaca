"""Tolerant parser for the CMS Doctors and Clinicians flat file.

The extract is comma delimited with optionally quoted fields. Rows are split
by a character scanner rather than the ``csv`` module because the export mixes
single and double quotes and sometimes leaves a quote unterminated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, TextIO, Union

from mediconnect.models import RawRow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 1000
DEFAULT_MIN_COLUMNS = 29
HEADER_FIRST_COLUMN = "NPI"

_BOM = "\ufeff"
_QUOTE_CHARS = ('"', "'")


class EmptyInputError(ValueError):
    """The payload contained no data lines once blanks and headers were removed."""


class MalformedRowWarning(UserWarning):
    """A data line had fewer fields than the fixed-column extract requires."""

    def __init__(self, line_number: int, column_count: int, min_columns: int):
        self.line_number = line_number
        self.column_count = column_count
        self.min_columns = min_columns
        super().__init__(
            f"Skipping row {line_number}: expected {min_columns}+ columns, got {column_count}"
        )


@dataclass(slots=True)
class TabularParseResult:
    """Rows accepted by the parser plus what was skipped along the way."""

    rows: List[RawRow] = field(default_factory=list)
    data_lines: int = 0
    skipped: List[MalformedRowWarning] = field(default_factory=list)
    truncated: bool = False


def split_line(line: str) -> RawRow:
    """Tokenize one line into fields.

    A field that starts with ``"`` or ``'`` runs until the same quote character
    recurs; commas inside it are literal and a doubled quote is an escaped
    quote. An unterminated quote is closed at end of line. Surrounding
    whitespace is preserved.
    """
    fields: List[str] = []
    current: List[str] = []
    quote_char: Optional[str] = None
    i = 0
    length = len(line)
    while i < length:
        char = line[i]
        if quote_char is not None:
            if char == quote_char:
                if i + 1 < length and line[i + 1] == quote_char:
                    current.append(char)
                    i += 2
                    continue
                quote_char = None
            else:
                current.append(char)
        elif char in _QUOTE_CHARS and not current:
            quote_char = char
        elif char == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current))
    return tuple(fields)


def _iter_lines(source: Union[str, TextIO, Iterable[str]]) -> Iterator[str]:
    if isinstance(source, str):
        text = source[1:] if source.startswith(_BOM) else source
        for line in text.split("\n"):
            yield line.rstrip("\r")
        return

    first = True
    for line in source:
        if first:
            first = False
            if line.startswith(_BOM):
                line = line[1:]
        yield line.rstrip("\n").rstrip("\r")


def _is_header(fields: RawRow, header_first_column: str) -> bool:
    return bool(fields) and fields[0].strip().upper() == header_first_column.upper()


def parse_tabular(
    source: Union[str, TextIO, Iterable[str]],
    *,
    max_rows: int = DEFAULT_MAX_ROWS,
    min_columns: int = DEFAULT_MIN_COLUMNS,
    header_first_column: str = HEADER_FIRST_COLUMN,
) -> TabularParseResult:
    """Parse a CMS-style flat file into rows.

    Args:
        source: The whole payload as a string, or a readable text stream.
        max_rows: Maximum number of data lines examined; later lines are ignored.
        min_columns: Lines with fewer fields are skipped with a logged warning.
        header_first_column: Lines whose first field equals this are header repeats.

    Returns:
        TabularParseResult with accepted rows and skipped-row warnings.

    Raises:
        EmptyInputError: if no data lines remain after dropping blanks and headers.
    """
    result = TabularParseResult()
    for line in _iter_lines(source):
        if not line.strip():
            continue
        fields = split_line(line)
        if _is_header(fields, header_first_column):
            continue
        if result.data_lines >= max_rows:
            result.truncated = True
            break
        result.data_lines += 1
        if len(fields) < min_columns:
            warning = MalformedRowWarning(result.data_lines, len(fields), min_columns)
            logger.warning(str(warning))
            result.skipped.append(warning)
            continue
        result.rows.append(fields)

    if result.data_lines == 0:
        raise EmptyInputError("No data rows found in tabular payload")

    if result.truncated:
        logger.info(f"Row cap of {max_rows} reached; remaining lines ignored")
    logger.debug(
        f"Parsed {len(result.rows)} rows ({len(result.skipped)} skipped) from {result.data_lines} data lines"
    )
    return result


def parse(source: Union[str, TextIO, Iterable[str]], **kwargs) -> List[RawRow]:
    """Return only the accepted rows; see :func:`parse_tabular`."""
    return parse_tabular(source, **kwargs).rows
