"""
escapedcsv — a small CSV value model with a backslash-escaping dialect (stdlib-only).

Contract (v0):
- Cells are Values: null, or holding text. An empty string is NOT null.
- A Value remembers how it was built: from a string (quoted on output) or from
  an int/float/datetime (written raw on output).
- Quoting: backslash -> \\\\, quote -> \\", comma -> \\, newline -> \\n, then
  wrap the result in double quotes.
- Reading a field:
    empty field          -> null
    field starting with " -> unquoted + unescaped (must end in ")
    anything else         -> taken verbatim, no unescaping
- Row boundaries: every comma not immediately preceded by a backslash.
  A trailing comma yields one extra trailing null.
- Tables:
    lines are trimmed and blank lines dropped before parsing
    optional header line, split literally (no unquoting), names stripped,
      no empty names, no trailing delimiter
    the header (or the first non-empty row) fixes the column count
    empty rows may always be appended
- Numeric accessors parse a leading numeric prefix ("12abc".as_int() == 12);
  has_numeric_value() requires a full match.
- Errors: raise immediately with an EscapedCSVError subclass carrying context.
- Writing: header joined with ", ", rows joined with ",", every line
  newline-terminated.

API:
- quote(text) / unquote(token)
- Value, Row, Table
- Table.from_cursor(cursor) -> table from a DB-API cursor
- loads/dumps (strings), load/dump (text file objects)

Python: 3.10+
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Iterable, Iterator, List, Optional, Sequence, TextIO, Union

_logger = logging.getLogger(__name__)

__version__ = "0.1.0"


# ----------------------------
# Exceptions
# ----------------------------

class EscapedCSVError(ValueError):
    """Base class for all codec and table errors; carries optional context."""

    def __init__(
        self,
        reason: str,
        *,
        value: Optional[str] = None,
        row: Optional[int] = None,
        col: Optional[int] = None,
    ) -> None:
        context = []
        if row is not None:
            context.append(f"row={row}")
        if col is not None:
            context.append(f"col={col}")
        if value is not None:
            context.append(f"value={value!r}")
        msg = f"{type(self).__name__}({', '.join(context)}): {reason}"
        super().__init__(msg)
        self.reason = reason
        self.value = value    # raw text that triggered the error, if any
        self.row = row        # 1-based line number in the parsed text
        self.col = col        # 0-based column index


class MalformedFieldError(EscapedCSVError):
    """A quoted token lacks its closing quote or holds an unescaped quote/comma."""


class NullValueError(EscapedCSVError):
    """A string or numeric accessor was called on a null value."""


class NumericParseError(EscapedCSVError):
    """A numeric accessor was called on a value without a usable numeric prefix."""


class IndexOutOfRangeError(EscapedCSVError, IndexError):
    """A row or column index is out of bounds."""


class InvalidHeaderError(EscapedCSVError):
    """A header has an empty name, a trailing delimiter or the wrong width."""


class NoHeadersError(EscapedCSVError):
    """A column was looked up by name on a table without a header."""


class UnknownColumnError(EscapedCSVError, LookupError):
    """A column name is not part of the header."""


class UnsupportedColumnTypeError(EscapedCSVError):
    """A cursor delivered a cell type that has no CSV representation."""


class ColumnCountMismatchError(EscapedCSVError):
    """A non-empty row does not have the table's column count."""

    def __init__(self, *, expected: int, actual: int, row: Optional[int] = None) -> None:
        super().__init__(
            f"Expected {expected} columns, got {actual}",
            row=row,
        )
        self.expected = expected
        self.actual = actual


# ----------------------------
# Dialect
# ----------------------------

@dataclass(frozen=True)
class Dialect:
    delimiter: str = ","
    quotechar: str = '"'
    escapechar: str = "\\"
    # char following escapechar that stands for an embedded newline
    newline_escape: str = "n"
    lineterminator: str = "\n"
    # defaults to delimiter + " "
    header_separator: Optional[str] = None
    float_format: str = "{:f}"

    def __post_init__(self) -> None:
        if self.header_separator is None:
            object.__setattr__(self, "header_separator", self.delimiter + " ")
        grammar = (self.delimiter, self.quotechar, self.escapechar, self.newline_escape)
        if any(len(c) != 1 for c in grammar):
            raise ValueError(f"Dialect grammar characters must be single characters: {grammar!r}")
        if len(set(grammar)) != len(grammar):
            raise ValueError(f"Dialect grammar characters must be distinct: {grammar!r}")
        if not self.lineterminator:
            raise ValueError("Dialect lineterminator must not be empty")


DEFAULT = Dialect()
DEFAULT_DIALECT = DEFAULT


# ----------------------------
# Escaping
# ----------------------------

def quote(text: str, *, dialect: Dialect = DEFAULT) -> str:
    """Escape `text` and wrap it in quotes. The backslash pass must come first."""
    esc = dialect.escapechar
    out = text.replace(esc, esc + esc)
    out = out.replace(dialect.quotechar, esc + dialect.quotechar)
    out = out.replace(dialect.delimiter, esc + dialect.delimiter)
    out = out.replace("\n", esc + dialect.newline_escape)
    return dialect.quotechar + out + dialect.quotechar


def unquote(token: str, *, dialect: Dialect = DEFAULT) -> str:
    """
    Inverse of quote(). Surrounding whitespace is ignored, the outer quotes are
    mandatory. The body is decoded in a single left-to-right pass so that an
    escaped backslash is never mistaken for the start of another escape.
    Unknown escapes and a trailing lone backslash are kept verbatim.
    """
    d = token.strip()
    q = dialect.quotechar
    if len(d) < 2 or d[0] != q or d[-1] != q:
        raise MalformedFieldError("Quoted field must start and end with a quote", value=token)

    body = d[1:-1]
    esc = dialect.escapechar
    decoded = {
        esc: esc,
        q: q,
        dialect.delimiter: dialect.delimiter,
        dialect.newline_escape: "\n",
    }

    out: List[str] = []
    i, n = 0, len(body)
    while i < n:
        c = body[i]
        if c == esc and i + 1 < n and body[i + 1] in decoded:
            out.append(decoded[body[i + 1]])
            i += 2
            continue
        if c == q or c == dialect.delimiter:
            raise MalformedFieldError(
                f"Unescaped {c!r} at position {i + 1} of quoted field", value=token
            )
        out.append(c)
        i += 1
    return "".join(out)


def _split_fields(line: str, dialect: Dialect) -> List[str]:
    """Split at every delimiter that is not directly preceded by the escape char."""
    fields: List[str] = []
    start = 0
    for idx, c in enumerate(line):
        if c != dialect.delimiter:
            continue
        if idx > 0 and line[idx - 1] == dialect.escapechar:
            continue
        fields.append(line[start:idx])
        start = idx + 1
    fields.append(line[start:])
    return fields


# ----------------------------
# Numeric parsing
# ----------------------------

# leading-prefix parsers (leading whitespace allowed, trailing garbage ignored)
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)
# full match used by has_numeric_value()
_NUMERIC_FULL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_INT32_RANGE = (-(2 ** 31), 2 ** 31 - 1)
_INT64_RANGE = (-(2 ** 63), 2 ** 63 - 1)


def _parse_int_prefix(text: str, bounds: Sequence[int], kind: str) -> int:
    m = _INT_PREFIX.match(text)
    if m is None:
        raise NumericParseError(f"No leading {kind} in value", value=text)
    result = int(m.group(1))
    if not bounds[0] <= result <= bounds[1]:
        raise NumericParseError(f"Value out of range for {kind}", value=text)
    return result


def _parse_float_prefix(text: str) -> float:
    m = _FLOAT_PREFIX.match(text)
    if m is None:
        raise NumericParseError("No leading floating point number in value", value=text)
    return float(m.group(1))


# ----------------------------
# Value
# ----------------------------

Primitive = Union[None, str, int, float, datetime]


class Value:
    """
    One table cell. Either null or holding text; immutable after construction.

    Strings starting with a quote are unquoted on construction, all other
    strings are stored verbatim (pass literal=True to skip unquoting).
    Numbers and datetimes are stored as text and never quoted on output.
    """

    __slots__ = ("_text", "_is_string", "_dialect")

    def __init__(self, data: Primitive = None, *, literal: bool = False, dialect: Dialect = DEFAULT) -> None:
        self._dialect = dialect
        self._is_string = False

        if data is None:
            self._text: Optional[str] = None
        elif isinstance(data, str):
            if not literal and data.startswith(dialect.quotechar):
                data = unquote(data, dialect=dialect)
            self._text = data
            self._is_string = True
        elif isinstance(data, bool):
            raise TypeError("bool is not a supported cell type; use int or str")
        elif isinstance(data, int):
            self._text = str(data)
        elif isinstance(data, float):
            self._text = dialect.float_format.format(data)
        elif isinstance(data, datetime):
            self._text = str(int(data.timestamp()))
        else:
            raise TypeError(f"Unsupported cell type: {type(data).__name__}")

    def is_null(self) -> bool:
        return self._text is None

    def has_numeric_value(self) -> bool:
        """True iff the text is, in full, a decimal integer or float."""
        if self._text is None:
            return False
        return _NUMERIC_FULL.fullmatch(self._text) is not None

    def _require_text(self) -> str:
        if self._text is None:
            raise NullValueError("Value is null")
        return self._text

    def as_string(self) -> str:
        return self._require_text()

    as_string_ref = as_string

    def as_int(self) -> int:
        return _parse_int_prefix(self._require_text(), _INT32_RANGE, "int")

    def as_long(self) -> int:
        return _parse_int_prefix(self._require_text(), _INT64_RANGE, "long")

    def as_double(self) -> float:
        return _parse_float_prefix(self._require_text())

    def as_instant(self, tz: tzinfo = timezone.utc) -> datetime:
        """Interpret the value as epoch seconds; returns an aware datetime."""
        return self._to_instant(tz)

    def as_local_instant(self) -> datetime:
        return self._to_instant(None)

    def _to_instant(self, tz: Optional[tzinfo]) -> datetime:
        seconds = self.as_long()
        try:
            return datetime.fromtimestamp(seconds, tz=tz)
        except (OverflowError, OSError, ValueError) as e:
            raise NumericParseError("Value out of range for instant", value=self._text) from e

    def to_string(self) -> str:
        if self._text is None:
            return ""
        if self._is_string:
            return quote(self._text, dialect=self._dialect)
        return self._text

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        if self._text is None:
            return "Value(None)"
        if self._is_string:
            return f"Value({self._text!r})"
        return f"Value({self._text})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return (self._text, self._is_string) == (other._text, other._is_string)

    def __hash__(self) -> int:
        return hash((self._text, self._is_string))


# ----------------------------
# Row
# ----------------------------

class Row:
    """An ordered sequence of Values, parsed from or written to one line."""

    def __init__(self, line: str = "", *, dialect: Dialect = DEFAULT) -> None:
        self._dialect = dialect
        self._cols: List[Value] = []
        if not line:
            return

        for j, field in enumerate(_split_fields(line, dialect)):
            if field == "":
                self._cols.append(Value(dialect=dialect))
                continue
            try:
                self._cols.append(Value(field, dialect=dialect))
            except MalformedFieldError as e:
                raise MalformedFieldError(e.reason, value=e.value, col=j) from e

    @classmethod
    def from_values(cls, values: Iterable[Any], *, dialect: Dialect = DEFAULT) -> "Row":
        r = cls(dialect=dialect)
        r.extend(values)
        return r

    def append(self, data: Any = None, *, literal: bool = False) -> None:
        """Append a Value, or build one from None/str/int/float/datetime."""
        if isinstance(data, Value):
            self._cols.append(data)
        else:
            self._cols.append(Value(data, literal=literal, dialect=self._dialect))

    def extend(self, values: Iterable[Any]) -> None:
        for v in values:
            self.append(v)

    def get_col_count(self) -> int:
        return len(self._cols)

    @property
    def col_count(self) -> int:
        return len(self._cols)

    def empty(self) -> bool:
        return not self._cols

    def to_string(self) -> str:
        return self._dialect.delimiter.join(v.to_string() for v in self._cols)

    def __getitem__(self, col_idx: int) -> Value:
        if not isinstance(col_idx, int) or isinstance(col_idx, bool):
            raise TypeError(f"Column index must be int, not {type(col_idx).__name__}")
        if not 0 <= col_idx < len(self._cols):
            raise IndexOutOfRangeError(
                f"Column index {col_idx} out of range (column count is {len(self._cols)})"
            )
        return self._cols[col_idx]

    def __len__(self) -> int:
        return len(self._cols)

    def __iter__(self) -> Iterator[Value]:
        return iter(self._cols)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self._cols == other._cols

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Row({self._cols!r})"


# ----------------------------
# Header helpers
# ----------------------------

def _validate_names(names: Sequence[str], dialect: Dialect, *, row: Optional[int] = None) -> List[str]:
    out: List[str] = []
    for j, raw in enumerate(names):
        name = raw.strip()
        if not name:
            raise InvalidHeaderError("Empty column name", value=raw, row=row, col=j)
        if dialect.delimiter in name or "\n" in name:
            raise InvalidHeaderError(
                "Column name contains a delimiter or newline", value=raw, row=row, col=j
            )
        out.append(name)
    return out


def _parse_header_line(line: str, dialect: Dialect, *, row: int) -> List[str]:
    """Split the header literally; names are never unquoted."""
    if line.rstrip().endswith(dialect.delimiter):
        raise InvalidHeaderError("Header line ends with a delimiter", value=line, row=row)
    names: List[str] = []
    for j, raw in enumerate(_split_fields(line, dialect)):
        name = raw.strip()
        if not name:
            raise InvalidHeaderError("Empty column name", value=line, row=row, col=j)
        names.append(name)
    return names


# ----------------------------
# Table
# ----------------------------

class Table:
    """
    Rows plus optional column names. The header, or the first non-empty row,
    fixes the column count; every later non-empty row must match it.
    Construction from text is all-or-nothing.
    """

    def __init__(self, text: str = "", has_header: bool = False, *, dialect: Dialect = DEFAULT) -> None:
        self._dialect = dialect
        self._col_count = 0
        self._col_names: List[str] = []
        self._rows: List[Row] = []
        if not text:
            return

        # lines are trimmed (this also drops a trailing \r); fields are not
        lines = [
            (lineno, line.strip())
            for lineno, line in enumerate(text.split(dialect.lineterminator), start=1)
            if line.strip()
        ]
        if not lines:
            return

        if has_header:
            lineno, header = lines.pop(0)
            self._col_names = _parse_header_line(header, dialect, row=lineno)
            self._col_count = len(self._col_names)

        for lineno, line in lines:
            try:
                r = Row(line, dialect=dialect)
            except MalformedFieldError as e:
                raise MalformedFieldError(e.reason, value=e.value, row=lineno, col=e.col) from e

            if self._col_count == 0:
                self._col_count = r.get_col_count()
            if r.get_col_count() != self._col_count:
                raise ColumnCountMismatchError(
                    expected=self._col_count, actual=r.get_col_count(), row=lineno
                )
            self._rows.append(r)

        _logger.debug(
            "Parsed table: %d rows, %d columns, header=%s",
            len(self._rows), self._col_count, bool(self._col_names),
        )

    @classmethod
    def from_cursor(cls, cursor: Any, include_headers: bool = True, *, dialect: Dialect = DEFAULT) -> "Table":
        """
        Build a table from an executed DB-API cursor. NULL, INTEGER, REAL and
        TEXT cells are supported; TEXT is stored literally. A statement that
        returns no rows yields an empty table without header.
        """
        table = cls(dialect=dialect)
        if cursor.description is None:
            return table

        first = cursor.fetchone()
        if first is None:
            return table

        if include_headers:
            table.set_header([d[0] for d in cursor.description])

        record = first
        while record is not None:
            r = Row(dialect=dialect)
            for j, cell in enumerate(record):
                if isinstance(cell, bool):
                    cell = int(cell)
                if cell is None or isinstance(cell, (int, float)):
                    r.append(cell)
                elif isinstance(cell, str):
                    r.append(cell, literal=True)
                else:
                    raise UnsupportedColumnTypeError(
                        f"Cell type {type(cell).__name__} cannot be exported",
                        row=table.get_row_count() + 1, col=j,
                    )
            table.append(r)
            record = cursor.fetchone()

        _logger.debug("Exported cursor to table: %d rows", table.get_row_count())
        return table

    def set_header(self, names: Sequence[str]) -> None:
        validated = _validate_names(names, self._dialect)
        if not validated:
            raise InvalidHeaderError("Header must have at least one column")
        if self._col_count and len(validated) != self._col_count:
            raise InvalidHeaderError(
                f"Header has {len(validated)} names but the table has {self._col_count} columns"
            )
        self._col_names = validated
        self._col_count = len(validated)
        _logger.debug("Header set: %s", validated)

    @property
    def col_names(self) -> List[str]:
        return list(self._col_names)

    @property
    def col_count(self) -> int:
        return self._col_count

    def has_header(self) -> bool:
        return bool(self._col_names)

    def get_row_count(self) -> int:
        return len(self._rows)

    @property
    def row_count(self) -> int:
        return len(self._rows)

    def empty(self) -> bool:
        return not self._rows

    def column_index(self, col_name: str) -> int:
        if not self._col_names:
            raise NoHeadersError("Table has no column names", value=col_name)
        try:
            return self._col_names.index(col_name)
        except ValueError:
            raise UnknownColumnError("Unknown column name", value=col_name) from None

    def get_val(self, row_idx: int, col: Union[int, str]) -> Value:
        """Look up a cell by column index or, on tables with a header, column name."""
        if isinstance(col, str):
            col = self.column_index(col)
        return self[row_idx][col]

    def append(self, row: Row) -> None:
        if row.empty():
            self._rows.append(row)
            return
        if self._col_count == 0:
            self._col_count = row.get_col_count()
        elif row.get_col_count() != self._col_count:
            raise ColumnCountMismatchError(expected=self._col_count, actual=row.get_col_count())
        self._rows.append(row)

    def to_string(self) -> str:
        lt = self._dialect.lineterminator
        lines: List[str] = []
        if self._col_names:
            lines.append(self._dialect.header_separator.join(self._col_names) + lt)
        lines.extend(r.to_string() + lt for r in self._rows)
        return "".join(lines)

    def __getitem__(self, row_idx: int) -> Row:
        if not isinstance(row_idx, int) or isinstance(row_idx, bool):
            raise TypeError(f"Row index must be int, not {type(row_idx).__name__}")
        if not 0 <= row_idx < len(self._rows):
            raise IndexOutOfRangeError(
                f"Row index {row_idx} out of range (row count is {len(self._rows)})"
            )
        return self._rows[row_idx]

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Table(col_names={self._col_names!r}, rows={len(self._rows)}, col_count={self._col_count})"


# ----------------------------
# String / file helpers
# ----------------------------

def loads(text: str, has_header: bool = False, *, dialect: Dialect = DEFAULT) -> Table:
    return Table(text, has_header, dialect=dialect)


def dumps(table: Table) -> str:
    return table.to_string()


def load(f: TextIO, has_header: bool = False, *, dialect: Dialect = DEFAULT) -> Table:
    return Table(f.read(), has_header, dialect=dialect)


def dump(table: Table, f: TextIO) -> int:
    return f.write(table.to_string())


__all__ = [
    "EscapedCSVError",
    "MalformedFieldError",
    "NullValueError",
    "NumericParseError",
    "IndexOutOfRangeError",
    "InvalidHeaderError",
    "NoHeadersError",
    "UnknownColumnError",
    "UnsupportedColumnTypeError",
    "ColumnCountMismatchError",
    "Dialect",
    "DEFAULT",
    "DEFAULT_DIALECT",
    "__version__",
    "quote",
    "unquote",
    "Value",
    "Row",
    "Table",
    "loads",
    "dumps",
    "load",
    "dump",
]
