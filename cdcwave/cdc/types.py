"""
Logical column types and source type lookup tables

Each source dialect names its column types differently. Type hints from a
change record are mapped to a small, closed set of logical kinds through a
fixed lookup table per dialect; unknown names are rejected rather than guessed.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Optional

import pyarrow as pa


class TypeKind(str, Enum):
    """Semantic type of a captured column."""
    INT16 = "INT16"
    INT32 = "INT32"
    INT64 = "INT64"
    FLOAT32 = "FLOAT32"
    FLOAT64 = "FLOAT64"
    DECIMAL = "DECIMAL"
    BOOLEAN = "BOOLEAN"
    STRING = "STRING"
    BYTES = "BYTES"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"

    @property
    def is_unquoted(self) -> bool:
        """Whether logical decoding prints values of this kind as bare literals."""
        return self in _UNQUOTED_KINDS


_UNQUOTED_KINDS = frozenset({
    TypeKind.INT16,
    TypeKind.INT32,
    TypeKind.INT64,
    TypeKind.FLOAT32,
    TypeKind.FLOAT64,
    TypeKind.DECIMAL,
    TypeKind.BOOLEAN,
})


@dataclass(frozen=True)
class LogicalType:
    """
    Type tag attached to a column value.

    ``source_type`` keeps the raw type name from the source for diagnostics;
    it is excluded from equality so that ``int4`` and ``integer`` compare equal.
    """
    kind: TypeKind
    nullable: bool = True
    source_type: str = field(default="", compare=False)

    def as_key(self) -> "LogicalType":
        """Return the non-nullable variant used for key columns."""
        return LogicalType(self.kind, nullable=False, source_type=self.source_type)

    def __str__(self) -> str:
        suffix = "" if self.nullable else " NOT NULL"
        return f"{self.kind.value}{suffix}"


# PostgreSQL type names as printed by format_type_be(), plus common aliases
POSTGRES_TYPE_MAP: Dict[str, TypeKind] = {
    "smallint": TypeKind.INT16,
    "int2": TypeKind.INT16,
    "integer": TypeKind.INT32,
    "int": TypeKind.INT32,
    "int4": TypeKind.INT32,
    "bigint": TypeKind.INT64,
    "int8": TypeKind.INT64,
    "oid": TypeKind.INT64,
    "real": TypeKind.FLOAT32,
    "float4": TypeKind.FLOAT32,
    "double precision": TypeKind.FLOAT64,
    "float8": TypeKind.FLOAT64,
    "numeric": TypeKind.DECIMAL,
    "decimal": TypeKind.DECIMAL,
    "boolean": TypeKind.BOOLEAN,
    "bool": TypeKind.BOOLEAN,
    "text": TypeKind.STRING,
    "character varying": TypeKind.STRING,
    "varchar": TypeKind.STRING,
    "character": TypeKind.STRING,
    "char": TypeKind.STRING,
    "bpchar": TypeKind.STRING,
    "name": TypeKind.STRING,
    "citext": TypeKind.STRING,
    "uuid": TypeKind.STRING,
    "json": TypeKind.STRING,
    "jsonb": TypeKind.STRING,
    "xml": TypeKind.STRING,
    "inet": TypeKind.STRING,
    "cidr": TypeKind.STRING,
    "macaddr": TypeKind.STRING,
    "interval": TypeKind.STRING,
    "bytea": TypeKind.BYTES,
    "date": TypeKind.DATE,
    "time": TypeKind.TIME,
    "time without time zone": TypeKind.TIME,
    "timestamp": TypeKind.TIMESTAMP,
    "timestamp without time zone": TypeKind.TIMESTAMP,
    "timestamp with time zone": TypeKind.TIMESTAMP,
    "timestamptz": TypeKind.TIMESTAMP,
}

# SQL Server type names as reported by INFORMATION_SCHEMA.COLUMNS.DATA_TYPE
MSSQL_TYPE_MAP: Dict[str, TypeKind] = {
    "tinyint": TypeKind.INT16,
    "smallint": TypeKind.INT16,
    "int": TypeKind.INT32,
    "bigint": TypeKind.INT64,
    "real": TypeKind.FLOAT32,
    "float": TypeKind.FLOAT64,
    "decimal": TypeKind.DECIMAL,
    "numeric": TypeKind.DECIMAL,
    "money": TypeKind.DECIMAL,
    "smallmoney": TypeKind.DECIMAL,
    "bit": TypeKind.BOOLEAN,
    "char": TypeKind.STRING,
    "varchar": TypeKind.STRING,
    "nchar": TypeKind.STRING,
    "nvarchar": TypeKind.STRING,
    "text": TypeKind.STRING,
    "ntext": TypeKind.STRING,
    "sysname": TypeKind.STRING,
    "uniqueidentifier": TypeKind.STRING,
    "xml": TypeKind.STRING,
    "binary": TypeKind.BYTES,
    "varbinary": TypeKind.BYTES,
    "image": TypeKind.BYTES,
    "rowversion": TypeKind.BYTES,
    "timestamp": TypeKind.BYTES,  # synonym for rowversion in T-SQL
    "date": TypeKind.DATE,
    "time": TypeKind.TIME,
    "datetime": TypeKind.TIMESTAMP,
    "datetime2": TypeKind.TIMESTAMP,
    "smalldatetime": TypeKind.TIMESTAMP,
    "datetimeoffset": TypeKind.TIMESTAMP,
}

# Logical kind to Arrow type mapping. DECIMAL and tz-aware TIMESTAMP
# columns are sized from their values at export time.
ARROW_TYPE_MAP: Dict[TypeKind, pa.DataType] = {
    TypeKind.INT16: pa.int16(),
    TypeKind.INT32: pa.int32(),
    TypeKind.INT64: pa.int64(),
    TypeKind.FLOAT32: pa.float32(),
    TypeKind.FLOAT64: pa.float64(),
    TypeKind.BOOLEAN: pa.bool_(),
    TypeKind.STRING: pa.string(),
    TypeKind.BYTES: pa.binary(),
    TypeKind.DATE: pa.date32(),
    TypeKind.TIME: pa.time64("us"),
    TypeKind.TIMESTAMP: pa.timestamp("us"),
}

_TYPMOD = re.compile(r"\([^)]*\)")
_WHITESPACE = re.compile(r"\s+")


def normalize_type_name(type_name: str) -> str:
    """Lower-case a type name, drop any type modifier and collapse whitespace."""
    name = _TYPMOD.sub("", type_name)
    return _WHITESPACE.sub(" ", name).strip().lower()


def lookup_type(type_name: str, type_map: Dict[str, TypeKind]) -> Optional[TypeKind]:
    """Resolve a source type name, returning None when it is not mapped."""
    return type_map.get(normalize_type_name(type_name))


# ---------------------------------------------------------------------------
# Text literal conversion
# ---------------------------------------------------------------------------

_TIMESTAMP = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([+-])(\d{2})(?::?(\d{2}))?(?::?(\d{2}))?)?$"
)
_TIME = re.compile(r"^(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?$")
_BC_SUFFIX = re.compile(r"\s+BC$", re.IGNORECASE)

# PostgreSQL's unbounded dates map onto the ends of Python's range
INFINITY = "infinity"
NEGATIVE_INFINITY = "-infinity"


def _special(text: str, low, high):
    lowered = text.strip().lower()
    if lowered == INFINITY:
        return high
    if lowered == NEGATIVE_INFINITY:
        return low
    if _BC_SUFFIX.search(text):
        raise ValueError(f"BC dates are outside the supported range: {text!r}")
    return None


def _microseconds(fraction: Optional[str]) -> int:
    if not fraction:
        return 0
    return int(fraction[:6].ljust(6, "0"))


def parse_timestamp(text: str) -> datetime:
    """
    Parse a PostgreSQL timestamp literal.

    Handles fractional seconds of any length (trailing zeros are trimmed by
    the server) and offsets written as ``+HH``, ``+HH:MM`` or ``+HH:MM:SS``.
    ``infinity`` and ``-infinity`` become ``datetime.max`` and
    ``datetime.min``; BC years cannot be represented and are rejected.
    """
    special = _special(text, datetime.min, datetime.max)
    if special is not None:
        return special
    match = _TIMESTAMP.match(text)
    if not match:
        raise ValueError(f"invalid timestamp: {text!r}")
    year, month, day, hour, minute, second, fraction, sign, oh, om, os_ = match.groups()
    tzinfo = None
    if sign:
        offset = timedelta(hours=int(oh), minutes=int(om or 0), seconds=int(os_ or 0))
        tzinfo = timezone(-offset if sign == "-" else offset)
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second),
        _microseconds(fraction),
        tzinfo=tzinfo,
    )


def parse_date(text: str) -> date:
    """Parse an ISO date; ``infinity``/``-infinity`` map to ``date.max``/``date.min``."""
    special = _special(text, date.min, date.max)
    if special is not None:
        return special
    return date.fromisoformat(text)


def parse_time(text: str) -> time:
    """Parse a time of day. ``24:00:00`` is allowed by the server and clamps to ``time.max``."""
    match = _TIME.match(text)
    if not match:
        raise ValueError(f"invalid time: {text!r}")
    hour, minute, second, fraction = match.groups()
    if hour == "24" and int(minute) == int(second) == 0 and not int(fraction or 0):
        return time.max
    return time(int(hour), int(minute), int(second), _microseconds(fraction))


def parse_bytea(text: str) -> bytes:
    """Decode bytea in the server's default ``hex`` output format."""
    if not text.startswith("\\x"):
        raise ValueError(f"bytea value is not hex encoded: {text!r}")
    return bytes.fromhex(text[2:])


def parse_boolean(text: str) -> bool:
    lowered = text.lower()
    if lowered in ("true", "t"):
        return True
    if lowered in ("false", "f"):
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def parse_decimal(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"invalid numeric: {text!r}") from e


_CONVERTERS: Dict[TypeKind, Callable[[str], Any]] = {
    TypeKind.INT16: int,
    TypeKind.INT32: int,
    TypeKind.INT64: int,
    TypeKind.FLOAT32: float,
    TypeKind.FLOAT64: float,
    TypeKind.DECIMAL: parse_decimal,
    TypeKind.BOOLEAN: parse_boolean,
    TypeKind.STRING: str,
    TypeKind.BYTES: parse_bytea,
    TypeKind.DATE: parse_date,
    TypeKind.TIME: parse_time,
    TypeKind.TIMESTAMP: parse_timestamp,
}


def convert_text(kind: TypeKind, text: str) -> Any:
    """
    Convert the text of a literal into a Python scalar of the given kind.

    Raises:
        ValueError: If the text is not a valid literal for ``kind``
    """
    return _CONVERTERS[kind](text)
