"""
Logical Decoding Parser - text change records to change drafts

Recognizes the line format written by PostgreSQL's ``test_decoding`` output
plugin::

    table public.accounts: INSERT: id[integer]:5 balance[numeric]:100.00
    table public.accounts: UPDATE: old-key: id[integer]:5 new-tuple: id[integer]:6 ...
    table public.accounts: DELETE: id[integer]:5

and a compact variant that drops the ``table`` prefix and the colons and
allows commas between columns::

    public.accounts INSERT id[int4]:5, balance[numeric]:100.00

Parsing is strict: the first token that does not fit the grammar raises
ParseError. Transaction markers, logical messages and TRUNCATE records carry
no row data and parse to None.
"""

from __future__ import annotations
import logging
import re
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from cdcwave.cdc.models import ChangeDraft, ChangeType, ColumnValue
from cdcwave.cdc.types import POSTGRES_TYPE_MAP, LogicalType, TypeKind, convert_text, lookup_type
from cdcwave.exceptions import ParseError

logger = logging.getLogger(__name__)

_CONTROL = re.compile(r"^(BEGIN|COMMIT)(\s|$)")
_MESSAGE = re.compile(r"^message:")
_COMMIT = re.compile(r"^COMMIT(\s|$)")
_BARE_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_SAFE_IDENT = re.compile(r"^[a-z_][a-z0-9_$]*$")
_OPERATION = re.compile(r"[A-Za-z]+")
_BAREWORD = re.compile(r"[^\s,]+")

_OPERATIONS = {
    "INSERT": ChangeType.INSERT,
    "UPDATE": ChangeType.UPDATE,
    "DELETE": ChangeType.DELETE,
}
_TRUNCATE = "TRUNCATE"

NULL = "null"
UNCHANGED_TOAST = "unchanged-toast-datum"
NO_TUPLE_DATA = "(no-tuple-data)"
OLD_KEY = "old-key:"
NEW_TUPLE = "new-tuple:"


class Dialect(str, Enum):
    """Line format of the logical decoding feed."""
    AUTO = "auto"
    TEST_DECODING = "test_decoding"
    COMPACT = "compact"


def is_control_record(data: str) -> bool:
    """True for transaction markers and logical messages (no row data)."""
    if data is None:
        return False
    text = data.lstrip()
    return bool(_CONTROL.match(text) or _MESSAGE.match(text))


def is_commit_record(data: str) -> bool:
    """True for the COMMIT marker closing a transaction."""
    return data is not None and bool(_COMMIT.match(data.lstrip()))


def quote_literal(value: str) -> str:
    """Quote a string the way the server does: wrap in ' and double any '."""
    return "'" + value.replace("'", "''") + "'"


def quote_ident(name: str) -> str:
    """Quote an identifier only when it would not survive as a bare word."""
    if _SAFE_IDENT.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


class _Scanner:
    """Cursor over a single record."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str, position: int = None) -> ParseError:
        return ParseError(message, record=self.text, position=self.pos if position is None else position)

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos:self.pos + 1]

    def startswith(self, literal: str) -> bool:
        return self.text.startswith(literal, self.pos)

    def advance(self, count: int = 1):
        self.pos += count

    def skip_whitespace(self) -> bool:
        start = self.pos
        while not self.at_end() and self.text[self.pos].isspace():
            self.pos += 1
        return self.pos > start

    def require_whitespace(self):
        if not self.skip_whitespace():
            raise self.error("Expected whitespace")

    def expect(self, literal: str):
        if not self.startswith(literal):
            raise self.error(f"Expected {literal!r}")
        self.pos += len(literal)

    def match(self, pattern: re.Pattern) -> Optional[str]:
        m = pattern.match(self.text, self.pos)
        if not m:
            return None
        self.pos = m.end()
        return m.group(0)

    def read_quoted(self, quote: str) -> str:
        """Read a quoted token, un-doubling embedded quote characters."""
        start = self.pos
        self.expect(quote)
        parts = []
        while True:
            end = self.text.find(quote, self.pos)
            if end < 0:
                raise self.error("Unterminated quoted token", position=start)
            parts.append(self.text[self.pos:end])
            self.pos = end + 1
            if self.startswith(quote):
                parts.append(quote)
                self.pos += 1
            else:
                return "".join(parts)

    def read_identifier(self) -> str:
        if self.peek() == '"':
            name = self.read_quoted('"')
            if not name:
                raise self.error("Empty quoted identifier")
            return name
        name = self.match(_BARE_IDENT)
        if name is None:
            raise self.error("Expected identifier")
        return name

    def read_type_hint(self) -> str:
        """Read ``[type]``, allowing nested brackets such as ``integer[]``."""
        start = self.pos
        self.expect("[")
        depth = 1
        while not self.at_end():
            char = self.text[self.pos]
            self.pos += 1
            if char == "[":
                depth += 1
            elif char == "]":
                depth -= 1
                if depth == 0:
                    hint = self.text[start + 1:self.pos - 1]
                    if not hint.strip():
                        raise self.error("Empty type hint", position=start)
                    return hint
        raise self.error("Unterminated type hint", position=start)


class LogicalDecodingParser:
    """
    Parses one logical decoding record into a ChangeDraft.

    The parser keeps no state between calls; a fresh scanner and draft are
    created for every record, so one instance can be shared freely.

    Args:
        dialect: "auto" (detect from the ``table`` prefix), "test_decoding"
            or "compact"
        primary_keys: Optional mapping of ``schema.table`` (or bare table
            name) to key column names. Used to fill key columns for INSERT
            and UPDATE records and to trim ``old-key`` sections written under
            REPLICA IDENTITY FULL.
        type_map: Type hint lookup table, defaults to POSTGRES_TYPE_MAP
    """

    def __init__(
        self,
        dialect: str = Dialect.AUTO,
        primary_keys: Mapping[str, Sequence[str]] = None,
        type_map: Dict[str, TypeKind] = None,
    ):
        self._dialect = Dialect(dialect)
        self._primary_keys = {k: tuple(v) for k, v in (primary_keys or {}).items()}
        self._type_map = type_map or POSTGRES_TYPE_MAP

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def parse(self, data: str) -> Optional[ChangeDraft]:
        """
        Parse a raw record.

        Returns:
            A ChangeDraft, or None when the record carries no row change

        Raises:
            ParseError: If the record does not match the grammar
        """
        if data is None:
            raise ParseError("Change record is None")
        text = data.strip()
        if not text:
            raise ParseError("Empty change record", record=data)
        if is_control_record(text):
            return None

        dialect = self._resolve_dialect(text)
        scanner = _Scanner(text)
        schema_name, table_name, operation = self._parse_header(scanner, dialect)

        if operation == _TRUNCATE:
            logger.debug("Ignoring TRUNCATE of %s.%s", schema_name, table_name)
            return None

        draft = ChangeDraft(
            schema_name=schema_name,
            table_name=table_name,
            change_type=_OPERATIONS[operation],
        )
        self._parse_column_section(scanner, draft, dialect)
        self._apply_primary_keys(draft, scanner)
        self._validate(draft, scanner)
        return draft

    def _resolve_dialect(self, text: str) -> Dialect:
        if self._dialect != Dialect.AUTO:
            return self._dialect
        if text.startswith("table "):
            return Dialect.TEST_DECODING
        return Dialect.COMPACT

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def _parse_header(self, scanner: _Scanner, dialect: Dialect) -> Tuple[str, str, str]:
        if dialect == Dialect.TEST_DECODING:
            scanner.expect("table")
            scanner.require_whitespace()
            schema_name, table_name = self._parse_qualified_name(scanner)
            scanner.expect(":")
            scanner.require_whitespace()
            operation = self._parse_operation(scanner)
            scanner.expect(":")
        else:
            schema_name, table_name = self._parse_qualified_name(scanner)
            scanner.require_whitespace()
            operation = self._parse_operation(scanner)
        return schema_name, table_name, operation

    def _parse_qualified_name(self, scanner: _Scanner) -> Tuple[str, str]:
        schema_name = scanner.read_identifier()
        scanner.expect(".")
        table_name = scanner.read_identifier()
        return schema_name, table_name

    def _parse_operation(self, scanner: _Scanner) -> str:
        start = scanner.pos
        word = scanner.match(_OPERATION)
        if word is None:
            raise scanner.error("Expected operation")
        if word not in _OPERATIONS and word != _TRUNCATE:
            raise scanner.error(f"Unknown operation {word!r}", position=start)
        return word

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def _parse_column_section(self, scanner: _Scanner, draft: ChangeDraft, dialect: Dialect):
        scanner.skip_whitespace()
        if scanner.at_end():
            return
        if scanner.startswith(NO_TUPLE_DATA):
            scanner.advance(len(NO_TUPLE_DATA))
            scanner.skip_whitespace()
            if not scanner.at_end():
                raise scanner.error(f"Unexpected data after {NO_TUPLE_DATA}")
            return

        allow_comma = dialect == Dialect.COMPACT
        old_key: List[ColumnValue] = []
        if scanner.startswith(OLD_KEY):
            scanner.advance(len(OLD_KEY))
            scanner.require_whitespace()
            old_key = self._parse_column_list(scanner, allow_comma, stop=NEW_TUPLE)
            if not old_key:
                raise scanner.error(f"Expected columns after {OLD_KEY!r}")
            scanner.expect(NEW_TUPLE)
            scanner.require_whitespace()
        elif scanner.startswith(NEW_TUPLE):
            scanner.advance(len(NEW_TUPLE))
            scanner.require_whitespace()

        columns = self._parse_column_list(scanner, allow_comma)

        if draft.change_type == ChangeType.DELETE:
            draft.key_columns = [self._as_key(c, scanner) for c in old_key + columns]
        else:
            draft.key_columns = [self._as_key(c, scanner) for c in old_key]
            draft.value_columns = columns

    def _parse_column_list(self, scanner: _Scanner, allow_comma: bool, stop: str = None) -> List[ColumnValue]:
        columns = []
        scanner.skip_whitespace()
        while not scanner.at_end() and not (stop and scanner.startswith(stop)):
            column = self._parse_column(scanner)
            if column is not None:
                columns.append(column)
            if scanner.at_end():
                break
            if scanner.peek() == ",":
                if not allow_comma:
                    raise scanner.error("Unexpected ','")
                scanner.advance()
                scanner.skip_whitespace()
                if scanner.at_end() or (stop and scanner.startswith(stop)):
                    raise scanner.error("Expected column after ','")
            elif not scanner.skip_whitespace():
                raise scanner.error("Expected delimiter between columns")
        return columns

    def _parse_column(self, scanner: _Scanner) -> Optional[ColumnValue]:
        name = scanner.read_identifier()
        hint_position = scanner.pos
        hint = scanner.read_type_hint()
        scanner.expect(":")

        kind = lookup_type(hint, self._type_map)
        if kind is None:
            raise scanner.error(f"Unsupported type hint [{hint}] for column {name!r}", position=hint_position)

        value_position = scanner.pos
        if scanner.peek() == "'":
            quoted = True
            text = scanner.read_quoted("'")
        else:
            quoted = False
            text = scanner.match(_BAREWORD)
            if text is None:
                raise scanner.error(f"Expected value for column {name!r}")

        logical_type = LogicalType(kind, nullable=True, source_type=hint)
        if not quoted and text == NULL:
            return ColumnValue(name, logical_type, None)
        if not quoted and text == UNCHANGED_TOAST:
            logger.debug("Column %s unchanged (TOAST), omitted", name)
            return None
        if quoted == kind.is_unquoted:
            expected = "unquoted" if kind.is_unquoted else "quoted"
            raise scanner.error(f"Expected {expected} {kind.value} literal for column {name!r}", position=value_position)

        try:
            value = convert_text(kind, text)
        except (ValueError, OverflowError) as e:
            raise ParseError(
                f"Invalid {kind.value} literal for column {name!r} ({e})",
                record=scanner.text,
                position=value_position,
            ) from e
        return ColumnValue(name, logical_type, value)

    def _as_key(self, column: ColumnValue, scanner: _Scanner) -> ColumnValue:
        if column.value is None:
            raise scanner.error(f"Key column {column.column_name!r} is null")
        return ColumnValue(column.column_name, column.logical_type.as_key(), column.value)

    def _key_names(self, draft: ChangeDraft) -> Optional[Tuple[str, ...]]:
        qualified = f"{draft.schema_name}.{draft.table_name}"
        if qualified in self._primary_keys:
            return self._primary_keys[qualified]
        return self._primary_keys.get(draft.table_name)

    def _apply_primary_keys(self, draft: ChangeDraft, scanner: _Scanner):
        names = self._key_names(draft)
        if not names:
            return
        if draft.key_columns:
            # old-key under REPLICA IDENTITY FULL holds the whole old row
            draft.key_columns = [c for c in draft.key_columns if c.column_name in names]
            return
        by_name = {c.column_name: c for c in draft.value_columns}
        keys = []
        for name in names:
            column = by_name.get(name)
            if column is None:
                continue
            if column.value is None:
                raise scanner.error(f"Key column {name!r} is null")
            keys.append(ColumnValue(name, column.logical_type.as_key(), column.value))
        draft.key_columns = keys

    def _validate(self, draft: ChangeDraft, scanner: _Scanner):
        for label, columns in (("key", draft.key_columns), ("value", draft.value_columns)):
            seen = set()
            for column in columns:
                if column.column_name in seen:
                    raise scanner.error(f"Duplicate {label} column {column.column_name!r}")
                seen.add(column.column_name)
        if draft.change_type != ChangeType.DELETE and not draft.value_columns:
            raise scanner.error(f"{draft.change_type.value} record has no column data")
