"""
CDC Data Models - Change events and column values
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from cdcwave.cdc.types import LogicalType
from cdcwave.exceptions import SchemaError


class ChangeType(str, Enum):
    """Type of row mutation."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SourceDialect(str, Enum):
    """Which capture mechanism produced a change."""
    POSTGRES = "postgres"  # logical decoding
    MSSQL = "mssql"        # change tracking


@dataclass(frozen=True, eq=False)
class ColumnValue:
    """
    A single captured column.

    Two values are equal when column name, type kind, nullability and value
    all match. Values are compared with ``==``, so ``Decimal("1.0")`` equals
    ``Decimal("1.00")``.
    """
    column_name: str
    logical_type: LogicalType
    value: Any = None

    def _identity(self) -> Tuple:
        return (
            self.column_name,
            self.logical_type.kind,
            self.logical_type.nullable,
            self.value,
        )

    def __eq__(self, other):
        if not isinstance(other, ColumnValue):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self):
        try:
            return hash(self._identity())
        except TypeError:
            # unhashable payloads still hash consistently with __eq__
            return hash(self._identity()[:3])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column_name": self.column_name,
            "type": self.logical_type.kind.value,
            "nullable": self.logical_type.nullable,
            "value": self.value,
        }


def _check_columns(columns: Iterable[ColumnValue], label: str) -> None:
    seen = set()
    for column in columns:
        if not column.column_name:
            raise SchemaError(f"{label} column name cannot be empty")
        if column.column_name in seen:
            raise SchemaError(f"Duplicate {label} column: {column.column_name}")
        seen.add(column.column_name)


@dataclass(frozen=True)
class Change:
    """
    One captured row mutation, ready for delivery.

    ``source_partition`` identifies the stream the change came from and
    ``source_offset`` its position in that stream; together they are enough
    to resume reading right after this change. ``timestamp`` is the capture
    time in milliseconds since the epoch.
    """
    database_name: str
    schema_name: str
    table_name: str
    change_type: ChangeType
    key_columns: Tuple[ColumnValue, ...] = ()
    value_columns: Tuple[ColumnValue, ...] = ()
    source_partition: Mapping[str, Any] = field(default_factory=dict)
    source_offset: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)
    timestamp: int = 0
    dialect: SourceDialect = SourceDialect.POSTGRES

    def __post_init__(self):
        # Freeze collections handed in as lists/dicts
        object.__setattr__(self, "key_columns", tuple(self.key_columns))
        object.__setattr__(self, "value_columns", tuple(self.value_columns))
        for name in ("source_partition", "source_offset", "metadata"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

        if not self.table_name:
            raise SchemaError("Change requires a table name")
        _check_columns(self.key_columns, "key")
        _check_columns(self.value_columns, "value")
        if self.change_type != ChangeType.DELETE and not self.value_columns:
            raise SchemaError(f"{self.change_type.value} change on {self.qualified_name} has no value columns")

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name

    def key(self) -> Dict[str, Any]:
        """Key column values by name."""
        return {c.column_name: c.value for c in self.key_columns}

    def values(self) -> Dict[str, Any]:
        """Value column values by name."""
        return {c.column_name: c.value for c in self.value_columns}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "database_name": self.database_name,
            "schema_name": self.schema_name,
            "table_name": self.table_name,
            "change_type": self.change_type.value,
            "key_columns": [c.to_dict() for c in self.key_columns],
            "value_columns": [c.to_dict() for c in self.value_columns],
            "source_partition": dict(self.source_partition),
            "source_offset": dict(self.source_offset),
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
            "dialect": self.dialect.value,
        }

    def __repr__(self) -> str:
        return (
            f"<Change {self.change_type.value} {self.qualified_name} "
            f"offset={dict(self.source_offset)}>"
        )


@dataclass
class ChangeDraft:
    """
    Mutable change under construction.

    The parser fills in table identity, type and columns; a builder then
    calls ``finalize`` exactly once to stamp provenance.
    """
    schema_name: str = ""
    table_name: str = ""
    change_type: Optional[ChangeType] = None
    key_columns: List[ColumnValue] = field(default_factory=list)
    value_columns: List[ColumnValue] = field(default_factory=list)

    def finalize(
        self,
        database_name: str,
        source_partition: Mapping[str, Any],
        source_offset: Mapping[str, Any],
        metadata: Mapping[str, str],
        timestamp: int,
        dialect: SourceDialect,
    ) -> Change:
        if self.change_type is None:
            raise SchemaError("Change draft has no change type")
        return Change(
            database_name=database_name,
            schema_name=self.schema_name,
            table_name=self.table_name,
            change_type=self.change_type,
            key_columns=tuple(self.key_columns),
            value_columns=tuple(self.value_columns),
            source_partition=source_partition,
            source_offset=source_offset,
            metadata=metadata,
            timestamp=timestamp,
            dialect=dialect,
        )
