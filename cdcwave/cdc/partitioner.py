"""
Table-Set Partitioner - split tracked tables across workers

Every worker receives the full base settings plus its own slice of the
table list, so each worker configuration is self-contained and can be
restarted on its own. The split is a pure function of its inputs: the same
tables in the same order always land on the same workers.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, TypeVar, Union

import sqlglot
from sqlglot import exp

from cdcwave.exceptions import ConfigurationError

DEFAULT_TABLES_KEY = "change.tracking.tables"
TABLE_DELIMITER = ","

T = TypeVar("T")


@dataclass(frozen=True, order=True)
class TableRef:
    """Schema-qualified table name."""
    schema_name: str
    table_name: str

    @classmethod
    def parse(cls, name: str, dialect: str = "tsql", default_schema: str = "dbo") -> "TableRef":
        """
        Parse ``schema.table`` (identifiers may be quoted in the dialect's style).

        Examples:
            >>> TableRef.parse("dbo.users")
            TableRef(schema_name='dbo', table_name='users')
            >>> TableRef.parse("[sales].[Order Lines]")
            TableRef(schema_name='sales', table_name='Order Lines')
        """
        if not name or not name.strip():
            raise ConfigurationError("Table name cannot be empty")
        try:
            table = exp.to_table(name.strip(), dialect=dialect)
        except (sqlglot.errors.ParseError, sqlglot.errors.TokenError) as e:
            raise ConfigurationError(f"Invalid table name {name!r}: {e}") from e
        if table.catalog:
            raise ConfigurationError(f"Table name {name!r} must not include a database")
        return cls(schema_name=table.db or default_schema, table_name=table.name)

    def sql(self, dialect: str = "tsql") -> str:
        """Render as a quoted identifier for ``dialect``."""
        return exp.table_(self.table_name, db=self.schema_name, quoted=True).sql(dialect=dialect)

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


def chunk_tables(tables: Iterable[T], worker_count: int) -> List[List[T]]:
    """
    Split ``tables`` into at most ``worker_count`` contiguous, balanced chunks.

    Input order is preserved and not re-sorted; callers supply a stable
    order. Chunk sizes differ by at most one, larger chunks first, and empty
    chunks are dropped.

    Raises:
        ConfigurationError: If worker_count <= 0, tables is empty or a table
            appears twice
    """
    if worker_count <= 0:
        raise ConfigurationError(f"worker_count must be greater than 0, got {worker_count}")
    items = list(tables)
    if not items:
        raise ConfigurationError("At least one table is required")
    if len(set(items)) != len(items):
        raise ConfigurationError("Table list contains duplicates")

    base, extra = divmod(len(items), worker_count)
    chunks = []
    start = 0
    for index in range(worker_count):
        size = base + (1 if index < extra else 0)
        if size == 0:
            continue
        chunks.append(items[start:start + size])
        start += size
    return chunks


def partition_tables(
    tables: Sequence[Union[TableRef, str]],
    worker_count: int,
    base_settings: Mapping[str, str] = None,
    key: str = DEFAULT_TABLES_KEY,
) -> List[Dict[str, str]]:
    """
    Produce one settings map per worker.

    Args:
        tables: Tables to distribute, in a stable order
        worker_count: Maximum number of workers
        base_settings: Settings shared by every worker
        key: Settings key that receives the worker's delimited table list

    Returns:
        List of settings dictionaries, at most ``worker_count`` long

    Example:
        >>> partition_tables(["a", "b", "c", "d", "e"], 2)
        [{'change.tracking.tables': 'a,b,c'}, {'change.tracking.tables': 'd,e'}]
    """
    settings = []
    for chunk in chunk_tables(tables, worker_count):
        worker_settings = dict(base_settings or {})
        worker_settings[key] = TABLE_DELIMITER.join(str(t) for t in chunk)
        settings.append(worker_settings)
    return settings
