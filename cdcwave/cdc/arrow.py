"""
Arrow export - change batches as Arrow tables

One row per change: provenance columns followed by one typed column per
captured column (keys first, in first-seen order across the batch).
"""

from __future__ import annotations
from datetime import datetime, timezone
from decimal import Context, Decimal
from typing import Any, Dict, List, Optional, Sequence

import pyarrow as pa

from cdcwave.cdc.models import Change
from cdcwave.cdc.types import ARROW_TYPE_MAP, TypeKind
from cdcwave.exceptions import SchemaError

MAX_DECIMAL_PRECISION = 38

_UNBOUNDED = (datetime.min, datetime.max)

METADATA_FIELDS = [
    ("database_name", pa.string()),
    ("schema_name", pa.string()),
    ("table_name", pa.string()),
    ("change_type", pa.string()),
    ("timestamp", pa.timestamp("ms")),
]


def _column_value(change: Change, name: str) -> Any:
    for column in change.value_columns:
        if column.column_name == name:
            return column.value
    for column in change.key_columns:
        if column.column_name == name:
            return column.value
    return None


def _decimal_array(values: List[Any], name: str) -> pa.Array:
    present = [v for v in values if v is not None]
    if not present:
        return pa.nulls(len(values), type=pa.decimal128(1, 0))

    scale, int_digits = 0, 1
    for value in present:
        if not value.is_finite():
            raise SchemaError(f"Column {name!r} holds {value}, which Arrow decimals cannot represent")
        sign, digits, exponent = value.as_tuple()
        scale = max(scale, -exponent)
        int_digits = max(int_digits, len(digits) + exponent)
    precision = int_digits + scale
    if precision > MAX_DECIMAL_PRECISION:
        raise SchemaError(f"Column {name!r} needs precision {precision}, above {MAX_DECIMAL_PRECISION}")

    context = Context(prec=MAX_DECIMAL_PRECISION)
    quantum = Decimal(1).scaleb(-scale)
    scaled = [None if v is None else context.quantize(v, quantum) for v in values]
    return pa.array(scaled, type=pa.decimal128(precision, scale))


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value in _UNBOUNDED:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _timestamp_array(values: List[Any], name: str) -> pa.Array:
    # infinity/-infinity carry no zone and fit either kind of column
    present = [v for v in values if v is not None and v not in _UNBOUNDED]
    aware = {v.tzinfo is not None for v in present}
    if len(aware) > 1:
        raise SchemaError(f"Column {name!r} mixes timestamps with and without time zone")
    if aware == {True}:
        return pa.array([_to_utc(v) for v in values], type=pa.timestamp("us", tz="UTC"))
    return pa.array(values, type=ARROW_TYPE_MAP[TypeKind.TIMESTAMP])


def _to_array(values: List[Any], kind: TypeKind, name: str) -> pa.Array:
    try:
        if kind == TypeKind.DECIMAL:
            return _decimal_array(values, name)
        if kind == TypeKind.TIMESTAMP:
            return _timestamp_array(values, name)
        return pa.array(values, type=ARROW_TYPE_MAP[kind])
    except (pa.ArrowInvalid, pa.ArrowTypeError, OverflowError) as e:
        raise SchemaError(f"Cannot convert column {name!r} to Arrow {kind.value}: {e}") from e


def changes_to_arrow(changes: Sequence[Change]) -> pa.Table:
    """
    Convert changes of a single table to an Arrow table.

    Raises:
        SchemaError: If the changes span several tables, a column changes
            type within the batch, or values do not fit their Arrow type
    """
    changes = list(changes)
    data: Dict[str, pa.Array] = {}
    if not changes:
        for name, arrow_type in METADATA_FIELDS:
            data[name] = pa.array([], type=arrow_type)
        return pa.table(data)

    tables = {(c.database_name, c.qualified_name) for c in changes}
    if len(tables) > 1:
        raise SchemaError(f"Cannot export changes from several tables in one batch: {sorted(tables)}")

    kinds: Dict[str, TypeKind] = {}
    for change in changes:
        for column in change.key_columns + change.value_columns:
            kind = column.logical_type.kind
            existing = kinds.setdefault(column.column_name, kind)
            if existing != kind:
                raise SchemaError(
                    f"Column {column.column_name!r} is {existing.value} and {kind.value} in the same batch"
                )

    data["database_name"] = pa.array([c.database_name for c in changes], type=pa.string())
    data["schema_name"] = pa.array([c.schema_name for c in changes], type=pa.string())
    data["table_name"] = pa.array([c.table_name for c in changes], type=pa.string())
    data["change_type"] = pa.array([c.change_type.value for c in changes], type=pa.string())
    data["timestamp"] = pa.array([c.timestamp for c in changes], type=pa.timestamp("ms"))

    for name, kind in kinds.items():
        if name in data:
            raise SchemaError(f"Column {name!r} collides with a change metadata column")
        data[name] = _to_array([_column_value(c, name) for c in changes], kind, name)
    return pa.table(data)
