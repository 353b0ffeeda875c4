"""
Tests for Arrow export
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pyarrow as pa
import pytest

from cdcwave.cdc.arrow import changes_to_arrow
from cdcwave.cdc.builder import PostgresChangeBuilder, RawRecord
from cdcwave.exceptions import SchemaError


@pytest.fixture
def builder():
    return PostgresChangeBuilder("inventory", "cdc_slot", clock=lambda: 1500000000000)


def build_all(builder, lines):
    return [builder.build(RawRecord(f"0/{i + 1:X}", 1, line)) for i, line in enumerate(lines)]


class TestChangesToArrow:
    """Tests for change batch conversion."""

    def test_basic_table(self, builder):
        changes = build_all(builder, [
            "table public.accounts: INSERT: id[integer]:1 name[text]:'a' balance[numeric]:100.00",
            "table public.accounts: INSERT: id[integer]:2 name[text]:null balance[numeric]:7.5",
            "table public.accounts: DELETE: id[integer]:1",
        ])
        table = changes_to_arrow(changes)

        assert table.num_rows == 3
        assert table.column_names == [
            "database_name", "schema_name", "table_name", "change_type", "timestamp",
            "id", "name", "balance",
        ]
        assert table.schema.field("id").type == pa.int32()
        assert table.schema.field("balance").type == pa.decimal128(5, 2)
        assert table.column("change_type").to_pylist() == ["INSERT", "INSERT", "DELETE"]
        assert table.column("id").to_pylist() == [1, 2, 1]
        assert table.column("name").to_pylist() == ["a", None, None]
        assert table.column("balance").to_pylist() == [Decimal("100.00"), Decimal("7.50"), None]

    def test_empty(self):
        table = changes_to_arrow([])

        assert table.num_rows == 0
        assert table.column_names == ["database_name", "schema_name", "table_name", "change_type", "timestamp"]

    def test_timezone_aware_timestamps(self, builder):
        changes = build_all(builder, [
            "table public.events: INSERT: id[integer]:1 at[timestamp with time zone]:'2024-01-01 12:00:00+02'",
        ])
        table = changes_to_arrow(changes)

        assert table.schema.field("at").type == pa.timestamp("us", tz="UTC")
        value = table.column("at").to_pylist()[0]
        assert value == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_naive_timestamps(self, builder):
        changes = build_all(builder, [
            "table public.events: INSERT: id[integer]:1 at[timestamp without time zone]:'2024-01-01 12:00:00.5'",
        ])
        table = changes_to_arrow(changes)

        assert table.schema.field("at").type == pa.timestamp("us")
        assert table.column("at").to_pylist()[0] == datetime(2024, 1, 1, 12, 0, 0, 500000)

    def test_mixed_timestamps_rejected(self, builder):
        changes = build_all(builder, [
            "table public.events: INSERT: id[integer]:1 at[timestamptz]:'2024-01-01 12:00:00+00'",
            "table public.events: INSERT: id[integer]:2 at[timestamp]:'2024-01-01 12:00:00'",
        ])

        with pytest.raises(SchemaError):
            changes_to_arrow(changes)

    def test_infinite_timestamps_in_aware_column(self, builder):
        changes = build_all(builder, [
            "table public.events: INSERT: id[integer]:1 at[timestamp with time zone]:'infinity'",
            "table public.events: INSERT: id[integer]:2 at[timestamp with time zone]:'2024-01-01 12:00:00+00'",
            "table public.events: INSERT: id[integer]:3 at[timestamp with time zone]:'-infinity'",
        ])
        table = changes_to_arrow(changes)

        assert table.schema.field("at").type == pa.timestamp("us", tz="UTC")
        assert table.column("at").to_pylist() == [
            datetime.max.replace(tzinfo=timezone.utc),
            datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
            datetime.min.replace(tzinfo=timezone.utc),
        ]

    def test_infinite_timestamps_in_naive_column(self, builder):
        changes = build_all(builder, [
            "table public.events: INSERT: id[integer]:1 at[timestamp without time zone]:'infinity'",
            "table public.events: INSERT: id[integer]:2 at[timestamp without time zone]:'2024-01-01 12:00:00'",
        ])
        table = changes_to_arrow(changes)

        assert table.schema.field("at").type == pa.timestamp("us")
        assert table.column("at").to_pylist()[0] == datetime.max

    def test_several_tables_rejected(self, builder):
        changes = build_all(builder, [
            "table public.a: INSERT: id[integer]:1",
            "table public.b: INSERT: id[integer]:1",
        ])

        with pytest.raises(SchemaError):
            changes_to_arrow(changes)

    def test_type_conflict_rejected(self, builder):
        changes = build_all(builder, [
            "table public.a: INSERT: id[integer]:1",
            "table public.a: INSERT: id[bigint]:2",
        ])

        with pytest.raises(SchemaError):
            changes_to_arrow(changes)

    def test_metadata_collision_rejected(self, builder):
        changes = build_all(builder, ["table public.a: INSERT: table_name[text]:'x'"])

        with pytest.raises(SchemaError):
            changes_to_arrow(changes)

    def test_non_finite_decimal_rejected(self, builder):
        changes = build_all(builder, ["table public.a: INSERT: n[numeric]:NaN"])

        with pytest.raises(SchemaError):
            changes_to_arrow(changes)

    def test_bytes_and_booleans(self, builder):
        changes = build_all(builder, [
            r"table public.a: INSERT: id[integer]:1 flag[boolean]:true payload[bytea]:'\x0aff'",
        ])
        table = changes_to_arrow(changes)

        assert table.column("flag").to_pylist() == [True]
        assert table.column("payload").to_pylist() == [b"\x0a\xff"]


class TestTimestampOffsets:
    """Tests for offset handling in exported timestamps."""

    def test_fractional_offset(self, builder):
        changes = build_all(builder, [
            "table public.e: INSERT: at[timestamptz]:'2024-06-01 00:00:00+05:30'",
        ])
        value = changes_to_arrow(changes).column("at").to_pylist()[0]

        assert value == datetime(2024, 6, 1, tzinfo=timezone(timedelta(hours=5, minutes=30))).astimezone(timezone.utc)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
