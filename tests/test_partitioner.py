"""
Tests for the table-set partitioner
"""

import pytest

from cdcwave.cdc.partitioner import TableRef, chunk_tables, partition_tables
from cdcwave.exceptions import ConfigurationError


class TestChunkTables:
    """Tests for splitting tables into worker chunks."""

    def test_five_tables_two_workers(self):
        assert chunk_tables(["a", "b", "c", "d", "e"], 2) == [["a", "b", "c"], ["d", "e"]]

    def test_input_order_preserved(self):
        assert chunk_tables(["c", "a", "b"], 2) == [["c", "a"], ["b"]]

    def test_fewer_tables_than_workers(self):
        chunks = chunk_tables(["a", "b", "c"], 5)

        assert chunks == [["a"], ["b"], ["c"]]

    def test_single_worker(self):
        assert chunk_tables(["a", "b"], 1) == [["a", "b"]]

    def test_coverage_and_balance(self):
        for table_count in range(1, 30):
            tables = [f"t{i:02d}" for i in range(table_count)]
            for worker_count in range(1, 12):
                chunks = chunk_tables(tables, worker_count)
                flattened = [t for chunk in chunks for t in chunk]
                sizes = [len(chunk) for chunk in chunks]

                assert flattened == tables
                assert len(chunks) == min(worker_count, table_count)
                assert min(sizes) >= 1
                assert max(sizes) - min(sizes) <= 1

    @pytest.mark.parametrize("worker_count", [0, -1])
    def test_worker_count_must_be_positive(self, worker_count):
        with pytest.raises(ConfigurationError):
            chunk_tables(["a"], worker_count)

    def test_empty_tables_rejected(self):
        with pytest.raises(ConfigurationError):
            chunk_tables([], 2)

    def test_duplicates_rejected(self):
        with pytest.raises(ConfigurationError):
            chunk_tables(["a", "b", "a"], 2)


class TestPartitionTables:
    """Tests for per-worker settings."""

    def test_settings_per_worker(self):
        base = {"initial.database": "inventory"}
        settings = partition_tables(["a", "b", "c", "d", "e"], 2, base_settings=base)

        assert settings == [
            {"initial.database": "inventory", "change.tracking.tables": "a,b,c"},
            {"initial.database": "inventory", "change.tracking.tables": "d,e"},
        ]
        assert base == {"initial.database": "inventory"}

    def test_each_worker_gets_its_own_copy(self):
        settings = partition_tables(["a", "b"], 2, base_settings={"x": "1"})
        settings[0]["x"] = "2"

        assert settings[1]["x"] == "1"

    def test_deterministic(self):
        tables = [TableRef("dbo", f"t{i}") for i in range(7)]

        assert partition_tables(tables, 3) == partition_tables(tables, 3)

    def test_custom_key(self):
        settings = partition_tables([TableRef("dbo", "a"), TableRef("dbo", "b")], 1, key="tables")

        assert settings == [{"tables": "dbo.a,dbo.b"}]

    def test_invalid_worker_count(self):
        with pytest.raises(ConfigurationError):
            partition_tables(["a"], 0)


class TestTableRef:
    """Tests for table name parsing."""

    def test_parse_qualified(self):
        assert TableRef.parse("dbo.users") == TableRef("dbo", "users")

    def test_parse_default_schema(self):
        assert TableRef.parse("users") == TableRef("dbo", "users")

    def test_parse_bracketed(self):
        assert TableRef.parse("[sales].[Order Lines]") == TableRef("sales", "Order Lines")

    def test_parse_strips_whitespace(self):
        assert TableRef.parse("  dbo.users ") == TableRef("dbo", "users")

    @pytest.mark.parametrize("name", ["", "   ", "inventory.dbo.users"])
    def test_parse_invalid(self, name):
        with pytest.raises(ConfigurationError):
            TableRef.parse(name)

    def test_str(self):
        assert str(TableRef("dbo", "users")) == "dbo.users"

    def test_sql_quotes_identifiers(self):
        sql = TableRef("sales", "Order Lines").sql()

        assert "Order Lines" in sql
        assert "sales" in sql
        assert sql != "sales.Order Lines"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
