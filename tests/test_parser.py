"""
Tests for the logical decoding parser
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from cdcwave.cdc.models import ChangeType, ColumnValue
from cdcwave.cdc.parser import (
    Dialect,
    LogicalDecodingParser,
    is_commit_record,
    is_control_record,
    quote_ident,
    quote_literal,
)
from cdcwave.cdc.types import LogicalType, TypeKind
from cdcwave.exceptions import ParseError


def value(name, kind, v, nullable=True):
    return ColumnValue(name, LogicalType(kind, nullable=nullable), v)


class TestCompactDialect:
    """Tests for the ``schema.table OP columns`` form."""

    def test_insert_with_commas(self):
        parser = LogicalDecodingParser()
        draft = parser.parse("public.accounts INSERT id[int4]:5, balance[numeric]:100.00")

        assert draft.schema_name == "public"
        assert draft.table_name == "accounts"
        assert draft.change_type == ChangeType.INSERT
        assert draft.value_columns == [
            value("id", TypeKind.INT32, 5),
            value("balance", TypeKind.DECIMAL, Decimal("100.00")),
        ]
        assert draft.key_columns == []

    def test_insert_with_spaces(self):
        parser = LogicalDecodingParser()
        draft = parser.parse("public.accounts INSERT id[int4]:5 balance[numeric]:100.00")

        assert [c.column_name for c in draft.value_columns] == ["id", "balance"]

    def test_trailing_comma_rejected(self):
        with pytest.raises(ParseError):
            LogicalDecodingParser().parse("public.accounts INSERT id[int4]:5,")

    def test_schema_required(self):
        with pytest.raises(ParseError):
            LogicalDecodingParser().parse("accounts INSERT id[int4]:5")

    def test_explicit_dialect_does_not_detect(self):
        parser = LogicalDecodingParser(dialect="test_decoding")
        assert parser.dialect == Dialect.TEST_DECODING

        with pytest.raises(ParseError):
            parser.parse("public.accounts INSERT id[int4]:5")


class TestTestDecodingDialect:
    """Tests for records written by the test_decoding plugin."""

    def setup_method(self):
        self.parser = LogicalDecodingParser()

    def test_insert(self):
        draft = self.parser.parse("table public.data: INSERT: id[integer]:1 data[text]:'hello'")

        assert draft.schema_name == "public"
        assert draft.table_name == "data"
        assert draft.change_type == ChangeType.INSERT
        assert draft.value_columns == [
            value("id", TypeKind.INT32, 1),
            value("data", TypeKind.STRING, "hello"),
        ]

    def test_escaped_quotes_and_punctuation(self):
        draft = self.parser.parse("table public.data: INSERT: id[integer]:1 data[text]:'it''s a: [test], ok'")

        assert draft.value_columns[1].value == "it's a: [test], ok"

    def test_null_value(self):
        draft = self.parser.parse("table public.data: INSERT: id[integer]:1 data[text]:null")

        assert draft.value_columns[1].value is None
        assert draft.value_columns[1].logical_type.nullable is True

    def test_quoted_null_is_a_string(self):
        draft = self.parser.parse("table public.data: INSERT: id[integer]:1 data[text]:'null'")

        assert draft.value_columns[1].value == "null"

    def test_update_without_old_key(self):
        draft = self.parser.parse("table public.data: UPDATE: id[integer]:1 data[text]:'x'")

        assert draft.change_type == ChangeType.UPDATE
        assert draft.key_columns == []
        assert len(draft.value_columns) == 2

    def test_update_with_old_key(self):
        draft = self.parser.parse(
            "table public.data: UPDATE: old-key: id[integer]:1 new-tuple: id[integer]:2 data[text]:'x'"
        )

        assert draft.key_columns == [value("id", TypeKind.INT32, 1, nullable=False)]
        assert draft.value_columns == [
            value("id", TypeKind.INT32, 2),
            value("data", TypeKind.STRING, "x"),
        ]

    def test_primary_keys_fill_key_columns(self):
        parser = LogicalDecodingParser(primary_keys={"public.data": ["id"]})
        draft = parser.parse("table public.data: INSERT: id[integer]:7 data[text]:'x'")

        assert draft.key_columns == [value("id", TypeKind.INT32, 7, nullable=False)]
        assert len(draft.value_columns) == 2

    def test_primary_keys_trim_full_old_row(self):
        parser = LogicalDecodingParser(primary_keys={"data": ["id"]})
        draft = parser.parse(
            "table public.data: UPDATE: old-key: id[integer]:1 data[text]:'old' "
            "new-tuple: id[integer]:1 data[text]:'new'"
        )

        assert [c.column_name for c in draft.key_columns] == ["id"]
        assert draft.value_columns[1].value == "new"

    def test_delete_is_key_only(self):
        draft = self.parser.parse("table public.data: DELETE: id[integer]:1")

        assert draft.change_type == ChangeType.DELETE
        assert draft.key_columns == [value("id", TypeKind.INT32, 1, nullable=False)]
        assert draft.value_columns == []

    def test_delete_without_tuple_data(self):
        draft = self.parser.parse("table public.data: DELETE: (no-tuple-data)")

        assert draft.change_type == ChangeType.DELETE
        assert draft.key_columns == []
        assert draft.value_columns == []

    def test_insert_without_tuple_data_rejected(self):
        with pytest.raises(ParseError):
            self.parser.parse("table public.data: INSERT: (no-tuple-data)")

    def test_null_key_rejected(self):
        with pytest.raises(ParseError):
            self.parser.parse("table public.data: DELETE: id[integer]:null")

    def test_unchanged_toast_column_omitted(self):
        draft = self.parser.parse(
            "table public.data: UPDATE: id[integer]:1 payload[text]:unchanged-toast-datum"
        )

        assert [c.column_name for c in draft.value_columns] == ["id"]

    def test_quoted_identifiers(self):
        draft = self.parser.parse(
            'table "Sales Data"."Order ""Lines""": INSERT: "Line No"[integer]:1'
        )

        assert draft.schema_name == "Sales Data"
        assert draft.table_name == 'Order "Lines"'
        assert draft.value_columns[0].column_name == "Line No"

    def test_truncate_is_not_a_change(self):
        assert self.parser.parse("table public.data: TRUNCATE: (no-flags)") is None

    def test_type_conversion(self):
        draft = self.parser.parse(
            "table public.t: INSERT: a[smallint]:1 b[bigint]:9000000000 c[real]:1.5 "
            "d[double precision]:-2.25 e[boolean]:true f[bytea]:'\\x0a0b' g[date]:'2017-01-02' "
            "h[timestamp without time zone]:'2017-01-02 03:04:05.12' "
            "i[timestamp with time zone]:'2017-01-02 03:04:05+02' "
            "j[time without time zone]:'10:11:12' k[character varying]:'v' l[numeric]:-0.005"
        )
        values = {c.column_name: c for c in draft.value_columns}

        assert values["a"].logical_type.kind == TypeKind.INT16
        assert values["b"].value == 9000000000
        assert values["b"].logical_type.kind == TypeKind.INT64
        assert values["c"].value == 1.5
        assert values["c"].logical_type.kind == TypeKind.FLOAT32
        assert values["d"].value == -2.25
        assert values["e"].value is True
        assert values["f"].value == b"\x0a\x0b"
        assert values["g"].value == date(2017, 1, 2)
        assert values["h"].value == datetime(2017, 1, 2, 3, 4, 5, 120000)
        assert values["i"].value == datetime(2017, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        assert values["j"].value == time(10, 11, 12)
        assert values["k"].value == "v"
        assert values["l"].value == Decimal("-0.005")

    def test_type_hint_recorded(self):
        draft = self.parser.parse("table public.t: INSERT: a[character varying]:'x'")

        assert draft.value_columns[0].logical_type.source_type == "character varying"

    def test_special_float_values(self):
        draft = self.parser.parse("table public.t: INSERT: a[double precision]:NaN b[real]:-Infinity")

        assert math.isnan(draft.value_columns[0].value)
        assert draft.value_columns[1].value == float("-inf")


class TestUnboundedDateTimeValues:
    """Date and time values the server accepts beyond ordinary calendar values."""

    def setup_method(self):
        self.parser = LogicalDecodingParser()

    def _value(self, hint, literal):
        draft = self.parser.parse(f"table public.t: INSERT: id[integer]:1 v[{hint}]:{literal}")
        return draft.value_columns[1].value

    @pytest.mark.parametrize("hint", ["timestamp without time zone", "timestamp with time zone"])
    def test_infinite_timestamps(self, hint):
        assert self._value(hint, "'infinity'") == datetime.max
        assert self._value(hint, "'-infinity'") == datetime.min

    def test_infinite_dates(self):
        assert self._value("date", "'infinity'") == date.max
        assert self._value("date", "'-infinity'") == date.min

    def test_end_of_day_time(self):
        assert self._value("time without time zone", "'24:00:00'") == time.max

    def test_past_end_of_day_rejected(self):
        with pytest.raises(ParseError):
            self._value("time without time zone", "'24:00:01'")

    @pytest.mark.parametrize("hint, literal", [
        ("timestamp without time zone", "'0044-03-15 12:00:00 BC'"),
        ("date", "'0044-03-15 BC'"),
    ])
    def test_bc_values_rejected(self, hint, literal):
        with pytest.raises(ParseError) as exc_info:
            self._value(hint, literal)
        assert "BC" in str(exc_info.value)


class TestControlRecords:
    """Records without row data parse to None."""

    @pytest.mark.parametrize("record", [
        "BEGIN 501",
        "COMMIT 501",
        "BEGIN",
        "COMMIT 501 (at 2017-05-04 12:00:00.000000+00)",
        "message: transactional: 1 prefix: audit, sz: 5 content:hello",
    ])
    def test_control_record_skipped(self, record):
        assert is_control_record(record)
        assert LogicalDecodingParser().parse(record) is None

    def test_table_named_like_a_marker_is_data(self):
        assert not is_control_record("public.begin INSERT id[int4]:1")
        assert not is_control_record("table public.begin: INSERT: id[integer]:1")

    def test_missing_data_is_not_a_control_record(self):
        assert not is_control_record(None)
        assert not is_commit_record(None)

    def test_commit_record(self):
        assert is_commit_record("COMMIT 501")
        assert is_commit_record("COMMIT")
        assert not is_commit_record("BEGIN 501")
        assert not is_commit_record("table public.commit: INSERT: id[integer]:1")


class TestMalformedRecords:
    """The first token that does not fit the grammar is fatal."""

    @pytest.mark.parametrize("record", [
        "",
        "   ",
        "garbage",
        "table public.data INSERT: id[integer]:1",
        "table public.data: UPSERT: id[integer]:1",
        "table public.data: INSERT id[integer]:1",
        "table public.data: INSERT: id[integer]:'1'",
        "table public.data: INSERT: data[text]:hello",
        "table public.data: INSERT: data[text]:'unterminated",
        "table public.data: INSERT: id[integer:1",
        "table public.data: INSERT: id[]:1",
        "table public.data: INSERT: id[integer[]]:'{1,2}'",
        "table public.data: INSERT: shape[geometry]:'POINT(0 0)'",
        "table public.data: INSERT: id[integer]:abc",
        "table public.data: INSERT: id[integer]:1.5",
        "table public.data: INSERT: id[integer]:1, data[text]:'x'",
        "table public.data: INSERT: id[integer]:1 id[integer]:2",
        "table public.data: INSERT: id[integer]:1 data",
        "table public.data: INSERT: d[date]:'2017-13-45'",
        "table public.data: INSERT: f[bytea]:'0a0b'",
        "table public.data: INSERT: b[boolean]:maybe",
        "table public.data: UPDATE: old-key: id[integer]:1",
        "table public.data: DELETE: (no-tuple-data) id[integer]:1",
    ])
    def test_rejected(self, record):
        with pytest.raises(ParseError):
            LogicalDecodingParser().parse(record)

    def test_error_carries_record_and_position(self):
        record = "table public.data: INSERT: id[geometry]:1"
        with pytest.raises(ParseError) as exc_info:
            LogicalDecodingParser().parse(record)

        assert exc_info.value.record == record
        assert exc_info.value.position == record.index("[geometry]")
        assert "geometry" in str(exc_info.value)

    def test_none_rejected(self):
        with pytest.raises(ParseError):
            LogicalDecodingParser().parse(None)


class TestQuoting:
    """quote_literal is the exact inverse of value un-escaping."""

    @pytest.mark.parametrize("text", [
        "",
        "plain",
        "it's",
        "''",
        "'leading",
        "trailing'",
        "a''b'''c",
        "tab\tand  spaces ",
        "line\nbreak",
        "comma, colon: bracket[ ]",
        "unicode é中",
    ])
    def test_round_trip(self, text):
        record = f"table public.t: INSERT: v[text]:{quote_literal(text)}"
        draft = LogicalDecodingParser().parse(record)

        assert draft.value_columns[0].value == text

    def test_quote_literal(self):
        assert quote_literal("it's") == "'it''s'"

    @pytest.mark.parametrize("name", ["users", "Users", "order lines", 'say "hi"'])
    def test_identifier_round_trip(self, name):
        record = f"table public.{quote_ident(name)}: INSERT: id[integer]:1"
        draft = LogicalDecodingParser().parse(record)

        assert draft.table_name == name

    def test_quote_ident_leaves_safe_names_bare(self):
        assert quote_ident("users") == "users"
        assert quote_ident("Users") == '"Users"'


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
