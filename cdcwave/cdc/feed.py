"""
Logical decoding feed helpers

Reads raw records from a replication slot through any DB-API cursor
(psycopg-style ``%s`` parameters). Peeking leaves the records in the slot;
the slot is advanced only once their offsets are committed, so undelivered
records are never consumed.
"""

from __future__ import annotations
import logging
from typing import Any, Iterator, List, Mapping, Tuple

from cdcwave.cdc.builder import RawRecord
from cdcwave.cdc.offsets import Lsn

logger = logging.getLogger(__name__)


def slot_changes_query(
    slot_name: str,
    peek: bool = True,
    upto_nchanges: int = None,
    options: Mapping[str, str] = None,
    lsn_column: str = "lsn",
) -> Tuple[str, List[Any]]:
    """
    Build the query reading pending changes from a slot.

    Args:
        slot_name: Replication slot
        peek: Use ``pg_logical_slot_peek_changes`` (records stay in the slot)
            instead of ``pg_logical_slot_get_changes``
        upto_nchanges: Stop after roughly this many changes (None = all)
        options: Output plugin options, e.g. ``{"include-xids": "1"}``
        lsn_column: ``lsn`` on PostgreSQL 10+, ``location`` before

    Returns:
        (sql, parameters)
    """
    function = "pg_logical_slot_peek_changes" if peek else "pg_logical_slot_get_changes"
    params: List[Any] = [slot_name, upto_nchanges]
    placeholders = ["%s", "NULL", "%s"]
    for name, value in (options or {}).items():
        placeholders.extend(["%s", "%s"])
        params.extend([name, str(value)])
    sql = f"SELECT {lsn_column}, xid, data FROM {function}({', '.join(placeholders)})"
    return sql, params


def advance_slot_query(slot_name: str, location: str) -> Tuple[str, List[Any]]:
    """Build the query that confirms everything up to ``location`` as consumed."""
    return "SELECT * FROM pg_replication_slot_advance(%s, %s)", [slot_name, str(Lsn.parse(location))]


def iter_raw_records(cursor, slot_name: str, fetch_size: int = 500, **query_options) -> Iterator[RawRecord]:
    """
    Execute the slot query on ``cursor`` and yield RawRecords in stream order.

    Driver errors propagate unchanged; retrying is up to the caller.
    """
    sql, params = slot_changes_query(slot_name, **query_options)
    logger.debug("Reading slot %s: %s", slot_name, sql)
    cursor.execute(sql, params)
    while True:
        rows = cursor.fetchmany(fetch_size)
        if not rows:
            break
        for row in rows:
            yield RawRecord.from_row(row)
