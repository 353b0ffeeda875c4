"""
Offsets - stream positions, commit ordering and offset storage

A change is resumable through its (source_partition, source_offset) pair.
Offsets must be committed in stream order, and only after the change has
been handed off, so a crash can replay changes but never skip one.
"""

from __future__ import annotations
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import duckdb

from cdcwave.cdc.models import Change, SourceDialect
from cdcwave.exceptions import OffsetOrderError

logger = logging.getLogger(__name__)

_LSN = re.compile(r"^([0-9A-Fa-f]{1,8})/([0-9A-Fa-f]{1,8})$")


@dataclass(frozen=True, order=True)
class Lsn:
    """PostgreSQL log sequence number (``XXXXXXXX/YYYYYYYY``)."""
    value: int

    @classmethod
    def parse(cls, text: str) -> "Lsn":
        match = _LSN.match(text.strip()) if text else None
        if not match:
            raise ValueError(f"Invalid LSN: {text!r}")
        high, low = match.groups()
        return cls((int(high, 16) << 32) | int(low, 16))

    def __str__(self) -> str:
        return f"{self.value >> 32:X}/{self.value & 0xFFFFFFFF:X}"


def postgres_offset_key(offset: Mapping[str, Any]) -> Lsn:
    return Lsn.parse(offset["location"])


def change_tracking_offset_key(offset: Mapping[str, Any]) -> int:
    return int(offset["sys_change_version"])


def postgres_transaction(change: Change) -> Optional[str]:
    return change.metadata.get("xid")


def _partition_key(partition: Mapping[str, Any]) -> str:
    return json.dumps(dict(partition), sort_keys=True, default=str)


class OffsetTracker:
    """
    Enforces commit ordering per source partition.

    Logical decoding emits whole transactions in commit order, but each row
    keeps the LSN it was written at, so the rows of a transaction that began
    earlier can follow rows with higher LSNs. Change positions are therefore
    only compared within one transaction (``scope``); across transactions the
    order is checked on transaction boundaries, the LSNs of COMMIT records.

    Args:
        key: Maps a source offset to a comparable value
        strict: Require strictly increasing offsets. Change tracking shares
            one version between all rows of a transaction, so it is tracked
            with ``strict=False`` (non-decreasing).
        scope: Maps a change to its transaction; None compares every change
            of a partition against the previous one
    """

    def __init__(
        self,
        key: Callable[[Mapping[str, Any]], Any] = postgres_offset_key,
        strict: bool = True,
        scope: Optional[Callable[[Change], Any]] = postgres_transaction,
    ):
        self._key = key
        self._strict = strict
        self._scope = scope
        self._last: Dict[str, Tuple[Any, Any]] = {}
        self._boundaries: Dict[str, Any] = {}

    @classmethod
    def for_dialect(cls, dialect: SourceDialect) -> "OffsetTracker":
        if dialect == SourceDialect.MSSQL:
            return cls(key=change_tracking_offset_key, strict=False, scope=None)
        return cls(key=postgres_offset_key, strict=True, scope=postgres_transaction)

    def _position(self, offset: Mapping[str, Any]) -> Any:
        try:
            return self._key(offset)
        except (KeyError, ValueError, TypeError) as e:
            raise OffsetOrderError(f"Unreadable source offset {dict(offset)}: {e}") from e

    def _follows(self, position: Any, previous: Any) -> bool:
        return position > previous if self._strict else position >= previous

    def check(self, change: Change) -> Any:
        """
        Verify the change's offset comes after the last recorded one of the
        same transaction.

        Returns:
            The comparable position of the change

        Raises:
            OffsetOrderError: If the offset moves backwards (or repeats, when strict)
        """
        position = self._position(change.source_offset)
        scope = self._scope(change) if self._scope else None

        last = self._last.get(_partition_key(change.source_partition))
        if last is not None:
            previous_scope, previous = last
            if scope == previous_scope and not self._follows(position, previous):
                raise OffsetOrderError(
                    f"Offset {position} for {change.qualified_name} does not follow {previous}",
                    previous=previous,
                    current=position,
                )
        return position

    def record(self, change: Change):
        """Check and remember the change's offset as the latest committed."""
        position = self.check(change)
        scope = self._scope(change) if self._scope else None
        self._last[_partition_key(change.source_partition)] = (scope, position)

    def check_boundary(self, partition: Mapping[str, Any], offset: Mapping[str, Any]) -> Any:
        """
        Verify a transaction boundary comes strictly after the previous one.

        Raises:
            OffsetOrderError: If the boundary does not move forward
        """
        position = self._position(offset)
        previous = self._boundaries.get(_partition_key(partition))
        if previous is not None and not position > previous:
            raise OffsetOrderError(
                f"Transaction boundary {position} does not follow {previous}",
                previous=previous,
                current=position,
            )
        return position

    def record_boundary(self, partition: Mapping[str, Any], offset: Mapping[str, Any]):
        """Check and remember a transaction boundary; the open transaction is closed."""
        position = self.check_boundary(partition, offset)
        key = _partition_key(partition)
        self._boundaries[key] = position
        self._last.pop(key, None)

    def last(self, partition: Mapping[str, Any]) -> Optional[Any]:
        """Position of the last recorded change in the open transaction, if any."""
        last = self._last.get(_partition_key(partition))
        return last[1] if last is not None else None

    def last_boundary(self, partition: Mapping[str, Any]) -> Optional[Any]:
        return self._boundaries.get(_partition_key(partition))


class OffsetStore(ABC):
    """Durable map of source partition to last committed source offset."""

    @abstractmethod
    def get(self, partition: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the last committed offset for a partition, or None."""
        pass

    @abstractmethod
    def commit(self, partition: Mapping[str, Any], offset: Mapping[str, Any]):
        """Record ``offset`` as the resume point for ``partition``."""
        pass

    def committer(self, partition: Mapping[str, Any]) -> Callable[[Mapping[str, Any]], None]:
        """Bind a partition, giving the ``commit(offset)`` callback a worker expects."""
        def commit(offset: Mapping[str, Any]):
            self.commit(partition, offset)
        return commit

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class MemoryOffsetStore(OffsetStore):
    """In-process offset store."""

    def __init__(self):
        self._offsets: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, partition):
        with self._lock:
            offset = self._offsets.get(_partition_key(partition))
            return dict(offset) if offset is not None else None

    def commit(self, partition, offset):
        with self._lock:
            self._offsets[_partition_key(partition)] = dict(offset)


class DuckDBOffsetStore(OffsetStore):
    """
    Offset store backed by a DuckDB database file.

    Partitions and offsets are stored as JSON text, keyed by the canonical
    (sorted-key) JSON of the partition.
    """

    TABLE = "cdc_offsets"

    def __init__(self, path: str = ":memory:"):
        self._path = path
        self._conn = duckdb.connect(path)
        self._lock = threading.Lock()
        self._closed = False
        self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE} (
                partition_key VARCHAR PRIMARY KEY,
                source_partition VARCHAR NOT NULL,
                source_offset VARCHAR NOT NULL
            )
        """)
        logger.debug("DuckDBOffsetStore opened: %s", path)

    def get(self, partition):
        with self._lock:
            row = self._conn.execute(
                f"SELECT source_offset FROM {self.TABLE} WHERE partition_key = ?",
                [_partition_key(partition)],
            ).fetchone()
        return json.loads(row[0]) if row else None

    def commit(self, partition, offset):
        with self._lock:
            self._conn.execute(
                f"""
                INSERT INTO {self.TABLE} (partition_key, source_partition, source_offset)
                VALUES (?, ?, ?)
                ON CONFLICT (partition_key) DO UPDATE SET source_offset = excluded.source_offset
                """,
                [_partition_key(partition), json.dumps(dict(partition)), json.dumps(dict(offset))],
            )

    def close(self):
        if not self._closed:
            self._conn.close()
            self._closed = True
            logger.debug("DuckDBOffsetStore closed: %s", self._path)

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        return f"<DuckDBOffsetStore path={self._path} status={status}>"
