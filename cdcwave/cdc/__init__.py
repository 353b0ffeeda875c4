"""
Change Data Capture (CDC) - change events from database change feeds

This module turns PostgreSQL logical decoding records and SQL Server change
tracking rows into a single Change model with resumable offsets, and splits
tracked tables across parallel workers.
"""

from cdcwave.cdc.models import Change, ChangeDraft, ChangeType, ColumnValue, SourceDialect
from cdcwave.cdc.types import LogicalType, TypeKind
from cdcwave.cdc.parser import Dialect, LogicalDecodingParser, is_control_record, quote_ident, quote_literal
from cdcwave.cdc.builder import PostgresChangeBuilder, RawRecord
from cdcwave.cdc.change_tracking import ChangeTrackingBuilder, TableMetadata, change_tracking_query
from cdcwave.cdc.partitioner import TableRef, chunk_tables, partition_tables
from cdcwave.cdc.offsets import (
    Lsn,
    OffsetTracker,
    OffsetStore,
    MemoryOffsetStore,
    DuckDBOffsetStore,
)
from cdcwave.cdc.worker import ChangeWorker, WorkerStats
from cdcwave.cdc.arrow import changes_to_arrow

__all__ = [
    # Model
    "Change",
    "ChangeDraft",
    "ChangeType",
    "ColumnValue",
    "SourceDialect",
    "LogicalType",
    "TypeKind",
    # Logical decoding
    "Dialect",
    "LogicalDecodingParser",
    "is_control_record",
    "quote_ident",
    "quote_literal",
    "PostgresChangeBuilder",
    "RawRecord",
    # Change tracking
    "ChangeTrackingBuilder",
    "TableMetadata",
    "change_tracking_query",
    # Partitioning
    "TableRef",
    "chunk_tables",
    "partition_tables",
    # Offsets
    "Lsn",
    "OffsetTracker",
    "OffsetStore",
    "MemoryOffsetStore",
    "DuckDBOffsetStore",
    # Workers
    "ChangeWorker",
    "WorkerStats",
    # Export
    "changes_to_arrow",
]
