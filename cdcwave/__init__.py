"""
cdcwave - Change data capture for relational databases

Turns database change feeds into an ordered stream of Change events with
resumable offsets.

Usage:
    import cdcwave

    worker = cdcwave.postgres_worker(
        records,
        {"initial.database": "inventory", "replication.slot.name": "cdc_slot"},
        emit=producer.send,
        commit=store.committer({"slot": "cdc_slot"}),
    )
    worker.run()
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from cdcwave.config import ChangeTrackingSourceConfig, PostgresSourceConfig
from cdcwave.exceptions import (
    CDCWaveError,
    ParseError,
    ConfigurationError,
    SchemaError,
    OffsetOrderError,
    TransientIOError,
)
from cdcwave.cdc import (
    Change,
    ChangeType,
    ColumnValue,
    SourceDialect,
    LogicalType,
    TypeKind,
    LogicalDecodingParser,
    PostgresChangeBuilder,
    RawRecord,
    ChangeTrackingBuilder,
    TableMetadata,
    TableRef,
    partition_tables,
    OffsetTracker,
    MemoryOffsetStore,
    DuckDBOffsetStore,
    ChangeWorker,
    changes_to_arrow,
)

__version__ = "0.1.0"
__all__ = [
    "postgres_worker",
    # Config
    "PostgresSourceConfig",
    "ChangeTrackingSourceConfig",
    # Exceptions
    "CDCWaveError",
    "ParseError",
    "ConfigurationError",
    "SchemaError",
    "OffsetOrderError",
    "TransientIOError",
    # Model
    "Change",
    "ChangeType",
    "ColumnValue",
    "SourceDialect",
    "LogicalType",
    "TypeKind",
    # Sources
    "LogicalDecodingParser",
    "PostgresChangeBuilder",
    "RawRecord",
    "ChangeTrackingBuilder",
    "TableMetadata",
    # Workers
    "TableRef",
    "partition_tables",
    "OffsetTracker",
    "MemoryOffsetStore",
    "DuckDBOffsetStore",
    "ChangeWorker",
    "changes_to_arrow",
]


def postgres_worker(
    records: Iterable[Any],
    settings: Mapping[str, str],
    emit: Callable[[Change], None],
    commit: Callable[[Mapping[str, Any]], None],
    *,
    primary_keys: Mapping[str, Sequence[str]] = None,
    clock: Callable[[], int] = None,
    log: logging.Logger = None,
) -> ChangeWorker:
    """
    Create a worker for one logical decoding slot.

    Args:
        records: RawRecords (or ``(lsn, xid, data)`` rows) in stream order
        settings: Flat settings map, see PostgresSourceConfig
        emit: Hands a change to the delivery transport
        commit: Records a committed source offset (changes and COMMIT boundaries)
        primary_keys: Optional ``schema.table`` to key column names
        clock: Capture clock in milliseconds
        log: Diagnostic sink

    Returns:
        ChangeWorker ready to ``run()``

    Examples:
        # Settings produced by PostgresSourceConfig.to_settings()
        worker = cdcwave.postgres_worker(rows, settings, emit=sink.append, commit=offsets.append)
        stats = worker.run()
    """
    config = PostgresSourceConfig.from_settings(settings)
    builder = config.create_builder(clock=clock, primary_keys=primary_keys, log=log)

    def as_record(record):
        return record if isinstance(record, RawRecord) else RawRecord.from_row(record)

    def build(record):
        return builder.build(as_record(record))

    def checkpoint(record):
        return builder.checkpoint(as_record(record))

    return ChangeWorker(records, build, emit, commit, checkpoint=checkpoint, log=log)
