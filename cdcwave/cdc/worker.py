"""
Change Worker - single-threaded pull loop over one change feed

For every raw record: build, hand the change off, then commit its offset.
The offset is committed only after ``emit`` returns, so a crash in between
replays the change on restart (at-least-once) instead of dropping it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import anyio

from cdcwave.cdc.models import Change
from cdcwave.cdc.offsets import OffsetTracker
from cdcwave.exceptions import CDCWaveError

logger = logging.getLogger(__name__)

_DONE = object()


@dataclass
class WorkerStats:
    """Counters for one worker run."""
    records_read: int = 0
    changes_emitted: int = 0
    records_skipped: int = 0
    checkpoints: int = 0
    last_offset: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records_read": self.records_read,
            "changes_emitted": self.changes_emitted,
            "records_skipped": self.records_skipped,
            "checkpoints": self.checkpoints,
            "last_offset": self.last_offset,
        }


class ChangeWorker:
    """
    Drives one feed from raw records to committed changes.

    Args:
        records: Raw records in stream order (any iterable; reads may block)
        build: Turns a raw record into a Change, or None to skip it
            (e.g. ``PostgresChangeBuilder(...).build``)
        emit: Hands a change to the delivery transport; must return only
            once the change is safely handed off
        commit: Records a change's source offset as durable
        tracker: Offset ordering guard; by default one is created for the
            dialect of the first change
        checkpoint: Maps a skipped record to a transaction boundary
            ``(source_partition, source_offset)``, or None
            (e.g. ``PostgresChangeBuilder(...).checkpoint``). Boundaries are
            committed like change offsets and order transactions.
        log: Diagnostic sink (defaults to the module logger)

    Example:
        ```python
        builder = PostgresChangeBuilder("inventory", "cdc_slot")
        worker = ChangeWorker(
            records, builder.build, producer.send, store.committer(builder.source_partition),
            checkpoint=builder.checkpoint,
        )
        stats = worker.run()
        ```
    """

    def __init__(
        self,
        records: Iterable[Any],
        build: Callable[[Any], Optional[Change]],
        emit: Callable[[Change], None],
        commit: Callable[[Mapping[str, Any]], None],
        tracker: OffsetTracker = None,
        checkpoint: Callable[[Any], Optional[Tuple[Mapping[str, Any], Mapping[str, Any]]]] = None,
        log: logging.Logger = None,
    ):
        self._records = records
        self._build = build
        self._emit = emit
        self._commit = commit
        self._tracker = tracker
        self._checkpoint = checkpoint
        self._log = log or logger
        self._stop_requested = False
        self._stats = WorkerStats()

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stop(self):
        """Stop pulling new records; the record in flight is completed first."""
        self._stop_requested = True

    def process(self, record: Any) -> Optional[Change]:
        """
        Build, emit and commit a single record.

        Returns:
            The emitted change, or None if the record was skipped

        Raises:
            ParseError: If the record is malformed
            OffsetOrderError: If the change's offset does not follow the
                last committed one of its transaction, or a transaction
                boundary does not follow the previous boundary
        """
        change = self._build(record)
        self._stats.records_read += 1
        if change is None:
            self._stats.records_skipped += 1
            if self._checkpoint is not None:
                self._commit_boundary(record)
            return None

        if self._tracker is None:
            self._tracker = OffsetTracker.for_dialect(change.dialect)
        self._tracker.check(change)

        self._emit(change)
        self._stats.changes_emitted += 1

        self._commit(change.source_offset)
        self._tracker.record(change)
        self._stats.last_offset = dict(change.source_offset)
        return change

    def _commit_boundary(self, record: Any):
        boundary = self._checkpoint(record)
        if boundary is None:
            return
        partition, offset = boundary
        if self._tracker is None:
            self._tracker = OffsetTracker()
        self._tracker.check_boundary(partition, offset)
        self._commit(offset)
        self._tracker.record_boundary(partition, offset)
        self._stats.checkpoints += 1
        self._stats.last_offset = dict(offset)

    def run(self, max_records: int = None) -> WorkerStats:
        """
        Pull records until the feed is exhausted, ``stop`` is called or
        ``max_records`` records have been read.
        """
        iterator = iter(self._records)
        read = 0
        while not self._stop_requested:
            if max_records is not None and read >= max_records:
                break
            record = next(iterator, _DONE)
            if record is _DONE:
                break
            read += 1
            self._process_or_abort(record)
        self._log.debug("Worker finished: %s", self._stats.to_dict())
        return self._stats

    async def run_async(self, max_records: int = None) -> WorkerStats:
        """Async version of ``run``; blocking reads happen in a worker thread."""
        iterator = iter(self._records)
        read = 0
        while not self._stop_requested:
            if max_records is not None and read >= max_records:
                break
            record = await anyio.to_thread.run_sync(next, iterator, _DONE)
            if record is _DONE:
                break
            read += 1
            self._process_or_abort(record)
        self._log.debug("Worker finished: %s", self._stats.to_dict())
        return self._stats

    def _process_or_abort(self, record: Any):
        try:
            self.process(record)
        except CDCWaveError as e:
            self._log.error(
                "Worker stopped after %d records (last committed offset %s): %s",
                self._stats.records_read, self._stats.last_offset, e,
            )
            raise
