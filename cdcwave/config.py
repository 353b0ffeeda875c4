"""
cdcwave Configuration - source settings

Settings travel as flat string maps (``{"initial.database": "inventory", ...}``)
so that per-worker settings produced by the partitioner can be stored and
restarted as-is. The dataclasses below validate and type them; keys they do
not know (connection URLs, credentials) are kept in ``host_settings`` and
passed through unchanged.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Sequence

from cdcwave.cdc.builder import PostgresChangeBuilder
from cdcwave.cdc.change_tracking import ChangeTrackingBuilder
from cdcwave.cdc.parser import Dialect, LogicalDecodingParser
from cdcwave.cdc.partitioner import DEFAULT_TABLES_KEY, TABLE_DELIMITER, TableRef, partition_tables
from cdcwave.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

INITIAL_DATABASE_CONFIG = "initial.database"
REPLICATION_SLOT_NAME_CONFIG = "replication.slot.name"
LOGICAL_DECODING_DIALECT_CONFIG = "logical.decoding.dialect"
CHANGE_TRACKING_TABLES_CONFIG = DEFAULT_TABLES_KEY
BATCH_SIZE_CONFIG = "batch.size"
POLL_INTERVAL_MS_CONFIG = "poll.interval.ms"

DEFAULT_BATCH_SIZE = 512
DEFAULT_POLL_INTERVAL_MS = 1000


def _require(settings: Mapping[str, str], key: str) -> str:
    value = settings.get(key)
    if value is None or not str(value).strip():
        raise ConfigurationError(f"Missing required setting '{key}'")
    return str(value).strip()


def _positive_int(settings: Mapping[str, str], key: str, default: int) -> int:
    raw = settings.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as e:
        raise ConfigurationError(f"Setting '{key}' must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"Setting '{key}' must be greater than 0, got {value}")
    return value


@dataclass
class PostgresSourceConfig:
    """Settings for a logical decoding worker."""
    initial_database: str
    replication_slot_name: str
    dialect: str = Dialect.AUTO.value
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    host_settings: Dict[str, str] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if not self.initial_database:
            raise ConfigurationError("initial_database is required")
        if not self.replication_slot_name:
            raise ConfigurationError("replication_slot_name is required")
        try:
            self.dialect = Dialect(self.dialect).value
        except ValueError as e:
            choices = ", ".join(d.value for d in Dialect)
            raise ConfigurationError(f"Unknown logical decoding dialect {self.dialect!r} (expected one of {choices})") from e
        if self.batch_size <= 0 or self.poll_interval_ms <= 0:
            raise ConfigurationError("batch_size and poll_interval_ms must be greater than 0")

    @classmethod
    def from_settings(cls, settings: Mapping[str, str]) -> "PostgresSourceConfig":
        return cls(
            initial_database=_require(settings, INITIAL_DATABASE_CONFIG),
            replication_slot_name=_require(settings, REPLICATION_SLOT_NAME_CONFIG),
            dialect=settings.get(LOGICAL_DECODING_DIALECT_CONFIG) or Dialect.AUTO.value,
            batch_size=_positive_int(settings, BATCH_SIZE_CONFIG, DEFAULT_BATCH_SIZE),
            poll_interval_ms=_positive_int(settings, POLL_INTERVAL_MS_CONFIG, DEFAULT_POLL_INTERVAL_MS),
            host_settings=dict(settings),
        )

    def to_settings(self) -> Dict[str, str]:
        settings = dict(self.host_settings)
        settings.update({
            INITIAL_DATABASE_CONFIG: self.initial_database,
            REPLICATION_SLOT_NAME_CONFIG: self.replication_slot_name,
            LOGICAL_DECODING_DIALECT_CONFIG: self.dialect,
            BATCH_SIZE_CONFIG: str(self.batch_size),
            POLL_INTERVAL_MS_CONFIG: str(self.poll_interval_ms),
        })
        return settings

    def create_builder(
        self,
        clock: Callable[[], int] = None,
        primary_keys: Mapping[str, Sequence[str]] = None,
        log: logging.Logger = None,
    ) -> PostgresChangeBuilder:
        parser = LogicalDecodingParser(dialect=self.dialect, primary_keys=primary_keys)
        return PostgresChangeBuilder(
            self.initial_database,
            self.replication_slot_name,
            clock=clock,
            parser=parser,
            log=log,
        )


@dataclass
class ChangeTrackingSourceConfig:
    """Settings for change tracking workers."""
    initial_database: str
    change_tracking_tables: List[TableRef] = field(default_factory=list)
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    host_settings: Dict[str, str] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if not self.initial_database:
            raise ConfigurationError("initial_database is required")
        self.change_tracking_tables = [
            t if isinstance(t, TableRef) else TableRef.parse(t) for t in self.change_tracking_tables
        ]
        if self.batch_size <= 0 or self.poll_interval_ms <= 0:
            raise ConfigurationError("batch_size and poll_interval_ms must be greater than 0")

    @classmethod
    def from_settings(cls, settings: Mapping[str, str]) -> "ChangeTrackingSourceConfig":
        raw_tables = settings.get(CHANGE_TRACKING_TABLES_CONFIG) or ""
        tables = [TableRef.parse(name) for name in raw_tables.split(TABLE_DELIMITER) if name.strip()]
        return cls(
            initial_database=_require(settings, INITIAL_DATABASE_CONFIG),
            change_tracking_tables=tables,
            batch_size=_positive_int(settings, BATCH_SIZE_CONFIG, DEFAULT_BATCH_SIZE),
            poll_interval_ms=_positive_int(settings, POLL_INTERVAL_MS_CONFIG, DEFAULT_POLL_INTERVAL_MS),
            host_settings=dict(settings),
        )

    def to_settings(self) -> Dict[str, str]:
        settings = dict(self.host_settings)
        settings.update({
            INITIAL_DATABASE_CONFIG: self.initial_database,
            CHANGE_TRACKING_TABLES_CONFIG: TABLE_DELIMITER.join(str(t) for t in self.change_tracking_tables),
            BATCH_SIZE_CONFIG: str(self.batch_size),
            POLL_INTERVAL_MS_CONFIG: str(self.poll_interval_ms),
        })
        return settings

    def task_settings(self, worker_count: int) -> List[Dict[str, str]]:
        """
        Split the tracked tables across up to ``worker_count`` workers.

        Tables keep their configured order; each returned map is a complete
        settings map for one worker.
        """
        settings = partition_tables(
            self.change_tracking_tables,
            worker_count,
            base_settings=self.to_settings(),
            key=CHANGE_TRACKING_TABLES_CONFIG,
        )
        logger.debug("Partitioned %d tables into %d workers", len(self.change_tracking_tables), len(settings))
        return settings

    def create_builder(self, clock: Callable[[], int] = None, log: logging.Logger = None) -> ChangeTrackingBuilder:
        return ChangeTrackingBuilder(self.initial_database, clock=clock, log=log)
