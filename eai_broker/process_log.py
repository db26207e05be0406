"""Bounded in-memory process log.

Operators inspect the most recent activity of a worker without going to the
log aggregator. ``ProcessLog`` keeps at most ``capacity`` structured entries;
appending to a full log evicts the oldest entry and counts the eviction in
``process_log_evicted_total``.

How to use:
- Attach ``ProcessLogHandler`` to a logger (scripts attach it to the root
  logger) and pass ``extra={"interface": ..., "instance_guid": ...}`` on log
  calls that concern a specific interface or adapter instance.
- Read entries with ``get_process_log().entries()``.

Example:
    >>> log = ProcessLog(capacity=2)
    >>> for i in range(3):
    ...     log.append(ProcessLogEntry.now("INFO", "demo", f"step {i}"))
    >>> [e.message for e in log.entries()]
    ['step 1', 'step 2']
    >>> log.evicted
    1
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from eai_broker.config import Settings
from eai_broker.metrics import PROCESS_LOG_EVICTED_TOTAL


@dataclass(frozen=True)
class ProcessLogEntry:
    timestamp: datetime
    level: str
    logger: str
    message: str
    interface: Optional[str] = None
    instance_guid: Optional[str] = None

    @classmethod
    def now(cls, level: str, logger: str, message: str, **context: Optional[str]) -> "ProcessLogEntry":
        return cls(datetime.now(timezone.utc), level, logger, message, **context)


@dataclass
class ProcessLog:
    """Ring buffer of ``ProcessLogEntry`` with oldest-first eviction."""
    capacity: int
    evicted: int = 0
    _entries: deque = field(init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("process log capacity must be positive")
        self._entries = deque(maxlen=self.capacity)

    def append(self, entry: ProcessLogEntry) -> None:
        with self._lock:
            if len(self._entries) == self.capacity:
                self.evicted += 1
                PROCESS_LOG_EVICTED_TOTAL.inc()
            self._entries.append(entry)

    def entries(
        self,
        interface: Optional[str] = None,
        instance_guid: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ProcessLogEntry]:
        """Return entries oldest first, optionally filtered and limited to the newest ``limit``."""
        with self._lock:
            items = list(self._entries)
        if interface is not None:
            items = [e for e in items if e.interface == interface]
        if instance_guid is not None:
            items = [e for e in items if e.instance_guid == instance_guid]
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ProcessLogHandler(logging.Handler):
    """``logging.Handler`` that records formatted messages into a ``ProcessLog``."""

    def __init__(self, process_log: ProcessLog, level: int = logging.INFO):
        super().__init__(level)
        self.process_log = process_log

    def emit(self, record: logging.LogRecord) -> None:
        try:
            instance_guid = getattr(record, "instance_guid", None)
            self.process_log.append(
                ProcessLogEntry(
                    timestamp=datetime.fromtimestamp(record.created, timezone.utc),
                    level=record.levelname,
                    logger=record.name,
                    message=record.getMessage(),
                    interface=getattr(record, "interface", None),
                    instance_guid=str(instance_guid) if instance_guid is not None else None,
                )
            )
        except Exception:  # noqa: BLE001
            self.handleError(record)


_process_log: ProcessLog | None = None


def get_process_log() -> ProcessLog:
    """Return the process-wide log sized from ``Settings.process_log_capacity``."""
    global _process_log
    if _process_log is None:
        _process_log = ProcessLog(capacity=Settings().process_log_capacity)
    return _process_log


def install_process_log_handler(logger: logging.Logger | None = None) -> ProcessLogHandler:
    """Attach a ``ProcessLogHandler`` for the process-wide log (root logger by default)."""
    handler = ProcessLogHandler(get_process_log())
    (logger or logging.getLogger()).addHandler(handler)
    return handler


def configure_logging(settings: Settings | None = None) -> None:
    """Script entrypoint setup: stdout logging at ``LOG_LEVEL`` plus the process log."""
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    install_process_log_handler()
