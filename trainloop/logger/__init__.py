# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Metric Loggers
# ════════════════════════════════════════════════════════════════════════════════
# Persist metric entries of one split (train or valid).
#
# - MetricLogger: log / end_epoch / flush / close contract
# - FileMetricLogger: append-only JSON lines, buffered until the epoch ends
# - InMemoryMetricLogger: keeps entries in a list (tests, notebooks)
#
# Log files are opened in append mode only; nothing here truncates them.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
import json
import logging
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Union

from trainloop.core.types import MetricEntry

logger = logging.getLogger(__name__)

METRICS_FILE_NAME = "metrics.log"


# ═════════════════════════════════════════════════════════════════════════════════
# Base Logger
# ═════════════════════════════════════════════════════════════════════════════════

class MetricLogger(abc.ABC):
    """
    Abstract base class for metric loggers.

    Entries are passed in the order the dashboard receives them; a logger
    must persist them in that order.
    """

    @abc.abstractmethod
    def log(self, entry: MetricEntry) -> None:
        """Record one metric entry."""

    def end_epoch(self, epoch: int) -> None:
        """Called once the epoch of this split has ended."""
        self.flush()

    def flush(self) -> None:
        """Persist buffered entries."""

    def close(self) -> None:
        self.flush()


# ═════════════════════════════════════════════════════════════════════════════════
# File Logger
# ═════════════════════════════════════════════════════════════════════════════════

class FileMetricLogger(MetricLogger):
    """
    Appends metric entries as JSON lines to `{directory}/metrics.log`.

    Entries are buffered in memory and written on `end_epoch`, `flush`
    and `close`. Each line is a complete JSON object, so a log cut short
    by a crash stays readable up to its last full line.

    Args:
        directory: Split directory, e.g. `{learner_dir}/train`
        buffer_size: Flush automatically once this many entries are pending
    """

    def __init__(self, directory: Union[str, Path], buffer_size: int = 1024):
        self.directory = Path(directory)
        self.path = self.directory / METRICS_FILE_NAME
        self.buffer_size = buffer_size

        self._buffer: List[MetricEntry] = []
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"FileMetricLogger(path={str(self.path)!r})"

    def log(self, entry: MetricEntry) -> None:
        with self._lock:
            self._buffer.append(entry)
            should_flush = len(self._buffer) >= self.buffer_size

        if should_flush:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self._buffer:
                return
            pending, self._buffer = self._buffer, []

            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                for entry in pending:
                    f.write(json.dumps(entry.to_dict()) + "\n")

        logger.debug(f"Wrote {len(pending)} metric entries to {self.path}")

    def read_entries(self, epoch: Optional[int] = None) -> List[MetricEntry]:
        """
        Read persisted entries, optionally only those of one epoch.

        A trailing partial line (interrupted write) is skipped.
        """
        return [
            entry for entry in iter_entries(self.path)
            if epoch is None or entry.epoch == epoch
        ]


def iter_entries(path: Union[str, Path]) -> Iterator[MetricEntry]:
    """Iterate over the entries of a metrics log file."""
    path = Path(path)
    if not path.exists():
        return

    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield MetricEntry.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, ValueError):
                logger.warning(f"Skipping unreadable line {line_no} in {path}")


# ═════════════════════════════════════════════════════════════════════════════════
# In-Memory Logger
# ═════════════════════════════════════════════════════════════════════════════════

class InMemoryMetricLogger(MetricLogger):
    """Keeps every entry in `entries`."""

    def __init__(self):
        self.entries: List[MetricEntry] = []
        self.epochs_ended: List[int] = []

    def log(self, entry: MetricEntry) -> None:
        self.entries.append(entry)

    def end_epoch(self, epoch: int) -> None:
        self.epochs_ended.append(epoch)


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "METRICS_FILE_NAME",
    "MetricLogger",
    "FileMetricLogger",
    "InMemoryMetricLogger",
    "iter_entries",
]
