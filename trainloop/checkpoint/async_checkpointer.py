# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Asynchronous Checkpointer
# ════════════════════════════════════════════════════════════════════════════════
# Runs saves and deletes on a background thread so the training loop never
# blocks on storage latency.
#
# Guarantees:
# - Single-writer FIFO: operations complete in submission order
# - Records are snapshotted at submission time
# - drain() waits for every submitted operation; close() drains and joins
#
# Not guaranteed: completion before interpreter exit without drain()/close().
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, List, Optional

from trainloop.checkpoint.base import Checkpointer, snapshot_record
from trainloop.core.errors import (
    CheckpointError,
    CheckpointSaveError,
)
from trainloop.core.types import Err, Ok, Record, Result

logger = logging.getLogger(__name__)


class _Operation(str, enum.Enum):
    SAVE = "save"
    DELETE = "delete"


@dataclass(frozen=True)
class _Message:
    operation: _Operation
    epoch: int
    record: Optional[Record] = None


_SHUTDOWN = object()


class AsyncCheckpointer(Checkpointer):
    """
    Wraps a checkpointer and executes saves/deletes on a worker thread.

    Failures of background operations cannot reach the caller (it has
    already returned); they are logged and collected in `failures`.

    Args:
        checkpointer: Synchronous checkpointer doing the actual I/O

    Example:
        ```python
        checkpointer = AsyncCheckpointer(FileCheckpointer(recorder, path, "model", 2))
        checkpointer.save(model.state_dict(), epoch)   # returns immediately
        checkpointer.drain()                           # durable from here on
        ```
    """

    def __init__(self, checkpointer: Checkpointer):
        self.checkpointer = checkpointer
        self.failures: List[CheckpointError] = []

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

        label = getattr(checkpointer, "name", type(checkpointer).__name__)
        self._worker = threading.Thread(
            target=self._run,
            name=f"checkpointer-{label}",
            daemon=True,
        )
        self._worker.start()

    def __repr__(self) -> str:
        return f"AsyncCheckpointer({self.checkpointer!r})"

    # ─────────────────────────────────────────────────────────────────────────────
    # Checkpointer API
    # ─────────────────────────────────────────────────────────────────────────────

    def save(self, record: Record, epoch: int) -> None:
        """Snapshot the record and queue its write."""
        self._submit(_Message(_Operation.SAVE, epoch, snapshot_record(record)))

    def delete(self, epoch: int) -> None:
        """Queue the deletion of an epoch."""
        self._submit(_Message(_Operation.DELETE, epoch))

    def restore(self, epoch: int) -> Record:
        """
        Load a record after every pending operation has completed.

        Raises:
            CheckpointLoadError: Propagated from the wrapped checkpointer
        """
        self.drain()
        return self.checkpointer.restore(epoch)

    def drain(self) -> None:
        """Block until every submitted operation has completed."""
        self._queue.join()

    def close(self) -> None:
        """Drain pending operations and stop the worker thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_SHUTDOWN)

        self._worker.join()
        self.checkpointer.close()

        if self.failures:
            logger.error(
                f"{len(self.failures)} background checkpoint operation(s) failed "
                f"for {self.checkpointer!r}"
            )

    @property
    def pending(self) -> int:
        """Approximate number of queued operations."""
        return self._queue.qsize()

    # ─────────────────────────────────────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────────────────────────────────────

    def _submit(self, message: _Message) -> None:
        with self._lock:
            if self._closed:
                raise CheckpointSaveError(
                    message=f"Cannot {message.operation.value} on a closed checkpointer",
                    epoch=message.epoch,
                    component=getattr(self.checkpointer, "name", None),
                )
            self._queue.put(message)

    def _execute(self, message: _Message) -> Result[None, CheckpointError]:
        try:
            if message.operation == _Operation.SAVE:
                self.checkpointer.save(message.record, message.epoch)
            else:
                self.checkpointer.delete(message.epoch)
        except CheckpointError as e:
            return Err(e)
        except Exception as e:
            return Err(CheckpointSaveError(
                message=f"Unexpected failure during {message.operation.value}",
                epoch=message.epoch,
                component=getattr(self.checkpointer, "name", None),
                cause=e,
            ))
        return Ok(None)

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            try:
                if message is _SHUTDOWN:
                    return

                result = self._execute(message)
                if isinstance(result, Err):
                    self.failures.append(result.error)
                    logger.error(
                        f"Background checkpoint {message.operation.value} failed "
                        f"(epoch {message.epoch}): {result.error}"
                    )
            finally:
                self._queue.task_done()


__all__ = [
    "AsyncCheckpointer",
]
