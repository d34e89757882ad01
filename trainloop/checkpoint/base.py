# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Checkpointer Interface
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
import copy
from typing import Any

from torch import Tensor

from trainloop.core.types import Record


class Checkpointer(abc.ABC):
    """
    Persists records keyed by epoch.

    `save` and `delete` may complete asynchronously in wrapping
    implementations; `drain` blocks until every submitted operation has
    completed and `close` releases any background resources.
    """

    @abc.abstractmethod
    def save(self, record: Record, epoch: int) -> None:
        """Persist a record for an epoch."""

    @abc.abstractmethod
    def restore(self, epoch: int) -> Record:
        """Load the record saved for an epoch."""

    @abc.abstractmethod
    def delete(self, epoch: int) -> None:
        """Delete the record saved for an epoch."""

    def drain(self) -> None:
        """Wait for pending operations (synchronous checkpointers have none)."""

    def close(self) -> None:
        """Release resources held by the checkpointer."""

    def __enter__(self) -> "Checkpointer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def snapshot_record(record: Any) -> Any:
    """
    Deep copy of a record with tensors detached onto the CPU.

    The copy shares no storage with live training state, so the next
    optimizer step cannot mutate a record waiting to be written.
    """
    if isinstance(record, Tensor):
        return record.detach().cpu().clone()
    if isinstance(record, dict):
        # shallow copy keeps the mapping type and state_dict metadata
        snapshot = copy.copy(record)
        for key, value in record.items():
            snapshot[key] = snapshot_record(value)
        return snapshot
    if isinstance(record, list):
        return [snapshot_record(v) for v in record]
    if isinstance(record, tuple):
        return tuple(snapshot_record(v) for v in record)
    return copy.deepcopy(record)


__all__ = [
    "Checkpointer",
    "snapshot_record",
]
