# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Callback System
# ════════════════════════════════════════════════════════════════════════════════
# Training-event sinks fed by the learner loop.
#
# - LearnerCallback: train/valid item and epoch-end events
# - CallbackHandler: fans events out to several callbacks, in order
# - AsyncLearnerCallback: delivers events to a callback on a worker thread
#   (FIFO, never dropped, drained on close)
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
import logging
import queue
import threading
from typing import Any, List, Optional, Sequence, Tuple

from trainloop.core.errors import CallbackError
from trainloop.core.types import LearnerItem
from trainloop.metrics.aggregate import LearnerSummary

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════════
# Base Callback
# ═════════════════════════════════════════════════════════════════════════════════

class LearnerCallback(abc.ABC):
    """
    Abstract base class for training-event sinks.

    Events:
    - on_train_item / on_valid_item: After each train/valid step
    - on_train_end_epoch / on_valid_end_epoch: After each split's epoch
    - close: Once, after the run (no event follows)
    """

    @abc.abstractmethod
    def on_train_item(self, item: LearnerItem) -> None:
        """Called after each training step."""

    @abc.abstractmethod
    def on_valid_item(self, item: LearnerItem) -> None:
        """Called after each validation step."""

    def on_train_end_epoch(self, epoch: int) -> None:
        """Called when the training part of an epoch ends."""
        pass

    def on_valid_end_epoch(self, epoch: int) -> None:
        """Called when the validation part of an epoch ends."""
        pass

    def summary(self) -> Optional[LearnerSummary]:
        """Aggregates collected so far, if this callback keeps any."""
        return None

    def drain(self) -> None:
        """Wait until every delivered event has been handled."""
        pass

    def close(self) -> None:
        pass


# ═════════════════════════════════════════════════════════════════════════════════
# Callback Handler
# ═════════════════════════════════════════════════════════════════════════════════

class CallbackHandler(LearnerCallback):
    """
    Manages a collection of callbacks.

    Events reach the callbacks in registration order.
    """

    def __init__(self, callbacks: Optional[Sequence[LearnerCallback]] = None):
        self.callbacks: List[LearnerCallback] = list(callbacks) if callbacks else []

    def add_callback(self, callback: LearnerCallback) -> None:
        """Add a callback to the handler."""
        self.callbacks.append(callback)

    def remove_callback(self, callback_type: type) -> None:
        """Remove all callbacks of a given type."""
        self.callbacks = [cb for cb in self.callbacks if not isinstance(cb, callback_type)]

    def on_train_item(self, item: LearnerItem) -> None:
        for cb in self.callbacks:
            cb.on_train_item(item)

    def on_valid_item(self, item: LearnerItem) -> None:
        for cb in self.callbacks:
            cb.on_valid_item(item)

    def on_train_end_epoch(self, epoch: int) -> None:
        for cb in self.callbacks:
            cb.on_train_end_epoch(epoch)

    def on_valid_end_epoch(self, epoch: int) -> None:
        for cb in self.callbacks:
            cb.on_valid_end_epoch(epoch)

    def summary(self) -> Optional[LearnerSummary]:
        for cb in self.callbacks:
            summary = cb.summary()
            if summary is not None:
                return summary
        return None

    def drain(self) -> None:
        for cb in self.callbacks:
            cb.drain()

    def close(self) -> None:
        for cb in self.callbacks:
            cb.close()

    def __len__(self) -> int:
        return len(self.callbacks)


# ═════════════════════════════════════════════════════════════════════════════════
# Asynchronous Callback
# ═════════════════════════════════════════════════════════════════════════════════

_SHUTDOWN = object()


class AsyncLearnerCallback(LearnerCallback):
    """
    Delivers events to a callback on a dedicated worker thread.

    Events are handled in submission order and never dropped. An event
    that raises is logged and kept in `failures`; later events are still
    delivered. `close` delivers every pending event, closes the wrapped
    callback on the worker thread and joins it.

    Args:
        callback: Sink receiving the events (usually the Dashboard)
    """

    def __init__(self, callback: LearnerCallback):
        self.callback = callback
        self.failures: List[CallbackError] = []

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(
            target=self._run,
            name=f"callback-{type(callback).__name__}",
            daemon=True,
        )
        self._worker.start()

    def __repr__(self) -> str:
        return f"AsyncLearnerCallback({self.callback!r})"

    # ─────────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────────

    def on_train_item(self, item: LearnerItem) -> None:
        self._submit("on_train_item", item)

    def on_valid_item(self, item: LearnerItem) -> None:
        self._submit("on_valid_item", item)

    def on_train_end_epoch(self, epoch: int) -> None:
        self._submit("on_train_end_epoch", epoch)

    def on_valid_end_epoch(self, epoch: int) -> None:
        self._submit("on_valid_end_epoch", epoch)

    def summary(self) -> Optional[LearnerSummary]:
        self.drain()
        return self.callback.summary()

    def drain(self) -> None:
        self._queue.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(("close", ()))
            self._queue.put(_SHUTDOWN)

        self._worker.join()

        if self.failures:
            logger.error(
                f"{len(self.failures)} callback event(s) failed for {self.callback!r}"
            )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ─────────────────────────────────────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────────────────────────────────────

    def _submit(self, event: str, *args: Any) -> None:
        with self._lock:
            if self._closed:
                raise CallbackError(
                    message="Event submitted after the callback was closed",
                    event=event,
                )
            self._queue.put((event, args))

    def _deliver(self, event: str, args: Tuple[Any, ...]) -> None:
        try:
            getattr(self.callback, event)(*args)
        except Exception as e:
            error = CallbackError(
                message=f"Callback {type(self.callback).__name__} failed",
                event=event,
                cause=e,
            )
            self.failures.append(error)
            logger.exception(f"Error delivering {event} to {self.callback!r}")

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            try:
                if message is _SHUTDOWN:
                    return
                event, args = message
                self._deliver(event, args)
            finally:
                self._queue.task_done()


__all__ = [
    "LearnerCallback",
    "CallbackHandler",
    "AsyncLearnerCallback",
]
