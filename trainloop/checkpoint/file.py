# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - File Checkpointer
# ════════════════════════════════════════════════════════════════════════════════
# Epoch-indexed checkpoint files with retention.
#
# Layout: {directory}/{name}-{epoch}{recorder.file_extension}
#
# Crash safety:
# - Records are written to a temporary sibling then published with os.replace
# - Retention runs only after a successful write (append-then-evict)
# - Retention delete failures are logged, never raised
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Union

from trainloop.checkpoint.base import Checkpointer
from trainloop.core.errors import (
    CheckpointDeleteError,
    CheckpointLoadError,
    CheckpointSaveError,
    ConfigurationError,
)
from trainloop.core.types import (
    MIN_SAFE_NUM_KEEP,
    Err,
    Ok,
    Record,
    Result,
    is_err,
)
from trainloop.record import Recorder

logger = logging.getLogger(__name__)


class FileCheckpointer(Checkpointer):
    """
    Checkpointer persisting one file per epoch for a single component.

    After every successful save, the persisted epochs of this component
    are listed and the oldest are deleted until at most `num_keep` remain.

    Args:
        recorder: Codec used to encode and decode records
        directory: Checkpoint root directory
        name: Component tag ("model", "optim", "scheduler")
        num_keep: Number of most recent epochs to retain

    Note:
        `num_keep=1` is allowed but unsafe when saves run asynchronously:
        a crash between the write and the eviction can leave no valid
        checkpoint. Use at least 2.

    Example:
        ```python
        checkpointer = FileCheckpointer(TorchFileRecorder(), "./run/checkpoint", "model", 2)
        checkpointer.save(model.state_dict(), epoch=3)
        model.load_state_dict(checkpointer.restore(3))
        ```
    """

    def __init__(
        self,
        recorder: Recorder,
        directory: Union[str, Path],
        name: str,
        num_keep: int,
    ):
        if num_keep < 1:
            raise ConfigurationError(
                message="num_keep must be at least 1",
                field_path="num_keep",
                expected=">= 1",
                got=str(num_keep),
            )
        if num_keep < MIN_SAFE_NUM_KEEP:
            logger.warning(
                f"Checkpointer '{name}' keeps {num_keep} checkpoint; a crash during "
                f"an asynchronous save may leave no valid checkpoint "
                f"(recommended: >= {MIN_SAFE_NUM_KEEP})"
            )

        self.recorder = recorder
        self.directory = Path(directory)
        self.name = name
        self.num_keep = num_keep

        self._pattern = re.compile(
            rf"^{re.escape(name)}-(\d+){re.escape(recorder.file_extension)}$"
        )
        self.directory.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return (f"FileCheckpointer(name={self.name!r}, directory={str(self.directory)!r}, "
                f"num_keep={self.num_keep})")

    # ─────────────────────────────────────────────────────────────────────────────
    # Paths
    # ─────────────────────────────────────────────────────────────────────────────

    def path_for(self, epoch: int) -> Path:
        """Checkpoint file path for an epoch."""
        return self.directory / f"{self.name}-{epoch}{self.recorder.file_extension}"

    def list_epochs(self) -> List[int]:
        """Epochs persisted for this component, ascending."""
        if not self.directory.exists():
            return []

        epochs = []
        for path in self.directory.iterdir():
            match = self._pattern.match(path.name)
            if match is not None:
                epochs.append(int(match.group(1)))
        return sorted(epochs)

    # ─────────────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────────────

    def save(self, record: Record, epoch: int) -> None:
        """
        Write the record for an epoch, then enforce retention.

        Raises:
            CheckpointSaveError: If encoding or writing fails
        """
        path = self.path_for(epoch)

        try:
            payload = self.recorder.encode(record)
        except Exception as e:
            raise CheckpointSaveError(
                message=f"Failed to encode {self.name} record",
                checkpoint_path=str(path),
                component=self.name,
                epoch=epoch,
                cause=e,
            )

        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise CheckpointSaveError(
                message=f"Failed to write {self.name} checkpoint",
                checkpoint_path=str(path),
                component=self.name,
                epoch=epoch,
                cause=e,
            )

        logger.debug(f"Saved {self.name} checkpoint for epoch {epoch}: {path}")
        self._enforce_retention()

    def restore(self, epoch: int) -> Record:
        """
        Load the record saved for an epoch.

        Raises:
            CheckpointLoadError: If the file is missing, unreadable or corrupt
        """
        path = self.path_for(epoch)

        if not path.exists():
            raise CheckpointLoadError(
                message=f"No {self.name} checkpoint for epoch {epoch}",
                checkpoint_path=str(path),
                component=self.name,
                epoch=epoch,
                context={"available_epochs": self.list_epochs()},
            )

        try:
            payload = path.read_bytes()
            record = self.recorder.decode(payload)
        except Exception as e:
            raise CheckpointLoadError(
                message=f"Failed to load {self.name} checkpoint for epoch {epoch}",
                checkpoint_path=str(path),
                component=self.name,
                epoch=epoch,
                cause=e,
            )

        logger.debug(f"Restored {self.name} checkpoint for epoch {epoch}")
        return record

    def delete(self, epoch: int) -> None:
        """
        Delete the checkpoint for an epoch; deleting a missing epoch is a no-op.

        Raises:
            CheckpointDeleteError: If the file exists but cannot be removed
        """
        path = self.path_for(epoch)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise CheckpointDeleteError(
                message=f"Failed to delete {self.name} checkpoint for epoch {epoch}",
                checkpoint_path=str(path),
                component=self.name,
                epoch=epoch,
                cause=e,
            )
        logger.debug(f"Deleted {self.name} checkpoint for epoch {epoch}")

    # ─────────────────────────────────────────────────────────────────────────────
    # Retention
    # ─────────────────────────────────────────────────────────────────────────────

    def _try_delete(self, epoch: int) -> Result[None, CheckpointDeleteError]:
        try:
            self.delete(epoch)
        except CheckpointDeleteError as e:
            return Err(e)
        return Ok(None)

    def _enforce_retention(self) -> None:
        epochs = self.list_epochs()
        excess = len(epochs) - self.num_keep
        if excess <= 0:
            return

        for epoch in epochs[:excess]:
            result = self._try_delete(epoch)
            if is_err(result):
                # newest checkpoints are intact, only a stale file remains
                logger.warning(f"Retention could not delete {self.name} epoch {epoch}: {result.error}")
            else:
                logger.info(f"Removed old {self.name} checkpoint: epoch {epoch}")


__all__ = [
    "FileCheckpointer",
]
