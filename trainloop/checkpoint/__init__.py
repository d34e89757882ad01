# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Checkpointing
# ════════════════════════════════════════════════════════════════════════════════
# Epoch-indexed persistence of model, optimizer and scheduler records.
#
# - Checkpointer: save / restore / delete contract
# - FileCheckpointer: atomic files with num_keep retention
# - AsyncCheckpointer: single-writer background queue around any checkpointer
# ════════════════════════════════════════════════════════════════════════════════

from trainloop.checkpoint.base import Checkpointer, snapshot_record
from trainloop.checkpoint.file import FileCheckpointer
from trainloop.checkpoint.async_checkpointer import AsyncCheckpointer

__all__ = [
    "Checkpointer",
    "snapshot_record",
    "FileCheckpointer",
    "AsyncCheckpointer",
]
