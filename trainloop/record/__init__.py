# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Record Codecs
# ════════════════════════════════════════════════════════════════════════════════
# Recorders encode opaque records (state dicts) to bytes and back.
# Checkpointers own the file handling; recorders own only the format.
#
# Available recorders:
# - TorchFileRecorder: torch.save / torch.load payloads (default)
# - JsonFileRecorder: human-readable JSON, tensors stored as nested lists
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
import io
import json
from typing import Any, Dict

import torch
from torch import Tensor

from trainloop.core.errors import ConfigurationError
from trainloop.core.types import Record

_TENSOR_TAG = "__tensor__"


# ═════════════════════════════════════════════════════════════════════════════════
# Base Recorder
# ═════════════════════════════════════════════════════════════════════════════════

class Recorder(abc.ABC):
    """
    Codec contract for checkpoint records.

    Implementations must round-trip every record type the learner
    persists: model, optimizer and scheduler state dicts.
    """

    file_extension: str = ".bin"

    @abc.abstractmethod
    def encode(self, record: Record) -> bytes:
        """Serialize a record."""

    @abc.abstractmethod
    def decode(self, data: bytes) -> Record:
        """Deserialize a record produced by `encode`."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(extension={self.file_extension!r})"


# ═════════════════════════════════════════════════════════════════════════════════
# Torch Recorder
# ═════════════════════════════════════════════════════════════════════════════════

class TorchFileRecorder(Recorder):
    """
    Records stored with torch.save.

    Args:
        weights_only: Restrict torch.load to tensors and primitive containers
        map_location: Device tensors are loaded onto
    """

    file_extension = ".pt"

    def __init__(self, weights_only: bool = True, map_location: str = "cpu"):
        self.weights_only = weights_only
        self.map_location = map_location

    def encode(self, record: Record) -> bytes:
        buffer = io.BytesIO()
        torch.save(record, buffer)
        return buffer.getvalue()

    def decode(self, data: bytes) -> Record:
        return torch.load(
            io.BytesIO(data),
            map_location=self.map_location,
            weights_only=self.weights_only,
        )


# ═════════════════════════════════════════════════════════════════════════════════
# JSON Recorder
# ═════════════════════════════════════════════════════════════════════════════════

def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Tensor):
        return {
            _TENSOR_TAG: value.detach().cpu().tolist(),
            "dtype": str(value.dtype).replace("torch.", ""),
        }
    if isinstance(value, dict):
        # JSON keys are strings; integer keys (optimizer param ids) are tagged
        return {
            (f"int:{k}" if isinstance(k, int) else k): _to_jsonable(v)
            for k, v in value.items()
        }
    if isinstance(value, tuple):
        return {"__tuple__": [_to_jsonable(v) for v in value]}
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _from_jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        if _TENSOR_TAG in value:
            return torch.tensor(value[_TENSOR_TAG], dtype=getattr(torch, value["dtype"]))
        if "__tuple__" in value and len(value) == 1:
            return tuple(_from_jsonable(v) for v in value["__tuple__"])
        return {
            (int(k[4:]) if isinstance(k, str) and k.startswith("int:") else k): _from_jsonable(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_from_jsonable(v) for v in value]
    return value


class JsonFileRecorder(Recorder):
    """
    Pretty-printed JSON records.

    Slower and larger than TorchFileRecorder but readable and diffable.
    """

    file_extension = ".json"

    def __init__(self, indent: int = 2):
        self.indent = indent

    def encode(self, record: Record) -> bytes:
        return json.dumps(_to_jsonable(record), indent=self.indent).encode("utf-8")

    def decode(self, data: bytes) -> Record:
        return _from_jsonable(json.loads(data.decode("utf-8")))


# ═════════════════════════════════════════════════════════════════════════════════
# Factory
# ═════════════════════════════════════════════════════════════════════════════════

_RECORDERS: Dict[str, type] = {
    "torch": TorchFileRecorder,
    "json": JsonFileRecorder,
}


def create_recorder(name: str, **kwargs: Any) -> Recorder:
    """
    Create a recorder by name ("torch" or "json").
    """
    try:
        recorder_cls = _RECORDERS[name]
    except KeyError:
        raise ConfigurationError(
            message=f"Unknown recorder: {name}",
            field_path="checkpointer.recorder",
            expected=" | ".join(sorted(_RECORDERS)),
            got=name,
        )
    return recorder_cls(**kwargs)


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "Recorder",
    "TorchFileRecorder",
    "JsonFileRecorder",
    "create_recorder",
]
