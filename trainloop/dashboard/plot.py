# ════════════════════════════════════════════════════════════════════════════════
# Dashboard - Plot Buffer
# ════════════════════════════════════════════════════════════════════════════════
# Bounded per-metric time series for text plots.
#
# A metric registered on both splits shares one plot keyed by its name;
# train and valid points are kept as separate series of that plot.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import math
import threading
from typing import Dict, List, Sequence, Tuple

from trainloop.core.types import Split

Point = Tuple[float, float]

SPARK_CHARS = "▁▂▃▄▅▆▇█"


class PlotBuffer:
    """
    Per-metric, per-split series with a fixed maximum length.

    When a series grows past `max_points`, adjacent points are averaged
    pairwise, halving its resolution while keeping the whole history.

    Example:
        >>> buffer = PlotBuffer(max_points=4)
        >>> for step in range(8):
        ...     buffer.push("Loss", Split.TRAIN, float(step))
        >>> len(buffer.series("Loss", Split.TRAIN)) <= 4
        True
    """

    def __init__(self, max_points: int = 60):
        if max_points < 2:
            raise ValueError(f"max_points must be >= 2, got {max_points}")
        self.max_points = max_points
        self._plots: Dict[str, Dict[Split, List[Point]]] = {}
        self._steps: Dict[Tuple[str, Split], int] = {}
        self._lock = threading.Lock()

    def push(self, name: str, split: Split, y: float) -> None:
        """Append a point; x is the number of points pushed to the series so far."""
        if math.isnan(y):
            return

        with self._lock:
            x = self._steps.get((name, split), 0)
            self._steps[(name, split)] = x + 1
            series = self._plots.setdefault(name, {}).setdefault(split, [])
            series.append((float(x), float(y)))
            if len(series) > self.max_points:
                series[:] = _halve(series)

    def series(self, name: str, split: Split) -> List[Point]:
        with self._lock:
            return list(self._plots.get(name, {}).get(split, []))

    def names(self) -> List[str]:
        with self._lock:
            return list(self._plots)

    def splits(self, name: str) -> List[Split]:
        with self._lock:
            return list(self._plots.get(name, {}))

    def clear(self) -> None:
        with self._lock:
            self._plots.clear()
            self._steps.clear()


def _halve(series: Sequence[Point]) -> List[Point]:
    merged = []
    for i in range(0, len(series) - 1, 2):
        (x0, y0), (x1, y1) = series[i], series[i + 1]
        merged.append(((x0 + x1) / 2, (y0 + y1) / 2))
    if len(series) % 2:
        merged.append(series[-1])
    return merged


def sparkline(values: Sequence[float], width: int = 40) -> str:
    """
    Render values as a one-line block-character plot.

    Values are resampled to at most `width` columns.
    """
    values = [v for v in values if not math.isnan(v)]
    if not values:
        return ""

    if len(values) > width:
        step = len(values) / width
        values = [values[int(i * step)] for i in range(width)]

    low, high = min(values), max(values)
    span = high - low
    if span == 0:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * len(values)

    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round((v - low) / span * top)] for v in values)


__all__ = [
    "PlotBuffer",
    "sparkline",
]
