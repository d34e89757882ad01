# ════════════════════════════════════════════════════════════════════════════════
# Dashboard - Terminal Renderer
# ════════════════════════════════════════════════════════════════════════════════
# tqdm progress bars while an epoch runs; rich tables with epoch aggregates
# and sparkline plots once it ends.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from typing import Dict, Optional

from rich import box
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from trainloop.core.types import Split, TrainingProgress
from trainloop.dashboard.plot import PlotBuffer, sparkline
from trainloop.dashboard.renderer import (
    DashboardRenderer,
    MetricView,
    NumericMetricView,
)
from trainloop.metrics.aggregate import AggregateSummary


_SPLIT_STYLES = {
    Split.TRAIN: "green",
    Split.VALID: "yellow",
}


class CLIDashboardRenderer(DashboardRenderer):
    """
    Terminal dashboard.

    Args:
        plot_points: Maximum points kept per plotted series
        refresh_every: Update the progress bar postfix every N items
        console: rich console used for the epoch tables
        disable_progress: Hide the tqdm progress bars
    """

    def __init__(
        self,
        plot_points: int = 60,
        refresh_every: int = 1,
        console: Optional[Console] = None,
        disable_progress: bool = False,
    ):
        self.plots = PlotBuffer(max_points=plot_points)
        self.refresh_every = refresh_every
        self.console = console or Console(highlight=False)
        self.disable_progress = disable_progress

        self._bars: Dict[Split, tqdm] = {}
        self._bar_epochs: Dict[Split, int] = {}
        self._latest: Dict[Split, Dict[str, str]] = {Split.TRAIN: {}, Split.VALID: {}}

    # ─────────────────────────────────────────────────────────────────────────────
    # Step Updates
    # ─────────────────────────────────────────────────────────────────────────────

    def update_metric(self, view: MetricView) -> None:
        self._latest[view.split][view.name] = view.formatted

        if isinstance(view, NumericMetricView) and view.plot:
            self.plots.push(view.name, view.split, view.value)

    def render(self, split: Split, progress: TrainingProgress) -> None:
        bar = self._bar_for(split, progress)
        bar.update(max(0, progress.items_processed - bar.n))

        if progress.iteration % self.refresh_every == 0:
            bar.set_postfix(self._latest[split], refresh=False)

    def _bar_for(self, split: Split, progress: TrainingProgress) -> tqdm:
        bar = self._bars.get(split)
        if bar is not None and self._bar_epochs[split] == progress.epoch:
            return bar

        if bar is not None:
            bar.close()

        bar = tqdm(
            total=progress.items_total or None,
            desc=f"{split.value} [{progress.epoch}/{progress.epoch_total}]",
            unit="item",
            disable=self.disable_progress,
        )
        self._bars[split] = bar
        self._bar_epochs[split] = progress.epoch
        return bar

    # ─────────────────────────────────────────────────────────────────────────────
    # Epoch Summary
    # ─────────────────────────────────────────────────────────────────────────────

    def end_epoch(
        self,
        split: Split,
        epoch: int,
        summaries: Dict[str, AggregateSummary],
    ) -> None:
        bar = self._bars.pop(split, None)
        if bar is not None:
            bar.close()
        self._latest[split] = {}

        if summaries:
            self.console.print(self.summary_table(split, epoch, summaries))

        plot_table = self.plot_table()
        if plot_table is not None:
            self.console.print(plot_table)

    def summary_table(
        self,
        split: Split,
        epoch: int,
        summaries: Dict[str, AggregateSummary],
    ) -> Table:
        style = _SPLIT_STYLES.get(split, "bold")
        table = Table(
            title=f"{split.value} - epoch {epoch}",
            show_header=True,
            header_style=f"bold {style}",
            box=box.SIMPLE,
        )
        table.add_column("Metric", style="dim")
        table.add_column("Mean", justify="right")
        table.add_column("Min", justify="right")
        table.add_column("Max", justify="right")
        table.add_column("Last", justify="right")

        for name, summary in summaries.items():
            table.add_row(
                name,
                f"{summary.mean:.4f}",
                f"{summary.min:.4f}",
                f"{summary.max:.4f}",
                f"{summary.last:.4f}",
            )
        return table

    def plot_table(self) -> Optional[Table]:
        names = self.plots.names()
        if not names:
            return None

        table = Table(show_header=True, header_style="bold cyan", box=box.SIMPLE)
        table.add_column("Plot", style="dim")
        for split in (Split.TRAIN, Split.VALID):
            table.add_column(split.value, style=_SPLIT_STYLES[split])

        for name in names:
            table.add_row(
                name,
                *(
                    sparkline([y for _, y in self.plots.series(name, split)])
                    for split in (Split.TRAIN, Split.VALID)
                ),
            )
        return table

    def close(self) -> None:
        for bar in self._bars.values():
            bar.close()
        self._bars.clear()


__all__ = [
    "CLIDashboardRenderer",
]
