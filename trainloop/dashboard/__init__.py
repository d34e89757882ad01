# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Dashboard
# ════════════════════════════════════════════════════════════════════════════════
# Metric store, plot buffers and renderers.
# ════════════════════════════════════════════════════════════════════════════════

from trainloop.dashboard.base import Dashboard
from trainloop.dashboard.cli import CLIDashboardRenderer
from trainloop.dashboard.plot import PlotBuffer, sparkline
from trainloop.dashboard.renderer import (
    DashboardRenderer,
    MetricView,
    NoopRenderer,
    NumericMetricView,
    TextMetricView,
)

__all__ = [
    "Dashboard",
    "DashboardRenderer",
    "NoopRenderer",
    "CLIDashboardRenderer",
    "NumericMetricView",
    "TextMetricView",
    "MetricView",
    "PlotBuffer",
    "sparkline",
]
