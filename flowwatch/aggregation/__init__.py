"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .coordinator import AggregationCoordinator
from .models import (
    FlowKey,
    FlowRecord,
    FlowStats,
    WindowReport,
    WindowTable,
    make_flow_key,
    merge_into,
)
from .worker import WorkerAggregator, WorkerPool

__all__ = [
    "AggregationCoordinator",
    "WorkerAggregator",
    "WorkerPool",
    "FlowKey",
    "FlowRecord",
    "FlowStats",
    "WindowReport",
    "WindowTable",
    "make_flow_key",
    "merge_into",
]
