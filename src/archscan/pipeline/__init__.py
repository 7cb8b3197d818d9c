"""Pipeline orchestration for archscan."""

from archscan.pipeline.executor import PipelineExecutor
from archscan.pipeline.streams import BroadcastStream, StreamClosedError, Subscription

__all__ = [
    "PipelineExecutor",
    "BroadcastStream",
    "StreamClosedError",
    "Subscription",
]
