"""Route execution."""

from hoparb.swap.executor import ExecutionConfig, ExecutionPipeline

__all__ = ["ExecutionConfig", "ExecutionPipeline"]
