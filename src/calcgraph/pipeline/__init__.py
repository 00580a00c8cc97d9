"""Differential update pipeline and its scheduling abstractions."""

from calcgraph.pipeline.differential import BatchResult, DifferentialUpdatePipeline, UpdateHistory
from calcgraph.pipeline.scheduling import AsyncioScheduler, ManualScheduler, Scheduler

__all__ = [
    "DifferentialUpdatePipeline",
    "UpdateHistory",
    "BatchResult",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
]
