"""Batch driver, sinks and checkpointing for accessibility runs."""

from .batch_controller import (
    BatchController,
    BatchOutcome,
    RunReport,
    compute_batch,
    failures_frame,
    partition_origins,
)
from .checkpoint import CheckpointFile
from .sinks import AccessibilitySink, CsvPartitionSink, MemorySink

__all__ = [
    "AccessibilitySink",
    "BatchController",
    "BatchOutcome",
    "CheckpointFile",
    "CsvPartitionSink",
    "MemorySink",
    "RunReport",
    "compute_batch",
    "failures_frame",
    "partition_origins",
]
