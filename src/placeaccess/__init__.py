"""Place-based accessibility with configurable impedance functions and batched runs."""

from .aggregation import AccessibilityAggregator, CostEdge, OpportunityTable
from .batching import BatchController, CsvPartitionSink, MemorySink, RunReport
from .impedance import ImpedanceFamily, ImpedanceFunction, evaluate
from .measures import Measure, MeasureRegistry

__all__ = [
    "AccessibilityAggregator",
    "BatchController",
    "CostEdge",
    "CsvPartitionSink",
    "ImpedanceFamily",
    "ImpedanceFunction",
    "Measure",
    "MeasureRegistry",
    "MemorySink",
    "OpportunityTable",
    "RunReport",
    "evaluate",
]
