"""Aggregation package exports."""

from .aggregator import AccessibilityAggregator, BatchComputation
from .cost_sources import CostQueryService, CostSource, CsvCostSource, FrameCostSource, QueryCostSource
from .domain_types import (
    COST_COLUMN,
    DESTINATION_COLUMN,
    ORIGIN_COLUMN,
    Batch,
    CostBatch,
    CostEdge,
    edges_to_frame,
)
from .opportunities import OpportunityTable

__all__ = [
    "AccessibilityAggregator",
    "Batch",
    "BatchComputation",
    "COST_COLUMN",
    "CostBatch",
    "CostEdge",
    "CostQueryService",
    "CostSource",
    "CsvCostSource",
    "DESTINATION_COLUMN",
    "FrameCostSource",
    "ORIGIN_COLUMN",
    "OpportunityTable",
    "QueryCostSource",
    "edges_to_frame",
]
