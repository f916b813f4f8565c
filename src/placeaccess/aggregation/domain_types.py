"""Core dataclasses shared across the aggregation and batching packages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple

import pandas as pd

ORIGIN_COLUMN = "origin_id"
DESTINATION_COLUMN = "destination_id"
COST_COLUMN = "travel_cost"
EDGE_COLUMNS: Tuple[str, str, str] = (ORIGIN_COLUMN, DESTINATION_COLUMN, COST_COLUMN)


def normalize_id(value: object) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        # ids read as floats (e.g. 1012.0) must match their integer spelling
        return str(int(value))
    return str(value).strip()


@dataclass(frozen=True)
class CostEdge:
    """Travel cost between one origin and one destination."""

    origin_id: str
    destination_id: str
    travel_cost: float

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.origin_id}->{self.destination_id} ({self.travel_cost:g})"


@dataclass
class CostBatch:
    """Edges touching one batch of origins, plus origins whose costs could not be fetched."""

    edges: pd.DataFrame
    failures: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "CostBatch":
        return cls(edges=empty_edge_frame())


@dataclass(frozen=True)
class Batch:
    """Consecutive slice of the origin set processed together."""

    index: int
    origin_ids: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.origin_ids)


def empty_edge_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            ORIGIN_COLUMN: pd.Series(dtype=str),
            DESTINATION_COLUMN: pd.Series(dtype=str),
            COST_COLUMN: pd.Series(dtype=float),
        }
    )


def edges_to_frame(edges: Sequence[CostEdge]) -> pd.DataFrame:
    if not edges:
        return empty_edge_frame()
    return pd.DataFrame(
        {
            ORIGIN_COLUMN: [normalize_id(edge.origin_id) for edge in edges],
            DESTINATION_COLUMN: [normalize_id(edge.destination_id) for edge in edges],
            COST_COLUMN: [float(edge.travel_cost) for edge in edges],
        }
    )
