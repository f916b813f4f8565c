"""Read-only opportunity table keyed by destination id."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterator, List, Mapping, Sequence, Tuple

import numpy as np
import pandas as pd

from .domain_types import DESTINATION_COLUMN, normalize_id

logger = logging.getLogger(__name__)

DEFAULT_VALUE_COLUMN = "opportunities"


class OpportunityTable:
    """Non-negative opportunity magnitudes (jobs, shops, ...) per destination."""

    def __init__(self, values: Mapping[object, float]):
        cleaned = {}
        for raw_id, raw_value in values.items():
            dest_id = normalize_id(raw_id)
            if not dest_id:
                raise ValueError("Opportunity table contains an empty destination id")
            if dest_id in cleaned:
                raise ValueError(f"Duplicate destination id in opportunity table: {dest_id}")
            try:
                value = float(raw_value)
            except (TypeError, ValueError) as exc:
                raise ValueError(
                    f"Opportunity value for {dest_id} must be numeric, got {raw_value!r}"
                ) from exc
            if not math.isfinite(value):
                raise ValueError(f"Opportunity value for {dest_id} must be finite, got {value}")
            if value < 0.0:
                raise ValueError(f"Opportunity value for {dest_id} must be non-negative, got {value}")
            cleaned[dest_id] = value
        self._series = pd.Series(cleaned, dtype=float)
        self._series.index = self._series.index.astype(str)

    # ------------------------------------------------------------------ loaders
    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        *,
        id_column: str = DESTINATION_COLUMN,
        value_column: str = DEFAULT_VALUE_COLUMN,
    ) -> "OpportunityTable":
        missing = [column for column in (id_column, value_column) if column not in frame.columns]
        if missing:
            raise ValueError(f"Opportunity frame is missing required columns: {', '.join(missing)}")
        ids = [normalize_id(value) for value in frame[id_column].tolist()]
        values = pd.to_numeric(frame[value_column], errors="coerce").tolist()
        if len(set(ids)) != len(ids):
            raise ValueError("Opportunity frame contains duplicate destination ids")
        return cls(dict(zip(ids, values)))

    @classmethod
    def from_csv(
        cls,
        path: str | Path,
        *,
        id_column: str = DESTINATION_COLUMN,
        value_column: str = DEFAULT_VALUE_COLUMN,
    ) -> "OpportunityTable":
        csv_path = Path(path)
        if not csv_path.exists():
            raise FileNotFoundError(f"Opportunity CSV not found at {csv_path}")
        frame = pd.read_csv(csv_path, usecols=[id_column, value_column], dtype={id_column: str})
        table = cls.from_frame(frame, id_column=id_column, value_column=value_column)
        logger.info(
            "Loaded %d destinations (total opportunities %.1f) from %s",
            len(table),
            table.total,
            csv_path,
        )
        return table

    # --------------------------------------------------------------------- API
    def __len__(self) -> int:
        return len(self._series)

    def __contains__(self, dest_id: object) -> bool:
        return normalize_id(dest_id) in self._series.index

    def __iter__(self) -> Iterator[str]:
        return iter(self._series.index.tolist())

    def get(self, dest_id: object) -> float:
        """Opportunity at ``dest_id``; raises ``KeyError`` when absent."""
        key = normalize_id(dest_id)
        if key not in self._series.index:
            raise KeyError(key)
        return float(self._series.at[key])

    @property
    def total(self) -> float:
        return float(self._series.sum())

    def lookup(self, dest_ids: Sequence[str]) -> Tuple[np.ndarray, List[str]]:
        """Return values aligned with ``dest_ids`` and the ids that are missing.

        Missing entries are NaN in the returned array.
        """
        values = self._series.reindex(pd.Index(list(dest_ids), dtype=object)).to_numpy(dtype=float)
        missing_mask = np.isnan(values)
        missing = [str(dest_ids[i]) for i in np.flatnonzero(missing_mask)]
        return values, missing

    def to_dict(self) -> dict:
        return {str(key): float(value) for key, value in self._series.items()}


__all__ = ["OpportunityTable"]
