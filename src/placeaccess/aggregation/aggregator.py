"""Per-origin accessibility aggregation over every configured measure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from placeaccess.errors import IncompleteDataError
from placeaccess.impedance import evaluate_array
from placeaccess.measures import Measure

from .domain_types import COST_COLUMN, DESTINATION_COLUMN, ORIGIN_COLUMN, normalize_id
from .opportunities import OpportunityTable

logger = logging.getLogger(__name__)


@dataclass
class BatchComputation:
    """Scores for one batch of origins plus the origins that failed."""

    results: pd.DataFrame
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def scored_origins(self) -> List[str]:
        return self.results[ORIGIN_COLUMN].tolist()


class AccessibilityAggregator:
    """Stateless accessibility summation.

    ``A(origin, measure) = Σ_d opportunity(d) × weight_measure(cost(origin, d))``,
    with destinations beyond a measure's own cutoff contributing zero. Costs are
    read once per edge and reused for all measures.
    """

    def compute(
        self,
        origin: str,
        destinations: Sequence[str],
        opportunities: OpportunityTable,
        costs: Sequence[float] | np.ndarray,
        measures: Iterable[Measure],
    ) -> Dict[str, float]:
        """Score one origin; ``costs`` are aligned with ``destinations``."""
        dest_ids = [normalize_id(dest) for dest in destinations]
        t = np.asarray(costs, dtype=float)
        if t.shape != (len(dest_ids),):
            raise ValueError(
                f"Origin {origin}: got {t.size} costs for {len(dest_ids)} destinations"
            )
        if t.size and (np.isnan(t).any() or (t < 0.0).any()):
            raise ValueError(f"Origin {origin}: travel costs must be non-negative numbers")

        values, missing = opportunities.lookup(dest_ids)
        if missing:
            raise IncompleteDataError(origin, missing)

        scores: Dict[str, float] = {}
        for measure in measures:
            weights = evaluate_array(measure.function, t)
            if measure.cutoff is not None:
                weights = np.where(t > measure.cutoff, 0.0, weights)
            scores[measure.name] = float(np.sum(values * weights)) if t.size else 0.0
        return scores

    def compute_edges(
        self,
        origin: str,
        edges: Mapping[str, float],
        opportunities: OpportunityTable,
        measures: Iterable[Measure],
    ) -> Dict[str, float]:
        """Convenience form taking ``{destination_id: cost}`` for one origin."""
        destinations = list(edges.keys())
        return self.compute(
            origin,
            destinations,
            opportunities,
            [edges[dest] for dest in destinations],
            measures,
        )

    def compute_batch(
        self,
        edges: pd.DataFrame,
        opportunities: OpportunityTable,
        measures: Sequence[Measure],
        origins: Optional[Sequence[str]] = None,
    ) -> BatchComputation:
        """Score every origin of a batch.

        Failures for a single origin (missing opportunity data, invalid costs)
        are recorded and do not stop the rest of the batch. Requested origins
        without any edge score zero for every measure.
        """
        measures = list(measures)
        names = [measure.name for measure in measures]
        if origins is None:
            ordered = list(dict.fromkeys(edges[ORIGIN_COLUMN].tolist()))
        else:
            ordered = [normalize_id(origin) for origin in origins]

        rows: List[Dict[str, object]] = []
        failures: Dict[str, str] = {}
        grouped: Dict[str, pd.DataFrame] = {}
        if not edges.empty:
            grouped = {origin: group for origin, group in edges.groupby(ORIGIN_COLUMN, sort=False)}

        for origin in ordered:
            group = grouped.get(origin)
            if group is None:
                scores = {name: 0.0 for name in names}
            else:
                try:
                    scores = self.compute(
                        origin,
                        group[DESTINATION_COLUMN].tolist(),
                        opportunities,
                        group[COST_COLUMN].to_numpy(dtype=float),
                        measures,
                    )
                except (IncompleteDataError, ValueError) as exc:
                    logger.warning("Skipping origin %s: %s", origin, exc)
                    failures[origin] = str(exc)
                    continue
            rows.append({ORIGIN_COLUMN: origin, **scores})

        results = pd.DataFrame(rows, columns=[ORIGIN_COLUMN, *names])
        if not results.empty:
            results[names] = results[names].astype(float)
        return BatchComputation(results=results, failures=failures)


__all__ = ["AccessibilityAggregator", "BatchComputation"]
