"""Cost relation sources that hand out edges one origin batch at a time."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import pandas as pd

from placeaccess.errors import CostUnavailableError

from .domain_types import (
    COST_COLUMN,
    DESTINATION_COLUMN,
    EDGE_COLUMNS,
    ORIGIN_COLUMN,
    CostBatch,
    empty_edge_frame,
    normalize_id,
)

logger = logging.getLogger(__name__)


class CostSource(Protocol):
    """Anything able to return the edges that touch a set of origins."""

    def fetch(self, origin_ids: Sequence[str]) -> CostBatch:
        ...


def _standardize_edges(frame: pd.DataFrame, max_cost: Optional[float]) -> pd.DataFrame:
    """Normalise ids, coerce costs, and apply the network search cutoff."""
    edges = frame.loc[:, list(EDGE_COLUMNS)].copy()
    edges[ORIGIN_COLUMN] = [normalize_id(value) for value in edges[ORIGIN_COLUMN].tolist()]
    edges[DESTINATION_COLUMN] = [normalize_id(value) for value in edges[DESTINATION_COLUMN].tolist()]
    edges[COST_COLUMN] = pd.to_numeric(edges[COST_COLUMN], errors="coerce").astype(float)
    if max_cost is not None:
        # unparseable costs stay so the aggregator fails their origin with a reason
        costs = edges[COST_COLUMN]
        edges = edges[costs.isna() | (costs <= float(max_cost))]
    return edges.reset_index(drop=True)


class FrameCostSource:
    """Cost relation already held in a pandas DataFrame."""

    def __init__(
        self,
        frame: pd.DataFrame,
        *,
        max_cost: Optional[float] = None,
        origin_column: str = ORIGIN_COLUMN,
        destination_column: str = DESTINATION_COLUMN,
        cost_column: str = COST_COLUMN,
    ):
        renamed = frame.rename(
            columns={
                origin_column: ORIGIN_COLUMN,
                destination_column: DESTINATION_COLUMN,
                cost_column: COST_COLUMN,
            }
        )
        missing = [column for column in EDGE_COLUMNS if column not in renamed.columns]
        if missing:
            raise ValueError(f"Cost frame is missing required columns: {', '.join(missing)}")
        self._edges = _standardize_edges(renamed, max_cost)
        self.max_cost = max_cost

    def origin_ids(self) -> List[str]:
        return list(dict.fromkeys(self._edges[ORIGIN_COLUMN].tolist()))

    def fetch(self, origin_ids: Sequence[str]) -> CostBatch:
        wanted = {normalize_id(origin) for origin in origin_ids}
        selected = self._edges[self._edges[ORIGIN_COLUMN].isin(wanted)]
        return CostBatch(edges=selected.reset_index(drop=True))


class CsvCostSource:
    """Streams a (possibly gzipped) OD cost CSV, keeping only the batch's rows.

    The file is re-read chunk by chunk for every batch, so peak memory is bounded
    by ``chunksize`` plus the rows of the current batch rather than by the full
    matrix.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        max_cost: Optional[float] = None,
        chunksize: int = 250_000,
        origin_column: str = ORIGIN_COLUMN,
        destination_column: str = DESTINATION_COLUMN,
        cost_column: str = COST_COLUMN,
    ):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Cost CSV not found at {self.path}")
        if chunksize <= 0:
            raise ValueError("chunksize must be positive.")
        self.max_cost = max_cost
        self.chunksize = int(chunksize)
        self._columns = {
            origin_column: ORIGIN_COLUMN,
            destination_column: DESTINATION_COLUMN,
            cost_column: COST_COLUMN,
        }
        header = pd.read_csv(self.path, nrows=0)
        missing = [column for column in self._columns if column not in header.columns]
        if missing:
            raise ValueError(f"{self.path} is missing required columns: {', '.join(missing)}")

    def _iter_chunks(self) -> Iterable[pd.DataFrame]:
        id_columns = [name for name, target in self._columns.items() if target != COST_COLUMN]
        reader = pd.read_csv(
            self.path,
            usecols=list(self._columns),
            dtype={column: str for column in id_columns},
            chunksize=self.chunksize,
        )
        for chunk in reader:
            yield chunk.rename(columns=self._columns)

    def origin_ids(self) -> List[str]:
        """Distinct origins in file order (one streaming pass)."""
        seen: Dict[str, None] = {}
        for chunk in self._iter_chunks():
            for origin in chunk[ORIGIN_COLUMN].tolist():
                seen.setdefault(normalize_id(origin), None)
        return list(seen)

    def fetch(self, origin_ids: Sequence[str]) -> CostBatch:
        wanted = {normalize_id(origin) for origin in origin_ids}
        if not wanted:
            return CostBatch.empty()
        parts: List[pd.DataFrame] = []
        chunk_idx = 0
        for chunk in self._iter_chunks():
            chunk_idx += 1
            chunk[ORIGIN_COLUMN] = chunk[ORIGIN_COLUMN].astype(str).str.strip()
            filtered = chunk[chunk[ORIGIN_COLUMN].isin(wanted)]
            if logger.isEnabledFor(logging.DEBUG) and (chunk_idx <= 5 or chunk_idx % 10 == 0):
                logger.debug(
                    "CsvCostSource file=%s chunk=%s matched %s rows",
                    os.path.basename(self.path),
                    chunk_idx,
                    len(filtered),
                )
            if not filtered.empty:
                parts.append(filtered)
        if not parts:
            return CostBatch.empty()
        edges = pd.concat(parts, ignore_index=True)
        return CostBatch(edges=_standardize_edges(edges, self.max_cost))


class CostQueryService(Protocol):
    """Point query for one OD pair. ``None`` means no path within the search cutoff."""

    def query(self, origin_id: str, destination_id: str) -> Optional[float]:
        ...


class QueryCostSource:
    """Builds batch edge frames from a per-pair cost service.

    A "no path" answer (``None`` or a non-transient :class:`CostUnavailableError`)
    drops the edge. Transient faults and timeouts are retried; once retries run
    out the whole origin is reported as failed.
    """

    def __init__(
        self,
        service: CostQueryService,
        destination_ids: Iterable[str],
        *,
        max_cost: Optional[float] = None,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.0,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative.")
        self.service = service
        self.destination_ids = [normalize_id(dest) for dest in destination_ids]
        self.max_cost = max_cost
        self.max_retries = int(max_retries)
        self.retry_backoff_seconds = float(retry_backoff_seconds)

    def _query_with_retries(self, origin_id: str, destination_id: str) -> Optional[float]:
        attempt = 0
        while True:
            try:
                return self.service.query(origin_id, destination_id)
            except CostUnavailableError as exc:
                if not exc.transient:
                    return None
                error: CostUnavailableError = exc
            except TimeoutError as exc:
                error = CostUnavailableError(
                    origin_id, destination_id, transient=True, reason=f"timeout: {exc}"
                )
            attempt += 1
            if attempt > self.max_retries:
                raise error
            logger.debug(
                "Retrying cost query %s->%s (attempt %d/%d): %s",
                origin_id,
                destination_id,
                attempt,
                self.max_retries,
                error,
            )
            if self.retry_backoff_seconds > 0:
                time.sleep(self.retry_backoff_seconds * attempt)

    def fetch(self, origin_ids: Sequence[str]) -> CostBatch:
        rows: List[Dict[str, object]] = []
        failures: Dict[str, str] = {}
        for raw_origin in origin_ids:
            origin = normalize_id(raw_origin)
            origin_rows: List[Dict[str, object]] = []
            try:
                for destination in self.destination_ids:
                    cost = self._query_with_retries(origin, destination)
                    if cost is None:
                        continue
                    cost = float(cost)
                    if self.max_cost is not None and cost > self.max_cost:
                        continue
                    origin_rows.append(
                        {ORIGIN_COLUMN: origin, DESTINATION_COLUMN: destination, COST_COLUMN: cost}
                    )
            except CostUnavailableError as exc:
                logger.warning("Cost lookup failed for origin %s: %s", origin, exc)
                failures[origin] = str(exc)
                continue
            rows.extend(origin_rows)
        edges = pd.DataFrame(rows, columns=list(EDGE_COLUMNS)) if rows else empty_edge_frame()
        return CostBatch(edges=edges, failures=failures)


__all__ = ["CostQueryService", "CostSource", "CsvCostSource", "FrameCostSource", "QueryCostSource"]
