"""Memory-bounded batch driver for accessibility runs."""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
import threading
import time
from dataclasses import dataclass, field
from time import perf_counter
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set

import pandas as pd

from placeaccess.aggregation.aggregator import AccessibilityAggregator
from placeaccess.aggregation.cost_sources import CostSource
from placeaccess.aggregation.domain_types import ORIGIN_COLUMN, Batch, normalize_id
from placeaccess.aggregation.opportunities import OpportunityTable
from placeaccess.errors import BatchCommitError, SinkSchemaError
from placeaccess.measures import Measure, MeasureRegistry

from .checkpoint import CheckpointFile
from .sinks import AccessibilitySink

logger = logging.getLogger(__name__)


def partition_origins(origin_ids: Sequence[str], batch_size: int) -> List[Batch]:
    """Split origins into consecutive batches of at most ``batch_size``.

    Raises ``ValueError`` for a non-positive batch size or duplicate origin ids,
    so the batches always form a partition of the origin set.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
    normalized = [normalize_id(origin) for origin in origin_ids]
    if any(not origin for origin in normalized):
        raise ValueError("Origin ids cannot be empty")
    if len(set(normalized)) != len(normalized):
        seen: Dict[str, int] = {}
        for origin in normalized:
            seen[origin] = seen.get(origin, 0) + 1
        duplicates = sorted(origin for origin, count in seen.items() if count > 1)
        raise ValueError(f"Origin ids must be unique; duplicates: {', '.join(duplicates[:5])}")
    return [
        Batch(index=idx, origin_ids=tuple(normalized[start : start + batch_size]))
        for idx, start in enumerate(range(0, len(normalized), batch_size))
    ]


@dataclass
class BatchOutcome:
    """Computed (not yet committed) results of one batch."""

    batch: Batch
    results: pd.DataFrame
    failures: Dict[str, str] = field(default_factory=dict)
    edge_count: int = 0
    elapsed: float = 0.0


@dataclass
class RunReport:
    """Summary of a run: what was committed, skipped, and why origins failed."""

    total_batches: int
    committed_batches: List[int] = field(default_factory=list)
    skipped_batches: List[int] = field(default_factory=list)
    pending_batches: List[int] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    scored_origins: int = 0
    cancelled: bool = False

    @property
    def next_batch(self) -> Optional[int]:
        """First batch index still to be committed, or None when the run is complete."""
        return min(self.pending_batches) if self.pending_batches else None

    @property
    def complete(self) -> bool:
        return not self.pending_batches and not self.cancelled

    def failures_frame(self) -> pd.DataFrame:
        return failures_frame(self.failures)


def failures_frame(failures: Mapping[str, str]) -> pd.DataFrame:
    """``origin_id, reason`` table of per-origin failures."""
    columns = [ORIGIN_COLUMN, "reason"]
    if not failures:
        return pd.DataFrame(columns=columns)
    rows = [{ORIGIN_COLUMN: origin, "reason": reason} for origin, reason in failures.items()]
    return pd.DataFrame(rows, columns=columns)


def compute_batch(
    batch: Batch,
    cost_source: CostSource,
    opportunities: OpportunityTable,
    measures: Sequence[Measure],
    aggregator: AccessibilityAggregator,
) -> BatchOutcome:
    """Fetch the batch's edges, score its origins, and drop the edge data."""
    start = perf_counter()
    cost_batch = cost_source.fetch(batch.origin_ids)
    failures = {normalize_id(origin): reason for origin, reason in cost_batch.failures.items()}
    to_score = [origin for origin in batch.origin_ids if origin not in failures]
    edge_count = len(cost_batch.edges)
    computation = aggregator.compute_batch(
        cost_batch.edges, opportunities, measures, origins=to_score
    )
    del cost_batch
    failures.update(computation.failures)
    return BatchOutcome(
        batch=batch,
        results=computation.results,
        failures=failures,
        edge_count=edge_count,
        elapsed=perf_counter() - start,
    )


WORKER_SOURCE: CostSource | None = None
WORKER_OPPORTUNITIES: OpportunityTable | None = None
WORKER_MEASURES: List[Measure] = []
WORKER_AGGREGATOR: AccessibilityAggregator | None = None


def _init_worker(payload: dict) -> None:
    """Initialise the read-only run inputs inside each worker process."""

    global WORKER_SOURCE, WORKER_OPPORTUNITIES, WORKER_MEASURES, WORKER_AGGREGATOR
    WORKER_SOURCE = payload["cost_source"]
    WORKER_OPPORTUNITIES = payload["opportunities"]
    WORKER_MEASURES = list(payload["measures"])
    WORKER_AGGREGATOR = payload["aggregator"]


def _process_batch(batch: Batch) -> BatchOutcome:
    if WORKER_SOURCE is None or WORKER_OPPORTUNITIES is None or WORKER_AGGREGATOR is None:
        raise RuntimeError("Worker inputs not initialised.")
    return compute_batch(
        batch, WORKER_SOURCE, WORKER_OPPORTUNITIES, WORKER_MEASURES, WORKER_AGGREGATOR
    )


class BatchController:
    """Drives the aggregator over origin batches and commits each batch atomically.

    The only state carried between batches is the set of processed origins, the
    committed batch indices, and the optional checkpoint marker.
    """

    def __init__(
        self,
        cost_source: CostSource,
        opportunities: OpportunityTable,
        registry: MeasureRegistry,
        aggregator: AccessibilityAggregator | None = None,
        *,
        max_sink_retries: int = 3,
        retry_backoff_seconds: float = 0.0,
        checkpoint: CheckpointFile | None = None,
    ) -> None:
        if max_sink_retries < 0:
            raise ValueError("max_sink_retries must be non-negative.")
        if not len(registry):
            raise ValueError("At least one measure is required.")
        self.cost_source = cost_source
        self.opportunities = opportunities
        self.registry = registry.freeze()
        self.aggregator = aggregator or AccessibilityAggregator()
        self.max_sink_retries = int(max_sink_retries)
        self.retry_backoff_seconds = float(retry_backoff_seconds)
        self.checkpoint = checkpoint
        self._cancel_event = threading.Event()

    # ------------------------------------------------------------------ control
    def cancel(self) -> None:
        """Stop the current run before its next batch commit."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # --------------------------------------------------------------------- run
    def run(
        self,
        origins: Iterable[str],
        batch_size: int,
        sink: AccessibilitySink,
        *,
        num_workers: int = 1,
        start_batch: int = 0,
        on_batch: Callable[[BatchOutcome], None] | None = None,
    ) -> RunReport:
        """Compute and commit accessibility for ``origins`` in batches of ``batch_size``."""
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1.")
        if start_batch < 0:
            raise ValueError("start_batch must be non-negative.")
        self._cancel_event.clear()

        origin_list = list(origins)
        batches = partition_origins(origin_list, batch_size)
        measures = list(self.registry.measures)

        already_committed = set()
        if self.checkpoint is not None:
            already_committed = self.checkpoint.bind(
                batch_size=batch_size, origin_count=len(origin_list)
            )
        # a fresh run starts from an empty sink; a resumed one keeps its committed batches
        sink.prepare(
            self.registry.names,
            batch_size=batch_size,
            origin_count=len(origin_list),
            resume=start_batch > 0 or bool(already_committed),
        )
        pending = [
            batch
            for batch in batches
            if batch.index >= start_batch and batch.index not in already_committed
        ]
        pending_indices = [batch.index for batch in pending]
        pending_set = set(pending_indices)
        report = RunReport(
            total_batches=len(batches),
            skipped_batches=[batch.index for batch in batches if batch.index not in pending_set],
            pending_batches=pending_indices,
        )
        logger.info(
            "Running %d measures over %d origins in %d batches of <=%d (%d pending, %d skipped, workers=%d)",
            len(measures),
            len(origin_list),
            len(batches),
            batch_size,
            len(pending),
            len(report.skipped_batches),
            num_workers,
        )
        if not pending:
            return report

        processed: Set[str] = set()
        if num_workers == 1:
            outcomes = (
                compute_batch(batch, self.cost_source, self.opportunities, measures, self.aggregator)
                for batch in pending
            )
            self._consume(outcomes, sink, report, processed, on_batch)
        else:
            payload = {
                "cost_source": self.cost_source,
                "opportunities": self.opportunities,
                "measures": measures,
                "aggregator": self.aggregator,
            }
            ctx = mp.get_context("spawn" if os.name == "nt" else "fork")
            with ctx.Pool(
                processes=num_workers,
                initializer=_init_worker,
                initargs=(payload,),
            ) as pool:
                outcomes = pool.imap_unordered(_process_batch, pending, chunksize=1)
                self._consume(outcomes, sink, report, processed, on_batch)

        if report.complete:
            expected = sum(len(batch) for batch in pending)
            if len(processed) != expected:
                raise RuntimeError(
                    f"Completeness check failed: processed {len(processed)} of {expected} origins"
                )
        logger.info(
            "Committed %d/%d batches | scored origins=%d | failed origins=%d%s",
            len(report.committed_batches),
            report.total_batches,
            report.scored_origins,
            len(report.failures),
            " | cancelled" if report.cancelled else "",
        )
        return report

    # ----------------------------------------------------------------- helpers
    def _consume(
        self,
        outcomes: Iterator[BatchOutcome],
        sink: AccessibilitySink,
        report: RunReport,
        processed: Set[str],
        on_batch: Callable[[BatchOutcome], None] | None,
    ) -> None:
        for outcome in outcomes:
            if self._cancel_event.is_set():
                report.cancelled = True
                logger.warning(
                    "Run cancelled; batch %s and later batches were not committed.",
                    outcome.batch.index,
                )
                break
            overlap = processed.intersection(outcome.batch.origin_ids)
            if overlap:
                raise RuntimeError(
                    f"Batch {outcome.batch.index} repeats {len(overlap)} already processed origins"
                )
            self._commit(outcome, sink, report)
            processed.update(outcome.batch.origin_ids)
            if on_batch is not None:
                on_batch(outcome)
            if self._cancel_event.is_set() and report.pending_batches:
                report.cancelled = True
                logger.warning(
                    "Run cancelled after batch commit; %d batches pending.",
                    len(report.pending_batches),
                )
                break

    def _commit(self, outcome: BatchOutcome, sink: AccessibilitySink, report: RunReport) -> None:
        batch = outcome.batch
        scored = set(outcome.results[ORIGIN_COLUMN].tolist())
        uncovered = set(batch.origin_ids) - scored - set(outcome.failures)
        if uncovered:
            raise RuntimeError(
                f"Batch {batch.index} left {len(uncovered)} origins neither scored nor failed"
            )

        attempt = 0
        while True:
            try:
                sink.write_batch(batch.index, outcome.results)
                break
            except SinkSchemaError:
                raise
            except Exception as exc:
                attempt += 1
                if attempt > self.max_sink_retries:
                    next_batch = min(report.pending_batches) if report.pending_batches else batch.index
                    logger.error(
                        "Giving up on batch %s after %d attempts: %s",
                        batch.index,
                        attempt,
                        exc,
                    )
                    raise BatchCommitError(
                        batch.index,
                        report.committed_batches,
                        next_batch,
                        cause=exc,
                        failures=report.failures,
                    ) from exc
                logger.warning(
                    "Sink write failed for batch %s (attempt %d/%d): %s",
                    batch.index,
                    attempt,
                    self.max_sink_retries,
                    exc,
                )
                if self.retry_backoff_seconds > 0:
                    time.sleep(self.retry_backoff_seconds * attempt)

        report.committed_batches.append(batch.index)
        report.pending_batches.remove(batch.index)
        report.scored_origins += len(scored)
        for origin, reason in outcome.failures.items():
            report.failures[origin] = reason
        if self.checkpoint is not None:
            self.checkpoint.mark_committed(batch.index)
        logger.debug(
            "Committed batch %s | origins=%d | edges=%d | failed=%d | elapsed=%.2fs",
            batch.index,
            len(batch),
            outcome.edge_count,
            len(outcome.failures),
            outcome.elapsed,
        )


__all__ = [
    "BatchController",
    "BatchOutcome",
    "RunReport",
    "compute_batch",
    "failures_frame",
    "partition_origins",
]
