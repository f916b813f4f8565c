"""Batched accessibility CLI: scores origins against opportunities for every measure."""

from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path
from typing import Iterable, List, Mapping

import pandas as pd
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from placeaccess.aggregation.cost_sources import CsvCostSource
from placeaccess.aggregation.domain_types import ORIGIN_COLUMN, normalize_id
from placeaccess.aggregation.opportunities import DEFAULT_VALUE_COLUMN, OpportunityTable
from placeaccess.batching.batch_controller import BatchController, BatchOutcome, failures_frame
from placeaccess.batching.checkpoint import CheckpointFile
from placeaccess.batching.sinks import CsvPartitionSink
from placeaccess.errors import AccessibilityError, BatchCommitError
from placeaccess.measures import load_registry

OUTPUT_TABLE = "accessibility.csv"
FAILURES_TABLE = "failures.csv"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--costs", required=True, help="OD cost CSV (origin_id, destination_id, travel_cost).")
    parser.add_argument(
        "--opportunities",
        required=True,
        help="Opportunity CSV with destination_id and an opportunity column.",
    )
    parser.add_argument(
        "--opportunity-column",
        default=DEFAULT_VALUE_COLUMN,
        help="Column of the opportunity CSV holding the magnitudes.",
    )
    parser.add_argument(
        "--origins",
        default=None,
        help="Optional CSV with an origin_id column; defaults to every origin in the cost CSV.",
    )
    parser.add_argument(
        "--measures",
        default=None,
        help="Measure configuration YAML (defaults to the 28 preset measures).",
    )
    parser.add_argument("--output-dir", required=True, help="Directory for batch parts and merged table.")
    parser.add_argument("--batch-size", type=int, default=1000, help="Origins per batch.")
    parser.add_argument(
        "--max-cost",
        type=float,
        default=None,
        help="Network search cutoff; edges with a larger travel cost are ignored.",
    )
    parser.add_argument(
        "--chunksize",
        type=int,
        default=250_000,
        help="Rows read per chunk while streaming the cost CSV.",
    )
    parser.add_argument(
        "--num-workers",
        type=int,
        default=1,
        help="Worker processes computing batches in parallel.",
    )
    parser.add_argument("--start-batch", type=int, default=0, help="Skip batches before this index.")
    parser.add_argument(
        "--checkpoint",
        default=None,
        help="Optional checkpoint JSON; committed batches recorded there are skipped.",
    )
    parser.add_argument(
        "--failures-csv",
        default=None,
        help=f"Where to write per-origin failures (defaults to <output-dir>/{FAILURES_TABLE}).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Verbosity for the CLI logger.",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _load_origins(path: str | None, source: CsvCostSource) -> List[str]:
    if path is None:
        logging.info("Collecting origins from %s", source.path)
        return source.origin_ids()
    frame = pd.read_csv(path, usecols=[ORIGIN_COLUMN], dtype={ORIGIN_COLUMN: str})
    origins = [normalize_id(value) for value in frame[ORIGIN_COLUMN].tolist()]
    return [origin for origin in origins if origin]


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)

    output_dir = Path(args.output_dir)
    try:
        registry = load_registry(args.measures)
        opportunities = OpportunityTable.from_csv(
            args.opportunities, value_column=args.opportunity_column
        )
        source = CsvCostSource(args.costs, max_cost=args.max_cost, chunksize=args.chunksize)
    except (AccessibilityError, ValueError, TypeError, FileNotFoundError) as exc:
        raise SystemExit(str(exc)) from exc

    origins = _load_origins(args.origins, source)
    if not origins:
        raise SystemExit("No origins to process.")
    logging.info("Loaded %s origins and %s measures.", f"{len(origins):,}", len(registry))

    checkpoint = CheckpointFile(args.checkpoint) if args.checkpoint else None
    controller = BatchController(source, opportunities, registry, checkpoint=checkpoint)
    sink = CsvPartitionSink(output_dir / "parts")

    total_batches = -(-len(origins) // max(args.batch_size, 1))
    progress_console = Console(stderr=True)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        TextColumn("{task.completed:,} batches", justify="right"),
        TimeElapsedColumn(),
        console=progress_console,
        transient=True,
        disable=not progress_console.is_terminal,
    )

    failures_path = Path(args.failures_csv) if args.failures_csv else output_dir / FAILURES_TABLE
    resumed = args.start_batch > 0 or (checkpoint is not None and checkpoint.path.exists())

    # SIGINT lets the batch being committed finish, then stops the run
    previous_handler = signal.getsignal(signal.SIGINT)

    def _request_cancel(signum, frame) -> None:
        logging.warning("Interrupt received; stopping after the current batch commit.")
        controller.cancel()

    signal.signal(signal.SIGINT, _request_cancel)
    try:
        with progress:
            task_id = progress.add_task(f"Batches ({total_batches:,})", total=total_batches)

            def _advance(outcome: BatchOutcome) -> None:
                progress.advance(task_id, 1)
                if outcome.failures:
                    logging.warning(
                        "Batch %s finished with %d failed origins",
                        outcome.batch.index,
                        len(outcome.failures),
                    )

            report = controller.run(
                origins,
                args.batch_size,
                sink,
                num_workers=args.num_workers,
                start_batch=args.start_batch,
                on_batch=_advance,
            )
    except BatchCommitError as exc:
        logging.error("Run halted: %s", exc)
        _write_failures(exc.failures, failures_path, merge=resumed)
        raise SystemExit(f"Resume with --start-batch {exc.next_batch}") from exc
    except (AccessibilityError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _write_failures(report.failures, failures_path, merge=resumed)

    table = sink.read_table()
    table_path = output_dir / OUTPUT_TABLE
    table.to_csv(table_path, index=False)
    logging.info(
        "Accessibility table with %s origins x %s measures written to %s",
        f"{len(table):,}",
        len(registry),
        table_path,
    )
    if report.cancelled:
        logging.warning(
            "Run cancelled; committed batches under %s remain valid. Resume with --start-batch %s",
            sink.directory,
            report.next_batch,
        )
        raise SystemExit(130)


def _write_failures(failures: Mapping[str, str], path: Path, *, merge: bool) -> None:
    """Write the per-origin failure log, keeping earlier reasons when ``merge`` is set."""
    frame = failures_frame(failures)
    if merge and path.exists():
        previous = pd.read_csv(path, dtype={ORIGIN_COLUMN: str})
        previous = previous[~previous[ORIGIN_COLUMN].isin(frame[ORIGIN_COLUMN])]
        frame = pd.concat([previous, frame], ignore_index=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False)
    if len(frame):
        logging.warning("%d origins failed; reasons written to %s", len(frame), path)


if __name__ == "__main__":
    main()
