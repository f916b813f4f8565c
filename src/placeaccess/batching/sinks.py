"""Keyed, per-batch sinks for accessibility tables.

Every sink upserts by origin id: re-committing a batch replaces its rows, and
since each origin belongs to exactly one batch the last writer wins safely.
"""

from __future__ import annotations

import glob
import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

import pandas as pd

from placeaccess.aggregation.domain_types import ORIGIN_COLUMN
from placeaccess.errors import SinkSchemaError

logger = logging.getLogger(__name__)


class AccessibilitySink:
    """Base class fixing the column set of a run and validating each batch."""

    def __init__(self) -> None:
        self._columns: Optional[List[str]] = None
        self._batch_size: Optional[int] = None
        self._origin_count: Optional[int] = None

    @property
    def columns(self) -> Optional[List[str]]:
        return list(self._columns) if self._columns is not None else None

    def prepare(
        self,
        measure_names: Sequence[str],
        *,
        batch_size: Optional[int] = None,
        origin_count: Optional[int] = None,
        resume: bool = False,
    ) -> None:
        """Fix the output columns (``origin_id`` + one per measure) and run shape.

        A fresh run (``resume=False``) discards whatever the sink already holds.
        A resumed run keeps committed batches, so its columns, batch size and
        origin count must match the ones the sink was written with.
        """
        columns = [ORIGIN_COLUMN, *measure_names]
        if resume:
            if self._columns is not None and self._columns != columns:
                raise SinkSchemaError(
                    f"Sink already holds columns {self._columns}; refusing to switch to {columns}"
                )
            for label, stored, current in (
                ("batch_size", self._batch_size, batch_size),
                ("origin_count", self._origin_count, origin_count),
            ):
                if stored is not None and current is not None and stored != int(current):
                    raise SinkSchemaError(
                        f"Sink was written with {label}={stored}; cannot resume with {label}={current}"
                    )
        else:
            self._clear()
        self._columns = columns
        self._batch_size = int(batch_size) if batch_size is not None else None
        self._origin_count = int(origin_count) if origin_count is not None else None

    def _clear(self) -> None:
        """Drop every committed batch ahead of a fresh run."""

    def _check_schema(self, frame: pd.DataFrame) -> None:
        if self._columns is None:
            raise SinkSchemaError("Sink must be prepared with the measure columns before writing")
        if list(frame.columns) != self._columns:
            raise SinkSchemaError(
                f"Batch columns {list(frame.columns)} do not match the run columns {self._columns}"
            )

    def write_batch(self, batch_index: int, results: pd.DataFrame) -> None:
        raise NotImplementedError


class MemorySink(AccessibilitySink):
    """In-process sink; safe to write from several threads."""

    def __init__(self) -> None:
        super().__init__()
        self._rows: Dict[str, Dict[str, float]] = {}
        self._committed: Set[int] = set()
        self._lock = threading.Lock()

    def _clear(self) -> None:
        with self._lock:
            self._rows.clear()
            self._committed.clear()

    def write_batch(self, batch_index: int, results: pd.DataFrame) -> None:
        self._check_schema(results)
        rows = {
            str(record[ORIGIN_COLUMN]): {
                key: float(value) for key, value in record.items() if key != ORIGIN_COLUMN
            }
            for record in results.to_dict(orient="records")
        }
        with self._lock:
            self._rows.update(rows)
            self._committed.add(int(batch_index))

    @property
    def committed_batches(self) -> List[int]:
        with self._lock:
            return sorted(self._committed)

    def get(self, origin_id: str) -> Dict[str, float]:
        with self._lock:
            return dict(self._rows[str(origin_id)])

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def to_frame(self) -> pd.DataFrame:
        columns = self._columns or [ORIGIN_COLUMN]
        with self._lock:
            records = [{ORIGIN_COLUMN: origin, **scores} for origin, scores in self._rows.items()]
        return pd.DataFrame(records, columns=columns)


class CsvPartitionSink(AccessibilitySink):
    """One CSV part file per batch under ``directory``.

    Parts are written to a temporary file and moved into place with
    ``os.replace``, so a batch is either fully visible or absent.
    """

    SCHEMA_FILE = "_schema.json"

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)

    def prepare(
        self,
        measure_names: Sequence[str],
        *,
        batch_size: Optional[int] = None,
        origin_count: Optional[int] = None,
        resume: bool = False,
    ) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        schema_path = self.directory / self.SCHEMA_FILE
        if schema_path.exists() and self._columns is None:
            with schema_path.open("r", encoding="utf-8") as handle:
                stored = json.load(handle) or {}
            if stored.get("columns"):
                self._columns = [str(column) for column in stored["columns"]]
            if stored.get("batch_size") is not None:
                self._batch_size = int(stored["batch_size"])
            if stored.get("origin_count") is not None:
                self._origin_count = int(stored["origin_count"])
        super().prepare(
            measure_names, batch_size=batch_size, origin_count=origin_count, resume=resume
        )
        _atomic_write_json(
            schema_path,
            {
                "columns": self._columns,
                "batch_size": self._batch_size,
                "origin_count": self._origin_count,
            },
        )

    def _part_paths(self) -> List[str]:
        return sorted(glob.glob(str(self.directory / "part-*.csv")))

    def _clear(self) -> None:
        stale = self._part_paths()
        if stale:
            logger.info("Removing %d part files of a previous run from %s", len(stale), self.directory)
        for path in stale:
            os.remove(path)

    def part_path(self, batch_index: int) -> Path:
        return self.directory / f"part-{int(batch_index):06d}.csv"

    def write_batch(self, batch_index: int, results: pd.DataFrame) -> None:
        self._check_schema(results)
        target = self.part_path(batch_index)
        tmp_path = target.with_name(target.name + ".tmp")
        results.to_csv(tmp_path, index=False)
        os.replace(tmp_path, target)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Committed batch %s (%d rows) to %s", batch_index, len(results), target)

    @property
    def committed_batches(self) -> List[int]:
        indices = []
        for path in self._part_paths():
            stem = os.path.basename(path)[len("part-") : -len(".csv")]
            if stem.isdigit():
                indices.append(int(stem))
        return sorted(indices)

    def read_table(self) -> pd.DataFrame:
        """Merge all committed parts into one table keyed by origin id."""
        paths = self._part_paths()
        columns = self._columns or [ORIGIN_COLUMN]
        if not paths:
            return pd.DataFrame(columns=columns)
        frames = [pd.read_csv(path, dtype={ORIGIN_COLUMN: str}) for path in paths]
        table = pd.concat(frames, ignore_index=True)
        table = table.drop_duplicates(subset=ORIGIN_COLUMN, keep="last")
        return table.reset_index(drop=True)


def _atomic_write_json(path: Path, payload: Dict[str, object]) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


__all__ = ["AccessibilitySink", "CsvPartitionSink", "MemorySink"]
