"""JSON checkpoint recording which batches of a run have been committed."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Set

logger = logging.getLogger(__name__)


class CheckpointFile:
    """Committed-batch marker that lets an interrupted run resume.

    Batch indices only make sense for the same origin list and batch size, so
    both are stored and checked when the checkpoint is bound to a new run.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.batch_size: int | None = None
        self.origin_count: int | None = None
        self._committed: Set[int] = set()

    def bind(self, *, batch_size: int, origin_count: int) -> Set[int]:
        """Attach to a run and return the batch indices already committed."""
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle) or {}
            stored_size = int(payload.get("batch_size", batch_size))
            stored_count = int(payload.get("origin_count", origin_count))
            if stored_size != batch_size or stored_count != origin_count:
                raise ValueError(
                    f"Checkpoint {self.path} was written for batch_size={stored_size} and "
                    f"{stored_count} origins; current run uses batch_size={batch_size} and "
                    f"{origin_count} origins"
                )
            self._committed = {int(idx) for idx in payload.get("committed_batches") or []}
            logger.info(
                "Resuming from checkpoint %s with %d committed batches",
                self.path,
                len(self._committed),
            )
        else:
            self._committed = set()
        self.batch_size = int(batch_size)
        self.origin_count = int(origin_count)
        return set(self._committed)

    @property
    def committed_batches(self) -> Set[int]:
        return set(self._committed)

    def mark_committed(self, batch_index: int) -> None:
        if self.batch_size is None:
            raise RuntimeError("Checkpoint must be bound to a run before marking batches.")
        self._committed.add(int(batch_index))
        self.save()

    def to_json_dict(self) -> Dict[str, object]:
        return {
            "batch_size": self.batch_size,
            "origin_count": self.origin_count,
            "committed_batches": sorted(self._committed),
        }

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(self.to_json_dict(), handle, indent=2)
        os.replace(tmp_path, self.path)


__all__ = ["CheckpointFile"]
