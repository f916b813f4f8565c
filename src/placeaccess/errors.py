"""Error taxonomy shared across the accessibility packages."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple


class AccessibilityError(Exception):
    """Base class for every error raised by placeaccess."""


class InvalidParameterError(AccessibilityError, ValueError):
    """Decay parameter, cutoff or family name rejected at configuration time."""


class DuplicateNameError(AccessibilityError, KeyError):
    """A measure with the same name is already registered."""

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return str(self.args[0]) if self.args else ""


class UnknownMeasureError(AccessibilityError, KeyError):
    """The requested measure is not part of the registry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class RegistryFrozenError(AccessibilityError, RuntimeError):
    """Measures cannot be added once a registry has been frozen for a run."""


class IncompleteDataError(AccessibilityError):
    """An origin references a destination missing from the opportunity table."""

    def __init__(self, origin_id: str, missing_destinations: Sequence[str]):
        self.origin_id = str(origin_id)
        self.missing_destinations: Tuple[str, ...] = tuple(str(d) for d in missing_destinations)
        preview = ", ".join(self.missing_destinations[:5])
        if len(self.missing_destinations) > 5:
            preview += ", ..."
        super().__init__(
            f"Origin {self.origin_id} references {len(self.missing_destinations)} "
            f"destination(s) without opportunity values: {preview}"
        )


class CostUnavailableError(AccessibilityError):
    """A travel-cost lookup failed.

    ``transient`` separates retryable faults (timeouts, service hiccups) from a
    definitive "no path" answer, which callers treat as an unreachable edge.
    """

    def __init__(
        self,
        origin_id: str,
        destination_id: Optional[str] = None,
        *,
        transient: bool = True,
        reason: str = "",
    ):
        self.origin_id = str(origin_id)
        self.destination_id = None if destination_id is None else str(destination_id)
        self.transient = bool(transient)
        self.reason = reason
        target = f"{self.origin_id}->{self.destination_id}" if self.destination_id else self.origin_id
        kind = "transient" if self.transient else "no path"
        message = f"Travel cost unavailable for {target} ({kind})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SinkSchemaError(AccessibilityError, ValueError):
    """A batch does not carry the column set fixed for the run."""


class BatchCommitError(AccessibilityError, RuntimeError):
    """Writing a batch to the sink failed after all retries."""

    def __init__(
        self,
        batch_index: int,
        committed_batches: Sequence[int],
        next_batch: int,
        cause: BaseException | None = None,
        failures: Optional[Mapping[str, str]] = None,
    ):
        self.batch_index = int(batch_index)
        self.committed_batches: Tuple[int, ...] = tuple(sorted(committed_batches))
        self.next_batch = int(next_batch)
        self.cause = cause
        # origin failures recorded for the batches that did commit
        self.failures: Dict[str, str] = dict(failures or {})
        super().__init__(
            f"Batch {self.batch_index} could not be committed "
            f"({len(self.committed_batches)} batch(es) committed; resume from batch {self.next_batch})"
            + (f": {cause}" if cause is not None else "")
        )


__all__ = [
    "AccessibilityError",
    "BatchCommitError",
    "CostUnavailableError",
    "DuplicateNameError",
    "IncompleteDataError",
    "InvalidParameterError",
    "RegistryFrozenError",
    "SinkSchemaError",
    "UnknownMeasureError",
]
