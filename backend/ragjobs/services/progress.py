"""Progress bookkeeping and time estimates for indexing jobs."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ragjobs.schemas.jobs import JobProgress, JobResults, UnitError
from ragjobs.utils.time import parse_iso


@dataclass
class UnitOutcome:
    unit_index: int
    success: bool
    chunk_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


class ProgressTracker:
    """Accumulates unit outcomes into a job's progress counters and results."""

    def __init__(self, total_units: int) -> None:
        self.progress = JobProgress(total_units=total_units)
        self.results = JobResults()

    def apply(self, outcome: UnitOutcome, timestamp: str) -> None:
        if self.progress.processed_units >= self.progress.total_units:
            raise ValueError(
                f"unit {outcome.unit_index} exceeds total of {self.progress.total_units}"
            )
        if outcome.success:
            self.results.indexed_ids.extend(outcome.chunk_ids)
            self.progress.successful_units += 1
            self.progress.indexed_chunks += len(outcome.chunk_ids)
        else:
            self.results.errors.append(
                UnitError(
                    unit_index=outcome.unit_index,
                    error=outcome.error or "Unknown error",
                    timestamp=timestamp,
                )
            )
            self.progress.failed_units += 1
        self.progress.processed_units += 1

    def apply_window(self, outcomes: List[UnitOutcome], timestamp: str) -> None:
        for outcome in sorted(outcomes, key=lambda item: item.unit_index):
            self.apply(outcome, timestamp)

    def snapshot(self) -> tuple[JobProgress, JobResults]:
        return self.progress.model_copy(deep=True), self.results.model_copy(deep=True)


def completion_ratio(progress: JobProgress) -> float:
    if progress.total_units <= 0:
        return 0.0
    return progress.processed_units / progress.total_units


def completion_percentage(progress: JobProgress) -> int:
    return round(completion_ratio(progress) * 100)


def estimate_remaining_seconds(
    progress: JobProgress,
    started_at: str,
    updated_at: str,
    now: datetime,
) -> Optional[int]:
    """
    Estimate the seconds left for a running job.

    The projection is anchored at the last persisted progress write:
    remaining = elapsed_at_update * (1 - ratio) / ratio, minus the time
    that has passed since that write. Returns None while nothing has been
    processed yet.
    """
    ratio = completion_ratio(progress)
    if ratio <= 0:
        return None
    started = parse_iso(started_at)
    updated = parse_iso(updated_at)
    elapsed = max((updated - started).total_seconds(), 0.0)
    remaining = elapsed * (1 - ratio) / ratio
    remaining -= max((now - updated).total_seconds(), 0.0)
    # timestamps carry millisecond precision
    return max(math.ceil(round(remaining, 3)), 0)


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"~{seconds} seconds"
    if seconds < 3600:
        return f"~{math.ceil(seconds / 60)} minutes"
    return f"~{math.ceil(seconds / 3600)} hours"


def format_remaining(seconds: int) -> str:
    return f"{seconds} seconds" if seconds > 0 else "Soon"


def estimate_processing_seconds(unit_count: int, seconds_per_unit: int) -> int:
    return max(unit_count, 0) * seconds_per_unit
