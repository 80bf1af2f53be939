"""
Correlation of video records with pass and step time windows.

Matching is exact interval containment, inclusive on both ends. It is
computed on demand with a linear scan over the loaded records; the set is
bounded by the backfill window so no index is maintained.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .types import Record, RunPass, Step


@dataclass(frozen=True)
class StepVideos:
    """A step and the videos captured during it."""
    step: Step
    videos: tuple[Record, ...]


def _in_window(record: Record, start: datetime, end: datetime) -> bool:
    ts = record.time_requested
    if ts is None:
        return False
    return start <= ts <= end


def videos_for_step(step: Step, records: Iterable[Record]) -> list[Record]:
    """Videos whose capture time falls within [step.start, step.end].

    Input order is preserved. No records yet means no videos, not an error.
    """
    return [r for r in records if r.is_video and _in_window(r, step.start, step.end)]


def videos_for_pass(run_pass: RunPass, records: Iterable[Record]) -> list[Record]:
    """Videos whose capture time falls within the pass's own interval."""
    return [r for r in records if r.is_video and _in_window(r, run_pass.start, run_pass.end)]


def correlate_pass(run_pass: RunPass, records: Iterable[Record]) -> list[StepVideos]:
    """One StepVideos per step, in step order."""
    videos = [r for r in records if r.is_video]
    return [
        StepVideos(step=step, videos=tuple(videos_for_step(step, videos)))
        for step in run_pass.steps
    ]
