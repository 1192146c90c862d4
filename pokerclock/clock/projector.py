"""
Elapsed-Time Projector.

Computes how much running time has passed since a snapshot was written.
Whole seconds only; sub-second remainders stay unconsumed and are picked
up by the next pass because ``last_updated`` only moves with consumption.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from pokerclock.clock.models import ClockPolicy, ClockSnapshot, ensure_utc


@dataclass(frozen=True)
class Projection:
    """Projection of a snapshot to a point in time."""

    seconds_elapsed: int
    raw_remaining: int

    @property
    def crossed_boundary(self) -> bool:
        return self.raw_remaining <= 0 and self.seconds_elapsed > 0


def elapsed_seconds(snapshot: ClockSnapshot, now: datetime) -> int:
    """Whole running seconds since ``last_updated`` (0 when paused or skewed)."""
    if snapshot.is_paused:
        return 0
    delta = (ensure_utc(now) - snapshot.last_updated).total_seconds()
    if delta <= 0:
        return 0
    return int(math.floor(delta))


def project(snapshot: ClockSnapshot, now: datetime) -> Projection:
    elapsed = elapsed_seconds(snapshot, now)
    return Projection(
        seconds_elapsed=elapsed,
        raw_remaining=snapshot.time_remaining_seconds - elapsed,
    )


def should_reconcile(projection: Projection, policy: ClockPolicy) -> bool:
    """Whether a periodic pass should persist this projection.

    Below the threshold the pass is skipped so writes stay coarse; a
    threshold of 0 or 1 reconciles on every elapsed second.
    """
    if projection.seconds_elapsed <= 0:
        return False
    return projection.seconds_elapsed >= policy.min_reconcile_elapsed_seconds
