"""Bias aggregation for weekly reports.

Pure functions: no I/O, no clock. Groups normalized detections by name and
ranks them by count, then average severity, then name.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from app.services.reports.types import BiasAggregate, ConversationEvent

TOP_BIASES_LIMIT = 5


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def aggregate(
    events: Iterable[ConversationEvent],
    limit: int = TOP_BIASES_LIMIT,
) -> list[BiasAggregate]:
    """Return up to ``limit`` BiasAggregates ranked for the report.

    Order: count desc, avg_intensity desc, name asc. avg_intensity is the mean
    severity rounded half up. Empty input gives an empty list.
    """
    counts: dict[str, int] = {}
    totals: dict[str, float] = {}
    for event in events:
        for detection in event.detections:
            counts[detection.name] = counts.get(detection.name, 0) + 1
            totals[detection.name] = totals.get(detection.name, 0.0) + detection.severity

    aggregates = [
        BiasAggregate(
            name=name,
            count=count,
            avg_intensity=_round_half_up(totals[name] / count),
        )
        for name, count in counts.items()
    ]
    aggregates.sort(key=lambda a: (-a.count, -a.avg_intensity, a.name))
    return aggregates[:limit]
