"""Domain types for the weekly report pipeline.

Raw bias detections arrive with either a fractional ``confidence`` (0-1) or an
``intensity`` (0-100). ``BiasDetection.from_raw`` is the single place where that
is normalized to one 0-100 severity scale; everything downstream sees only
``severity``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

logger = logging.getLogger(__name__)

# Severity assigned when a detection carries neither confidence nor intensity.
DEFAULT_SEVERITY = 50.0

DeliveryStatus = Literal["sent", "skipped", "failed"]


class PipelineState(str, Enum):
    """Per-user pipeline progress. FAILED is terminal before STORED."""

    PENDING = "pending"
    FETCHED = "fetched"
    AGGREGATED = "aggregated"
    RENDERED = "rendered"
    STORED = "stored"
    EMAIL_SENT = "email_sent"
    EMAIL_SKIPPED = "email_skipped"
    EMAIL_FAILED = "email_failed"
    FAILED = "failed"


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


@dataclass(frozen=True)
class BiasDetection:
    """One named pattern detected in a conversation, on the canonical 0-100 scale."""

    name: str
    severity: float

    @classmethod
    def from_raw(cls, raw: Any) -> BiasDetection | None:
        """Normalize a raw ``{"name", "confidence"?, "intensity"?}`` entry.

        confidence * 100 wins when present, then intensity, then DEFAULT_SEVERITY.
        Entries without a usable name return None.
        """
        if not isinstance(raw, dict):
            return None
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            return None

        confidence = _as_number(raw.get("confidence"))
        intensity = _as_number(raw.get("intensity"))
        if confidence is not None:
            severity = confidence * 100.0
        elif intensity is not None:
            severity = intensity
        else:
            severity = DEFAULT_SEVERITY
        return cls(name=name.strip(), severity=_clamp(severity))


@dataclass(frozen=True)
class ConversationEvent:
    """A conversation in the report window with its ordered bias detections."""

    user_id: str
    occurred_at: datetime
    detections: tuple[BiasDetection, ...] = ()

    @classmethod
    def from_raw(cls, user_id: str, occurred_at: datetime, raw_biases: Any) -> ConversationEvent:
        detections: list[BiasDetection] = []
        if isinstance(raw_biases, list):
            for raw in raw_biases:
                detection = BiasDetection.from_raw(raw)
                if detection is None:
                    logger.warning("bias_detection_dropped: user_id=%s raw=%r", user_id, raw)
                    continue
                detections.append(detection)
        return cls(user_id=user_id, occurred_at=occurred_at, detections=tuple(detections))


@dataclass(frozen=True)
class BiasAggregate:
    """Ranked summary row: how often a pattern appeared and its average severity."""

    name: str
    count: int
    avg_intensity: int

    def to_dict(self) -> dict:
        return {"name": self.name, "count": self.count, "avg_intensity": self.avg_intensity}

    @classmethod
    def from_dict(cls, data: dict) -> BiasAggregate:
        return cls(
            name=str(data["name"]),
            count=int(data["count"]),
            avg_intensity=int(data["avg_intensity"]),
        )


@dataclass(frozen=True)
class UserProfile:
    """Eligible user as supplied by the user source."""

    id: str
    tier: str
    email: str | None = None
    first_name: str | None = None


@dataclass(frozen=True)
class ReportWindow:
    """Half-open aggregation window ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"window start {self.start} must be before end {self.end}")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class DeliveryOutcome:
    status: DeliveryStatus
    detail: str | None = None
    sent_at: datetime | None = None


@dataclass
class PipelineResult:
    """Outcome of one user's pipeline run in a batch."""

    user_id: str
    state: PipelineState
    report_id: int | None = None
    created: bool = False
    delivery: DeliveryOutcome | None = None
    error: str | None = None


@dataclass
class BatchSummary:
    """Batch tally. ``failed`` counts pipeline failures only; delivery failures are separate."""

    succeeded: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    emails_sent: int = 0
    emails_skipped: int = 0
    emails_failed: int = 0
    reports_created: int = 0
    reports_reused: int = 0
    window: ReportWindow | None = None
    job_run_id: int | None = None
    status: str = "completed"
    error: str | None = None

    def record(self, result: PipelineResult) -> None:
        if result.state is PipelineState.FAILED:
            self.failed += 1
            self.errors.append((result.user_id, result.error or "unknown error"))
            return
        self.succeeded += 1
        if result.created:
            self.reports_created += 1
        elif result.state is PipelineState.STORED:
            self.reports_reused += 1
        if result.state is PipelineState.EMAIL_SENT:
            self.emails_sent += 1
        elif result.state is PipelineState.EMAIL_FAILED:
            self.emails_failed += 1
        elif result.state is PipelineState.EMAIL_SKIPPED:
            self.emails_skipped += 1
