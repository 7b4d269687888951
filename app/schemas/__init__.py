"""Pydantic schemas for request/response validation."""

from app.schemas.report import (
    BatchErrorRead,
    BatchSummaryRead,
    BiasAggregateRead,
    DeliveryOutcomeRead,
    ReportList,
    ReportRead,
)

__all__ = [
    "BatchErrorRead",
    "BatchSummaryRead",
    "BiasAggregateRead",
    "DeliveryOutcomeRead",
    "ReportList",
    "ReportRead",
]
