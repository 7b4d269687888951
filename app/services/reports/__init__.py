"""Weekly insight reports: aggregate bias detections, render PDF, store, deliver."""

from app.services.reports.aggregator import aggregate
from app.services.reports.blob_store import (
    BlobStore,
    DatabaseBlobStore,
    FileSystemBlobStore,
    get_blob_store,
)
from app.services.reports.cadence import Cadence
from app.services.reports.data_source import ReportDataSource, SqlReportDataSource
from app.services.reports.delivery import (
    DeliveryChannel,
    SmtpDeliveryChannel,
    build_delivery_channel,
)
from app.services.reports.exceptions import (
    ConfigurationError,
    DataFetchError,
    DeliveryError,
    PipelineCancelled,
    PipelineTimeout,
    RenderError,
    ReportError,
    ReportNotFoundError,
    UserNotFoundError,
)
from app.services.reports.orchestrator import ReportOrchestrator, build_report_orchestrator
from app.services.reports.renderer import build_blocks, render
from app.services.reports.report_store import ReportStore
from app.services.reports.scheduler import ReportScheduler, get_report_scheduler
from app.services.reports.types import (
    BatchSummary,
    BiasAggregate,
    BiasDetection,
    ConversationEvent,
    DeliveryOutcome,
    PipelineState,
    ReportWindow,
    UserProfile,
)

__all__ = [
    "aggregate",
    "BatchSummary",
    "BiasAggregate",
    "BiasDetection",
    "BlobStore",
    "build_blocks",
    "build_delivery_channel",
    "build_report_orchestrator",
    "Cadence",
    "ConfigurationError",
    "ConversationEvent",
    "DatabaseBlobStore",
    "DataFetchError",
    "DeliveryChannel",
    "DeliveryError",
    "DeliveryOutcome",
    "FileSystemBlobStore",
    "get_blob_store",
    "get_report_scheduler",
    "PipelineCancelled",
    "PipelineTimeout",
    "PipelineState",
    "render",
    "RenderError",
    "ReportDataSource",
    "ReportError",
    "ReportNotFoundError",
    "ReportOrchestrator",
    "ReportScheduler",
    "ReportStore",
    "ReportWindow",
    "SmtpDeliveryChannel",
    "SqlReportDataSource",
    "UserNotFoundError",
    "UserProfile",
]
