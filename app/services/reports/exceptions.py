"""Error taxonomy for the weekly report pipeline."""

from __future__ import annotations


class ReportError(Exception):
    """Base class for report pipeline failures."""


class ConfigurationError(ReportError):
    """No delivery transport configured. Non-fatal: delivery is skipped."""


class DataFetchError(ReportError):
    """Event, profile or streak source unreachable or errored."""


class UserNotFoundError(DataFetchError, LookupError):
    """Requested user does not exist in the user source."""


class RenderError(ReportError):
    """Aggregate or profile input cannot be rendered."""


class DeliveryError(ReportError):
    """Transport invocation failed (network, auth, refused recipient)."""


class PipelineCancelled(ReportError):
    """Batch cancellation observed before the report was stored."""


class PipelineTimeout(PipelineCancelled):
    """The user's pipeline ran past its per-user deadline."""


def describe_error(exc: BaseException) -> str:
    """Short ``"<ErrorClass>: <message>"`` reason for batch summaries and logs."""
    message = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


class ReportNotFoundError(ReportError, LookupError):
    """No stored report with that id for that user."""
