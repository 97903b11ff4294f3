"""Central error types used across the application."""

from __future__ import annotations


class RideAnomalyError(RuntimeError):
    """Base error for the anomaly detection core."""


class InvalidSampleError(ValueError):
    """Raised when position samples violate the ingestion contract."""


class RideNotFoundError(RideAnomalyError):
    """Raised when a referenced ride cannot be resolved."""


class AnalyzerError(RideAnomalyError):
    """Base error for external analyzer failures."""


class AnalyzerQuotaError(AnalyzerError):
    """Raised when the backend signals quota or rate exhaustion."""


class AnalyzerTransportError(AnalyzerError):
    """Raised on network failures or unexpected HTTP statuses."""


class AnalyzerTimeoutError(AnalyzerTransportError):
    """Raised when the backend does not answer within the timeout."""


class AnalyzerResponseError(AnalyzerError):
    """Raised when the backend answers without the expected text field."""


__all__ = [
    "RideAnomalyError",
    "InvalidSampleError",
    "RideNotFoundError",
    "AnalyzerError",
    "AnalyzerQuotaError",
    "AnalyzerTransportError",
    "AnalyzerTimeoutError",
    "AnalyzerResponseError",
]
