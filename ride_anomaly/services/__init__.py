"""Service layer package.

Exports the services driven by ingestion and by the replay CLI.
"""

from .analysis_service import AnalysisService, AnalysisServiceConfig
from .anomaly_service import AnomalyService

__all__ = ["AnalysisService", "AnalysisServiceConfig", "AnomalyService"]
