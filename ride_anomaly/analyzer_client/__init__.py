"""Analyzer client components (backends, call gating, session helpers)."""

from .backends import (  # noqa: F401
    AnalyzerBackend,
    AzureOpenAIBackend,
    OllamaBackend,
    build_backend,
)
from .rate_limiter import (  # noqa: F401
    BreakerState,
    CircuitBreaker,
    GateDecision,
    SubjectRateLimiter,
)
from .session import create_default_session, get_default_session  # noqa: F401
