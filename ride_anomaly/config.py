"""Central configuration for the ride anomaly detection core.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Stationary detection
# ---------------------------------------------------------------------------
# Movement (metres) between the two newest samples below which a rider counts
# as not moving.
STATIONARY_MOVEMENT_THRESHOLD_M = _env_float("STATIONARY_MOVEMENT_THRESHOLD_M", 5.0)

# Elapsed seconds between the two newest samples that must be exceeded before
# a stop is reported.
STATIONARY_DURATION_THRESHOLD_S = _env_float("STATIONARY_DURATION_THRESHOLD_S", 180.0)

# Skip stationary checks when either fix reports a worse accuracy than
# STATIONARY_MAX_ACCURACY_M. Disable to reproduce the naive behaviour.
STATIONARY_ACCURACY_AWARE = _env_bool("STATIONARY_ACCURACY_AWARE", True)
STATIONARY_MAX_ACCURACY_M = _env_float("STATIONARY_MAX_ACCURACY_M", 25.0)


# ---------------------------------------------------------------------------
# Direction drift detection
# ---------------------------------------------------------------------------
DIRECTION_DRIFT_THRESHOLD_DEG = _env_float("DIRECTION_DRIFT_THRESHOLD_DEG", 45.0)

# Fold bearing differences onto the shorter arc (<= 180 degrees). Set to False
# for the raw abs(b1 - b2) difference, which over-reports near north.
DIRECTION_DRIFT_SHORTEST_ARC = _env_bool("DIRECTION_DRIFT_SHORTEST_ARC", True)


# ---------------------------------------------------------------------------
# Group separation (radius) alerts
# ---------------------------------------------------------------------------
RADIUS_ALERTS_ENABLED = _env_bool("RADIUS_ALERTS_ENABLED", True)
RADIUS_WARNING_DISTANCE_M = _env_float("RADIUS_WARNING_DISTANCE_M", 2000.0)
RADIUS_CRITICAL_DISTANCE_M = _env_float("RADIUS_CRITICAL_DISTANCE_M", 5000.0)

# Minimum members with a position before a centroid is computed.
RADIUS_MIN_GROUP_SIZE = _env_int("RADIUS_MIN_GROUP_SIZE", 2)

# Ignore members whose latest sample trails the newest snapshot sample by more
# than this many seconds. Set to 0 to disable.
RADIUS_MAX_SAMPLE_AGE_S = _env_float("RADIUS_MAX_SAMPLE_AGE_S", 0.0)


# ---------------------------------------------------------------------------
# Context collection
# ---------------------------------------------------------------------------
# Number of recent samples of the triggering rider sent to the analyzer.
CONTEXT_HISTORY_LIMIT = _env_int("CONTEXT_HISTORY_LIMIT", 5)


# ---------------------------------------------------------------------------
# External model analysis
# ---------------------------------------------------------------------------
LLM_ENABLED = _env_bool("LLM_ENABLED", True)

# Backend adapter: "ollama" (local) or "azure_openai" (hosted).
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "ollama").strip().lower()

# Minimum seconds between completed analyses for the same rider.
LLM_RATE_LIMIT_INTERVAL_S = _env_float("LLM_RATE_LIMIT_INTERVAL_S", 60.0)

# Upper bound on riders tracked by the rate limiter at once.
LLM_RATE_LIMIT_MAX_SUBJECTS = _env_int("LLM_RATE_LIMIT_MAX_SUBJECTS", 10_000)

# Seconds the circuit breaker stays open after a quota/rate signal.
LLM_BREAKER_COOLDOWN_S = _env_float("LLM_BREAKER_COOLDOWN_S", 30 * 60.0)

# Request timeout in seconds.
LLM_REQUEST_TIMEOUT = _env_float("LLM_REQUEST_TIMEOUT", 15.0)

LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 500)
LLM_TEMPERATURE = _env_float("LLM_TEMPERATURE", 0.3)

# Append confidence and recommendations to the alert message instead of
# keeping them only as structured finding fields.
LLM_FOLD_DETAILS_INTO_MESSAGE = _env_bool("LLM_FOLD_DETAILS_INTO_MESSAGE", False)

# Local Ollama backend.
OLLAMA_ENDPOINT = os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama2")

# Hosted Azure OpenAI backend. Do not hardcode secrets.
AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_DEPLOYMENT = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
AZURE_OPENAI_API_VERSION = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")
AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY", "")


# ---------------------------------------------------------------------------
# Performance tuning
# ---------------------------------------------------------------------------
# Worker threads running external analyses off the ingestion path.
ANALYSIS_MAX_WORKERS = _env_int("ANALYSIS_MAX_WORKERS", 4)

# Analyses queued or running at once; further triggers are dropped.
ANALYSIS_MAX_PENDING = _env_int("ANALYSIS_MAX_PENDING", 32)

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Transport-level retries for analyzer calls. Analyses are never retried by
# default; a failed call simply waits for the next trigger.
HTTP_MAX_RETRIES = _env_int("HTTP_MAX_RETRIES", 0)
