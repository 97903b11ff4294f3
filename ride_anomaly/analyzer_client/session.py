"""HTTP session factory for analyzer backend calls."""

from __future__ import annotations

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_MAX_RETRIES, HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_default_session", "get_default_session"]


def _build_retry(total: int) -> Retry:
    # 429 stays out of the forcelist: it has to reach the circuit breaker.
    # read=False: a POST that reached the backend is never re-sent, and a
    # read timeout surfaces as requests.ReadTimeout.
    return Retry(
        total=total,
        read=False,
        backoff_factor=1.0,
        status_forcelist=[502, 503, 504],
        allowed_methods=["POST"],
        raise_on_status=False,
    )


def create_default_session(max_retries: int = HTTP_MAX_RETRIES) -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(max(0, max_retries)),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
    )
    return session


_DEFAULT_SESSION = create_default_session()


def get_default_session() -> Session:
    """Return the shared analyzer session."""

    return _DEFAULT_SESSION
