"""Interchangeable language-model backends behind one ``analyze`` contract.

Both adapters send a single prompt and return the model's raw text. They
differ only in the request/response wire shape; gating, prompting and
salvage live in the analysis service.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from .. import config
from ..errors import (
    AnalyzerError,
    AnalyzerResponseError,
    AnalyzerTimeoutError,
    AnalyzerTransportError,
)
from ..utils import mask_tail
from .response_handling import classify_response_status, safe_json
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AnalyzerBackend",
    "AzureOpenAIBackend",
    "OllamaBackend",
    "build_backend",
]


class AnalyzerBackend(Protocol):
    name: str

    def is_configured(self) -> bool:
        ...

    def analyze(self, prompt: str) -> str:
        """Return the model's text for ``prompt`` or raise ``AnalyzerError``."""
        ...


class _HttpBackend:
    name = "http"

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = config.LLM_REQUEST_TIMEOUT,
        max_tokens: int = config.LLM_MAX_TOKENS,
        temperature: float = config.LLM_TEMPERATURE,
    ) -> None:
        self._session = session or get_default_session()
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    def is_configured(self) -> bool:
        return True

    def _post(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        context = f"{self.name} analyze"
        try:
            response = self._session.post(
                url,
                json=payload,
                headers=headers,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise AnalyzerTimeoutError(
                f"{context} timed out after {self.timeout}s"
            ) from exc
        except requests.RequestException as exc:
            # Quota is read from backend responses only.
            raise AnalyzerTransportError(
                f"{context} network error: {exc.__class__.__name__}: {exc}"
            ) from exc

        error = classify_response_status(response, context)
        if error is not None:
            raise error
        data = safe_json(response)
        if not isinstance(data, dict):
            raise AnalyzerResponseError(f"{context} returned a non-object body")
        return data


class OllamaBackend(_HttpBackend):
    """Locally hosted model served by Ollama."""

    name = "ollama"

    def __init__(
        self,
        *,
        endpoint: str = config.OLLAMA_ENDPOINT,
        model: str = config.OLLAMA_MODEL,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.endpoint = endpoint.rstrip("/")
        self.model = model

    def is_configured(self) -> bool:
        return bool(self.endpoint and self.model)

    def analyze(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        LOGGER.info(
            "Calling Ollama model=%s (timeout %.0fs)", self.model, self.timeout
        )
        data = self._post(f"{self.endpoint}/api/generate", payload)
        content = data.get("response")
        if not isinstance(content, str):
            raise AnalyzerResponseError("Ollama response is missing the 'response' field")
        LOGGER.info("Ollama call succeeded model=%s chars=%d", self.model, len(content))
        return content


class AzureOpenAIBackend(_HttpBackend):
    """Hosted chat-completions deployment on Azure OpenAI."""

    name = "azure_openai"

    def __init__(
        self,
        *,
        endpoint: str = config.AZURE_OPENAI_ENDPOINT,
        deployment: str = config.AZURE_OPENAI_DEPLOYMENT,
        api_version: str = config.AZURE_OPENAI_API_VERSION,
        api_key: str = config.AZURE_OPENAI_API_KEY,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.endpoint = endpoint.rstrip("/")
        self.deployment = deployment
        self.api_version = api_version
        self._api_key = api_key

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def analyze(self, prompt: str) -> str:
        if not self.is_configured():
            raise AnalyzerError("Azure OpenAI API key not configured")
        url = f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions"
        payload = {
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        LOGGER.info(
            "Calling Azure OpenAI deployment=%s key=%s",
            self.deployment,
            mask_tail(self._api_key),
        )
        data = self._post(
            url,
            payload,
            headers={"api-key": self._api_key},
            params={"api-version": self.api_version},
        )
        content = _first_choice_content(data)
        if content is None:
            raise AnalyzerResponseError("Azure OpenAI response has no message content")
        LOGGER.info(
            "Azure OpenAI call succeeded deployment=%s chars=%d",
            self.deployment,
            len(content),
        )
        return content


def _first_choice_content(data: Mapping[str, Any]) -> Optional[str]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def build_backend(
    provider: str | None = None,
    *,
    session: requests.Session | None = None,
) -> AnalyzerBackend:
    """Return the backend named by ``provider`` (defaults to ``LLM_PROVIDER``)."""

    selected = (provider or config.LLM_PROVIDER).strip().lower()
    if selected in {"azure", "azure_openai", "openai"}:
        LOGGER.info("Using Azure OpenAI for ride analysis")
        return AzureOpenAIBackend(session=session)
    if selected == "ollama":
        LOGGER.info("Using Ollama for ride analysis")
        return OllamaBackend(session=session)
    raise ValueError(f"Unknown analyzer provider: {provider!r}")
