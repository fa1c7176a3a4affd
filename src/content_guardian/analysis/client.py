"""LLM-backed compliance analysis collaborator over an OpenAI-compatible HTTP API."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from content_guardian.analysis.prompts import CompliancePrompt
from content_guardian.config import AnalysisSettings
from content_guardian.errors import AnalysisRequestError, AnalysisUnavailableError

logger = logging.getLogger(__name__)


class ComplianceAnalyzer(Protocol):
    """Submits one prompt and returns the raw response text."""

    provider: str
    model: str

    def analyze(self, prompt: CompliancePrompt) -> str:
        raise NotImplementedError


class OpenAICompatibleAnalyzer:
    """Chat-completions client; one request per revision."""

    def __init__(
        self,
        settings: AnalysisSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not settings.api_key:
            raise AnalysisUnavailableError("LLM API key not configured")
        self.provider = settings.provider
        self.model = settings.model
        self._max_tokens = settings.max_tokens
        self._client = httpx.Client(
            base_url=settings.base_url.rstrip("/") + "/",
            timeout=httpx.Timeout(settings.timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {settings.api_key}"},
            transport=transport,
        )

    def analyze(self, prompt: CompliancePrompt) -> str:
        body = {
            "model": self.model,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
        }
        try:
            response = self._client.post("chat/completions", json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise AnalysisRequestError(f"Analysis request failed: {exc}") from exc
        except ValueError as exc:
            raise AnalysisRequestError(f"Analysis response is not JSON: {exc}") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Analysis response without message content from %s", self.provider)
            return "{}"
        return content if isinstance(content, str) else "{}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAICompatibleAnalyzer:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def build_analyzer(settings: AnalysisSettings) -> ComplianceAnalyzer:
    """Raise AnalysisUnavailableError when no API key is configured."""

    return OpenAICompatibleAnalyzer(settings)
