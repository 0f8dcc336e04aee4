from __future__ import annotations

"""
Text-generation provider clients.

All providers expose the same single-turn, non-streaming call::

    text = client.complete(prompt, temperature=0.3, max_tokens=800)

Calls go over ``httpx`` with explicit connect/read timeouts.  Any
transport error, timeout, non-2xx status or unexpected payload is raised
as :class:`~toolfinder.errors.LLMServiceError`; the pipeline stages that
use these clients decide how to degrade.
"""

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import (
    AI_PROVIDER,
    ANTHROPIC_API_KEY,
    ANTHROPIC_BASE_URL,
    ANTHROPIC_CHAT_MODEL,
    ANTHROPIC_VERSION,
    GROQ_API_KEY,
    GROQ_BASE_URL,
    GROQ_CHAT_MODEL,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    LLM_DEFAULT_MAX_TOKENS,
    LLM_DEFAULT_TEMPERATURE,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_CHAT_MODEL,
)
from .errors import LLMServiceError


class LLMClient:
    """Base class for text-generation providers."""

    provider = "base"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT)
        # httpx.Client is thread-safe; one per provider handle
        self._client = httpx.Client(
            timeout=self.timeout,
            headers={"User-Agent": HTTP_USER_AGENT},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def complete(
        self,
        prompt: str,
        temperature: float = LLM_DEFAULT_TEMPERATURE,
        max_tokens: int = LLM_DEFAULT_MAX_TOKENS,
    ) -> str:
        if not self.api_key:
            raise LLMServiceError(f"{self.provider} API key not configured")
        url = self._endpoint()
        payload = self._payload(prompt, temperature, max_tokens)
        try:
            r = self._client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.warning("{} completion timed out after {}", self.provider, self.timeout)
            raise LLMServiceError(f"{self.provider} request timed out") from e
        except httpx.HTTPError as e:
            raise LLMServiceError(f"{self.provider} request failed: {e}") from e

        if r.status_code >= 400:
            logger.warning("{} completion: HTTP {} {}", self.provider, r.status_code, r.text[:200])
            raise LLMServiceError(f"{self.provider} returned HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise LLMServiceError(f"{self.provider} returned a non-JSON body") from e
        return self._extract_text(data)

    # Provider specifics
    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _payload(self, prompt: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError


class OpenAICompatibleClient(LLMClient):
    """Chat-completions API (OpenAI, Groq and other compatible servers)."""

    provider = "openai"

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(self, prompt: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        try:
            choices = data["choices"]
        except (KeyError, TypeError) as e:
            raise LLMServiceError(f"{self.provider} response has no choices") from e
        if not choices:
            return ""
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise LLMServiceError(f"{self.provider} response has malformed choices")
        message = choices[0].get("message") or {}
        return message.get("content") or ""


class GroqClient(OpenAICompatibleClient):
    provider = "groq"


class AnthropicClient(LLMClient):
    """Anthropic messages API."""

    provider = "anthropic"

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}

    def _payload(self, prompt: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        try:
            blocks = data["content"]
        except (KeyError, TypeError) as e:
            raise LLMServiceError("anthropic response has no content") from e
        if not blocks:
            return ""
        if not isinstance(blocks, list) or not isinstance(blocks[0], dict):
            raise LLMServiceError("anthropic response has malformed content")
        if blocks[0].get("type") != "text":
            return ""
        return blocks[0].get("text") or ""


def create_llm_client(provider: str = AI_PROVIDER) -> LLMClient:
    """Build the configured text-generation client."""
    provider = (provider or "").strip().lower()
    if provider == "openai":
        client: LLMClient = OpenAICompatibleClient(OPENAI_CHAT_MODEL, OPENAI_API_KEY, OPENAI_BASE_URL)
    elif provider == "groq":
        client = GroqClient(GROQ_CHAT_MODEL, GROQ_API_KEY, GROQ_BASE_URL)
    elif provider == "anthropic":
        client = AnthropicClient(ANTHROPIC_CHAT_MODEL, ANTHROPIC_API_KEY, ANTHROPIC_BASE_URL)
    else:
        raise ValueError(f"Unknown AI provider: {provider}")
    logger.info("Text-generation provider: {} ({})", client.provider, client.model)
    return client
