from __future__ import annotations
"""
Concrete naming backends for foldwise.

Three providers satisfy the NamingBackend capability:

- OpenAI     (openai.AsyncOpenAI, JSON response format)
- Anthropic  (anthropic.AsyncAnthropic)
- Ollama     (local server, plain HTTP via httpx)

Each one maps its SDK / HTTP failures onto BackendErrorKind so the analyzer
can decide what to retry without knowing which provider it is talking to.
The provider is chosen once at startup through create_backend().
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

import anthropic
import httpx
import openai

from ..utils.env import get_api_key, get_ollama_base_url
from .backend import (
    SYSTEM_PROMPT,
    BackendError,
    BackendErrorKind,
    build_prompt,
    parse_response,
)
from .models import AnalysisResult, ContentPreview

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


DEFAULT_MODELS: Dict[Provider, str] = {
    Provider.OPENAI: "gpt-4o-mini",
    Provider.ANTHROPIC: "claude-3-5-haiku-latest",
    Provider.OLLAMA: "llama3.1",
}

# Seconds before a single backend request is abandoned as a transient failure.
REQUEST_TIMEOUT = 60.0

# Large enough for a batch of plan edits; file answers are much shorter.
MAX_OUTPUT_TOKENS = 1024


def kind_for_status(status: int) -> BackendErrorKind:
    """Map an HTTP status code onto the backend error taxonomy."""
    if status in (401, 403):
        return BackendErrorKind.AUTHENTICATION
    if status == 429:
        return BackendErrorKind.RATE_LIMITED
    if status >= 500 or status in (408, 409):
        return BackendErrorKind.TRANSIENT_NETWORK
    if status in (400, 404, 413, 415, 422):
        return BackendErrorKind.UNSUPPORTED_INPUT
    return BackendErrorKind.INVALID_RESPONSE

# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAIBackend:
    """Chat-completions backend using the official async OpenAI client."""

    def __init__(self, model: str, api_key: Optional[str] = None, client=None) -> None:
        self.model = model
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key or get_api_key(Provider.OPENAI.value),
            timeout=REQUEST_TIMEOUT,
            max_retries=0,  # retries are owned by the analyzer pool
        )

    async def complete(self, system: str, user: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.APIStatusError as exc:
            raise BackendError(kind_for_status(exc.status_code), f"OpenAI error: {exc}") from exc
        except (openai.APITimeoutError, openai.APIConnectionError) as exc:
            raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, f"OpenAI unreachable: {exc}") from exc

        try:
            raw_text = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise BackendError(
                BackendErrorKind.INVALID_RESPONSE, f"Unexpected OpenAI response structure: {exc}"
            ) from exc
        return raw_text

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        return parse_response(await self.complete(SYSTEM_PROMPT, build_prompt(preview)), preview)

    async def list_models(self) -> List[str]:
        try:
            page = await self._client.models.list()
        except openai.APIStatusError as exc:
            raise BackendError(kind_for_status(exc.status_code), f"OpenAI error: {exc}") from exc
        except (openai.APITimeoutError, openai.APIConnectionError) as exc:
            raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, f"OpenAI unreachable: {exc}") from exc
        return sorted({m.id for m in page.data if "gpt" in m.id})

# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicBackend:
    """Messages-API backend using the official async Anthropic client."""

    def __init__(self, model: str, api_key: Optional[str] = None, client=None) -> None:
        self.model = model
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key or get_api_key(Provider.ANTHROPIC.value),
            timeout=REQUEST_TIMEOUT,
            max_retries=0,
        )

    async def complete(self, system: str, user: str) -> str:
        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=MAX_OUTPUT_TOKENS,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APIStatusError as exc:
            raise BackendError(kind_for_status(exc.status_code), f"Anthropic error: {exc}") from exc
        except (anthropic.APITimeoutError, anthropic.APIConnectionError) as exc:
            raise BackendError(
                BackendErrorKind.TRANSIENT_NETWORK, f"Anthropic unreachable: {exc}"
            ) from exc

        return "".join(
            block.text for block in getattr(message, "content", []) if getattr(block, "type", "") == "text"
        )

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        return parse_response(await self.complete(SYSTEM_PROMPT, build_prompt(preview)), preview)

    async def list_models(self) -> List[str]:
        try:
            page = await self._client.models.list()
        except anthropic.APIStatusError as exc:
            raise BackendError(kind_for_status(exc.status_code), f"Anthropic error: {exc}") from exc
        except (anthropic.APITimeoutError, anthropic.APIConnectionError) as exc:
            raise BackendError(
                BackendErrorKind.TRANSIENT_NETWORK, f"Anthropic unreachable: {exc}"
            ) from exc
        return sorted(m.id for m in page.data)

# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class OllamaBackend:
    """Local Ollama server, spoken to directly over its HTTP API."""

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model = model
        self.base_url = (base_url or get_ollama_base_url()).rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=REQUEST_TIMEOUT, transport=self._transport
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, f"Ollama timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise BackendError(
                BackendErrorKind.TRANSIENT_NETWORK,
                f"Cannot connect to Ollama at {self.base_url}. Make sure it's running (ollama serve)",
            ) from exc

        if response.status_code != 200:
            raise BackendError(
                kind_for_status(response.status_code),
                f"Ollama HTTP {response.status_code}: {response.text[:200]}",
            )
        return response

    async def complete(self, system: str, user: str) -> str:
        payload = {
            "model": self.model,
            "stream": False,
            "format": "json",
            "options": {"temperature": 0},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        response = await self._request("POST", "/api/chat", json=payload)
        try:
            raw_text = response.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendError(
                BackendErrorKind.INVALID_RESPONSE, f"Unexpected Ollama response structure: {exc}"
            ) from exc
        return raw_text

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        return parse_response(await self.complete(SYSTEM_PROMPT, build_prompt(preview)), preview)

    async def list_models(self) -> List[str]:
        response = await self._request("GET", "/api/tags")
        try:
            models = [m["name"] for m in response.json().get("models", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise BackendError(
                BackendErrorKind.INVALID_RESPONSE, f"Unexpected Ollama response structure: {exc}"
            ) from exc
        if not models:
            raise BackendError(
                BackendErrorKind.UNSUPPORTED_INPUT,
                "No models installed in Ollama. Run 'ollama pull <model>' first",
            )
        return sorted(models)

# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_backend(provider: Provider | str, model: Optional[str] = None):
    """
    Build the backend for `provider`. Missing credentials raise
    MissingApiKeyError here, before any file is analyzed.
    """
    provider = Provider(provider)
    model = model or DEFAULT_MODELS[provider]
    logger.info("Using %s backend with model %s", provider.value, model)

    if provider is Provider.OPENAI:
        return OpenAIBackend(model)
    if provider is Provider.ANTHROPIC:
        return AnthropicBackend(model)
    return OllamaBackend(model)
