"""Tests for the concrete naming backends and their error mapping."""

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest

from foldwise.core.backend import BackendError, BackendErrorKind
from foldwise.core.errors import MissingApiKeyError
from foldwise.core.models import ContentKind, ContentPreview, FileEntry
from foldwise.core.providers import (
    DEFAULT_MODELS,
    AnthropicBackend,
    OllamaBackend,
    OpenAIBackend,
    Provider,
    create_backend,
    kind_for_status,
)

ANSWER = json.dumps({"name": "holiday_beach", "category_path": ["images", "travel"], "confidence": 0.8})


@pytest.fixture
def preview():
    entry = FileEntry(path=Path("/photos/IMG_1.jpg"), size_bytes=1000, kind=ContentKind.IMAGE, mime="image/jpeg")
    return ContentPreview(entry=entry, summary="[Image file: JPEG 640x480 (RGB), 1.0 KB]")


def _status_error(cls, status):
    request = httpx.Request("POST", "https://example.invalid/v1")
    return cls("boom", response=httpx.Response(status, request=request), body=None)


class TestKindForStatus:
    @pytest.mark.parametrize(
        "status, kind",
        [
            (401, BackendErrorKind.AUTHENTICATION),
            (403, BackendErrorKind.AUTHENTICATION),
            (429, BackendErrorKind.RATE_LIMITED),
            (500, BackendErrorKind.TRANSIENT_NETWORK),
            (503, BackendErrorKind.TRANSIENT_NETWORK),
            (400, BackendErrorKind.UNSUPPORTED_INPUT),
            (418, BackendErrorKind.INVALID_RESPONSE),
        ],
    )
    def test_mapping(self, status, kind):
        assert kind_for_status(status) is kind


class TestOpenAIBackend:
    def _client(self, create):
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    async def test_analyze(self, preview):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=ANSWER))])
        create = AsyncMock(return_value=response)
        backend = OpenAIBackend("gpt-test", client=self._client(create))

        result = await backend.analyze(preview)

        assert result.suggested_name == "holiday_beach.jpg"
        assert result.category_path == ("images", "travel")
        assert create.await_args.kwargs["model"] == "gpt-test"
        assert create.await_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.parametrize(
        "error, kind",
        [
            (_status_error(openai.RateLimitError, 429), BackendErrorKind.RATE_LIMITED),
            (_status_error(openai.AuthenticationError, 401), BackendErrorKind.AUTHENTICATION),
            (_status_error(openai.InternalServerError, 500), BackendErrorKind.TRANSIENT_NETWORK),
            (
                openai.APIConnectionError(request=httpx.Request("POST", "https://example.invalid")),
                BackendErrorKind.TRANSIENT_NETWORK,
            ),
        ],
    )
    async def test_errors_are_mapped(self, preview, error, kind):
        backend = OpenAIBackend("gpt-test", client=self._client(AsyncMock(side_effect=error)))

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.kind is kind

    async def test_unexpected_structure(self, preview):
        create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        backend = OpenAIBackend("gpt-test", client=self._client(create))

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.kind is BackendErrorKind.INVALID_RESPONSE

    async def test_complete_sends_given_prompts(self):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"edits": []}'))])
        create = AsyncMock(return_value=response)
        backend = OpenAIBackend("gpt-test", client=self._client(create))

        reply = await backend.complete("system text", "user text")

        assert reply == '{"edits": []}'
        assert create.await_args.kwargs["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ]

    async def test_list_models_keeps_chat_models(self):
        page = SimpleNamespace(data=[SimpleNamespace(id=i) for i in ("gpt-4o", "whisper-1", "gpt-4o-mini")])
        client = SimpleNamespace(models=SimpleNamespace(list=AsyncMock(return_value=page)))
        backend = OpenAIBackend("gpt-test", client=client)

        assert await backend.list_models() == ["gpt-4o", "gpt-4o-mini"]


class TestAnthropicBackend:
    async def test_analyze_joins_text_blocks(self, preview):
        message = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text=ANSWER[:10]),
                SimpleNamespace(type="text", text=ANSWER[10:]),
            ]
        )
        create = AsyncMock(return_value=message)
        backend = AnthropicBackend("claude-test", client=SimpleNamespace(messages=SimpleNamespace(create=create)))

        result = await backend.analyze(preview)

        assert result.category_path == ("images", "travel")
        assert create.await_args.kwargs["model"] == "claude-test"

    async def test_complete_returns_raw_text(self):
        message = SimpleNamespace(content=[SimpleNamespace(type="text", text='{"edits": []}')])
        create = AsyncMock(return_value=message)
        backend = AnthropicBackend("claude-test", client=SimpleNamespace(messages=SimpleNamespace(create=create)))

        assert await backend.complete("system text", "user text") == '{"edits": []}'
        assert create.await_args.kwargs["system"] == "system text"

    async def test_rate_limit_is_retryable(self, preview):
        create = AsyncMock(side_effect=_status_error(anthropic.RateLimitError, 429))
        backend = AnthropicBackend("claude-test", client=SimpleNamespace(messages=SimpleNamespace(create=create)))

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.retryable


class TestOllamaBackend:
    async def test_analyze_posts_chat_request(self, preview):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": ANSWER}})

        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=httpx.MockTransport(handler))

        result = await backend.analyze(preview)

        assert result.suggested_name == "holiday_beach.jpg"
        assert seen["url"] == "http://ollama.test/api/chat"
        assert seen["body"]["model"] == "llama-test"
        assert seen["body"]["stream"] is False

    async def test_complete_returns_message_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["messages"][0] == {"role": "system", "content": "system text"}
            return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"edits": []}'}})

        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=httpx.MockTransport(handler))

        assert await backend.complete("system text", "user text") == '{"edits": []}'

    async def test_server_error_is_transient(self, preview):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=transport)

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.kind is BackendErrorKind.TRANSIENT_NETWORK

    async def test_unreachable_server(self, preview):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=httpx.MockTransport(handler))

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.kind is BackendErrorKind.TRANSIENT_NETWORK
        assert "ollama serve" in str(exc_info.value)

    async def test_malformed_body(self, preview):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=transport)

        with pytest.raises(BackendError) as exc_info:
            await backend.analyze(preview)

        assert exc_info.value.kind is BackendErrorKind.INVALID_RESPONSE

    async def test_list_models(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "mistral"}, {"name": "llama3.1"}]})

        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=httpx.MockTransport(handler))

        assert await backend.list_models() == ["llama3.1", "mistral"]

    async def test_list_models_empty(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"models": []}))
        backend = OllamaBackend("llama-test", base_url="http://ollama.test", transport=transport)

        with pytest.raises(BackendError):
            await backend.list_models()


class TestCreateBackend:
    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(MissingApiKeyError):
            create_backend("openai")

    def test_openai_default_model(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        backend = create_backend(Provider.OPENAI)

        assert isinstance(backend, OpenAIBackend)
        assert backend.model == DEFAULT_MODELS[Provider.OPENAI]

    def test_ollama_needs_no_key(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_BASE_URL", "http://gpu-box:11434/")

        backend = create_backend("ollama", "mistral")

        assert isinstance(backend, OllamaBackend)
        assert backend.model == "mistral"
        assert backend.base_url == "http://gpu-box:11434"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_backend("carrier-pigeon")
