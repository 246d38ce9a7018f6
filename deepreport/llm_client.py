"""Completion client for LM Studio, Ollama and other OpenAI-compatible endpoints."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from loguru import logger

from deepreport.config import Settings
from deepreport.errors import CompletionError

StreamCallback = Callable[[str], None]


@dataclass
class ChatResponse:
    content: str
    finish_reason: str | None = None


@dataclass
class ModelInfo:
    id: str
    name: str


class CompletionClient(Protocol):
    """What the research engine needs from a text-generation endpoint."""

    async def chat(
        self,
        messages: list[dict[str, str]],
        on_stream_chunk: Optional[StreamCallback] = None,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatResponse: ...


class OpenAICompatibleClient:
    """Chat completions over the ``openai`` SDK.

    Ollama and LM Studio both serve the OpenAI wire format under ``/v1``, so one
    adapter covers every supported provider.
    """

    def __init__(
        self,
        openai_client: Any,
        model: str,
        *,
        default_temperature: float | None = None,
    ):
        self._client = openai_client
        self.model = model
        self.default_temperature = default_temperature

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        effective_temperature = temperature if temperature is not None else self.default_temperature
        if effective_temperature is not None:
            kwargs["temperature"] = effective_temperature
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, str]],
        on_stream_chunk: Optional[StreamCallback] = None,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatResponse:
        kwargs = self._request_kwargs(messages, max_tokens, temperature)
        try:
            if on_stream_chunk is None:
                response = await self._client.chat.completions.create(**kwargs)
                return self._from_openai_response(response)
            return await self._stream(kwargs, on_stream_chunk)
        except CompletionError:
            raise
        except Exception as e:
            raise CompletionError(f"AI request failed: {e}") from e

    @staticmethod
    def _from_openai_response(response: Any) -> ChatResponse:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ChatResponse(content="")
        message = getattr(choices[0], "message", None)
        text = getattr(message, "content", None) or ""
        return ChatResponse(content=text, finish_reason=getattr(choices[0], "finish_reason", None))

    async def _stream(self, kwargs: dict[str, Any], on_stream_chunk: StreamCallback) -> ChatResponse:
        stream = await self._client.chat.completions.create(**kwargs, stream=True)
        parts: list[str] = []
        finish_reason: str | None = None
        try:
            async for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                finish_reason = getattr(choices[0], "finish_reason", None) or finish_reason
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta else None
                if text:
                    parts.append(text)
                    on_stream_chunk(text)
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()
        return ChatResponse(content="".join(parts), finish_reason=finish_reason)

    async def list_models(self) -> list[ModelInfo]:
        try:
            page = await self._client.models.list()
        except Exception as e:
            logger.warning(f"Failed to list models: {e}")
            return []
        models = getattr(page, "data", None) or []
        return [ModelInfo(id=m.id, name=m.id) for m in models if getattr(m, "id", None)]

    async def test_connection(self) -> tuple[bool, str]:
        try:
            page = await self._client.models.list()
        except Exception as e:
            return False, str(e) or "Connection failed"
        count = len(getattr(page, "data", None) or [])
        if count:
            return True, f"Connected! Found {count} model(s)"
        return True, "Connected but no models found"


def get_client(settings: Settings) -> OpenAICompatibleClient:
    """Build a completion client from settings."""
    from openai import AsyncOpenAI

    openai_client = AsyncOpenAI(
        # Local servers ignore the key but the SDK insists on one.
        api_key=settings.ai_api_key or "not-needed",
        base_url=settings.endpoint_for_provider(),
        timeout=settings.ai_timeout_seconds,
        max_retries=0,
    )
    return OpenAICompatibleClient(openai_client, settings.ai_model)
