"""Async model adapter built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APIError,
    APIStatusError,
    AuthenticationError,
    RateLimitError,
)
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..conversation.models import TokenUsage
from ..errors import ModelAdapterError
from .adapters import ModelReply, StructuredCall

LOGGER = logging.getLogger(__name__)
_TRANSIENT_ERRORS = (
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = 0.7
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """OpenAI-compatible :class:`~writersroom.ai.adapters.ModelAdapter` with retry semantics."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def generate_structured_reply(
        self,
        messages: Sequence[Mapping[str, Any]],
        tool_spec: Mapping[str, Any] | None = None,
        tool_choice: Mapping[str, Any] | str | None = None,
    ) -> ModelReply:
        """Run one non-streaming chat completion and normalize the result.

        Raises:
            ModelAdapterError: when the request fails after retries.
            asyncio.CancelledError: when :meth:`cancel_pending` aborted the call.
        """

        payload = self._request_payload(messages, tool_spec, tool_choice)
        LOGGER.debug(
            "Requesting chat completion via %s with %s message(s)%s",
            self._settings.model,
            len(payload["messages"]),
            " and a forced tool call" if tool_spec else "",
        )
        if self._settings.debug_logging:
            LOGGER.debug("Prompt payload:\n%s", json.dumps(payload, ensure_ascii=False, indent=2, default=str))

        task = asyncio.ensure_future(self._complete(payload))
        self._pending.add(task)
        try:
            response = await task
        except AuthenticationError as exc:
            raise ModelAdapterError(f"Authentication failed: {exc}", auth_failure=True) from exc
        except APIStatusError as exc:
            raise ModelAdapterError(
                f"Model request failed with status {exc.status_code}: {exc}",
                auth_failure=exc.status_code == 401,
            ) from exc
        except (APIError, httpx.HTTPError) as exc:
            raise ModelAdapterError(f"Model request failed: {exc}") from exc
        finally:
            self._pending.discard(task)
        return self._to_reply(response)

    def cancel_pending(self) -> int:
        """Cancel every in-flight request; return how many were cancelled."""

        cancelled = 0
        for task in list(self._pending):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            LOGGER.debug("Cancelled %d pending model request(s)", cancelled)
        return cancelled

    async def _complete(self, payload: Mapping[str, Any]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload)
        raise AssertionError("unreachable")  # pragma: no cover

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        # Retries are owned by tenacity; the SDK's own retry loop stays off.
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers or {}) or None,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        settings = self._settings
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.max_retries)),
            wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        )

    def _request_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        tool_spec: Mapping[str, Any] | None,
        tool_choice: Mapping[str, Any] | str | None,
    ) -> Dict[str, Any]:
        chat: List[ChatCompletionMessageParam] = [cast(ChatCompletionMessageParam, dict(item)) for item in messages]
        if not chat:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {"model": self._settings.model, "messages": chat}
        if tool_spec:
            payload["tools"] = [dict(tool_spec)]
            if tool_choice:
                payload["tool_choice"] = tool_choice
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        return payload

    @staticmethod
    def _to_reply(response: Any) -> ModelReply:
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None

        structured_call: StructuredCall | None = None
        calls = [call for call in getattr(message, "tool_calls", None) or () if getattr(call, "function", None)]
        if calls:
            first = calls[0]
            structured_call = StructuredCall(
                name=str(first.function.name or ""),
                arguments=str(first.function.arguments or ""),
                call_id=getattr(first, "id", None),
            )
            if len(calls) > 1:
                LOGGER.debug("Ignoring %d extra tool call(s)", len(calls) - 1)

        usage = None
        raw_usage = getattr(response, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage(
                prompt_tokens=int(getattr(raw_usage, "prompt_tokens", 0) or 0),
                completion_tokens=int(getattr(raw_usage, "completion_tokens", 0) or 0),
                total_tokens=int(getattr(raw_usage, "total_tokens", 0) or 0),
            )
        return ModelReply(
            output_text=getattr(message, "content", None),
            structured_call=structured_call,
            usage=usage,
        )

    async def aclose(self) -> None:
        """Abort in-flight requests and close the HTTP client."""

        self.cancel_pending()
        await self._client.close()


__all__ = ["AIClient", "ClientSettings"]
