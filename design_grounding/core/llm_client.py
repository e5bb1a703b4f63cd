"""
OpenRouter chat completions client.

Sends one vision-capable, tool-enabled request per turn and parses the text
and tool calls that come back. Transient failures (429, 5xx, timeouts,
dropped connections) are retried with tenacity when the profile allows it;
the orchestrator's default profile does not.
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from design_grounding.core.config import ModelProfile
from design_grounding.core.exceptions import (
    LLMClientError,
    LLMConfigurationError,
    LLMTimeoutError,
    LLMResponseError,
    RateLimitError,
)

OPENROUTER_URL = "https://openrouter.ai/api/v1"
MIN_REQUEST_INTERVAL = 0.1


@dataclass
class LLMResponse:
    """Generated text, OpenAI-shaped tool calls and usage for one request."""
    content: str
    model: str
    finish_reason: str = "stop"
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_total: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    raw_response: Dict[str, Any] = field(default_factory=dict)
    # {id, type, function: {name, arguments}} with arguments as a JSON string
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
            "tokens_total": self.tokens_total,
            "cost_usd": self.cost_usd,
            "latency_ms": self.latency_ms,
            "tool_calls": self.tool_calls,
        }


def is_transient(error: BaseException) -> bool:
    """Rate limits, timeouts, 5xx and transport failures are worth retrying."""
    if isinstance(error, (RateLimitError, LLMTimeoutError)):
        return True
    if isinstance(error, LLMClientError) and not isinstance(error, (LLMConfigurationError, LLMResponseError)):
        return error.details.get("status_code", 0) >= 500 or bool(error.details.get("transport"))
    return False


def provider_message(response: httpx.Response) -> str:
    """The provider's error message, or the raw body when it is not JSON."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text


class LLMClient:
    """
    Async client for OpenRouter.

    The API key falls back to OPENROUTER_API_KEY. A missing key is not an
    error until chat() is called, so the app can start and report itself
    unconfigured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: OpenRouter API key
            base_url: API base URL
            timeout: Request timeout in seconds
            max_retries: Retries after the first attempt, for transient errors
            retry_delay: First backoff in seconds, doubled per retry
            transport: httpx transport override (tests use MockTransport)
        """
        self.api_key = api_key if api_key is not None else os.environ.get("OPENROUTER_API_KEY", "")
        self.base_url = (base_url or OPENROUTER_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._last_sent = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Title": "Design Grounding Orchestrator",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # REQUEST
    # =========================================================================

    def build_payload(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        profile: Optional[ModelProfile] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **extra,
    ) -> Dict[str, Any]:
        """Request body; explicit arguments win over the profile."""
        model = model or (profile.primary_model if profile else "")
        if not model:
            raise LLMConfigurationError("No model specified")

        if temperature is None:
            temperature = profile.temperature if profile else 0.3
        max_tokens = max_tokens or (profile.max_tokens if profile else 2048)

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = extra.pop("tool_choice", "auto")
        payload.update({k: v for k, v in extra.items() if v is not None and k not in payload})
        return payload

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        profile: Optional[ModelProfile] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: OpenAI-format messages; user content may mix text and
                image_url parts
            model: Model id, overriding the profile
            profile: Model, sampling, retry and pricing settings
            tools: Function-calling tool definitions
            temperature: Overrides the profile
            max_tokens: Overrides the profile

        Raises:
            LLMConfigurationError: No API key, no model, or rejected credentials
            RateLimitError: 429 after any retries
            LLMTimeoutError: Timed out after any retries
            LLMResponseError: The body could not be parsed
            LLMClientError: Any other API or transport failure
        """
        if not self.api_key:
            raise LLMConfigurationError("OPENROUTER_API_KEY is not configured")

        payload = self.build_payload(messages, model, profile, tools, temperature, max_tokens, **kwargs)

        retries = profile.max_retries if profile else self.max_retries
        delay = profile.retry_delay_seconds if profile else self.retry_delay

        def backoff(state: RetryCallState) -> float:
            error = state.outcome.exception() if state.outcome else None
            if isinstance(error, RateLimitError) and error.retry_after:
                return float(error.retry_after)
            return delay * (2 ** (state.attempt_number - 1))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=backoff,
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send(payload, profile)
        return response

    async def _send(self, payload: Dict[str, Any], profile: Optional[ModelProfile]) -> LLMResponse:
        """One attempt, with errors mapped onto the LLMClientError family."""
        elapsed = time.monotonic() - self._last_sent
        if elapsed < MIN_REQUEST_INTERVAL:
            await asyncio.sleep(MIN_REQUEST_INTERVAL - elapsed)
        self._last_sent = time.monotonic()

        model = payload["model"]
        started = time.perf_counter()
        try:
            response = await self._http().post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMClientError(f"Transport error: {e}", details={"transport": True}) from e
        latency_ms = int((time.perf_counter() - started) * 1000)

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limit exceeded for {model}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status in (401, 403):
            raise LLMConfigurationError(
                f"API rejected credentials ({status})",
                details={"status_code": status},
            )
        if status != 200:
            raise LLMClientError(
                f"API error ({status}): {provider_message(response)}",
                details={"status_code": status},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"Response is not JSON: {e}") from e
        return self.parse_response(data, model, latency_ms, profile)

    # =========================================================================
    # RESPONSE
    # =========================================================================

    @staticmethod
    def parse_response(
        data: Dict[str, Any],
        model: str,
        latency_ms: int = 0,
        profile: Optional[ModelProfile] = None,
    ) -> LLMResponse:
        """Parse a chat completions body; tool call arguments stay JSON strings."""
        try:
            choice = data["choices"][0]
            message = choice.get("message") or {}
            usage = data.get("usage") or {}

            tokens_input = usage.get("prompt_tokens", 0)
            tokens_output = usage.get("completion_tokens", 0)
            cost = 0.0
            if profile:
                cost = (
                    tokens_input / 1000 * profile.cost_per_1k_input
                    + tokens_output / 1000 * profile.cost_per_1k_output
                )

            tool_calls = []
            for call in message.get("tool_calls") or []:
                function = call.get("function") or {}
                tool_calls.append({
                    "id": call.get("id", ""),
                    "type": call.get("type", "function"),
                    "function": {
                        "name": function.get("name", ""),
                        "arguments": function.get("arguments") or "{}",
                    },
                })
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMResponseError(f"Failed to parse response: {e}") from e

        return LLMResponse(
            content=message.get("content") or "",
            model=data.get("model", model),
            finish_reason=choice.get("finish_reason") or "stop",
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            tokens_total=usage.get("total_tokens", tokens_input + tokens_output),
            cost_usd=cost,
            latency_ms=latency_ms,
            raw_response=data,
            tool_calls=tool_calls,
        )
