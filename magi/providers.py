"""
One call contract over the three chat APIs the agents use.

OpenAI and xAI share the chat-completions wire format; Anthropic uses the
messages API with content blocks. Both families run the same agentic loop
for the HTTP-relay tool.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from .config import settings
from .errors import ConfigurationError, MissingCredentialError, ProviderError, ProviderTimeoutError
from .http_relay import (
    TOOL_DESCRIPTION,
    TOOL_NAME,
    TOOL_PARAMETERS,
    HttpRelay,
    RelayToolSession,
    parse_tool_arguments,
)
from .model_config import canonical_model_for
from .models import Agent, Provider
from .rate_limit import wait_for_rate_limit

logger = logging.getLogger(__name__)

ChatMessage = Mapping[str, str]


@dataclass(frozen=True)
class Credentials:
    """Per-request provider keys; never read from process state."""

    openai: str | None = None
    anthropic: str | None = None
    grok: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "Credentials":
        mapping = mapping or {}

        def pick(*names: str) -> str | None:
            for name in names:
                value = mapping.get(name)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return None

        return cls(
            openai=pick("openai"),
            anthropic=pick("anthropic"),
            grok=pick("grok", "xai"),
        )

    def key_for(self, provider: Provider) -> str | None:
        return {
            Provider.OPENAI: self.openai,
            Provider.ANTHROPIC: self.anthropic,
            Provider.GROK: self.grok,
        }[provider]

    def available(self) -> list[str]:
        return [p.value for p in Provider if self.key_for(p)]


@dataclass
class InvokeOptions:
    enable_http_tool: bool = False
    timeout_seconds: float | None = None
    max_tool_calls: int | None = None
    temperature: float | None = None


@dataclass
class ProviderResult:
    content: str
    provider_used: str
    http_request_count: int = 0
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None

    @property
    def total_tokens(self) -> int | None:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)


def _add(total: int | None, value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return (total or 0) + value
    return total


class ProviderStrategy(ABC):
    """Request shaping and response parsing for one API family."""

    provider: Provider
    label: str

    def __init__(self, provider: Provider, label: str, base_url: str) -> None:
        self.provider = provider
        self.label = label
        self.base_url = base_url.rstrip("/")

    @abstractmethod
    def headers(self, api_key: str) -> dict[str, str]:
        pass

    @abstractmethod
    async def complete(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions,
        tool_session: RelayToolSession | None,
    ) -> ProviderResult:
        pass

    async def ping(self, client: httpx.AsyncClient, api_key: str) -> bool:
        try:
            response = await client.get(f"{self.base_url}/models", headers=self.headers(api_key))
        except httpx.HTTPError as exc:
            logger.warning("%s ping failed: %s", self.label, exc)
            return False
        return response.is_success

    async def _post(
        self, client: httpx.AsyncClient, path: str, api_key: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            response = await client.post(
                f"{self.base_url}{path}", headers=self.headers(api_key), json=body
            )
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.label} request failed: {exc}", provider=self.label
            ) from exc
        if not response.is_success:
            logger.warning("%s returned HTTP %s", self.label, response.status_code)
            raise ProviderError(
                f"{self.label} error {response.status_code}",
                provider=self.label,
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.label} returned malformed JSON", provider=self.label) from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{self.label} returned an unexpected payload", provider=self.label)
        return data

    def _check_turns(self, turns: int) -> None:
        if turns > settings.max_tool_turns:
            raise ProviderError(
                f"{self.label} exceeded {settings.max_tool_turns} tool turns", provider=self.label
            )


class OpenAICompatibleStrategy(ProviderStrategy):
    """Chat completions API (OpenAI and xAI)."""

    def headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    @staticmethod
    def tool_schema() -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": TOOL_NAME,
                    "description": TOOL_DESCRIPTION,
                    "parameters": TOOL_PARAMETERS,
                },
            }
        ]

    @staticmethod
    def _text(message: dict[str, Any]) -> str:
        content = message.get("content")
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        return str(content or "").strip()

    async def complete(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions,
        tool_session: RelayToolSession | None,
    ) -> ProviderResult:
        messages: list[dict[str, Any]] = [dict(m) for m in conversation]
        input_tokens: int | None = None
        output_tokens: int | None = None
        turns = 0

        while True:
            turns += 1
            self._check_turns(turns)
            body: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "temperature": options.temperature if options.temperature is not None else settings.temperature,
            }
            if tool_session is not None:
                body["tools"] = self.tool_schema()
                body["tool_choice"] = "auto"

            data = await self._post(client, "/chat/completions", api_key, body)
            usage = data.get("usage") or {}
            input_tokens = _add(input_tokens, usage.get("prompt_tokens"))
            output_tokens = _add(output_tokens, usage.get("completion_tokens"))

            try:
                message = data["choices"][0]["message"]
            except (KeyError, IndexError, TypeError) as exc:
                raise ProviderError(f"{self.label} response had no message", provider=self.label) from exc
            if not isinstance(message, dict):
                raise ProviderError(f"{self.label} response had no message", provider=self.label)

            tool_calls = message.get("tool_calls") or []
            if tool_calls and tool_session is not None:
                messages.append(
                    {"role": "assistant", "content": message.get("content") or "", "tool_calls": tool_calls}
                )
                for call in tool_calls:
                    function = call.get("function") or {}
                    if function.get("name") == TOOL_NAME:
                        result = await tool_session.execute(parse_tool_arguments(function.get("arguments")))
                    else:
                        result = {"ok": False, "error": f"Unknown tool: {function.get('name')}"}
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": call.get("id"),
                            "content": RelayToolSession.serialize(result),
                        }
                    )
                continue

            return ProviderResult(
                content=self._text(message),
                provider_used=self.provider.value,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )


class AnthropicStrategy(ProviderStrategy):
    """Anthropic messages API."""

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": settings.anthropic_version,
            "Content-Type": "application/json",
        }

    @staticmethod
    def tool_schema() -> list[dict[str, Any]]:
        return [{"name": TOOL_NAME, "description": TOOL_DESCRIPTION, "input_schema": TOOL_PARAMETERS}]

    @staticmethod
    def split_system(conversation: Sequence[ChatMessage]) -> tuple[str | None, list[dict[str, Any]]]:
        system_parts = [m["content"] for m in conversation if m.get("role") == "system"]
        turns = [
            {
                "role": "assistant" if m.get("role") == "assistant" else "user",
                "content": [{"type": "text", "text": m["content"]}],
            }
            for m in conversation
            if m.get("role") != "system"
        ]
        return ("\n\n".join(system_parts) if system_parts else None), turns

    async def complete(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        model: str,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions,
        tool_session: RelayToolSession | None,
    ) -> ProviderResult:
        system, messages = self.split_system(conversation)
        input_tokens: int | None = None
        output_tokens: int | None = None
        turns = 0

        while True:
            turns += 1
            self._check_turns(turns)
            body: dict[str, Any] = {
                "model": model,
                "max_tokens": settings.anthropic_max_tokens,
                "messages": messages,
                "temperature": options.temperature if options.temperature is not None else settings.temperature,
            }
            if system:
                body["system"] = system
            if tool_session is not None:
                body["tools"] = self.tool_schema()

            data = await self._post(client, "/messages", api_key, body)
            usage = data.get("usage") or {}
            input_tokens = _add(input_tokens, usage.get("input_tokens"))
            output_tokens = _add(output_tokens, usage.get("output_tokens"))

            blocks = data.get("content")
            if not isinstance(blocks, list):
                raise ProviderError(f"{self.label} response had no content", provider=self.label)
            blocks = [b for b in blocks if isinstance(b, dict)]

            tool_uses = [b for b in blocks if b.get("type") == "tool_use"]
            if tool_uses and tool_session is not None:
                messages.append({"role": "assistant", "content": blocks})
                results = []
                for block in tool_uses:
                    if block.get("name") == TOOL_NAME:
                        result = await tool_session.execute(parse_tool_arguments(block.get("input")))
                    else:
                        result = {"ok": False, "error": f"Unknown tool: {block.get('name')}"}
                    results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block.get("id"),
                            "content": RelayToolSession.serialize(result),
                        }
                    )
                messages.append({"role": "user", "content": results})
                continue

            text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            return ProviderResult(
                content=text.strip(),
                provider_used=self.provider.value,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )


def build_strategies() -> dict[Provider, ProviderStrategy]:
    strategies: dict[Provider, ProviderStrategy] = {
        Provider.OPENAI: OpenAICompatibleStrategy(Provider.OPENAI, "openai", settings.openai_base_url),
        Provider.ANTHROPIC: AnthropicStrategy(Provider.ANTHROPIC, "anthropic", settings.anthropic_base_url),
        Provider.GROK: OpenAICompatibleStrategy(Provider.GROK, "xai", settings.xai_base_url),
    }
    missing = [p.value for p in Provider if p not in strategies]
    if missing:
        raise ConfigurationError(f"No invocation strategy for: {', '.join(missing)}")
    return strategies


class ProviderClient:
    """Invokes an agent's provider with timeout, tool loop and credential checks."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        relay: HttpRelay | None = None,
        timeout_seconds: float | None = None,
        strategies: dict[Provider, ProviderStrategy] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.provider_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        self._relay = relay or HttpRelay()
        self._strategies = strategies or build_strategies()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def strategy_for(self, provider: Provider) -> ProviderStrategy:
        return self._strategies[provider]

    async def invoke(
        self,
        agent: Agent,
        credentials: Credentials,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions | None = None,
    ) -> ProviderResult:
        options = options or InvokeOptions()
        try:
            provider = Provider(agent.provider)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown provider: {agent.provider}") from exc

        api_key = credentials.key_for(provider)
        if not api_key:
            raise MissingCredentialError(provider.value)

        strategy = self.strategy_for(provider)
        model = canonical_model_for(provider, agent.model)
        if not await wait_for_rate_limit(provider):
            raise ProviderError(f"{strategy.label} rate limit wait exceeded", provider=strategy.label)

        tool_session = (
            RelayToolSession(self._relay, max_calls=options.max_tool_calls)
            if options.enable_http_tool
            else None
        )
        timeout = options.timeout_seconds or self.timeout_seconds
        try:
            result = await asyncio.wait_for(
                strategy.complete(self._client, api_key, model, conversation, options, tool_session),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(strategy.label, timeout) from exc

        if tool_session is not None:
            result.http_request_count = tool_session.calls_executed
        logger.debug(
            "%s answered for %s (%s chars, %s tool calls)",
            strategy.label,
            agent.name,
            len(result.content),
            result.http_request_count,
        )
        return result

    async def ping(self, provider: Provider, api_key: str) -> bool:
        if not api_key:
            raise MissingCredentialError(provider.value)
        return await self.strategy_for(provider).ping(self._client, api_key)
