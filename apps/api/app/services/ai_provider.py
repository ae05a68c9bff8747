"""AI Provider abstraction layer.

Supports OpenAI and Google Gemini with a unified interface. A generation
returns either prose or a single structured tool call.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import settings
from app.services.outreach_errors import TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass
class ToolSchema:
    """A tool the model may call (JSON-schema parameters)."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCall:
    """A structured tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any]


@dataclass
class GenerationResult:
    """Response from an AI provider: text or one tool call."""

    text: str | None = None
    tool_call: ToolCall | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""

    @property
    def is_tool_call(self) -> bool:
        return self.tool_call is not None


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_message: str,
        tools: list[ToolSchema] | None = None,
        temperature: float = 0.4,
        max_tokens: int = 400,
    ) -> GenerationResult:
        """Generate a reply or a tool call."""
        pass


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("AI tool call arguments were not valid JSON")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIProvider(AIProvider):
    """OpenAI chat completions provider with function calling."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url
        self._transport = transport

    async def generate(
        self,
        system_prompt: str,
        user_message: str,
        tools: list[ToolSchema] | None = None,
        temperature: float = 0.4,
        max_tokens: int = 400,
    ) -> GenerationResult:
        body: dict[str, Any] = {
            "model": self.default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
            body["tool_choice"] = "auto"
            body["parallel_tool_calls"] = False

        try:
            async with httpx.AsyncClient(
                timeout=settings.AI_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"OpenAI generation failed: {type(exc).__name__}") from exc

        message = data["choices"][0]["message"]
        usage = data.get("usage", {})
        result = GenerationResult(
            text=message.get("content"),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            model=self.default_model,
        )
        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            function = tool_calls[0].get("function", {})
            result.tool_call = ToolCall(
                name=function.get("name", ""),
                arguments=_parse_arguments(function.get("arguments")),
            )
        return result


class GeminiProvider(AIProvider):
    """Google Gemini API provider with function declarations."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url
        self._transport = transport

    async def generate(
        self,
        system_prompt: str,
        user_message: str,
        tools: list[ToolSchema] | None = None,
        temperature: float = 0.4,
        max_tokens: int = 400,
    ) -> GenerationResult:
        request_body: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_message}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        if tools:
            request_body["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.parameters}
                        for t in tools
                    ]
                }
            ]

        try:
            async with httpx.AsyncClient(
                timeout=settings.AI_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.default_model}:generateContent",
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=request_body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Gemini generation failed: {type(exc).__name__}") from exc

        parts = data["candidates"][0]["content"].get("parts", [])
        usage = data.get("usageMetadata", {})
        result = GenerationResult(
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            model=self.default_model,
        )
        texts = []
        for part in parts:
            if "functionCall" in part and result.tool_call is None:
                call = part["functionCall"]
                result.tool_call = ToolCall(
                    name=call.get("name", ""),
                    arguments=_parse_arguments(call.get("args")),
                )
            elif "text" in part:
                texts.append(part["text"])
        result.text = "".join(texts) or None
        return result


def get_provider(
    provider_name: str | None = None,
    api_key: str | None = None,
    model: str | None = None,
) -> AIProvider | None:
    """Build the configured provider, or None when no key is set."""
    provider_name = (provider_name or settings.AI_PROVIDER).lower()
    api_key = api_key or settings.AI_API_KEY
    if not api_key:
        return None

    if provider_name == "openai":
        return OpenAIProvider(
            api_key, default_model=model or settings.AI_MODEL, base_url=settings.AI_BASE_URL
        )
    if provider_name == "gemini":
        return GeminiProvider(api_key, default_model=model or settings.AI_MODEL)
    raise ValueError(f"Unknown AI provider: {provider_name}")
