"""Chat-completion collaborators used by the AI node handlers."""

from abc import ABC, abstractmethod
import json
from typing import Any, Dict, List, Optional

import httpx
import openai
from pydantic import BaseModel, Field

from ..core.exceptions import ServiceError
from ..core.logging import get_logger
from ..models.core import ChatMessage

logger = get_logger(__name__)

# Providers a workflow may name, with the models the editor offers for each.
LLM_PROVIDERS: Dict[str, Dict[str, Any]] = {
    "openai": {
        "name": "OpenAI",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        "supports_system_prompt": True,
    },
    "anthropic": {
        "name": "Anthropic Claude",
        "models": ["claude-3-5-sonnet-20241022", "claude-3-opus-20240229", "claude-3-haiku-20240307"],
        "supports_system_prompt": True,
    },
    "google": {
        "name": "Google Gemini",
        "models": ["gemini-1.5-pro", "gemini-1.5-flash", "gemini-pro"],
        "supports_system_prompt": True,
    },
    "cohere": {
        "name": "Cohere",
        "models": ["command-r-plus", "command-r", "command"],
        "supports_system_prompt": False,
    },
    "mistral": {
        "name": "Mistral AI",
        "models": ["mistral-large-latest", "mistral-medium-latest", "mistral-small-latest"],
        "supports_system_prompt": True,
    },
}


class ChatRequest(BaseModel):
    """Provider-neutral chat completion request."""
    provider: str = Field("openai", description="Provider name, e.g. openai")
    model: str = Field(..., description="Model identifier")
    messages: List[ChatMessage] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_messages(self) -> List[Dict[str, str]]:
        """Message list with the system prompt, if any, in front."""
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(message.model_dump() for message in self.messages)
        return messages


class ChatClient(ABC):
    """One provider's chat-completion adapter."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> str:
        """Return the assistant's reply text."""


class OpenAIChatClient(ChatClient):
    """Chat client backed by the ``openai`` SDK.

    The SDK client is created on first use so an engine can be built without
    an API key; the key is only required once an OpenAI node actually runs.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: float = 60.0, max_retries: int = 2):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self._client: Optional[openai.AsyncOpenAI] = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ServiceError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable.",
                    service="openai",
                )
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    async def chat(self, request: ChatRequest) -> str:
        client = self._get_client()
        params: Dict[str, Any] = {
            "model": request.model,
            "messages": request.to_messages(),
        }
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.max_tokens is not None:
            params["max_tokens"] = request.max_tokens

        try:
            response = await client.chat.completions.create(**params)
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise ServiceError(f"OpenAI chat completion failed: {e}", service="openai") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class AnthropicChatClient(ChatClient):
    """Chat client for the Anthropic Messages API, called over ``httpx``.

    System messages are lifted into the top-level ``system`` field, which is
    where the Messages API expects them.
    """

    API_VERSION = "2023-06-01"
    DEFAULT_MAX_TOKENS = 1024

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://api.anthropic.com",
                 timeout: float = 60.0, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    def _build_body(self, request: ChatRequest) -> Dict[str, Any]:
        system_parts = []
        messages = []
        for message in request.to_messages():
            if message["role"] == "system":
                system_parts.append(message["content"])
            else:
                messages.append(message)

        body: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens or self.DEFAULT_MAX_TOKENS,
            "messages": messages,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            body["temperature"] = request.temperature
        return body

    async def chat(self, request: ChatRequest) -> str:
        if not self.api_key:
            raise ServiceError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY environment variable.",
                service="anthropic",
            )
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.base_url}/v1/messages"
        body = self._build_body(request)

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ServiceError(f"Anthropic chat completion failed: {e}", service="anthropic") from e

        blocks = response.json().get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")


class LLMService:
    """Routes chat requests to the client registered for their provider."""

    def __init__(self, clients: Optional[Dict[str, ChatClient]] = None):
        self._clients: Dict[str, ChatClient] = dict(clients or {})

    def register_client(self, provider: str, client: ChatClient) -> None:
        self._clients[provider] = client
        logger.info(f"Registered chat client for provider '{provider}'")

    def configured_providers(self) -> List[str]:
        return sorted(self._clients)

    async def chat(self, request: ChatRequest) -> str:
        """Send ``request`` to its provider.

        Raises:
            ServiceError: For unknown providers, known providers without a
                client, and failures reported by the client.
        """
        client = self._clients.get(request.provider)
        if client is None:
            if request.provider not in LLM_PROVIDERS:
                raise ServiceError(f"Unsupported provider: {request.provider}", service="llm")
            raise ServiceError(f"Provider '{request.provider}' is not configured", service=request.provider)

        logger.debug(f"Chat request to {request.provider}/{request.model} with {len(request.messages)} messages")
        return await client.chat(request)

    async def generate_response(self, provider: str, model: str, prompt: str,
                                context: Optional[Dict[str, Any]] = None,
                                temperature: Optional[float] = None,
                                max_tokens: Optional[int] = None) -> str:
        """Single-prompt helper that passes prior results as system context."""
        system_prompt = "You are a helpful AI assistant."
        if context:
            system_prompt += f" Context: {json.dumps(context, default=str)}"

        request = ChatRequest(
            provider=provider,
            model=model,
            system_prompt=system_prompt,
            messages=[ChatMessage(role="user", content=prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return await self.chat(request)


def build_llm_service(openai_api_key: Optional[str] = None, openai_base_url: Optional[str] = None,
                      anthropic_api_key: Optional[str] = None,
                      anthropic_base_url: Optional[str] = None) -> LLMService:
    """LLM service with OpenAI registered, plus Anthropic when a key is given."""
    service = LLMService()
    service.register_client("openai", OpenAIChatClient(api_key=openai_api_key, base_url=openai_base_url))
    if anthropic_api_key:
        service.register_client("anthropic", AnthropicChatClient(
            api_key=anthropic_api_key,
            base_url=anthropic_base_url or "https://api.anthropic.com",
        ))
    return service
