"""Tests for the chat clients and the provider routing service."""

import json

import httpx
import pytest

from agentflow.core.exceptions import ServiceError
from agentflow.models.core import ChatMessage
from agentflow.services.llm import AnthropicChatClient, ChatRequest, build_llm_service


def anthropic_client(handler) -> AnthropicChatClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnthropicChatClient(api_key="sk-test", base_url="https://llm.test/", http_client=http_client)


def claude_request(**overrides) -> ChatRequest:
    params = {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "system_prompt": "Be brief.",
        "messages": [ChatMessage(role="user", content="Summarise the report")],
    }
    params.update(overrides)
    return ChatRequest(**params)


class TestAnthropicChatClient:
    """Test cases for AnthropicChatClient."""

    @pytest.mark.asyncio
    async def test_sends_a_messages_api_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"content": [
                {"type": "text", "text": "Short "},
                {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
                {"type": "text", "text": "summary."},
            ]})

        reply = await anthropic_client(handler).chat(claude_request(temperature=0.2))

        assert reply == "Short summary."
        request = seen[0]
        assert str(request.url) == "https://llm.test/v1/messages"
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body == {
            "model": "claude-3-5-sonnet-20241022",
            "max_tokens": 1024,
            "system": "Be brief.",
            "messages": [{"role": "user", "content": "Summarise the report"}],
            "temperature": 0.2,
        }

    @pytest.mark.asyncio
    async def test_system_messages_are_lifted_out_of_the_conversation(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

        request = claude_request(
            system_prompt=None,
            max_tokens=50,
            messages=[
                ChatMessage(role="system", content="You are terse."),
                ChatMessage(role="user", content="Hi"),
            ],
        )
        await anthropic_client(handler).chat(request)

        assert bodies[0]["system"] == "You are terse."
        assert bodies[0]["messages"] == [{"role": "user", "content": "Hi"}]
        assert bodies[0]["max_tokens"] == 50
        assert "temperature" not in bodies[0]

    @pytest.mark.asyncio
    async def test_http_errors_become_service_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(529, json={"type": "error", "error": {"type": "overloaded_error"}})

        with pytest.raises(ServiceError, match="Anthropic chat completion failed") as excinfo:
            await anthropic_client(handler).chat(claude_request())
        assert excinfo.value.context["service"] == "anthropic"

    @pytest.mark.asyncio
    async def test_missing_key_is_reported_before_any_request(self):
        client = AnthropicChatClient(api_key=None)
        with pytest.raises(ServiceError, match="ANTHROPIC_API_KEY"):
            await client.chat(claude_request())


class TestBuildLLMService:
    """Test cases for build_llm_service."""

    def test_openai_only_without_an_anthropic_key(self):
        assert build_llm_service("sk-openai").configured_providers() == ["openai"]

    def test_anthropic_is_registered_when_a_key_is_set(self):
        service = build_llm_service(anthropic_api_key="sk-ant")
        assert service.configured_providers() == ["anthropic", "openai"]
        client = service._clients["anthropic"]
        assert isinstance(client, AnthropicChatClient)
        assert client.base_url == "https://api.anthropic.com"

    @pytest.mark.asyncio
    async def test_unconfigured_anthropic_is_reported_by_the_service(self):
        with pytest.raises(ServiceError, match="Provider 'anthropic' is not configured"):
            await build_llm_service().chat(claude_request())
