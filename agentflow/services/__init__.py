"""Collaborators injected into the workflow engine."""

from .delivery import DeliveryService, LoggingDeliveryService
from .llm import AnthropicChatClient, ChatClient, ChatRequest, LLMService, OpenAIChatClient, build_llm_service
from .sandbox import CodeSandbox
from .tools import LocalToolServices, ToolResult, ToolServices

__all__ = [
    "DeliveryService",
    "LoggingDeliveryService",
    "AnthropicChatClient",
    "ChatClient",
    "ChatRequest",
    "LLMService",
    "OpenAIChatClient",
    "build_llm_service",
    "CodeSandbox",
    "LocalToolServices",
    "ToolResult",
    "ToolServices",
]
