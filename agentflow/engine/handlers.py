"""Built-in node handlers.

Every handler takes ``(node, context)`` and returns a
:class:`NodeExecutionResult`. Collaborator failures are reported as failed
results; anything a handler raises is turned into one by the registry.
"""

from datetime import datetime, timezone
import json
from typing import Any, Dict, Optional

from ..core.logging import get_logger
from ..models.core import ChatMessage, NodeExecutionResult, WorkflowNode
from ..services.delivery import DeliveryService
from ..services.llm import ChatRequest, LLMService
from ..services.sandbox import CodeSandbox
from ..services.tools import ToolResult, ToolServices
from .conditions import evaluate_condition
from .context import WorkflowContext
from .interpolation import interpolate
from .registry import NodeHandlerRegistry

logger = get_logger(__name__)


def node_settings(node: WorkflowNode) -> Dict[str, Any]:
    """Node data with the nested ``config`` block merged over it.

    Tool-style nodes keep their settings under ``data.config`` while core
    nodes keep them at the top level; handlers read both the same way.
    """
    settings = {key: value for key, value in node.data.items() if key != "config"}
    config = node.data.get("config")
    if isinstance(config, dict):
        settings.update(config)
    return settings


def _number(value: Any, default: Any) -> Any:
    return default if value is None or value == "" else value


def _tool_failure(result: ToolResult, fallback: str) -> NodeExecutionResult:
    return NodeExecutionResult.fail(result.error or fallback)


class BuiltinHandlers:
    """Handlers for the node types the platform ships with.

    The collaborators are injected once; the bound coroutine methods are what
    gets registered.
    """

    def __init__(self, llm: LLMService, tools: ToolServices, sandbox: CodeSandbox,
                 delivery: DeliveryService, node_timeout: float = 30,
                 email_failure_is_fatal: bool = False):
        self.llm = llm
        self.tools = tools
        self.sandbox = sandbox
        self.delivery = delivery
        self.node_timeout = node_timeout
        self.email_failure_is_fatal = email_failure_is_fatal

    # Triggers

    async def manual(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        return NodeExecutionResult.ok(dict(context.variables))

    async def webhook(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        return NodeExecutionResult.ok(dict(context.variables))

    async def schedule(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        data = dict(context.variables)
        data["timestamp"] = datetime.now(timezone.utc).isoformat()
        return NodeExecutionResult.ok(data)

    # AI

    async def openai(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        messages = []
        if settings.get("userMessage"):
            messages.append(ChatMessage(role="user", content=interpolate(settings["userMessage"], context)))

        request = ChatRequest(
            provider="openai",
            model=settings.get("model") or "gpt-4o",
            temperature=_number(settings.get("temperature"), 0.7),
            max_tokens=_number(settings.get("maxTokens"), 150),
            system_prompt=interpolate(settings.get("systemPrompt") or "", context) or None,
            messages=messages,
        )
        response = await self.llm.chat(request)
        return NodeExecutionResult.ok({"response": response, "rawOutput": response})

    async def agent(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        provider = settings.get("provider") or "openai"
        model = settings.get("model") or "gpt-4o"
        prompt = interpolate(settings.get("prompt") or "", context)
        prior = dict(context.previous_results)

        response = await self.llm.generate_response(
            provider,
            model,
            prompt,
            context=prior,
            temperature=_number(settings.get("temperature"), 0.7),
            max_tokens=_number(settings.get("maxTokens"), 500),
        )
        return NodeExecutionResult.ok({
            "response": response,
            "context": prior,
            "provider": provider,
            "model": model,
        })

    async def _chat_node(self, node: WorkflowNode, context: WorkflowContext, node_type: str,
                         provider: str, default_model: str, default_max_tokens: Optional[int]) -> NodeExecutionResult:
        settings = node_settings(node)
        messages = [
            ChatMessage(
                role=message.get("role") or "user",
                content=interpolate(message.get("content") or "", context),
            )
            for message in settings.get("messages") or []
        ]
        request = ChatRequest(
            provider=provider,
            model=settings.get("model") or default_model,
            temperature=_number(settings.get("temperature"), 0.7),
            max_tokens=_number(settings.get("maxTokens"), default_max_tokens),
            messages=messages,
        )
        response = await self.llm.chat(request)
        return NodeExecutionResult.ok({"response": response, "nodeType": node_type})

    async def openai_chat(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        return await self._chat_node(node, context, "openai-chat", "openai", "gpt-4o", 1000)

    async def anthropic_chat(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        return await self._chat_node(node, context, "anthropic-chat", "anthropic",
                                     "claude-3-5-sonnet-20241022", None)

    # Logic

    async def condition(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        original = node_settings(node).get("condition") or ""
        outcome = evaluate_condition(interpolate(original, context), context)
        return NodeExecutionResult.ok({"condition": outcome, "originalCondition": original})

    async def code(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.sandbox.run(
            settings.get("code") or "",
            language=settings.get("language") or "python",
            variables=context.variables,
            previous_results=context.previous_results,
            timeout=_number(settings.get("timeout"), self.node_timeout),
        )
        return NodeExecutionResult.ok(result)

    async def merge(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        return NodeExecutionResult.ok({"merged": dict(context.previous_results)})

    # Outputs

    async def email(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        to = interpolate(settings.get("to") or "", context)
        subject = interpolate(settings.get("subject") or "", context)
        body = interpolate(settings.get("body") or "", context)

        try:
            await self.delivery.send_email(to, subject, body)
        except Exception as e:
            if settings.get("failOnError") or self.email_failure_is_fatal:
                return NodeExecutionResult.fail(f"Failed to send email: {e}")
            logger.warning(f"Email from node '{node.id}' was not sent: {e}")
            return NodeExecutionResult.ok({"sent": False, "to": to, "subject": subject, "error": str(e)})

        return NodeExecutionResult.ok({"sent": True, "to": to, "subject": subject})

    async def webhook_response(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        text = interpolate(settings.get("responseData") or "{}", context)
        try:
            body = json.loads(text)
        except ValueError:
            body = text

        status_code = int(_number(settings.get("statusCode"), 200))
        await self.delivery.deliver_response(context.execution_id, body, status_code)
        return NodeExecutionResult.ok(body)

    # Documents, vector stores and tools

    async def vector(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        query = interpolate(settings.get("query") or "", context)
        store_id = interpolate(settings.get("vectorStoreId") or "", context) or None
        result = await self.tools.similarity_search(store_id, query, int(_number(settings.get("topK"), 4)))
        if not result.success:
            return _tool_failure(result, "Vector search failed")
        return NodeExecutionResult.ok({"results": result.results or [], "query": query})

    async def pdf_loader(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.load_pdf(interpolate(settings.get("filePath") or "", context), settings.get("pages"))
        return self._document_result(result, "pdf-loader")

    async def csv_loader(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.load_csv(
            interpolate(settings.get("filePath") or "", context),
            settings.get("delimiter") or ",",
        )
        return self._document_result(result, "csv-loader")

    async def url_scraper(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.scrape_url(interpolate(settings.get("url") or "", context), settings.get("selector"))
        return self._document_result(result, "url-scraper")

    def _document_result(self, result: ToolResult, node_type: str) -> NodeExecutionResult:
        if not result.success:
            return _tool_failure(result, f"{node_type} failed")
        return NodeExecutionResult.ok({"content": result.content, "metadata": result.metadata, "nodeType": node_type})

    async def pinecone_store(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.create_pinecone_store(
            interpolate(settings.get("apiKey") or "", context),
            interpolate(settings.get("environment") or "", context),
            interpolate(settings.get("indexName") or "", context),
        )
        if not result.success:
            return _tool_failure(result, "Pinecone store failed")
        return NodeExecutionResult.ok({"vectorStoreId": result.vector_id, "nodeType": "pinecone-store"})

    async def weaviate_store(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.create_weaviate_store(
            interpolate(settings.get("url") or "", context),
            interpolate(settings.get("className") or "", context),
        )
        if not result.success:
            return _tool_failure(result, "Weaviate store failed")
        return NodeExecutionResult.ok({"vectorStoreId": result.vector_id, "nodeType": "weaviate-store"})

    async def conversation_memory(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        result = await self.tools.create_conversation_memory(
            interpolate(settings.get("memoryKey") or "conversation", context),
            int(_number(settings.get("maxTokens"), 2000)),
        )
        if not result.success:
            return _tool_failure(result, "Conversation memory failed")
        return NodeExecutionResult.ok({"memoryId": result.memory_id, "nodeType": "conversation-memory"})

    async def web_search(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        query = interpolate(settings.get("query") or "", context)
        search_engine = settings.get("searchEngine") or "google"
        result = await self.tools.web_search(query, search_engine, int(_number(settings.get("maxResults"), 5)))
        if not result.success:
            return _tool_failure(result, "Web search failed")
        return NodeExecutionResult.ok({
            "results": result.results or [],
            "query": query,
            "searchEngine": search_engine,
            "nodeType": "web-search",
        })

    async def code_executor(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        settings = node_settings(node)
        language = settings.get("language") or "python"
        result = await self.tools.execute_code(
            interpolate(settings.get("code") or "", context),
            language=language,
            timeout=_number(settings.get("timeout"), self.node_timeout),
            variables=context.variables,
            previous_results=context.previous_results,
        )
        if not result.success:
            return _tool_failure(result, "Code execution failed")
        return NodeExecutionResult.ok({"result": result.result, "language": language, "nodeType": "code-executor"})


def register_builtin_handlers(registry: NodeHandlerRegistry, handlers: BuiltinHandlers) -> NodeHandlerRegistry:
    """Register every built-in node type on ``registry``."""
    table = [
        ("manual", handlers.manual, "Manual trigger; passes the input through"),
        ("webhook", handlers.webhook, "Webhook trigger; passes the request body through"),
        ("schedule", handlers.schedule, "Scheduled trigger; adds the firing timestamp"),
        ("openai", handlers.openai, "Single OpenAI chat completion"),
        ("agent", handlers.agent, "Prompted agent on a configurable provider"),
        ("openai-chat", handlers.openai_chat, "Multi-message OpenAI chat"),
        ("anthropic-chat", handlers.anthropic_chat, "Multi-message Anthropic chat"),
        ("condition", handlers.condition, "Boolean expression gating true/false branches"),
        ("code", handlers.code, "User script run in the sandbox"),
        ("merge", handlers.merge, "Collects every result produced so far"),
        ("email", handlers.email, "Sends an email"),
        ("webhook-response", handlers.webhook_response, "Returns a response body to the caller"),
        ("vector", handlers.vector, "Vector similarity search"),
        ("pdf-loader", handlers.pdf_loader, "Loads text from a PDF"),
        ("csv-loader", handlers.csv_loader, "Loads rows from a CSV file"),
        ("url-scraper", handlers.url_scraper, "Fetches a page and extracts its text"),
        ("pinecone-store", handlers.pinecone_store, "Creates a Pinecone vector store"),
        ("weaviate-store", handlers.weaviate_store, "Creates a Weaviate vector store"),
        ("conversation-memory", handlers.conversation_memory, "Creates conversation memory"),
        ("web-search", handlers.web_search, "Runs a web search"),
        ("code-executor", handlers.code_executor, "Runs interpolated code in the sandbox"),
    ]
    for node_type, handler, description in table:
        registry.register(node_type, handler, description)
    logger.info(f"Registered {len(table)} built-in node handlers")
    return registry
