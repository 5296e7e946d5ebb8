"""Tests for handler registration, dispatch and the built-in handlers."""

from datetime import datetime

import httpx
import pytest

from agentflow.core.exceptions import ConfigurationError
from agentflow.engine.context import WorkflowContext
from agentflow.engine.handlers import BuiltinHandlers, node_settings, register_builtin_handlers
from agentflow.engine.registry import NodeHandlerRegistry
from agentflow.models.core import NodeExecutionResult, WorkflowNode
from agentflow.services.sandbox import CodeSandbox
from agentflow.services.tools import LocalToolServices, parse_page_range

from conftest import make_node, write_text_pdf


async def echo_handler(node, context):
    return NodeExecutionResult.ok({"handled_by": "echo", "node": node.id})


async def other_handler(node, context):
    return NodeExecutionResult.ok({"handled_by": "other"})


async def exploding_handler(node, context):
    raise RuntimeError("boom")


@pytest.fixture
def registry():
    registry = NodeHandlerRegistry()
    registry.register("echo", echo_handler, "Echoes the node id")
    registry.register("other", other_handler)
    return registry


def build_handler_registry(llm_service, delivery, tools=None):
    sandbox = CodeSandbox()
    handlers = BuiltinHandlers(
        llm=llm_service,
        tools=tools or LocalToolServices(sandbox=sandbox),
        sandbox=sandbox,
        delivery=delivery,
        node_timeout=10,
    )
    return register_builtin_handlers(NodeHandlerRegistry(), handlers)


@pytest.fixture
def handler_registry(llm_service, delivery):
    return build_handler_registry(llm_service, delivery)


def scraping_tools(html: str, content_type: str = "text/html; charset=utf-8") -> LocalToolServices:
    """Tool services whose HTTP client serves ``html`` for every URL."""
    def serve(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=html, headers={"content-type": content_type})

    client = httpx.AsyncClient(transport=httpx.MockTransport(serve))
    return LocalToolServices(http_client=client)


class TestNodeHandlerRegistry:
    """Test cases for NodeHandlerRegistry."""

    def test_register_and_list(self, registry):
        assert registry.list_types() == {"echo": "Echoes the node id", "other": ""}
        assert "echo" in registry
        assert len(registry) == 2

    def test_duplicate_registration_is_rejected(self, registry):
        with pytest.raises(ConfigurationError):
            registry.register("echo", other_handler)

        registry.register("echo", other_handler, replace=True)
        assert registry.get_handler("echo") is other_handler

    def test_sync_handlers_are_rejected(self, registry):
        def not_async(node, context):
            return NodeExecutionResult.ok()

        with pytest.raises(ConfigurationError):
            registry.register("sync", not_async)

    def test_empty_type_is_rejected(self, registry):
        with pytest.raises(ConfigurationError):
            registry.register("  ", echo_handler)

    def test_unregister(self, registry):
        assert registry.unregister("other") is True
        assert registry.unregister("other") is False
        assert registry.types() == ["echo"]

    def test_resolve_type_order(self, registry):
        assert registry.resolve_type(WorkflowNode(id="n", type="other", data={"type": "echo"})) == "echo"
        assert registry.resolve_type(WorkflowNode(id="n", type="other", data={"type": "unregistered"})) == "other"
        assert registry.resolve_type(WorkflowNode(id="n", type="customNode", data={"nodeType": "echo"})) == "echo"
        assert registry.resolve_type(WorkflowNode(id="n", type="echo")) == "echo"

    @pytest.mark.asyncio
    async def test_dispatch(self, registry):
        result = await registry.dispatch(WorkflowNode(id="n1", type="echo"), WorkflowContext("e"))
        assert result.success
        assert result.data == {"handled_by": "echo", "node": "n1"}

    @pytest.mark.asyncio
    async def test_dispatch_unknown_type(self, registry):
        result = await registry.dispatch(WorkflowNode(id="n1", type="mystery"), WorkflowContext("e"))
        assert not result.success
        assert result.error == "Unknown node type: mystery"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_failure(self, registry):
        registry.register("explode", exploding_handler)
        result = await registry.dispatch(WorkflowNode(id="n1", type="explode"), WorkflowContext("e"))
        assert not result.success
        assert result.error == "boom"


class TestBuiltinHandlers:
    """Test cases for the built-in node handlers."""

    def test_all_builtin_types_are_registered(self, handler_registry):
        for node_type in ("manual", "webhook", "schedule", "openai", "agent", "openai-chat",
                          "anthropic-chat", "condition", "code", "merge", "email", "webhook-response",
                          "vector", "pdf-loader", "csv-loader", "url-scraper", "pinecone-store",
                          "weaviate-store", "conversation-memory", "web-search", "code-executor"):
            assert node_type in handler_registry

    def test_node_settings_merges_config(self):
        node = make_node("n", "x", model="a", config={"model": "b", "temperature": 0.1})
        assert node_settings(node) == {"model": "b", "temperature": 0.1}

    @pytest.mark.asyncio
    async def test_manual_trigger_passes_input_through(self, handler_registry):
        result = await handler_registry.dispatch(make_node("t", "manual"), WorkflowContext("e", {"a": 1}))
        assert result.data == {"a": 1}

    @pytest.mark.asyncio
    async def test_openai_defaults(self, handler_registry, chat_client):
        node = make_node("ai", "openai", systemPrompt="Be brief", userMessage="Say {{word}}")
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"word": "hi"}))

        assert result.success
        assert result.data == {"response": "hello back", "rawOutput": "hello back"}
        request = chat_client.requests[-1]
        assert request.provider == "openai"
        assert request.model == "gpt-4o"
        assert request.temperature == 0.7
        assert request.max_tokens == 150
        assert request.to_messages() == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Say hi"},
        ]

    @pytest.mark.asyncio
    async def test_customnode_wrapper_dispatches_to_wrapped_type(self, handler_registry, chat_client):
        node = WorkflowNode(id="ai", type="customNode", data={"nodeType": "openai", "userMessage": "x"})
        result = await handler_registry.dispatch(node, WorkflowContext("e"))
        assert result.success
        assert len(chat_client.requests) == 1

    @pytest.mark.asyncio
    async def test_chat_node_reads_nested_config(self, handler_registry, chat_client):
        node = make_node("c", "anthropic-chat", config={
            "messages": [{"role": "user", "content": "{{message}}"}],
            "maxTokens": 64,
        })
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"message": "hey"}))

        assert result.data == {"response": "hello back", "nodeType": "anthropic-chat"}
        request = chat_client.requests[-1]
        assert request.provider == "anthropic"
        assert request.max_tokens == 64
        assert request.messages[0].content == "hey"

    @pytest.mark.asyncio
    async def test_agent_includes_prior_results(self, handler_registry, chat_client):
        context = WorkflowContext("e")
        context.record_result("t", {"topic": "bees"})
        result = await handler_registry.dispatch(make_node("a", "agent", prompt="Write about {{topic}}"), context)

        assert result.data["response"] == "hello back"
        assert result.data["context"] == {"t": {"topic": "bees"}}
        assert result.data["provider"] == "openai"
        assert chat_client.requests[-1].messages[0].content == "Write about bees"

    @pytest.mark.asyncio
    async def test_unsupported_and_unconfigured_providers(self, handler_registry, llm_service):
        assert llm_service.configured_providers() == ["anthropic", "openai"]
        result = await handler_registry.dispatch(make_node("a", "agent", provider="nope"), WorkflowContext("e"))
        assert result.error == "Unsupported provider: nope"

        result = await handler_registry.dispatch(make_node("a", "agent", provider="google"), WorkflowContext("e"))
        assert result.error == "Provider 'google' is not configured"

    @pytest.mark.asyncio
    async def test_condition_handler(self, handler_registry):
        context = WorkflowContext("e", {"score": 3})
        result = await handler_registry.dispatch(make_node("c", "condition", condition="{{score}} > 2"), context)
        assert result.data == {"condition": True, "originalCondition": "{{score}} > 2"}

    @pytest.mark.asyncio
    async def test_invalid_condition_fails_node(self, handler_registry):
        result = await handler_registry.dispatch(make_node("c", "condition", condition="1 >"), WorkflowContext("e"))
        assert not result.success
        assert "Invalid condition syntax" in result.error

    @pytest.mark.asyncio
    async def test_merge_collects_previous_results(self, handler_registry):
        context = WorkflowContext("e")
        context.record_result("a", 1)
        context.record_result("b", 2)
        result = await handler_registry.dispatch(make_node("m", "merge"), context)
        assert result.data == {"merged": {"a": 1, "b": 2}}

    @pytest.mark.asyncio
    async def test_email_sends_interpolated_message(self, handler_registry, delivery):
        node = make_node("mail", "email", to="{{who}}", subject="Hi", body="Score {{score}}")
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"who": "a@b.c", "score": 5}))

        assert result.data == {"sent": True, "to": "a@b.c", "subject": "Hi"}
        assert delivery.emails[-1] == {"to": "a@b.c", "subject": "Hi", "body": "Score 5"}

    @pytest.mark.asyncio
    async def test_email_failure_is_reported_but_not_fatal(self, handler_registry):
        result = await handler_registry.dispatch(make_node("mail", "email", to=""), WorkflowContext("e"))
        assert result.success
        assert result.data["sent"] is False
        assert "recipient" in result.data["error"]

    @pytest.mark.asyncio
    async def test_email_failure_can_fail_the_node(self, handler_registry):
        node = make_node("mail", "email", to="", failOnError=True)
        result = await handler_registry.dispatch(node, WorkflowContext("e"))
        assert not result.success
        assert result.error.startswith("Failed to send email")

    @pytest.mark.asyncio
    async def test_webhook_response_parses_json(self, handler_registry, delivery):
        node = make_node("r", "webhook-response", statusCode=201, responseData='{"reply": "{{text}}"}')
        result = await handler_registry.dispatch(node, WorkflowContext("exec-9", {"text": "ok"}))

        assert result.data == {"reply": "ok"}
        assert delivery.responses[-1] == {"execution_id": "exec-9", "body": {"reply": "ok"}, "status_code": 201}

    @pytest.mark.asyncio
    async def test_webhook_response_falls_back_to_text(self, handler_registry):
        node = make_node("r", "webhook-response", responseData="{{text}}")
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"text": "plain words"}))
        assert result.data == "plain words"

    @pytest.mark.asyncio
    async def test_csv_loader(self, handler_registry, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("name,age\nAda,36\nAlan,41\n")
        result = await handler_registry.dispatch(make_node("csv", "csv-loader", filePath=str(path)),
                                                 WorkflowContext("e"))

        assert result.success
        assert result.data["content"] == [{"name": "Ada", "age": "36"}, {"name": "Alan", "age": "41"}]
        assert result.data["metadata"]["columns"] == ["name", "age"]

    @pytest.mark.asyncio
    async def test_conversation_memory_is_reused_per_key(self, handler_registry):
        node = make_node("mem", "conversation-memory", config={"memoryKey": "support"})
        first = await handler_registry.dispatch(node, WorkflowContext("e"))
        second = await handler_registry.dispatch(node, WorkflowContext("e"))
        assert first.data["memoryId"].startswith("memory_")
        assert first.data["memoryId"] == second.data["memoryId"]

    @pytest.mark.asyncio
    async def test_webhook_passes_the_body_through(self, handler_registry):
        body = {"event": "push", "ref": "main"}
        result = await handler_registry.dispatch(make_node("w", "webhook"), WorkflowContext("e", body))
        assert result.success
        assert result.data == body

    @pytest.mark.asyncio
    async def test_schedule_adds_an_iso_timestamp(self, handler_registry):
        result = await handler_registry.dispatch(make_node("s", "schedule"), WorkflowContext("e", {"job": "nightly"}))
        assert result.data["job"] == "nightly"
        fired_at = datetime.fromisoformat(result.data["timestamp"])
        assert fired_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_code_executor_result_shape(self, handler_registry):
        node = make_node("x", "code-executor", code="return variables['n'] * 2", language="python")
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"n": 21}))
        assert result.success
        assert result.data == {"result": 42, "language": "python", "nodeType": "code-executor"}

    @pytest.mark.asyncio
    async def test_code_executor_reports_errors(self, handler_registry):
        node = make_node("x", "code-executor", code="return 1 / 0")
        result = await handler_registry.dispatch(node, WorkflowContext("e"))
        assert not result.success
        assert "ZeroDivisionError" in result.error

    @pytest.mark.asyncio
    async def test_vector_without_a_store_returns_no_matches(self, handler_registry):
        node = make_node("v", "vector", query="refund policy for {{plan}}", topK=3)
        result = await handler_registry.dispatch(node, WorkflowContext("e", {"plan": "pro"}))
        assert result.success
        assert result.data == {"results": [], "query": "refund policy for pro"}

    @pytest.mark.asyncio
    async def test_url_scraper_extracts_text_and_title(self, llm_service, delivery):
        html = ("<html><head><title> Release notes </title><style>p {color: red}</style></head>"
                "<body><h1>v2</h1><script>track()</script><p>Faster runs</p></body></html>")
        registry = build_handler_registry(llm_service, delivery, tools=scraping_tools(html))

        result = await registry.dispatch(make_node("u", "url-scraper", url="https://example.com/notes"),
                                         WorkflowContext("e"))

        assert result.success
        assert result.data["nodeType"] == "url-scraper"
        assert result.data["content"] == "v2\nFaster runs"
        assert result.data["metadata"]["title"] == "Release notes"
        assert result.data["metadata"]["source"] == "https://example.com/notes"
        assert "track()" not in result.data["content"]

    @pytest.mark.asyncio
    async def test_url_scraper_honours_the_selector(self, llm_service, delivery):
        html = '<html><body><div id="keep">KEEP</div><div id="drop">DROP</div></body></html>'
        registry = build_handler_registry(llm_service, delivery, tools=scraping_tools(html))

        node = make_node("u", "url-scraper", url="https://example.com", selector="#keep")
        result = await registry.dispatch(node, WorkflowContext("e"))

        assert result.success
        assert result.data["content"] == "KEEP"
        assert result.data["metadata"]["selector"] == "#keep"
        assert result.data["metadata"]["matches"] == 1

    @pytest.mark.asyncio
    async def test_url_scraper_rejects_a_bad_selector(self, llm_service, delivery):
        registry = build_handler_registry(llm_service, delivery, tools=scraping_tools("<p>x</p>"))
        node = make_node("u", "url-scraper", url="https://example.com", selector="div[")
        result = await registry.dispatch(node, WorkflowContext("e"))
        assert not result.success
        assert result.error.startswith("Invalid CSS selector")

    @pytest.mark.asyncio
    async def test_url_scraper_returns_non_html_bodies_verbatim(self, llm_service, delivery):
        tools = scraping_tools('{"ok": true}', content_type="application/json")
        registry = build_handler_registry(llm_service, delivery, tools=tools)
        result = await registry.dispatch(make_node("u", "url-scraper", url="https://example.com/api"),
                                         WorkflowContext("e"))
        assert result.data["content"] == '{"ok": true}'
        assert "title" not in result.data["metadata"]

    @pytest.mark.asyncio
    async def test_url_scraper_rejects_other_schemes(self, handler_registry):
        result = await handler_registry.dispatch(make_node("u", "url-scraper", url="file:///etc/passwd"),
                                                 WorkflowContext("e"))
        assert not result.success
        assert result.error.startswith("Unsupported URL scheme")

    @pytest.mark.asyncio
    async def test_pdf_loader_reads_the_requested_pages(self, handler_registry, tmp_path):
        path = tmp_path / "report.pdf"
        write_text_pdf(path, ["Page one", "Page two", "Page three"])

        node = make_node("p", "pdf-loader", filePath=str(path), pages="1,3")
        result = await handler_registry.dispatch(node, WorkflowContext("e"))

        assert result.success
        assert result.data["nodeType"] == "pdf-loader"
        assert "Page one" in result.data["content"]
        assert "Page three" in result.data["content"]
        assert "Page two" not in result.data["content"]
        assert result.data["metadata"]["pages"] == "1,3"
        assert result.data["metadata"]["pages_read"] == 2
        assert result.data["metadata"]["page_count"] == 3

    @pytest.mark.asyncio
    async def test_pdf_loader_failures(self, handler_registry, tmp_path):
        missing = await handler_registry.dispatch(make_node("p", "pdf-loader", filePath=str(tmp_path / "a.pdf")),
                                                  WorkflowContext("e"))
        assert not missing.success
        assert missing.error.startswith("PDF file not found")

        path = tmp_path / "doc.pdf"
        write_text_pdf(path, ["Only page"])
        bad_range = await handler_registry.dispatch(make_node("p", "pdf-loader", filePath=str(path), pages="3-1"),
                                                    WorkflowContext("e"))
        assert bad_range.error == "Invalid page range: 3-1"

    @pytest.mark.asyncio
    async def test_unconfigured_tools_fail(self, handler_registry):
        result = await handler_registry.dispatch(make_node("s", "web-search", query="agents"), WorkflowContext("e"))
        assert not result.success
        assert result.error == "Web search is not configured"


class TestLocalToolServices:
    """Test cases for LocalToolServices."""

    def test_parse_page_range(self):
        assert parse_page_range("1-3,5") == [0, 1, 2, 4]
        assert parse_page_range("2, 2-3") == [1, 2]
        for bad in ("0", "4-2", "a", "1-b"):
            with pytest.raises(ValueError):
                parse_page_range(bad)

    @pytest.mark.asyncio
    async def test_pdf_without_range_reads_every_page(self, tmp_path):
        path = tmp_path / "all.pdf"
        write_text_pdf(path, ["First", "Second"])
        result = await LocalToolServices().load_pdf(str(path))
        assert result.success
        assert result.content.split("\n\n") == ["First", "Second"]
        assert result.metadata["pages"] == "all"

    @pytest.mark.asyncio
    async def test_conversation_memories_evict_least_recently_used(self):
        tools = LocalToolServices(max_memories=2)
        first = await tools.create_conversation_memory("a")
        second = await tools.create_conversation_memory("b")
        # Touching "a" makes "b" the oldest entry.
        again = await tools.create_conversation_memory("a")
        await tools.create_conversation_memory("c")

        assert again.memory_id == first.memory_id
        assert list(tools._memories) == ["a", "c"]
        recreated = await tools.create_conversation_memory("b")
        assert list(tools._memories) == ["c", "b"]
        assert recreated.memory_id != second.memory_id
