"""Pytest configuration and fixtures."""

from typing import List

import pytest

from agentflow.config import get_testing_config
from agentflow.engine.workflow_engine import build_workflow_engine
from agentflow.models.core import WorkflowEdge, WorkflowNode
from agentflow.services.delivery import LoggingDeliveryService
from agentflow.services.llm import ChatClient, ChatRequest, LLMService
from agentflow.storage.database import create_database_engine
from agentflow.storage.database_storage import DatabaseStorage
from agentflow.storage.memory import MemoryStorage


class FakeChatClient(ChatClient):
    """Chat client that records requests and answers with a fixed reply."""

    def __init__(self, reply: str = "hello back"):
        self.reply = reply
        self.requests: List[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> str:
        self.requests.append(request)
        return self.reply


def make_node(node_id: str, node_type: str, **data) -> WorkflowNode:
    return WorkflowNode(id=node_id, type=node_type, data=data)


def make_edge(source: str, target: str, handle: str = None) -> WorkflowEdge:
    return WorkflowEdge(id=f"{source}-{target}", source=source, target=target, source_handle=handle)


def write_text_pdf(path, page_texts: List[str]) -> None:
    """Write a minimal PDF with one line of Helvetica text per page."""
    count = len(page_texts)
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(count))
    objects = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {count} >>",
        "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for i, text in enumerate(page_texts):
        objects.append(
            "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {5 + 2 * i} 0 R >>"
        )
        stream = f"BT /F1 24 Tf 72 700 Td ({text}) Tj ET"
        objects.append(f"<< /Length {len(stream)} >>\nstream\n{stream}\nendstream")

    output = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(output))
        output += f"{number} 0 obj\n{body}\nendobj\n".encode("latin-1")
    xref_at = len(output)
    output += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode("latin-1")
    for offset in offsets:
        output += f"{offset:010d} 00000 n \n".encode("latin-1")
    output += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode("latin-1")
    path.write_bytes(output)


@pytest.fixture
def testing_config():
    return get_testing_config()


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest.fixture
def llm_service(chat_client):
    return LLMService({"openai": chat_client, "anthropic": chat_client})


@pytest.fixture
def delivery():
    return LoggingDeliveryService()


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    """DatabaseStorage on a temporary SQLite file."""
    engine = create_database_engine(f"sqlite:///{tmp_path / 'agentflow.db'}")
    storage = DatabaseStorage(engine)
    yield storage
    engine.dispose()


@pytest.fixture
def engine(memory_storage, testing_config, llm_service, delivery):
    """Workflow engine with fake collaborators and in-memory storage."""
    return build_workflow_engine(memory_storage, testing_config, llm=llm_service, delivery=delivery)
