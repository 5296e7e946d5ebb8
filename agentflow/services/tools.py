"""Document, vector-store and utility capabilities behind the tool nodes."""

from abc import ABC, abstractmethod
import asyncio
from collections import OrderedDict
import csv
import os
from typing import Any, Dict, List, Optional
import uuid

from bs4 import BeautifulSoup
import httpx
from pydantic import BaseModel, Field
from pypdf import PdfReader
from pypdf.errors import PyPdfError
from soupsieve import SelectorSyntaxError

from ..core.exceptions import SandboxError
from ..core.logging import get_logger
from .sandbox import CodeSandbox

logger = get_logger(__name__)


class ToolResult(BaseModel):
    """Outcome of one tool capability call."""
    success: bool
    error: Optional[str] = None
    content: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector_id: Optional[str] = None
    memory_id: Optional[str] = None
    results: Optional[List[Any]] = None
    result: Optional[Any] = None

    @classmethod
    def not_configured(cls, capability: str) -> 'ToolResult':
        return cls(success=False, error=f"{capability} is not configured")


class ToolServices(ABC):
    """One async method per capability a tool node can delegate to."""

    @abstractmethod
    async def load_pdf(self, file_path: str, pages: Optional[str] = None) -> ToolResult: ...

    @abstractmethod
    async def load_csv(self, file_path: str, delimiter: str = ",") -> ToolResult: ...

    @abstractmethod
    async def scrape_url(self, url: str, selector: Optional[str] = None) -> ToolResult: ...

    @abstractmethod
    async def create_pinecone_store(self, api_key: str, environment: str, index_name: str) -> ToolResult: ...

    @abstractmethod
    async def create_weaviate_store(self, url: str, class_name: str) -> ToolResult: ...

    @abstractmethod
    async def store_vectors(self, vector_store_id: str, documents: List[Any]) -> ToolResult: ...

    @abstractmethod
    async def similarity_search(self, vector_store_id: Optional[str], query: str, top_k: int = 4) -> ToolResult: ...

    @abstractmethod
    async def create_conversation_memory(self, memory_key: str, max_tokens: int = 2000) -> ToolResult: ...

    @abstractmethod
    async def web_search(self, query: str, search_engine: str = "google", max_results: int = 5) -> ToolResult: ...

    @abstractmethod
    async def execute_code(self, code: str, language: str = "python", timeout: float = 30,
                           variables: Optional[Dict[str, Any]] = None,
                           previous_results: Optional[Dict[str, Any]] = None) -> ToolResult: ...


def parse_page_range(pages: str) -> List[int]:
    """Turn a 1-based range such as ``"1-3,5"`` into sorted 0-based page indices.

    Raises:
        ValueError: for anything that is not a comma-separated list of pages
            and ``start-end`` spans.
    """
    indices = set()
    for part in pages.split(","):
        part = part.strip()
        if not part:
            continue
        start, _, end = part.partition("-")
        first = int(start)
        last = int(end) if end else first
        if first < 1 or last < first:
            raise ValueError(f"Invalid page span: {part}")
        indices.update(range(first - 1, last))
    return sorted(indices)


class LocalToolServices(ToolServices):
    """Tool capabilities that work without external accounts.

    PDF and CSV loading, URL scraping, code execution and conversation memory
    are implemented here. Similarity search has no store to query and returns
    no matches; creating vector stores and web search need a provider
    integration and report themselves as not configured.
    """

    def __init__(self, sandbox: Optional[CodeSandbox] = None, http_timeout: float = 15.0,
                 max_csv_rows: int = 10000, http_client: Optional[httpx.AsyncClient] = None,
                 max_memories: int = 1000):
        self.sandbox = sandbox or CodeSandbox()
        self.http_timeout = http_timeout
        self.max_csv_rows = max_csv_rows
        self.max_memories = max_memories
        self._http_client = http_client
        # Least recently used first.
        self._memories: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    async def load_pdf(self, file_path: str, pages: Optional[str] = None) -> ToolResult:
        if not file_path:
            return ToolResult(success=False, error="PDF file path is required")
        if not os.path.isfile(file_path):
            return ToolResult(success=False, error=f"PDF file not found: {file_path}")
        try:
            wanted = parse_page_range(pages) if pages else None
        except ValueError:
            return ToolResult(success=False, error=f"Invalid page range: {pages}")

        def read_pages():
            reader = PdfReader(file_path)
            indices = range(len(reader.pages)) if wanted is None else [i for i in wanted if i < len(reader.pages)]
            return [reader.pages[i].extract_text() or "" for i in indices], len(reader.pages)

        try:
            texts, page_count = await asyncio.to_thread(read_pages)
        except (OSError, PyPdfError) as e:
            return ToolResult(success=False, error=f"Failed to read PDF: {e}")

        return ToolResult(
            success=True,
            content="\n\n".join(text.strip() for text in texts),
            metadata={"source": file_path, "pages": pages or "all", "pages_read": len(texts), "page_count": page_count},
        )

    async def load_csv(self, file_path: str, delimiter: str = ",") -> ToolResult:
        if not file_path:
            return ToolResult(success=False, error="CSV file path is required")
        if not os.path.isfile(file_path):
            return ToolResult(success=False, error=f"CSV file not found: {file_path}")

        def read_rows():
            with open(file_path, newline="", encoding="utf-8") as handle:
                reader = csv.DictReader(handle, delimiter=delimiter or ",")
                rows = []
                for index, row in enumerate(reader):
                    if index >= self.max_csv_rows:
                        break
                    rows.append(dict(row))
                return rows, list(reader.fieldnames or [])

        try:
            rows, columns = await asyncio.to_thread(read_rows)
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            return ToolResult(success=False, error=f"Failed to read CSV: {e}")

        return ToolResult(
            success=True,
            content=rows,
            metadata={"source": file_path, "rows": len(rows), "columns": columns},
        )

    async def scrape_url(self, url: str, selector: Optional[str] = None) -> ToolResult:
        if not url:
            return ToolResult(success=False, error="URL is required")
        if not url.startswith(("http://", "https://")):
            return ToolResult(success=False, error=f"Unsupported URL scheme: {url}")

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                    response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Scraping {url} failed: {e}")
            return ToolResult(success=False, error=f"Failed to fetch {url}: {e}")

        content_type = response.headers.get("content-type", "")
        metadata = {"source": url, "status_code": response.status_code, "content_type": content_type}
        if "html" not in content_type:
            return ToolResult(success=True, content=response.text, metadata=metadata)

        soup = BeautifulSoup(response.text, "html.parser")
        metadata["title"] = soup.title.get_text(strip=True) if soup.title else ""
        for tag in soup(["script", "style", "noscript", "template", "title"]):
            tag.decompose()

        if selector:
            try:
                elements = soup.select(selector)
            except SelectorSyntaxError as e:
                return ToolResult(success=False, error=f"Invalid CSS selector '{selector}': {e}")
            metadata["selector"] = selector
            metadata["matches"] = len(elements)
        else:
            elements = [soup.body or soup]

        text = "\n".join(element.get_text("\n", strip=True) for element in elements)
        return ToolResult(success=True, content=text, metadata=metadata)

    async def create_pinecone_store(self, api_key: str, environment: str, index_name: str) -> ToolResult:
        return ToolResult.not_configured("Pinecone vector store")

    async def create_weaviate_store(self, url: str, class_name: str) -> ToolResult:
        return ToolResult.not_configured("Weaviate vector store")

    async def store_vectors(self, vector_store_id: str, documents: List[Any]) -> ToolResult:
        return ToolResult.not_configured("Vector storage")

    async def similarity_search(self, vector_store_id: Optional[str], query: str, top_k: int = 4) -> ToolResult:
        # No store is attached, so there is nothing to match against.
        return ToolResult(success=True, results=[],
                          metadata={"vector_store_id": vector_store_id, "query": query, "top_k": top_k})

    async def create_conversation_memory(self, memory_key: str, max_tokens: int = 2000) -> ToolResult:
        key = memory_key or "conversation"
        memory = self._memories.get(key)
        if memory is None:
            memory = {"id": f"memory_{uuid.uuid4().hex[:12]}", "max_tokens": max_tokens, "messages": []}
            self._memories[key] = memory
            while len(self._memories) > self.max_memories:
                evicted, _ = self._memories.popitem(last=False)
                logger.debug(f"Evicted conversation memory '{evicted}'")
        else:
            memory["max_tokens"] = max_tokens
            self._memories.move_to_end(key)
        return ToolResult(success=True, memory_id=memory["id"], metadata={"memory_key": key})

    async def web_search(self, query: str, search_engine: str = "google", max_results: int = 5) -> ToolResult:
        return ToolResult.not_configured("Web search")

    async def execute_code(self, code: str, language: str = "python", timeout: float = 30,
                           variables: Optional[Dict[str, Any]] = None,
                           previous_results: Optional[Dict[str, Any]] = None) -> ToolResult:
        try:
            result = await self.sandbox.run(
                code, language=language, variables=variables,
                previous_results=previous_results, timeout=timeout,
            )
        except SandboxError as e:
            return ToolResult(success=False, error=e.message)
        return ToolResult(success=True, result=result, metadata={"language": language})
