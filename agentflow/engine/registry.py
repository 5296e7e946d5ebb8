"""Registry mapping node type names to async handler callables."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..core.exceptions import ConfigurationError, NodeExecutionError
from ..core.logging import get_logger, log_with_context
from ..models.core import NodeExecutionResult, WorkflowNode
from .context import WorkflowContext

logger = get_logger(__name__)

NodeHandler = Callable[[WorkflowNode, WorkflowContext], Awaitable[NodeExecutionResult]]

# Node type the visual editor wraps every palette node in.
CUSTOM_NODE_TYPE = "customNode"


class NodeHandlerRegistry:
    """Registry of node handlers, keyed by node type.

    New node types are added with :meth:`register`; dispatch never needs to
    know about them ahead of time.
    """

    def __init__(self):
        self._handlers: Dict[str, NodeHandler] = {}
        self._descriptions: Dict[str, str] = {}

    def register(self, node_type: str, handler: NodeHandler, description: str = "",
                 replace: bool = False) -> None:
        """Register ``handler`` for ``node_type``.

        Raises:
            ConfigurationError: If the type name is empty, the handler is not
                a coroutine function, or the type is taken and ``replace`` is
                False.
        """
        if not node_type or not node_type.strip():
            raise ConfigurationError("Node type cannot be empty")
        node_type = node_type.strip()

        if not callable(handler) or not inspect.iscoroutinefunction(handler):
            raise ConfigurationError(f"Handler for '{node_type}' must be an async function")

        if node_type in self._handlers and not replace:
            raise ConfigurationError(f"Node type '{node_type}' is already registered")

        self._handlers[node_type] = handler
        self._descriptions[node_type] = description.strip() if description else ""
        logger.debug(f"Registered handler for node type '{node_type}'")

    def unregister(self, node_type: str) -> bool:
        """Remove a handler; returns False if the type was not registered."""
        removed = self._handlers.pop(node_type, None)
        self._descriptions.pop(node_type, None)
        return removed is not None

    def get_handler(self, node_type: str) -> Optional[NodeHandler]:
        return self._handlers.get(node_type)

    def list_types(self) -> Dict[str, str]:
        """Return registered type names mapped to their descriptions."""
        return {name: self._descriptions.get(name, "") for name in sorted(self._handlers)}

    def resolve_type(self, node: WorkflowNode) -> str:
        """Work out which handler type a node runs as.

        ``data["type"]`` wins when it names a registered handler; editor
        wrapper nodes carry their real type in ``data["nodeType"]``;
        otherwise the node's own ``type`` is used.
        """
        data_type = node.data.get("type")
        if isinstance(data_type, str) and data_type in self._handlers:
            return data_type

        if node.type == CUSTOM_NODE_TYPE:
            wrapped = node.data.get("nodeType")
            if isinstance(wrapped, str) and wrapped:
                return wrapped

        return node.type

    async def dispatch(self, node: WorkflowNode, context: WorkflowContext) -> NodeExecutionResult:
        """Run the handler for ``node``.

        Every failure comes back as an unsuccessful result; nothing a handler
        raises escapes, apart from cancellation.
        """
        node_type = self.resolve_type(node)
        handler = self._handlers.get(node_type)
        if handler is None:
            return NodeExecutionResult.fail(f"Unknown node type: {node_type}")

        try:
            result = await handler(node, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = NodeExecutionError(
                str(e) or e.__class__.__name__,
                node_id=node.id,
                node_type=node_type,
                execution_id=context.execution_id,
            )
            log_with_context(logger, logging.WARNING, f"Handler '{node_type}' raised for node '{node.id}': {e}",
                             error=error.to_dict())
            return NodeExecutionResult.fail(error.message)

        if not isinstance(result, NodeExecutionResult):
            return NodeExecutionResult.fail(
                f"Handler for '{node_type}' returned {type(result).__name__} instead of a result"
            )
        return result

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._handlers

    def types(self) -> List[str]:
        return sorted(self._handlers)
