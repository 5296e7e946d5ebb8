"""``{{token}}`` substitution for handler-configured strings."""

import json
import re
from typing import Any, Tuple

from .context import WorkflowContext

TOKEN_PATTERN = re.compile(r"\{\{(\w+)\}\}")

_MISSING = object()


def resolve_token(key: str, context: WorkflowContext) -> Tuple[bool, Any]:
    """Look up a flat key the same way ``interpolate`` does.

    Order: input variables, node results by node id, then top-level keys of
    mapping-shaped node results, newest first.
    """
    if key in context.variables:
        return True, context.variables[key]

    if key in context.previous_results:
        return True, context.previous_results[key]

    for _node_id, data in context.iter_recent_results():
        if isinstance(data, dict) and key in data:
            return True, data[key]

    return False, _MISSING


def stringify(value: Any) -> str:
    """Text form of a substituted value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate(template: Any, context: WorkflowContext) -> str:
    """Replace ``{{key}}`` tokens in ``template`` with values from ``context``.

    Unknown tokens are left exactly as written. Dotted paths and expressions
    are not supported, so ``{{node.field}}`` is never resolved.
    """
    if not template:
        return ""
    if not isinstance(template, str):
        template = stringify(template)

    def replace(match: "re.Match[str]") -> str:
        found, value = resolve_token(match.group(1), context)
        if not found:
            return match.group(0)
        return stringify(value)

    return TOKEN_PATTERN.sub(replace, template)
