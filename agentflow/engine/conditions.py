"""Restricted evaluator for condition-node expressions.

Expressions are parsed with :mod:`ast` and walked node by node; only
literals, names, comparisons, boolean/arithmetic operators, subscripts and a
few whitelisted builtins are accepted. Nothing is handed to ``eval``.

JavaScript-style operators that appear in saved workflows (``===``, ``!==``,
``&&``, ``||``, ``!``, ``true``/``false``/``null``) are accepted as well.
"""

import ast
import operator
import re
from typing import Any, Callable, Dict

from .context import WorkflowContext
from .interpolation import resolve_token


class ConditionError(ValueError):
    """Raised when a condition cannot be parsed or evaluated."""


_STRING_LITERAL = re.compile(r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')")

_JS_REWRITES = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
]

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

# Longest string, list or tuple a condition may build with + or *.
MAX_SEQUENCE_LENGTH = 100_000

_SEQUENCES = (str, list, tuple)

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_ORDERING_OPS = (ast.Lt, ast.LtE, ast.Gt, ast.GtE)

SAFE_FUNCTIONS: Dict[str, Callable] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

MAX_EXPRESSION_LENGTH = 2000


def normalize_expression(expression: str) -> str:
    """Rewrite JavaScript-style operators outside of string literals."""
    parts = _STRING_LITERAL.split(expression)
    for index in range(0, len(parts), 2):
        segment = parts[index]
        for pattern, replacement in _JS_REWRITES:
            segment = pattern.sub(replacement, segment)
        parts[index] = segment
    return "".join(parts).strip()


def _check_result_size(op: ast.operator, left: Any, right: Any) -> None:
    """Reject operations whose result would not fit in ``MAX_SEQUENCE_LENGTH``.

    Checked before the operation runs, since building the result is what
    exhausts memory.
    """
    if isinstance(op, ast.Mod) and isinstance(left, str):
        raise ConditionError("String formatting is not allowed in conditions")

    if isinstance(op, ast.Add) and isinstance(left, _SEQUENCES) and isinstance(right, _SEQUENCES):
        length = len(left) + len(right)
    elif isinstance(op, ast.Mult) and isinstance(left, _SEQUENCES) and isinstance(right, int):
        length = len(left) * max(right, 0)
    elif isinstance(op, ast.Mult) and isinstance(right, _SEQUENCES) and isinstance(left, int):
        length = len(right) * max(left, 0)
    else:
        return

    if length > MAX_SEQUENCE_LENGTH:
        raise ConditionError(
            f"Result of '{type(op).__name__}' would hold {length} items; the limit is {MAX_SEQUENCE_LENGTH}"
        )


class _Evaluator:

    def __init__(self, context: WorkflowContext):
        self.context = context
        self.names: Dict[str, Any] = {
            "variables": context.variables,
            "context": context.variables,
            "input": context.variables,
            "previousResults": context.previous_results,
            "previous_results": context.previous_results,
            "True": True,
            "False": False,
            "None": None,
        }

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ConditionError(f"Unsupported expression element: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        found, value = resolve_token(node.id, self.context)
        if not found:
            raise ConditionError(f"Unknown name '{node.id}' in condition")
        return value

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(element) for element in node.elts)

    def visit_Dict(self, node: ast.Dict) -> Any:
        if any(key is None for key in node.keys):
            raise ConditionError("Dictionary unpacking is not allowed in conditions")
        return {self.visit(key): self.visit(value) for key, value in zip(node.keys, node.values)}

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        _check_result_size(node.op, left, right)
        return op(left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            op = _COMPARE_OPS[type(op_node)]
            right = self.visit(comparator)
            # Ordering against a missing value is false rather than an error.
            if isinstance(op_node, _ORDERING_OPS) and (left is None or right is None):
                return False
            if not op(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        container = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return container[key]
        except (KeyError, IndexError, TypeError):
            return None

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        # Dotted access reads mapping keys only, never object attributes.
        if node.attr.startswith("_"):
            raise ConditionError(f"Access to '{node.attr}' is not allowed")
        container = self.visit(node.value)
        if container is None:
            return None
        if isinstance(container, dict):
            return container.get(node.attr)
        if node.attr == "length" and isinstance(container, (str, list, tuple)):
            return len(container)
        raise ConditionError(f"Cannot read '{node.attr}' from {type(container).__name__}")

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in SAFE_FUNCTIONS:
            raise ConditionError("Only len, str, int, float, bool, abs, min, max and round may be called")
        if node.keywords:
            raise ConditionError("Keyword arguments are not allowed in conditions")
        args = [self.visit(arg) for arg in node.args]
        return SAFE_FUNCTIONS[node.func.id](*args)


def evaluate_condition(expression: str, context: WorkflowContext) -> bool:
    """Evaluate an (already interpolated) boolean expression against ``context``.

    Raises:
        ConditionError: If the expression is empty, malformed, or uses
            anything outside the allowed subset.
    """
    if not expression or not str(expression).strip():
        raise ConditionError("Condition expression is empty")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ConditionError("Condition expression is too long")

    source = normalize_expression(str(expression))
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ConditionError(f"Invalid condition syntax: {e.msg}") from e

    try:
        return bool(_Evaluator(context).visit(tree))
    except ConditionError:
        raise
    except Exception as e:
        raise ConditionError(f"Condition evaluation failed: {e}") from e
