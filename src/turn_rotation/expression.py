"""Restricted evaluator for rule expressions.

Rule conditions and actions are short user-authored formulas such as
``overtime < 60`` or ``nextTurn + Math.abs(overtime)``. They are parsed with
:mod:`ast` and walked node by node; only arithmetic, comparisons, boolean
logic, a handful of math helpers and the names supplied by the caller are
understood. Nothing is ever handed to ``eval``.
"""

import ast
import math
import operator
import re
from typing import Any, Callable, Mapping

from .errors import RuleEvaluationError

MAX_EXPRESSION_LENGTH = 500

_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


def _js_round(value: float) -> int:
    # Browser rounding: halves go up, also for negatives
    return math.floor(value + 0.5)


_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "min": min,
    "max": max,
}

_MATH_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": _js_round,
    "min": min,
    "max": max,
}

# Operators from the browser dialect, rewritten to Python before parsing.
# Order matters: the three-character forms must go before "!=" and "!".
_DIALECT = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
]


def _normalise(text: str) -> str:
    for pattern, replacement in _DIALECT:
        text = pattern.sub(replacement, text)
    return text.strip()


def parse(text: str) -> ast.expr:
    """Parse expression text into an AST body.

    Raises:
        RuleEvaluationError: If the text is empty, too long, or not a single
            expression.
    """
    if not isinstance(text, str) or not text.strip():
        raise RuleEvaluationError("Expression is empty")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise RuleEvaluationError(
            f"Expression longer than {MAX_EXPRESSION_LENGTH} characters"
        )
    try:
        tree = ast.parse(_normalise(text), mode="eval")
    except SyntaxError as exc:
        raise RuleEvaluationError(f"Malformed expression {text!r}: {exc.msg}") from exc
    return tree.body


def references(text: str, name: str) -> bool:
    """Return True if the expression mentions the given variable name."""
    try:
        body = parse(text)
    except RuleEvaluationError:
        # Unparseable text can still be recognised as targeting a name
        return re.search(rf"\b{re.escape(name)}\b", text or "") is not None
    return any(
        isinstance(node, ast.Name) and node.id == name for node in ast.walk(body)
    )


def evaluate(text: str, bindings: Mapping[str, Any]) -> Any:
    """Evaluate an expression against a fixed set of variables.

    Args:
        text: Expression source, Python or browser syntax.
        bindings: The only names the expression may read.

    Returns:
        The numeric or boolean result.

    Raises:
        RuleEvaluationError: On syntax errors, unknown names, disallowed
            constructs or arithmetic failures.
    """
    body = parse(text)
    try:
        return _Evaluator(bindings).visit(body)
    except ZeroDivisionError as exc:
        raise RuleEvaluationError(f"Division by zero in {text!r}") from exc
    except (TypeError, ValueError, OverflowError) as exc:
        raise RuleEvaluationError(f"Cannot evaluate {text!r}: {exc}") from exc


class _Evaluator(ast.NodeVisitor):
    """Walks a parsed expression, refusing every node it does not know."""

    def __init__(self, bindings: Mapping[str, Any]) -> None:
        self.bindings = bindings

    def generic_visit(self, node: ast.AST) -> Any:
        raise RuleEvaluationError(f"Unsupported syntax: {type(node).__name__}")

    def visit_Constant(self, node: ast.Constant) -> Any:
        if isinstance(node.value, bool) or isinstance(node.value, (int, float)):
            return node.value
        raise RuleEvaluationError(f"Unsupported literal: {node.value!r}")

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id not in self.bindings:
            raise RuleEvaluationError(f"Unknown name: {node.id}")
        return self.bindings[node.id]

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BINARY_OPS.get(type(node.op))
        if op is None:
            raise RuleEvaluationError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise RuleEvaluationError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
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

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            op = _COMPARE_OPS.get(type(op_node))
            if op is None:
                raise RuleEvaluationError(
                    f"Unsupported comparison: {type(op_node).__name__}"
                )
            right = self.visit(comparator)
            if not op(left, right):
                return False
            left = right
        return True

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise RuleEvaluationError("Keyword arguments are not supported")
        func = self._resolve_function(node.func)
        args = [self.visit(arg) for arg in node.args]
        return func(*args)

    def _resolve_function(self, node: ast.expr) -> Callable[..., Any]:
        # Math.abs(...) style
        if (
            isinstance(node, ast.Attribute)
            and isinstance(node.value, ast.Name)
            and node.value.id == "Math"
            and node.attr in _MATH_FUNCTIONS
        ):
            return _MATH_FUNCTIONS[node.attr]
        if isinstance(node, ast.Name) and node.id in _FUNCTIONS:
            return _FUNCTIONS[node.id]
        raise RuleEvaluationError(f"Unsupported function: {ast.unparse(node)}")
