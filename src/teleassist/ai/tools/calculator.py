"""Arithmetic calculator tool."""

from __future__ import annotations

import ast
import math
import operator
import re
from typing import Any

from teleassist.ai.tools.base import Tool, format_number
from teleassist.errors import ToolExecutionError

MAX_EXPRESSION_LENGTH = 300
MAX_EXPONENT = 1000

_SAFE_EXPR_RE = re.compile(r"^[0-9+\-*/().,%\s^]+$")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow):
            if abs(right) > MAX_EXPONENT:
                raise ToolExecutionError("Exponent is too large.")
            return float(left) ** float(right)
        return _BINARY_OPS[type(node.op)](left, right)
    raise ToolExecutionError("Expression is not pure arithmetic.")


def evaluate_expression(expression: str) -> float:
    """Evaluate an arithmetic expression made only of digits and operators."""
    trimmed = expression.strip()
    if not trimmed:
        raise ToolExecutionError("Expression is required.")
    if len(trimmed) > MAX_EXPRESSION_LENGTH:
        raise ToolExecutionError("Expression is too long.")
    if not _SAFE_EXPR_RE.match(trimmed):
        raise ToolExecutionError("Expression contains unsupported characters.")

    normalized = trimmed.replace(",", "").replace("^", "**")
    try:
        tree = ast.parse(normalized, mode="eval")
        result = _evaluate(tree)
    except SyntaxError as e:
        raise ToolExecutionError("Expression is not valid arithmetic.") from e
    except ZeroDivisionError as e:
        raise ToolExecutionError("Division by zero.") from e
    except (OverflowError, TypeError) as e:
        raise ToolExecutionError("Expression did not produce a finite number.") from e

    if isinstance(result, complex) or not math.isfinite(result):
        raise ToolExecutionError("Expression did not produce a finite number.")
    return result


class CalculatorTool(Tool):
    @property
    def name(self) -> str:
        return "calculator"

    @property
    def description(self) -> str:
        return "Evaluate a math expression safely."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "expression": {
                    "type": "string",
                    "description": "Arithmetic expression, e.g. (12*4)+3^2",
                },
            },
            "required": ["expression"],
        }

    async def execute(self, **kwargs: Any) -> str:
        expression = kwargs.get("expression")
        return format_number(evaluate_expression("" if expression is None else str(expression)))
