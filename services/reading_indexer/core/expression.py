"""
Reading Indexer Field Expressions

Arithmetic formulas over raw reading names, e.g. ``(temp_max + temp_min) / 2``
or ``pressure * 0.75``.

A formula is parsed once into a small typed tree and evaluated per record
with that record's numeric readings bound as variables. Supported syntax:

- numeric literals and variable names
- binary ``+ - * / %`` and ``^`` (power, ``**`` is accepted too)
- unary ``+`` and ``-``, parentheses
- functions: abs, sqrt, exp, log, log10, sin, cos, tan, floor, ceil,
  min, max, pow
"""

import ast
import math
import operator
from dataclasses import dataclass
from typing import Callable, Mapping, Union

from .errors import ExpressionError


BINARY_OPERATORS: dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: math.fmod,
    ast.Pow: math.pow,
}

UNARY_OPERATORS: dict[type, Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

FUNCTIONS: dict[str, Callable[..., float]] = {
    "abs": abs,
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
    "log10": math.log10,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "floor": math.floor,
    "ceil": math.ceil,
    "min": min,
    "max": max,
    "pow": math.pow,
}


# =============================================================================
# Expression Tree
# =============================================================================

@dataclass(frozen=True)
class Number:
    value: float

    def evaluate(self, variables: Mapping[str, float]) -> float:
        return self.value


@dataclass(frozen=True)
class Variable:
    name: str

    def evaluate(self, variables: Mapping[str, float]) -> float:
        try:
            return variables[self.name]
        except KeyError:
            raise ExpressionError(f"unbound variable '{self.name}'") from None


@dataclass(frozen=True)
class Unary:
    op: Callable[[float], float]
    operand: "Node"

    def evaluate(self, variables: Mapping[str, float]) -> float:
        return self.op(self.operand.evaluate(variables))


@dataclass(frozen=True)
class Binary:
    op: Callable[[float, float], float]
    left: "Node"
    right: "Node"

    def evaluate(self, variables: Mapping[str, float]) -> float:
        return self.op(self.left.evaluate(variables), self.right.evaluate(variables))


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple["Node", ...]

    def evaluate(self, variables: Mapping[str, float]) -> float:
        return FUNCTIONS[self.name](*(arg.evaluate(variables) for arg in self.args))


Node = Union[Number, Variable, Unary, Binary, Call]


@dataclass(frozen=True)
class Expression:
    """A parsed formula."""

    source: str
    root: Node
    variables: frozenset[str]

    def evaluate(self, variables: Mapping[str, float]) -> float:
        """
        Evaluate against bound variables.

        Raises:
            ExpressionError: a variable is unbound or the math is undefined
                (division by zero, log of a negative number, overflow).
        """
        try:
            result = self.root.evaluate(variables)
        except ExpressionError:
            raise
        except (ArithmeticError, ValueError, TypeError) as e:
            raise ExpressionError(f"cannot evaluate '{self.source}': {e}") from e
        return float(result)


# =============================================================================
# Parsing
# =============================================================================

def parse_expression(source: str) -> Expression:
    """
    Parse a formula into an Expression.

    Raises:
        ExpressionError: the formula is empty, malformed or uses unsupported
            syntax.
    """
    text = (source or "").strip()
    if not text:
        raise ExpressionError("empty expression")

    try:
        tree = ast.parse(text.replace("^", "**"), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"malformed expression '{source}': {e.msg}") from e

    names: set[str] = set()
    root = _convert(tree.body, source, names)
    return Expression(source=source, root=root, variables=frozenset(names))


def _convert(node: ast.AST, source: str, names: set[str]) -> Node:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ExpressionError(f"unsupported literal {node.value!r} in '{source}'")
        return Number(float(node.value))

    if isinstance(node, ast.Name):
        names.add(node.id)
        return Variable(node.id)

    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPERATORS:
        return Unary(UNARY_OPERATORS[type(node.op)], _convert(node.operand, source, names))

    if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPERATORS:
        return Binary(
            BINARY_OPERATORS[type(node.op)],
            _convert(node.left, source, names),
            _convert(node.right, source, names),
        )

    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
        if node.func.id not in FUNCTIONS:
            raise ExpressionError(f"unknown function '{node.func.id}' in '{source}'")
        if node.keywords or not node.args:
            raise ExpressionError(f"bad call to '{node.func.id}' in '{source}'")
        return Call(node.func.id, tuple(_convert(a, source, names) for a in node.args))

    raise ExpressionError(f"unsupported syntax {type(node).__name__} in '{source}'")
