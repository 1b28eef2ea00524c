"""Evaluation of ``condition`` step expressions such as ``{{high_priority_count}} > 0``.

Tokens are replaced with Python literals of their bound values, then the
expression is parsed with :mod:`ast` and walked by a small interpreter that
only knows comparisons, boolean logic, arithmetic, literals, subscripts and
``len()``. Nothing is ever handed to ``eval``.
"""

import ast
import logging
import operator
from typing import Any

from autoflow.services.template_engine import TOKEN_RE, _MISSING, lookup

logger = logging.getLogger(__name__)


class ConditionError(ValueError):
    pass


_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "True": True, "False": False, "None": None}

_FUNCTIONS = {"len": len}

_ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.And, ast.Or, ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
    ast.BinOp, ast.Compare, ast.Constant, ast.Name, ast.Load, ast.List, ast.Tuple, ast.Dict,
    ast.Subscript, ast.Call,
    *_COMPARE_OPS.keys(), *_BIN_OPS.keys(),
)


def _normalize(expression: str) -> str:
    # Accept the JavaScript-flavoured operators authors tend to type
    return (
        expression.replace("!==", "!=")
        .replace("===", "==")
        .replace("&&", " and ")
        .replace("||", " or ")
        .strip()
    )


def substitute(expression: str, bindings: dict) -> str:
    def replace_match(m):
        value = lookup(bindings, m.group(1))
        return "None" if value is _MISSING else repr(value)

    return TOKEN_RE.sub(replace_match, expression)


def _parse(source: str) -> ast.Expression:
    try:
        tree = ast.parse(_normalize(source), mode="eval")
    except SyntaxError as e:
        raise ConditionError(f"Invalid condition syntax: {e.msg}") from e
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise ConditionError(f"Unsupported element in condition: {type(node).__name__}")
        if isinstance(node, ast.Call) and not (isinstance(node.func, ast.Name) and node.func.id in _FUNCTIONS):
            raise ConditionError("Only len() may be called inside a condition")
    return tree


def check_expression(expression: str) -> list[str]:
    """Static check used at definition validation time: tokens become ``None`` placeholders."""
    if not expression or not expression.strip():
        return ["condition_logic must not be empty"]
    try:
        _parse(TOKEN_RE.sub("None", expression))
    except ConditionError as e:
        return [str(e)]
    return []


def evaluate(expression: str, bindings: dict) -> bool:
    """Evaluate to ``True`` or ``False``.

    Only a malformed expression raises :class:`ConditionError`. Operands that
    cannot be compared (an unbound token against a number, text against a
    number) make the condition false.
    """
    tree = _parse(substitute(expression, bindings))
    try:
        return bool(_eval(tree.body, bindings))
    except (TypeError, ZeroDivisionError, KeyError, IndexError) as e:
        logger.warning(f"Condition '{expression}' could not be evaluated, treating it as false: {e}")
        return False


def _eval(node: ast.AST, bindings: dict) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        value = lookup(bindings, node.id)
        return None if value is _MISSING else value
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _eval(value, bindings)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _eval(value, bindings)
            if result:
                return result
        return result
    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, bindings)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        return +operand
    if isinstance(node, ast.BinOp):
        return _BIN_OPS[type(node.op)](_eval(node.left, bindings), _eval(node.right, bindings))
    if isinstance(node, ast.Compare):
        left = _eval(node.left, bindings)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, bindings)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval(elt, bindings) for elt in node.elts]
    if isinstance(node, ast.Dict):
        return {_eval(k, bindings): _eval(v, bindings) for k, v in zip(node.keys, node.values)}
    if isinstance(node, ast.Subscript):
        return _eval(node.value, bindings)[_eval(node.slice, bindings)]
    if isinstance(node, ast.Call):
        return _FUNCTIONS[node.func.id](*[_eval(arg, bindings) for arg in node.args])
    raise ConditionError(f"Unsupported element in condition: {type(node).__name__}")
