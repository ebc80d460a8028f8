"""
Sandboxed template expressions.

A template string is literal text with ``${...}`` segments. Each segment
is parsed with :mod:`ast` and checked against a whitelist of node types;
evaluation walks the tree directly, so no Python code from the config
file is ever executed. ``$${`` produces a literal ``${``.
"""
import ast
import math
import operator
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..exceptions import TemplateEvaluationError, TemplateSyntaxError
from .helpers import (
    CONSTANTS,
    FUNCTIONS,
    UNDEFINED,
    is_missing,
    to_number,
    to_text,
    truthy,
)


_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.keyword,
    ast.List,
    ast.Tuple,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)

_ARITHMETIC: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
}


@dataclass(frozen=True)
class CompiledTemplate:
    """A parsed template: literal text interleaved with expression trees."""

    source: str
    parts: Tuple[Union[str, ast.Expression], ...]

    @property
    def is_literal(self) -> bool:
        return all(isinstance(part, str) for part in self.parts)


def _find_expression_end(source: str, start: int) -> int:
    """
    Return the index of the ``}`` closing the segment opened before ``start``.

    Braces inside string literals and nested brace pairs are skipped.
    """
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(source):
        char = source[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            if depth == 0:
                return i
            depth -= 1
        i += 1
    raise TemplateSyntaxError("Unterminated '${' in template", template=source)


def _split(source: str) -> List[Tuple[bool, str]]:
    """Split a template into ``(is_expression, text)`` chunks."""
    chunks: List[Tuple[bool, str]] = []
    literal: List[str] = []
    i = 0
    while i < len(source):
        if source.startswith("$${", i):
            literal.append("${")
            i += 3
        elif source.startswith("${", i):
            end = _find_expression_end(source, i + 2)
            if literal:
                chunks.append((False, "".join(literal)))
                literal = []
            chunks.append((True, source[i + 2:end]))
            i = end + 1
        else:
            literal.append(source[i])
            i += 1
    if literal:
        chunks.append((False, "".join(literal)))
    return chunks


def _check_tree(tree: ast.AST, source: str) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise TemplateSyntaxError(
                f"'{type(node).__name__}' is not allowed in templates",
                template=source,
            )
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise TemplateSyntaxError(
                f"Name '{node.id}' is not allowed in templates", template=source
            )
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise TemplateSyntaxError(
                f"Attribute '{node.attr}' is not allowed in templates",
                template=source,
            )
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise TemplateSyntaxError(
                    "Only helper functions can be called in templates",
                    template=source,
                )
            if node.func.id not in FUNCTIONS:
                raise TemplateSyntaxError(
                    f"Unknown function '{node.func.id}'", template=source
                )
            if any(isinstance(arg, ast.Starred) for arg in node.args):
                raise TemplateSyntaxError(
                    "Argument unpacking is not allowed in templates",
                    template=source,
                )
            if any(kw.arg is None for kw in node.keywords):
                raise TemplateSyntaxError(
                    "Keyword unpacking is not allowed in templates",
                    template=source,
                )
        if isinstance(node, ast.Constant) and not isinstance(
            node.value, (str, int, float, bool, type(None))
        ):
            raise TemplateSyntaxError(
                f"Constant {node.value!r} is not allowed in templates",
                template=source,
            )


@lru_cache(maxsize=512)
def compile_template(source: str) -> CompiledTemplate:
    """
    Parse a template string.

    Results are cached by source text; evaluation is not.

    Raises:
        TemplateSyntaxError: If a segment is not a valid, allowed expression.
    """
    parts: List[Union[str, ast.Expression]] = []
    for is_expression, text in _split(source):
        if not is_expression:
            parts.append(text)
            continue
        if not text.strip():
            raise TemplateSyntaxError("Empty '${}' in template", template=source)
        try:
            tree = ast.parse(text.strip(), mode="eval")
            _check_tree(tree, source)
        except SyntaxError as e:
            raise TemplateSyntaxError(
                f"Invalid expression '{text}': {e.msg}", template=source
            ) from e
        except (RecursionError, MemoryError) as e:
            raise TemplateSyntaxError(
                "Expression is nested too deeply", template=source
            ) from e
        parts.append(tree)
    return CompiledTemplate(source=source, parts=tuple(parts))


def lookup(container: Any, key: Any) -> Any:
    """
    Read a field from a mapping or an item from a sequence.

    Anything that is not there, including JSON nulls, is ``UNDEFINED``.
    """
    value: Any = UNDEFINED
    if isinstance(container, Mapping):
        value = container.get(key, UNDEFINED)
    elif isinstance(container, (list, tuple, str)) and isinstance(key, int) \
            and not isinstance(key, bool):
        if -len(container) <= key < len(container):
            value = container[key]
    return UNDEFINED if value is None else value


def _divide(left: float, right: float, floor: bool = False) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.inf if left > 0 else -math.inf
    result = left / right
    if floor and not (math.isnan(result) or math.isinf(result)):
        return math.floor(result)
    return result


def _power(left: float, right: float) -> float:
    try:
        return math.pow(left, right)
    except OverflowError:
        return math.inf
    except ValueError:
        if left == 0:
            return math.inf
        return math.nan


def _binary(op: ast.operator, left: Any, right: Any) -> Any:
    if isinstance(op, ast.Add):
        if isinstance(left, str) or isinstance(right, str):
            return to_text(left) + to_text(right)
        return to_number(left) + to_number(right)

    a = to_number(left)
    b = to_number(right)
    if isinstance(op, ast.Div):
        return _divide(a, b)
    if isinstance(op, ast.FloorDiv):
        return _divide(a, b, floor=True)
    if isinstance(op, ast.Mod):
        if b == 0 or math.isinf(a):
            return math.nan
        return math.fmod(a, b)
    if isinstance(op, ast.Pow):
        return _power(a, b)
    if type(op) in _ARITHMETIC:
        return _ARITHMETIC[type(op)](a, b)
    raise TemplateEvaluationError(f"Operator '{type(op).__name__}' is not supported")


def _compare(op: ast.cmpop, left: Any, right: Any) -> bool:
    if isinstance(op, (ast.Is, ast.Eq)):
        if is_missing(left) or is_missing(right):
            return is_missing(left) and is_missing(right)
        return left == right
    if isinstance(op, (ast.IsNot, ast.NotEq)):
        return not _compare(ast.Eq(), left, right)
    if isinstance(op, (ast.In, ast.NotIn)):
        try:
            found = left in right if not is_missing(right) else False
        except TypeError:
            found = False
        return found if isinstance(op, ast.In) else not found

    if not (isinstance(left, str) and isinstance(right, str)):
        left, right = to_number(left), to_number(right)
    if isinstance(op, ast.Lt):
        return left < right
    if isinstance(op, ast.LtE):
        return left <= right
    if isinstance(op, ast.Gt):
        return left > right
    if isinstance(op, ast.GtE):
        return left >= right
    raise TemplateEvaluationError(f"Comparison '{type(op).__name__}' is not supported")


class Evaluator:
    """
    Walks a checked expression tree against a data scope.

    Names resolve to scope fields first, then to the helper constants.
    Calls resolve only to the helper function table.
    """

    def __init__(
        self,
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
        constants: Optional[Mapping[str, Any]] = None,
    ):
        self.functions = dict(FUNCTIONS if functions is None else functions)
        self.constants = dict(CONSTANTS if constants is None else constants)

    def evaluate(self, tree: ast.Expression, scope: Any) -> Any:
        return self._eval(tree.body, scope)

    def render(self, template: CompiledTemplate, scope: Any) -> str:
        """
        Evaluate every segment of a template and join the text.

        Raises:
            TemplateEvaluationError: If a helper or operator fails.
        """
        pieces = []
        for part in template.parts:
            if isinstance(part, str):
                pieces.append(part)
                continue
            try:
                pieces.append(to_text(self.evaluate(part, scope)))
            except TemplateEvaluationError as e:
                e.template = template.source
                e.details["template"] = template.source
                raise
            except (TypeError, ValueError, ArithmeticError, RecursionError) as e:
                raise TemplateEvaluationError(
                    f"{type(e).__name__}: {e}", template=template.source
                ) from e
        return "".join(pieces)

    def _eval(self, node: ast.AST, scope: Any) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            value = lookup(scope, node.id)
            if value is UNDEFINED and node.id in self.constants:
                return self.constants[node.id]
            return value

        if isinstance(node, ast.Attribute):
            return lookup(self._eval(node.value, scope), node.attr)

        if isinstance(node, ast.Subscript):
            container = self._eval(node.value, scope)
            if isinstance(node.slice, ast.Slice):
                return self._slice(container, node.slice, scope)
            key = self._eval(node.slice, scope)
            if isinstance(key, float) and key.is_integer():
                key = int(key)
            return lookup(container, key)

        if isinstance(node, ast.BinOp):
            return _binary(
                node.op, self._eval(node.left, scope), self._eval(node.right, scope)
            )

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, scope)
            if isinstance(node.op, ast.Not):
                return not truthy(operand)
            if isinstance(node.op, ast.USub):
                return -to_number(operand)
            if isinstance(node.op, ast.UAdd):
                return +to_number(operand)
            raise TemplateEvaluationError("Bitwise operators are not supported")

        if isinstance(node, ast.BoolOp):
            value: Any = UNDEFINED
            for operand in node.values:
                value = self._eval(operand, scope)
                if isinstance(node.op, ast.And) and not truthy(value):
                    return value
                if isinstance(node.op, ast.Or) and truthy(value):
                    return value
            return value

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, scope)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, scope)
                if not _compare(op, left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            if truthy(self._eval(node.test, scope)):
                return self._eval(node.body, scope)
            return self._eval(node.orelse, scope)

        if isinstance(node, ast.Call):
            func = self.functions.get(node.func.id)
            if func is None:
                raise TemplateEvaluationError(f"Unknown function '{node.func.id}'")
            args = [self._eval(arg, scope) for arg in node.args]
            kwargs = {kw.arg: self._eval(kw.value, scope) for kw in node.keywords}
            return func(*args, **kwargs)

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(element, scope) for element in node.elts]

        raise TemplateEvaluationError(f"'{type(node).__name__}' is not supported")

    def _slice(self, container: Any, node: ast.Slice, scope: Any) -> Any:
        if not isinstance(container, (str, list, tuple)):
            return UNDEFINED
        bounds = []
        for part in (node.lower, node.upper, node.step):
            if part is None:
                bounds.append(None)
                continue
            number = to_number(self._eval(part, scope))
            bounds.append(None if math.isnan(number) else int(number))
        if bounds[2] == 0:
            raise TemplateEvaluationError("Slice step cannot be zero")
        return container[slice(*bounds)]


def render_template(source: str, scope: Any, evaluator: Optional[Evaluator] = None) -> str:
    """Compile (cached) and render a single template string."""
    return (evaluator or Evaluator()).render(compile_template(source), scope)

