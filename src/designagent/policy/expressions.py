"""Constrained expression language for rule conditions and transforms.

Expressions are compiled once, when a rule is loaded, into a small tree of
whitelisted node types. Evaluation walks that tree against read-only
bindings; nothing is ever handed to ``eval``.

Supported:
  - literals: numbers, 'single'/"double" quoted strings, true, false, null,
    undefined, regex literals (/pattern/flags), [arrays], {objects, ...spread}
  - roots: tool, context, args (any other identifier is rejected)
  - member access: a.b, a["b"], a[0], .length
  - method calls: match, test, includes, startsWith, endsWith,
    toLowerCase, toUpperCase, trim
  - operators: ! not && and || or == === != !== < <= > >= in + - * / %
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from designagent.policy.types import ExpressionEvaluationError, ExpressionSyntaxError

ROOT_NAMES = frozenset({"tool", "context", "args"})

FORBIDDEN_PROPERTIES = frozenset({"constructor", "prototype"})

METHODS = frozenset({
    "match",
    "test",
    "includes",
    "startsWith",
    "endsWith",
    "toLowerCase",
    "toUpperCase",
    "trim",
})

KEYWORD_CONSTANTS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

WORD_OPERATORS = {"and": "&&", "or": "||", "not": "!", "in": "in"}

# Longest first so "===" wins over "==" and "=".
PUNCTUATORS = (
    "===", "!==", "...",
    "==", "!=", "<=", ">=", "&&", "||",
    "<", ">", "!", "+", "-", "*", "/", "%",
    "(", ")", "[", "]", "{", "}", ".", ",", ":",
)

REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "g": 0, "u": 0}


# =============================================================================
# Tokenizer
# =============================================================================


@dataclass(frozen=True)
class Token:
    """A lexical token."""

    kind: str  # "num", "str", "regex", "name", "op", "eof"
    value: Any
    pos: int


def _ends_value(token: Token | None) -> bool:
    """Whether a "/" after this token is a division rather than a regex."""
    if token is None:
        return False
    if token.kind in ("num", "str", "regex"):
        return True
    if token.kind == "name":
        return token.value not in WORD_OPERATORS
    return token.kind == "op" and token.value in (")", "]", "}")


def tokenize(text: str) -> list[Token]:
    """Split an expression into tokens.

    Raises:
        ExpressionSyntaxError: On an unterminated literal or unknown character.
    """
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            m = re.compile(r"\d*\.?\d+(?:[eE][+-]?\d+)?").match(text, i)
            assert m is not None
            raw = m.group(0)
            value: Any = float(raw) if any(c in raw for c in ".eE") else int(raw)
            tokens.append(Token("num", value, i))
            i = m.end()
            continue

        if ch in ("'", '"'):
            i = _read_string(text, i, tokens)
            continue

        if ch.isalpha() or ch in "_$":
            m = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*").match(text, i)
            assert m is not None
            tokens.append(Token("name", m.group(0), i))
            i = m.end()
            continue

        if ch == "/" and not _ends_value(tokens[-1] if tokens else None):
            i = _read_regex(text, i, tokens)
            continue

        for punct in PUNCTUATORS:
            if text.startswith(punct, i):
                tokens.append(Token("op", punct, i))
                i += len(punct)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character {ch!r} at {i}")

    tokens.append(Token("eof", None, n))
    return tokens


def _read_string(text: str, start: int, tokens: list[Token]) -> int:
    quote = text[start]
    escapes = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}
    out: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            out.append(escapes.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            tokens.append(Token("str", "".join(out), start))
            return i + 1
        out.append(ch)
        i += 1
    raise ExpressionSyntaxError(f"Unterminated string starting at {start}")


def _read_regex(text: str, start: int, tokens: list[Token]) -> int:
    i = start + 1
    in_class = False
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            break
        i += 1
    else:
        raise ExpressionSyntaxError(f"Unterminated regex starting at {start}")

    pattern = text[start + 1:i]
    i += 1
    flags = 0
    while i < len(text) and text[i].isalpha():
        flag = text[i]
        if flag not in REGEX_FLAGS:
            raise ExpressionSyntaxError(f"Unsupported regex flag {flag!r}")
        flags |= REGEX_FLAGS[flag]
        i += 1

    try:
        compiled = re.compile(pattern, flags)
    except re.error as e:
        raise ExpressionSyntaxError(f"Invalid regex /{pattern}/: {e}") from e
    tokens.append(Token("regex", compiled, start))
    return i


# =============================================================================
# Nodes
# =============================================================================


class Node:
    """Base class for expression tree nodes."""

    def eval(self, env: Mapping[str, Any]) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def eval(self, env: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class Root(Node):
    name: str

    def eval(self, env: Mapping[str, Any]) -> Any:
        return env.get(self.name)


@dataclass(frozen=True)
class Member(Node):
    target: Node
    key: Node

    def eval(self, env: Mapping[str, Any]) -> Any:
        obj = self.target.eval(env)
        key = self.key.eval(env)
        return get_member(obj, key)


@dataclass(frozen=True)
class MethodCall(Node):
    target: Node
    method: str
    args: tuple[Node, ...]

    def eval(self, env: Mapping[str, Any]) -> Any:
        obj = self.target.eval(env)
        values = [arg.eval(env) for arg in self.args]
        return call_method(obj, self.method, values)


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node

    def eval(self, env: Mapping[str, Any]) -> Any:
        value = self.operand.eval(env)
        if self.op == "!":
            return not truthy(value)
        if not _is_number(value):
            raise ExpressionEvaluationError(f"Cannot negate {type(value).__name__}")
        return -value


@dataclass(frozen=True)
class Logical(Node):
    op: str  # "&&" or "||"
    left: Node
    right: Node

    def eval(self, env: Mapping[str, Any]) -> Any:
        left = self.left.eval(env)
        if self.op == "&&":
            return self.right.eval(env) if truthy(left) else left
        return left if truthy(left) else self.right.eval(env)


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node

    def eval(self, env: Mapping[str, Any]) -> Any:
        return binary_op(self.op, self.left.eval(env), self.right.eval(env))


@dataclass(frozen=True)
class ArrayLiteral(Node):
    items: tuple[Node, ...]

    def eval(self, env: Mapping[str, Any]) -> Any:
        return [item.eval(env) for item in self.items]


@dataclass(frozen=True)
class ObjectLiteral(Node):
    # (key, value) pairs; key None means "...spread" of value
    entries: tuple[tuple[str | None, Node], ...]

    def eval(self, env: Mapping[str, Any]) -> Any:
        result: dict[str, Any] = {}
        for key, node in self.entries:
            value = node.eval(env)
            if key is None:
                if value is None:
                    continue
                if not isinstance(value, Mapping):
                    raise ExpressionEvaluationError(
                        f"Cannot spread {type(value).__name__} into an object"
                    )
                result.update(value)
            else:
                result[key] = value
        return result


# =============================================================================
# Runtime semantics
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def truthy(value: Any) -> bool:
    """Truthiness with empty containers counted as true, like JavaScript objects."""
    if isinstance(value, (list, tuple, Mapping)):
        return True
    return bool(value)


def get_member(obj: Any, key: Any) -> Any:
    """Property/index access. Missing mapping keys yield None."""
    if obj is None:
        raise ExpressionEvaluationError(f"Cannot read property {key!r} of null")

    if key == "length" and isinstance(obj, (str, list, tuple, Mapping)):
        if isinstance(obj, Mapping) and "length" in obj:
            return obj["length"]
        return len(obj)

    if isinstance(obj, Mapping):
        return obj.get(key) if isinstance(key, str) else obj.get(str(key))

    if isinstance(obj, (list, tuple, str)):
        if isinstance(key, int) and not isinstance(key, bool):
            return obj[key] if 0 <= key < len(obj) else None
        raise ExpressionEvaluationError(
            f"Cannot index {type(obj).__name__} with {key!r}"
        )

    raise ExpressionEvaluationError(
        f"Cannot read property {key!r} of {type(obj).__name__}"
    )


def _as_pattern(value: Any) -> re.Pattern[str]:
    if isinstance(value, re.Pattern):
        return value
    if isinstance(value, str):
        try:
            return re.compile(value)
        except re.error as e:
            raise ExpressionEvaluationError(f"Invalid pattern {value!r}: {e}") from e
    raise ExpressionEvaluationError(f"Expected a pattern, got {type(value).__name__}")


def _expect_str(value: Any, method: str) -> str:
    if not isinstance(value, str):
        raise ExpressionEvaluationError(
            f"{method}() is not a method of {type(value).__name__}"
        )
    return value


def call_method(obj: Any, method: str, args: list[Any]) -> Any:
    """Invoke one of the whitelisted methods."""
    if obj is None:
        raise ExpressionEvaluationError(f"Cannot call {method}() on null")

    if method == "test":
        if not isinstance(obj, re.Pattern):
            raise ExpressionEvaluationError("test() requires a regex receiver")
        if len(args) != 1:
            raise ExpressionEvaluationError("test() takes exactly one argument")
        return obj.search("" if args[0] is None else str(args[0])) is not None

    if method == "includes":
        if len(args) != 1:
            raise ExpressionEvaluationError("includes() takes exactly one argument")
        if isinstance(obj, str):
            return _expect_str(args[0], "includes") in obj
        if isinstance(obj, (list, tuple)):
            return args[0] in obj
        raise ExpressionEvaluationError(
            f"includes() is not a method of {type(obj).__name__}"
        )

    text = _expect_str(obj, method)

    if method == "match":
        if len(args) != 1:
            raise ExpressionEvaluationError("match() takes exactly one argument")
        m = _as_pattern(args[0]).search(text)
        if m is None:
            return None
        return [m.group(0), *m.groups()]
    if method == "startsWith":
        return text.startswith(_expect_str(args[0] if args else None, method))
    if method == "endsWith":
        return text.endswith(_expect_str(args[0] if args else None, method))
    if method == "toLowerCase":
        return text.lower()
    if method == "toUpperCase":
        return text.upper()
    if method == "trim":
        return text.strip()

    raise ExpressionEvaluationError(f"Unknown method {method}()")


def binary_op(op: str, left: Any, right: Any) -> Any:
    """Apply a comparison or arithmetic operator."""
    if op in ("==", "==="):
        return left == right
    if op in ("!=", "!=="):
        return left != right

    if op in ("<", "<=", ">", ">="):
        if left is None or right is None:
            return False
        if not (
            (_is_number(left) and _is_number(right))
            or (isinstance(left, str) and isinstance(right, str))
        ):
            raise ExpressionEvaluationError(
                f"Cannot compare {type(left).__name__} {op} {type(right).__name__}"
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    if op == "in":
        if isinstance(right, Mapping):
            return str(left) in right
        if isinstance(right, str):
            return isinstance(left, str) and left in right
        if isinstance(right, (list, tuple)):
            return left in right
        raise ExpressionEvaluationError(f"'in' not supported for {type(right).__name__}")

    if op == "+":
        if isinstance(left, str) or isinstance(right, str):
            return f"{_to_text(left)}{_to_text(right)}"
        if _is_number(left) and _is_number(right):
            return left + right
        raise ExpressionEvaluationError(
            f"Cannot add {type(left).__name__} and {type(right).__name__}"
        )

    if not (_is_number(left) and _is_number(right)):
        raise ExpressionEvaluationError(
            f"Arithmetic {op} needs numbers, got {type(left).__name__} "
            f"and {type(right).__name__}"
        )
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    try:
        if op == "/":
            return left / right
        if op == "%":
            return left % right
    except ZeroDivisionError as e:
        raise ExpressionEvaluationError("Division by zero") from e
    raise ExpressionEvaluationError(f"Unknown operator {op}")


def _to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# =============================================================================
# Parser
# =============================================================================

COMPARISON_OPS = frozenset({"==", "===", "!=", "!==", "<", "<=", ">", ">=", "in"})


class _Parser:
    """Recursive-descent parser producing a Node tree."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = tokenize(text)
        self._pos = 0

    def parse(self) -> Node:
        node = self._or()
        tok = self._peek()
        if tok.kind != "eof":
            raise ExpressionSyntaxError(f"Unexpected {tok.value!r} at {tok.pos}")
        return node

    # -- token helpers -------------------------------------------------------

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _next(self) -> Token:
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def _op(self) -> str | None:
        """Current operator, normalising word operators."""
        tok = self._peek()
        if tok.kind == "op":
            return str(tok.value)
        if tok.kind == "name" and tok.value in WORD_OPERATORS:
            return WORD_OPERATORS[tok.value]
        return None

    def _expect(self, op: str) -> None:
        tok = self._next()
        if tok.kind != "op" or tok.value != op:
            found = "end of expression" if tok.kind == "eof" else repr(tok.value)
            raise ExpressionSyntaxError(f"Expected {op!r} at {tok.pos}, found {found}")

    # -- grammar -------------------------------------------------------------

    def _or(self) -> Node:
        node = self._and()
        while self._op() == "||":
            self._next()
            node = Logical("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._op() == "&&":
            self._next()
            node = Logical("&&", node, self._not())
        return node

    def _not(self) -> Node:
        # Word form binds loosely (not a == b); "!" binds tightly in _unary.
        tok = self._peek()
        if tok.kind == "name" and tok.value == "not":
            self._next()
            return Unary("!", self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        node = self._additive()
        op = self._op()
        if op in COMPARISON_OPS:
            self._next()
            node = Binary(op, node, self._additive())
        return node

    def _additive(self) -> Node:
        node = self._multiplicative()
        while self._op() in ("+", "-"):
            op = str(self._next().value)
            node = Binary(op, node, self._multiplicative())
        return node

    def _multiplicative(self) -> Node:
        node = self._unary()
        while self._op() in ("*", "/", "%"):
            op = str(self._next().value)
            node = Binary(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._op() == "-":
            self._next()
            return Unary("-", self._unary())
        if self._op() == "!":
            self._next()
            return Unary("!", self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while True:
            op = self._op()
            if op == ".":
                self._next()
                tok = self._next()
                if tok.kind != "name":
                    raise ExpressionSyntaxError(f"Expected property name at {tok.pos}")
                name = str(tok.value)
                _check_property(name)
                if self._op() == "(":
                    node = MethodCall(node, _check_method(name), self._call_args())
                else:
                    node = Member(node, Literal(name))
            elif op == "[":
                self._next()
                key = self._or()
                if isinstance(key, Literal) and isinstance(key.value, str):
                    _check_property(key.value)
                elif not isinstance(key, Literal):
                    raise ExpressionSyntaxError(
                        "Computed member access must use a literal key"
                    )
                self._expect("]")
                node = Member(node, key)
            elif op == "(":
                raise ExpressionSyntaxError("Only whitelisted methods can be called")
            else:
                return node

    def _call_args(self) -> tuple[Node, ...]:
        self._expect("(")
        args: list[Node] = []
        if self._op() != ")":
            args.append(self._or())
            while self._op() == ",":
                self._next()
                args.append(self._or())
        self._expect(")")
        return tuple(args)

    def _primary(self) -> Node:
        tok = self._next()

        if tok.kind in ("num", "str", "regex"):
            return Literal(tok.value)

        if tok.kind == "name":
            name = str(tok.value)
            if name in KEYWORD_CONSTANTS:
                return Literal(KEYWORD_CONSTANTS[name])
            if name in ROOT_NAMES:
                return Root(name)
            raise ExpressionSyntaxError(
                f"Unknown identifier {name!r}; only tool, context and args are available"
            )

        if tok.kind == "op":
            if tok.value == "(":
                node = self._or()
                self._expect(")")
                return node
            if tok.value == "[":
                return self._array()
            if tok.value == "{":
                return self._object()

        found = "end of expression" if tok.kind == "eof" else repr(tok.value)
        raise ExpressionSyntaxError(f"Unexpected {found} at {tok.pos}")

    def _array(self) -> Node:
        items: list[Node] = []
        if self._op() != "]":
            items.append(self._or())
            while self._op() == ",":
                self._next()
                if self._op() == "]":
                    break
                items.append(self._or())
        self._expect("]")
        return ArrayLiteral(tuple(items))

    def _object(self) -> Node:
        entries: list[tuple[str | None, Node]] = []
        while self._op() != "}":
            if self._op() == "...":
                self._next()
                entries.append((None, self._or()))
            else:
                tok = self._next()
                if tok.kind not in ("name", "str"):
                    raise ExpressionSyntaxError(f"Expected object key at {tok.pos}")
                key = str(tok.value)
                _check_property(key)
                self._expect(":")
                entries.append((key, self._or()))
            if self._op() == ",":
                self._next()
            elif self._op() != "}":
                raise ExpressionSyntaxError(f"Expected ',' or '}}' at {self._peek().pos}")
        self._expect("}")
        return ObjectLiteral(tuple(entries))


def _check_property(name: str) -> None:
    if name.startswith("__") or name in FORBIDDEN_PROPERTIES:
        raise ExpressionSyntaxError(f"Access to {name!r} is not allowed")


def _check_method(name: str) -> str:
    if name not in METHODS:
        raise ExpressionSyntaxError(f"Method {name!r}() is not allowed")
    return name


# =============================================================================
# Public API
# =============================================================================


@dataclass(frozen=True)
class Expression:
    """A compiled expression.

    Attributes:
        source: The original expression text.
        root: Root node of the compiled tree.
    """

    source: str
    root: Node

    def evaluate(self, bindings: Mapping[str, Any]) -> Any:
        """Evaluate against bindings (only tool, context and args are visible).

        Raises:
            ExpressionEvaluationError: On a runtime type error.
        """
        env = {name: bindings.get(name) for name in ROOT_NAMES}
        try:
            return self.root.eval(env)
        except ExpressionEvaluationError:
            raise
        except (TypeError, ValueError, KeyError, IndexError, ArithmeticError, RecursionError) as e:
            raise ExpressionEvaluationError(str(e)) from e

    def test(self, bindings: Mapping[str, Any]) -> bool:
        """Evaluate as a boolean condition."""
        return truthy(self.evaluate(bindings))


def compile_expression(text: str) -> Expression:
    """Compile expression text into an Expression.

    Raises:
        ExpressionSyntaxError: If the text is empty, malformed or uses
            anything outside the whitelist.
    """
    if not isinstance(text, str) or not text.strip():
        raise ExpressionSyntaxError("Expression must be a non-empty string")
    try:
        root = _Parser(text).parse()
    except RecursionError as e:
        raise ExpressionSyntaxError("Expression is nested too deeply") from e
    return Expression(source=text, root=root)
