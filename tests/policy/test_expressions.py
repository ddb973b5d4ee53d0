"""Tests for the rule expression language."""

from __future__ import annotations

from typing import Any

import pytest

from designagent.policy.expressions import compile_expression
from designagent.policy.types import ExpressionEvaluationError, ExpressionSyntaxError


def bindings(**overrides: Any) -> dict[str, Any]:
    """Bindings shaped like the ones the engine builds."""
    data: dict[str, Any] = {
        "tool": {
            "name": "deleteService",
            "method": "DELETE",
            "path": "/services/{serviceId}",
            "mutates": True,
            "requiresConfirmation": False,
        },
        "context": {"sessionCost": 0.25, "maxSessionCost": 1.0, "serviceId": "svc-1"},
        "args": {"name": "  Intake Form ", "tags": ["a", "b"], "count": 3},
    }
    data.update(overrides)
    return data


def evaluate(text: str, **overrides: Any) -> Any:
    return compile_expression(text).evaluate(bindings(**overrides))


class TestLiterals:
    """Tests for literal values."""

    def test_numbers(self) -> None:
        """Integers, floats and exponents."""
        assert evaluate("42") == 42
        assert evaluate("1.5") == 1.5
        assert evaluate("1e3") == 1000.0

    def test_strings_with_escapes(self) -> None:
        """Both quote styles and backslash escapes."""
        assert evaluate("'it\\'s'") == "it's"
        assert evaluate('"a\\nb"') == "a\nb"

    def test_keywords(self) -> None:
        """true/false/null/undefined."""
        assert evaluate("true") is True
        assert evaluate("false") is False
        assert evaluate("null") is None
        assert evaluate("undefined") is None

    def test_object_literal_with_spread(self) -> None:
        """Spread copies keys, later keys override."""
        result = evaluate("{...args, count: 10, 'extra': true}")
        assert result["count"] == 10
        assert result["extra"] is True
        assert result["tags"] == ["a", "b"]

    def test_array_literal(self) -> None:
        """Arrays with trailing comma."""
        assert evaluate("[1, 'two', null,]") == [1, "two", None]


class TestMemberAccess:
    """Tests for dotted and indexed access."""

    def test_dotted_path(self) -> None:
        """Nested property lookup."""
        assert evaluate("tool.name") == "deleteService"
        assert evaluate("context.sessionCost") == 0.25

    def test_missing_key_is_null(self) -> None:
        """Missing mapping keys evaluate to null."""
        assert evaluate("args.missing") is None
        assert evaluate("args.missing == null") is True

    def test_index_access(self) -> None:
        """Literal index and key access."""
        assert evaluate("args.tags[1]") == "b"
        assert evaluate("args['count']") == 3
        assert evaluate("args.tags[5]") is None

    def test_length(self) -> None:
        """.length on strings and lists."""
        assert evaluate("args.tags.length") == 2
        assert evaluate("tool.method.length") == 6

    def test_property_of_null_raises(self) -> None:
        """Reading through null is a runtime error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate("args.missing.deeper")


class TestOperators:
    """Tests for operators and precedence."""

    def test_comparisons(self) -> None:
        """Numeric and string comparisons."""
        assert evaluate("context.sessionCost < context.maxSessionCost") is True
        assert evaluate("context.sessionCost >= 0.25") is True
        assert evaluate("tool.method === 'DELETE'") is True
        assert evaluate("tool.method !== 'GET'") is True

    def test_ordering_with_null_is_false(self) -> None:
        """Ordering comparisons involving null never match."""
        assert evaluate("args.missing > 1") is False
        assert evaluate("args.missing <= 1") is False

    def test_incompatible_comparison_raises(self) -> None:
        """Comparing a string to a number is an error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate("tool.name > 3")

    def test_logical_short_circuit(self) -> None:
        """&& and || short-circuit and return operand values."""
        assert evaluate("args.missing && args.missing.deeper") is None
        assert evaluate("args.missing || 'fallback'") == "fallback"

    def test_word_operators(self) -> None:
        """and / or / not behave like && / || / !."""
        assert evaluate("tool.mutates and not false") is True
        assert evaluate("false or tool.mutates") is True

    def test_bang_binds_tighter_than_equality(self) -> None:
        """!a == b parses as (!a) == b."""
        assert evaluate("!tool.mutates == false") is True

    def test_not_binds_looser_than_equality(self) -> None:
        """not a == b parses as not (a == b)."""
        assert evaluate("not tool.method == 'GET'") is True

    def test_arithmetic_precedence(self) -> None:
        """* binds tighter than +."""
        assert evaluate("1 + 2 * 3") == 7
        assert evaluate("(1 + 2) * 3") == 9
        assert evaluate("-args.count") == -3
        assert evaluate("7 % 4") == 3

    def test_division_by_zero_raises(self) -> None:
        """Division by zero is a runtime error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate("1 / 0")

    def test_overflow_raises(self) -> None:
        """Results too large for a float are a runtime error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate("context.n / 2 > 1", context={"n": 10**400})

    def test_string_concatenation(self) -> None:
        """+ with a string concatenates."""
        assert evaluate("tool.method + ':' + args.count") == "DELETE:3"

    def test_in_operator(self) -> None:
        """in on lists, strings and mappings."""
        assert evaluate("'a' in args.tags") is True
        assert evaluate("'Serv' in tool.name") is True
        assert evaluate("'count' in args") is True


class TestMethods:
    """Tests for whitelisted method calls."""

    def test_match_regex_literal(self) -> None:
        """Regex literal with the i flag."""
        assert compile_expression("tool.name.match(/delete|remove/i)").test(bindings())
        assert not compile_expression("tool.name.match(/^get/)").test(bindings())

    def test_regex_test(self) -> None:
        """/re/.test(value)."""
        assert evaluate("/^DEL/.test(tool.method)") is True

    def test_string_methods(self) -> None:
        """String helpers."""
        assert evaluate("tool.name.startsWith('delete')") is True
        assert evaluate("tool.name.endsWith('Service')") is True
        assert evaluate("tool.name.toLowerCase()") == "deleteservice"
        assert evaluate("tool.method.toUpperCase()") == "DELETE"
        assert evaluate("args.name.trim()") == "Intake Form"
        assert evaluate("tool.name.includes('Serv')") is True

    def test_list_includes(self) -> None:
        """includes() on a list."""
        assert evaluate("args.tags.includes('b')") is True

    def test_method_on_wrong_type_raises(self) -> None:
        """Calling a string method on a number is an error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate("args.count.toLowerCase()")

    def test_division_after_value_is_not_regex(self) -> None:
        """'/' after a value is division."""
        assert evaluate("args.count / 3") == 1


class TestWhitelist:
    """Tests for compile-time rejection."""

    @pytest.mark.parametrize(
        "text",
        [
            "process.exit()",
            "require('fs')",
            "globalThis",
            "this.x",
            "args.__proto__",
            "args.constructor",
            "args['__class__']",
            "tool.name.replace('a', 'b')",
            "args[tool.name]",
            "args.count(1)",
        ],
    )
    def test_rejected(self, text: str) -> None:
        """Anything outside the whitelist fails to compile."""
        with pytest.raises(ExpressionSyntaxError):
            compile_expression(text)

    @pytest.mark.parametrize("text", ["", "   ", "tool.name ==", "(tool.name", "'open", "/open"])
    def test_malformed(self, text: str) -> None:
        """Malformed text fails to compile."""
        with pytest.raises(ExpressionSyntaxError):
            compile_expression(text)

    def test_unknown_root_bindings_invisible(self) -> None:
        """Extra bindings are not reachable."""
        expr = compile_expression("tool.name")
        assert expr.evaluate({"tool": {"name": "x"}, "secret": 1}) == "x"
