"""构建条件解析与求值测试"""

from __future__ import annotations

import pytest

from wagipack.core.build_condition import (
    ALWAYS,
    Equal,
    LiteralTerm,
    Unequal,
    ValueRefTerm,
    parse_condition,
    should_build,
)
from wagipack.core.exceptions import ConditionSyntaxError, ManifestError


class TestParse:
    def test_none_is_always(self) -> None:
        assert parse_condition(None) is ALWAYS

    def test_equal_ref_and_literal(self) -> None:
        cond = parse_condition("$env == 'prod'")
        assert cond == Equal(ValueRefTerm("env"), LiteralTerm("prod"))

    def test_unequal_without_spaces(self) -> None:
        cond = parse_condition("'a'!=$target_2")
        assert cond == Unequal(LiteralTerm("a"), ValueRefTerm("target_2"))

    def test_literal_allows_dash_dot_and_empty(self) -> None:
        assert parse_condition("$t == 'wasm32-wasi.1'").right == LiteralTerm("wasm32-wasi.1")
        assert parse_condition("$t == ''").right == LiteralTerm("")

    def test_trailing_spaces_allowed(self) -> None:
        assert parse_condition("$a == $b   ") == Equal(ValueRefTerm("a"), ValueRefTerm("b"))

    def test_str_round_trip(self) -> None:
        text = "$env != 'dev'"
        assert str(parse_condition(text)) == text
        assert parse_condition(str(parse_condition(text))) == parse_condition(text)


class TestParseErrors:
    def test_single_equals_points_at_operator(self) -> None:
        with pytest.raises(ConditionSyntaxError) as exc_info:
            parse_condition("$env = 'prod'")
        err = exc_info.value
        assert err.offset == 5
        assert err.problem == 'unexpected text "="'
        assert err.diagnostic == "    $env = 'prod'\n         ^-- here"

    def test_unterminated_literal_is_end_of_condition(self) -> None:
        with pytest.raises(ConditionSyntaxError, match="unexpected end of condition") as exc_info:
            parse_condition("$env == 'prod")
        assert exc_info.value.offset == len("$env == 'prod")

    def test_trailing_text_rejected(self) -> None:
        with pytest.raises(ConditionSyntaxError, match='unexpected text "extra"') as exc_info:
            parse_condition("$env == 'prod' extra")
        assert exc_info.value.offset == 15

    def test_bad_identifier_reported_at_term_start(self) -> None:
        with pytest.raises(ConditionSyntaxError) as exc_info:
            parse_condition("$1x == 'a'")
        assert exc_info.value.offset == 0
        assert exc_info.value.problem == 'unexpected text "$1x"'

    def test_empty_text_is_error(self) -> None:
        with pytest.raises(ConditionSyntaxError, match="unexpected end of condition"):
            parse_condition("")

    def test_is_manifest_error(self) -> None:
        with pytest.raises(ManifestError, match="典型格式"):
            parse_condition("env == 'prod'")

    def test_with_context_keeps_position(self) -> None:
        err = ConditionSyntaxError("$x", 2, "unexpected end of condition")
        wrapped = err.with_context("[[handler]] (route /)")
        assert wrapped.offset == 2
        assert str(wrapped).startswith("[[handler]] (route /): ")


class TestEvaluate:
    def test_no_condition_always_builds(self) -> None:
        assert should_build(ALWAYS, {})
        assert ALWAYS.value_refs() == set()

    def test_equal_against_values(self) -> None:
        cond = parse_condition("$env == 'prod'")
        assert should_build(cond, {"env": "prod"})
        assert not should_build(cond, {"env": "dev"})
        assert not should_build(cond, {})

    def test_unequal_missing_value_builds(self) -> None:
        cond = parse_condition("$env != 'prod'")
        assert cond.should_build({})
        assert not cond.should_build({"env": "prod"})

    def test_two_missing_values_are_equal(self) -> None:
        assert parse_condition("$a == $b").should_build({})
        assert not parse_condition("$a == $b").should_build({"a": "1"})

    def test_value_refs(self) -> None:
        assert parse_condition("$a == $b").value_refs() == {"a", "b"}
        assert parse_condition("'x' != $b").value_refs() == {"b"}
