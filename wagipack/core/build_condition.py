"""构建条件表达式

清单中每个条目可带一个 condition，决定该条目是否参与本次构建:

    $env == 'prod'
    $target != 'wasm32-wasi'

语法:
    TERM WS OP WS TERM
    TERM  = '$' IDENT | "'" VALUE "'"
    IDENT = 字母开头，后接字母/数字/下划线
    VALUE = 字母/数字/下划线/'-'/'.'，可为空
    OP    = '==' | '!='
    WS    = 零或多个空格

求值时 $IDENT 从调用方传入的取值表中查找，找不到视为"缺失"；
两个缺失值相等。无 condition 的条目总是参与构建。
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Union

from wagipack.core.exceptions import ConditionSyntaxError

_END_OF_CONDITION = "unexpected end of condition"


# =========================================================================
# 表达式模型
# =========================================================================


@dataclass(frozen=True)
class LiteralTerm:
    """字面量 'value'"""

    value: str

    def evaluate(self, values: Mapping[str, str]) -> str | None:
        return self.value

    def __str__(self) -> str:
        return f"'{self.value}'"


@dataclass(frozen=True)
class ValueRefTerm:
    """变量引用 $name"""

    name: str

    def evaluate(self, values: Mapping[str, str]) -> str | None:
        return values.get(self.name)

    def __str__(self) -> str:
        return f"${self.name}"


Term = Union[LiteralTerm, ValueRefTerm]


def _refs_of(*terms: Term) -> set[str]:
    return {t.name for t in terms if isinstance(t, ValueRefTerm)}


@dataclass(frozen=True)
class NoCondition:
    """未声明条件，总是构建"""

    def should_build(self, values: Mapping[str, str]) -> bool:
        return True

    def value_refs(self) -> set[str]:
        return set()

    def __str__(self) -> str:
        return ""


@dataclass(frozen=True)
class Equal:
    left: Term
    right: Term

    def should_build(self, values: Mapping[str, str]) -> bool:
        return self.left.evaluate(values) == self.right.evaluate(values)

    def value_refs(self) -> set[str]:
        return _refs_of(self.left, self.right)

    def __str__(self) -> str:
        return f"{self.left} == {self.right}"


@dataclass(frozen=True)
class Unequal:
    left: Term
    right: Term

    def should_build(self, values: Mapping[str, str]) -> bool:
        return self.left.evaluate(values) != self.right.evaluate(values)

    def value_refs(self) -> set[str]:
        return _refs_of(self.left, self.right)

    def __str__(self) -> str:
        return f"{self.left} != {self.right}"


BuildCondition = Union[NoCondition, Equal, Unequal]

ALWAYS = NoCondition()


def should_build(condition: BuildCondition, values: Mapping[str, str]) -> bool:
    """判断条件在给定取值表下是否成立"""
    return condition.should_build(values)


# =========================================================================
# 解析
# =========================================================================


def _is_ident_start(c: str) -> bool:
    return c.isascii() and c.isalpha()


def _is_ident_char(c: str) -> bool:
    return (c.isascii() and c.isalnum()) or c == "_"


def _is_value_char(c: str) -> bool:
    return _is_ident_char(c) or c in "-."


class _Parser:
    """手写递归下降解析器，出错时记录字符偏移"""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def fail(self, pos: int) -> ConditionSyntaxError:
        rest = self.text[pos:].split(" ")[0]
        problem = f'unexpected text "{rest}"' if rest else _END_OF_CONDITION
        return ConditionSyntaxError(self.text, pos, problem)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_spaces(self) -> None:
        while self.peek() == " ":
            self.pos += 1

    def take_while(self, pred: Callable[[str], bool]) -> str:
        start = self.pos
        while self.pos < len(self.text) and pred(self.text[self.pos]):
            self.pos += 1
        return self.text[start:self.pos]

    def term(self) -> Term:
        start = self.pos
        c = self.peek()
        if c == "$":
            self.pos += 1
            if not _is_ident_start(self.peek()):
                # 与字面量分支一样，报告在 term 起始处
                raise self.fail(start)
            return ValueRefTerm(self.take_while(_is_ident_char))
        if c == "'":
            self.pos += 1
            value = self.take_while(_is_value_char)
            if self.peek() != "'":
                raise self.fail(self.pos)
            self.pos += 1
            return LiteralTerm(value)
        raise self.fail(start)

    def operator(self) -> type[Equal] | type[Unequal]:
        op = self.text[self.pos:self.pos + 2]
        if op == "==":
            self.pos += 2
            return Equal
        if op == "!=":
            self.pos += 2
            return Unequal
        raise self.fail(self.pos)

    def expression(self) -> BuildCondition:
        left = self.term()
        self.skip_spaces()
        op = self.operator()
        self.skip_spaces()
        right = self.term()
        self.skip_spaces()
        if self.pos != len(self.text):
            raise self.fail(self.pos)
        return op(left, right)


def parse_condition(text: str | None) -> BuildCondition:
    """解析 condition 文本，None 表示无条件

    Raises:
        ConditionSyntaxError: 文本不符合语法
    """
    if text is None:
        return ALWAYS
    return _Parser(text).expression()
