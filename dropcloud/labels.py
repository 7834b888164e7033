"""Label expressions.

A template advertises a whitespace separated set of labels. A demand names
either a single label or a boolean expression over labels:

    linux
    linux && docker
    (linux || mac) && !arm64

``matches`` is the default ``LabelMatcher`` used by ``DropletCloud``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

from dropcloud.exceptions import LabelExpressionError

_TOKEN = re.compile(r"\s*(&&|\|\||!|\(|\)|[^\s&|!()]+)")


def parse_label_set(labels: str | Iterable[str] | None) -> frozenset[str]:
    if labels is None:
        return frozenset()
    if isinstance(labels, str):
        return frozenset(labels.split())
    return frozenset(label for label in labels if label)


# =============================================================================
# Expression tree
# =============================================================================


@dataclass(frozen=True, slots=True)
class Atom:
    label: str


@dataclass(frozen=True, slots=True)
class Not:
    operand: Expr


@dataclass(frozen=True, slots=True)
class And:
    left: Expr
    right: Expr


@dataclass(frozen=True, slots=True)
class Or:
    left: Expr
    right: Expr


type Expr = Atom | Not | And | Or


def evaluate(expr: Expr, labels: frozenset[str]) -> bool:
    match expr:
        case Atom(label=label):
            return label in labels
        case Not(operand=operand):
            return not evaluate(operand, labels)
        case And(left=left, right=right):
            return evaluate(left, labels) and evaluate(right, labels)
        case Or(left=left, right=right):
            return evaluate(left, labels) or evaluate(right, labels)


# =============================================================================
# Parser
# =============================================================================


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN.match(text, pos)
        if m is None:
            raise LabelExpressionError(f"Invalid label expression: {text!r}")
        tokens.append(m.group(1))
        pos = m.end()
    return tokens


class _Parser:
    """Recursive descent: or -> and ('||' and)*, and -> unary ('&&' unary)*."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        tok = self._peek()
        if tok is None:
            raise LabelExpressionError(f"Unexpected end of label expression: {self.text!r}")
        self.pos += 1
        return tok

    def parse(self) -> Expr:
        expr = self._or()
        if self._peek() is not None:
            raise LabelExpressionError(f"Unexpected '{self._peek()}' in label expression: {self.text!r}")
        return expr

    def _or(self) -> Expr:
        expr = self._and()
        while self._peek() == "||":
            self._next()
            expr = Or(expr, self._and())
        return expr

    def _and(self) -> Expr:
        expr = self._unary()
        while self._peek() == "&&":
            self._next()
            expr = And(expr, self._unary())
        return expr

    def _unary(self) -> Expr:
        tok = self._next()
        match tok:
            case "!":
                return Not(self._unary())
            case "(":
                expr = self._or()
                if self._next() != ")":
                    raise LabelExpressionError(f"Unbalanced parentheses in label expression: {self.text!r}")
                return expr
            case "&&" | "||" | ")":
                raise LabelExpressionError(f"Unexpected '{tok}' in label expression: {self.text!r}")
            case _:
                return Atom(tok)


@lru_cache(maxsize=256)
def parse_expression(text: str) -> Expr:
    return _Parser(text).parse()


def matches(expression: str, labels: frozenset[str]) -> bool:
    """Whether a label set satisfies a label expression.

    A blank expression matches every label set.

    Raises:
        LabelExpressionError: If the expression is malformed.
    """
    if not expression.strip():
        return True
    return evaluate(parse_expression(expression), labels)


__all__ = ["Expr", "evaluate", "matches", "parse_expression", "parse_label_set"]
