"""
Numeric formula language used by rule values.

Rule values may be plain numbers or strings such as::

    max(@actor.system.proficiencies.defenses.medium.rank, 1)
    ternary(gte(@actor.level,13),min(@actor.system.proficiencies.defenses.unarmored.rank,2),1)
    @actor.level + clamp(-2, floor((@actor.level - 7) / 2), 0)

Formulas are parsed once into a small expression tree and evaluated
against a reference resolver. Malformed text, unknown functions and
unresolvable references all evaluate to 0; nothing here raises to the
caller.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

logger = logging.getLogger("pf2e-engine.rules")

Resolver = Callable[[str], float]

TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+(?:\.\d+)?)"
    r"|(?P<ref>@[A-Za-z_][\w.]*)"
    r"|(?P<name>[A-Za-z_]\w*)"
    r"|(?P<op>[-+*/(),])"
    r")"
)


class FormulaError(ValueError):
    """Raised internally for malformed formula text."""


# ----- Expression tree -----

@dataclass(frozen=True)
class Number:
    value: float

    def evaluate(self, resolve: Resolver) -> float:
        return self.value


@dataclass(frozen=True)
class Reference:
    path: str  # without the leading "@"

    def evaluate(self, resolve: Resolver) -> float:
        try:
            value = resolve(self.path)
        except (KeyError, TypeError, ValueError):
            return 0
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Expr"

    def evaluate(self, resolve: Resolver) -> float:
        value = self.operand.evaluate(resolve)
        return -value if self.op == "-" else value


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"

    def evaluate(self, resolve: Resolver) -> float:
        a = self.left.evaluate(resolve)
        b = self.right.evaluate(resolve)
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        if b == 0:
            return 0
        return a / b


def _clamp(*args: float) -> float:
    # median of the three, so either argument order works
    if len(args) != 3:
        return 0
    return sorted(args)[1]


def _ternary(*args: float) -> float:
    if len(args) != 3:
        return 0
    return args[1] if args[0] else args[2]


def _compare(test: Callable[[float, float], bool]) -> Callable[..., float]:
    def compare(*args: float) -> float:
        if len(args) != 2:
            return 0
        return 1 if test(args[0], args[1]) else 0
    return compare


FUNCTIONS: dict[str, Callable[..., float]] = {
    "max": lambda *args: max(args) if args else 0,
    "min": lambda *args: min(args) if args else 0,
    "floor": lambda *args: math.floor(args[0]) if len(args) == 1 else 0,
    "ceil": lambda *args: math.ceil(args[0]) if len(args) == 1 else 0,
    "abs": lambda *args: abs(args[0]) if len(args) == 1 else 0,
    "clamp": _clamp,
    "ternary": _ternary,
    "gte": _compare(lambda a, b: a >= b),
    "gt": _compare(lambda a, b: a > b),
    "lte": _compare(lambda a, b: a <= b),
    "lt": _compare(lambda a, b: a < b),
    "eq": _compare(lambda a, b: a == b),
}


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple["Expr", ...]

    def evaluate(self, resolve: Resolver) -> float:
        func = FUNCTIONS.get(self.name)
        if func is None:
            return 0
        return func(*(arg.evaluate(resolve) for arg in self.args))


Expr = Number | Reference | UnaryOp | BinaryOp | Call


# ----- Parser -----

def tokenize(text: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = TOKEN_RE.match(text, pos)
        if not match or match.end() == pos:
            raise FormulaError(f"Unexpected character at {pos}: {text[pos:pos + 10]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive descent over the token list.

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := "-" unary | primary
    primary := number | ref | name "(" [expr ("," expr)*] ")" | "(" expr ")"
    """

    def __init__(self, tokens: list[tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise FormulaError("Unexpected end of formula")
        self.pos += 1
        return token

    def expect(self, op: str) -> None:
        kind, value = self.take()
        if kind != "op" or value != op:
            raise FormulaError(f"Expected '{op}', got '{value}'")

    def parse(self) -> Expr:
        expr = self.expr()
        if self.peek() is not None:
            raise FormulaError(f"Unexpected trailing token '{self.peek()[1]}'")
        return expr

    def expr(self) -> Expr:
        node = self.term()
        while (token := self.peek()) is not None and token in (("op", "+"), ("op", "-")):
            self.take()
            node = BinaryOp(token[1], node, self.term())
        return node

    def term(self) -> Expr:
        node = self.unary()
        while (token := self.peek()) is not None and token in (("op", "*"), ("op", "/")):
            self.take()
            node = BinaryOp(token[1], node, self.unary())
        return node

    def unary(self) -> Expr:
        token = self.peek()
        if token in (("op", "-"), ("op", "+")):
            self.take()
            return UnaryOp(token[1], self.unary())
        return self.primary()

    def primary(self) -> Expr:
        kind, value = self.take()
        if kind == "number":
            return Number(float(value) if "." in value else int(value))
        if kind == "ref":
            return Reference(value[1:])
        if kind == "name":
            if self.peek() != ("op", "("):
                # bare identifiers carry no value
                return Number(0)
            self.take()
            args: list[Expr] = []
            if self.peek() != ("op", ")"):
                args.append(self.expr())
                while self.peek() == ("op", ","):
                    self.take()
                    args.append(self.expr())
            self.expect(")")
            return Call(value.lower(), tuple(args))
        if (kind, value) == ("op", "("):
            node = self.expr()
            self.expect(")")
            return node
        raise FormulaError(f"Unexpected token '{value}'")


@lru_cache(maxsize=1024)
def parse_formula(text: str) -> Expr:
    """Parse formula text; malformed text parses to the constant 0."""
    try:
        return _Parser(tokenize(text)).parse()
    except FormulaError as e:
        logger.debug(f"Malformed formula {text!r}: {e}")
        return Number(0)
    except RecursionError:
        logger.debug(f"Formula nested too deeply: {text[:40]!r}...")
        return Number(0)


def compile_value(value) -> Expr:
    """Turn a raw rule value (number, numeric string or formula) into an expression."""
    if isinstance(value, bool):
        return Number(int(value))
    if isinstance(value, (int, float)):
        return Number(value)
    if isinstance(value, str):
        return parse_formula(value.strip())
    return Number(0)


def evaluate_formula(value, resolve: Resolver) -> int:
    """Evaluate a raw value or parsed expression to an int (rounded down)."""
    expr = value if isinstance(value, (Number, Reference, UnaryOp, BinaryOp, Call)) else compile_value(value)
    try:
        result = expr.evaluate(resolve)
    except RecursionError:
        logger.debug("Formula nested too deeply to evaluate")
        return 0
    try:
        return math.floor(result)
    except (OverflowError, ValueError):
        return 0
