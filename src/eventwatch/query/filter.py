"""
Filter expressions for watched queries.

A filter expression selects which records of a source a watcher receives.
Grammar::

    expr     := or_expr
    or_expr  := and_expr ("or" and_expr)*
    and_expr := unary ("and" unary)*
    unary    := "not" unary | atom
    atom     := "*" | "(" expr ")" | field op value
    op       := "=" | "!=" | "<" | "<=" | ">" | ">=" | "~"
    field    := "id" | "record_sequence" | "machine_origin" | "payload." key ("." key)*

Values are quoted strings (single or double quotes), integers, or bare words.
``~`` matches with fnmatch-style globs (``"disk*"``). Ordering operators
require integer values.

Example:
    >>> event_filter = parse_filter("payload.level = error and machine_origin ~ 'web-*'")
    >>> event_filter.matches(record)
    True
"""

from __future__ import annotations

import fnmatch
import math
import numbers
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from eventwatch.events.record import EventRecord

MATCH_ALL = "*"

RECORD_FIELDS: frozenset[str] = frozenset({"id", "record_sequence", "machine_origin"})

_ORDERING_OPS = frozenset({"<", "<=", ">", ">="})

_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<op>!=|<=|>=|=|<|>|~)
      | (?P<paren>[()])
      | (?P<word>[^\s()=!<>~"']+)
    )
    """,
    re.VERBOSE,
)

Predicate = Callable[["EventRecord"], bool]


class FilterSyntaxError(ValueError):
    """Raised when a filter expression cannot be parsed."""

    def __init__(self, expression: str, message: str, position: int | None = None) -> None:
        self.expression = expression
        self.position = position
        where = f" at offset {position}" if position is not None else ""
        super().__init__(f"{message}{where}")


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(expression)
    while pos < length:
        if expression[pos:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(expression, pos)
        if match is None or match.end() == pos:
            raise FilterSyntaxError(expression, f"unexpected character {expression[pos]!r}", pos)
        kind = match.lastgroup or "word"
        text = match.group(kind)
        tokens.append(_Token(kind=kind, text=text, position=match.start(kind)))
        pos = match.end()
    return tokens


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


@dataclass(frozen=True)
class Clause:
    """A single ``field op value`` comparison."""

    field: str
    op: str
    value: str | int

    def evaluate(self, record: EventRecord) -> bool:
        actual = record.field_value(self.field)
        if actual is None:
            return self.op == "!="
        if self.op == "~":
            return fnmatch.fnmatchcase(str(actual), str(self.value))
        if self.op in _ORDERING_OPS:
            left = _as_number(actual)
            if left is None:
                return False
            right = int(self.value)
            if self.op == "<":
                return left < right
            if self.op == "<=":
                return left <= right
            if self.op == ">":
                return left > right
            return left >= right
        equal = _loose_equals(actual, self.value)
        return equal if self.op == "=" else not equal


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _as_number(value: Any) -> int | float | None:
    """
    Read a field value as a number for ordering comparisons.

    Ints stay exact. Floats and numeric strings are accepted, NaN and
    anything non-numeric give None so the comparison is False.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if _is_number(value):
        number = float(value)
    elif isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _loose_equals(actual: Any, expected: str | int) -> bool:
    if isinstance(actual, bool):
        return str(actual).lower() == str(expected).lower()
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    return str(actual) == str(expected)


class _Parser:
    """Recursive-descent parser producing a predicate over records."""

    def __init__(self, expression: str) -> None:
        self._expression = expression
        self._tokens = _tokenize(expression)
        self._index = 0
        self.clauses: list[Clause] = []

    def parse(self) -> Predicate:
        if not self._tokens:
            raise FilterSyntaxError(self._expression, "filter expression is empty")
        predicate = self._or_expr()
        if self._index < len(self._tokens):
            token = self._tokens[self._index]
            raise FilterSyntaxError(
                self._expression, f"unexpected {token.text!r}", token.position
            )
        return predicate

    def _peek(self) -> _Token | None:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def _next(self, expected: str) -> _Token:
        token = self._peek()
        if token is None:
            raise FilterSyntaxError(self._expression, f"expected {expected}, reached end")
        self._index += 1
        return token

    def _is_keyword(self, token: _Token | None, keyword: str) -> bool:
        return token is not None and token.kind == "word" and token.text.lower() == keyword

    def _or_expr(self) -> Predicate:
        parts = [self._and_expr()]
        while self._is_keyword(self._peek(), "or"):
            self._index += 1
            parts.append(self._and_expr())
        if len(parts) == 1:
            return parts[0]
        return lambda record: any(part(record) for part in parts)

    def _and_expr(self) -> Predicate:
        parts = [self._unary()]
        while self._is_keyword(self._peek(), "and"):
            self._index += 1
            parts.append(self._unary())
        if len(parts) == 1:
            return parts[0]
        return lambda record: all(part(record) for part in parts)

    def _unary(self) -> Predicate:
        if self._is_keyword(self._peek(), "not"):
            self._index += 1
            inner = self._unary()
            return lambda record: not inner(record)
        return self._atom()

    def _atom(self) -> Predicate:
        token = self._next("a clause")
        if token.kind == "word" and token.text == MATCH_ALL:
            return lambda record: True
        if token.kind == "paren" and token.text == "(":
            inner = self._or_expr()
            closing = self._next("')'")
            if closing.text != ")":
                raise FilterSyntaxError(self._expression, "expected ')'", closing.position)
            return inner
        if token.kind != "word" or token.text.lower() in ("and", "or", "not"):
            raise FilterSyntaxError(
                self._expression, f"expected a field name, got {token.text!r}", token.position
            )
        clause = self._clause(token)
        self.clauses.append(clause)
        return clause.evaluate

    def _clause(self, field_token: _Token) -> Clause:
        name = field_token.text
        if name not in RECORD_FIELDS and not _is_payload_path(name):
            raise FilterSyntaxError(
                self._expression,
                f"unknown field {name!r}; use one of {sorted(RECORD_FIELDS)} or payload.<key>",
                field_token.position,
            )
        op_token = self._next("an operator")
        if op_token.kind != "op":
            raise FilterSyntaxError(
                self._expression, f"expected an operator after {name!r}", op_token.position
            )
        value_token = self._next("a value")
        if value_token.kind == "string":
            value: str | int = _unquote(value_token.text)
        elif value_token.kind == "word":
            value = _coerce_word(value_token.text)
        else:
            raise FilterSyntaxError(
                self._expression, f"expected a value, got {value_token.text!r}", value_token.position
            )
        if op_token.text in _ORDERING_OPS and not isinstance(value, int):
            raise FilterSyntaxError(
                self._expression,
                f"operator {op_token.text!r} requires an integer value",
                value_token.position,
            )
        return Clause(field=name, op=op_token.text, value=value)


def _is_payload_path(name: str) -> bool:
    parts = name.split(".")
    return len(parts) >= 2 and parts[0] == "payload" and all(parts[1:])


def _coerce_word(text: str) -> str | int:
    try:
        return int(text)
    except ValueError:
        return text


@dataclass
class FilterStats:
    """
    Statistics for record filtering.

    Attributes:
        records_evaluated: Total records checked against the filter
        records_matched: Records that passed the filter
        records_skipped: Records that were filtered out
    """

    records_evaluated: int = 0
    records_matched: int = 0
    records_skipped: int = 0

    @property
    def match_rate(self) -> float:
        if self.records_evaluated == 0:
            return 1.0
        return self.records_matched / self.records_evaluated

    def to_dict(self) -> dict[str, int | float]:
        """Convert to dictionary for serialization."""
        return {
            "records_evaluated": self.records_evaluated,
            "records_matched": self.records_matched,
            "records_skipped": self.records_skipped,
            "match_rate": round(self.match_rate, 4),
        }


@dataclass
class EventFilter:
    """
    A compiled filter expression.

    Attributes:
        expression: Source text of the filter
        clauses: Comparisons found in the expression, in source order
    """

    expression: str
    clauses: tuple[Clause, ...] = ()
    _predicate: Predicate = field(default=lambda record: True, repr=False)
    _stats: FilterStats = field(default_factory=FilterStats, init=False, repr=False)

    @property
    def matches_everything(self) -> bool:
        """True for the ``*`` filter."""
        return self.expression.strip() == MATCH_ALL

    @property
    def stats(self) -> FilterStats:
        return self._stats

    def matches(self, record: EventRecord) -> bool:
        """Check whether a record passes the filter."""
        matched = self._predicate(record)
        self._stats.records_evaluated += 1
        if matched:
            self._stats.records_matched += 1
        else:
            self._stats.records_skipped += 1
        return matched


def parse_filter(expression: str) -> EventFilter:
    """
    Parse and compile a filter expression.

    Args:
        expression: Filter source text

    Returns:
        Compiled EventFilter

    Raises:
        FilterSyntaxError: If the expression is not well formed
    """
    if not isinstance(expression, str):
        raise FilterSyntaxError(str(expression), "filter expression must be a string")
    parser = _Parser(expression)
    predicate = parser.parse()
    return EventFilter(expression=expression, clauses=tuple(parser.clauses), _predicate=predicate)


__all__ = [
    "MATCH_ALL",
    "RECORD_FIELDS",
    "Clause",
    "EventFilter",
    "FilterStats",
    "FilterSyntaxError",
    "parse_filter",
]
