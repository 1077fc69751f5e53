"""Tokenizer and recursive-descent parser for the query grammar.

Supported shape, keywords case-insensitive::

    SELECT <columns> FROM <source>
        [WHERE <cond> [AND|OR <cond>]...]
        [GROUP BY <expr>, ...]
        [ORDER BY <expr> [ASC|DESC], ...]
        [LIMIT n [OFFSET m]] [;]

``OR`` is accepted but evaluated as ``AND``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from health_export.core.errors import InvalidQueryError
from health_export.data.parsing import coerce_cell, try_parse_timestamp
from health_export.query.models import (
    Aggregate,
    AggregateKind,
    ColumnExpr,
    Field,
    Operator,
    OrderBy,
    ParsedQuery,
    QueryFilter,
    SortDirection,
    Star,
    TimeBucket,
    TimeUnit,
)

KEYWORDS = frozenset(
    {
        "SELECT", "FROM", "WHERE", "GROUP", "ORDER", "BY", "LIMIT", "OFFSET",
        "AND", "OR", "AS", "ASC", "DESC", "LIKE", "IN", "IS", "NOT", "NULL",
    }
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<quoted>`[^`]*`|"[^"]*")
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)(?![^\s,()*;=!<>])
  | (?P<op>!=|<>|>=|<=|=|>|<)
  | (?P<punct>[,()*;])
  | (?P<word>[^\s,()*;=!<>`"']+)
    """,
    re.VERBOSE,
)

_CLAUSE_ENDS = frozenset({"GROUP", "ORDER", "LIMIT", "OFFSET"})


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int

    @property
    def keyword(self) -> str | None:
        if self.kind == "word" and self.text.upper() in KEYWORDS:
            return self.text.upper()
        return None


def tokenize(query: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(query):
        match = _TOKEN_RE.match(query, pos)
        if match is None:
            raise InvalidQueryError(
                f"Unexpected character {query[pos]!r} at position {pos}", details=query
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


def coerce_literal(text: str, tz: tzinfo) -> Any:
    """Numeric text -> number, date-like text -> aware datetime, else the text."""
    number = coerce_cell(text.strip())
    if isinstance(number, int | float):
        return number
    parsed: datetime | None = try_parse_timestamp(text, tz)
    if parsed is not None:
        return parsed
    return text


class _Parser:
    def __init__(self, query: str, tz: tzinfo) -> None:
        self.query = query
        self.tz = tz
        self.tokens = tokenize(query)
        self.index = 0

    # -- token helpers ---------------------------------------------------

    def _peek(self, offset: int = 0) -> Token | None:
        idx = self.index + offset
        return self.tokens[idx] if idx < len(self.tokens) else None

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _at_keyword(self, *names: str) -> bool:
        token = self._peek()
        return token is not None and token.keyword in names

    def _at_punct(self, text: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "punct" and token.text == text

    def _expect_keyword(self, name: str, clause: str) -> None:
        if not self._at_keyword(name):
            raise self._error(f"Expected {name} in {clause} clause")
        self._advance()

    def _expect_punct(self, text: str, clause: str) -> None:
        if not self._at_punct(text):
            raise self._error(f"Expected '{text}' in {clause} clause")
        self._advance()

    def _has_keyword(self, name: str) -> bool:
        return any(token.keyword == name for token in self.tokens)

    def _error(self, message: str) -> InvalidQueryError:
        token = self._peek()
        where = f" near {token.text!r}" if token is not None else " at end of query"
        return InvalidQueryError(message + where, details=self.query)

    # -- grammar ---------------------------------------------------------

    def parse(self) -> ParsedQuery:
        if not self._at_keyword("SELECT"):
            raise InvalidQueryError("Missing SELECT clause", details=self.query)
        self._advance()
        if self._at_keyword("FROM") or self._peek() is None:
            raise InvalidQueryError("Missing SELECT clause columns", details=self.query)
        select = self._select_list()

        if not self._at_keyword("FROM"):
            if not self._has_keyword("FROM"):
                raise InvalidQueryError("Missing FROM clause", details=self.query)
            raise self._error("Malformed SELECT clause")
        self._advance()
        source = self._name()
        if source is None:
            raise InvalidQueryError("Missing FROM clause source", details=self.query)

        where: list[QueryFilter] = []
        if self._at_keyword("WHERE"):
            self._advance()
            where = self._conditions()

        group_by: list[ColumnExpr] = []
        if self._at_keyword("GROUP"):
            self._advance()
            self._expect_keyword("BY", "GROUP BY")
            group_by = self._expr_list("GROUP BY")

        order_by: list[OrderBy] = []
        if self._at_keyword("ORDER"):
            self._advance()
            self._expect_keyword("BY", "ORDER BY")
            order_by = self._order_list()

        limit: int | None = None
        offset: int | None = None
        if self._at_keyword("LIMIT"):
            self._advance()
            limit = self._integer("LIMIT")
            offset = 0
            if self._at_keyword("OFFSET"):
                self._advance()
                offset = self._integer("OFFSET")

        if self._at_punct(";"):
            self._advance()
        if self._peek() is not None:
            raise self._error("Unexpected token")

        return ParsedQuery(
            select=tuple(select),
            source=source,
            where=tuple(where),
            group_by=tuple(_resolve_aliases(group_by, select)),
            order_by=tuple(order_by),
            limit=limit,
            offset=offset,
        )

    def _name(self) -> str | None:
        """A quoted identifier, or bare words joined by spaces.

        A parenthesised group after a word is part of the name, so export
        headers such as ``Step Count (steps)`` parse unquoted.
        """
        token = self._peek()
        if token is None:
            return None
        if token.kind == "quoted":
            self._advance()
            return token.text[1:-1]
        words: list[str] = []
        while True:
            token = self._peek()
            if words and token is not None and token.kind == "punct" and token.text == "(":
                words.append(self._group())
                continue
            if token is None or token.kind not in ("word", "number"):
                break
            if token.keyword is not None:
                break
            words.append(self._advance().text)
        return " ".join(words) if words else None

    def _group(self) -> str:
        start = self._advance()
        depth = 1
        while depth:
            token = self._peek()
            if token is None:
                raise self._error("Unbalanced parentheses in column name")
            if token.kind == "punct" and token.text in "()":
                depth += 1 if token.text == "(" else -1
            end = self._advance()
        return self.query[start.pos : end.pos + len(end.text)]

    def _expr(self, clause: str) -> ColumnExpr:
        token = self._peek()
        if token is None:
            raise self._error(f"Missing expression in {clause} clause")
        if token.kind == "punct" and token.text == "*":
            self._advance()
            return Star()

        nxt = self._peek(1)
        if token.kind == "word" and nxt is not None and nxt.kind == "punct" and nxt.text == "(":
            func = token.text.upper()
            if func in AggregateKind.__members__:
                self._advance()
                self._advance()
                if func == AggregateKind.COUNT and self._at_punct("*"):
                    self._advance()
                    arg = "*"
                else:
                    arg = self._required_name(clause)
                self._expect_punct(")", clause)
                return Aggregate(kind=AggregateKind(func), field=arg)
            if func in TimeUnit.__members__:
                self._advance()
                self._advance()
                arg = self._required_name(clause)
                self._expect_punct(")", clause)
                return TimeBucket(unit=TimeUnit(func), column=arg)
            if nxt.pos == token.pos + len(token.text):
                raise self._error(f"Unsupported function {token.text}")

        return Field(name=self._required_name(clause))

    def _required_name(self, clause: str) -> str:
        name = self._name()
        if name is None:
            raise self._error(f"Missing column name in {clause} clause")
        return name

    def _alias(self, clause: str) -> str | None:
        if not self._at_keyword("AS"):
            return None
        self._advance()
        return self._required_name(clause)

    def _select_list(self) -> list[ColumnExpr]:
        columns: list[ColumnExpr] = []
        while True:
            expr = self._expr("SELECT")
            alias = self._alias("SELECT")
            if alias is not None and not isinstance(expr, Star):
                expr = _with_alias(expr, alias)
            columns.append(expr)
            if not self._at_punct(","):
                return columns
            self._advance()

    def _expr_list(self, clause: str) -> list[ColumnExpr]:
        exprs = [self._expr(clause)]
        while self._at_punct(","):
            self._advance()
            exprs.append(self._expr(clause))
        return exprs

    def _order_list(self) -> list[OrderBy]:
        items: list[OrderBy] = []
        while True:
            expr = self._expr("ORDER BY")
            direction = SortDirection.ASC
            if self._at_keyword("ASC", "DESC"):
                direction = SortDirection(self._advance().text.upper())
            items.append(OrderBy(expr=expr, direction=direction))
            if not self._at_punct(","):
                return items
            self._advance()

    def _integer(self, clause: str) -> int:
        token = self._peek()
        if token is None or token.kind != "number" or not token.text.isdigit():
            raise self._error(f"{clause} expects a non-negative integer")
        self._advance()
        return int(token.text)

    # -- WHERE -----------------------------------------------------------

    def _conditions(self) -> list[QueryFilter]:
        conditions = [self._condition()]
        while self._at_keyword("AND", "OR"):
            self._advance()
            conditions.append(self._condition())
        return conditions

    def _condition(self) -> QueryFilter:
        target = self._expr("WHERE")
        if isinstance(target, Star | Aggregate):
            raise self._error("Unsupported WHERE operand")
        column = target.expression

        if self._at_keyword("IS"):
            self._advance()
            if self._at_keyword("NOT"):
                self._advance()
                self._expect_keyword("NULL", "WHERE")
                return QueryFilter(column, Operator.IS_NOT_NULL, None)
            self._expect_keyword("NULL", "WHERE")
            return QueryFilter(column, Operator.IS_NULL, None)

        if self._at_keyword("IN"):
            self._advance()
            self._expect_punct("(", "WHERE")
            items = [self._literal()]
            while self._at_punct(","):
                self._advance()
                items.append(self._literal())
            self._expect_punct(")", "WHERE")
            return QueryFilter(column, Operator.IN, tuple(items))

        if self._at_keyword("LIKE"):
            self._advance()
            return QueryFilter(column, Operator.LIKE, self._literal_text())

        token = self._peek()
        if token is None or token.kind != "op":
            raise self._error("Missing operator in WHERE condition")
        self._advance()
        operator = Operator.NE if token.text == "<>" else Operator(token.text)
        return QueryFilter(column, operator, self._literal())

    def _literal_text(self) -> str:
        token = self._peek()
        if token is None:
            raise self._error("Missing value in WHERE condition")
        if token.kind == "string":
            self._advance()
            return token.text[1:-1].replace("''", "'")
        if token.kind == "quoted":
            self._advance()
            return token.text[1:-1]
        parts: list[str] = []
        while True:
            token = self._peek()
            if token is None or token.kind not in ("word", "number"):
                break
            if token.keyword in {"AND", "OR"} | _CLAUSE_ENDS:
                break
            parts.append(self._advance().text)
        if not parts:
            raise self._error("Missing value in WHERE condition")
        return " ".join(parts)

    def _literal(self) -> Any:
        if self._at_keyword("NULL"):
            self._advance()
            return None
        return coerce_literal(self._literal_text(), self.tz)


def _with_alias(expr: ColumnExpr, alias: str) -> ColumnExpr:
    if isinstance(expr, Field):
        return Field(name=expr.name, alias=alias)
    if isinstance(expr, Aggregate):
        return Aggregate(kind=expr.kind, field=expr.field, alias=alias)
    if isinstance(expr, TimeBucket):
        return TimeBucket(unit=expr.unit, column=expr.column, alias=alias)
    return expr


def _resolve_aliases(group_by: list[ColumnExpr], select: list[ColumnExpr]) -> list[ColumnExpr]:
    """``GROUP BY day`` where ``day`` aliases a selected bucket groups by that bucket."""
    aliases = {
        col.alias: col
        for col in select
        if isinstance(col, Field | TimeBucket) and col.alias is not None
    }
    resolved: list[ColumnExpr] = []
    for expr in group_by:
        target = aliases.get(expr.name) if isinstance(expr, Field) else None
        if isinstance(target, TimeBucket):
            resolved.append(TimeBucket(unit=target.unit, column=target.column))
        elif isinstance(target, Field):
            resolved.append(Field(name=target.name))
        else:
            resolved.append(expr)
    return resolved


def parse_query(query: str, tz: tzinfo | None = None) -> ParsedQuery:
    """Parse a query string into a :class:`ParsedQuery`.

    Raises:
        InvalidQueryError: the text does not match the grammar.
    """
    return _Parser(query.strip(), tz or ZoneInfo("UTC")).parse()
