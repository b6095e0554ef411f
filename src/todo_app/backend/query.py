from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Literal, Optional, Tuple

Op = Literal["eq", "neq", "gt", "gte", "lt", "lte"]

Row = Dict[str, Any]


@dataclass(frozen=True)
class Filter:
    column: str
    op: Op
    value: Any


@dataclass(frozen=True)
class TextMatch:
    """Case-insensitive 'column contains term' predicate."""

    column: str
    term: str


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Query:
    """
    Immutable description of a row selection against one table.

    Every builder method returns a new Query, so partially built queries can
    be shared safely. Semantics:
    - filters are ANDed together
    - any_of is a single OR group of TextMatch predicates (ignored when empty)
    - orders are applied left to right
    - offset/limit select the page; limit=None means no limit
    - count asks the store for the exact number of matching rows
    """

    table: str
    filters: Tuple[Filter, ...] = ()
    any_of: Tuple[TextMatch, ...] = ()
    orders: Tuple[Order, ...] = ()
    offset: int = 0
    limit: Optional[int] = None
    count: bool = False

    def _where(self, column: str, op: Op, value: Any) -> "Query":
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    def eq(self, column: str, value: Any) -> "Query":
        return self._where(column, "eq", value)

    def neq(self, column: str, value: Any) -> "Query":
        return self._where(column, "neq", value)

    def gt(self, column: str, value: Any) -> "Query":
        return self._where(column, "gt", value)

    def gte(self, column: str, value: Any) -> "Query":
        return self._where(column, "gte", value)

    def lt(self, column: str, value: Any) -> "Query":
        return self._where(column, "lt", value)

    def lte(self, column: str, value: Any) -> "Query":
        return self._where(column, "lte", value)

    def ilike_any(self, columns: Iterable[str], term: str) -> "Query":
        return replace(self, any_of=tuple(TextMatch(c, term) for c in columns))

    def order(self, column: str, *, ascending: bool = True) -> "Query":
        return replace(self, orders=self.orders + (Order(column, ascending),))

    def range(self, start: int, end: int) -> "Query":
        """Select rows start..end inclusive (zero-indexed)."""
        return replace(self, offset=max(start, 0), limit=max(end - start + 1, 0))

    def with_count(self) -> "Query":
        return replace(self, count=True)

    def has_filter(self, column: str, op: Op = "eq") -> bool:
        return any(f.column == column and f.op == op and f.value is not None for f in self.filters)


@dataclass(frozen=True)
class QueryResult:
    rows: list = field(default_factory=list)
    count: Optional[int] = None


def _compare(op: Op, left: Any, right: Any) -> bool:
    # SQL semantics: any comparison involving NULL is false
    if left is None or right is None:
        return False
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    return left <= right


# PUBLIC_INTERFACE
def row_matches(row: Row, query: Query) -> bool:
    """Evaluate the filters and the OR text group of a query against a row."""
    for f in query.filters:
        if not _compare(f.op, row.get(f.column), f.value):
            return False
    if query.any_of:
        for m in query.any_of:
            value = row.get(m.column)
            if value is not None and m.term.casefold() in str(value).casefold():
                return True
        return False
    return True
