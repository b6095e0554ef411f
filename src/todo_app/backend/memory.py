from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..utils import utc_now
from .base import ChangeEvent, ChangeFeed, ChangeType, RowStore, StorageError
from .query import Filter, Order, Query, QueryResult, Row, row_matches
from .tables import TABLES, TableDef, get_table


def sort_rows(rows: Iterable[Row], orders: Sequence[Order], table: TableDef) -> List[Row]:
    """
    Sort rows by several columns with independent directions.

    NULLs sort last ascending and first descending; ranked columns sort by rank.
    """
    items = list(rows)
    for order in reversed(orders):
        def key(row: Row, column: str = order.column) -> tuple:
            value = row.get(column)
            rank = table.rank_of(column, value)
            if rank is not None:
                value = rank
            return (value is None, value)

        items.sort(key=key, reverse=not order.ascending)
    return items


class MemoryRowStore(RowStore):
    """
    In-memory row store suitable for testing and default runtime.

    Mutations publish INSERT/UPDATE/DELETE events to the change feed after the
    row is stored. Rows are copied on the way in and out.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None, clock: Callable[[], datetime] = utc_now) -> None:
        self._feed = feed
        self._clock = clock
        self._tables: Dict[str, Dict[str, Row]] = {name: {} for name in TABLES}

    def _table(self, name: str) -> TableDef:
        try:
            return get_table(name)
        except KeyError as exc:
            raise StorageError(str(exc)) from exc

    def _check_columns(self, table: TableDef, values: Dict[str, Any]) -> None:
        unknown = set(values) - set(table.columns)
        if unknown:
            raise StorageError(f"Unknown column(s) for {table.name}: {', '.join(sorted(unknown))}")

    async def _publish(self, event: ChangeEvent) -> None:
        if self._feed is not None:
            await self._feed.publish(event)

    async def select(self, query: Query) -> QueryResult:
        table = self._table(query.table)
        matching = [r for r in self._tables[table.name].values() if row_matches(r, query)]
        total = len(matching) if query.count else None

        ordered = sort_rows(matching, query.orders, table)
        start = max(query.offset, 0)
        end = None if query.limit is None else start + max(query.limit, 0)
        page = ordered[start:end]
        return QueryResult(rows=[r.copy() for r in page], count=total)

    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        tdef = self._table(table)
        self._check_columns(tdef, values)
        row: Row = {column: None for column in tdef.columns}
        row.update(values)

        if row.get("id") is None:
            if not tdef.generated_id:
                raise StorageError(f"id is required for {table}")
            row["id"] = str(uuid.uuid4())
        rows = self._tables[table]
        if row["id"] in rows:
            raise StorageError(f"Duplicate key for {table}: {row['id']}")

        now = self._clock()
        if "created_at" in tdef.columns and row.get("created_at") is None:
            row["created_at"] = now
        if "updated_at" in tdef.columns and row.get("updated_at") is None:
            row["updated_at"] = now

        rows[row["id"]] = row
        await self._publish(ChangeEvent(table=table, event_type=ChangeType.INSERT, new=row.copy()))
        return row.copy()

    async def update(self, table: str, values: Dict[str, Any], filters: Sequence[Filter]) -> List[Row]:
        tdef = self._table(table)
        self._check_columns(tdef, values)
        if "id" in values:
            raise StorageError("id cannot be updated")
        selector = Query(table=table, filters=tuple(filters))
        targets = [r for r in self._tables[table].values() if row_matches(r, selector)]

        updated: List[Row] = []
        for row in targets:
            old = row.copy()
            row.update(values)
            updated.append(row.copy())
            await self._publish(
                ChangeEvent(table=table, event_type=ChangeType.UPDATE, new=row.copy(), old=old)
            )
        return updated

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        self._table(table)
        selector = Query(table=table, filters=tuple(filters))
        rows = self._tables[table]
        targets = [r for r in rows.values() if row_matches(r, selector)]

        for row in targets:
            rows.pop(row["id"], None)
            await self._publish(ChangeEvent(table=table, event_type=ChangeType.DELETE, old=row.copy()))
        return [r.copy() for r in targets]
