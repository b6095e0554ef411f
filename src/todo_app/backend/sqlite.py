from __future__ import annotations

import asyncio
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

from ..utils import as_utc, utc_now
from .base import ChangeEvent, ChangeFeed, ChangeType, RowStore, StorageError
from .query import Filter, Order, Query, QueryResult, Row, TextMatch
from .tables import BOOLEAN, TABLES, TIMESTAMP, TableDef, get_table

_OPS = {"eq": "=", "neq": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}

# Fixed-width UTC text so that lexical order equals chronological order
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteRowStore(RowStore):
    """
    Lightweight SQLite row store implementing the RowStore interface.

    Blocking sqlite3 calls run in a worker thread with one connection per call;
    change events are published back on the event loop once the write commits.
    """

    def __init__(
        self,
        db_path: str,
        feed: Optional[ChangeFeed] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._feed = feed
        self._clock = clock
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            for table in TABLES.values():
                cols = ", ".join(
                    f"{name} TEXT PRIMARY KEY" if name == "id" else f"{name} {self._sql_type(kind)} NULL"
                    for name, kind in table.columns.items()
                )
                conn.execute(f"CREATE TABLE IF NOT EXISTS {table.name} ({cols})")
                for column in table.indexes:
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{table.name}_{column} ON {table.name}({column})"
                    )

    @staticmethod
    def _sql_type(kind: str) -> str:
        return "INTEGER" if kind == BOOLEAN else "TEXT"

    # -- value conversion -------------------------------------------------

    @staticmethod
    def _to_db(kind: str, value: Any) -> Any:
        if value is None:
            return None
        if kind == BOOLEAN:
            return 1 if value else 0
        if kind == TIMESTAMP and isinstance(value, datetime):
            return as_utc(value).strftime(_TS_FORMAT)
        return value

    @staticmethod
    def _from_db(kind: str, value: Any) -> Any:
        if value is None:
            return None
        if kind == BOOLEAN:
            return bool(value)
        if kind == TIMESTAMP:
            return datetime.fromisoformat(value)
        return value

    def _row_to_dict(self, table: TableDef, row: sqlite3.Row) -> Row:
        return {name: self._from_db(kind, row[name]) for name, kind in table.columns.items()}

    # -- SQL compilation --------------------------------------------------

    def _table(self, name: str) -> TableDef:
        try:
            return get_table(name)
        except KeyError as exc:
            raise StorageError(str(exc)) from exc

    @staticmethod
    def _column(table: TableDef, name: str) -> str:
        if name not in table.columns:
            raise StorageError(f"Unknown column for {table.name}: {name}")
        return name

    def _where(
        self, table: TableDef, filters: Sequence[Filter], any_of: Sequence[TextMatch] = ()
    ) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for f in filters:
            column = self._column(table, f.column)
            if f.value is None:
                # comparisons with NULL never match
                clauses.append("0")
                continue
            clauses.append(f"{column} {_OPS[f.op]} ?")
            params.append(self._to_db(table.columns[column], f.value))
        if any_of:
            ors = []
            for m in any_of:
                column = self._column(table, m.column)
                ors.append(f"LOWER({column}) LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(m.term.lower())}%")
            clauses.append(f"({' OR '.join(ors)})")
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where_sql, params

    def _order(self, table: TableDef, orders: Sequence[Order]) -> str:
        parts: List[str] = []
        for order in orders:
            column = self._column(table, order.column)
            direction = "ASC" if order.ascending else "DESC"
            expr = column
            ranking = table.ranks.get(column)
            if ranking:
                whens = " ".join(f"WHEN '{v}' THEN {i}" for i, v in enumerate(ranking))
                expr = f"CASE {column} {whens} ELSE {len(ranking)} END"
            parts.append(f"({column} IS NULL) {direction}")
            parts.append(f"{expr} {direction}")
        return f"ORDER BY {', '.join(parts)}" if parts else ""

    # -- sync operations (worker thread) ----------------------------------

    def _select_sync(self, query: Query) -> QueryResult:
        table = self._table(query.table)
        where_sql, params = self._where(table, query.filters, query.any_of)
        order_sql = self._order(table, query.orders)
        limit = -1 if query.limit is None else max(query.limit, 0)
        offset = max(query.offset, 0)

        with self._conn() as conn:
            total = None
            if query.count:
                count_row = conn.execute(
                    f"SELECT COUNT(*) AS cnt FROM {table.name} {where_sql}", params
                ).fetchone()
                total = int(count_row["cnt"]) if count_row else 0
            rows = conn.execute(
                f"SELECT * FROM {table.name} {where_sql} {order_sql} LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
            return QueryResult(rows=[self._row_to_dict(table, r) for r in rows], count=total)

    def _insert_sync(self, table_name: str, values: Dict[str, Any]) -> Row:
        table = self._table(table_name)
        for name in values:
            self._column(table, name)
        row: Row = {column: None for column in table.columns}
        row.update(values)
        if row.get("id") is None:
            if not table.generated_id:
                raise StorageError(f"id is required for {table.name}")
            row["id"] = str(uuid.uuid4())
        now = self._clock()
        if "created_at" in table.columns and row.get("created_at") is None:
            row["created_at"] = now
        if "updated_at" in table.columns and row.get("updated_at") is None:
            row["updated_at"] = now

        columns = list(table.columns)
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {table.name} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                [self._to_db(table.columns[c], row[c]) for c in columns],
            )
            stored = conn.execute(f"SELECT * FROM {table.name} WHERE id = ?", (row["id"],)).fetchone()
            if stored is None:
                raise StorageError(f"Inserted row not found in {table.name}: {row['id']}")
            return self._row_to_dict(table, stored)

    def _update_sync(
        self, table_name: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Tuple[Row, Row]]:
        table = self._table(table_name)
        if "id" in values:
            raise StorageError("id cannot be updated")
        for name in values:
            self._column(table, name)
        where_sql, params = self._where(table, filters)

        with self._conn() as conn:
            before = [
                self._row_to_dict(table, r)
                for r in conn.execute(f"SELECT * FROM {table.name} {where_sql}", params).fetchall()
            ]
            if not before or not values:
                return [(old, old) for old in before]
            set_sql = ", ".join(f"{c} = ?" for c in values)
            set_params = [self._to_db(table.columns[c], v) for c, v in values.items()]
            ids = [old["id"] for old in before]
            conn.execute(
                f"UPDATE {table.name} SET {set_sql} WHERE id IN ({', '.join('?' for _ in ids)})",
                [*set_params, *ids],
            )
            pairs: List[Tuple[Row, Row]] = []
            for old in before:
                new = conn.execute(f"SELECT * FROM {table.name} WHERE id = ?", (old["id"],)).fetchone()
                pairs.append((old, self._row_to_dict(table, new)))
            return pairs

    def _delete_sync(self, table_name: str, filters: Sequence[Filter]) -> List[Row]:
        table = self._table(table_name)
        where_sql, params = self._where(table, filters)
        with self._conn() as conn:
            before = [
                self._row_to_dict(table, r)
                for r in conn.execute(f"SELECT * FROM {table.name} {where_sql}", params).fetchall()
            ]
            if before:
                ids = [r["id"] for r in before]
                conn.execute(
                    f"DELETE FROM {table.name} WHERE id IN ({', '.join('?' for _ in ids)})", ids
                )
            return before

    # -- RowStore ---------------------------------------------------------

    async def _publish(self, event: ChangeEvent) -> None:
        if self._feed is not None:
            await self._feed.publish(event)

    async def select(self, query: Query) -> QueryResult:
        return await asyncio.to_thread(self._select_sync, query)

    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        row = await asyncio.to_thread(self._insert_sync, table, values)
        await self._publish(ChangeEvent(table=table, event_type=ChangeType.INSERT, new=dict(row)))
        return row

    async def update(self, table: str, values: Dict[str, Any], filters: Sequence[Filter]) -> List[Row]:
        pairs = await asyncio.to_thread(self._update_sync, table, values, filters)
        for old, new in pairs:
            await self._publish(ChangeEvent(table=table, event_type=ChangeType.UPDATE, new=dict(new), old=old))
        return [new for _, new in pairs]

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        rows = await asyncio.to_thread(self._delete_sync, table, filters)
        for row in rows:
            await self._publish(ChangeEvent(table=table, event_type=ChangeType.DELETE, old=dict(row)))
        return rows
