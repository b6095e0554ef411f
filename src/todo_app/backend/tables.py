"""
Table definitions shared by the row store implementations.

Column kinds drive value conversion in the SQLite store; rank orderings make
enum-like text columns sort by declaration order instead of alphabetically.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

TEXT = "TEXT"
BOOLEAN = "BOOLEAN"
TIMESTAMP = "TIMESTAMP"

TODOS = "todos"
PROFILES = "profiles"
AUTH_USERS = "auth_users"


@dataclass(frozen=True)
class TableDef:
    name: str
    columns: Dict[str, str]
    generated_id: bool = False
    ranks: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    indexes: Tuple[str, ...] = ()

    def rank_of(self, column: str, value: Optional[str]) -> Optional[int]:
        order = self.ranks.get(column)
        if order is None or value is None:
            return None
        try:
            return order.index(value)
        except ValueError:
            return len(order)


TABLES: Dict[str, TableDef] = {
    TODOS: TableDef(
        name=TODOS,
        columns={
            "id": TEXT,
            "user_id": TEXT,
            "title": TEXT,
            "description": TEXT,
            "due_date": TIMESTAMP,
            "priority": TEXT,
            "completed": BOOLEAN,
            "created_at": TIMESTAMP,
            "updated_at": TIMESTAMP,
        },
        generated_id=True,
        ranks={"priority": ("low", "medium", "high")},
        indexes=("user_id", "due_date", "created_at", "completed"),
    ),
    PROFILES: TableDef(
        name=PROFILES,
        columns={
            "id": TEXT,
            "email": TEXT,
            "name": TEXT,
            "avatar_url": TEXT,
            "role": TEXT,
            "created_at": TIMESTAMP,
            "updated_at": TIMESTAMP,
        },
        ranks={"role": ("user", "admin")},
        indexes=("email",),
    ),
    AUTH_USERS: TableDef(
        name=AUTH_USERS,
        columns={
            "id": TEXT,
            "email": TEXT,
            "password_hash": TEXT,
            "name": TEXT,
            "provider": TEXT,
            "created_at": TIMESTAMP,
            "updated_at": TIMESTAMP,
        },
        generated_id=True,
        indexes=("email",),
    ),
}


def get_table(name: str) -> TableDef:
    try:
        return TABLES[name]
    except KeyError:
        raise KeyError(f"Unknown table: {name}") from None
