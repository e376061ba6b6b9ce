"""
Repository pattern for data access.

Implements the local telemetry store: append-only ``create`` for events,
usage, metrics, leads and messages, and idempotent ``upsert`` for
conversations. Each call opens its own SQLite connection and runs in a
worker thread, so the event loop never blocks on disk I/O.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import EntityKind


class LocalStore(Protocol):
    """Create/upsert collaborator used by the telemetry forwarder.

    Implementations must make ``upsert`` safe under concurrent calls with the
    same key: at most one row per key.
    """

    async def create(self, entity_kind: EntityKind, fields: Mapping[str, Any]) -> int:
        ...

    async def upsert(
        self,
        entity_kind: EntityKind,
        key: Mapping[str, Any],
        create_fields: Mapping[str, Any],
        update_fields: Mapping[str, Any],
    ) -> int:
        ...


@dataclass(frozen=True)
class TableSpec:
    """Table layout for one entity kind."""
    table: str
    columns: FrozenSet[str]
    json_columns: FrozenSet[str] = frozenset()
    unique_key: Tuple[str, ...] = ()


TABLES: Dict[EntityKind, TableSpec] = {
    EntityKind.EVENT: TableSpec(
        "telemetry_event",
        frozenset({"tenant_id", "type", "content"}),
    ),
    EntityKind.USAGE: TableSpec(
        "usage_record",
        frozenset({
            "tenant_id", "model", "prompt_tokens", "completion_tokens",
            "cached_tokens", "cost", "breakdown",
        }),
        json_columns=frozenset({"breakdown"}),
    ),
    EntityKind.METRIC: TableSpec(
        "metric",
        frozenset({"tenant_id", "name", "value"}),
    ),
    EntityKind.LEAD: TableSpec(
        "lead",
        frozenset({"tenant_id", "name", "email", "phone", "snippet", "tags"}),
        json_columns=frozenset({"tags"}),
    ),
    EntityKind.CONVERSATION: TableSpec(
        "conversation",
        frozenset({"tenant_id", "session_id"}),
        unique_key=("tenant_id", "session_id"),
    ),
    EntityKind.MESSAGE: TableSpec(
        "message",
        frozenset({"conversation_id", "role", "content"}),
    ),
}

SCHEMA = """
    CREATE TABLE IF NOT EXISTS telemetry_event (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        type TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS usage_record (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        model TEXT NOT NULL,
        prompt_tokens INTEGER NOT NULL DEFAULT 0,
        completion_tokens INTEGER NOT NULL DEFAULT 0,
        cached_tokens INTEGER NOT NULL DEFAULT 0,
        cost REAL NOT NULL DEFAULT 0 CHECK (cost >= 0),
        breakdown TEXT,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS metric (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL,
        value REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS lead (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL DEFAULT '',
        phone TEXT NOT NULL DEFAULT '',
        snippet TEXT NOT NULL DEFAULT '',
        tags TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS conversation (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        session_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, session_id)
    );
    CREATE TABLE IF NOT EXISTS message (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL REFERENCES conversation(id),
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the telemetry tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _table_spec(entity_kind: EntityKind, names: Iterable[str]) -> TableSpec:
    table_spec = TABLES.get(EntityKind(entity_kind))
    if table_spec is None:
        raise ValueError(f"Unsupported entity kind: {entity_kind}")
    unknown = set(names) - table_spec.columns
    if unknown:
        raise ValueError(f"Unknown columns for {table_spec.table}: {sorted(unknown)}")
    return table_spec


def _encode(table_spec: TableSpec, fields: Mapping[str, Any]) -> Dict[str, Any]:
    row = {}
    for name, value in fields.items():
        if name in table_spec.json_columns and value is not None:
            value = json.dumps(value)
        row[name] = value
    return row


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStore:
    """SQLite implementation of the local telemetry store."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize(self) -> None:
        """Create the schema for this store's database."""
        initialize_schema(self.db_path)

    async def create(self, entity_kind: EntityKind, fields: Mapping[str, Any]) -> int:
        """Append one row and return its id."""
        return await asyncio.to_thread(self._create, entity_kind, dict(fields))

    async def upsert(
        self,
        entity_kind: EntityKind,
        key: Mapping[str, Any],
        create_fields: Mapping[str, Any],
        update_fields: Mapping[str, Any],
    ) -> int:
        """Insert the row for ``key`` unless it exists, and return its id.

        Existing rows receive ``update_fields``; with no update fields they
        are left untouched.
        """
        return await asyncio.to_thread(
            self._upsert, entity_kind, dict(key), dict(create_fields), dict(update_fields)
        )

    def _create(self, entity_kind: EntityKind, fields: Dict[str, Any]) -> int:
        table_spec = _table_spec(entity_kind, fields)
        row = _encode(table_spec, fields)
        row["created_at"] = _now()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"INSERT INTO {table_spec.table} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def _upsert(
        self,
        entity_kind: EntityKind,
        key: Dict[str, Any],
        create_fields: Dict[str, Any],
        update_fields: Dict[str, Any],
    ) -> int:
        table_spec = _table_spec(entity_kind, {**key, **create_fields, **update_fields})
        if tuple(sorted(key)) != tuple(sorted(table_spec.unique_key)):
            raise ValueError(f"Upsert key for {table_spec.table} must be {table_spec.unique_key}")

        row = _encode(table_spec, {**create_fields, **key})
        row["created_at"] = _now()
        updates = _encode(table_spec, update_fields)

        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        conflict = ", ".join(table_spec.unique_key)
        if updates:
            assignments = ", ".join(f"{name} = ?" for name in updates)
            action = f"DO UPDATE SET {assignments}"
        else:
            action = "DO NOTHING"

        conn = get_connection(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO {table_spec.table} ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT({conflict}) {action}",
                tuple(row.values()) + tuple(updates.values()),
            )
            conn.commit()
            where = " AND ".join(f"{name} = ?" for name in key)
            cursor = conn.execute(
                f"SELECT id FROM {table_spec.table} WHERE {where}",
                tuple(key.values()),
            )
            return cursor.fetchone()[0]
        finally:
            conn.close()

    def fetch_rows(
        self,
        entity_kind: EntityKind,
        tenant_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        """Fetch stored rows in insertion order.

        Args:
            entity_kind: Entity kind to read
            tenant_id: Optional tenant filter (ignored for messages)
            limit: Maximum number of rows to return

        Returns:
            Rows as dictionaries, JSON columns decoded
        """
        table_spec = _table_spec(entity_kind, ())
        query = f"SELECT * FROM {table_spec.table}"
        params: List[Any] = []
        if tenant_id is not None and "tenant_id" in table_spec.columns:
            query += " WHERE tenant_id = ?"
            params.append(tenant_id)
        query += " ORDER BY id LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            names = [description[0] for description in cursor.description]
            rows = []
            for values in cursor.fetchall():
                row = dict(zip(names, values))
                for name in table_spec.json_columns:
                    if row.get(name) is not None:
                        row[name] = json.loads(row[name])
                rows.append(row)
            return rows
        finally:
            conn.close()
