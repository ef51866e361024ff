"""
SQLite node store for nestedset.

This module stores a nested-set collection in one SQLite table:
- Structural columns (node_id, parent_id, lft, rgt, lvl) used by the engines
- Host payload as JSON, addressed in filters via json_extract
- An autoincrement seq column giving a stable insertion order

Invariants:
    - One table per collection, one database file per store
    - Every multi-statement write runs in a single transaction
    - Filters compile to parameterised SQL with the same semantics as
      filters.match_filter (null-safe equality via IS / IS NOT)

How to change safely:
    - Schema migrations must be backward compatible
    - Keep index set aligned with the filters the engines issue
      (parent_id equality, lft/rgt ranges, grouping key)

Table schema:
    <collection>:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - node_id TEXT UNIQUE
        - parent_id TEXT NULL
        - lft INTEGER NULL
        - rgt INTEGER NULL
        - lvl INTEGER NOT NULL DEFAULT 0
        - fields_json TEXT (JSON)
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import (
    InvalidFilterError,
    InvalidUpdateError,
    StoreError,
    StoreNotInitializedError,
)
from ..filters import Filter, SortSpec, is_operator_dict, unwrap_envelope
from ..node import Node
from .base import INCREMENTABLE_FIELDS

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMNS = {
    "id": "node_id",
    "parent_id": "parent_id",
    "lft": "lft",
    "rgt": "rgt",
    "lvl": "lvl",
}

_COMPARISONS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}

_SQL_SCALARS = (str, int, float, bool, type(None))


class SqliteNodeStore:
    """SQLite-backed NodeStore.

    Thread safety:
        Each operation opens its own connection. SQLite handles concurrent
        access via WAL mode. Structural consistency across operations is the
        caller's responsibility (see NestedSetTree.serialize_writes).

    Example:
        >>> store = SqliteNodeStore("/var/lib/nestedset/tree.db")
        >>> await store.initialize()
        >>> root = await store.insert_one(Node(lft=1, rgt=2, fields={"name": "root"}))
    """

    def __init__(
        self,
        db_path: str,
        collection: str = "nodes",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        indexed_fields: Sequence[str] = (),
    ) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file
            collection: Table name for the nodes
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            indexed_fields: Payload fields to index (e.g. the grouping key)
        """
        if db_path == ":memory:":
            raise ValueError("SqliteNodeStore needs a file path; use InMemoryNodeStore instead")
        for name in (collection, *indexed_fields):
            if not _IDENTIFIER_RE.match(name):
                raise ValueError(f"Invalid identifier: {name!r}")

        self.db_path = Path(db_path)
        self.collection = collection
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.indexed_fields = tuple(indexed_fields)
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self, operation: str, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Args:
            operation: Operation name, reported in StoreError
            create: Whether to create database if not exists

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If database doesn't exist and create=False
            StoreError: If SQLite fails
        """
        if not create and not self.db_path.exists():
            raise StoreNotInitializedError(
                f"Database not found: {self.db_path}", operation=operation
            )

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}", operation=operation) from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite {operation} failed: {e}", operation=operation) from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create table and indexes."""
        t = self.collection
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS {t} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                node_id TEXT NOT NULL UNIQUE,
                parent_id TEXT,
                lft INTEGER,
                rgt INTEGER,
                lvl INTEGER NOT NULL DEFAULT 0,
                fields_json TEXT NOT NULL DEFAULT '{{}}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_{t}_lvl ON {t}(lvl);
            CREATE INDEX IF NOT EXISTS idx_{t}_parent ON {t}(parent_id);
            CREATE INDEX IF NOT EXISTS idx_{t}_lft_rgt ON {t}(lft, rgt);
            CREATE INDEX IF NOT EXISTS idx_{t}_rgt ON {t}(rgt);
        """)
        for name in self.indexed_fields:
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{t}_f_{name} "
                f"ON {t}(json_extract(fields_json, '$.{name}'), lft)"
            )

    async def initialize(self) -> None:
        """Create the database file, table and indexes if they don't exist."""
        async with self._lock:
            with self._get_connection("initialize", create=True) as conn:
                self._create_schema(conn)
                logger.info(f"Initialized node collection: {self.db_path}:{self.collection}")

    async def close(self) -> None:
        """Nothing to release; connections are per operation."""
        logger.debug("SqliteNodeStore closed")

    async def find_one(self, filters: Filter) -> Optional[Node]:
        nodes = await self.find(filters, limit=1)
        return nodes[0] if nodes else None

    async def find(
        self,
        filters: Filter,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Node]:
        predicate, orderby = unwrap_envelope(filters)
        where, params = self._compile_filter(predicate)
        order = self._compile_sort(sort or orderby)

        with self._get_connection("find") as conn:
            cursor = conn.execute(
                f"SELECT * FROM {self.collection} WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
                (*params, -1 if limit is None else limit, skip),
            )
            return [self._row_to_node(row).project(fields) for row in cursor.fetchall()]

    async def update_many(self, filters: Filter, increments: Dict[str, int]) -> int:
        for name in increments:
            if name not in INCREMENTABLE_FIELDS:
                raise InvalidUpdateError(f"Cannot increment field: {name}", field_name=name)
        if not increments:
            return 0

        predicate, _ = unwrap_envelope(filters)
        where, params = self._compile_filter(predicate)
        assignments = ", ".join(f"{name} = {name} + ?" for name in increments)

        with self._get_connection("update_many") as conn:
            cursor = conn.execute(
                f"UPDATE {self.collection} SET {assignments}, updated_at = ? WHERE {where}",
                (*increments.values(), int(time.time() * 1000), *params),
            )
            return cursor.rowcount

    async def update_one(self, filters: Filter, values: Dict[str, Any]) -> Optional[Node]:
        if "id" in values:
            raise InvalidUpdateError("Node id is immutable", field_name="id")

        predicate, _ = unwrap_envelope(filters)
        where, params = self._compile_filter(predicate)
        now = int(time.time() * 1000)

        with self._get_connection("update_one") as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    f"SELECT * FROM {self.collection} WHERE {where} ORDER BY seq LIMIT 1",
                    params,
                )
                row = cursor.fetchone()
                if not row:
                    conn.execute("ROLLBACK")
                    return None

                node = self._row_to_node(row)
                for name, value in values.items():
                    if name in Node.STRUCTURAL:
                        setattr(node, name, value)
                    else:
                        node.fields[name] = value
                node.updated_at = now

                conn.execute(
                    f"""
                    UPDATE {self.collection}
                    SET parent_id = ?, lft = ?, rgt = ?, lvl = ?, fields_json = ?, updated_at = ?
                    WHERE seq = ?
                    """,
                    (
                        node.parent_id,
                        node.lft,
                        node.rgt,
                        node.lvl,
                        json.dumps(node.fields),
                        now,
                        row["seq"],
                    ),
                )

                conn.execute("COMMIT")
                return node

            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def insert_one(self, node: Node) -> Node:
        if node.id is None:
            node.id = str(uuid.uuid4())
        now = int(time.time() * 1000)
        node.created_at = node.created_at or now
        node.updated_at = now

        with self._get_connection("insert_one") as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO {self.collection} (node_id, parent_id, lft, rgt, lvl,
                                                   fields_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        node.id,
                        node.parent_id,
                        node.lft,
                        node.rgt,
                        node.lvl,
                        json.dumps(node.fields),
                        node.created_at,
                        node.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Duplicate node id: {node.id}", operation="insert_one") from e

        logger.debug(
            "Inserted node",
            extra={"node_id": node.id, "parent_id": node.parent_id},
        )
        return node

    async def delete_many(self, filters: Filter) -> int:
        predicate, _ = unwrap_envelope(filters)
        where, params = self._compile_filter(predicate)

        with self._get_connection("delete_many") as conn:
            cursor = conn.execute(f"DELETE FROM {self.collection} WHERE {where}", params)
            return cursor.rowcount

    async def count(self, filters: Filter) -> int:
        predicate, _ = unwrap_envelope(filters)
        where, params = self._compile_filter(predicate)

        with self._get_connection("count") as conn:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {self.collection} WHERE {where}", params)
            return cursor.fetchone()[0]

    def _row_to_node(self, row: sqlite3.Row) -> Node:
        return Node(
            id=row["node_id"],
            parent_id=row["parent_id"],
            lft=row["lft"],
            rgt=row["rgt"],
            lvl=row["lvl"],
            fields=json.loads(row["fields_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # Filter compilation

    def _column(self, name: str) -> str:
        if name in _COLUMNS:
            return _COLUMNS[name]
        if not _IDENTIFIER_RE.match(name):
            raise InvalidFilterError(f"Invalid field name: {name!r}")
        return f"json_extract(fields_json, '$.{name}')"

    def _compile_filter(self, filters: Filter) -> Tuple[str, List[Any]]:
        """Compile a filter dict into a WHERE clause and parameters."""
        clauses: List[str] = []
        params: List[Any] = []

        for key, condition in filters.items():
            if key in ("$or", "$and"):
                if not isinstance(condition, list):
                    raise InvalidFilterError(f"{key} requires a list of filters", operator=key)
                if not condition:
                    clauses.append("0" if key == "$or" else "1")
                    continue
                parts = []
                for sub in condition:
                    sub_sql, sub_params = self._compile_filter(sub)
                    parts.append(f"({sub_sql})")
                    params.extend(sub_params)
                joiner = " OR " if key == "$or" else " AND "
                clauses.append(f"({joiner.join(parts)})")
            elif key.startswith("$"):
                raise InvalidFilterError(f"Unsupported top-level operator: {key}", operator=key)
            else:
                sql, field_params = self._compile_field(key, condition)
                clauses.append(sql)
                params.extend(field_params)

        return (" AND ".join(clauses) or "1"), params

    def _compile_field(self, name: str, condition: Any) -> Tuple[str, List[Any]]:
        col = self._column(name)
        if not is_operator_dict(condition):
            return f"{col} IS ?", [_scalar(condition)]

        clauses: List[str] = []
        params: List[Any] = []
        for op, arg in condition.items():
            if op == "$eq":
                clauses.append(f"{col} IS ?")
                params.append(_scalar(arg))
            elif op == "$ne":
                clauses.append(f"{col} IS NOT ?")
                params.append(_scalar(arg))
            elif op in _COMPARISONS:
                clauses.append(f"{col} {_COMPARISONS[op]} ?")
                params.append(_scalar(arg))
            elif op in ("$in", "$nin"):
                sql, in_params = _compile_in(col, op, arg)
                clauses.append(sql)
                params.extend(in_params)
            elif op == "$exists":
                if name in _COLUMNS:
                    test = f"{col} IS NOT NULL"
                else:
                    test = f"json_type(fields_json, '$.{name}') IS NOT NULL"
                clauses.append(test if arg else f"NOT ({test})")
            else:
                raise InvalidFilterError(f"Unsupported operator: {op}", operator=op)

        return " AND ".join(clauses), params

    def _compile_sort(self, sort: Optional[SortSpec]) -> str:
        terms = []
        for name, direction in sort or ():
            terms.append(f"{self._column(name)} {'DESC' if direction < 0 else 'ASC'}")
        terms.append("seq ASC")
        return ", ".join(terms)


def _scalar(value: Any) -> Any:
    if not isinstance(value, _SQL_SCALARS):
        raise InvalidFilterError(f"Unsupported filter value: {value!r}")
    return value


def _compile_in(col: str, op: str, arg: Any) -> Tuple[str, List[Any]]:
    """Compile $in / $nin with the same null handling as match_filter."""
    if not isinstance(arg, (list, tuple, set)):
        raise InvalidFilterError(f"{op} requires a list", operator=op)

    values = [_scalar(v) for v in arg if v is not None]
    has_null = len(values) != len(arg)
    placeholders = ", ".join("?" for _ in values)
    in_sql = f"{col} IN ({placeholders})" if values else "0"

    if op == "$in":
        sql = f"({in_sql} OR {col} IS NULL)" if has_null else in_sql
    elif has_null:
        sql = f"({col} IS NOT NULL AND NOT {in_sql})"
    else:
        sql = f"({col} IS NULL OR NOT {in_sql})"
    return sql, values
