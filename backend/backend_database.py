# backend/database.py - Database operations

import asyncio
import json
import re
import uuid
import aiosqlite
import asyncpg
from contextlib import asynccontextmanager
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime
import logging

from backend_errors import GridValidationError, NotFoundError

logger = logging.getLogger(__name__)

SQLITE_SCHEMA = [
    "PRAGMA foreign_keys = ON",
    """
    CREATE TABLE IF NOT EXISTS bases (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_tables (
        id TEXT PRIMARY KEY,
        base_id TEXT NOT NULL REFERENCES bases(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_columns (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'text',
        position INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_rows (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_grid_rows_table ON grid_rows(table_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_grid_columns_table ON grid_columns(table_id, position)",
]

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS bases (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_tables (
        id TEXT PRIMARY KEY,
        base_id TEXT NOT NULL REFERENCES bases(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_columns (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'text',
        position INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grid_rows (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL REFERENCES grid_tables(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        data JSONB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_grid_rows_table ON grid_rows(table_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_grid_columns_table ON grid_columns(table_id, position)",
]

# Postgres has no lenient cast; only well-formed numbers are compared
_PG_NUMBER_PATTERN = r"^\s*[-+]{0,1}[0-9]+([.][0-9]+){0,1}\s*$"

def new_id() -> str:
    return uuid.uuid4().hex

class _Connection:
    """One connection (or open transaction) with a single query dialect."""

    def __init__(self, raw, is_postgres: bool):
        self.raw = raw
        self.is_postgres = is_postgres

    def _sql(self, query: str) -> str:
        if not self.is_postgres:
            return query
        counter = iter(range(1, query.count("?") + 1))
        return re.sub(r"\?", lambda _: f"${next(counter)}", query)

    async def fetch(self, query: str, *params) -> List[Dict[str, Any]]:
        if self.is_postgres:
            rows = await self.raw.fetch(self._sql(query), *params)
            return [dict(row) for row in rows]
        async with self.raw.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *params) -> Optional[Dict[str, Any]]:
        rows = await self.fetch(query, *params)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *params) -> Any:
        row = await self.fetchrow(query, *params)
        return next(iter(row.values())) if row else None

    async def execute(self, query: str, *params) -> int:
        if self.is_postgres:
            status = await self.raw.execute(self._sql(query), *params)
            try:
                return int(status.split()[-1])
            except (ValueError, IndexError):
                return 0
        cursor = await self.raw.execute(query, params)
        return cursor.rowcount

    async def executemany(self, query: str, rows: List[Tuple]):
        if not rows:
            return
        if self.is_postgres:
            await self.raw.executemany(self._sql(query), rows)
        else:
            await self.raw.executemany(query, rows)

class Database:
    def __init__(self, database_url: str):
        self.database_url = database_url
        self.is_postgres = database_url.startswith("postgresql://")
        self.conn = None
        self.pool = None
        # SQLite shares one connection; writes are serialized so an open
        # transaction is never committed halfway by another coroutine
        self._write_lock = asyncio.Lock()

    async def init(self):
        """Initialize database connection and create tables"""
        if self.is_postgres:
            await self._init_postgres()
        else:
            await self._init_sqlite()

    async def _init_sqlite(self):
        """Initialize SQLite database"""
        self.conn = await aiosqlite.connect(self.database_url.replace("sqlite:///", ""))
        self.conn.row_factory = aiosqlite.Row
        for statement in SQLITE_SCHEMA:
            await self.conn.execute(statement)
        await self.conn.commit()

    async def _init_postgres(self):
        """Initialize PostgreSQL database"""
        self.pool = await asyncpg.create_pool(self.database_url)
        async with self.pool.acquire() as conn:
            for statement in POSTGRES_SCHEMA:
                await conn.execute(statement)

    async def close(self):
        """Close database connection"""
        if self.is_postgres and self.pool:
            await self.pool.close()
        elif self.conn:
            await self.conn.close()

    @asynccontextmanager
    async def _read(self):
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                yield _Connection(conn, True)
        else:
            yield _Connection(self.conn, False)

    @asynccontextmanager
    async def _transaction(self):
        """All statements inside commit together or not at all"""
        if self.is_postgres:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield _Connection(conn, True)
            return
        async with self._write_lock:
            try:
                yield _Connection(self.conn, False)
            except BaseException:
                await self.conn.rollback()
                raise
            await self.conn.commit()

    # Dialect helpers

    def _json_text(self, column_name: str) -> Tuple[str, List[Any]]:
        """Text of one key of a row's data, '' when absent"""
        if self.is_postgres:
            return "COALESCE(data->>?, '')", [column_name]
        path = '$."' + column_name.replace('"', '\\"') + '"'
        return "COALESCE(CAST(json_extract(data, ?) AS TEXT), '')", [path]

    def _contains(self, expr: str) -> str:
        if self.is_postgres:
            return f"strpos(lower({expr}), lower(?)) > 0"
        return f"instr(lower({expr}), lower(?)) > 0"

    def _numeric(self, column_name: str) -> Tuple[str, List[Any]]:
        expr, params = self._json_text(column_name)
        if self.is_postgres:
            return (
                f"(CASE WHEN {expr} ~ '{_PG_NUMBER_PATTERN}' THEN ({expr})::double precision END)",
                params + params,
            )
        # CAST alone turns 'abc' into 0.0; only sign, digits and one dot qualify
        digits = f"ltrim(trim({expr}), '+-')"
        return (
            f"(CASE WHEN {digits} GLOB '[0-9]*' AND {digits} NOT GLOB '*[^0-9.]*' "
            f"AND {digits} NOT GLOB '*.*.*' THEN CAST(trim({expr}) AS REAL) END)",
            params * 4,
        )

    def _dump(self, data: Dict[str, Any]) -> str:
        return json.dumps(data)

    def _load(self, data: Any) -> Dict[str, Any]:
        if data is None:
            return {}
        return json.loads(data) if isinstance(data, str) else dict(data)

    # Bases

    async def create_base(self, name: str, owner_id: str) -> Dict[str, Any]:
        """Create an empty base"""
        base_id = new_id()
        async with self._transaction() as tx:
            await tx.execute(
                "INSERT INTO bases (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                base_id, name, owner_id, datetime.utcnow(),
            )
        return {"id": base_id, "name": name, "ownerId": owner_id, "tables": []}

    async def get_bases(self, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get all bases, newest first"""
        async with self._read() as conn:
            if owner_id is None:
                rows = await conn.fetch("SELECT * FROM bases ORDER BY created_at DESC")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM bases WHERE owner_id = ? ORDER BY created_at DESC", owner_id
                )
        bases = []
        for row in rows:
            base = self._parse_base_row(row)
            base["tables"] = await self.get_tables(row["id"])
            bases.append(base)
        return bases

    async def get_base(self, base_id: str) -> Dict[str, Any]:
        async with self._read() as conn:
            row = await conn.fetchrow("SELECT * FROM bases WHERE id = ?", base_id)
        if not row:
            raise NotFoundError("Base not found")
        base = self._parse_base_row(row)
        base["tables"] = await self.get_tables(base_id)
        return base

    async def rename_base(self, base_id: str, name: str) -> Dict[str, Any]:
        async with self._transaction() as tx:
            updated = await tx.execute("UPDATE bases SET name = ? WHERE id = ?", name, base_id)
        if not updated:
            raise NotFoundError("Base not found")
        return await self.get_base(base_id)

    async def delete_base(self, base_id: str):
        """Delete a base with all of its tables"""
        async with self._transaction() as tx:
            table_ids = [
                row["id"] for row in await tx.fetch("SELECT id FROM grid_tables WHERE base_id = ?", base_id)
            ]
            for table_id in table_ids:
                await self._delete_table_contents(tx, table_id)
            await tx.execute("DELETE FROM grid_tables WHERE base_id = ?", base_id)
            deleted = await tx.execute("DELETE FROM bases WHERE id = ?", base_id)
        if not deleted:
            raise NotFoundError("Base not found")

    # Tables

    async def get_tables(self, base_id: str) -> List[Dict[str, Any]]:
        """Get all tables of a base with their columns and row counts"""
        async with self._read() as conn:
            if not await conn.fetchrow("SELECT id FROM bases WHERE id = ?", base_id):
                raise NotFoundError("Base not found")
            rows = await conn.fetch(
                "SELECT * FROM grid_tables WHERE base_id = ? ORDER BY created_at ASC, name ASC", base_id
            )
            tables = []
            for row in rows:
                tables.append(await self._table_with_details(conn, row))
        return tables

    async def get_table(self, table_id: str) -> Dict[str, Any]:
        """Get a specific table"""
        async with self._read() as conn:
            row = await conn.fetchrow("SELECT * FROM grid_tables WHERE id = ?", table_id)
            if not row:
                raise NotFoundError("Table not found")
            return await self._table_with_details(conn, row)

    async def create_table(
        self,
        base_id: str,
        name: str,
        columns: List[Dict[str, str]],
        rows: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        """Create a table with its seed columns and rows in one transaction"""
        table_id = new_id()
        async with self._transaction() as tx:
            if not await tx.fetchrow("SELECT id FROM bases WHERE id = ?", base_id):
                raise NotFoundError("Base not found")
            await tx.execute(
                "INSERT INTO grid_tables (id, base_id, name, created_at) VALUES (?, ?, ?, ?)",
                table_id, base_id, name, datetime.utcnow(),
            )
            await tx.executemany(
                "INSERT INTO grid_columns (id, table_id, name, type, position) VALUES (?, ?, ?, ?, ?)",
                [(new_id(), table_id, column["name"], column["type"], i) for i, column in enumerate(columns)],
            )
            names = [column["name"] for column in columns]
            await tx.executemany(
                "INSERT INTO grid_rows (id, table_id, position, data) VALUES (?, ?, ?, ?)",
                [
                    (new_id(), table_id, i, self._dump({n: str(record.get(n, "")) for n in names}))
                    for i, record in enumerate(rows)
                ],
            )
        return await self.get_table(table_id)

    async def rename_table(self, table_id: str, name: str) -> Dict[str, Any]:
        async with self._transaction() as tx:
            updated = await tx.execute("UPDATE grid_tables SET name = ? WHERE id = ?", name, table_id)
        if not updated:
            raise NotFoundError("Table not found")
        return await self.get_table(table_id)

    async def delete_table(self, table_id: str):
        """Delete a table"""
        async with self._transaction() as tx:
            await self._delete_table_contents(tx, table_id)
            deleted = await tx.execute("DELETE FROM grid_tables WHERE id = ?", table_id)
        if not deleted:
            raise NotFoundError("Table not found")

    async def _delete_table_contents(self, tx: _Connection, table_id: str):
        await tx.execute("DELETE FROM grid_rows WHERE table_id = ?", table_id)
        await tx.execute("DELETE FROM grid_columns WHERE table_id = ?", table_id)

    async def _table_with_details(self, conn: _Connection, row: Dict[str, Any]) -> Dict[str, Any]:
        columns = await conn.fetch(
            "SELECT * FROM grid_columns WHERE table_id = ? ORDER BY position ASC", row["id"]
        )
        count = await conn.fetchval("SELECT COUNT(*) FROM grid_rows WHERE table_id = ?", row["id"])
        return {
            "id": row["id"],
            "baseId": row["base_id"],
            "name": row["name"],
            "columns": [self._parse_column_row(column) for column in columns],
            "rowCount": count or 0,
        }

    # Columns

    async def get_columns(self, table_id: str) -> List[Dict[str, Any]]:
        async with self._read() as conn:
            await self._require_table(conn, table_id)
            rows = await conn.fetch(
                "SELECT * FROM grid_columns WHERE table_id = ? ORDER BY position ASC", table_id
            )
        return [self._parse_column_row(row) for row in rows]

    async def create_column(self, table_id: str, name: str, column_type: str) -> Dict[str, Any]:
        """Append a column; existing rows are not touched"""
        column_id = new_id()
        async with self._transaction() as tx:
            await self._require_table(tx, table_id)
            existing = await tx.fetch("SELECT name FROM grid_columns WHERE table_id = ?", table_id)
            if any(row["name"].lower() == name.lower() for row in existing):
                raise GridValidationError("A column with this name already exists")
            await tx.execute(
                "INSERT INTO grid_columns (id, table_id, name, type, position) VALUES (?, ?, ?, ?, ?)",
                column_id, table_id, name, column_type, len(existing),
            )
        return {"id": column_id, "tableId": table_id, "name": name, "type": column_type, "order": len(existing)}

    async def update_column(
        self, column_id: str, name: Optional[str] = None, column_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """Rename and/or retype a column; a rename also rewrites stored row keys"""
        async with self._transaction() as tx:
            column = await tx.fetchrow("SELECT * FROM grid_columns WHERE id = ?", column_id)
            if not column:
                raise NotFoundError("Column not found")
            if name and name != column["name"]:
                await tx.execute("UPDATE grid_columns SET name = ? WHERE id = ?", name, column_id)
                await self._rename_row_key(tx, column["table_id"], column["name"], name)
            if column_type:
                await tx.execute("UPDATE grid_columns SET type = ? WHERE id = ?", column_type, column_id)
            updated = await tx.fetchrow("SELECT * FROM grid_columns WHERE id = ?", column_id)
        return self._parse_column_row(updated)

    async def _rename_row_key(self, tx: _Connection, table_id: str, old: str, new: str):
        if self.is_postgres:
            await tx.execute(
                """UPDATE grid_rows
                   SET data = (data - ?::text) || jsonb_build_object(?::text, data->?::text)
                   WHERE table_id = ? AND jsonb_exists(data, ?)""",
                old, new, old, table_id, old,
            )
            return
        old_path = '$."' + old.replace('"', '\\"') + '"'
        new_path = '$."' + new.replace('"', '\\"') + '"'
        await tx.execute(
            """UPDATE grid_rows
               SET data = json_remove(json_set(data, ?, json_extract(data, ?)), ?)
               WHERE table_id = ? AND json_type(data, ?) IS NOT NULL""",
            new_path, old_path, old_path, table_id, old_path,
        )

    async def delete_column(self, column_id: str):
        """Delete a column, strip its key from rows and keep orders dense"""
        async with self._transaction() as tx:
            column = await tx.fetchrow("SELECT * FROM grid_columns WHERE id = ?", column_id)
            if not column:
                raise NotFoundError("Column not found")
            await tx.execute("DELETE FROM grid_columns WHERE id = ?", column_id)
            if self.is_postgres:
                await tx.execute(
                    "UPDATE grid_rows SET data = data - ?::text WHERE table_id = ?",
                    column["name"], column["table_id"],
                )
            else:
                path = '$."' + column["name"].replace('"', '\\"') + '"'
                await tx.execute(
                    "UPDATE grid_rows SET data = json_remove(data, ?) WHERE table_id = ?",
                    path, column["table_id"],
                )
            await self._densify_columns(tx, column["table_id"])

    async def reorder_columns(self, table_id: str, column_ids: List[str]) -> List[Dict[str, Any]]:
        async with self._transaction() as tx:
            await self._require_table(tx, table_id)
            for i, column_id in enumerate(column_ids):
                await tx.execute(
                    "UPDATE grid_columns SET position = ? WHERE id = ? AND table_id = ?",
                    i, column_id, table_id,
                )
            await self._densify_columns(tx, table_id)
        return await self.get_columns(table_id)

    async def _densify_columns(self, tx: _Connection, table_id: str):
        rows = await tx.fetch(
            "SELECT id FROM grid_columns WHERE table_id = ? ORDER BY position ASC", table_id
        )
        for i, row in enumerate(rows):
            await tx.execute("UPDATE grid_columns SET position = ? WHERE id = ?", i, row["id"])

    # Rows

    async def get_rows_page(
        self,
        table_id: str,
        limit: int = 50,
        offset: int = 0,
        search: Optional[str] = None,
        filters: Optional[List[Dict[str, Any]]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Get a page of rows with search, filters and sorts applied"""
        async with self._read() as conn:
            await self._require_table(conn, table_id)
            columns = await conn.fetch(
                "SELECT name, type FROM grid_columns WHERE table_id = ? ORDER BY position ASC", table_id
            )
            types = {row["name"]: row["type"] for row in columns}

            where, params = self._where_clause(table_id, types, search, filters or [])
            order_by, order_params = self._order_clause(types, sorts or [])

            total = await conn.fetchval(f"SELECT COUNT(*) FROM grid_rows WHERE {where}", *params)
            rows = await conn.fetch(
                f"""SELECT id, table_id, position, data FROM grid_rows
                    WHERE {where} ORDER BY {order_by} LIMIT ? OFFSET ?""",
                *params, *order_params, limit, offset,
            )
        total = total or 0
        return {
            "rows": [self._parse_data_row(row) for row in rows],
            "total": total,
            "hasMore": offset + limit < total,
        }

    def _where_clause(self, table_id, types, search, filters) -> Tuple[str, List[Any]]:
        clauses = ["table_id = ?"]
        params: List[Any] = [table_id]

        if search:
            if types:
                parts = []
                for name in types:
                    expr, expr_params = self._json_text(name)
                    parts.append(self._contains(expr))
                    params.extend(expr_params + [search])
                clauses.append("(" + " OR ".join(parts) + ")")
            else:
                clauses.append(self._contains("CAST(data AS TEXT)"))
                params.append(search)

        for spec in filters:
            clause = self._filter_clause(spec, types)
            if clause:
                clauses.append(clause[0])
                params.extend(clause[1])

        return " AND ".join(clauses), params

    def _filter_clause(self, spec: Dict[str, Any], types: Dict[str, str]) -> Optional[Tuple[str, List[Any]]]:
        name = spec["columnName"]
        operator = spec["operator"]
        value = spec.get("value") or ""
        expr, params = self._json_text(name)

        if operator == "equals":
            return f"{expr} = ?", params + [value]
        if operator == "notEquals":
            return f"{expr} <> ?", params + [value]
        if operator == "contains":
            return self._contains(expr), params + [value]
        if operator == "notContains":
            return f"NOT ({self._contains(expr)})", params + [value]
        if operator == "isEmpty":
            return f"{expr} = ''", params
        if operator == "isNotEmpty":
            return f"{expr} <> ''", params
        if operator in ("greaterThan", "lessThan"):
            symbol = ">" if operator == "greaterThan" else "<"
            if types.get(name) == "number":
                try:
                    number = float(value)
                except ValueError:
                    logger.warning(f"Ignoring non-numeric {operator} filter on {name}: {value!r}")
                    return None
                num_expr, num_params = self._numeric(name)
                return f"{num_expr} {symbol} ?", num_params + [number]
            return f"{expr} {symbol} ?", params + [value]
        logger.warning(f"Unknown filter operator: {operator}")
        return None

    def _order_clause(self, types, sorts) -> Tuple[str, List[Any]]:
        parts = []
        params: List[Any] = []
        for spec in sorts:
            name = spec["columnName"]
            direction = "DESC" if spec.get("direction") == "desc" else "ASC"
            if types.get(name) == "number":
                expr, expr_params = self._numeric(name)
            else:
                expr, expr_params = self._json_text(name)
            parts.append(f"{expr} {direction} NULLS LAST")
            params.extend(expr_params)
        parts.append("position ASC")
        return ", ".join(parts), params

    async def count_rows(self, table_id: str) -> int:
        async with self._read() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM grid_rows WHERE table_id = ?", table_id) or 0

    async def create_row(self, table_id: str, data: Dict[str, str]) -> Dict[str, Any]:
        """Append one row at max(order) + 1"""
        row_id = new_id()
        async with self._transaction() as tx:
            names = await self._column_names(tx, table_id)
            position = await self._next_position(tx, table_id)
            row_data = {name: str(data.get(name) or "") for name in names}
            await tx.execute(
                "INSERT INTO grid_rows (id, table_id, position, data) VALUES (?, ?, ?, ?)",
                row_id, table_id, position, self._dump(row_data),
            )
        return {"id": row_id, "tableId": table_id, "order": position, "data": row_data}

    async def bulk_create_rows(self, table_id: str, records: List[Dict[str, str]]) -> int:
        """Append many rows with contiguous orders in one transaction"""
        async with self._transaction() as tx:
            names = await self._column_names(tx, table_id)
            start = await self._next_position(tx, table_id)
            await tx.executemany(
                "INSERT INTO grid_rows (id, table_id, position, data) VALUES (?, ?, ?, ?)",
                [
                    (new_id(), table_id, start + i,
                     self._dump({name: str(record.get(name) or "") for name in names}))
                    for i, record in enumerate(records)
                ],
            )
        return len(records)

    async def update_row(self, row_id: str, data: Dict[str, str]) -> Dict[str, Any]:
        """Merge the supplied keys into a row's data"""
        async with self._transaction() as tx:
            row = await tx.fetchrow("SELECT * FROM grid_rows WHERE id = ?", row_id)
            if not row:
                raise NotFoundError("Row not found")
            merged = {**self._load(row["data"]), **data}
            await tx.execute("UPDATE grid_rows SET data = ? WHERE id = ?", self._dump(merged), row_id)
        return {"id": row_id, "tableId": row["table_id"], "order": row["position"], "data": merged}

    async def delete_row(self, row_id: str):
        async with self._transaction() as tx:
            deleted = await tx.execute("DELETE FROM grid_rows WHERE id = ?", row_id)
        if not deleted:
            raise NotFoundError("Row not found")

    async def bulk_delete_rows(self, table_id: str, row_ids: List[str]) -> int:
        deleted = 0
        async with self._transaction() as tx:
            await self._require_table(tx, table_id)
            for row_id in row_ids:
                deleted += await tx.execute(
                    "DELETE FROM grid_rows WHERE id = ? AND table_id = ?", row_id, table_id
                )
        return deleted

    async def bulk_update_rows(self, table_id: str, updates: List[Dict[str, Any]]) -> int:
        """Merge data into several rows; unknown ids are skipped"""
        updated = 0
        async with self._transaction() as tx:
            await self._require_table(tx, table_id)
            for update in updates:
                row = await tx.fetchrow(
                    "SELECT data FROM grid_rows WHERE id = ? AND table_id = ?", update["id"], table_id
                )
                if not row:
                    continue
                merged = {**self._load(row["data"]), **update["data"]}
                updated += await tx.execute(
                    "UPDATE grid_rows SET data = ? WHERE id = ?", self._dump(merged), update["id"]
                )
        return updated

    async def _require_table(self, conn: _Connection, table_id: str):
        if not await conn.fetchrow("SELECT id FROM grid_tables WHERE id = ?", table_id):
            raise NotFoundError("Table not found")

    async def _column_names(self, conn: _Connection, table_id: str) -> List[str]:
        await self._require_table(conn, table_id)
        rows = await conn.fetch(
            "SELECT name FROM grid_columns WHERE table_id = ? ORDER BY position ASC", table_id
        )
        return [row["name"] for row in rows]

    async def _next_position(self, conn: _Connection, table_id: str) -> int:
        current = await conn.fetchval("SELECT MAX(position) FROM grid_rows WHERE table_id = ?", table_id)
        return 0 if current is None else current + 1

    async def reset(self):
        """Reset database (development only)"""
        async with self._transaction() as tx:
            for table in ("grid_rows", "grid_columns", "grid_tables", "bases"):
                await tx.execute(f"DELETE FROM {table}")

    # Helper methods
    def _parse_base_row(self, row) -> Dict[str, Any]:
        return {"id": row["id"], "name": row["name"], "ownerId": row["owner_id"]}

    def _parse_column_row(self, row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "tableId": row["table_id"],
            "name": row["name"],
            "type": row["type"],
            "order": row["position"],
        }

    def _parse_data_row(self, row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "tableId": row["table_id"],
            "order": row["position"],
            "data": self._load(row["data"]),
        }
