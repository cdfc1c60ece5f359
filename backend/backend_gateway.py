# backend/gateway.py - Persistence gateway used by the grid core

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

import requests

from backend_config import settings
from backend_database import Database
from backend_errors import GatewayError, GridValidationError, NotFoundError
from backend_fake_data import DEFAULT_COLUMNS, fake_records, seed_rows
from backend_models import (
    Base, BulkCreateResult, Column, ColumnType, FilterSpec, GenerateResult,
    Row, RowsPage, SortSpec, Table,
)

logger = logging.getLogger(__name__)

class PersistenceGateway(ABC):
    """Remote data store as seen by the grid.

    Every call is a coroutine and reports failure by raising ``GatewayError``.
    Row payloads cross this boundary as strings keyed by column name.
    """

    # Rows

    @abstractmethod
    async def create_row(self, table_id: str, data: Dict[str, str]) -> Row: ...

    @abstractmethod
    async def bulk_create_rows(self, table_id: str, records: List[Dict[str, str]]) -> BulkCreateResult: ...

    @abstractmethod
    async def update_row(self, row_id: str, data: Dict[str, str]) -> Row: ...

    @abstractmethod
    async def delete_row(self, row_id: str) -> None: ...

    @abstractmethod
    async def get_rows_page(
        self,
        table_id: str,
        limit: int,
        offset: int,
        search: Optional[str] = None,
        filters: Optional[List[FilterSpec]] = None,
        sorts: Optional[List[SortSpec]] = None,
    ) -> RowsPage: ...

    @abstractmethod
    async def bulk_delete_rows(self, table_id: str, row_ids: List[str]) -> int: ...

    @abstractmethod
    async def bulk_update_rows(self, table_id: str, updates: List[Dict[str, Any]]) -> int: ...

    # Columns

    @abstractmethod
    async def get_columns(self, table_id: str) -> List[Column]: ...

    @abstractmethod
    async def create_column(self, table_id: str, name: str, column_type: ColumnType) -> Column: ...

    @abstractmethod
    async def update_column(
        self, column_id: str, name: Optional[str] = None, column_type: Optional[ColumnType] = None
    ) -> Column: ...

    @abstractmethod
    async def delete_column(self, column_id: str) -> None: ...

    @abstractmethod
    async def reorder_columns(self, table_id: str, column_ids: List[str]) -> List[Column]: ...

    # Tables

    @abstractmethod
    async def list_tables(self, base_id: str) -> List[Table]: ...

    @abstractmethod
    async def create_table(self, base_id: str, name: str) -> Table: ...

    @abstractmethod
    async def rename_table(self, table_id: str, name: str) -> Table: ...

    @abstractmethod
    async def delete_table(self, table_id: str) -> None: ...

    @abstractmethod
    async def generate_fake_rows(self, table_id: str, count: int) -> GenerateResult: ...

    # Bases

    @abstractmethod
    async def list_bases(self) -> List[Base]: ...

    @abstractmethod
    async def create_base(self, name: str) -> Base: ...

    @abstractmethod
    async def rename_base(self, base_id: str, name: str) -> Base: ...

    @abstractmethod
    async def delete_base(self, base_id: str) -> None: ...

def _dump_specs(specs) -> List[Dict[str, Any]]:
    return [spec.model_dump(mode="json") if hasattr(spec, "model_dump") else dict(spec) for spec in specs or []]

class DatabaseGateway(PersistenceGateway):
    """In-process gateway over the SQL store.

    Also the service layer behind the HTTP API: table seeding and
    server-side fake generation live here.
    """

    def __init__(self, db: Database, owner_id: Optional[str] = None,
                 generate_batch_size: Optional[int] = None):
        self.db = db
        self.owner_id = owner_id or settings.DEFAULT_OWNER_ID
        self.generate_batch_size = generate_batch_size or settings.BULK_BATCH_SIZE

    async def create_row(self, table_id, data):
        return Row(**await self.db.create_row(table_id, data))

    async def bulk_create_rows(self, table_id, records):
        if len(records) > settings.MAX_BULK_ROWS:
            raise GridValidationError(f"At most {settings.MAX_BULK_ROWS} records per call")
        created = await self.db.bulk_create_rows(table_id, records)
        return BulkCreateResult(created=created)

    async def update_row(self, row_id, data):
        return Row(**await self.db.update_row(row_id, data))

    async def delete_row(self, row_id):
        await self.db.delete_row(row_id)

    async def get_rows_page(self, table_id, limit, offset, search=None, filters=None, sorts=None):
        if not 1 <= limit <= settings.MAX_PAGE_LIMIT:
            raise GridValidationError(f"limit must be between 1 and {settings.MAX_PAGE_LIMIT}")
        if offset < 0:
            raise GridValidationError("offset must not be negative")
        page = await self.db.get_rows_page(
            table_id, limit, offset, search or None, _dump_specs(filters), _dump_specs(sorts)
        )
        return RowsPage(**page)

    async def bulk_delete_rows(self, table_id, row_ids):
        return await self.db.bulk_delete_rows(table_id, row_ids)

    async def bulk_update_rows(self, table_id, updates):
        return await self.db.bulk_update_rows(table_id, updates)

    async def get_columns(self, table_id):
        return [Column(**column) for column in await self.db.get_columns(table_id)]

    async def create_column(self, table_id, name, column_type):
        name = name.strip()
        if not name:
            raise GridValidationError("Field name is required")
        return Column(**await self.db.create_column(table_id, name, ColumnType(column_type).value))

    async def update_column(self, column_id, name=None, column_type=None):
        type_value = ColumnType(column_type).value if column_type else None
        return Column(**await self.db.update_column(column_id, name.strip() if name else None, type_value))

    async def delete_column(self, column_id):
        await self.db.delete_column(column_id)

    async def reorder_columns(self, table_id, column_ids):
        return [Column(**column) for column in await self.db.reorder_columns(table_id, column_ids)]

    async def list_tables(self, base_id):
        return [Table(**table) for table in await self.db.get_tables(base_id)]

    async def create_table(self, base_id, name):
        table = await self.db.create_table(base_id, name, DEFAULT_COLUMNS, seed_rows())
        logger.info(f"Created table {table['id']} ({name}) in base {base_id}")
        return Table(**table)

    async def rename_table(self, table_id, name):
        return Table(**await self.db.rename_table(table_id, name))

    async def delete_table(self, table_id):
        await self.db.delete_table(table_id)

    async def generate_fake_rows(self, table_id, count):
        """Insert ``count`` synthetic rows server-side, one transaction per batch"""
        if not 1 <= count <= settings.MAX_BULK_ROWS:
            raise GridValidationError(f"count must be between 1 and {settings.MAX_BULK_ROWS}")
        columns = await self.get_columns(table_id)
        generated = 0
        while generated < count:
            batch = min(self.generate_batch_size, count - generated)
            generated += await self.db.bulk_create_rows(
                table_id, fake_records(columns, batch, max_number=1000)
            )
        logger.info(f"Generated {generated} rows in table {table_id}")
        return GenerateResult(generated=generated, tableId=table_id)

    async def list_bases(self):
        return [Base(**base) for base in await self.db.get_bases(self.owner_id)]

    async def create_base(self, name):
        return Base(**await self.db.create_base(name, self.owner_id))

    async def rename_base(self, base_id, name):
        return Base(**await self.db.rename_base(base_id, name))

    async def delete_base(self, base_id):
        await self.db.delete_base(base_id)

class HttpGateway(PersistenceGateway):
    """Gateway over the HTTP API.

    ``requests`` is blocking, so every call runs in a worker thread and the
    event loop stays free while it is in flight.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise GatewayError(f"{method} {path} timed out")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"{method} {path} failed: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            if response.status_code == 404:
                raise NotFoundError(str(detail))
            raise GatewayError(str(detail), status=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def create_row(self, table_id, data):
        return Row(**await self._call("POST", f"/api/tables/{table_id}/rows", json={"data": data}))

    async def bulk_create_rows(self, table_id, records):
        body = await self._call("POST", f"/api/tables/{table_id}/rows/bulk", json={"records": records})
        return BulkCreateResult(**body)

    async def update_row(self, row_id, data):
        return Row(**await self._call("PATCH", f"/api/rows/{row_id}", json={"data": data}))

    async def delete_row(self, row_id):
        await self._call("DELETE", f"/api/rows/{row_id}")

    async def get_rows_page(self, table_id, limit, offset, search=None, filters=None, sorts=None):
        body = await self._call("POST", f"/api/tables/{table_id}/rows/query", json={
            "limit": limit,
            "offset": offset,
            "search": search or None,
            "filters": _dump_specs(filters),
            "sorts": _dump_specs(sorts),
        })
        return RowsPage(**body)

    async def bulk_delete_rows(self, table_id, row_ids):
        body = await self._call("POST", f"/api/tables/{table_id}/rows/bulk-delete", json={"ids": row_ids})
        return body["deleted"]

    async def bulk_update_rows(self, table_id, updates):
        body = await self._call("POST", f"/api/tables/{table_id}/rows/bulk-update", json={"updates": updates})
        return body["updated"]

    async def get_columns(self, table_id):
        body = await self._call("GET", f"/api/tables/{table_id}/columns")
        return [Column(**column) for column in body["columns"]]

    async def create_column(self, table_id, name, column_type):
        body = await self._call("POST", f"/api/tables/{table_id}/columns", json={
            "name": name, "type": ColumnType(column_type).value,
        })
        return Column(**body)

    async def update_column(self, column_id, name=None, column_type=None):
        payload = {}
        if name:
            payload["name"] = name
        if column_type:
            payload["type"] = ColumnType(column_type).value
        return Column(**await self._call("PATCH", f"/api/columns/{column_id}", json=payload))

    async def delete_column(self, column_id):
        await self._call("DELETE", f"/api/columns/{column_id}")

    async def reorder_columns(self, table_id, column_ids):
        body = await self._call("POST", f"/api/tables/{table_id}/columns/reorder", json={"columnIds": column_ids})
        return [Column(**column) for column in body["columns"]]

    async def list_tables(self, base_id):
        body = await self._call("GET", f"/api/bases/{base_id}/tables")
        return [Table(**table) for table in body["tables"]]

    async def create_table(self, base_id, name):
        return Table(**await self._call("POST", f"/api/bases/{base_id}/tables", json={"name": name}))

    async def rename_table(self, table_id, name):
        return Table(**await self._call("PATCH", f"/api/tables/{table_id}", json={"name": name}))

    async def delete_table(self, table_id):
        await self._call("DELETE", f"/api/tables/{table_id}")

    async def generate_fake_rows(self, table_id, count):
        body = await self._call("POST", f"/api/tables/{table_id}/generate", json={"count": count})
        return GenerateResult(**body)

    async def list_bases(self):
        body = await self._call("GET", "/api/bases")
        return [Base(**base) for base in body["bases"]]

    async def create_base(self, name):
        return Base(**await self._call("POST", "/api/bases", json={"name": name}))

    async def rename_base(self, base_id, name):
        return Base(**await self._call("PATCH", f"/api/bases/{base_id}", json={"name": name}))

    async def delete_base(self, base_id):
        await self._call("DELETE", f"/api/bases/{base_id}")
