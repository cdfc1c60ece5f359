# backend/grid_store.py - In-memory mirror of the active table

from typing import Dict, Iterable, List, Optional, Set
import logging

from backend_models import CellValue, Column, ColumnType, Row, Table
from backend_edit_buffer import CellEditBuffer, edit_key, split_key
from backend_cell_values import coerce_cell_value, default_cell_value, from_wire

logger = logging.getLogger(__name__)

class OptimisticGridStore:
    """Rows and table metadata as the grid shows them.

    Mutated immediately on user actions and rebuilt from server fetches.
    Whenever rows are rebuilt, buffered edits are laid back on top so an
    in-flight save never flashes back to the old value.
    """

    def __init__(self, buffer: CellEditBuffer):
        self.buffer = buffer
        self.tables: List[Table] = []
        self.active_table_id: Optional[str] = None
        self.rows: List[Row] = []
        self.total_count = 0
        self.errors: Set[str] = set()
        self.deleted_row_ids: Set[str] = set()
        self._index: Dict[str, int] = {}

    # Table metadata

    def load_tables(self, tables: Iterable[Table]):
        self.tables = [table.model_copy(deep=True) for table in tables]
        for table in self.tables:
            table.columns.sort(key=lambda column: column.order)

    def table(self, table_id: Optional[str] = None) -> Optional[Table]:
        table_id = table_id or self.active_table_id
        for table in self.tables:
            if table.id == table_id:
                return table
        return None

    @property
    def active_table(self) -> Optional[Table]:
        return self.table()

    def set_active_table(self, table_id: Optional[str]):
        if table_id != self.active_table_id:
            self.active_table_id = table_id
            self.clear_rows()

    def add_table_local(self, table: Table):
        self.tables.append(table)

    def rename_table_local(self, table_id: str, name: str) -> Optional[str]:
        table = self.table(table_id)
        if table is None:
            return None
        previous, table.name = table.name, name
        return previous

    def remove_table_local(self, table_id: str):
        self.tables = [table for table in self.tables if table.id != table_id]

    @property
    def columns(self) -> List[Column]:
        table = self.active_table
        return list(table.columns) if table else []

    def column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def column_type(self, name: str) -> ColumnType:
        column = self.column(name)
        return column.type if column else ColumnType.TEXT

    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def has_column_name(self, name: str, exclude: Optional[str] = None) -> bool:
        """Case-insensitive check against the active table's columns."""
        wanted = name.strip().lower()
        return any(
            column.name.lower() == wanted and column.name != exclude
            for column in self.columns
        )

    # Rows

    def clear_rows(self):
        self.rows = []
        self._index = {}
        self.total_count = 0

    def _typed(self, row: Row) -> Row:
        types = {column.name: column.type for column in self.columns}
        data = {
            key: from_wire(value, types[key]) if key in types else value
            for key, value in row.data.items()
        }
        self.buffer.overlay(row.id, data)
        return Row(id=row.id, tableId=row.tableId, order=row.order, data=data)

    def _reindex(self):
        self._index = {row.id: i for i, row in enumerate(self.rows)}

    def replace_rows(self, rows: Iterable[Row], total: Optional[int] = None):
        """Rebuild from a fetch, reapplying buffered edits."""
        self.rows = [self._typed(row) for row in rows if row.id not in self.deleted_row_ids]
        self._reindex()
        self.total_count = len(self.rows) if total is None else total

    def append_rows(self, rows: Iterable[Row], total: Optional[int] = None):
        for row in rows:
            if row.id in self.deleted_row_ids:
                continue
            if row.id in self._index:
                self.rows[self._index[row.id]] = self._typed(row)
                continue
            self._index[row.id] = len(self.rows)
            self.rows.append(self._typed(row))
        if total is not None:
            self.total_count = total

    def row(self, row_id: str) -> Optional[Row]:
        i = self._index.get(row_id)
        return None if i is None else self.rows[i]

    def row_at(self, index: int) -> Optional[Row]:
        if 0 <= index < len(self.rows):
            return self.rows[index]
        return None

    def row_index(self, row_id: str) -> Optional[int]:
        return self._index.get(row_id)

    def get_value(self, row_id: str, column_name: str) -> CellValue:
        row = self.row(row_id)
        return None if row is None else row.data.get(column_name)

    def set_value(self, row_id: str, column_name: str, value: CellValue) -> CellValue:
        """Patch one cell and return its previous value."""
        row = self.row(row_id)
        if row is None:
            logger.debug(f"set_value on unloaded row {row_id}")
            return None
        previous = row.data.get(column_name)
        row.data[column_name] = value
        return previous

    def remove_row_local(self, row_id: str) -> Optional[int]:
        i = self._index.get(row_id)
        if i is None:
            return None
        del self.rows[i]
        self._reindex()
        self.total_count = max(self.total_count - 1, 0)
        self.deleted_row_ids.add(row_id)
        self.errors = {key for key in self.errors if not key.startswith(f"{row_id}|")}
        return i

    def restore_row_local(self, row: Row, index: int):
        self.deleted_row_ids.discard(row.id)
        if row.id in self._index:
            return
        index = max(0, min(index, len(self.rows)))
        self.rows.insert(index, row)
        self._reindex()
        self.total_count += 1

    # Structural edits

    def rename_column_local(self, old_name: str, new_name: str) -> bool:
        column = self.column(old_name)
        if column is None:
            return False
        column.name = new_name
        for row in self.rows:
            if old_name in row.data:
                row.data[new_name] = row.data.pop(old_name)
        renamed = set()
        for key in self.errors:
            row_id, name = split_key(key)
            renamed.add(edit_key(row_id, new_name) if name == old_name else key)
        self.errors = renamed
        return True

    def retype_column_local(self, name: str, new_type: ColumnType) -> Optional[ColumnType]:
        column = self.column(name)
        if column is None:
            return None
        old_type, column.type = column.type, new_type
        for row in self.rows:
            if name in row.data:
                row.data[name] = coerce_cell_value(row.data[name], old_type, new_type)
        return old_type

    def add_column_local(self, column: Column):
        table = self.active_table
        if table is None:
            return
        table.columns.append(column)
        default = default_cell_value(column.type)
        for row in self.rows:
            row.data[column.name] = default

    def reorder_columns_local(self, column_ids: List[str]):
        table = self.active_table
        if table is None:
            return
        positions = {column_id: i for i, column_id in enumerate(column_ids)}
        table.columns.sort(key=lambda column: positions.get(column.id, len(positions)))
        for i, column in enumerate(table.columns):
            column.order = i

    # Error markers

    def mark_error(self, row_id: str, column_name: str):
        self.errors.add(edit_key(row_id, column_name))

    def clear_error(self, row_id: str, column_name: str):
        self.errors.discard(edit_key(row_id, column_name))

    def has_error(self, row_id: str, column_name: str) -> bool:
        return edit_key(row_id, column_name) in self.errors

    def __len__(self) -> int:
        return len(self.rows)
