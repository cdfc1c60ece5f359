# backend/grid_controller.py - Selection, editing and structural edits for one base

import asyncio
import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set
import logging

from backend_bulk_insert import BulkInsertionController, BulkInsertResult, CancellationToken
from backend_cell_values import coerce_cell_value, format_cell_value, to_wire, validate_cell_value
from backend_config import settings
from backend_edit_buffer import CellEditBuffer, split_key
from backend_errors import GridValidationError
from backend_fake_data import fake_record
from backend_gateway import PersistenceGateway
from backend_grid_store import OptimisticGridStore
from backend_models import BulkProgress, Column, ColumnType, FilterSpec, Row, SortSpec, Table
from backend_optimistic import run_optimistic
from backend_viewport import InfiniteRowLoader, VirtualizedViewport

logger = logging.getLogger(__name__)

class CellState(str, Enum):
    CLEAN = "clean"
    EDITING = "editing"
    SAVING = "saving"
    ERROR = "error"

class Direction(str, Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

ARROW_KEYS = {
    "ArrowUp": Direction.UP,
    "ArrowDown": Direction.DOWN,
    "ArrowLeft": Direction.LEFT,
    "ArrowRight": Direction.RIGHT,
}
EDIT_KEYS = ("Enter", "F2", " ")

@dataclass(frozen=True)
class CellRef:
    row_index: int
    column_name: str

@dataclass
class ActiveEdit:
    row_id: str
    column_name: str
    seed: str
    draft: str

@dataclass
class Notification:
    level: str
    message: str

class GridController:
    """Top of the grid: wires input to the edit buffer, store and gateway.

    Owns every piece of mutable grid state; child components get it passed
    in. Event handlers never raise gateway errors: failures end up as cell
    error markers, ``field_error``/``table_error`` or notifications.
    """

    def __init__(self, gateway: PersistenceGateway, base_id: str,
                 viewport: Optional[VirtualizedViewport] = None,
                 page_size: Optional[int] = None,
                 bulk: Optional[BulkInsertionController] = None):
        self.gateway = gateway
        self.base_id = base_id
        self.buffer = CellEditBuffer()
        self.store = OptimisticGridStore(self.buffer)
        self.viewport = viewport or VirtualizedViewport()
        self.loader = InfiniteRowLoader(gateway, self.store, page_size=page_size)
        self.bulk = bulk or BulkInsertionController(gateway, refresh=self.refresh_rows)

        self.selected_cell: Optional[CellRef] = None
        self.selected_row: Optional[int] = None
        self.selected_column: Optional[str] = None
        self.editing: Optional[ActiveEdit] = None

        self.search_query = ""
        self.filters: List[FilterSpec] = []
        self.sorts: List[SortSpec] = []

        self.notifications: List[Notification] = []
        self.field_error = ""
        self.table_error: Optional[str] = None
        self.is_creating_table = False
        self.is_creating_row = False

        self.bulk_token: Optional[CancellationToken] = None
        self._tasks: Set[asyncio.Task] = set()
        self._temp_ids = itertools.count(1)
        self._initial_table_attempted = False
        # Rows hidden by a delete that has not answered yet
        self._deleting_rows: Dict[str, Row] = {}

    # State accessors

    @property
    def table_id(self) -> Optional[str]:
        return self.store.active_table_id

    @property
    def tables(self) -> List[Table]:
        return self.store.tables

    @property
    def columns(self) -> List[Column]:
        return self.store.columns

    @property
    def bulk_progress(self) -> BulkProgress:
        return self.bulk.progress

    def cell_state(self, row_id: str, column_name: str) -> CellState:
        if self.editing and self.editing.row_id == row_id and self.editing.column_name == column_name:
            return CellState.EDITING
        if (row_id, column_name) in self.buffer:
            return CellState.SAVING
        if self.store.has_error(row_id, column_name):
            return CellState.ERROR
        return CellState.CLEAN

    def display_value(self, row_id: str, column_name: str) -> str:
        return format_cell_value(self.store.get_value(row_id, column_name), self.store.column_type(column_name))

    def visible_rows(self):
        """(virtual item, row or None when not loaded yet) for the render range"""
        return [(item, self.store.row_at(item.index)) for item in self.viewport.virtual_items()]

    # Notifications and background work

    def notify(self, message: str, level: str = "info"):
        self.notifications.append(Notification(level, message))
        log = logger.error if level == "error" else logger.warning if level == "warning" else logger.info
        log(message)

    def pop_notifications(self) -> List[Notification]:
        pending, self.notifications = self.notifications, []
        return pending

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        """Wait for every background save and page fetch to settle"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Loading

    async def load(self) -> bool:
        """Load the base's tables, creating the first one if there is none"""
        if not await self.refresh_tables():
            return False
        if not self.tables:
            if self._initial_table_attempted:
                return False
            self._initial_table_attempted = True
            return await self.create_table("Table 1") is not None
        if self.store.table(self.table_id) is None:
            await self.select_table(self.tables[0].id)
        else:
            await self.refresh_rows()
        return True

    async def refresh_tables(self) -> bool:
        try:
            tables = await self.gateway.list_tables(self.base_id)
        except Exception as e:
            self.notify(f"Failed to load tables: {e}", "error")
            return False
        self.store.load_tables(tables)
        return True

    async def refresh_rows(self) -> bool:
        """Refetch loaded rows; buffered edits stay on top"""
        if self.table_id is None:
            return False
        if self.loader.pages_loaded:
            ok = await self.loader.reload()
        else:
            ok = await self.loader.fetch_next_page() > 0 or not self.loader.has_more
        self._sync_viewport()
        return ok

    async def _refetch_structure(self):
        await self.refresh_tables()
        await self.refresh_rows()

    def _sync_viewport(self):
        self.viewport.set_count(max(self.store.total_count, len(self.store)))

    async def select_table(self, table_id: str) -> bool:
        if self.store.table(table_id) is None:
            return False
        self.commit_edit()
        self.clear_selection()
        self.store.set_active_table(table_id)
        self.loader.reset(table_id, self.search_query, self.filters, self.sorts)
        self.viewport.scroll_to(0)
        await self.loader.fetch_next_page()
        self._sync_viewport()
        return True

    def on_scroll(self, offset: int) -> bool:
        """Returns True when the rendered range changed"""
        changed = self.viewport.scroll_to(offset)
        self._maybe_fetch_more()
        return changed

    def _maybe_fetch_more(self):
        task = self.loader.maybe_fetch(self.viewport.last_rendered_index)
        if task is not None:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(lambda _: self._sync_viewport())

    async def _requery(self):
        self.commit_edit()
        self.clear_selection()
        self.loader.reset(self.table_id, self.search_query, self.filters, self.sorts)
        self.viewport.scroll_to(0)
        await self.loader.fetch_next_page()
        self._sync_viewport()

    async def set_search(self, query: str):
        self.search_query = query.strip()
        await self._requery()

    async def set_filters(self, filters: List[FilterSpec]):
        self.filters = list(filters)
        await self._requery()

    async def set_sorts(self, sorts: List[SortSpec]):
        self.sorts = list(sorts)
        await self._requery()

    # Selection

    def select_cell(self, row_index: int, column_name: str):
        self.selected_cell = CellRef(row_index, column_name)
        self.selected_row = None
        self.selected_column = None

    def select_row(self, row_index: int):
        self.selected_row = None if self.selected_row == row_index else row_index
        self.selected_column = None
        self.selected_cell = None

    def select_column(self, column_name: str):
        self.selected_column = None if self.selected_column == column_name else column_name
        self.selected_row = None
        self.selected_cell = None

    def clear_selection(self):
        self.selected_cell = None
        self.selected_row = None
        self.selected_column = None

    def click_outside(self):
        """Click on the empty grid body: commits any edit and drops selection"""
        self.commit_edit()
        self.clear_selection()

    # Mouse and keyboard

    def click_cell(self, row_index: int, column_name: str):
        """First click selects, a click on the selected cell starts editing"""
        if self.editing:
            row = self.store.row_at(row_index)
            if row is not None and row.id == self.editing.row_id and column_name == self.editing.column_name:
                return
            self.commit_edit()
            self.select_cell(row_index, column_name)
            return
        if self.selected_cell == CellRef(row_index, column_name):
            self.begin_edit()
        else:
            self.select_cell(row_index, column_name)

    def double_click_cell(self, row_index: int, column_name: str):
        if self.editing:
            self.commit_edit()
        self.select_cell(row_index, column_name)
        self.begin_edit()

    def handle_key(self, key: str, shift: bool = False) -> bool:
        """Keyboard contract of the grid. Returns True when the key was consumed."""
        if self.editing:
            if key == "Escape":
                self.cancel_edit()
                return True
            if key == "Enter":
                if shift and self.store.column_type(self.editing.column_name) == ColumnType.TEXT:
                    self.editing.draft += "\n"
                    return True
                self.commit_edit()
                self.navigate(Direction.DOWN)
                return True
            if key == "Tab":
                self.commit_edit()
                self.navigate(Direction.LEFT if shift else Direction.RIGHT)
                return True
            return False

        if self.selected_cell is None:
            return False
        if key in ARROW_KEYS:
            self.navigate(ARROW_KEYS[key])
            return True
        if key in EDIT_KEYS:
            return self.begin_edit()
        return False

    def navigate(self, direction: Direction) -> bool:
        """Move the selected cell one step, clamped at the grid edges"""
        if self.selected_cell is None or not len(self.store):
            return False
        names = self.store.column_names()
        if not names:
            return False
        row_index = self.selected_cell.row_index
        column_index = names.index(self.selected_cell.column_name) if self.selected_cell.column_name in names else 0

        if direction == Direction.UP:
            row_index = max(0, row_index - 1)
        elif direction == Direction.DOWN:
            row_index = min(len(self.store) - 1, row_index + 1)
        elif direction == Direction.LEFT:
            column_index = max(0, column_index - 1)
        elif direction == Direction.RIGHT:
            column_index = min(len(names) - 1, column_index + 1)

        moved = CellRef(row_index, names[column_index])
        changed = moved != self.selected_cell
        self.selected_cell = moved
        self.viewport.scroll_to_index(row_index)
        self._maybe_fetch_more()
        return changed

    # Cell editing

    def begin_edit(self) -> bool:
        """Clean -> Editing on the selected cell, seeded with its display value"""
        if self.selected_cell is None:
            return False
        row = self.store.row_at(self.selected_cell.row_index)
        column_name = self.selected_cell.column_name
        if row is None or self.store.column(column_name) is None:
            return False
        seed = self.display_value(row.id, column_name)
        self.editing = ActiveEdit(row.id, column_name, seed, seed)
        return True

    def set_draft(self, text: str):
        if self.editing:
            self.editing.draft = text

    def cancel_edit(self):
        self.editing = None

    def commit_edit(self) -> Optional[asyncio.Task]:
        """Editing -> Saving: buffer, patch the row and persist in the background.

        The local patch happens before this returns, so navigation right
        after a keyboard commit already sees the new value.
        """
        edit, self.editing = self.editing, None
        if edit is None:
            return None
        if self.store.row(edit.row_id) is None:
            logger.warning(f"Dropping edit for unloaded row {edit.row_id}")
            return None

        value = validate_cell_value(edit.draft, self.store.column_type(edit.column_name))
        previous = self.store.get_value(edit.row_id, edit.column_name)
        seq = self.buffer.set(edit.row_id, edit.column_name, value, original=previous)
        self.store.set_value(edit.row_id, edit.column_name, value)
        return self._spawn(self._persist_cell(edit.row_id, edit.column_name, value, seq))

    async def _persist_cell(self, row_id: str, column_name: str, value, seq: int) -> bool:
        try:
            await self.gateway.update_row(row_id, {column_name: to_wire(value)})
        except Exception as e:
            entry = self.buffer.find(row_id, seq)
            if entry is None:
                logger.info(f"Ignoring failed save of {row_id}|{column_name}: a newer edit superseded it")
                return False
            logger.error(f"Failed to save cell {row_id}|{entry.column_name}: {e}")
            self.buffer.clear(row_id, entry.column_name, seq)
            self.store.set_value(row_id, entry.column_name, entry.original)
            hidden = self._deleting_rows.get(row_id)
            if hidden is not None:
                hidden.data[entry.column_name] = entry.original
            self.store.mark_error(row_id, entry.column_name)
            return False

        entry = self.buffer.find(row_id, seq)
        current_name = entry.column_name if entry else column_name
        self.loader.note_saved(row_id, current_name, value)
        if self.buffer.confirm(row_id, current_name, seq, value):
            self.store.clear_error(row_id, current_name)
        return True

    async def save_all_pending(self) -> bool:
        """Re-send every buffered edit, e.g. before leaving the page"""
        entries = self.buffer.entries()
        if not entries:
            return True
        results = await asyncio.gather(*[
            self._persist_cell(entry.row_id, entry.column_name, entry.value, entry.seq)
            for entry in entries
        ])
        return all(results)

    # Rows

    async def create_row(self) -> Optional[Row]:
        """Append a row of generated values"""
        if self.table_id is None or self.is_creating_row:
            return None
        self.is_creating_row = True
        try:
            row = await self.gateway.create_row(self.table_id, fake_record(self.columns))
        except Exception as e:
            self.notify(f"Failed to create row: {e}", "error")
            return None
        finally:
            self.is_creating_row = False
        await self.refresh_rows()
        return row

    async def delete_row(self, row_id: str) -> bool:
        row = self.store.row(row_id)
        if row is None:
            return False
        removed = {}

        # Buffered edits of the row stay until the delete is confirmed so its
        # in-flight saves can still revert the hidden row
        def apply():
            removed["errors"] = {key for key in self.store.errors if split_key(key)[0] == row_id}
            removed["index"] = self.store.remove_row_local(row_id)
            self._deleting_rows[row_id] = row
            if self.selected_cell and self.selected_cell.row_index >= len(self.store):
                self.clear_selection()
            self._sync_viewport()

        def confirm(_):
            self._deleting_rows.pop(row_id, None)
            self.buffer.drop_row(row_id)
            self.store.errors = {key for key in self.store.errors if split_key(key)[0] != row_id}

        def compensate(e):
            self._deleting_rows.pop(row_id, None)
            self.store.restore_row_local(row, removed["index"])
            self.store.errors |= removed["errors"]
            self._sync_viewport()
            self.notify(f"Failed to delete row: {e}", "error")

        outcome = await run_optimistic(
            apply, lambda: self.gateway.delete_row(row_id),
            confirm=confirm, compensate=compensate, label="delete row",
        )
        return outcome.ok

    # Columns

    async def add_column(self, name: str, column_type: ColumnType = ColumnType.TEXT) -> bool:
        """Show the column at once, then refetch to pick up its real id"""
        self.field_error = ""
        name = name.strip()
        try:
            if not name:
                raise GridValidationError("Field name is required")
            if self.table_id is None:
                raise GridValidationError("No active table selected")
            if self.store.has_column_name(name):
                raise GridValidationError("A column with this name already exists")
        except GridValidationError as e:
            self.field_error = str(e)
            return False

        table_id = self.table_id
        column_type = ColumnType(column_type)
        temp = Column(
            id=f"temp-{next(self._temp_ids)}",
            tableId=table_id,
            name=name,
            type=column_type,
            order=len(self.columns),
        )

        async def compensate(e):
            self.field_error = str(e) or "Failed to create column"
            self.notify(f"Failed to add column: {e}", "error")
            await self._refetch_structure()

        outcome = await run_optimistic(
            lambda: self.store.add_column_local(temp),
            lambda: self.gateway.create_column(table_id, name, column_type),
            confirm=lambda _: self._refetch_structure(),
            compensate=compensate,
            label="add column",
        )
        return outcome.ok

    async def rename_column(self, old_name: str, new_name: str) -> bool:
        new_name = new_name.strip()
        if self.table_id is None or not new_name or old_name == new_name:
            return False
        column = self.store.column(old_name)
        if column is None:
            return False
        if self.store.has_column_name(new_name, exclude=old_name):
            self.notify("A column with this name already exists", "warning")
            return False
        column_id = column.id

        def apply():
            self.store.rename_column_local(old_name, new_name)
            self.buffer.rename_column(old_name, new_name)
            self._rename_selection(old_name, new_name)
            if self.editing and self.editing.column_name == old_name:
                self.editing.column_name = new_name

        async def compensate(e):
            self.buffer.rename_column(new_name, old_name)
            self._rename_selection(new_name, old_name)
            self.notify(f"Failed to rename column: {e}", "error")
            await self._refetch_structure()

        outcome = await run_optimistic(
            apply, lambda: self.gateway.update_column(column_id, name=new_name),
            compensate=compensate, label="rename column",
        )
        return outcome.ok

    def _rename_selection(self, old_name: str, new_name: str):
        if self.selected_cell and self.selected_cell.column_name == old_name:
            self.selected_cell = CellRef(self.selected_cell.row_index, new_name)
        if self.selected_column == old_name:
            self.selected_column = new_name

    async def change_column_type(self, column_name: str, new_type: ColumnType) -> bool:
        """Retype locally (coercing loaded and buffered values), then persist"""
        new_type = ColumnType(new_type)
        column = self.store.column(column_name)
        if self.table_id is None or column is None or column.type == new_type:
            return False
        column_id, old_type = column.id, column.type

        def apply():
            self.store.retype_column_local(column_name, new_type)
            for entry in self.buffer:
                if entry.column_name == column_name:
                    entry.value = coerce_cell_value(entry.value, old_type, new_type)
                    entry.original = coerce_cell_value(entry.original, old_type, new_type)

        async def compensate(e):
            self.notify(f"Failed to change column type: {e}", "error")
            await self._refetch_structure()

        outcome = await run_optimistic(
            apply, lambda: self.gateway.update_column(column_id, column_type=new_type),
            compensate=compensate, label="change column type",
        )
        return outcome.ok

    async def delete_column(self, column_name: str) -> bool:
        """Delete by name within the active table; rows catch up on refetch"""
        column = self.store.column(column_name)
        if self.table_id is None or column is None:
            return False
        try:
            await self.gateway.delete_column(column.id)
        except Exception as e:
            self.notify(f"Failed to delete column: {e}", "error")
            return False
        if self.selected_column == column_name:
            self.selected_column = None
        if self.selected_cell and self.selected_cell.column_name == column_name:
            self.selected_cell = None
        if self.editing and self.editing.column_name == column_name:
            self.editing = None
        await self._refetch_structure()
        return True

    async def reorder_columns(self, column_ids: List[str]) -> bool:
        table_id = self.table_id
        if table_id is None:
            return False

        async def compensate(e):
            self.notify(f"Failed to reorder columns: {e}", "error")
            await self.refresh_tables()

        outcome = await run_optimistic(
            lambda: self.store.reorder_columns_local(column_ids),
            lambda: self.gateway.reorder_columns(table_id, column_ids),
            compensate=compensate, label="reorder columns",
        )
        return outcome.ok

    # Tables

    async def create_table(self, name: Optional[str] = None) -> Optional[Table]:
        """Create a seeded table and switch to it once the server has it"""
        name = (name or "").strip() or f"Table {len(self.tables) + 1}"
        self.is_creating_table = True
        self.table_error = None
        try:
            table = await self.gateway.create_table(self.base_id, name)
        except Exception as e:
            self.table_error = str(e)
            self.notify(f"Failed to create table: {e}", "error")
            return None
        finally:
            self.is_creating_table = False
        await self.refresh_tables()
        if self.store.table(table.id) is None:
            self.store.add_table_local(table)
        await self.select_table(table.id)
        return table

    async def rename_table(self, table_id: str, name: str) -> bool:
        name = name.strip()
        table = self.store.table(table_id)
        if table is None or not name or table.name == name:
            return False

        async def compensate(e):
            self.notify(f"Failed to rename table: {e}", "error")
            await self.refresh_tables()

        outcome = await run_optimistic(
            lambda: self.store.rename_table_local(table_id, name),
            lambda: self.gateway.rename_table(table_id, name),
            compensate=compensate, label="rename table",
        )
        return outcome.ok

    async def delete_table(self, table_id: str) -> bool:
        """Delete a table; the last one in a base cannot be deleted"""
        if self.store.table(table_id) is None:
            return False
        if len(self.tables) <= 1:
            self.notify("Cannot delete the only table in a base", "warning")
            return False
        try:
            await self.gateway.delete_table(table_id)
        except Exception as e:
            self.notify(f"Failed to delete table: {e}", "error")
            return False
        was_active = table_id == self.table_id
        await self.refresh_tables()
        self.store.remove_table_local(table_id)
        if was_active and self.tables:
            await self.select_table(self.tables[0].id)
        return True

    # Bulk

    async def add_fake_records(self, count: int) -> Optional[BulkInsertResult]:
        """Client-driven bulk insertion, cancellable with ``cancel_bulk``"""
        if self.table_id is None:
            return None
        token = CancellationToken()
        self.bulk_token = token
        try:
            result = await self.bulk.run(self.table_id, self.columns, count, token)
        except GridValidationError as e:
            self.notify(str(e), "warning")
            return None
        finally:
            if self.bulk_token is token:
                self.bulk_token = None
        if result.error is not None:
            self.notify(f"Bulk insertion stopped after {result.inserted} rows: {result.error}", "error")
        elif result.cancelled:
            self.notify(f"Bulk insertion cancelled after {result.inserted} rows")
        else:
            self.notify(f"Added {result.inserted} rows")
        return result

    def cancel_bulk(self) -> bool:
        if self.bulk_token is None:
            return False
        self.bulk_token.cancel()
        return True

    async def generate_server_rows(self, count: int = settings.MAX_BULK_ROWS) -> int:
        """Ask the server to synthesize rows itself (the 100k demo action)"""
        if self.table_id is None:
            return 0
        try:
            result = await self.gateway.generate_fake_rows(self.table_id, count)
        except Exception as e:
            self.notify(f"Failed to generate rows: {e}", "error")
            return 0
        await self.refresh_rows()
        self.notify(f"Generated {result.generated} rows")
        return result.generated
