# backend/viewport.py - Row virtualization and infinite-scroll paging

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

from backend_cell_values import to_wire
from backend_config import settings
from backend_gateway import PersistenceGateway
from backend_grid_store import OptimisticGridStore
from backend_models import CellValue, FilterSpec, Row, SortSpec

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class VirtualItem:
    index: int
    start: int
    size: int

class VirtualizedViewport:
    """Which of ``count`` fixed-height rows to render for a scroll offset.

    The render range is the visible slice widened by ``overscan`` rows on
    each side, clamped to ``[0, count)``. ``scroll_to`` and ``set_count``
    report whether that range changed, so callers re-render only then.
    """

    def __init__(self, count: int = 0, row_height: Optional[int] = None,
                 viewport_height: Optional[int] = None, overscan: Optional[int] = None):
        self.count = max(count, 0)
        self.row_height = row_height or settings.ROW_HEIGHT
        self.viewport_height = viewport_height or settings.VIEWPORT_HEIGHT
        self.overscan = settings.OVERSCAN if overscan is None else overscan
        self.scroll_offset = 0
        self._range = self._compute_range()

    @property
    def total_size(self) -> int:
        return self.count * self.row_height

    @property
    def max_offset(self) -> int:
        return max(self.total_size - self.viewport_height, 0)

    @property
    def render_range(self) -> Tuple[int, int]:
        """Half-open ``(start, end)`` of row indexes to render"""
        return self._range

    @property
    def visible_range(self) -> Tuple[int, int]:
        if not self.count:
            return (0, 0)
        first = min(self.scroll_offset // self.row_height, self.count - 1)
        last = min(-(-(self.scroll_offset + self.viewport_height) // self.row_height), self.count)
        return (first, max(last, first + 1))

    def _compute_range(self) -> Tuple[int, int]:
        if not self.count:
            return (0, 0)
        first, last = self.visible_range
        return (max(first - self.overscan, 0), min(last + self.overscan, self.count))

    def _update(self) -> bool:
        new_range = self._compute_range()
        changed = new_range != self._range
        self._range = new_range
        return changed

    def scroll_to(self, offset: int) -> bool:
        self.scroll_offset = max(0, min(int(offset), self.max_offset))
        return self._update()

    def set_count(self, count: int) -> bool:
        self.count = max(count, 0)
        self.scroll_offset = min(self.scroll_offset, self.max_offset)
        return self._update()

    def resize(self, viewport_height: int) -> bool:
        self.viewport_height = max(viewport_height, self.row_height)
        self.scroll_offset = min(self.scroll_offset, self.max_offset)
        return self._update()

    def scroll_to_index(self, index: int) -> bool:
        """Scroll just enough for row ``index`` to be fully visible"""
        if not self.count:
            return False
        index = max(0, min(index, self.count - 1))
        top = index * self.row_height
        bottom = top + self.row_height
        if top < self.scroll_offset:
            return self.scroll_to(top)
        if bottom > self.scroll_offset + self.viewport_height:
            return self.scroll_to(bottom - self.viewport_height)
        return False

    def virtual_items(self) -> List[VirtualItem]:
        start, end = self._range
        return [VirtualItem(i, i * self.row_height, self.row_height) for i in range(start, end)]

    @property
    def last_rendered_index(self) -> Optional[int]:
        start, end = self._range
        return end - 1 if end > start else None

class InfiniteRowLoader:
    """Fetches rows page by page into a grid store.

    Pages only accumulate. Changing the query (``reset``) bumps a generation
    counter, and responses from an older generation are dropped. Saves that
    succeed while a fetch is out are laid over its response, since the
    response may predate them.
    """

    def __init__(self, gateway: PersistenceGateway, store: OptimisticGridStore,
                 page_size: Optional[int] = None, threshold: Optional[int] = None):
        self.gateway = gateway
        self.store = store
        self.page_size = page_size or settings.PAGE_SIZE
        self.threshold = settings.PREFETCH_THRESHOLD if threshold is None else threshold
        self.table_id: Optional[str] = None
        self.search: Optional[str] = None
        self.filters: List[FilterSpec] = []
        self.sorts: List[SortSpec] = []
        self.pages_loaded = 0
        self.has_more = False
        self.is_fetching = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._in_flight = 0
        self._saved_during_fetch: Dict[Tuple[str, str], CellValue] = {}

    def reset(self, table_id: Optional[str] = None, search: Optional[str] = None,
              filters: Optional[List[FilterSpec]] = None, sorts: Optional[List[SortSpec]] = None):
        """Start over with a new query; loaded pages are discarded"""
        self.table_id = table_id
        self.search = search or None
        self.filters = list(filters or [])
        self.sorts = list(sorts or [])
        self.pages_loaded = 0
        self.has_more = table_id is not None
        self.is_fetching = False
        self._generation += 1
        self._task = None
        self._saved_during_fetch.clear()
        self.store.clear_rows()

    @property
    def loaded_count(self) -> int:
        return len(self.store)

    def should_fetch(self, last_index: Optional[int]) -> bool:
        if last_index is None or self.table_id is None:
            return False
        return (
            last_index >= self.loaded_count - self.threshold
            and self.has_more
            and not self.is_fetching
            and (self._task is None or self._task.done())
        )

    def note_saved(self, row_id: str, column_name: str, value: CellValue):
        """Record a confirmed save so fetches already out cannot undo it"""
        if self._in_flight:
            self._saved_during_fetch[(row_id, column_name)] = value

    def _begin_fetch(self):
        self._in_flight += 1

    def _end_fetch(self):
        self._in_flight -= 1
        if not self._in_flight:
            self._saved_during_fetch.clear()

    def _with_saved(self, rows: List[Row]) -> List[Row]:
        if not self._saved_during_fetch:
            return rows
        for row in rows:
            for (row_id, column_name), value in self._saved_during_fetch.items():
                if row_id == row.id:
                    row.data[column_name] = to_wire(value)
        return rows

    async def fetch_next_page(self) -> int:
        """Append the next page; returns the number of rows received"""
        if self.table_id is None or not self.has_more or self.is_fetching:
            return 0
        generation = self._generation
        self.is_fetching = True
        self._begin_fetch()
        try:
            page = await self.gateway.get_rows_page(
                self.table_id, self.page_size, self.loaded_count,
                self.search, self.filters, self.sorts,
            )
        except Exception as e:
            logger.error(f"Failed to fetch rows page: {e}")
            if generation == self._generation:
                self.is_fetching = False
            self._end_fetch()
            return 0

        if generation != self._generation:
            logger.debug("Dropping rows page from a superseded query")
            self._end_fetch()
            return 0
        self.is_fetching = False
        self.store.append_rows(self._with_saved(page.rows), total=page.total)
        self._end_fetch()
        self.pages_loaded += 1
        self.has_more = page.hasMore
        return len(page.rows)

    def maybe_fetch(self, last_index: Optional[int]) -> Optional[asyncio.Task]:
        """Start loading the next page when the viewport nears the loaded end"""
        if not self.should_fetch(last_index):
            return None
        self._task = asyncio.ensure_future(self.fetch_next_page())
        return self._task

    async def reload(self) -> bool:
        """Refetch the whole loaded window, buffer edits reapplied.

        Windows larger than one request are fetched in chunks and the store is
        replaced once, so no loaded page is lost.
        """
        if self.table_id is None:
            return False
        generation = self._generation
        target = max(self.page_size, self.loaded_count)
        rows: List[Row] = []
        self._begin_fetch()
        try:
            while True:
                limit = min(settings.MAX_PAGE_LIMIT, target - len(rows))
                page = await self.gateway.get_rows_page(
                    self.table_id, limit, len(rows), self.search, self.filters, self.sorts
                )
                rows.extend(page.rows)
                if len(rows) >= target or not page.hasMore or not page.rows:
                    break
            if generation != self._generation:
                return False
            self.store.replace_rows(self._with_saved(rows), total=page.total)
        except Exception as e:
            logger.error(f"Failed to reload rows: {e}")
            return False
        finally:
            self._end_fetch()
        self.pages_loaded = max(-(-len(rows) // self.page_size), 1)
        self.has_more = page.hasMore
        return True
