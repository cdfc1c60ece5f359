import asyncio
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "backend") not in sys.path:
    sys.path.insert(0, str(ROOT / "backend"))

from grid_fakes import FakeGateway
from backend_config import settings
from backend_edit_buffer import CellEditBuffer
from backend_grid_store import OptimisticGridStore
from backend_viewport import InfiniteRowLoader, VirtualizedViewport


class VirtualizedViewportTests(unittest.TestCase):
    def make(self, count=1000):
        return VirtualizedViewport(count, row_height=35, viewport_height=350, overscan=5)

    def test_initial_range_includes_overscan_below(self):
        viewport = self.make()
        self.assertEqual((0, 10), viewport.visible_range)
        self.assertEqual((0, 15), viewport.render_range)
        self.assertEqual(35000, viewport.total_size)

    def test_scroll_moves_range(self):
        viewport = self.make()
        self.assertTrue(viewport.scroll_to(35 * 100))
        self.assertEqual((95, 115), viewport.render_range)
        self.assertEqual(114, viewport.last_rendered_index)

    def test_small_scroll_inside_same_rows_reports_no_change(self):
        viewport = self.make()
        viewport.scroll_to(35 * 100 + 5)
        self.assertFalse(viewport.scroll_to(35 * 100 + 10))

    def test_scroll_is_clamped(self):
        viewport = self.make()
        viewport.scroll_to(10 ** 9)
        self.assertEqual(viewport.max_offset, viewport.scroll_offset)
        self.assertEqual(1000, viewport.render_range[1])
        viewport.scroll_to(-50)
        self.assertEqual(0, viewport.scroll_offset)

    def test_empty_viewport(self):
        viewport = self.make(0)
        self.assertEqual((0, 0), viewport.render_range)
        self.assertEqual([], viewport.virtual_items())
        self.assertIsNone(viewport.last_rendered_index)

    def test_short_table_renders_everything(self):
        viewport = self.make(3)
        self.assertEqual((0, 3), viewport.render_range)
        self.assertEqual([0, 35, 70], [item.start for item in viewport.virtual_items()])

    def test_set_count_shrinks_offset(self):
        viewport = self.make()
        viewport.scroll_to(35 * 900)
        self.assertTrue(viewport.set_count(20))
        self.assertEqual((5, 20), viewport.render_range)

    def test_scroll_to_index(self):
        viewport = self.make()
        self.assertTrue(viewport.scroll_to_index(50))
        self.assertEqual(35 * 51 - 350, viewport.scroll_offset)
        self.assertFalse(viewport.scroll_to_index(48))
        viewport.scroll_to_index(0)
        self.assertEqual(0, viewport.scroll_offset)


class InfiniteRowLoaderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.gateway = FakeGateway()
        self.table_id = self.gateway.add_table(rows=[{"Name": f"Row {i}", "Priority": str(i)} for i in range(25)])
        self.store = OptimisticGridStore(CellEditBuffer())
        self.store.load_tables(await self.gateway.list_tables("base-1"))
        self.store.set_active_table(self.table_id)
        self.loader = InfiniteRowLoader(self.gateway, self.store, page_size=10, threshold=3)
        self.loader.reset(self.table_id)

    async def test_pages_accumulate_until_exhausted(self):
        self.assertEqual(10, await self.loader.fetch_next_page())
        self.assertEqual(10, await self.loader.fetch_next_page())
        self.assertEqual(5, await self.loader.fetch_next_page())
        self.assertFalse(self.loader.has_more)
        self.assertEqual(0, await self.loader.fetch_next_page())
        self.assertEqual(25, len(self.store))
        self.assertEqual(25, self.store.total_count)

    async def test_should_fetch_near_loaded_end(self):
        await self.loader.fetch_next_page()
        self.assertFalse(self.loader.should_fetch(5))
        self.assertTrue(self.loader.should_fetch(7))
        self.assertFalse(self.loader.should_fetch(None))

    async def test_maybe_fetch_starts_one_task(self):
        await self.loader.fetch_next_page()
        task = self.loader.maybe_fetch(9)
        self.assertIsNotNone(task)
        self.assertIsNone(self.loader.maybe_fetch(9))
        await task
        self.assertEqual(20, len(self.store))

    async def test_reset_drops_response_of_old_query(self):
        gate = asyncio.Event()
        self.gateway.gates["get_rows_page"] = gate
        task = asyncio.ensure_future(self.loader.fetch_next_page())
        await asyncio.sleep(0)
        self.loader.reset(self.table_id, search="Row 1")
        gate.set()
        self.assertEqual(0, await task)
        self.assertEqual(0, len(self.store))

    async def test_fetch_error_is_logged_and_retryable(self):
        self.gateway.fail.add("get_rows_page")
        with self.assertLogs("backend_viewport", level="ERROR"):
            self.assertEqual(0, await self.loader.fetch_next_page())
        self.gateway.fail.clear()
        self.assertEqual(10, await self.loader.fetch_next_page())

    async def test_reload_refetches_loaded_window(self):
        await self.loader.fetch_next_page()
        await self.loader.fetch_next_page()
        first = self.gateway.table_rows(self.table_id)[0]
        first.data["Name"] = "Changed on server"
        self.assertTrue(await self.loader.reload())
        self.assertEqual(20, len(self.store))
        self.assertEqual("Changed on server", self.store.get_value(first.id, "Name"))
        self.assertEqual(2, self.loader.pages_loaded)

    async def test_reload_of_large_window_is_chunked(self):
        await self.loader.fetch_next_page()
        await self.loader.fetch_next_page()
        self.gateway.calls.clear()
        with patch.object(settings, "MAX_PAGE_LIMIT", 8):
            self.assertTrue(await self.loader.reload())
        self.assertEqual(20, len(self.store))
        self.assertEqual("Row 19", self.store.row_at(19).data["Name"])
        self.assertEqual(
            [(8, 0), (8, 8), (4, 16)],
            [(call[2], call[3]) for call in self.gateway.calls if call[0] == "get_rows_page"],
        )
        self.assertTrue(self.loader.has_more)

    async def test_save_confirmed_during_reload_is_kept(self):
        await self.loader.fetch_next_page()
        first = self.gateway.table_rows(self.table_id)[0]
        gate = asyncio.Event()
        self.gateway.gates["get_rows_page"] = gate
        task = asyncio.ensure_future(self.loader.reload())
        await asyncio.sleep(0)

        # The response below predates the save
        first.data["Name"] = "Before save"
        self.loader.note_saved(first.id, "Name", "Saved")
        gate.set()
        self.assertTrue(await task)
        self.assertEqual("Saved", self.store.get_value(first.id, "Name"))

        # Nothing is remembered once no fetch is out
        self.assertTrue(await self.loader.reload())
        self.assertEqual("Before save", self.store.get_value(first.id, "Name"))


if __name__ == "__main__":
    unittest.main()
