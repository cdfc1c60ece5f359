import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "backend") not in sys.path:
    sys.path.insert(0, str(ROOT / "backend"))

from backend_edit_buffer import CellEditBuffer
from backend_grid_store import OptimisticGridStore
from backend_models import Column, ColumnType, Row, Table


def make_table(table_id="t1"):
    return Table(
        id=table_id,
        baseId="b1",
        name="Tasks",
        columns=[
            Column(id="c2", tableId=table_id, name="Priority", type=ColumnType.NUMBER, order=1),
            Column(id="c1", tableId=table_id, name="Name", type=ColumnType.TEXT, order=0),
        ],
    )


def make_rows(count=3):
    return [
        Row(id=f"r{i}", tableId="t1", order=i, data={"Name": f"Task {i}", "Priority": str(i)})
        for i in range(count)
    ]


class OptimisticGridStoreTests(unittest.TestCase):
    def setUp(self):
        self.buffer = CellEditBuffer()
        self.store = OptimisticGridStore(self.buffer)
        self.store.load_tables([make_table()])
        self.store.set_active_table("t1")
        self.store.replace_rows(make_rows(), total=3)

    def test_columns_sorted_by_order(self):
        self.assertEqual(["Name", "Priority"], self.store.column_names())

    def test_rows_are_typed_by_column(self):
        self.assertEqual(2, self.store.get_value("r2", "Priority"))
        self.assertEqual("Task 2", self.store.get_value("r2", "Name"))

    def test_replace_reapplies_buffered_edits(self):
        self.buffer.set("r1", "Name", "Local", original="Task 1")
        self.store.replace_rows(make_rows(), total=3)
        self.assertEqual("Local", self.store.get_value("r1", "Name"))
        self.assertEqual("Task 0", self.store.get_value("r0", "Name"))

    def test_append_dedupes_by_id(self):
        self.store.append_rows(make_rows(5), total=5)
        self.assertEqual(5, len(self.store))
        self.assertEqual(["r0", "r1", "r2", "r3", "r4"], [row.id for row in self.store.rows])
        self.assertEqual(5, self.store.total_count)

    def test_set_value_returns_previous(self):
        self.assertEqual("Task 0", self.store.set_value("r0", "Name", "New"))
        self.assertEqual("New", self.store.get_value("r0", "Name"))
        self.assertIsNone(self.store.set_value("missing", "Name", "x"))

    def test_remove_and_restore_row(self):
        self.store.mark_error("r1", "Name")
        row = self.store.row("r1")
        index = self.store.remove_row_local("r1")
        self.assertEqual(1, index)
        self.assertIsNone(self.store.row("r1"))
        self.assertFalse(self.store.has_error("r1", "Name"))
        self.assertEqual(2, self.store.total_count)

        # A refetch racing the delete must not bring the row back
        self.store.replace_rows(make_rows(), total=3)
        self.assertIsNone(self.store.row("r1"))

        self.store.restore_row_local(row, index)
        self.assertEqual(1, self.store.row_index("r1"))

    def test_rename_column_moves_values_and_errors(self):
        self.store.mark_error("r0", "Name")
        self.assertTrue(self.store.rename_column_local("Name", "Title"))
        self.assertEqual(["Title", "Priority"], self.store.column_names())
        self.assertEqual("Task 0", self.store.get_value("r0", "Title"))
        self.assertNotIn("Name", self.store.row("r0").data)
        self.assertTrue(self.store.has_error("r0", "Title"))
        self.assertFalse(self.store.has_error("r0", "Name"))

    def test_retype_column_coerces(self):
        self.store.set_value("r0", "Name", "12")
        old_type = self.store.retype_column_local("Name", ColumnType.NUMBER)
        self.assertEqual(ColumnType.TEXT, old_type)
        self.assertEqual(12, self.store.get_value("r0", "Name"))
        self.assertIsNone(self.store.get_value("r1", "Name"))

        self.store.retype_column_local("Priority", ColumnType.TEXT)
        self.assertEqual("2", self.store.get_value("r2", "Priority"))

    def test_add_column_fills_default(self):
        self.store.add_column_local(Column(id="temp-1", tableId="t1", name="Score", type=ColumnType.NUMBER, order=2))
        self.assertIn("Score", self.store.column_names())
        self.assertTrue(all(row.data["Score"] is None for row in self.store.rows))

    def test_has_column_name_is_case_insensitive(self):
        self.assertTrue(self.store.has_column_name("name"))
        self.assertTrue(self.store.has_column_name(" PRIORITY "))
        self.assertFalse(self.store.has_column_name("Name", exclude="Name"))

    def test_reorder_columns(self):
        self.store.reorder_columns_local(["c2", "c1"])
        self.assertEqual(["Priority", "Name"], self.store.column_names())
        self.assertEqual([0, 1], [column.order for column in self.store.columns])

    def test_switching_table_clears_rows(self):
        self.store.add_table_local(make_table("t2"))
        self.store.set_active_table("t2")
        self.assertEqual(0, len(self.store))
        self.assertEqual(0, self.store.total_count)

    def test_rename_and_remove_table(self):
        self.assertEqual("Tasks", self.store.rename_table_local("t1", "Renamed"))
        self.assertEqual("Renamed", self.store.active_table.name)
        self.store.remove_table_local("t1")
        self.assertIsNone(self.store.table("t1"))


if __name__ == "__main__":
    unittest.main()
