"""SQL store and DatabaseGateway against an in-memory SQLite database."""

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "backend") not in sys.path:
    sys.path.insert(0, str(ROOT / "backend"))

from backend_database import Database
from backend_errors import GridValidationError, NotFoundError
from backend_fake_data import DEFAULT_COLUMNS, SEED_ROW_COUNT
from backend_gateway import DatabaseGateway
from backend_models import ColumnType, FilterSpec, SortSpec

COLUMNS = [{"name": "Name", "type": "text"}, {"name": "Priority", "type": "number"}]
ROWS = [
    {"Name": "Alpha", "Priority": "3"},
    {"Name": "beta", "Priority": "10"},
    {"Name": "Gamma", "Priority": ""},
    {"Name": "", "Priority": "7"},
]


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = Database("sqlite:///:memory:")
        await self.db.init()
        self.gateway = DatabaseGateway(self.db, owner_id="tester", generate_batch_size=40)
        self.base = await self.gateway.create_base("Workspace")
        table = await self.db.create_table(self.base.id, "Fixed", COLUMNS, ROWS)
        self.table_id = table["id"]

    async def asyncTearDown(self):
        await self.db.close()

    async def names(self, **query):
        page = await self.gateway.get_rows_page(self.table_id, 50, 0, **query)
        return [row.data["Name"] for row in page.rows]


class BaseAndTableTests(DatabaseTestCase):
    async def test_bases_are_scoped_to_owner(self):
        bases = await self.gateway.list_bases()
        self.assertEqual(["Workspace"], [base.name for base in bases])
        self.assertEqual(["Fixed"], [table.name for table in bases[0].tables])
        other = DatabaseGateway(self.db, owner_id="someone-else")
        self.assertEqual([], await other.list_bases())

    async def test_create_table_is_seeded(self):
        table = await self.gateway.create_table(self.base.id, "Seeded")
        self.assertEqual([column["name"] for column in DEFAULT_COLUMNS], [c.name for c in table.columns])
        self.assertEqual([0, 1, 2], [c.order for c in table.columns])
        self.assertEqual(SEED_ROW_COUNT, table.rowCount)

    async def test_create_table_in_unknown_base(self):
        with self.assertRaises(NotFoundError):
            await self.gateway.create_table("missing", "Nope")

    async def test_rename_and_delete_table(self):
        table = await self.gateway.rename_table(self.table_id, "Renamed")
        self.assertEqual("Renamed", table.name)
        await self.gateway.delete_table(self.table_id)
        self.assertEqual([], await self.gateway.list_tables(self.base.id))
        with self.assertRaises(NotFoundError):
            await self.gateway.delete_table(self.table_id)

    async def test_delete_base_removes_tables(self):
        await self.gateway.delete_base(self.base.id)
        self.assertEqual([], await self.gateway.list_bases())
        self.assertEqual(0, await self.db.count_rows(self.table_id))
        with self.assertRaises(NotFoundError):
            await self.gateway.list_tables(self.base.id)


class ColumnTests(DatabaseTestCase):
    async def test_create_column_rejects_duplicates_case_insensitively(self):
        column = await self.gateway.create_column(self.table_id, "Score", ColumnType.NUMBER)
        self.assertEqual(2, column.order)
        with self.assertRaises(GridValidationError):
            await self.gateway.create_column(self.table_id, "score", ColumnType.TEXT)
        with self.assertRaises(GridValidationError):
            await self.gateway.create_column(self.table_id, "   ", ColumnType.TEXT)

    async def test_rename_rewrites_row_keys(self):
        column = (await self.gateway.get_columns(self.table_id))[0]
        updated = await self.gateway.update_column(column.id, name="Title")
        self.assertEqual("Title", updated.name)
        page = await self.gateway.get_rows_page(self.table_id, 50, 0)
        self.assertEqual("Alpha", page.rows[0].data["Title"])
        self.assertNotIn("Name", page.rows[0].data)

    async def test_retype_keeps_stored_strings(self):
        column = (await self.gateway.get_columns(self.table_id))[1]
        updated = await self.gateway.update_column(column.id, column_type=ColumnType.TEXT)
        self.assertEqual(ColumnType.TEXT, updated.type)
        page = await self.gateway.get_rows_page(self.table_id, 50, 0)
        self.assertEqual("10", page.rows[1].data["Priority"])

    async def test_delete_column_strips_values_and_densifies(self):
        await self.gateway.create_column(self.table_id, "Notes", ColumnType.TEXT)
        columns = await self.gateway.get_columns(self.table_id)
        await self.gateway.delete_column(columns[0].id)
        remaining = await self.gateway.get_columns(self.table_id)
        self.assertEqual(["Priority", "Notes"], [c.name for c in remaining])
        self.assertEqual([0, 1], [c.order for c in remaining])
        page = await self.gateway.get_rows_page(self.table_id, 50, 0)
        self.assertNotIn("Name", page.rows[0].data)

    async def test_reorder_columns(self):
        columns = await self.gateway.get_columns(self.table_id)
        reordered = await self.gateway.reorder_columns(self.table_id, [columns[1].id, columns[0].id])
        self.assertEqual(["Priority", "Name"], [c.name for c in reordered])

    async def test_unknown_column(self):
        with self.assertRaises(NotFoundError):
            await self.gateway.update_column("missing", name="X")


class RowQueryTests(DatabaseTestCase):
    async def test_paging(self):
        first = await self.gateway.get_rows_page(self.table_id, 2, 0)
        self.assertEqual(4, first.total)
        self.assertTrue(first.hasMore)
        self.assertEqual(["Alpha", "beta"], [row.data["Name"] for row in first.rows])
        second = await self.gateway.get_rows_page(self.table_id, 2, 2)
        self.assertFalse(second.hasMore)
        self.assertEqual([2, 3], [row.order for row in second.rows])

    async def test_limit_is_validated(self):
        with self.assertRaises(GridValidationError):
            await self.gateway.get_rows_page(self.table_id, 0, 0)
        with self.assertRaises(GridValidationError):
            await self.gateway.get_rows_page(self.table_id, 1001, 0)

    async def test_search_is_case_insensitive_across_columns(self):
        self.assertEqual(["Alpha"], await self.names(search="ALP"))
        self.assertEqual(["beta"], await self.names(search="10"))

    async def test_text_filters(self):
        def spec(operator, value=None):
            return [FilterSpec(columnName="Name", operator=operator, value=value)]

        self.assertEqual(["beta"], await self.names(filters=spec("equals", "beta")))
        self.assertEqual(["Alpha", "beta", "Gamma"], await self.names(filters=spec("contains", "a")))
        self.assertEqual([""], await self.names(filters=spec("notContains", "a")))
        self.assertEqual([""], await self.names(filters=spec("isEmpty")))
        self.assertEqual(3, len(await self.names(filters=spec("isNotEmpty"))))
        self.assertEqual(3, len(await self.names(filters=spec("notEquals", "beta"))))

    async def test_number_filters_compare_numerically(self):
        greater = [FilterSpec(columnName="Priority", operator="greaterThan", value="5")]
        self.assertEqual(["beta", ""], await self.names(filters=greater))
        less = [FilterSpec(columnName="Priority", operator="lessThan", value="5")]
        self.assertEqual(["Alpha"], await self.names(filters=less))

    async def test_number_sort_puts_blanks_last(self):
        desc = [SortSpec(columnName="Priority", direction="desc")]
        self.assertEqual(["beta", "", "Alpha", "Gamma"], await self.names(sorts=desc))
        asc = [SortSpec(columnName="Priority", direction="asc")]
        self.assertEqual(["Alpha", "", "beta", "Gamma"], await self.names(sorts=asc))

    async def test_non_numeric_text_is_not_a_number(self):
        await self.gateway.create_row(self.table_id, {"Name": "Junk", "Priority": "abc"})
        await self.gateway.create_row(self.table_id, {"Name": "Signed", "Priority": " -2.5 "})
        above = [FilterSpec(columnName="Priority", operator="greaterThan", value="-1")]
        self.assertEqual(["Alpha", "beta", ""], await self.names(filters=above))
        below = [FilterSpec(columnName="Priority", operator="lessThan", value="0")]
        self.assertEqual(["Signed"], await self.names(filters=below))
        asc = [SortSpec(columnName="Priority", direction="asc")]
        self.assertEqual(["Signed", "Alpha", "", "beta", "Gamma", "Junk"], await self.names(sorts=asc))


class RowWriteTests(DatabaseTestCase):
    async def test_create_row_appends_with_known_columns(self):
        row = await self.gateway.create_row(self.table_id, {"Name": "Delta", "Unknown": "x"})
        self.assertEqual(4, row.order)
        self.assertEqual({"Name": "Delta", "Priority": ""}, row.data)

    async def test_bulk_create_uses_contiguous_orders(self):
        result = await self.gateway.bulk_create_rows(self.table_id, [{"Name": f"N{i}"} for i in range(3)])
        self.assertEqual(3, result.created)
        page = await self.gateway.get_rows_page(self.table_id, 50, 4)
        self.assertEqual([4, 5, 6], [row.order for row in page.rows])

    async def test_update_row_merges(self):
        row_id = (await self.gateway.get_rows_page(self.table_id, 1, 0)).rows[0].id
        row = await self.gateway.update_row(row_id, {"Priority": "99"})
        self.assertEqual({"Name": "Alpha", "Priority": "99"}, row.data)

    async def test_missing_row(self):
        with self.assertRaises(NotFoundError):
            await self.gateway.update_row("missing", {"Name": "x"})
        with self.assertRaises(NotFoundError):
            await self.gateway.delete_row("missing")

    async def test_bulk_delete_and_update(self):
        rows = (await self.gateway.get_rows_page(self.table_id, 50, 0)).rows
        updated = await self.gateway.bulk_update_rows(self.table_id, [
            {"id": rows[0].id, "data": {"Name": "First"}},
            {"id": "missing", "data": {"Name": "Nobody"}},
        ])
        self.assertEqual(1, updated)
        deleted = await self.gateway.bulk_delete_rows(self.table_id, [rows[1].id, rows[2].id, "missing"])
        self.assertEqual(2, deleted)
        self.assertEqual(["First", ""], await self.names())

    async def test_generate_fake_rows_in_batches(self):
        result = await self.gateway.generate_fake_rows(self.table_id, 100)
        self.assertEqual(100, result.generated)
        self.assertEqual(104, await self.db.count_rows(self.table_id))
        page = await self.gateway.get_rows_page(self.table_id, 100, 4)
        self.assertTrue(all(1 <= int(row.data["Priority"]) <= 1000 for row in page.rows))

    async def test_generate_validates_count(self):
        with self.assertRaises(GridValidationError):
            await self.gateway.generate_fake_rows(self.table_id, 0)

    async def test_failed_transaction_rolls_back(self):
        with self.assertRaises(NotFoundError):
            await self.gateway.bulk_create_rows("missing", [{"Name": "x"}])
        self.assertEqual(4, await self.db.count_rows(self.table_id))


if __name__ == "__main__":
    unittest.main()
