# backend/fake_data.py - Generated row values for seeding and bulk insertion

from typing import Dict, Iterable, List
from faker import Faker

from backend_models import Column, ColumnType

fake = Faker()

# Every new table starts with these columns and SEED_ROW_COUNT rows
DEFAULT_COLUMNS = [
    {"name": "Name", "type": ColumnType.TEXT.value},
    {"name": "Status", "type": ColumnType.TEXT.value},
    {"name": "Priority", "type": ColumnType.NUMBER.value},
]
SEED_ROW_COUNT = 10

SEED_STATUSES = ["Todo", "In Progress", "Done"]
STATUSES = ["Active", "Inactive", "Pending", "Complete"]
PRIORITIES = ["High", "Medium", "Low"]

def seed_rows(count: int = SEED_ROW_COUNT) -> List[Dict[str, str]]:
    """Rows inserted together with a new table's default columns"""
    return [
        {
            "Name": fake.name(),
            "Status": fake.random_element(SEED_STATUSES),
            "Priority": str(fake.random_int(min=1, max=5)),
        }
        for _ in range(count)
    ]

def fake_text(column_name: str) -> str:
    """A text value that fits the column's name"""
    name = column_name.lower()
    if "name" in name:
        return fake.name()
    if "email" in name:
        return fake.email()
    if "status" in name:
        return fake.random_element(STATUSES)
    if "priority" in name:
        return fake.random_element(PRIORITIES)
    if "notes" in name or "description" in name:
        return fake.sentence()
    if "date" in name:
        return fake.date_between(start_date="-30d", end_date="today").isoformat()
    return " ".join(fake.words(nb=fake.random_int(min=1, max=3)))

def fake_value(column: Column, max_number: int = 100) -> str:
    if column.type == ColumnType.NUMBER:
        return str(fake.random_int(min=1, max=max_number))
    return fake_text(column.name)

def fake_record(columns: Iterable[Column], max_number: int = 100) -> Dict[str, str]:
    """One row payload in wire form, keyed by column name"""
    return {column.name: fake_value(column, max_number) for column in columns}

def fake_records(columns: Iterable[Column], count: int, max_number: int = 100) -> List[Dict[str, str]]:
    columns = list(columns)
    return [fake_record(columns, max_number) for _ in range(count)]
