# backend/models.py - Pydantic models for the grid and its API

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Union
from enum import Enum

# Typed value held by the grid; the wire form is always a string
CellValue = Union[int, float, str, None]

class ColumnType(str, Enum):
    TEXT = "text"
    NUMBER = "number"

class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

class FilterSpec(BaseModel):
    columnName: str
    operator: FilterOperator
    value: Optional[str] = None

class SortSpec(BaseModel):
    columnName: str
    direction: SortDirection = SortDirection.ASC

class Column(BaseModel):
    id: str
    tableId: Optional[str] = None
    name: str
    type: ColumnType = ColumnType.TEXT
    order: int = 0

class Row(BaseModel):
    id: str
    tableId: Optional[str] = None
    order: int = 0
    data: Dict[str, CellValue] = Field(default_factory=dict)

class Table(BaseModel):
    id: str
    baseId: Optional[str] = None
    name: str
    columns: List[Column] = Field(default_factory=list)
    rowCount: int = 0

class Base(BaseModel):
    id: str
    name: str
    ownerId: Optional[str] = None
    tables: List[Table] = Field(default_factory=list)

class RowsPage(BaseModel):
    rows: List[Row]
    total: int
    hasMore: bool

class BulkCreateResult(BaseModel):
    created: int

class GenerateResult(BaseModel):
    generated: int
    tableId: Optional[str] = None

class BulkProgress(BaseModel):
    current: int = 0
    total: int = 0

    @property
    def fraction(self) -> float:
        if not self.total:
            return 0.0
        return min(self.current / self.total, 1.0)

# Request bodies

class BaseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)

class BaseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

class TableCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)

class TableUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

class ColumnCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: ColumnType = ColumnType.TEXT

class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[ColumnType] = None

class ColumnReorder(BaseModel):
    columnIds: List[str]

class RowCreate(BaseModel):
    data: Dict[str, str] = Field(default_factory=dict)

class RowUpdate(BaseModel):
    data: Dict[str, str]

class RowsQuery(BaseModel):
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    search: Optional[str] = None
    filters: List[FilterSpec] = Field(default_factory=list)
    sorts: List[SortSpec] = Field(default_factory=list)

class BulkCreateRequest(BaseModel):
    records: List[Dict[str, str]]

class BulkDeleteRequest(BaseModel):
    ids: List[str]

class RowPatch(BaseModel):
    id: str
    data: Dict[str, str]

class BulkUpdateRequest(BaseModel):
    updates: List[RowPatch]

class GenerateRequest(BaseModel):
    count: int = Field(default=100000, ge=1, le=100000)
