# backend/cell_values.py - Conversions between display strings and typed cell values

import math

from backend_models import CellValue, ColumnType

def _parse_number(raw: str) -> CellValue:
    text = raw.strip().replace(",", "")
    if not text:
        return None
    try:
        number = int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        if number.is_integer() and abs(number) < 2 ** 53:
            return int(number)
    return number

def validate_cell_value(raw: str, column_type: ColumnType) -> CellValue:
    """Turn editor input into a typed value.

    Number columns never reject input: anything that does not parse (or is
    empty) becomes ``None``. Text is stripped; an empty string is valid.
    """
    if raw is None:
        return None if column_type == ColumnType.NUMBER else ""
    raw = str(raw)
    if column_type == ColumnType.NUMBER:
        return _parse_number(raw)
    return raw.strip()

def format_cell_value(value: CellValue, column_type: ColumnType = ColumnType.TEXT) -> str:
    """Render a typed value for display and as the edit seed."""
    if value is None:
        return ""
    if column_type == ColumnType.NUMBER and isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and not value.is_integer():
            return f"{value:,.3f}".rstrip("0").rstrip(".")
        return f"{int(value):,}"
    return str(value)

def coerce_cell_value(value: CellValue, from_type: ColumnType, to_type: ColumnType) -> CellValue:
    """Re-derive a value after a column changes type. Pure."""
    if from_type == to_type:
        return value
    if to_type == ColumnType.NUMBER:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return value
        return _parse_number(str(value))
    if value is None:
        return ""
    return to_wire(value)

def to_wire(value: CellValue) -> str:
    """String form sent through the gateway."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

def from_wire(raw: CellValue, column_type: ColumnType) -> CellValue:
    """Typed value for a stored string, as shown by the grid."""
    if column_type == ColumnType.NUMBER:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return raw
        if raw is None:
            return None
        return _parse_number(str(raw))
    if raw is None:
        return ""
    return raw if isinstance(raw, str) else to_wire(raw)

def default_cell_value(column_type: ColumnType) -> CellValue:
    """Value shown for a freshly added column before any edit."""
    return None if column_type == ColumnType.NUMBER else ""
