# backend/edit_buffer.py - Unconfirmed cell edits that shadow server data

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional
import logging

from backend_models import CellValue

logger = logging.getLogger(__name__)

def edit_key(row_id: str, column_name: str) -> str:
    return f"{row_id}|{column_name}"

def split_key(key: str):
    row_id, _, column_name = key.partition("|")
    return row_id, column_name

@dataclass
class PendingEdit:
    row_id: str
    column_name: str
    value: CellValue
    seq: int
    # Last value known to be persisted; a failed save reverts to it
    original: CellValue = None

    @property
    def key(self) -> str:
        return edit_key(self.row_id, self.column_name)

class CellEditBuffer:
    """Holds edits between commit and server confirmation.

    Every ``set`` is tagged with a sequence number. Responses for an older
    sequence than the one buffered are stale: they can neither clear the entry
    nor trigger a revert, so the newest local edit always wins.
    """

    def __init__(self):
        self._entries: Dict[str, PendingEdit] = {}
        self._seq = 0

    def set(self, row_id: str, column_name: str, value: CellValue, original: CellValue = None) -> int:
        """Buffer a value and return its sequence number."""
        self._seq += 1
        key = edit_key(row_id, column_name)
        existing = self._entries.get(key)
        if existing is not None:
            # Keep the baseline from before the first unconfirmed edit
            original = existing.original
        self._entries[key] = PendingEdit(row_id, column_name, value, self._seq, original)
        return self._seq

    def get(self, row_id: str, column_name: str, default: CellValue = None) -> CellValue:
        entry = self._entries.get(edit_key(row_id, column_name))
        return default if entry is None else entry.value

    def entry(self, row_id: str, column_name: str) -> Optional[PendingEdit]:
        return self._entries.get(edit_key(row_id, column_name))

    def find(self, row_id: str, seq: int) -> Optional[PendingEdit]:
        """The entry created by edit ``seq``, if it is still the newest for its cell.

        Looked up by sequence rather than key so an entry moved by a column
        rename is still found.
        """
        for entry in self._entries.values():
            if entry.row_id == row_id and entry.seq == seq:
                return entry
        return None

    def is_current(self, row_id: str, column_name: str, seq: int) -> bool:
        entry = self._entries.get(edit_key(row_id, column_name))
        return entry is not None and entry.seq == seq

    def clear(self, row_id: str, column_name: str, seq: Optional[int] = None) -> bool:
        """Drop the entry; with ``seq``, only when it is still the newest edit."""
        key = edit_key(row_id, column_name)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if seq is not None and entry.seq != seq:
            logger.debug(f"Ignoring stale clear for {key} (seq {seq}, current {entry.seq})")
            return False
        del self._entries[key]
        return True

    def confirm(self, row_id: str, column_name: str, seq: int, value: CellValue) -> bool:
        """Record a successful save. Returns True when the entry was cleared."""
        if self.clear(row_id, column_name, seq):
            return True
        entry = self._entries.get(edit_key(row_id, column_name))
        if entry is not None and entry.seq > seq:
            # A newer edit is still in flight; this value is now the baseline
            entry.original = value
        return False

    def overlay(self, row_id: str, data: Dict[str, CellValue]) -> Dict[str, CellValue]:
        """Apply buffered values for ``row_id`` on top of ``data`` in place."""
        for entry in self._entries.values():
            if entry.row_id == row_id:
                data[entry.column_name] = entry.value
        return data

    def rename_column(self, old_name: str, new_name: str) -> int:
        moved = 0
        for key, entry in list(self._entries.items()):
            if entry.column_name == old_name:
                del self._entries[key]
                entry.column_name = new_name
                self._entries[entry.key] = entry
                moved += 1
        return moved

    def drop_row(self, row_id: str) -> List[PendingEdit]:
        """Remove and return every entry of a row"""
        dropped = [entry for entry in self._entries.values() if entry.row_id == row_id]
        for entry in dropped:
            del self._entries[entry.key]
        return dropped

    def entries(self) -> List[PendingEdit]:
        return list(self._entries.values())

    def reset(self):
        self._entries.clear()

    def __contains__(self, key) -> bool:
        if isinstance(key, tuple):
            key = edit_key(*key)
        return key in self._entries

    def __iter__(self) -> Iterator[PendingEdit]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
