# backend/bulk_insert.py - Batched, cancellable insertion of generated rows

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from backend_config import settings
from backend_errors import GridValidationError
from backend_fake_data import fake_records
from backend_gateway import PersistenceGateway
from backend_models import BulkProgress, Column

logger = logging.getLogger(__name__)

class CancellationToken:
    """Cooperative cancellation, checked by the batch loop between batches"""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

@dataclass
class BulkInsertResult:
    requested: int
    inserted: int = 0
    batches: int = 0
    cancelled: bool = False
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled

class BulkInsertionController:
    """Inserts generated rows in sequential batches.

    Progress is published after every batch. The row view is refreshed at
    most once per ``refresh_interval`` seconds while the run is going, and
    always once at the end, whether the run finished, was cancelled or
    failed. A failed batch stops the run; earlier batches stay committed.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        refresh: Callable[[], Awaitable[object]],
        batch_size: Optional[int] = None,
        refresh_interval: Optional[float] = None,
        batch_delay: Optional[float] = None,
        on_progress: Optional[Callable[[BulkProgress], None]] = None,
        record_factory: Callable[[List[Column], int], List[Dict[str, str]]] = fake_records,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.refresh = refresh
        self.batch_size = batch_size or settings.BULK_BATCH_SIZE
        self.refresh_interval = settings.BULK_REFRESH_INTERVAL if refresh_interval is None else refresh_interval
        self.batch_delay = settings.BULK_BATCH_DELAY if batch_delay is None else batch_delay
        self.on_progress = on_progress
        self.record_factory = record_factory
        self.clock = clock
        self.sleep = sleep
        self.progress = BulkProgress()
        self.is_running = False

    def _publish(self, current: int, total: int):
        self.progress = BulkProgress(current=current, total=total)
        if self.on_progress is not None:
            self.on_progress(self.progress)

    async def _refresh(self):
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"Refresh during bulk insertion failed: {e}")

    async def run(self, table_id: str, columns: List[Column], count: int,
                  token: CancellationToken) -> BulkInsertResult:
        if not 1 <= count <= settings.MAX_BULK_ROWS:
            raise GridValidationError(f"Row count must be between 1 and {settings.MAX_BULK_ROWS}")
        if self.is_running:
            raise GridValidationError("A bulk insertion is already running")

        self.is_running = True
        result = BulkInsertResult(requested=count)
        batches = -(-count // self.batch_size)
        last_refresh = self.clock()
        self._publish(0, count)
        logger.info(f"Bulk inserting {count} rows into {table_id} in {batches} batches")

        try:
            for i in range(batches):
                if token.cancelled:
                    logger.info(f"Cancelling bulk insertion after {result.inserted} rows")
                    result.cancelled = True
                    break

                batch_count = min(self.batch_size, count - i * self.batch_size)
                records = self.record_factory(columns, batch_count)
                try:
                    await self.gateway.bulk_create_rows(table_id, records)
                except Exception as e:
                    logger.error(f"Failed to create batch {i + 1}/{batches}: {e}")
                    result.error = e
                    break

                result.batches += 1
                result.inserted += batch_count
                self._publish(result.inserted, count)

                now = self.clock()
                if now - last_refresh >= self.refresh_interval:
                    logger.debug("Refreshing table data...")
                    await self._refresh()
                    last_refresh = now

                if i + 1 < batches and self.batch_delay:
                    await self.sleep(self.batch_delay)
        finally:
            await self._refresh()
            self.is_running = False
            self._publish(0, 0)

        return result
