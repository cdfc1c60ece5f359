# backend/optimistic.py - Apply locally, call remote, then confirm or compensate

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
import logging

logger = logging.getLogger(__name__)

@dataclass
class OptimisticOutcome:
    ok: bool
    result: Any = None
    error: Optional[Exception] = None

async def run_optimistic(
    apply: Optional[Callable[[], Any]],
    remote: Callable[[], Awaitable[Any]],
    confirm: Optional[Callable[[Any], Any]] = None,
    compensate: Optional[Callable[[Exception], Any]] = None,
    label: str = "operation",
) -> OptimisticOutcome:
    """Three-phase optimistic mutation.

    ``apply`` runs synchronously before the remote call so the UI updates with
    no latency. ``confirm`` receives the remote result; ``compensate`` receives
    the error and may be a coroutine function (e.g. a refetch). Errors from the
    remote call are logged and returned, never raised.
    """
    if apply is not None:
        apply()
    try:
        result = await remote()
    except Exception as e:
        logger.error(f"Failed to {label}: {e}")
        if compensate is not None:
            try:
                outcome = compensate(e)
                if hasattr(outcome, "__await__"):
                    await outcome
            except Exception as comp_error:
                logger.error(f"Compensation for {label} failed: {comp_error}")
        return OptimisticOutcome(ok=False, error=e)

    if confirm is not None:
        try:
            outcome = confirm(result)
            if hasattr(outcome, "__await__"):
                await outcome
        except Exception as e:
            logger.error(f"Confirmation for {label} failed: {e}")
    return OptimisticOutcome(ok=True, result=result)
