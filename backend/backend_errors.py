# backend/errors.py - Error taxonomy shared by the store, the API and the grid

from typing import Optional

class GridValidationError(ValueError):
    """Input rejected before any network call (duplicate name, empty field...)."""

class GatewayError(Exception):
    """A persistence call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

class NotFoundError(GatewayError):
    """Unknown id, or a record the caller does not own."""

    def __init__(self, message: str):
        super().__init__(message, status=404)
