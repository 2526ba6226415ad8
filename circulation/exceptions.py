"""Error taxonomy shared by the store, the circulation operations and the outer surfaces."""

from typing import Optional


class CirculationError(Exception):
    """Base class for every error raised by the circulation package."""


class ValidationError(CirculationError, ValueError):
    """Bad input, detected before the store is touched."""


class NotFoundError(CirculationError, LookupError):
    def __init__(self, kind: str, doc_id: Optional[str] = None) -> None:
        self.kind = kind
        self.doc_id = doc_id
        label = kind.capitalize()
        if doc_id:
            super().__init__(f"{label} {doc_id} not found.")
        else:
            super().__init__(f"{label} not found.")


class InsufficientStockError(CirculationError):
    """Raised when a borrow asks for more copies than are on the shelf."""

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(f"Not enough stock. Available: {available}, requested: {requested}.")


class AlreadyReturnedError(CirculationError):
    def __init__(self, borrow_id: str) -> None:
        self.borrow_id = borrow_id
        super().__init__(f"Borrow {borrow_id} has already been returned.")


class TransactionConflictError(CirculationError):
    """The store detected a concurrent modification; nothing was written."""
