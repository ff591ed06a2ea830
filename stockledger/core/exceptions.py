"""
Typed errors raised by the stock ledger and its lookups.

Every error carries a stable ``code`` class attribute and keeps its context
as attributes, so routers and callers branch on type and data instead of
parsing messages:

    StockLedgerError
    +-- NotFound
    +-- InvalidRequest
    +-- InsufficientStock
    +-- InsufficientAvailableStock
    +-- Conflict
    +-- ConcurrencyConflict          (retryable by the caller)
    +-- ImmutableJournalError
    +-- PersistenceError             (fatal)
"""

from typing import Optional


class StockLedgerError(Exception):
    """Base class for all ledger errors."""

    code: str = "STOCK_LEDGER_ERROR"
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(StockLedgerError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidRequest(StockLedgerError):
    code = "INVALID_REQUEST"


class InsufficientStock(StockLedgerError):
    """Removing the quantity would drive on-hand below zero."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, part_id: int, location_id: int, requested: int, on_hand: int):
        self.part_id = part_id
        self.location_id = location_id
        self.requested = requested
        self.on_hand = on_hand
        super().__init__(
            f"Insufficient stock for part {part_id} at location {location_id}: "
            f"on_hand={on_hand} requested={requested}"
        )


class InsufficientAvailableStock(StockLedgerError):
    """The quantity exceeds what is on hand and not reserved."""

    code = "INSUFFICIENT_AVAILABLE_STOCK"

    def __init__(self, part_id: int, location_id: int, requested: int, available: int):
        self.part_id = part_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient available stock for part {part_id} at location {location_id}: "
            f"available={available} requested={requested}"
        )


class Conflict(StockLedgerError):
    code = "CONFLICT"


class ConcurrencyConflict(StockLedgerError):
    code = "CONCURRENCY_CONFLICT"
    retryable = True

    def __init__(self, message: str, keys: Optional[list] = None):
        self.keys = list(keys or [])
        super().__init__(message)


class ImmutableJournalError(StockLedgerError):
    code = "IMMUTABLE_JOURNAL"

    def __init__(self, transaction_id, operation: str):
        self.transaction_id = transaction_id
        self.operation = operation
        super().__init__(f"Part transaction {transaction_id} is immutable ({operation} rejected)")


class PersistenceError(StockLedgerError):
    code = "PERSISTENCE_FAILURE"
