from __future__ import annotations


class LedgerError(ValueError):
    """Base for every failure the ledger core reports back to its caller."""

    code = 'LEDGER_ERROR'

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {'success': False, 'code': self.code, 'error': self.message, **self.details}


class ValidationError(LedgerError):
    code = 'VALIDATION_ERROR'


class NotFound(LedgerError):
    code = 'NOT_FOUND'


class QuantityExceeded(LedgerError):
    code = 'QUANTITY_EXCEEDED'


class InvalidReceivingQuantity(QuantityExceeded):
    code = 'INVALID_RECEIVING_QUANTITY'


class InvalidStateTransition(LedgerError):
    code = 'INVALID_STATE_TRANSITION'


class DuplicateOpeningBalance(LedgerError):
    code = 'DUPLICATE_OPENING_BALANCE'

    def __init__(self, message: str, *, duplicate_items: list[dict]) -> None:
        super().__init__(message, duplicate_items=duplicate_items)
        self.duplicate_items = duplicate_items

    def to_dict(self) -> dict:
        return {'success': False, 'code': self.code, 'error': self.message, 'duplicateItems': self.duplicate_items}


class NegativeInventory(LedgerError):
    code = 'NEGATIVE_INVENTORY'

    def __init__(self, message: str, *, shortages: list[dict]) -> None:
        super().__init__(message, details=shortages)
        self.shortages = shortages


class ConcurrencyConflict(LedgerError):
    code = 'CONCURRENCY_CONFLICT'
