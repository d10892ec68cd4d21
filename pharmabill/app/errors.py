from __future__ import annotations


class EngineError(Exception):
    """Base class for errors raised by the billing/ledger engine."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(EngineError):
    # Malformed input to a pure function. Never leaves state mutated.
    status_code = 400


class UnbalancedEntryError(ValidationError):
    pass


class InsufficientStockError(EngineError):
    status_code = 409


class IntegrityError(EngineError):
    # A referenced product/batch/party no longer exists, or a mutation would corrupt stored state.
    status_code = 409


class PersistenceError(EngineError):
    status_code = 503
