"""Typed failures raised by the ledger core.

Every error is scoped to the single operation that raised it; none of them
is retried automatically except ``ConcurrentModification``'s underlying
write conflicts, which the transaction runner retries before giving up.
"""

from __future__ import annotations

from typing import Dict, Optional


class LedgerError(Exception):
    """Base class for every failure surfaced to callers of the core."""

    code = "LedgerError"
    http_status = 400
    default_message = "The operation could not be completed."

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.errors: Dict[str, str] = dict(errors or {})

    def to_dict(self) -> dict:
        payload = {"ok": False, "error": self.code, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class InvalidInput(LedgerError):
    """Raised when the payload provided by the caller is malformed."""

    code = "InvalidInput"
    default_message = "Validation failed."

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message, errors)


class InvalidQuantity(InvalidInput):
    code = "InvalidQuantity"
    default_message = "One or more quantities are non-positive or out of range."


class NotFound(LedgerError):
    code = "NotFound"
    http_status = 404
    default_message = "Record not found."


class InsufficientBatchBalance(LedgerError):
    code = "InsufficientBatchBalance"
    http_status = 422
    default_message = "Consumption exceeds the remaining batch balance."


class MaterialBalanceMismatch(LedgerError):
    code = "MaterialBalanceMismatch"
    http_status = 422
    default_message = "Consumed weight must equal yarn produced plus waste."


class EfficiencyExceeded(MaterialBalanceMismatch):
    code = "EfficiencyExceeded"
    default_message = "Yarn produced cannot exceed cotton consumed."


class InsufficientYarnStock(LedgerError):
    code = "InsufficientYarnStock"
    http_status = 422
    default_message = "Not enough yarn in stock for this count."


class NoProductionForDate(LedgerError):
    code = "NoProductionForDate"
    http_status = 422
    default_message = "No production output recorded for this date."


class DuplicateInvoiceNumber(LedgerError):
    code = "DuplicateInvoiceNumber"
    http_status = 409
    default_message = "Invoice number already exists."


class PaymentExceedsBalance(LedgerError):
    code = "PaymentExceedsBalance"
    http_status = 422
    default_message = "Payment exceeds the remaining invoice balance."


class InvoiceHasPayments(LedgerError):
    code = "InvoiceHasPayments"
    http_status = 409
    default_message = "Delete the invoice's payments before deleting the invoice."


class BatchInUse(LedgerError):
    code = "BatchInUse"
    http_status = 409
    default_message = "Batch has already been consumed by production."


class CodeExhausted(LedgerError):
    code = "CodeExhausted"
    http_status = 503
    default_message = "Unable to generate a unique batch code. Please try again."


class ConcurrentModification(LedgerError):
    code = "ConcurrentModification"
    http_status = 409
    default_message = "The record was modified concurrently. Please retry."
