"""Errors raised by the billing facade."""
from __future__ import annotations

from fastapi import HTTPException, status


class BillingError(Exception):
    """Base class for billing failures."""


class ProcessorError(BillingError):
    """The payment processor reported an unsuccessful operation."""

    prefix = "Payment processor error"

    def __init__(self, message: str | None = None) -> None:
        self.processor_message = message or ""
        super().__init__(f"{self.prefix}: {self.processor_message}")


class ChargeFailed(ProcessorError):
    prefix = "Unable to perform a charge"


class PaymentMethodCreationFailed(ProcessorError):
    prefix = "Unable to create a payment method"


class CustomerCreationFailed(ProcessorError):
    prefix = "Unable to create processor customer"


class SubscriptionCreationFailed(ProcessorError):
    prefix = "Unable to create processor subscription"


class SubscriptionUpdateFailed(ProcessorError):
    prefix = "Unable to update processor subscription"


class CustomerNotFound(ProcessorError, LookupError):
    prefix = "Processor customer not found"


class TransactionNotFound(ProcessorError, LookupError):
    prefix = "Processor transaction not found"


class InvoiceNotFound(BillingError, LookupError):
    """Requested invoice does not exist for the entity."""

    def __init__(self, invoice_id: str) -> None:
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(self))


class InvalidSubscription(BillingError, ValueError):
    """Operation targeted a subscription the entity does not hold."""


__all__ = [
    "BillingError",
    "ChargeFailed",
    "CustomerCreationFailed",
    "CustomerNotFound",
    "InvalidSubscription",
    "InvoiceNotFound",
    "PaymentMethodCreationFailed",
    "ProcessorError",
    "SubscriptionCreationFailed",
    "SubscriptionUpdateFailed",
    "TransactionNotFound",
]
