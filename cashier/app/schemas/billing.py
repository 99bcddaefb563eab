"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import Invoice


class InvoiceSummary(BaseModel):
    id: str
    amount: Decimal
    total: str
    currency: str
    status: str
    date: datetime
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceSummary":
        return cls(
            id=invoice.id,
            amount=invoice.amount,
            total=invoice.total(),
            currency=invoice.currency,
            status=invoice.status,
            date=invoice.date,
            description=invoice.description,
        )


class InvoiceListResponse(BaseModel):
    invoices: list[InvoiceSummary]

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionStatusResponse(BaseModel):
    name: str
    subscribed: bool
    on_trial: bool = Field(alias="onTrial")
    on_generic_trial: bool = Field(alias="onGenericTrial")
    plan_id: Optional[str] = Field(alias="planId", default=None)
    ends_at: Optional[datetime] = Field(alias="endsAt", default=None)

    model_config = ConfigDict(populate_by_name=True)
