"""Invoice projection over processor transactions and its HTML rendering."""
from __future__ import annotations

import html
import re
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .models import BillableEntity, Transaction, TransactionStatus

_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")


def _load_template(template: str) -> str:
    path = _TEMPLATE_PATH / template
    return path.read_text(encoding="utf-8")


def _render_template(template: str, context: Mapping[str, Any]) -> str:
    source = _load_template(template)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key, "")
        return "" if value is None else html.escape(str(value))

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


def format_amount(amount: Decimal, currency: str) -> str:
    """Format an amount with two decimal places and its currency code."""

    quantized = amount.quantize(Decimal("0.01"))
    symbol = "$" if currency.upper() == "USD" else ""
    if symbol:
        return f"{symbol}{quantized:,}"
    return f"{quantized:,} {currency.upper()}"


class Invoice(BaseModel):
    """Read-only view of a processor transaction owned by a billable entity."""

    entity: BillableEntity
    transaction: Transaction

    model_config = ConfigDict(frozen=True)

    @property
    def id(self) -> str:
        return self.transaction.transaction_id

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount

    @property
    def date(self) -> datetime:
        return self.transaction.created_at

    @property
    def status(self) -> str:
        return self.transaction.status

    @property
    def currency(self) -> str:
        return self.transaction.currency_iso_code

    @property
    def description(self) -> Optional[str]:
        return self.transaction.custom_fields.get("description")

    @property
    def is_settled(self) -> bool:
        return self.transaction.status == TransactionStatus.SETTLED.value

    @property
    def tax(self) -> Decimal:
        return self.transaction.tax_amount

    @property
    def subtotal(self) -> Decimal:
        return self.transaction.amount - self.transaction.tax_amount

    def total(self) -> str:
        return format_amount(self.amount, self.currency)

    def payment_summary(self) -> str:
        method = self.transaction.payment_method
        if method is None:
            return ""
        if method.is_paypal_account:
            return f"Paid with PayPal ({method.email})"
        return f"Paid with {method.card_type or 'card'} ending in {method.last4}"

    def render(self, data: Optional[Mapping[str, Any]] = None) -> str:
        """Render the invoice as an HTML document.

        ``data`` supplies presentation details such as ``vendor`` and
        ``product``; missing keys fall back to the transaction's own values.
        """

        extra: Dict[str, Any] = dict(data or {})
        context: Dict[str, Any] = {
            "vendor": extra.get("vendor", ""),
            "invoice_id": self.id,
            "date": self.date.strftime("%b %d, %Y"),
            "status": self.status,
            "customer_name": self.entity.name,
            "customer_email": self.entity.email or "",
            "description": self.description or extra.get("product", ""),
            "subtotal": format_amount(self.subtotal, self.currency),
            "tax": format_amount(self.tax, self.currency),
            "total": self.total(),
            "payment_summary": self.payment_summary(),
        }
        context.update({key: value for key, value in extra.items() if key not in {"product"}})
        return _render_template("invoice.html.j2", context)

    def download(self, data: Optional[Mapping[str, Any]] = None) -> bytes:
        return self.render(data).encode("utf-8")

    def filename(self, data: Optional[Mapping[str, Any]] = None) -> str:
        product = str((data or {}).get("product") or "invoice")
        slug = re.sub(r"[^a-z0-9]+", "_", product.lower()).strip("_") or "invoice"
        return f"{slug}_{self.date.strftime('%B_%Y').lower()}.html"


__all__ = ["Invoice", "format_amount"]
