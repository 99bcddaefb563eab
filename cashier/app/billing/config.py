"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the billing facade and its persistence layer."""

    tax_percentage: Decimal
    currency: str
    invoice_lookback_years: int
    default_subscription: str
    vendor_name: str
    product_name: str
    users_table: str
    organizations_table: str
    subscriptions_table: str


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_decimal(value: Optional[str], *, default: Decimal) -> Decimal:
    if value is None or value.strip() == "":
        return default
    try:
        return Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Expected decimal value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    tax_percentage = _to_decimal(env_mapping.get("BILLING_TAX_PERCENTAGE"), default=Decimal("0"))
    currency = (env_mapping.get("BILLING_CURRENCY") or "USD").strip().upper() or "USD"
    lookback_years = max(0, _to_int(env_mapping.get("BILLING_INVOICE_LOOKBACK_YEARS"), default=2))
    default_subscription = (env_mapping.get("BILLING_DEFAULT_SUBSCRIPTION") or "default").strip() or "default"

    return BillingConfig(
        tax_percentage=tax_percentage,
        currency=currency,
        invoice_lookback_years=lookback_years,
        default_subscription=default_subscription,
        vendor_name=env_mapping.get("BILLING_VENDOR_NAME", "Cashier"),
        product_name=env_mapping.get("BILLING_PRODUCT_NAME", "Subscription"),
        users_table=env_mapping.get("BILLING_USERS_TABLE", "users"),
        organizations_table=env_mapping.get("BILLING_ORGANIZATIONS_TABLE", "organizations"),
        subscriptions_table=env_mapping.get("BILLING_SUBSCRIPTIONS_TABLE", "subscriptions"),
    )


__all__ = ["BillingConfig", "load_billing_config"]
