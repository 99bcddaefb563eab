"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (e.g. ``timestamp without time zone`` columns) as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BillingCustomerType(str, Enum):
    """Supported billable entity types."""

    USER = "user"
    ORGANIZATION = "organization"


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a locally stored subscription."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class PaymentMethodKind(str, Enum):
    """Payment instruments the processor can hold for a customer."""

    CREDIT_CARD = "credit_card"
    PAYPAL_ACCOUNT = "paypal_account"


class TransactionStatus(str, Enum):
    """Processor transaction states relevant to invoicing."""

    AUTHORIZED = "authorized"
    SUBMITTED_FOR_SETTLEMENT = "submitted_for_settlement"
    SETTLING = "settling"
    SETTLED = "settled"
    VOIDED = "voided"
    FAILED = "failed"


class SearchOperator(str, Enum):
    IS = "is"
    BETWEEN = "between"


class BillableEntity(BaseModel):
    """A user or organization that owns subscriptions and a processor customer."""

    entity_id: str
    entity_type: BillingCustomerType = BillingCustomerType.USER
    name: str = ""
    email: Optional[str] = None
    processor_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    paypal_email: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("trial_ends_at", "created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class Subscription(BaseModel):
    """Local record of a processor subscription held by a billable entity."""

    subscription_id: str
    entity_type: BillingCustomerType = BillingCustomerType.USER
    entity_id: str
    name: str
    processor_id: str
    plan_id: str
    quantity: int = Field(default=1, ge=1)
    trial_ends_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("trial_ends_at", "ends_at", "created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    def on_trial(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` while the subscription's trial has not ended."""
        now = now or _utcnow()
        return self.trial_ends_at is not None and now < self.trial_ends_at

    def on_grace_period(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when cancelled but the paid period has not ended."""
        now = now or _utcnow()
        return self.ends_at is not None and now < self.ends_at

    def cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED or self.ends_at is not None

    def active(self, now: Optional[datetime] = None) -> bool:
        """Past-due subscriptions stay active until they are cancelled."""
        return not self.cancelled() or self.on_grace_period(now)

    def valid(self, now: Optional[datetime] = None) -> bool:
        return self.active(now) or self.on_trial(now)


class PaymentMethod(BaseModel):
    """Processor-held payment instrument."""

    token: str
    kind: PaymentMethodKind = PaymentMethodKind.CREDIT_CARD
    card_type: Optional[str] = None
    last4: Optional[str] = None
    email: Optional[str] = None
    default: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_paypal_account(self) -> bool:
        return self.kind == PaymentMethodKind.PAYPAL_ACCOUNT


class ProcessorCustomer(BaseModel):
    """Customer record as stored by the payment processor."""

    customer_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    payment_methods: List[PaymentMethod] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProcessorSubscription(BaseModel):
    """Subscription record as stored by the payment processor."""

    subscription_id: str
    plan_id: str
    payment_method_token: Optional[str] = None
    discounts: List[str] = Field(default_factory=list)
    trial_ends_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("trial_ends_at")
    @classmethod
    def _utc_trial_end(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class Transaction(BaseModel):
    """Processor transaction that backs an invoice."""

    transaction_id: str
    customer_id: Optional[str] = None
    amount: Decimal
    tax_amount: Decimal = Decimal("0")
    currency_iso_code: str = "USD"
    status: str
    created_at: datetime = Field(default_factory=_utcnow)
    custom_fields: Dict[str, str] = Field(default_factory=dict)
    subscription_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency_iso_code")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class GatewayResult(BaseModel):
    """Outcome of a mutating processor call."""

    is_success: bool
    message: Optional[str] = None
    transaction: Optional[Transaction] = None
    customer: Optional[ProcessorCustomer] = None
    payment_method: Optional[PaymentMethod] = None
    subscription: Optional[ProcessorSubscription] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SearchCriterion(BaseModel):
    """Single filter applied to a processor transaction search."""

    field: str
    operator: SearchOperator = SearchOperator.IS
    value: Any = None
    upper: Any = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def is_(cls, field: str, value: Any) -> "SearchCriterion":
        return cls(field=field, operator=SearchOperator.IS, value=value)

    @classmethod
    def between(cls, field: str, lower: Any, upper: Any) -> "SearchCriterion":
        return cls(field=field, operator=SearchOperator.BETWEEN, value=lower, upper=upper)

    def matches(self, record: Dict[str, Any]) -> bool:
        """Evaluate the criterion against a flat mapping of transaction fields."""

        candidate = record.get(self.field)
        if self.operator == SearchOperator.IS:
            return candidate == self.value
        if candidate is None:
            return False
        return self.value <= candidate <= self.upper
