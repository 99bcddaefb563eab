"""Billing domain package exposing the billable-entity facade."""

from .builder import SubscriptionBuilder
from .config import BillingConfig, load_billing_config
from .exceptions import (
    BillingError,
    ChargeFailed,
    CustomerCreationFailed,
    CustomerNotFound,
    InvalidSubscription,
    InvoiceNotFound,
    PaymentMethodCreationFailed,
    ProcessorError,
    SubscriptionCreationFailed,
    SubscriptionUpdateFailed,
    TransactionNotFound,
)
from .invoice import Invoice
from .models import (
    BillableEntity,
    BillingCustomerType,
    GatewayResult,
    PaymentMethod,
    PaymentMethodKind,
    ProcessorCustomer,
    ProcessorSubscription,
    SearchCriterion,
    SearchOperator,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
)
from .options import merge_caller_wins, merge_defaults_win
from .service import (
    BillableRepository,
    BillingService,
    InvoiceLookup,
    InvoiceLookupOutcome,
    PaymentGateway,
)

__all__ = [
    "BillableEntity",
    "BillableRepository",
    "BillingConfig",
    "BillingCustomerType",
    "BillingError",
    "BillingService",
    "ChargeFailed",
    "CustomerCreationFailed",
    "CustomerNotFound",
    "GatewayResult",
    "InvalidSubscription",
    "Invoice",
    "InvoiceLookup",
    "InvoiceLookupOutcome",
    "InvoiceNotFound",
    "PaymentGateway",
    "PaymentMethod",
    "PaymentMethodCreationFailed",
    "PaymentMethodKind",
    "ProcessorCustomer",
    "ProcessorError",
    "ProcessorSubscription",
    "SearchCriterion",
    "SearchOperator",
    "Subscription",
    "SubscriptionBuilder",
    "SubscriptionCreationFailed",
    "SubscriptionUpdateFailed",
    "SubscriptionStatus",
    "Transaction",
    "TransactionNotFound",
    "TransactionStatus",
    "load_billing_config",
    "merge_caller_wins",
    "merge_defaults_win",
]
