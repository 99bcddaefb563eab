"""Billing facade coordinating a billable entity with the payment processor."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from .builder import SubscriptionBuilder
from .config import BillingConfig, load_billing_config
from .exceptions import (
    ChargeFailed,
    CustomerCreationFailed,
    InvalidSubscription,
    InvoiceNotFound,
    PaymentMethodCreationFailed,
    SubscriptionUpdateFailed,
    TransactionNotFound,
)
from .invoice import Invoice
from .models import (
    BillableEntity,
    GatewayResult,
    PaymentMethod,
    ProcessorCustomer,
    ProcessorSubscription,
    SearchCriterion,
    Subscription,
    Transaction,
    TransactionStatus,
)
from .options import merge_caller_wins, merge_defaults_win

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Remote payment processor API.

    Lookups raise :class:`~.exceptions.CustomerNotFound` or
    :class:`~.exceptions.TransactionNotFound` when the record is missing;
    mutations report failure through :class:`GatewayResult`.
    """

    def find_customer(self, customer_id: Optional[str]) -> ProcessorCustomer:
        ...

    def create_customer(self, params: Dict[str, Any]) -> GatewayResult:
        ...

    def create_payment_method(self, params: Dict[str, Any]) -> GatewayResult:
        ...

    def sale(self, params: Dict[str, Any]) -> GatewayResult:
        ...

    def search_transactions(self, criteria: Sequence[SearchCriterion]) -> Optional[Sequence[Transaction]]:
        ...

    def find_transaction(self, transaction_id: str) -> Transaction:
        ...

    def find_subscription(self, subscription_id: str) -> ProcessorSubscription:
        ...

    def create_subscription(self, params: Dict[str, Any]) -> GatewayResult:
        ...

    def update_subscription(self, subscription_id: str, params: Dict[str, Any]) -> GatewayResult:
        ...


class BillableRepository(Protocol):
    """Persistence operations required by the billing facade."""

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[BillableEntity]:
        ...

    def save_entity_fields(self, entity: BillableEntity, fields: Mapping[str, Any]) -> BillableEntity:
        ...

    def list_subscriptions(self, entity: BillableEntity) -> Sequence[Subscription]:
        """Return the entity's subscriptions, newest first."""

    def save_subscription(self, subscription: Subscription) -> Subscription:
        ...


class InvoiceLookupOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class InvoiceLookup:
    """Result of resolving a single invoice by identifier."""

    outcome: InvoiceLookupOutcome
    invoice: Optional[Invoice] = None
    error: Optional[Exception] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def _payment_method_fields(method: Optional[PaymentMethod]) -> Dict[str, Optional[str]]:
    if method is None:
        return {"paypal_email": None, "card_brand": None, "card_last_four": None}
    paypal = method.is_paypal_account
    return {
        "paypal_email": method.email if paypal else None,
        "card_brand": None if paypal else method.card_type,
        "card_last_four": None if paypal else method.last4,
    }


@dataclass(slots=True)
class BillingService:
    """Billing operations for user and organization entities."""

    repository: BillableRepository
    gateway: PaymentGateway
    config: BillingConfig = field(default_factory=load_billing_config)
    tax_rate_resolver: Optional[Callable[[BillableEntity], Union[Decimal, int, float]]] = None
    clock: Callable[[], datetime] = _utcnow

    def now(self) -> datetime:
        return self.clock()

    # Subscription state

    def subscriptions(self, entity: BillableEntity) -> List[Subscription]:
        return sorted(
            self.repository.list_subscriptions(entity),
            key=lambda subscription: subscription.created_at,
            reverse=True,
        )

    def subscription(self, entity: BillableEntity, name: str = "default") -> Optional[Subscription]:
        """Return the most recently created subscription with ``name``."""

        return next(
            (subscription for subscription in self.subscriptions(entity) if subscription.name == name),
            None,
        )

    def on_trial(
        self,
        entity: BillableEntity,
        name: Optional[str] = None,
        plan: Optional[str] = None,
    ) -> bool:
        """Determine if the entity is on trial.

        The entity-level generic trial is only consulted when neither ``name``
        nor ``plan`` is given.
        """

        if name is None and plan is None and self.on_generic_trial(entity):
            return True

        subscription = self.subscription(entity, "default" if name is None else name)
        if subscription is None or not subscription.on_trial(self.now()):
            return False
        return plan is None or subscription.plan_id == plan

    def on_generic_trial(self, entity: BillableEntity) -> bool:
        return entity.trial_ends_at is not None and self.now() < entity.trial_ends_at

    def subscribed(self, entity: BillableEntity, name: str = "default", plan: Optional[str] = None) -> bool:
        subscription = self.subscription(entity, name)
        if subscription is None or not subscription.valid(self.now()):
            return False
        return plan is None or subscription.plan_id == plan

    def subscribed_to_plan(
        self,
        entity: BillableEntity,
        plans: Union[str, Iterable[str]],
        name: str = "default",
    ) -> bool:
        """Determine if the entity holds a valid subscription on one of ``plans``."""

        subscription = self.subscription(entity, name)
        if subscription is None or not subscription.valid(self.now()):
            return False
        candidates = [plans] if isinstance(plans, str) else list(plans)
        return any(subscription.plan_id == plan for plan in candidates)

    def on_plan(self, entity: BillableEntity, plan: str) -> bool:
        """Determine if any subscription, valid or not, is on ``plan``."""

        return any(subscription.plan_id == plan for subscription in self.subscriptions(entity))

    def new_subscription(self, entity: BillableEntity, name: str, plan: str) -> SubscriptionBuilder:
        return SubscriptionBuilder(self, entity, name, plan)

    def apply_coupon(
        self,
        entity: BillableEntity,
        coupon: str,
        name: str = "default",
        remove_others: bool = False,
    ) -> None:
        subscription = self.subscription(entity, name)
        if subscription is None:
            raise InvalidSubscription("Unable to apply coupon. Subscription does not exist.")

        discounts: Dict[str, Any] = {"add": [{"inherited_from_id": coupon}]}
        if remove_others:
            current = self.gateway.find_subscription(subscription.processor_id)
            discounts["remove"] = list(current.discounts)

        result = self.gateway.update_subscription(subscription.processor_id, {"discounts": discounts})
        if not result.is_success:
            raise SubscriptionUpdateFailed(result.message)
        logger.info("Applied coupon %s to subscription %s", coupon, subscription.subscription_id)

    # Invoices

    def invoices(
        self,
        entity: BillableEntity,
        include_pending: bool = False,
        parameters: Optional[Sequence[SearchCriterion]] = None,
    ) -> List[Invoice]:
        customer = self.as_processor_customer(entity)

        today = self.now().replace(hour=0, minute=0, second=0, microsecond=0)
        criteria: List[SearchCriterion] = [
            SearchCriterion.is_("customer_id", customer.customer_id),
            SearchCriterion.between(
                "created_at",
                _years_before(today, self.config.invoice_lookback_years),
                today + timedelta(days=1),
            ),
        ]
        criteria.extend(parameters or [])

        transactions = self.gateway.search_transactions(criteria)
        if transactions is None:
            return []

        return [
            Invoice(entity=entity, transaction=transaction)
            for transaction in transactions
            if transaction.status == TransactionStatus.SETTLED.value or include_pending
        ]

    def invoices_including_pending(
        self,
        entity: BillableEntity,
        parameters: Optional[Sequence[SearchCriterion]] = None,
    ) -> List[Invoice]:
        return self.invoices(entity, True, parameters)

    def lookup_invoice(self, entity: BillableEntity, invoice_id: str) -> InvoiceLookup:
        try:
            transaction = self.gateway.find_transaction(invoice_id)
        except TransactionNotFound:
            return InvoiceLookup(outcome=InvoiceLookupOutcome.NOT_FOUND)
        except Exception as exc:
            return InvoiceLookup(outcome=InvoiceLookupOutcome.ERROR, error=exc)
        return InvoiceLookup(
            outcome=InvoiceLookupOutcome.FOUND,
            invoice=Invoice(entity=entity, transaction=transaction),
        )

    def find_invoice(self, entity: BillableEntity, invoice_id: str) -> Optional[Invoice]:
        """Find an invoice by ID, returning ``None`` on any lookup failure."""

        lookup = self.lookup_invoice(entity, invoice_id)
        if lookup.outcome == InvoiceLookupOutcome.ERROR:
            logger.debug("Invoice lookup for %s failed: %s", invoice_id, lookup.error)
        return lookup.invoice

    def find_invoice_or_fail(self, entity: BillableEntity, invoice_id: str) -> Invoice:
        invoice = self.find_invoice(entity, invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    def download_invoice(
        self,
        entity: BillableEntity,
        invoice_id: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> bytes:
        invoice = self.find_invoice_or_fail(entity, invoice_id)
        return invoice.download(self.invoice_data(data))

    def invoice_data(self, data: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return {
            "vendor": self.config.vendor_name,
            "product": self.config.product_name,
            **(data or {}),
        }

    # Charges

    def tax_percentage(self, entity: BillableEntity) -> Decimal:
        if self.tax_rate_resolver is not None:
            return Decimal(str(self.tax_rate_resolver(entity)))
        return self.config.tax_percentage

    def charge(
        self,
        entity: BillableEntity,
        amount: Union[Decimal, int, float, str],
        options: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult:
        """Make a one-off charge on the entity's default payment method."""

        customer = self.as_processor_customer(entity)
        if not customer.payment_methods:
            raise ChargeFailed("Customer has no payment method on file")

        total = Decimal(str(amount)) * (1 + self.tax_percentage(entity) / 100)
        params = merge_caller_wins(
            {
                "amount": total,
                "payment_method_token": customer.payment_methods[0].token,
                "options": {"submit_for_settlement": True},
                "recurring": True,
            },
            options,
        )

        result = self.gateway.sale(params)
        if not result.is_success:
            raise ChargeFailed(result.message)

        logger.info("Charged %s to customer %s", params["amount"], customer.customer_id)
        return result

    def invoice_for(
        self,
        entity: BillableEntity,
        description: str,
        amount: Union[Decimal, int, float, str],
        options: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult:
        return self.charge(
            entity,
            amount,
            merge_caller_wins(options or {}, {"custom_fields": {"description": description}}),
        )

    # Payment methods and customers

    def update_card(self, entity: BillableEntity, token: str) -> BillableEntity:
        """Replace the default payment method and move active subscriptions to it."""

        customer = self.as_processor_customer(entity)

        result = self.gateway.create_payment_method(
            {
                "customer_id": customer.customer_id,
                "payment_method_nonce": token,
                "options": {"make_default": True, "verify_card": True},
            }
        )
        if not result.is_success or result.payment_method is None:
            raise PaymentMethodCreationFailed(result.message)

        updated = self.repository.save_entity_fields(entity, _payment_method_fields(result.payment_method))
        logger.info("Updated payment method for %s %s", entity.entity_type.value, entity.entity_id)

        self._update_subscriptions_to_payment_method(updated, result.payment_method.token)
        return updated

    def _update_subscriptions_to_payment_method(self, entity: BillableEntity, token: str) -> None:
        now = self.now()
        for subscription in self.subscriptions(entity):
            if not subscription.active(now):
                continue
            result = self.gateway.update_subscription(
                subscription.processor_id, {"payment_method_token": token}
            )
            if not result.is_success:
                logger.warning(
                    "Failed to move subscription %s to the new payment method: %s",
                    subscription.subscription_id,
                    result.message,
                )

    def create_as_processor_customer(
        self,
        entity: BillableEntity,
        token: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[ProcessorCustomer, BillableEntity]:
        """Create the processor customer and return it with the refreshed entity."""

        names = entity.name.split()
        params = merge_defaults_win(
            options,
            {
                "first_name": names[0] if names else None,
                "last_name": names[1] if len(names) > 1 else None,
                "email": entity.email,
                "payment_method_nonce": token,
                "credit_card": {"options": {"verify_card": True}},
            },
        )

        result = self.gateway.create_customer(params)
        if not result.is_success or result.customer is None:
            raise CustomerCreationFailed(result.message)

        customer = result.customer
        payment_method = customer.payment_methods[0] if customer.payment_methods else None
        updated = self.repository.save_entity_fields(
            entity,
            {"processor_id": customer.customer_id, **_payment_method_fields(payment_method)},
        )
        logger.info(
            "Created processor customer %s for %s %s",
            customer.customer_id,
            entity.entity_type.value,
            entity.entity_id,
        )
        return customer, updated

    def as_processor_customer(self, entity: BillableEntity) -> ProcessorCustomer:
        return self.gateway.find_customer(entity.processor_id)

    def has_processor_id(self, entity: BillableEntity) -> bool:
        return entity.processor_id is not None


__all__ = [
    "BillableRepository",
    "BillingService",
    "InvoiceLookup",
    "InvoiceLookupOutcome",
    "PaymentGateway",
]
