"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from dotenv import load_dotenv

from ..billing import (
    BillingService,
    CustomerNotFound,
    GatewayResult,
    PaymentGateway,
    PaymentMethod,
    PaymentMethodKind,
    ProcessorCustomer,
    ProcessorSubscription,
    SearchCriterion,
    Transaction,
    TransactionNotFound,
    TransactionStatus,
    load_billing_config,
)
from ..billing.repository import PostgresBillableRepository


logger = logging.getLogger("billing")

# Nonces understood by the sandbox, mirroring the processor's test values.
SANDBOX_CARD_NONCE = "fake-valid-nonce"
SANDBOX_PAYPAL_NONCE = "fake-paypal-billing-agreement-nonce"
SANDBOX_DECLINED_NONCE = "fake-processor-declined-visa-nonce"


class LocalSandboxPaymentGateway(PaymentGateway):
    """In-memory processor implementation for local development."""

    def __init__(self) -> None:
        self.customers: Dict[str, ProcessorCustomer] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.subscriptions: Dict[str, ProcessorSubscription] = {}

    def _payment_method_from_nonce(self, nonce: Optional[str]) -> Optional[PaymentMethod]:
        if nonce == SANDBOX_PAYPAL_NONCE:
            return PaymentMethod(
                token=f"pm_{uuid4().hex[:8]}",
                kind=PaymentMethodKind.PAYPAL_ACCOUNT,
                email="payer@example.com",
                default=True,
            )
        if nonce and nonce != SANDBOX_DECLINED_NONCE:
            return PaymentMethod(
                token=f"pm_{uuid4().hex[:8]}",
                kind=PaymentMethodKind.CREDIT_CARD,
                card_type="Visa",
                last4="1881",
                default=True,
            )
        return None

    def find_customer(self, customer_id: Optional[str]) -> ProcessorCustomer:
        if customer_id is None or customer_id not in self.customers:
            raise CustomerNotFound(f"customer with id {customer_id!r} not found")
        return self.customers[customer_id]

    def create_customer(self, params: Dict[str, Any]) -> GatewayResult:
        nonce = params.get("payment_method_nonce")
        method = self._payment_method_from_nonce(nonce)
        if nonce and method is None:
            return GatewayResult(is_success=False, message="Do Not Honor")

        customer = ProcessorCustomer(
            customer_id=f"cus_{uuid4().hex[:12]}",
            first_name=params.get("first_name"),
            last_name=params.get("last_name"),
            email=params.get("email"),
            payment_methods=[method] if method else [],
        )
        self.customers[customer.customer_id] = customer
        logger.debug("Sandbox created customer %s", customer.customer_id)
        return GatewayResult(is_success=True, customer=customer)

    def create_payment_method(self, params: Dict[str, Any]) -> GatewayResult:
        customer = self.customers.get(str(params.get("customer_id")))
        if customer is None:
            return GatewayResult(is_success=False, message="Customer ID is invalid.")

        method = self._payment_method_from_nonce(params.get("payment_method_nonce"))
        if method is None:
            return GatewayResult(is_success=False, message="Do Not Honor")

        existing = [
            existing_method.model_copy(update={"default": False}) for existing_method in customer.payment_methods
        ]
        self.customers[customer.customer_id] = customer.model_copy(
            update={"payment_methods": [method, *existing]}
        )
        return GatewayResult(is_success=True, payment_method=method)

    def sale(self, params: Dict[str, Any]) -> GatewayResult:
        token = params.get("payment_method_token")
        owner = next(
            (
                customer
                for customer in self.customers.values()
                if any(method.token == token for method in customer.payment_methods)
            ),
            None,
        )
        if owner is None:
            return GatewayResult(is_success=False, message="Payment method token is invalid.")

        settle = bool((params.get("options") or {}).get("submit_for_settlement"))
        method = next(method for method in owner.payment_methods if method.token == token)
        transaction = Transaction(
            transaction_id=uuid4().hex[:8],
            customer_id=owner.customer_id,
            amount=Decimal(str(params["amount"])),
            status=(TransactionStatus.SETTLED if settle else TransactionStatus.AUTHORIZED).value,
            created_at=datetime.now(timezone.utc),
            custom_fields=dict(params.get("custom_fields") or {}),
            payment_method=method,
        )
        self.transactions[transaction.transaction_id] = transaction
        return GatewayResult(is_success=True, transaction=transaction)

    def search_transactions(self, criteria: Sequence[SearchCriterion]) -> Optional[Sequence[Transaction]]:
        matches: List[Transaction] = []
        for transaction in self.transactions.values():
            record = transaction.model_dump()
            if all(criterion.matches(record) for criterion in criteria):
                matches.append(transaction)
        return sorted(matches, key=lambda transaction: transaction.created_at, reverse=True)

    def find_transaction(self, transaction_id: str) -> Transaction:
        try:
            return self.transactions[transaction_id]
        except KeyError as exc:
            raise TransactionNotFound(f"transaction with id {transaction_id!r} not found") from exc

    def find_subscription(self, subscription_id: str) -> ProcessorSubscription:
        try:
            return self.subscriptions[subscription_id]
        except KeyError as exc:
            raise LookupError(f"subscription with id {subscription_id!r} not found") from exc

    def create_subscription(self, params: Dict[str, Any]) -> GatewayResult:
        trial_ends_at = None
        if params.get("trial_period") and params.get("trial_duration"):
            trial_ends_at = datetime.now(timezone.utc) + timedelta(days=int(params["trial_duration"]))
        discounts = [str(item["inherited_from_id"]) for item in (params.get("discounts") or {}).get("add", [])]
        subscription = ProcessorSubscription(
            subscription_id=uuid4().hex[:6],
            plan_id=str(params["plan_id"]),
            payment_method_token=params.get("payment_method_token"),
            discounts=discounts,
            trial_ends_at=trial_ends_at,
        )
        self.subscriptions[subscription.subscription_id] = subscription
        return GatewayResult(is_success=True, subscription=subscription)

    def update_subscription(self, subscription_id: str, params: Dict[str, Any]) -> GatewayResult:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            return GatewayResult(is_success=False, message="Subscription ID is invalid.")

        updates: Dict[str, Any] = {}
        if "payment_method_token" in params:
            updates["payment_method_token"] = params["payment_method_token"]
        if "discounts" in params:
            removed = set(params["discounts"].get("remove", []))
            kept = [discount for discount in subscription.discounts if discount not in removed]
            added = [str(item["inherited_from_id"]) for item in params["discounts"].get("add", [])]
            updates["discounts"] = kept + added

        updated = subscription.model_copy(update=updates)
        self.subscriptions[subscription_id] = updated
        logger.debug("Sandbox updated subscription %s with %s", subscription_id, sorted(updates))
        return GatewayResult(is_success=True, subscription=updated)


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    load_dotenv()
    config = load_billing_config()
    repository = PostgresBillableRepository(config=config)
    gateway = LocalSandboxPaymentGateway()
    service = BillingService(repository=repository, gateway=gateway, config=config)
    return service
