"""Fluent builder for provisioning new subscriptions."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from uuid import uuid4

from .exceptions import SubscriptionCreationFailed
from .models import BillableEntity, Subscription, SubscriptionStatus
from .options import merge_caller_wins

if TYPE_CHECKING:  # pragma: no cover
    from .service import BillingService


class SubscriptionBuilder:
    """Collects subscription options and creates it on the processor."""

    def __init__(self, service: "BillingService", entity: BillableEntity, name: str, plan: str) -> None:
        self._service = service
        self._entity = entity
        self.name = name
        self.plan = plan
        self._trial_days: Optional[int] = None
        self._skip_trial = False
        self._coupon: Optional[str] = None
        self._quantity = 1

    @property
    def entity(self) -> BillableEntity:
        """The owning entity, refreshed after any customer or card change."""
        return self._entity

    def trial_days(self, days: int) -> "SubscriptionBuilder":
        if days < 0:
            raise ValueError("trial days must be >= 0")
        self._trial_days = days
        return self

    def skip_trial(self) -> "SubscriptionBuilder":
        self._skip_trial = True
        return self

    def with_coupon(self, coupon: str) -> "SubscriptionBuilder":
        self._coupon = coupon
        return self

    def quantity(self, quantity: int) -> "SubscriptionBuilder":
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        self._quantity = quantity
        return self

    def _trial_ends_at(self, now: datetime) -> Optional[datetime]:
        if self._skip_trial or not self._trial_days:
            return None
        return now + timedelta(days=self._trial_days)

    def build_payload(self, payment_method_token: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "plan_id": self.plan,
            "payment_method_token": payment_method_token,
        }
        if self._skip_trial:
            payload["trial_period"] = False
        elif self._trial_days:
            payload.update(
                {"trial_period": True, "trial_duration": self._trial_days, "trial_duration_unit": "day"}
            )
        if self._coupon:
            payload["discounts"] = {"add": [{"inherited_from_id": self._coupon}]}
        return payload

    def create(
        self,
        token: Optional[str] = None,
        customer_options: Optional[Mapping[str, Any]] = None,
        subscription_options: Optional[Mapping[str, Any]] = None,
    ) -> Subscription:
        """Create the subscription, provisioning the processor customer if needed."""

        service = self._service
        if service.has_processor_id(self._entity):
            customer = service.as_processor_customer(self._entity)
            if token:
                self._entity = service.update_card(self._entity, token)
                customer = service.as_processor_customer(self._entity)
        else:
            if not token:
                raise SubscriptionCreationFailed("A payment method nonce is required for new customers")
            customer, self._entity = service.create_as_processor_customer(
                self._entity, token, customer_options
            )

        if not customer.payment_methods:
            raise SubscriptionCreationFailed("Customer has no payment method on file")

        now = service.now()
        payload = merge_caller_wins(
            self.build_payload(customer.payment_methods[0].token),
            subscription_options,
        )
        result = service.gateway.create_subscription(payload)
        if not result.is_success or result.subscription is None:
            raise SubscriptionCreationFailed(result.message)

        subscription = Subscription(
            subscription_id=f"sub_{uuid4().hex}",
            entity_type=self._entity.entity_type,
            entity_id=self._entity.entity_id,
            name=self.name,
            processor_id=result.subscription.subscription_id,
            plan_id=self.plan,
            quantity=self._quantity,
            trial_ends_at=self._trial_ends_at(now),
            status=SubscriptionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        return service.repository.save_subscription(subscription)


__all__ = ["SubscriptionBuilder"]
