from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from cashier import app_context
from cashier.app.billing import (
    BillableEntity,
    BillingCustomerType,
    BillingService,
    Subscription,
    SubscriptionStatus,
)
from cashier.app.billing.config import load_billing_config
from cashier.app.billing.repository import PostgresBillableRepository
from cashier.app.services.billing import LocalSandboxPaymentGateway

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, rows: List[dict]) -> None:
        self.rows = rows
        self.executed: List[tuple[Any, Any]] = []
        self.closed = False

    def execute(self, query: Any, params: Any = None) -> None:
        self.executed.append((query, params))

    def fetchone(self) -> Optional[dict]:
        return self.rows[0] if self.rows else None

    def fetchall(self) -> List[dict]:
        return list(self.rows)

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, rows: Optional[List[dict]] = None) -> None:
        self.cursor_obj = FakeCursor(rows or [])
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, cursor_factory=None) -> FakeCursor:
        return self.cursor_obj

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


def _entity_row(**overrides) -> dict:
    row = {
        "id": 7,
        "name": "Jo Doe",
        "email": "jo@example.com",
        "processor_id": "cus_7",
        "trial_ends_at": None,
        "card_brand": "Visa",
        "card_last_four": "1111",
        "paypal_email": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _subscription_row(**overrides) -> dict:
    row = {
        "id": "sub_1",
        "entity_type": "user",
        "entity_id": "7",
        "name": "default",
        "processor_id": "psub_1",
        "plan_id": "monthly",
        "quantity": 1,
        "trial_ends_at": None,
        "ends_at": None,
        "status": "active",
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _repository(conn: FakeConnection) -> PostgresBillableRepository:
    return PostgresBillableRepository(conn=conn, config=load_billing_config({}))


def test_get_entity_maps_row_and_uses_entity_table():
    conn = FakeConnection([_entity_row()])

    entity = _repository(conn).get_entity("organization", "7")

    query, params = conn.cursor_obj.executed[0]
    assert "Identifier('organizations')" in repr(query)
    assert params == ("7",)
    assert entity.entity_id == "7"
    assert entity.entity_type == BillingCustomerType.ORGANIZATION
    assert entity.processor_id == "cus_7"
    assert conn.commits == 0
    assert conn.cursor_obj.closed


def test_get_entity_returns_none_when_missing():
    assert _repository(FakeConnection([])).get_entity("user", "404") is None


def test_save_entity_fields_updates_whitelisted_columns():
    conn = FakeConnection([_entity_row(card_brand=None, card_last_four=None, paypal_email="p@example.com")])
    entity = BillableEntity(entity_id="7", processor_id="cus_7")

    updated = _repository(conn).save_entity_fields(
        entity, {"paypal_email": "p@example.com", "card_brand": None, "card_last_four": None}
    )

    query, params = conn.cursor_obj.executed[0]
    assert "Identifier('users')" in repr(query)
    assert "Placeholder('paypal_email')" in repr(query)
    assert params == {
        "paypal_email": "p@example.com",
        "card_brand": None,
        "card_last_four": None,
        "entity_id": "7",
    }
    assert updated.paypal_email == "p@example.com"
    assert updated.card_brand is None


def test_save_entity_fields_rejects_unknown_columns():
    conn = FakeConnection([_entity_row()])

    with pytest.raises(ValueError):
        _repository(conn).save_entity_fields(BillableEntity(entity_id="7"), {"is_admin": True})

    assert conn.cursor_obj.executed == []


def test_list_subscriptions_maps_rows():
    conn = FakeConnection([_subscription_row(), _subscription_row(id="sub_0", status="cancelled")])
    entity = BillableEntity(entity_id="7")

    subscriptions = _repository(conn).list_subscriptions(entity)

    _, params = conn.cursor_obj.executed[0]
    assert params == ("user", "7")
    assert [subscription.subscription_id for subscription in subscriptions] == ["sub_1", "sub_0"]
    assert subscriptions[1].status == SubscriptionStatus.CANCELLED


def test_save_subscription_returns_persisted_row():
    conn = FakeConnection([_subscription_row(quantity=3)])
    subscription = Subscription(
        subscription_id="sub_1",
        entity_id="7",
        name="default",
        processor_id="psub_1",
        plan_id="monthly",
        quantity=3,
        created_at=NOW,
    )

    saved = _repository(conn).save_subscription(subscription)

    _, params = conn.cursor_obj.executed[0]
    assert params["id"] == "sub_1"
    assert params["status"] == "active"
    assert params["entity_type"] == "user"
    assert saved.quantity == 3


def test_managed_connection_commits_and_closes(monkeypatch):
    conn = FakeConnection([_entity_row()])
    monkeypatch.setattr(app_context, "_get_conn", lambda: conn)

    repository = PostgresBillableRepository(config=load_billing_config({}))
    repository.get_entity("user", "7")

    assert conn.commits >= 1
    assert conn.closed


def test_managed_connection_rolls_back_on_error(monkeypatch):
    conn = FakeConnection([])
    monkeypatch.setattr(app_context, "_get_conn", lambda: conn)

    repository = PostgresBillableRepository(config=load_billing_config({}))
    with pytest.raises(RuntimeError):
        repository.save_subscription(
            Subscription(
                subscription_id="sub_1",
                entity_id="7",
                name="default",
                processor_id="psub_1",
                plan_id="monthly",
            )
        )

    assert conn.rollbacks >= 1
    assert conn.closed


def test_naive_timestamps_from_rows_compare_against_the_clock():
    naive_now = NOW.replace(tzinfo=None)
    entity_row = _entity_row(
        trial_ends_at=naive_now + timedelta(days=2),
        created_at=naive_now,
        updated_at=naive_now,
    )
    entity = _repository(FakeConnection([entity_row])).get_entity("user", "7")
    subscriptions = FakeConnection(
        [
            _subscription_row(
                trial_ends_at=naive_now + timedelta(days=2),
                ends_at=naive_now + timedelta(days=5),
                status="cancelled",
                created_at=naive_now - timedelta(days=30),
                updated_at=naive_now,
            )
        ]
    )
    service = BillingService(
        repository=_repository(subscriptions),
        gateway=LocalSandboxPaymentGateway(),
        config=load_billing_config({}),
        clock=lambda: NOW,
    )

    assert entity.trial_ends_at == NOW + timedelta(days=2)
    assert entity.created_at.tzinfo is timezone.utc
    assert service.on_generic_trial(entity) is True
    assert service.on_trial(entity, "default") is True
    assert service.subscribed(entity) is True
    assert service.subscription(entity).on_grace_period(NOW) is True
