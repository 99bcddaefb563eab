"""Persistence layer for billable entities and their subscriptions."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Mapping, Optional

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .config import BillingConfig, load_billing_config
from .models import BillableEntity, BillingCustomerType, Subscription, SubscriptionStatus

# Columns the facade may assign on the owning entity record.
ENTITY_BILLING_COLUMNS = frozenset(
    {"processor_id", "trial_ends_at", "card_brand", "card_last_four", "paypal_email"}
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_entity(row: dict, entity_type: BillingCustomerType) -> BillableEntity:
    return BillableEntity(
        entity_id=str(row["id"]),
        entity_type=entity_type,
        name=row.get("name") or "",
        email=row.get("email"),
        processor_id=row.get("processor_id"),
        trial_ends_at=row.get("trial_ends_at"),
        card_brand=row.get("card_brand"),
        card_last_four=row.get("card_last_four"),
        paypal_email=row.get("paypal_email"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        subscription_id=str(row["id"]),
        entity_type=BillingCustomerType(row["entity_type"]),
        entity_id=str(row["entity_id"]),
        name=row["name"],
        processor_id=row["processor_id"],
        plan_id=row["plan_id"],
        quantity=int(row.get("quantity") or 1),
        trial_ends_at=row.get("trial_ends_at"),
        ends_at=row.get("ends_at"),
        status=SubscriptionStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillableRepository:
    """Concrete repository persisting billing fields in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None, config: Optional[BillingConfig] = None) -> None:
        self._conn = conn
        self._config = config or load_billing_config()

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def _entity_table(self, entity_type: BillingCustomerType) -> sql.Identifier:
        if entity_type == BillingCustomerType.ORGANIZATION:
            return sql.Identifier(self._config.organizations_table)
        return sql.Identifier(self._config.users_table)

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[BillableEntity]:
        resolved_type = BillingCustomerType(entity_type)
        with self._cursor() as cursor:
            cursor.execute(
                sql.SQL("SELECT * FROM {table} WHERE id = %s LIMIT 1").format(
                    table=self._entity_table(resolved_type)
                ),
                (entity_id,),
            )
            row = cursor.fetchone()
        return _row_to_entity(row, resolved_type) if row else None

    def save_entity_fields(self, entity: BillableEntity, fields: Mapping[str, Any]) -> BillableEntity:
        """Assign billing columns on the entity record and return the saved row."""

        unknown = set(fields) - ENTITY_BILLING_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported billing columns: {sorted(unknown)}")
        if not fields:
            return entity

        assignments = sql.SQL(", ").join(
            sql.SQL("{column} = {value}").format(
                column=sql.Identifier(column), value=sql.Placeholder(column)
            )
            for column in sorted(fields)
        )
        params: Dict[str, Any] = dict(fields)
        params["entity_id"] = entity.entity_id

        with self._cursor() as cursor:
            cursor.execute(
                sql.SQL(
                    "UPDATE {table} SET {assignments}, updated_at = NOW() "
                    "WHERE id = %(entity_id)s RETURNING *"
                ).format(table=self._entity_table(entity.entity_type), assignments=assignments),
                params,
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing fields")
            return _row_to_entity(row, entity.entity_type)

    def list_subscriptions(self, entity: BillableEntity) -> List[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                sql.SQL(
                    """
                    SELECT *
                    FROM {table}
                    WHERE entity_type = %s AND entity_id = %s
                    ORDER BY created_at DESC
                    """
                ).format(table=sql.Identifier(self._config.subscriptions_table)),
                (entity.entity_type.value, entity.entity_id),
            )
            rows = cursor.fetchall()
        return [_row_to_subscription(row) for row in rows]

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or update a subscription record."""

        with self._cursor() as cursor:
            cursor.execute(
                sql.SQL(
                    """
                    INSERT INTO {table} (
                        id,
                        entity_type,
                        entity_id,
                        name,
                        processor_id,
                        plan_id,
                        quantity,
                        trial_ends_at,
                        ends_at,
                        status,
                        created_at
                    )
                    VALUES (%(id)s, %(entity_type)s, %(entity_id)s, %(name)s, %(processor_id)s,
                            %(plan_id)s, %(quantity)s, %(trial_ends_at)s, %(ends_at)s,
                            %(status)s, %(created_at)s)
                    ON CONFLICT (id) DO UPDATE SET
                        plan_id = EXCLUDED.plan_id,
                        quantity = EXCLUDED.quantity,
                        trial_ends_at = EXCLUDED.trial_ends_at,
                        ends_at = EXCLUDED.ends_at,
                        status = EXCLUDED.status,
                        updated_at = NOW()
                    RETURNING *
                    """
                ).format(table=sql.Identifier(self._config.subscriptions_table)),
                {
                    "id": subscription.subscription_id,
                    "entity_type": subscription.entity_type.value,
                    "entity_id": subscription.entity_id,
                    "name": subscription.name,
                    "processor_id": subscription.processor_id,
                    "plan_id": subscription.plan_id,
                    "quantity": subscription.quantity,
                    "trial_ends_at": subscription.trial_ends_at,
                    "ends_at": subscription.ends_at,
                    "status": subscription.status.value,
                    "created_at": subscription.created_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)


__all__ = ["ENTITY_BILLING_COLUMNS", "PostgresBillableRepository", "managed_connection"]
