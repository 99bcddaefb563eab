"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status

from ... import app_context
from ..billing import BillableEntity, BillingCustomerType, CustomerNotFound, InvoiceNotFound
from ..schemas.billing import InvoiceListResponse, InvoiceSummary, SubscriptionStatusResponse
from ..services.billing import get_billing_service


logger = logging.getLogger("billing")

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/billing", tags=["billing"])


def _load_entity(current_user: Any) -> BillableEntity:
    service = get_billing_service()
    entity = service.repository.get_entity(BillingCustomerType.USER.value, str(current_user.id))
    if entity is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Billable account not found")
    return entity


@router.get("/invoices", response_model=InvoiceListResponse)
def list_invoices(
    include_pending: bool = Query(False, alias="includePending"),
    *,
    current_user=Depends(_get_current_user),
) -> InvoiceListResponse:
    entity = _load_entity(current_user)
    service = get_billing_service()
    if not service.has_processor_id(entity):
        return InvoiceListResponse(invoices=[])

    try:
        invoices = service.invoices(entity, include_pending)
    except CustomerNotFound:
        logger.warning(
            "Processor customer %s for user %s no longer exists", entity.processor_id, entity.entity_id
        )
        return InvoiceListResponse(invoices=[])
    return InvoiceListResponse(invoices=[InvoiceSummary.from_invoice(invoice) for invoice in invoices])


@router.get("/invoices/{invoice_id}")
def download_invoice(
    invoice_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Response:
    entity = _load_entity(current_user)
    service = get_billing_service()
    try:
        invoice = service.find_invoice_or_fail(entity, invoice_id)
    except InvoiceNotFound as exc:
        raise exc.to_http_exception() from exc
    if invoice.transaction.customer_id != entity.processor_id:
        raise InvoiceNotFound(invoice_id).to_http_exception()

    data = service.invoice_data()
    return Response(
        content=invoice.download(data),
        media_type="text/html",
        headers={"Content-Disposition": f'attachment; filename="{invoice.filename(data)}"'},
    )


@router.get("/subscription", response_model=SubscriptionStatusResponse)
def subscription_status(
    name: Optional[str] = Query(None),
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionStatusResponse:
    entity = _load_entity(current_user)
    service = get_billing_service()
    resolved_name = name or service.config.default_subscription
    subscription = service.subscription(entity, resolved_name)
    return SubscriptionStatusResponse(
        name=resolved_name,
        subscribed=service.subscribed(entity, resolved_name),
        on_trial=service.on_trial(entity, resolved_name),
        on_generic_trial=service.on_generic_trial(entity),
        plan_id=subscription.plan_id if subscription else None,
        ends_at=subscription.ends_at if subscription else None,
    )
