"""
Order endpoints — admin order workflow + the accounting payment link.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from deps import (
    Pagination,
    get_credit_notes,
    get_invoices,
    get_order_machine,
    pagination_params,
    require_admin,
)
from domain.enums import parse_requested_status
from domain.errors import UnauthorizedError, ValidationError
from domain.responses import paginated_response, success_response
from middleware.auth import verify_payment_token
from middleware.rate_limit import rate_limit
from models import Order
from services.credit_service import CreditNoteService
from services.invoice_service import InvoiceOrchestrator
from services.order_service import OrderStateMachine, TransitionResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/orders", tags=["orders"], dependencies=[Depends(require_admin)])
payment_link_router = APIRouter(tags=["accounting"])


class OrderItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(default=None, alias="productId")
    name: str = Field(..., min_length=1, max_length=300)
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1, le=10_000)
    vat_category: str = Field("standard", alias="vatCategory")


class OrderCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: dict[str, Any] = Field(default_factory=dict)
    items: list[OrderItemRequest] = Field(..., min_length=1)
    payment_method: str = Field(..., alias="paymentMethod", min_length=1, max_length=50)
    shipping_method: str = Field("", alias="shippingMethod", max_length=200)
    shipping_carrier: str = Field("", alias="shippingCarrier", max_length=100)
    shipping_delivery_type: str = Field("", alias="shippingDeliveryType", max_length=100)
    shipping_cost: float = Field(0.0, alias="shippingCost", ge=0)
    dealer_group: Optional[str] = Field(default=None, alias="dealerGroup")
    dealer_discount_percent: float = Field(0.0, alias="dealerDiscountPercent", ge=0, le=100)
    payment_terms_days: Optional[int] = Field(default=None, alias="paymentTermsDays", ge=1, le=365)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=50)


class CreditLineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=300)
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(..., alias="unitPrice", ge=0)
    vat_rate: float = Field(0.0, alias="vatRate", ge=0, le=100)


class CreditNoteRequest(BaseModel):
    items: Optional[list[CreditLineRequest]] = None


def order_payload(order: Order) -> dict:
    data = order.to_document()
    data["id"] = order.id
    data["version"] = order.version
    data["overdue"] = order.is_overdue()
    if order.is_on_account:
        data["due_date"] = order.due_date().isoformat()
    return data


def transition_payload(result: TransitionResult) -> dict:
    return {
        "order": order_payload(result.order),
        "effects": [e.as_dict() for e in result.effects],
        "warnings": result.warnings,
    }


@router.post("")
async def create_order(
    request: OrderCreateRequest,
    machine: OrderStateMachine = Depends(get_order_machine),
):
    result = await machine.create_order(
        customer=request.customer,
        items=[item.model_dump() for item in request.items],
        payment_method=request.payment_method,
        shipping_method=request.shipping_method,
        shipping_carrier=request.shipping_carrier,
        shipping_delivery_type=request.shipping_delivery_type,
        shipping_cost=request.shipping_cost,
        dealer_group=request.dealer_group,
        dealer_discount_percent=request.dealer_discount_percent,
        payment_terms_days=request.payment_terms_days,
    )
    return success_response(data=transition_payload(result))


@router.get("")
async def list_orders(
    status: Optional[str] = Query(None),
    overdue: Optional[bool] = Query(None),
    page: Pagination = Depends(pagination_params),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    status_filter = None
    if status:
        status_filter = parse_requested_status(status)
        if status_filter is None:
            raise ValidationError(f"Unknown status '{status}'", field="status")

    orders, total = await machine.list_orders(
        status=status_filter,
        overdue=overdue,
        limit=page["limit"],
        offset=page["offset"],
    )
    return paginated_response(
        [order_payload(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/{order_id}")
async def get_order(order_id: str, machine: OrderStateMachine = Depends(get_order_machine)):
    order = await machine.load(order_id)
    return success_response(data=order_payload(order))


@router.post("/{order_id}/status")
async def update_status(
    order_id: str,
    request: StatusUpdateRequest,
    machine: OrderStateMachine = Depends(get_order_machine),
):
    result = await machine.update_status(order_id, request.status)
    return success_response(data=transition_payload(result))


@router.post("/{order_id}/mark-paid")
async def mark_as_paid(order_id: str, machine: OrderStateMachine = Depends(get_order_machine)):
    result = await machine.mark_as_paid(order_id)
    return success_response(data=transition_payload(result))


@router.post("/{order_id}/invoice")
async def ensure_invoice(order_id: str, invoices: InvoiceOrchestrator = Depends(get_invoices)):
    result = await invoices.ensure_invoice(order_id)
    return success_response(
        data={
            "invoice_number": result.invoice_number,
            "invoice_url": result.invoice_url,
            "created": result.created,
            "effects": [e.as_dict() for e in result.effects],
        }
    )


@router.post("/{order_id}/credit-notes")
async def issue_credit_note(
    order_id: str,
    request: Optional[CreditNoteRequest] = None,
    credits: CreditNoteService = Depends(get_credit_notes),
):
    lines = None
    if request and request.items:
        lines = [line.model_dump() for line in request.items]
    note = await credits.issue_credit_note(order_id, lines)
    return success_response(data={**note.to_document(), "id": note.id})


@payment_link_router.get("/api/orders/mark-paid")
async def accounting_mark_paid(
    order_id: str = Query(..., alias="id", min_length=1),
    token: str = Query(""),
    _=Depends(rate_limit(settings.payment_link_rate_limit, 60)),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    """Link in the accounting system: records a payment for any order."""
    if not verify_payment_token(token):
        logger.warning(f"Payment link rejected for order {order_id}: bad token")
        raise UnauthorizedError("Invalid payment token")
    result = await machine.register_payment(order_id)
    return success_response(data=transition_payload(result))
