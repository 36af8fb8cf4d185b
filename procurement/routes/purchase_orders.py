from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.middleware.auth import get_current_actor
from procurement.models.purchase_order import PurchaseOrder, PoLineItem
from procurement.schemas.common import PaginatedResponse, build_pagination
from procurement.schemas.purchase_order import (
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PoLineItemResponse,
    OrderCancelRequest,
    OrderStatusChangeRequest,
)
from procurement.services import order_service
from procurement.services.policy import Actor
from procurement.services.transaction import call_with_transient_retry

router = APIRouter()


def _line_to_response(li: PoLineItem) -> PoLineItemResponse:
    return PoLineItemResponse(
        id=str(li.id),
        pr_line_item_id=str(li.pr_line_item_id),
        line_number=li.line_number,
        quantity=li.quantity,
        unit_cost_cents=li.unit_cost_cents,
        total_cost_cents=li.total_cost_cents,
        delivered_quantity=li.delivered_quantity or 0,
        remaining_quantity=li.remaining_quantity,
        cancelled=bool(li.cancelled),
        version=li.version,
    )


def _to_response(po: PurchaseOrder, line_items: list[PoLineItem]) -> PurchaseOrderResponse:
    return PurchaseOrderResponse(
        id=str(po.id),
        po_number=po.po_number,
        pr_id=str(po.pr_id),
        supplier_name=po.supplier_name,
        supplier_address=po.supplier_address,
        supplier_contact=po.supplier_contact,
        terms_conditions=po.terms_conditions,
        delivery_date=po.delivery_date.isoformat() if po.delivery_date else None,
        status=po.status,
        delivery_status=order_service.derive_delivery_status(line_items),
        total_cents=po.total_cents,
        created_by=str(po.created_by),
        version=po.version,
        line_items=[_line_to_response(li) for li in line_items],
        created_at=po.created_at.isoformat() if po.created_at else "",
        updated_at=po.updated_at.isoformat() if po.updated_at else "",
    )


async def _respond(db: AsyncSession, po: PurchaseOrder) -> PurchaseOrderResponse:
    return _to_response(po, await order_service.get_order_lines(db, po.id))


@router.get("", response_model=PaginatedResponse[PurchaseOrderResponse])
async def list_purchase_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    po_status: str = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pos, total = await order_service.list_purchase_orders(db, po_status, page, limit)
    meta = build_pagination(page, limit, total)
    return PaginatedResponse(data=[await _respond(db, po) for po in pos], pagination=meta)


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    po_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _respond(db, await order_service.get_purchase_order(db, po_id))


@router.post("", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    body: PurchaseOrderCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    po = await call_with_transient_retry(order_service.create_purchase_order, db, actor, body)
    return await _respond(db, po)


@router.post("/{po_id}/approve", response_model=PurchaseOrderResponse)
async def approve_purchase_order(
    po_id: str,
    body: OrderStatusChangeRequest = OrderStatusChangeRequest(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    po = await call_with_transient_retry(
        order_service.approve_purchase_order, db, actor, po_id, body.expected_version
    )
    return await _respond(db, po)


@router.post("/{po_id}/cancel", response_model=PurchaseOrderResponse)
async def cancel_purchase_order(
    po_id: str,
    body: OrderCancelRequest = OrderCancelRequest(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    po = await call_with_transient_retry(
        order_service.cancel_purchase_order,
        db,
        actor,
        po_id,
        body.expected_version,
        reason=body.reason,
    )
    return await _respond(db, po)


@router.post("/{po_id}/lines/{line_id}/cancel", response_model=PurchaseOrderResponse)
async def cancel_order_line(
    po_id: str,
    line_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await call_with_transient_retry(order_service.cancel_order_line, db, actor, po_id, line_id)
    return await _respond(db, await order_service.get_purchase_order(db, po_id))
