from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.middleware.auth import get_current_actor
from procurement.models.purchase_request import PurchaseRequest, PrLineItem
from procurement.schemas.common import PaginatedResponse, build_pagination
from procurement.schemas.purchase_request import (
    PurchaseRequestCreate,
    PurchaseRequestResponse,
    PrLineItemResponse,
    StatusChangeRequest,
    ReturnRequest,
)
from procurement.services import request_service
from procurement.services.policy import Actor
from procurement.services.transaction import call_with_transient_retry

router = APIRouter()


def _line_to_response(li: PrLineItem) -> PrLineItemResponse:
    return PrLineItemResponse(
        id=str(li.id),
        line_number=li.line_number,
        plan_line_id=str(li.plan_line_id) if li.plan_line_id else None,
        name=li.name,
        description=li.description,
        unit=li.unit,
        quantity=li.quantity,
        unit_cost_cents=li.unit_cost_cents,
        total_cost_cents=li.total_cost_cents,
        category=li.category,
        released_at=li.released_at.isoformat() if li.released_at else None,
    )


def _to_response(pr: PurchaseRequest, line_items: list[PrLineItem]) -> PurchaseRequestResponse:
    return PurchaseRequestResponse(
        id=str(pr.id),
        pr_number=pr.pr_number,
        purpose=pr.purpose,
        department_id=str(pr.department_id) if pr.department_id else None,
        plan_id=str(pr.plan_id) if pr.plan_id else None,
        requested_by=str(pr.requested_by),
        status=pr.status,
        total_cents=pr.total_cents,
        approved_by=str(pr.approved_by) if pr.approved_by else None,
        approved_at=pr.approved_at.isoformat() if pr.approved_at else None,
        return_reason=pr.return_reason,
        version=pr.version,
        line_items=[_line_to_response(li) for li in line_items],
        created_at=pr.created_at.isoformat() if pr.created_at else "",
        updated_at=pr.updated_at.isoformat() if pr.updated_at else "",
    )


async def _respond(db: AsyncSession, pr: PurchaseRequest) -> PurchaseRequestResponse:
    return _to_response(pr, await request_service.get_request_lines(db, pr.id))


@router.get("", response_model=PaginatedResponse[PurchaseRequestResponse])
async def list_purchase_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    pr_status: str = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    prs, total = await request_service.list_purchase_requests(db, pr_status, page, limit)
    meta = build_pagination(page, limit, total)
    return PaginatedResponse(data=[await _respond(db, pr) for pr in prs], pagination=meta)


@router.get("/{pr_id}", response_model=PurchaseRequestResponse)
async def get_purchase_request(
    pr_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _respond(db, await request_service.get_purchase_request(db, pr_id))


@router.post("", response_model=PurchaseRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_request(
    body: PurchaseRequestCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await call_with_transient_retry(
        request_service.create_purchase_request, db, actor, body
    )
    return await _respond(db, pr)


@router.post("/{pr_id}/submit", response_model=PurchaseRequestResponse)
async def submit_purchase_request(
    pr_id: str,
    body: StatusChangeRequest = StatusChangeRequest(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await call_with_transient_retry(
        request_service.submit_purchase_request, db, actor, pr_id, body.expected_version
    )
    return await _respond(db, pr)


@router.post("/{pr_id}/approve", response_model=PurchaseRequestResponse)
async def approve_purchase_request(
    pr_id: str,
    body: StatusChangeRequest = StatusChangeRequest(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await call_with_transient_retry(
        request_service.approve_purchase_request, db, actor, pr_id, body.expected_version
    )
    return await _respond(db, pr)


@router.post("/{pr_id}/return", response_model=PurchaseRequestResponse)
async def return_purchase_request(
    pr_id: str,
    body: ReturnRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await call_with_transient_retry(
        request_service.return_purchase_request,
        db,
        actor,
        pr_id,
        body.reason,
        body.expected_version,
    )
    return await _respond(db, pr)


@router.post("/{pr_id}/release", response_model=PurchaseRequestResponse)
async def release_purchase_request(
    pr_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    pr = await call_with_transient_retry(
        request_service.release_purchase_request, db, actor, pr_id
    )
    return await _respond(db, pr)
