"""
PPMP -> PR -> PO -> IAR -> DV against a real (in-memory SQLite) database.

Each test builds the document chain it needs through the service layer,
the same way the routes drive it.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from procurement.exceptions import (
    ConflictError,
    DuplicateVoucher,
    EmptySelection,
    Forbidden,
    InsufficientRemainder,
    InvalidStatusTransition,
    ValidationError,
)
from procurement.models.audit_log import AuditLog
from procurement.models.ledger import LedgerEntry
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.voucher import DisbursementVoucher
from procurement.schemas.inspection import (
    InspectionItemCreate,
    InspectionItemUpdate,
    InspectionReportCreate,
    InspectionReportUpdate,
)
from procurement.schemas.plan import PlanCreate, PlanLineCreate, PlanLineUpdate, PlanUpdate
from procurement.schemas.purchase_order import PurchaseOrderCreate
from procurement.schemas.purchase_request import PrLineItemCreate, PurchaseRequestCreate
from procurement.schemas.voucher import VoucherCreate, VoucherUpdate
from procurement.services import (
    inspection_service,
    order_service,
    plan_service,
    request_service,
    variance_service,
    voucher_service,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _plan_line(session, actor, quantity=100, unit_cost_cents=100):
    plan = await plan_service.create_plan(
        session,
        actor,
        PlanCreate(
            fiscal_year=2026,
            title="Office supplies",
            lines=[
                PlanLineCreate(
                    name="Bond paper",
                    unit="ream",
                    planned_quantity=quantity,
                    planned_unit_cost_cents=unit_cost_cents,
                )
            ],
        ),
    )
    lines = await plan_service.get_plan_lines(session, plan.id)
    return plan, lines[0]


async def _approved_request(session, admin, quantities=(10,), unit_cost_cents=100, plan_line=None):
    items = [
        PrLineItemCreate(
            plan_line_id=str(plan_line.id) if plan_line else None,
            name=None if plan_line else f"Item {i}",
            quantity=qty,
            unit_cost_cents=None if plan_line else unit_cost_cents,
        )
        for i, qty in enumerate(quantities, start=1)
    ]
    pr = await request_service.create_purchase_request(
        session, admin, PurchaseRequestCreate(purpose="Restock", line_items=items)
    )
    await request_service.submit_purchase_request(session, admin, pr.id)
    await request_service.approve_purchase_request(session, admin, pr.id)
    return pr, await request_service.get_request_lines(session, pr.id)


async def _approved_order(session, admin, quantity=10, unit_cost_cents=100, plan_line=None):
    pr, pr_lines = await _approved_request(
        session, admin, (quantity,), unit_cost_cents, plan_line=plan_line
    )
    po = await order_service.create_purchase_order(
        session,
        admin,
        PurchaseOrderCreate(
            pr_id=str(pr.id),
            line_item_ids=[str(pr_lines[0].id)],
            supplier_name="Acme Trading",
        ),
    )
    await order_service.approve_purchase_order(session, admin, po.id)
    lines = await order_service.get_order_lines(session, po.id)
    return po, lines[0]


async def _inspect(session, inspector, po, line, accepted=None, rejected=None, edited=None, inspected=None):
    return await inspection_service.create_inspection_report(
        session,
        inspector,
        InspectionReportCreate(
            po_id=str(po.id),
            items=[
                InspectionItemCreate(
                    po_line_item_id=str(line.id),
                    inspected_quantity=inspected,
                    accepted_quantity=accepted,
                    rejected_quantity=rejected,
                    last_edited=edited,
                )
            ],
        ),
    )


async def _count(session, model):
    return (await session.execute(select(func.count(model.id)))).scalar()


# ---------------------------------------------------------------------------
# PPMP editing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_plan_edit_replaces_unreferenced_lines(session, admin, encoder):
    plan = await plan_service.create_plan(
        session,
        admin,
        PlanCreate(
            fiscal_year=2026,
            title="Office supplies",
            lines=[
                PlanLineCreate(name="Bond paper", unit="ream", planned_quantity=10, planned_unit_cost_cents=250),
                PlanLineCreate(name="Stapler", planned_quantity=2, planned_unit_cost_cents=1_000),
            ],
        ),
    )
    paper, stapler = await plan_service.get_plan_lines(session, plan.id)

    await plan_service.update_plan(
        session,
        encoder,
        plan.id,
        PlanUpdate(
            title="Office supplies (revised)",
            lines=[
                PlanLineUpdate(
                    id=str(paper.id), name="Bond paper", unit="ream",
                    planned_quantity=20, planned_unit_cost_cents=250,
                ),
                PlanLineUpdate(name="Folder", planned_quantity=50, planned_unit_cost_cents=15),
            ],
        ),
    )

    lines = await plan_service.get_plan_lines(session, plan.id)
    assert [(line.name, line.line_number) for line in lines] == [("Bond paper", 1), ("Folder", 3)]
    assert lines[0].id == paper.id
    assert lines[0].remaining_quantity == 20
    assert lines[0].remaining_budget_cents == 5_000
    assert plan.title == "Office supplies (revised)"
    assert plan.total_budget_cents == 5_000 + 750
    assert stapler.id not in {line.id for line in lines}

    audit = (
        await session.execute(select(AuditLog).where(AuditLog.action == "PLAN_UPDATED"))
    ).scalar_one()
    assert audit.before_state["title"] == "Office supplies"
    assert audit.after_state["total_budget_cents"] == 5_750


@pytest.mark.asyncio
async def test_plan_edit_keeps_lines_drawn_on_by_requests(session, admin):
    plan, plan_line = await _plan_line(session, admin)
    await request_service.create_purchase_request(
        session,
        admin,
        PurchaseRequestCreate(
            purpose="Q1 supplies",
            line_items=[PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=10)],
        ),
    )
    unchanged = PlanLineUpdate(
        id=str(plan_line.id), name="Bond paper", unit="ream",
        planned_quantity=100, planned_unit_cost_cents=100,
    )

    with pytest.raises(ValidationError):
        await plan_service.update_plan(
            session, admin, plan.id,
            PlanUpdate(lines=[unchanged.model_copy(update={"planned_quantity": 50})]),
        )
    with pytest.raises(ValidationError):
        await plan_service.update_plan(
            session, admin, plan.id,
            PlanUpdate(lines=[PlanLineUpdate(name="Toner", planned_quantity=1, planned_unit_cost_cents=1)]),
        )

    # resubmitting it as-is alongside a new line is fine
    await plan_service.update_plan(
        session, admin, plan.id,
        PlanUpdate(
            lines=[unchanged, PlanLineUpdate(name="Toner", planned_quantity=1, planned_unit_cost_cents=3_500)]
        ),
    )
    lines = await plan_service.get_plan_lines(session, plan.id)
    assert len(lines) == 2
    assert lines[0].remaining_quantity == 90
    assert plan.total_budget_cents == 10_000 + 3_500


@pytest.mark.asyncio
async def test_plan_edit_rejects_foreign_lines_and_empty_line_set(session, admin, inspector):
    plan, _ = await _plan_line(session, admin)
    _, other_line = await _plan_line(session, admin)

    with pytest.raises(ValidationError):
        await plan_service.update_plan(
            session, admin, plan.id,
            PlanUpdate(lines=[PlanLineUpdate(id=str(other_line.id), name="Bond paper", planned_quantity=1, planned_unit_cost_cents=1)]),
        )
    with pytest.raises(ValidationError):
        await plan_service.update_plan(session, admin, plan.id, PlanUpdate(lines=[]))
    with pytest.raises(Forbidden):
        await plan_service.update_plan(session, inspector, plan.id, PlanUpdate(title="Nope"))


# ---------------------------------------------------------------------------
# PPMP -> PR
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_request_line_consumes_plan_line(session, admin, encoder):
    _, plan_line = await _plan_line(session, admin)

    pr = await request_service.create_purchase_request(
        session,
        encoder,
        PurchaseRequestCreate(
            purpose="Q1 supplies",
            line_items=[PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=40)],
        ),
    )

    assert plan_line.remaining_quantity == 60
    assert plan_line.remaining_budget_cents == 6_000
    assert pr.total_cents == 4_000
    assert pr.status == "pending"

    lines = await request_service.get_request_lines(session, pr.id)
    assert lines[0].name == "Bond paper"
    assert lines[0].unit == "ream"
    assert lines[0].unit_cost_cents == 100

    entries = (await session.execute(select(LedgerEntry))).scalars().all()
    assert [(e.entry_type, e.quantity_delta, e.budget_delta_cents) for e in entries] == [
        ("CONSUME", -40, -4_000)
    ]


@pytest.mark.asyncio
async def test_request_over_plan_remainder_is_all_or_nothing(session, admin):
    _, plan_line = await _plan_line(session, admin)

    with pytest.raises(InsufficientRemainder):
        await request_service.create_purchase_request(
            session,
            admin,
            PurchaseRequestCreate(
                purpose="Too much",
                line_items=[
                    PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=60),
                    PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=60),
                ],
            ),
        )

    await session.refresh(plan_line)
    assert plan_line.remaining_quantity == 100
    assert plan_line.remaining_budget_cents == 10_000
    assert await _count(session, PurchaseRequest) == 0
    assert await _count(session, LedgerEntry) == 0


@pytest.mark.asyncio
async def test_returned_request_keeps_consumption_until_released(session, admin, bac):
    _, plan_line = await _plan_line(session, admin)
    pr = await request_service.create_purchase_request(
        session,
        admin,
        PurchaseRequestCreate(
            purpose="Q2 supplies",
            line_items=[PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=25)],
        ),
    )

    await request_service.return_purchase_request(session, bac, pr.id, "Wrong fund source")
    assert pr.status == "returned"
    assert pr.return_reason == "Wrong fund source"
    assert plan_line.remaining_quantity == 75

    await request_service.release_purchase_request(session, admin, pr.id)
    await session.refresh(plan_line)
    assert plan_line.remaining_quantity == 100
    assert plan_line.remaining_budget_cents == 10_000

    # second release finds nothing left to give back
    await request_service.release_purchase_request(session, admin, pr.id)
    await session.refresh(plan_line)
    assert plan_line.remaining_quantity == 100


@pytest.mark.asyncio
async def test_release_requires_returned_status_and_admin(session, admin, bac):
    _, plan_line = await _plan_line(session, admin)
    pr = await request_service.create_purchase_request(
        session,
        admin,
        PurchaseRequestCreate(
            purpose="Q2 supplies",
            line_items=[PrLineItemCreate(plan_line_id=str(plan_line.id), quantity=5)],
        ),
    )

    with pytest.raises(ValidationError):
        await request_service.release_purchase_request(session, admin, pr.id)
    with pytest.raises(Forbidden):
        await request_service.release_purchase_request(session, bac, pr.id)


@pytest.mark.asyncio
async def test_request_status_flow_and_stale_version(session, admin, encoder, bac):
    pr, _ = await _approved_request(session, admin)
    assert pr.status == "approved"
    assert pr.approved_by == admin.user_id

    with pytest.raises(InvalidStatusTransition):
        await request_service.submit_purchase_request(session, encoder, pr.id)
    with pytest.raises(ConflictError):
        await request_service.return_purchase_request(
            session, bac, pr.id, "late change", expected_version=1
        )
    with pytest.raises(Forbidden):
        await request_service.approve_purchase_request(session, encoder, pr.id)


@pytest.mark.asyncio
async def test_unlinked_request_line_needs_name_and_cost(session, admin):
    with pytest.raises(ValidationError):
        await request_service.create_purchase_request(
            session,
            admin,
            PurchaseRequestCreate(purpose="Misc", line_items=[PrLineItemCreate(quantity=2)]),
        )


# ---------------------------------------------------------------------------
# PR -> PO
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_order_from_subset_of_request_lines(session, admin, bac):
    pr, pr_lines = await _approved_request(session, admin, quantities=(5, 7))
    assert pr.total_cents == 1_200

    po = await order_service.create_purchase_order(
        session,
        bac,
        PurchaseOrderCreate(
            pr_id=str(pr.id),
            line_item_ids=[str(pr_lines[0].id)],
            supplier_name="Acme Trading",
            delivery_date=date(2026, 3, 1),
        ),
    )

    assert po.total_cents == 500
    assert po.status == "pending"
    assert pr.status == "awarded"
    order_lines = await order_service.get_order_lines(session, po.id)
    assert len(order_lines) == 1
    assert order_lines[0].pr_line_item_id == pr_lines[0].id
    assert order_lines[0].delivered_quantity == 0
    assert order_lines[0].remaining_quantity == 5
    assert order_service.derive_delivery_status(order_lines) == "not_delivered"

    with pytest.raises(InvalidStatusTransition):
        await order_service.create_purchase_order(
            session,
            bac,
            PurchaseOrderCreate(
                pr_id=str(pr.id),
                line_item_ids=[str(pr_lines[1].id)],
                supplier_name="Acme Trading",
            ),
        )


@pytest.mark.asyncio
async def test_order_rejects_bad_selection(session, admin, bac):
    pr, pr_lines = await _approved_request(session, admin, quantities=(5,))
    other_pr, other_lines = await _approved_request(session, admin, quantities=(3,))

    with pytest.raises(EmptySelection):
        await order_service.create_purchase_order(
            session, bac, PurchaseOrderCreate(pr_id=str(pr.id), supplier_name="Acme")
        )
    with pytest.raises(ValidationError):
        await order_service.create_purchase_order(
            session,
            bac,
            PurchaseOrderCreate(pr_id=str(pr.id), line_item_ids=[str(pr_lines[0].id)]),
        )
    with pytest.raises(ValidationError):
        await order_service.create_purchase_order(
            session,
            bac,
            PurchaseOrderCreate(
                pr_id=str(pr.id),
                line_item_ids=[str(other_lines[0].id)],
                supplier_name="Acme",
            ),
        )
    assert pr.status == "approved"
    assert other_pr.status == "approved"


@pytest.mark.asyncio
async def test_order_requires_approved_request_and_bac(session, admin, encoder, bac):
    pr = await request_service.create_purchase_request(
        session,
        admin,
        PurchaseRequestCreate(
            purpose="Pending",
            line_items=[PrLineItemCreate(name="Chair", quantity=2, unit_cost_cents=150_000)],
        ),
    )
    lines = await request_service.get_request_lines(session, pr.id)
    body = PurchaseOrderCreate(
        pr_id=str(pr.id), line_item_ids=[str(lines[0].id)], supplier_name="Acme"
    )

    with pytest.raises(Forbidden):
        await order_service.create_purchase_order(session, encoder, body)
    with pytest.raises(InvalidStatusTransition):
        await order_service.create_purchase_order(session, bac, body)


@pytest.mark.asyncio
async def test_cancel_order_without_deliveries(session, admin):
    po, line = await _approved_order(session, admin, quantity=4)

    await order_service.cancel_purchase_order(session, admin, po.id)

    assert po.status == "cancelled"
    assert line.cancelled is True
    assert line.remaining_quantity == 0
    with pytest.raises(InvalidStatusTransition):
        await order_service.approve_purchase_order(session, admin, po.id)


@pytest.mark.asyncio
async def test_cancel_order_blocked_after_delivery(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=4)
    await _inspect(session, inspector, po, line, accepted=2, edited="accepted")

    with pytest.raises(ValidationError):
        await order_service.cancel_purchase_order(session, admin, po.id)

    # the undelivered part of a line can still be withdrawn
    await order_service.cancel_order_line(session, admin, po.id, line.id)
    assert line.delivered_quantity == 2
    assert line.remaining_quantity == 0
    assert line.cancelled is True


@pytest.mark.asyncio
async def test_cancel_reason_is_audited(session, admin, bac):
    po, _ = await _approved_order(session, admin, quantity=4)

    await order_service.cancel_purchase_order(
        session, bac, po.id, reason="Supplier closed shop"
    )

    audit = (
        await session.execute(
            select(AuditLog).where(AuditLog.entity_id == po.id, AuditLog.action == "PO_CANCELLED")
        )
    ).scalar_one()
    assert audit.after_state["reason"] == "Supplier closed shop"
    assert audit.after_state["status"] == "cancelled"


@pytest.mark.asyncio
async def test_order_list_is_paged_in_the_query(session, admin):
    for quantity in (1, 2, 3):
        await _approved_order(session, admin, quantity=quantity)

    first_page, total = await order_service.list_purchase_orders(session, page=1, limit=2)
    last_page, _ = await order_service.list_purchase_orders(session, page=2, limit=2)
    past_end, _ = await order_service.list_purchase_orders(session, page=3, limit=2)

    assert total == 3
    assert len(first_page) == 2
    assert len(last_page) == 1
    assert past_end == []
    assert {po.id for po in first_page}.isdisjoint({po.id for po in last_page})

    pending, pending_total = await order_service.list_purchase_orders(session, status="pending")
    assert (pending, pending_total) == ([], 0)


# ---------------------------------------------------------------------------
# PO -> IAR
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_partial_then_full_delivery(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=10)

    first = await _inspect(session, inspector, po, line, rejected=3, edited="rejected")
    items = await inspection_service.get_inspection_items(session, first.id)
    assert (items[0].inspected_quantity, items[0].accepted_quantity, items[0].rejected_quantity) == (10, 7, 3)
    assert items[0].result == "requires_reinspection"
    assert first.overall_result == "requires_reinspection"
    assert line.delivered_quantity == 7
    assert line.remaining_quantity == 3
    assert order_service.derive_delivery_status([line]) == "partially_delivered"

    second = await _inspect(session, inspector, po, line)
    assert second.overall_result == "accepted"
    assert line.delivered_quantity == 10
    assert line.remaining_quantity == 0
    assert order_service.derive_delivery_status([line]) == "fully_delivered"

    with pytest.raises(ValidationError):
        await _inspect(session, inspector, po, line, inspected=1)


@pytest.mark.asyncio
async def test_inspection_over_remaining_is_rejected(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=5)

    with pytest.raises(InsufficientRemainder):
        await _inspect(session, inspector, po, line, inspected=6)

    await session.refresh(line)
    assert line.remaining_quantity == 5
    assert line.delivered_quantity == 0


@pytest.mark.asyncio
async def test_inspection_needs_some_acceptance(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=5)

    with pytest.raises(ValidationError):
        await _inspect(session, inspector, po, line, rejected=5, edited="rejected")


@pytest.mark.asyncio
async def test_inspection_requires_approved_order(session, admin, inspector):
    pr, pr_lines = await _approved_request(session, admin, (3,))
    po = await order_service.create_purchase_order(
        session,
        admin,
        PurchaseOrderCreate(
            pr_id=str(pr.id), line_item_ids=[str(pr_lines[0].id)], supplier_name="Acme"
        ),
    )
    lines = await order_service.get_order_lines(session, po.id)

    with pytest.raises(ValidationError):
        await _inspect(session, inspector, po, lines[0])


@pytest.mark.asyncio
async def test_edit_applies_only_the_difference(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=10)
    report = await _inspect(session, inspector, po, line, accepted=7, edited="accepted")
    item = (await inspection_service.get_inspection_items(session, report.id))[0]
    assert line.delivered_quantity == 7

    await inspection_service.update_inspection_report(
        session,
        inspector,
        report.id,
        InspectionReportUpdate(
            expected_version=report.version,
            items=[InspectionItemUpdate(id=str(item.id), accepted_quantity=5, last_edited="accepted")],
        ),
    )
    assert line.delivered_quantity == 5
    assert line.remaining_quantity == 5
    assert item.rejected_quantity == 5
    assert report.overall_result == "requires_reinspection"

    # saving the same figures again moves nothing
    await inspection_service.update_inspection_report(
        session,
        inspector,
        report.id,
        InspectionReportUpdate(
            expected_version=report.version,
            items=[InspectionItemUpdate(id=str(item.id), accepted_quantity=5, last_edited="accepted")],
        ),
    )
    assert line.delivered_quantity == 5
    assert line.delivered_quantity + line.remaining_quantity == line.quantity

    deliveries = (
        await session.execute(
            select(func.sum(LedgerEntry.quantity_delta)).where(
                LedgerEntry.source_id == item.id, LedgerEntry.entry_type == "DELIVER"
            )
        )
    ).scalar()
    assert deliveries == -5


@pytest.mark.asyncio
async def test_edit_with_stale_version_conflicts(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=10)
    report = await _inspect(session, inspector, po, line)

    with pytest.raises(ConflictError):
        await inspection_service.update_inspection_report(
            session,
            inspector,
            report.id,
            InspectionReportUpdate(expected_version=report.version + 1, remarks="late"),
        )


@pytest.mark.asyncio
async def test_emergency_report_has_no_order(session, inspector):
    report = await inspection_service.create_inspection_report(
        session,
        inspector,
        InspectionReportCreate(
            is_emergency_purchase=True,
            emergency_supplier_name="Corner Hardware",
            emergency_amount_cents=45_000,
            emergency_reference="OR-5531",
        ),
    )
    assert report.po_id is None
    assert report.overall_result == "accepted"

    with pytest.raises(ValidationError):
        await inspection_service.create_inspection_report(
            session, inspector, InspectionReportCreate(is_emergency_purchase=True)
        )


@pytest.mark.asyncio
async def test_edit_earlier_report_after_rejected_units_were_redelivered(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=10)
    first = await _inspect(session, inspector, po, line, rejected=3, edited="rejected")
    await _inspect(session, inspector, po, line)
    assert (line.delivered_quantity, line.remaining_quantity) == (10, 0)
    item = (await inspection_service.get_inspection_items(session, first.id))[0]

    await inspection_service.update_inspection_report(
        session,
        inspector,
        first.id,
        InspectionReportUpdate(
            expected_version=first.version,
            remarks="Corrected delivery receipt number",
            items=[InspectionItemUpdate(id=str(item.id), remarks="Three reams water damaged")],
        ),
    )
    assert (item.inspected_quantity, item.accepted_quantity, item.rejected_quantity) == (10, 7, 3)
    assert item.remarks == "Three reams water damaged"
    assert line.delivered_quantity == 10

    # accepting more than the line still has open is refused
    version = first.version
    with pytest.raises(InsufficientRemainder):
        await inspection_service.update_inspection_report(
            session,
            inspector,
            first.id,
            InspectionReportUpdate(
                expected_version=version,
                items=[InspectionItemUpdate(id=str(item.id), accepted_quantity=8, last_edited="accepted")],
            ),
        )
    await session.refresh(line)
    assert (line.delivered_quantity, line.remaining_quantity) == (10, 0)


@pytest.mark.asyncio
async def test_edit_on_cancelled_line_keeps_remainder_at_zero(session, admin, inspector):
    po, line = await _approved_order(session, admin, quantity=10)
    report = await _inspect(session, inspector, po, line, accepted=7, edited="accepted")
    item = (await inspection_service.get_inspection_items(session, report.id))[0]
    await order_service.cancel_order_line(session, admin, po.id, line.id)
    assert line.remaining_quantity == 0

    await inspection_service.update_inspection_report(
        session,
        inspector,
        report.id,
        InspectionReportUpdate(
            expected_version=report.version,
            items=[
                InspectionItemUpdate(
                    id=str(item.id), inspected_quantity=7, accepted_quantity=5, last_edited="accepted"
                )
            ],
        ),
    )

    assert line.cancelled is True
    assert line.delivered_quantity == 5
    assert line.remaining_quantity == 0
    entries = (
        await session.execute(
            select(LedgerEntry).where(LedgerEntry.subject_id == line.id)
        )
    ).scalars().all()
    assert sorted(e.entry_type for e in entries) == ["CANCEL", "CANCEL", "DELIVER", "DELIVER"]
    assert line.quantity + sum(e.quantity_delta for e in entries) == line.remaining_quantity


# ---------------------------------------------------------------------------
# IAR -> DV
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_voucher_defaults_from_order_and_is_unique(session, admin, inspector, accountant):
    po, line = await _approved_order(session, admin, quantity=10, unit_cost_cents=2_500)
    report = await _inspect(session, inspector, po, line)

    available = await voucher_service.list_available_for_voucher(session)
    assert [r.id for r in available] == [report.id]

    dv = await voucher_service.create_voucher(
        session, accountant, VoucherCreate(inspection_report_id=str(report.id))
    )
    assert dv.payee_name == "Acme Trading"
    assert dv.amount_cents == 25_000
    assert dv.payment_method == "check"
    assert dv.status == "for_signature"
    assert dv.po_id == po.id

    assert await voucher_service.list_available_for_voucher(session) == []
    with pytest.raises(DuplicateVoucher):
        await voucher_service.create_voucher(
            session, accountant, VoucherCreate(inspection_report_id=str(report.id))
        )

    with pytest.raises(ValidationError):
        await inspection_service.update_inspection_report(
            session,
            inspector,
            report.id,
            InspectionReportUpdate(expected_version=report.version, remarks="after payment"),
        )


@pytest.mark.asyncio
async def test_voucher_requires_accepted_report(session, admin, inspector, accountant):
    po, line = await _approved_order(session, admin, quantity=10)
    report = await _inspect(session, inspector, po, line, rejected=2, edited="rejected")

    assert await voucher_service.list_available_for_voucher(session) == []
    with pytest.raises(ValidationError):
        await voucher_service.create_voucher(
            session, accountant, VoucherCreate(inspection_report_id=str(report.id))
        )


@pytest.mark.asyncio
async def test_voucher_lifecycle(session, admin, inspector, accountant, bac):
    po, line = await _approved_order(session, admin, quantity=2)
    report = await _inspect(session, inspector, po, line)
    dv = await voucher_service.create_voucher(
        session, accountant, VoucherCreate(inspection_report_id=str(report.id))
    )

    with pytest.raises(Forbidden):
        await voucher_service.advance_voucher_status(session, bac, dv.id, "submitted")

    await voucher_service.update_voucher_details(
        session, accountant, dv.id, VoucherUpdate(payee_name="Acme Trading Corp.")
    )
    await voucher_service.advance_voucher_status(session, accountant, dv.id, "submitted")
    assert dv.status == "submitted"

    with pytest.raises(ValidationError):
        await voucher_service.mark_voucher_paid(session, accountant, dv.id, date.today())
    with pytest.raises(ValidationError):
        await voucher_service.mark_voucher_paid(
            session, accountant, dv.id, date.today() + timedelta(days=1), "001122"
        )

    await voucher_service.mark_voucher_paid(session, accountant, dv.id, date.today(), "001122")
    assert dv.status == "processed"
    assert dv.payee_name == "Acme Trading Corp."
    assert dv.check_number == "001122"
    assert dv.processed_by == accountant.user_id
    assert dv.processed_at is not None

    with pytest.raises(InvalidStatusTransition):
        await voucher_service.advance_voucher_status(session, accountant, dv.id, "submitted")
    with pytest.raises(ValidationError):
        await voucher_service.update_voucher_details(
            session, accountant, dv.id, VoucherUpdate(amount_cents=1)
        )


@pytest.mark.asyncio
async def test_emergency_voucher_uses_emergency_fields(session, inspector, accountant):
    report = await inspection_service.create_inspection_report(
        session,
        inspector,
        InspectionReportCreate(
            is_emergency_purchase=True,
            emergency_supplier_name="Corner Hardware",
            emergency_amount_cents=45_000,
        ),
    )
    dv = await voucher_service.create_voucher(
        session,
        accountant,
        VoucherCreate(inspection_report_id=str(report.id), payment_method="cash"),
    )
    assert dv.payee_name == "Corner Hardware"
    assert dv.amount_cents == 45_000
    assert dv.po_id is None


@pytest.mark.asyncio
async def test_duplicate_voucher_caught_by_unique_constraint(session, admin, inspector, accountant, monkeypatch):
    po, line = await _approved_order(session, admin, quantity=2)
    report = await _inspect(session, inspector, po, line)
    await voucher_service.create_voucher(
        session, accountant, VoucherCreate(inspection_report_id=str(report.id))
    )

    # another request wrote its voucher between the lookup and the insert
    async def _not_yet(session, report_id):
        return False

    monkeypatch.setattr(voucher_service, "_voucher_exists", _not_yet)
    with pytest.raises(DuplicateVoucher):
        await voucher_service.create_voucher(
            session, accountant, VoucherCreate(inspection_report_id=str(report.id))
        )
    assert await _count(session, DisbursementVoucher) == 1


# ---------------------------------------------------------------------------
# Variance and audit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_variance_follows_the_document_chain(session, admin, inspector, accountant):
    plan, plan_line = await _plan_line(session, admin, quantity=100, unit_cost_cents=100)

    report = await variance_service.plan_variance_report(session, plan.id)
    assert report["lines"][0]["status"] == "No actual data"
    assert report["lines"][0]["execution_status"] == "planned"

    po, line = await _approved_order(session, admin, quantity=40, plan_line=plan_line)
    report = await variance_service.plan_variance_report(session, plan.id)
    row = report["lines"][0]
    assert row["pr_actual_cents"] == 4_000
    assert row["po_actual_cents"] == 4_000
    assert row["execution_status"] == "po_issued"
    assert row["variance_cents"] == 6_000
    assert row["status"] == "Savings"

    iar = await _inspect(session, inspector, po, line, accepted=30, edited="accepted")
    # requires reinspection, so no voucher yet: still on PO figures
    assert iar.overall_result == "requires_reinspection"
    second = await _inspect(session, inspector, po, line)
    await voucher_service.create_voucher(
        session, accountant, VoucherCreate(inspection_report_id=str(second.id))
    )

    report = await variance_service.plan_variance_report(session, plan.id)
    row = report["lines"][0]
    assert row["dv_actual_cents"] == 1_000
    assert row["actual_cents"] == 1_000
    assert row["execution_status"] == "completed"
    assert report["planned_cents"] == 10_000


@pytest.mark.asyncio
async def test_state_changes_are_audited(session, admin, bac):
    pr, pr_lines = await _approved_request(session, admin, quantities=(1,))
    await order_service.create_purchase_order(
        session,
        bac,
        PurchaseOrderCreate(
            pr_id=str(pr.id), line_item_ids=[str(pr_lines[0].id)], supplier_name="Acme"
        ),
    )

    rows = (
        await session.execute(
            select(AuditLog).where(AuditLog.entity_id == pr.id)
        )
    ).scalars().all()
    by_action = {row.action: row for row in rows}
    assert sorted(by_action) == ["PR_APPROVED", "PR_AWARDED", "PR_CREATED", "PR_SUBMITTED"]
    assert by_action["PR_AWARDED"].changed_fields == ["status"]
    assert by_action["PR_AWARDED"].actor_id == bac.user_id
