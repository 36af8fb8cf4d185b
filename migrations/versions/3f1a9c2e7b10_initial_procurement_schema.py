"""initial_procurement_schema

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 08:12:40.118204+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. plans (PPMP header)
    op.create_table('plans',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('fiscal_year', sa.Integer(), nullable=False),
    sa.Column('department_id', sa.Uuid(), nullable=True),
    sa.Column('title', sa.String(length=255), nullable=False),
    sa.Column('source_file_name', sa.String(length=255), nullable=True),
    sa.Column('total_budget_cents', sa.BigInteger(), nullable=True),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('total_budget_cents >= 0', name='chk_plan_budget'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_plans_fiscal_year', 'plans', ['fiscal_year'], unique=False)

    # 2. plan_lines
    op.create_table('plan_lines',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('plan_id', sa.Uuid(), nullable=False),
    sa.Column('line_number', sa.Integer(), nullable=False),
    sa.Column('name', sa.Text(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('unit', sa.String(length=50), nullable=True),
    sa.Column('category', sa.String(length=50), nullable=True),
    sa.Column('planned_quantity', sa.Integer(), nullable=False),
    sa.Column('planned_unit_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('planned_total_cents', sa.BigInteger(), nullable=False),
    sa.Column('remaining_quantity', sa.Integer(), nullable=False),
    sa.Column('remaining_budget_cents', sa.BigInteger(), nullable=False),
    sa.Column('schedule_quarter', sa.String(length=20), nullable=True),
    sa.Column('procurement_method', sa.String(length=100), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('planned_quantity >= 0', name='chk_plan_line_qty'),
    sa.CheckConstraint(
        'remaining_quantity >= 0 AND remaining_quantity <= planned_quantity',
        name='chk_plan_line_remaining_qty'),
    sa.CheckConstraint(
        'remaining_budget_cents >= 0 AND remaining_budget_cents <= planned_total_cents',
        name='chk_plan_line_remaining_budget'),
    sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('plan_id', 'line_number', name='uq_plan_line')
    )
    op.create_index('idx_plan_lines_plan', 'plan_lines', ['plan_id'], unique=False)

    # 3. ledger_entries (append-only, no FKs: subjects and sources are polymorphic)
    op.create_table('ledger_entries',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('subject_type', sa.String(length=20), nullable=False),
    sa.Column('subject_id', sa.Uuid(), nullable=False),
    sa.Column('source_type', sa.String(length=30), nullable=False),
    sa.Column('source_id', sa.Uuid(), nullable=False),
    sa.Column('entry_type', sa.String(length=20), nullable=False),
    sa.Column('quantity_delta', sa.Integer(), nullable=True),
    sa.Column('budget_delta_cents', sa.BigInteger(), nullable=True),
    sa.Column('actor_id', sa.Uuid(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("subject_type IN ('PLAN_LINE','ORDER_LINE')", name='chk_ledger_subject'),
    sa.CheckConstraint(
        "entry_type IN ('CONSUME','RELEASE','DELIVER','CANCEL')",
        name='chk_ledger_entry_type'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_ledger_subject', 'ledger_entries', ['subject_type', 'subject_id'], unique=False)
    op.create_index('idx_ledger_source', 'ledger_entries', ['source_type', 'source_id'], unique=False)

    # 4. purchase_requests
    op.create_table('purchase_requests',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('pr_number', sa.String(length=50), nullable=False),
    sa.Column('purpose', sa.Text(), nullable=False),
    sa.Column('department_id', sa.Uuid(), nullable=True),
    sa.Column('plan_id', sa.Uuid(), nullable=True),
    sa.Column('requested_by', sa.Uuid(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('approved_by', sa.Uuid(), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('return_reason', sa.Text(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint(
        "status IN ('pending','for_approval','approved','awarded','returned')",
        name='chk_pr_status'),
    sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('pr_number')
    )
    op.create_index('idx_pr_status', 'purchase_requests', ['status'], unique=False)

    # 5. pr_line_items
    op.create_table('pr_line_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('pr_id', sa.Uuid(), nullable=False),
    sa.Column('line_number', sa.Integer(), nullable=False),
    sa.Column('plan_line_id', sa.Uuid(), nullable=True),
    sa.Column('name', sa.Text(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('unit', sa.String(length=50), nullable=True),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('unit_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('total_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('category', sa.String(length=50), nullable=True),
    sa.Column('released_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('quantity > 0', name='chk_pr_line_qty'),
    sa.CheckConstraint('unit_cost_cents >= 0', name='chk_pr_line_cost'),
    sa.ForeignKeyConstraint(['plan_line_id'], ['plan_lines.id'], ondelete='RESTRICT'),
    sa.ForeignKeyConstraint(['pr_id'], ['purchase_requests.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('pr_id', 'line_number', name='uq_pr_line_item')
    )
    op.create_index('idx_pr_items_pr', 'pr_line_items', ['pr_id'], unique=False)
    op.create_index('idx_pr_items_plan_line', 'pr_line_items', ['plan_line_id'], unique=False)

    # 6. purchase_orders
    op.create_table('purchase_orders',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_number', sa.String(length=50), nullable=False),
    sa.Column('pr_id', sa.Uuid(), nullable=False),
    sa.Column('supplier_name', sa.String(length=255), nullable=False),
    sa.Column('supplier_address', sa.Text(), nullable=True),
    sa.Column('supplier_contact', sa.String(length=255), nullable=True),
    sa.Column('terms_conditions', sa.Text(), nullable=True),
    sa.Column('delivery_date', sa.Date(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('pending','approved','cancelled')", name='chk_po_status'),
    sa.ForeignKeyConstraint(['pr_id'], ['purchase_requests.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('po_number')
    )
    op.create_index('idx_po_pr', 'purchase_orders', ['pr_id'], unique=False)
    op.create_index('idx_po_status', 'purchase_orders', ['status'], unique=False)

    # 7. po_line_items
    op.create_table('po_line_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=False),
    sa.Column('pr_line_item_id', sa.Uuid(), nullable=False),
    sa.Column('line_number', sa.Integer(), nullable=False),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('unit_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('total_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('delivered_quantity', sa.Integer(), nullable=True),
    sa.Column('remaining_quantity', sa.Integer(), nullable=False),
    sa.Column('cancelled', sa.Boolean(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.CheckConstraint('quantity > 0', name='chk_po_line_qty'),
    sa.CheckConstraint(
        'delivered_quantity >= 0 AND remaining_quantity >= 0 '
        'AND delivered_quantity + remaining_quantity <= quantity',
        name='chk_po_line_delivery'),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['pr_line_item_id'], ['pr_line_items.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('po_id', 'line_number', name='uq_po_line_item')
    )
    op.create_index('idx_po_items_po', 'po_line_items', ['po_id'], unique=False)

    # 8. inspection_reports
    op.create_table('inspection_reports',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('iar_number', sa.String(length=50), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=True),
    sa.Column('inspector_id', sa.Uuid(), nullable=False),
    sa.Column('inspection_date', sa.Date(), nullable=False),
    sa.Column('overall_result', sa.String(length=30), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('is_emergency_purchase', sa.Boolean(), nullable=True),
    sa.Column('emergency_supplier_name', sa.String(length=255), nullable=True),
    sa.Column('emergency_amount_cents', sa.BigInteger(), nullable=True),
    sa.Column('emergency_reference', sa.String(length=255), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint(
        "overall_result IN ('accepted','rejected','requires_reinspection')",
        name='chk_iar_result'),
    sa.CheckConstraint('is_emergency_purchase OR po_id IS NOT NULL', name='chk_iar_po_link'),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('iar_number')
    )
    op.create_index('idx_iar_po', 'inspection_reports', ['po_id'], unique=False)
    op.create_index('idx_iar_result', 'inspection_reports', ['overall_result'], unique=False)

    # 9. inspection_items
    op.create_table('inspection_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('report_id', sa.Uuid(), nullable=False),
    sa.Column('po_line_item_id', sa.Uuid(), nullable=False),
    sa.Column('inspected_quantity', sa.Integer(), nullable=False),
    sa.Column('accepted_quantity', sa.Integer(), nullable=True),
    sa.Column('rejected_quantity', sa.Integer(), nullable=True),
    sa.Column('result', sa.String(length=30), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.CheckConstraint(
        'accepted_quantity + rejected_quantity = inspected_quantity',
        name='chk_iar_item_apportion'),
    sa.CheckConstraint(
        'accepted_quantity >= 0 AND rejected_quantity >= 0', name='chk_iar_item_nonneg'),
    sa.ForeignKeyConstraint(['po_line_item_id'], ['po_line_items.id'], ),
    sa.ForeignKeyConstraint(['report_id'], ['inspection_reports.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_iar_items_report', 'inspection_items', ['report_id'], unique=False)
    op.create_index('idx_iar_items_po_line', 'inspection_items', ['po_line_item_id'], unique=False)

    # 10. disbursement_vouchers (one per inspection report)
    op.create_table('disbursement_vouchers',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('dv_number', sa.String(length=50), nullable=False),
    sa.Column('inspection_report_id', sa.Uuid(), nullable=False),
    sa.Column('po_id', sa.Uuid(), nullable=True),
    sa.Column('payee_name', sa.String(length=255), nullable=False),
    sa.Column('amount_cents', sa.BigInteger(), nullable=False),
    sa.Column('payment_method', sa.String(length=20), nullable=True),
    sa.Column('check_number', sa.String(length=50), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('payment_date', sa.Date(), nullable=True),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('processed_by', sa.Uuid(), nullable=True),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('amount_cents > 0', name='chk_dv_amount'),
    sa.CheckConstraint(
        "status IN ('for_signature','submitted','processed')", name='chk_dv_status'),
    sa.CheckConstraint(
        "payment_method IN ('check','bank_transfer','cash')", name='chk_dv_payment_method'),
    sa.CheckConstraint(
        "status != 'processed' OR payment_date IS NOT NULL", name='chk_dv_processed_date'),
    sa.ForeignKeyConstraint(['inspection_report_id'], ['inspection_reports.id'], ),
    sa.ForeignKeyConstraint(['po_id'], ['purchase_orders.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('dv_number'),
    sa.UniqueConstraint('inspection_report_id', name='uq_dv_inspection_report')
    )
    op.create_index('idx_dv_status', 'disbursement_vouchers', ['status'], unique=False)

    # 11. audit_logs
    op.create_table('audit_logs',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('actor_id', sa.Uuid(), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.Uuid(), nullable=False),
    sa.Column('before_state', sa.JSON(), nullable=True),
    sa.Column('after_state', sa.JSON(), nullable=True),
    sa.Column('changed_fields', sa.JSON(), nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_audit_created', table_name='audit_logs')
    op.drop_index('idx_audit_actor', table_name='audit_logs')
    op.drop_index('idx_audit_entity', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_dv_status', table_name='disbursement_vouchers')
    op.drop_table('disbursement_vouchers')
    op.drop_index('idx_iar_items_po_line', table_name='inspection_items')
    op.drop_index('idx_iar_items_report', table_name='inspection_items')
    op.drop_table('inspection_items')
    op.drop_index('idx_iar_result', table_name='inspection_reports')
    op.drop_index('idx_iar_po', table_name='inspection_reports')
    op.drop_table('inspection_reports')
    op.drop_index('idx_po_items_po', table_name='po_line_items')
    op.drop_table('po_line_items')
    op.drop_index('idx_po_status', table_name='purchase_orders')
    op.drop_index('idx_po_pr', table_name='purchase_orders')
    op.drop_table('purchase_orders')
    op.drop_index('idx_pr_items_plan_line', table_name='pr_line_items')
    op.drop_index('idx_pr_items_pr', table_name='pr_line_items')
    op.drop_table('pr_line_items')
    op.drop_index('idx_pr_status', table_name='purchase_requests')
    op.drop_table('purchase_requests')
    op.drop_index('idx_ledger_source', table_name='ledger_entries')
    op.drop_index('idx_ledger_subject', table_name='ledger_entries')
    op.drop_table('ledger_entries')
    op.drop_index('idx_plan_lines_plan', table_name='plan_lines')
    op.drop_table('plan_lines')
    op.drop_index('idx_plans_fiscal_year', table_name='plans')
    op.drop_table('plans')
