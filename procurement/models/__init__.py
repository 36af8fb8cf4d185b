"""Central model registry: import all models so Alembic autodiscover works."""

from procurement.database import Base  # noqa: F401

from procurement.models.plan import Plan, PlanLine  # noqa: F401
from procurement.models.ledger import LedgerEntry  # noqa: F401
from procurement.models.purchase_request import PurchaseRequest, PrLineItem  # noqa: F401
from procurement.models.purchase_order import PurchaseOrder, PoLineItem  # noqa: F401
from procurement.models.inspection import InspectionReport, InspectionItem  # noqa: F401
from procurement.models.voucher import DisbursementVoucher  # noqa: F401
from procurement.models.audit_log import AuditLog  # noqa: F401
