"""
Typed errors raised by the workflow core.

Every error carries a machine-readable ``code``, a human message and a
``details`` dict. The HTTP layer maps each class to a status code in
``procurement.main``; services never raise ``HTTPException`` themselves.

    WorkflowError
    +-- ValidationError            never retried
    |   +-- EmptySelection
    |   +-- InvalidStatusTransition
    +-- NotFound
    +-- InsufficientRemainder      blocks the whole mutation
    +-- DuplicateVoucher
    +-- Forbidden
    +-- ConflictError              caller may retry with fresh state
    +-- TransientInfrastructureError   retried once automatically
    +-- PartialFailure             compensation failed, needs reconciliation
"""

from typing import Optional


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    code = "VALIDATION_ERROR"
    status_code = 422


class EmptySelection(ValidationError):
    code = "EMPTY_SELECTION"

    def __init__(self, message: str = "At least one line item must be selected"):
        super().__init__(message)


class InvalidStatusTransition(ValidationError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, entity_type: str, current: str, target: str):
        super().__init__(
            f"{entity_type} cannot move from '{current}' to '{target}'",
            {"entity_type": entity_type, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class NotFound(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, entity_id):
        super().__init__(
            f"{entity_type} not found",
            {"entity_type": entity_type, "id": str(entity_id)},
        )


class InsufficientRemainder(WorkflowError):
    code = "INSUFFICIENT_REMAINDER"
    status_code = 409

    def __init__(
        self,
        subject: str,
        requested_quantity: int,
        available_quantity: int,
        requested_budget_cents: Optional[int] = None,
        available_budget_cents: Optional[int] = None,
    ):
        details = {
            "subject": subject,
            "requested_quantity": requested_quantity,
            "available_quantity": available_quantity,
        }
        if requested_budget_cents is not None:
            details["requested_budget_cents"] = requested_budget_cents
            details["available_budget_cents"] = available_budget_cents
        super().__init__(f"Insufficient remainder on {subject}", details)
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity


class DuplicateVoucher(WorkflowError):
    code = "DUPLICATE_VOUCHER"
    status_code = 409

    def __init__(self, inspection_report_id):
        super().__init__(
            "A disbursement voucher already exists for this inspection report",
            {"inspection_report_id": str(inspection_report_id)},
        )


class Forbidden(WorkflowError):
    code = "FORBIDDEN"
    status_code = 403


class ConflictError(WorkflowError):
    code = "CONFLICT"
    status_code = 409


class TransientInfrastructureError(WorkflowError):
    code = "TRANSIENT_ERROR"
    status_code = 503


class PartialFailure(WorkflowError):
    code = "PARTIAL_FAILURE"
    status_code = 500

    def __init__(self, operation: str, surviving_rows: list[dict], cause: str):
        super().__init__(
            f"{operation} failed and could not be fully rolled back",
            {"operation": operation, "surviving_rows": surviving_rows, "cause": cause},
        )
        self.surviving_rows = surviving_rows
