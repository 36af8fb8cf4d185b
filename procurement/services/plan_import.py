"""
Spreadsheet ingestion for PPMP lines.

Turns tabular rows (CSV text or dicts from any reader) into ``PlanLineCreate``
payloads. Column names vary between agency templates, so each field is read
from the first non-empty column in its fallback list.
"""

import csv
import io
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

import structlog

from procurement.exceptions import ValidationError
from procurement.schemas.plan import PlanLineCreate

logger = structlog.get_logger()

NAME_COLUMNS = ("Item Specifications", "Item Name", "Description")
QUANTITY_COLUMNS = ("Qty", "Quantity")
UNIT_COST_COLUMNS = ("Unit Cost", "Cost")
TOTAL_COLUMNS = ("Estimated Budget", "Total Cost", "Amount")
UNIT_COLUMNS = ("Unit of Measure", "Unit")
CATEGORY_COLUMNS = ("Budget Category",)
DESCRIPTION_COLUMNS = ("Detailed Description", "Description")
QUARTER_COLUMNS = ("Schedule/Quarter", "Quarter")
METHOD_COLUMNS = ("Mode of Procurement", "Procurement Method")

DEFAULT_UNIT = "pcs"
DEFAULT_CATEGORY = "MOOE"


def _first(row: dict, columns: tuple[str, ...]) -> Optional[str]:
    for column in columns:
        value = row.get(column)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def _to_decimal(raw: str, row_number: int, column: str) -> Decimal:
    cleaned = raw.replace(",", "").replace("₱", "").replace("PHP", "").strip()
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        raise ValidationError(
            f"Row {row_number}: '{raw}' is not a number",
            {"row": row_number, "column": column},
        )


def _to_quantity(raw: str, row_number: int) -> int:
    quantity = _to_decimal(raw, row_number, "Qty")
    if quantity != quantity.to_integral_value():
        raise ValidationError(
            f"Row {row_number}: quantity '{raw}' must be a whole number",
            {"row": row_number, "column": "Qty"},
        )
    return int(quantity)


def to_cents(raw: str, row_number: int = 0, column: str = "amount") -> int:
    amount = _to_decimal(raw, row_number, column)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def rows_to_plan_lines(rows: Iterable[dict]) -> list[PlanLineCreate]:
    lines: list[PlanLineCreate] = []
    skipped = 0
    for row_number, row in enumerate(rows, start=1):
        name = _first(row, NAME_COLUMNS)
        if not name:
            skipped += 1
            continue

        raw_qty = _first(row, QUANTITY_COLUMNS)
        quantity = _to_quantity(raw_qty, row_number) if raw_qty else 0
        raw_cost = _first(row, UNIT_COST_COLUMNS)
        unit_cost_cents = to_cents(raw_cost, row_number, "Unit Cost") if raw_cost else 0
        raw_total = _first(row, TOTAL_COLUMNS)
        total_cents = (
            to_cents(raw_total, row_number, "Estimated Budget")
            if raw_total
            else quantity * unit_cost_cents
        )
        if quantity < 0 or unit_cost_cents < 0 or total_cents < 0:
            raise ValidationError(
                f"Row {row_number}: quantities and amounts must not be negative",
                {"row": row_number},
            )

        lines.append(
            PlanLineCreate(
                name=name,
                description=_first(row, DESCRIPTION_COLUMNS) or name,
                unit=_first(row, UNIT_COLUMNS) or DEFAULT_UNIT,
                category=_first(row, CATEGORY_COLUMNS) or DEFAULT_CATEGORY,
                planned_quantity=quantity,
                planned_unit_cost_cents=unit_cost_cents,
                planned_total_cents=total_cents,
                schedule_quarter=_first(row, QUARTER_COLUMNS),
                procurement_method=_first(row, METHOD_COLUMNS),
            )
        )

    logger.info("plan_rows_parsed", lines=len(lines), skipped=skipped)
    return lines


def parse_plan_csv(content: str) -> list[PlanLineCreate]:
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise ValidationError("CSV content has no header row")
    return rows_to_plan_lines(reader)
