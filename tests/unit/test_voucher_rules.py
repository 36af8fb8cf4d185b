"""Voucher status machine and processing checks."""

from datetime import date

import pytest

from procurement.exceptions import InvalidStatusTransition, ValidationError
from procurement.services.voucher_service import (
    check_voucher_transition,
    validate_processing,
)

TODAY = date(2026, 6, 15)


@pytest.mark.parametrize(
    "current, target",
    [
        ("for_signature", "submitted"),
        ("submitted", "processed"),
        ("for_signature", "processed"),
    ],
)
def test_forward_transitions_allowed(current, target):
    check_voucher_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("submitted", "for_signature"),
        ("processed", "submitted"),
        ("processed", "for_signature"),
        ("submitted", "submitted"),
        ("for_signature", "paid"),
    ],
)
def test_backward_same_or_unknown_transitions_rejected(current, target):
    with pytest.raises(InvalidStatusTransition) as exc_info:
        check_voucher_transition(current, target)
    assert exc_info.value.code == "INVALID_STATUS_TRANSITION"


def test_processing_requires_payment_date():
    with pytest.raises(ValidationError):
        validate_processing("cash", None, None, today=TODAY)


def test_processing_rejects_future_payment_date():
    with pytest.raises(ValidationError):
        validate_processing("cash", date(2026, 6, 16), None, today=TODAY)


def test_processing_check_requires_check_number():
    with pytest.raises(ValidationError):
        validate_processing("check", TODAY, "  ", today=TODAY)


def test_processing_check_with_number_passes():
    validate_processing("check", TODAY, "000123", today=TODAY)


def test_processing_bank_transfer_needs_no_check_number():
    validate_processing("bank_transfer", date(2026, 6, 1), None, today=TODAY)
