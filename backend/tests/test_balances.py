from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.balances import (
    apply_payment,
    apply_payment_edit,
    derive_account_status,
    read_pending,
    rebase_account_total,
    revert_payment,
)
from backend.app.dates import compute_due_date


def test_status_is_a_function_of_amounts():
    assert derive_account_status(Decimal("500"), Decimal("0")) == "PAID"
    assert derive_account_status(Decimal("500"), Decimal("-1")) == "PAID"
    assert derive_account_status(Decimal("500"), Decimal("200")) == "PARTIAL"
    assert derive_account_status(Decimal("500"), Decimal("500")) == "PENDING"


def test_overdue_only_overrides_pending():
    today = date(2026, 3, 10)
    past = date(2026, 3, 1)
    assert derive_account_status(Decimal("500"), Decimal("500"), past, today) == "OVERDUE"
    assert derive_account_status(Decimal("500"), Decimal("100"), past, today) == "PARTIAL"
    assert derive_account_status(Decimal("500"), Decimal("500"), today, today) == "PENDING"


def test_full_payment_then_any_more_is_rejected():
    first = apply_payment(Decimal("500"), Decimal("500"), Decimal("500"))
    assert first.pending_balance == Decimal("0.00")
    assert first.status == "PAID"
    with pytest.raises(HTTPException) as exc_info:
        apply_payment(Decimal("500"), first.pending_balance, Decimal("1"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "amount exceeds pending balance"
    assert exc_info.value.code == "amount_exceeds_pending"


@pytest.mark.parametrize("amount", ["0", "-10", "NaN", None])
def test_non_positive_amount_is_rejected(amount):
    with pytest.raises(HTTPException) as exc_info:
        apply_payment(Decimal("500"), Decimal("500"), amount)
    assert exc_info.value.detail == "amount must be greater than zero"
    assert exc_info.value.code == "invalid_amount"


def test_edit_revalidates_against_reverted_balance():
    change = apply_payment_edit(Decimal("500"), Decimal("300"), Decimal("200"), Decimal("350"))
    assert change.pending_balance == Decimal("150.00")
    assert change.status == "PARTIAL"
    exact = apply_payment_edit(Decimal("500"), Decimal("300"), Decimal("200"), Decimal("500"))
    assert exact.pending_balance == Decimal("0.00")
    assert exact.status == "PAID"
    with pytest.raises(HTTPException):
        apply_payment_edit(Decimal("500"), Decimal("300"), Decimal("200"), Decimal("500.01"))


def test_revert_restores_pending():
    change = revert_payment(Decimal("500"), Decimal("150"), Decimal("350"))
    assert change.pending_balance == Decimal("500.00")
    assert change.status == "PENDING"
    with pytest.raises(HTTPException) as exc_info:
        revert_payment(Decimal("500"), Decimal("400"), Decimal("200"))
    assert exc_info.value.status_code == 409


def test_pending_stays_within_bounds_over_a_sequence():
    total = Decimal("1000")
    pending = total
    paid = []
    for amt in ("100", "250.50", "49.50"):
        pending = apply_payment(total, pending, Decimal(amt)).pending_balance
        paid.append(Decimal(amt))
        assert Decimal("0") <= pending <= total
    pending = apply_payment_edit(total, pending, paid[1], Decimal("600")).pending_balance
    paid[1] = Decimal("600")
    assert pending == total - sum(paid)
    pending = revert_payment(total, pending, paid.pop(0)).pending_balance
    assert pending == total - sum(paid)
    assert Decimal("0") <= pending <= total


def test_rebase_keeps_payments():
    change = rebase_account_total(Decimal("1200"), Decimal("300"))
    assert change.pending_balance == Decimal("900.00")
    assert change.status == "PARTIAL"
    with pytest.raises(HTTPException) as exc_info:
        rebase_account_total(Decimal("200"), Decimal("300"))
    assert exc_info.value.code == "total_below_paid"


def test_read_pending_never_negative():
    assert read_pending(Decimal("-3")) == Decimal("0.00")
    assert read_pending(Decimal("12.345")) == Decimal("12.35")


def test_due_date_prefers_expiration_then_credit_days():
    sale = date(2026, 1, 10)
    assert compute_due_date(sale, date(2026, 2, 1), 30) == date(2026, 2, 1)
    assert compute_due_date(sale, None, 30) == date(2026, 2, 9)
    assert compute_due_date(sale, None, 0) == sale
    assert compute_due_date(sale) == sale
